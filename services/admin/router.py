"""
services/admin/router.py
Admin-only endpoints: companion application and client verification review,
payment bookkeeping, and the immutable audit log.

ALL mutations are logged to AdminAuditLog before returning.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.engine import BookingEngine, get_booking_engine
from services.verification.gate import (
    approve_application,
    approve_client_verification,
    reject_application,
    reject_client_verification,
)
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    ApplicationStatus,
    ClientVerification,
    CompanionApplication,
    User,
    VerificationStatus,
)
from shared.schemas.schemas import (
    AdminAuditLogResponse,
    AdminRejectRequest,
    BookingResponse,
    CompanionApplicationResponse,
    MessageResponse,
    PaymentStatusUpdate,
)
from shared.utils.events import relay_outbox

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: User,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    request: Request | None = None,
):
    """Append an immutable record to AdminAuditLog."""
    log = AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    )
    db.add(log)


def _page(items: list, total: int, page: int, page_size: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),  # ceiling division
    }


# ── Companion Application Queue ────────────────────────────────────────────────

@router.get("/applications/pending")
async def get_pending_applications(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Applications awaiting review, oldest first (FIFO queue)."""
    query = (
        select(CompanionApplication, User)
        .join(User, User.id == CompanionApplication.user_id)
        .where(CompanionApplication.status == ApplicationStatus.PENDING)
        .order_by(CompanionApplication.created_at.asc())
    )
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    items = [
        {
            "application_id": str(application.id),
            "user_id": str(user.id),
            "name": user.name,
            "email": user.email,
            "phone": application.phone,
            "city": application.city,
            "state": application.state,
            "country": application.country,
            "services_offered": application.services_offered or [],
            "languages": application.languages or [],
            "hourly_rate": str(application.hourly_rate),
            "bio": application.bio,
            "documents": application.documents,
            "applied_at": application.created_at.isoformat(),
        }
        for application, user in result.all()
    ]
    return _page(items, total, page, page_size)


@router.post("/applications/{application_id}/approve", response_model=CompanionApplicationResponse)
async def approve_companion_application(
    application_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approve an application and grant the applicant the companion role."""
    application = await approve_application(db, application_id, current_user)
    await _log(db, current_user, "APPROVE_APPLICATION", "CompanionApplication",
               str(application_id), {"user_id": str(application.user_id)}, request)
    await db.commit()
    await relay_outbox(db)
    return CompanionApplicationResponse.model_validate(application)


@router.post("/applications/{application_id}/reject", response_model=CompanionApplicationResponse)
async def reject_companion_application(
    application_id: UUID,
    data: AdminRejectRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    application = await reject_application(db, application_id, current_user, data.reason)
    await _log(db, current_user, "REJECT_APPLICATION", "CompanionApplication",
               str(application_id), {"reason": data.reason}, request)
    await db.commit()
    await relay_outbox(db)
    return CompanionApplicationResponse.model_validate(application)


# ── Client Verification Queue ──────────────────────────────────────────────────

@router.get("/verifications/pending")
async def get_pending_verifications(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(ClientVerification, User)
        .join(User, User.id == ClientVerification.user_id)
        .where(ClientVerification.status == VerificationStatus.PENDING)
        .order_by(ClientVerification.submitted_at.asc())
    )
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    items = [
        {
            "verification_id": str(verification.id),
            "user_id": str(user.id),
            "name": user.name,
            "email": user.email,
            "address_line": verification.address_line,
            "city": verification.city,
            "state": verification.state,
            "country": verification.country,
            "postal_code": verification.postal_code,
            "id_document_url": verification.id_document_url,
            "profile_photo_url": verification.profile_photo_url,
            "submitted_at": verification.submitted_at.isoformat() if verification.submitted_at else None,
        }
        for verification, user in result.all()
    ]
    return _page(items, total, page, page_size)


@router.post("/verifications/{verification_id}/approve", response_model=MessageResponse)
async def approve_verification(
    verification_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    verification = await approve_client_verification(db, verification_id, current_user)
    await _log(db, current_user, "APPROVE_VERIFICATION", "ClientVerification",
               str(verification_id), {"user_id": str(verification.user_id)}, request)
    await db.commit()
    await relay_outbox(db)
    return MessageResponse(message="Client verification approved")


@router.post("/verifications/{verification_id}/reject", response_model=MessageResponse)
async def reject_verification(
    verification_id: UUID,
    data: AdminRejectRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await reject_client_verification(db, verification_id, current_user, data.reason)
    await _log(db, current_user, "REJECT_VERIFICATION", "ClientVerification",
               str(verification_id), {"reason": data.reason}, request)
    await db.commit()
    await relay_outbox(db)
    return MessageResponse(message="Client verification rejected")


# ── Payment Bookkeeping ────────────────────────────────────────────────────────

@router.patch("/bookings/{booking_id}/payment-status", response_model=BookingResponse)
async def update_payment_status(
    booking_id: UUID,
    data: PaymentStatusUpdate,
    request: Request,
    current_user: User = Depends(require_admin),
    engine: BookingEngine = Depends(get_booking_engine),
):
    booking = await engine.update_payment_status(
        booking_id, data.payment_status, data.payment_method
    )
    await _log(engine.db, current_user, "UPDATE_PAYMENT_STATUS", "Booking", str(booking_id),
               {"payment_status": data.payment_status, "payment_method": data.payment_method},
               request)
    await engine.db.commit()
    return BookingResponse.model_validate(booking)


# ── Audit Log ─────────────────────────────────────────────────────────────────

@router.get("/audit-log")
async def get_audit_log(
    action: Optional[str] = Query(None, description="Filter by action e.g. APPROVE_APPLICATION"),
    entity_type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only, never editable."""
    query = select(AdminAuditLog).order_by(AdminAuditLog.created_at.desc())
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    items = [AdminAuditLogResponse.model_validate(log) for log in result.scalars().all()]
    return _page(items, total, page, page_size)
