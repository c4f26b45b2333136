"""
services/verification/gate.py
Verification gate: client identity verification and companion applications.

Both follow the same machine:
    not_submitted --submit--> pending --approve--> approved
                              pending --reject(reason)--> rejected --submit--> pending
`approved` is terminal-stable. A companion resubmission creates a new
application row instead of reopening the rejected one.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.auth.roles import grant_role
from shared.models.models import (
    ApplicationStatus,
    ClientVerification,
    CompanionApplication,
    EventType,
    Role,
    User,
    VerificationStatus,
)
from shared.utils.events import enqueue_event
from shared.utils.exceptions import (
    CompanionNotApprovedError,
    InvalidTransitionError,
    NotFoundError,
    NotVerifiedError,
)

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("address_line", "city", "state", "country", "postal_code")

# (action, current) -> next; anything missing is an illegal move
_MACHINE = {
    ("submit", "not_submitted"): "pending",
    ("submit", "rejected"): "pending",
    ("approve", "pending"): "approved",
    ("reject", "pending"): "rejected",
}


def _advance(current: str, action: str) -> str:
    target = {"submit": "pending", "approve": "approved", "reject": "rejected"}[action]
    nxt = _MACHINE.get((action, current))
    if nxt is None:
        raise InvalidTransitionError(current, target)
    return nxt


# ── Predicates ────────────────────────────────────────────────

def verification_status(verification: Optional[ClientVerification]) -> VerificationStatus:
    if verification is None:
        return VerificationStatus.NOT_SUBMITTED
    return verification.status


def can_browse_or_book(verification: Optional[ClientVerification]) -> bool:
    if verification is None or verification.status != VerificationStatus.APPROVED:
        return False
    return all((getattr(verification, f) or "").strip() for f in REQUIRED_ADDRESS_FIELDS)


def can_publish_availability_or_appear_in_catalog(
    application: Optional[CompanionApplication],
) -> bool:
    return application is not None and application.status == ApplicationStatus.APPROVED


# ── Client verification ───────────────────────────────────────

async def get_client_verification(db: AsyncSession, user_id: UUID) -> Optional[ClientVerification]:
    result = await db.execute(
        select(ClientVerification).where(ClientVerification.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def ensure_client_can_book(db: AsyncSession, client: User) -> ClientVerification:
    verification = await get_client_verification(db, client.id)
    if not can_browse_or_book(verification):
        raise NotVerifiedError()
    return verification


async def submit_client_verification(
    db: AsyncSession, user: User, details: dict
) -> ClientVerification:
    verification = await get_client_verification(db, user.id)
    current = verification_status(verification).value
    _advance(current, "submit")

    if verification is None:
        verification = ClientVerification(user_id=user.id)
        db.add(verification)

    for field, value in details.items():
        setattr(verification, field, value)
    verification.status = VerificationStatus.PENDING
    verification.rejection_reason = None
    verification.reviewed_by_id = None
    verification.submitted_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info(f"Client verification submitted for user {user.id} (was {current})")
    return verification


async def _get_verification_or_404(db: AsyncSession, verification_id: UUID) -> ClientVerification:
    result = await db.execute(
        select(ClientVerification).where(ClientVerification.id == verification_id)
    )
    verification = result.scalar_one_or_none()
    if not verification:
        raise NotFoundError("Verification not found")
    return verification


async def approve_client_verification(
    db: AsyncSession, verification_id: UUID, reviewer: User
) -> ClientVerification:
    verification = await _get_verification_or_404(db, verification_id)
    verification.status = VerificationStatus(_advance(verification.status.value, "approve"))
    verification.reviewed_by_id = reviewer.id
    verification.verified_at = datetime.now(timezone.utc)
    verification.rejection_reason = None
    await db.flush()

    enqueue_event(
        db,
        EventType.VERIFICATION_REVIEWED,
        verification.user_id,
        {"verification_id": str(verification.id), "status": verification.status.value},
    )
    return verification


async def reject_client_verification(
    db: AsyncSession, verification_id: UUID, reviewer: User, reason: str
) -> ClientVerification:
    verification = await _get_verification_or_404(db, verification_id)
    verification.status = VerificationStatus(_advance(verification.status.value, "reject"))
    verification.reviewed_by_id = reviewer.id
    verification.rejection_reason = reason
    await db.flush()

    enqueue_event(
        db,
        EventType.VERIFICATION_REVIEWED,
        verification.user_id,
        {
            "verification_id": str(verification.id),
            "status": verification.status.value,
            "reason": reason,
        },
    )
    return verification


# ── Companion application ─────────────────────────────────────

async def get_latest_application(db: AsyncSession, user_id: UUID) -> Optional[CompanionApplication]:
    result = await db.execute(
        select(CompanionApplication)
        .where(CompanionApplication.user_id == user_id)
        .order_by(CompanionApplication.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_approved_application(
    db: AsyncSession, user_id: UUID, for_update: bool = False
) -> Optional[CompanionApplication]:
    query = select(CompanionApplication).where(
        CompanionApplication.user_id == user_id,
        CompanionApplication.status == ApplicationStatus.APPROVED,
    )
    if for_update:
        # Row lock on PostgreSQL; SQLite ignores FOR UPDATE
        query = query.with_for_update()
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def ensure_companion_approved(db: AsyncSession, companion: User) -> CompanionApplication:
    """Gate for companion-side writes (availability, profile)."""
    application = await get_approved_application(db, companion.id)
    if not can_publish_availability_or_appear_in_catalog(application):
        raise CompanionNotApprovedError()
    return application


async def get_catalog_companion(
    db: AsyncSession, companion_id: UUID, for_update: bool = False
) -> tuple[User, CompanionApplication]:
    """
    Resolve a companion as clients see it. Unapproved or unknown companions
    are indistinguishable (404) so the catalog does not leak applicants.
    """
    result = await db.execute(select(User).where(User.id == companion_id))
    companion = result.scalar_one_or_none()
    if companion is None or companion.is_deleted or not companion.is_active:
        raise NotFoundError("Companion not found")
    if not companion.has_role(Role.COMPANION):
        raise NotFoundError("Companion not found")
    application = await get_approved_application(db, companion_id, for_update=for_update)
    if not can_publish_availability_or_appear_in_catalog(application):
        raise NotFoundError("Companion not found")
    return companion, application


async def submit_application(
    db: AsyncSession, user: User, details: dict, default_hourly_rate: Decimal
) -> CompanionApplication:
    latest = await get_latest_application(db, user.id)
    current = latest.status.value if latest else "not_submitted"
    if current == ApplicationStatus.PENDING.value:
        raise InvalidTransitionError(current, "pending", "An application is already pending review")
    _advance(current, "submit")

    if details.get("hourly_rate") is None:
        details["hourly_rate"] = default_hourly_rate
    application = CompanionApplication(
        user_id=user.id,
        status=ApplicationStatus.PENDING,
        **details,
    )
    db.add(application)
    await db.flush()

    logger.info(f"Companion application {application.id} submitted by user {user.id}")
    return application


async def _get_application_or_404(db: AsyncSession, application_id: UUID) -> CompanionApplication:
    result = await db.execute(
        select(CompanionApplication).where(CompanionApplication.id == application_id)
    )
    application = result.scalar_one_or_none()
    if not application:
        raise NotFoundError("Application not found")
    return application


async def approve_application(
    db: AsyncSession, application_id: UUID, reviewer: User
) -> CompanionApplication:
    application = await _get_application_or_404(db, application_id)
    application.status = ApplicationStatus(_advance(application.status.value, "approve"))
    application.reviewed_by_id = reviewer.id
    application.reviewed_at = datetime.now(timezone.utc)
    application.rejection_reason = None

    result = await db.execute(select(User).where(User.id == application.user_id))
    applicant = result.scalar_one()
    grant_role(applicant, Role.COMPANION)
    await db.flush()

    enqueue_event(
        db,
        EventType.APPLICATION_REVIEWED,
        applicant.id,
        {"application_id": str(application.id), "status": application.status.value},
    )
    logger.info(f"Application {application.id} approved; companion role granted to {applicant.id}")
    return application


async def reject_application(
    db: AsyncSession, application_id: UUID, reviewer: User, reason: str
) -> CompanionApplication:
    application = await _get_application_or_404(db, application_id)
    application.status = ApplicationStatus(_advance(application.status.value, "reject"))
    application.reviewed_by_id = reviewer.id
    application.reviewed_at = datetime.now(timezone.utc)
    application.rejection_reason = reason
    await db.flush()

    enqueue_event(
        db,
        EventType.APPLICATION_REVIEWED,
        application.user_id,
        {
            "application_id": str(application.id),
            "status": application.status.value,
            "reason": reason,
        },
    )
    return application
