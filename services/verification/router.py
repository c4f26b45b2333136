"""
services/verification/router.py
Self-service side of the verification gate: clients submit identity and
address details, prospective companions submit an application.
Reviews happen under /admin.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.verification.gate import (
    can_browse_or_book,
    get_client_verification,
    get_latest_application,
    submit_application,
    submit_client_verification,
    verification_status,
)
from shared.middleware.auth import get_current_user, require_client
from shared.models.models import User
from shared.schemas.schemas import (
    ClientVerificationResponse,
    ClientVerificationSubmit,
    CompanionApplicationCreate,
    CompanionApplicationResponse,
)
from shared.utils.exceptions import NotFoundError

router = APIRouter(prefix="/verification", tags=["Verification"])


def _client_view(verification) -> ClientVerificationResponse:
    if verification is None:
        return ClientVerificationResponse(
            status=verification_status(None),
            can_browse_or_book=False,
        )
    return ClientVerificationResponse(
        status=verification.status,
        can_browse_or_book=can_browse_or_book(verification),
        address_line=verification.address_line,
        city=verification.city,
        state=verification.state,
        country=verification.country,
        postal_code=verification.postal_code,
        id_document_url=verification.id_document_url,
        rejection_reason=verification.rejection_reason,
        submitted_at=verification.submitted_at,
        verified_at=verification.verified_at,
    )


# ── Client ────────────────────────────────────────────────────

@router.get("/client", response_model=ClientVerificationResponse)
async def get_my_client_verification(
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    verification = await get_client_verification(db, current_user.id)
    return _client_view(verification)


@router.post("/client", response_model=ClientVerificationResponse, status_code=status.HTTP_201_CREATED)
async def submit_my_client_verification(
    data: ClientVerificationSubmit,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Submit (or resubmit after rejection) identity and address details for review."""
    verification = await submit_client_verification(db, current_user, data.model_dump())
    return _client_view(verification)


# ── Companion application ─────────────────────────────────────

@router.get("/companion", response_model=CompanionApplicationResponse)
async def get_my_application(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    application = await get_latest_application(db, current_user.id)
    if application is None:
        raise NotFoundError("No companion application submitted")
    return CompanionApplicationResponse.model_validate(application)


@router.post("/companion", response_model=CompanionApplicationResponse, status_code=status.HTTP_201_CREATED)
async def apply_as_companion(
    data: CompanionApplicationCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Any account may apply; the companion role is granted on approval.
    One pending application at a time.
    """
    application = await submit_application(
        db, current_user, data.model_dump(), Decimal(str(settings.DEFAULT_HOURLY_RATE))
    )
    return CompanionApplicationResponse.model_validate(application)
