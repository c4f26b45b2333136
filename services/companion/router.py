"""
services/companion/router.py
Companion catalog as verified clients see it, plus the companion's own profile.
Only companions with an approved application are listed or resolvable.
"""

import math
from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import exists, func, select, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.availability.ledger import AvailabilityLedger, get_availability_ledger
from services.verification.gate import (
    ensure_client_can_book,
    ensure_companion_approved,
    get_catalog_companion,
)
from shared.middleware.auth import require_client_or_admin, require_companion
from shared.models.models import (
    ApplicationStatus,
    CompanionApplication,
    DayOfWeek,
    Role,
    RoleGrant,
    ServiceTag,
    User,
)
from shared.schemas.schemas import (
    CompanionApplicationResponse,
    CompanionCardResponse,
    CompanionProfileUpdate,
    OpenWindowsResponse,
    PaginatedResponse,
    SlotResponse,
    WeeklyPatternResponse,
)

router = APIRouter(prefix="/companions", tags=["Companions"])


# ── Helpers ───────────────────────────────────────────────────

def _card(user: User, application: CompanionApplication) -> CompanionCardResponse:
    return CompanionCardResponse(
        id=user.id,
        name=user.name,
        avatar_url=user.avatar_url,
        bio=application.bio,
        city=application.city,
        country=application.country,
        services_offered=application.services_offered or [],
        languages=application.languages or [],
        hourly_rate=application.hourly_rate,
    )


async def browsing_user(
    current_user: User = Depends(require_client_or_admin),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Clients must hold an approved, address-complete verification to browse."""
    if current_user.active_role == Role.CLIENT:
        await ensure_client_can_book(db, current_user)
    return current_user


# ── Catalog ───────────────────────────────────────────────────

@router.get("/services", response_model=List[str])
async def list_services():
    """The fixed vocabulary of service tags."""
    return [tag.value for tag in ServiceTag]


def _offers_service(dialect: str, tag: str):
    """`services_offered` contains `tag`. JSONB containment on PostgreSQL, json_each elsewhere."""
    if dialect == "postgresql":
        return type_coerce(CompanionApplication.services_offered, JSONB).contains([tag])
    offered = func.json_each(CompanionApplication.services_offered).table_valued("value")
    return exists(select(1).select_from(offered).where(offered.c.value == tag))


@router.get("", response_model=PaginatedResponse)
async def list_companions(
    city: Optional[str] = Query(None),
    service: Optional[ServiceTag] = Query(None),
    max_rate: Optional[Decimal] = Query(None, gt=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(browsing_user),
    db: AsyncSession = Depends(get_db),
):
    holds_companion_role = exists(
        select(1).where(
            RoleGrant.user_id == User.id,
            RoleGrant.role == Role.COMPANION,
            RoleGrant.is_active == True,  # noqa: E712
        )
    )
    query = (
        select(User, CompanionApplication)
        .join(CompanionApplication, CompanionApplication.user_id == User.id)
        .where(
            CompanionApplication.status == ApplicationStatus.APPROVED,
            User.is_active == True,  # noqa: E712
            User.deleted_at.is_(None),
            User.id != current_user.id,
            holds_companion_role,
        )
    )
    if city:
        query = query.where(CompanionApplication.city.ilike(city.strip()))
    if max_rate is not None:
        query = query.where(CompanionApplication.hourly_rate <= max_rate)
    if service is not None:
        query = query.where(_offers_service(db.get_bind().dialect.name, ServiceTag(service).value))

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    query = query.order_by(User.name.asc(), User.id.asc())
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return {
        "items": [_card(u, a) for u, a in result.all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


# ── Own profile ───────────────────────────────────────────────

@router.patch("/me/profile", response_model=CompanionApplicationResponse)
async def update_my_profile(
    data: CompanionProfileUpdate,
    current_user: User = Depends(require_companion),
    db: AsyncSession = Depends(get_db),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """
    Edit the public parts of the approved application.
    A service can only be dropped once no availability slot is tagged with it.
    """
    application = await ensure_companion_approved(db, current_user)
    if data.services_offered is not None:
        await ledger.ensure_services_cover_slots(current_user.id, data.services_offered)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(application, field, value)
    await db.flush()
    return CompanionApplicationResponse.model_validate(application)


# ── Single companion ──────────────────────────────────────────

@router.get("/{companion_id}", response_model=CompanionCardResponse)
async def get_companion(
    companion_id: UUID,
    current_user: User = Depends(browsing_user),
    db: AsyncSession = Depends(get_db),
):
    user, application = await get_catalog_companion(db, companion_id)
    return _card(user, application)


@router.get("/{companion_id}/availability", response_model=List[SlotResponse])
async def get_companion_slots(
    companion_id: UUID,
    current_user: User = Depends(browsing_user),
    db: AsyncSession = Depends(get_db),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    await get_catalog_companion(db, companion_id)
    slots = await ledger.list_slots(companion_id, only_available=True)
    return [SlotResponse.model_validate(s) for s in slots]


@router.get("/{companion_id}/availability/weekly", response_model=WeeklyPatternResponse)
async def get_weekly_pattern(
    companion_id: UUID,
    current_user: User = Depends(browsing_user),
    db: AsyncSession = Depends(get_db),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    await get_catalog_companion(db, companion_id)
    return await ledger.weekly_pattern(companion_id)


@router.get("/{companion_id}/open-windows", response_model=OpenWindowsResponse)
async def get_open_windows(
    companion_id: UUID,
    on_date: date = Query(..., alias="date"),
    current_user: User = Depends(browsing_user),
    db: AsyncSession = Depends(get_db),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """Bookable windows on a concrete date, with live bookings carved out."""
    await get_catalog_companion(db, companion_id)
    windows = await ledger.open_windows(companion_id, on_date)
    return {
        "companion_id": companion_id,
        "date": on_date,
        "day_of_week": DayOfWeek.for_date(on_date),
        "windows": windows,
    }
