"""
services/favorite/router.py
Client favourites: bookmark companions from the catalog.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.verification.gate import get_approved_application, get_catalog_companion
from shared.middleware.auth import require_client
from shared.models.models import Favorite, User
from shared.schemas.schemas import CompanionCardResponse, FavoriteResponse, MessageResponse
from shared.utils.exceptions import NotFoundError

router = APIRouter(prefix="/favorites", tags=["Favorites"])


@router.get("", response_model=List[FavoriteResponse])
async def list_favorites(
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Companions that are no longer approved are listed without a card."""
    result = await db.execute(
        select(Favorite, User)
        .join(User, User.id == Favorite.companion_id)
        .where(Favorite.client_id == current_user.id)
        .order_by(Favorite.created_at.desc())
    )
    favorites = []
    for favorite, companion in result.all():
        application = await get_approved_application(db, companion.id)
        card = None
        if application is not None and companion.is_active and not companion.is_deleted:
            card = CompanionCardResponse(
                id=companion.id,
                name=companion.name,
                avatar_url=companion.avatar_url,
                bio=application.bio,
                city=application.city,
                country=application.country,
                services_offered=application.services_offered or [],
                languages=application.languages or [],
                hourly_rate=application.hourly_rate,
            )
        favorites.append(
            FavoriteResponse(
                companion_id=favorite.companion_id,
                created_at=favorite.created_at,
                companion=card,
            )
        )
    return favorites


@router.post("/{companion_id}", response_model=MessageResponse)
async def add_favorite(
    companion_id: UUID,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Idempotent: saving twice is not an error."""
    await get_catalog_companion(db, companion_id)

    existing = await db.scalar(
        select(Favorite).where(
            Favorite.client_id == current_user.id,
            Favorite.companion_id == companion_id,
        )
    )
    if existing:
        return MessageResponse(message="Already in favourites")

    db.add(Favorite(client_id=current_user.id, companion_id=companion_id))
    await db.flush()
    return MessageResponse(message="Companion added to favourites")


@router.delete("/{companion_id}", response_model=MessageResponse)
async def remove_favorite(
    companion_id: UUID,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    existing = await db.scalar(
        select(Favorite).where(
            Favorite.client_id == current_user.id,
            Favorite.companion_id == companion_id,
        )
    )
    if not existing:
        raise NotFoundError("Companion is not in your favourites")
    await db.delete(existing)
    await db.flush()
    return MessageResponse(message="Removed from favourites")
