"""
services/availability/router.py
A companion's own weekly schedule.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from services.availability.ledger import AvailabilityLedger, get_availability_ledger
from shared.middleware.auth import require_companion
from shared.models.models import DayOfWeek, User
from shared.schemas.schemas import (
    MessageResponse,
    SlotCreate,
    SlotResponse,
    SlotUpdate,
    WeekReplaceRequest,
)

router = APIRouter(prefix="/availability", tags=["Availability"])


@router.get("/me", response_model=List[SlotResponse])
async def my_slots(
    day: Optional[str] = Query(None),
    current_user: User = Depends(require_companion),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    day_of_week = None
    if day:
        try:
            day_of_week = DayOfWeek(day.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid day: {day}")
    slots = await ledger.list_slots(current_user.id, day_of_week)
    return [SlotResponse.model_validate(s) for s in slots]


@router.post("/me", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def add_slot(
    data: SlotCreate,
    current_user: User = Depends(require_companion),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """Add a weekly window. Windows on the same day may touch but not overlap."""
    slot = await ledger.add_slot(
        current_user,
        data.day_of_week,
        data.start_time,
        data.end_time,
        services=data.services,
        is_available=data.is_available,
    )
    return SlotResponse.model_validate(slot)


@router.put("/me", response_model=List[SlotResponse])
async def replace_week(
    data: WeekReplaceRequest,
    current_user: User = Depends(require_companion),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    """Replace the whole weekly schedule. Nothing is written if any slot is invalid."""
    slots = await ledger.replace_week(current_user, [s.model_dump() for s in data.slots])
    return [SlotResponse.model_validate(s) for s in slots]


@router.patch("/me/{slot_id}", response_model=SlotResponse)
async def update_slot(
    slot_id: UUID,
    data: SlotUpdate,
    current_user: User = Depends(require_companion),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    slot = await ledger.update_slot(
        current_user,
        slot_id,
        start=data.start_time,
        end=data.end_time,
        services=data.services,
        is_available=data.is_available,
    )
    return SlotResponse.model_validate(slot)


@router.delete("/me/{slot_id}", response_model=MessageResponse)
async def remove_slot(
    slot_id: UUID,
    current_user: User = Depends(require_companion),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
):
    await ledger.remove_slot(current_user, slot_id)
    return MessageResponse(message="Slot removed")
