"""
services/booking/router.py
Direct bookings and their lifecycle.
States: PENDING → CONFIRMED → COMPLETED | NO_SHOW
        PENDING | CONFIRMED → CANCELLED
"""

from datetime import date
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from services.booking.engine import BookingEngine, get_booking_engine
from shared.middleware.auth import get_current_user, require_client, require_companion
from shared.models.models import BookingStatus, User
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingRequestResponse,
    BookingResponse,
    PendingApprovalsResponse,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Creation ──────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(require_client),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """
    Book a companion directly. The request must fit inside one of the
    companion's available weekly slots and not overlap a live booking.
    Amounts are computed server-side from the companion's hourly rate.
    """
    booking = await engine.create_booking(
        client=current_user,
        companion_id=data.companion_id,
        booking_date=data.booking_date,
        start=data.start_time,
        end=data.end_time,
        meeting_type=data.meeting_type,
        meeting_location=data.meeting_location,
        service_type=data.service_type,
        special_requests=data.special_requests,
    )
    return BookingResponse.model_validate(booking)


# ── Companion views ───────────────────────────────────────────

@router.get("/companion/pending", response_model=PendingApprovalsResponse)
async def pending_approvals(
    current_user: User = Depends(require_companion),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """Pending bookings and booking requests waiting on this companion."""
    bookings, requests = await engine.list_pending_approvals(current_user.id)
    return PendingApprovalsResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        requests=[BookingRequestResponse.model_validate(r) for r in requests],
    )


@router.get("/companion/calendar", response_model=List[BookingResponse])
async def companion_calendar(
    start_date: date = Query(...),
    end_date: date = Query(...),
    current_user: User = Depends(require_companion),
    engine: BookingEngine = Depends(get_booking_engine),
):
    bookings = await engine.bookings_in_range(current_user.id, start_date, end_date)
    return [BookingResponse.model_validate(b) for b in bookings]


# ── Lifecycle ─────────────────────────────────────────────────

@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """Companion confirms a pending booking."""
    booking = await engine.transition(booking_id, current_user, BookingStatus.CONFIRMED)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    engine: BookingEngine = Depends(get_booking_engine),
):
    booking = await engine.transition(booking_id, current_user, BookingStatus.COMPLETED)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
async def mark_no_show(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    engine: BookingEngine = Depends(get_booking_engine),
):
    booking = await engine.transition(booking_id, current_user, BookingStatus.NO_SHOW)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """Either party (or an admin) cancels a pending or confirmed booking."""
    booking = await engine.transition(
        booking_id, current_user, BookingStatus.CANCELLED, reason=data.reason
    )
    return BookingResponse.model_validate(booking)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """Client sees own bookings, companion sees theirs, admin sees all."""
    booking = await engine.get_booking_for(booking_id, current_user)
    return BookingResponse.model_validate(booking)


@router.get("", response_model=List[BookingResponse])
async def list_my_bookings(
    status_filter: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """List bookings for the active role: as client, as companion, or all for admins."""
    booking_status = None
    if status_filter:
        try:
            booking_status = BookingStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status_filter}")

    bookings = await engine.list_for_user(current_user, booking_status, page, page_size)
    return [BookingResponse.model_validate(b) for b in bookings]
