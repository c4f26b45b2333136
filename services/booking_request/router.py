"""
services/booking_request/router.py
Client proposals and the companion's accept / reject response.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from services.booking.engine import BookingEngine, get_booking_engine
from services.booking_request import workflow
from shared.middleware.auth import require_client, require_companion
from shared.models.models import RequestStatus, User
from shared.schemas.schemas import (
    AcceptedRequestResponse,
    BookingRequestAccept,
    BookingRequestCreate,
    BookingRequestReject,
    BookingRequestResponse,
    BookingResponse,
)

router = APIRouter(prefix="/booking-requests", tags=["Booking Requests"])


@router.post("", response_model=BookingRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_request(
    data: BookingRequestCreate,
    current_user: User = Depends(require_client),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """Propose a date to a companion. Times are optional; a duration is not."""
    request = await workflow.create_request(engine, current_user, data.model_dump())
    return BookingRequestResponse.model_validate(request)


@router.get("/sent", response_model=List[BookingRequestResponse])
async def sent_requests(
    current_user: User = Depends(require_client),
    engine: BookingEngine = Depends(get_booking_engine),
):
    requests = await workflow.list_sent(engine, current_user)
    return [BookingRequestResponse.model_validate(r) for r in requests]


@router.get("/received", response_model=List[BookingRequestResponse])
async def received_requests(
    status_filter: Optional[str] = Query(None),
    current_user: User = Depends(require_companion),
    engine: BookingEngine = Depends(get_booking_engine),
):
    request_status = None
    if status_filter:
        try:
            request_status = RequestStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status_filter}")
    requests = await workflow.list_received(engine, current_user, request_status)
    return [BookingRequestResponse.model_validate(r) for r in requests]


@router.post("/{request_id}/accept", response_model=AcceptedRequestResponse)
async def accept_booking_request(
    request_id: UUID,
    data: BookingRequestAccept,
    current_user: User = Depends(require_companion),
    engine: BookingEngine = Depends(get_booking_engine),
):
    """
    Accept a request, optionally fixing the start/end time.
    The resulting booking goes through the same checks as a direct booking.
    """
    request, booking = await workflow.accept_request(
        engine,
        request_id,
        current_user,
        start=data.start_time,
        end=data.end_time,
        response=data.response,
    )
    return AcceptedRequestResponse(
        request=BookingRequestResponse.model_validate(request),
        booking=BookingResponse.model_validate(booking),
    )


@router.post("/{request_id}/reject", response_model=BookingRequestResponse)
async def reject_booking_request(
    request_id: UUID,
    data: BookingRequestReject,
    current_user: User = Depends(require_companion),
    engine: BookingEngine = Depends(get_booking_engine),
):
    request = await workflow.reject_request(engine, request_id, current_user, data.response)
    return BookingRequestResponse.model_validate(request)
