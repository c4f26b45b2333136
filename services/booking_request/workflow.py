"""
services/booking_request/workflow.py
Booking requests: a client proposes a date (and optionally a time) outside
the published schedule; the companion accepts or rejects.

Accepting runs the proposal through the normal booking engine, so an accepted
request always yields a booking that satisfies every booking rule. If the
engine refuses, the request stays pending and untouched.
"""

import logging
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select

from services.booking.engine import BookingEngine, check_in_future, check_range
from services.verification.gate import ensure_client_can_book, get_catalog_companion
from shared.models.models import (
    Booking,
    BookingRequest,
    EventType,
    MeetingType,
    RequestStatus,
    User,
)
from shared.utils.events import enqueue_event, relay_outbox
from shared.utils.exceptions import (
    InvalidRangeError,
    InvalidServiceError,
    InvalidTransitionError,
    NotFoundError,
    SelfBookingError,
)
from shared.utils.timeslots import CENTS, from_minutes, to_minutes

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def _end_from_duration(start: time, hours: Decimal) -> time:
    end_min = to_minutes(start) + int((Decimal(hours) * 60).to_integral_value())
    if end_min >= MINUTES_PER_DAY:
        raise InvalidRangeError("Requested time must end on the same day")
    return from_minutes(end_min)


async def create_request(engine: BookingEngine, client: User, data: dict) -> BookingRequest:
    db = engine.db
    companion_id = data["companion_id"]
    if client.id == companion_id:
        raise SelfBookingError()
    await ensure_client_can_book(db, client)
    _, application = await get_catalog_companion(db, companion_id)

    start: Optional[time] = data.get("start_time")
    end: Optional[time] = data.get("end_time")
    hours = data.get("duration_hours")
    if start is not None and end is None:
        end = _end_from_duration(start, hours)
    if start is not None:
        check_range(engine.policy, start, end)
        hours = Decimal(to_minutes(end) - to_minutes(start)) / Decimal(60)
    else:
        hours = Decimal(hours)
        if hours < engine.policy.min_booking_hours or hours > engine.policy.max_booking_hours:
            raise InvalidRangeError(
                f"Bookings must last between {engine.policy.min_booking_hours} and "
                f"{engine.policy.max_booking_hours} hours"
            )

    requested_date = data["requested_date"]
    if start is not None:
        check_in_future(engine.policy, requested_date, start)
    elif requested_date < engine.policy.now().date():
        raise InvalidRangeError(
            "Requested date must be today or in the future",
            requested_date=requested_date.isoformat(),
        )

    service_type = data.get("service_type")
    if service_type and service_type not in (application.services_offered or []):
        raise InvalidServiceError(f"'{service_type}' is not offered by this companion")

    request = BookingRequest(
        client_id=client.id,
        companion_id=companion_id,
        requested_date=requested_date,
        start_time=start,
        end_time=end,
        duration_hours=hours.quantize(CENTS),
        service_type=service_type,
        extra_amount=data.get("extra_amount") or Decimal("0"),
        meeting_type=MeetingType(data.get("meeting_type") or MeetingType.IN_PERSON),
        meeting_location=data.get("meeting_location"),
        special_requests=data.get("special_requests"),
        status=RequestStatus.PENDING,
    )
    db.add(request)
    await db.flush()

    enqueue_event(
        db,
        EventType.BOOKING_REQUEST_CREATED,
        companion_id,
        {
            "request_id": str(request.id),
            "client_id": str(client.id),
            "requested_date": request.requested_date.isoformat(),
        },
    )
    await db.commit()
    await relay_outbox(db)
    logger.info(f"Booking request {request.id} sent by {client.id} to {companion_id}")
    return request


async def _get_received_request(engine: BookingEngine, request_id: UUID, companion: User) -> BookingRequest:
    result = await engine.db.execute(
        select(BookingRequest).where(
            BookingRequest.id == request_id,
            BookingRequest.companion_id == companion.id,
        )
    )
    request = result.scalar_one_or_none()
    if not request:
        raise NotFoundError("Booking request not found")
    return request


async def accept_request(
    engine: BookingEngine,
    request_id: UUID,
    companion: User,
    start: Optional[time] = None,
    end: Optional[time] = None,
    response: Optional[str] = None,
) -> Tuple[BookingRequest, Booking]:
    request = await _get_received_request(engine, request_id, companion)
    if request.status != RequestStatus.PENDING:
        raise InvalidTransitionError(request.status, RequestStatus.ACCEPTED)

    start = start or request.start_time
    if start is None:
        raise InvalidRangeError("A start time is required to accept this request")
    if end is None:
        end = request.end_time if start == request.start_time and request.end_time else None
    if end is None:
        end = _end_from_duration(start, request.duration_hours)

    result = await engine.db.execute(select(User).where(User.id == request.client_id))
    client = result.scalar_one()

    booking = await engine.create_booking(
        client=client,
        companion_id=companion.id,
        booking_date=request.requested_date,
        start=start,
        end=end,
        meeting_type=request.meeting_type,
        meeting_location=request.meeting_location,
        service_type=request.service_type,
        special_requests=request.special_requests,
        extra_amount=request.extra_amount,
        source_request=request,
        companion_response=response,
    )
    logger.info(f"Booking request {request.id} accepted as booking {booking.id}")
    return request, booking


async def reject_request(
    engine: BookingEngine,
    request_id: UUID,
    companion: User,
    response: Optional[str] = None,
) -> BookingRequest:
    """Idempotent: rejecting an already rejected request returns it unchanged."""
    db = engine.db
    request = await _get_received_request(engine, request_id, companion)
    if request.status == RequestStatus.REJECTED:
        return request
    if request.status != RequestStatus.PENDING:
        raise InvalidTransitionError(request.status, RequestStatus.REJECTED)

    request.status = RequestStatus.REJECTED
    request.companion_response = response
    request.responded_at = datetime.now(timezone.utc)
    enqueue_event(
        db,
        EventType.BOOKING_REQUEST_RESPONDED,
        request.client_id,
        {"request_id": str(request.id), "status": RequestStatus.REJECTED.value},
    )
    await db.commit()
    await relay_outbox(db)
    return request


async def list_sent(engine: BookingEngine, client: User) -> List[BookingRequest]:
    result = await engine.db.execute(
        select(BookingRequest)
        .where(BookingRequest.client_id == client.id)
        .order_by(BookingRequest.created_at.desc())
    )
    return list(result.scalars().all())


async def list_received(
    engine: BookingEngine, companion: User, status: Optional[RequestStatus] = None
) -> List[BookingRequest]:
    query = select(BookingRequest).where(BookingRequest.companion_id == companion.id)
    if status is not None:
        query = query.where(BookingRequest.status == status)
    result = await engine.db.execute(query.order_by(BookingRequest.created_at.desc()))
    return list(result.scalars().all())

