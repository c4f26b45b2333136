"""
services/booking/engine.py
Booking engine: creation, lifecycle transitions and read models.

Creation checks, in order:
    1. self-booking                  -> SelfBookingError
    2. client verification gate      -> NotVerifiedError
    3. meeting type, time range, duration bounds, start in the future
                                     -> ValidationError / InvalidRangeError
    4. (under the companion/date lock)
       approved companion            -> NotFoundError
       service offered by companion  -> InvalidServiceError
       inside an available slot      -> OutsideAvailabilityError
       service allowed in that slot  -> InvalidServiceError
       no overlap with live bookings -> DoubleBookedError
The lock is a Redis SET NX mutex on (companion_id, booking_date); on
PostgreSQL the companion's approved application row is also locked FOR UPDATE.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.policy import BookingPolicy, get_booking_policy
from config.redis_client import LockNotAcquired, RedisCache, get_redis
from services.auth.roles import require_acting_role
from services.verification.gate import ensure_client_can_book, get_catalog_companion
from shared.models.models import (
    AvailabilitySlot,
    Booking,
    BookingActor,
    BookingAuditLog,
    BookingRequest,
    BookingStatus,
    DayOfWeek,
    EventType,
    MeetingType,
    PaymentMethod,
    PaymentStatus,
    RequestStatus,
    Role,
    User,
)
from shared.utils.events import enqueue_event, relay_outbox
from shared.utils.exceptions import (
    DoubleBookedError,
    InvalidRangeError,
    InvalidServiceError,
    InvalidTransitionError,
    NotFoundError,
    NotPermittedError,
    OutsideAvailabilityError,
    RoleNotActive,
    RoleNotGranted,
    SelfBookingError,
    ValidationError,
)
from shared.utils.timeslots import contains, duration_hours, money, overlaps, to_minutes

logger = logging.getLogger(__name__)


# ── State machine ─────────────────────────────────────────────

TRANSITIONS = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED): {BookingActor.COMPANION},
    (BookingStatus.PENDING, BookingStatus.CANCELLED): {
        BookingActor.COMPANION, BookingActor.CLIENT, BookingActor.SYSTEM,
    },
    (BookingStatus.CONFIRMED, BookingStatus.COMPLETED): {BookingActor.COMPANION, BookingActor.SYSTEM},
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED): {
        BookingActor.COMPANION, BookingActor.CLIENT, BookingActor.SYSTEM,
    },
    (BookingStatus.CONFIRMED, BookingStatus.NO_SHOW): {BookingActor.COMPANION, BookingActor.SYSTEM},
}


def check_transition(current: BookingStatus, target: BookingStatus, actor: BookingActor) -> None:
    allowed = TRANSITIONS.get((current, target))
    if allowed is None:
        raise InvalidTransitionError(current, target)
    if actor not in allowed:
        raise NotPermittedError(
            f"The {actor.value} cannot move a booking from '{current.value}' to '{target.value}'"
        )


# ── Pricing ───────────────────────────────────────────────────

@dataclass(frozen=True)
class BookingQuote:
    duration_hours: Decimal
    hourly_rate: Decimal
    extra_amount: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    companion_earnings: Decimal


def quote(policy: BookingPolicy, start: time, end: time, hourly_rate, extra_amount=0) -> BookingQuote:
    minutes = to_minutes(end) - to_minutes(start)
    rate = Decimal(str(hourly_rate))
    extra = money(Decimal(str(extra_amount or 0)))
    total = money(rate * Decimal(minutes) / Decimal(60) + extra)
    fee = money(total * policy.platform_fee_percent / Decimal(100))
    return BookingQuote(
        duration_hours=duration_hours(start, end),
        hourly_rate=money(rate),
        extra_amount=extra,
        total_amount=total,
        platform_fee=fee,
        companion_earnings=total - fee,
    )


def _fmt(value: time) -> str:
    return value.strftime("%H:%M")


def check_range(policy: BookingPolicy, start: time, end: time) -> None:
    start_min, end_min = to_minutes(start), to_minutes(end)
    if start_min >= end_min:
        raise InvalidRangeError(
            f"Start time {_fmt(start)} must be before end time {_fmt(end)}",
            start_time=_fmt(start),
            end_time=_fmt(end),
        )
    minutes = Decimal(end_min - start_min)
    if minutes < policy.min_booking_hours * 60 or minutes > policy.max_booking_hours * 60:
        raise InvalidRangeError(
            f"Bookings must last between {policy.min_booking_hours} and "
            f"{policy.max_booking_hours} hours",
            min_hours=str(policy.min_booking_hours),
            max_hours=str(policy.max_booking_hours),
        )


def check_in_future(policy: BookingPolicy, booking_date: date, start: time) -> None:
    starts_at = datetime.combine(booking_date, start)
    if starts_at <= policy.now():
        raise InvalidRangeError(
            "Booking date and time must be in the future",
            booking_date=booking_date.isoformat(),
            start_time=_fmt(start),
        )


def _coerce_meeting_type(value) -> MeetingType:
    try:
        return MeetingType(value)
    except ValueError:
        raise ValidationError("Meeting type must be either in_person or virtual")


# ── Engine ────────────────────────────────────────────────────

class BookingEngine:
    def __init__(self, db: AsyncSession, cache: RedisCache, policy: BookingPolicy):
        self.db = db
        self.cache = cache
        self.policy = policy

    # ── Creation ─────────────────────────────────────────────

    async def create_booking(
        self,
        client: User,
        companion_id: UUID,
        booking_date: date,
        start: time,
        end: time,
        meeting_type=MeetingType.IN_PERSON,
        meeting_location: Optional[str] = None,
        service_type: Optional[str] = None,
        special_requests: Optional[str] = None,
        extra_amount=Decimal("0"),
        source_request: Optional[BookingRequest] = None,
        companion_response: Optional[str] = None,
    ) -> Booking:
        if client.id == companion_id:
            raise SelfBookingError()
        await ensure_client_can_book(self.db, client)

        meeting_type = _coerce_meeting_type(meeting_type)
        service_type = getattr(service_type, "value", service_type)
        check_range(self.policy, start, end)
        check_in_future(self.policy, booking_date, start)

        key = self.cache.booking_lock_key(companion_id, booking_date)
        try:
            async with self.cache.hold_lock(
                key, self.policy.lock_ttl_seconds, self.policy.lock_wait_seconds
            ):
                booking = await self._create_locked(
                    client,
                    companion_id,
                    booking_date,
                    start,
                    end,
                    meeting_type,
                    meeting_location,
                    service_type,
                    special_requests,
                    extra_amount,
                    source_request,
                    companion_response,
                )
        except LockNotAcquired:
            logger.warning(f"Booking lock contention on {key}")
            raise DoubleBookedError(
                "Another booking for this companion and date is being processed. "
                "Please pick another time or try again."
            )

        await relay_outbox(self.db)
        return booking

    async def _create_locked(
        self,
        client: User,
        companion_id: UUID,
        booking_date: date,
        start: time,
        end: time,
        meeting_type: MeetingType,
        meeting_location: Optional[str],
        service_type: Optional[str],
        special_requests: Optional[str],
        extra_amount,
        source_request: Optional[BookingRequest],
        companion_response: Optional[str],
    ) -> Booking:
        _, application = await get_catalog_companion(self.db, companion_id, for_update=True)

        if service_type and service_type not in (application.services_offered or []):
            raise InvalidServiceError(f"'{service_type}' is not offered by this companion")

        await self._check_within_availability(companion_id, booking_date, start, end, service_type)
        await self._check_not_double_booked(companion_id, booking_date, start, end)

        q = quote(self.policy, start, end, application.hourly_rate, extra_amount)
        booking = Booking(
            client_id=client.id,
            companion_id=companion_id,
            booking_date=booking_date,
            start_time=start,
            end_time=end,
            duration_hours=q.duration_hours,
            meeting_type=meeting_type,
            meeting_location=meeting_location,
            service_type=service_type,
            special_requests=special_requests,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            hourly_rate=q.hourly_rate,
            extra_amount=q.extra_amount,
            total_amount=q.total_amount,
            platform_fee=q.platform_fee,
            companion_earnings=q.companion_earnings,
            source_request_id=source_request.id if source_request else None,
        )
        self.db.add(booking)
        await self.db.flush()

        self._log_status_change(booking, None, BookingStatus.PENDING, client, BookingActor.CLIENT)

        if source_request is not None:
            source_request.status = RequestStatus.ACCEPTED
            source_request.booking_id = booking.id
            source_request.companion_response = companion_response
            source_request.responded_at = datetime.now(timezone.utc)
            enqueue_event(
                self.db,
                EventType.BOOKING_REQUEST_RESPONDED,
                source_request.client_id,
                {
                    "request_id": str(source_request.id),
                    "status": RequestStatus.ACCEPTED.value,
                    "booking_id": str(booking.id),
                },
                booking_id=booking.id,
            )

        enqueue_event(
            self.db,
            EventType.BOOKING_CREATED,
            companion_id,
            {
                "booking_id": str(booking.id),
                "client_id": str(client.id),
                "booking_date": booking_date.isoformat(),
                "start_time": _fmt(start),
                "end_time": _fmt(end),
                "total_amount": str(q.total_amount),
            },
            booking_id=booking.id,
        )
        await self.db.commit()

        logger.info(
            f"Booking {booking.id} created: client={client.id} companion={companion_id} "
            f"{booking_date} {_fmt(start)}-{_fmt(end)} total={q.total_amount}"
        )
        return booking

    async def _check_within_availability(
        self,
        companion_id: UUID,
        booking_date: date,
        start: time,
        end: time,
        service_type: Optional[str],
    ) -> None:
        day = DayOfWeek.for_date(booking_date)
        result = await self.db.execute(
            select(AvailabilitySlot).where(
                AvailabilitySlot.companion_id == companion_id,
                AvailabilitySlot.day_of_week == day,
                AvailabilitySlot.is_available == True,  # noqa: E712
            )
        )
        wanted = (to_minutes(start), to_minutes(end))
        containing = [
            slot
            for slot in result.scalars().all()
            if contains(to_minutes(slot.start_time), to_minutes(slot.end_time), *wanted)
        ]
        if not containing:
            raise OutsideAvailabilityError(
                f"The companion is not available on {day.value} {_fmt(start)}-{_fmt(end)}",
                day_of_week=day.value,
            )
        if service_type and not any(
            not slot.services or service_type in slot.services for slot in containing
        ):
            raise InvalidServiceError(
                f"'{service_type}' is not offered during {_fmt(start)}-{_fmt(end)} on {day.value}"
            )

    async def _check_not_double_booked(
        self, companion_id: UUID, booking_date: date, start: time, end: time
    ) -> None:
        result = await self.db.execute(
            select(Booking).where(
                Booking.companion_id == companion_id,
                Booking.booking_date == booking_date,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
        for other in result.scalars().all():
            if overlaps(
                to_minutes(start), to_minutes(end),
                to_minutes(other.start_time), to_minutes(other.end_time),
            ):
                raise DoubleBookedError(
                    conflicting_booking={
                        "start_time": _fmt(other.start_time),
                        "end_time": _fmt(other.end_time),
                    }
                )

    # ── Authorization helpers ────────────────────────────────

    @staticmethod
    def actor_for(booking: Booking, user: User) -> BookingActor:
        """Map the user's persisted active role onto a booking party."""
        role = user.active_role
        if role not in user.roles:
            raise RoleNotGranted()
        if role == Role.ADMIN:
            return BookingActor.SYSTEM
        if role == Role.COMPANION and booking.companion_id == user.id:
            return BookingActor.COMPANION
        if role == Role.CLIENT and booking.client_id == user.id:
            return BookingActor.CLIENT
        if user.id == booking.companion_id:
            raise RoleNotActive("Switch your active role to companion to manage this booking")
        if user.id == booking.client_id:
            raise RoleNotActive("Switch your active role to client to manage this booking")
        raise NotFoundError("Booking not found")

    async def _get_booking_or_404(self, booking_id: UUID, for_update: bool = False) -> Booking:
        query = select(Booking).where(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    async def get_booking_for(self, booking_id: UUID, user: User) -> Booking:
        booking = await self._get_booking_or_404(booking_id)
        self.actor_for(booking, user)
        return booking

    # ── Transitions ──────────────────────────────────────────

    def _log_status_change(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        changed_by: User,
        actor: BookingActor,
        reason: Optional[str] = None,
    ) -> None:
        """Append an immutable audit log entry for every status change."""
        self.db.add(
            BookingAuditLog(
                booking_id=booking.id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                changed_by_id=changed_by.id,
                actor=actor.value,
                reason=reason,
            )
        )

    async def transition(
        self,
        booking_id: UUID,
        user: User,
        target: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        booking = await self._get_booking_or_404(booking_id, for_update=True)
        actor = self.actor_for(booking, user)
        current = booking.status
        check_transition(current, target, actor)

        now = datetime.now(timezone.utc)
        booking.status = target
        if target == BookingStatus.CONFIRMED:
            booking.confirmed_at = now
        elif target == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif target == BookingStatus.CANCELLED:
            booking.cancelled_at = now
            booking.cancelled_by = actor
            booking.cancellation_reason = reason

        self._log_status_change(booking, current, target, user, actor, reason)

        payload = {
            "booking_id": str(booking.id),
            "from_status": current.value,
            "to_status": target.value,
            "actor": actor.value,
        }
        if actor != BookingActor.CLIENT:
            enqueue_event(self.db, EventType.BOOKING_STATUS_CHANGED, booking.client_id, payload, booking.id)
        if actor != BookingActor.COMPANION:
            enqueue_event(self.db, EventType.BOOKING_STATUS_CHANGED, booking.companion_id, payload, booking.id)
        await self.db.commit()
        await relay_outbox(self.db)

        logger.info(f"Booking {booking.id}: {current.value} -> {target.value} by {actor.value}")
        return booking

    async def update_payment_status(
        self,
        booking_id: UUID,
        payment_status: PaymentStatus,
        payment_method: Optional[PaymentMethod] = None,
    ) -> Booking:
        """Bookkeeping only; capture and payout happen outside this service."""
        booking = await self._get_booking_or_404(booking_id, for_update=True)
        booking.payment_status = PaymentStatus(payment_status)
        if payment_method is not None:
            booking.payment_method = PaymentMethod(payment_method)
        await self.db.flush()
        return booking

    # ── Queries ──────────────────────────────────────────────

    async def list_for_user(
        self,
        user: User,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> List[Booking]:
        role = require_acting_role(user, Role.CLIENT, Role.COMPANION, Role.ADMIN)
        query = select(Booking)
        if role == Role.COMPANION:
            query = query.where(Booking.companion_id == user.id)
        elif role == Role.CLIENT:
            query = query.where(Booking.client_id == user.id)
        if status is not None:
            query = query.where(Booking.status == status)
        query = (
            query.order_by(Booking.booking_date.desc(), Booking.start_time.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_pending_approvals(
        self, companion_id: UUID
    ) -> Tuple[List[Booking], List[BookingRequest]]:
        """Everything waiting on the companion: pending bookings and pending requests."""
        bookings = await self.db.execute(
            select(Booking)
            .where(Booking.companion_id == companion_id, Booking.status == BookingStatus.PENDING)
            .order_by(Booking.booking_date.asc(), Booking.start_time.asc())
        )
        requests = await self.db.execute(
            select(BookingRequest)
            .where(
                BookingRequest.companion_id == companion_id,
                BookingRequest.status == RequestStatus.PENDING,
            )
            .order_by(BookingRequest.created_at.asc())
        )
        return list(bookings.scalars().all()), list(requests.scalars().all())

    async def bookings_in_range(
        self, companion_id: UUID, start_date: date, end_date: date
    ) -> List[Booking]:
        if start_date > end_date:
            raise InvalidRangeError("start_date must not be after end_date")
        result = await self.db.execute(
            select(Booking)
            .where(
                Booking.companion_id == companion_id,
                Booking.booking_date >= start_date,
                Booking.booking_date <= end_date,
                Booking.status != BookingStatus.CANCELLED,
            )
            .order_by(Booking.booking_date.asc(), Booking.start_time.asc())
        )
        return list(result.scalars().all())


async def get_booking_engine(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> BookingEngine:
    return BookingEngine(db, RedisCache(redis), policy)
