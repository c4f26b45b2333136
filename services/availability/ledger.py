"""
services/availability/ledger.py
Availability ledger: a companion's weekly recurring windows.

Invariant: for one (companion, day_of_week) no two slots overlap on the
half-open minute-of-day interval. Mutations for a given day are serialized
with a Redis lock so two concurrent edits cannot both pass the overlap check.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date, time
from typing import Iterable, List, Optional
from uuid import UUID

from fastapi import Depends
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.policy import BookingPolicy, get_booking_policy
from config.redis_client import LockNotAcquired, RedisCache, get_redis
from services.verification.gate import ensure_companion_approved
from shared.models.models import AvailabilitySlot, Booking, BookingStatus, DayOfWeek, User
from shared.utils.exceptions import (
    InvalidRangeError,
    InvalidServiceError,
    NotFoundError,
    OverlapError,
)
from shared.utils.timeslots import find_overlap, from_minutes, subtract, to_minutes

logger = logging.getLogger(__name__)


def _fmt(value: time) -> str:
    return value.strftime("%H:%M")


def _check_range(start: time, end: time) -> None:
    if to_minutes(start) >= to_minutes(end):
        raise InvalidRangeError(
            f"Start time {_fmt(start)} must be before end time {_fmt(end)}",
            start_time=_fmt(start),
            end_time=_fmt(end),
        )


def _check_services(services: Iterable[str], registered: Iterable[str]) -> List[str]:
    wanted = {getattr(s, "value", s) for s in services}
    unknown = sorted(wanted - set(registered))
    if unknown:
        raise InvalidServiceError(
            f"Not in your registered services: {', '.join(unknown)}",
            invalid_services=unknown,
        )
    return sorted(wanted)


def _overlap_error(slot: AvailabilitySlot) -> OverlapError:
    return OverlapError(
        f"This time overlaps with another slot ({_fmt(slot.start_time)} - {_fmt(slot.end_time)})",
        conflicting_slot={
            # slots staged by replace_week have no id until flush
            "id": str(slot.id) if slot.id else None,
            "day_of_week": slot.day_of_week.value,
            "start_time": _fmt(slot.start_time),
            "end_time": _fmt(slot.end_time),
        },
    )


def _find_colliding(
    start: time, end: time, others: Iterable[AvailabilitySlot], exclude: Optional[AvailabilitySlot] = None
) -> Optional[AvailabilitySlot]:
    hit = find_overlap(
        (to_minutes(start), to_minutes(end)),
        (
            (slot, to_minutes(slot.start_time), to_minutes(slot.end_time))
            for slot in others
            if slot is not exclude
        ),
    )
    return hit[0] if hit else None


class AvailabilityLedger:
    def __init__(self, db: AsyncSession, cache: RedisCache, policy: BookingPolicy):
        self.db = db
        self.cache = cache
        self.policy = policy

    # ── Locking ──────────────────────────────────────────────

    @asynccontextmanager
    async def _day_lock(self, companion_id: UUID, day: DayOfWeek):
        key = self.cache.slot_lock_key(companion_id, day.value)
        try:
            async with self.cache.hold_lock(
                key, self.policy.lock_ttl_seconds, self.policy.lock_wait_seconds
            ):
                yield
        except LockNotAcquired:
            logger.warning(f"Slot edit contention on {key}")
            raise OverlapError("Another change to this day's availability is in progress")

    # ── Reads ────────────────────────────────────────────────

    async def list_slots(
        self,
        companion_id: UUID,
        day: Optional[DayOfWeek] = None,
        only_available: bool = False,
    ) -> List[AvailabilitySlot]:
        query = select(AvailabilitySlot).where(AvailabilitySlot.companion_id == companion_id)
        if day is not None:
            query = query.where(AvailabilitySlot.day_of_week == day)
        if only_available:
            query = query.where(AvailabilitySlot.is_available == True)  # noqa: E712
        result = await self.db.execute(query)
        slots = list(result.scalars().all())
        order = list(DayOfWeek)
        slots.sort(key=lambda s: (order.index(s.day_of_week), to_minutes(s.start_time)))
        return slots

    async def _get_owned_slot(self, companion: User, slot_id: UUID) -> AvailabilitySlot:
        result = await self.db.execute(
            select(AvailabilitySlot).where(
                AvailabilitySlot.id == slot_id,
                AvailabilitySlot.companion_id == companion.id,
            )
        )
        slot = result.scalar_one_or_none()
        if not slot:
            raise NotFoundError("Availability slot not found")
        return slot

    # ── Writes ───────────────────────────────────────────────

    async def add_slot(
        self,
        companion: User,
        day: DayOfWeek,
        start: time,
        end: time,
        services: Iterable[str] = (),
        is_available: bool = True,
    ) -> AvailabilitySlot:
        day = DayOfWeek(day)
        application = await ensure_companion_approved(self.db, companion)
        _check_range(start, end)
        tags = _check_services(services, application.services_offered)

        async with self._day_lock(companion.id, day):
            colliding = _find_colliding(start, end, await self.list_slots(companion.id, day))
            if colliding:
                raise _overlap_error(colliding)

            slot = AvailabilitySlot(
                companion_id=companion.id,
                day_of_week=day,
                start_time=start,
                end_time=end,
                is_available=is_available,
                services=tags,
            )
            self.db.add(slot)
            await self.db.commit()

        logger.info(f"Companion {companion.id} added slot {day.value} {_fmt(start)}-{_fmt(end)}")
        return slot

    async def update_slot(
        self,
        companion: User,
        slot_id: UUID,
        start: Optional[time] = None,
        end: Optional[time] = None,
        services: Optional[Iterable[str]] = None,
        is_available: Optional[bool] = None,
    ) -> AvailabilitySlot:
        application = await ensure_companion_approved(self.db, companion)
        slot = await self._get_owned_slot(companion, slot_id)

        new_start = start if start is not None else slot.start_time
        new_end = end if end is not None else slot.end_time
        _check_range(new_start, new_end)
        tags = (
            _check_services(services, application.services_offered)
            if services is not None
            else None
        )

        async with self._day_lock(companion.id, slot.day_of_week):
            siblings = await self.list_slots(companion.id, slot.day_of_week)
            colliding = _find_colliding(new_start, new_end, siblings, exclude=slot)
            if colliding:
                raise _overlap_error(colliding)

            slot.start_time = new_start
            slot.end_time = new_end
            if tags is not None:
                slot.services = tags
            if is_available is not None:
                slot.is_available = is_available
            await self.db.commit()

        return slot

    async def remove_slot(self, companion: User, slot_id: UUID) -> None:
        """Unconditional. Bookings already made against this window are not touched."""
        slot = await self._get_owned_slot(companion, slot_id)
        await self.db.delete(slot)
        await self.db.commit()
        logger.info(f"Companion {companion.id} removed slot {slot_id}")

    async def replace_week(self, companion: User, slots: List[dict]) -> List[AvailabilitySlot]:
        """Swap the whole weekly schedule in one transaction."""
        application = await ensure_companion_approved(self.db, companion)

        accepted: List[AvailabilitySlot] = []
        for entry in slots:
            day = DayOfWeek(entry["day_of_week"])
            _check_range(entry["start_time"], entry["end_time"])
            tags = _check_services(entry.get("services", ()), application.services_offered)
            same_day = [s for s in accepted if s.day_of_week == day]
            colliding = _find_colliding(entry["start_time"], entry["end_time"], same_day)
            if colliding:
                raise _overlap_error(colliding)
            accepted.append(
                AvailabilitySlot(
                    companion_id=companion.id,
                    day_of_week=day,
                    start_time=entry["start_time"],
                    end_time=entry["end_time"],
                    is_available=entry.get("is_available", True),
                    services=tags,
                )
            )

        async with AsyncExitStack() as stack:
            for day in DayOfWeek:
                await stack.enter_async_context(self._day_lock(companion.id, day))
            await self.db.execute(
                delete(AvailabilitySlot).where(AvailabilitySlot.companion_id == companion.id)
            )
            self.db.add_all(accepted)
            await self.db.commit()

        logger.info(f"Companion {companion.id} replaced weekly schedule ({len(accepted)} slots)")
        return await self.list_slots(companion.id)

    async def ensure_services_cover_slots(self, companion_id: UUID, services: Iterable[str]) -> None:
        """Refuse to drop a service while one of the companion's slots is still tagged with it."""
        offered = {getattr(s, "value", s) for s in services}
        stranded = [
            slot
            for slot in await self.list_slots(companion_id)
            if set(slot.services or []) - offered
        ]
        if stranded:
            dropped = sorted({tag for slot in stranded for tag in slot.services} - offered)
            raise InvalidServiceError(
                f"Remove {', '.join(dropped)} from your availability slots first",
                invalid_services=dropped,
                slot_ids=[str(slot.id) for slot in stranded],
            )

    # ── Derived views ────────────────────────────────────────

    async def weekly_pattern(self, companion_id: UUID) -> dict:
        slots = await self.list_slots(companion_id, only_available=True)
        days = {day: [] for day in DayOfWeek}
        for slot in slots:
            days[slot.day_of_week].append(
                {
                    "start_time": slot.start_time,
                    "end_time": slot.end_time,
                    "services": list(slot.services or []),
                }
            )
        available_days = [day for day, windows in days.items() if windows]
        return {
            "companion_id": companion_id,
            "days": days,
            "summary": {
                "total_slots_per_week": len(slots),
                "days_available": len(available_days),
                "available_days": available_days,
            },
        }

    async def open_windows(self, companion_id: UUID, on_date: date) -> List[dict]:
        """Available windows for a concrete date with existing bookings carved out."""
        day = DayOfWeek.for_date(on_date)
        slots = await self.list_slots(companion_id, day, only_available=True)

        result = await self.db.execute(
            select(Booking.start_time, Booking.end_time).where(
                Booking.companion_id == companion_id,
                Booking.booking_date == on_date,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
        taken = [(to_minutes(s), to_minutes(e)) for s, e in result.all()]

        windows = []
        for slot in slots:
            span = (to_minutes(slot.start_time), to_minutes(slot.end_time))
            for start, end in subtract(span, taken):
                windows.append(
                    {
                        "start_time": from_minutes(start),
                        "end_time": from_minutes(end),
                        "services": list(slot.services or []),
                    }
                )
        return windows


async def get_availability_ledger(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> AvailabilityLedger:
    return AvailabilityLedger(db, RedisCache(redis), policy)
