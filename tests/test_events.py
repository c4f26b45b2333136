"""
tests/test_events.py
Tests for the domain event outbox: events leave only after their transaction commits.
"""

from datetime import date, time, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.policy import BookingPolicy
from config.redis_client import RedisCache
from services.booking.engine import BookingEngine
from shared.models.models import Booking, DomainEvent, EventType, User
from shared.utils.events import enqueue_event, relay_outbox

MONDAY = date(2024, 6, 3)


@pytest.mark.asyncio
async def test_rolled_back_booking_sends_nothing(
    db: AsyncSession, redis, policy: BookingPolicy, client_user: User, companion_user: User,
    slot, published_events, monkeypatch,
):
    """If the booking never commits, the notifier never hears about it."""
    engine = BookingEngine(db, RedisCache(redis), policy)
    lock_key = RedisCache.booking_lock_key(companion_user.id, MONDAY)
    client_id, companion_id = client_user.id, companion_user.id

    async def lost_connection():
        raise RuntimeError("connection lost")

    monkeypatch.setattr(db, "commit", lost_connection)

    with pytest.raises(RuntimeError):
        await engine.create_booking(
            client=client_user,
            companion_id=companion_id,
            booking_date=MONDAY,
            start=time(12, 0),
            end=time(14, 0),
        )

    assert published_events == []
    assert await redis.exists(lock_key) == 0

    await db.rollback()
    assert await db.scalar(select(func.count(Booking.id)).where(Booking.client_id == client_id)) == 0
    assert await db.scalar(select(func.count(DomainEvent.id))) == 0


@pytest.mark.asyncio
async def test_refused_event_waits_for_next_relay(
    db: AsyncSession, redis, policy: BookingPolicy, client_user: User, companion_user: User,
    slot, monkeypatch,
):
    monkeypatch.setattr("shared.utils.events.publish_event", lambda message: False)
    engine = BookingEngine(db, RedisCache(redis), policy)
    booking = await engine.create_booking(
        client=client_user,
        companion_id=companion_user.id,
        booking_date=MONDAY,
        start=time(12, 0),
        end=time(14, 0),
    )

    event = await db.scalar(select(DomainEvent).where(DomainEvent.booking_id == booking.id))
    assert event.event_type == EventType.BOOKING_CREATED
    assert event.published is False

    delivered = []

    def accept(message: dict) -> bool:
        delivered.append(message)
        return True

    monkeypatch.setattr("shared.utils.events.publish_event", accept)
    assert await relay_outbox(db) == 1
    assert [m["id"] for m in delivered] == [str(event.id)]
    assert event.published is True
    assert event.published_at is not None

    assert await relay_outbox(db) == 0


@pytest.mark.asyncio
async def test_relay_stops_at_first_refusal(db: AsyncSession, client_user: User, monkeypatch):
    """A later event never overtakes one the broker refused."""
    first = enqueue_event(db, EventType.APPLICATION_REVIEWED, client_user.id, {"n": 1})
    second = enqueue_event(db, EventType.APPLICATION_REVIEWED, client_user.id, {"n": 2})
    third = enqueue_event(db, EventType.APPLICATION_REVIEWED, client_user.id, {"n": 3})
    second.created_at = first.created_at + timedelta(seconds=1)
    third.created_at = first.created_at + timedelta(seconds=2)
    await db.commit()

    calls = []

    def flaky(message: dict) -> bool:
        calls.append(message["payload"]["n"])
        return len(calls) == 1

    monkeypatch.setattr("shared.utils.events.publish_event", flaky)
    assert await relay_outbox(db) == 1
    assert calls == [1, 2]
    assert (first.published, second.published, third.published) == (True, False, False)

    monkeypatch.setattr("shared.utils.events.publish_event", lambda message: True)
    assert await relay_outbox(db) == 2
    assert second.published and third.published


@pytest.mark.asyncio
async def test_enqueue_does_not_publish(db: AsyncSession, client_user: User, published_events):
    enqueue_event(db, EventType.BOOKING_REQUEST_CREATED, client_user.id, {})
    await db.commit()
    assert published_events == []
