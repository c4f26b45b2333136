"""
shared/utils/events.py
Outbound domain events (BookingCreated, BookingStatusChanged, ApplicationReviewed, ...).

Each event is written to the `domain_events` outbox in the caller's transaction
and only handed to the external notifier through Celery once that transaction
has committed, so a rolled-back change never produces a message. Publishing
failures are logged and leave the row unpublished for the next relay; they
never fail the calling operation.
"""

import logging
import uuid
from typing import Optional

from pybreaker import CircuitBreaker, CircuitBreakerError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import settings
from shared.models.models import DomainEvent, EventType, utcnow
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

notifier_breaker = CircuitBreaker(fail_max=5, reset_timeout=60, name="notifier")


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.1, max=1), reraise=True)
def _send(message: dict) -> None:
    celery_app.send_task(
        settings.EVENTS_TASK_NAME,
        kwargs={"event": message},
        queue=settings.EVENTS_QUEUE,
    )


def publish_event(message: dict) -> bool:
    """Hand one event to the notifier. Returns True when the broker accepted it."""
    if not settings.EVENTS_PUBLISH_ENABLED:
        return False
    try:
        notifier_breaker.call(_send, message)
    except CircuitBreakerError:
        logger.warning(f"Notifier circuit open, event {message['id']} left in outbox")
        return False
    except Exception as exc:
        logger.warning(f"Failed to publish event {message['id']} ({message['type']}): {exc}")
        return False
    return True


def _to_message(event: DomainEvent) -> dict:
    return {
        "id": str(event.id),
        "type": event.event_type.value,
        "recipient_id": str(event.recipient_id) if event.recipient_id else None,
        "booking_id": str(event.booking_id) if event.booking_id else None,
        "payload": event.payload,
        "occurred_at": event.created_at.isoformat(),
    }


def enqueue_event(
    db: AsyncSession,
    event_type: EventType,
    recipient_id: Optional[uuid.UUID],
    payload: dict,
    booking_id: Optional[uuid.UUID] = None,
) -> DomainEvent:
    """Persist an outbox entry inside the caller's transaction. Nothing leaves the process here."""
    event = DomainEvent(
        id=uuid.uuid4(),
        event_type=event_type,
        recipient_id=recipient_id,
        booking_id=booking_id,
        payload=payload,
        published=False,
        created_at=utcnow(),
    )
    db.add(event)
    return event


async def relay_outbox(db: AsyncSession, limit: int = 100) -> int:
    """
    Publish committed, unpublished outbox rows in the order they were written.
    Call only after the transaction that enqueued them has committed.

    Stops at the first event the broker refuses so later events never overtake
    it; whatever is left goes out on the next relay. Returns the number sent.
    """
    result = await db.execute(
        select(DomainEvent)
        .where(DomainEvent.published == False)  # noqa: E712
        .order_by(DomainEvent.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    sent = 0
    for event in result.scalars().all():
        if not await run_in_threadpool(publish_event, _to_message(event)):
            break
        event.published = True
        event.published_at = utcnow()
        sent += 1
    await db.commit()
    if sent:
        logger.debug(f"Relayed {sent} outbox event(s)")
    return sent
