"""
tasks/celery_app.py
Celery application used as a producer for outbound domain events.

The notifier worker lives outside this service and consumes
`notifier.handle_event` from the notifications queue:
    celery -A notifier worker -Q notifications --loglevel=info
"""

from celery import Celery

from config.settings import settings

celery_app = Celery(
    "companion_booking",
    broker=settings.CELERY_BROKER_URL,
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,

    # Publishing must fail fast; the outbox row keeps the event if the broker is down
    broker_connection_retry=False,
    broker_connection_timeout=2,
    task_publish_retry=False,

    # Routing: everything addressed to the notifier goes to its own queue
    task_routes={
        "notifier.*": {"queue": settings.EVENTS_QUEUE},
    },
    task_default_queue="default",
)
