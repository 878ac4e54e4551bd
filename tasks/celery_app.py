"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=2

Beat scheduler (periodic outbox flush):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.signals import setup_logging

from config.log import configure_logging
from config.settings import settings

celery_app = Celery(
    "booking_platform",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.outbox_tasks",
    ],
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Acknowledge after execution so a crashed worker's flush is redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    task_routes={
        "tasks.outbox_tasks.*": {"queue": "outbox"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Redeliver outbox messages whose inline delivery failed or never ran
    "flush-booking-outbox": {
        "task": "tasks.outbox_tasks.flush_outbox",
        "schedule": settings.OUTBOX_FLUSH_INTERVAL_SECONDS,
        "args": ("bookings",),
    },
    "flush-payment-outbox": {
        "task": "tasks.outbox_tasks.flush_outbox",
        "schedule": settings.OUTBOX_FLUSH_INTERVAL_SECONDS,
        "args": ("payments",),
    },
}
