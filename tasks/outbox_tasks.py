"""
tasks/outbox_tasks.py
Celery tasks that deliver pending outbox messages for the services
that own an outbox (bookings, payments).

Safe to run concurrently with the inline dispatch: messages are claimed
under a lease before delivery, and receivers dedupe on Idempotency-Key.
"""

import asyncio
import logging

from shared.utils.outbox import OutboxDispatcher
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def get_dispatcher(service_name: str) -> OutboxDispatcher:
    if service_name == "bookings":
        from services.booking.router import booking_outbox
        return booking_outbox
    if service_name == "payments":
        from services.payment.router import payment_outbox
        return payment_outbox
    raise ValueError(f"Service {service_name!r} has no outbox")


async def _flush(service_name: str) -> dict:
    dispatcher = get_dispatcher(service_name)
    try:
        return await dispatcher.dispatch_pending()
    finally:
        # Each task run gets a fresh event loop; pooled connections can't outlive it
        await dispatcher.database.dispose()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=10)
def flush_outbox(self, service_name: str) -> dict:
    """Deliver every due message in `service_name`'s outbox."""
    try:
        summary = asyncio.run(_flush(service_name))
    except ValueError:
        raise
    except Exception as exc:
        logger.exception(f"flush_outbox({service_name}) failed")
        raise self.retry(exc=exc)

    if summary["delivered"] or summary["retrying"] or summary["dead"]:
        logger.info(f"flush_outbox({service_name}): {summary}")
    return summary
