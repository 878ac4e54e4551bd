"""
shared/utils/outbox.py
Transactional outbox: cross-service side effects are written as rows in
the caller's own database, in the same transaction as the primary write,
and delivered afterwards by OutboxDispatcher.

Delivery rules:
- 2xx                         → delivered
- 4xx other than 408/429      → dead (retrying cannot help)
- anything else / no response → retried with exponential backoff,
                                dead after OUTBOX_MAX_ATTEMPTS
"""

import logging
from datetime import timedelta
from typing import Any, List, Optional, Type

import httpx
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import ServiceDatabase
from config.registry import ServiceRegistry
from config.settings import settings
from shared.models.models import OutboxMixin, OutboxStatus, utcnow
from shared.utils.http_client import ServiceClient

logger = logging.getLogger(__name__)

RETRYABLE_CLIENT_ERRORS = {408, 429}


def enqueue(
    db: AsyncSession,
    model: Type[OutboxMixin],
    target: str,
    path: str,
    payload: dict,
    method: str = "POST",
) -> OutboxMixin:
    """Stage a message on the current session. Committed with the caller's transaction."""
    message = model(target=target, method=method, path=path, payload=payload)
    db.add(message)
    return message


def backoff_seconds(attempts: int) -> float:
    """Delay before the next try after `attempts` failed deliveries."""
    delay = settings.OUTBOX_BACKOFF_BASE_SECONDS * (2 ** max(0, attempts - 1))
    return min(delay, settings.OUTBOX_BACKOFF_MAX_SECONDS)


class OutboxDispatcher:
    def __init__(
        self,
        database: ServiceDatabase,
        model: Type[OutboxMixin],
        caller: str,
        registry: Optional[ServiceRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.database = database
        self.model = model
        self.caller = caller
        self.registry = registry
        self.transport = transport

    def _due(self, now):
        model = self.model
        return or_(
            and_(model.status == OutboxStatus.PENDING, model.next_attempt_at <= now),
            # A dispatcher died mid-delivery; its lease has run out
            and_(model.status == OutboxStatus.DELIVERING, model.locked_until < now),
        )

    async def claim(self, limit: Optional[int] = None) -> List[int]:
        """
        Move due messages to DELIVERING under a lease. Each row is claimed
        with its own conditional UPDATE, so concurrent dispatchers never
        claim the same message.
        """
        model = self.model
        now = utcnow()
        claimed = []
        async with self.database.session() as db:
            result = await db.execute(
                select(model.id)
                .where(self._due(now))
                .order_by(model.id)
                .limit(limit or settings.OUTBOX_BATCH_SIZE)
            )
            for message_id in result.scalars().all():
                updated = await db.execute(
                    update(model)
                    .where(model.id == message_id, self._due(now))
                    .values(
                        status=OutboxStatus.DELIVERING,
                        locked_until=now + timedelta(seconds=settings.OUTBOX_LEASE_SECONDS),
                    )
                    .execution_options(synchronize_session=False)
                )
                if updated.rowcount == 1:
                    claimed.append(message_id)
        return claimed

    async def dispatch_pending(self) -> dict:
        """Deliver every due message once. Returns counts per outcome."""
        summary = {"delivered": 0, "retrying": 0, "dead": 0}
        claimed = await self.claim()
        if not claimed:
            return summary

        async with ServiceClient(self.caller, registry=self.registry, transport=self.transport) as client:
            for message_id in claimed:
                outcome = await self._deliver(client, message_id)
                summary[outcome] += 1

        logger.info(f"Outbox {self.model.__tablename__}: {summary}")
        return summary

    async def _deliver(self, client: ServiceClient, message_id: int) -> str:
        async with self.database.session() as db:
            message = await db.get(self.model, message_id)
            target, method, path = message.target, message.method, message.path
            payload: Any = message.payload
            key = message.idempotency_key

        try:
            response = await client.request(target, method, path, json=payload, idempotency_key=key)
        except (httpx.HTTPError, KeyError) as exc:
            return await self._record_failure(message_id, f"{type(exc).__name__}: {exc}", permanent=False)

        if response.is_success:
            await self._record_delivery(message_id)
            return "delivered"

        error = f"HTTP {response.status_code}: {response.text[:500]}"
        permanent = 400 <= response.status_code < 500 and response.status_code not in RETRYABLE_CLIENT_ERRORS
        return await self._record_failure(message_id, error, permanent=permanent)

    async def _record_delivery(self, message_id: int) -> None:
        async with self.database.session() as db:
            await db.execute(
                update(self.model)
                .where(self.model.id == message_id)
                .values(
                    status=OutboxStatus.DELIVERED,
                    attempts=self.model.attempts + 1,
                    delivered_at=utcnow(),
                    locked_until=None,
                    last_error=None,
                )
                .execution_options(synchronize_session=False)
            )

    async def _record_failure(self, message_id: int, error: str, permanent: bool) -> str:
        async with self.database.session() as db:
            message = await db.get(self.model, message_id)
            message.attempts += 1
            message.last_error = error
            message.locked_until = None

            if permanent or message.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
                message.status = OutboxStatus.DEAD
                logger.error(
                    f"Outbox message {message_id} ({message.method} {message.target}{message.path}) "
                    f"dead after {message.attempts} attempt(s): {error}"
                )
                return "dead"

            delay = backoff_seconds(message.attempts)
            message.status = OutboxStatus.PENDING
            message.next_attempt_at = utcnow() + timedelta(seconds=delay)
            logger.warning(
                f"Outbox message {message_id} attempt {message.attempts} failed, "
                f"retrying in {delay:.0f}s: {error}"
            )
            return "retrying"
