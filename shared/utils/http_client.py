"""
shared/utils/http_client.py
httpx client for service-to-service calls. Every request carries a
fresh service token; transport errors are retried with tenacity.
"""

import logging
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.registry import ServiceRegistry
from config.settings import settings
from shared.utils.security import create_service_token

logger = logging.getLogger(__name__)


class ServiceClient:
    """
    Usage:
        async with ServiceClient("payments") as client:
            await client.request("bookings", "PUT", "/bookings/1/payment-status", json={...})
    """

    def __init__(
        self,
        caller: str,
        registry: Optional[ServiceRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.caller = caller
        self.registry = registry or ServiceRegistry.from_settings()
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=timeout or settings.INTERNAL_HTTP_TIMEOUT_SECONDS,
        )

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        target: str,
        method: str,
        path: str,
        json: Any = None,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {create_service_token(self.caller)}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, settings.INTERNAL_HTTP_RETRY_ATTEMPTS)),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                # Resolve per attempt so a retry can land on another instance
                url = self.registry.resolve(target) + path
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying {method} {url} (attempt {attempt.retry_state.attempt_number})")
                return await self._client.request(method, url, json=json, headers=headers)
