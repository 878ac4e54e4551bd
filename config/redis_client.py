"""
config/redis_client.py
Async Redis client used by the gateway for per-IP rate limit counters.
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    return redis_client


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


# ── Rate Limiting ─────────────────────────────────────────────
@dataclass
class RateLimitResult:
    allowed: bool
    count: int
    retry_after: int


class FixedWindowRateLimiter:
    """
    Fixed-window counter per key: INCR, and start the window with EXPIRE
    on the first hit. The counter resets when the key expires.
    """

    def __init__(self, client: aioredis.Redis, limit: int, window_seconds: int):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds

    async def hit(self, key: str) -> RateLimitResult:
        redis_key = f"rate:{key}"
        count = await self.client.incr(redis_key)
        if count == 1:
            await self.client.expire(redis_key, self.window_seconds)

        if count <= self.limit:
            return RateLimitResult(allowed=True, count=count, retry_after=0)

        ttl = await self.client.ttl(redis_key)
        if ttl is None or ttl < 0:
            # Key lost its expiry (e.g. crash between INCR and EXPIRE)
            await self.client.expire(redis_key, self.window_seconds)
            ttl = self.window_seconds
        return RateLimitResult(allowed=False, count=count, retry_after=int(ttl))
