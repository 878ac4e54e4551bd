"""
tests/test_gateway.py
Edge gateway: prefix stripping and verbatim relay, the 503 envelope for
unreachable backends, and per-IP rate limiting.
"""

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from config.redis_client import FixedWindowRateLimiter
from config.registry import ServiceRegistry
from main import RATE_LIMIT_MESSAGE, create_app
from tests.conftest import FakeRedis

REGISTRY = {
    "users": ["http://users.test"],
    "bookings": ["http://bookings.test"],
    "payments": ["http://payments.test"],
    "notifications": ["http://notifications.test"],
}


def _gateway(handler, limiter=None):
    app = create_app("gateway")
    app.state.registry = ServiceRegistry(REGISTRY)
    app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    app.state.rate_limiter = limiter
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://gateway")


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True})


# ── Proxy ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_proxy_strips_prefix_and_forwards_query():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["method"] = request.method
        return httpx.Response(200, json=[{"id": 1, "name": "Flight to Paris"}])

    async with _gateway(handler) as client:
        response = await client.get("/api/bookings/services", params={"type": "flight"})

    assert response.status_code == 200
    assert response.json() == [{"id": 1, "name": "Flight to Paris"}]
    assert seen == {"url": "http://bookings.test/services?type=flight", "method": "GET"}


@pytest.mark.asyncio
async def test_proxy_forwards_body_and_auth_and_relays_status():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["authorization"] = request.headers.get("authorization")
        seen["path"] = request.url.path
        return httpx.Response(409, json={"detail": "User already exists"}, headers={"X-Backend": "users-1"})

    async with _gateway(handler) as client:
        response = await client.post(
            "/api/users/register",
            json={"email": "a@example.com", "password": "hunter22", "name": "Al"},
            headers={"Authorization": "Bearer abc"},
        )

    assert response.status_code == 409
    assert response.json() == {"detail": "User already exists"}
    assert response.headers["X-Backend"] == "users-1"
    assert seen["path"] == "/register"
    assert seen["authorization"] == "Bearer abc"
    assert seen["body"]["email"] == "a@example.com"


@pytest.mark.asyncio
async def test_proxy_backend_unreachable_returns_503_envelope():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _gateway(handler) as client:
        response = await client.post("/api/bookings/bookings", json={})

    assert response.status_code == 503
    assert response.json() == {"error": "Booking service unavailable"}


@pytest.mark.asyncio
async def test_proxy_backend_timeout_returns_503_envelope():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    async with _gateway(handler) as client:
        response = await client.get("/api/payments/methods")

    assert response.status_code == 503
    assert response.json() == {"error": "Payment service unavailable"}


@pytest.mark.asyncio
async def test_proxy_unknown_service():
    async with _gateway(_ok) as client:
        response = await client.get("/api/inventory/items")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_services():
    async with _gateway(_ok) as client:
        response = await client.get("/services")
    assert response.status_code == 200
    data = response.json()
    assert data["bookings"] == {"name": "Booking", "urls": ["http://bookings.test"]}
    assert set(data) == set(REGISTRY)


@pytest.mark.asyncio
async def test_gateway_health_has_no_database():
    async with _gateway(_ok) as client:
        response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "gateway"
    assert "database" not in data


def test_registry_round_robin():
    registry = ServiceRegistry({"bookings": ["http://b1", "http://b2"]})
    assert [registry.resolve("bookings") for _ in range(3)] == ["http://b1", "http://b2", "http://b1"]
    with pytest.raises(KeyError):
        registry.resolve("payments")


# ── Rate Limiting ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_rate_limit_rejects_over_limit():
    limiter = FixedWindowRateLimiter(FakeRedis(), limit=2, window_seconds=900)

    async with _gateway(_ok, limiter=limiter) as client:
        codes = [(await client.get("/api/payments/methods")).status_code for _ in range(2)]
        blocked = await client.get("/api/payments/methods")

    assert codes == [200, 200]
    assert blocked.status_code == 429
    assert blocked.json() == {"detail": RATE_LIMIT_MESSAGE}
    assert blocked.headers["Retry-After"] == "900"


@pytest.mark.asyncio
async def test_rate_limit_skips_health():
    limiter = FixedWindowRateLimiter(FakeRedis(), limit=1, window_seconds=60)

    async with _gateway(_ok, limiter=limiter) as client:
        codes = [(await client.get("/health")).status_code for _ in range(3)]
    assert codes == [200, 200, 200]


@pytest.mark.asyncio
async def test_rate_limit_fails_open_when_redis_down():
    redis = FakeRedis(fail_with=RedisConnectionError("redis is down"))
    limiter = FixedWindowRateLimiter(redis, limit=1, window_seconds=60)

    async with _gateway(_ok, limiter=limiter) as client:
        codes = [(await client.get("/api/payments/methods")).status_code for _ in range(3)]
    assert codes == [200, 200, 200]
