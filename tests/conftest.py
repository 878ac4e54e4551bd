"""
tests/conftest.py
Shared fixtures: a fresh SQLite database per service per test, an
ASGI client per service app, and token helpers.
"""

import os

# Settings are read once at import time, so test values go in first
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("SEED_CATALOG", "false")
os.environ.setdefault("OUTBOX_DISPATCH_INLINE", "false")
os.environ.setdefault("PAYMENT_LATENCY_SCALE", "0")
os.environ.setdefault("EMAIL_LATENCY_SECONDS", "0")
os.environ.setdefault("INTERNAL_HTTP_RETRY_ATTEMPTS", "1")

from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config.database import DATABASES, accounts_db, bookings_db
from main import create_app
from shared.models.models import Account, CatalogCategory, CatalogItem
from shared.utils.security import create_access_token, create_service_token, hash_password

TEST_PASSWORD = "secret123"


# ── Helpers ────────────────────────────────────────────────────────────────────

def auth_headers(account_id: int = 1, email: str = "alice@example.com", name: str = "Alice") -> dict:
    token = create_access_token(account_id, email, name)
    return {"Authorization": f"Bearer {token}"}


def service_headers(service: str = "payments") -> dict:
    return {"Authorization": f"Bearer {create_service_token(service)}"}


class FakeRedis:
    """The slice of redis.asyncio.Redis the rate limiter uses."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.counters = {}
        self.ttls = {}
        self.fail_with = fail_with

    async def incr(self, key):
        if self.fail_with:
            raise self.fail_with
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def ttl(self, key):
        return self.ttls.get(key, -1)


async def _client_for(service_name: str) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(service_name)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ── Databases ──────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def databases(tmp_path):
    """Point every service at its own empty SQLite file for this test."""
    for name, database in DATABASES.items():
        database.configure(f"sqlite+aiosqlite:///{tmp_path / name}.db")
        await database.init()
    yield DATABASES
    for database in DATABASES.values():
        await database.dispose()


# ── Service Clients ────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def users_client(databases) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for("users"):
        yield ac


@pytest_asyncio.fixture
async def bookings_client(databases) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for("bookings"):
        yield ac


@pytest_asyncio.fixture
async def payments_client(databases) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for("payments"):
        yield ac


@pytest_asyncio.fixture
async def notifications_client(databases) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for("notifications"):
        yield ac


# ── Data ───────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def account(databases) -> Account:
    async with accounts_db.session() as db:
        account = Account(
            email="alice@example.com",
            name="Alice",
            password_hash=hash_password(TEST_PASSWORD),
        )
        db.add(account)
    return account


@pytest_asyncio.fixture
async def catalog_item(databases) -> CatalogItem:
    async with bookings_db.session() as db:
        item = CatalogItem(
            name="Flight to Paris",
            category=CatalogCategory.FLIGHT,
            description="Direct flight to the city of lights",
            unit_price=Decimal("599.99"),
            remaining_capacity=100,
            location="Paris, France",
        )
        db.add(item)
    return item
