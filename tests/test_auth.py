"""
tests/test_auth.py
Registration, login, and the issued access token.
"""

import pytest
from httpx import AsyncClient
from jose import jwt
from sqlalchemy import func, select

from config.database import accounts_db
from config.settings import settings
from shared.models.models import Account
from tests.conftest import TEST_PASSWORD


# ── Register ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_register_success(users_client: AsyncClient):
    response = await users_client.post(
        "/register",
        json={"email": "bob@example.com", "password": "hunter22", "name": "Bob"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["user"]["email"] == "bob@example.com"
    assert data["user"]["name"] == "Bob"

    claims = jwt.decode(data["token"], settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    assert claims["sub"] == str(data["user"]["id"])
    assert claims["email"] == "bob@example.com"
    assert claims["name"] == "Bob"
    assert claims["type"] == "access"
    assert claims["exp"] - claims["iat"] == 24 * 60 * 60


@pytest.mark.asyncio
async def test_register_normalizes_email(users_client: AsyncClient):
    response = await users_client.post(
        "/register",
        json={"email": "Carol@Example.COM", "password": "hunter22", "name": "Carol"},
    )
    assert response.status_code == 201
    assert response.json()["user"]["email"] == "carol@example.com"


@pytest.mark.asyncio
async def test_register_duplicate_email_conflict(users_client: AsyncClient, account: Account):
    """Same email (any case) as an existing account is a 409 and creates nothing."""
    response = await users_client.post(
        "/register",
        json={"email": "ALICE@example.com", "password": "another1", "name": "Alice Two"},
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "User already exists"

    async with accounts_db.session() as db:
        assert await db.scalar(select(func.count(Account.id))) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, field",
    [
        ({"email": "not-an-email", "password": "hunter22", "name": "Bob"}, "email"),
        ({"email": "bob@example.com", "password": "short", "name": "Bob"}, "password"),
        ({"email": "bob@example.com", "password": "hunter22", "name": "B"}, "name"),
    ],
)
async def test_register_validation_errors(users_client: AsyncClient, payload: dict, field: str):
    response = await users_client.post("/register", json=payload)
    assert response.status_code == 400
    assert field in [e["field"] for e in response.json()["errors"]]


# ── Login ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_success(users_client: AsyncClient, account: Account):
    response = await users_client.post(
        "/login", json={"email": "alice@example.com", "password": TEST_PASSWORD}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["user"]["id"] == account.id
    claims = jwt.decode(data["token"], settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    assert claims["sub"] == str(account.id)


@pytest.mark.asyncio
async def test_login_wrong_password(users_client: AsyncClient, account: Account):
    response = await users_client.post(
        "/login", json={"email": "alice@example.com", "password": "wrong-password"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_unknown_email_same_error(users_client: AsyncClient, account: Account):
    """Unknown email and wrong password are indistinguishable."""
    response = await users_client.post(
        "/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"
