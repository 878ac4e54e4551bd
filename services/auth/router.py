"""
services/auth/router.py
Account registration and login. Both return a 24h JWT access token.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import accounts_db
from shared.models.models import Account
from shared.schemas.schemas import AccountResponse, AuthResponse, LoginRequest, RegisterRequest
from shared.utils.errors import AuthError, Conflict
from shared.utils.security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])


def _auth_response(message: str, account: Account) -> AuthResponse:
    token = create_access_token(account.id, account.email, account.name)
    return AuthResponse(
        message=message,
        token=token,
        user=AccountResponse.model_validate(account),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(accounts_db.get_db),
):
    """Create an account. Emails are unique after normalisation."""
    existing = await db.scalar(select(Account.id).where(Account.email == payload.email))
    if existing:
        raise Conflict("User already exists")

    account = Account(
        email=payload.email,
        name=payload.name,
        password_hash=hash_password(payload.password),
    )
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent registration with the same email won the insert
        await db.rollback()
        raise Conflict("User already exists")

    logger.info(f"Account registered: {account.id}")
    return _auth_response("User registered successfully", account)


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(accounts_db.get_db),
):
    account = await db.scalar(select(Account).where(Account.email == payload.email))
    if not account or not verify_password(payload.password, account.password_hash):
        raise AuthError("Invalid credentials")

    return _auth_response("Login successful", account)
