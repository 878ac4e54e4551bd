"""
shared/utils/security.py
JWT creation/verification and password hashing.

Two token kinds share the signing secret:
- "access":  issued to accounts on register/login (24h), sub = account id
- "service": short-lived, minted by a service for its internal callbacks
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN = "access"
SERVICE_TOKEN = "service"


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(
    account_id: int,
    email: str,
    name: str,
    extra: Optional[dict] = None,
) -> str:
    """Create a signed JWT access token for an account."""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(account_id),
        "email": email,
        "name": name,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": expire,
        "type": ACCESS_TOKEN,
        **(extra or {}),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_service_token(service_name: str) -> str:
    """Create a short-lived token identifying an internal caller."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": f"service:{service_name}",
        "service": service_name,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_SERVICE_TOKEN_EXPIRE_MINUTES),
        "type": SERVICE_TOKEN,
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and verify any token we issued.
    Raises JWTError on invalid/expired token or unknown type.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") not in (ACCESS_TOKEN, SERVICE_TOKEN):
        raise JWTError("Invalid token type")
    return payload


# ── Password ──────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)
