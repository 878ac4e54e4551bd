"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Tokens are verified locally with the shared secret; no service calls
another to authenticate a request.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from shared.utils.errors import AuthError, Forbidden
from shared.utils.security import SERVICE_TOKEN, decode_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.token_type: str = payload["type"]
        self.service: Optional[str] = payload.get("service")
        self.account_id: Optional[int] = None
        if not self.is_service:
            self.account_id = int(payload["sub"])
        self.email: Optional[str] = payload.get("email")
        self.name: Optional[str] = payload.get("name")

    @property
    def is_service(self) -> bool:
        return self.token_type == SERVICE_TOKEN

    def can_access(self, account_id: int) -> bool:
        """Owners see their own records; internal services see everything."""
        return self.is_service or self.account_id == account_id


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TokenData:
    """Extract and validate the JWT from the Authorization header."""
    if not credentials:
        raise AuthError("Authentication required")

    try:
        payload = decode_token(credentials.credentials)
        return TokenData(payload)
    except (JWTError, KeyError, ValueError):
        raise AuthError("Invalid or expired token")


async def get_current_account(
    token_data: TokenData = Depends(get_token_data),
) -> TokenData:
    """Require an account access token (service tokens are rejected)."""
    if token_data.is_service:
        raise Forbidden("Account token required")
    return token_data


async def require_service(
    token_data: TokenData = Depends(get_token_data),
) -> TokenData:
    """Require an internal service token."""
    if not token_data.is_service:
        raise Forbidden("Internal service token required")
    return token_data


def ensure_access(token_data: TokenData, account_id: int) -> None:
    if not token_data.can_access(account_id):
        raise Forbidden("Access denied")
