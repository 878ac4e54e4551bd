"""
services/user/router.py
Profile read/update for the authenticated account.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import accounts_db
from shared.middleware.auth import TokenData, get_current_account
from shared.models.models import Account
from shared.schemas.schemas import ProfileResponse, ProfileUpdateRequest
from shared.utils.errors import Conflict, NotFound

router = APIRouter(tags=["Users"])


async def _get_account_or_404(account_id: int, db: AsyncSession) -> Account:
    account = await db.get(Account, account_id)
    if not account:
        raise NotFound("User not found")
    return account


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(accounts_db.get_db),
):
    return await _get_account_or_404(token.account_id, db)


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(
    payload: ProfileUpdateRequest,
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(accounts_db.get_db),
):
    """Apply only the supplied fields. An empty body changes nothing."""
    account = await _get_account_or_404(token.account_id, db)
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        return account

    new_email = updates.get("email")
    if new_email and new_email != account.email:
        taken = await db.scalar(
            select(Account.id).where(Account.email == new_email, Account.id != account.id)
        )
        if taken:
            raise Conflict("Email already in use")

    for field, value in updates.items():
        setattr(account, field, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already in use")
    await db.refresh(account)
    return account
