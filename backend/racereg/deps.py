from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.expiry import ExpiryPolicy, HoldTtlConfig
from .domain.pricing import FeePolicy, PercentageFeePolicy
from .models import User
from .utils.auth import TokenError, decode_access_token


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    if not authorization:
        raise _unauthorized("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Bearer token required")

    settings = get_settings()
    try:
        user_id = decode_access_token(
            token.strip(),
            secret=settings.auth_secret,
            algorithms=[settings.auth_algorithm],
        )
    except TokenError as exc:
        raise _unauthorized("Invalid or expired token") from exc

    try:
        found = await session.scalar(select(User.id).where(User.id == user_id, User.deleted_at.is_(None)))
    except ProgrammingError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user lookup failed") from exc
    # End the implicit transaction so routes can open their own with session.begin().
    await session.rollback()
    if found is None:
        raise _unauthorized("User not found")
    return user_id


def get_expiry_policy() -> ExpiryPolicy:
    settings = get_settings()
    return ExpiryPolicy(
        HoldTtlConfig(
            started_minutes=settings.started_ttl_minutes,
            submitted_minutes=settings.submitted_ttl_minutes,
            payment_pending_hours=settings.payment_pending_ttl_hours,
        )
    )


def get_fee_policy() -> FeePolicy:
    return PercentageFeePolicy(percent=get_settings().platform_fee_percent)
