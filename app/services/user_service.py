"""
User service — lookup & admin helpers for user records.

Emails are normalized (trimmed, lower-cased) on the way in and on every
lookup, so `Alice@X.com` and `alice@x.com` are the same account.
"""

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import hash_password
from app.models.base import utcnow
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user_by_email(email: str, db: AsyncSession) -> User | None:
    stmt = select(User).where(User.email == normalize_email(email))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_username(username: str, db: AsyncSession) -> User | None:
    stmt = select(User).where(User.username == username)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_id(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def create_user(
    username: str,
    email: str,
    password: str,
    db: AsyncSession,
    *,
    role: UserRole = UserRole.USER,
) -> User:
    now = utcnow()
    user = User(
        id=uuid.uuid4(),
        username=username,
        email=normalize_email(email),
        password_hash=hash_password(password),
        role=role,
        is_active=True,
        last_login=now,
        last_password_change=now,
    )
    db.add(user)
    await db.flush()
    logger.info("User %s (%s) created with role %s", user.id, user.username, role.value)
    return user


async def disable_user(
    target_user_id: uuid.UUID,
    db: AsyncSession,
) -> User:
    """Admin action — disable a user account and invalidate all sessions."""
    from app.services import session_service

    user = await get_user_by_id(target_user_id, db)
    user.is_active = False
    # Immediately invalidate every active session for this user
    await session_service.invalidate_all_user_sessions(target_user_id, db)
    await db.flush()
    logger.info("User %s disabled", target_user_id)
    return user
