"""
Session service — lifecycle of server-side session records.

Handles:
- Creating a session at signup / login (two fresh opaque tokens)
- Validating the session an access token is bound to (per request)
- Refreshing: rotating the session token and extending expiry
- Deactivating one session (logout) or all of a user's sessions
- Listing a user's active sessions (never exposing raw tokens)
- Sweeping expired sessions (scheduled background job)

A session is usable only while `is_active` AND `now < expires_at`.
Deactivation is a soft delete and is one-way.  Every deactivation bumps
`version`, so a refresh that loaded the row earlier cannot flush over it.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.security import generate_opaque_token
from app.models.base import utcnow
from app.models.session import UserSession
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IssuedSession:
    session_id: uuid.UUID
    session_token: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class SessionView:
    """A live session flattened with the identity of its owner."""

    session_id: uuid.UUID
    session_token: str
    refresh_token: str
    expires_at: datetime
    user_id: uuid.UUID
    username: str
    email: str
    role: UserRole


def _session_ttl() -> timedelta:
    return timedelta(minutes=settings.SESSION_EXPIRE_MINUTES)


def _live_session_stmt(now: datetime):
    """Active, unexpired sessions joined to an active owner."""
    return (
        select(UserSession, User)
        .join(User, User.id == UserSession.user_id)
        .where(
            UserSession.is_active == True,  # noqa: E712
            UserSession.expires_at > now,
            User.is_active == True,  # noqa: E712
        )
    )


def _view(session: UserSession, user: User) -> SessionView:
    return SessionView(
        session_id=session.id,
        session_token=session.session_token,
        refresh_token=session.refresh_token,
        expires_at=session.expires_at,
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
    )


async def create_session(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    device_info: dict[str, Any] | None = None,
) -> IssuedSession:
    now = utcnow()
    session = UserSession(
        user_id=user_id,
        session_token=generate_opaque_token(),
        refresh_token=generate_opaque_token(),
        ip_address=ip_address,
        user_agent=user_agent,
        device_info=device_info or {},
        expires_at=now + _session_ttl(),
        last_activity=now,
    )
    db.add(session)
    await db.flush()
    logger.info("Session %s created for user %s", session.id, user_id)
    return IssuedSession(
        session_id=session.id,
        session_token=session.session_token,
        refresh_token=session.refresh_token,
        expires_at=session.expires_at,
    )


async def validate_session(session_token: str, db: AsyncSession) -> SessionView | None:
    """Resolve a session token to its live session, touching `last_activity`."""
    now = utcnow()
    stmt = _live_session_stmt(now).where(UserSession.session_token == session_token)
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        return None

    session, user = row
    # Plain UPDATE: touching activity must not bump the row version
    await db.execute(
        update(UserSession)
        .where(UserSession.id == session.id)
        .values(last_activity=now)
        .execution_options(synchronize_session=False)
    )
    return _view(session, user)


async def refresh_session(refresh_token: str, db: AsyncSession) -> SessionView | None:
    """
    Rotate the session token of the live session owning `refresh_token`
    and push its expiry out by one session TTL.

    The refresh token itself is kept unless `ROTATE_REFRESH_TOKENS` is
    enabled.  If another request rotated the same row first, the
    version check fails and this call returns None.
    """
    now = utcnow()
    stmt = _live_session_stmt(now).where(UserSession.refresh_token == refresh_token)
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        return None

    session, user = row
    session.session_token = generate_opaque_token()
    session.expires_at = now + _session_ttl()
    session.last_activity = now
    if settings.ROTATE_REFRESH_TOKENS:
        session.refresh_token = generate_opaque_token()

    try:
        await db.flush()
    except StaleDataError:
        logger.warning("Concurrent refresh lost the race for session %s", session.id)
        await db.rollback()
        return None

    logger.info("Session %s refreshed for user %s", session.id, user.id)
    return _view(session, user)


async def invalidate_session(session_token: str, db: AsyncSession) -> bool:
    """
    Deactivate the session holding `session_token` (logout).

    Idempotent: returns whether a still-active session was found, but
    never fails for an unknown or already-inactive token.
    """
    stmt = (
        update(UserSession)
        .where(
            UserSession.session_token == session_token,
            UserSession.is_active == True,  # noqa: E712
        )
        .values(is_active=False, version=UserSession.version + 1)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount > 0


async def invalidate_all_user_sessions(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    except_session_id: uuid.UUID | None = None,
) -> int:
    """
    Deactivate every active session for a given user.

    Returns the number of sessions affected.
    Used by logout-all, password change and admin force-logout / disable.
    """
    stmt = update(UserSession).where(
        UserSession.user_id == user_id,
        UserSession.is_active == True,  # noqa: E712
    )
    if except_session_id is not None:
        stmt = stmt.where(UserSession.id != except_session_id)
    result = await db.execute(
        stmt.values(is_active=False, version=UserSession.version + 1)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
    logger.info("Deactivated %d session(s) for user %s", result.rowcount, user_id)
    return result.rowcount


async def list_active_sessions(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> list[UserSession]:
    """Active, unexpired sessions for a user, most recently used first."""
    stmt = (
        select(UserSession)
        .where(
            UserSession.user_id == user_id,
            UserSession.is_active == True,  # noqa: E712
            UserSession.expires_at > utcnow(),
        )
        .order_by(UserSession.last_activity.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def has_active_session(user_id: uuid.UUID, db: AsyncSession) -> bool:
    stmt = select(func.count(UserSession.id)).where(
        UserSession.user_id == user_id,
        UserSession.is_active == True,  # noqa: E712
        UserSession.expires_at > utcnow(),
    )
    return (await db.execute(stmt)).scalar_one() > 0


async def sweep_expired_sessions(db: AsyncSession) -> int:
    """Deactivate every still-active session whose expiry has passed."""
    stmt = (
        update(UserSession)
        .where(
            UserSession.is_active == True,  # noqa: E712
            UserSession.expires_at < utcnow(),
        )
        .values(is_active=False, version=UserSession.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount
