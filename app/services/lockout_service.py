"""
Account lockout — durable consecutive-failure tracking.

Unlike the in-memory rate limiter (keyed by identifier string), this is
keyed by user id and persisted on the `users` row, so it survives
restarts and defends one known account against credential stuffing.

`record_failure` commits immediately: the caller is about to raise a
401 / 423, which rolls back the request transaction.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.base import utcnow
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LockoutStatus:
    locked: bool
    retry_after: int = 0
    attempts: int = 0


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(1, math.ceil((moment - now).total_seconds()))


def check_lockout(user: User) -> LockoutStatus:
    now = utcnow()
    if user.lockout_until is not None and user.lockout_until > now:
        return LockoutStatus(
            locked=True,
            retry_after=_seconds_until(user.lockout_until, now),
            attempts=user.login_attempts,
        )
    return LockoutStatus(locked=False, attempts=user.login_attempts)


async def record_failure(
    user_id: uuid.UUID | None,
    db: AsyncSession,
    *,
    max_attempts: int | None = None,
    lockout_duration: timedelta | None = None,
) -> LockoutStatus:
    """
    Count one failed login for `user_id`, locking the account once the
    counter reaches `max_attempts`.

    `user_id=None` (unknown email) is accepted so the login pipeline runs
    the same steps whether or not the account exists.
    """
    if user_id is None:
        return LockoutStatus(locked=False)

    max_attempts = max_attempts or settings.LOCKOUT_MAX_ATTEMPTS
    lockout_duration = lockout_duration or timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)

    # Increment in SQL so concurrent failures are never lost
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(login_attempts=User.login_attempts + 1)
        .execution_options(synchronize_session=False)
    )
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        await db.commit()
        return LockoutStatus(locked=False)

    status = LockoutStatus(locked=False, attempts=user.login_attempts)
    if user.login_attempts >= max_attempts:
        user.lockout_until = utcnow() + lockout_duration
        status = LockoutStatus(
            locked=True,
            retry_after=math.ceil(lockout_duration.total_seconds()),
            attempts=user.login_attempts,
        )
        logger.warning(
            "Account %s locked after %d failed attempts", user.id, user.login_attempts,
        )
    else:
        logger.info("Failed login %d/%d for user %s", user.login_attempts, max_attempts, user.id)

    await db.commit()
    return status


async def reset_failures(user_id: uuid.UUID, db: AsyncSession) -> None:
    """Zero the counter and lift any lockout (successful authentication)."""
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(login_attempts=0, lockout_until=None)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
