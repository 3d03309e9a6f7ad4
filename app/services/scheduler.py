"""Background maintenance jobs: expired-session sweep & rate-limiter sweep."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.services import session_service
from app.services.rate_limiter import LoginRateLimiter

logger = logging.getLogger(__name__)

SESSION_SWEEP_JOB_ID = "sweep-expired-sessions"
RATE_LIMIT_SWEEP_JOB_ID = "sweep-login-rate-limits"


async def sweep_sessions_job(session_factory: async_sessionmaker[AsyncSession]) -> int:
    """Deactivate expired sessions in a transaction of its own."""
    async with session_factory() as db:
        try:
            count = await session_service.sweep_expired_sessions(db)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Expired-session sweep failed")
            return 0
    if count:
        logger.info("Cleaned up %d expired session(s)", count)
    return count


def build_scheduler(
    rate_limiter: LoginRateLimiter,
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: int | None = None,
) -> AsyncIOScheduler:
    """Create (but do not start) the scheduler with both sweep jobs registered."""
    interval = interval_seconds or settings.SESSION_SWEEP_INTERVAL_SECONDS
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sweep_sessions_job,
        trigger=IntervalTrigger(seconds=interval),
        id=SESSION_SWEEP_JOB_ID,
        args=[session_factory],
        replace_existing=True,
    )
    scheduler.add_job(
        rate_limiter.sweep,
        trigger=IntervalTrigger(seconds=interval),
        id=RATE_LIMIT_SWEEP_JOB_ID,
        replace_existing=True,
    )
    logger.info("Scheduled session and rate-limit sweeps every %s seconds", interval)
    return scheduler
