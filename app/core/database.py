"""
Async database engine & request-scoped sessions.

One engine per process.  Each request gets its own ``AsyncSession``
through ``get_db``: the transaction commits when the handler returns and
rolls back if it raises.  Services only ``flush()``, except where a
write has to survive an error response (see ``lockout_service``).
"""

import logging
from collections.abc import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.errors import ServiceUnavailable

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency — one transactional session per request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping(db: AsyncSession) -> None:
    """Fail fast with a 503 when the database cannot be reached."""
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Database ping failed: %s", exc)
        raise ServiceUnavailable() from exc
