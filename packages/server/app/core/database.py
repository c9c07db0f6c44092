"""
Async engine and per-unit-of-work sessions.

Services only flush; the session owner (request dependency or script
context) decides whether the unit of work commits or rolls back.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings, get_settings

log = structlog.get_logger()
settings = get_settings()


def build_engine(config: Settings) -> AsyncEngine:
    url = make_url(config.database_url)
    options = {"echo": config.debug, "pool_pre_ping": True}
    # SQLite (tests, local tinkering) has no server-side pool to size.
    if url.get_backend_name() != "sqlite":
        options.update(pool_size=config.db_pool_size, max_overflow=config.db_max_overflow)
    return create_async_engine(url, **options)


engine = build_engine(settings)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """One unit of work outside a request: background tasks, scripts."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            log.debug("db.rolled_back")
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: commit when the handler returns, roll back when it raises."""
    async with get_session_context() as session:
        yield session
