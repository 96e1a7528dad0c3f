"""Async SQLAlchemy engine shared by the API process and each worker process.

The engine is created lazily on first use. Celery workers run every job on
one persistent event loop per process, so the pool is bound to that loop
and stays valid between jobs.

Usage:
    async with get_session() as session:
        analysis = await session.get(SectorAnalysis, analysis_id)
        analysis.status = "completed"
        await session.commit()
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from sectorscope.core.config import settings
from sectorscope.core.logging import get_logger


logger = get_logger("database")

_ASYNC_SCHEMES = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def get_async_database_url(url: str) -> str:
    """Point a plain PostgreSQL URL at the asyncpg driver.

    URLs that already name a driver are returned unchanged.
    """
    for scheme, async_scheme in _ASYNC_SCHEMES.items():
        if url.startswith(scheme):
            return async_scheme + url[len(scheme):]
    return url


async def init_sqlalchemy_engine() -> AsyncEngine:
    """Create the engine and session factory if they do not exist yet."""
    global _engine, _sessions

    if _engine is None:
        engine = create_async_engine(
            get_async_database_url(settings.database_url),
            pool_size=settings.db_pool_min_size,
            max_overflow=settings.db_pool_max_size - settings.db_pool_min_size,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        _sessions = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
        _engine = engine
        logger.info(
            "Database engine ready",
            extra={"extra_fields": {"pool_size": settings.db_pool_min_size}},
        )
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Session that rolls back when the block raises. Callers commit."""
    if _sessions is None:
        await init_sqlalchemy_engine()

    async with _sessions() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise


async def close_sqlalchemy_engine() -> None:
    """Dispose of the pool; the next session recreates it."""
    global _engine, _sessions

    engine, _engine, _sessions = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine closed")
