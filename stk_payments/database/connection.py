"""
Transaction store connection handling.

Production runs on PostgreSQL through asyncpg with a bounded pool. Local
development and the test suite may point ``DATABASE_URL`` at sqlite+aiosqlite,
which does not accept pool sizing arguments.
"""
from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from stk_payments.config import Settings, get_settings
from stk_payments.database.models import Base

logger = structlog.get_logger(__name__)

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.database_echo}
    if settings.uses_sqlite:
        return options
    options.update(
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )
    return options


def get_engine() -> AsyncEngine:
    """Engine shared by every request; created on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, **_engine_options(settings))
        logger.info(
            "database_engine_created",
            url=make_url(settings.database_url).render_as_string(hide_password=True),
            pooled=not settings.uses_sqlite,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the shared engine.

    Instances stay readable after commit, since the status handlers commit
    a settlement and then still render the row.
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, Any]:
    """
    FastAPI dependency yielding one session per request.

    Service methods commit their own writes; anything left pending when the
    handler returns is committed here and rolled back if the handler raised.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the transactions table if it does not exist yet."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_schema_ready", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    """Dispose of the engine; the next request creates a fresh one."""
    global _engine, _async_session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _async_session_factory = None
