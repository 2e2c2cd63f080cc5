"""Async engine and session factory for tree-indexed tables.

SQLite needs two engine hooks for the tree index to be safe: the driver's
own transaction handling is switched off so SAVEPOINT works, and every
transaction starts with ``BEGIN IMMEDIATE`` (configurable) so writers take
the database lock before reading the intervals they are about to shift.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tree_index.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy import MetaData
    from sqlalchemy.ext.asyncio import AsyncEngine

    from tree_index.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


def create_tree_engine(
    url: str | None = None,
    *,
    settings: DatabaseSettings | None = None,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """Create an async engine configured for nested-set writes.

    Args:
        url: Database URL (defaults to ``DatabaseSettings.url``)
        settings: Override for the cached ``DatabaseSettings``
        **engine_kwargs: Extra arguments for ``create_async_engine``

    Returns:
        Configured async engine

    Example:
        >>> engine = create_tree_engine("sqlite+aiosqlite:///:memory:")
        >>> session_factory = create_session_factory(engine)
    """
    settings = settings or get_db_settings()
    url = url or settings.url

    engine_kwargs.setdefault("echo", settings.echo)
    engine_kwargs.setdefault("pool_pre_ping", settings.pool_pre_ping)
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection, otherwise every checkout sees an empty database
        engine_kwargs.setdefault("poolclass", StaticPool)

    engine = create_async_engine(url, **engine_kwargs)

    if engine.dialect.name == "sqlite":
        _install_sqlite_transaction_hooks(engine, settings.sqlite_begin_mode)

    logger.debug(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "driver": engine.dialect.driver},
    )
    return engine


def _install_sqlite_transaction_hooks(engine: AsyncEngine, begin_mode: str) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _receive_connect(dbapi_conn: Any, connection_record: Any) -> None:
        """Disable the driver's implicit BEGIN so SQLAlchemy controls transactions."""
        _ = connection_record
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _receive_begin(conn: Any) -> None:
        """Emit our own BEGIN with the configured locking mode."""
        conn.exec_driver_sql(f"BEGIN {begin_mode}")


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory matching the tree index's expectations.

    Instances are not expired on commit, so interval attributes refreshed
    by the index stay readable without another round trip.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Process-wide engine built from ``DatabaseSettings``."""
    return create_tree_engine()


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Process-wide session factory bound to ``get_engine()``."""
    return create_session_factory(get_engine())


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Yields:
        Database session that is automatically closed.

    Example:
        async with get_async_session() as session:
            await engine.on_record_created(session, "laptops", "computers")
            await session.commit()
    """
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database(metadata: MetaData, engine: AsyncEngine | None = None) -> None:
    """Create all tables in ``metadata`` that don't exist yet.

    Intended for tests and local development; production schemas are
    managed with Alembic.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Database tables ensured", extra={"tables": sorted(metadata.tables)})


async def close_database() -> None:
    """Dispose of the process-wide engine and forget it."""
    if get_engine.cache_info().currsize == 0:
        return
    logger.info("Closing database connection")
    await get_engine().dispose()
    get_session_factory.cache_clear()
    get_engine.cache_clear()


__all__ = [
    "close_database",
    "create_session_factory",
    "create_tree_engine",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
]
