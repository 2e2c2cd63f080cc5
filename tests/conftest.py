"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: cache isolation and explicit TreeSettings
    - Database Fixtures: in-memory SQLite engine and session built with the
      package's own engine factory
    - Tree Fixtures: TreeEngine instances for the test models
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from tests.fixtures.models import Category, Department, Folder
from tree_index.core.database import Base, TreeEngine
from tree_index.core.settings import TreeSettings, clear_all_caches
from tree_index.infra.database import create_session_factory, create_tree_engine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

# Ensure tests run without external infrastructure or stray config files
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")
os.environ.setdefault("TREE_INTEGRITY_CHECK", "full")
os.environ.setdefault("TREE_CONFIG_DIR", "/nonexistent/tree-index-tests")


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Iterator[None]:
    """Drop cached settings so monkeypatched env vars take effect."""
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture
def tree_settings() -> TreeSettings:
    """Strictest settings: full integrity check after every mutation."""
    return TreeSettings(integrity_check="full")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create async engine with in-memory SQLite and all test tables.

    Yields:
        Engine with the SQLite BEGIN IMMEDIATE / savepoint hooks installed.
    """
    engine = create_tree_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create async database session rolled back after each test.

    Args:
        db_engine: Async SQLAlchemy engine fixture.

    Yields:
        Async database session for testing.
    """
    session_factory = create_session_factory(db_engine)
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Tree Fixtures
# ============================================================================


@pytest.fixture
def category_tree(tree_settings: TreeSettings) -> TreeEngine[Category]:
    """Tree engine over string-keyed categories."""
    return TreeEngine(Category, settings=tree_settings)


@pytest.fixture
def department_tree(tree_settings: TreeSettings) -> TreeEngine[Department]:
    """Tree engine over integer-keyed departments."""
    return TreeEngine(Department, settings=tree_settings)


@pytest.fixture
def folder_tree(tree_settings: TreeSettings) -> TreeEngine[Folder]:
    """Tree engine over folders addressed by a non-primary-key code."""
    return TreeEngine(Folder, settings=tree_settings)
