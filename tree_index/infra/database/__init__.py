"""Database infrastructure package.

Provides the async engine and session factory used with the tree index:

- **Engine factory**: ``create_tree_engine`` with SQLite locking hooks
- **Session management**: ``create_session_factory``, ``get_async_session``
- **Lifecycle**: ``init_database``, ``close_database``

Example:
    from tree_index.infra.database import create_session_factory, create_tree_engine

    engine = create_tree_engine("sqlite+aiosqlite:///./tree.db")
    session_factory = create_session_factory(engine)

    async with session_factory() as session:
        ...
"""

from .session import (
    close_database,
    create_session_factory,
    create_tree_engine,
    get_async_session,
    get_engine,
    get_session_factory,
    init_database,
)

__all__ = [
    "close_database",
    "create_session_factory",
    "create_tree_engine",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
]
