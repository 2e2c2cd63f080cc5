"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Usage:
    from tree_index.core.settings.loader import get_tree_settings

    settings = get_tree_settings()  # First call: loads and validates
    settings = get_tree_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    clear_all_caches()

    Or pass an explicit instance where a component accepts one:
    NestedSetIndex(Category, settings=TreeSettings(integrity_check="full"))
"""

from __future__ import annotations

from functools import lru_cache

from .database import DatabaseSettings
from .logs import LoggingSettings
from .tree import TreeSettings


@lru_cache(maxsize=1)
def get_tree_settings() -> TreeSettings:
    """Get cached nested-set engine settings.

    Returns:
        Validated and frozen TreeSettings instance.
    """
    return TreeSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    """Get cached database settings.

    Returns:
        Validated and frozen DatabaseSettings instance.
    """
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear all settings caches.

    Useful for testing or when you need to force reload settings.
    In production, prefer process restarts over cache clearing.
    """
    get_tree_settings.cache_clear()
    get_db_settings.cache_clear()
    get_logging_settings.cache_clear()
