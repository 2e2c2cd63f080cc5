"""Modular Pydantic Settings v2 configuration.

One frozen settings model per concern, each loaded through an LRU-cached
getter:

    from tree_index.core.settings import get_tree_settings

    settings = get_tree_settings()
    print(settings.integrity_check)

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files (optional, local/dev)
    3. Environment variables (production)
    4. .env file (development only)
    5. secrets_dir (Kubernetes/Docker secrets)
"""

from __future__ import annotations

from .database import DatabaseSettings
from .loader import (
    clear_all_caches,
    get_db_settings,
    get_logging_settings,
    get_tree_settings,
)
from .logs import LoggingSettings
from .tree import TreeSettings

__all__ = [
    "DatabaseSettings",
    "LoggingSettings",
    "TreeSettings",
    "clear_all_caches",
    "get_db_settings",
    "get_logging_settings",
    "get_tree_settings",
]
