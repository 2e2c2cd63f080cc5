"""Core database package: declarative base and nested-set hierarchy support.

Base Classes and Mixins:
    - Base: Declarative base with constraint naming and auto table naming
    - IntegerPKMixin: Auto-increment integer primary key
    - NestedSetMixin: lft/rgt/is_group columns for interval-indexed trees

Hierarchy:
    - NestedSetIndex[T]: Interval maintenance with explicit session passing
    - TreeEngine[T]: Lifecycle hooks and traversal queries
    - TreeNode: Point-lookup snapshot of a node's index columns
    - NodeInterval: Pure-Python interval arithmetic

Migration Helpers:
    - add_tree_columns / drop_tree_columns: Alembic retrofit helpers
"""

from tree_index.core.database.base import NAMING_CONVENTION, Base, IntegerPKMixin
from tree_index.core.database.hierarchy import (
    TREE_COLUMNS,
    NestedSetIndex,
    NestedSetMixin,
    NodeInterval,
    TreeEngine,
    TreeNode,
    is_tree_column,
)
from tree_index.core.database.migration_helpers import add_tree_columns, drop_tree_columns

__all__ = [
    "NAMING_CONVENTION",
    "TREE_COLUMNS",
    "Base",
    "IntegerPKMixin",
    "NestedSetIndex",
    "NestedSetMixin",
    "NodeInterval",
    "TreeEngine",
    "TreeNode",
    "add_tree_columns",
    "drop_tree_columns",
    "is_tree_column",
]
