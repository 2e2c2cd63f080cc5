"""Hierarchical data support using nested-set intervals.

This package indexes tree-structured rows with ``(lft, rgt)`` intervals so
that subtree, ancestor and depth questions become range comparisons. Every
node's interval strictly contains the intervals of its descendants.

Components:
    - NodeInterval: Python value object for interval arithmetic
    - NestedSetMixin: Mixin adding the lft/rgt/is_group columns to a model
    - NestedSetIndex: Maintains intervals through inserts, moves and deletes
    - TreeEngine: Lifecycle hooks and traversal queries

Example:
    >>> from tree_index.core.database import Base
    >>> from tree_index.core.database.hierarchy import NestedSetMixin, TreeEngine
    >>>
    >>> class Category(Base, NestedSetMixin):
    ...     __tablename__ = "categories"
    ...     id: Mapped[str] = mapped_column(String(64), primary_key=True)
    ...     parent_id: Mapped[str | None] = mapped_column(String(64))
    >>>
    >>> engine = TreeEngine(Category)
    >>> await engine.on_record_created(session, "laptops", "computers")
    >>> await engine.ancestors(session, "laptops")

Note:
    - Works on any SQLAlchemy async dialect; tested with SQLite (aiosqlite)
    - Writes are serialized per table; reads take no lock
"""

from tree_index.core.database.hierarchy.engine import TreeEngine
from tree_index.core.database.hierarchy.intervals import (
    UNPLACED,
    NodeInterval,
    check_forest,
    iter_depths,
    number_forest,
)
from tree_index.core.database.hierarchy.mixins import (
    TREE_COLUMNS,
    NestedSetMixin,
    is_tree_column,
)
from tree_index.core.database.hierarchy.nested_set import NestedSetIndex, TreeNode

__all__ = [
    "TREE_COLUMNS",
    "UNPLACED",
    "NestedSetIndex",
    "NestedSetMixin",
    "NodeInterval",
    "TreeEngine",
    "TreeNode",
    "check_forest",
    "is_tree_column",
    "iter_depths",
    "number_forest",
]
