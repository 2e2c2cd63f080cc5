"""Mixin for models indexed with nested-set intervals.

Adds the ``lft``, ``rgt`` and ``is_group`` columns to a mapped model and
in-memory helpers that read them. The helpers never query the database;
use ``TreeEngine`` for traversal queries.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import Boolean, Integer, false, text
from sqlalchemy.orm import Mapped, mapped_column

from tree_index.core.database.hierarchy.intervals import NodeInterval

if TYPE_CHECKING:
    from sqlalchemy.orm import InstrumentedAttribute

# Columns owned by the index. Generic CRUD layers must not write them.
TREE_COLUMNS: frozenset[str] = frozenset({"lft", "rgt", "is_group"})


def is_tree_column(name: str) -> bool:
    """Check whether a column name is reserved for the nested-set index.

    Example:
        >>> is_tree_column("lft")
        True
        >>> is_tree_column("parent_id")
        False
    """
    return name in TREE_COLUMNS


class NestedSetMixin:
    """Mixin for models whose rows form a forest indexed by intervals.

    The caller owns the id and parent reference columns; their names are
    declared with ``__tree_id_column__`` and ``__tree_parent_column__``.
    The index owns ``lft``, ``rgt`` and ``is_group``. A new row starts
    unplaced at ``(0, 0)`` until ``NestedSetIndex.insert_node`` gives it an
    interval.

    Example:
        >>> class Category(Base, NestedSetMixin):
        ...     __tablename__ = "categories"
        ...     id: Mapped[str] = mapped_column(String(64), primary_key=True)
        ...     parent_id: Mapped[str | None] = mapped_column(String(64))
        >>>
        >>> laptops = await session.get(Category, "laptops")
        >>> laptops.interval
        NodeInterval(lft=3, rgt=4)
        >>> laptops.is_leaf
        True

    Note:
        ``is_group`` is a stored convenience copy. The index keeps it equal to
        ``rgt - lft > 1`` after every mutation, but ``has_children`` always
        derives the answer from the interval itself.
    """

    __allow_unmapped__ = True

    # Override in subclass to use different column names
    __tree_id_column__: ClassVar[str] = "id"
    __tree_parent_column__: ClassVar[str] = "parent_id"

    lft: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default=text("0"),
        nullable=False,
        index=True,
        comment="Nested-set left bound (0 while unplaced)",
    )
    rgt: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default=text("0"),
        nullable=False,
        index=True,
        comment="Nested-set right bound (0 while unplaced)",
    )
    is_group: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=false(),
        nullable=False,
        comment="True when the node has at least one child",
    )

    @classmethod
    def tree_id_attr(cls) -> InstrumentedAttribute[Any]:
        """Mapped attribute holding the caller-defined node id."""
        return getattr(cls, cls.__tree_id_column__)

    @classmethod
    def tree_parent_attr(cls) -> InstrumentedAttribute[Any]:
        """Mapped attribute holding the parent reference."""
        return getattr(cls, cls.__tree_parent_column__)

    @property
    def tree_id(self) -> Any:
        """Value of the id column."""
        return getattr(self, self.__tree_id_column__)

    @property
    def tree_parent_ref(self) -> Any:
        """Value of the parent reference column."""
        return getattr(self, self.__tree_parent_column__)

    @property
    def interval(self) -> NodeInterval:
        """Current ``(lft, rgt)`` as a value object."""
        return NodeInterval(self.lft or 0, self.rgt or 0)

    @property
    def is_placed(self) -> bool:
        """Whether the row has been given an interval."""
        return self.interval.is_placed

    @property
    def has_children(self) -> bool:
        """Derived group flag: at least one descendant."""
        return self.interval.has_children

    @property
    def is_leaf(self) -> bool:
        """Placed node with no descendants."""
        return self.is_placed and not self.has_children

    @property
    def width(self) -> int:
        """Interval width ``rgt - lft + 1``."""
        return self.interval.width

    @property
    def descendant_count(self) -> int:
        """Number of descendants, computed from the interval."""
        if not self.is_placed:
            return 0
        return self.interval.descendant_count

    def contains(self, other: NestedSetMixin) -> bool:
        """Check whether ``other`` lies strictly inside this node's subtree.

        Both rows must be freshly loaded for the answer to be current.
        """
        if not (self.is_placed and other.is_placed):
            return False
        return self.interval.contains(other.interval)


__all__ = [
    "TREE_COLUMNS",
    "NestedSetMixin",
    "is_tree_column",
]
