"""Tree facade: lifecycle hooks and traversal queries.

The persistence layer writes a record, then calls the matching hook with
the same session. Hooks forward to ``NestedSetIndex``; traversal methods
answer structural questions with interval comparisons and never mutate.

Example:
    engine = TreeEngine(Category)

    async with session_factory() as session:
        category = Category(id="laptops", parent_id="computers")
        session.add(category)
        await session.flush()
        await engine.on_record_created(session, category.id, category.parent_id)

        crumbs = await engine.path(session, "laptops")
        # [<Category electronics>, <Category computers>, <Category laptops>]
        await session.commit()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import func, inspect as sa_inspect, select

from tree_index.core.database.hierarchy.intervals import iter_depths
from tree_index.core.database.hierarchy.mixins import NestedSetMixin
from tree_index.core.database.hierarchy.nested_set import NestedSetIndex
from tree_index.infra.logging import log_hook

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from tree_index.core.database.hierarchy.intervals import NodeInterval
    from tree_index.core.database.hierarchy.nested_set import TreeNode
    from tree_index.core.settings import TreeSettings

T = TypeVar("T", bound=NestedSetMixin)


class TreeEngine(Generic[T]):
    """Facade over a ``NestedSetIndex`` for one mapped model.

    Traversal methods return mapped instances loaded with
    ``populate_existing``, so instances already in the session reflect the
    current intervals. Unknown ids produce an empty result (``[]``,
    ``None``, ``False`` or ``0``) rather than an error.

    Args:
        model: Mapped class using ``NestedSetMixin``
        settings: Override for the cached ``TreeSettings``
        index: Pre-built index to wrap (defaults to a new one for ``model``)
    """

    def __init__(
        self,
        model: type[T],
        *,
        settings: TreeSettings | None = None,
        index: NestedSetIndex[T] | None = None,
    ) -> None:
        self.model = model
        self.index = index or NestedSetIndex(model, settings=settings)
        self._logger = logging.getLogger(f"tree.engine.{model.__name__}")

    # ──────────────────────────────────────────────────────────────
    # Lifecycle hooks
    # ──────────────────────────────────────────────────────────────

    @log_hook("created")
    async def on_record_created(self, session: AsyncSession, node_id: Any, parent_ref: Any = None) -> NodeInterval:
        """Place a freshly written record in the tree.

        Args:
            session: Session the record was written with
            node_id: Id of the new record
            parent_ref: Its parent reference (None or "" for a root)

        Returns:
            The interval assigned to the record
        """
        return await self.index.insert_node(session, node_id, parent_ref)

    @log_hook("parent_changed")
    async def on_parent_changed(
        self,
        session: AsyncSession,
        node_id: Any,
        old_parent_ref: Any,
        new_parent_ref: Any,
    ) -> NodeInterval | None:
        """Move a record's subtree after its parent reference changed.

        Returns:
            The new interval, or None when the parent did not change
        """
        if self._same_parent(old_parent_ref, new_parent_ref):
            return None
        target = None if self.index.is_root_ref(new_parent_ref) else new_parent_ref
        return await self.index.move_subtree(session, node_id, target)

    @log_hook("removed")
    async def on_record_removed(self, session: AsyncSession, node_id: Any, *, missing_ok: bool = False) -> int:
        """Delete a record's subtree and close the gap.

        Returns:
            Number of rows deleted
        """
        return await self.index.delete_subtree(session, node_id, missing_ok=missing_ok)

    async def on_instance_changed(self, session: AsyncSession, instance: T) -> NodeInterval | None:
        """Move ``instance`` if its parent reference was modified in memory.

        Reads the attribute history of the parent column, so it must be
        called after the attribute is set and before the session flushes.
        When the old value is not in the history (the column was expired,
        e.g. by a commit), the old parent is read from the intervals.
        Pending instances are skipped; ``on_record_created`` places them.

        Args:
            session: Session holding the instance
            instance: Persistent instance whose parent may have changed

        Returns:
            The new interval, or None when nothing moved
        """
        state = sa_inspect(instance)
        if not state.persistent:
            return None

        history = state.attrs[self.model.__tree_parent_column__].history
        if not history.has_changes():
            return None

        new_parent_ref = history.added[0] if history.added else None
        if history.deleted:
            old_parent_ref = history.deleted[0]
        else:
            # Parent column was expired or never loaded; the intervals still know
            old_parent = await self.parent(session, instance.tree_id)
            old_parent_ref = old_parent.tree_id if old_parent is not None else None
        return await self.on_parent_changed(session, instance.tree_id, old_parent_ref, new_parent_ref)

    async def rebuild(self, session: AsyncSession) -> int:
        """Renumber the whole table from parent references."""
        return await self.index.rebuild_from_parent_pointers(session)

    async def check_integrity(self, session: AsyncSession, *, full: bool = True) -> None:
        """Run the interval validation on demand."""
        await self.index.check_integrity(session, full=full)

    # ──────────────────────────────────────────────────────────────
    # Traversal
    # ──────────────────────────────────────────────────────────────

    async def children(self, session: AsyncSession, parent_id: Any = None) -> list[T]:
        """Immediate children of ``parent_id`` in sibling order.

        Args:
            session: Database session
            parent_id: Parent id; None (or "") returns the roots

        Returns:
            Placed rows whose parent reference equals ``parent_id``
        """
        if self.index.is_root_ref(parent_id):
            return await self.roots(session)
        stmt = (
            select(self.model)
            .where(self.index.parent_attr == parent_id, self.index.placed_clause())
            .order_by(self.model.lft)
        )
        return await self._fetch(session, stmt)

    async def parent(self, session: AsyncSession, node_id: Any) -> T | None:
        """Nearest enclosing node, or None for roots and unknown ids."""
        node = await self._placed(session, node_id)
        if node is None:
            return None
        model = self.model
        stmt = (
            select(model)
            .where(model.lft < node.lft, model.rgt > node.rgt)
            .order_by(model.lft.desc())
            .limit(1)
        )
        result = await self._fetch(session, stmt)
        return result[0] if result else None

    async def ancestors(self, session: AsyncSession, node_id: Any, *, include_self: bool = False) -> list[T]:
        """All ancestors, root first.

        Args:
            session: Database session
            node_id: Node whose ancestors to return
            include_self: Append the node itself after its ancestors

        Returns:
            Rows whose interval contains the node's interval
        """
        node = await self._placed(session, node_id)
        if node is None:
            return []
        model = self.model
        if include_self:
            criteria = (model.lft <= node.lft, model.rgt >= node.rgt)
        else:
            criteria = (model.lft < node.lft, model.rgt > node.rgt)
        return await self._fetch(session, select(model).where(*criteria).order_by(model.lft))

    async def descendants(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        include_self: bool = False,
        max_depth: int | None = None,
    ) -> list[T]:
        """All descendants in pre-order.

        Args:
            session: Database session
            node_id: Root of the subtree
            include_self: Prepend the node itself
            max_depth: Keep only descendants at most this many levels below
                the node (1 = children only). None means unlimited.

        Returns:
            Rows whose interval lies inside the node's interval
        """
        node = await self._placed(session, node_id)
        if node is None:
            return []
        model = self.model
        stmt = select(model).where(model.lft >= node.lft, model.rgt <= node.rgt).order_by(model.lft)
        rows = await self._fetch(session, stmt)

        if max_depth is not None:
            rows = [row for row, depth in iter_depths((row, row.interval) for row in rows) if depth <= max_depth]
        if not include_self:
            rows = [row for row in rows if row.lft != node.lft]
        return rows

    async def siblings(self, session: AsyncSession, node_id: Any, *, include_self: bool = False) -> list[T]:
        """Other children of the node's parent (other roots for a root)."""
        node = await self._placed(session, node_id)
        if node is None:
            return []
        rows = await self.children(session, node.parent_ref)
        if include_self:
            return rows
        return [row for row in rows if row.lft != node.lft]

    async def path(self, session: AsyncSession, node_id: Any) -> list[T]:
        """Ancestors followed by the node itself, root first."""
        return await self.ancestors(session, node_id, include_self=True)

    async def leaves(self, session: AsyncSession) -> list[T]:
        """Every node without children, in pre-order."""
        model = self.model
        return await self._fetch(session, select(model).where(model.rgt == model.lft + 1).order_by(model.lft))

    async def roots(self, session: AsyncSession) -> list[T]:
        """Placed nodes whose parent reference is empty, in order."""
        model = self.model
        stmt = select(model).where(self.index.root_clause(), self.index.placed_clause()).order_by(model.lft)
        return await self._fetch(session, stmt)

    async def depth(self, session: AsyncSession, node_id: Any) -> int | None:
        """Number of ancestors (0 for a root), None for unknown ids."""
        node = await self._placed(session, node_id)
        if node is None:
            return None
        model = self.model
        stmt = select(func.count()).select_from(model).where(model.lft < node.lft, model.rgt > node.rgt)
        return int(await session.scalar(stmt) or 0)

    async def subtree_count(self, session: AsyncSession, node_id: Any, *, include_self: bool = False) -> int:
        """Number of descendants, read from the interval width alone."""
        node = await self._placed(session, node_id)
        if node is None:
            return 0
        return node.descendant_count + (1 if include_self else 0)

    async def is_ancestor_of(self, session: AsyncSession, ancestor_id: Any, node_id: Any) -> bool:
        """Whether ``ancestor_id`` strictly encloses ``node_id``."""
        ancestor = await self.index.get_node(session, ancestor_id)
        if ancestor is None:
            return False
        node = await self.index.get_node(session, node_id)
        if node is None:
            return False
        return ancestor.contains(node)

    async def is_descendant_of(self, session: AsyncSession, node_id: Any, ancestor_id: Any) -> bool:
        """Whether ``node_id`` lies strictly inside ``ancestor_id``."""
        return await self.is_ancestor_of(session, ancestor_id, node_id)

    # ──────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────

    def _same_parent(self, old_parent_ref: Any, new_parent_ref: Any) -> bool:
        if self.index.is_root_ref(old_parent_ref) and self.index.is_root_ref(new_parent_ref):
            return True
        return old_parent_ref == new_parent_ref

    async def _placed(self, session: AsyncSession, node_id: Any) -> TreeNode | None:
        node = await self.index.get_node(session, node_id)
        if node is None or not node.is_placed:
            return None
        return node

    @staticmethod
    async def _fetch(session: AsyncSession, stmt: Select[Any]) -> list[T]:
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())


__all__ = ["TreeEngine"]
