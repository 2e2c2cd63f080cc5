"""Nested-set interval index over an async SQLAlchemy session.

``NestedSetIndex`` keeps the ``lft``/``rgt`` intervals of a mapped model
consistent while nodes are inserted, moved and deleted. Every mutation is
a short sequence of set-based range-shift UPDATEs, so the cost depends on
how many rows sit to the right of the change, not on tree depth.

Example:
    from tree_index.core.database.hierarchy import NestedSetIndex

    index = NestedSetIndex(Category)

    async with session_factory() as session:
        session.add(Category(id="electronics", parent_id=None))
        session.add(Category(id="laptops", parent_id="electronics"))
        await session.flush()

        await index.insert_node(session, "electronics")
        await index.insert_node(session, "laptops", "electronics")
        await session.commit()

Concurrency:
    Mutations serialize on a per-table ``asyncio.Lock`` within the process
    and on the database write lock across processes (``LOCK TABLE`` on
    PostgreSQL, ``BEGIN IMMEDIATE`` on SQLite via the session factory).
    Reads take no lock.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, NoReturn, TypeVar

from opentelemetry import trace
from sqlalchemy import String, bindparam, case, delete, func, inspect as sa_inspect, or_, select, text, update

from tree_index.core.database.hierarchy.intervals import NodeInterval, check_forest, number_forest
from tree_index.core.database.hierarchy.mixins import NestedSetMixin
from tree_index.core.exceptions import (
    CycleError,
    InvariantViolationError,
    NodeAlreadyPlacedError,
    NodeNotFoundError,
    TreeError,
)
from tree_index.core.settings import get_tree_settings
from tree_index.infra.logging import get_lazy_logger, log_context, operation_context

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy import ColumnElement, Update
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute

    from tree_index.core.settings import TreeSettings
    from tree_index.infra.logging import OperationContext

tracer = trace.get_tracer(__name__)

# Identity-map refreshes are chunked to stay under bind parameter limits
_REFRESH_BATCH = 500

# One lock per table per event loop; asyncio locks are bound to their loop
_write_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = (
    weakref.WeakKeyDictionary()
)


def _table_lock(table_name: str) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    locks = _write_locks.setdefault(loop, {})
    lock = locks.get(table_name)
    if lock is None:
        lock = locks[table_name] = asyncio.Lock()
    return lock


@dataclass(slots=True, frozen=True)
class TreeNode:
    """Point-in-time snapshot of one node's index columns.

    Attributes:
        id: Caller-defined node identifier
        lft: Left bound (0 while unplaced)
        rgt: Right bound (0 while unplaced)
        parent_ref: Value of the parent reference column
        stored_is_group: Group flag as stored in the row
    """

    id: Any
    lft: int
    rgt: int
    parent_ref: Any
    stored_is_group: bool

    @property
    def interval(self) -> NodeInterval:
        """The node's interval."""
        return NodeInterval(self.lft, self.rgt)

    @property
    def is_placed(self) -> bool:
        """Whether the node has an interval."""
        return self.interval.is_placed

    @property
    def is_group(self) -> bool:
        """Derived group flag, ``rgt - lft > 1``."""
        return self.interval.has_children

    @property
    def is_leaf(self) -> bool:
        """Placed node without descendants."""
        return self.is_placed and not self.is_group

    @property
    def width(self) -> int:
        """Interval width ``rgt - lft + 1``."""
        return self.interval.width

    @property
    def descendant_count(self) -> int:
        """Number of descendants implied by the interval."""
        return self.interval.descendant_count if self.is_placed else 0

    def contains(self, other: TreeNode) -> bool:
        """Whether ``other`` is a strict descendant of this node."""
        if not (self.is_placed and other.is_placed):
            return False
        return self.interval.contains(other.interval)

T = TypeVar("T", bound=NestedSetMixin)


class NestedSetIndex(Generic[T]):
    """Maintains nested-set intervals for one mapped model.

    All methods take the session explicitly. Mutating methods run inside a
    write scope: a transaction, or a savepoint when the session already has
    one open, so any failure leaves the store as it was before the call.

    Args:
        model: Mapped class using ``NestedSetMixin``
        settings: Override for the cached ``TreeSettings``
    """

    def __init__(self, model: type[T], *, settings: TreeSettings | None = None) -> None:
        self.model = model
        self.table = model.__table__
        mapper = sa_inspect(model)
        self._id_column = mapper.columns[model.__tree_id_column__]
        self._parent_column = mapper.columns[model.__tree_parent_column__]
        self._settings = settings
        self._logger = logging.getLogger(f"tree.{model.__name__}")
        self._lazy = get_lazy_logger(f"tree.{model.__name__}")

    # ──────────────────────────────────────────────────────────────
    # Column helpers
    # ──────────────────────────────────────────────────────────────

    @property
    def settings(self) -> TreeSettings:
        """Active tree settings."""
        return self._settings or get_tree_settings()

    @property
    def id_attr(self) -> InstrumentedAttribute[Any]:
        """Mapped id attribute."""
        return self.model.tree_id_attr()

    @property
    def parent_attr(self) -> InstrumentedAttribute[Any]:
        """Mapped parent reference attribute."""
        return self.model.tree_parent_attr()

    @property
    def root_refs(self) -> tuple[Any, ...]:
        """Parent reference values that denote a root."""
        return (None, "") if self.settings.empty_parent_is_root else (None,)

    def is_root_ref(self, value: Any) -> bool:
        """Check whether a parent reference value denotes a root."""
        return value in self.root_refs

    def root_clause(self) -> ColumnElement[bool]:
        """SQL criterion matching rows whose parent reference denotes a root."""
        parent = self.parent_attr
        if self.settings.empty_parent_is_root and isinstance(self._parent_column.type, String):
            return or_(parent.is_(None), parent == "")
        return parent.is_(None)

    def placed_clause(self) -> ColumnElement[bool]:
        """SQL criterion matching rows that have an interval."""
        return self.model.lft > 0

    # ──────────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────────

    async def get_node(self, session: AsyncSession, node_id: Any) -> TreeNode | None:
        """Point lookup of one node's index columns.

        Args:
            session: Database session
            node_id: Node identifier

        Returns:
            Snapshot of the row, or None if it doesn't exist
        """
        if node_id is None:
            return None
        model = self.model
        stmt = select(self.id_attr, model.lft, model.rgt, self.parent_attr, model.is_group).where(
            self.id_attr == node_id
        )
        row = (await session.execute(stmt)).first()
        if row is None:
            return None
        return TreeNode(
            id=row[0],
            lft=row[1] or 0,
            rgt=row[2] or 0,
            parent_ref=row[3],
            stored_is_group=bool(row[4]),
        )

    async def max_right(self, session: AsyncSession) -> int:
        """Largest ``rgt`` among placed rows, 0 for an empty tree."""
        stmt = select(func.coalesce(func.max(self.model.rgt), 0)).where(self.model.rgt > 0)
        return int(await session.scalar(stmt) or 0)

    async def check_integrity(self, session: AsyncSession, *, full: bool = True) -> None:
        """Validate the stored intervals.

        The basic check runs one aggregate query: every placed row must have
        ``0 < lft < rgt`` and the largest ``rgt`` must equal twice the number
        of placed rows. The full check also loads every interval and verifies
        nesting and gap-free numbering.

        Args:
            session: Database session
            full: Run the full O(n log n) validation

        Raises:
            InvariantViolationError: If any check fails
        """
        model = self.model
        placed = or_(model.lft != 0, model.rgt != 0)
        invalid = case((or_(model.lft >= model.rgt, model.lft < 1), 1), else_=0)
        stmt = select(
            func.count(),
            func.coalesce(func.max(model.rgt), 0),
            func.coalesce(func.sum(invalid), 0),
        ).where(placed)
        count, right, bad = (await session.execute(stmt)).one()

        if bad:
            raise InvariantViolationError(
                "Rows with inverted or negative intervals",
                details={"table": self.table.name, "rows": int(bad)},
            )
        if right != 2 * count:
            raise InvariantViolationError(
                "Interval space is not gap-free",
                details={"table": self.table.name, "max_rgt": int(right), "nodes": int(count)},
            )
        if not full:
            return

        rows = await session.execute(select(self.id_attr, model.lft, model.rgt).where(placed))
        check_forest((row[0], NodeInterval(row[1], row[2])) for row in rows)

    # ──────────────────────────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────────────────────────

    async def insert_root(self, session: AsyncSession, node_id: Any) -> NodeInterval:
        """Give an unplaced node the interval after the last root.

        Args:
            session: Database session
            node_id: Node to place

        Returns:
            The assigned interval

        Raises:
            NodeNotFoundError: If the row doesn't exist
            NodeAlreadyPlacedError: If the node already has an interval
        """
        async with self._write_scope(session, "insert_root", node_id=node_id):
            node = await self._require(session, node_id)
            self._ensure_unplaced(node)
            right = await self.max_right(session)
            interval = NodeInterval(right + 1, right + 2)
            await self._assign(session, node_id, interval)
        return interval

    async def insert_child(self, session: AsyncSession, node_id: Any, parent_id: Any) -> NodeInterval:
        """Place an unplaced node as the last child of ``parent_id``.

        Opens a gap of two at the parent's right bound, so the parent and
        all of its ancestors grow by two and every row to the right shifts.

        Args:
            session: Database session
            node_id: Node to place
            parent_id: Its parent

        Returns:
            The assigned interval

        Raises:
            NodeNotFoundError: If the node or parent doesn't exist
            CycleError: If ``parent_id == node_id``
            NodeAlreadyPlacedError: If the node already has an interval
        """
        async with self._write_scope(session, "insert_child", node_id=node_id, parent_id=parent_id):
            if node_id == parent_id:
                raise CycleError(node_id, parent_id, message=f"Node {node_id!r} cannot be its own parent")
            node = await self._require(session, node_id)
            self._ensure_unplaced(node)
            parent = await self._require(session, parent_id, role="parent")
            self._ensure_placed(parent, role="parent")

            model = self.model
            anchor = parent.rgt
            await self._shift(session, model.lft, 2, model.lft > anchor)
            await self._shift(session, model.rgt, 2, model.rgt >= anchor)
            interval = NodeInterval(anchor, anchor + 1)
            await self._assign(session, node_id, interval)
        return interval

    async def insert_node(self, session: AsyncSession, node_id: Any, parent_id: Any = None) -> NodeInterval:
        """Place a node as a root or as the last child of ``parent_id``."""
        if self.is_root_ref(parent_id):
            return await self.insert_root(session, node_id)
        return await self.insert_child(session, node_id, parent_id)

    async def move_subtree(self, session: AsyncSession, node_id: Any, new_parent_id: Any = None) -> NodeInterval:
        """Move a node and its whole subtree under a new parent.

        The subtree becomes the last child of ``new_parent_id``, or the last
        root when ``new_parent_id`` is None. Runs in four phases:

        1. quarantine the subtree by negating its bounds
        2. close the gap it left behind
        3. open a gap of the same width at the destination
        4. re-attach the subtree, shifting it by ``target - original_lft``

        Args:
            session: Database session
            node_id: Root of the subtree to move
            new_parent_id: New parent, or None to make it a root

        Returns:
            The subtree root's new interval

        Raises:
            NodeNotFoundError: If the node or new parent doesn't exist
            CycleError: If the new parent is the node itself or a descendant
        """
        async with self._write_scope(session, "move_subtree", node_id=node_id, parent_id=new_parent_id):
            node = await self._require(session, node_id)
            self._ensure_placed(node)

            new_parent: TreeNode | None = None
            if not self.is_root_ref(new_parent_id):
                new_parent = await self._require(session, new_parent_id, role="parent")
                self._ensure_placed(new_parent, role="parent")
                if node.lft <= new_parent.lft and new_parent.rgt <= node.rgt:
                    raise CycleError(node_id, new_parent_id)

            model = self.model
            width = node.width

            await session.execute(
                self._update()
                .where(model.lft >= node.lft, model.rgt <= node.rgt)
                .values({model.lft: -model.lft, model.rgt: -model.rgt})
            )

            await self._shift(session, model.rgt, -width, model.rgt > node.rgt)
            await self._shift(session, model.lft, -width, model.lft > node.rgt)

            if new_parent is None:
                target = await self.max_right(session) + 1
            else:
                # Parent bounds after the gap closed; rows right of the subtree moved left
                target = new_parent.rgt - width if new_parent.rgt > node.rgt else new_parent.rgt
                await self._shift(session, model.lft, width, model.lft >= target)
                await self._shift(session, model.rgt, width, model.rgt >= target)

            offset = target - node.lft
            await session.execute(
                self._update()
                .where(model.lft < 0)
                .values({model.lft: func.abs(model.lft) + offset, model.rgt: func.abs(model.rgt) + offset})
            )
            self._lazy.debug(
                lambda: f"moved {node_id!r} from ({node.lft}, {node.rgt}) by {offset}",
                extra={"node_id": str(node_id), "width": width},
            )
        return node.interval.shifted(offset)

    async def delete_subtree(self, session: AsyncSession, node_id: Any, *, missing_ok: bool = False) -> int:
        """Delete a node and every descendant, then close the gap.

        Args:
            session: Database session
            node_id: Root of the subtree to delete
            missing_ok: Return 0 instead of raising when the node is absent

        Returns:
            Number of rows deleted

        Raises:
            NodeNotFoundError: If the node doesn't exist and ``missing_ok`` is False
        """
        async with self._write_scope(session, "delete_subtree", node_id=node_id) as ctx:
            node = await self.get_node(session, node_id)
            if node is None:
                if not missing_ok:
                    self._not_found(node_id, "node", "tree.delete_subtree")
                ctx.set_result(rows=0)
                return 0

            model = self.model
            if not node.is_placed:
                criteria: tuple[ColumnElement[bool], ...] = (self.id_attr == node_id,)
            else:
                criteria = (model.lft >= node.lft, model.rgt <= node.rgt)

            result = await session.execute(
                delete(model).where(*criteria).execution_options(synchronize_session="fetch")
            )
            if node.is_placed:
                await self._shift(session, model.rgt, -node.width, model.rgt > node.rgt)
                await self._shift(session, model.lft, -node.width, model.lft > node.rgt)

            ctx.set_result(rows=result.rowcount)
        return result.rowcount

    async def rebuild_from_parent_pointers(self, session: AsyncSession) -> int:
        """Recompute every interval from the parent reference column.

        Sibling order follows ``TreeSettings.rebuild_order``. Rows whose
        parent reference is a root value become roots. Every row, placed or
        not, ends up with a fresh interval.

        Args:
            session: Database session

        Returns:
            Number of rows numbered

        Raises:
            NodeNotFoundError: If a parent reference names a missing row
            CycleError: If parent references form a loop
        """
        async with self._write_scope(session, "rebuild") as ctx:
            model = self.model
            if self.settings.rebuild_order == "lft":
                order_by: tuple[Any, ...] = (case((model.lft > 0, 0), else_=1), model.lft, self.id_attr)
            else:
                order_by = (self.id_attr,)

            rows = (await session.execute(select(self.id_attr, self.parent_attr).order_by(*order_by))).all()
            intervals = number_forest(((row[0], row[1]) for row in rows), root_refs=self.root_refs)

            if intervals:
                stmt = (
                    update(self.table)
                    .where(self._id_column == bindparam("b_id"))
                    .values(
                        lft=bindparam("b_lft"),
                        rgt=bindparam("b_rgt"),
                        is_group=bindparam("b_is_group"),
                    )
                )
                await session.execute(
                    stmt,
                    [
                        {
                            "b_id": node_id,
                            "b_lft": interval.lft,
                            "b_rgt": interval.rgt,
                            "b_is_group": interval.has_children,
                        }
                        for node_id, interval in intervals.items()
                    ],
                )
            ctx.set_result(rows=len(intervals))
        return len(intervals)

    # ──────────────────────────────────────────────────────────────
    # Write scope
    # ──────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _write_scope(
        self, session: AsyncSession, operation: str, **context: Any
    ) -> AsyncIterator[OperationContext]:
        """Serialize, transact, verify and refresh around one mutation."""
        fields = {key: str(value) for key, value in context.items()}
        with (
            tracer.start_as_current_span(f"tree.{operation}") as span,
            log_context(tree_table=self.table.name, tree_operation=f"tree.{operation}"),
        ):
            span.set_attribute("tree.table", self.table.name)
            for key, value in fields.items():
                span.set_attribute(f"tree.{key}", value)

            async with operation_context(
                f"tree.{operation}",
                logger=self._logger,
                error_level=logging.WARNING,
                table=self.table.name,
                **fields,
            ) as ctx:
                async with _table_lock(self.table.name):
                    if session.in_transaction():
                        await session.flush()
                        transaction = session.begin_nested()
                    else:
                        transaction = session.begin()

                    async with transaction:
                        await session.flush()
                        await self._lock_table(session)
                        yield ctx
                        await self._sync_group_flags(session)
                        await self._verify(session, operation)
                        await self._refresh_loaded(session)

    async def _lock_table(self, session: AsyncSession) -> None:
        settings = self.settings
        if not settings.lock_table:
            return
        dialect = session.get_bind().dialect
        if dialect.name != "postgresql":
            return
        table = dialect.identifier_preparer.format_table(self.table)
        await session.execute(text(f"LOCK TABLE {table} IN {settings.lock_mode} MODE"))

    async def _sync_group_flags(self, session: AsyncSession) -> None:
        """Re-derive ``is_group`` for rows whose stored flag disagrees."""
        model = self.model
        await session.execute(
            self._update().where(model.rgt - model.lft > 1, model.is_group.is_(False)).values(is_group=True)
        )
        await session.execute(
            self._update().where(model.rgt - model.lft <= 1, model.is_group.is_(True)).values(is_group=False)
        )

    async def _verify(self, session: AsyncSession, operation: str) -> None:
        mode = self.settings.integrity_check
        if mode == "off":
            return
        try:
            await self.check_integrity(session, full=mode == "full")
        except InvariantViolationError as exc:
            self._logger.error(
                "Interval invariant violated",
                extra={
                    "operation": f"tree.{operation}",
                    "table": self.table.name,
                    "check": mode,
                    "details": exc.details,
                },
            )
            raise

    async def _refresh_loaded(self, session: AsyncSession) -> None:
        """Reload interval columns of instances already in the identity map."""
        key = self.model.__tree_id_column__
        loaded: list[Any] = []
        for obj in session.identity_map.values():
            if not isinstance(obj, self.model):
                continue
            state = sa_inspect(obj)
            if state.deleted or key not in state.dict:
                continue
            loaded.append(state.dict[key])

        for start in range(0, len(loaded), _REFRESH_BATCH):
            batch = loaded[start : start + _REFRESH_BATCH]
            await session.execute(
                select(self.model).where(self.id_attr.in_(batch)).execution_options(populate_existing=True)
            )

    # ──────────────────────────────────────────────────────────────
    # Statement helpers
    # ──────────────────────────────────────────────────────────────

    def _update(self) -> Update:
        return update(self.model).execution_options(synchronize_session=False)

    async def _shift(
        self,
        session: AsyncSession,
        column: InstrumentedAttribute[int],
        delta: int,
        criterion: ColumnElement[bool],
    ) -> None:
        await session.execute(self._update().where(criterion).values({column: column + delta}))

    async def _assign(self, session: AsyncSession, node_id: Any, interval: NodeInterval) -> None:
        await session.execute(
            self._update()
            .where(self.id_attr == node_id)
            .values(lft=interval.lft, rgt=interval.rgt, is_group=interval.has_children)
        )

    async def _require(self, session: AsyncSession, node_id: Any, role: str = "node") -> TreeNode:
        node = await self.get_node(session, node_id)
        if node is None:
            self._not_found(node_id, role, f"tree.require_{role}")
        return node

    def _not_found(self, node_id: Any, role: str, operation: str) -> NoReturn:
        self._logger.info(
            "Tree node not found",
            extra={
                "entity": self.model.__name__,
                "id": str(node_id),
                "role": role,
                "operation": operation,
            },
        )
        raise NodeNotFoundError(node_id, role=role)

    @staticmethod
    def _ensure_unplaced(node: TreeNode) -> None:
        if node.is_placed:
            raise NodeAlreadyPlacedError(node.id, (node.lft, node.rgt))

    @staticmethod
    def _ensure_placed(node: TreeNode, role: str = "node") -> None:
        if not node.is_placed:
            label = "Parent node" if role == "parent" else "Node"
            raise TreeError(
                f"{label} {node.id!r} has no interval yet",
                details={"role": role},
            )


__all__ = [
    "NestedSetIndex",
    "TreeNode",
]
