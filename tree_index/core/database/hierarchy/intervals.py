"""Pure-Python nested-set interval arithmetic.

Provides the parts of the nested-set model that need no database:
interval comparison, depth-first numbering of a forest given as parent
pointers, and validation of a complete interval assignment.

A forest of N nodes numbered with the nested-set model uses every integer
in ``[1, 2N]`` exactly once. A node's interval strictly contains the
intervals of all of its descendants:

    R (1, 8)
    ├── A (2, 5)
    │   └── C (3, 4)
    └── B (6, 7)

Example:
    >>> number_forest([("R", None), ("A", "R"), ("B", "R"), ("C", "A")])
    {'R': NodeInterval(lft=1, rgt=8), 'A': NodeInterval(lft=2, rgt=5), ...}
    >>> NodeInterval(1, 8).contains(NodeInterval(3, 4))
    True
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from tree_index.core.exceptions import CycleError, InvariantViolationError, NodeNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence

_EXHAUSTED = object()

K = TypeVar("K", bound=Hashable)
K2 = TypeVar("K2")


@dataclass(slots=True, frozen=True)
class NodeInterval:
    """A ``(lft, rgt)`` pair owned by one node.

    ``(0, 0)`` marks a row that exists but has not been placed in the tree.
    """

    lft: int
    rgt: int

    @property
    def is_placed(self) -> bool:
        """Whether the interval has been assigned."""
        return not (self.lft == 0 and self.rgt == 0)

    @property
    def width(self) -> int:
        """Size of the span, ``rgt - lft + 1``."""
        return self.rgt - self.lft + 1

    @property
    def descendant_count(self) -> int:
        """Number of nodes strictly inside this interval."""
        return (self.rgt - self.lft - 1) // 2

    @property
    def has_children(self) -> bool:
        """True when at least one interval nests inside this one."""
        return self.rgt - self.lft > 1

    def contains(self, other: NodeInterval) -> bool:
        """Strict containment: ``other`` is a descendant of this node."""
        return self.lft < other.lft and other.rgt < self.rgt

    def is_disjoint(self, other: NodeInterval) -> bool:
        """Whether the two intervals share no integer."""
        return self.rgt < other.lft or other.rgt < self.lft

    def shifted(self, delta: int) -> NodeInterval:
        """Return the interval moved by ``delta`` on both ends."""
        return NodeInterval(self.lft + delta, self.rgt + delta)


UNPLACED = NodeInterval(0, 0)


def number_forest(
    pairs: Iterable[tuple[K, K | None]],
    *,
    sort_key: Callable[[K], Any] | None = None,
    root_refs: Sequence[Any] = (None,),
) -> dict[K, NodeInterval]:
    """Assign nested-set intervals to a forest described by parent pointers.

    Numbering is a depth-first walk with an explicit stack (no recursion),
    so arbitrarily deep trees are safe. The counter starts at 1 and is
    incremented on entering and on leaving every node.

    Sibling order, including the order of roots, follows ``sort_key`` when
    given, otherwise the order of ``pairs``. Any order yields a valid
    numbering; the choice only decides which valid numbering is produced.

    Args:
        pairs: ``(node_id, parent_ref)`` for every node
        sort_key: Key used to order siblings (None keeps input order)
        root_refs: Parent values that mark a root (e.g. ``(None, "")``)

    Returns:
        Mapping of node id to its interval

    Raises:
        NodeNotFoundError: A parent reference names a node that is not in ``pairs``
        CycleError: Some nodes cannot be reached from any root
    """
    order: list[K] = []
    parents: dict[K, K | None] = {}
    for node_id, parent_ref in pairs:
        parents[node_id] = parent_ref
        order.append(node_id)

    roots: list[K] = []
    children: dict[K, list[K]] = {}
    for node_id in order:
        parent_ref = parents[node_id]
        if parent_ref in root_refs:
            roots.append(node_id)
            continue
        if parent_ref not in parents:
            raise NodeNotFoundError(parent_ref, role="parent")
        children.setdefault(parent_ref, []).append(node_id)

    if sort_key is not None:
        roots.sort(key=sort_key)
        for kids in children.values():
            kids.sort(key=sort_key)

    intervals: dict[K, NodeInterval] = {}
    lft: dict[K, int] = {}
    counter = 1

    for root in roots:
        lft[root] = counter
        counter += 1
        stack: list[tuple[K, Iterator[K]]] = [(root, iter(children.get(root, ())))]

        while stack:
            node_id, pending = stack[-1]
            child = next(pending, _EXHAUSTED)
            if child is _EXHAUSTED:
                stack.pop()
                intervals[node_id] = NodeInterval(lft[node_id], counter)
                counter += 1
            else:
                lft[child] = counter
                counter += 1
                stack.append((child, iter(children.get(child, ()))))

    if len(intervals) != len(parents):
        unreached = [node_id for node_id in order if node_id not in intervals]
        raise CycleError(
            unreached[0],
            parents[unreached[0]],
            message="Parent references form a cycle unreachable from any root",
            details={"nodes": unreached[:10], "count": len(unreached)},
        )

    return intervals


def iter_depths(rows: Iterable[tuple[K2, NodeInterval]]) -> Iterator[tuple[K2, int]]:
    """Yield each node with its depth relative to the outermost rows.

    ``rows`` must be in pre-order (ascending ``lft``). Rows with no
    enclosing row in the input get depth 0.
    """
    open_rgts: list[int] = []
    for node_id, interval in rows:
        while open_rgts and open_rgts[-1] < interval.lft:
            open_rgts.pop()
        yield node_id, len(open_rgts)
        open_rgts.append(interval.rgt)


def check_forest(rows: Iterable[tuple[Any, NodeInterval]]) -> None:
    """Validate a complete interval assignment.

    Checks that every interval satisfies ``lft < rgt``, that the endpoints
    cover ``[1, 2N]`` with no gaps or duplicates, and that no two intervals
    partially overlap.

    Args:
        rows: ``(node_id, interval)`` for every placed node, in any order

    Raises:
        InvariantViolationError: On the first violation found
    """
    ordered = sorted(rows, key=lambda row: row[1].lft)

    endpoints: list[int] = []
    for node_id, interval in ordered:
        if interval.lft >= interval.rgt:
            raise InvariantViolationError(
                "Interval is empty or inverted",
                details={"node": node_id, "lft": interval.lft, "rgt": interval.rgt},
            )
        endpoints.append(interval.lft)
        endpoints.append(interval.rgt)

    endpoints.sort()
    for expected, actual in enumerate(endpoints, start=1):
        if actual != expected:
            raise InvariantViolationError(
                "Interval endpoints are not a gap-free sequence",
                details={"expected": expected, "found": actual, "nodes": len(ordered)},
            )

    open_nodes: list[tuple[Any, NodeInterval]] = []
    for node_id, interval in ordered:
        while open_nodes and open_nodes[-1][1].rgt < interval.lft:
            open_nodes.pop()
        if open_nodes and interval.rgt > open_nodes[-1][1].rgt:
            outer_id, outer = open_nodes[-1]
            raise InvariantViolationError(
                "Intervals partially overlap",
                details={
                    "node": node_id,
                    "interval": (interval.lft, interval.rgt),
                    "other": outer_id,
                    "other_interval": (outer.lft, outer.rgt),
                },
            )
        open_nodes.append((node_id, interval))


__all__ = [
    "UNPLACED",
    "NodeInterval",
    "check_forest",
    "iter_depths",
    "number_forest",
]
