"""Tree index exceptions.

Custom exceptions for nested-set operations that carry structured details
instead of surfacing raw SQLAlchemy errors.

Every mutating operation is all-or-nothing: by the time one of these
exceptions reaches the caller, the enclosing transaction (or savepoint) has
already been rolled back.
"""
from __future__ import annotations

from typing import Any


class TreeError(Exception):
    """Base exception for tree index operations.

    Attributes:
        message: Error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize tree error.

        Args:
            message: Error description
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Format error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class NodeNotFoundError(TreeError):
    """Referenced node is absent from the store.

    Raised when the node being placed, moved or deleted, or the parent it
    should be attached to, has no row in the table. The operation has no
    effect.

    Attributes:
        node_id: The identifier that was looked up
        role: Which argument was missing ("node" or "parent")
    """

    def __init__(self, node_id: Any, *, role: str = "node"):
        """Initialize not found error.

        Args:
            node_id: Identifier that was not found
            role: Which side of the operation it belonged to
        """
        self.node_id = node_id
        self.role = role
        label = "Parent node" if role == "parent" else "Node"
        super().__init__(f"{label} {node_id!r} not found", details={"role": role})

    def __repr__(self) -> str:
        """Repr for debugging."""
        return f"NodeNotFoundError(node_id={self.node_id!r}, role={self.role!r})"


class CycleError(TreeError):
    """Operation would make a node its own ancestor.

    Raised when moving a subtree under itself or one of its descendants,
    and when parent pointers handed to a rebuild form a loop.
    """

    def __init__(
        self,
        node_id: Any,
        target_id: Any = None,
        *,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """Initialize cycle error.

        Args:
            node_id: Root of the subtree being moved
            target_id: Requested new parent
            message: Override for the default message
            details: Extra context (merged with node/target)
        """
        self.node_id = node_id
        self.target_id = target_id
        if message is None:
            message = f"Cannot move node {node_id!r} into its own subtree at {target_id!r}"
        super().__init__(message, details=details or {})


class NodeAlreadyPlacedError(TreeError):
    """Node already has an interval and cannot be inserted again.

    Inserting a placed node would leave its old interval behind as a gap.
    Use ``move_subtree`` to reposition an existing node.
    """

    def __init__(self, node_id: Any, interval: tuple[int, int]):
        """Initialize already-placed error.

        Args:
            node_id: Identifier of the placed node
            interval: Its current ``(lft, rgt)``
        """
        self.node_id = node_id
        self.interval = interval
        super().__init__(
            f"Node {node_id!r} is already placed in the tree",
            details={"lft": interval[0], "rgt": interval[1]},
        )


class InvariantViolationError(TreeError):
    """Interval integrity check failed.

    Indicates a bug or a concurrent writer bypassing the write lock. The
    enclosing transaction is aborted; callers should treat this as fatal
    rather than retry.
    """


__all__ = [
    "CycleError",
    "InvariantViolationError",
    "NodeAlreadyPlacedError",
    "NodeNotFoundError",
    "TreeError",
]
