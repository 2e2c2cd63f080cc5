"""Context management for structured logging.

Provides automatic context injection into log records using contextvars, so
that identifiers such as the tree table or a caller's request id appear in
every record without being passed explicitly.

Tree mutations bind ``tree_table`` and ``tree_operation`` with
``log_context()`` for their duration, so records from helpers called
inside a mutation can be filtered by table without threading names through.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

# Each async task gets its own copy automatically
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for current async task/thread.

    Args:
        **kwargs: Key-value pairs to add to logging context.

    Example:
        ```python
        set_log_context(request_id="abc-123", tree="category")
        logger.info("Moving subtree")  # Includes request_id and tree
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for current async task/thread."""
    _log_context.set({})


def remove_from_log_context(*keys: str) -> None:
    """Remove specific keys from logging context.

    Args:
        *keys: Keys to remove from context.
    """
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind context fields for the duration of a block.

    The previous context is restored on exit, including on error, so nested
    blocks see the outer fields again once they finish.

    Example:
        ```python
        with log_context(tree_table="categories", tree_operation="tree.rebuild"):
            logger.debug("numbering rows")  # Includes tree_table and tree_operation
        ```
    """
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that injects the contextvars log context into records.

    Attached to the root queue handler by configure_logging(), so records
    from every logger are enriched without code changes.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject context into log record.

        Args:
            record: The log record to enhance with context.

        Returns:
            True (always allow the record to be logged).
        """
        for key, value in _log_context.get().items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)

        return True
