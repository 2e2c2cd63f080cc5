"""Logging infrastructure.

Structured logging built on the standard library:
- JSONL format with OpenTelemetry trace correlation
- Automatic context injection via contextvars
- QueueHandler + QueueListener for non-blocking I/O
- Lazy evaluation for expensive DEBUG messages
- Operation logging helpers for tree mutations and hooks

Basic usage:
    from tree_index.infra.logging import setup_logging, set_log_context

    setup_logging()
    set_log_context(request_id="abc-123")
"""

from tree_index.infra.logging.config import configure_logging, setup_logging, shutdown
from tree_index.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    remove_from_log_context,
    set_log_context,
)
from tree_index.infra.logging.formatters import JSONFormatter
from tree_index.infra.logging.lazy import LazyLoggerAdapter, get_lazy_logger
from tree_index.infra.logging.operations import (
    OperationContext,
    log_hook,
    log_operation,
    operation_context,
)

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "OperationContext",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "log_context",
    "log_hook",
    "log_operation",
    "operation_context",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
