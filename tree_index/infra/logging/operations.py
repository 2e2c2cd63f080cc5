"""Operation logging decorators and context managers.

Reusable logging patterns for tree mutations and hook dispatch, designed to
complement OpenTelemetry spans rather than duplicate them.

Key features:
- Automatic exit logging with duration
- Zero overhead when the level is disabled
- Structured extra fields for queryability

Example:
    from tree_index.infra.logging.operations import log_hook, operation_context

    class TreeEngine:
        @log_hook("created")
        async def on_record_created(self, session, node_id, parent_ref=None):
            ...

    async with operation_context("tree.rebuild", table="category") as ctx:
        count = await renumber()
        ctx.set_result(rows=count)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

P = ParamSpec("P")
R = TypeVar("R")


def log_operation(
    operation_type: str,
    *,
    level: int = logging.DEBUG,
    log_args: bool = False,
    error_level: int = logging.ERROR,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Generic operation logging decorator.

    Logs operation exit with duration, and errors. Skips all work when
    neither level is enabled.

    Args:
        operation_type: Operation category (e.g., "tree.hook")
        level: Log level for success messages (default: DEBUG)
        log_args: Whether to include positional arguments after self and session
        error_level: Log level for errors (default: ERROR)

    Returns:
        Decorated function with automatic logging
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        logger = logging.getLogger(func.__module__)
        func_name = func.__name__
        is_async = asyncio.iscoroutinefunction(func)

        def _extra(args: tuple[Any, ...]) -> dict[str, Any]:
            extra: dict[str, Any] = {"operation": operation_type, "function": func_name}
            if log_args and len(args) > 2:
                # Skip self and session
                extra["call_args"] = _sanitize_args(args[2:])
            return extra

        @functools.wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            should_log = logger.isEnabledFor(level)
            should_log_errors = logger.isEnabledFor(error_level)

            if not should_log and not should_log_errors:
                return await func(*args, **kwargs)

            extra = _extra(args)
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                if should_log_errors:
                    extra["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
                    extra["success"] = False
                    extra["error_type"] = type(exc).__name__
                    extra["error"] = str(exc)
                    logger.log(error_level, f"{operation_type}.{func_name} failed", extra=extra)
                raise

            if should_log:
                extra["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
                extra["success"] = True
                logger.log(level, f"{operation_type}.{func_name}", extra=extra)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            should_log = logger.isEnabledFor(level)
            should_log_errors = logger.isEnabledFor(error_level)

            if not should_log and not should_log_errors:
                return func(*args, **kwargs)

            extra = _extra(args)
            start_time = time.perf_counter()

            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                if should_log_errors:
                    extra["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
                    extra["success"] = False
                    extra["error_type"] = type(exc).__name__
                    extra["error"] = str(exc)
                    logger.log(error_level, f"{operation_type}.{func_name} failed", extra=extra)
                raise

            if should_log:
                extra["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
                extra["success"] = True
                logger.log(level, f"{operation_type}.{func_name}", extra=extra)
            return result

        return async_wrapper if is_async else sync_wrapper  # type: ignore[return-value]

    return decorator


def log_hook(
    hook: str,
    *,
    level: int = logging.DEBUG,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator for lifecycle hook entry points.

    Hook failures are usually expected domain errors (cycles, missing
    parents) that the caller handles, so they log at WARNING.

    Args:
        hook: Hook name (e.g., "created", "parent_changed")
        level: Log level for success (default: DEBUG)

    Example:
        @log_hook("removed")
        async def on_record_removed(self, session, node_id):
            ...
    """
    return log_operation(f"tree.hook.{hook}", level=level, log_args=True, error_level=logging.WARNING)


class OperationContext:
    """Helper class for operation context managers.

    Allows setting additional result data during the operation.
    """

    __slots__ = ("_extra",)

    def __init__(self) -> None:
        self._extra: dict[str, Any] = {}

    def set_result(self, **kwargs: Any) -> None:
        """Add result data to be logged on completion."""
        self._extra.update(kwargs)

    def set(self, key: str, value: Any) -> None:
        """Add a single result value."""
        self._extra[key] = value


@asynccontextmanager
async def operation_context(
    operation_name: str,
    *,
    logger: logging.Logger | None = None,
    level: int = logging.DEBUG,
    error_level: int = logging.ERROR,
    **context_data: Any,
) -> AsyncIterator[OperationContext]:
    """Async context manager for logging operation blocks.

    Args:
        operation_name: Name for the operation
        logger: Logger to use (default: module logger)
        level: Log level for success (default: DEBUG)
        error_level: Log level for errors (default: ERROR)
        **context_data: Additional context to include in logs

    Yields:
        OperationContext for adding result data
    """
    log = logger or logging.getLogger(__name__)
    ctx = OperationContext()

    should_log = log.isEnabledFor(level)
    should_log_errors = log.isEnabledFor(error_level)

    if not should_log and not should_log_errors:
        yield ctx
        return

    start_time = time.perf_counter()
    extra: dict[str, Any] = {"operation": operation_name, **context_data}

    try:
        yield ctx
    except Exception as exc:
        if should_log_errors:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            log.log(
                error_level,
                f"{operation_name} failed: {exc}",
                extra={
                    **extra,
                    **ctx._extra,
                    "duration_ms": duration_ms,
                    "success": False,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
        raise

    if should_log:
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        log.log(
            level,
            f"{operation_name} completed",
            extra={**extra, **ctx._extra, "duration_ms": duration_ms, "success": True},
        )


def _sanitize_args(args: tuple[Any, ...]) -> list[str]:
    """Convert args to safe string representations for logging."""
    result = []
    for arg in args:
        if isinstance(arg, (str, int, float, bool, type(None))):
            s = str(arg)
            result.append(s[:100] if len(s) > 100 else s)
        else:
            result.append(f"<{type(arg).__name__}>")
    return result
