"""Root logger setup for applications embedding the tree index.

The library itself only calls ``logging.getLogger``; this module is for the
host process. Records go through a ``QueueHandler`` on the root logger and
are written by a ``QueueListener`` thread, so a slow log file never stalls
the event loop while a write scope holds the table lock.
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING, Any

from tree_index.infra.logging.context import ContextInjectingFilter
from tree_index.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from tree_index.core.settings.logs import LoggingSettings

_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None
_LOGGING_INITIALIZED = False
logger = logging.getLogger(__name__)

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def shutdown() -> None:
    """Drain and stop the listener, then detach the queue handler.

    Registered with atexit by configure_logging(); safe to call repeatedly.
    """
    global _listener, _queue_handler

    if _listener is not None:
        _listener.stop()
        _listener = None

    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **overrides: Any,
) -> None:
    """Configure logging from ``LoggingSettings`` once per process.

    Args:
        log_settings: Settings to use (defaults to get_logging_settings())
        force: Reconfigure even if already initialized
        **overrides: Keyword arguments passed on to configure_logging()
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    if log_settings is None:
        from tree_index.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(**{**log_settings.to_logging_kwargs(), **overrides})
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    file_path: str | Path | None = None,
    json_logs: bool = True,
    console_enabled: bool = True,
    include_context: bool = True,
    capture_warnings: bool = True,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
    service_name: str = "tree-index",
) -> None:
    """Install the queue handler on the root logger.

    Args:
        log_level: Root logger level
        file_path: Rotating log file, None to disable
        json_logs: JSON Lines output instead of plain text
        console_enabled: Also write to stderr
        include_context: Inject log_context()/set_log_context() fields
        capture_warnings: Route the warnings module through logging
        file_max_bytes: Size at which the log file rotates
        file_backup_count: Rotated files to keep
        service_name: Static "service" field on JSON records
    """
    global _listener, _queue_handler

    logging.captureWarnings(capture_warnings)
    shutdown()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "root": {"level": log_level.upper(), "handlers": []},
        }
    )

    if json_logs:
        formatter: logging.Formatter = JSONFormatter(static={"service": service_name})
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handlers: list[logging.Handler] = []
    if console_enabled:
        handlers.append(logging.StreamHandler())
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=file_max_bytes, backupCount=file_backup_count, encoding="utf-8")
        )
    for handler in handlers:
        handler.setFormatter(formatter)

    queue: Queue[logging.LogRecord] = Queue()
    if handlers:
        _listener = QueueListener(queue, *handlers)
        _listener.start()
        atexit.register(shutdown)

    _queue_handler = QueueHandler(queue)
    # On the handler, not a logger, so propagated child records are enriched too
    if include_context:
        _queue_handler.addFilter(ContextInjectingFilter())
    logging.getLogger().addHandler(_queue_handler)
    logger.debug("Logging configured", extra={"handlers": len(handlers), "json": json_logs})
