"""JSON Lines formatter with trace correlation."""
from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace

# Standard LogRecord attributes; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with UTC timestamps.

    Records emitted inside a ``tree.<operation>`` span carry its trace and
    span ids, and every ``extra``/``log_context()`` field is copied through:

        {"level": "DEBUG", "logger": "tree.Category", "message": "tree.move_subtree completed",
         "timestamp": "2025-01-01T00:00:00.123Z", "tree_table": "categories", "duration_ms": 1.2}
    """

    def __init__(
        self,
        fmt_keys: dict[str, str] | None = None,
        static: dict[str, Any] | None = None,
    ) -> None:
        super().__init__()
        self.fmt_keys = fmt_keys or {"level": "levelname", "logger": "name", "message": "message"}
        self.static = static or {}

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        data: dict[str, Any] = {key: getattr(record, attr, None) for key, attr in self.fmt_keys.items()}
        data["timestamp"] = (
            datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        )

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            data["trace_id"] = format(span_context.trace_id, "032x")
            data["span_id"] = format(span_context.span_id, "016x")

        # Escaped newlines keep one record per line
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info).replace("\n", "\\n")
        if record.stack_info:
            data["stack_trace"] = record.stack_info.replace("\n", "\\n")

        data.update(self.static)
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and key not in data:
                data[key] = value

        return json.dumps(data, ensure_ascii=False, default=str)
