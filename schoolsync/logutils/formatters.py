"""Log formatters: JSON for production sinks, plain and compact for terminals."""

from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

from .context import get_context
from .masking import mask_dict, mask_sensitive_string


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging output.

    Produces one JSON object per record with the log context (correlation id,
    school, campus, resource) and any ``extra_data`` attached by the caller.
    """

    def __init__(self, include_context: bool = True, mask_sensitive: bool = True) -> None:
        super().__init__()
        self.include_context = include_context
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if self.mask_sensitive:
            message = mask_sensitive_string(message)

        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if self.include_context:
            log_data["context"] = get_context().to_dict()

        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        extra = getattr(record, "extra_data", None)
        if extra:
            if self.mask_sensitive and isinstance(extra, dict):
                extra = mask_dict(extra)
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter.

    Format: TIMESTAMP - LEVEL - LOGGER - [CORRELATION_ID] - MESSAGE
    """

    DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - [%(correlation_id)s] - %(message)s"
    DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self, mask_sensitive: bool = True) -> None:
        super().__init__(fmt=self.DEFAULT_FORMAT, datefmt=self.DEFAULT_DATE_FORMAT)
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        record.correlation_id = get_context().correlation_id
        result = super().format(record)
        if self.mask_sensitive:
            result = mask_sensitive_string(result)
        return result


class CompactFormatter(logging.Formatter):
    """Compact formatter for CLI output: ``[LEVEL] MESSAGE``."""

    LEVEL_LABELS = {
        "DEBUG": "DEBUG",
        "INFO": "INFO ",
        "WARNING": "WARN ",
        "ERROR": "ERROR",
        "CRITICAL": "CRIT ",
    }

    def __init__(self, mask_sensitive: bool = True) -> None:
        super().__init__()
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        level = self.LEVEL_LABELS.get(record.levelname, record.levelname)
        message = record.getMessage()
        if self.mask_sensitive:
            message = mask_sensitive_string(message)
        return f"[{level}] {message}"
