"""Log context carried across awaits with contextvars.

Every record emitted inside ``with_context(...)`` is enriched with the
correlation id and the tenant scope (school, campus) and resource being
worked on, so a revalidation pass can be followed across the cache and the
HTTP client.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field, replace
from typing import Any

_SCOPED_FIELDS = ("operation", "school_id", "campus_id", "resource")


@dataclass
class LogContext:
    """Holds contextual information for logging."""

    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    operation: str | None = None
    school_id: str | None = None
    campus_id: str | None = None
    resource: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for log enrichment."""
        result: dict[str, Any] = {"correlation_id": self.correlation_id}
        for name in _SCOPED_FIELDS:
            value = getattr(self, name)
            if value:
                result[name] = value
        result.update(self.extra)
        return result


_log_context: ContextVar[LogContext | None] = ContextVar("schoolsync_log_context", default=None)


def get_context() -> LogContext:
    """Get the current log context, creating a new one if none exists."""
    ctx = _log_context.get()
    if ctx is None:
        ctx = LogContext()
        _log_context.set(ctx)
    return ctx


def clear_context() -> None:
    _log_context.set(None)


def get_correlation_id() -> str:
    return get_context().correlation_id


class ContextScope:
    """Installs a LogContext for the duration of a with/async-with block.

    A nested scope inherits the fields of the enclosing one unless it
    overrides them, so a cache operation started under a CLI command keeps the
    command's correlation id.
    """

    def __init__(self, correlation_id: str | None = None, **fields: Any) -> None:
        parent = _log_context.get() or LogContext()
        known = {k: fields.pop(k) for k in _SCOPED_FIELDS if k in fields}
        self.new_context = replace(
            parent,
            correlation_id=correlation_id or parent.correlation_id,
            extra={**parent.extra, **fields},
            **known,
        )
        self._token: Token[LogContext | None] | None = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set(self.new_context)
        return self.new_context

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def with_context(correlation_id: str | None = None, **fields: Any) -> ContextScope:
    """Create a context scope with the given logging fields.

    Usage:
        with with_context(operation="revalidate", resource="grade-levels"):
            logger.info("Revalidating")
    """
    return ContextScope(correlation_id=correlation_id, **fields)
