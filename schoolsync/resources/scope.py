"""Tenant scope and user notifications shared by the resource bindings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..logutils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Scope:
    """School (tenant) and, optionally, the campus selected within it."""

    school_id: str
    campus_id: str | None = None

    def query(self) -> dict[str, str]:
        params = {"school_id": self.school_id}
        if self.campus_id:
            params["campus_id"] = self.campus_id
        return params


class Notifier(Protocol):
    """Where user-facing outcome messages go (toasts, CLI output, logs)."""

    def success(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Notifier that writes every message to the log."""

    def success(self, message: str) -> None:
        logger.info(message)

    def warning(self, message: str) -> None:
        logger.warning(message)

    def error(self, message: str) -> None:
        logger.error(message)
