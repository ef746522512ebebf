"""The ``{success, data?, error?}`` envelope every resource call returns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .errors import ErrorKind, error_for

T = TypeVar("T")


@dataclass(frozen=True)
class Pagination:
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Pagination:
        return cls(
            total=int(raw.get("total", 0)),
            page=int(raw.get("page", 1)),
            limit=int(raw.get("limit", 0)),
            total_pages=int(raw.get("totalPages", raw.get("total_pages", 0))),
        )


@dataclass(frozen=True)
class ResourceEnvelope(Generic[T]):
    """Result of one resource call.

    ``success=False`` implies ``data is None`` and ``error`` holds a
    human-readable message; ``kind`` tells callers how to react to it.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    kind: ErrorKind | None = None
    status_code: int | None = None
    message: str | None = None
    pagination: Pagination | None = None

    def __post_init__(self) -> None:
        if not self.success:
            if self.data is not None:
                raise ValueError("A failed envelope cannot carry data")
            if not self.error:
                object.__setattr__(self, "error", "Request failed")
            if self.kind is None:
                object.__setattr__(self, "kind", ErrorKind.SERVER)

    @classmethod
    def ok(cls, data: T | None = None, status_code: int | None = 200, **extra: Any) -> ResourceEnvelope[T]:
        return cls(success=True, data=data, status_code=status_code, **extra)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str, status_code: int | None = None) -> ResourceEnvelope[T]:
        return cls(success=False, error=error, kind=kind, status_code=status_code)

    def unwrap(self) -> T:
        """Return ``data`` or raise the typed error for this failure.

        Raises:
            ResourceError: subclass matching ``kind``
        """
        if self.success:
            return self.data  # type: ignore[return-value]
        raise self.to_exception()

    def to_exception(self):
        if self.success:
            raise ValueError("A successful envelope has no error")
        return error_for(self.kind or ErrorKind.SERVER, self.error or "Request failed", self.status_code)
