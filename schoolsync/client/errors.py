"""Error taxonomy for the resource client and the cache.

Expected HTTP failures never escape the client as exceptions: they are
captured in a ``ResourceEnvelope`` with an ``ErrorKind``. The exceptions below
are what ``ResourceEnvelope.unwrap()`` raises, what cache fetchers raise, and
what a failed mutation surfaces to its caller.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Category of a failed resource call."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"


class ResourceError(Exception):
    """Base class for resource errors with a message safe to show a user."""

    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str, status_code: int | None = None, user_message: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or message


class ValidationError(ResourceError):
    """Malformed request (missing field, bad id). Never retried."""

    kind = ErrorKind.VALIDATION


class ConflictError(ResourceError):
    """Uniqueness or constraint violation reported by the backend."""

    kind = ErrorKind.CONFLICT


class NotFoundError(ResourceError):
    """The addressed record no longer exists server-side."""

    kind = ErrorKind.NOT_FOUND


class AuthError(ResourceError):
    """Missing, invalid or expired session."""

    kind = ErrorKind.AUTH

    def __init__(self, message: str = "Session expired. Please login again.", status_code: int | None = 401):
        super().__init__(message, status_code=status_code)


class PermissionDeniedError(ResourceError):
    """Authenticated, but the profile's role or school does not allow the call."""

    kind = ErrorKind.FORBIDDEN


class NetworkError(ResourceError):
    """Transport failure before a response was received."""

    kind = ErrorKind.NETWORK

    def __init__(self, message: str = "Network error occurred", status_code: int | None = None):
        super().__init__(
            message,
            status_code=status_code,
            user_message="Service temporarily unavailable. Please try again in a moment.",
        )


class RequestTimeoutError(NetworkError):
    """The request exceeded the client timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "Request timed out", status_code: int | None = None):
        super().__init__(message, status_code=status_code)


class ServerError(ResourceError):
    """5xx response that is not a recognised constraint violation."""

    kind = ErrorKind.SERVER


class MalformedResponseError(ResourceError):
    """The backend answered with a body that is not a JSON object.

    Unlike the other errors this one is raised by the client itself.
    """

    kind = ErrorKind.SERVER


ERROR_TYPES: dict[ErrorKind, type[ResourceError]] = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.AUTH: AuthError,
    ErrorKind.FORBIDDEN: PermissionDeniedError,
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.TIMEOUT: RequestTimeoutError,
    ErrorKind.SERVER: ServerError,
}

RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER})

_AUTH_MARKERS = ("401", "unauthorized", "session expired")


def error_for(kind: ErrorKind, message: str, status_code: int | None = None) -> ResourceError:
    """Build the exception matching an error kind."""
    error_type = ERROR_TYPES[kind]
    if error_type is AuthError:
        return AuthError(message, status_code=status_code)
    return error_type(message, status_code=status_code)


def is_retryable_error(error: BaseException) -> bool:
    """Determine if a failed fetch should be retried.

    Retries on network failures, timeouts and 5xx responses. Does NOT retry
    validation, conflict, not-found, permission or auth errors, nor a
    malformed response body.
    """
    if isinstance(error, MalformedResponseError):
        return False
    if isinstance(error, ResourceError):
        return error.kind in RETRYABLE_KINDS
    return False


def is_auth_failure(error: BaseException) -> bool:
    """True if an error indicates the session is no longer valid.

    Typed resource errors are judged by kind and status only, so a
    conflict like "Room 401 already exists" is not mistaken for an expired
    session. Message markers apply to errors raised outside the client.
    """
    if isinstance(error, ResourceError):
        return error.kind is ErrorKind.AUTH or error.status_code == 401
    message = str(error).lower()
    return any(marker in message for marker in _AUTH_MARKERS)
