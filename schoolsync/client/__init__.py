"""Resource client for the school-management REST API."""

from .config import ClientConfig
from .envelope import Pagination, ResourceEnvelope
from .errors import (
    AuthError,
    ConflictError,
    ErrorKind,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RequestTimeoutError,
    ResourceError,
    ServerError,
    ValidationError,
    is_auth_failure,
    is_retryable_error,
)
from .resource_client import ResourceClient, build_query, is_valid_record_id

__all__ = [
    "AuthError",
    "ClientConfig",
    "ConflictError",
    "ErrorKind",
    "MalformedResponseError",
    "NetworkError",
    "NotFoundError",
    "Pagination",
    "PermissionDeniedError",
    "RequestTimeoutError",
    "ResourceClient",
    "ResourceEnvelope",
    "ResourceError",
    "ServerError",
    "ValidationError",
    "build_query",
    "is_auth_failure",
    "is_retryable_error",
    "is_valid_record_id",
]
