"""Async REST client for named school resources.

Each call issues exactly one HTTP request (or none, when the input is
known to be invalid) and returns a ``ResourceEnvelope``. Expected HTTP
failures are captured in the envelope; only a malformed success body raises.

Usage:
    async with ResourceClient(ClientConfig.from_env(), token_provider=get_token) as client:
        envelope = await client.fetch_list("grade-levels", {"school_id": "s1"})
        if envelope.success:
            ...
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

import httpx

from ..logutils import get_logger, with_context
from .config import ClientConfig
from .envelope import Pagination, ResourceEnvelope
from .errors import ErrorKind, MalformedResponseError

logger = get_logger(__name__)

TokenProvider = Union[str, None, Callable[[], Union[str, None, Awaitable[Union[str, None]]]]]

Primitive = Union[str, int, float, bool, None]

_CONFLICT_MARKERS = ("already exists", "duplicate", "23505", "unique constraint")

_STATUS_KINDS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.AUTH,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.VALIDATION,
}

AUTH_REQUIRED_MESSAGE = "Authentication required. Please sign in."
SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."


def _is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def build_query(query: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    """Flatten a query mapping into ordered HTTP parameters.

    Values must be primitives or lists/tuples of primitives so that the same
    query always serializes the same way. ``None`` values are omitted.

    Raises:
        TypeError: If a value is a mapping, a nested sequence or an object
    """
    params: list[tuple[str, str]] = []
    for name in sorted(query or {}):
        value = query[name]  # type: ignore[index]
        values = list(value) if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if not _is_primitive(item):
                raise TypeError(f"Query parameter {name!r} must be a primitive or a list of primitives")
            if item is None:
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            params.append((name, str(item)))
    return params


def classify_failure(status_code: int | None, message: str) -> ErrorKind:
    """Map an HTTP status and backend message onto an error kind."""
    lowered = message.lower()
    if any(marker in lowered for marker in _CONFLICT_MARKERS):
        return ErrorKind.CONFLICT
    if status_code is None:
        return ErrorKind.SERVER
    if status_code in _STATUS_KINDS:
        return _STATUS_KINDS[status_code]
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    return ErrorKind.SERVER


class ResourceClient:
    """CRUD over ``/api/{resource}`` with bearer-token auth."""

    def __init__(
        self,
        config: ClientConfig,
        token_provider: TokenProvider = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Backend location and timeout
            token_provider: Static token, or a sync/async callable returning
                the current session token (``None`` when signed out).
                Defaults to ``config.token``.
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.config = config
        self._token_provider = token_provider if token_provider is not None else config.token
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ResourceClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def fetch_list(self, resource: str, query: Mapping[str, Any] | None = None) -> ResourceEnvelope[list]:
        """GET a collection; ``query`` becomes the query string."""
        try:
            params = build_query(query)
        except TypeError as exc:
            return ResourceEnvelope.fail(ErrorKind.VALIDATION, str(exc))
        return await self.request("GET", self.config.resource_path(resource), params=params)

    async def fetch_one(self, resource: str, record_id: str) -> ResourceEnvelope[dict]:
        if not is_valid_record_id(record_id):
            return _missing_id(resource)
        return await self.request("GET", self.config.resource_path(resource, record_id))

    async def create(self, resource: str, payload: Mapping[str, Any]) -> ResourceEnvelope[dict]:
        return await self.request("POST", self.config.resource_path(resource), json=dict(payload))

    async def update(self, resource: str, record_id: str, payload: Mapping[str, Any]) -> ResourceEnvelope[dict]:
        if not is_valid_record_id(record_id):
            return _missing_id(resource)
        return await self.request("PUT", self.config.resource_path(resource, record_id), json=dict(payload))

    async def delete(self, resource: str, record_id: str) -> ResourceEnvelope[None]:
        if not is_valid_record_id(record_id):
            return _missing_id(resource)
        return await self.request("DELETE", self.config.resource_path(resource, record_id))

    async def request(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
    ) -> ResourceEnvelope[Any]:
        """Issue one request and normalize the answer into an envelope.

        Raises:
            MalformedResponseError: If a 2xx body is not JSON
        """
        token = await self._resolve_token()
        if not token:
            return ResourceEnvelope.fail(ErrorKind.AUTH, AUTH_REQUIRED_MESSAGE)

        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}

        with with_context(operation=f"{method} {path}"):
            logger.debug("Request %s %s", method, path, extra={"extra_data": {"params": params or []}})
            try:
                response = await self._http.request(method, path, params=params, json=json, headers=headers)
            except httpx.TimeoutException as exc:
                logger.warning("Request timed out: %s %s", method, path)
                return ResourceEnvelope.fail(ErrorKind.TIMEOUT, f"Request timed out after {self.config.timeout}s: {exc}")
            except httpx.TransportError as exc:
                logger.warning("Network error on %s %s: %s", method, path, exc)
                return ResourceEnvelope.fail(ErrorKind.NETWORK, str(exc) or "Network error occurred")

            envelope = self._to_envelope(response)
            if not envelope.success:
                logger.warning(
                    "Request failed: %s %s -> %s",
                    method,
                    path,
                    response.status_code,
                    extra={"extra_data": {"error": envelope.error, "kind": envelope.kind.value}},
                )
            return envelope

    def _to_envelope(self, response: httpx.Response) -> ResourceEnvelope[Any]:
        status = response.status_code

        if status == 401:
            return ResourceEnvelope.fail(ErrorKind.AUTH, SESSION_EXPIRED_MESSAGE, status_code=status)

        body = _parse_body(response)

        if not response.is_success:
            message = _error_message(body) or f"Request failed with status {status}"
            return ResourceEnvelope.fail(classify_failure(status, message), message, status_code=status)

        if body is _NO_BODY:
            return ResourceEnvelope.ok(None, status_code=status)
        if body is _NOT_JSON:
            raise MalformedResponseError(f"Response body from {response.request.url} is not JSON", status_code=status)
        if isinstance(body, list):
            return ResourceEnvelope.ok(body, status_code=status)
        if not isinstance(body, dict):
            raise MalformedResponseError(
                f"Response body from {response.request.url} is not a JSON object", status_code=status
            )
        if "success" not in body:
            return ResourceEnvelope.ok(body, status_code=status)
        if not body["success"]:
            message = _error_message(body) or "Request failed"
            return ResourceEnvelope.fail(classify_failure(None, message), message, status_code=status)

        pagination = body.get("pagination")
        return ResourceEnvelope.ok(
            body.get("data"),
            status_code=status,
            message=body.get("message"),
            pagination=Pagination.from_dict(pagination) if isinstance(pagination, dict) else None,
        )

    async def _resolve_token(self) -> str | None:
        provider = self._token_provider
        if provider is None or isinstance(provider, str):
            return provider
        token = provider()
        if inspect.isawaitable(token):
            token = await token
        return token


_NO_BODY = object()
_NOT_JSON = object()


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return _NO_BODY
    try:
        return response.json()
    except ValueError:
        return _NOT_JSON


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        if message:
            return str(message)
    return None


def is_valid_record_id(record_id: Any) -> bool:
    """A record id is a non-blank string or an integer."""
    return isinstance(record_id, (str, int)) and not isinstance(record_id, bool) and str(record_id).strip() != ""


def _missing_id(resource: str) -> ResourceEnvelope[Any]:
    return ResourceEnvelope.fail(ErrorKind.VALIDATION, f"A record id is required for {resource}")
