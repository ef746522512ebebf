"""Tests for the resource client and its envelope."""

import httpx
import pytest

from schoolsync.client import (
    AuthError,
    ClientConfig,
    ConflictError,
    ErrorKind,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ResourceClient,
    ResourceEnvelope,
    ServerError,
    ValidationError,
    build_query,
    is_auth_failure,
    is_retryable_error,
)
from schoolsync.client.resource_client import AUTH_REQUIRED_MESSAGE, SESSION_EXPIRED_MESSAGE, classify_failure


def make_client(handler, token="test-token") -> ResourceClient:
    return ResourceClient(ClientConfig("http://api.test", token=token), transport=httpx.MockTransport(handler))


class TestBuildQuery:
    """Tests for query-string flattening."""

    def test_sorted_and_stringified(self):
        assert build_query({"school_id": "s1", "active": True, "page": 2}) == [
            ("active", "true"),
            ("page", "2"),
            ("school_id", "s1"),
        ]

    def test_lists_expand_and_none_is_skipped(self):
        assert build_query({"ids": ["a", "b"], "campus_id": None}) == [("ids", "a"), ("ids", "b")]

    def test_rejects_nested_values(self):
        with pytest.raises(TypeError):
            build_query({"filter": {"name": "x"}})

    def test_empty(self):
        assert build_query(None) == []


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "status,message,kind",
        [
            (400, "name is required", ErrorKind.VALIDATION),
            (422, "bad", ErrorKind.VALIDATION),
            (403, "Forbidden", ErrorKind.FORBIDDEN),
            (404, "Not found", ErrorKind.NOT_FOUND),
            (409, "Conflict", ErrorKind.CONFLICT),
            (500, "duplicate key value violates unique constraint", ErrorKind.CONFLICT),
            (500, "error code 23505", ErrorKind.CONFLICT),
            (503, "Service unavailable", ErrorKind.SERVER),
            (418, "teapot", ErrorKind.VALIDATION),
        ],
    )
    def test_mapping(self, status, message, kind):
        assert classify_failure(status, message) is kind


class TestEnvelope:
    """Tests for ResourceEnvelope."""

    def test_failure_cannot_carry_data(self):
        with pytest.raises(ValueError):
            ResourceEnvelope(success=False, data=[1], error="x")

    def test_failure_gets_default_message_and_kind(self):
        envelope = ResourceEnvelope(success=False)
        assert envelope.error == "Request failed"
        assert envelope.kind is ErrorKind.SERVER

    def test_unwrap_success(self):
        assert ResourceEnvelope.ok([1, 2]).unwrap() == [1, 2]

    @pytest.mark.parametrize(
        "kind,error_type",
        [
            (ErrorKind.CONFLICT, ConflictError),
            (ErrorKind.NOT_FOUND, NotFoundError),
            (ErrorKind.AUTH, AuthError),
            (ErrorKind.TIMEOUT, RequestTimeoutError),
            (ErrorKind.VALIDATION, ValidationError),
        ],
    )
    def test_unwrap_raises_typed_error(self, kind, error_type):
        with pytest.raises(error_type) as exc_info:
            ResourceEnvelope.fail(kind, "went wrong", status_code=400).unwrap()
        assert exc_info.value.message == "went wrong"


class TestErrorPredicates:
    def test_transient_errors_are_retryable(self):
        assert is_retryable_error(NetworkError())
        assert is_retryable_error(RequestTimeoutError())
        assert is_retryable_error(ServerError("500"))

    def test_terminal_errors_are_not_retryable(self):
        assert not is_retryable_error(ConflictError("exists"))
        assert not is_retryable_error(ValidationError("bad"))
        assert not is_retryable_error(AuthError())
        assert not is_retryable_error(MalformedResponseError("html"))
        assert not is_retryable_error(RuntimeError("other"))

    def test_auth_failure_by_type_or_message(self):
        assert is_auth_failure(AuthError())
        assert is_auth_failure(ServerError("gateway rejected token", status_code=401))
        assert is_auth_failure(RuntimeError("HTTP 401 from server"))
        assert is_auth_failure(RuntimeError("Session expired. Please login again."))
        assert not is_auth_failure(ServerError("boom"))

    @pytest.mark.parametrize(
        "error",
        [
            ConflictError("Room 401 already exists", status_code=409),
            NotFoundError("Grade 401 not found", status_code=404),
            ValidationError("Unauthorized characters in name", status_code=400),
        ],
    )
    def test_typed_errors_ignore_auth_words_in_message(self, error):
        assert not is_auth_failure(error)

    def test_network_error_has_user_message(self):
        assert "try again" in NetworkError("connection reset").user_message


class TestResourceClient:
    """Tests for ResourceClient requests and status mapping."""

    @pytest.mark.asyncio
    async def test_fetch_list_sends_bearer_and_query(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"success": True, "data": [{"id": "g1"}]})

        async with make_client(handler) as client:
            envelope = await client.fetch_list("academics/grades", {"school_id": "s1", "campus_id": "c1"})

        assert envelope.success
        assert envelope.data == [{"id": "g1"}]
        assert seen["auth"] == "Bearer test-token"
        assert seen["url"] == "http://api.test/api/academics/grades?campus_id=c1&school_id=s1"

    @pytest.mark.asyncio
    async def test_record_id_stays_one_path_segment(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["raw_path"] = request.url.raw_path
            return httpx.Response(200, json={"success": True, "data": {"id": "a/b?c"}})

        async with make_client(handler) as client:
            envelope = await client.update("designations", "a/b?c", {"name": "Clerk"})

        assert envelope.success
        assert seen["raw_path"] == b"/api/designations/a%2Fb%3Fc"

    @pytest.mark.asyncio
    async def test_invalid_query_is_rejected_without_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=[])

        async with make_client(handler) as client:
            envelope = await client.fetch_list("grades", {"filter": {"a": 1}})

        assert not envelope.success
        assert envelope.kind is ErrorKind.VALIDATION
        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_token_short_circuits(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=[])

        async with make_client(handler, token=None) as client:
            envelope = await client.fetch_list("grades")

        assert envelope.kind is ErrorKind.AUTH
        assert envelope.error == AUTH_REQUIRED_MESSAGE
        assert calls == []

    @pytest.mark.asyncio
    async def test_async_token_provider(self):
        async def provider():
            return "fresh-token"

        def handler(request):
            assert request.headers["Authorization"] == "Bearer fresh-token"
            return httpx.Response(200, json={"success": True, "data": []})

        client = ResourceClient(
            ClientConfig("http://api.test"), token_provider=provider, transport=httpx.MockTransport(handler)
        )
        async with client:
            assert (await client.fetch_list("grades")).success

    @pytest.mark.asyncio
    async def test_blank_id_is_rejected_without_request(self):
        async with make_client(lambda request: httpx.Response(200, json={})) as client:
            for envelope in (
                await client.update("grades", "  ", {"name": "x"}),
                await client.delete("grades", ""),
                await client.fetch_one("grades", ""),
            ):
                assert envelope.kind is ErrorKind.VALIDATION
                assert envelope.error == "A record id is required for grades"

    @pytest.mark.asyncio
    async def test_401_means_session_expired(self):
        async with make_client(lambda request: httpx.Response(401, json={"error": "jwt expired"})) as client:
            envelope = await client.fetch_list("grades")
        assert envelope.kind is ErrorKind.AUTH
        assert envelope.error == SESSION_EXPIRED_MESSAGE
        assert envelope.status_code == 401

    @pytest.mark.asyncio
    async def test_conflict_message_from_server_error(self):
        def handler(request):
            return httpx.Response(500, json={"success": False, "error": 'duplicate key (code 23505)'})

        async with make_client(handler) as client:
            envelope = await client.create("designations", {"name": "Librarian"})
        assert envelope.kind is ErrorKind.CONFLICT
        assert envelope.data is None

    @pytest.mark.asyncio
    async def test_error_without_message_uses_status(self):
        async with make_client(lambda request: httpx.Response(502, content=b"")) as client:
            envelope = await client.fetch_list("grades")
        assert envelope.kind is ErrorKind.SERVER
        assert envelope.error == "Request failed with status 502"

    @pytest.mark.asyncio
    async def test_success_false_in_200_body(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "Designation already exists"})

        async with make_client(handler) as client:
            envelope = await client.create("designations", {"name": "Librarian"})
        assert not envelope.success
        assert envelope.kind is ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_plain_list_body_is_wrapped(self):
        async with make_client(lambda request: httpx.Response(200, json=[{"id": 1}])) as client:
            envelope = await client.fetch_list("grades")
        assert envelope.success
        assert envelope.data == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_pagination_is_parsed(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"success": True, "data": [], "pagination": {"total": 40, "page": 2, "limit": 20, "totalPages": 2}},
            )

        async with make_client(handler) as client:
            envelope = await client.fetch_list("students")
        assert envelope.pagination.total_pages == 2
        assert envelope.pagination.page == 2

    @pytest.mark.asyncio
    async def test_empty_success_body(self):
        async with make_client(lambda request: httpx.Response(204)) as client:
            envelope = await client.delete("grades", "g1")
        assert envelope.success
        assert envelope.data is None

    @pytest.mark.asyncio
    async def test_non_json_success_raises(self):
        async with make_client(lambda request: httpx.Response(200, text="<html>login</html>")) as client:
            with pytest.raises(MalformedResponseError):
                await client.fetch_list("grades")

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_kind(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            envelope = await client.fetch_list("grades")
        assert envelope.kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_network_kind(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            envelope = await client.fetch_list("grades")
        assert envelope.kind is ErrorKind.NETWORK


class TestClientConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SCHOOLSYNC_API_URL", "https://api.example.com/")
        monkeypatch.setenv("SCHOOLSYNC_API_TOKEN", "abc")
        monkeypatch.setenv("SCHOOLSYNC_TIMEOUT", "5")
        config = ClientConfig.from_env()
        assert config.base_url == "https://api.example.com"
        assert config.token == "abc"
        assert config.timeout == 5.0

    def test_from_env_requires_url(self, monkeypatch):
        monkeypatch.delenv("SCHOOLSYNC_API_URL", raising=False)
        with pytest.raises(ValueError):
            ClientConfig.from_env()

    def test_resource_path(self):
        config = ClientConfig("http://x")
        assert config.resource_path("academics/grades") == "/api/academics/grades"
        assert config.resource_path("/designations/", "d1") == "/api/designations/d1"

    def test_resource_path_encodes_record_id(self):
        config = ClientConfig("http://x")
        assert config.resource_path("designations", "a/b?c") == "/api/designations/a%2Fb%3Fc"
