"""Pytest configuration and fixtures for SchoolSync tests."""

import asyncio
import itertools
import json
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio

from schoolsync.cache import CacheConfig, SynchronizedCache
from schoolsync.client import ClientConfig, ResourceClient
from schoolsync.resources import Scope

VALID_TOKEN = "test-token"
BASE_URL = "http://schoolsync.test"


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (fake backend over MockTransport)")


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """In-memory stand-in for the REST backend.

    - ``/api/{resource}`` and ``/api/{resource}/{id}`` CRUD for registered resources
    - names are unique per resource and campus (409 "... already exists")
    - ``PUT /api/resource-links/bulk-save`` replaces the link list
    - ``fail_next(...)`` queues an error response; ``gate`` holds requests until set
    """

    def __init__(self):
        self.records: dict[str, list[dict]] = {}
        self.requests: list[tuple[str, str]] = []
        self.valid_tokens = {VALID_TOKEN}
        self.gate: asyncio.Event | None = None
        self._failures: list[tuple[str | None, str | None, int, dict]] = []
        self._ids = itertools.count(1)
        self.last_bulk_save: dict | None = None

    def seed(self, resource: str, records: list[dict]) -> None:
        self.records[resource] = [dict(r) for r in records]

    def fail_next(self, method: str | None = None, path: str | None = None, status: int = 500, error: str = "boom"):
        self._failures.append((method, path, status, {"success": False, "error": error}))

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p == path)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))

        if self.gate is not None:
            await self.gate.wait()

        auth = request.headers.get("Authorization", "")
        if auth.removeprefix("Bearer ") not in self.valid_tokens:
            return httpx.Response(401, json={"success": False, "error": "Unauthorized"})

        for index, (method, fail_path, status, body) in enumerate(self._failures):
            if (method is None or method == request.method) and (fail_path is None or fail_path == path):
                del self._failures[index]
                return httpx.Response(status, json=body)

        if path == "/api/resource-links/bulk-save" and request.method == "PUT":
            return self._bulk_save(json.loads(request.content))

        resource, record_id = self._route(path)
        if resource is None:
            return httpx.Response(404, json={"success": False, "error": f"No route for {path}"})

        body = json.loads(request.content) if request.content else None
        if request.method == "GET" and record_id is None:
            query = {k: v[0] for k, v in parse_qs(request.url.query.decode()).items()}
            return self._list(resource, query)
        if request.method == "GET":
            return self._get(resource, record_id)
        if request.method == "POST":
            return self._create(resource, body)
        if request.method == "PUT":
            return self._update(resource, record_id, body)
        if request.method == "DELETE":
            return self._delete(resource, record_id)
        return httpx.Response(405, json={"success": False, "error": "Method not allowed"})

    def _route(self, path: str) -> tuple[str | None, str | None]:
        rest = path.removeprefix("/api/")
        for resource in sorted(self.records, key=len, reverse=True):
            if rest == resource:
                return resource, None
            if rest.startswith(resource + "/"):
                return resource, rest[len(resource) + 1 :]
        return None, None

    def _find(self, resource: str, record_id: str) -> dict | None:
        return next((r for r in self.records[resource] if r["id"] == record_id), None)

    def _list(self, resource: str, query: dict) -> httpx.Response:
        campus_id = query.get("campus_id")
        data = [r for r in self.records[resource] if not campus_id or r.get("campus_id") in (None, campus_id)]
        return httpx.Response(200, json={"success": True, "data": data})

    def _get(self, resource: str, record_id: str) -> httpx.Response:
        record = self._find(resource, record_id)
        if record is None:
            return httpx.Response(404, json={"success": False, "error": f"{resource} not found"})
        return httpx.Response(200, json={"success": True, "data": record})

    def _create(self, resource: str, body: dict) -> httpx.Response:
        name = body.get("name")
        if not name:
            return httpx.Response(400, json={"success": False, "error": "name is required"})
        for record in self.records[resource]:
            if record.get("name") == name and record.get("campus_id") == body.get("campus_id"):
                return httpx.Response(
                    409, json={"success": False, "error": f"A record named '{name}' already exists"}
                )
        record = {"id": f"{resource.rsplit('/', 1)[-1]}-{next(self._ids)}", **body}
        self.records[resource].append(record)
        return httpx.Response(201, json={"success": True, "data": record})

    def _update(self, resource: str, record_id: str, body: dict) -> httpx.Response:
        record = self._find(resource, record_id)
        if record is None:
            return httpx.Response(404, json={"success": False, "error": f"{resource} not found"})
        record.update(body)
        return httpx.Response(200, json={"success": True, "data": record})

    def _delete(self, resource: str, record_id: str) -> httpx.Response:
        record = self._find(resource, record_id)
        if record is None:
            return httpx.Response(404, json={"success": False, "error": f"{resource} not found"})
        self.records[resource].remove(record)
        return httpx.Response(200, json={"success": True, "message": "Deleted"})

    def _bulk_save(self, body: dict) -> httpx.Response:
        self.last_bulk_save = body
        links = []
        for link in body["links"]:
            links.append({"id": link.get("id") or f"link-{next(self._ids)}", **{k: v for k, v in link.items() if k != "id"}})
        self.records["resource-links"] = links
        return httpx.Response(200, json={"success": True, "data": links})


class RecordingNotifier:
    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def of(self, level: str) -> list[str]:
        return [m for lvl, m in self.messages if lvl == level]


GRADES = [
    {"id": "g9", "name": "Grade 9", "order_index": 9, "is_active": True, "next_grade_id": None, "campus_id": "c1"},
    {"id": "g7", "name": "Grade 7", "order_index": 7, "is_active": True, "next_grade_id": "g8", "campus_id": "c1"},
    {"id": "g8", "name": "Grade 8", "order_index": 8, "is_active": True, "next_grade_id": "g9", "campus_id": "c1"},
    {"id": "g6", "name": "Grade 6", "order_index": 6, "is_active": False, "next_grade_id": None, "campus_id": "c1"},
]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    fake = FakeBackend()
    fake.seed("academics/grades", GRADES)
    fake.seed("designations", [{"id": "d1", "name": "Teacher", "campus_id": "c1"}])
    fake.seed("resource-links", [{"id": "l1", "title": "Library", "url": "https://lib.example", "visible_to": ["admin"]}])
    return fake


@pytest_asyncio.fixture
async def client(backend: FakeBackend):
    transport = httpx.MockTransport(backend.handle)
    async with ResourceClient(ClientConfig(BASE_URL, token=VALID_TOKEN), transport=transport) as resource_client:
        yield resource_client


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(error_retry_interval=0, gc_grace_period=None)


@pytest.fixture
def cache(cache_config: CacheConfig, clock: FakeClock) -> SynchronizedCache:
    return SynchronizedCache(cache_config, clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def scope() -> Scope:
    return Scope("s1", "c1")
