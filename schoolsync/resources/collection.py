"""Cache-backed binding for one scoped resource collection.

A ``ResourceCollection`` is what a page or command uses to list, create,
update and delete records of one resource (grade levels, sections,
designations, ...) within a school/campus scope. Reads go through the
``SynchronizedCache``; writes go through the ``ResourceClient`` and are
reflected in the cache, optimistically when asked to.

Failures are reported to the notifier exactly once and returned as the
failure envelope; they never raise.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from ..cache import ACADEMICS, CacheConfig, CacheKey, EntrySnapshot, Subscription, SynchronizedCache
from ..client import ErrorKind, ResourceClient, ResourceEnvelope, ResourceError, is_valid_record_id
from ..logutils import get_logger, with_context
from .scope import LoggingNotifier, Notifier, Scope

logger = get_logger(__name__)


def replace_record(record_id: str, changes: Mapping[str, Any]) -> Callable[[list | None], list]:
    """List updater merging ``changes`` into the record with ``record_id``."""

    def apply(items: list | None) -> list:
        return [{**item, **changes} if item.get("id") == record_id else item for item in items or []]

    return apply


def remove_record(record_id: str) -> Callable[[list | None], list]:
    def apply(items: list | None) -> list:
        return [item for item in items or [] if item.get("id") != record_id]

    return apply


class ResourceCollection:
    """List/create/update/delete one resource within a scope."""

    def __init__(
        self,
        cache: SynchronizedCache,
        client: ResourceClient,
        resource: str,
        scope: Scope,
        config: CacheConfig = ACADEMICS,
        notifier: Notifier | None = None,
        label: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> None:
        """Bind a resource to a cache and a client.

        Args:
            cache: Shared cache for the session
            client: Resource client carrying the session token
            resource: Resource path under ``/api`` (e.g. ``academics/grades``)
            scope: School and campus the collection is limited to
            config: Cache policy for this collection's key
            notifier: Receives one message per completed write
            label: Human name used in messages (defaults to ``resource``)
            filters: Extra query filters; part of the cache key
        """
        self.cache = cache
        self.client = client
        self.resource = resource
        self.scope = scope
        self.config = config
        self.notifier = notifier or LoggingNotifier()
        self.label = label or resource
        self.filters = dict(filters or {})

    @property
    def key(self) -> CacheKey:
        return CacheKey.for_resource(self.resource, self.scope.school_id, self.scope.campus_id, **self.filters)

    async def _fetch(self) -> ResourceEnvelope[list]:
        return await self.client.fetch_list(self.resource, {**self.scope.query(), **self.filters})

    def subscribe(self, listener: Callable[[EntrySnapshot], None] | None = None) -> Subscription:
        return self.cache.subscribe(self.key, self._fetch, listener=listener, config=self.config)

    async def load(self) -> list:
        """Return the collection, fetching it unless the cached copy is fresh.

        Raises:
            ResourceError: If the fetch failed and there is nothing cached
        """
        snapshot = await self.cache.read(self.key, self._fetch, config=self.config)
        if snapshot.error is not None and snapshot.data is None:
            raise snapshot.error
        return list(snapshot.data or [])

    @property
    def items(self) -> list:
        snapshot = self.cache.peek(self.key)
        return list(snapshot.data or []) if snapshot else []

    def find(self, record_id: str) -> dict | None:
        for item in self.items:
            if item.get("id") == record_id:
                return item
        return None

    async def refresh(self) -> list:
        self.cache.invalidate(self.key)
        return await self.load()

    # Writes

    async def create(self, payload: Mapping[str, Any]) -> ResourceEnvelope[dict]:
        """Create a record in the current campus, then refetch the list."""
        data = dict(payload)
        if self.scope.campus_id and not data.get("campus_id"):
            data["campus_id"] = self.scope.campus_id
        envelope = await self._write("create", lambda: self.client.create(self.resource, data))
        if envelope.success:
            self.cache.invalidate(self.key)
            await self.cache.revalidate(self.key)
            self.notifier.success(f"{self.label} created")
        return envelope

    async def update(
        self,
        record_id: str,
        payload: Mapping[str, Any],
        optimistic: bool = False,
        success_message: str | None = None,
    ) -> ResourceEnvelope[dict]:
        if not is_valid_record_id(record_id):
            return self._reject(f"A record id is required for {self.resource}")
        changes = dict(payload)
        envelope = await self._write(
            "update",
            lambda: self.client.update(self.resource, record_id, changes),
            updater=replace_record(record_id, changes),
            optimistic=optimistic,
        )
        if envelope.success:
            self.notifier.success(success_message or f"{self.label} updated")
        return envelope

    async def delete(self, record_id: str, optimistic: bool = False) -> ResourceEnvelope[None]:
        if not is_valid_record_id(record_id):
            return self._reject(f"A record id is required for {self.resource}")
        envelope = await self._write(
            "delete",
            lambda: self.client.delete(self.resource, record_id),
            updater=remove_record(record_id),
            optimistic=optimistic,
        )
        if envelope.success:
            self.notifier.success(f"{self.label} deleted")
        return envelope

    async def _write(self, action: str, call, updater: Any = None, optimistic: bool = False) -> ResourceEnvelope:
        outcome: list[ResourceEnvelope] = []

        async def write() -> ResourceEnvelope:
            envelope = await call()
            outcome.append(envelope)
            return envelope

        mutate_kwargs: dict[str, Any] = {"write": write, "optimistic": optimistic}
        if updater is not None:
            mutate_kwargs["updater"] = updater

        with with_context(
            operation=f"{action}:{self.resource}",
            school_id=self.scope.school_id,
            campus_id=self.scope.campus_id,
            resource=self.resource,
        ):
            try:
                await self.cache.mutate(self.key, **mutate_kwargs)
            except ResourceError as exc:
                envelope = outcome[-1] if outcome else ResourceEnvelope.fail(exc.kind, exc.message, exc.status_code)
                self.notifier.error(f"Failed to {action} {self.label}: {envelope.error}")
                return envelope
        return outcome[-1]

    def _reject(self, message: str) -> ResourceEnvelope:
        logger.warning("Rejected %s write before sending: %s", self.resource, message)
        self.notifier.error(message)
        return ResourceEnvelope.fail(ErrorKind.VALIDATION, message)
