"""Bulk editor for the campus resource links shown on dashboards."""

from __future__ import annotations

from typing import Any

from ..cache import CacheConfig, CacheKey, SynchronizedCache
from ..client import ErrorKind, ResourceClient, ResourceEnvelope, ResourceError
from ..logutils import get_logger
from .scope import LoggingNotifier, Notifier, Scope

logger = get_logger(__name__)

LINKS_RESOURCE = "resource-links"
DEFAULT_ROLES = ("admin",)
EDITABLE_FIELDS = frozenset({"title", "url", "visible_to"})

LINKS_CONFIG = CacheConfig(revalidate_on_focus=False)


def _draft(link: dict) -> dict:
    return {
        "id": link.get("id"),
        "title": link.get("title", ""),
        "url": link.get("url", ""),
        "visible_to": list(link.get("visible_to") or []),
    }


class ResourceLinkEditor:
    """Local draft of a campus's links, saved in one bulk request.

    The draft is seeded from the server list on first load and re-seeded
    after every successful save.
    """

    def __init__(
        self,
        cache: SynchronizedCache,
        client: ResourceClient,
        scope: Scope,
        notifier: Notifier | None = None,
        config: CacheConfig = LINKS_CONFIG,
    ) -> None:
        self.cache = cache
        self.client = client
        self.scope = scope
        self.notifier = notifier or LoggingNotifier()
        self.config = config
        self.draft: list[dict] = []
        self._initialized = False

    @property
    def key(self) -> CacheKey:
        return CacheKey.for_resource(LINKS_RESOURCE, self.scope.school_id, self.scope.campus_id)

    async def _fetch(self) -> ResourceEnvelope[list]:
        return await self.client.fetch_list(LINKS_RESOURCE, self.scope.query())

    @property
    def server_links(self) -> list[dict]:
        snapshot = self.cache.peek(self.key)
        return list(snapshot.data or []) if snapshot else []

    async def load(self) -> list[dict]:
        snapshot = await self.cache.read(self.key, self._fetch, config=self.config)
        if snapshot.error is not None and snapshot.data is None:
            raise snapshot.error
        if not self._initialized:
            self.draft = [_draft(link) for link in snapshot.data or []]
            self._initialized = True
        return self.draft

    # Draft editing

    def add(self) -> int:
        self.draft.append({"id": None, "title": "", "url": "", "visible_to": list(DEFAULT_ROLES)})
        return len(self.draft) - 1

    def remove(self, index: int) -> dict:
        return self.draft.pop(index)

    def edit(self, index: int, **fields: Any) -> dict:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit link fields: {', '.join(sorted(unknown))}")
        self.draft[index].update(fields)
        return self.draft[index]

    def toggle_role(self, index: int, role: str) -> list[str]:
        roles = self.draft[index]["visible_to"]
        if role in roles:
            roles.remove(role)
        else:
            roles.append(role)
        return roles

    def search(self, query: str) -> list[dict]:
        needle = query.strip().lower()
        if not needle:
            return list(self.draft)
        return [link for link in self.draft if needle in link["title"].lower() or needle in link["url"].lower()]

    # Saving

    def validate(self) -> str | None:
        for link in self.draft:
            if not link["title"].strip():
                return "All resources must have a title"
            if not link["url"].strip():
                return "All resources must have a URL/link"
        return None

    async def save(self) -> ResourceEnvelope[Any]:
        """Validate the draft and replace the campus's links with it.

        ``existing_ids`` tells the backend which server links the draft was
        based on, so links removed from the draft are deleted.
        """
        problem = self.validate()
        if problem:
            self.notifier.error(problem)
            return ResourceEnvelope.fail(ErrorKind.VALIDATION, problem)

        links = []
        for position, link in enumerate(self.draft, start=1):
            item = {
                "title": link["title"].strip(),
                "url": link["url"].strip(),
                "visible_to": list(link["visible_to"]),
                "sort_order": position,
            }
            if link.get("id"):
                item["id"] = link["id"]
            links.append(item)
        body = {"links": links, "existing_ids": [link["id"] for link in self.server_links]}

        outcome: list[ResourceEnvelope] = []

        async def write() -> ResourceEnvelope:
            envelope = await self.client.request(
                "PUT", self.client.config.resource_path(f"{LINKS_RESOURCE}/bulk-save"), json=body
            )
            outcome.append(envelope)
            return envelope

        try:
            await self.cache.mutate(self.key, write=write)
        except ResourceError as exc:
            envelope = outcome[-1] if outcome else ResourceEnvelope.fail(exc.kind, exc.message, exc.status_code)
            self.notifier.error(f"Failed to save resources: {envelope.error}")
            return envelope

        self._initialized = False
        self.cache.invalidate(self.key)
        await self.load()
        self.notifier.success("Resources saved successfully!")
        return outcome[-1]
