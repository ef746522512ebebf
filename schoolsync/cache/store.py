"""Process-wide, key-addressed cache of resource query results.

One ``SynchronizedCache`` is created per session and handed to every render
surface, so tests (and multiple signed-in users in one process) get isolated
instances. All bookkeeping runs synchronously on the event loop; the only
suspension points are the awaited fetchers and mutation writes.

Guarantees:
- at most one pending fetch per key; concurrent subscribers share it
- a fetch result lands only if it is the newest fetch for its key, the key
  was not invalidated meanwhile and no mutation started after it; a fetch
  displaced by a mutation is issued again once the key's writes settle
- optimistic mutations on one key stack in issue order and their writes run
  one at a time; a failed layer is dropped and the others are re-applied on
  top of the last confirmed value
- an authentication failure clears every entry before session recovery runs
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_fixed

from ..client.envelope import ResourceEnvelope
from ..client.errors import NotFoundError, is_auth_failure, is_retryable_error
from ..logutils import get_logger, with_context
from .config import CacheConfig, RevalidationReason
from .entry import (
    CacheEntry,
    EntrySnapshot,
    EntryState,
    OptimisticLayer,
    PendingFetch,
    RollbackSnapshot,
    apply_updater,
)
from .keys import CacheKey, as_key

logger = get_logger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
Listener = Callable[[EntrySnapshot], None]
Write = Callable[[], Awaitable[Any]]
SessionRecovery = Callable[[], Any]

EMPTY_SNAPSHOT = EntrySnapshot(data=None, error=None, is_loading=False, is_validating=False, state=EntryState.EMPTY)

_UNSET: Any = object()


class Subscription:
    """A render surface's handle on one key.

    Reads always go through the cache, so a subscription keeps working after
    the cache replaced its entry (e.g. on session expiry).
    """

    def __init__(self, cache: SynchronizedCache, key: CacheKey, listener: Listener | None) -> None:
        self._cache = cache
        self.key = key
        self.listener = listener
        self.closed = False

    def snapshot(self) -> EntrySnapshot:
        return self._cache.peek(self.key) or EMPTY_SNAPSHOT

    @property
    def data(self) -> Any:
        return self.snapshot().data

    @property
    def error(self) -> BaseException | None:
        return self.snapshot().error

    async def ready(self) -> EntrySnapshot:
        """Wait until no fetch is pending for this key, then return the snapshot."""
        await self._cache.settled(self.key)
        return self.snapshot()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._cache._unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class SynchronizedCache:
    """Key-addressed cache with coalescing, optimistic mutation and rollback."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        session_recovery: SessionRecovery | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            config: Default policy for subscriptions that do not pass their own
            clock: Monotonic time source in seconds
            session_recovery: Called (sync or async) after an authentication
                failure cleared the cache. Returning ``False`` skips the
                automatic refetch of subscribed keys afterwards.
        """
        self.config = config or CacheConfig()
        self._clock = clock
        self._session_recovery = session_recovery
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._pending: dict[CacheKey, PendingFetch] = {}
        self._fetchers: dict[CacheKey, Fetcher] = {}
        self._configs: dict[CacheKey, CacheConfig] = {}
        self._fetch_seq = itertools.count(1)
        self._recovery_task: asyncio.Task | None = None
        self._refetch_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Reading

    def subscribe(
        self,
        key: CacheKey | Iterable[Any] | str,
        fetcher: Fetcher,
        listener: Listener | None = None,
        config: CacheConfig | None = None,
    ) -> Subscription:
        """Register interest in a key and make sure its data is (being) loaded.

        Returns immediately. A missing entry starts a fetch; a fresh one is
        served as is; a stale one keeps its data while a background
        revalidation runs. Must be called from a running event loop.
        """
        asyncio.get_running_loop()
        key = as_key(key)
        cfg = config or self.config
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry

        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None

        subscription = Subscription(self, key, listener)
        entry.subscriber_count += 1
        if listener is not None:
            entry.listeners.append(listener)
        self._fetchers[key] = fetcher
        self._configs[key] = cfg

        if key in self._pending:
            logger.debug("Joining pending fetch for %r", key)
        elif entry.last_fetched_at is None or entry.stale:
            self._start_fetch(entry, fetcher, cfg)
        elif entry.is_fresh(self._clock(), cfg.deduping_interval):
            logger.debug("Serving fresh entry for %r", key)
        elif cfg.revalidate_if_stale:
            self._start_fetch(entry, fetcher, cfg)

        return subscription

    async def read(
        self,
        key: CacheKey | Iterable[Any] | str,
        fetcher: Fetcher,
        config: CacheConfig | None = None,
    ) -> EntrySnapshot:
        """Subscribe, wait for the data, unsubscribe."""
        with self.subscribe(key, fetcher, config=config) as subscription:
            return await subscription.ready()

    def peek(self, key: CacheKey | Iterable[Any] | str) -> EntrySnapshot | None:
        entry = self._entries.get(as_key(key))
        return entry.snapshot() if entry else None

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def is_pending(self, key: CacheKey | Iterable[Any] | str) -> bool:
        return as_key(key) in self._pending

    async def settled(self, key: CacheKey | Iterable[Any] | str) -> None:
        """Wait until the key has no pending fetch (including ones started meanwhile)."""
        key = as_key(key)
        pending = self._pending.get(key)
        while pending is not None:
            await asyncio.shield(pending.task)
            newer = self._pending.get(key)
            if newer is pending:
                break
            pending = newer

    # ------------------------------------------------------------------
    # Invalidation and revalidation

    def invalidate(self, key: CacheKey | Iterable[Any] | str) -> None:
        """Mark a key stale so the next subscribe refetches regardless of the deduping window.

        A fetch in flight for the key is abandoned: its result is discarded
        when it arrives.
        """
        key = as_key(key)
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.stale = True
        entry.epoch += 1
        if self._pending.pop(key, None) is not None and entry.is_validating:
            entry.is_validating = False
            entry.state = self._resting_state(entry)
            self._notify(entry)
        logger.debug("Invalidated %r", key)

    async def revalidate(self, key: CacheKey | Iterable[Any] | str) -> EntrySnapshot:
        """Refetch a key now, superseding any fetch already in flight."""
        key = as_key(key)
        entry = self._entries.get(key)
        fetcher = self._fetchers.get(key)
        if entry is None or fetcher is None:
            return EMPTY_SNAPSHOT if entry is None else entry.snapshot()
        pending = self._start_fetch(entry, fetcher, self._configs.get(key, self.config))
        await asyncio.shield(pending.task)
        return self.peek(key) or EMPTY_SNAPSHOT

    async def revalidate_all(
        self,
        reason: RevalidationReason | Iterable[RevalidationReason] = RevalidationReason.MANUAL,
    ) -> int:
        """Revalidate every subscribed key whose policy enables ``reason``.

        Several reasons may be passed; a key is revalidated once if any of
        them applies.

        Returns:
            Number of keys revalidated
        """
        reasons = (reason,) if isinstance(reason, RevalidationReason) else tuple(reason)
        keys = [
            key
            for key, entry in self._entries.items()
            if entry.subscriber_count > 0
            and key in self._fetchers
            and any(self._configs.get(key, self.config).allows(r) for r in reasons)
        ]
        if not keys:
            return 0
        label = ",".join(r.value for r in reasons)
        with with_context(operation=f"revalidate:{label}"):
            logger.info("Revalidating %d keys (%s)", len(keys), label)
            await asyncio.gather(*(self.revalidate(key) for key in keys))
        return len(keys)

    def clear(self, error: BaseException | None = None) -> None:
        """Drop all cached data and abandon every pending fetch.

        Subscribed keys get a fresh empty entry (listeners and subscriber
        counts carry over), holding ``error`` if one is given; unsubscribed
        keys are forgotten.
        """
        old_entries = self._entries
        self._entries = {}
        self._pending.clear()
        for key, entry in old_entries.items():
            if entry.gc_handle is not None:
                entry.gc_handle.cancel()
            if entry.subscriber_count == 0:
                self._fetchers.pop(key, None)
                self._configs.pop(key, None)
                continue
            fresh = CacheEntry(key=key, listeners=entry.listeners, subscriber_count=entry.subscriber_count)
            if error is not None:
                fresh.error = error
                fresh.state = EntryState.ERRORED
            self._entries[key] = fresh
            self._notify(fresh)
        logger.info("Cache cleared (%d keys dropped)", len(old_entries))

    # ------------------------------------------------------------------
    # Mutation

    async def mutate(
        self,
        key: CacheKey | Iterable[Any] | str,
        updater: Any = _UNSET,
        *,
        write: Write | None = None,
        optimistic: bool = False,
        populate: bool = False,
        rollback_on_error: bool = True,
        revalidate: bool = False,
    ) -> Any:
        """Change the cached value for a key, optionally through a backend write.

        Args:
            key: Key to mutate
            updater: Replacement value or ``callable(current) -> next``.
                Omitted with no ``write``: just revalidate the key.
            write: Async callable performing the backend write; may return a
                ``ResourceEnvelope`` (unwrapped) or raise. Never retried.
            optimistic: Apply ``updater`` before the write and roll back if it fails
            populate: Replace the value with the write's result on success
            rollback_on_error: Restore the pre-mutation value on failure
            revalidate: Refetch the key after a successful write

        Returns:
            The value now cached for the key

        Raises:
            ResourceError: The write's failure, after rollback
        """
        key = as_key(key)
        if updater is _UNSET and write is None:
            return (await self.revalidate(key)).data

        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        entry.mutation_seq += 1

        if write is None:
            entry.confirmed = apply_updater(updater, entry.confirmed)
            entry.version += 1
            self._refresh_from_layers(entry)
            self._schedule_collection(entry)
            if revalidate:
                await self.revalidate(key)
            return entry.data

        layer: OptimisticLayer | None = None
        if optimistic and updater is not _UNSET:
            layer = OptimisticLayer(updater=updater, snapshot=RollbackSnapshot(entry.data), base_version=entry.version)
            entry.layers.append(layer)
            entry.data = apply_updater(updater, entry.data)
            entry.state = EntryState.OPTIMISTIC
            self._notify(entry)

        try:
            async with entry.write_lock:
                try:
                    result = await write()
                    if isinstance(result, ResourceEnvelope):
                        result = result.unwrap()
                except Exception as exc:
                    self._mutation_failed(entry, layer, exc, rollback_on_error)
                    raise
                self._mutation_succeeded(entry, layer, updater, result, populate)
        except asyncio.CancelledError:
            self._mutation_cancelled(entry, layer)
            raise
        finally:
            self._refetch_if_stale(entry)
            self._schedule_collection(entry)

        if revalidate and self._entries.get(key) is entry:
            await self.revalidate(key)
        current = self._entries.get(key)
        return current.data if current else None

    def _mutation_succeeded(
        self,
        entry: CacheEntry,
        layer: OptimisticLayer | None,
        updater: Any,
        result: Any,
        populate: bool,
    ) -> None:
        if self._entries.get(entry.key) is not entry:
            # Cleared while the write was in flight
            return
        if layer is not None and layer in entry.layers:
            layer.snapshot.consume()
            entry.layers.remove(layer)
        if populate and result is not None:
            entry.confirmed = result
        elif updater is not _UNSET:
            entry.confirmed = apply_updater(updater, entry.confirmed)
        entry.version += 1
        entry.error = None
        self._refresh_from_layers(entry)

    def _mutation_failed(
        self,
        entry: CacheEntry,
        layer: OptimisticLayer | None,
        exc: BaseException,
        rollback_on_error: bool,
    ) -> None:
        logger.warning("Mutation of %r failed: %s", entry.key, exc)
        current = self._entries.get(entry.key) is entry

        if current and layer is not None and layer in entry.layers:
            self._drop_layer(entry, layer, rollback_on_error)

        if is_auth_failure(exc):
            self._expire_session(exc)
        elif current and isinstance(exc, NotFoundError):
            self.invalidate(entry.key)

    def _mutation_cancelled(self, entry: CacheEntry, layer: OptimisticLayer | None) -> None:
        """Roll back a mutation whose task was cancelled before its write settled.

        Whether the backend applied the write is unknown, so the key is
        marked stale as well.
        """
        if self._entries.get(entry.key) is not entry:
            return
        logger.warning("Mutation of %r cancelled; rolling back", entry.key)
        if layer is not None and layer in entry.layers:
            self._drop_layer(entry, layer, rollback=True)
        entry.stale = True

    def _drop_layer(self, entry: CacheEntry, layer: OptimisticLayer, rollback: bool) -> None:
        restored = layer.snapshot.consume()
        entry.layers.remove(layer)
        if not rollback:
            # Keep the failed value as the new base
            entry.confirmed = apply_updater(layer.updater, entry.confirmed)
            entry.version += 1
            self._refresh_from_layers(entry)
        elif not entry.layers and layer.base_version == entry.version:
            # Sole mutation on an unchanged base: the snapshot is exact
            entry.data = restored
            entry.version += 1
            entry.state = self._resting_state(entry)
            self._notify(entry)
        else:
            entry.version += 1
            self._refresh_from_layers(entry)

    def _refresh_from_layers(self, entry: CacheEntry) -> None:
        """Recompute the visible value: confirmed data with pending layers on top."""
        data = entry.confirmed
        for layer in entry.layers:
            data = apply_updater(layer.updater, data)
        entry.data = data
        entry.state = EntryState.OPTIMISTIC if entry.layers else self._resting_state(entry)
        self._notify(entry)

    # ------------------------------------------------------------------
    # Fetching

    def _start_fetch(self, entry: CacheEntry, fetcher: Fetcher, cfg: CacheConfig) -> PendingFetch:
        seq = next(self._fetch_seq)
        entry.latest_fetch_seq = seq
        entry.is_validating = True
        if not entry.layers:
            entry.state = EntryState.REVALIDATING if entry.has_data else EntryState.FETCHING
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run_fetch(entry.key, fetcher, cfg, seq, entry.epoch, entry.mutation_seq))
        pending = PendingFetch(seq=seq, epoch=entry.epoch, mutation_seq=entry.mutation_seq, task=task)
        self._pending[entry.key] = pending
        self._notify(entry)
        return pending

    async def _run_fetch(
        self,
        key: CacheKey,
        fetcher: Fetcher,
        cfg: CacheConfig,
        seq: int,
        epoch: int,
        mutation_seq: int,
    ) -> None:
        try:
            recovery = self._recovery_task
            if recovery is not None and not recovery.done():
                logger.debug("Fetch for %r waiting for session recovery", key)
                await asyncio.shield(recovery)
            try:
                data = await self._fetch_with_retry(key, fetcher, cfg)
            except Exception as exc:
                if is_auth_failure(exc):
                    self._expire_session(exc)
                else:
                    self._settle_failure(key, seq, epoch, exc)
            else:
                self._settle_success(key, seq, epoch, mutation_seq, data)
        finally:
            pending = self._pending.get(key)
            if pending is not None and pending.seq == seq:
                del self._pending[key]

    async def _fetch_with_retry(self, key: CacheKey, fetcher: Fetcher, cfg: CacheConfig) -> Any:
        with with_context(resource=key.resource):
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(cfg.error_retry_count + 1),
                wait=wait_fixed(cfg.error_retry_interval),
                retry=retry_if_exception(is_retryable_error),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    result = await fetcher()
                    if isinstance(result, ResourceEnvelope):
                        result = result.unwrap()
                    return result
        return None

    def _refetch_if_stale(self, entry: CacheEntry) -> None:
        """Restart a fetch that a mutation displaced, once no write is in progress."""
        key = entry.key
        if (
            not entry.stale
            or self._entries.get(key) is not entry
            or entry.layers
            or entry.write_lock.locked()
            or key in self._pending
            or entry.subscriber_count == 0
            or key not in self._fetchers
        ):
            return
        logger.debug("Refetching %r after mutation", key)
        self._start_fetch(entry, self._fetchers[key], self._configs.get(key, self.config))

    def _current_entry(self, key: CacheKey, seq: int, epoch: int) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or entry.latest_fetch_seq != seq or entry.epoch != epoch:
            logger.debug("Discarding superseded fetch %d for %r", seq, key)
            return None
        return entry

    def _settle_success(self, key: CacheKey, seq: int, epoch: int, mutation_seq: int, data: Any) -> None:
        entry = self._current_entry(key, seq, epoch)
        if entry is None:
            return
        entry.is_validating = False
        if entry.layers or entry.mutation_seq != mutation_seq:
            # A mutation overlapped this fetch: keep its value, refetch once writes are done
            logger.debug("Discarding fetch %d for %r: mutated meanwhile", seq, key)
            entry.stale = True
            self._pending.pop(key, None)
            entry.state = EntryState.OPTIMISTIC if entry.layers else self._resting_state(entry)
            self._notify(entry)
            self._refetch_if_stale(entry)
            return
        entry.confirmed = data
        entry.data = data
        entry.version += 1
        entry.error = None
        entry.stale = False
        entry.last_fetched_at = self._clock()
        entry.state = EntryState.READY
        self._notify(entry)

    def _settle_failure(self, key: CacheKey, seq: int, epoch: int, exc: BaseException) -> None:
        entry = self._current_entry(key, seq, epoch)
        if entry is None:
            return
        logger.warning("Fetch for %r failed: %s", key, exc)
        entry.is_validating = False
        entry.error = exc
        entry.state = EntryState.OPTIMISTIC if entry.layers else EntryState.ERRORED
        self._notify(entry)

    # ------------------------------------------------------------------
    # Session expiry

    def _expire_session(self, exc: BaseException) -> None:
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.warning("Session invalidated (%s); clearing cache", exc)
        self.clear(error=exc)
        if self._refetch_task is not None and not self._refetch_task.done():
            # The refetch after a recovery failed again; leave it to the user
            logger.error("Session still invalid after recovery")
            return
        if self._session_recovery is not None:
            self._recovery_task = asyncio.get_running_loop().create_task(self._run_recovery())

    async def _run_recovery(self) -> None:
        try:
            outcome = self._session_recovery()  # type: ignore[misc]
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception:
            logger.exception("Session recovery failed")
            return
        if outcome is not False:
            self._refetch_task = asyncio.get_running_loop().create_task(
                self.revalidate_all(RevalidationReason.SESSION)
            )

    async def wait_for_recovery(self) -> None:
        """Wait for session recovery and the refetch that follows it."""
        if self._recovery_task is not None:
            await asyncio.shield(self._recovery_task)
        if self._refetch_task is not None:
            await asyncio.shield(self._refetch_task)

    # ------------------------------------------------------------------
    # Subscribers

    def _unsubscribe(self, subscription: Subscription) -> None:
        entry = self._entries.get(subscription.key)
        if entry is None:
            return
        entry.subscriber_count = max(0, entry.subscriber_count - 1)
        if subscription.listener is not None and subscription.listener in entry.listeners:
            entry.listeners.remove(subscription.listener)
        self._schedule_collection(entry)

    def _schedule_collection(self, entry: CacheEntry) -> None:
        """Start the GC grace timer for an entry nobody subscribes to."""
        if entry.subscriber_count > 0 or self._entries.get(entry.key) is not entry:
            return
        grace = self._configs.get(entry.key, self.config).gc_grace_period
        if grace is None:
            return
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
        entry.gc_handle = asyncio.get_running_loop().call_later(grace, self._collect, entry.key)

    def _collect(self, key: CacheKey) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.subscriber_count > 0:
            return
        entry.gc_handle = None
        if entry.layers or entry.write_lock.locked() or key in self._pending:
            self._schedule_collection(entry)
            return
        del self._entries[key]
        self._fetchers.pop(key, None)
        self._configs.pop(key, None)
        logger.debug("Collected %r", key)

    def _notify(self, entry: CacheEntry) -> None:
        snapshot = entry.snapshot()
        for listener in list(entry.listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Cache listener for %r raised", entry.key)

    @staticmethod
    def _resting_state(entry: CacheEntry) -> EntryState:
        if entry.error is not None and not entry.has_data:
            return EntryState.ERRORED
        return EntryState.READY if entry.has_data else EntryState.EMPTY
