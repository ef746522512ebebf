"""Cache entry state and the small records the cache keeps per key."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .keys import CacheKey


class EntryState(Enum):
    """Lifecycle of one cache entry.

    EMPTY -> FETCHING -> READY | ERRORED
    READY -> REVALIDATING -> READY | ERRORED (stale data retained)
    READY -> OPTIMISTIC -> READY (confirmed or rolled back)
    """

    EMPTY = "empty"
    FETCHING = "fetching"
    READY = "ready"
    ERRORED = "errored"
    REVALIDATING = "revalidating"
    OPTIMISTIC = "optimistic"


@dataclass(frozen=True)
class EntrySnapshot:
    """What a render surface sees. Check ``error`` before rendering ``data``."""

    data: Any
    error: BaseException | None
    is_loading: bool
    is_validating: bool
    state: EntryState


@dataclass
class PendingFetch:
    """The single in-flight fetch for a key; concurrent subscribers share it."""

    seq: int
    epoch: int
    # Entry mutation counter when the fetch started
    mutation_seq: int
    task: asyncio.Task

    def done(self) -> bool:
        return self.task.done()


class RollbackSnapshot:
    """Entry data captured right before an optimistic apply.

    Consumed exactly once: restored on failure or discarded on success.
    """

    __slots__ = ("data", "_consumed")

    def __init__(self, data: Any) -> None:
        self.data = data
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> Any:
        if self._consumed:
            raise RuntimeError("Rollback snapshot already consumed")
        self._consumed = True
        return self.data


@dataclass
class OptimisticLayer:
    """One optimistic mutation waiting for its write to settle."""

    updater: Any
    snapshot: RollbackSnapshot
    # Entry version when the layer was applied
    base_version: int


@dataclass
class CacheEntry:
    key: CacheKey
    data: Any = None
    error: BaseException | None = None
    last_fetched_at: float | None = None
    is_validating: bool = False
    state: EntryState = EntryState.EMPTY

    # Bookkeeping owned by SynchronizedCache
    stale: bool = False
    epoch: int = 0
    latest_fetch_seq: int = 0
    mutation_seq: int = 0
    # Bumped whenever the confirmed value or the layer stack changes underneath
    version: int = 0
    confirmed: Any = None
    layers: list[OptimisticLayer] = field(default_factory=list)
    listeners: list[Callable[[EntrySnapshot], None]] = field(default_factory=list)
    subscriber_count: int = 0
    gc_handle: asyncio.TimerHandle | None = None
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def has_data(self) -> bool:
        return self.last_fetched_at is not None or self.data is not None

    def snapshot(self) -> EntrySnapshot:
        return EntrySnapshot(
            data=self.data,
            error=self.error,
            is_loading=self.is_validating and not self.has_data,
            is_validating=self.is_validating,
            state=self.state,
        )

    def is_fresh(self, now: float, deduping_interval: float) -> bool:
        if self.stale or self.last_fetched_at is None:
            return False
        return now - self.last_fetched_at < deduping_interval


def apply_updater(updater: Any, current: Any) -> Any:
    """Apply a replacement value or a ``current -> next`` function.

    Function updaters receive a deep copy so they cannot alter the value a
    rollback snapshot holds.
    """
    if callable(updater):
        return updater(copy.deepcopy(current))
    return updater
