"""Synchronized cache of resource query results."""

from .config import ACADEMICS, DASHBOARD, CacheConfig, RevalidationReason
from .entry import EntrySnapshot, EntryState, RollbackSnapshot
from .keys import CacheKey, as_key
from .revalidation import RevalidationScheduler
from .store import EMPTY_SNAPSHOT, Subscription, SynchronizedCache

__all__ = [
    "ACADEMICS",
    "DASHBOARD",
    "EMPTY_SNAPSHOT",
    "CacheConfig",
    "CacheKey",
    "EntrySnapshot",
    "EntryState",
    "RevalidationReason",
    "RevalidationScheduler",
    "RollbackSnapshot",
    "Subscription",
    "SynchronizedCache",
    "as_key",
]
