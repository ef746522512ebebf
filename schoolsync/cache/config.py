"""Cache and revalidation policy settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum


class RevalidationReason(Enum):
    """Why a revalidation pass was requested."""

    FOCUS = "focus"
    IDLE = "idle"
    RECONNECT = "reconnect"
    SESSION = "session"
    MANUAL = "manual"


@dataclass(frozen=True)
class CacheConfig:
    """Per-cache (or per-subscription) fetch and revalidation policy.

    Intervals are in seconds.
    """

    # A second subscribe within this window reuses the cached value
    deduping_interval: float = 2.0
    # Serve stale data and refetch in the background
    revalidate_if_stale: bool = True
    revalidate_on_focus: bool = True
    revalidate_on_reconnect: bool = True
    revalidate_on_idle: bool = True
    # Transient fetch failures (network, timeout, 5xx)
    error_retry_count: int = 2
    error_retry_interval: float = 1.0
    # Entries without subscribers are dropped after this long; None keeps them
    gc_grace_period: float | None = 300.0
    # Focus / idle / reconnect policy
    idle_threshold: float = 300.0
    revalidation_debounce: float = 1.0

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Create configuration from environment variables.

        Environment variables:
            SCHOOLSYNC_DEDUPING_INTERVAL: Deduping window in seconds
            SCHOOLSYNC_RETRY_COUNT: Retries for transient fetch failures
            SCHOOLSYNC_RETRY_INTERVAL: Seconds between retries
            SCHOOLSYNC_IDLE_THRESHOLD: Seconds hidden/idle before a refocus refetches
        """
        config = cls()
        overrides: dict[str, float | int] = {}
        if value := os.getenv("SCHOOLSYNC_DEDUPING_INTERVAL"):
            overrides["deduping_interval"] = float(value)
        if value := os.getenv("SCHOOLSYNC_RETRY_COUNT"):
            overrides["error_retry_count"] = int(value)
        if value := os.getenv("SCHOOLSYNC_RETRY_INTERVAL"):
            overrides["error_retry_interval"] = float(value)
        if value := os.getenv("SCHOOLSYNC_IDLE_THRESHOLD"):
            overrides["idle_threshold"] = float(value)
        return replace(config, **overrides) if overrides else config

    def allows(self, reason: RevalidationReason) -> bool:
        """Whether entries under this config take part in a pass for ``reason``."""
        if reason is RevalidationReason.FOCUS:
            return self.revalidate_on_focus
        if reason is RevalidationReason.IDLE:
            return self.revalidate_on_idle
        if reason is RevalidationReason.RECONNECT:
            return self.revalidate_on_reconnect
        return True


# Academic structure (grades, sections, subjects) rarely changes: refresh on demand only
ACADEMICS = CacheConfig(
    deduping_interval=60.0,
    revalidate_if_stale=False,
    revalidate_on_focus=False,
    revalidate_on_reconnect=False,
    revalidate_on_idle=False,
    error_retry_count=2,
)

# Dashboards follow the global visibility handler rather than every focus event
DASHBOARD = CacheConfig(
    deduping_interval=30.0,
    revalidate_on_focus=False,
    revalidate_on_reconnect=True,
    error_retry_count=2,
    error_retry_interval=1.0,
)
