"""Focus, idle and reconnect revalidation policy.

Event sources (a UI shell, a CLI watch loop, tests) report visibility,
activity and connectivity changes; the scheduler decides when a
revalidation pass is due and debounces bursts of events into one pass.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..logutils import get_logger
from .config import RevalidationReason

if TYPE_CHECKING:
    from .store import SynchronizedCache

logger = get_logger(__name__)


class RevalidationScheduler:
    """Single state machine for all global revalidation triggers.

    - hidden -> visible after at least ``idle_threshold`` hidden: FOCUS
    - activity after at least ``idle_threshold`` without any: IDLE
    - offline -> online: RECONNECT

    Requests within ``debounce`` seconds of each other collapse into one pass
    covering every requested reason. A request arriving while a pass is
    running schedules exactly one follow-up pass.
    """

    def __init__(
        self,
        cache: SynchronizedCache,
        idle_threshold: float | None = None,
        debounce: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.idle_threshold = cache.config.idle_threshold if idle_threshold is None else idle_threshold
        self.debounce = cache.config.revalidation_debounce if debounce is None else debounce
        self._clock = clock

        self.visible = True
        self.online = True
        self._hidden_since: float | None = None
        self._last_activity = clock()

        self._requested: set[RevalidationReason] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._pass_task: asyncio.Task | None = None
        self._rerun = False
        self.passes_run = 0

    # Event sources

    def visibility_changed(self, visible: bool) -> None:
        now = self._clock()
        if not visible:
            if self.visible:
                self._hidden_since = now
            self.visible = False
            return
        was_hidden = not self.visible
        hidden_since = self._hidden_since
        self.visible = True
        self._hidden_since = None
        self._last_activity = now
        if was_hidden and hidden_since is not None and now - hidden_since >= self.idle_threshold:
            logger.debug("Visible again after %.1fs hidden", now - hidden_since)
            self._request(RevalidationReason.FOCUS)

    def activity(self) -> None:
        now = self._clock()
        idle_for = now - self._last_activity
        self._last_activity = now
        if idle_for >= self.idle_threshold:
            logger.debug("Activity after %.1fs idle", idle_for)
            self._request(RevalidationReason.IDLE)

    def connectivity_changed(self, online: bool) -> None:
        was_offline = not self.online
        self.online = online
        if online and was_offline:
            self._request(RevalidationReason.RECONNECT)

    # Scheduling

    @property
    def pending_reasons(self) -> frozenset[RevalidationReason]:
        return frozenset(self._requested)

    def _request(self, reason: RevalidationReason) -> None:
        self._requested.add(reason)
        if self._pass_task is not None and not self._pass_task.done():
            self._rerun = True
            return
        self._schedule()

    def _schedule(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if not self._requested:
            return
        reasons = self._requested
        self._requested = set()
        self._pass_task = asyncio.get_running_loop().create_task(self._run_pass(reasons))

    async def _run_pass(self, reasons: set[RevalidationReason]) -> None:
        self.passes_run += 1
        ordered = sorted(reasons, key=lambda r: r.value)
        logger.info("Revalidation pass %d (%s)", self.passes_run, ", ".join(r.value for r in ordered))
        try:
            await self.cache.revalidate_all(ordered)
        except Exception:
            logger.exception("Revalidation pass failed")
        finally:
            if self._rerun:
                self._rerun = False
                self._schedule()

    async def wait_idle(self) -> None:
        """Wait until no pass is scheduled or running."""
        while True:
            if self._pass_task is not None and not self._pass_task.done():
                await asyncio.shield(self._pass_task)
                continue
            if self._timer is not None:
                await asyncio.sleep(self.debounce / 2 or 0)
                continue
            return

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._requested.clear()
        self._rerun = False
