"""Periodic background sync.

Runs an asyncio task that triggers a drain every ``interval_seconds``.
Retry backoff is honoured here, at the trigger level: when a pending
operation's ``next_retry_at`` falls before the next regular tick, the
service wakes up early for it instead of waiting a full interval.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .connectivity import ConnectivityMonitor
from .engine import SyncEngine
from .models import SyncSummary, utc_now

logger = logging.getLogger(__name__)

MIN_WAKE_SECONDS = 1.0


@dataclass
class AutoSyncService:
    """Manages periodic background drains of the offline queue."""

    engine: SyncEngine
    monitor: Optional[ConnectivityMonitor] = None
    interval_seconds: float = 30.0
    clock: Callable[[], datetime] = field(default=utc_now, repr=False)
    _task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _ticks: int = field(default=0, init=False, repr=False)
    _inflight: Optional[asyncio.Future[Optional[SyncSummary]]] = field(default=None, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        return self._ticks

    async def start(self, interval_seconds: Optional[float] = None) -> None:
        """Sync immediately if online, then keep syncing on a timer (idempotent)."""
        if self.is_running:
            return
        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        await self._tick()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Auto sync started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the timer. A drain already in progress runs to completion first."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if self._inflight is not None and not self._inflight.done():
            await self._inflight
        self._inflight = None
        logger.debug("Auto sync stopped")

    async def next_delay(self) -> float:
        """Seconds until the next tick, shortened for due retries.

        While offline a tick cannot drain, so due retries do not shorten
        the wait.
        """
        delay = self.interval_seconds
        if self.monitor is not None and not self.monitor.is_online:
            return delay
        earliest = await self.engine.store.earliest_retry_at()
        if earliest is not None:
            until_retry = (earliest - self.clock()).total_seconds()
            delay = min(delay, max(until_retry, MIN_WAKE_SECONDS))
        return delay

    async def _run(self) -> None:
        while True:
            try:
                delay = await self.next_delay()
            except Exception as exc:
                logger.warning("Could not read retry schedule, using interval: %s", exc)
                delay = self.interval_seconds
            await asyncio.sleep(delay)
            await self._tick()

    async def _tick(self) -> Optional[SyncSummary]:
        self._ticks += 1
        if self.monitor is not None and not self.monitor.is_online:
            return None
        if self.engine.is_syncing:
            return None
        # Shielded so stop() never interrupts a drain between items
        self._inflight = asyncio.ensure_future(self.engine.sync())
        return await asyncio.shield(self._inflight)


__all__ = ["AutoSyncService"]
