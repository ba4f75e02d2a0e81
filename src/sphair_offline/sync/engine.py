"""Replay driver for the offline operation queue.

One drain at a time: ``sync()`` called while a drain is active returns
immediately. A drain takes a single snapshot of pending operations and
attempts each in ``enqueued_at`` order. An item that fails stays where it
is (pending with a bumped retry count, or terminally ``failed``) and the
drain moves on, so one bad operation never blocks the ones behind it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from .connectivity import ConnectivityMonitor
from .models import OperationStatus, QueuedOperation, SyncSummary, utc_now
from .notifier import StatusNotifier, SyncStatus
from .queue import OfflineStore, OperationNotFoundError
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 5.0

_DEFAULT_HEADERS = {"Content-Type": "application/json"}


class SyncEngine:
    """Drains the offline store through the transport."""

    def __init__(
        self,
        store: OfflineStore,
        transport: Transport,
        notifier: Optional[StatusNotifier] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Args:
            store: Durable operation queue.
            transport: Used for replay; resolves the base URL per call.
            notifier: Receives syncing/idle/completed/error events.
            monitor: When given, drains are skipped while it reports offline.
            max_retries: Failed attempts before an operation becomes ``failed``.
            retry_delay_seconds: Delay recorded in ``next_retry_at`` after a
                retryable failure.
            clock: UTC time source (injectable for tests).
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.store = store
        self.transport = transport
        self.notifier = notifier or StatusNotifier()
        self.monitor = monitor
        self.max_retries = max_retries
        self.retry_delay = timedelta(seconds=retry_delay_seconds)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_sync: Optional[datetime] = None
        self._last_summary: Optional[SyncSummary] = None

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def last_sync(self) -> Optional[datetime]:
        return self._last_sync

    @property
    def last_summary(self) -> Optional[SyncSummary]:
        return self._last_summary

    async def sync(self) -> Optional[SyncSummary]:
        """
        Run one drain over the currently pending operations.

        Returns:
            The pass summary, or None when the call was a no-op (another
            drain is running, the device is offline) or the drain aborted.
        """
        # Check-and-acquire happens without yielding, so two callers can
        # never both get past this point.
        if self._lock.locked():
            logger.debug("Sync already in progress")
            return None

        if self.monitor is not None and not self.monitor.is_online:
            logger.info("Device is offline, cannot sync")
            return None

        async with self._lock:
            self.notifier.publish(SyncStatus.SYNCING)
            try:
                summary = await self._drain()
            except Exception as exc:
                logger.error("Sync error: %s", exc)
                self.notifier.publish(SyncStatus.ERROR, {"message": str(exc)})
                return None

        self._last_sync = self._clock()
        self._last_summary = summary
        if summary.total == 0:
            self.notifier.publish(SyncStatus.IDLE)
        else:
            self.notifier.publish(SyncStatus.COMPLETED, summary.as_event_data())
            logger.info(
                "Sync completed: %d succeeded, %d failed, %d retrying",
                summary.succeeded,
                summary.failed,
                summary.retried,
            )
        return summary

    async def _drain(self) -> SyncSummary:
        pending = await self.store.list_pending()
        summary = SyncSummary(total=len(pending))
        logger.info("Found %d pending sync items", len(pending))

        for op in pending:
            try:
                await self.replay(op)
            except Exception as exc:
                try:
                    await self._record_failure(op, exc, summary)
                except OperationNotFoundError:
                    logger.info("Operation %s was removed during sync", op.id)
                continue
            await self.store.remove(op.id)
            summary.succeeded += 1

        return summary

    async def replay(self, op: QueuedOperation) -> None:
        """Resubmit one operation. Raises whatever the transport raises."""
        logger.debug("Processing sync item: %s %s %s", op.type.value, op.method.value, op.url)
        headers = {**_DEFAULT_HEADERS, **op.headers}
        payload = op.payload if op.method.has_body else None
        await self.transport(op.method.value, op.url, payload, headers)

    async def _record_failure(self, op: QueuedOperation, error: Exception, summary: SyncSummary) -> None:
        retry_count = op.retry_count + 1
        message = str(error) or error.__class__.__name__
        summary.errors[op.id] = message

        if retry_count >= self.max_retries:
            await self.store.update(
                op.id,
                status=OperationStatus.FAILED,
                retry_count=retry_count,
                last_error=message,
                next_retry_at=None,
            )
            summary.failed += 1
            logger.warning(
                "Operation %s (%s %s) failed permanently after %d attempts: %s",
                op.id,
                op.method.value,
                op.url,
                retry_count,
                message,
            )
        else:
            await self.store.update(
                op.id,
                retry_count=retry_count,
                last_error=message,
                next_retry_at=self._clock() + self.retry_delay,
            )
            summary.retried += 1
            logger.info(
                "Operation %s failed (attempt %d/%d), will retry: %s",
                op.id,
                retry_count,
                self.max_retries,
                message,
            )


__all__ = ["DEFAULT_MAX_RETRIES", "DEFAULT_RETRY_DELAY_SECONDS", "SyncEngine"]
