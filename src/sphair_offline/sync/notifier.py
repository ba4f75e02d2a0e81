"""Pub/sub broadcaster for sync state changes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    SYNCING = "syncing"
    IDLE = "idle"
    COMPLETED = "completed"
    ERROR = "error"


SyncListener = Callable[[SyncStatus, Optional[dict[str, Any]]], None]


class StatusNotifier:
    """
    Synchronous fan-out of sync status to subscribers.

    There is no buffering: a subscriber only sees events published after it
    subscribed. Consumers are expected to render from current store state
    and use events as change signals.
    """

    def __init__(self) -> None:
        self._listeners: list[SyncListener] = []

    def subscribe(self, callback: SyncListener) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            self._listeners = [cb for cb in self._listeners if cb is not callback]

        return unsubscribe

    def publish(self, status: SyncStatus | str, data: Optional[dict[str, Any]] = None) -> None:
        status = SyncStatus(status)
        logger.debug("Sync status: %s %s", status.value, data or "")
        # Snapshot so listeners may unsubscribe while being notified
        for callback in list(self._listeners):
            try:
                callback(status, data)
            except Exception:
                logger.exception("Error in sync listener %r", callback)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


__all__ = ["StatusNotifier", "SyncListener", "SyncStatus"]
