"""OfflineRuntime: lazy singleton wiring the offline sync components.

Usage:
    from sphair_offline.sync.runtime import get_runtime

    runtime = get_runtime()
    response = await runtime.api.post("/tasks/5/start")
    await runtime.start()   # auto sync + connectivity probe
    ...
    await runtime.aclose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .background import AutoSyncService
from .config import SyncConfig
from .connectivity import ConnectivityMonitor, ConnectivityProbe
from .engine import SyncEngine
from .interceptor import OfflineApi
from .notifier import StatusNotifier
from .queue import OfflineStore
from .transport import HttpxTransport

logger = logging.getLogger(__name__)


@dataclass
class OfflineRuntime:
    """Owns one instance of each offline-layer component.

    Built from ``SyncConfig``; the connectivity monitor's reconnect hook is
    wired to ``SyncEngine.sync``.
    """

    config: SyncConfig = field(default_factory=SyncConfig)
    store: OfflineStore = field(init=False)
    notifier: StatusNotifier = field(init=False)
    monitor: ConnectivityMonitor = field(init=False)
    transport: HttpxTransport = field(init=False)
    engine: SyncEngine = field(init=False)
    api: OfflineApi = field(init=False)
    auto_sync: AutoSyncService = field(init=False)
    probe: Optional[ConnectivityProbe] = field(default=None, init=False)
    started: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.store = OfflineStore(db_path=self.config.get_db_path())
        self.notifier = StatusNotifier()
        self.monitor = ConnectivityMonitor(online=True)
        self.transport = HttpxTransport(
            base_url=self.config.get_server_url,
            timeout=self.config.request_timeout_seconds,
        )
        self.engine = SyncEngine(
            store=self.store,
            transport=self.transport,
            notifier=self.notifier,
            monitor=self.monitor,
            max_retries=self.config.max_retries,
            retry_delay_seconds=self.config.retry_delay_seconds,
        )
        self.monitor.on_online = self.engine.sync
        self.api = OfflineApi(transport=self.transport, store=self.store, monitor=self.monitor)
        self.auto_sync = AutoSyncService(
            engine=self.engine,
            monitor=self.monitor,
            interval_seconds=self.config.auto_sync_interval_seconds,
        )

    async def start(self, probe: bool = True) -> None:
        """Start auto sync and, optionally, the connectivity probe (idempotent)."""
        if self.started:
            return
        if probe:
            self.probe = ConnectivityProbe(
                monitor=self.monitor,
                url=self.config.get_health_url,
                interval_seconds=self.config.probe_interval_seconds,
            )
            await self.probe.check()
            self.probe.start()
        await self.auto_sync.start()
        self.started = True
        logger.debug("OfflineRuntime started")

    async def aclose(self) -> None:
        """Stop background work and release the HTTP client. Safe to call twice."""
        if self.probe is not None:
            await self.probe.stop()
            self.probe = None
        await self.auto_sync.stop()
        await self.monitor.wait_for_pending()
        await self.transport.aclose()
        self.started = False
        logger.debug("OfflineRuntime stopped")


# ── Singleton accessor ────────────────────────────────────────────

_runtime: OfflineRuntime | None = None


def get_runtime(config: Optional[SyncConfig] = None) -> OfflineRuntime:
    """Get or create the singleton OfflineRuntime.

    Construction is lazy; background tasks only begin after ``start()``.
    """
    global _runtime
    if _runtime is None:
        _runtime = OfflineRuntime(config=config or SyncConfig())
    return _runtime


def reset_runtime() -> None:
    """Reset the singleton (for testing only)."""
    global _runtime
    _runtime = None


__all__ = ["OfflineRuntime", "get_runtime", "reset_runtime"]
