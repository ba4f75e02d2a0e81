"""Shared fixtures for sync module tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import pytest

from sphair_offline.sync.connectivity import ConnectivityMonitor
from sphair_offline.sync.engine import SyncEngine
from sphair_offline.sync.interceptor import OfflineApi
from sphair_offline.sync.models import ApiResponse, QueuedOperation
from sphair_offline.sync.notifier import StatusNotifier
from sphair_offline.sync.queue import OfflineStore
from sphair_offline.sync.transport import NetworkError

BASE_TIME = datetime(2025, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


class FakeTransport:
    """Scriptable transport that records every call.

    ``failures`` maps a URL to the exception raised for it; everything else
    succeeds with a 200. Setting ``gate`` makes each call wait on the event,
    which lets tests hold a drain open mid-item.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any, dict[str, str]]] = []
        self.failures: dict[str, BaseException] = {}
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def __call__(
        self,
        method: str,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> ApiResponse:
        self.calls.append((method, url, payload, dict(headers or {})))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if url in self.failures:
            raise self.failures[url]
        return ApiResponse(status=200, data={"ok": True, "url": url}, status_text="OK")

    @property
    def urls(self) -> list[str]:
        return [url for _, url, _, _ in self.calls]


@pytest.fixture
def make_op() -> Callable[..., QueuedOperation]:
    """Factory for operations enqueued ``minutes`` after BASE_TIME."""

    def _make(url: str, minutes: int = 0, method: str = "PATCH", payload: Any = None) -> QueuedOperation:
        op = QueuedOperation.create(method, url, payload)
        op.enqueued_at = BASE_TIME + timedelta(minutes=minutes)
        return op

    return _make


@pytest.fixture
def temp_store(tmp_path: Path) -> OfflineStore:
    """Temporary SQLite store for testing."""
    return OfflineStore(db_path=tmp_path / "test_offline.db")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def notifier() -> StatusNotifier:
    return StatusNotifier()


@pytest.fixture
def events(notifier: StatusNotifier) -> list[tuple[str, Any]]:
    """Every status published on ``notifier``, in order."""
    received: list[tuple[str, Any]] = []
    notifier.subscribe(lambda status, data: received.append((status.value, data)))
    return received


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def fixed_now() -> datetime:
    return BASE_TIME + timedelta(hours=1)


@pytest.fixture
def engine(
    temp_store: OfflineStore,
    transport: FakeTransport,
    notifier: StatusNotifier,
    monitor: ConnectivityMonitor,
    fixed_now: datetime,
) -> SyncEngine:
    """SyncEngine wired to the temp store, fake transport and a fixed clock."""
    return SyncEngine(
        store=temp_store,
        transport=transport,
        notifier=notifier,
        monitor=monitor,
        max_retries=3,
        retry_delay_seconds=5,
        clock=lambda: fixed_now,
    )


@pytest.fixture
def api(transport: FakeTransport, temp_store: OfflineStore, monitor: ConnectivityMonitor) -> OfflineApi:
    return OfflineApi(transport=transport, store=temp_store, monitor=monitor)


@pytest.fixture
def network_error() -> NetworkError:
    return NetworkError("Network Error: connection refused")
