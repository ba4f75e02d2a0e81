"""Tests for ConnectivityMonitor and ConnectivityProbe."""

from __future__ import annotations

import httpx
import pytest

from sphair_offline.sync.connectivity import ConnectivityMonitor, ConnectivityProbe


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestConnectivityMonitor:
    def test_platform_signals(self):
        monitor = ConnectivityMonitor(online=True)
        changes: list[bool] = []
        monitor.subscribe(changes.append)

        monitor.set_offline()
        assert not monitor.is_online
        assert not monitor.platform_online

        monitor.set_online()
        assert monitor.is_online
        assert changes == [False, True]

    def test_repeated_signal_notifies_once(self):
        monitor = ConnectivityMonitor(online=True)
        changes: list[bool] = []
        monitor.subscribe(changes.append)

        monitor.set_offline()
        monitor.set_offline()

        assert changes == [False]

    def test_unsubscribe(self):
        monitor = ConnectivityMonitor()
        changes: list[bool] = []
        unsubscribe = monitor.subscribe(changes.append)
        unsubscribe()

        monitor.set_offline()

        assert changes == []

    def test_failing_listener_does_not_break_others(self):
        monitor = ConnectivityMonitor()
        changes: list[bool] = []

        def broken(_online: bool) -> None:
            raise RuntimeError("listener bug")

        monitor.subscribe(broken)
        monitor.subscribe(changes.append)
        monitor.set_offline()

        assert changes == [False]

    def test_reported_failure_is_time_limited(self):
        clock = FakeClock()
        monitor = ConnectivityMonitor(suspect_seconds=30, clock=clock)

        monitor.report_connectivity_failure(OSError("unreachable"))
        assert not monitor.is_online
        assert monitor.platform_online

        clock.now += 29
        assert not monitor.is_online
        clock.now += 2
        assert monitor.is_online

    def test_success_after_lapsed_window_announces_online(self):
        clock = FakeClock()
        changes: list[bool] = []
        triggered: list[str] = []
        monitor = ConnectivityMonitor(
            suspect_seconds=10,
            on_online=lambda: triggered.append("sync"),
            clock=clock,
        )
        monitor.subscribe(changes.append)
        monitor.report_connectivity_failure(OSError("unreachable"))

        clock.now += 11
        assert monitor.is_online
        monitor.report_success()

        assert changes == [False, True]
        assert triggered == ["sync"]

        monitor.report_success()
        assert changes == [False, True]
        assert triggered == ["sync"]

    def test_failure_after_lapsed_window_is_not_announced_twice(self):
        clock = FakeClock()
        changes: list[bool] = []
        monitor = ConnectivityMonitor(suspect_seconds=10, clock=clock)
        monitor.subscribe(changes.append)
        monitor.report_connectivity_failure()

        clock.now += 11
        monitor.report_connectivity_failure()

        assert not monitor.is_online
        assert changes == [False]

    def test_set_online_after_lapsed_window_announces_online(self):
        clock = FakeClock()
        changes: list[bool] = []
        monitor = ConnectivityMonitor(suspect_seconds=10, clock=clock)
        monitor.subscribe(changes.append)
        monitor.report_connectivity_failure()

        clock.now += 11
        monitor.set_online()

        assert changes == [False, True]

    def test_report_success_restores_and_triggers(self):
        clock = FakeClock()
        triggered: list[str] = []
        monitor = ConnectivityMonitor(
            on_online=lambda: triggered.append("sync"),
            clock=clock,
        )
        monitor.report_connectivity_failure()

        monitor.report_success()

        assert monitor.is_online
        assert triggered == ["sync"]

    def test_report_success_when_online_is_quiet(self):
        triggered: list[str] = []
        monitor = ConnectivityMonitor(on_online=lambda: triggered.append("sync"))

        monitor.report_success()

        assert triggered == []

    def test_failure_while_offline_is_ignored(self):
        monitor = ConnectivityMonitor(online=False)
        changes: list[bool] = []
        monitor.subscribe(changes.append)

        monitor.report_connectivity_failure()

        assert changes == []

    def test_set_online_always_triggers_sync(self):
        triggered: list[str] = []
        monitor = ConnectivityMonitor(online=True, on_online=lambda: triggered.append("sync"))

        monitor.set_online()
        monitor.set_online()

        assert triggered == ["sync", "sync"]

    def test_set_online_clears_suspicion(self):
        monitor = ConnectivityMonitor(clock=FakeClock())
        monitor.report_connectivity_failure()

        monitor.set_online()

        assert monitor.is_online

    def test_coroutine_hook_without_loop_is_closed(self):
        ran: list[str] = []

        async def hook() -> None:
            ran.append("sync")

        monitor = ConnectivityMonitor(online=False, on_online=hook)
        monitor.set_online()

        assert ran == []

    @pytest.mark.asyncio
    async def test_reconnect_schedules_drain(self, engine, monitor, temp_store, transport, make_op):
        monitor.on_online = engine.sync
        monitor.set_offline()
        await temp_store.enqueue(make_op("/tasks/1/start"))

        monitor.set_online()
        await monitor.wait_for_pending()

        assert transport.urls == ["/tasks/1/start"]
        assert await temp_store.size() == 0


class TestConnectivityProbe:
    @staticmethod
    def _client(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_any_response_means_reachable(self):
        monitor = ConnectivityMonitor(online=False)
        probe = ConnectivityProbe(
            monitor=monitor,
            url="https://api.example.com/api/health",
            client=self._client(lambda request: httpx.Response(503)),
        )

        assert await probe.check() is True
        assert monitor.is_online

    @pytest.mark.asyncio
    async def test_reachable_after_lapsed_window_announces_online(self):
        clock = FakeClock()
        changes: list[bool] = []
        monitor = ConnectivityMonitor(suspect_seconds=10, clock=clock)
        monitor.subscribe(changes.append)
        monitor.report_connectivity_failure()
        clock.now += 11
        probe = ConnectivityProbe(
            monitor=monitor,
            url="https://api.example.com/api/health",
            client=self._client(lambda request: httpx.Response(200)),
        )

        assert await probe.check() is True
        assert changes == [False, True]

    @pytest.mark.asyncio
    async def test_transport_failure_marks_offline(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        monitor = ConnectivityMonitor(online=True)
        probe = ConnectivityProbe(monitor=monitor, url=lambda: "https://api.example.com/health", client=self._client(handler))

        assert await probe.check() is False
        assert not monitor.platform_online

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        monitor = ConnectivityMonitor()
        probe = ConnectivityProbe(
            monitor=monitor,
            url="https://api.example.com/health",
            interval_seconds=60,
            client=self._client(lambda request: httpx.Response(200)),
        )

        probe.start()
        assert probe.is_running
        await probe.stop()
        assert not probe.is_running
