"""Tests for OfflineRuntime wiring and the singleton accessor."""

from __future__ import annotations

import pytest

from sphair_offline.sync.config import SERVER_URL_ENV_VAR, SyncConfig
from sphair_offline.sync.runtime import OfflineRuntime, get_runtime, reset_runtime


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv(SERVER_URL_ENV_VAR, raising=False)
    reset_runtime()
    yield tmp_path
    reset_runtime()


@pytest.fixture
def runtime(transport) -> OfflineRuntime:
    """Runtime with its transport swapped for the fake."""
    rt = OfflineRuntime()
    rt.engine.transport = transport
    rt.api.transport = transport
    return rt


class TestSingleton:
    def test_get_runtime_returns_same_instance(self):
        assert get_runtime() is get_runtime()

    def test_reset_runtime(self):
        first = get_runtime()
        reset_runtime()
        assert get_runtime() is not first

    def test_explicit_config_is_used(self, tmp_path):
        config = SyncConfig(config_dir=tmp_path / "custom")
        assert get_runtime(config).config is config


class TestWiring:
    def test_store_under_home(self, isolated_home):
        rt = OfflineRuntime()
        assert rt.store.db_path == isolated_home / ".sphair" / "offline.db"

    def test_reconnect_hook_targets_engine(self):
        rt = OfflineRuntime()
        assert rt.monitor.on_online == rt.engine.sync
        assert rt.engine.monitor is rt.monitor
        assert rt.api.store is rt.store

    def test_config_values_flow_into_components(self, isolated_home):
        sphair_dir = isolated_home / ".sphair"
        sphair_dir.mkdir()
        (sphair_dir / "config.toml").write_text(
            "[sync]\nmax_retries = 5\nretry_delay_seconds = 1\nauto_sync_interval_seconds = 90\n"
        )

        rt = OfflineRuntime()

        assert rt.engine.max_retries == 5
        assert rt.engine.retry_delay.total_seconds() == 1
        assert rt.auto_sync.interval_seconds == 90


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_offline_then_reconnect_drains(self, runtime, transport):
        runtime.monitor.set_offline()
        response = await runtime.api.patch("/tasks/5/start")
        assert response.queued
        assert transport.calls == []

        runtime.monitor.set_online()
        await runtime.monitor.wait_for_pending()

        assert transport.urls == ["/tasks/5/start"]
        assert await runtime.store.size() == 0
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_start_without_probe_and_close(self, runtime, transport):
        await runtime.api.queue_request("POST", "/tasks", {"title": "Clean panels"})

        await runtime.start(probe=False)
        try:
            assert runtime.started
            assert runtime.auto_sync.is_running
            assert transport.urls == ["/tasks"]
        finally:
            await runtime.aclose()

        assert not runtime.started
        assert not runtime.auto_sync.is_running

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, runtime):
        await runtime.aclose()
        await runtime.aclose()
