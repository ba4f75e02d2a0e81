"""Online/offline state tracking for the offline layer."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """
    Tracks whether the backend is believed reachable.

    Two inputs feed the state:
    - platform signals (``set_online`` / ``set_offline``), e.g. from
      ``ConnectivityProbe`` or an embedding application's network events
    - transport failures reported by the interceptor, which pessimistically
      mark the connection as down for ``suspect_seconds`` even while the
      platform still reports online

    The pessimistic flip is a heuristic. Once it lapses the next operation
    tries the transport directly again and either confirms the outage or
    restores the online state via ``report_success``.
    """

    def __init__(
        self,
        online: bool = True,
        on_online: Optional[Callable[[], Any]] = None,
        suspect_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            online: Initial platform state.
            on_online: Called (fire-and-forget) whenever connectivity is
                restored; usually ``SyncEngine.sync``.
            suspect_seconds: How long a reported transport failure keeps the
                monitor offline while the platform still says online.
            clock: Monotonic time source (injectable for tests).
        """
        self._platform_online = online
        self._suspected_until: Optional[float] = None
        # Last state delivered to listeners
        self._announced_online = online
        self._listeners: list[ConnectivityListener] = []
        self._pending: set[asyncio.Task[Any]] = set()
        self.on_online = on_online
        self.suspect_seconds = suspect_seconds
        self._clock = clock

    @property
    def platform_online(self) -> bool:
        return self._platform_online

    @property
    def is_online(self) -> bool:
        if not self._platform_online:
            return False
        if self._suspected_until is not None and self._clock() < self._suspected_until:
            return False
        return True

    def subscribe(self, callback: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            self._listeners = [cb for cb in self._listeners if cb is not callback]

        return unsubscribe

    def set_online(self) -> None:
        """Platform reports the network is back: clear suspicion and trigger a drain."""
        self._platform_online = True
        self._suspected_until = None
        logger.info("Device came online")
        self._announce(True)
        self._trigger_on_online()

    def set_offline(self) -> None:
        """Platform reports the network is gone."""
        self._platform_online = False
        logger.info("Device went offline")
        self._announce(False)

    def report_connectivity_failure(self, error: Optional[BaseException] = None) -> None:
        """A transport call failed without a response while we believed we were online."""
        if not self.is_online:
            return
        self._suspected_until = self._clock() + self.suspect_seconds
        logger.warning("Marking connection offline after transport failure: %s", error)
        self._announce(False)

    def report_success(self) -> None:
        """A transport call succeeded; drop any pessimistic offline marking.

        Listeners last told ``False`` hear ``True`` again, and the reconnect
        hook fires, even when the suspicion window already lapsed on its own.
        """
        self._suspected_until = None
        if self._announced_online or not self.is_online:
            return
        logger.info("Connection confirmed by successful request")
        self._announce(True)
        self._trigger_on_online()

    def _announce(self, online: bool) -> None:
        if online == self._announced_online:
            return
        self._announced_online = online
        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception:
                logger.exception("Error in connectivity listener %r", callback)

    def _trigger_on_online(self) -> None:
        if self.on_online is None:
            return
        result = self.on_online()
        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Synchronous context: nothing can drive the coroutine.
            if inspect.iscoroutine(result):
                result.close()
            logger.debug("No running event loop; skipping sync on reconnect")
            return
        task = loop.create_task(result)
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Sync triggered by reconnect failed: %s", task.exception())

    async def wait_for_pending(self) -> None:
        """Await drains scheduled by reconnect signals (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ConnectivityProbe:
    """
    Polls a health URL and feeds the result into a ``ConnectivityMonitor``.

    Any HTTP response, whatever its status, proves the server is reachable.
    Only transport-level failures count as offline.
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        url: Callable[[], str] | str,
        interval_seconds: float = 15.0,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.monitor = monitor
        self._url = url
        self.interval_seconds = interval_seconds
        self.timeout = timeout
        self._client = client
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _resolve_url(self) -> str:
        return self._url() if callable(self._url) else self._url

    async def check(self) -> bool:
        """Probe once and update the monitor. Returns reachability."""
        url = self._resolve_url()
        try:
            if self._client is not None:
                await self._client.get(url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    await client.get(url)
            reachable = True
        except httpx.TransportError as exc:
            logger.debug("Connectivity probe to %s failed: %s", url, exc)
            reachable = False

        if reachable and not self.monitor.is_online:
            self.monitor.set_online()
        elif reachable:
            self.monitor.report_success()
        elif self.monitor.platform_online:
            self.monitor.set_offline()
        return reachable

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Connectivity probe started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Connectivity probe stopped")

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval_seconds)


__all__ = ["ConnectivityListener", "ConnectivityMonitor", "ConnectivityProbe"]
