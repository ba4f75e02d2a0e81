"""Offline-aware API wrapper.

Every outbound operation goes through ``OfflineApi.execute``. When the
backend cannot be reached the operation is written to the offline store and
a synthetic 202 response is returned, so call sites that only check for
success keep working without knowing about offline mode.

Classification policy: a failure raised by the transport layer without a
response is a connectivity failure, even when its message matches no known
network-error signature. Losing a completed maintenance task to a flaky
connection is worse than a duplicate submission, which server-side
idempotency catches. Failures that carry a response (4xx/5xx) are never
queued, and neither are errors from the caller's own code (an
unserialisable payload, say), which propagate unchanged.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

import httpx

from .connectivity import ConnectivityMonitor
from .models import ApiResponse, HttpMethod, QueuedOperation
from .queue import OfflineStore
from .transport import Transport, TransportError, has_network_signature

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "Request queued for sync when connection is restored"

_TRANSPORT_LAYER_ERRORS = (TransportError, httpx.TransportError, OSError, TimeoutError)


class FailureKind(str, Enum):
    CONNECTIVITY = "connectivity"
    APPLICATION = "application"


def classify_failure(error: BaseException) -> FailureKind:
    """Decide whether a transport failure should be queued or surfaced."""
    if getattr(error, "response", None) is not None:
        return FailureKind.APPLICATION
    if has_network_signature(error):
        return FailureKind.CONNECTIVITY
    if isinstance(error, _TRANSPORT_LAYER_ERRORS):
        # No response and no recognisable signature: queue rather than lose it.
        logger.debug("Treating unclassified transport failure as connectivity: %r", error)
        return FailureKind.CONNECTIVITY
    return FailureKind.APPLICATION


def queued_response(op: QueuedOperation) -> ApiResponse:
    return ApiResponse(
        status=202,
        status_text="Accepted",
        data={
            "queued": True,
            "message": QUEUED_MESSAGE,
            "request_id": op.id,
        },
        queued=True,
    )


class OfflineApi:
    """
    Request interceptor in front of the transport.

    The store is only ever appended to from here; removal and retry
    bookkeeping belong to the sync engine.
    """

    def __init__(
        self,
        transport: Transport,
        store: OfflineStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        self.transport = transport
        self.store = store
        self.monitor = monitor

    async def execute(
        self,
        method: str | HttpMethod,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> ApiResponse:
        """
        Perform an operation, queueing it if the backend is unreachable.

        Returns:
            The transport response unchanged on success, or a synthetic 202
            ``ApiResponse`` with ``queued=True`` when the operation was stored.

        Raises:
            HttpStatusError: the server answered with an error status.
            StorageError: the operation could not be persisted.
            Exception: anything else not raised by the transport layer
                propagates unchanged and leaves connectivity untouched.
        """
        verb = HttpMethod.parse(method)

        if not self.monitor.is_online:
            return await self.queue_request(verb, url, payload, headers)

        try:
            response = await self.transport(verb.value, url, payload, headers)
        except Exception as exc:
            if classify_failure(exc) is FailureKind.APPLICATION:
                raise
            logger.info("Network error on %s %s, queueing for offline sync: %s", verb.value, url, exc)
            queued = await self.queue_request(verb, url, payload, headers)
            self.monitor.report_connectivity_failure(exc)
            return queued

        self.monitor.report_success()
        return response

    async def queue_request(
        self,
        method: str | HttpMethod,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> ApiResponse:
        """Persist an operation and build the queued placeholder response.

        A ``StorageError`` from the store propagates: the caller must never
        be told an operation was queued when it was not written.
        """
        op = QueuedOperation.create(method, url, payload, headers)
        await self.store.enqueue(op)
        return queued_response(op)

    # Helper methods for common operations

    async def get(self, url: str, headers: Optional[dict[str, str]] = None) -> ApiResponse:
        return await self.execute(HttpMethod.GET, url, headers=headers)

    async def post(self, url: str, payload: Any = None, headers: Optional[dict[str, str]] = None) -> ApiResponse:
        return await self.execute(HttpMethod.POST, url, payload, headers)

    async def put(self, url: str, payload: Any = None, headers: Optional[dict[str, str]] = None) -> ApiResponse:
        return await self.execute(HttpMethod.PUT, url, payload, headers)

    async def patch(self, url: str, payload: Any = None, headers: Optional[dict[str, str]] = None) -> ApiResponse:
        return await self.execute(HttpMethod.PATCH, url, payload, headers)

    async def delete(self, url: str, headers: Optional[dict[str, str]] = None) -> ApiResponse:
        return await self.execute(HttpMethod.DELETE, url, headers=headers)


__all__ = ["FailureKind", "OfflineApi", "QUEUED_MESSAGE", "classify_failure", "queued_response"]
