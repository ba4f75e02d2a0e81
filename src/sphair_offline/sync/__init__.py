"""
Offline-first sync core for the SPHAiR client.

Provides:
- Durable SQLite store for queued operations, cache and entity snapshots
- Connectivity monitor with an optional HTTP health probe
- Request interceptor that queues operations while offline
- Sync engine that replays the queue with bounded retries
- Status notifier for sync state changes

The HTTP-facing pieces (httpx) are lazily imported via __getattr__ so that
``from sphair_offline.sync.queue import ...`` stays lightweight.
"""

from .models import (
    ApiResponse,
    HttpMethod,
    OperationStatus,
    OperationType,
    QueuedOperation,
    QueueStats,
    SyncSummary,
)
from .notifier import StatusNotifier, SyncStatus
from .queue import OfflineStore, OperationNotFoundError, StorageError

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "ConnectivityMonitor": (".connectivity", "ConnectivityMonitor"),
    "ConnectivityProbe": (".connectivity", "ConnectivityProbe"),
    "HttpxTransport": (".transport", "HttpxTransport"),
    "TransportError": (".transport", "TransportError"),
    "NetworkError": (".transport", "NetworkError"),
    "RequestTimeout": (".transport", "RequestTimeout"),
    "HttpStatusError": (".transport", "HttpStatusError"),
    "OfflineApi": (".interceptor", "OfflineApi"),
    "SyncEngine": (".engine", "SyncEngine"),
    "AutoSyncService": (".background", "AutoSyncService"),
    "SyncConfig": (".config", "SyncConfig"),
    "OfflineRuntime": (".runtime", "OfflineRuntime"),
    "get_runtime": (".runtime", "get_runtime"),
    "reset_runtime": (".runtime", "reset_runtime"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_path, attr = _LAZY_IMPORTS[name]
        import importlib

        mod = importlib.import_module(module_path, __name__)
        return getattr(mod, attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ApiResponse",
    "AutoSyncService",
    "ConnectivityMonitor",
    "ConnectivityProbe",
    "HttpMethod",
    "HttpStatusError",
    "HttpxTransport",
    "NetworkError",
    "OfflineApi",
    "OfflineRuntime",
    "OfflineStore",
    "OperationNotFoundError",
    "OperationStatus",
    "OperationType",
    "QueueStats",
    "QueuedOperation",
    "RequestTimeout",
    "StatusNotifier",
    "StorageError",
    "SyncConfig",
    "SyncEngine",
    "SyncStatus",
    "SyncSummary",
    "TransportError",
    "get_runtime",
    "reset_runtime",
]
