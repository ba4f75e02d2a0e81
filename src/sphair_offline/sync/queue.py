"""SQLite-backed durable store for offline operations, cache and snapshots."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, TypeVar

from .models import (
    HttpMethod,
    OperationStatus,
    OperationType,
    QueuedOperation,
    QueueStats,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ERROR_LENGTH = 1000

_UPDATABLE_FIELDS = frozenset({"status", "retry_count", "last_error", "next_retry_at", "headers", "payload"})


class StorageError(RuntimeError):
    """Raised when the durable store cannot read or write."""


class OperationNotFoundError(StorageError, KeyError):
    """Raised when an update targets an operation id that is not stored."""


def _sphair_dir() -> Path:
    """Return ~/.sphair for the current HOME."""
    return Path.home() / ".sphair"


def default_store_path() -> Path:
    return _sphair_dir() / "offline.db"


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _encode_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return _to_utc(value).isoformat(timespec="microseconds")


def _decode_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    return _to_utc(datetime.fromisoformat(value))


def _row_to_operation(row: sqlite3.Row) -> QueuedOperation:
    try:
        op_type = OperationType(row["type"])
    except ValueError:
        op_type = OperationType.UNKNOWN
    return QueuedOperation(
        id=str(row["id"]),
        type=op_type,
        method=HttpMethod.parse(row["method"]),
        url=str(row["url"]),
        payload=json.loads(row["payload"]) if row["payload"] is not None else None,
        headers=json.loads(row["headers"]) if row["headers"] else {},
        enqueued_at=_decode_datetime(row["enqueued_at"]) or utc_now(),
        status=OperationStatus(row["status"]),
        retry_count=int(row["retry_count"]),
        last_error=row["last_error"],
        next_retry_at=_decode_datetime(row["next_retry_at"]),
    )


class OfflineStore:
    """
    Durable local store backing the offline layer.

    Holds three logical collections in one SQLite database:
    - ``sync_queue``: operations waiting for replay, FIFO by ``enqueued_at``
    - ``cache``: last-known-good read results keyed by string
    - ``tasks`` / ``checklist_responses``: per-entity snapshots

    Every public coroutine runs its SQLite work on a worker thread with a
    fresh connection, so each call yields to the event loop. SQLite's own
    transactions make individual reads and writes atomic; serialising
    drains is the sync engine's job.

    Any storage failure surfaces as ``StorageError``. Nothing here swallows
    a failed write.
    """

    def __init__(self, db_path: Optional[Path] = None) -> None:
        """
        Initialize the store and create the schema if needed.

        Args:
            db_path: Path to the SQLite database. Defaults to ~/.sphair/offline.db.
        """
        if db_path is None:
            db_path = default_store_path()

        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Failed to open offline store at {self.db_path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Initialize database schema with indexes"""
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    type TEXT NOT NULL,
                    method TEXT NOT NULL,
                    url TEXT NOT NULL,
                    payload TEXT,
                    headers TEXT NOT NULL DEFAULT '{}',
                    enqueued_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    next_retry_at TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_enqueued_at ON sync_queue(enqueued_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_status ON sync_queue(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_type ON sync_queue(type)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    timestamp TEXT NOT NULL
                )
                """
            )
            for table in ("tasks", "checklist_responses"):
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        data TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
            conn.commit()
        finally:
            conn.close()

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except StorageError:
            raise
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Offline store error: {exc}") from exc

    # ── Operation queue ───────────────────────────────────────────

    async def enqueue(self, op: QueuedOperation) -> str:
        """
        Persist an operation to the queue.

        Returns:
            The operation id.

        Raises:
            StorageError: if the operation could not be written. Callers must
                not report the operation as queued in that case.
        """
        op_id = await self._run(self._enqueue_sync, op)
        logger.info("Queued %s %s %s (id=%s)", op.type.value, op.method.value, op.url, op_id)
        return op_id

    def _enqueue_sync(self, op: QueuedOperation) -> str:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO sync_queue (
                    id, type, method, url, payload, headers, enqueued_at,
                    status, retry_count, last_error, next_retry_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    op.id,
                    op.type.value,
                    op.method.value,
                    op.url,
                    json.dumps(op.payload) if op.payload is not None else None,
                    json.dumps(op.headers or {}),
                    _encode_datetime(op.enqueued_at),
                    op.status.value,
                    op.retry_count,
                    op.last_error,
                    _encode_datetime(op.next_retry_at),
                ),
            )
            conn.commit()
            return op.id
        finally:
            conn.close()

    async def list_pending(self) -> list[QueuedOperation]:
        """Return pending operations, oldest first (FIFO)."""
        return await self._run(self._select_sync, OperationStatus.PENDING)

    async def list_failed(self) -> list[QueuedOperation]:
        """Return operations that exhausted their retries, oldest first."""
        return await self._run(self._select_sync, OperationStatus.FAILED)

    async def list_all(self) -> list[QueuedOperation]:
        return await self._run(self._select_sync, None)

    def _select_sync(self, status: Optional[OperationStatus]) -> list[QueuedOperation]:
        conn = self._connect()
        try:
            # seq breaks ties between operations enqueued in the same instant
            if status is None:
                cursor = conn.execute("SELECT * FROM sync_queue ORDER BY enqueued_at ASC, seq ASC")
            else:
                cursor = conn.execute(
                    "SELECT * FROM sync_queue WHERE status = ? ORDER BY enqueued_at ASC, seq ASC",
                    (status.value,),
                )
            return [_row_to_operation(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    async def get(self, op_id: str) -> Optional[QueuedOperation]:
        return await self._run(self._get_sync, op_id)

    def _get_sync(self, op_id: str) -> Optional[QueuedOperation]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM sync_queue WHERE id = ?", (op_id,)).fetchone()
            return _row_to_operation(row) if row is not None else None
        finally:
            conn.close()

    async def update(self, op_id: str, **fields: Any) -> QueuedOperation:
        """
        Apply a partial update to a queued operation.

        Args:
            op_id: Operation id.
            **fields: Any of status, retry_count, last_error, next_retry_at,
                headers, payload.

        Returns:
            The operation as stored after the update.

        Raises:
            OperationNotFoundError: if no operation has this id.
            ValueError: for fields that cannot be updated.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        return await self._run(self._update_sync, op_id, fields)

    def _update_sync(self, op_id: str, fields: dict[str, Any]) -> QueuedOperation:
        assignments: list[str] = []
        values: list[Any] = []
        for name, value in fields.items():
            if name == "status":
                value = OperationStatus(value).value
            elif name == "retry_count":
                value = int(value)
            elif name == "last_error" and value is not None:
                value = str(value)[:MAX_ERROR_LENGTH]
            elif name == "next_retry_at":
                value = _encode_datetime(value)
            elif name in ("headers", "payload"):
                value = json.dumps(value) if value is not None else None
            assignments.append(f"{name} = ?")
            values.append(value)

        conn = self._connect()
        try:
            if assignments:
                cursor = conn.execute(
                    f"UPDATE sync_queue SET {', '.join(assignments)} WHERE id = ?",
                    (*values, op_id),
                )
                if cursor.rowcount == 0:
                    raise OperationNotFoundError(f"Queue item not found: {op_id}")
                conn.commit()
            row = conn.execute("SELECT * FROM sync_queue WHERE id = ?", (op_id,)).fetchone()
            if row is None:
                raise OperationNotFoundError(f"Queue item not found: {op_id}")
            return _row_to_operation(row)
        finally:
            conn.close()

    async def remove(self, op_id: str) -> None:
        """Delete an operation. Removing an absent id is a no-op."""
        await self._run(self._remove_sync, op_id)

    def _remove_sync(self, op_id: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (op_id,))
            conn.commit()
        finally:
            conn.close()

    async def requeue_failed(self, op_ids: Optional[list[str]] = None) -> int:
        """
        Return failed operations to the pending queue with a fresh retry budget.

        Args:
            op_ids: Restrict to these ids. ``None`` requeues every failed item.

        Returns:
            Number of operations requeued.
        """
        count = await self._run(self._requeue_failed_sync, op_ids)
        if count:
            logger.info("Requeued %d failed operation(s)", count)
        return count

    def _requeue_failed_sync(self, op_ids: Optional[list[str]]) -> int:
        conn = self._connect()
        try:
            query = (
                "UPDATE sync_queue SET status = ?, retry_count = 0, next_retry_at = NULL "
                "WHERE status = ?"
            )
            params: list[Any] = [OperationStatus.PENDING.value, OperationStatus.FAILED.value]
            if op_ids is not None:
                if not op_ids:
                    return 0
                placeholders = ",".join("?" * len(op_ids))
                query += f" AND id IN ({placeholders})"
                params.extend(op_ids)
            cursor = conn.execute(query, params)
            conn.commit()
            return int(cursor.rowcount)
        finally:
            conn.close()

    async def size(self, status: Optional[OperationStatus] = None) -> int:
        return await self._run(self._size_sync, status)

    def _size_sync(self, status: Optional[OperationStatus]) -> int:
        conn = self._connect()
        try:
            if status is None:
                row = conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM sync_queue WHERE status = ?", (status.value,)
                ).fetchone()
            return int(row[0]) if row is not None else 0
        finally:
            conn.close()

    async def clear(self, status: Optional[OperationStatus] = None) -> int:
        """Delete queued operations, optionally only those with ``status``."""
        return await self._run(self._clear_sync, status)

    def _clear_sync(self, status: Optional[OperationStatus]) -> int:
        conn = self._connect()
        try:
            if status is None:
                cursor = conn.execute("DELETE FROM sync_queue")
            else:
                cursor = conn.execute("DELETE FROM sync_queue WHERE status = ?", (status.value,))
            conn.commit()
            return int(cursor.rowcount)
        finally:
            conn.close()

    async def earliest_retry_at(self) -> Optional[datetime]:
        """Earliest ``next_retry_at`` among pending operations, if any."""
        return await self._run(self._earliest_retry_sync)

    def _earliest_retry_sync(self) -> Optional[datetime]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT MIN(next_retry_at) FROM sync_queue WHERE status = ? AND next_retry_at IS NOT NULL",
                (OperationStatus.PENDING.value,),
            ).fetchone()
            return _decode_datetime(row[0]) if row is not None else None
        finally:
            conn.close()

    async def get_queue_stats(self) -> QueueStats:
        """
        Compute aggregate statistics about the queue.

        Returns a QueueStats with:
        - total_pending / total_failed: counts by status
        - total_retried: pending operations with retry_count > 0
        - oldest_operation_age: age of the oldest pending operation (None if empty)
        - type_counts: operation types by count, descending
        """
        return await self._run(self._stats_sync)

    def _stats_sync(self) -> QueueStats:
        conn = self._connect()
        try:
            counts = dict(
                conn.execute("SELECT status, COUNT(*) FROM sync_queue GROUP BY status").fetchall()
            )
            total_pending = int(counts.get(OperationStatus.PENDING.value, 0))
            total_failed = int(counts.get(OperationStatus.FAILED.value, 0))
            if total_pending == 0 and total_failed == 0:
                return QueueStats()

            retried_row = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE status = ? AND retry_count > 0",
                (OperationStatus.PENDING.value,),
            ).fetchone()

            oldest_row = conn.execute(
                "SELECT MIN(enqueued_at) FROM sync_queue WHERE status = ?",
                (OperationStatus.PENDING.value,),
            ).fetchone()
            oldest = _decode_datetime(oldest_row[0]) if oldest_row is not None else None

            type_counts = [
                (str(op_type), int(count))
                for op_type, count in conn.execute(
                    """
                    SELECT type, COUNT(*) as count
                    FROM sync_queue
                    GROUP BY type
                    ORDER BY count DESC, type ASC
                    """
                )
            ]

            return QueueStats(
                total_pending=total_pending,
                total_failed=total_failed,
                total_retried=int(retried_row[0]) if retried_row is not None else 0,
                oldest_operation_age=utc_now() - oldest if oldest is not None else None,
                type_counts=type_counts,
            )
        finally:
            conn.close()

    # ── Cache ─────────────────────────────────────────────────────

    async def set_cache(self, key: str, value: Any) -> None:
        await self._run(self._set_cache_sync, key, value)

    def _set_cache_sync(self, key: str, value: Any) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO cache(key, value, timestamp) VALUES(?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, timestamp = excluded.timestamp
                """,
                (key, json.dumps(value), utc_now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    async def get_cache(self, key: str) -> Any:
        """Return the cached value for ``key`` or None."""
        return await self._run(self._get_cache_sync, key)

    def _get_cache_sync(self, key: str) -> Any:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM cache WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if row is None or row["value"] is None:
            return None
        return json.loads(row["value"])

    async def clear_cache(self) -> None:
        await self._run(self._clear_table_sync, "cache")

    def _clear_table_sync(self, table: str) -> None:
        conn = self._connect()
        try:
            conn.execute(f"DELETE FROM {table}")
            conn.commit()
        finally:
            conn.close()

    # ── Entity snapshots ──────────────────────────────────────────

    async def save_task(self, task: dict[str, Any]) -> None:
        await self._run(self._save_entity_sync, "tasks", task)

    async def get_task(self, task_id: Any) -> Optional[dict[str, Any]]:
        return await self._run(self._get_entity_sync, "tasks", task_id)

    async def get_all_tasks(self) -> list[dict[str, Any]]:
        return await self._run(self._all_entities_sync, "tasks")

    async def save_checklist_response(self, response: dict[str, Any]) -> None:
        await self._run(self._save_entity_sync, "checklist_responses", response)

    async def get_checklist_response(self, response_id: Any) -> Optional[dict[str, Any]]:
        return await self._run(self._get_entity_sync, "checklist_responses", response_id)

    def _save_entity_sync(self, table: str, entity: dict[str, Any]) -> None:
        if entity.get("id") is None:
            raise ValueError(f"Snapshot for {table} requires an 'id'")
        conn = self._connect()
        try:
            conn.execute(
                f"""
                INSERT INTO {table}(id, data, updated_at) VALUES(?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (str(entity["id"]), json.dumps(entity), utc_now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def _get_entity_sync(self, table: str, entity_id: Any) -> Optional[dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT data FROM {table} WHERE id = ?", (str(entity_id),)).fetchone()
        finally:
            conn.close()
        return json.loads(row["data"]) if row is not None else None

    def _all_entities_sync(self, table: str) -> list[dict[str, Any]]:
        conn = self._connect()
        try:
            rows = conn.execute(f"SELECT data FROM {table} ORDER BY id ASC").fetchall()
        finally:
            conn.close()
        return [json.loads(row["data"]) for row in rows]


__all__ = [
    "OfflineStore",
    "OperationNotFoundError",
    "StorageError",
    "default_store_path",
]
