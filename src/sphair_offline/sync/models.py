"""Data types shared by the offline store, interceptor and sync engine."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import ulid


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: str | HttpMethod) -> HttpMethod:
        """Normalise a verb to its enum member (case-insensitive)."""
        if isinstance(value, HttpMethod):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported HTTP method: {value!r}") from None

    @property
    def has_body(self) -> bool:
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)


class OperationStatus(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


class OperationType(str, Enum):
    """Diagnostic label for a queued operation. Never used for dispatch."""

    TASK_START = "task_start"
    TASK_PAUSE = "task_pause"
    TASK_RESUME = "task_resume"
    TASK_COMPLETE = "task_complete"
    TASK_CREATE = "task_create"
    CHECKLIST_SUBMIT = "checklist_submit"
    INVENTORY_UPDATE = "inventory_update"
    UNKNOWN = "unknown"


# First match wins. Task transitions are accepted with either PATCH or POST
# since clients in the field have used both verbs for them.
_TRANSITION_METHODS = frozenset({HttpMethod.PATCH, HttpMethod.POST})

OPERATION_TYPE_RULES: tuple[tuple[frozenset[HttpMethod], re.Pattern[str], OperationType], ...] = (
    (_TRANSITION_METHODS, re.compile(r"/tasks/[^/]+/start/?$"), OperationType.TASK_START),
    (_TRANSITION_METHODS, re.compile(r"/tasks/[^/]+/pause/?$"), OperationType.TASK_PAUSE),
    (_TRANSITION_METHODS, re.compile(r"/tasks/[^/]+/resume/?$"), OperationType.TASK_RESUME),
    (_TRANSITION_METHODS, re.compile(r"/tasks/[^/]+/complete/?$"), OperationType.TASK_COMPLETE),
    (frozenset({HttpMethod.POST}), re.compile(r"/checklist-responses/?$"), OperationType.CHECKLIST_SUBMIT),
    (frozenset({HttpMethod.POST}), re.compile(r"/tasks/?$"), OperationType.TASK_CREATE),
    (
        frozenset({HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH}),
        re.compile(r"/inventory/"),
        OperationType.INVENTORY_UPDATE,
    ),
)


def resolve_operation_type(method: str | HttpMethod, url: str) -> OperationType:
    """Map a verb/path pair to its operation type using ``OPERATION_TYPE_RULES``."""
    verb = HttpMethod.parse(method)
    path = url.split("?", 1)[0]
    for methods, pattern, op_type in OPERATION_TYPE_RULES:
        if verb in methods and pattern.search(path):
            return op_type
    return OperationType.UNKNOWN


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_operation_id() -> str:
    """ULIDs carry a millisecond timestamp prefix, so ids sort by creation time."""
    return str(ulid.ULID())


@dataclass
class QueuedOperation:
    """A deferred API call persisted while the backend was unreachable."""

    method: HttpMethod
    url: str
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    type: OperationType = OperationType.UNKNOWN
    id: str = field(default_factory=generate_operation_id)
    enqueued_at: datetime = field(default_factory=utc_now)
    status: OperationStatus = OperationStatus.PENDING
    retry_count: int = 0
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        method: str | HttpMethod,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> QueuedOperation:
        """Build a new pending operation, classifying it from the verb and path."""
        verb = HttpMethod.parse(method)
        return cls(
            method=verb,
            url=url,
            payload=payload,
            headers=dict(headers or {}),
            type=resolve_operation_type(verb, url),
        )

    @property
    def is_pending(self) -> bool:
        return self.status is OperationStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "method": self.method.value,
            "url": self.url,
            "payload": self.payload,
            "headers": dict(self.headers),
            "enqueued_at": self.enqueued_at.isoformat(),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


@dataclass
class ApiResponse:
    """HTTP-shaped result handed back to callers of the interceptor.

    ``queued`` is True only for the synthetic 202 returned when an
    operation was diverted into the offline store.
    """

    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    status_text: str = ""
    queued: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class SyncSummary:
    """Counters accumulated over one drain pass."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def as_event_data(self) -> dict[str, int]:
        return {"succeeded": self.succeeded, "failed": self.failed, "total": self.total}


@dataclass
class QueueStats:
    """Aggregate statistics about the offline operation queue.

    Used by ``sphair-sync status`` to display queue depth, the age of the
    oldest pending operation, and which operation types are waiting.
    """

    total_pending: int = 0
    total_failed: int = 0
    total_retried: int = 0
    oldest_operation_age: Optional[timedelta] = None
    type_counts: list[tuple[str, int]] = field(default_factory=list)


__all__ = [
    "ApiResponse",
    "HttpMethod",
    "OPERATION_TYPE_RULES",
    "OperationStatus",
    "OperationType",
    "QueueStats",
    "QueuedOperation",
    "SyncSummary",
    "generate_operation_id",
    "resolve_operation_type",
    "utc_now",
]
