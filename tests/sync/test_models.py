"""Tests for offline operation data types and type inference."""

from __future__ import annotations

import pytest

from sphair_offline.sync.models import (
    ApiResponse,
    HttpMethod,
    OperationStatus,
    OperationType,
    QueuedOperation,
    SyncSummary,
    resolve_operation_type,
)


class TestHttpMethod:
    def test_parse_is_case_insensitive(self):
        assert HttpMethod.parse("patch") is HttpMethod.PATCH
        assert HttpMethod.parse(" Post ") is HttpMethod.POST
        assert HttpMethod.parse(HttpMethod.GET) is HttpMethod.GET

    def test_parse_rejects_unknown_verb(self):
        with pytest.raises(ValueError, match="Unsupported HTTP method"):
            HttpMethod.parse("TRACE")

    def test_only_write_verbs_carry_a_body(self):
        assert HttpMethod.POST.has_body
        assert HttpMethod.PUT.has_body
        assert HttpMethod.PATCH.has_body
        assert not HttpMethod.GET.has_body
        assert not HttpMethod.DELETE.has_body


class TestResolveOperationType:
    """Type inference from verb and path."""

    @pytest.mark.parametrize(
        ("method", "url", "expected"),
        [
            ("PATCH", "/tasks/5/start", OperationType.TASK_START),
            ("POST", "/tasks/5/start", OperationType.TASK_START),
            ("PATCH", "/tasks/abc-123/pause", OperationType.TASK_PAUSE),
            ("PATCH", "/tasks/5/resume/", OperationType.TASK_RESUME),
            ("POST", "/api/tasks/7/complete", OperationType.TASK_COMPLETE),
            ("POST", "/checklist-responses", OperationType.CHECKLIST_SUBMIT),
            ("POST", "/tasks", OperationType.TASK_CREATE),
            ("PUT", "/inventory/12", OperationType.INVENTORY_UPDATE),
        ],
    )
    def test_known_operations(self, method, url, expected):
        assert resolve_operation_type(method, url) is expected

    def test_query_string_is_ignored(self):
        assert resolve_operation_type("PATCH", "/tasks/5/start?force=1") is OperationType.TASK_START

    def test_verb_must_match(self):
        assert resolve_operation_type("GET", "/tasks/5/start") is OperationType.UNKNOWN
        assert resolve_operation_type("GET", "/tasks") is OperationType.UNKNOWN

    def test_unmatched_path_is_unknown(self):
        assert resolve_operation_type("POST", "/assets/9/photos") is OperationType.UNKNOWN


class TestQueuedOperation:
    def test_create_classifies_and_copies_headers(self):
        headers = {"X-Request-Source": "tablet"}
        op = QueuedOperation.create("post", "/tasks/5/start", {"by": "tech-1"}, headers)

        assert op.method is HttpMethod.POST
        assert op.type is OperationType.TASK_START
        assert op.status is OperationStatus.PENDING
        assert op.retry_count == 0
        assert op.next_retry_at is None
        assert op.headers == headers
        assert op.headers is not headers

    def test_ids_are_unique(self):
        ids = {QueuedOperation.create("POST", "/tasks").id for _ in range(50)}
        assert len(ids) == 50

    def test_to_dict_is_json_friendly(self):
        op = QueuedOperation.create("PATCH", "/tasks/1/pause", {"reason": "lunch"})
        data = op.to_dict()

        assert data["type"] == "task_pause"
        assert data["method"] == "PATCH"
        assert data["status"] == "pending"
        assert data["payload"] == {"reason": "lunch"}
        assert data["next_retry_at"] is None
        assert isinstance(data["enqueued_at"], str)


class TestApiResponse:
    def test_ok_range(self):
        assert ApiResponse(status=200).ok
        assert ApiResponse(status=202).ok
        assert not ApiResponse(status=404).ok
        assert not ApiResponse(status=500).ok


class TestSyncSummary:
    def test_event_data_has_counts(self):
        summary = SyncSummary(total=3, succeeded=2, failed=1, retried=0)
        assert summary.as_event_data() == {"succeeded": 2, "failed": 1, "total": 3}
