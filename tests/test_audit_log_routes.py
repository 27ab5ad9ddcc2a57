"""Integration tests for the admin audit log endpoint."""

from __future__ import annotations

from datetime import datetime, time, timezone
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ourstreet.api.routes.audit_logs import parse_audit_query, parse_filter_date
from ourstreet.core.audit import get_audit_recorder
from ourstreet.core.errors import AuditStoreError
from ourstreet.schemas.audit import AuditAction, AuditLogFilter, AuditResource
from ourstreet.services.audit_service import AuditRecorder

URL = "/api/admin/audit-logs"


@pytest.fixture
def seeded(recorder: AuditRecorder) -> AuditRecorder:
    recorder.log_auth(
        action=AuditAction.LOGIN, user_id="citizen-1", user_email="citizen@ourstreet.test", success=True
    )
    recorder.log_auth(
        action=AuditAction.LOGIN,
        user_email="citizen@ourstreet.test",
        success=False,
        error_message="Invalid password",
    )
    recorder.log_success(
        user_id="citizen-1",
        user_email="citizen@ourstreet.test",
        action=AuditAction.CREATE,
        resource=AuditResource.ISSUE,
        resource_id="issue-1",
    )
    return recorder


def _access_events(recorder: AuditRecorder):
    return recorder.get_audit_logs(AuditLogFilter(resource=AuditResource.AUDIT_LOG)).logs


class TestAccessControl:
    def test_missing_token_is_401_and_audited(
        self, client: TestClient, recorder: AuditRecorder
    ) -> None:
        resp = client.get(URL, headers={"X-Forwarded-For": "203.0.113.7"})

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        events = recorder.get_security_events()
        assert [e.action for e in events] == [AuditAction.UNAUTHORIZED_ACCESS]
        assert events[0].ip_address == "203.0.113.7"
        assert _access_events(recorder) == []

    def test_non_admin_is_403_and_audited(
        self, client: TestClient, recorder: AuditRecorder, citizen_headers: dict[str, str]
    ) -> None:
        resp = client.get(URL, headers=citizen_headers)

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        event = recorder.get_security_events()[0]
        assert event.action == AuditAction.UNAUTHORIZED_ACCESS
        assert event.user_id == "citizen-1"

    def test_admin_rate_limit_headers(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        resp = client.get(URL, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "200"
        assert resp.headers["X-RateLimit-Remaining"] == "199"


class TestLogsView:
    def test_default_view_returns_page_newest_first(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        resp = client.get(URL, headers=admin_headers)

        data = resp.json()["data"]
        # The access event itself is recorded before the query runs
        assert data["total"] == 4
        assert data["limit"] == 100
        assert data["offset"] == 0
        assert data["hasMore"] is False
        assert [log["action"] for log in data["logs"]] == ["view", "create", "login", "login"]
        assert data["logs"][0]["resource"] == "audit_log"
        assert data["logs"][0]["userId"] == "admin-1"

    def test_filters_are_applied_conjunctively(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        resp = client.get(
            URL,
            params={
                "action": "login",
                "success": "false",
                "userEmail": "citizen@ourstreet.test",
            },
            headers=admin_headers,
        )

        data = resp.json()["data"]
        assert data["total"] == 1
        assert data["logs"][0]["errorMessage"] == "Invalid password"

        access = _access_events(seeded)[0]
        assert access.action == AuditAction.VIEW
        assert access.details == {
            "endpoint": "audit-logs",
            "view": "logs",
            "filters": {
                "userEmail": "citizen@ourstreet.test",
                "action": "login",
                "success": False,
            },
        }

    def test_pagination(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        resp = client.get(URL, params={"limit": "2", "offset": "1"}, headers=admin_headers)

        data = resp.json()["data"]
        assert data["total"] == 4
        assert len(data["logs"]) == 2
        assert data["hasMore"] is True
        assert data["logs"][0]["action"] == "create"

    def test_malformed_filters_are_ignored_and_recorded(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        resp = client.get(
            URL,
            params={"action": "teleport", "limit": "abc", "startDate": "yesterday"},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["total"] == 4
        assert resp.json()["data"]["limit"] == 100
        access = _access_events(seeded)[0]
        assert access.details["ignoredParams"] == ["action", "startDate", "limit"]  # type: ignore[index]
        assert access.details["filters"] == {}  # type: ignore[index]

    def test_date_only_bounds_cover_the_whole_day(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        same_day = client.get(
            URL,
            params={"startDate": "2025-03-01", "endDate": "2025-03-01"},
            headers=admin_headers,
        )
        before = client.get(URL, params={"endDate": "2025-02-28"}, headers=admin_headers)

        assert same_day.json()["data"]["total"] == 4
        assert before.json()["data"]["total"] == 0


class TestOtherViews:
    def test_stats_view(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        resp = client.get(URL, params={"stats": "true"}, headers=admin_headers)

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["totalLogs"] == 4
        assert data["successCount"] == 3
        assert data["failureCount"] == 1
        assert data["actionBreakdown"] == {"login": 2, "create": 1, "view": 1}
        assert data["resourceBreakdown"] == {"auth": 2, "issue": 1, "audit_log": 1}
        assert data["uniqueUsers"] == 2

    def test_security_view(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        client.get(URL)  # anonymous attempt, recorded as unauthorized access

        resp = client.get(URL, params={"security": "true"}, headers=admin_headers)

        data = resp.json()["data"]
        assert data["total"] == 2
        assert [log["action"] for log in data["logs"]] == ["unauthorized_access", "login"]
        assert _access_events(seeded)[0].details["view"] == "security"  # type: ignore[index]

    def test_export_view(
        self, client: TestClient, seeded: AuditRecorder, admin_headers: dict[str, str]
    ) -> None:
        resp = client.get(URL, params={"export": "true"}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        disposition = resp.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="audit-logs-')
        assert disposition.endswith('.json"')
        assert resp.headers["X-RateLimit-Limit"] == "200"

        exported = resp.json()
        assert len(exported) == 4
        assert exported[0]["action"] == "export"
        assert exported[0]["resource"] == "audit_log"
        assert {"userAgent", "ipAddress", "details"} <= set(exported[0])

        detailed = seeded.get_audit_logs(AuditLogFilter(limit=1000)).logs
        assert [e["id"] for e in exported] == [e.id for e in detailed]


def test_store_failure_returns_500(app: FastAPI, client: TestClient, admin_headers: dict[str, str]) -> None:
    store = Mock()
    store.scan.side_effect = AuditStoreError(
        code="audit_store_read_failed",
        message="Failed to read audit events",
        details={"backend": "jsonl"},
    )
    app.dependency_overrides[get_audit_recorder] = lambda: AuditRecorder(store)

    resp = client.get(URL, headers=admin_headers)

    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "audit_query_failed"
    assert error["message"] == "Failed to fetch audit logs"
    assert "details" not in error
    # The access event was still attempted
    store.append.assert_called_once()


class TestQueryParsing:
    def test_parse_filter_date_variants(self) -> None:
        assert parse_filter_date("2024-05-01") == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert parse_filter_date("2024-05-01", end_of_day=True) == datetime.combine(
            datetime(2024, 5, 1).date(), time.max, tzinfo=timezone.utc
        )
        assert parse_filter_date("2024-05-01T10:30:00Z") == datetime(
            2024, 5, 1, 10, 30, tzinfo=timezone.utc
        )
        assert parse_filter_date("2024-05-01T10:30:00") == datetime(
            2024, 5, 1, 10, 30, tzinfo=timezone.utc
        )
        assert parse_filter_date("not a date") is None
        assert parse_filter_date("   ") is None

    def test_parse_audit_query(self) -> None:
        query = parse_audit_query(
            {
                "userId": "u-1",
                "resource": "issue",
                "success": "TRUE",
                "offset": "-1",
                "stats": "true",
            }
        )

        assert query.filters.user_id == "u-1"
        assert query.filters.resource == AuditResource.ISSUE
        assert query.filters.success is True
        assert query.filters.offset == 0
        assert query.ignored == ["offset"]
        assert query.view == "stats"

    def test_export_takes_precedence(self) -> None:
        query = parse_audit_query({"export": "true", "stats": "true", "security": "true"})

        assert query.view == "export"
