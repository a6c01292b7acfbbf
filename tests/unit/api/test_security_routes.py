"""
Tests for security, maintenance and health routes.

Covers:
- Admin-only access for alerts, self-tests, reports and sweeps
- Response shapes for each endpoint
- Report date validation and JSON export
"""

import json
from datetime import timedelta

import pytest

from conftest import T0
from grantshield.api import create_app
from grantshield.pipeline import SecurityPipeline
from grantshield.security.models import AlertType, SecurityAlert

ADMIN_ENDPOINTS = [
    ("GET", "/api/security/alerts"),
    ("POST", "/api/security/tests/run"),
    ("POST", "/api/security/config/validate"),
    ("GET", "/api/security/report"),
    ("GET", "/api/security/report/export"),
    ("POST", "/api/maintenance/sweep"),
    ("GET", "/api/security/policy"),
]


@pytest.mark.parametrize("method,path", ADMIN_ENDPOINTS)
def test_non_admin_forbidden(client, user_headers, method, path):
    response = client.open(path, method=method, headers=user_headers)

    assert response.status_code == 403
    assert response.get_json() == {
        "success": False,
        "error": "Unauthorized: Only admins can perform this action",
    }


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.get_json() == {
            "success": True,
            "data": {"status": "ok", "service": "grantshield-api", "counterBackend": "memory"},
        }


class TestAlerts:
    @pytest.fixture
    def emitted(self, pipeline):
        for i, (user, alert_type) in enumerate(
            [
                ("alice", AlertType.ACCOUNT_LOCKED),
                ("bob", AlertType.UNUSUAL_ACTIVITY),
                ("alice", AlertType.UNUSUAL_ACTIVITY),
            ]
        ):
            pipeline.alerts.emit(
                SecurityAlert(
                    user_id=user,
                    type=alert_type,
                    details={"n": i},
                    timestamp=T0 + timedelta(seconds=i),
                )
            )

    def test_lists_newest_first(self, client, admin_headers, emitted):
        data = client.get("/api/security/alerts", headers=admin_headers).get_json()["data"]

        assert [a["details"]["n"] for a in data] == [2, 1, 0]

    def test_filters(self, client, admin_headers, emitted):
        response = client.get(
            "/api/security/alerts?userId=alice&type=unusual_activity", headers=admin_headers
        )

        [alert] = response.get_json()["data"]
        assert alert["userId"] == "alice"
        assert alert["type"] == "unusual_activity"

    def test_limit(self, client, admin_headers, emitted):
        data = client.get("/api/security/alerts?limit=1", headers=admin_headers).get_json()["data"]

        assert len(data) == 1

    def test_unknown_type_is_400(self, client, admin_headers):
        response = client.get("/api/security/alerts?type=bogus", headers=admin_headers)

        assert response.status_code == 400

    @pytest.mark.parametrize(
        "limit, message",
        [
            ("0", "limit must be at least 1"),
            ("-5", "limit must be at least 1"),
            ("ten", "limit must be an integer"),
        ],
    )
    def test_invalid_limit_is_400(self, client, admin_headers, emitted, limit, message):
        response = client.get(f"/api/security/alerts?limit={limit}", headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json() == {"success": False, "error": message}


class TestSelfTests:
    def test_run_suite(self, client, admin_headers):
        response = client.post("/api/security/tests/run", headers=admin_headers)

        data = response.get_json()["data"]
        assert response.status_code == 200
        assert data["failed"] == 0
        assert {r["testId"] for r in data["results"]} >= {
            "dynamic-SQL Injection",
            "dynamic-XSS",
            "dynamic-CSRF",
        }

    def test_validate_clean_config(self, client, admin_headers):
        response = client.post("/api/security/config/validate", headers=admin_headers)

        assert response.get_json() == {"success": True, "data": []}

    def test_validate_reports_findings(self, settings, db, clock, admin_headers):
        pipeline = SecurityPipeline(
            settings.with_overrides(cors_origins=["*"], mfa_enabled=False), db=db, clock=clock
        )
        client = create_app(pipeline).test_client()

        data = client.post("/api/security/config/validate", headers=admin_headers).get_json()["data"]

        assert {r["testId"] for r in data} == {"cors-check", "auth-check"}


class TestReports:
    def test_report_after_run(self, client, admin_headers):
        client.post("/api/security/tests/run", headers=admin_headers)

        report = client.get("/api/security/report", headers=admin_headers).get_json()["data"]

        assert set(report) == {"startDate", "endDate", "summary", "criticalIssues", "recentTests"}
        assert report["summary"]["total"] >= 3
        assert report["summary"]["failed"] == 0
        assert report["criticalIssues"] == []

    def test_start_after_end_is_400(self, client, admin_headers):
        response = client.get(
            "/api/security/report",
            query_string={"startDate": T0.isoformat(), "endDate": (T0 - timedelta(days=1)).isoformat()},
            headers=admin_headers,
        )

        assert response.status_code == 400

    def test_malformed_date_is_400(self, client, admin_headers):
        response = client.get("/api/security/report?startDate=yesterday", headers=admin_headers)

        assert response.status_code == 400

    def test_export(self, client, admin_headers):
        response = client.get("/api/security/report/export", headers=admin_headers)

        assert response.status_code == 200
        assert response.mimetype == "application/json"
        assert "attachment" in response.headers["Content-Disposition"]
        snapshot = json.loads(response.get_data(as_text=True))
        assert set(snapshot) == {"timestamp", "metrics", "criticalIssues", "results"}


class TestMaintenance:
    def test_sweep(self, client, pipeline, admin_headers):
        response = client.post("/api/maintenance/sweep", headers=admin_headers)

        data = response.get_json()["data"]
        assert data["deleted"] == {"personalInfo": 0, "documents": 0, "auditLogs": 0}
        assert data["sweptAt"] == T0.isoformat()
        assert pipeline.audit.count() == 1

    def test_policy(self, client, admin_headers):
        data = client.get("/api/security/policy", headers=admin_headers).get_json()["data"]

        assert data["personalInfoDays"] == 365
        assert data["documentsDays"] == 730
        assert data["auditLogsDays"] == 1825
        assert data["cutoffs"]["auditLogsCutoff"] == (T0 - timedelta(days=1825)).isoformat()
