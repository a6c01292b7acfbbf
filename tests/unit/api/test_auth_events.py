"""
Tests for POST /api/auth/login-result.

Covers:
- Lockout after repeated failures (423)
- Locked accounts stay locked for later attempts
- LOGIN audit events for every outcome
- Role and body validation
"""

import pytest

from grantshield.security.audit import AuditFilters
from grantshield.security.models import AlertType, AuditAction, AuditStatus

URL = "/api/auth/login-result"


def _report(client, headers, user_id, success, ip="198.51.100.4"):
    return client.post(
        URL, json={"userId": user_id, "success": success, "ip": ip}, headers=headers
    )


class TestLoginResults:
    def test_success_recorded(self, client, pipeline, service_headers, user_id):
        response = _report(client, service_headers, user_id, True)

        assert response.status_code == 200
        assert response.get_json() == {"success": True, "data": {"locked": False}}
        [event] = pipeline.audit.list_all()
        assert event.action is AuditAction.LOGIN
        assert event.status is AuditStatus.SUCCESS
        assert event.user_id == user_id
        assert event.metadata.ip == "198.51.100.4"

    def test_failures_below_threshold_not_locked(self, client, pipeline, service_headers, user_id):
        codes = [_report(client, service_headers, user_id, False).status_code for _ in range(4)]

        assert codes == [200] * 4
        assert pipeline.failed_logins.is_locked(user_id) is False

    def test_fifth_failure_locks(self, client, pipeline, service_headers, user_id):
        for _ in range(4):
            _report(client, service_headers, user_id, False)

        response = _report(client, service_headers, user_id, False)

        assert response.status_code == 423
        assert response.get_json() == {
            "success": False,
            "error": "Account locked",
            "data": {"locked": True},
        }
        [alert] = pipeline.alerts.list(user_id=user_id, alert_type=AlertType.ACCOUNT_LOCKED)
        assert alert.details["failedAttempts"] == 5

    def test_locked_account_rejects_even_correct_password(
        self, client, pipeline, service_headers, user_id
    ):
        for _ in range(5):
            _report(client, service_headers, user_id, False)

        response = _report(client, service_headers, user_id, True)

        assert response.status_code == 423
        failures = pipeline.audit.count(
            AuditFilters(user_id=user_id, action=AuditAction.LOGIN, status=AuditStatus.FAILURE)
        )
        assert failures == 6
        assert pipeline.alerts.count(user_id, AlertType.ACCOUNT_LOCKED) == 1

    def test_failure_reason_in_metadata(self, client, pipeline, service_headers, user_id):
        _report(client, service_headers, user_id, False)

        [event] = pipeline.audit.list_all()
        assert event.metadata.extra == {"reason": "invalid_credentials"}

    def test_admin_may_report(self, client, admin_headers, user_id):
        assert _report(client, admin_headers, user_id, True).status_code == 200


class TestValidation:
    def test_grantee_forbidden(self, client, user_headers, user_id):
        assert _report(client, user_headers, user_id, False).status_code == 403

    def test_anonymous_forbidden(self, client, user_id):
        assert _report(client, {}, user_id, False).status_code == 403

    @pytest.mark.parametrize(
        "body",
        [
            {"success": True},
            {"userId": "", "success": True},
            {"userId": "u-1"},
            {"userId": "u-1", "success": "yes"},
        ],
    )
    def test_bad_body_is_400(self, client, service_headers, body):
        response = client.post(URL, json=body, headers=service_headers)

        assert response.status_code == 400
        assert response.get_json()["success"] is False
