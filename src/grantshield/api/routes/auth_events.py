"""
Auth Event Routes - Consume identity-provider login outcomes.
"""

from flask import Blueprint, jsonify, request

from ...errors import AccountLocked, ValidationError
from ...security.models import AuditAction, AuditStatus
from ..identity import ROLE_ADMIN, ROLE_SERVICE
from ._context import client_ip, get_pipeline, require_role, user_agent

auth_events_bp = Blueprint("auth_events", __name__)


@auth_events_bp.route("/api/auth/login-result", methods=["POST"])
def login_result():
    """Record one login attempt reported by the identity provider.

    Body: {userId, success, ip?, userAgent?}. Failures feed the lockout
    tracker. Responds 423 once the account is locked.
    """
    require_role(ROLE_SERVICE, ROLE_ADMIN, message="Unauthorized: login results come from the identity provider")
    body = request.get_json(silent=True) or {}

    user_id = body.get("userId")
    if not user_id:
        raise ValidationError("userId is required")
    if not isinstance(body.get("success"), bool):
        raise ValidationError("success must be a boolean")

    pipeline = get_pipeline()
    ip = body.get("ip") or client_ip()
    agent = body.get("userAgent") or user_agent()

    def audit_login(status: AuditStatus, **extra):
        pipeline.audit.record(
            user_id,
            AuditAction.LOGIN,
            "auth",
            user_id,
            status=status,
            ip=ip,
            user_agent=agent,
            extra=extra,
        )

    if pipeline.failed_logins.is_locked(user_id):
        audit_login(AuditStatus.FAILURE, reason="account_locked")
        raise AccountLocked(user_id)

    if body["success"]:
        audit_login(AuditStatus.SUCCESS)
        return jsonify({"success": True, "data": {"locked": False}})

    locked = pipeline.failed_logins.record_failure(user_id, ip)
    audit_login(AuditStatus.FAILURE, reason="invalid_credentials")
    if locked:
        raise AccountLocked(user_id)
    return jsonify({"success": True, "data": {"locked": False}})
