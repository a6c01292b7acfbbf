"""
Audit Routes - Write and read the audit trail.
"""

import uuid

from flask import Blueprint, Response, jsonify, request

from ...errors import AuthorizationError, ValidationError
from ...security.audit import AuditFilters, events_to_dicts
from ...security.models import AuditAction, AuditStatus
from ...utils.datetime import format_iso
from ._context import client_ip, get_pipeline, require_admin, require_user, user_agent

audit_bp = Blueprint("audit", __name__)

ADMIN_ONLY = "Unauthorized: Only admins can view audit logs"

# Request context recorded from the connection, never from the body
SERVER_SET_KEYS = ("ip", "userAgent")


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


@audit_bp.route("/api/audit-log", methods=["POST"])
def create_audit_log():
    """Record an audit event on behalf of the authenticated caller.

    Body: {action, details?, status?, resource?: {type, id}}
    """
    identity = require_user()
    body = request.get_json(silent=True) or {}

    action = body.get("action")
    if not action:
        raise ValidationError("Action is required for audit log")
    try:
        audit_action = AuditAction(action)
    except ValueError:
        raise ValidationError(f"Unknown action: {action}")
    try:
        status = AuditStatus(body.get("status") or "success")
    except ValueError:
        raise ValidationError(f"Unknown status: {body.get('status')}")

    details = body.get("details") or {}
    if not isinstance(details, dict):
        raise ValidationError("details must be an object")
    details = dict(details)
    for key in SERVER_SET_KEYS:
        if key in details:
            raise ValidationError(f"details.{key} is set by the server")
    changes = details.pop("changes", None)
    if changes is not None and not isinstance(changes, dict):
        raise ValidationError("details.changes must be an object")
    location = details.pop("location", None)
    if location is not None and not isinstance(location, str):
        raise ValidationError("details.location must be a string")
    resource = body.get("resource") or {}
    if not isinstance(resource, dict):
        raise ValidationError("resource must be an object")

    get_pipeline().audit.record(
        identity.user_id,
        audit_action,
        resource.get("type") or "client_event",
        str(resource.get("id") or uuid.uuid4().hex[:12]),
        status=status,
        ip=client_ip(),
        user_agent=user_agent(),
        location=location,
        changes=changes,
        extra=details,
    )
    return jsonify({"success": True})


@audit_bp.route("/api/audit-logs", methods=["GET"])
def list_audit_logs():
    """Every audit event, newest first (admin only)."""
    require_admin(ADMIN_ONLY)
    events = get_pipeline().audit.list_all()
    return jsonify({"success": True, "logs": events_to_dicts(events)})


@audit_bp.route("/api/audit-logs/search", methods=["GET"])
def search_audit_logs():
    """Filtered, paginated audit events (admin only).

    Query params: userId, action, resourceType, status, startDate,
    endDate, page (default 1), pageSize (default 50)
    """
    require_admin(ADMIN_ONLY)
    filters = AuditFilters.from_query(request.args)
    events, total = get_pipeline().audit.query(
        filters,
        page=_int_arg("page", 1),
        page_size=_int_arg("pageSize", 50),
    )
    return jsonify({"success": True, "data": events_to_dicts(events), "total": total})


@audit_bp.route("/api/audit-logs/export", methods=["GET"])
def export_audit_logs():
    """CSV download of the filtered audit trail (admin only)."""
    identity = require_admin(ADMIN_ONLY)
    pipeline = get_pipeline()
    filters = AuditFilters.from_query(request.args)
    body = pipeline.audit.export_csv(filters)

    pipeline.audit.record(
        identity.user_id,
        AuditAction.EXPORT,
        "audit_logs",
        "csv",
        ip=client_ip(),
        user_agent=user_agent(),
    )
    stamp = format_iso(pipeline.clock.now())[:10]
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=audit-logs-{stamp}.csv"},
    )


@audit_bp.route("/api/users/<user_id>/data-request", methods=["POST"])
def create_data_request(user_id: str):
    """Data subject access request for one user (the user or an admin).

    Body: {requestId?}
    """
    identity = require_user()
    if identity.user_id != user_id and not identity.is_admin:
        raise AuthorizationError(
            "Unauthorized: You can only request your own data", status_code=403
        )
    body = request.get_json(silent=True) or {}
    request_id = body.get("requestId") or f"dsar_{uuid.uuid4().hex[:12]}"
    if not isinstance(request_id, str):
        raise ValidationError("requestId must be a string")

    export = get_pipeline().data_requests.collect(
        user_id,
        request_id,
        requested_by=identity.user_id,
        ip=client_ip(),
        user_agent=user_agent(),
    )
    return jsonify({"success": True, "data": export.to_dict()})
