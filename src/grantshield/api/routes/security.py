"""
Security Routes - Alerts, self-tests, reports and maintenance (admin only).
"""

import json

from flask import Blueprint, Response, jsonify, request

from ...errors import ValidationError
from ...security.models import AlertType
from ...utils.datetime import format_iso, parse_iso
from ...utils.logger import info
from ._context import get_pipeline, require_admin

security_bp = Blueprint("security", __name__)

DEFAULT_ALERT_LIMIT = 100


def _limit_arg() -> int:
    raw = request.args.get("limit")
    if raw is None or raw == "":
        return DEFAULT_ALERT_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationError("limit must be an integer")
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    return limit


def _report_from_args():
    try:
        start = parse_iso(request.args.get("startDate"))
        end = parse_iso(request.args.get("endDate"))
    except ValueError as e:
        raise ValidationError(f"Invalid date: {e}")
    if start and end and start > end:
        raise ValidationError("startDate must not be after endDate")
    return get_pipeline().selftest.report(start, end)


@security_bp.route("/api/security/alerts", methods=["GET"])
def list_alerts():
    """Security alerts, newest first.

    Query params:
    - userId: only this user's alerts
    - type: unusual_activity | account_locked
    - limit: max alerts (default: 100)
    """
    require_admin()
    alert_type = request.args.get("type")
    try:
        parsed_type = AlertType(alert_type) if alert_type else None
    except ValueError:
        raise ValidationError(f"Unknown alert type: {alert_type}")

    alerts = get_pipeline().alerts.list(
        user_id=request.args.get("userId") or None,
        alert_type=parsed_type,
        limit=_limit_arg(),
    )
    return jsonify({"success": True, "data": [a.to_dict() for a in alerts]})


@security_bp.route("/api/security/tests/run", methods=["POST"])
def run_tests():
    """Run the static and dynamic self-test suite."""
    require_admin()
    summary = get_pipeline().selftest.run_all()
    return jsonify({"success": True, "data": summary.to_dict()})


@security_bp.route("/api/security/config/validate", methods=["POST"])
def validate_config():
    """Run the configuration checks against the live settings."""
    require_admin()
    results = get_pipeline().selftest.validate_config()
    return jsonify({"success": True, "data": [r.to_dict() for r in results]})


@security_bp.route("/api/security/report", methods=["GET"])
def security_report():
    """Aggregated test results in [startDate, endDate] (default: last 24h)."""
    require_admin()
    report = _report_from_args()
    return jsonify({"success": True, "data": report.to_dict()})


@security_bp.route("/api/security/report/export", methods=["GET"])
def export_security_report():
    """JSON download of the report snapshot."""
    require_admin()
    pipeline = get_pipeline()
    snapshot = pipeline.selftest.export_snapshot(_report_from_args())
    return Response(
        json.dumps(snapshot, indent=2),
        mimetype="application/json",
        headers={
            "Content-Disposition": f"attachment; filename=security-report-{snapshot['timestamp']}.json"
        },
    )


@security_bp.route("/api/maintenance/sweep", methods=["POST"])
def run_sweep():
    """Apply the retention policy now."""
    identity = require_admin()
    info(f"[API] Retention sweep requested by {identity.user_id}")
    result = get_pipeline().retention.sweep()
    return jsonify({"success": True, "data": result.to_dict()})


@security_bp.route("/api/security/policy", methods=["GET"])
def retention_policy():
    """Effective retention policy and cutoffs as of now."""
    require_admin()
    pipeline = get_pipeline()
    cutoffs = pipeline.retention.cutoffs(pipeline.clock.now())
    policy = pipeline.retention.policy
    return jsonify(
        {
            "success": True,
            "data": {
                "personalInfoDays": policy.personal_info_days,
                "documentsDays": policy.documents_days,
                "auditLogsDays": policy.audit_logs_days,
                "cutoffs": {k: format_iso(v) for k, v in cutoffs.items()},
            },
        }
    )
