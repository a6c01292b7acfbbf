"""
Flask application factory and error mapping.
"""

from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from ..errors import (
    AccountLocked,
    RateLimitExceeded,
    SecurityPipelineError,
    StorageError,
)
from ..pipeline import SecurityPipeline
from ..security.models import SYSTEM_USER, AuditAction, AuditStatus
from ..utils.datetime import format_iso
from ..utils.logger import error, exception, warning
from .config import EXTENSION_KEY, IDENTITY_EXTENSION_KEY
from .identity import IdentityProvider, StaticTokenIdentityProvider
from .routes import audit_bp, auth_events_bp, gate_bp, health_bp, security_bp
from .routes._context import client_ip, current_identity, get_pipeline, user_agent


def create_app(
    pipeline: SecurityPipeline,
    identity_provider: Optional[IdentityProvider] = None,
) -> Flask:
    """Build the API app around a configured pipeline."""
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = pipeline
    app.extensions[IDENTITY_EXTENSION_KEY] = identity_provider or StaticTokenIdentityProvider(
        pipeline.settings.api_tokens
    )

    app.register_blueprint(gate_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(auth_events_bp)
    app.register_blueprint(security_bp)

    _register_error_handlers(app)
    return app


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limited(e: RateLimitExceeded):
        response = jsonify({"error": e.public_message, "retryAfter": e.retry_after})
        response.status_code = 429
        response.headers["Retry-After"] = str(e.retry_after)
        return response

    @app.errorhandler(AccountLocked)
    def handle_locked(e: AccountLocked):
        warning(f"[API] {e}")
        return jsonify({"success": False, "error": e.public_message, "data": {"locked": True}}), 423

    @app.errorhandler(StorageError)
    def handle_storage(e: StorageError):
        error(f"[API] {request.method} {request.path} storage failure: {e}")
        identity = current_identity()
        message = str(e) if identity is not None and identity.is_admin else e.public_message
        return jsonify({"success": False, "error": message}), e.status_code

    @app.errorhandler(SecurityPipelineError)
    def handle_pipeline_error(e: SecurityPipelineError):
        return jsonify({"success": False, "error": e.public_message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http(e: HTTPException):
        return jsonify({"success": False, "error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        exception(f"[API] Unhandled error on {request.method} {request.path}")
        _audit_error(e)
        return jsonify({"success": False, "error": "Internal server error"}), 500


def _audit_error(e: Exception) -> None:
    """Record an unexpected failure in the audit trail (best effort)."""
    pipeline = get_pipeline()
    try:
        pipeline.audit.record(
            SYSTEM_USER,
            AuditAction.CREATE,
            "error",
            format_iso(pipeline.clock.now()),
            status=AuditStatus.FAILURE,
            ip=client_ip(),
            user_agent=user_agent(),
            extra={"url": request.url, "error": str(e)},
        )
    except StorageError as audit_error:
        error(f"[API] Could not audit unhandled error: {audit_error}")
