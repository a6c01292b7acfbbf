"""
Health Check Routes - Liveness endpoint (not rate limited).
"""

from flask import Blueprint, jsonify

from ..config import SERVICE_NAME
from ._context import get_pipeline

health_bp = Blueprint("health", __name__)


@health_bp.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    pipeline = get_pipeline()
    return jsonify(
        {
            "success": True,
            "data": {
                "status": "ok",
                "service": SERVICE_NAME,
                "counterBackend": pipeline.settings.counter_backend,
            },
        }
    )
