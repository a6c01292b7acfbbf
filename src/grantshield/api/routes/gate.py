"""
Gate - Request hooks run around every API route.

Before a gated request: resolve the caller, open a log context, check
the rate limits (by IP, then by user). After any request: attach the
security headers and feed the activity monitor.
"""

import uuid

from flask import Blueprint, g, request

from ...errors import RateLimitExceeded, StorageError
from ...security.models import SYSTEM_USER, AuditAction, AuditStatus
from ...security.ratelimit import RateLimitResult, ip_identifier, user_identifier
from ...security.headers import get_security_headers
from ...utils.logger import error, pop_context, push_context
from ..config import GATED_PREFIX, UNGATED_PATHS
from ..identity import bearer_token
from ._context import (
    client_ip,
    current_identity,
    get_identity_provider,
    get_pipeline,
    user_agent,
)

gate_bp = Blueprint("gate", __name__)

RATE_LIMIT_RESOURCE = "rate_limit"


def _is_gated() -> bool:
    return request.path.startswith(GATED_PREFIX) and request.path not in UNGATED_PATHS


def _acting_user() -> str:
    identity = current_identity()
    return identity.user_id if identity else SYSTEM_USER


@gate_bp.before_app_request
def open_request():
    g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    token = bearer_token(request.headers.get("Authorization"))
    g.identity = get_identity_provider().resolve(token) if token else None
    g.log_tokens = push_context(g.request_id, g.identity.user_id if g.identity else None)

    if not _is_gated():
        return None

    settings = get_pipeline().settings
    ip = client_ip()
    if settings.rate_limit_by_ip:
        _check(ip_identifier(ip, request.path))
    if settings.rate_limit_by_user and g.identity is not None:
        _check(user_identifier(g.identity.user_id, request.path))
    return None


def _check(identifier: str) -> None:
    result = get_pipeline().rate_limiter.check(identifier)
    if not result.allowed:
        _reject(identifier, result)


def _reject(identifier: str, result: RateLimitResult) -> None:
    """Audit the rejection (best effort) and abort with 429."""
    pipeline = get_pipeline()
    ip = client_ip()
    try:
        pipeline.audit.record(
            SYSTEM_USER,
            AuditAction.CREATE,
            RATE_LIMIT_RESOURCE,
            identifier,
            status=AuditStatus.FAILURE,
            ip=ip,
            user_agent=user_agent(),
            extra={"url": request.url},
        )
    except StorageError as e:
        error(f"[Gate] Could not audit rate limit rejection for {identifier}: {e}")

    if pipeline.settings.count_rate_limit_rejections_as_activity:
        pipeline.activity.record(
            _acting_user(),
            "rate_limited",
            {"method": request.method, "path": request.path, "ip": ip},
        )
    g.rate_limited = True
    raise RateLimitExceeded(identifier, result.retry_after_seconds)


@gate_bp.after_app_request
def finish_request(response):
    for name, value in get_security_headers().items():
        response.headers[name] = value

    if _is_gated() and not g.get("rate_limited", False):
        get_pipeline().activity.record(
            _acting_user(),
            "api_request",
            {
                "method": request.method,
                "path": request.path,
                "query": request.args.to_dict(),
                "ip": client_ip(),
                "userAgent": user_agent(),
            },
        )
    return response


@gate_bp.teardown_app_request
def close_request(exc=None):
    tokens = g.pop("log_tokens", None)
    if tokens is not None:
        pop_context(tokens)
