"""
Route Context - Per-app and per-request dependencies for API routes.

The pipeline lives in app.extensions (set by create_app); the caller's
identity is resolved by the gate and kept on flask.g.
"""

from typing import Optional

from flask import current_app, g, request

from ...errors import AuthorizationError
from ...pipeline import SecurityPipeline
from ..config import EXTENSION_KEY, IDENTITY_EXTENSION_KEY
from ..identity import Identity, IdentityProvider


def get_pipeline() -> SecurityPipeline:
    """Get the pipeline configured on the current app."""
    pipeline = current_app.extensions.get(EXTENSION_KEY)
    if pipeline is None:
        raise RuntimeError("SecurityPipeline not configured - use create_app()")
    return pipeline


def get_identity_provider() -> IdentityProvider:
    return current_app.extensions[IDENTITY_EXTENSION_KEY]


def current_identity() -> Optional[Identity]:
    return g.get("identity")


def require_user() -> Identity:
    identity = current_identity()
    if identity is None:
        raise AuthorizationError("Unauthorized: Please log in", status_code=401)
    return identity


def require_admin(message: str = "Unauthorized: Only admins can perform this action") -> Identity:
    identity = current_identity()
    if identity is None or not identity.is_admin:
        raise AuthorizationError(message, status_code=403)
    return identity


def require_role(*roles: str, message: str = "Unauthorized") -> Identity:
    identity = current_identity()
    if identity is None or identity.role not in roles:
        raise AuthorizationError(message, status_code=403)
    return identity


def client_ip() -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def user_agent() -> str:
    return request.headers.get("User-Agent") or "unknown"
