"""
API Routes Package - Flask Blueprints for the security pipeline.

Each module contains a Flask Blueprint for a specific domain:
- gate: Rate limiting, security headers and activity hooks
- health: Health check endpoint
- audit: Audit trail write, listing, search and CSV export
- auth_events: Identity-provider login outcomes
- security: Alerts, self-tests, reports and retention
"""

from .gate import gate_bp
from .health import health_bp
from .audit import audit_bp
from .auth_events import auth_events_bp
from .security import security_bp

__all__ = [
    "gate_bp",
    "health_bp",
    "audit_bp",
    "auth_events_bp",
    "security_bp",
]
