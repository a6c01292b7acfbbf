"""
API Configuration - Shared constants for the REST surface.
"""

# Network configuration
API_HOST = "127.0.0.1"
API_PORT = 19880
SERVICE_NAME = "grantshield-api"

SERVER_SHUTDOWN_TIMEOUT = 5  # seconds

# Every route under this prefix except the exempt ones passes the gate
GATED_PREFIX = "/api/"
UNGATED_PATHS = frozenset({"/api/health"})

EXTENSION_KEY = "grantshield"
IDENTITY_EXTENSION_KEY = "grantshield.identity"


def get_base_url(host: str = API_HOST, port: int = API_PORT) -> str:
    """Get the base URL for API requests."""
    return f"http://{host}:{port}"
