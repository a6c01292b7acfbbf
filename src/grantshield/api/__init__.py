"""
REST surface for the security pipeline.

Usage:
    from grantshield.api import create_app, SecurityAPIServer
"""

from .app import create_app
from .server import SecurityAPIServer

__all__ = ["create_app", "SecurityAPIServer"]
