"""
Storage Module - DuckDB persistence for the security pipeline

Usage:
    from grantshield.storage import SecurityDB

    db = SecurityDB("/var/lib/grantshield/security.duckdb")
    db.fetchall("count audit", "SELECT COUNT(*) FROM audit_logs")
"""

from .db import MEMORY, SecurityDB

__all__ = ["MEMORY", "SecurityDB"]
