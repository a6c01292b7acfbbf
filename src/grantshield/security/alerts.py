"""
Security Alerts - Read-only-after-write alerts raised by the monitors.
"""

import json
import uuid
from datetime import datetime
from typing import List, Optional

from ..storage import SecurityDB
from ..utils.datetime import from_db, to_db
from ..utils.logger import warning
from .models import AlertType, SecurityAlert


class AlertStore:
    """DuckDB repository for security alerts."""

    def __init__(self, db: SecurityDB):
        self._db = db

    def emit(self, alert: SecurityAlert) -> None:
        """Persist an alert.

        Raises:
            StorageError: the alert could not be written
        """
        self._db.execute(
            "alert insert",
            """
            INSERT INTO security_alerts (id, user_id, type, details, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                f"alert_{uuid.uuid4().hex[:12]}",
                alert.user_id,
                alert.type.value,
                json.dumps(dict(alert.details), default=str),
                to_db(alert.timestamp),
            ),
        )
        warning(f"[Alert] {alert.type.value} for user {alert.user_id}: {dict(alert.details)}")

    def list(
        self,
        user_id: Optional[str] = None,
        alert_type: Optional[AlertType] = None,
        limit: int = 100,
    ) -> List[SecurityAlert]:
        """Get alerts newest first, optionally for one user and/or type."""
        clauses, params = [], []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if alert_type is not None:
            clauses.append("type = ?")
            params.append(alert_type.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._db.fetchall(
            "alert list",
            f"""
            SELECT user_id, type, details, timestamp
            FROM security_alerts {where}
            ORDER BY timestamp DESC LIMIT ?
            """,  # nosec B608
            [*params, limit],
        )
        return [
            SecurityAlert(
                user_id=row[0],
                type=AlertType(row[1]),
                details=json.loads(row[2]) if row[2] else {},
                timestamp=from_db(row[3]),
            )
            for row in rows
        ]

    def count(self, user_id: Optional[str] = None, alert_type: Optional[AlertType] = None) -> int:
        clauses, params = [], []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if alert_type is not None:
            clauses.append("type = ?")
            params.append(alert_type.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        row = self._db.fetchone(
            "alert count",
            f"SELECT COUNT(*) FROM security_alerts {where}",  # nosec B608
            params,
        )
        return int(row[0]) if row else 0

    def last_timestamp(self, user_id: str, alert_type: AlertType) -> Optional[datetime]:
        """When the newest alert of this type was raised for the user."""
        row = self._db.fetchone(
            "alert last",
            "SELECT MAX(timestamp) FROM security_alerts WHERE user_id = ? AND type = ?",
            [user_id, alert_type.value],
        )
        return from_db(row[0]) if row else None
