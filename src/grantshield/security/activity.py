"""
Activity Monitor - Per-user action log with an unusual-activity alert.

Every call persists one activity entry. When the user's entries in the
trailing window (the new one included) reach the threshold, an
unusual_activity alert is raised. By default each call at or above the
threshold raises its own alert; alert_once_per_window suppresses
repeats until a full window has passed since the last alert.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping, Optional

from ..errors import StorageError
from ..storage import SecurityDB
from ..utils.datetime import Clock, SystemClock, to_db
from ..utils.logger import debug, error
from .alerts import AlertStore
from .models import AlertType, SecurityAlert


@dataclass(frozen=True)
class ActivityConfig:
    threshold: int = 50
    window_minutes: int = 5
    alert_once_per_window: bool = False

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    @classmethod
    def from_settings(cls, settings) -> "ActivityConfig":
        return cls(
            threshold=settings.unusual_activity_threshold,
            window_minutes=settings.unusual_activity_window_minutes,
            alert_once_per_window=settings.unusual_activity_alert_once_per_window,
        )


class ActivityMonitor:
    """Records user actions and flags bursts above the threshold."""

    def __init__(
        self,
        db: SecurityDB,
        alerts: AlertStore,
        config: Optional[ActivityConfig] = None,
        clock: Optional[Clock] = None,
        fail_open: bool = True,
    ):
        self._db = db
        self._alerts = alerts
        self._config = config or ActivityConfig()
        self._clock = clock or SystemClock()
        self.fail_open = fail_open

    @property
    def config(self) -> ActivityConfig:
        return self._config

    def record(self, user_id: str, action: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        """Log one action for the user, alerting on unusual volume.

        Raises:
            StorageError: persistence failed and fail_open is off
        """
        try:
            self._record(user_id, action, dict(metadata or {}))
        except StorageError as e:
            if not self.fail_open:
                raise
            error(f"[Activity] Activity monitoring failed for {user_id}: {e}")

    def _record(self, user_id: str, action: str, metadata: dict) -> None:
        now = self._clock.now()
        window_start = to_db(now - self._config.window)

        def _insert_and_count(conn) -> int:
            conn.execute(
                """
                INSERT INTO activity_logs (id, user_id, action, metadata, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    f"act_{uuid.uuid4().hex[:12]}",
                    user_id,
                    action,
                    json.dumps(metadata, default=str),
                    to_db(now),
                ],
            )
            return int(
                conn.execute(
                    """
                    SELECT COUNT(*) FROM activity_logs
                    WHERE user_id = ? AND timestamp >= ? AND timestamp <= ?
                    """,
                    [user_id, window_start, to_db(now)],
                ).fetchone()[0]
            )

        count = self._db.transaction("activity record", _insert_and_count)
        if count < self._config.threshold:
            return

        if self._config.alert_once_per_window:
            last = self._alerts.last_timestamp(user_id, AlertType.UNUSUAL_ACTIVITY)
            if last is not None and now - last < self._config.window:
                debug(f"[Activity] Suppressing repeat unusual_activity alert for {user_id}")
                return

        self._alerts.emit(
            SecurityAlert(
                user_id=user_id,
                type=AlertType.UNUSUAL_ACTIVITY,
                details={
                    "count": count,
                    "timeWindow": self._config.window_minutes,
                    "action": action,
                    "metadata": metadata,
                },
                timestamp=now,
            )
        )

    def recent_count(self, user_id: str) -> int:
        """Entries for the user inside the trailing window."""
        now = self._clock.now()
        row = self._db.fetchone(
            "activity count",
            """
            SELECT COUNT(*) FROM activity_logs
            WHERE user_id = ? AND timestamp >= ? AND timestamp <= ?
            """,
            [user_id, to_db(now - self._config.window), to_db(now)],
        )
        return int(row[0]) if row else 0
