"""
Failed-Login Tracker - Rolling-window failure counting and account lockout.

The lock transition is monotonic: once an account is locked, further
failures are still recorded but never raise a second account_locked
alert. Unlocking happens outside this pipeline (see unlock()).
"""

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from ..errors import StorageError
from ..storage import SecurityDB
from ..utils.datetime import Clock, SystemClock, from_db, to_db
from ..utils.logger import error, info, warning
from .alerts import AlertStore
from .models import AccountLockState, AlertType, FailedLoginRecord, SecurityAlert


@dataclass(frozen=True)
class LockoutConfig:
    threshold: int = 5
    window_minutes: int = 30

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    @classmethod
    def from_settings(cls, settings) -> "LockoutConfig":
        return cls(
            threshold=settings.failed_login_threshold,
            window_minutes=settings.failed_login_window_minutes,
        )


class FailedLoginTracker:
    """Counts authentication failures per account and locks at threshold."""

    def __init__(
        self,
        db: SecurityDB,
        alerts: AlertStore,
        config: Optional[LockoutConfig] = None,
        clock: Optional[Clock] = None,
        fail_open: bool = True,
    ):
        self._db = db
        self._alerts = alerts
        self._config = config or LockoutConfig()
        self._clock = clock or SystemClock()
        self.fail_open = fail_open

    @property
    def config(self) -> LockoutConfig:
        return self._config

    def record_failure(self, user_id: str, ip: str) -> bool:
        """Record one failed login; True only if this failure locked the account.

        Raises:
            StorageError: persistence failed and fail_open is off
        """
        now = self._clock.now()
        window_start = to_db(now - self._config.window)
        threshold = self._config.threshold

        def _record(conn):
            conn.execute(
                "INSERT INTO failed_logins (id, user_id, ip, timestamp) VALUES (?, ?, ?, ?)",
                [f"fl_{uuid.uuid4().hex[:12]}", user_id, ip, to_db(now)],
            )
            count = conn.execute(
                """
                SELECT COUNT(*) FROM failed_logins
                WHERE user_id = ? AND timestamp >= ? AND timestamp <= ?
                """,
                [user_id, window_start, to_db(now)],
            ).fetchone()[0]
            locked = conn.execute(
                "SELECT locked FROM account_locks WHERE user_id = ?", [user_id]
            ).fetchone()
            if count < threshold or (locked is not None and locked[0]):
                return int(count), False
            conn.execute(
                """
                INSERT INTO account_locks (user_id, locked, locked_at) VALUES (?, true, ?)
                ON CONFLICT (user_id) DO UPDATE SET locked = true, locked_at = excluded.locked_at
                """,
                [user_id, to_db(now)],
            )
            return int(count), True

        # Check, count and lock commit together so two concurrent
        # failures cannot both perform the transition
        try:
            count, newly_locked = self._db.transaction("failed login record", _record)
        except StorageError as e:
            if not self.fail_open:
                raise
            error(f"[Lockout] Failed login tracking failed for {user_id}: {e}")
            return False

        if not newly_locked:
            info(f"[Lockout] Failed login {count}/{threshold} for {user_id} from {ip}")
            return False

        warning(f"[Lockout] Account {user_id} locked after {count} failed logins")
        alert = SecurityAlert(
            user_id=user_id,
            type=AlertType.ACCOUNT_LOCKED,
            details={"failedAttempts": count, "ip": ip},
            timestamp=now,
        )
        try:
            self._alerts.emit(alert)
        except StorageError as e:
            if not self.fail_open:
                raise
            error(f"[Lockout] Could not store account_locked alert for {user_id}: {e}")
        return True

    def failure_count(self, user_id: str) -> int:
        """Failures for the user inside the trailing window."""
        now = self._clock.now()
        row = self._db.fetchone(
            "failed login count",
            """
            SELECT COUNT(*) FROM failed_logins
            WHERE user_id = ? AND timestamp >= ? AND timestamp <= ?
            """,
            [user_id, to_db(now - self._config.window), to_db(now)],
        )
        return int(row[0]) if row else 0

    def recent_failures(self, user_id: str) -> List[FailedLoginRecord]:
        """Failures inside the trailing window, newest first."""
        now = self._clock.now()
        rows = self._db.fetchall(
            "failed login list",
            """
            SELECT user_id, ip, timestamp FROM failed_logins
            WHERE user_id = ? AND timestamp >= ? AND timestamp <= ?
            ORDER BY timestamp DESC
            """,
            [user_id, to_db(now - self._config.window), to_db(now)],
        )
        return [FailedLoginRecord(user_id=r[0], ip=r[1], timestamp=from_db(r[2])) for r in rows]

    def lock_state(self, user_id: str) -> AccountLockState:
        row = self._db.fetchone(
            "lock state",
            "SELECT locked, locked_at FROM account_locks WHERE user_id = ?",
            [user_id],
        )
        if row is None:
            return AccountLockState(user_id=user_id)
        return AccountLockState(user_id=user_id, locked=bool(row[0]), locked_at=from_db(row[1]))

    def is_locked(self, user_id: str) -> bool:
        return self.lock_state(user_id).locked

    def unlock(self, user_id: str) -> None:
        """Clear the lock (operator action, not reachable from the gated API)."""
        self._db.execute(
            "unlock account",
            "UPDATE account_locks SET locked = false, locked_at = NULL WHERE user_id = ?",
            [user_id],
        )
        info(f"[Lockout] Account {user_id} unlocked")
