"""
Retention Sweeper - Deletes records past their category's retention period.

Categories and the timestamp each is judged by:
- personal info: users.last_activity
- documents:     documents.created_at
- audit logs:    audit_logs.timestamp

Only records strictly older than the cutoff are removed. A storage error
in any category fails the whole sweep; categories already swept stay
swept. A completed sweep appends one `delete` audit event on resource
`data_cleanup` authored by "system".
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..storage import SecurityDB
from ..utils.datetime import Clock, SystemClock, format_iso, to_db
from ..utils.logger import error, info
from ..utils.threading import PeriodicTask
from .audit import AuditStore
from .models import SYSTEM_USER, AuditAction, RetentionPolicy

CLEANUP_RESOURCE = "data_cleanup"


@dataclass(frozen=True)
class SweepResult:
    swept_at: datetime
    cutoffs: Dict[str, datetime]
    deleted: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "sweptAt": format_iso(self.swept_at),
            "cutoffs": {k: format_iso(v) for k, v in self.cutoffs.items()},
            "deleted": dict(self.deleted),
        }


class RetentionSweeper:
    """Applies the retention policy to the three data categories."""

    def __init__(
        self,
        db: SecurityDB,
        audit: AuditStore,
        policy: Optional[RetentionPolicy] = None,
        clock: Optional[Clock] = None,
    ):
        self._db = db
        self._audit = audit
        self._policy = policy or RetentionPolicy()
        self._clock = clock or SystemClock()

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    def cutoffs(self, now: datetime) -> Dict[str, datetime]:
        return {
            "personalInfoCutoff": now - timedelta(days=self._policy.personal_info_days),
            "documentsCutoff": now - timedelta(days=self._policy.documents_days),
            "auditLogsCutoff": now - timedelta(days=self._policy.audit_logs_days),
        }

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Delete expired records in every category, then audit the sweep.

        Raises:
            StorageError: any deletion or the cleanup audit write failed
        """
        now = now or self._clock.now()
        cutoffs = self.cutoffs(now)
        deleted: Dict[str, int] = {}

        try:
            deleted["personalInfo"] = self._delete_older(
                "users", "last_activity", cutoffs["personalInfoCutoff"]
            )
            deleted["documents"] = self._delete_older(
                "documents", "created_at", cutoffs["documentsCutoff"]
            )
            deleted["auditLogs"] = self._audit.delete_before(cutoffs["auditLogsCutoff"])

            self._audit.record(
                SYSTEM_USER,
                AuditAction.DELETE,
                CLEANUP_RESOURCE,
                format_iso(now),
                ip="system",
                user_agent="system",
                timestamp=now,
                changes={
                    **{k: format_iso(v) for k, v in cutoffs.items()},
                    "deleted": dict(deleted),
                },
            )
        except Exception as e:
            error(f"[Retention] Failed to cleanup expired data (completed: {deleted}): {e}")
            raise

        info(f"[Retention] Sweep complete: {deleted}")
        return SweepResult(swept_at=now, cutoffs=cutoffs, deleted=deleted)

    def _delete_older(self, table: str, column: str, cutoff: datetime) -> int:
        """Delete rows of a collaborator table whose `column` < cutoff."""
        if (table, column) not in _SWEPT_COLUMNS:
            raise ValueError(f"{table}.{column} is not a retention column")

        def _delete(conn) -> int:
            count = conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE {column} < ?",  # nosec B608
                [to_db(cutoff)],
            ).fetchone()[0]
            conn.execute(
                f"DELETE FROM {table} WHERE {column} < ?",  # nosec B608
                [to_db(cutoff)],
            )
            return int(count)

        return self._db.transaction(f"retention delete {table}", _delete)


# Whitelist for the interpolated table/column names
_SWEPT_COLUMNS = frozenset({("users", "last_activity"), ("documents", "created_at")})


class RetentionScheduler(PeriodicTask):
    """Runs the sweeper on a fixed interval in a daemon thread."""

    def __init__(self, sweeper: RetentionSweeper, interval_hours: float = 24.0):
        super().__init__(
            name="RetentionSweeper",
            func=sweeper.sweep,
            interval=interval_hours * 3600,
        )
