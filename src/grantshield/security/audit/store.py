"""
Audit Store - Append-only DuckDB repository for audit events.

Reads are newest first (timestamp DESC, insertion order breaks ties).
Rows are only ever removed by the retention sweeper via delete_before().
"""

import csv
import io
import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from ...errors import ValidationError
from ...storage import SecurityDB
from ...utils.datetime import Clock, SystemClock, from_db, parse_iso, to_db
from ...utils.logger import debug, error
from ..models import (
    AuditAction,
    AuditEvent,
    AuditStatus,
    EventMetadata,
    Resource,
)

_COLUMNS = "timestamp, user_id, action, resource_type, resource_id, metadata, status"
_ORDER = "ORDER BY timestamp DESC, seq DESC"

DEFAULT_PAGE_SIZE = 50
EXPORT_PAGE_SIZE = 1000
CSV_HEADER = ["Timestamp", "User", "Action", "Resource", "Status", "Details"]


@dataclass(frozen=True)
class AuditFilters:
    """Conjunction of exact-match and inclusive date-range predicates."""

    user_id: Optional[str] = None
    action: Optional[AuditAction] = None
    resource_type: Optional[str] = None
    status: Optional[AuditStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def to_sql(self) -> Tuple[str, List[Any]]:
        """Build the WHERE clause and its parameters."""
        clauses: List[str] = []
        params: List[Any] = []
        if self.user_id:
            clauses.append("user_id = ?")
            params.append(self.user_id)
        if self.action is not None:
            clauses.append("action = ?")
            params.append(self.action.value)
        if self.resource_type:
            clauses.append("resource_type = ?")
            params.append(self.resource_type)
        if self.status is not None:
            clauses.append("status = ?")
            params.append(self.status.value)
        if self.start_date is not None:
            clauses.append("timestamp >= ?")
            params.append(to_db(self.start_date))
        if self.end_date is not None:
            clauses.append("timestamp <= ?")
            params.append(to_db(self.end_date))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    @classmethod
    def from_query(cls, args: Mapping[str, str]) -> "AuditFilters":
        """Parse camelCase query-string arguments.

        Raises:
            ValidationError: unknown action/status or malformed dates
        """
        try:
            action = AuditAction(args["action"]) if args.get("action") else None
        except ValueError:
            raise ValidationError(f"Unknown action: {args['action']}")
        try:
            status = AuditStatus(args["status"]) if args.get("status") else None
        except ValueError:
            raise ValidationError(f"Unknown status: {args['status']}")
        try:
            start = parse_iso(args.get("startDate"))
            end = parse_iso(args.get("endDate"))
        except ValueError as e:
            raise ValidationError(f"Invalid date: {e}")
        return cls(
            user_id=args.get("userId") or None,
            action=action,
            resource_type=args.get("resourceType") or None,
            status=status,
            start_date=start,
            end_date=end,
        )


def _row_to_event(row: tuple) -> AuditEvent:
    timestamp, user_id, action, resource_type, resource_id, metadata, status = row
    return AuditEvent(
        timestamp=from_db(timestamp),
        user_id=user_id,
        action=AuditAction(action),
        resource=Resource(type=resource_type, id=resource_id),
        metadata=EventMetadata.from_dict(json.loads(metadata) if metadata else {}),
        status=AuditStatus(status),
    )


class AuditStore:
    """DuckDB repository for the audit trail."""

    def __init__(self, db: SecurityDB, clock: Optional[Clock] = None):
        self._db = db
        self._clock = clock or SystemClock()

    # ===== Write =====

    def append(self, event: AuditEvent) -> None:
        """Persist one event.

        Raises:
            StorageError: the write failed; the event was not stored.
        """
        values = (
            f"audit_{uuid.uuid4().hex}",
            to_db(event.timestamp),
            event.user_id,
            event.action.value,
            event.resource.type,
            event.resource.id,
            json.dumps(event.metadata.to_dict(), default=str),
            event.status.value,
        )
        try:
            self._db.execute(
                "audit append",
                f"INSERT INTO audit_logs (id, {_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                values,
            )
        except Exception as e:
            error(f"[Audit] Failed to log audit event {event.action.value} for {event.user_id}: {e}")
            raise

    def record(
        self,
        user_id: str,
        action: AuditAction,
        resource_type: str,
        resource_id: str,
        *,
        status: AuditStatus = AuditStatus.SUCCESS,
        ip: str = "unknown",
        user_agent: str = "unknown",
        location: Optional[str] = None,
        changes: Optional[Mapping[str, Any]] = None,
        extra: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        """Build an event (stamped now unless given) and append it."""
        event = AuditEvent(
            timestamp=timestamp or self._clock.now(),
            user_id=user_id,
            action=action,
            resource=Resource(type=resource_type, id=resource_id),
            metadata=EventMetadata(
                ip=ip,
                user_agent=user_agent,
                location=location,
                changes=changes,
                extra=dict(extra or {}),
            ),
            status=status,
        )
        self.append(event)
        return event

    # ===== Read =====

    def query(
        self,
        filters: Optional[AuditFilters] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[AuditEvent], int]:
        """Get one page of matching events and the filtered total.

        Page p of size n covers records [(p-1)*n, p*n) newest first.
        """
        if page < 1:
            raise ValidationError("page must be >= 1")
        if page_size < 1:
            raise ValidationError("pageSize must be >= 1")

        where, params = (filters or AuditFilters()).to_sql()
        offset = (page - 1) * page_size

        def _query(conn):
            total = conn.execute(
                f"SELECT COUNT(*) FROM audit_logs {where}",  # nosec B608
                params,
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM audit_logs {where} {_ORDER} LIMIT ? OFFSET ?",  # nosec B608
                [*params, page_size, offset],
            ).fetchall()
            return rows, total

        rows, total = self._db.run("audit query", _query)
        return [_row_to_event(row) for row in rows], int(total)

    def export_all(
        self,
        filters: Optional[AuditFilters] = None,
        page_size: int = EXPORT_PAGE_SIZE,
    ) -> Iterator[AuditEvent]:
        """Stream every matching event by paging until an empty page.

        Re-invoke to restart. Writes during the export may shift pages;
        there is no snapshot isolation.
        """
        page = 1
        while True:
            events, _ = self.query(filters, page=page, page_size=page_size)
            if not events:
                return
            yield from events
            page += 1

    def list_all(self) -> List[AuditEvent]:
        """Every event, newest first."""
        rows = self._db.fetchall(
            "audit list",
            f"SELECT {_COLUMNS} FROM audit_logs {_ORDER}",  # nosec B608
        )
        return [_row_to_event(row) for row in rows]

    def count(self, filters: Optional[AuditFilters] = None) -> int:
        where, params = (filters or AuditFilters()).to_sql()
        row = self._db.fetchone(
            "audit count",
            f"SELECT COUNT(*) FROM audit_logs {where}",  # nosec B608
            params,
        )
        return int(row[0]) if row else 0

    def export_csv(self, filters: Optional[AuditFilters] = None) -> str:
        """Render matching events as CSV (one row per event)."""
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for event in self.export_all(filters):
            writer.writerow(
                [
                    event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                    event.user_id,
                    event.action.value,
                    f"{event.resource.type}:{event.resource.id}",
                    event.status.value,
                    json.dumps(event.metadata.to_dict(), default=str),
                ]
            )
        return buf.getvalue()

    # ===== Retention =====

    def delete_before(self, cutoff: datetime) -> int:
        """Delete events strictly older than `cutoff`. Returns rows removed."""

        def _delete(conn):
            count = conn.execute(
                "SELECT COUNT(*) FROM audit_logs WHERE timestamp < ?", [to_db(cutoff)]
            ).fetchone()[0]
            conn.execute("DELETE FROM audit_logs WHERE timestamp < ?", [to_db(cutoff)])
            return int(count)

        deleted = self._db.transaction("audit retention delete", _delete)
        debug(f"[Audit] Deleted {deleted} events older than {cutoff.isoformat()}")
        return deleted


def events_to_dicts(events: List[AuditEvent]) -> List[Dict[str, Any]]:
    return [event.to_dict() for event in events]
