"""
Data subject access requests.

Gathers what is held about one person (profile row, documents and their
audit trail) and records the disclosure itself as an export event on
the `data_request` resource.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...errors import NotFoundError, StorageError
from ...storage import SecurityDB
from ...utils.datetime import format_iso, from_db
from ...utils.logger import error, info
from ..models import AuditAction, AuditEvent
from .store import AuditFilters, AuditStore, events_to_dicts

DATA_REQUEST_RESOURCE = "data_request"


@dataclass(frozen=True)
class DataSubjectExport:
    """Everything returned to a data subject for one request."""

    request_id: str
    personal_info: Dict[str, Any]
    documents: List[Dict[str, Any]] = field(default_factory=list)
    audit_logs: List[AuditEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "personalInfo": self.personal_info,
            "documents": self.documents,
            "auditLogs": events_to_dicts(self.audit_logs),
        }


def _iso(value) -> Optional[str]:
    return format_iso(from_db(value)) if value is not None else None


class DataRequestService:
    """Answers access requests from the shared database."""

    def __init__(self, db: SecurityDB, audit: AuditStore):
        self._db = db
        self._audit = audit

    def collect(
        self,
        user_id: str,
        request_id: str,
        *,
        requested_by: Optional[str] = None,
        ip: str = "unknown",
        user_agent: str = "unknown",
    ) -> DataSubjectExport:
        """Collect the user's data, then audit the disclosure.

        The returned audit trail is read before the export event is
        written, so it never contains the request itself.

        Raises:
            NotFoundError: no users row for user_id
            StorageError: a read or the audit write failed
        """
        try:
            user = self._db.fetchone(
                "data request user",
                "SELECT id, email, last_activity FROM users WHERE id = ?",
                [user_id],
            )
            if user is None:
                raise NotFoundError(f"No personal information held for {user_id}")

            documents = self._db.fetchall(
                "data request documents",
                """
                SELECT id, user_id, path, created_at FROM documents
                WHERE user_id = ? ORDER BY created_at, id
                """,
                [user_id],
            )
            audit_logs = list(self._audit.export_all(AuditFilters(user_id=user_id)))

            extra = {}
            if requested_by and requested_by != user_id:
                extra["requestedBy"] = requested_by
            self._audit.record(
                user_id,
                AuditAction.EXPORT,
                DATA_REQUEST_RESOURCE,
                request_id,
                ip=ip,
                user_agent=user_agent,
                extra=extra,
            )
        except StorageError as e:
            error(f"[DataRequest] Failed to process request {request_id} for {user_id}: {e}")
            raise

        info(
            f"[DataRequest] {request_id}: {len(documents)} documents, "
            f"{len(audit_logs)} audit events for {user_id}"
        )
        return DataSubjectExport(
            request_id=request_id,
            personal_info={"id": user[0], "email": user[1], "lastActivity": _iso(user[2])},
            documents=[
                {"id": d[0], "userId": d[1], "path": d[2], "createdAt": _iso(d[3])}
                for d in documents
            ],
            audit_logs=audit_logs,
        )
