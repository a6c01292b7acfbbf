"""
Security Pipeline Models - Dataclasses and enums shared by all components

Provides:
- AuditAction / AuditStatus: closed vocabularies for audit events
- AuditEvent: immutable audit trail record
- RateWindowCounter, FailedLoginRecord, AccountLockState
- AlertType / SecurityAlert
- TestType / TestStatus / Severity / SecurityTestResult
- RetentionPolicy
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..utils.datetime import format_iso, parse_iso


class AuditAction(Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    EXPORT = "export"
    APPROVE = "approve"
    REJECT = "reject"


class AuditStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


SYSTEM_USER = "system"


@dataclass(frozen=True)
class Resource:
    type: str
    id: str


@dataclass(frozen=True)
class EventMetadata:
    """Request context attached to an audit event."""

    ip: str = "unknown"
    user_agent: str = "unknown"
    location: Optional[str] = None
    changes: Optional[Mapping[str, Any]] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["ip"] = self.ip
        data["userAgent"] = self.user_agent
        if self.location is not None:
            data["location"] = self.location
        if isinstance(self.changes, Mapping):
            data["changes"] = dict(self.changes)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "EventMetadata":
        data = dict(data or {})
        ip = data.pop("ip", "unknown")
        user_agent = data.pop("userAgent", "unknown")
        location = data.pop("location", None)
        # Rows written before reserved keys were validated may carry a
        # non-mapping "changes"; it stays in extra untouched
        changes = data.pop("changes") if isinstance(data.get("changes"), Mapping) else None
        return cls(
            ip=ip,
            user_agent=user_agent,
            location=location,
            changes=changes,
            extra=data,
        )


@dataclass(frozen=True)
class AuditEvent:
    """A security-relevant event. Never mutated once written."""

    timestamp: datetime
    user_id: str
    action: AuditAction
    resource: Resource
    metadata: EventMetadata
    status: AuditStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": format_iso(self.timestamp),
            "userId": self.user_id,
            "action": self.action.value,
            "resource": {"type": self.resource.type, "id": self.resource.id},
            "metadata": self.metadata.to_dict(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditEvent":
        resource = data.get("resource") or {}
        timestamp = data["timestamp"]
        return cls(
            timestamp=parse_iso(timestamp) if isinstance(timestamp, str) else timestamp,
            user_id=data["userId"],
            action=AuditAction(data["action"]),
            resource=Resource(type=resource.get("type", ""), id=resource.get("id", "")),
            metadata=EventMetadata.from_dict(data.get("metadata")),
            status=AuditStatus(data.get("status", "success")),
        )


@dataclass
class RateWindowCounter:
    """Request count for one identifier in its current fixed window."""

    count: int
    window_start: datetime


@dataclass(frozen=True)
class FailedLoginRecord:
    user_id: str
    ip: str
    timestamp: datetime


@dataclass(frozen=True)
class AccountLockState:
    user_id: str
    locked: bool = False
    locked_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "locked": self.locked,
            "lockedAt": format_iso(self.locked_at) if self.locked_at else None,
        }


class AlertType(Enum):
    UNUSUAL_ACTIVITY = "unusual_activity"
    ACCOUNT_LOCKED = "account_locked"


@dataclass(frozen=True)
class SecurityAlert:
    user_id: str
    type: AlertType
    details: Mapping[str, Any]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "type": self.type.value,
            "details": dict(self.details),
            "timestamp": format_iso(self.timestamp),
        }


class TestType(Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class TestStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Keep pytest from collecting the Test* enums above
TestType.__test__ = False  # type: ignore[attr-defined]
TestStatus.__test__ = False  # type: ignore[attr-defined]


@dataclass(frozen=True)
class TestDetails:
    description: str
    severity: Severity
    location: Optional[str] = None
    remediation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "description": self.description,
            "severity": self.severity.value,
        }
        if self.location is not None:
            data["location"] = self.location
        if self.remediation is not None:
            data["remediation"] = self.remediation
        return data


TestDetails.__test__ = False  # type: ignore[attr-defined]


@dataclass(frozen=True)
class SecurityTestResult:
    """Outcome of one self-test check."""

    test_id: str
    type: TestType
    name: str
    status: TestStatus
    details: TestDetails
    timestamp: datetime

    @property
    def is_critical_issue(self) -> bool:
        return (
            self.details.severity is Severity.CRITICAL
            and self.status is not TestStatus.PASSED
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "testId": self.test_id,
            "type": self.type.value,
            "name": self.name,
            "status": self.status.value,
            "details": self.details.to_dict(),
            "timestamp": format_iso(self.timestamp),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class RetentionPolicy:
    """Days to keep each data category. Loaded once at startup."""

    personal_info_days: int = 365
    documents_days: int = 730
    audit_logs_days: int = 1825

    def __post_init__(self):
        for name in ("personal_info_days", "documents_days", "audit_logs_days"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    @classmethod
    def from_settings(cls, settings) -> "RetentionPolicy":
        return cls(
            personal_info_days=settings.retention_personal_info_days,
            documents_days=settings.retention_documents_days,
            audit_logs_days=settings.retention_audit_logs_days,
        )
