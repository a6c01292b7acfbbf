"""Datetime utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_db(dt: datetime) -> datetime:
    """Normalize to a naive UTC datetime for DuckDB TIMESTAMP columns."""
    return ensure_utc(dt).replace(tzinfo=None)


def from_db(value: Optional[datetime]) -> Optional[datetime]:
    """Re-attach UTC to a naive TIMESTAMP value read back from DuckDB."""
    if value is None:
        return None
    return ensure_utc(value)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string (a trailing 'Z' is accepted).

    Args:
        value: ISO 8601 string, or None/empty

    Returns:
        UTC datetime, or None if value is empty

    Raises:
        ValueError: if the string is not ISO 8601
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_iso(dt: Optional[datetime] = None) -> str:
    """Format datetime as ISO 8601 string (UTC).

    Args:
        dt: datetime object, or None for current time
    """
    if dt is None:
        dt = datetime.now(tz=timezone.utc)
    return ensure_utc(dt).isoformat()
