"""
Fixed-window counter storage.

Two interchangeable backends behind the CounterStore protocol:
- InProcessCounterStore: lock-guarded dict, one process only
- SharedCounterStore: rows in a SQLite file, each hit one
  BEGIN IMMEDIATE transaction, so every process opening the same file
  draws on one budget per identifier

Both evict lazily: every hit first drops counters whose window has
fully elapsed.
"""

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol

from ..errors import StorageError
from ..storage.db import DEFAULT_TIMEOUT
from ..storage.sqlite import MEMORY, open_connection, write_transaction
from ..utils.datetime import ensure_utc
from .models import RateWindowCounter

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class HitResult:
    """Outcome of one increment-and-compare."""

    allowed: bool
    count: int
    window_start: datetime


class CounterStore(Protocol):
    def hit(self, key: str, now: datetime, window: timedelta, limit: int) -> HitResult: ...

    def get(self, key: str) -> Optional[RateWindowCounter]: ...

    def reset(self, key: str) -> None: ...

    def evict(self, now: datetime, window: timedelta) -> int: ...


def _expired(window_start: datetime, cutoff: datetime) -> bool:
    # A window that started exactly one duration ago has elapsed
    return window_start <= cutoff


def _to_micros(dt: datetime) -> int:
    return (ensure_utc(dt) - _EPOCH) // timedelta(microseconds=1)


def _from_micros(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


class InProcessCounterStore:
    """Mutex-guarded map from identifier to its window counter."""

    def __init__(self) -> None:
        self._counters: Dict[str, RateWindowCounter] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now: datetime, window: timedelta, limit: int) -> HitResult:
        with self._lock:
            self._evict_locked(now - window)

            current = self._counters.get(key)
            if current is None:
                current = RateWindowCounter(count=1, window_start=now)
                self._counters[key] = current
                return HitResult(True, 1, now)

            if current.count >= limit:
                return HitResult(False, current.count, current.window_start)

            current.count += 1
            return HitResult(True, current.count, current.window_start)

    def get(self, key: str) -> Optional[RateWindowCounter]:
        with self._lock:
            current = self._counters.get(key)
            if current is None:
                return None
            return RateWindowCounter(current.count, current.window_start)

    def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    def evict(self, now: datetime, window: timedelta) -> int:
        with self._lock:
            return self._evict_locked(now - window)

    def _evict_locked(self, cutoff: datetime) -> int:
        stale = [k for k, v in self._counters.items() if _expired(v.window_start, cutoff)]
        for k in stale:
            del self._counters[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)


class SharedCounterStore:
    """Counters in a SQLite file, one row per identifier.

    Every server process pointed at the same file shares one budget per
    identifier. Window starts are stored as integer microseconds since
    the epoch so boundary comparisons are exact.
    """

    def __init__(self, db_path: Path | str = MEMORY, timeout: float = DEFAULT_TIMEOUT):
        self._db_path = str(db_path)
        self._timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = open_connection(self._db_path, self._timeout)
            try:
                with write_transaction(conn, "rate counter schema") as cur:
                    cur.execute("""
                        CREATE TABLE IF NOT EXISTS rate_counters (
                            identifier TEXT PRIMARY KEY,
                            count INTEGER NOT NULL,
                            window_start_us INTEGER NOT NULL
                        )
                    """)
            except StorageError:
                conn.close()
                raise
            self._conn = conn
        return self._conn

    def hit(self, key: str, now: datetime, window: timedelta, limit: int) -> HitResult:
        cutoff = _to_micros(now - window)
        now_us = _to_micros(now)

        with self._lock, write_transaction(self._connect(), "rate counter hit") as cur:
            cur.execute(
                "DELETE FROM rate_counters WHERE window_start_us <= ? AND identifier <> ?",
                (cutoff, key),
            )
            row = cur.execute(
                "SELECT count, window_start_us FROM rate_counters WHERE identifier = ?",
                (key,),
            ).fetchone()

            if row is None or row[1] <= cutoff:
                cur.execute(
                    "INSERT OR REPLACE INTO rate_counters "
                    "(identifier, count, window_start_us) VALUES (?, 1, ?)",
                    (key, now_us),
                )
                return HitResult(True, 1, now)

            count, window_start = int(row[0]), _from_micros(row[1])
            if count >= limit:
                return HitResult(False, count, window_start)

            cur.execute(
                "UPDATE rate_counters SET count = count + 1 WHERE identifier = ?",
                (key,),
            )
            return HitResult(True, count + 1, window_start)

    def get(self, key: str) -> Optional[RateWindowCounter]:
        with self._lock, write_transaction(self._connect(), "rate counter get") as cur:
            row = cur.execute(
                "SELECT count, window_start_us FROM rate_counters WHERE identifier = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return RateWindowCounter(count=int(row[0]), window_start=_from_micros(row[1]))

    def reset(self, key: str) -> None:
        with self._lock, write_transaction(self._connect(), "rate counter reset") as cur:
            cur.execute("DELETE FROM rate_counters WHERE identifier = ?", (key,))

    def evict(self, now: datetime, window: timedelta) -> int:
        cutoff = _to_micros(now - window)
        with self._lock, write_transaction(self._connect(), "rate counter evict") as cur:
            cur.execute("DELETE FROM rate_counters WHERE window_start_us <= ?", (cutoff,))
            return cur.rowcount

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def create_counter_store(
    backend: str, db_path: Optional[Path | str] = None, timeout: float = DEFAULT_TIMEOUT
) -> CounterStore:
    """Build the counter store named by Settings.counter_backend."""
    if backend == "memory":
        return InProcessCounterStore()
    if backend == "shared":
        return SharedCounterStore(db_path if db_path is not None else MEMORY, timeout)
    raise ValueError(f"Unknown counter backend: {backend!r}")
