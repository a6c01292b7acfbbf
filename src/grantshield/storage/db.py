"""
DuckDB database management for the security pipeline.

One connection per SecurityDB instance, serialized by a lock since
DuckDB connections are not safe to share across threads unguarded.
Every call runs under a deadline: when it expires the connection is
interrupted and the call fails with StorageError.
"""

import os
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, TypeVar

import duckdb

from ..errors import StorageError
from ..utils.logger import debug, error, info

T = TypeVar("T")

MEMORY = ":memory:"
DEFAULT_TIMEOUT = 5.0


class SecurityDB:
    """Manages the DuckDB database holding audit and security data."""

    def __init__(self, db_path: Optional[Path | str] = None, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the database.

        Args:
            db_path: Path to the database file, or ":memory:". Defaults to
                in-memory.
            timeout: Deadline in seconds for each persistence call
                (0 disables it).
        """
        self._db_path = str(db_path) if db_path is not None else MEMORY
        self._timeout = timeout
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._db_path

    def connect(self) -> duckdb.DuckDBPyConnection:
        """Get or create the database connection (thread-safe)."""
        with self._lock:
            if self._conn is None:
                if self._db_path != MEMORY:
                    os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
                try:
                    self._conn = duckdb.connect(self._db_path)
                    self._create_schema(self._conn)
                except duckdb.Error as e:
                    self._conn = None
                    error(f"[DB] Cannot open {self._db_path}: {e}")
                    raise StorageError(str(e), operation="connect") from e
                info(f"[DB] Connected to {self._db_path}")
            return self._conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    # ===== Execution =====

    def run(self, operation: str, func: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        """Run `func` against the connection under the lock and deadline.

        duckdb errors (including an interrupt on deadline) are raised as
        StorageError tagged with `operation`.
        """
        with self._lock:
            conn = self.connect()
            timer = None
            if self._timeout and self._timeout > 0:
                timer = threading.Timer(self._timeout, conn.interrupt)
                timer.daemon = True
                timer.start()
            try:
                return func(conn)
            except duckdb.Error as e:
                debug(f"[DB] {operation} failed: {e}")
                raise StorageError(f"{operation} failed: {e}", operation=operation) from e
            finally:
                if timer is not None:
                    timer.cancel()

    def execute(self, operation: str, sql: str, params: Sequence[Any] = ()) -> None:
        self.run(operation, lambda conn: conn.execute(sql, list(params)))

    def fetchall(self, operation: str, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        return self.run(operation, lambda conn: conn.execute(sql, list(params)).fetchall())

    def fetchone(self, operation: str, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        return self.run(operation, lambda conn: conn.execute(sql, list(params)).fetchone())

    def transaction(self, operation: str, func: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        """Run `func` inside BEGIN/COMMIT, rolling back on any error."""

        def _txn(conn: duckdb.DuckDBPyConnection) -> T:
            conn.execute("BEGIN TRANSACTION")
            try:
                result = func(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return result

        return self.run(operation, _txn)

    # ===== Schema =====

    def _create_schema(self, conn: duckdb.DuckDBPyConnection) -> None:
        """Create the database schema if it doesn't exist."""
        conn.execute("CREATE SEQUENCE IF NOT EXISTS audit_seq")
        conn.execute("CREATE SEQUENCE IF NOT EXISTS test_result_seq")

        # Append-only audit trail; seq breaks timestamp ties (newest first)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_logs (
                seq BIGINT DEFAULT nextval('audit_seq'),
                id VARCHAR PRIMARY KEY,
                timestamp TIMESTAMP NOT NULL,
                user_id VARCHAR NOT NULL,
                action VARCHAR NOT NULL,
                resource_type VARCHAR NOT NULL,
                resource_id VARCHAR NOT NULL,
                metadata VARCHAR,
                status VARCHAR NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS activity_logs (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                action VARCHAR NOT NULL,
                metadata VARCHAR,
                timestamp TIMESTAMP NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS failed_logins (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                ip VARCHAR,
                timestamp TIMESTAMP NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS account_locks (
                user_id VARCHAR PRIMARY KEY,
                locked BOOLEAN NOT NULL,
                locked_at TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS security_alerts (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                type VARCHAR NOT NULL,
                details VARCHAR,
                timestamp TIMESTAMP NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS security_test_results (
                seq BIGINT DEFAULT nextval('test_result_seq'),
                test_id VARCHAR NOT NULL,
                type VARCHAR NOT NULL,
                name VARCHAR NOT NULL,
                status VARCHAR NOT NULL,
                severity VARCHAR NOT NULL,
                description VARCHAR,
                location VARCHAR,
                remediation VARCHAR,
                timestamp TIMESTAMP NOT NULL
            )
        """)

        # Collaborator tables swept by the retention job
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR PRIMARY KEY,
                email VARCHAR,
                last_activity TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR,
                path VARCHAR,
                created_at TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_timestamp
            ON audit_logs(timestamp)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_user
            ON audit_logs(user_id)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_user_ts
            ON activity_logs(user_id, timestamp)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_failed_logins_user_ts
            ON failed_logins(user_id, timestamp)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_test_results_ts
            ON security_test_results(timestamp)
        """)
