"""
Test Result Store - Persisted self-test outcomes.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from ...storage import SecurityDB
from ...utils.datetime import from_db, to_db
from ...utils.logger import debug
from ..models import (
    SecurityTestResult,
    Severity,
    TestDetails,
    TestStatus,
    TestType,
)

_COLUMNS = (
    "test_id, type, name, status, severity, description, location, remediation, timestamp"
)


def _row_to_result(row: tuple) -> SecurityTestResult:
    test_id, test_type, name, status, severity, description, location, remediation, ts = row
    return SecurityTestResult(
        test_id=test_id,
        type=TestType(test_type),
        name=name,
        status=TestStatus(status),
        details=TestDetails(
            description=description or "",
            severity=Severity(severity),
            location=location,
            remediation=remediation,
        ),
        timestamp=from_db(ts),
    )


class TestResultStore:
    """DuckDB repository for security_test_results."""

    __test__ = False

    def __init__(self, db: SecurityDB):
        self._db = db

    def save(self, results: Sequence[SecurityTestResult]) -> None:
        """Persist a batch of results in one transaction.

        Raises:
            StorageError: nothing from the batch was stored
        """
        if not results:
            return
        rows = [
            [
                r.test_id,
                r.type.value,
                r.name,
                r.status.value,
                r.details.severity.value,
                r.details.description,
                r.details.location,
                r.details.remediation,
                to_db(r.timestamp),
            ]
            for r in results
        ]

        def _insert(conn):
            conn.executemany(
                f"INSERT INTO security_test_results ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )

        self._db.transaction("test result insert", _insert)
        debug(f"[SelfTest] Stored {len(rows)} test results")

    def between(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[SecurityTestResult]:
        """Results with start <= timestamp <= end, newest first."""
        clauses, params = [], []
        if start is not None:
            clauses.append("timestamp >= ?")
            params.append(to_db(start))
        if end is not None:
            clauses.append("timestamp <= ?")
            params.append(to_db(end))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._db.fetchall(
            "test result range",
            f"SELECT {_COLUMNS} FROM security_test_results {where} "  # nosec B608
            "ORDER BY timestamp DESC, seq DESC",
            params,
        )
        return [_row_to_result(row) for row in rows]
