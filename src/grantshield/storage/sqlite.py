"""SQLite helpers for state that several server processes update together.

DuckDB holds an exclusive lock on its file for the lifetime of a
connection, so a second process cannot open the security database at
all. Counters that must be shared across processes live in a SQLite
file instead, where writers serialize on the file lock.
"""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from ..errors import StorageError
from ..utils.logger import debug

MEMORY = ":memory:"


def open_connection(db_path: Path | str, timeout: float) -> sqlite3.Connection:
    """Open a SQLite connection usable from any thread.

    Args:
        db_path: Path to the SQLite file, or ":memory:"
        timeout: Seconds to wait on another writer's lock before failing

    Raises:
        StorageError: the file cannot be opened
    """
    path = str(db_path)
    try:
        if path != MEMORY:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        # isolation_level=None: transactions are opened explicitly
        conn = sqlite3.connect(
            path, timeout=timeout, isolation_level=None, check_same_thread=False
        )
        if path != MEMORY:
            conn.execute("PRAGMA journal_mode=WAL")
    except (OSError, sqlite3.Error) as e:
        raise StorageError(f"connect failed: {e}", operation="connect") from e
    return conn


@contextmanager
def write_transaction(
    conn: sqlite3.Connection, operation: str
) -> Generator[sqlite3.Cursor, None, None]:
    """BEGIN IMMEDIATE ... COMMIT, rolling back on error.

    IMMEDIATE takes the file's write lock before the first read, so a
    read-then-update inside the block is atomic across processes.

    Raises:
        StorageError: any sqlite3 error, tagged with `operation`
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as e:
        debug(f"[SQLite] {operation} failed: {e}")
        raise StorageError(f"{operation} failed: {e}", operation=operation) from e

    cursor = conn.cursor()
    try:
        yield cursor
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        debug(f"[SQLite] {operation} failed: {e}")
        raise StorageError(f"{operation} failed: {e}", operation=operation) from e
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        cursor.close()
