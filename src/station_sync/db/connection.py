"""
connection.py - SQLite connection management for the local store.

Handles connection creation, PRAGMA configuration, creation of the
sync core tables and transaction helpers.

All connections use WAL mode so the file can be read while a
sync pass is writing.
"""

import logging
import sqlite3
from typing import Any, Callable

from station_sync.config import SQLITE_PRAGMAS
from station_sync.db.schema import ALL_SCHEMA_STATEMENTS
from station_sync.errors import StorageFailure

logger = logging.getLogger("station_sync.db")


def create_connection(db_path: str) -> sqlite3.Connection:
    """
    Create a new SQLite connection with proper configuration.

    Rows are returned as sqlite3.Row so callers can read them
    by column name.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured sqlite3.Connection

    Raises:
        StorageFailure: If connection fails
    """
    try:
        conn = sqlite3.connect(
            db_path,
            isolation_level=None,  # Manual transaction control
            check_same_thread=False,
        )
    except sqlite3.Error as e:
        raise StorageFailure(
            f"Failed to connect to database: {e}",
            operation="connect",
        ) from e

    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    return conn


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    for pragma, value in SQLITE_PRAGMAS.items():
        try:
            conn.execute(f"PRAGMA {pragma} = {value}")
        except sqlite3.Error as e:
            raise StorageFailure(
                f"Failed to set PRAGMA {pragma}: {e}",
                operation="pragma",
                sql=f"PRAGMA {pragma} = {value}",
            ) from e


def initialize_sync_tables(conn: sqlite3.Connection) -> None:
    """
    Create the sync core tables.

    This is idempotent: can be called on every startup.

    Raises:
        StorageFailure: If schema creation fails
    """
    try:
        for statement in ALL_SCHEMA_STATEMENTS:
            for sql in statement.strip().split(";"):
                sql = sql.strip()
                if sql:
                    conn.execute(sql)
    except sqlite3.Error as e:
        raise StorageFailure(
            f"Failed to create sync tables: {e}",
            operation="create_tables",
        ) from e


def execute_in_transaction(
    conn: sqlite3.Connection,
    operation: Callable[[sqlite3.Connection], Any]
) -> Any:
    """
    Execute an operation within an IMMEDIATE transaction.

    Ensures atomicity: all changes commit or all rollback.

    Args:
        conn: SQLite connection
        operation: Callable that performs database operations

    Returns:
        Result of operation

    Raises:
        StorageFailure: If the transaction fails at the SQLite level
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            result = operation(conn)
            conn.execute("COMMIT")
            return result
        except Exception:
            conn.execute("ROLLBACK")
            raise
    except sqlite3.Error as e:
        raise StorageFailure(
            f"Transaction failed: {e}",
            operation="transaction",
        ) from e


def verify_integrity(conn: sqlite3.Connection) -> bool:
    """Run SQLite integrity check."""
    try:
        result = conn.execute("PRAGMA integrity_check").fetchone()
        return result is not None and result[0] == "ok"
    except sqlite3.Error:
        return False
