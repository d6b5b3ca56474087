"""
local.py - The embedded SQLite store.

Synchronous and always available. Every statement reaching this class
is already in the local dialect; translation happens in the executor.
All sqlite3 errors leave this module as StorageFailure.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Sequence

from station_sync.db.connection import (
    create_connection,
    execute_in_transaction,
    initialize_sync_tables,
)
from station_sync.errors import StorageFailure

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Thin wrapper around one SQLite connection.

    Usage:
        store = LocalStore("/var/lib/station/local.db")
        store.open()
        rows = store.query("SELECT * FROM sales WHERE id = ?", (1,))
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        return self._conn

    def open(self) -> None:
        """Open the database file and create the sync core tables."""
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = create_connection(self._db_path)
        initialize_sync_tables(self._conn)
        logger.info(f"Local store opened at {self._db_path}")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        try:
            cursor = self.connection.execute(sql, tuple(params))
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageFailure(f"Local query failed: {e}", operation="query", sql=sql) from e

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a mutating statement; returns the affected row count."""
        try:
            cursor = self.connection.execute(sql, tuple(params))
            return cursor.rowcount
        except sqlite3.Error as e:
            raise StorageFailure(f"Local update failed: {e}", operation="update", sql=sql) from e

    def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run an INSERT; returns the generated rowid."""
        try:
            cursor = self.connection.execute(sql, tuple(params))
            return cursor.lastrowid
        except sqlite3.Error as e:
            raise StorageFailure(f"Local insert failed: {e}", operation="insert", sql=sql) from e

    def executescript(self, sql: str) -> None:
        try:
            self.connection.executescript(sql)
        except sqlite3.Error as e:
            raise StorageFailure(f"Local script failed: {e}", operation="script", sql=sql) from e

    def transaction(self, operation):
        """Run ``operation(conn)`` atomically."""
        return execute_in_transaction(self.connection, operation)

    def list_tables(self) -> list[str]:
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        return [row["name"] for row in rows]

    def table_exists(self, table_name: str) -> bool:
        row = self.query_one(
            "SELECT 1 AS present FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table_name,),
        )
        return row is not None

    def table_info(self, table_name: str) -> list[dict[str, Any]]:
        """PRAGMA table_info rows; empty when the table does not exist."""
        return self.query(f'PRAGMA table_info("{table_name}")')

    def checkpoint(self) -> None:
        """Flush the WAL into the main database file."""
        try:
            self.connection.execute("PRAGMA wal_checkpoint(FULL)")
        except sqlite3.Error as e:
            raise StorageFailure(f"WAL checkpoint failed: {e}", operation="checkpoint") from e
