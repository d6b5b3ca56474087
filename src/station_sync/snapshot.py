"""
snapshot.py - One-shot copy of remote tables into the local store.

Runs once per process, right after the first successful connection,
so the station starts its offline periods with current reference
data. Each table is replaced in a single local transaction.
"""

import datetime
import decimal
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from station_sync.config import RESERVED_TABLE_NAMES
from station_sync.dialect import quote_identifier
from station_sync.errors import SyncError
from station_sync.journal import MutationQueue
from station_sync.stores.base import RemoteStore
from station_sync.stores.local import LocalStore

logger = logging.getLogger(__name__)


def to_local_value(value: Any) -> Any:
    """Convert a remote column value to something SQLite stores natively."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime.datetime):
        return int(value.timestamp())
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, memoryview):
        return bytes(value)
    return value


_REMOTE_TIMESTAMP_TYPES = frozenset({
    "timestamp",
    "timestamp without time zone",
    "timestamp with time zone",
    "timestamptz",
})
_REMOTE_BOOLEAN_TYPES = frozenset({"boolean", "bool"})


def to_remote_value(value: Any, data_type: str | None) -> Any:
    """
    Convert a local column value back to the remote column's type.

    Reverses the INTEGER storage used locally for timestamps (Unix
    seconds) and booleans. Other values are sent as stored.
    """
    if value is None or data_type is None:
        return value
    base_type = data_type.lower().split("(")[0].strip()
    if isinstance(value, bool):
        return value
    if base_type in _REMOTE_TIMESTAMP_TYPES and isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
    if base_type in _REMOTE_BOOLEAN_TYPES and isinstance(value, int):
        return bool(value)
    return value


@dataclass
class SnapshotResult:
    """Outcome of a snapshot run."""
    tables: int = 0
    rows: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class InitialSnapshot:
    """
    Copies remote rows into matching local tables.

    Tables are the configured list, or every remote table that also
    exists locally. Remote columns without a local counterpart are
    dropped. An empty remote table leaves the local rows untouched, and
    so does a table that still has unsynced entries in ``queue``.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        tables: list[str] | None = None,
        queue: MutationQueue | None = None,
    ):
        self._local = local
        self._remote = remote
        self._tables = list(tables or [])
        self._queue = queue

    async def run(self) -> SnapshotResult:
        result = SnapshotResult()
        try:
            tables = await self._select_tables()
        except SyncError as e:
            logger.error(f"Initial snapshot skipped: {e}")
            result.errors.append({"table_name": None, "error": str(e)})
            return result

        unsynced = self._queue.pending_tables() if self._queue is not None else set()
        for table_name in tables:
            if table_name in unsynced:
                logger.warning(f"Snapshot of {table_name} skipped, it has unsynced local writes")
                result.skipped.append(table_name)
                continue
            try:
                copied = await self._copy_table(table_name)
            except SyncError as e:
                logger.error(f"Snapshot of {table_name} failed: {e}")
                result.errors.append({"table_name": table_name, "error": str(e)})
                continue
            if copied is not None:
                result.tables += 1
                result.rows += copied

        logger.info(f"Initial snapshot copied {result.rows} rows from {result.tables} tables")
        return result

    async def _select_tables(self) -> list[str]:
        if self._tables:
            return [t for t in self._tables if t not in RESERVED_TABLE_NAMES]
        remote_tables = await self._remote.list_tables()
        return [
            t for t in remote_tables
            if t not in RESERVED_TABLE_NAMES and self._local.table_exists(t)
        ]

    async def _copy_table(self, table_name: str) -> int | None:
        """Returns the copied row count, or None when the table was skipped."""
        rows = await self._remote.fetch(f"SELECT * FROM {quote_identifier(table_name)}")
        if not rows:
            logger.debug(f"Remote {table_name} is empty, keeping local rows")
            return None

        local_names = {col["name"] for col in self._local.table_info(table_name)}
        columns = [name for name in rows[0] if name in local_names]
        if not columns:
            logger.warning(f"No shared columns for {table_name}, skipping")
            return None

        insert_sql = (
            f"INSERT INTO {quote_identifier(table_name)} "
            f"({', '.join(quote_identifier(c) for c in columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        values = [tuple(to_local_value(row.get(c)) for c in columns) for row in rows]

        def _replace(conn) -> int:
            conn.execute(f"DELETE FROM {quote_identifier(table_name)}")
            conn.executemany(insert_sql, values)
            return len(values)

        copied = self._local.transaction(_replace)
        logger.info(f"Copied {copied} rows into {table_name}")
        return copied
