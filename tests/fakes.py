"""
fakes.py - In-memory stand-ins for the remote store.

FakeRemoteStore speaks the remote dialect ($N markers) on top of an
in-memory SQLite database and can be told to fail.
"""

import asyncio
import datetime
import re
import sqlite3
from typing import Any, Sequence

from station_sync.dialect import LOCAL_MARKER, rewrite_markers
from station_sync.errors import DuplicateKeyError, RemoteQueryError, RemoteUnavailable
from station_sync.schema_reconciler import map_remote_type
from station_sync.stores.base import ColumnDescriptor, RemoteStore


async def no_sleep(_delay: float) -> None:
    """Drop-in for asyncio.sleep that records nothing and never waits."""
    return None


class RecordingSleep:
    """Sleep replacement that remembers requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def col(name: str, data_type: str = "text", nullable: bool = True, default: str | None = None) -> ColumnDescriptor:
    return ColumnDescriptor(name=name, data_type=data_type, nullable=nullable, default=default)


class FakeRemoteStore(RemoteStore):
    """
    Remote store double.

    - ``available = False`` makes every call raise RemoteUnavailable
    - ``fail_next = n`` fails the next n statements, then recovers
    - ``reject_next = n`` rejects the next n statements as query errors
    - ``gate`` (an asyncio.Event) holds statements until it is set
    - INSERT parameters are type checked against timestamp and boolean
      columns the way PostgreSQL rejects a bare integer for them
    """

    def __init__(self):
        self.conn = sqlite3.connect(":memory:", isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.available = True
        self.fail_next = 0
        self.reject_next = 0
        self.gate: asyncio.Event | None = None
        self.connect_delay = 0.0
        self.calls: list[tuple[str, tuple]] = []
        self.schema: dict[str, list[ColumnDescriptor]] = {}
        self.list_tables_error: Exception | None = None
        self.column_errors: dict[str, Exception] = {}
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    # -- test helpers -------------------------------------------------------

    def define_table(
        self,
        table_name: str,
        columns: list[ColumnDescriptor],
        unique: Sequence[str] = (),
    ) -> None:
        """Create a table from remote-typed descriptors."""
        columns = [
            ColumnDescriptor(c.name, c.data_type, c.nullable, c.default, position=i + 1)
            for i, c in enumerate(columns)
        ]
        self.schema[table_name] = columns
        definitions = []
        for c in columns:
            if c.name == "id":
                definitions.append("id INTEGER PRIMARY KEY AUTOINCREMENT")
            else:
                definitions.append(f"{c.name} {map_remote_type(c.data_type)}")
        for name in unique:
            definitions.append(f"UNIQUE ({name})")
        self.conn.execute(f"DROP TABLE IF EXISTS {table_name}")
        self.conn.execute(f"CREATE TABLE {table_name} ({', '.join(definitions)})")

    def rows(self, table_name: str) -> list[dict[str, Any]]:
        cursor = self.conn.execute(f"SELECT * FROM {table_name} ORDER BY id")
        return [dict(r) for r in cursor.fetchall()]

    def seed(self, table_name: str, rows: list[dict[str, Any]]) -> None:
        for row in rows:
            names = list(row)
            self.conn.execute(
                f"INSERT INTO {table_name} ({', '.join(names)}) VALUES ({', '.join('?' for _ in names)})",
                tuple(row[n] for n in names),
            )

    # -- RemoteStore --------------------------------------------------------

    async def connect(self) -> None:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if not self.available:
            raise RemoteUnavailable("connection refused")

    async def ping(self) -> bool:
        return self.available

    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        cursor = await self._run(sql, params)
        return [dict(r) for r in cursor.fetchall()] if cursor.description else []

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        cursor = await self._run(sql, params)
        return cursor.rowcount

    async def list_tables(self) -> list[str]:
        if self.list_tables_error is not None:
            raise self.list_tables_error
        if not self.available:
            raise RemoteUnavailable("connection refused")
        return sorted(self.schema)

    async def table_columns(self, table_name: str) -> list[ColumnDescriptor]:
        if table_name in self.column_errors:
            raise self.column_errors[table_name]
        return list(self.schema.get(table_name, []))

    async def close(self) -> None:
        self.closed = True

    async def _run(self, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
        self.calls.append((sql, tuple(params)))
        if self.gate is not None:
            await self.gate.wait()
        if not self.available:
            raise RemoteUnavailable("connection refused", sql=sql)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise RemoteUnavailable("connection reset", sql=sql)
        if self.reject_next > 0:
            self.reject_next -= 1
            raise RemoteQueryError("statement rejected", sql=sql)
        self._check_insert_types(sql, params)

        local_sql, local_params = rewrite_markers(sql, [_to_sqlite(p) for p in params], LOCAL_MARKER)
        try:
            return self.conn.execute(local_sql, local_params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateKeyError(f"duplicate key: {e}", sql=sql, code="23505") from e
            raise RemoteQueryError(str(e), sql=sql) from e
        except sqlite3.Error as e:
            raise RemoteQueryError(str(e), sql=sql) from e

    def _check_insert_types(self, sql: str, params: Sequence[Any]) -> None:
        match = _INSERT_RE.match(sql)
        if not match:
            return
        table_name, names = match.group(1), [n.strip().strip('"') for n in match.group(2).split(",")]
        types = {c.name: c.data_type for c in self.schema.get(table_name, [])}
        for name, value in zip(names, params):
            data_type = types.get(name, "")
            if isinstance(value, bool) or not isinstance(value, int):
                continue
            if data_type.startswith("timestamp") or data_type in ("boolean", "bool"):
                raise RemoteQueryError(
                    f'column "{name}" is of type {data_type} but expression is of type integer',
                    sql=sql,
                )


_INSERT_RE = re.compile(r'\s*INSERT INTO "?(\w+)"?\s*\(([^)]*)\)', re.IGNORECASE)


def _to_sqlite(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    return value
