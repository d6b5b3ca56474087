"""
postgres.py - PostgreSQL remote store.

psycopg2 is a blocking driver, so every call runs in the event loop's
default executor; callers see plain coroutines and the loop is never
blocked on the network.
"""

import asyncio
import logging
from typing import Any, Callable, Sequence, TypeVar

import psycopg2
import psycopg2.extras
import psycopg2.pool

from station_sync.config import RemoteConfig
from station_sync.dialect import to_pyformat
from station_sync.errors import (
    DuplicateKeyError,
    RemoteError,
    RemoteQueryError,
    RemoteUnavailable,
)
from station_sync.stores.base import ColumnDescriptor, RemoteStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"

LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = 'public'
      AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

TABLE_COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable, column_default, ordinal_position
    FROM information_schema.columns
    WHERE table_schema = 'public'
      AND table_name = $1
    ORDER BY ordinal_position
"""


def map_driver_error(error: Exception, sql: str | None = None) -> RemoteError:
    """Classify a psycopg2 error into the remote error taxonomy."""
    if isinstance(error, (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.pool.PoolError)):
        return RemoteUnavailable(f"Remote store unavailable: {error}", sql=sql)
    code = getattr(error, "pgcode", None)
    if code == UNIQUE_VIOLATION:
        return DuplicateKeyError(f"Duplicate key: {error}", sql=sql, code=code)
    return RemoteQueryError(f"Remote statement failed: {error}", sql=sql, code=code)


class PostgresRemoteStore(RemoteStore):
    """
    Remote store backed by a psycopg2 ThreadedConnectionPool.

    Each call checks a connection out of the pool, runs one statement
    in its own transaction and returns the connection. Connections that
    broke during the call are discarded instead of returned.
    """

    def __init__(self, config: RemoteConfig):
        self._config = config
        self._pool: psycopg2.pool.ThreadedConnectionPool | None = None

    @property
    def name(self) -> str:
        return "PostgreSQL"

    async def connect(self) -> None:
        if self._pool is None:
            try:
                self._pool = await self._run_in_executor(self._create_pool)
            except (psycopg2.Error, psycopg2.pool.PoolError) as e:
                raise map_driver_error(e) from e
            logger.info("Remote store pool created")
        if not await self.ping():
            raise RemoteUnavailable("Remote store did not answer the connection probe")

    def _create_pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        cfg = self._config
        return psycopg2.pool.ThreadedConnectionPool(
            cfg.min_pool_size,
            cfg.max_pool_size,
            dsn=cfg.dsn,
            connect_timeout=cfg.connect_timeout,
            application_name=cfg.application_name,
            options=f"-c statement_timeout={cfg.statement_timeout_ms}",
        )

    async def ping(self) -> bool:
        if self._pool is None:
            return False

        def _acquire_release() -> None:
            conn = self._pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                conn.rollback()
            finally:
                self._pool.putconn(conn, close=bool(conn.closed))

        try:
            await self._run_in_executor(_acquire_release)
            return True
        except (psycopg2.Error, psycopg2.pool.PoolError) as e:
            logger.debug(f"Remote ping failed: {e}")
            return False

    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        rows, _ = await self._execute(sql, params)
        return rows

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        _, rowcount = await self._execute(sql, params)
        return rowcount

    async def list_tables(self) -> list[str]:
        rows = await self.fetch(LIST_TABLES_SQL)
        return [row["table_name"] for row in rows]

    async def table_columns(self, table_name: str) -> list[ColumnDescriptor]:
        rows = await self.fetch(TABLE_COLUMNS_SQL, (table_name,))
        return [
            ColumnDescriptor(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default=row["column_default"],
                position=row["ordinal_position"],
            )
            for row in rows
        ]

    async def close(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            await self._run_in_executor(pool.closeall)
            logger.info("Remote store pool closed")

    async def _execute(self, sql: str, params: Sequence[Any]) -> tuple[list[dict[str, Any]], int]:
        if self._pool is None:
            raise RemoteUnavailable("Remote store is not connected", sql=sql)

        pg_sql, pg_params = to_pyformat(sql, params)

        def _work() -> tuple[list[dict[str, Any]], int]:
            conn = self._pool.getconn()
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute(pg_sql, pg_params)
                    rows = [dict(r) for r in cur.fetchall()] if cur.description else []
                    rowcount = cur.rowcount
                conn.commit()
                return rows, rowcount
            except psycopg2.Error:
                if not conn.closed:
                    conn.rollback()
                raise
            finally:
                self._pool.putconn(conn, close=bool(conn.closed))

        try:
            return await self._run_in_executor(_work)
        except (psycopg2.Error, psycopg2.pool.PoolError) as e:
            raise map_driver_error(e, sql=sql) from e

    async def _run_in_executor(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)
