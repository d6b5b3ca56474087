"""
executor.py - Dual-backend query routing.

Every statement is tried against the remote store first while the
connection state is online. Any remote failure flips the state offline
and the statement is re-run on the local store after dialect
translation. Writes that land locally while offline are journaled for
later replay.

Callers never see remote failures: the only error raised from here is
StorageFailure, when the local store fails as well.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Sequence

from station_sync.config import RETRY_MAX_ATTEMPTS
from station_sync.dialect import append_returning, convert_remote_to_local
from station_sync.errors import StorageFailure, ValidationError
from station_sync.journal import MutationQueue
from station_sync.metrics import SyncLogger, queries_total, remote_latency_seconds
from station_sync.retry import with_retry
from station_sync.state import ConnectionState
from station_sync.stores.base import RemoteStore
from station_sync.stores.local import LocalStore

logger = logging.getLogger(__name__)


class DualBackendExecutor:
    """
    Routes statements between the remote and the local store.

    Owns the ConnectionState; the monitor and the replayer receive
    it by reference and go through its accessors.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        queue: MutationQueue,
        state: ConnectionState | None = None,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._local = local
        self._remote = remote
        self._queue = queue
        self._state = state or ConnectionState()
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._log = SyncLogger()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def local(self) -> LocalStore:
        return self._local

    @property
    def remote(self) -> RemoteStore:
        return self._remote

    @property
    def queue(self) -> MutationQueue:
        return self._queue

    async def call_remote(self, attempt: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run a remote call under the retry policy.

        On final failure the state is marked offline before the
        error propagates.
        """
        start = time.perf_counter()
        try:
            return await with_retry(attempt, max_attempts=self._max_attempts, sleep=self._sleep)
        except Exception as e:
            self._state.mark_offline(f"remote call failed: {e}")
            raise
        finally:
            remote_latency_seconds.observe(time.perf_counter() - start)

    async def execute_query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Read-only statement; rows as dicts."""
        if self._state.online:
            try:
                rows = await self.call_remote(lambda: self._remote.fetch(sql, params))
                queries_total.inc(backend="remote", kind="query")
                return rows
            except Exception as e:
                self._log.remote_fallback("query", sql, str(e))

        statement = self._translate(sql, params)
        rows = self._local.query(statement.sql, statement.params)
        queries_total.inc(backend="local", kind="query")
        return rows

    async def execute_update(
        self, sql: str, params: Sequence[Any] = (), table_hint: str | None = None
    ) -> int:
        """Mutating statement without a generated key; affected row count."""
        return await self._execute_statement(sql, params, table_hint, "UPDATE")

    async def execute_delete(
        self, sql: str, params: Sequence[Any] = (), table_hint: str | None = None
    ) -> int:
        """Like execute_update, but journaled as a DELETE."""
        return await self._execute_statement(sql, params, table_hint, "DELETE")

    async def execute_insert(
        self, sql: str, params: Sequence[Any] = (), table_hint: str | None = None
    ) -> int | str:
        """
        INSERT returning the generated key.

        Offline inserts are journaled by (table, id) so that replay
        re-reads the full row, including any locally applied defaults.
        """
        if self._state.online:
            remote_sql = append_returning(sql)
            try:
                rows = await self.call_remote(lambda: self._remote.fetch(remote_sql, params))
                queries_total.inc(backend="remote", kind="insert")
                if rows:
                    return next(iter(rows[0].values()))
                return 0
            except Exception as e:
                self._log.remote_fallback("insert", sql, str(e))

        statement = self._translate(sql, params)

        def _write(_conn) -> int:
            row_id = self._local.insert(statement.sql, statement.params)
            if not self._state.online:
                entry_id = self._queue.enqueue_insert(table_hint, row_id)
                self._log.mutation_journaled(entry_id, "INSERT", table_hint)
            return row_id

        # Local row and journal entry commit together
        row_id = self._local.transaction(_write)
        queries_total.inc(backend="local", kind="insert")
        return row_id

    async def _execute_statement(
        self, sql: str, params: Sequence[Any], table_hint: str | None, operation: str
    ) -> int:
        if self._state.online:
            try:
                count = await self.call_remote(lambda: self._remote.execute(sql, params))
                queries_total.inc(backend="remote", kind=operation.lower())
                return count
            except Exception as e:
                self._log.remote_fallback(operation.lower(), sql, str(e))

        statement = self._translate(sql, params)

        def _write(_conn) -> int:
            count = self._local.execute(statement.sql, statement.params)
            if not self._state.online:
                if operation == "DELETE":
                    entry_id = self._queue.enqueue_delete(sql, params, table_hint)
                else:
                    entry_id = self._queue.enqueue_update(sql, params, table_hint)
                self._log.mutation_journaled(entry_id, operation, table_hint)
            return count

        count = self._local.transaction(_write)
        queries_total.inc(backend="local", kind=operation.lower())
        return count

    @staticmethod
    def _translate(sql: str, params: Sequence[Any]):
        try:
            return convert_remote_to_local(sql, params)
        except ValidationError as e:
            raise StorageFailure(
                f"Statement cannot run on the local store: {e.message}",
                operation="translate",
                sql=sql,
            ) from e
