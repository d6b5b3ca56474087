"""
replayer.py - Drain the mutation queue into the remote store.

Entries are replayed strictly in insertion order. A failing entry is
recorded and skipped; it never blocks the entries behind it and it is
never dropped.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from station_sync.config import QUEUE_RETENTION, RETRY_MAX_ATTEMPTS, UNKNOWN_TABLE
from station_sync.dialect import build_insert, quote_identifier
from station_sync.errors import (
    DuplicateKeyError,
    RemoteUnavailable,
    SyncEntryFailure,
    ValidationError,
)
from station_sync.journal import (
    BrokenEntry,
    DeleteMutation,
    InsertMutation,
    MutationQueue,
    QueueEntry,
    UpdateMutation,
)
from station_sync.metrics import SyncLogger, pending_mutations
from station_sync.retry import with_retry
from station_sync.snapshot import to_remote_value
from station_sync.state import ConnectionState
from station_sync.stores.base import RemoteStore
from station_sync.stores.local import LocalStore

logger = logging.getLogger(__name__)

SYNC_IN_PROGRESS = "Sync already in progress"
NO_CONNECTION = "No connection to remote store"


@dataclass
class SyncReport:
    """Result of one sync pass."""
    success: bool
    synced: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        result = {
            "success": self.success,
            "synced": self.synced,
            "failed": self.failed,
            "errors": list(self.errors),
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the queue and the replayer."""
    pending: int
    failed: int
    is_syncing: bool
    last_sync_time: float | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "pending": self.pending,
            "failed": self.failed,
            "is_syncing": self.is_syncing,
            "last_sync_time": self.last_sync_time,
        }


class SyncReplayer:
    """
    Replays journaled mutations against the remote store.

    Only one pass runs at a time; a concurrent call returns
    immediately with ``success=False``.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        queue: MutationQueue,
        state: ConnectionState,
        retention: int = QUEUE_RETENTION,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._local = local
        self._remote = remote
        self._queue = queue
        self._state = state
        self._retention = retention
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._is_syncing = False
        self._last_sync_time: float | None = None
        self._column_types: dict[str, dict[str, str]] = {}
        self._log = SyncLogger()

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def last_sync_time(self) -> float | None:
        return self._last_sync_time

    def record_sync_time(self) -> None:
        self._last_sync_time = time.time()

    async def sync_all(self) -> SyncReport:
        """Replay every unsynced entry, oldest first."""
        if self._is_syncing:
            return SyncReport(success=False, error=SYNC_IN_PROGRESS)
        if not self._state.online:
            return SyncReport(success=False, error=NO_CONNECTION)

        self._is_syncing = True
        start = time.perf_counter()
        try:
            entries, broken = self._queue.scan_pending()
            report = SyncReport(success=True)
            if not entries and not broken:
                logger.debug("Sync queue is empty")
                return report

            logger.info(f"Replaying {len(entries)} queued mutations")
            self._column_types = {}
            for bad in broken:
                self._record_failure(bad, report, bad.error)
            for entry in entries:
                await self._replay_entry(entry, report)

            self._queue.prune(self._retention)
            self.record_sync_time()
            pending_mutations.set(self._queue.pending_count())
            self._log.sync_completed(
                report.synced, report.failed, (time.perf_counter() - start) * 1000
            )
            return report
        finally:
            self._is_syncing = False

    async def retry_failed(self) -> SyncReport:
        """Give failed entries a fresh retry budget, then run a pass."""
        reset = self._queue.reset_failed()
        logger.info(f"Reset {reset} failed queue entries")
        return await self.sync_all()

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            pending=self._queue.pending_count(),
            failed=self._queue.failed_count(),
            is_syncing=self._is_syncing,
            last_sync_time=self._last_sync_time,
        )

    async def _replay_entry(self, entry: QueueEntry, report: SyncReport) -> None:
        try:
            duplicate = await self._dispatch(entry)
        except Exception as e:
            message = str(e)
            if isinstance(e, RemoteUnavailable):
                self._state.mark_offline(f"replay failed: {message}")
            self._record_failure(entry, report, message)
            return

        self._queue.mark_synced(entry.id)
        report.synced += 1
        self._log.entry_replayed(entry.id, entry.operation, duplicate=duplicate)

    def _record_failure(self, entry: QueueEntry | BrokenEntry, report: SyncReport, message: str) -> None:
        self._queue.mark_failed(entry.id, message)
        report.failed += 1
        report.errors.append({
            "entry_id": entry.id,
            "table_name": entry.table_name,
            "operation": entry.operation,
            "error": message,
        })
        self._log.entry_failed(entry.id, entry.operation, message, entry.retry_count + 1)

    async def _dispatch(self, entry: QueueEntry) -> bool:
        """Replay one entry; returns True when the remote already had it."""
        mutation = entry.mutation
        if isinstance(mutation, InsertMutation):
            return await self._replay_insert(entry.id, mutation)
        if isinstance(mutation, (UpdateMutation, DeleteMutation)):
            await self._call(lambda: self._remote.execute(mutation.sql, mutation.params))
            return False
        raise ValidationError(
            f"Unsupported mutation type: {type(mutation).__name__}",
            field="mutation",
            value=mutation,
        )

    async def _replay_insert(self, entry_id: int, mutation: InsertMutation) -> bool:
        if mutation.table_name == UNKNOWN_TABLE:
            raise SyncEntryFailure(
                "INSERT entry has no target table",
                entry_id=entry_id,
                operation="INSERT",
                table_name=mutation.table_name,
            )

        row = self._local.query_one(
            f"SELECT * FROM {quote_identifier(mutation.table_name)} WHERE id = ?",
            (mutation.row_id,),
        )
        if row is None:
            # Deleted locally after it was journaled; nothing left to send
            logger.warning(
                f"Row {mutation.table_name}#{mutation.row_id} for entry {entry_id} "
                "no longer exists locally"
            )
            return False

        types = await self._remote_column_types(mutation.table_name)
        columns = [name for name in row if name != "id"]
        sql = build_insert(mutation.table_name, columns)
        values = [to_remote_value(row[name], types.get(name)) for name in columns]
        try:
            await self._call(lambda: self._remote.execute(sql, values))
        except DuplicateKeyError:
            logger.info(f"Entry {entry_id} already present remotely")
            return True
        return False

    async def _remote_column_types(self, table_name: str) -> dict[str, str]:
        """Remote data type per column, fetched once per table per pass."""
        if table_name not in self._column_types:
            columns = await self._call(lambda: self._remote.table_columns(table_name))
            self._column_types[table_name] = {c.name: c.data_type for c in columns}
        return self._column_types[table_name]

    async def _call(self, attempt: Callable[[], Awaitable[Any]]) -> Any:
        return await with_retry(attempt, max_attempts=self._max_attempts, sleep=self._sleep)
