"""
journal.py - The mutation queue.

Writes made while the remote store is unreachable are appended to the
local ``sync_queue`` table and replayed later in insertion order.

Each entry's payload is one of three typed mutations:
- InsertMutation: re-read the row by id at replay time
- UpdateMutation / DeleteMutation: re-run the original statement

Payloads are stored as canonical MessagePack.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Sequence, Union

from station_sync.config import (
    FAILED_RETRY_THRESHOLD,
    QUEUE_RETENTION,
    UNKNOWN_TABLE,
)
from station_sync.errors import ValidationError
from station_sync.stores.local import LocalStore
from station_sync.utils.msgpack_codec import pack_dict, unpack_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertMutation:
    """A row inserted locally; replayed by re-reading it."""
    table_name: str
    row_id: int | str

    operation = "INSERT"

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.row_id}


@dataclass(frozen=True)
class UpdateMutation:
    """An UPDATE statement in the remote dialect, replayed verbatim."""
    sql: str
    params: tuple[Any, ...] = ()
    table_name: str = UNKNOWN_TABLE

    operation = "UPDATE"

    def to_payload(self) -> dict[str, Any]:
        return {"sql": self.sql, "params": list(self.params)}


@dataclass(frozen=True)
class DeleteMutation:
    """A DELETE statement in the remote dialect, replayed verbatim."""
    sql: str
    params: tuple[Any, ...] = ()
    table_name: str = UNKNOWN_TABLE

    operation = "DELETE"

    def to_payload(self) -> dict[str, Any]:
        return {"sql": self.sql, "params": list(self.params)}


Mutation = Union[InsertMutation, UpdateMutation, DeleteMutation]


def mutation_from_row(table_name: str, operation: str, payload: bytes) -> Mutation:
    """
    Decode a sync_queue row into its typed mutation.

    Raises:
        ValidationError: If the operation is unknown or the payload malformed
    """
    data = unpack_dict(payload)
    if operation == "INSERT":
        if "id" not in data:
            raise ValidationError("INSERT payload has no row id", field="payload", value=data)
        return InsertMutation(table_name=table_name, row_id=data["id"])
    if operation in ("UPDATE", "DELETE"):
        if "sql" not in data:
            raise ValidationError(f"{operation} payload has no statement", field="payload", value=data)
        cls = UpdateMutation if operation == "UPDATE" else DeleteMutation
        return cls(sql=data["sql"], params=tuple(data.get("params") or ()), table_name=table_name)
    raise ValidationError(f"Unknown operation: {operation}", field="operation", value=operation)


@dataclass(frozen=True)
class QueueEntry:
    """One row of sync_queue."""
    id: int
    mutation: Mutation
    created_at: int
    synced: bool
    error: str | None
    retry_count: int

    @property
    def table_name(self) -> str:
        return self.mutation.table_name

    @property
    def operation(self) -> str:
        return self.mutation.operation

    @property
    def is_failed(self) -> bool:
        return not self.synced and self.retry_count >= FAILED_RETRY_THRESHOLD


@dataclass(frozen=True)
class BrokenEntry:
    """An unsynced sync_queue row whose payload cannot be decoded."""
    id: int
    table_name: str
    operation: str
    created_at: int
    retry_count: int
    error: str

    @property
    def is_failed(self) -> bool:
        return self.retry_count >= FAILED_RETRY_THRESHOLD


def _now_ms() -> int:
    return int(time.time() * 1000)


class MutationQueue:
    """
    Durable FIFO of offline writes, stored in the local database.

    An entry moves from synced=0 to synced=1 exactly once. Failed entries
    are never dropped; they keep their retry_count and last error.
    """

    def __init__(self, store: LocalStore, retention: int = QUEUE_RETENTION):
        self._store = store
        self._retention = retention

    def enqueue(self, mutation: Mutation) -> int:
        """Append a mutation; returns the new entry id."""
        payload = pack_dict(mutation.to_payload())
        entry_id = self._store.insert(
            """
            INSERT INTO sync_queue (table_name, operation, payload, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (mutation.table_name, mutation.operation, payload, _now_ms()),
        )
        logger.debug(f"Journaled {mutation.operation} on {mutation.table_name} as entry {entry_id}")
        return entry_id

    def enqueue_insert(self, table_name: str | None, row_id: int | str) -> int:
        return self.enqueue(InsertMutation(table_name or UNKNOWN_TABLE, row_id))

    def enqueue_update(self, sql: str, params: Sequence[Any] = (), table_name: str | None = None) -> int:
        return self.enqueue(UpdateMutation(sql, tuple(params), table_name or UNKNOWN_TABLE))

    def enqueue_delete(self, sql: str, params: Sequence[Any] = (), table_name: str | None = None) -> int:
        return self.enqueue(DeleteMutation(sql, tuple(params), table_name or UNKNOWN_TABLE))

    def pending(self) -> list[QueueEntry]:
        """Unsynced entries in replay order. Undecodable rows are left out."""
        entries, _ = self.scan_pending()
        return entries

    def scan_pending(self) -> tuple[list[QueueEntry], list[BrokenEntry]]:
        """
        Read every unsynced row without modifying the queue.

        Returns:
            Decoded entries in replay order, and the rows whose payload
            could not be decoded
        """
        rows = self._store.query(
            """
            SELECT id, table_name, operation, payload, created_at, synced, error, retry_count
            FROM sync_queue
            WHERE synced = 0
            ORDER BY created_at ASC, id ASC
            """
        )
        entries = []
        broken = []
        for row in rows:
            try:
                entries.append(self._entry_from_row(row))
            except ValidationError as e:
                logger.warning(f"Queue entry {row['id']} cannot be decoded: {e}")
                broken.append(BrokenEntry(
                    id=row["id"],
                    table_name=row["table_name"],
                    operation=row["operation"],
                    created_at=row["created_at"],
                    retry_count=row["retry_count"],
                    error=str(e),
                ))
        return entries, broken

    def pending_tables(self) -> set[str]:
        """Names of tables that still have unsynced entries."""
        rows = self._store.query("SELECT DISTINCT table_name FROM sync_queue WHERE synced = 0")
        return {row["table_name"] for row in rows}

    def get(self, entry_id: int) -> QueueEntry | None:
        row = self._store.query_one(
            """
            SELECT id, table_name, operation, payload, created_at, synced, error, retry_count
            FROM sync_queue WHERE id = ?
            """,
            (entry_id,),
        )
        return self._entry_from_row(row) if row else None

    def mark_synced(self, entry_id: int) -> None:
        self._store.execute(
            "UPDATE sync_queue SET synced = 1, error = NULL WHERE id = ? AND synced = 0",
            (entry_id,),
        )

    def mark_failed(self, entry_id: int, error: str) -> None:
        self._store.execute(
            """
            UPDATE sync_queue
            SET retry_count = retry_count + 1, error = ?
            WHERE id = ? AND synced = 0
            """,
            (error, entry_id),
        )

    def reset_failed(self) -> int:
        """Give entries reported as failed a fresh retry budget."""
        return self._store.execute(
            """
            UPDATE sync_queue
            SET retry_count = 0, error = NULL
            WHERE synced = 0 AND retry_count >= ?
            """,
            (FAILED_RETRY_THRESHOLD,),
        )

    def prune(self, keep: int | None = None) -> int:
        """Delete synced entries beyond the newest ``keep``, oldest first."""
        keep = self._retention if keep is None else keep
        removed = self._store.execute(
            """
            DELETE FROM sync_queue
            WHERE synced = 1
              AND id NOT IN (
                  SELECT id FROM sync_queue
                  WHERE synced = 1
                  ORDER BY created_at DESC, id DESC
                  LIMIT ?
              )
            """,
            (keep,),
        )
        if removed:
            logger.info(f"Pruned {removed} synced queue entries")
        return removed

    def pending_count(self) -> int:
        row = self._store.query_one("SELECT COUNT(*) AS count FROM sync_queue WHERE synced = 0")
        return row["count"]

    def failed_count(self) -> int:
        row = self._store.query_one(
            "SELECT COUNT(*) AS count FROM sync_queue WHERE synced = 0 AND retry_count >= ?",
            (FAILED_RETRY_THRESHOLD,),
        )
        return row["count"]

    def synced_count(self) -> int:
        row = self._store.query_one("SELECT COUNT(*) AS count FROM sync_queue WHERE synced = 1")
        return row["count"]

    @staticmethod
    def _entry_from_row(row: dict[str, Any]) -> QueueEntry:
        return QueueEntry(
            id=row["id"],
            mutation=mutation_from_row(row["table_name"], row["operation"], row["payload"]),
            created_at=row["created_at"],
            synced=bool(row["synced"]),
            error=row["error"],
            retry_count=row["retry_count"],
        )
