"""
errors.py - Domain-specific exceptions for station_sync.

All exceptions inherit from SyncError for unified handling.
Remote failures are recovered locally by the executor; only
StorageFailure is surfaced to callers of the query interface.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for all station_sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


def _truncate_sql(sql: str | None) -> str | None:
    if sql is None:
        return None
    return sql[:200] + "..." if len(sql) > 200 else sql


class RemoteError(SyncError):
    """
    Raised when a call against the remote store fails.

    The executor treats every RemoteError as "remote unavailable"
    and falls back to the local store.
    """

    def __init__(
        self,
        message: str,
        sql: str | None = None,
        code: str | None = None,
    ) -> None:
        context = {}
        if code is not None:
            context["code"] = code
        if sql is not None:
            context["sql"] = _truncate_sql(sql)
        super().__init__(message, context=context)
        self.sql = sql
        self.code = code


class RemoteUnavailable(RemoteError):
    """
    Connection refused, timeout or transient network error.

    Flips the connection state offline as soon as it is observed.
    """


class RemoteQueryError(RemoteError):
    """The remote store was reachable but rejected the statement."""


class DuplicateKeyError(RemoteQueryError):
    """
    Unique constraint violation on the remote store.

    Not an error during replay: an INSERT that hits an existing key
    is counted as synced.
    """


class StorageFailure(SyncError):
    """
    Raised when the local store itself fails.

    This wraps SQLite errors with additional context about
    what operation was being attempted. Fatal for the calling operation.
    """

    def __init__(
        self, message: str, operation: str | None = None, sql: str | None = None
    ) -> None:
        context = {}
        if operation is not None:
            context["operation"] = operation
        if sql is not None:
            context["sql"] = _truncate_sql(sql)
        super().__init__(message, context=context)
        self.operation = operation
        self.sql = sql


class SchemaReconcileFailure(SyncError):
    """
    Raised when reconciling a single table fails.

    Logged and counted by the reconciler; never aborts the run.
    """

    def __init__(self, message: str, table_name: str, change: str | None = None) -> None:
        context = {"table_name": table_name}
        if change is not None:
            context["change"] = change
        super().__init__(message, context=context)
        self.table_name = table_name
        self.change = change


class SyncEntryFailure(SyncError):
    """Raised when one queued mutation cannot be replayed."""

    def __init__(
        self,
        message: str,
        entry_id: int | None = None,
        operation: str | None = None,
        table_name: str | None = None,
    ) -> None:
        context = {}
        if entry_id is not None:
            context["entry_id"] = entry_id
        if operation is not None:
            context["operation"] = operation
        if table_name is not None:
            context["table_name"] = table_name
        super().__init__(message, context=context)
        self.entry_id = entry_id
        self.operation = operation
        self.table_name = table_name


class ValidationError(SyncError):
    """
    Raised when input validation fails.

    This includes malformed queue payloads, parameter markers
    without a bound value, and values that cannot be serialized.
    """

    def __init__(
        self, message: str, field: str | None = None, value: Any = None
    ) -> None:
        context = {}
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = repr(value)[:100]
        super().__init__(message, context=context)
        self.field = field
        self.value = value
