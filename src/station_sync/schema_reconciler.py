"""
schema_reconciler.py - Keep local table shapes in line with the remote store.

Provides:
- Remote to local type mapping
- Remote default translation
- Per-table schema diff
- Additive DDL for new tables and columns
- Table rebuild for dropped or retyped columns, behind a file backup

Descriptors are read fresh from both stores on every pass. One table
failing never stops the others.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from station_sync.backup import BackupManager
from station_sync.config import REBUILD_TABLE_PREFIX, RESERVED_TABLE_NAMES, SCHEMA_CHANGES_TABLE
from station_sync.dialect import quote_identifier
from station_sync.errors import SchemaReconcileFailure, SyncError
from station_sync.stores.base import ColumnDescriptor, RemoteStore
from station_sync.stores.local import LocalStore

logger = logging.getLogger(__name__)

__all__ = [
    "ChangeType",
    "ColumnDescriptor",
    "ReconcileResult",
    "SchemaChange",
    "SchemaReconciler",
    "column_definition",
    "diff_schemas",
    "local_columns",
    "map_remote_type",
    "translate_default",
]


# Remote type name -> local storage type
TYPE_MAP: dict[str, str] = {
    "integer": "INTEGER",
    "int": "INTEGER",
    "int2": "INTEGER",
    "int4": "INTEGER",
    "int8": "INTEGER",
    "bigint": "INTEGER",
    "smallint": "INTEGER",
    "serial": "INTEGER",
    "bigserial": "INTEGER",
    "smallserial": "INTEGER",
    "numeric": "REAL",
    "decimal": "REAL",
    "real": "REAL",
    "float4": "REAL",
    "float8": "REAL",
    "double precision": "REAL",
    "character varying": "TEXT",
    "varchar": "TEXT",
    "character": "TEXT",
    "char": "TEXT",
    "bpchar": "TEXT",
    "text": "TEXT",
    # Timestamps are stored as Unix seconds
    "timestamp": "INTEGER",
    "timestamp without time zone": "INTEGER",
    "timestamp with time zone": "INTEGER",
    "timestamptz": "INTEGER",
    "date": "TEXT",
    "time": "TEXT",
    "time without time zone": "TEXT",
    "time with time zone": "TEXT",
    "timetz": "TEXT",
    "boolean": "INTEGER",
    "bool": "INTEGER",
    "json": "TEXT",
    "jsonb": "TEXT",
    "uuid": "TEXT",
}

DEFAULT_LOCAL_TYPE = "TEXT"

# Default used for NOT NULL columns added to tables that already hold rows
PERMISSIVE_DEFAULTS: dict[str, str] = {
    "INTEGER": "0",
    "REAL": "0.0",
    "TEXT": "''",
}

LOCAL_NOW_DEFAULT = "(strftime('%s','now'))"

_TYPE_ARGS_RE = re.compile(r"\s*\(.*?\)")
_CAST_RE = re.compile(r"::[\w\s\"]+(\[\])?$")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_QUOTED_RE = re.compile(r"^'.*'$", re.DOTALL)
_NOW_RE = re.compile(r"^(now\(\)|current_timestamp(\(\))?)$", re.IGNORECASE)


def map_remote_type(data_type: str) -> str:
    """Map a remote type name to INTEGER, REAL or TEXT."""
    normalized = _TYPE_ARGS_RE.sub("", data_type or "").strip().lower()
    return TYPE_MAP.get(normalized, DEFAULT_LOCAL_TYPE)


def normalize_local_type(declared: str) -> str:
    """
    Reduce a declared local type to the same three families.

    Tables created outside the reconciler may use names like
    VARCHAR(50) or DECIMAL; those are equivalent to what the
    mapping would produce and must not force a rebuild.
    """
    declared = (declared or "").strip()
    if declared.upper() in PERMISSIVE_DEFAULTS:
        return declared.upper()
    return map_remote_type(declared)


def translate_default(default: str | None) -> str | None:
    """
    Translate a remote column default into a local DEFAULT expression.

    Sequence defaults and other function calls have no local meaning
    and are dropped; the current-time functions become the local
    epoch-seconds expression.
    """
    if default is None:
        return None
    value = default.strip()
    if "nextval" in value.lower():
        return None
    value = _CAST_RE.sub("", value).strip()
    if value.startswith("(") and value.endswith(")"):
        value = value[1:-1].strip()
    if _NOW_RE.match(value):
        return LOCAL_NOW_DEFAULT
    if value.lower() in ("true", "false"):
        return "1" if value.lower() == "true" else "0"
    if _NUMBER_RE.match(value) or _QUOTED_RE.match(value):
        return value
    return None


def expected_local_type(column: ColumnDescriptor) -> str:
    """Local type a remote column is stored as; ids are always INTEGER keys."""
    if column.name == "id":
        return "INTEGER"
    return map_remote_type(column.data_type)


def column_definition(column: ColumnDescriptor, for_alter: bool = False) -> str:
    """
    Local column definition for a remote column.

    ``for_alter`` builds a definition usable by ALTER TABLE ADD COLUMN:
    no primary key, no expression defaults, and a permissive default
    for NOT NULL columns so existing rows stay valid.
    """
    local_type = map_remote_type(column.data_type)

    if column.name == "id" and not for_alter:
        return f"{quote_identifier('id')} INTEGER PRIMARY KEY AUTOINCREMENT"

    parts = [quote_identifier(column.name), local_type]
    default = translate_default(column.default)

    if for_alter:
        # ADD COLUMN rejects parenthesized expression defaults
        if default is not None and default.startswith("("):
            default = None
        if not column.nullable and default is None:
            default = PERMISSIVE_DEFAULTS[local_type]

    if not column.nullable and column.name != "id":
        parts.append("NOT NULL")
    if default is not None:
        parts.append(f"DEFAULT {default}")

    return " ".join(parts)


def local_columns(store: LocalStore, table_name: str) -> list[ColumnDescriptor]:
    """Column descriptors of a local table; empty when it does not exist."""
    return [
        ColumnDescriptor(
            name=row["name"],
            data_type=row["type"] or "",
            nullable=not row["notnull"] and not row["pk"],
            default=row["dflt_value"],
            position=row["cid"] + 1,
        )
        for row in store.table_info(table_name)
    ]


class ChangeType(Enum):
    """Kinds of local schema change."""
    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    MODIFY_COLUMN_TYPE = "modify_column_type"
    DROP_COLUMN = "drop_column"

    @property
    def destructive(self) -> bool:
        return self is not ChangeType.ADD_COLUMN


@dataclass(frozen=True)
class SchemaChange:
    """One difference between the remote and the local shape of a table."""
    change_type: ChangeType
    table_name: str
    column_name: str | None = None
    remote_type: str | None = None
    local_type: str | None = None


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""
    success: bool = True
    changes: int = 0
    tables: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "changes": self.changes,
            "tables": self.tables,
            "errors": list(self.errors),
        }


def diff_schemas(
    table_name: str,
    remote: list[ColumnDescriptor],
    local: list[ColumnDescriptor],
) -> list[SchemaChange]:
    """
    Compare the remote and local column lists of one table.

    An empty local list means the table does not exist locally.
    """
    if not local:
        return [SchemaChange(ChangeType.CREATE_TABLE, table_name)]

    changes: list[SchemaChange] = []
    local_by_name = {c.name: c for c in local}
    remote_names = {c.name for c in remote}

    for column in remote:
        mapped = expected_local_type(column)
        existing = local_by_name.get(column.name)
        if existing is None:
            changes.append(SchemaChange(
                ChangeType.ADD_COLUMN, table_name, column.name, remote_type=mapped
            ))
        elif normalize_local_type(existing.data_type) != mapped:
            changes.append(SchemaChange(
                ChangeType.MODIFY_COLUMN_TYPE,
                table_name,
                column.name,
                remote_type=mapped,
                local_type=existing.data_type,
            ))

    for column in local:
        if column.name not in remote_names:
            changes.append(SchemaChange(
                ChangeType.DROP_COLUMN, table_name, column.name, local_type=column.data_type
            ))

    return changes


class SchemaReconciler:
    """
    Evolves the local schema to match the remote one.

    Usage:
        reconciler = SchemaReconciler(local, remote)
        result = await reconciler.reconcile()
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        backups: BackupManager | None = None,
    ):
        self._local = local
        self._remote = remote
        self._backups = backups or BackupManager(local)

    async def reconcile(self) -> ReconcileResult:
        """Reconcile every remote business table."""
        result = ReconcileResult()

        try:
            tables = await self._remote.list_tables()
        except SyncError as e:
            logger.error(f"Schema reconciliation skipped, remote tables unavailable: {e}")
            result.success = False
            result.errors.append({"table_name": None, "error": str(e)})
            return result

        # One backup per pass, taken before the first destructive change
        backup_state: dict[str, Any] = {"path": None, "taken": False}

        for table_name in tables:
            if table_name in RESERVED_TABLE_NAMES:
                continue
            try:
                applied = await self._reconcile_table(table_name, backup_state)
                result.changes += applied
                result.tables += 1
            except SchemaReconcileFailure as e:
                logger.error(f"Failed to reconcile table {table_name}: {e}")
                result.success = False
                result.errors.append({"table_name": table_name, "error": str(e)})

        logger.info(
            f"Schema reconciliation finished: {result.changes} changes "
            f"across {result.tables} tables"
        )
        return result

    async def _reconcile_table(self, table_name: str, backup_state: dict[str, Any]) -> int:
        try:
            remote = await self._remote.table_columns(table_name)
        except SyncError as e:
            raise SchemaReconcileFailure(
                f"Could not read remote columns: {e}", table_name=table_name
            ) from e
        if not remote:
            return 0

        try:
            local = local_columns(self._local, table_name)
        except SyncError as e:
            raise SchemaReconcileFailure(
                f"Could not read local columns: {e}", table_name=table_name
            ) from e
        changes = diff_schemas(table_name, remote, local)
        if not changes:
            return 0

        try:
            backup_path = None
            if any(c.change_type.destructive for c in changes):
                backup_path = self._ensure_backup(backup_state)

            kinds = {c.change_type for c in changes}
            if ChangeType.CREATE_TABLE in kinds:
                self._create_table(table_name, remote, changes[0], backup_path)
            elif kinds & {ChangeType.DROP_COLUMN, ChangeType.MODIFY_COLUMN_TYPE}:
                # A rebuild takes the full remote shape, added columns included
                self._rebuild_table(table_name, remote, local, changes, backup_path)
            else:
                self._add_columns(table_name, remote, changes)
        except SyncError as e:
            raise SchemaReconcileFailure(
                f"Could not apply schema changes: {e}",
                table_name=table_name,
                change=", ".join(sorted(c.change_type.value for c in changes)),
            ) from e

        for change in changes:
            logger.info(
                f"Applied {change.change_type.value} on {table_name}"
                + (f".{change.column_name}" if change.column_name else "")
            )
        return len(changes)

    def _ensure_backup(self, backup_state: dict[str, Any]) -> str | None:
        if not backup_state["taken"]:
            path = self._backups.create()
            backup_state["path"] = str(path) if path else None
            backup_state["taken"] = True
        return backup_state["path"]

    def _create_table(
        self,
        table_name: str,
        remote: list[ColumnDescriptor],
        change: SchemaChange,
        backup_path: str | None,
    ) -> None:
        sql = self._create_table_sql(table_name, remote)

        def _apply(conn) -> None:
            conn.execute(sql)
            self._record(conn, change, sql, backup_path)

        self._local.transaction(_apply)

    def _add_columns(
        self,
        table_name: str,
        remote: list[ColumnDescriptor],
        changes: list[SchemaChange],
    ) -> None:
        remote_by_name = {c.name: c for c in remote}

        def _apply(conn) -> None:
            for change in changes:
                column = remote_by_name[change.column_name]
                sql = (
                    f"ALTER TABLE {quote_identifier(table_name)} "
                    f"ADD COLUMN {column_definition(column, for_alter=True)}"
                )
                conn.execute(sql)
                self._record(conn, change, sql, None)

        self._local.transaction(_apply)

    def _rebuild_table(
        self,
        table_name: str,
        remote: list[ColumnDescriptor],
        local: list[ColumnDescriptor],
        changes: list[SchemaChange],
        backup_path: str | None,
    ) -> None:
        shadow = f"{REBUILD_TABLE_PREFIX}{table_name}"
        local_names = {c.name for c in local}
        common = [c for c in remote if c.name in local_names]
        column_list = ", ".join(quote_identifier(c.name) for c in common)
        select_list = ", ".join(self._copy_expression(c) for c in common)

        statements = [
            f"DROP TABLE IF EXISTS {quote_identifier(shadow)}",
            self._create_table_sql(shadow, remote, for_rebuild=True),
        ]
        if common:
            statements.append(
                f"INSERT INTO {quote_identifier(shadow)} ({column_list}) "
                f"SELECT {select_list} FROM {quote_identifier(table_name)}"
            )
        statements += [
            f"DROP TABLE {quote_identifier(table_name)}",
            f"ALTER TABLE {quote_identifier(shadow)} RENAME TO {quote_identifier(table_name)}",
        ]
        script = ";\n".join(statements)

        def _apply(conn) -> None:
            for sql in statements:
                conn.execute(sql)
            for change in changes:
                self._record(conn, change, script, backup_path)

        # foreign_keys cannot be toggled inside a transaction
        self._local.execute("PRAGMA foreign_keys = OFF")
        try:
            self._local.transaction(_apply)
        finally:
            self._local.execute("PRAGMA foreign_keys = ON")
        logger.warning(f"Rebuilt table {table_name} with {len(remote)} columns")

    @staticmethod
    def _copy_expression(column: ColumnDescriptor) -> str:
        name = quote_identifier(column.name)
        if column.nullable or column.name == "id":
            return name
        return f"COALESCE({name}, {PERMISSIVE_DEFAULTS[map_remote_type(column.data_type)]})"

    @staticmethod
    def _create_table_sql(
        table_name: str, columns: list[ColumnDescriptor], for_rebuild: bool = False
    ) -> str:
        definitions = []
        for column in columns:
            definition = column_definition(column)
            if for_rebuild and column.name != "id" and not column.nullable and "DEFAULT" not in definition:
                # Copied rows may hold NULL in a column that is now NOT NULL
                definition += f" DEFAULT {PERMISSIVE_DEFAULTS[map_remote_type(column.data_type)]}"
            definitions.append(definition)
        body = ",\n    ".join(definitions)
        return f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} (\n    {body}\n)"

    @staticmethod
    def _record(conn, change: SchemaChange, sql: str, backup_path: str | None) -> None:
        conn.execute(
            f"""
            INSERT INTO {SCHEMA_CHANGES_TABLE}
            (table_name, change_type, column_name, sql, backup_path, applied_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                change.table_name,
                change.change_type.value,
                change.column_name,
                sql,
                backup_path,
                int(time.time() * 1000),
            ),
        )
