"""
schema.py - Sync core table schema definitions.

Only the tables owned by the sync core live here. Business tables
are created and evolved by the schema reconciler.
"""

from typing import Final

# sync_queue table - the mutation journal
# Every write made while offline becomes a row here
SYNC_QUEUE_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,

    -- What changed
    table_name TEXT NOT NULL,
    operation TEXT NOT NULL CHECK(operation IN ('INSERT', 'UPDATE', 'DELETE')),

    -- Canonical MessagePack of the typed mutation
    payload BLOB NOT NULL,

    -- Enqueue time in milliseconds, replay order
    created_at INTEGER NOT NULL,

    -- Replay tracking
    synced INTEGER NOT NULL DEFAULT 0 CHECK(synced IN (0, 1)),
    error TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0
);
"""

SYNC_QUEUE_INDICES: Final[str] = """
CREATE INDEX IF NOT EXISTS idx_sync_queue_synced ON sync_queue(synced);
CREATE INDEX IF NOT EXISTS idx_sync_queue_table ON sync_queue(table_name);
CREATE INDEX IF NOT EXISTS idx_sync_queue_order ON sync_queue(created_at, id);
"""

# sync_schema_changes table - history of applied reconciliation changes
SYNC_SCHEMA_CHANGES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS sync_schema_changes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    change_type TEXT NOT NULL,
    column_name TEXT,
    sql TEXT,
    backup_path TEXT,
    applied_at INTEGER NOT NULL
);
"""

ALL_SCHEMA_STATEMENTS: Final[tuple[str, ...]] = (
    SYNC_QUEUE_SCHEMA,
    SYNC_QUEUE_INDICES,
    SYNC_SCHEMA_CHANGES_SCHEMA,
)
