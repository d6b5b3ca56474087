"""
config.py - Configuration for station_sync.

Fixed behaviour is defined as module-level constants. Deployment
settings (DSN, file locations, intervals) live in dataclasses that
can be loaded from STATION_SYNC_* environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Final

# Remote call retry policy: attempts, with 2^(k-2) seconds before attempt k
RETRY_MAX_ATTEMPTS: Final[int] = 3

# Startup connect-with-timeout probe (seconds)
CONNECT_TIMEOUT: Final[float] = 5.0

# Connection monitor polling interval (seconds)
POLL_INTERVAL: Final[float] = 10.0

# Synced queue entries kept after each sync pass
QUEUE_RETENTION: Final[int] = 1000

# Database backups kept before destructive schema changes
BACKUP_RETENTION: Final[int] = 5

# Entries with at least this many failed replays are reported as failed
FAILED_RETRY_THRESHOLD: Final[int] = 3

# Journal table name when a mutation's target table is not known
UNKNOWN_TABLE: Final[str] = "unknown"

# Supported journal operation types
OPERATION_TYPES: Final[frozenset[str]] = frozenset({"INSERT", "UPDATE", "DELETE"})

SYNC_QUEUE_TABLE: Final[str] = "sync_queue"
SCHEMA_CHANGES_TABLE: Final[str] = "sync_schema_changes"

# Tables owned by the sync core; never reconciled or snapshotted
RESERVED_TABLE_NAMES: Final[frozenset[str]] = frozenset(
    {
        SYNC_QUEUE_TABLE,
        SCHEMA_CHANGES_TABLE,
        "sqlite_sequence",
    }
)

# Temporary table used while a local table is rebuilt
REBUILD_TABLE_PREFIX: Final[str] = "_station_sync_rebuild_"

# SQLite PRAGMA settings for the local store
SQLITE_PRAGMAS: Final[dict[str, str]] = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "foreign_keys": "ON",
    "busy_timeout": "5000",
}

# Backup file naming: <db file>.backup.<epoch ms>
BACKUP_SUFFIX: Final[str] = ".backup."

ENV_PREFIX: Final[str] = "STATION_SYNC_"


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


@dataclass
class RemoteConfig:
    """Connection settings for the remote PostgreSQL store."""
    dsn: str
    min_pool_size: int = 1
    max_pool_size: int = 20
    connect_timeout: int = 30
    statement_timeout_ms: int = 30_000
    application_name: str = "station_sync"

    @classmethod
    def from_env(cls) -> "RemoteConfig":
        dsn = _env("DSN")
        if not dsn:
            raise ValueError(f"{ENV_PREFIX}DSN is not set")
        return cls(
            dsn=dsn,
            max_pool_size=int(_env("POOL_SIZE", "20")),
            connect_timeout=int(_env("REMOTE_CONNECT_TIMEOUT", "30")),
            statement_timeout_ms=int(_env("STATEMENT_TIMEOUT_MS", "30000")),
        )


@dataclass
class SyncConfig:
    """Settings for the local store and the sync machinery."""
    local_path: str
    poll_interval: float = POLL_INTERVAL
    connect_timeout: float = CONNECT_TIMEOUT
    queue_retention: int = QUEUE_RETENTION
    backup_retention: int = BACKUP_RETENTION
    max_attempts: int = RETRY_MAX_ATTEMPTS
    # Empty means every remote table that also exists locally
    snapshot_tables: list[str] = field(default_factory=list)
    network_probe_host: str | None = None
    network_probe_port: int | None = None

    @classmethod
    def from_env(cls) -> "SyncConfig":
        local_path = _env("DB")
        if not local_path:
            raise ValueError(f"{ENV_PREFIX}DB is not set")
        tables = _env("SNAPSHOT_TABLES", "")
        probe_port = _env("PROBE_PORT")
        return cls(
            local_path=local_path,
            poll_interval=float(_env("POLL_INTERVAL", str(POLL_INTERVAL))),
            connect_timeout=float(_env("CONNECT_TIMEOUT", str(CONNECT_TIMEOUT))),
            queue_retention=int(_env("QUEUE_RETENTION", str(QUEUE_RETENTION))),
            backup_retention=int(_env("BACKUP_RETENTION", str(BACKUP_RETENTION))),
            snapshot_tables=[t.strip() for t in tables.split(",") if t.strip()],
            network_probe_host=_env("PROBE_HOST"),
            network_probe_port=int(probe_port) if probe_port else None,
        )
