"""
station_sync - Offline-first persistence and sync core for fuel station POS.

Routes reads and writes between a remote PostgreSQL store of record and
a local SQLite file, journals writes made while offline and replays
them once the remote store is reachable again.
"""

from station_sync.config import RemoteConfig, SyncConfig
from station_sync.database import StationDatabase
from station_sync.dialect import convert_remote_to_local
from station_sync.errors import (
    DuplicateKeyError,
    RemoteError,
    RemoteQueryError,
    RemoteUnavailable,
    SchemaReconcileFailure,
    StorageFailure,
    SyncEntryFailure,
    SyncError,
    ValidationError,
)
from station_sync.executor import DualBackendExecutor
from station_sync.journal import MutationQueue
from station_sync.monitor import ConnectionMonitor
from station_sync.replayer import SyncReplayer, SyncReport, SyncStatus
from station_sync.retry import with_retry
from station_sync.schema_reconciler import ReconcileResult, SchemaReconciler
from station_sync.state import ConnectionState, ConnectionStatus
from station_sync.stores import LocalStore, PostgresRemoteStore, RemoteStore

__version__ = "1.0.0"
__all__ = [
    # Core
    "StationDatabase",
    "DualBackendExecutor",
    "SyncReplayer",
    "SyncReport",
    "SyncStatus",
    "SchemaReconciler",
    "ReconcileResult",
    "ConnectionMonitor",
    "ConnectionState",
    "ConnectionStatus",
    "MutationQueue",
    "convert_remote_to_local",
    "with_retry",
    # Stores
    "LocalStore",
    "RemoteStore",
    "PostgresRemoteStore",
    # Config
    "RemoteConfig",
    "SyncConfig",
    # Errors
    "SyncError",
    "RemoteError",
    "RemoteUnavailable",
    "RemoteQueryError",
    "DuplicateKeyError",
    "StorageFailure",
    "SchemaReconcileFailure",
    "SyncEntryFailure",
    "ValidationError",
]
