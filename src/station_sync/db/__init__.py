"""
db - SQLite layer for station_sync.
"""

from station_sync.db.connection import (
    create_connection,
    execute_in_transaction,
    initialize_sync_tables,
    verify_integrity,
)

__all__ = [
    "create_connection",
    "execute_in_transaction",
    "initialize_sync_tables",
    "verify_integrity",
]
