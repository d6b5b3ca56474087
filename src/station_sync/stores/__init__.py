"""
stores/__init__.py - Local and remote store adapters.
"""

from station_sync.stores.base import ColumnDescriptor, RemoteStore
from station_sync.stores.local import LocalStore
from station_sync.stores.postgres import PostgresRemoteStore

__all__ = [
    "ColumnDescriptor",
    "RemoteStore",
    "LocalStore",
    "PostgresRemoteStore",
]
