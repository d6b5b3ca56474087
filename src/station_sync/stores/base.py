"""
base.py - Abstract base class for remote store adapters.

The executor, replayer, reconciler and monitor only talk to the
remote store through this interface, so tests and alternative
backends can plug in without a PostgreSQL server.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    One column of a table, as reported by either store.

    For remote columns ``data_type`` is the remote type name
    (e.g. "character varying"); for local columns it is the declared
    SQLite type.
    """
    name: str
    data_type: str
    nullable: bool = True
    default: str | None = None
    position: int = 0


class RemoteStore(ABC):
    """
    Abstract base class for the remote (authoritative) store.

    Statements use ``$1, $2, ...`` positional markers. Implementations
    must raise:
    - RemoteUnavailable for connection-class failures and timeouts
    - DuplicateKeyError for unique constraint violations
    - RemoteQueryError for any other rejected statement
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection pool and verify one round-trip."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Acquire and release a connection. Never raises."""
        pass

    @abstractmethod
    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a statement and return its rows."""
        pass

    @abstractmethod
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a mutating statement and return the affected row count."""
        pass

    @abstractmethod
    async def list_tables(self) -> list[str]:
        """Names of the business tables, sorted."""
        pass

    @abstractmethod
    async def table_columns(self, table_name: str) -> list[ColumnDescriptor]:
        """Ordered column list of one table; empty if it does not exist."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close every pooled connection."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name for logging."""
        pass
