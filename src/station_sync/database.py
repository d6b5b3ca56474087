"""
database.py - The station's database facade.

StationDatabase is the primary public interface of the sync core.
It wires every component together:
- Local and remote stores
- Dual-backend executor and mutation queue
- Schema reconciler, replayer and connection monitor
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

from station_sync.backup import BackupManager
from station_sync.config import CONNECT_TIMEOUT, RemoteConfig, SyncConfig
from station_sync.executor import DualBackendExecutor
from station_sync.journal import MutationQueue
from station_sync.monitor import ConnectionCallback, ConnectionMonitor, SyncCallback
from station_sync.network import probe_for_dsn
from station_sync.replayer import SyncReplayer
from station_sync.schema_reconciler import ReconcileResult, SchemaReconciler
from station_sync.snapshot import InitialSnapshot
from station_sync.state import ConnectionState
from station_sync.stores.base import RemoteStore
from station_sync.stores.local import LocalStore
from station_sync.stores.postgres import PostgresRemoteStore

logger = logging.getLogger(__name__)


class StationDatabase:
    """
    Offline-first database access for the point-of-sale application.

    Usage:
        db = StationDatabase.from_config(sync_config, remote_config)
        await db.initialize()
        await db.start_monitor()
        rows = await db.execute_query("SELECT * FROM products WHERE id = $1", [7])
        await db.close()
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        config: SyncConfig | None = None,
        network_check: Callable[[], bool] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or SyncConfig(local_path=local.path)
        self._local = local
        self._remote = remote
        self._state = ConnectionState()

        self._queue = MutationQueue(local, retention=self._config.queue_retention)
        self._executor = DualBackendExecutor(
            local,
            remote,
            self._queue,
            state=self._state,
            max_attempts=self._config.max_attempts,
            sleep=sleep,
        )
        self._replayer = SyncReplayer(
            local,
            remote,
            self._queue,
            self._state,
            retention=self._config.queue_retention,
            max_attempts=self._config.max_attempts,
            sleep=sleep,
        )
        self._reconciler = SchemaReconciler(
            local, remote, BackupManager(local, retention=self._config.backup_retention)
        )
        self._monitor = ConnectionMonitor(
            self._state,
            remote,
            self._replayer,
            snapshot=InitialSnapshot(local, remote, self._config.snapshot_tables, queue=self._queue),
            network_check=network_check,
            interval=self._config.poll_interval,
            connect_timeout=self._config.connect_timeout,
        )

    @classmethod
    def from_config(cls, config: SyncConfig, remote_config: RemoteConfig) -> "StationDatabase":
        """Build a facade backed by PostgreSQL."""
        network_check = probe_for_dsn(
            remote_config.dsn,
            host=config.network_probe_host,
            port=config.network_probe_port,
        )
        return cls(
            LocalStore(config.local_path),
            PostgresRemoteStore(remote_config),
            config=config,
            network_check=network_check,
        )

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def local(self) -> LocalStore:
        return self._local

    @property
    def queue(self) -> MutationQueue:
        return self._queue

    @property
    def executor(self) -> DualBackendExecutor:
        return self._executor

    @property
    def replayer(self) -> SyncReplayer:
        return self._replayer

    @property
    def monitor(self) -> ConnectionMonitor:
        return self._monitor

    async def initialize(self, timeout: float = CONNECT_TIMEOUT) -> dict[str, Any]:
        """
        Open the local store and probe the remote one.

        When the remote store answers within ``timeout``, the local
        schema is reconciled and the first-connection work runs
        (queue drain, then initial snapshot). Otherwise the station
        starts offline.
        """
        self._local.open()

        if await self._monitor.connect(timeout):
            result = await self._reconciler.reconcile()
            if not result.success:
                logger.warning("Schema reconciliation incomplete, using existing local schema")
            await self._monitor.go_online("startup probe succeeded")
        else:
            logger.info("Starting offline")

        return {"online": self._state.online}

    async def connect(self, timeout: float = CONNECT_TIMEOUT) -> bool:
        """
        Open the local store and probe the remote one.

        Unlike initialize, no reconciliation, drain or snapshot runs;
        used by one-shot tools that do a single thing.
        """
        self._local.open()
        if await self._monitor.connect(timeout):
            self._state.mark_online("connect probe succeeded")
            return True
        return False

    async def execute_query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        return await self._executor.execute_query(sql, params)

    async def execute_update(
        self, sql: str, params: Sequence[Any] = (), table_hint: str | None = None
    ) -> int:
        return await self._executor.execute_update(sql, params, table_hint)

    async def execute_insert(
        self, sql: str, params: Sequence[Any] = (), table_hint: str | None = None
    ) -> int | str:
        return await self._executor.execute_insert(sql, params, table_hint)

    async def execute_delete(
        self, sql: str, params: Sequence[Any] = (), table_hint: str | None = None
    ) -> int:
        return await self._executor.execute_delete(sql, params, table_hint)

    def get_connection_status(self) -> dict[str, Any]:
        return {
            "online": self._state.online,
            "last_sync": self._replayer.last_sync_time,
            "pending": self._queue.pending_count(),
        }

    def get_sync_status(self) -> dict[str, Any]:
        return self._replayer.get_sync_status().as_dict()

    async def manual_sync(self) -> dict[str, Any]:
        """One sync pass on demand; observers hear about the result."""
        report = await self._replayer.sync_all()
        await self._monitor.notify_sync(report)
        result = {
            "success": report.success,
            "synced": report.synced,
            "failed": report.failed,
        }
        if report.error is not None:
            result["error"] = report.error
        return result

    async def retry_failed(self) -> dict[str, Any]:
        report = await self._replayer.retry_failed()
        return report.as_dict()

    async def reconcile_schema(self) -> ReconcileResult:
        return await self._reconciler.reconcile()

    def on_connection_change(self, callback: ConnectionCallback) -> None:
        self._monitor.on_connection_change(callback)

    def on_sync_complete(self, callback: SyncCallback) -> None:
        self._monitor.on_sync_complete(callback)

    async def start_monitor(self) -> None:
        await self._monitor.start()

    async def close(self) -> None:
        """Stop the monitor and release both stores."""
        await self._monitor.stop()
        await self._remote.close()
        self._local.close()
        logger.info("Station database closed")
