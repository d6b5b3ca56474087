"""
monitor.py - Connection monitor and reconnect handling.

Provides:
- Startup connect-with-timeout probe
- Periodic reachability polling
- Edge-triggered online/offline notifications
- Queue drain (and the one-time initial snapshot) on reconnect
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable

from station_sync.config import CONNECT_TIMEOUT, POLL_INTERVAL
from station_sync.errors import SyncError
from station_sync.metrics import SyncLogger
from station_sync.replayer import SyncReplayer, SyncReport
from station_sync.snapshot import InitialSnapshot
from station_sync.state import ConnectionState, ConnectionStatus, StateChange
from station_sync.stores.base import RemoteStore

logger = logging.getLogger(__name__)

ConnectionCallback = Callable[[StateChange], Any]
SyncCallback = Callable[[SyncReport], Any]


async def _notify(callbacks: list[Callable[[Any], Any]], payload: Any) -> None:
    """Call each observer; coroutine observers are awaited."""
    for callback in callbacks:
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Observer {getattr(callback, '__name__', callback)} failed: {e}")


class ConnectionMonitor:
    """
    Watches the remote store and announces connectivity changes.

    The connection flag itself may be flipped offline by any failing
    remote call; the monitor reconciles that with what it last
    announced on its next tick, so observers see each edge exactly once.
    """

    def __init__(
        self,
        state: ConnectionState,
        remote: RemoteStore,
        replayer: SyncReplayer,
        snapshot: InitialSnapshot | None = None,
        network_check: Callable[[], bool] | None = None,
        interval: float = POLL_INTERVAL,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self._state = state
        self._remote = remote
        self._replayer = replayer
        self._snapshot = snapshot
        self._network_check = network_check
        self._interval = interval
        self._connect_timeout = connect_timeout

        self._announced = ConnectionStatus.OFFLINE
        self._snapshot_done = False
        self._connection_callbacks: list[ConnectionCallback] = []
        self._sync_callbacks: list[SyncCallback] = []
        self._running = False
        self._task: asyncio.Task | None = None
        self._log = SyncLogger()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def snapshot_done(self) -> bool:
        return self._snapshot_done

    def on_connection_change(self, callback: ConnectionCallback) -> None:
        self._connection_callbacks.append(callback)

    def on_sync_complete(self, callback: SyncCallback) -> None:
        self._sync_callbacks.append(callback)

    async def start(self) -> None:
        """Start polling in a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Connection monitor started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop polling."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Connection monitor stopped")

    async def connect(self, timeout: float | None = None) -> bool:
        """
        Connect-with-timeout probe.

        Timeout or any error means the remote store is treated as
        unreachable; nothing is raised.
        """
        timeout = self._connect_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._remote.connect(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Remote store did not respond within {timeout}s")
        except SyncError as e:
            logger.warning(f"Remote store unreachable: {e}")
        return False

    async def probe(self) -> bool:
        """Network pre-check, then a pooled round-trip."""
        if self._network_check is not None:
            loop = asyncio.get_running_loop()
            if not await loop.run_in_executor(None, self._network_check):
                logger.debug("Network is down, skipping remote probe")
                return False
        return await self.connect()

    async def tick(self) -> None:
        """One monitor step."""
        if self._state.online:
            if not await self.probe():
                self._state.mark_offline("periodic probe failed")
                await self._announce(ConnectionStatus.OFFLINE, "periodic probe failed")
            return

        if self._announced is ConnectionStatus.ONLINE:
            # Flipped by a failing remote call since the last tick
            change = self._state.last_change
            await self._announce(
                ConnectionStatus.OFFLINE, change.reason if change else "remote call failed"
            )
            return

        if await self.probe():
            await self.go_online("probe succeeded")

    async def go_online(self, reason: str) -> SyncReport:
        """
        Handle an offline to online edge.

        Drains the queue first; on the first connection of the process
        the initial snapshot follows, so unsynced local rows reach the
        remote store before local tables are refreshed from it. Tables
        whose entries are still unsynced after the drain are left out of
        the snapshot.
        """
        self._state.mark_online(reason)
        await self._announce(ConnectionStatus.ONLINE, reason)

        report = await self._replayer.sync_all()

        if not self._snapshot_done and self._snapshot is not None and self._state.online:
            await self._snapshot.run()
            self._snapshot_done = True
            self._replayer.record_sync_time()

        await self.notify_sync(report)
        return report

    async def notify_sync(self, report: SyncReport) -> None:
        await _notify(self._sync_callbacks, report)

    async def _announce(self, status: ConnectionStatus, reason: str) -> None:
        if status is self._announced:
            return
        self._announced = status
        self._log.connection_changed(status is ConnectionStatus.ONLINE, reason)
        change = self._state.last_change
        if change is None or change.status is not status:
            change = StateChange(status, reason, time.time())
        await _notify(self._connection_callbacks, change)

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Monitor tick failed: {e}")
