"""
state.py - Process-wide connection state.

One ConnectionState instance is owned by the executor and shared by
reference with the monitor and the replayer. Components read it through
``online`` and change it only through ``mark_online``/``mark_offline``.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Remote store reachability."""
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class StateChange:
    """A single change of the connection flag."""
    status: ConnectionStatus
    reason: str
    changed_at: float


class ConnectionState:
    """
    Observable online/offline flag.

    Starts offline. Listeners are called synchronously on every
    actual change, never for a no-op mark.
    """

    def __init__(self) -> None:
        self._status = ConnectionStatus.OFFLINE
        self._last_change: StateChange | None = None
        self._listeners: list[Callable[[StateChange], None]] = []

    @property
    def online(self) -> bool:
        return self._status is ConnectionStatus.ONLINE

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def last_change(self) -> StateChange | None:
        return self._last_change

    def subscribe(self, listener: Callable[[StateChange], None]) -> None:
        self._listeners.append(listener)

    def mark_online(self, reason: str = "probe succeeded") -> bool:
        return self._set(ConnectionStatus.ONLINE, reason)

    def mark_offline(self, reason: str = "remote call failed") -> bool:
        return self._set(ConnectionStatus.OFFLINE, reason)

    def _set(self, status: ConnectionStatus, reason: str) -> bool:
        """Returns True when the status actually changed."""
        if status is self._status:
            return False
        self._status = status
        self._last_change = StateChange(status, reason, time.time())
        logger.info(f"Connection state -> {status.value} ({reason})")
        for listener in self._listeners:
            listener(self._last_change)
        return True
