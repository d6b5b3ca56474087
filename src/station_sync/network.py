"""
network.py - Cheap reachability pre-check.

A TCP connect to the remote host tells the monitor whether a full
database round-trip is worth attempting.
"""

import logging
import socket
from typing import Callable

from psycopg2.extensions import parse_dsn

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432
DEFAULT_PROBE_TIMEOUT = 3.0


def is_network_up(host: str, port: int, timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
    """True when a TCP connection to host:port can be opened."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.debug(f"Network probe to {host}:{port} failed: {e}")
        return False


def probe_for_dsn(
    dsn: str,
    host: str | None = None,
    port: int | None = None,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> Callable[[], bool]:
    """
    Build a zero-argument probe for the server named in a DSN.

    ``host``/``port`` override what the DSN says. Unix socket
    connections have no network leg and always probe as up.
    """
    params = parse_dsn(dsn)
    target_host = host or params.get("host") or "localhost"
    # libpq accepts comma-separated host lists; probe the first one
    target_host = target_host.split(",")[0].strip()
    target_port = port or int(str(params.get("port") or DEFAULT_PORT).split(",")[0])

    if target_host.startswith("/"):
        return lambda: True

    def _probe() -> bool:
        return is_network_up(target_host, target_port, timeout)

    return _probe
