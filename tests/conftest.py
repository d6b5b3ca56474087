"""
conftest.py - pytest fixtures for station_sync tests.
"""

import os
import tempfile

import pytest

from fakes import FakeRemoteStore, no_sleep

from station_sync.executor import DualBackendExecutor
from station_sync.journal import MutationQueue
from station_sync.replayer import SyncReplayer
from station_sync.state import ConnectionState
from station_sync.stores.local import LocalStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test databases."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def local(temp_dir):
    """An opened LocalStore in a temp directory."""
    store = LocalStore(os.path.join(temp_dir, "local.db"))
    store.open()
    yield store
    store.close()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def stack(local, remote):
    """Executor and replayer sharing one connection state."""
    queue = MutationQueue(local)
    state = ConnectionState()
    executor = DualBackendExecutor(local, remote, queue, state=state, sleep=no_sleep)
    replayer = SyncReplayer(local, remote, queue, state, sleep=no_sleep)
    return executor, replayer
