"""
test_database.py - End-to-end tests through the StationDatabase facade.
"""

import asyncio
import os

import pytest

from fakes import FakeRemoteStore, col, no_sleep

from station_sync.config import RETRY_MAX_ATTEMPTS, SyncConfig
from station_sync.database import StationDatabase
from station_sync.replayer import NO_CONNECTION
from station_sync.state import ConnectionStatus
from station_sync.stores.local import LocalStore

PRODUCT_COLUMNS = [
    col("id", "integer", False, "nextval('products_id_seq'::regclass)"),
    col("name", "character varying", False),
    col("price", "numeric", False),
]


@pytest.fixture
def remote():
    store = FakeRemoteStore()
    store.define_table("products", PRODUCT_COLUMNS)
    store.seed("products", [
        {"name": "diesel", "price": 1.6},
        {"name": "petrol", "price": 1.8},
        {"name": "lpg", "price": 0.9},
    ])
    return store


@pytest.fixture
def database(temp_dir, remote):
    path = os.path.join(temp_dir, "station.db")
    return StationDatabase(
        LocalStore(path),
        remote,
        config=SyncConfig(local_path=path, poll_interval=0.01),
        sleep=no_sleep,
    )


class TestFirstStart:

    def test_initial_sync_copies_remote_rows(self, database):
        async def scenario():
            status = await database.initialize()
            rows = await database.execute_query("SELECT * FROM products")
            await database.close()
            return status, rows

        status, rows = asyncio.run(scenario())

        assert status == {"online": True}
        assert [r["name"] for r in rows] == ["diesel", "petrol", "lpg"]
        local_rows = database.local.query("SELECT name, price FROM products ORDER BY id")
        assert len(local_rows) == 3
        assert local_rows[0] == {"name": "diesel", "price": 1.6}
        assert database.replayer.last_sync_time is not None

    def test_starts_offline_when_remote_unreachable(self, database, remote):
        remote.available = False

        status = asyncio.run(database.initialize())

        assert status == {"online": False}
        assert database.get_connection_status() == {
            "online": False,
            "last_sync": None,
            "pending": 0,
        }
        database.local.close()

    def test_async_context_manager(self, database, remote):
        async def scenario():
            async with database as db:
                return db.state.online

        assert asyncio.run(scenario()) is True
        assert remote.closed is True


class TestOfflineThenReconnect:

    def test_offline_sales_reach_remote_on_reconnect(self, database, remote):
        remote.available = False
        changes = []
        reports = []
        database.on_connection_change(changes.append)
        database.on_sync_complete(reports.append)

        async def scenario():
            await database.initialize()
            database.local.execute(
                "CREATE TABLE sales (id INTEGER PRIMARY KEY AUTOINCREMENT, product_id INTEGER, litres REAL)"
            )
            remote.define_table("sales", [
                col("id", "integer", False),
                col("product_id", "integer"),
                col("litres", "numeric"),
            ])
            new_id = await database.execute_insert(
                "INSERT INTO sales (product_id, litres) VALUES ($1, $2)", [1, 40.0], "sales"
            )
            pending = database.get_connection_status()["pending"]

            remote.available = True
            await database.monitor.tick()
            await database.close()
            return new_id, pending

        new_id, pending = asyncio.run(scenario())

        assert new_id == 1
        assert pending == 1
        assert remote.rows("sales") == [{"id": 1, "product_id": 1, "litres": 40.0}]
        assert [c.status for c in changes] == [ConnectionStatus.ONLINE]
        assert reports[-1].synced == 1
        assert database.get_sync_status()["pending"] == 0

    def test_rejected_offline_insert_survives_first_snapshot(self, database, remote):
        remote.available = False

        async def scenario():
            await database.initialize()
            database.local.execute(
                "CREATE TABLE products (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, price REAL NOT NULL)"
            )
            await database.execute_insert(
                "INSERT INTO products (name, price) VALUES ($1, $2)", ["adblue", 0.5], "products"
            )

            remote.available = True
            remote.reject_next = RETRY_MAX_ATTEMPTS
            await database.monitor.tick()
            after_reconnect = {
                "snapshot_done": database.monitor.snapshot_done,
                "local": [r["name"] for r in database.local.query("SELECT name FROM products")],
                "queue": database.local.query_one("SELECT synced, retry_count FROM sync_queue"),
            }

            result = await database.manual_sync()
            await database.close()
            return after_reconnect, result

        after_reconnect, result = asyncio.run(scenario())

        assert after_reconnect["snapshot_done"] is True
        assert after_reconnect["local"] == ["adblue"]
        assert after_reconnect["queue"] == {"synced": 0, "retry_count": 1}
        assert result["synced"] == 1
        assert [r["name"] for r in remote.rows("products")] == ["diesel", "petrol", "lpg", "adblue"]
        assert database.local.query_one("SELECT synced FROM sync_queue")["synced"] == 1

    def test_manual_sync_while_offline(self, database, remote):
        remote.available = False
        reports = []
        database.on_sync_complete(reports.append)

        async def scenario():
            await database.initialize()
            result = await database.manual_sync()
            await database.close()
            return result

        result = asyncio.run(scenario())

        assert result == {
            "success": False,
            "synced": 0,
            "failed": 0,
            "error": NO_CONNECTION,
        }
        assert len(reports) == 1

    def test_monitor_runs_in_background(self, database, remote):
        remote.available = False

        async def scenario():
            await database.initialize()
            remote.available = True
            await database.start_monitor()
            for _ in range(100):
                if database.state.online:
                    break
                await asyncio.sleep(0.01)
            online = database.state.online
            await database.close()
            return online

        assert asyncio.run(scenario()) is True
        assert database.monitor.running is False


class TestOneShotConnect:

    def test_connect_skips_first_connection_work(self, database):
        async def scenario():
            online = await database.connect()
            await database.close()
            return online

        assert asyncio.run(scenario()) is True
        assert not database.local.table_exists("products")
