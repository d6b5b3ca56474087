"""
test_snapshot.py - Tests for the initial remote to local copy.
"""

import asyncio
import datetime
import decimal
import uuid

from fakes import col

from station_sync.journal import MutationQueue
from station_sync.snapshot import InitialSnapshot, to_local_value, to_remote_value


class TestValueConversion:

    def test_native_values_pass_through(self):
        assert to_local_value(5) == 5
        assert to_local_value("diesel") == "diesel"
        assert to_local_value(None) is None

    def test_booleans_become_integers(self):
        assert to_local_value(True) == 1
        assert to_local_value(False) == 0

    def test_timestamps_become_epoch_seconds(self):
        when = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
        assert to_local_value(when) == 1704067200

    def test_dates_and_times_become_iso_text(self):
        assert to_local_value(datetime.date(2024, 1, 2)) == "2024-01-02"
        assert to_local_value(datetime.time(6, 30)) == "06:30:00"

    def test_other_types(self):
        assert to_local_value(decimal.Decimal("1.50")) == 1.5
        assert to_local_value({"grade": 95}) == '{"grade": 95}'
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert to_local_value(value) == "12345678-1234-5678-1234-567812345678"
        assert to_local_value(memoryview(b"ab")) == b"ab"


class TestRemoteValueConversion:

    def test_epoch_seconds_become_aware_datetimes(self):
        for data_type in ("timestamp with time zone", "timestamp without time zone", "timestamptz"):
            value = to_remote_value(1704067200, data_type)
            assert value == datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)

    def test_integers_become_booleans(self):
        assert to_remote_value(1, "boolean") is True
        assert to_remote_value(0, "bool") is False

    def test_other_values_unchanged(self):
        assert to_remote_value(3, "integer") == 3
        assert to_remote_value("2024-01-01T00:00:00", "timestamp") == "2024-01-01T00:00:00"
        assert to_remote_value(None, "boolean") is None
        assert to_remote_value(7, None) == 7


class TestInitialSnapshot:

    def setup_tables(self, local, remote):
        local.execute("CREATE TABLE fuel_types (id INTEGER PRIMARY KEY, name TEXT, price REAL)")
        local.execute("INSERT INTO fuel_types (id, name, price) VALUES (1, 'stale', 0.5)")
        remote.define_table("fuel_types", [
            col("id", "integer", False),
            col("name", "text"),
            col("price", "numeric"),
            col("supplier", "text"),
        ])

    def test_local_rows_replaced_with_shared_columns(self, local, remote):
        self.setup_tables(local, remote)
        remote.seed("fuel_types", [
            {"name": "diesel", "price": 1.6, "supplier": "north"},
            {"name": "petrol", "price": 1.8, "supplier": "south"},
        ])

        result = asyncio.run(InitialSnapshot(local, remote).run())

        assert result.success is True
        assert (result.tables, result.rows) == (1, 2)
        rows = local.query("SELECT * FROM fuel_types ORDER BY id")
        assert rows == [
            {"id": 1, "name": "diesel", "price": 1.6},
            {"id": 2, "name": "petrol", "price": 1.8},
        ]

    def test_empty_remote_table_keeps_local_rows(self, local, remote):
        self.setup_tables(local, remote)

        result = asyncio.run(InitialSnapshot(local, remote).run())

        assert result.tables == 0
        assert local.query("SELECT name FROM fuel_types") == [{"name": "stale"}]

    def test_remote_only_tables_ignored(self, local, remote):
        self.setup_tables(local, remote)
        remote.define_table("audit", [col("id", "integer", False), col("note", "text")])
        remote.seed("audit", [{"note": "x"}])

        result = asyncio.run(InitialSnapshot(local, remote).run())

        assert result.success is True
        assert not local.table_exists("audit")

    def test_configured_table_list(self, local, remote):
        self.setup_tables(local, remote)
        remote.seed("fuel_types", [{"name": "diesel", "price": 1.6}])
        local.execute("CREATE TABLE pumps (id INTEGER PRIMARY KEY, label TEXT)")
        remote.define_table("pumps", [col("id", "integer", False), col("label", "text")])
        remote.seed("pumps", [{"label": "P1"}])

        result = asyncio.run(InitialSnapshot(local, remote, tables=["pumps"]).run())

        assert result.tables == 1
        assert local.query("SELECT label FROM pumps") == [{"label": "P1"}]
        assert local.query("SELECT name FROM fuel_types") == [{"name": "stale"}]

    def test_failing_table_reported(self, local, remote):
        local.execute("CREATE TABLE pumps (id INTEGER PRIMARY KEY, label TEXT)")

        result = asyncio.run(InitialSnapshot(local, remote, tables=["pumps"]).run())

        assert result.success is False
        assert result.errors[0]["table_name"] == "pumps"

    def test_table_with_unsynced_writes_left_alone(self, local, remote):
        self.setup_tables(local, remote)
        remote.seed("fuel_types", [{"name": "diesel", "price": 1.6}])
        local.execute("INSERT INTO fuel_types (id, name, price) VALUES (2, 'adblue', 0.4)")
        queue = MutationQueue(local)
        queue.enqueue_insert("fuel_types", 2)

        result = asyncio.run(InitialSnapshot(local, remote, queue=queue).run())

        assert result.skipped == ["fuel_types"]
        assert result.tables == 0
        names = [r["name"] for r in local.query("SELECT name FROM fuel_types ORDER BY id")]
        assert names == ["stale", "adblue"]

    def test_table_refreshed_once_writes_synced(self, local, remote):
        self.setup_tables(local, remote)
        remote.seed("fuel_types", [{"name": "diesel", "price": 1.6}])
        queue = MutationQueue(local)
        queue.mark_synced(queue.enqueue_insert("fuel_types", 1))

        result = asyncio.run(InitialSnapshot(local, remote, queue=queue).run())

        assert result.skipped == []
        assert local.query("SELECT name FROM fuel_types") == [{"name": "diesel"}]
