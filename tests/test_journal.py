"""
test_journal.py - Tests for the mutation queue.
"""

import datetime
import decimal

import msgpack
import pytest

from station_sync.config import FAILED_RETRY_THRESHOLD
from station_sync.errors import ValidationError
from station_sync.journal import (
    DeleteMutation,
    InsertMutation,
    MutationQueue,
    UpdateMutation,
    mutation_from_row,
)
from station_sync.utils.msgpack_codec import pack_dict


class TestMutationPayloads:

    def test_insert_payload_holds_only_id(self):
        assert InsertMutation("sales", 4).to_payload() == {"id": 4}

    def test_update_payload_holds_statement(self):
        mutation = UpdateMutation("UPDATE t SET a = $1", (1,), "t")
        assert mutation.to_payload() == {"sql": "UPDATE t SET a = $1", "params": [1]}

    def test_decode_round_trip_by_operation(self):
        payload = pack_dict({"sql": "DELETE FROM t WHERE id = $1", "params": [3]})
        mutation = mutation_from_row("t", "DELETE", payload)

        assert isinstance(mutation, DeleteMutation)
        assert mutation.params == (3,)

    def test_unknown_operation_rejected(self):
        with pytest.raises(ValidationError):
            mutation_from_row("t", "UPSERT", pack_dict({"id": 1}))

    def test_insert_without_id_rejected(self):
        with pytest.raises(ValidationError):
            mutation_from_row("t", "INSERT", pack_dict({"sql": "x"}))


class TestMutationQueue:

    def test_enqueue_insert_stores_msgpack_payload(self, local):
        queue = MutationQueue(local)
        entry_id = queue.enqueue_insert("sales", 12)

        row = local.query_one("SELECT * FROM sync_queue WHERE id = ?", (entry_id,))
        assert row["table_name"] == "sales"
        assert row["operation"] == "INSERT"
        assert row["synced"] == 0
        assert row["retry_count"] == 0
        assert msgpack.unpackb(row["payload"], raw=False) == {"id": 12}

    def test_missing_table_defaults_to_unknown(self, local):
        queue = MutationQueue(local)
        entry_id = queue.enqueue_update("UPDATE t SET a = 1")

        assert queue.get(entry_id).table_name == "unknown"

    def test_params_normalized(self, local):
        queue = MutationQueue(local)
        when = datetime.datetime(2024, 5, 1, 12, 30)
        entry_id = queue.enqueue_update(
            "UPDATE t SET at = $1, price = $2", [when, decimal.Decimal("1.25")], "t"
        )

        mutation = queue.get(entry_id).mutation
        assert mutation.params == ("2024-05-01T12:30:00", 1.25)

    def test_unserializable_param_rejected(self, local):
        queue = MutationQueue(local)
        with pytest.raises(ValidationError):
            queue.enqueue_update("UPDATE t SET a = $1", [object()])

    def test_pending_in_insertion_order(self, local):
        queue = MutationQueue(local)
        first = queue.enqueue_insert("t", 1)
        second = queue.enqueue_update("UPDATE t SET a = 2 WHERE id = 1", table_name="t")
        third = queue.enqueue_delete("DELETE FROM t WHERE id = 1", table_name="t")

        assert [e.id for e in queue.pending()] == [first, second, third]
        assert [e.operation for e in queue.pending()] == ["INSERT", "UPDATE", "DELETE"]

    def test_mark_synced_is_final(self, local):
        queue = MutationQueue(local)
        entry_id = queue.enqueue_insert("t", 1)
        queue.mark_failed(entry_id, "boom")

        queue.mark_synced(entry_id)
        queue.mark_failed(entry_id, "late failure")

        entry = queue.get(entry_id)
        assert entry.synced is True
        assert entry.error is None
        assert entry.retry_count == 1
        assert queue.pending() == []

    def test_failed_threshold_and_reset(self, local):
        queue = MutationQueue(local)
        entry_id = queue.enqueue_insert("t", 1)
        for _ in range(FAILED_RETRY_THRESHOLD):
            queue.mark_failed(entry_id, "down")

        assert queue.failed_count() == 1
        assert queue.get(entry_id).is_failed
        # Failed entries are still pending
        assert queue.pending_count() == 1

        assert queue.reset_failed() == 1
        entry = queue.get(entry_id)
        assert entry.retry_count == 0
        assert entry.error is None
        assert queue.failed_count() == 0

    def test_prune_keeps_newest_synced(self, local):
        queue = MutationQueue(local)
        ids = [queue.enqueue_insert("t", i) for i in range(8)]
        for entry_id in ids[:6]:
            queue.mark_synced(entry_id)

        removed = queue.prune(keep=4)

        assert removed == 2
        remaining = {r["id"] for r in local.query("SELECT id FROM sync_queue")}
        assert remaining == set(ids[2:])

    def test_undecodable_entry_reported_not_returned(self, local):
        queue = MutationQueue(local)
        good = queue.enqueue_insert("t", 1)
        local.execute(
            "INSERT INTO sync_queue (table_name, operation, payload, created_at) VALUES (?, ?, ?, ?)",
            ("t", "INSERT", b"\xc1", 0),
        )

        entries, broken = queue.scan_pending()

        assert [e.id for e in entries] == [good]
        assert len(broken) == 1
        assert broken[0].table_name == "t"
        assert broken[0].operation == "INSERT"
        assert broken[0].error

    def test_reading_pending_never_writes(self, local):
        queue = MutationQueue(local)
        queue.enqueue_insert("t", 1)
        local.execute(
            "INSERT INTO sync_queue (table_name, operation, payload, created_at) VALUES (?, ?, ?, ?)",
            ("t", "DELETE", b"\xc1", 0),
        )
        before = local.query("SELECT id, retry_count, error FROM sync_queue ORDER BY id")

        for _ in range(3):
            queue.pending()
            queue.scan_pending()

        assert local.query("SELECT id, retry_count, error FROM sync_queue ORDER BY id") == before
        assert queue.failed_count() == 0

    def test_pending_tables(self, local):
        queue = MutationQueue(local)
        queue.enqueue_insert("sales", 1)
        queue.enqueue_update("UPDATE pumps SET active = 0", table_name="pumps")
        done = queue.enqueue_insert("products", 7)
        queue.mark_synced(done)

        assert queue.pending_tables() == {"sales", "pumps"}
