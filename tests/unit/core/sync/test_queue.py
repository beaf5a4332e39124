"""Tests for PendingWriteQueue — durable FIFO of offline writes."""

from __future__ import annotations

import pytest

from shasthya.core.storage.database import HealthDatabase
from shasthya.core.storage.encryption import RecordCipher
from shasthya.core.storage.record_store import MalformedRecord, StorageUnavailable
from shasthya.core.sync.queue import PendingWriteQueue


class TestEnqueue:
    def test_entries_keep_enqueue_order(self, pending_queue):
        pending_queue.enqueue("observations", "upsert", {"id": 1})
        pending_queue.enqueue("reminders", "upsert", {"id": 1})
        pending_queue.enqueue("observations", "delete", {"id": 1})

        entries = pending_queue.entries()
        assert [(e.collection, e.operation) for e in entries] == [
            ("observations", "upsert"),
            ("reminders", "upsert"),
            ("observations", "delete"),
        ]
        assert entries[0].seq < entries[1].seq < entries[2].seq

    def test_filter_by_collection(self, pending_queue):
        pending_queue.enqueue("observations", "upsert", {"id": 1})
        pending_queue.enqueue("reminders", "upsert", {"id": 2})
        assert [e.record for e in pending_queue.entries("reminders")] == [{"id": 2}]

    def test_payload_is_encrypted(self, pending_queue, health_db):
        pending_queue.enqueue("communityPosts", "upsert", {"content": "private"})
        payload = health_db.connection.execute("SELECT payload FROM pending_writes").fetchone()[0]
        assert "private" not in payload

    def test_non_serializable_record_rejected(self, pending_queue):
        with pytest.raises(MalformedRecord):
            pending_queue.enqueue("observations", "upsert", {"value": {1, 2}})
        assert pending_queue.count() == 0

    def test_record_key_stored(self, pending_queue):
        entry = pending_queue.enqueue("observations", "upsert", {"id": 7}, record_key="7")
        assert entry.record_key == "7"
        assert pending_queue.head().record_key == "7"


class TestHeadAndRemove:
    def test_head_is_oldest(self, pending_queue):
        first = pending_queue.enqueue("observations", "upsert", {"id": 1})
        pending_queue.enqueue("observations", "upsert", {"id": 2})
        assert pending_queue.head().seq == first.seq

    def test_head_respects_max_seq(self, pending_queue):
        first = pending_queue.enqueue("observations", "upsert", {"id": 1})
        second = pending_queue.enqueue("observations", "upsert", {"id": 2})
        pending_queue.remove(first.seq)
        assert pending_queue.head(max_seq=first.seq) is None
        assert pending_queue.head(max_seq=second.seq).seq == second.seq

    def test_empty_queue(self, pending_queue):
        assert pending_queue.head() is None
        assert pending_queue.max_seq() is None
        assert pending_queue.count() == 0

    def test_remove(self, pending_queue):
        entry = pending_queue.enqueue("observations", "upsert", {"id": 1})
        assert pending_queue.remove(entry.seq) is True
        assert pending_queue.remove(entry.seq) is False
        assert pending_queue.count() == 0

    def test_seq_never_reused(self, pending_queue):
        first = pending_queue.enqueue("observations", "upsert", {"id": 1})
        pending_queue.remove(first.seq)
        second = pending_queue.enqueue("observations", "upsert", {"id": 2})
        assert second.seq > first.seq


class TestDurability:
    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "health.db")
        key = RecordCipher.generate_key()

        with HealthDatabase(path) as db:
            PendingWriteQueue(db, RecordCipher(key)).enqueue(
                "observations", "upsert", {"type": "mood"}
            )

        with HealthDatabase(path) as db:
            entries = PendingWriteQueue(db, RecordCipher(key)).entries()
        assert [e.record for e in entries] == [{"type": "mood"}]

    def test_unreadable_payload_is_flagged_not_raised(self, health_db):
        PendingWriteQueue(health_db, RecordCipher(RecordCipher.generate_key())).enqueue(
            "observations", "upsert", {"type": "mood"}
        )
        entry = PendingWriteQueue(health_db, RecordCipher(RecordCipher.generate_key())).head()
        assert entry.record is None
        assert entry.decode_error is not None

    def test_closed_database(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        queue = PendingWriteQueue(db)
        db.close()
        with pytest.raises(StorageUnavailable):
            queue.count()
