"""Tests for the AuditLogger and related utilities."""

from __future__ import annotations

import json

from shasthya.core.audit.logger import AuditEvent, AuditLogger, _hash_record
from shasthya.core.storage.database import HealthDatabase


# ---------------------------------------------------------------------------
# _hash_record tests
# ---------------------------------------------------------------------------

class TestHashRecord:
    def test_hashes_dict(self):
        h = _hash_record({"key": "value"})
        assert isinstance(h, str)
        assert len(h) == 64  # SHA-256 hex

    def test_order_independent(self):
        """Canonical JSON sorts keys, so order doesn't matter."""
        assert _hash_record({"z": 1, "a": 2}) == _hash_record({"a": 2, "z": 1})

    def test_different_inputs_differ(self):
        assert _hash_record({"a": 1}) != _hash_record({"a": 2})

    def test_non_serializable_returns_empty(self):
        assert _hash_record(object()) == ""


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class TestLogEvent:
    def test_log_event_returns_uuid(self, audit_logger):
        eid = audit_logger.log_event(AuditEvent(action="sync_flush"))
        assert isinstance(eid, str)
        assert len(eid) == 36  # UUID format

    def test_metadata_stored_as_json(self, audit_logger):
        audit_logger.log_event(AuditEvent(action="sync_flush", metadata={"remaining": 3}))
        event = audit_logger.get_events()[0]
        assert json.loads(event["metadata_json"]) == {"remaining": 3}

    def test_failure_does_not_raise(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        logger = AuditLogger(db)
        db.close()
        assert logger.log_event(AuditEvent(action="sync_flush")) == ""


class TestConvenienceMethods:
    def test_sync_flush(self, audit_logger):
        audit_logger.log_sync_flush(
            status="incomplete", applied=2, discarded=1, remaining=4,
            error_type="RemoteUnavailable",
        )
        event = audit_logger.get_events(action="sync_flush")[0]
        assert event["status"] == "incomplete"
        assert event["item_count"] == 2
        assert event["error_type"] == "RemoteUnavailable"
        assert json.loads(event["metadata_json"]) == {"discarded": 1, "remaining": 4}

    def test_sync_discard_stores_hash_not_record(self, audit_logger):
        record = {"id": 9, "content": "private note"}
        audit_logger.log_sync_discard(
            collection="communityPosts", operation="upsert", record=record,
            seq=12, error_type="MalformedRecord",
        )
        event = audit_logger.get_events(action="sync_discard")[0]
        assert event["record_hash"] == _hash_record(record)
        assert event["status"] == "discarded"
        assert "private note" not in json.dumps(event)

    def test_data_delete(self, audit_logger):
        audit_logger.log_data_delete(collection="profile")
        event = audit_logger.get_events(collection="profile")[0]
        assert event["action"] == "data_delete"
        assert event["operation"] == "delete"
        assert event["item_count"] == 1


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestQueries:
    def test_filters_and_counts(self, audit_logger):
        audit_logger.log_data_delete(collection="profile")
        audit_logger.log_data_delete(collection="reminders")
        audit_logger.log_sync_flush(status="complete", applied=1, discarded=0, remaining=0)

        assert audit_logger.count_events() == 3
        assert audit_logger.count_events(action="data_delete") == 2
        assert len(audit_logger.get_events(collection="reminders")) == 1

    def test_limit(self, audit_logger):
        for _ in range(5):
            audit_logger.log_data_delete(collection="reminders")
        assert len(audit_logger.get_events(limit=2)) == 2

    def test_since_filter(self, audit_logger):
        audit_logger.log_data_delete(collection="reminders")
        assert audit_logger.get_events(since="2999-01-01T00:00:00+00:00") == []
        assert len(audit_logger.get_events(since="2000-01-01T00:00:00+00:00")) == 1
