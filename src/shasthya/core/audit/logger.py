"""Audit logger — PHI-free trail of sync outcomes and deletions.

Records flush results, discarded pending writes, and user-initiated
deletions in the ``audit_log`` table:

* ``record_hash`` — SHA-256 of the canonical JSON record, never the record.
* ``item_count``  — how many records an event touched.
* ``status``      — 'success' | 'incomplete' | 'discarded' | 'failure'.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from shasthya.core.storage.database import HealthDatabase

logger = logging.getLogger(__name__)


def _hash_record(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                      # 'sync_flush' | 'sync_discard' | 'data_delete'
    collection: str | None = None
    operation: str | None = None     # 'upsert' | 'delete'
    record_hash: str = ""
    item_count: int | None = None
    status: str = "success"
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Every write commits immediately. A failed audit write is logged and
    reported as an empty event id; it never breaks the caller.

    Usage::

        audit = AuditLogger(health_db)
        audit.log_data_delete(collection="profile", count=1)
        audit.get_events(action="sync_discard")
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID (or "" on failure)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, collection, operation, record_hash,
                    item_count, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.collection,
                    event.operation,
                    event.record_hash or None,
                    event.item_count,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_sync_flush(
        self,
        *,
        status: str,
        applied: int,
        discarded: int,
        remaining: int,
        error_type: str | None = None,
    ) -> str:
        """Log the outcome of one flush."""
        return self.log_event(AuditEvent(
            action="sync_flush",
            item_count=applied,
            status=status,
            error_type=error_type,
            metadata={"discarded": discarded, "remaining": remaining},
        ))

    def log_sync_discard(
        self,
        *,
        collection: str,
        operation: str,
        record: Any,
        seq: int,
        error_type: str,
    ) -> str:
        """Log a pending write dropped as permanently unapplicable."""
        return self.log_event(AuditEvent(
            action="sync_discard",
            collection=collection,
            operation=operation,
            record_hash=_hash_record(record) if record is not None else "",
            item_count=1,
            status="discarded",
            error_type=error_type,
            metadata={"seq": seq},
        ))

    def log_data_delete(
        self,
        *,
        collection: str,
        count: int = 1,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a user-initiated deletion."""
        return self.log_event(AuditEvent(
            action="data_delete",
            collection=collection,
            operation="delete",
            item_count=count,
            metadata=metadata or {},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        collection: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if collection:
            conditions.append("collection = ?")
            params.append(collection)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None) -> int:
        """Count audit events, optionally of one action."""
        if action:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE action = ?", (action,)
            ).fetchone()
        else:
            row = self._db.connection.execute("SELECT COUNT(*) FROM audit_log").fetchone()
        return row[0]
