"""Pending-write queue — an ordered, durable log of buffered mutations.

Rows live in the ``pending_writes`` table, so the queue survives restarts.
``seq`` is the enqueue order and the only ordering the queue guarantees.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from shasthya.core.storage.database import DatabaseError, HealthDatabase
from shasthya.core.storage.encryption import EncryptionError, RecordCipher
from shasthya.core.storage.record_store import MalformedRecord, StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass
class PendingWrite:
    """One buffered mutation awaiting application."""

    seq: int
    collection: str
    operation: str  # 'upsert' | 'delete'
    record: Any
    enqueued_at: str
    record_key: str | None = None
    decode_error: str | None = None  # set when the stored payload is unreadable

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "collection": self.collection,
            "operation": self.operation,
            "record_key": self.record_key,
            "enqueued_at": self.enqueued_at,
        }


class PendingWriteQueue:
    """FIFO of pending writes backed by SQLite.

    Usage::

        queue = PendingWriteQueue(db, cipher)
        entry = queue.enqueue("observations", "upsert", {"id": 3, "type": "mood"})
        head = queue.head()
        queue.remove(head.seq)
    """

    def __init__(self, database: HealthDatabase, cipher: RecordCipher | None = None) -> None:
        self._db = database
        self._cipher = cipher or RecordCipher()

    def enqueue(
        self,
        collection: str,
        operation: str,
        record: Any,
        *,
        record_key: str | None = None,
    ) -> PendingWrite:
        """Append a write to the tail of the queue.

        Raises:
            MalformedRecord: If the record is not JSON-serializable.
            StorageUnavailable: If the database cannot be written.
        """
        try:
            payload = self._cipher.encode(record)
        except EncryptionError as exc:
            raise MalformedRecord(str(exc)) from exc

        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            cursor = conn.execute(
                """INSERT INTO pending_writes
                   (collection, operation, record_key, payload, enqueued_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (collection, operation, record_key, payload, now),
            )
            conn.commit()
            seq = cursor.lastrowid

        logger.info("Queued %s on %s (seq=%d)", operation, collection, seq)
        return PendingWrite(
            seq=seq,
            collection=collection,
            operation=operation,
            record=record,
            enqueued_at=now,
            record_key=record_key,
        )

    def head(self, *, max_seq: int | None = None) -> PendingWrite | None:
        """Return the oldest entry (with ``seq <= max_seq`` when given)."""
        query = "SELECT * FROM pending_writes"
        params: list[Any] = []
        if max_seq is not None:
            query += " WHERE seq <= ?"
            params.append(max_seq)
        query += " ORDER BY seq LIMIT 1"

        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_entry(row) if row is not None else None

    def entries(self, collection: str | None = None) -> list[PendingWrite]:
        """Return queued entries in enqueue order."""
        query = "SELECT * FROM pending_writes"
        params: list[Any] = []
        if collection:
            query += " WHERE collection = ?"
            params.append(collection)
        query += " ORDER BY seq"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def remove(self, seq: int) -> bool:
        """Remove one entry and commit. Returns True if it existed."""
        with self._connection() as conn:
            removed = self.remove_in(conn, seq)
            conn.commit()
        return removed

    @staticmethod
    def remove_in(conn: sqlite3.Connection, seq: int) -> bool:
        """Remove one entry inside the caller's transaction (no commit)."""
        cursor = conn.execute("DELETE FROM pending_writes WHERE seq = ?", (seq,))
        return cursor.rowcount > 0

    def count(self) -> int:
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) FROM pending_writes").fetchone()
        return row[0]

    def max_seq(self) -> int | None:
        """Return the newest seq currently queued, or None when empty."""
        with self._connection() as conn:
            row = conn.execute("SELECT MAX(seq) FROM pending_writes").fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._db.connection
        except DatabaseError as exc:
            raise StorageUnavailable(str(exc)) from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageUnavailable(f"Pending-write queue failed: {exc}") from exc

    def _row_to_entry(self, row: Any) -> PendingWrite:
        record: Any = None
        decode_error: str | None = None
        try:
            record = self._cipher.decode(row["payload"])
        except EncryptionError as exc:
            decode_error = str(exc)
            logger.warning("Pending write seq=%d has an unreadable payload", row["seq"])

        return PendingWrite(
            seq=row["seq"],
            collection=row["collection"],
            operation=row["operation"],
            record=record,
            enqueued_at=row["enqueued_at"],
            record_key=row["record_key"],
            decode_error=decode_error,
        )
