"""Record store — keyed collections with secondary indexes over SQLite.

Each collection holds JSON records under a primary key, either supplied by
the record (explicit key) or assigned by the store (auto-increment). Index
values are written to ``record_index`` in the same transaction as the record,
so a put or delete is visible completely or not at all.

All public operations are coroutines. Mutations on one collection are
serialized with a per-collection ``asyncio.Lock``; reads do not wait.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from shasthya.core.storage.database import DatabaseError, HealthDatabase
from shasthya.core.storage.encryption import EncryptionError, RecordCipher
from shasthya.core.storage.models import (
    DEFAULT_COLLECTIONS,
    NOT_FOUND,
    CollectionSpec,
    NotFound,
    Record,
    RecordId,
)

logger = logging.getLogger(__name__)

UPSERT = "upsert"
DELETE = "delete"
OPERATIONS = (UPSERT, DELETE)


class StorageError(Exception):
    """Base exception for record store failures."""


class StorageUnavailable(StorageError):
    """The underlying database is not initialized, closed, or corrupted."""


class MalformedRecord(StorageError):
    """A record, key, or operation can never be stored as given."""


class UnknownCollection(MalformedRecord):
    """No collection with that name has been declared."""


def _encode_key(key: RecordId) -> str:
    return json.dumps(key)


def _encode_index_value(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def _check_key(spec: CollectionSpec, key: Any) -> RecordId:
    if isinstance(key, bool) or not isinstance(key, (int, str)):
        raise MalformedRecord(
            f"Key {spec.key_path!r} in {spec.name!r} must be an int or str, "
            f"got {type(key).__name__}"
        )
    if key == "":
        raise MalformedRecord(f"Key {spec.key_path!r} in {spec.name!r} must not be empty")
    return key


class RecordStore:
    """Durable keyed storage with typed collections and secondary indexes.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        store = RecordStore(db, RecordCipher(key))

        obs_id = await store.put("observations", {"type": "mood", "date": "2026-02-01"})
        moods = await store.query_by_index("observations", "type", "mood")
    """

    def __init__(
        self,
        database: HealthDatabase,
        cipher: RecordCipher | None = None,
        collections: Iterable[CollectionSpec] = DEFAULT_COLLECTIONS,
    ) -> None:
        self._db = database
        self._cipher = cipher or RecordCipher()
        self._specs: dict[str, CollectionSpec] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        for spec in collections:
            self.declare(spec)

    @property
    def database(self) -> HealthDatabase:
        return self._db

    # ------------------------------------------------------------------
    # Collection declarations
    # ------------------------------------------------------------------

    def declare(self, spec: CollectionSpec) -> None:
        """Declare a collection. Its table rows are created on first write."""
        self._specs[spec.name] = spec
        self._locks.setdefault(spec.name, asyncio.Lock())

    def spec(self, collection: str) -> CollectionSpec:
        """Return the declaration of ``collection``.

        Raises:
            UnknownCollection: If the collection was never declared.
        """
        try:
            return self._specs[collection]
        except KeyError:
            raise UnknownCollection(f"Unknown collection: {collection!r}") from None

    @property
    def collections(self) -> list[str]:
        return list(self._specs)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, collection: str, record: Mapping[str, Any]) -> RecordId:
        """Insert or overwrite a record and return its primary key.

        Raises:
            MalformedRecord: If the record is not a mapping, lacks a required
                key, or is not JSON-serializable.
            StorageUnavailable: If the database cannot be written.
        """
        spec = self.spec(collection)
        async with self._locks[collection]:
            with self._transaction() as conn:
                key = self._put_in(conn, spec, record)
        logger.debug("Put %s/%r", collection, key)
        return key

    async def delete(self, collection: str, record_id: RecordId) -> bool | NotFound:
        """Delete a record by key.

        Returns:
            True if the record existed and was removed, ``NOT_FOUND`` otherwise.
        """
        spec = self.spec(collection)
        async with self._locks[collection]:
            with self._transaction() as conn:
                deleted = self._delete_in(conn, spec, record_id)
        if deleted:
            logger.debug("Deleted %s/%r", collection, record_id)
            return True
        return NOT_FOUND

    async def apply_write(
        self,
        collection: str,
        operation: str,
        record: Any,
        *,
        before_commit: Callable[[sqlite3.Connection], None] | None = None,
    ) -> RecordId | bool | NotFound:
        """Apply an upsert or delete, optionally extending the transaction.

        ``before_commit`` runs on the same connection just before commit, so
        bookkeeping it writes (e.g. removing a queue row) lands atomically
        with the record change. A delete whose record is already gone still
        commits and returns ``NOT_FOUND``.

        Raises:
            MalformedRecord: Unknown operation or collection, or bad record.
            StorageUnavailable: If the database cannot be written.
        """
        if operation not in OPERATIONS:
            raise MalformedRecord(f"Unknown operation: {operation!r}")
        spec = self.spec(collection)

        result: RecordId | bool | NotFound
        async with self._locks[collection]:
            with self._transaction() as conn:
                if operation == UPSERT:
                    result = self._put_in(conn, spec, record)
                else:
                    if isinstance(record, Mapping):
                        record_id = record.get(spec.key_path)
                    else:
                        record_id = record
                    if record_id is None:
                        raise MalformedRecord(
                            f"Delete on {collection!r} needs {spec.key_path!r}"
                        )
                    result = True if self._delete_in(conn, spec, record_id) else NOT_FOUND
                if before_commit is not None:
                    before_commit(conn)
        return result

    def validate(self, collection: str, operation: str, record: Any) -> RecordId | None:
        """Check that a write could be applied, without touching the database.

        Returns the record's key, or None for an auto-increment upsert that
        has not been assigned one yet.

        Raises:
            MalformedRecord: Unknown operation or collection, a non-mapping
                record, a missing or invalid key, or a record that is not
                JSON-serializable.
        """
        if operation not in OPERATIONS:
            raise MalformedRecord(f"Unknown operation: {operation!r}")
        spec = self.spec(collection)

        if operation == DELETE:
            record_id = record.get(spec.key_path) if isinstance(record, Mapping) else record
            if record_id is None:
                raise MalformedRecord(f"Delete on {collection!r} needs {spec.key_path!r}")
            return _check_key(spec, record_id)

        if not isinstance(record, Mapping):
            raise MalformedRecord(
                f"Records in {collection!r} must be mappings, got {type(record).__name__}"
            )
        key = record.get(spec.key_path)
        if key is None:
            if not spec.auto_increment:
                raise MalformedRecord(f"Record in {collection!r} is missing {spec.key_path!r}")
        else:
            key = _check_key(spec, key)
        try:
            json.dumps(dict(record))
        except (TypeError, ValueError) as exc:
            raise MalformedRecord(f"Record is not JSON-serializable: {exc}") from exc
        return key

    async def reserve_id(self, collection: str) -> int:
        """Allocate the next auto-increment key without storing a record."""
        spec = self.spec(collection)
        if not spec.auto_increment:
            raise MalformedRecord(f"Collection {collection!r} uses explicit keys")
        async with self._locks[collection]:
            with self._transaction() as conn:
                self._ensure_collection(conn, spec)
                return self._next_id(conn, spec)

    async def replace_all(
        self, collection: str, records: Iterable[Mapping[str, Any]]
    ) -> list[RecordId]:
        """Atomically swap the entire contents of a collection.

        Either every record is stored or the previous contents remain.
        """
        spec = self.spec(collection)
        async with self._locks[collection]:
            with self._transaction() as conn:
                self._clear_in(conn, spec)
                keys = [self._put_in(conn, spec, record) for record in records]
        logger.info("Replaced %s with %d records", collection, len(keys))
        return keys

    async def clear(self, collection: str) -> int:
        """Remove every record of a collection. Returns the count removed."""
        spec = self.spec(collection)
        async with self._locks[collection]:
            with self._transaction() as conn:
                count = self._clear_in(conn, spec)
        logger.info("Cleared %d records from %s", count, collection)
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, record_id: RecordId) -> Record | NotFound:
        """Return the record stored under ``record_id``, or ``NOT_FOUND``."""
        self.spec(collection)
        with self._reading() as conn:
            row = conn.execute(
                "SELECT payload FROM records WHERE collection = ? AND record_key = ?",
                (collection, _encode_key(record_id)),
            ).fetchone()
        if row is None:
            return NOT_FOUND
        return self._decode(row["payload"])

    async def get_all(self, collection: str) -> list[Record]:
        """Return every record of a collection in insertion order."""
        self.spec(collection)
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT payload FROM records WHERE collection = ? ORDER BY seq",
                (collection,),
            ).fetchall()
        return [self._decode(row["payload"]) for row in rows]

    async def query_by_index(
        self, collection: str, index_name: str, value: Any
    ) -> list[Record]:
        """Return records whose ``index_name`` equals ``value``, in insertion order.

        Raises:
            StorageError: If the collection declares no such index.
        """
        spec = self.spec(collection)
        if index_name not in spec.indexes:
            raise StorageError(f"Collection {collection!r} has no index {index_name!r}")

        with self._reading() as conn:
            rows = conn.execute(
                """SELECT r.payload FROM record_index i
                   JOIN records r
                     ON r.collection = i.collection AND r.record_key = i.record_key
                   WHERE i.collection = ? AND i.index_name = ? AND i.index_value = ?
                   ORDER BY i.seq""",
                (collection, index_name, _encode_index_value(value)),
            ).fetchall()
        return [self._decode(row["payload"]) for row in rows]

    async def count(self, collection: str) -> int:
        """Return the number of records in a collection."""
        self.spec(collection)
        with self._reading() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM records WHERE collection = ?", (collection,)
            ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connection(self) -> sqlite3.Connection:
        try:
            return self._db.connection
        except DatabaseError as exc:
            raise StorageUnavailable(str(exc)) from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """One call, one transaction: commit on success, roll back otherwise."""
        conn = self._connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Record store write failed: %s", exc)
            raise StorageUnavailable(f"Record store write failed: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        try:
            yield conn
        except sqlite3.Error as exc:
            logger.error("Record store read failed: %s", exc)
            raise StorageUnavailable(f"Record store read failed: {exc}") from exc

    def _ensure_collection(self, conn: sqlite3.Connection, spec: CollectionSpec) -> None:
        conn.execute(
            """INSERT OR IGNORE INTO collections (name, key_path, auto_increment)
               VALUES (?, ?, ?)""",
            (spec.name, spec.key_path, int(spec.auto_increment)),
        )

    def _next_id(self, conn: sqlite3.Connection, spec: CollectionSpec) -> int:
        row = conn.execute(
            "SELECT next_id FROM collections WHERE name = ?", (spec.name,)
        ).fetchone()
        next_id = row[0]
        conn.execute(
            "UPDATE collections SET next_id = ? WHERE name = ?", (next_id + 1, spec.name)
        )
        return next_id

    def _next_seq(self, conn: sqlite3.Connection, spec: CollectionSpec) -> int:
        row = conn.execute(
            "SELECT next_seq FROM collections WHERE name = ?", (spec.name,)
        ).fetchone()
        seq = row[0]
        conn.execute(
            "UPDATE collections SET next_seq = ? WHERE name = ?", (seq + 1, spec.name)
        )
        return seq

    def _put_in(
        self, conn: sqlite3.Connection, spec: CollectionSpec, record: Any
    ) -> RecordId:
        if not isinstance(record, Mapping):
            raise MalformedRecord(
                f"Records in {spec.name!r} must be mappings, got {type(record).__name__}"
            )
        record = dict(record)
        self._ensure_collection(conn, spec)

        key = record.get(spec.key_path)
        if key is None:
            if not spec.auto_increment:
                raise MalformedRecord(f"Record in {spec.name!r} is missing {spec.key_path!r}")
            key = self._next_id(conn, spec)
            record[spec.key_path] = key
        else:
            key = _check_key(spec, key)
            if spec.auto_increment and isinstance(key, int):
                conn.execute(
                    "UPDATE collections SET next_id = MAX(next_id, ?) WHERE name = ?",
                    (key + 1, spec.name),
                )

        try:
            payload = self._cipher.encode(record)
        except EncryptionError as exc:
            raise MalformedRecord(str(exc)) from exc

        encoded_key = _encode_key(key)
        now = datetime.now(timezone.utc).isoformat()
        existing = conn.execute(
            "SELECT seq FROM records WHERE collection = ? AND record_key = ?",
            (spec.name, encoded_key),
        ).fetchone()

        if existing is not None:
            seq = existing["seq"]
            conn.execute(
                """UPDATE records SET payload = ?, updated_at = ?
                   WHERE collection = ? AND record_key = ?""",
                (payload, now, spec.name, encoded_key),
            )
            conn.execute(
                "DELETE FROM record_index WHERE collection = ? AND record_key = ?",
                (spec.name, encoded_key),
            )
        else:
            seq = self._next_seq(conn, spec)
            conn.execute(
                """INSERT INTO records
                   (collection, record_key, seq, payload, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (spec.name, encoded_key, seq, payload, now, now),
            )

        for index_name in spec.indexes:
            value = record.get(index_name)
            if value is None:
                continue
            conn.execute(
                """INSERT INTO record_index
                   (collection, index_name, index_value, record_key, seq)
                   VALUES (?, ?, ?, ?, ?)""",
                (spec.name, index_name, _encode_index_value(value), encoded_key, seq),
            )
        return key

    def _delete_in(
        self, conn: sqlite3.Connection, spec: CollectionSpec, record_id: Any
    ) -> bool:
        encoded_key = _encode_key(_check_key(spec, record_id))
        conn.execute(
            "DELETE FROM record_index WHERE collection = ? AND record_key = ?",
            (spec.name, encoded_key),
        )
        cursor = conn.execute(
            "DELETE FROM records WHERE collection = ? AND record_key = ?",
            (spec.name, encoded_key),
        )
        return cursor.rowcount > 0

    def _clear_in(self, conn: sqlite3.Connection, spec: CollectionSpec) -> int:
        conn.execute("DELETE FROM record_index WHERE collection = ?", (spec.name,))
        cursor = conn.execute("DELETE FROM records WHERE collection = ?", (spec.name,))
        return cursor.rowcount

    def _decode(self, payload: str) -> Record:
        try:
            return self._cipher.decode(payload)
        except EncryptionError as exc:
            raise StorageUnavailable(f"Stored record is unreadable: {exc}") from exc
