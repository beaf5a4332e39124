"""Sync coordinator — buffers offline writes and drains them on reconnect.

Writes made while offline go to the pending-write queue instead of the
record store. When the connectivity monitor reports offline -> online, the
coordinator flushes the queue in enqueue order:

1. check it against the record store, then mirror it to the remote
   endpoint, if one is configured;
2. apply it to the record store and delete its queue row in the same
   SQLite transaction.

Step 2 is the resume point: after a crash, whatever is still in the queue is
exactly what has not been applied locally.

Failure policy:

* transient (remote unreachable, storage unavailable) — stop, keep the
  entry and everything after it, report ``SyncIncomplete``;
* permanent (malformed record, unreadable payload, remote rejection) — drop
  that one entry, emit one ``SyncItemDiscarded``, continue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from shasthya.core.audit.logger import AuditLogger
from shasthya.core.connectivity.monitor import ConnectivityMonitor, ConnectivityState
from shasthya.core.storage.models import NOT_FOUND, RecordId
from shasthya.core.storage.record_store import (
    UPSERT,
    MalformedRecord,
    RecordStore,
    StorageUnavailable,
)
from shasthya.core.sync.queue import PendingWrite, PendingWriteQueue
from shasthya.core.sync.remote import (
    RemoteRejected,
    RemoteResponseError,
    RemoteSyncClient,
    RemoteUnavailable,
)

logger = logging.getLogger(__name__)

FlushStatus = Literal["complete", "incomplete", "cancelled", "already_running"]

_TRANSIENT = (StorageUnavailable, RemoteUnavailable, RemoteResponseError)
_PERMANENT = (MalformedRecord, RemoteRejected)


@dataclass
class SyncIncomplete:
    """A flush stopped early; ``remaining`` entries are still queued."""

    remaining: int
    reason: str
    failed_seq: int | None = None
    error_type: str | None = None


@dataclass
class SyncItemDiscarded:
    """A pending write that was dropped because it can never apply."""

    seq: int
    collection: str
    operation: str
    reason: str
    error_type: str


@dataclass
class FlushReport:
    """Outcome of one ``flush()`` call."""

    status: FlushStatus
    applied: int = 0
    remaining: int = 0
    passes: int = 0
    discarded: list[SyncItemDiscarded] = field(default_factory=list)
    incomplete: SyncIncomplete | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class WriteOutcome:
    """Result of a write through the offline-aware write path."""

    status: Literal["applied", "queued", "not_found"]
    collection: str
    operation: str
    record_id: RecordId | None = None
    pending_seq: int | None = None
    remote_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncCoordinator:
    """Owns the pending-write queue and drains it when connectivity returns.

    Usage::

        coordinator = SyncCoordinator(store, queue, monitor, remote=remote)
        outcome = await coordinator.write("observations", "upsert", {"type": "mood"})
        monitor.signal_online()        # schedules a flush
        await coordinator.wait_idle()
    """

    def __init__(
        self,
        store: RecordStore,
        queue: PendingWriteQueue,
        monitor: ConnectivityMonitor,
        *,
        remote: RemoteSyncClient | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._monitor = monitor
        self._remote = remote
        self._audit = audit_logger

        self._flushing = False
        self._follow_up = False
        self._tasks: set[asyncio.Task] = set()
        self._last_report: FlushReport | None = None

        monitor.add_listener(self._on_transition)

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def last_report(self) -> FlushReport | None:
        return self._last_report

    @property
    def has_remote(self) -> bool:
        return self._remote is not None

    # ------------------------------------------------------------------
    # Queue access
    # ------------------------------------------------------------------

    def enqueue(self, collection: str, operation: str, record: Any) -> PendingWrite:
        """Append a write to the pending queue.

        Safe to call from connectivity listeners and while a flush runs;
        entries added mid-flush are picked up by a follow-up pass.
        """
        record_key = None
        if isinstance(record, Mapping) and collection in self._store.collections:
            key = record.get(self._store.spec(collection).key_path)
            record_key = None if key is None else str(key)
        return self._queue.enqueue(collection, operation, record, record_key=record_key)

    def pending(self, collection: str | None = None) -> list[PendingWrite]:
        return self._queue.entries(collection)

    def pending_count(self) -> int:
        return self._queue.count()

    # ------------------------------------------------------------------
    # Offline-aware write path
    # ------------------------------------------------------------------

    async def write(self, collection: str, operation: str, record: Any) -> WriteOutcome:
        """Apply a write now when online, otherwise queue it.

        Online writes still queue while older entries are pending, so the
        enqueue order is never overtaken. Auto-increment records get their
        key reserved before queueing, so the caller always learns the id.
        A delete applied online whose record does not exist reports
        ``not_found``.

        Raises:
            MalformedRecord: Unknown collection/operation or a record that
                can never be stored.
            StorageUnavailable: The store or queue cannot be written.
        """
        record_id = self._store.validate(collection, operation, record)
        key_path = self._store.spec(collection).key_path

        if operation == UPSERT:
            record = dict(record)
            if record_id is None:
                record_id = await self._store.reserve_id(collection)
                record[key_path] = record_id
        else:
            record = {key_path: record_id}

        if not self._monitor.is_online or self._queue.count() > 0:
            entry = self.enqueue(collection, operation, record)
            if self._monitor.is_online:
                self._schedule_flush()
            return WriteOutcome(
                status="queued",
                collection=collection,
                operation=operation,
                record_id=record_id,
                pending_seq=entry.seq,
            )

        result = await self._store.apply_write(collection, operation, record)
        outcome = WriteOutcome(
            status="not_found" if result is NOT_FOUND else "applied",
            collection=collection,
            operation=operation,
            record_id=record_id,
        )

        if self._remote is not None:
            try:
                await self._remote.apply(collection, operation, record)
            except _TRANSIENT as exc:
                # Local copy is in place; re-queue so the mirror is retried.
                entry = self.enqueue(collection, operation, record)
                outcome.pending_seq = entry.seq
                outcome.remote_error = str(exc)
            except RemoteRejected as exc:
                self._discarded(PendingWrite(
                    seq=0,
                    collection=collection,
                    operation=operation,
                    record=record,
                    enqueued_at="",
                ), exc)
                outcome.remote_error = str(exc)
        return outcome

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self, cancel_event: asyncio.Event | None = None) -> FlushReport:
        """Drain the pending queue in enqueue order.

        At most one flush runs at a time. A call made while one is running
        returns ``already_running`` immediately and requests a follow-up
        pass, which runs after the current pass if new entries arrived.

        Args:
            cancel_event: When set, draining stops before the next entry.
                Queued entries stay queued.
        """
        if self._flushing:
            self._follow_up = True
            logger.debug("Flush already running; follow-up requested")
            return FlushReport(status="already_running", remaining=self._safe_count())

        self._flushing = True
        report = FlushReport(status="complete")
        try:
            while True:
                self._follow_up = False
                limit = self._queue.max_seq()
                if limit is None:
                    break
                report.passes += 1
                await self._drain(limit, report, cancel_event)
                if report.status != "complete" or not self._follow_up:
                    break
        except StorageUnavailable as exc:
            report.status = "incomplete"
            report.incomplete = SyncIncomplete(
                remaining=self._safe_count(), reason=str(exc), error_type=type(exc).__name__
            )
        finally:
            self._flushing = False

        report.remaining = self._safe_count()
        self._finish(report)
        return report

    async def wait_idle(self) -> None:
        """Wait for flushes scheduled by connectivity events to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _drain(
        self,
        limit: int,
        report: FlushReport,
        cancel_event: asyncio.Event | None,
    ) -> None:
        """Apply queued entries with ``seq <= limit``, oldest first."""
        while True:
            if cancel_event is not None and cancel_event.is_set():
                report.status = "cancelled"
                logger.info("Flush cancelled with %d entries queued", self._safe_count())
                return

            entry = self._queue.head(max_seq=limit)
            if entry is None:
                return

            try:
                await self._apply(entry)
            except _TRANSIENT as exc:
                remaining = self._safe_count()
                report.status = "incomplete"
                report.incomplete = SyncIncomplete(
                    remaining=remaining,
                    reason=str(exc),
                    failed_seq=entry.seq,
                    error_type=type(exc).__name__,
                )
                logger.warning(
                    "SyncIncomplete: stopped at seq=%d (%s); %d entries remain",
                    entry.seq, type(exc).__name__, remaining,
                )
                return
            except _PERMANENT as exc:
                self._queue.remove(entry.seq)
                report.discarded.append(self._discarded(entry, exc))
            else:
                report.applied += 1

    async def _apply(self, entry: PendingWrite) -> None:
        if entry.decode_error is not None:
            raise MalformedRecord(entry.decode_error)
        self._store.validate(entry.collection, entry.operation, entry.record)

        if self._remote is not None:
            await self._remote.apply(entry.collection, entry.operation, entry.record)

        seq = entry.seq
        await self._store.apply_write(
            entry.collection,
            entry.operation,
            entry.record,
            before_commit=lambda conn: PendingWriteQueue.remove_in(conn, seq),
        )
        logger.debug("Applied pending %s on %s (seq=%d)", entry.operation, entry.collection, seq)

    def _discarded(self, entry: PendingWrite, exc: Exception) -> SyncItemDiscarded:
        diagnostic = SyncItemDiscarded(
            seq=entry.seq,
            collection=entry.collection,
            operation=entry.operation,
            reason=str(exc),
            error_type=type(exc).__name__,
        )
        logger.warning(
            "SyncItemDiscarded: seq=%d %s on %s dropped (%s: %s)",
            entry.seq, entry.operation, entry.collection, diagnostic.error_type, exc,
        )
        if self._audit is not None:
            self._audit.log_sync_discard(
                collection=entry.collection,
                operation=entry.operation,
                record=entry.record,
                seq=entry.seq,
                error_type=diagnostic.error_type,
            )
        return diagnostic

    def _finish(self, report: FlushReport) -> None:
        self._last_report = report
        if report.passes == 0 and report.status == "complete":
            return
        logger.info(
            "Flush %s: applied=%d discarded=%d remaining=%d",
            report.status, report.applied, len(report.discarded), report.remaining,
        )
        if self._audit is not None:
            self._audit.log_sync_flush(
                status=report.status,
                applied=report.applied,
                discarded=len(report.discarded),
                remaining=report.remaining,
                error_type=report.incomplete.error_type if report.incomplete else None,
            )

    def _safe_count(self) -> int:
        try:
            return self._queue.count()
        except StorageUnavailable:
            return -1

    def _on_transition(self, previous: ConnectivityState, current: ConnectivityState) -> None:
        if current is ConnectivityState.ONLINE:
            logger.info("Back online; scheduling flush of pending writes")
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; flush deferred to the next trigger")
            return
        task = loop.create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

