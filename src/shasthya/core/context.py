"""Application context — builds and owns every component of one session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import yaml

from shasthya.core.audit.logger import AuditLogger
from shasthya.core.config.settings import Settings
from shasthya.core.connectivity.monitor import (
    ConnectivityMonitor,
    ConnectivityState,
    socket_probe,
)
from shasthya.core.session import SessionState
from shasthya.core.storage.database import HealthDatabase
from shasthya.core.storage.encryption import RecordCipher
from shasthya.core.storage.record_store import RecordStore
from shasthya.core.sync.coordinator import SyncCoordinator
from shasthya.core.sync.queue import PendingWriteQueue
from shasthya.core.sync.remote import RemoteSyncClient
from shasthya.domains.health.facilities import FacilityDirectory, InvalidFacility, load_catalog
from shasthya.domains.health.profile import ProfileManager
from shasthya.domains.health.records import HealthRecords

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything one running client needs, wired together."""

    settings: Settings
    database: HealthDatabase
    store: RecordStore
    monitor: ConnectivityMonitor
    coordinator: SyncCoordinator
    audit: AuditLogger
    profiles: ProfileManager
    records: HealthRecords
    facilities: FacilityDirectory
    session: SessionState
    _started: bool = field(default=False, repr=False)
    _stop: asyncio.Event | None = field(default=None, repr=False)
    _watcher: asyncio.Task | None = field(default=None, repr=False)

    async def start(self) -> None:
        """Restore persisted session state. Idempotent.

        Loads a stored profile, and reconciles the facility cache: a fresh
        catalog is cached, an empty one is replaced by the cache. Starts
        connectivity polling when the monitor has a probe, and flushes
        writes left queued by a previous run.
        """
        if self._started:
            return
        self._started = True

        await self.profiles.restore_session()
        if len(self.facilities):
            await self.facilities.save_cache(self.store)
        else:
            restored = await self.facilities.restore_cache(self.store)
            logger.info("Restored %d facilities from cache", restored)

        interval = self.settings.connectivity_poll_seconds
        if self.monitor.has_probe and interval > 0:
            self._stop = asyncio.Event()
            self._watcher = asyncio.get_running_loop().create_task(
                self.monitor.watch(interval, self._stop)
            )

        if self.monitor.is_online and self.coordinator.pending_count():
            await self.coordinator.flush()

    def close(self) -> None:
        if self._stop is not None:
            self._stop.set()
        self.database.close()


def build_context(
    settings: Settings,
    *,
    database: HealthDatabase | None = None,
    monitor: ConnectivityMonitor | None = None,
    remote: RemoteSyncClient | None = None,
    facility_directory: FacilityDirectory | None = None,
) -> AppContext:
    """Create and wire all components from settings.

    Overrides let tests inject an in-memory database, a monitor with a
    fixed state, or a fake remote endpoint.

    Raises:
        EncryptionError: If the configured encryption key is invalid.
        DatabaseError: If the database cannot be opened.
    """
    if database is None:
        database = HealthDatabase(settings.db_path)
    database.initialize()

    cipher = RecordCipher(settings.encryption_key or None)
    if not cipher.encrypted:
        logger.warning(
            "No ENCRYPTION_KEY configured — record payloads are stored as plain JSON"
        )

    store = RecordStore(database, cipher)
    queue = PendingWriteQueue(database, cipher)
    audit = AuditLogger(database)

    if monitor is None:
        monitor = ConnectivityMonitor(
            probe=socket_probe(
                settings.connectivity_probe_host,
                settings.connectivity_probe_port,
                settings.connectivity_probe_timeout,
            )
        )

    if remote is None and settings.remote_sync_url:
        from fastmcp import Client as MCPClient

        remote = RemoteSyncClient(MCPClient(settings.remote_sync_url))
        logger.info("Remote sync endpoint configured: %s", settings.remote_sync_url)

    session = SessionState(online=monitor.is_online, language=settings.default_language)

    def _track_online(previous: ConnectivityState, current: ConnectivityState) -> None:
        session.online = current is ConnectivityState.ONLINE

    monitor.add_listener(_track_online)

    coordinator = SyncCoordinator(store, queue, monitor, remote=remote, audit_logger=audit)

    if facility_directory is None:
        facility_directory = FacilityDirectory()
        try:
            facility_directory.load(load_catalog(settings.facility_catalog_path or None))
        except (OSError, yaml.YAMLError, InvalidFacility) as exc:
            logger.error("Failed to load facility catalog: %s", exc)

    return AppContext(
        settings=settings,
        database=database,
        store=store,
        monitor=monitor,
        coordinator=coordinator,
        audit=audit,
        profiles=ProfileManager(store, session, audit_logger=audit),
        records=HealthRecords(store, coordinator, audit_logger=audit),
        facilities=facility_directory,
        session=session,
    )
