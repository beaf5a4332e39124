"""Shared test fixtures for Shasthya tests."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("REMOTE_SYNC_URL", "")
    monkeypatch.setenv("FACILITY_CATALOG_PATH", "")
    monkeypatch.setenv("CONNECTIVITY_POLL_SECONDS", "0")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from shasthya.core.connectivity.monitor import ConnectivityMonitor, ConnectivityState  # noqa: E402


# ---------------------------------------------------------------------------
# Mock remote sync endpoint
# ---------------------------------------------------------------------------

@dataclass
class _TextBlock:
    """Mimics fastmcp content block structure."""

    type: str
    text: str


class MockMCPClient:
    """Mock fastmcp.Client standing in for the remote ``apply_write`` endpoint.

    Records every call. ``responses`` are consumed in order; an Exception
    instance is raised instead of returned. Once exhausted, every call is
    answered with ``{"status": "ok"}``.
    """

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> list[Any]:
        self.calls.append((tool_name, arguments))
        response: Any = {"status": "ok"}
        if self.responses:
            response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            response = json.dumps(response)
        return [_TextBlock(type="text", text=response)]

    async def ping(self) -> bool:
        return True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def mock_mcp_client() -> MockMCPClient:
    return MockMCPClient()


@pytest.fixture
def remote_client(mock_mcp_client: MockMCPClient):
    """Create a RemoteSyncClient backed by MockMCPClient."""
    from shasthya.core.sync.remote import RemoteSyncClient

    return RemoteSyncClient(mock_mcp_client)


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from shasthya.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def record_cipher():
    """Create a RecordCipher with a fresh test key."""
    from shasthya.core.storage.encryption import RecordCipher

    return RecordCipher(RecordCipher.generate_key())


@pytest.fixture
def record_store(health_db, record_cipher):
    """Create a RecordStore backed by in-memory SQLite."""
    from shasthya.core.storage.record_store import RecordStore

    return RecordStore(health_db, record_cipher)


@pytest.fixture
def pending_queue(health_db, record_cipher):
    from shasthya.core.sync.queue import PendingWriteQueue

    return PendingWriteQueue(health_db, record_cipher)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from shasthya.core.audit.logger import AuditLogger

    return AuditLogger(health_db)


# ---------------------------------------------------------------------------
# Connectivity and sync fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def online_monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor(initial=ConnectivityState.ONLINE)


@pytest.fixture
def offline_monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor(initial=ConnectivityState.OFFLINE)


@pytest.fixture
def coordinator(record_store, pending_queue, offline_monitor, audit_logger):
    """A coordinator that starts offline, with no remote endpoint."""
    from shasthya.core.sync.coordinator import SyncCoordinator

    return SyncCoordinator(record_store, pending_queue, offline_monitor, audit_logger=audit_logger)


@pytest.fixture
def session():
    from shasthya.core.session import SessionState

    return SessionState()


# ---------------------------------------------------------------------------
# Facility fixture (the eight-facility Dhaka catalog)
# ---------------------------------------------------------------------------

FACILITY_FIXTURE: list[dict[str, Any]] = [
    {"name": "Dhaka Medical College Hospital", "type": "hospital",
     "latitude": 23.8223, "longitude": 90.4131},
    {"name": "Bangabandhu Sheikh Mujib Medical University", "type": "hospital",
     "latitude": 23.8245, "longitude": 90.4153},
    {"name": "Ibn Sina Hospital", "type": "hospital",
     "latitude": 23.7589, "longitude": 90.3876},
    {"name": "Square Hospital", "type": "hospital",
     "latitude": 23.7465, "longitude": 90.3760},
    {"name": "Ibn Sina Diagnostic Centre", "type": "clinic",
     "latitude": 23.7925, "longitude": 90.4075},
    {"name": "Popular Diagnostic Centre", "type": "clinic",
     "latitude": 23.7589, "longitude": 90.3876},
    {"name": "Labaid Pharmacy", "type": "pharmacy",
     "latitude": 23.8103, "longitude": 90.4125},
    {"name": "Health Service Volunteer Centre", "type": "volunteer",
     "latitude": 23.7954, "longitude": 90.4043},
]


@pytest.fixture
def facility_directory():
    from shasthya.domains.health.facilities import FacilityDirectory

    return FacilityDirectory(FACILITY_FIXTURE)
