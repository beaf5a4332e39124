"""Integration tests for the Shasthya Offline MCP server."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client

from shasthya.core.connectivity.monitor import ConnectivityMonitor, ConnectivityState
from shasthya.core.server.app import create_app


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Decode the JSON text of a tool result (CallToolResult or content list)."""
    content = getattr(result, "content", result)
    return json.loads(content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "save_profile",
    "get_profile",
    "logout",
    "record_observation",
    "list_observations",
    "add_reminder",
    "acknowledge_reminder",
    "list_reminders",
    "submit_community_post",
    "list_community_posts",
    "find_facilities",
    "nearest_facility",
    "set_connectivity",
    "sync_now",
    "sync_status",
    "audit_events",
]


@pytest.fixture
def client():
    """Create an MCP client connected to a fresh in-memory server (starts online)."""
    monitor = ConnectivityMonitor(initial=ConnectivityState.ONLINE)
    return Client(create_app(monitor_override=monitor))


def test_server_starts_and_lists_tools(client):
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_returns_ok(client):
    async def _check():
        async with client:
            status = _payload(await client.call_tool("health_check", {}))
            assert status["status"] == "ok"
            assert status["connectivity"] == "online"
            assert status["facilities_loaded"] == 8
            assert status["session"]["logged_in"] is False
    _run(_check())


class TestProfileTools:
    def test_save_then_get(self, client):
        async def _check():
            async with client:
                saved = _payload(await client.call_tool(
                    "save_profile", {"age_bracket": "adult", "gender": "female"}
                ))
                assert saved["status"] == "saved"

                fetched = _payload(await client.call_tool("get_profile", {}))
                assert fetched["profile"]["gender"] == "female"
                assert fetched["session"]["logged_in"] is True
        _run(_check())

    def test_missing_gender_is_rejected(self, client):
        async def _check():
            async with client:
                result = _payload(await client.call_tool(
                    "save_profile", {"age_bracket": "adult", "gender": " "}
                ))
                assert result["status"] == "error"
                assert result["missing"] == ["gender"]

                fetched = _payload(await client.call_tool("get_profile", {}))
                assert fetched["status"] == "not_found"
        _run(_check())

    def test_logout(self, client):
        async def _check():
            async with client:
                await client.call_tool("save_profile", {"age_bracket": "adult", "gender": "male"})
                result = _payload(await client.call_tool("logout", {}))
                assert result == {"status": "deleted", "logged_in": False}

                events = _payload(await client.call_tool("audit_events", {"action": "data_delete"}))
                assert events["total_events"] == 1
        _run(_check())


class TestOfflineSync:
    def test_offline_writes_drain_on_reconnect(self, client):
        async def _check():
            async with client:
                await client.call_tool("set_connectivity", {"online": False})

                queued = _payload(await client.call_tool(
                    "record_observation",
                    {"observation_type": "mood", "value": "good", "date": "2026-02-01"},
                ))
                assert queued["status"] == "queued"
                assert queued["id"] == 1

                listed = _payload(await client.call_tool(
                    "list_observations", {"date": "2026-02-01"}
                ))
                assert listed["count"] == 0

                offline_sync = _payload(await client.call_tool("sync_now", {}))
                assert offline_sync["status"] == "offline"
                assert offline_sync["pending_writes"] == 1

                back = _payload(await client.call_tool("set_connectivity", {"online": True}))
                assert back["changed"] is True

                report = _payload(await client.call_tool("sync_now", {}))
                assert report["status"] == "complete"

                status = _payload(await client.call_tool("sync_status", {}))
                assert status["pending_writes"] == 0
                assert status["last_flush"]["status"] == "complete"

                listed = _payload(await client.call_tool(
                    "list_observations", {"date": "2026-02-01"}
                ))
                assert [o["value"] for o in listed["observations"]] == ["good"]
        _run(_check())

    def test_reminder_lifecycle(self, client):
        async def _check():
            async with client:
                added = _payload(await client.call_tool(
                    "add_reminder", {"time": "2026-02-01T08:00:00", "description": "Insulin"}
                ))
                assert added["status"] == "saved"

                listed = _payload(await client.call_tool("list_reminders", {}))
                assert [r["description"] for r in listed["reminders"]] == ["Insulin"]

                ack = _payload(await client.call_tool(
                    "acknowledge_reminder", {"reminder_id": added["id"]}
                ))
                assert ack["status"] == "saved"
                assert _payload(await client.call_tool("list_reminders", {}))["count"] == 0
        _run(_check())

    def test_acknowledge_unknown_reminder(self, client):
        async def _check():
            async with client:
                result = _payload(await client.call_tool(
                    "acknowledge_reminder", {"reminder_id": 999}
                ))
                assert result["status"] == "not_found"
                assert result["id"] == 999

                events = _payload(await client.call_tool("audit_events", {"action": "data_delete"}))
                assert events["total_events"] == 0
        _run(_check())

    def test_community_posts(self, client):
        async def _check():
            async with client:
                await client.call_tool(
                    "submit_community_post",
                    {"content": "Free eye camp", "location": "Mirpur", "date": "2026-02-01"},
                )
                posts = _payload(await client.call_tool(
                    "list_community_posts", {"location": "Mirpur"}
                ))
                assert [p["content"] for p in posts["posts"]] == ["Free eye camp"]
        _run(_check())


class TestFacilityTools:
    def test_hospitals_within_5km(self, client):
        async def _check():
            async with client:
                result = _payload(await client.call_tool("find_facilities", {
                    "facility_type": "hospital",
                    "latitude": 23.8103,
                    "longitude": 90.4125,
                    "radius_km": 5,
                }))
                assert [f["name"] for f in result["facilities"]] == [
                    "Dhaka Medical College Hospital",
                    "Bangabandhu Sheikh Mujib Medical University",
                ]
        _run(_check())

    def test_nearest_pharmacy(self, client):
        async def _check():
            async with client:
                result = _payload(await client.call_tool("nearest_facility", {
                    "facility_type": "pharmacy",
                    "latitude": 23.8103,
                    "longitude": 90.4125,
                }))
                assert result["facility"]["name"] == "Labaid Pharmacy"
                assert result["facility"]["distance_km"] == 0
        _run(_check())

    def test_unknown_type_is_error(self, client):
        async def _check():
            async with client:
                result = _payload(await client.call_tool(
                    "find_facilities", {"facility_type": "dentist"}
                ))
                assert result["status"] == "error"
        _run(_check())
