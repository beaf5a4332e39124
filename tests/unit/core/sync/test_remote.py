"""Tests for RemoteSyncClient — error classification of the remote endpoint."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import pytest
from fastmcp.exceptions import ToolError

from shasthya.core.sync.remote import (
    APPLY_TOOL,
    RemoteRejected,
    RemoteResponseError,
    RemoteSyncClient,
    RemoteUnavailable,
    _extract_payload,
    _format_error,
)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@dataclass
class _Result:
    """Mimics a fastmcp CallToolResult."""

    content: list[Any]
    data: Any = None
    structured_content: Any = None


class TestApply:
    def test_sends_write_to_apply_tool(self, remote_client, mock_mcp_client):
        result = _run(remote_client.apply("observations", "upsert", {"id": 1, "type": "mood"}))
        assert result == {"status": "ok"}
        assert mock_mcp_client.calls == [(
            APPLY_TOOL,
            {"collection": "observations", "operation": "upsert",
             "record": {"id": 1, "type": "mood"}},
        )]

    def test_connection_failure_is_unavailable(self, remote_client, mock_mcp_client):
        mock_mcp_client.responses.append(ConnectionError("refused"))
        with pytest.raises(RemoteUnavailable, match="refused"):
            _run(remote_client.apply("observations", "upsert", {"id": 1}))

    def test_tool_error_is_rejection(self, remote_client, mock_mcp_client):
        mock_mcp_client.responses.append(ToolError("schema mismatch"))
        with pytest.raises(RemoteRejected, match="schema mismatch"):
            _run(remote_client.apply("observations", "upsert", {"id": 1}))

    def test_error_status_is_rejection(self, remote_client, mock_mcp_client):
        mock_mcp_client.responses.append({"status": "error", "error": {"message": "duplicate"}})
        with pytest.raises(RemoteRejected, match="duplicate"):
            _run(remote_client.apply("observations", "upsert", {"id": 1}))

    def test_non_json_answer_is_response_error(self, remote_client, mock_mcp_client):
        mock_mcp_client.responses.append("<html>gateway timeout</html>")
        with pytest.raises(RemoteResponseError, match="Invalid JSON"):
            _run(remote_client.apply("observations", "upsert", {"id": 1}))

    def test_json_array_is_response_error(self, remote_client, mock_mcp_client):
        mock_mcp_client.responses.append("[1, 2]")
        with pytest.raises(RemoteResponseError, match="Expected JSON object"):
            _run(remote_client.apply("observations", "upsert", {"id": 1}))

    def test_ping(self, remote_client):
        assert _run(remote_client.ping()) is True


class TestExtractPayload:
    def test_prefers_structured_data(self):
        result = _Result(content=[], data={"status": "ok", "from": "data"})
        assert _extract_payload(result) == {"status": "ok", "from": "data"}

    def test_structured_content_fallback(self):
        result = _Result(content=[], structured_content={"status": "ok"})
        assert _extract_payload(result) == {"status": "ok"}

    def test_text_block(self):
        @dataclass
        class _Block:
            text: str

        assert _extract_payload(_Result(content=[_Block('{"a": 1}')])) == '{"a": 1}'

    def test_dict_block(self):
        assert _extract_payload([{"type": "text", "text": "{}"}]) == "{}"

    def test_nothing_usable(self):
        assert _extract_payload(_Result(content=[])) is None
        assert _extract_payload(42) is None


class TestFormatError:
    def test_formats(self):
        assert _format_error(None) == "Unknown error"
        assert _format_error({"code": "E_DUP"}) == "E_DUP"
        assert _format_error("plain") == "plain"
