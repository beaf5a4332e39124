"""MCP client for the optional remote sync endpoint.

The remote endpoint is an MCP server exposing an ``apply_write`` tool that
accepts the same (collection, operation, record) triples the sync
coordinator applies locally. Calls go through ``fastmcp.Client``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastmcp.exceptions import ToolError

logger = logging.getLogger(__name__)

APPLY_TOOL = "apply_write"


class RemoteSyncError(Exception):
    """Base exception for remote sync failures."""


class RemoteUnavailable(RemoteSyncError):
    """The endpoint could not be reached. Retry on the next flush."""


class RemoteResponseError(RemoteSyncError):
    """The endpoint answered with something unusable. Retry on the next flush."""


class RemoteRejected(RemoteSyncError):
    """The endpoint refused this write. Retrying will not help."""


class RemoteSyncClient:
    """Mirrors pending writes to a remote MCP endpoint.

    Usage::

        from fastmcp import Client
        remote = RemoteSyncClient(Client("https://sync.example.org/mcp"))
        await remote.apply("observations", "upsert", {"id": 4, "type": "mood"})
    """

    def __init__(self, mcp_client: Any) -> None:
        """Initialise with a fastmcp.Client (or compatible)."""
        self._client = mcp_client

    async def apply(self, collection: str, operation: str, record: Any) -> dict[str, Any]:
        """Send one write to the endpoint.

        Raises:
            RemoteUnavailable: Connection or transport failure.
            RemoteRejected: The tool raised, or answered ``status: error``.
            RemoteResponseError: The answer was not a JSON object.
        """
        arguments = {"collection": collection, "operation": operation, "record": record}
        logger.debug("Mirroring %s on %s to remote endpoint", operation, collection)

        try:
            async with self._client:
                result = await self._client.call_tool(APPLY_TOOL, arguments)
        except ToolError as exc:
            raise RemoteRejected(f"Remote endpoint rejected write: {exc}") from exc
        except Exception as exc:
            logger.warning("Remote endpoint unreachable: %s", exc)
            raise RemoteUnavailable(f"Remote endpoint unreachable: {exc}") from exc

        parsed = _parse_payload(_extract_payload(result))
        if parsed.get("status") == "error":
            raise RemoteRejected(
                f"Remote endpoint rejected write: {_format_error(parsed.get('error'))}"
            )
        return parsed

    async def ping(self) -> bool:
        """Return True if the endpoint answers an MCP ping."""
        try:
            async with self._client:
                return bool(await self._client.ping())
        except Exception:
            logger.debug("Remote endpoint ping failed", exc_info=True)
            return False


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _extract_payload(result: Any) -> Any | None:
    """Pull a usable payload out of a fastmcp tool result.

    Handles ``CallToolResult`` objects (structured ``data`` first, then
    content blocks), bare lists of content blocks, raw strings and dicts.
    """
    if isinstance(result, (dict, str)):
        return result

    if hasattr(result, "content") and not isinstance(result, list):
        data = getattr(result, "data", None)
        if data is not None:
            return data
        structured = getattr(result, "structured_content", None)
        if structured is not None:
            return structured
        result = result.content

    if isinstance(result, list):
        for block in result:
            if isinstance(block, (dict, str)):
                return block.get("text") if isinstance(block, dict) else block
            text = getattr(block, "text", None)
            if text is not None:
                return text
    return None


def _parse_payload(payload: Any) -> dict[str, Any]:
    if payload is None:
        raise RemoteResponseError("Empty response from remote endpoint")

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, TypeError) as exc:
            raise RemoteResponseError(f"Invalid JSON from remote endpoint: {exc}") from exc

    if not isinstance(payload, dict):
        raise RemoteResponseError(
            f"Expected JSON object from remote endpoint, got {type(payload).__name__}"
        )
    return payload


def _format_error(error: Any) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, dict):
        msg = error.get("message") or error.get("code")
        return msg if isinstance(msg, str) and msg else str(error)
    return str(error)
