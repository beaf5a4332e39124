"""MCP tools for connectivity, offline sync and the audit trail.

The audit trail is PHI-free: it records flush outcomes, discarded writes
and deletions, with record hashes instead of record contents.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from shasthya.core.context import AppContext

logger = logging.getLogger(__name__)


def register_sync_tools(mcp: FastMCP, context: AppContext) -> None:
    """Register connectivity, sync and audit tools on the MCP server."""
    monitor = context.monitor
    coordinator = context.coordinator

    @mcp.tool
    async def set_connectivity(ctx: Context, online: bool | None = None) -> str:
        """Report a connectivity change, or re-probe the network.

        Going from offline to online starts draining queued writes.

        Args:
            online: True/False to report the new state. Omit to probe.
        """
        await context.start()
        if online is None:
            changed = await monitor.refresh()
        else:
            changed = monitor.signal(online)
        return json.dumps({
            "status": "ok",
            "connectivity": monitor.state.value,
            "changed": changed,
            "pending_writes": coordinator.pending_count(),
        })

    @mcp.tool
    async def sync_now(ctx: Context) -> str:
        """Drain queued writes now. Does nothing while offline."""
        await context.start()
        if not monitor.is_online:
            return json.dumps({
                "status": "offline",
                "pending_writes": coordinator.pending_count(),
            })
        # Let flushes already scheduled by a reconnect finish first
        await coordinator.wait_idle()
        report = await coordinator.flush()
        return json.dumps(report.to_dict())

    @mcp.tool
    async def sync_status(ctx: Context) -> str:
        """Show connectivity, queued writes and the last flush result."""
        await context.start()
        last = coordinator.last_report
        return json.dumps({
            "status": "ok",
            "connectivity": monitor.state.value,
            "flushing": coordinator.is_flushing,
            "remote_sync": coordinator.has_remote,
            "pending_writes": coordinator.pending_count(),
            "pending": [entry.to_dict() for entry in coordinator.pending()],
            "last_flush": last.to_dict() if last is not None else None,
        }, indent=2)

    @mcp.tool
    async def audit_events(
        ctx: Context,
        action: str = "",
        days: int = 30,
        limit: int = 20,
    ) -> str:
        """View recent sync and deletion events from the audit trail.

        Args:
            action: Only events of this action ('sync_flush', 'sync_discard',
                'data_delete').
            days: Number of days to look back (default: 30).
            limit: Maximum number of events to return.
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        events = context.audit.get_events(action=action or None, since=since, limit=limit)

        display_events = []
        for event in events:
            display_events.append({
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "collection": event.get("collection"),
                "operation": event.get("operation"),
                "item_count": event.get("item_count"),
                "status": event.get("status"),
                "error_type": event.get("error_type"),
            })

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": context.audit.count_events(action=action or None),
            "events": display_events,
        }, indent=2)
