"""Shasthya Offline MCP Server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from shasthya.core.config.settings import get_settings
from shasthya.core.connectivity.monitor import ConnectivityMonitor
from shasthya.core.context import AppContext, build_context
from shasthya.core.sync.remote import RemoteSyncClient
from shasthya.domains.health.tools.facility_tools import register_facility_tools
from shasthya.domains.health.tools.profile_tools import register_profile_tools
from shasthya.domains.health.tools.sync_tools import register_sync_tools
from shasthya.domains.health.tools.tracking_tools import register_tracking_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Shasthya Offline"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    context_override: AppContext | None = None,
    monitor_override: ConnectivityMonitor | None = None,
    remote_client_override: RemoteSyncClient | None = None,
) -> FastMCP:
    """Create and configure the Shasthya Offline MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Builds the application context (store, queue, monitor, coordinator)
    3. Registers all tools

    Session state (stored profile, facility cache) is restored lazily by
    the first tool call, since restoring needs a running event loop.
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Offline-first personal health client. Stores a user profile, "
            "health observations, reminders and community posts locally, "
            "queues writes while offline and syncs them on reconnect, and "
            "finds nearby healthcare facilities."
        ),
    )

    # --- Application context ---
    if context_override is not None:
        context = context_override
    else:
        context = build_context(
            settings,
            monitor=monitor_override,
            remote=remote_client_override,
        )
        logger.info(
            "Record store initialized: %s (schema v%d)",
            settings.db_path,
            context.database.get_schema_version(),
        )

    # --- Register tools ---
    @server.tool
    async def health_check() -> dict:
        """Check server health and return basic status information."""
        await context.start()
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "connectivity": context.monitor.state.value,
            "pending_writes": context.coordinator.pending_count(),
            "remote_sync": context.coordinator.has_remote,
            "facilities_loaded": len(context.facilities),
            "session": context.session.to_dict(),
        }

    register_profile_tools(server, context)
    register_tracking_tools(server, context)
    register_facility_tools(server, context)
    register_sync_tools(server, context)
    logger.info("Shasthya tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
