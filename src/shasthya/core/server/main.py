"""Shasthya server entry point — ``python -m shasthya.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from shasthya.core.config.settings import get_settings
from shasthya.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the Shasthya MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.shasthya_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.shasthya_allow_insecure_bind and not _is_loopback_host(settings.shasthya_host):
        raise RuntimeError(
            "Refusing to bind Shasthya server to a non-loopback host without an auth layer. "
            "Set SHASTHYA_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting Shasthya Offline server on %s:%d",
        settings.shasthya_host,
        settings.shasthya_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.shasthya_host,
        port=settings.shasthya_port,
    )


if __name__ == "__main__":
    run()
