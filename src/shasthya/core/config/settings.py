"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Shasthya offline client configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; there is no auth layer in front of the tools.
    shasthya_host: str = "127.0.0.1"
    shasthya_port: int = 8001
    shasthya_log_level: str = "info"
    shasthya_allow_insecure_bind: bool = False

    # Storage (local record store)
    db_path: str = "~/.shasthya/health.db"

    # Encryption of record payloads at rest. Empty stores plain JSON.
    encryption_key: str = ""

    # Remote sync endpoint (MCP). Empty means flush only reconciles locally.
    remote_sync_url: str = ""

    # Connectivity probing
    connectivity_probe_host: str = "1.1.1.1"
    connectivity_probe_port: int = 53
    connectivity_probe_timeout: float = 3.0
    connectivity_poll_seconds: float = 30.0

    # Facility directory
    facility_catalog_path: str = ""

    # Session defaults
    default_language: str = "bn"


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
