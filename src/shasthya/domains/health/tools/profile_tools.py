"""MCP tools for the user profile (onboarding, login state, logout)."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from shasthya.core.storage.record_store import StorageUnavailable
from shasthya.domains.health.profile import ValidationFailed

if TYPE_CHECKING:
    from shasthya.core.context import AppContext

logger = logging.getLogger(__name__)


def register_profile_tools(mcp: FastMCP, context: AppContext) -> None:
    """Register profile tools on the MCP server."""

    @mcp.tool
    async def save_profile(
        ctx: Context,
        age_bracket: str,
        gender: str,
        religion: str = "",
        region: str = "",
        health_conditions: list[str] | None = None,
    ) -> str:
        """Create or replace your profile. Saving marks the session as logged in.

        Args:
            age_bracket: One of 'child', 'teen', 'adult', 'elderly'.
            gender: Gender as entered during onboarding.
            religion: Optional religion, used for culturally aware guidance.
            region: Optional region or district.
            health_conditions: Optional condition tags (e.g., ['diabetes']).
        """
        await context.start()
        try:
            profile = await context.profiles.save({
                "age_bracket": age_bracket,
                "gender": gender,
                "religion": religion,
                "region": region,
                "health_conditions": health_conditions or [],
            })
        except ValidationFailed as exc:
            return json.dumps({"status": "error", "error": str(exc), "missing": exc.missing})
        except StorageUnavailable as exc:
            logger.error("Profile save failed: %s", exc)
            return json.dumps({"status": "error", "error": str(exc)})

        return json.dumps({"status": "saved", "profile": profile.to_record()})

    @mcp.tool
    async def get_profile(ctx: Context) -> str:
        """Show the stored profile and the current session flags."""
        await context.start()
        profile = await context.profiles.current()
        if not profile:
            return json.dumps({"status": "not_found", "session": context.session.to_dict()})
        return json.dumps({
            "status": "ok",
            "profile": profile.to_record(),
            "session": context.session.to_dict(),
        })

    @mcp.tool
    async def logout(ctx: Context) -> str:
        """Delete the stored profile and end the session."""
        await context.start()
        removed = await context.profiles.clear()
        return json.dumps({
            "status": "deleted" if removed else "not_found",
            "logged_in": context.session.logged_in,
        })
