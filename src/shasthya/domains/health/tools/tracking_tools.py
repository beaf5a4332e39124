"""MCP tools for health tracking: observations, reminders and community posts.

Writes go through the sync coordinator. The reply says whether a write was
``saved`` locally right away or ``queued`` until connectivity returns. A
delete of a record that does not exist replies ``not_found``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from shasthya.core.storage.record_store import StorageError
from shasthya.core.sync.coordinator import WriteOutcome

if TYPE_CHECKING:
    from shasthya.core.context import AppContext

logger = logging.getLogger(__name__)

_TOOL_STATUS = {"applied": "saved", "queued": "queued", "not_found": "not_found"}


def _outcome_payload(outcome: WriteOutcome, **extra: Any) -> str:
    payload = {
        "status": _TOOL_STATUS[outcome.status],
        "collection": outcome.collection,
        "id": outcome.record_id,
    }
    if outcome.pending_seq is not None:
        payload["pending_seq"] = outcome.pending_seq
    if outcome.remote_error:
        payload["remote_error"] = outcome.remote_error
    payload.update(extra)
    return json.dumps(payload)


def _error(exc: Exception) -> str:
    return json.dumps({"status": "error", "error": str(exc), "error_type": type(exc).__name__})


def register_tracking_tools(mcp: FastMCP, context: AppContext) -> None:
    """Register observation, reminder and community post tools."""
    records = context.records

    # --- Observations ---

    @mcp.tool
    async def record_observation(
        ctx: Context,
        observation_type: str,
        value: Any,
        date: str = "",
    ) -> str:
        """Log a health observation (mood, blood pressure, blood sugar, weight, ...).

        Args:
            observation_type: Kind of observation (e.g., 'mood', 'blood_pressure').
            value: The reading. A number, a word, or an object such as
                {"systolic": 120, "diastolic": 80}.
            date: Date of the reading (YYYY-MM-DD). Defaults to today.
        """
        await context.start()
        try:
            outcome = await records.record_observation(observation_type, value, date or None)
        except (ValueError, StorageError) as exc:
            return _error(exc)
        return _outcome_payload(outcome, type=observation_type)

    @mcp.tool
    async def list_observations(
        ctx: Context,
        date: str = "",
        observation_type: str = "",
    ) -> str:
        """List stored observations for a date or of one type.

        Args:
            date: Date to look up (YYYY-MM-DD).
            observation_type: Observation type to look up. Used when no date is given.
        """
        await context.start()
        if date:
            observations = await records.observations_on(date)
            if observation_type:
                observations = [o for o in observations if o.type == observation_type]
        elif observation_type:
            observations = await records.observations_of_type(observation_type)
        else:
            return json.dumps({"status": "error", "error": "Give a date or an observation_type"})

        return json.dumps({
            "status": "ok",
            "count": len(observations),
            "observations": [asdict(o) for o in observations],
        })

    # --- Reminders ---

    @mcp.tool
    async def add_reminder(ctx: Context, time: str, description: str) -> str:
        """Schedule a reminder (medication, appointment, check-up).

        Args:
            time: When to remind, ISO 8601 (e.g., '2026-02-01T08:00:00').
            description: What the reminder is about.
        """
        await context.start()
        try:
            outcome = await records.add_reminder(time, description)
        except (ValueError, StorageError) as exc:
            return _error(exc)
        return _outcome_payload(outcome, time=time)

    @mcp.tool
    async def list_reminders(ctx: Context, due_only: bool = False) -> str:
        """List reminders, earliest first.

        Args:
            due_only: Only return reminders whose time has passed.
        """
        await context.start()
        reminders = await (records.due_reminders() if due_only else records.reminders())
        return json.dumps({
            "status": "ok",
            "count": len(reminders),
            "reminders": [asdict(r) for r in reminders],
        })

    @mcp.tool
    async def acknowledge_reminder(ctx: Context, reminder_id: int) -> str:
        """Acknowledge a reminder, removing it.

        Args:
            reminder_id: The id returned when the reminder was added.
        """
        await context.start()
        try:
            outcome = await records.acknowledge_reminder(reminder_id)
        except StorageError as exc:
            return _error(exc)
        return _outcome_payload(outcome)

    # --- Community posts ---

    @mcp.tool
    async def submit_community_post(
        ctx: Context,
        content: str,
        location: str,
        date: str = "",
    ) -> str:
        """Share a post with the local community.

        Args:
            content: Text of the post.
            location: Area the post concerns (e.g., 'Dhanmondi').
            date: Date of the post (YYYY-MM-DD). Defaults to today.
        """
        await context.start()
        try:
            outcome = await records.submit_post(content, location, date or None)
        except (ValueError, StorageError) as exc:
            return _error(exc)
        return _outcome_payload(outcome, location=location)

    @mcp.tool
    async def list_community_posts(ctx: Context, location: str = "", date: str = "") -> str:
        """List community posts, optionally for one location or date.

        Args:
            location: Only posts for this location.
            date: Only posts from this date (YYYY-MM-DD).
        """
        await context.start()
        if location:
            posts = await records.posts_by_location(location)
            if date:
                posts = [p for p in posts if p.date == date]
        elif date:
            posts = await records.posts_on(date)
        else:
            posts = await records.all_posts()
        return json.dumps({
            "status": "ok",
            "count": len(posts),
            "posts": [asdict(p) for p in posts],
        })
