"""Health records — observations, reminders and community posts.

Writes go through the sync coordinator, so they apply immediately when
online and queue while offline. Reads come from the local record store and
therefore reflect only writes that have been applied.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from shasthya.core.audit.logger import AuditLogger
from shasthya.core.storage.models import COMMUNITY_POSTS, OBSERVATIONS, REMINDERS
from shasthya.core.storage.record_store import DELETE, UPSERT, RecordStore
from shasthya.core.sync.coordinator import SyncCoordinator, WriteOutcome
from shasthya.domains.health.models import CommunityPost, Observation, Reminder

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _scheduled_at(time: str) -> datetime:
    """Parse an ISO timestamp; naive times are taken as UTC."""
    scheduled = datetime.fromisoformat(time)
    if scheduled.tzinfo is None:
        scheduled = scheduled.replace(tzinfo=timezone.utc)
    return scheduled


class HealthRecords:
    """Domain operations over the auto-increment collections.

    Usage::

        records = HealthRecords(store, coordinator)
        outcome = await records.record_observation("mood", "good")
        today = await records.observations_on("2026-02-01")
    """

    def __init__(
        self,
        store: RecordStore,
        coordinator: SyncCoordinator,
        *,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._audit = audit_logger
        self._clock = clock

    # ------------------------------------------------------------------
    # Observations (append-only)
    # ------------------------------------------------------------------

    async def record_observation(
        self, obs_type: str, value: Any, date: str | None = None
    ) -> WriteOutcome:
        """Append an observation. ``date`` defaults to today (UTC)."""
        if not obs_type:
            raise ValueError("Observation type must not be empty")
        now = self._clock()
        observation = Observation(
            type=obs_type,
            value=value,
            date=date or now.strftime("%Y-%m-%d"),
            recorded_at=now.isoformat(),
        )
        outcome = await self._coordinator.write(OBSERVATIONS, UPSERT, observation.to_record())
        logger.info("Observation %s recorded (%s)", obs_type, outcome.status)
        return outcome

    async def observations_on(self, date: str) -> list[Observation]:
        records = await self._store.query_by_index(OBSERVATIONS, "date", date)
        return [Observation.from_record(r) for r in records]

    async def observations_of_type(self, obs_type: str) -> list[Observation]:
        records = await self._store.query_by_index(OBSERVATIONS, "type", obs_type)
        return [Observation.from_record(r) for r in records]

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def add_reminder(self, time: str, description: str) -> WriteOutcome:
        """Schedule a reminder at ``time`` (ISO 8601)."""
        datetime.fromisoformat(time)  # raises ValueError on a bad timestamp
        reminder = Reminder(time=time, description=description)
        return await self._coordinator.write(REMINDERS, UPSERT, reminder.to_record())

    async def reminders(self) -> list[Reminder]:
        """All stored reminders, earliest first."""
        records = await self._store.get_all(REMINDERS)
        return sorted(
            (Reminder.from_record(r) for r in records),
            key=lambda r: _scheduled_at(r.time),
        )

    async def reminders_at(self, time: str) -> list[Reminder]:
        records = await self._store.query_by_index(REMINDERS, "time", time)
        return [Reminder.from_record(r) for r in records]

    async def due_reminders(self, now: datetime | None = None) -> list[Reminder]:
        """Reminders scheduled at or before ``now``."""
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return [r for r in await self.reminders() if _scheduled_at(r.time) <= now]

    async def acknowledge_reminder(self, reminder_id: int) -> WriteOutcome:
        """Delete an acknowledged reminder.

        Online, an id with no stored reminder comes back as ``not_found``
        and nothing is audited.
        """
        outcome = await self._coordinator.write(REMINDERS, DELETE, reminder_id)
        if self._audit is not None and outcome.status != "not_found":
            self._audit.log_data_delete(
                collection=REMINDERS, count=1, metadata={"status": outcome.status}
            )
        return outcome

    # ------------------------------------------------------------------
    # Community posts (read-only after submission)
    # ------------------------------------------------------------------

    async def submit_post(
        self, content: str, location: str, date: str | None = None
    ) -> WriteOutcome:
        if not content.strip():
            raise ValueError("Post content must not be empty")
        post = CommunityPost(
            date=date or self._clock().strftime("%Y-%m-%d"),
            location=location,
            content=content,
        )
        return await self._coordinator.write(COMMUNITY_POSTS, UPSERT, post.to_record())

    async def all_posts(self) -> list[CommunityPost]:
        return [CommunityPost.from_record(r) for r in await self._store.get_all(COMMUNITY_POSTS)]

    async def posts_by_location(self, location: str) -> list[CommunityPost]:
        records = await self._store.query_by_index(COMMUNITY_POSTS, "location", location)
        return [CommunityPost.from_record(r) for r in records]

    async def posts_on(self, date: str) -> list[CommunityPost]:
        records = await self._store.query_by_index(COMMUNITY_POSTS, "date", date)
        return [CommunityPost.from_record(r) for r in records]
