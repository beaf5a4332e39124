"""Profile manager — lifecycle of the single user profile.

The profile lives under a fixed key in the ``profile`` collection, so saving
twice overwrites instead of adding a second record.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from shasthya.core.audit.logger import AuditLogger
from shasthya.core.session import SessionState
from shasthya.core.storage.models import NOT_FOUND, PROFILE, NotFound
from shasthya.core.storage.record_store import RecordStore
from shasthya.domains.health.models import PROFILE_ID, Profile

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("age_bracket", "gender")


class ValidationFailed(Exception):
    """Profile input is incomplete; nothing was written."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required profile fields: {', '.join(missing)}")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProfileManager:
    """Creates, replaces and clears the singleton profile."""

    def __init__(
        self,
        store: RecordStore,
        session: SessionState,
        *,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], str] = _utc_now,
    ) -> None:
        self._store = store
        self._session = session
        self._audit = audit_logger
        self._clock = clock

    async def save(self, fields: Mapping[str, Any]) -> Profile:
        """Validate, stamp the login time, and store the profile.

        Raises:
            ValidationFailed: If age bracket or gender is missing or blank.
        """
        cleaned = {
            name: str(fields.get(name) or "").strip()
            for name in ("age_bracket", "gender", "religion", "region")
        }
        missing = [name for name in REQUIRED_FIELDS if not cleaned[name]]
        if missing:
            raise ValidationFailed(missing)

        raw_conditions = fields.get("health_conditions") or []
        if isinstance(raw_conditions, str):
            raw_conditions = [raw_conditions]
        conditions: list[str] = []
        for tag in raw_conditions:
            tag = str(tag).strip()
            if tag and tag not in conditions:
                conditions.append(tag)

        profile = Profile(
            age_bracket=cleaned["age_bracket"],
            gender=cleaned["gender"],
            religion=cleaned["religion"],
            region=cleaned["region"],
            health_conditions=conditions,
            login_time=self._clock(),
        )
        await self._store.put(PROFILE, profile.to_record())
        self._session.logged_in = True
        logger.info("Profile saved (age_bracket=%s)", profile.age_bracket)
        return profile

    async def current(self) -> Profile | NotFound:
        record = await self._store.get(PROFILE, PROFILE_ID)
        if not record:
            return NOT_FOUND
        return Profile.from_record(record)

    async def clear(self) -> bool:
        """Delete the profile and log the session out.

        Returns:
            True if a stored profile was removed.
        """
        deleted = await self._store.delete(PROFILE, PROFILE_ID)
        self._session.logged_in = False
        if deleted:
            if self._audit is not None:
                self._audit.log_data_delete(collection=PROFILE, count=1)
            logger.info("Profile cleared")
        return bool(deleted)

    async def restore_session(self) -> Profile | NotFound:
        """Load a stored profile at startup and mark the session accordingly."""
        profile = await self.current()
        self._session.logged_in = bool(profile)
        return profile
