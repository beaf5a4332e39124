"""Domain records stored in the local record store."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

# Fixed key of the one and only profile record
PROFILE_ID = "userProfile"


@dataclass
class Profile:
    """The single user profile. Overwritten, never appended."""

    age_bracket: str  # 'child' | 'teen' | 'adult' | 'elderly'
    gender: str
    religion: str = ""
    region: str = ""
    health_conditions: list[str] = field(default_factory=list)
    login_time: str = ""  # ISO 8601
    id: str = PROFILE_ID

    def to_record(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Profile:
        return cls(
            age_bracket=record.get("age_bracket", ""),
            gender=record.get("gender", ""),
            religion=record.get("religion", ""),
            region=record.get("region", ""),
            health_conditions=list(record.get("health_conditions") or []),
            login_time=record.get("login_time", ""),
            id=record.get("id", PROFILE_ID),
        )


@dataclass
class Observation:
    """One entry of the append-only health log (mood, vitals, ...)."""

    type: str   # 'mood', 'blood_pressure', 'blood_sugar', 'weight', 'heart_rate'
    value: Any  # scalar or dict, e.g. {"systolic": 120, "diastolic": 80}
    date: str   # YYYY-MM-DD
    recorded_at: str = ""  # ISO 8601
    id: int | None = None

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        if self.id is None:
            record.pop("id")
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Observation:
        return cls(
            type=record["type"],
            value=record.get("value"),
            date=record["date"],
            recorded_at=record.get("recorded_at", ""),
            id=record.get("id"),
        )


@dataclass
class Reminder:
    """A scheduled reminder. Deleted once acknowledged."""

    time: str  # ISO 8601
    description: str
    id: int | None = None

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        if self.id is None:
            record.pop("id")
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Reminder:
        return cls(time=record["time"], description=record.get("description", ""), id=record.get("id"))


@dataclass
class CommunityPost:
    """A read-only community post."""

    date: str  # YYYY-MM-DD
    location: str
    content: str
    id: int | None = None

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        if self.id is None:
            record.pop("id")
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CommunityPost:
        return cls(
            date=record["date"],
            location=record.get("location", ""),
            content=record.get("content", ""),
            id=record.get("id"),
        )
