"""Collection declarations and shared types for the record store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

RecordId = Union[int, str]
Record = dict[str, Any]

# Collection names
PROFILE = "profile"
OBSERVATIONS = "observations"
REMINDERS = "reminders"
COMMUNITY_POSTS = "communityPosts"
FACILITIES = "facilities"


class NotFound:
    """Typed absence returned by lookups that find nothing.

    Falsy, so ``if not result`` reads naturally. Use the ``NOT_FOUND``
    singleton rather than constructing new instances.
    """

    _instance: NotFound | None = None

    def __new__(cls) -> NotFound:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = NotFound()


@dataclass(frozen=True)
class CollectionSpec:
    """Declared key policy and secondary indexes of one collection.

    ``key_path`` names the record field holding the primary key. With
    ``auto_increment`` the store assigns integer keys to records that don't
    carry one; otherwise the record must supply the key itself.
    """

    name: str
    key_path: str = "id"
    auto_increment: bool = True
    indexes: tuple[str, ...] = field(default_factory=tuple)


DEFAULT_COLLECTIONS: tuple[CollectionSpec, ...] = (
    CollectionSpec(PROFILE, key_path="id", auto_increment=False),
    CollectionSpec(OBSERVATIONS, indexes=("date", "type")),
    CollectionSpec(REMINDERS, indexes=("time",)),
    CollectionSpec(COMMUNITY_POSTS, indexes=("date", "location")),
    CollectionSpec(FACILITIES, indexes=("type",)),
)
