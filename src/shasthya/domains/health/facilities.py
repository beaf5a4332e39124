"""Facility directory — healthcare facility catalog with distance queries.

Distances are great-circle distances from the haversine formula on a
spherical earth of mean radius 6371 km.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import yaml

from shasthya.core.storage.models import FACILITIES, NOT_FOUND, NotFound
from shasthya.core.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
FACILITY_TYPES = ("hospital", "clinic", "pharmacy", "volunteer")
ALL_TYPES = "all"

# Bundled catalog, used when no catalog path is configured
DEFAULT_CATALOG = Path(__file__).resolve().parent / "data" / "facilities.yaml"

Point = tuple[float, float]


class InvalidFacility(ValueError):
    """A facility record has a bad type or coordinates."""


def _check_point(point: Any, what: str = "point") -> Point:
    try:
        lat, lon = float(point[0]), float(point[1])
    except (TypeError, ValueError, IndexError) as exc:
        raise InvalidFacility(f"{what} must be a (latitude, longitude) pair: {point!r}") from exc
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidFacility(f"{what} coordinates must be finite: {point!r}")
    if not -90.0 <= lat <= 90.0:
        raise InvalidFacility(f"{what} latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise InvalidFacility(f"{what} longitude out of range: {lon}")
    return lat, lon


def haversine_km(a: Point, b: Point) -> float:
    """Great-circle distance in kilometres between two (lat, lon) points."""
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


@dataclass(frozen=True)
class Facility:
    """A healthcare facility. Immutable once loaded."""

    name: str
    type: str  # 'hospital' | 'clinic' | 'pharmacy' | 'volunteer'
    latitude: float
    longitude: float
    address: str = ""
    phone: str = ""

    def __post_init__(self) -> None:
        if self.type not in FACILITY_TYPES:
            raise InvalidFacility(f"Unknown facility type {self.type!r} for {self.name!r}")
        lat, lon = _check_point((self.latitude, self.longitude), what=self.name)
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)

    @property
    def point(self) -> Point:
        return (self.latitude, self.longitude)

    def to_record(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Facility:
        try:
            return cls(
                name=record["name"],
                type=record["type"],
                latitude=record["latitude"],
                longitude=record["longitude"],
                address=record.get("address", ""),
                phone=record.get("phone", ""),
            )
        except KeyError as exc:
            raise InvalidFacility(f"Facility record missing {exc.args[0]!r}") from exc


def load_catalog(path: str | Path | None = None) -> list[Facility]:
    """Read facilities from a YAML catalog (``facilities:`` list).

    Raises:
        InvalidFacility: If any entry is invalid.
    """
    path = Path(path).expanduser() if path else DEFAULT_CATALOG
    with open(path, encoding="utf-8") as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    facilities = [Facility.from_record(entry) for entry in data.get("facilities", [])]
    logger.info("Loaded %d facilities from %s", len(facilities), path)
    return facilities


class FacilityDirectory:
    """In-memory facility catalog answering type and distance queries.

    The catalog is an immutable tuple replaced in one assignment by
    ``load()``, so a reader sees either the old or the new catalog.

    Usage::

        directory = FacilityDirectory(load_catalog())
        near = directory.query("hospital", center=(23.8103, 90.4125), radius_km=5)
        pharmacy = directory.nearest_of("pharmacy", (23.8103, 90.4125))
    """

    def __init__(self, facilities: Iterable[Facility | Mapping[str, Any]] = ()) -> None:
        self._catalog: tuple[Facility, ...] = ()
        self.load(facilities)

    def __len__(self) -> int:
        return len(self._catalog)

    @property
    def facilities(self) -> tuple[Facility, ...]:
        return self._catalog

    def load(self, facilities: Iterable[Facility | Mapping[str, Any]]) -> int:
        """Validate and swap in a new catalog. Returns the facility count.

        Raises:
            InvalidFacility: If any entry is invalid; the old catalog stays.
        """
        catalog = tuple(
            f if isinstance(f, Facility) else Facility.from_record(f) for f in facilities
        )
        self._catalog = catalog
        logger.debug("Facility catalog replaced: %d entries", len(catalog))
        return len(catalog)

    def query_with_distance(
        self,
        filter_type: str = ALL_TYPES,
        center: Point | None = None,
        radius_km: float | None = None,
    ) -> list[tuple[Facility, float | None]]:
        """Like :meth:`query`, but pairs each facility with its distance.

        Distance is None when no center is given.
        """
        if filter_type != ALL_TYPES and filter_type not in FACILITY_TYPES:
            raise ValueError(f"Unknown facility filter: {filter_type!r}")
        if radius_km is not None:
            if center is None:
                raise ValueError("radius_km requires a center")
            if not math.isfinite(radius_km) or radius_km < 0:
                raise ValueError(f"radius_km must be a non-negative number: {radius_km!r}")

        catalog = self._catalog
        matches = [f for f in catalog if filter_type == ALL_TYPES or f.type == filter_type]

        if center is None:
            return [(f, None) for f in matches]

        origin = _check_point(center, what="center")
        pairs = [(f, haversine_km(origin, f.point)) for f in matches]
        if radius_km is not None:
            pairs = [(f, d) for f, d in pairs if d <= radius_km]
        # sorted() is stable: ties keep catalog order
        return sorted(pairs, key=lambda pair: pair[1])

    def query(
        self,
        filter_type: str = ALL_TYPES,
        center: Point | None = None,
        radius_km: float | None = None,
    ) -> list[Facility]:
        """Return facilities of ``filter_type`` (or all, for ``"all"``).

        With a center, only facilities within ``radius_km`` (when given)
        are returned, nearest first. Without a center, catalog order.
        """
        return [f for f, _ in self.query_with_distance(filter_type, center, radius_km)]

    def nearest_of(self, filter_type: str, point: Point) -> Facility | NotFound:
        """Return the closest facility of ``filter_type`` to ``point``."""
        results = self.query(filter_type, center=point)
        return results[0] if results else NOT_FOUND

    # ------------------------------------------------------------------
    # Cache persistence
    # ------------------------------------------------------------------

    async def save_cache(self, store: RecordStore) -> int:
        """Persist the current catalog to the ``facilities`` collection."""
        keys = await store.replace_all(FACILITIES, [f.to_record() for f in self._catalog])
        return len(keys)

    async def restore_cache(self, store: RecordStore) -> int:
        """Load the catalog from the ``facilities`` collection.

        Returns the number of facilities loaded; 0 leaves the current
        catalog untouched.
        """
        records = await store.get_all(FACILITIES)
        if not records:
            return 0
        return self.load(records)
