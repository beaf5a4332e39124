"""MCP tools for finding nearby healthcare facilities."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from shasthya.domains.health.facilities import ALL_TYPES, Facility

if TYPE_CHECKING:
    from shasthya.core.context import AppContext

logger = logging.getLogger(__name__)


def _facility_payload(facility: Facility, distance_km: float | None) -> dict:
    payload = facility.to_record()
    if distance_km is not None:
        payload["distance_km"] = round(distance_km, 3)
    return payload


def register_facility_tools(mcp: FastMCP, context: AppContext) -> None:
    """Register facility directory tools on the MCP server."""
    directory = context.facilities

    @mcp.tool
    async def find_facilities(
        ctx: Context,
        facility_type: str = ALL_TYPES,
        latitude: float | None = None,
        longitude: float | None = None,
        radius_km: float | None = None,
    ) -> str:
        """Find hospitals, clinics, pharmacies or volunteer centres.

        With a location, results are sorted nearest first and can be limited
        to a radius.

        Args:
            facility_type: 'hospital', 'clinic', 'pharmacy', 'volunteer' or 'all'.
            latitude: Your latitude in degrees.
            longitude: Your longitude in degrees.
            radius_km: Only facilities within this many kilometres.
        """
        await context.start()
        if (latitude is None) != (longitude is None):
            return json.dumps({
                "status": "error",
                "error": "latitude and longitude must be given together",
            })
        center = (latitude, longitude) if latitude is not None else None

        try:
            results = directory.query_with_distance(facility_type, center, radius_km)
        except ValueError as exc:
            return json.dumps({"status": "error", "error": str(exc)})

        return json.dumps({
            "status": "ok",
            "count": len(results),
            "facilities": [_facility_payload(f, d) for f, d in results],
        })

    @mcp.tool
    async def nearest_facility(
        ctx: Context,
        facility_type: str,
        latitude: float,
        longitude: float,
    ) -> str:
        """Find the single closest facility of a type.

        Args:
            facility_type: 'hospital', 'clinic', 'pharmacy', 'volunteer' or 'all'.
            latitude: Your latitude in degrees.
            longitude: Your longitude in degrees.
        """
        await context.start()
        try:
            results = directory.query_with_distance(facility_type, (latitude, longitude))
        except ValueError as exc:
            return json.dumps({"status": "error", "error": str(exc)})

        if not results:
            return json.dumps({"status": "not_found", "facility_type": facility_type})
        facility, distance = results[0]
        return json.dumps({"status": "ok", "facility": _facility_payload(facility, distance)})
