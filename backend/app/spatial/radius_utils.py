"""
radius_utils.py — Great-circle radius search over disaster locations.

Provides:
    - Haversine distance between two GeoPoints, in km or miles
    - Bounding-box pre-filter (cheap rejection before trig)
    - Radius filtering of any sequence of located items

Radius semantics follow a spherical-cap search: the requested distance is
converted to an angular radius by dividing by Earth's mean radius in the
requested unit (6371 km, 3959 mi), and a point is inside when its central
angle to the centre is within that angular radius.

Haversine Formula
=================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Callable, List, Sequence, Tuple, TypeVar

from backend.app.domain.models import GeoPoint


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

class DistanceUnit(str, Enum):
    KM = "km"
    MI = "mi"


EARTH_RADIUS = {
    DistanceUnit.KM: 6371.0,
    DistanceUnit.MI: 3959.0,
}

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Haversine
# ---------------------------------------------------------------------------

def central_angle(p1: GeoPoint, p2: GeoPoint) -> float:
    """Angular distance between two points, in radians."""
    lat1, lat2 = math.radians(p1.latitude), math.radians(p2.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(p2.longitude - p1.longitude)

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2.0) ** 2
    )
    a = min(1.0, max(0.0, a))
    return 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))


def haversine(
    p1: GeoPoint, p2: GeoPoint, unit: DistanceUnit = DistanceUnit.KM,
) -> float:
    """
    Great-circle distance between two points.

    >>> haversine(GeoPoint(0, 0), GeoPoint(0, 0))
    0.0
    """
    return EARTH_RADIUS[DistanceUnit(unit)] * central_angle(p1, p2)


# ---------------------------------------------------------------------------
# Bounding box
# ---------------------------------------------------------------------------

def bounding_box(
    center: GeoPoint, radius: float, unit: DistanceUnit = DistanceUnit.KM,
) -> Tuple[float, float, float, float]:
    """
    (min_lat, max_lat, min_lon, max_lon) fully containing the search circle.

    Boxes that would cross the antimeridian or a pole widen to the full
    longitude range, so the box never rejects a true hit.
    """
    angular = radius / EARTH_RADIUS[DistanceUnit(unit)]

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    cos_lat = math.cos(math.radians(center.latitude))
    if min_lat <= -90.0 or max_lat >= 90.0 or cos_lat <= 1e-10:
        return max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0

    delta_lon = math.degrees(angular / cos_lat)
    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0 or max_lon > 180.0:
        min_lon, max_lon = -180.0, 180.0

    return min_lat, max_lat, min_lon, max_lon


def inside_bbox(
    point: GeoPoint, bbox: Tuple[float, float, float, float],
) -> bool:
    min_lat, max_lat, min_lon, max_lon = bbox
    return (
        min_lat <= point.latitude <= max_lat
        and min_lon <= point.longitude <= max_lon
    )


# ---------------------------------------------------------------------------
# Radius filtering
# ---------------------------------------------------------------------------

def is_inside_radius(
    center: GeoPoint,
    point: GeoPoint,
    radius: float,
    unit: DistanceUnit = DistanceUnit.KM,
) -> bool:
    if radius <= 0:
        raise ValueError(f"Radius must be positive, got {radius}")
    angular_radius = radius / EARTH_RADIUS[DistanceUnit(unit)]
    return central_angle(center, point) <= angular_radius


def filter_within_radius(
    center: GeoPoint,
    items: Sequence[T],
    radius: float,
    *,
    unit: DistanceUnit = DistanceUnit.KM,
    location_of: Callable[[T], GeoPoint] = lambda item: item.location,
) -> List[T]:
    """
    Keep the items whose location lies within ``radius`` of ``center``.

    Input order is preserved. Bounding-box rejection runs before the
    precise spherical check.
    """
    if radius <= 0:
        raise ValueError(f"Radius must be positive, got {radius}")

    bbox = bounding_box(center, radius, unit)
    matched: List[T] = []
    for item in items:
        point = location_of(item)
        if not inside_bbox(point, bbox):
            continue
        if is_inside_radius(center, point, radius, unit):
            matched.append(item)
    return matched

