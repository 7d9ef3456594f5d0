"""
region.py — Does an alert configuration's region contain a disaster?

Only consulted when ``ALERT_REGION_FILTER`` is switched on; by default the
matching engine ignores regions entirely.

═══════════════════════════════════════════════════════════════════════════
REGION SHAPES
═══════════════════════════════════════════════════════════════════════════

    Point     centre (lon, lat) + radiusKm
              inside ⇔ haversine(centre, disaster) ≤ radiusKm
              A point without radiusKm matches only its exact location.

    Polygon   rings of (lon, lat); ring 0 is the outer boundary, later
              rings are holes
              inside ⇔ inside ring 0 AND outside every hole
              (even–odd ray casting in planar lon/lat; points on an edge
              count as inside)

An empty region (no coordinates) places no restriction: every disaster is
inside. A config created without a region therefore keeps matching when
region filtering is switched on.
"""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

from backend.app.domain.models import GeoPoint, Region, RegionKind
from backend.app.spatial.radius_utils import haversine

logger = logging.getLogger(__name__)

_EPSILON = 1e-12


# ═══════════════════════════════════════════════════════════════════════════
# Polygon Geometry
# ═══════════════════════════════════════════════════════════════════════════

def _on_segment(px: float, py: float, a: Tuple[float, float], b: Tuple[float, float]) -> bool:
    (ax, ay), (bx, by) = a, b
    cross = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
    if abs(cross) > _EPSILON:
        return False
    return (
        min(ax, bx) - _EPSILON <= px <= max(ax, bx) + _EPSILON
        and min(ay, by) - _EPSILON <= py <= max(ay, by) + _EPSILON
    )


def point_in_ring(point: GeoPoint, ring: Sequence[Tuple[float, float]]) -> bool:
    """
    Even–odd ray casting. The ring may be open or closed (first == last).

    >>> square = [(0, 0), (10, 0), (10, 10), (0, 10)]
    >>> point_in_ring(GeoPoint(5, 5), square)
    True
    >>> point_in_ring(GeoPoint(15, 5), square)
    False
    """
    if len(ring) < 3:
        return False

    px, py = point.longitude, point.latitude
    inside = False
    n = len(ring)
    for i in range(n):
        a = ring[i]
        b = ring[(i + 1) % n]
        if _on_segment(px, py, a, b):
            return True
        (ax, ay), (bx, by) = a, b
        if (ay > py) != (by > py):
            x_cross = ax + (py - ay) * (bx - ax) / (by - ay)
            if px < x_cross:
                inside = not inside
    return inside


# ═══════════════════════════════════════════════════════════════════════════
# Region Containment
# ═══════════════════════════════════════════════════════════════════════════

def region_contains(region: Region, point: GeoPoint) -> bool:
    """True if ``point`` lies inside ``region``."""
    if not region.coordinates:
        return True

    if region.kind == RegionKind.POINT:
        lon, lat = region.coordinates[:2]
        centre = GeoPoint(longitude=lon, latitude=lat)
        distance = haversine(centre, point)
        if region.radius_km is None:
            return distance <= _EPSILON
        return distance <= region.radius_km

    outer, *holes = region.coordinates
    if not point_in_ring(point, outer):
        return False
    # A point on a hole's edge stays inside the region
    for hole in holes:
        if point_in_ring(point, hole) and not any(
            _on_segment(point.longitude, point.latitude, hole[i], hole[(i + 1) % len(hole)])
            for i in range(len(hole))
        ):
            return False
    return True
