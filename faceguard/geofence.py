"""Site boundary geometry: circles, polygons and containment checks.

Polygon rings follow the GeoJSON convention of ``[lng, lat]`` pairs with the
first vertex repeated at the end. Every containment check fails closed: an
invalid boundary never contains a point.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0
# Equatorial radius used for geodesic ring areas.
WGS84_RADIUS_M = 6378137.0
_EDGE_TOLERANCE = 1e-12

Ring = List[List[float]]

_WKT_POLYGON = re.compile(r"POLYGON\s*\(\((.+)\)\)", re.IGNORECASE)


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def distance_to(self, other: "GeoPoint") -> float:
        return haversine_distance_m(self.lat, self.lng, other.lat, other.lng)


@dataclass(frozen=True)
class CircleBoundary:
    center: GeoPoint
    radius_m: float


@dataclass(frozen=True)
class PolygonBoundary:
    ring: Tuple[Tuple[float, float], ...]

    @classmethod
    def from_ring(cls, ring: Iterable[Sequence[float]]) -> "PolygonBoundary":
        return cls(tuple((float(p[0]), float(p[1])) for p in ring))


Boundary = Union[CircleBoundary, PolygonBoundary]


@dataclass(frozen=True)
class Site:
    id: Any
    name: str
    boundary: Boundary


@dataclass(frozen=True)
class ContainmentResult:
    """Outcome of checking a point against every active site.

    ``distance_to_boundary_m`` is ``0`` when inside and the smallest excess
    distance over the nearest site otherwise; ``None`` when no site exists.
    """

    inside: bool
    site: Optional[Site]
    distance_to_boundary_m: Optional[float]
    closest_site: Optional[Site]


def haversine_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres between two coordinates."""

    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def is_valid_polygon(ring: Any) -> bool:
    """At least three distinct vertices plus a closing vertex equal to the first."""

    try:
        points = [(float(p[0]), float(p[1])) for p in ring]
    except (TypeError, ValueError, IndexError):
        return False
    if len(points) < 4:
        return False
    if not all(math.isfinite(v) for point in points for v in point):
        return False
    return points[0] == points[-1]


def _on_segment(px: float, py: float, ax: float, ay: float, bx: float, by: float) -> bool:
    cross = (px - ax) * (by - ay) - (py - ay) * (bx - ax)
    if abs(cross) > _EDGE_TOLERANCE:
        return False
    within_x = min(ax, bx) - _EDGE_TOLERANCE <= px <= max(ax, bx) + _EDGE_TOLERANCE
    within_y = min(ay, by) - _EDGE_TOLERANCE <= py <= max(ay, by) + _EDGE_TOLERANCE
    return within_x and within_y


def point_in_ring(point: GeoPoint, ring: Sequence[Sequence[float]]) -> bool:
    """Ray-casting test on a closed ``[lng, lat]`` ring; edges count as inside."""

    if not is_valid_polygon(ring):
        return False
    x, y = point.lng, point.lat
    inside = False
    vertices = [(float(p[0]), float(p[1])) for p in ring]
    for (ax, ay), (bx, by) in zip(vertices, vertices[1:]):
        if _on_segment(x, y, ax, ay, bx, by):
            return True
        if (ay > y) != (by > y):
            x_cross = ax + (y - ay) * (bx - ax) / (by - ay)
            if x < x_cross:
                inside = not inside
    return inside


def is_inside(point: GeoPoint, boundary: Boundary) -> bool:
    if isinstance(boundary, CircleBoundary):
        return point.distance_to(boundary.center) <= boundary.radius_m
    if isinstance(boundary, PolygonBoundary):
        return point_in_ring(point, boundary.ring)
    return False


def _segment_distance_m(point: GeoPoint, a: Sequence[float], b: Sequence[float]) -> float:
    # Local equirectangular projection around the point; accurate at site scale.
    scale_x = math.cos(math.radians(point.lat)) * math.pi / 180 * EARTH_RADIUS_M
    scale_y = math.pi / 180 * EARTH_RADIUS_M
    ax, ay = (a[0] - point.lng) * scale_x, (a[1] - point.lat) * scale_y
    bx, by = (b[0] - point.lng) * scale_x, (b[1] - point.lat) * scale_y
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return math.hypot(ax, ay)
    t = max(0.0, min(1.0, -(ax * dx + ay * dy) / length_sq))
    return math.hypot(ax + t * dx, ay + t * dy)


def distance_outside(point: GeoPoint, boundary: Boundary) -> float:
    """Metres the point lies beyond the boundary, ``0`` when inside."""

    if is_inside(point, boundary):
        return 0.0
    if isinstance(boundary, CircleBoundary):
        return max(0.0, point.distance_to(boundary.center) - boundary.radius_m)
    ring = list(boundary.ring)
    if len(ring) < 2:
        return math.inf
    return min(_segment_distance_m(point, a, b) for a, b in zip(ring, ring[1:]))


def evaluate_sites(point: GeoPoint, sites: Iterable[Site]) -> ContainmentResult:
    """Inside when any site contains the point; otherwise report the nearest site."""

    closest: Optional[Site] = None
    closest_distance: Optional[float] = None
    for site in sites:
        if is_inside(point, site.boundary):
            return ContainmentResult(True, site, 0.0, site)
        excess = distance_outside(point, site.boundary)
        if closest_distance is None or excess < closest_distance:
            closest, closest_distance = site, excess
    return ContainmentResult(False, None, closest_distance, closest)


def polygon_center(ring: Sequence[Sequence[float]]) -> Optional[GeoPoint]:
    """Centre of the ring's bounding box, ``None`` for an invalid ring."""

    if not is_valid_polygon(ring):
        return None
    lngs = [float(p[0]) for p in ring]
    lats = [float(p[1]) for p in ring]
    return GeoPoint(lat=(min(lats) + max(lats)) / 2, lng=(min(lngs) + max(lngs)) / 2)


def polygon_area_m2(ring: Sequence[Sequence[float]]) -> float:
    """Approximate geodesic area of the ring in square metres (0 when invalid)."""

    if not is_valid_polygon(ring):
        return 0.0
    coords = [(math.radians(float(p[0])), math.radians(float(p[1]))) for p in ring]
    count = len(coords)
    total = 0.0
    for i in range(count):
        lower = coords[i]
        middle = coords[(i + 1) % count]
        upper = coords[(i + 2) % count]
        total += (upper[0] - lower[0]) * math.sin(middle[1])
    return abs(total * WGS84_RADIUS_M * WGS84_RADIUS_M / 2)


def _destination(center: GeoPoint, distance_m: float, bearing_deg: float) -> List[float]:
    lat1 = math.radians(center.lat)
    lng1 = math.radians(center.lng)
    bearing = math.radians(bearing_deg)
    delta = distance_m / EARTH_RADIUS_M
    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta) + math.cos(lat1) * math.sin(delta) * math.cos(bearing)
    )
    lng2 = lng1 + math.atan2(
        math.sin(bearing) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    return [math.degrees(lng2), math.degrees(lat2)]


def circle_to_polygon(center: GeoPoint, radius_m: float, steps: int = 32) -> Ring:
    """Approximate a circle by a closed ring of ``steps`` vertices."""

    steps = max(3, int(steps))
    ring = [_destination(center, radius_m, -360.0 * i / steps) for i in range(steps)]
    ring.append(list(ring[0]))
    return ring


def bounding_box(corner1: GeoPoint, corner2: GeoPoint) -> Ring:
    min_lng, max_lng = sorted((corner1.lng, corner2.lng))
    min_lat, max_lat = sorted((corner1.lat, corner2.lat))
    return [
        [min_lng, min_lat],
        [max_lng, min_lat],
        [max_lng, max_lat],
        [min_lng, max_lat],
        [min_lng, min_lat],
    ]


def _format_coordinate(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def polygon_to_wkt(ring: Sequence[Sequence[float]]) -> str:
    coords = ", ".join(f"{_format_coordinate(p[0])} {_format_coordinate(p[1])}" for p in ring)
    return f"POLYGON(({coords}))"


def wkt_to_polygon(wkt: Optional[str]) -> Optional[Ring]:
    """Parse a single-ring ``POLYGON((lng lat, ...))`` string."""

    if not wkt:
        return None
    match = _WKT_POLYGON.search(wkt)
    if not match:
        return None
    ring: Ring = []
    for pair in match.group(1).split(","):
        parts = pair.split()
        if len(parts) != 2:
            return None
        try:
            ring.append([float(parts[0]), float(parts[1])])
        except ValueError:
            return None
    return ring


def format_distance(meters: float) -> str:
    """``"150m"`` below a kilometre, ``"1.2km"`` above."""

    if meters < 1000:
        return f"{int(math.floor(meters + 0.5))}m"
    return f"{meters / 1000:.1f}km"


__all__ = [
    "Boundary",
    "CircleBoundary",
    "ContainmentResult",
    "GeoPoint",
    "PolygonBoundary",
    "Site",
    "bounding_box",
    "circle_to_polygon",
    "distance_outside",
    "evaluate_sites",
    "format_distance",
    "haversine_distance_m",
    "is_inside",
    "is_valid_polygon",
    "point_in_ring",
    "polygon_area_m2",
    "polygon_center",
    "polygon_to_wkt",
    "wkt_to_polygon",
]
