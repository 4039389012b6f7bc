"""
geo.py – Great-circle geometry helpers.

All coordinates are WGS84 degrees. Distances are in metres.
"""
import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import polyline as polyline_lib

EARTH_RADIUS_M = 6_371_000


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    @classmethod
    def from_value(cls, value) -> "Coordinate":
        """Accept a Coordinate, a {latitude, longitude} dict or a (lat, lng) pair."""
        if isinstance(value, Coordinate):
            return value
        if isinstance(value, dict):
            lat = value.get("latitude", value.get("lat"))
            lng = value.get("longitude", value.get("lng"))
        else:
            lat, lng = value
        if lat is None or lng is None:
            raise ValueError(f"coordinate is missing latitude/longitude: {value!r}")
        return cls(float(lat), float(lng))

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


def haversine_dist(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return distance in metres between two (lat, lng) points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    a = (math.sin(math.radians(lat2 - lat1) / 2) ** 2
         + math.cos(phi1) * math.cos(phi2)
         * math.sin(math.radians(lng2 - lng1) / 2) ** 2)
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def distance_between(a: Coordinate, b: Coordinate) -> float:
    return haversine_dist(a.latitude, a.longitude, b.latitude, b.longitude)


def interpolate(a: Coordinate, b: Coordinate, fraction: float) -> Coordinate:
    """Linear interpolation in lat/lng space (fine at ~1 km granularity)."""
    return Coordinate(
        a.latitude + (b.latitude - a.latitude) * fraction,
        a.longitude + (b.longitude - a.longitude) * fraction,
    )


def midpoint(a: Coordinate, b: Coordinate) -> Coordinate:
    return interpolate(a, b, 0.5)


def polyline_length(coords: Sequence[Coordinate]) -> float:
    return sum(distance_between(coords[i], coords[i + 1])
               for i in range(len(coords) - 1))


def _to_local_xy(origin: Coordinate, point: Coordinate):
    """Equirectangular projection around `origin`, in metres."""
    x = (math.radians(point.longitude - origin.longitude)
         * math.cos(math.radians(origin.latitude)) * EARTH_RADIUS_M)
    y = math.radians(point.latitude - origin.latitude) * EARTH_RADIUS_M
    return x, y


def distance_to_leg(point: Coordinate, a: Coordinate, b: Coordinate) -> float:
    """
    Minimum distance from `point` to the straight leg a→b.

    The projection onto the leg is done in a local flat frame; the final
    distance to the closest point is measured with haversine.
    """
    ax, ay = _to_local_xy(point, a)
    bx, by = _to_local_xy(point, b)
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return distance_between(point, a)
    # Point sits at the local origin, so its offset from a is (-ax, -ay)
    t = float(np.clip((-ax * dx - ay * dy) / length_sq, 0.0, 1.0))
    return distance_between(point, interpolate(a, b, t))


def distance_to_polyline(point: Coordinate, coords: Sequence[Coordinate]) -> float:
    """Minimum distance from a point to any point on the polyline."""
    if not coords:
        raise ValueError("polyline has no coordinates")
    if len(coords) == 1:
        return distance_between(point, coords[0])
    return min(distance_to_leg(point, coords[i], coords[i + 1])
               for i in range(len(coords) - 1))


def point_in_polygon(point: Coordinate, polygon: Sequence[Coordinate]) -> bool:
    """Ray casting test; the polygon may be open or closed."""
    inside = False
    n = len(polygon)
    if n < 3:
        return False
    x, y = point.longitude, point.latitude
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i].longitude, polygon[i].latitude
        xj, yj = polygon[j].longitude, polygon[j].latitude
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def polygon_within_radius(center: Coordinate, radius_m: float,
                          polygon: Sequence[Coordinate]) -> bool:
    """True if a circle around `center` touches the polygon."""
    if not polygon:
        return False
    if point_in_polygon(center, polygon):
        return True
    ring = list(polygon) + [polygon[0]]
    return distance_to_polyline(center, ring) <= radius_m


def bounding_box(center: Coordinate, radius_m: float):
    """(min_lat, max_lat, min_lng, max_lng) enclosing a circle, for SQL prefilters."""
    dlat = math.degrees(radius_m / EARTH_RADIUS_M)
    cos_lat = max(math.cos(math.radians(center.latitude)), 1e-6)
    dlng = math.degrees(radius_m / (EARTH_RADIUS_M * cos_lat))
    return (center.latitude - dlat, center.latitude + dlat,
            center.longitude - dlng, center.longitude + dlng)


def format_distance(meters: float) -> str:
    """'150m' below one kilometre, '1.2km' above."""
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"


def decode_polyline(encoded: str) -> List[Coordinate]:
    """Decode a Google encoded polyline into coordinates."""
    if not encoded or not isinstance(encoded, str):
        raise ValueError("encoded polyline must be a non-empty string")
    return [Coordinate(lat, lng) for lat, lng in polyline_lib.decode(encoded)]
