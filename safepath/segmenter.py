"""
segmenter.py – Split a route polyline into bounded-length segments.

Each consecutive pair of coordinates is a leg. Legs longer than the segment
length are cut into ceil(distance / segment_length) equal sub-legs, so no
segment is longer than the configured maximum and the segment distances sum
to the polyline length.
"""
import math
from collections import abc
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from config import Config
from safepath.errors import InvalidRouteError
from safepath.geo import Coordinate, distance_between, interpolate, midpoint


@dataclass
class RouteSegment:
    """
    One scored piece of a route.

    Geometry is filled in by segment_route(); the scoring fields are written
    once by the segment scorer and not touched afterwards.
    """
    index: int
    start: Coordinate
    end: Coordinate
    center: Coordinate
    distance_meters: float
    duration_seconds: int = 0

    safety_score:  Optional[float] = None
    comfort_score: Optional[float] = None
    overall_score: Optional[float] = None
    confidence:    Optional[float] = None
    scenario:      Optional[str]   = None
    risk_factors:     List[str]  = field(default_factory=list)
    nearby_locations: List[dict] = field(default_factory=list)
    danger_zones:     list       = field(default_factory=list)

    @property
    def is_scored(self) -> bool:
        return self.overall_score is not None

    def to_dict(self) -> dict:
        return {
            "segment_index":    self.index,
            "start":            self.start.to_dict(),
            "end":              self.end.to_dict(),
            "center":           self.center.to_dict(),
            "distance_meters":  round(self.distance_meters, 1),
            "duration_seconds": self.duration_seconds,
            "safety_score":     _round(self.safety_score),
            "comfort_score":    _round(self.comfort_score),
            "overall_score":    _round(self.overall_score),
            "confidence":       _round(self.confidence),
            "scenario":         self.scenario,
            "risk_factors":     list(self.risk_factors),
            "nearby_locations": list(self.nearby_locations),
            "danger_zones":     [z.to_dict() for z in self.danger_zones],
        }


def _round(value, digits: int = 2):
    return None if value is None else round(float(value), digits)


def _make_segment(index: int, start: Coordinate, end: Coordinate,
                  distance: float) -> RouteSegment:
    return RouteSegment(
        index=index,
        start=start,
        end=end,
        center=midpoint(start, end),
        distance_meters=distance,
        duration_seconds=int(round(distance / Config.AVERAGE_SPEED_MPS)),
    )


def segment_route(coordinates: Sequence,
                  max_length_m: float = Config.SEGMENT_LENGTH_METERS) -> List[RouteSegment]:
    """
    Split a polyline into segments no longer than `max_length_m`.

    Parameters
    ----------
    coordinates  : ordered sequence of Coordinate / dict / (lat, lng) values
    max_length_m : maximum segment length in metres

    Raises
    ------
    InvalidRouteError if there are fewer than two points, a point cannot be
    read, or two adjacent points are identical.
    """
    if not isinstance(coordinates, abc.Sequence) or isinstance(coordinates, (str, bytes)):
        raise InvalidRouteError("Route coordinates must be a list of points")
    if len(coordinates) < 2:
        raise InvalidRouteError("Route must have at least 2 coordinates")

    try:
        points = [Coordinate.from_value(c) for c in coordinates]
    except (TypeError, ValueError) as e:
        raise InvalidRouteError(f"Invalid route coordinate: {e}") from e

    segments: List[RouteSegment] = []
    for i in range(len(points) - 1):
        a, b = points[i], points[i + 1]
        leg = distance_between(a, b)
        if leg == 0:
            raise InvalidRouteError(f"Duplicate adjacent coordinates at index {i}")

        if leg <= max_length_m:
            segments.append(_make_segment(len(segments), a, b, leg))
            continue

        # Equal sub-legs; distances measured per piece so they sum exactly
        n_pieces = math.ceil(leg / max_length_m)
        prev = a
        for k in range(1, n_pieces + 1):
            nxt = b if k == n_pieces else interpolate(a, b, k / n_pieces)
            segments.append(_make_segment(len(segments), prev, nxt,
                                          distance_between(prev, nxt)))
            prev = nxt

    return segments
