"""
route_scorer.py – Score a whole route and reduce it to one result.

Segments are independent, so they are scored on a small thread pool sized to
the store's connection limit. Results are only reduced once every segment has
finished; a segment whose data could not be fetched in time, or whose lookup
failed outright, is scored as COLD_START rather than failing the request.

Route-level numbers are plain means across segments, not distance-weighted:
a short unsafe segment counts as much as a long one.
"""
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import numpy as np

from config import Config
from safepath.errors import EmptyRouteError
from safepath.records import DangerZone
from safepath.scorer import (apply_assessment, assess_location, require_demographics,
                             unavailable_assessment)
from safepath.segmenter import RouteSegment, segment_route

logger = logging.getLogger(__name__)


@dataclass
class RouteSafetyResult:
    overall_safety: float
    overall_comfort: float
    overall_score: float
    confidence: float
    segments: List[RouteSegment]
    danger_zones_intersected: List[DangerZone]
    high_risk_segments: List[RouteSegment]
    suggestions: List[str]
    summary: dict
    analysis_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "overall_safety":   round(self.overall_safety, 2),
            "overall_comfort":  round(self.overall_comfort, 2),
            "overall_score":    round(self.overall_score, 2),
            "confidence":       round(self.confidence, 2),
            "total_segments":   len(self.segments),
            "segments":         [dict(s.to_dict(), color=segment_colour(s)) for s in self.segments],
            "danger_zones_intersected": [z.to_dict() for z in self.danger_zones_intersected],
            "high_risk_segments": [s.index for s in self.high_risk_segments],
            "suggestions":      list(self.suggestions),
            "summary":          dict(self.summary),
            "analysis_timestamp": self.analysis_timestamp,
        }


def segment_colour(segment: RouteSegment) -> str:
    """
    Display colour for a segment.

      Green  (#22c55e) → overall ≥ 4.0
      Yellow (#eab308) → 3.0 ≤ overall < 4.0
      Red    (#ef4444) → overall < 3.0
    """
    if segment.overall_score >= Config.SAFE_THRESHOLD:
        return "#22c55e"
    if segment.overall_score >= Config.MIXED_THRESHOLD:
        return "#eab308"
    return "#ef4444"


# ──────────────────────────────────────────────────────────────
# SUMMARY + SUGGESTIONS
# ──────────────────────────────────────────────────────────────

def summarise_segments(segments: List[RouteSegment], zone_count: int) -> dict:
    safe = mixed = unsafe = 0
    for seg in segments:
        if seg.overall_score >= Config.SAFE_THRESHOLD:
            safe += 1
        elif seg.overall_score >= Config.MIXED_THRESHOLD:
            mixed += 1
        else:
            unsafe += 1
    return {
        "safe_count":        safe,
        "mixed_count":       mixed,
        "unsafe_count":      unsafe,
        "danger_zone_count": zone_count,
        "notes":             route_notes(safe, unsafe, len(segments)),
    }


def route_notes(safe: int, unsafe: int, total: int) -> List[str]:
    """One line characterising the route, plus a caution count if any segment is unsafe."""
    if safe / total >= Config.MOSTLY_SAFE_SHARE:
        notes = ["This route is predominantly through safe areas"]
    elif safe / total >= Config.LARGELY_SAFE_SHARE:
        notes = ["This route has mostly safe areas with some mixed zones"]
    elif unsafe / total >= Config.UNSAFE_SHARE_HIGH:
        notes = ["This route passes through several areas requiring caution"]
    else:
        notes = ["This route has mixed safety characteristics"]
    if unsafe:
        notes.append(f"{unsafe} segment(s) require extra caution")
    return notes


def build_suggestions(segments: List[RouteSegment], summary: dict,
                      high_risk_count: int, confidence: float) -> List[str]:
    """Fixed-rule, human-readable advice for the route."""
    suggestions = []
    total = len(segments)

    if high_risk_count > 0:
        suggestions.append(f"{high_risk_count} segment(s) scored below "
                           f"{Config.HIGH_RISK_THRESHOLD:.1f} - consider an alternative route")

    zone_count = summary["danger_zone_count"]
    if zone_count > 0:
        suggestions.append(f"Route passes through {zone_count} danger zone(s)")

    unsafe_share = summary["unsafe_count"] / total
    if unsafe_share > Config.UNSAFE_SHARE_HIGH:
        suggestions.append("More than 30% of segments are unsafe - a different route is recommended")
    elif unsafe_share > Config.UNSAFE_SHARE_LOW:
        suggestions.append("More than 10% of segments are unsafe - use extra caution")

    if not suggestions:
        suggestions.append("Route appears safe for your profile")

    if confidence < Config.ROUTE_LOW_CONFIDENCE:
        suggestions.append("Limited data available for this route - scores are estimates")

    counts = Counter(f for seg in segments for f in set(seg.risk_factors))
    min_count = max(1, int(np.ceil(total * Config.COMMON_RISK_SHARE)))
    frequent = [risk for risk, n in counts.most_common() if n >= min_count]
    if frequent:
        suggestions.append(f"Common concerns: {', '.join(frequent[:2])}")

    return suggestions[:Config.MAX_SUGGESTIONS]


def aggregate_route(segments: List[RouteSegment]) -> RouteSafetyResult:
    """Reduce scored segments into a RouteSafetyResult."""
    if not segments:
        raise EmptyRouteError("Route has no segments to aggregate")

    overall_safety  = float(np.mean([s.safety_score  for s in segments]))
    overall_comfort = float(np.mean([s.comfort_score for s in segments]))
    overall_score   = float(np.mean([s.overall_score for s in segments]))
    confidence      = float(np.mean([s.confidence    for s in segments]))

    zones = {}
    for seg in segments:
        for zone in seg.danger_zones:
            zones.setdefault(zone.id, zone)

    high_risk = [s for s in segments if s.overall_score < Config.HIGH_RISK_THRESHOLD]
    summary = summarise_segments(segments, len(zones))

    return RouteSafetyResult(
        overall_safety=overall_safety,
        overall_comfort=overall_comfort,
        overall_score=overall_score,
        confidence=confidence,
        segments=segments,
        danger_zones_intersected=list(zones.values()),
        high_risk_segments=high_risk,
        suggestions=build_suggestions(segments, summary, len(high_risk), confidence),
        summary=summary,
    )


# ──────────────────────────────────────────────────────────────
# ENTRY POINT
# ──────────────────────────────────────────────────────────────

def score_route(route_coordinates, user_demographics, store,
                max_workers: int = Config.SCORING_MAX_WORKERS,
                segment_timeout: Optional[float] = None) -> RouteSafetyResult:
    """
    Segment, score and aggregate a route.

    Raises InvalidRouteError / InvalidDemographicsError for malformed input;
    never raises for missing data.
    """
    user = require_demographics(user_demographics)
    segments = segment_route(route_coordinates)
    if segment_timeout is None:
        # three bounded storage calls per segment
        segment_timeout = 3 * Config.STORAGE_TIMEOUT_SECONDS

    logger.info("[scoring] scoring %d segment(s) with %d worker(s)",
                len(segments), max_workers)

    # One deadline for the whole route: each worker runs at most
    # ceil(n / workers) segments back to back.
    rounds = int(np.ceil(len(segments) / max(1, max_workers)))
    pool = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures = [pool.submit(assess_location, seg.center, user, store)
                   for seg in segments]
        wait(futures, timeout=segment_timeout * rounds)
        for seg, future in zip(segments, futures):
            if not future.done():
                logger.warning("[scoring] segment %d timed out – using cold start", seg.index)
                assessment = unavailable_assessment(user)
            else:
                try:
                    assessment = future.result()
                except Exception as e:
                    logger.warning("[scoring] segment %d failed (%s: %s) – using cold start",
                                   seg.index, type(e).__name__, e)
                    assessment = unavailable_assessment(user)
            apply_assessment(seg, assessment)
    finally:
        # Drop queued segments and do not block on stragglers
        pool.shutdown(wait=False, cancel_futures=True)

    result = aggregate_route(segments)
    logger.info("[scoring] route score %.2f (confidence %.2f, %d segments)",
                result.overall_score, result.confidence, len(segments))
    return result
