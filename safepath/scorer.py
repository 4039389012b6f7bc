"""
scorer.py – Demographic-aware safety scoring for one point.

Used for route segments (centre point, 500 m radius) and for single-point
predictions. The pipeline is:

  1. fetch nearby locations, danger zones and neighbourhood stats
  2. pick a Scenario from what data exists
  3. compute per-source sub-scores
        reviews       – mean of demographic-matching score records
        ml_prediction – weighted mean over peer locations
                          matching record   × DEMOGRAPHIC_MATCHES (0.7)
                          overall record    × PLACE_TYPE_OVERALL  (0.3)
        statistics    – mean of the crime-statistics score and the
                        demographic-adjustment score
  4. blend with the scenario's weight triple
        score = Σ w_source · score_source / Σ w_source   (sources with data)
  5. subtract DANGER_ZONE_PENALTY × severity for every intersecting zone
  6. confidence = base + data-volume terms, capped per scenario

All scores are clamped to [1, 5] and confidence to [0, 1].
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from config import Config
from safepath.demographics import (UserDemographics, has_marginalised_identity,
                                   is_racial_minority, matches)
from safepath.errors import InvalidDemographicsError, StorageError
from safepath.geo import Coordinate
from safepath.records import DangerZone, NearbyLocation, NeighborhoodStats

logger = logging.getLogger(__name__)

ScoreTriple = Tuple[float, float, float]   # (safety, comfort, overall)


class Scenario(str, Enum):
    WITH_REVIEWS = "WITH_REVIEWS"
    ML_ONLY      = "ML_ONLY"
    COLD_START   = "COLD_START"

    @property
    def weights(self) -> Dict[str, float]:
        return Config.SCENARIO_WEIGHTS[self.value]

    @property
    def confidence_cap(self) -> float:
        return Config.CONFIDENCE_CAPS[self.value]


@dataclass
class PointAssessment:
    """Everything the scorer worked out for one point."""
    scenario: Scenario
    safety_score: float
    comfort_score: float
    overall_score: float
    confidence: float
    sub_scores: Dict[str, Optional[float]] = field(default_factory=dict)
    risk_factors: List[str] = field(default_factory=list)
    review_count: int = 0
    peer_count: int = 0
    has_stats: bool = False
    locations: List[NearbyLocation] = field(default_factory=list)
    danger_zones: List[DangerZone] = field(default_factory=list)


def clamp_score(value: float) -> float:
    return float(np.clip(value, Config.MIN_SCORE, Config.MAX_SCORE))


def _mean_triple(records) -> ScoreTriple:
    return (float(np.mean([r.avg_safety_score  for r in records])),
            float(np.mean([r.avg_comfort_score for r in records])),
            float(np.mean([r.avg_overall_score for r in records])))


# ──────────────────────────────────────────────────────────────
# SCENARIO SELECTION
# ──────────────────────────────────────────────────────────────

def classify_scenario(locations: List[NearbyLocation],
                      user: UserDemographics) -> Scenario:
    """
    WITH_REVIEWS if any nearby record matches the user's demographics,
    ML_ONLY if any nearby location has safety data at all,
    COLD_START otherwise.
    """
    if any(matches(r, user) for loc in locations for r in loc.scores):
        return Scenario.WITH_REVIEWS
    if any(loc.has_safety_data for loc in locations):
        return Scenario.ML_ONLY
    return Scenario.COLD_START


# ──────────────────────────────────────────────────────────────
# SOURCE SUB-SCORES
# ──────────────────────────────────────────────────────────────

def review_score(locations: List[NearbyLocation],
                 user: UserDemographics) -> Tuple[Optional[ScoreTriple], int]:
    """Mean of the matching records, plus the number of reviews behind them."""
    matching = [r for loc in locations for r in loc.scores if matches(r, user)]
    if not matching:
        return None, 0
    return _mean_triple(matching), int(sum(r.review_count for r in matching))


def ml_score(locations: List[NearbyLocation], user: UserDemographics,
             place_type: Optional[str] = None) -> Tuple[Optional[ScoreTriple], int]:
    """
    Weighted mean over peer locations.

    Matching records carry DEMOGRAPHIC_MATCHES weight. Overall records carry
    PLACE_TYPE_OVERALL weight when the location is of the requested place
    type (or no place type was requested), NEARBY_OVERALL weight otherwise.
    """
    w = Config.PREDICTION_WEIGHTS
    sums = np.zeros(3)
    total_weight = 0.0
    peers = 0

    for loc in locations:
        contributed = False
        for record in loc.scores:
            if matches(record, user):
                weight = w["DEMOGRAPHIC_MATCHES"]
            elif record.is_overall:
                same_type = place_type is None or loc.place_type == place_type
                weight = w["PLACE_TYPE_OVERALL"] if same_type else w["NEARBY_OVERALL"]
            else:
                continue
            sums += weight * np.array([record.avg_safety_score,
                                       record.avg_comfort_score,
                                       record.avg_overall_score])
            total_weight += weight
            contributed = True
        if contributed:
            peers += 1

    if total_weight == 0:
        return None, 0
    s, c, o = sums / total_weight
    return (float(s), float(c), float(o)), peers


def _step_penalty(value: Optional[float], bands) -> float:
    """First (threshold, penalty) band whose threshold `value` exceeds."""
    if value is None:
        return 0.0
    for threshold, penalty in bands:
        if value > threshold:
            return penalty
    return 0.0


def statistical_score(stats: Optional[NeighborhoodStats]) -> float:
    """
    Crime-statistics score on the 1–5 scale.

    Starts from the neutral baseline and subtracts step penalties for the
    overall crime rate, the violent crime rate and hate-crime incidents.
    Diverse neighbourhoods get a small bonus.
    """
    score = Config.NEUTRAL_SCORE_BASELINE
    if stats is None:
        return score
    score -= _step_penalty(stats.crime_rate_per_1000, Config.CRIME_RATE_PENALTIES)
    score -= _step_penalty(stats.violent_crime_rate,  Config.VIOLENT_CRIME_PENALTIES)
    score -= _step_penalty(stats.hate_crime_incidents, Config.HATE_CRIME_PENALTIES)
    if stats.diversity_index is not None and stats.diversity_index >= Config.DIVERSITY_BONUS_THRESHOLD:
        score += Config.DIVERSITY_BONUS
    return clamp_score(score)


def demographic_adjustment_score(stats: Optional[NeighborhoodStats],
                                 user: UserDemographics) -> float:
    """Neighbourhood score adjusted for who the user is."""
    score = Config.NEUTRAL_SCORE_BASELINE
    if stats is None:
        return score

    if is_racial_minority(user):
        adj = Config.MINORITY_DIVERSITY_ADJUSTMENTS
        diversity = stats.diversity_index
        if diversity is not None:
            if diversity < adj["very_low"][0]:
                score += adj["very_low"][1]
            elif diversity < adj["low"][0]:
                score += adj["low"][1]
            elif diversity > adj["high"][0]:
                score += adj["high"][1]
        if stats.pct_minority is not None and stats.pct_minority < Config.LOW_MINORITY_SHARE_PCT:
            score -= Config.LOW_MINORITY_SHARE_PENALTY

    if has_marginalised_identity(user):
        score -= _step_penalty(stats.hate_crime_incidents, Config.MINORITY_HATE_CRIME_PENALTIES)

    return clamp_score(score)


# ──────────────────────────────────────────────────────────────
# BLENDING, PENALTIES, CONFIDENCE
# ──────────────────────────────────────────────────────────────

def blend_sources(scenario: Scenario,
                  sources: Dict[str, Optional[ScoreTriple]]) -> ScoreTriple:
    """
    Combine source triples with the scenario's weights.

    Sources without data (None) or with zero weight are dropped and the
    remaining weights renormalised. The statistics source always has a value.
    """
    used = [(scenario.weights.get(name, 0.0), triple)
            for name, triple in sources.items()
            if triple is not None and scenario.weights.get(name, 0.0) > 0]
    if not used:
        baseline = Config.NEUTRAL_SCORE_BASELINE
        return baseline, baseline, baseline

    total = sum(w for w, _ in used)
    blended = sum(w * np.array(t) for w, t in used) / total
    return tuple(clamp_score(v) for v in blended)


def apply_danger_zones(safety: float, overall: float,
                       zones: List[DangerZone]) -> Tuple[float, float, List[str]]:
    """
    Subtract DANGER_ZONE_PENALTY × severity per zone from safety and overall.

    Each zone only ever subtracts, so adding a zone never raises a score.
    """
    factors = []
    for zone in zones:
        penalty = Config.DANGER_ZONE_PENALTY * max(zone.severity_multiplier, 0.0)
        safety  = max(Config.MIN_SCORE, safety - penalty)
        overall = max(Config.MIN_SCORE, overall - penalty)
        factors.append(f"Danger zone: {zone.description or 'Unknown'}")
    if zones:
        factors.append(f"Intersects {len(zones)} danger zone(s)")
    return safety, overall, factors


def compute_confidence(scenario: Scenario, review_count: int,
                       peer_count: int, has_stats: bool) -> float:
    confidence = (Config.CONFIDENCE_BASE
                  + Config.CONFIDENCE_PER_REVIEW * review_count
                  + Config.CONFIDENCE_PER_PEER * peer_count
                  + (Config.CONFIDENCE_STATS_BONUS if has_stats else 0.0))
    confidence = min(confidence, scenario.confidence_cap)
    return float(np.clip(confidence, 0.0, 1.0))


def assess_point(user: UserDemographics,
                 locations: List[NearbyLocation],
                 zones: List[DangerZone],
                 stats: Optional[NeighborhoodStats],
                 place_type: Optional[str] = None) -> PointAssessment:
    """Pure scoring step: turn fetched data into scores and confidence."""
    scenario = classify_scenario(locations, user)

    reviews, review_count = review_score(locations, user)
    ml, peer_count = (None, 0)
    if scenario is not Scenario.COLD_START:
        ml, peer_count = ml_score(locations, user, place_type)

    stat = statistical_score(stats)
    demo = demographic_adjustment_score(stats, user)
    stat_source = (stat + demo) / 2.0

    safety, comfort, overall = blend_sources(scenario, {
        "reviews":       reviews,
        "ml_prediction": ml,
        "statistics":    (stat_source, stat_source, stat_source),
    })
    safety, overall, risk_factors = apply_danger_zones(safety, overall, zones)

    confidence = compute_confidence(scenario, review_count, peer_count, stats is not None)

    if safety < Config.HIGH_RISK_THRESHOLD:
        risk_factors.append("Below-average safety for your profile")
    if confidence < Config.LOW_CONFIDENCE_THRESHOLD:
        risk_factors.append("Limited safety data - stay alert")

    return PointAssessment(
        scenario=scenario,
        safety_score=clamp_score(safety),
        comfort_score=clamp_score(comfort),
        overall_score=clamp_score(overall),
        confidence=confidence,
        sub_scores={
            "user_reviews":          None if reviews is None else reviews[0],
            "ml_prediction":         None if ml is None else ml[0],
            "neighborhood_stats":    stat,
            "demographic_adjustment": demo,
        },
        risk_factors=risk_factors,
        review_count=review_count,
        peer_count=peer_count,
        has_stats=stats is not None,
        locations=locations,
        danger_zones=list(zones),
    )


# ──────────────────────────────────────────────────────────────
# STORAGE-FACING ENTRY POINTS
# ──────────────────────────────────────────────────────────────

def require_demographics(user) -> UserDemographics:
    if user is None:
        raise InvalidDemographicsError("User demographics required")
    return UserDemographics.from_dict(user)


def assess_location(center: Coordinate, user: UserDemographics, store,
                    radius_m: float = Config.SEGMENT_SCORING_RADIUS_METERS,
                    place_type: Optional[str] = None) -> PointAssessment:
    """
    Fetch data around `center` and score it.

    A storage failure is not fatal: the point is scored as COLD_START with no
    data and flagged in its risk factors.
    """
    try:
        locations = store.get_nearby_locations(center, radius_m, Config.NEARBY_LOCATION_LIMIT)
        zones     = store.get_danger_zones(center, radius_m)
        stats     = store.get_neighborhood_stats(center)
    except StorageError as e:
        logger.warning("[scoring] storage error at (%.5f, %.5f): %s – using cold start",
                       center.latitude, center.longitude, e)
        return unavailable_assessment(user)

    return assess_point(user, locations, zones, stats, place_type)


def unavailable_assessment(user: UserDemographics) -> PointAssessment:
    """COLD_START result used when a point's data could not be fetched."""
    assessment = assess_point(user, [], [], None)
    assessment.risk_factors.insert(0, "Safety data unavailable for this segment")
    return assessment


def apply_assessment(segment, assessment: PointAssessment):
    """Write scoring fields onto a RouteSegment (done exactly once per segment)."""
    if segment.is_scored:
        raise ValueError(f"segment {segment.index} has already been scored")
    segment.safety_score  = assessment.safety_score
    segment.comfort_score = assessment.comfort_score
    segment.overall_score = assessment.overall_score
    segment.confidence    = assessment.confidence
    segment.scenario      = assessment.scenario.value
    segment.risk_factors  = list(assessment.risk_factors)
    segment.nearby_locations = [loc.to_dict() for loc in assessment.locations]
    segment.danger_zones  = list(assessment.danger_zones)
    return segment


def score_segment(segment, user, store,
                  radius_m: float = Config.SEGMENT_SCORING_RADIUS_METERS):
    """Score one RouteSegment in place and return it."""
    user = require_demographics(user)
    return apply_assessment(segment, assess_location(segment.center, user, store, radius_m))
