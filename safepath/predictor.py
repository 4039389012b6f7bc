"""
predictor.py – Safety prediction for a single point (e.g. an unreviewed place).

Uses the same scenario logic as route segment scoring, without the route
aggregation, and returns a breakdown meant to be shown to the user.

Vote validation is a separate post-step: once enough users have voted a
prediction "accurate" / "inaccurate", confidence is scaled by the empirical
accuracy rate

    confidence' = confidence × accurate / (accurate + inaccurate)
"""
import logging
from typing import Optional

from config import Config
from safepath.errors import InvalidVoteError
from safepath.geo import Coordinate
from safepath.scorer import assess_location, require_demographics

logger = logging.getLogger(__name__)

VOTE_TYPES = ("accurate", "inaccurate")


def predict_point(coordinate, user_demographics, store,
                  place_type: Optional[str] = None,
                  radius_m: float = Config.PREDICTION_RADIUS_METERS) -> dict:
    """
    Predict the safety of one coordinate for a given user.

    Returns
    -------
    dict with keys:
      'predicted_score'         : safety score (1–5)
      'predicted_comfort_score' : comfort score (1–5)
      'predicted_overall_score' : overall score (1–5)
      'confidence'              : 0–1
      'scenario'                : WITH_REVIEWS | ML_ONLY | COLD_START
      'breakdown'               : per-source sub-scores
      'based_on'                : which sources contributed, with counts
      'risk_factors'            : list of strings
    """
    user = require_demographics(user_demographics)
    point = Coordinate.from_value(coordinate)

    a = assess_location(point, user, store, radius_m=radius_m, place_type=place_type)

    return {
        "latitude":                point.latitude,
        "longitude":               point.longitude,
        "place_type":              place_type or "other",
        "predicted_score":         round(a.safety_score, 2),
        "predicted_comfort_score": round(a.comfort_score, 2),
        "predicted_overall_score": round(a.overall_score, 2),
        "confidence":              round(a.confidence, 2),
        "scenario":                a.scenario.value,
        "breakdown": {name: (None if v is None else round(v, 2))
                      for name, v in a.sub_scores.items()},
        "based_on": {
            "user_reviews":       a.sub_scores["user_reviews"] is not None,
            "ml_prediction":      a.sub_scores["ml_prediction"] is not None,
            "neighborhood_stats": a.has_stats,
            "danger_zones":       len(a.danger_zones) > 0,
            "review_count":       a.review_count,
            "similar_locations":  a.peer_count,
        },
        "risk_factors": list(a.risk_factors),
    }


def apply_vote_validation(prediction: dict, accurate_votes: int, inaccurate_votes: int,
                          min_votes: int = Config.MIN_VALIDATION_VOTES) -> dict:
    """
    Scale a prediction's confidence by its vote accuracy rate.

    Returns a new dict; below `min_votes` total votes the prediction is
    returned unchanged apart from the vote counts.
    """
    total = accurate_votes + inaccurate_votes
    validated = dict(prediction)
    validated["votes"] = {"accurate": accurate_votes, "inaccurate": inaccurate_votes}
    if total < min_votes or total == 0:
        return validated

    accuracy = accurate_votes / total
    validated["confidence"] = round(min(1.0, max(0.0, prediction["confidence"] * accuracy)), 2)
    validated["vote_accuracy"] = round(accuracy, 2)
    return validated


def predict_with_votes(coordinate, user_demographics, store, location_id: str,
                       place_type: Optional[str] = None,
                       radius_m: float = Config.PREDICTION_RADIUS_METERS) -> dict:
    """predict_point() followed by vote validation against `location_id`'s tally."""
    prediction = predict_point(coordinate, user_demographics, store, place_type, radius_m)
    accurate, inaccurate = store.get_vote_tally(location_id)
    return apply_vote_validation(prediction, accurate, inaccurate)


def cast_prediction_vote(store, user_id: str, location_id: str, vote_type: str,
                         predicted_safety_score: Optional[float] = None) -> str:
    """
    Record a user's opinion of a prediction.

    One vote per user per location: repeating the same vote removes it,
    voting the other way switches it.

    Returns 'added', 'removed' or 'switched'.
    """
    if not user_id or not location_id:
        raise InvalidVoteError("user_id and location_id are required")
    if vote_type not in VOTE_TYPES:
        raise InvalidVoteError(f"Invalid vote_type: {vote_type!r}")

    existing = store.get_prediction_vote(user_id, location_id)
    if existing == vote_type:
        store.save_prediction_vote(user_id, location_id, None)
        action = "removed"
    else:
        store.save_prediction_vote(user_id, location_id, vote_type, predicted_safety_score)
        action = "switched" if existing else "added"

    logger.info("[votes] %s %s vote by %s on %s", action, vote_type, user_id, location_id)
    return action
