"""
records.py – Plain value types passed between the scorers, the dispatcher
and the datastore.

These are what the SafetyDataStore returns; the ORM models in database.py
are converted into them so the scoring and dispatch logic never touches a
database session.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from safepath.demographics import UserDemographics
from safepath.geo import Coordinate


def as_naive_utc(value) -> Optional[datetime]:
    """Normalise a datetime or ISO-8601 string to naive UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass(frozen=True)
class SafetyScoreRecord:
    """Aggregated review scores at one location for one demographic bucket."""
    demographic_type: str
    demographic_value: Optional[str]
    avg_safety_score: float
    avg_comfort_score: float
    avg_overall_score: float
    review_count: int = 0

    @property
    def is_overall(self) -> bool:
        return self.demographic_type == "overall"


@dataclass
class NearbyLocation:
    id: str
    name: str
    coordinate: Coordinate
    place_type: str = "other"
    distance_meters: float = 0.0
    scores: List[SafetyScoreRecord] = field(default_factory=list)

    @property
    def has_safety_data(self) -> bool:
        return len(self.scores) > 0

    def to_dict(self) -> dict:
        return {
            "id":              self.id,
            "name":            self.name,
            "place_type":      self.place_type,
            "distance_meters": round(self.distance_meters, 1),
        }


@dataclass(frozen=True)
class DangerZone:
    id: str
    polygon: tuple
    severity_multiplier: float = 1.0
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "id":                  self.id,
            "description":         self.description,
            "severity_multiplier": self.severity_multiplier,
            "polygon":             [c.to_dict() for c in self.polygon],
        }


@dataclass(frozen=True)
class NeighborhoodStats:
    crime_rate_per_1000: float = 0.0
    violent_crime_rate: float = 0.0
    hate_crime_incidents: int = 0
    diversity_index: float = 0.5          # 0–1
    pct_minority: Optional[float] = None  # 0–100


@dataclass
class ActiveRoute:
    id: str
    user_id: str
    coordinates: List[Coordinate]
    user_demographics: Optional[UserDemographics]
    push_token: Optional[str]
    notification_preferences: dict = field(default_factory=dict)
    notified_since: Optional[datetime] = None


@dataclass
class HazardReport:
    id: str
    location_id: str
    safety_rating: float
    reporter_id: str
    created_at: datetime
    location_coordinate: Coordinate
    location_name: str = "Unknown location"
    reporter_demographics: Optional[UserDemographics] = None


@dataclass
class NotificationLogEntry:
    user_id: str
    route_id: Optional[str]
    notification_type: str
    sent_at: datetime
    report_ids: List[str]
    window_bucket: int
    severity: Optional[str] = None
    location_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        """Idempotency key: at most one entry per rider, subject, type and window."""
        subject = self.route_id or self.location_id or "-"
        return f"{self.user_id}:{subject}:{self.notification_type}:{self.window_bucket}"


@dataclass
class PreviousReviewer:
    """A user who reviewed a location before the current hazard report."""
    user_id: str
    safety_rating: float
    push_token: Optional[str]
    notification_preferences: dict = field(default_factory=dict)
