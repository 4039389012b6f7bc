"""
SQLAlchemy ORM models for SafePath.

Tables:
  users                – riders / reviewers with their demographic profile
  locations            – reviewed places
  safety_scores        – per-location aggregates, one row per demographic bucket
  reviews              – individual reviews; a low rating is a hazard report
  danger_zones         – elevated-risk polygons
  neighborhood_stats   – crime / diversity statistics by bounding box
  routes               – routes riders are currently navigating
  notification_logs    – append-only alert log, unique per idempotency key
  prediction_votes     – "accurate" / "inaccurate" votes on predictions
"""
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

from safepath.demographics import UserDemographics
from safepath.geo import Coordinate

db = SQLAlchemy()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(db.Model):
    """A rider or reviewer. Demographic fields are all optional."""
    __tablename__ = "users"

    id                = db.Column(db.String(64), primary_key=True, default=_uuid)
    username          = db.Column(db.String(64), unique=True, nullable=False)
    race_ethnicity    = db.Column(db.JSON, default=list)
    gender            = db.Column(db.String(32))
    lgbtq_status      = db.Column(db.Boolean, nullable=True)
    religion          = db.Column(db.String(64))
    disability_status = db.Column(db.JSON, default=list)
    age_range         = db.Column(db.String(16))
    push_token        = db.Column(db.String(256), nullable=True)
    notification_preferences = db.Column(db.JSON, default=dict)
    created_at        = db.Column(db.DateTime, default=_now)

    reviews = db.relationship("Review", backref="user", lazy=True)
    routes  = db.relationship("ActiveRoute", backref="user", lazy=True)

    def demographics(self) -> UserDemographics:
        return UserDemographics.from_dict({
            "race_ethnicity":    self.race_ethnicity,
            "gender":            self.gender,
            "lgbtq_status":      self.lgbtq_status,
            "religion":          self.religion,
            "disability_status": self.disability_status,
            "age_range":         self.age_range,
        })

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Location(db.Model):
    __tablename__ = "locations"

    id         = db.Column(db.String(64), primary_key=True, default=_uuid)
    name       = db.Column(db.String(128), nullable=False)
    latitude   = db.Column(db.Float, nullable=False, index=True)
    longitude  = db.Column(db.Float, nullable=False, index=True)
    place_type = db.Column(db.String(32), default="other")
    created_at = db.Column(db.DateTime, default=_now)

    scores  = db.relationship("SafetyScore", backref="location", lazy=True)
    reviews = db.relationship("Review", backref="location", lazy=True)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    def __repr__(self) -> str:
        return f"<Location {self.name}>"


class SafetyScore(db.Model):
    """
    Aggregated scores at one location for one demographic bucket.

    demographic_type : race_ethnicity | gender | lgbtq | religion | disability | overall
    scores           : 1–5
    """
    __tablename__ = "safety_scores"
    __table_args__ = (
        db.UniqueConstraint("location_id", "demographic_type", "demographic_value",
                            name="uq_safety_score_bucket"),
    )

    id                = db.Column(db.Integer, primary_key=True)
    location_id       = db.Column(db.String(64), db.ForeignKey("locations.id"), nullable=False)
    demographic_type  = db.Column(db.String(32), nullable=False)
    demographic_value = db.Column(db.String(64), nullable=True)
    avg_safety_score  = db.Column(db.Float, nullable=False)
    avg_comfort_score = db.Column(db.Float, nullable=False)
    avg_overall_score = db.Column(db.Float, nullable=False)
    review_count      = db.Column(db.Integer, default=0)

    def __repr__(self) -> str:
        return (f"<SafetyScore {self.location_id} {self.demographic_type}="
                f"{self.demographic_value} {self.avg_overall_score:.1f}>")


class Review(db.Model):
    """A single review. A safety_rating below 3.0 is a hazard report."""
    __tablename__ = "reviews"

    id             = db.Column(db.String(64), primary_key=True, default=_uuid)
    location_id    = db.Column(db.String(64), db.ForeignKey("locations.id"), nullable=False)
    user_id        = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False)
    safety_rating  = db.Column(db.Float, nullable=False)
    comfort_rating = db.Column(db.Float, nullable=True)
    overall_rating = db.Column(db.Float, nullable=True)
    status         = db.Column(db.String(16), default="active")
    created_at     = db.Column(db.DateTime, default=_now, index=True)

    def __repr__(self) -> str:
        return f"<Review {self.id} loc={self.location_id} rating={self.safety_rating}>"


class DangerZone(db.Model):
    """
    An elevated-risk polygon.

    polygon is a JSON list of [lat, lng] pairs; the bounding box columns are
    kept in sync so radius queries can prefilter in SQL.
    """
    __tablename__ = "danger_zones"

    id                  = db.Column(db.String(64), primary_key=True, default=_uuid)
    description         = db.Column(db.String(256), default="")
    severity_multiplier = db.Column(db.Float, default=1.0)
    polygon             = db.Column(db.JSON, nullable=False)
    min_lat = db.Column(db.Float, nullable=False)
    max_lat = db.Column(db.Float, nullable=False)
    min_lng = db.Column(db.Float, nullable=False)
    max_lng = db.Column(db.Float, nullable=False)

    @classmethod
    def from_polygon(cls, points, **kwargs) -> "DangerZone":
        lats = [p[0] for p in points]
        lngs = [p[1] for p in points]
        return cls(polygon=[list(p) for p in points],
                   min_lat=min(lats), max_lat=max(lats),
                   min_lng=min(lngs), max_lng=max(lngs), **kwargs)

    def __repr__(self) -> str:
        return f"<DangerZone {self.description} x{self.severity_multiplier}>"


class NeighborhoodStats(db.Model):
    __tablename__ = "neighborhood_stats"

    id                   = db.Column(db.Integer, primary_key=True)
    name                 = db.Column(db.String(128))
    min_lat = db.Column(db.Float, nullable=False)
    max_lat = db.Column(db.Float, nullable=False)
    min_lng = db.Column(db.Float, nullable=False)
    max_lng = db.Column(db.Float, nullable=False)
    crime_rate_per_1000  = db.Column(db.Float, default=0.0)
    violent_crime_rate   = db.Column(db.Float, default=0.0)
    hate_crime_incidents = db.Column(db.Integer, default=0)
    diversity_index      = db.Column(db.Float, default=0.5)   # 0–1
    pct_minority         = db.Column(db.Float, nullable=True)  # 0–100

    def __repr__(self) -> str:
        return f"<NeighborhoodStats {self.name}>"


class ActiveRoute(db.Model):
    """A route a rider is navigating. coordinates is a JSON list of [lat, lng]."""
    __tablename__ = "routes"

    id          = db.Column(db.String(64), primary_key=True, default=_uuid)
    user_id     = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False)
    coordinates = db.Column(db.JSON, nullable=False)
    is_active   = db.Column(db.Boolean, default=True, index=True)
    started_at  = db.Column(db.DateTime, default=_now)

    def __repr__(self) -> str:
        return f"<ActiveRoute {self.id} user={self.user_id} active={self.is_active}>"


class NotificationLog(db.Model):
    """
    Append-only alert log.

    dedup_key = user:subject:type:window_bucket is unique, so concurrent or
    replayed deliveries cannot alert the same rider twice in one window.
    """
    __tablename__ = "notification_logs"

    id                = db.Column(db.Integer, primary_key=True)
    user_id           = db.Column(db.String(64), nullable=False, index=True)
    route_id          = db.Column(db.String(64), nullable=True)
    location_id       = db.Column(db.String(64), nullable=True)
    notification_type = db.Column(db.String(64), nullable=False)
    sent_at           = db.Column(db.DateTime, nullable=False, index=True)
    report_ids        = db.Column(db.JSON, default=list)
    severity          = db.Column(db.String(16))
    window_bucket     = db.Column(db.Integer, nullable=False)
    dedup_key         = db.Column(db.String(256), nullable=False, unique=True)
    extra             = db.Column("metadata", db.JSON, default=dict)

    def __repr__(self) -> str:
        return f"<NotificationLog {self.dedup_key}>"


class PredictionVote(db.Model):
    __tablename__ = "prediction_votes"
    __table_args__ = (
        db.UniqueConstraint("user_id", "location_id", name="uq_prediction_vote"),
    )

    id          = db.Column(db.Integer, primary_key=True)
    user_id     = db.Column(db.String(64), nullable=False)
    location_id = db.Column(db.String(64), nullable=False, index=True)
    vote_type   = db.Column(db.String(16), nullable=False)   # accurate / inaccurate
    predicted_safety_score = db.Column(db.Float, nullable=True)
    created_at  = db.Column(db.DateTime, default=_now)
    updated_at  = db.Column(db.DateTime, default=_now, onupdate=_now)

    def __repr__(self) -> str:
        return f"<PredictionVote {self.user_id}→{self.location_id} {self.vote_type}>"
