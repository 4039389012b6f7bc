"""
sql_store.py – SafetyDataStore backed by Flask-SQLAlchemy.

Radius queries prefilter on a bounding box in SQL and refine with haversine
in Python, nearest first. Each call runs in its own app context so the store
can be shared by the segment scoring thread pool.
"""
import logging
from contextlib import contextmanager
from typing import List, Optional, Tuple

from flask import has_app_context
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from safepath import database as m
from safepath.database import db
from safepath.errors import DuplicateNotificationError, StorageError
from safepath.geo import Coordinate, bounding_box, distance_between, polygon_within_radius
from safepath.records import (ActiveRoute, DangerZone, HazardReport, NearbyLocation,
                              NeighborhoodStats, NotificationLogEntry, PreviousReviewer,
                              SafetyScoreRecord, as_naive_utc)
from safepath.storage import SafetyDataStore

logger = logging.getLogger(__name__)


def _score_record(row: m.SafetyScore) -> SafetyScoreRecord:
    return SafetyScoreRecord(
        demographic_type=row.demographic_type,
        demographic_value=row.demographic_value,
        avg_safety_score=row.avg_safety_score,
        avg_comfort_score=row.avg_comfort_score,
        avg_overall_score=row.avg_overall_score,
        review_count=row.review_count or 0,
    )


def _hazard_report(review: m.Review) -> HazardReport:
    location = review.location
    reporter = review.user
    return HazardReport(
        id=review.id,
        location_id=review.location_id,
        safety_rating=review.safety_rating,
        reporter_id=review.user_id,
        created_at=as_naive_utc(review.created_at),
        location_coordinate=location.coordinate,
        location_name=location.name or "Unknown location",
        reporter_demographics=reporter.demographics() if reporter else None,
    )


class SQLAlchemyStore(SafetyDataStore):

    def __init__(self, app=None):
        self.app = app

    @contextmanager
    def _session(self, writes: bool = False):
        """App context (when needed) plus SQLAlchemy → StorageError mapping."""
        if self.app is not None and not has_app_context():
            with self.app.app_context():
                with self._session(writes) as session:
                    yield session
            return
        try:
            yield db.session
            if writes:
                db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("[store] query failed: %s", e)
            raise StorageError(str(e)) from e

    # ── Scoring reads ────────────────────────────────────────────────────

    def get_nearby_locations(self, point, radius_m, limit) -> List[NearbyLocation]:
        min_lat, max_lat, min_lng, max_lng = bounding_box(point, radius_m)
        with self._session():
            rows = (m.Location.query
                    .options(selectinload(m.Location.scores))
                    .filter(m.Location.latitude.between(min_lat, max_lat),
                            m.Location.longitude.between(min_lng, max_lng))
                    .all())
            nearby = []
            for loc in rows:
                dist = distance_between(point, loc.coordinate)
                if dist > radius_m:
                    continue
                nearby.append(NearbyLocation(
                    id=loc.id,
                    name=loc.name,
                    coordinate=loc.coordinate,
                    place_type=loc.place_type or "other",
                    distance_meters=dist,
                    scores=[_score_record(s) for s in loc.scores],
                ))
        nearby.sort(key=lambda n: n.distance_meters)
        return nearby[:limit]

    def get_danger_zones(self, point, radius_m) -> List[DangerZone]:
        min_lat, max_lat, min_lng, max_lng = bounding_box(point, radius_m)
        with self._session():
            rows = (m.DangerZone.query
                    .filter(m.DangerZone.min_lat <= max_lat,
                            m.DangerZone.max_lat >= min_lat,
                            m.DangerZone.min_lng <= max_lng,
                            m.DangerZone.max_lng >= min_lng)
                    .all())
            zones = []
            for row in rows:
                try:
                    polygon = tuple(Coordinate.from_value(p) for p in row.polygon or [])
                except (TypeError, ValueError) as e:
                    logger.warning("[store] danger zone %s has a bad polygon: %s", row.id, e)
                    continue
                if polygon_within_radius(point, radius_m, polygon):
                    zones.append(DangerZone(id=row.id, polygon=polygon,
                                            severity_multiplier=row.severity_multiplier or 1.0,
                                            description=row.description or ""))
        return zones

    def get_neighborhood_stats(self, point) -> Optional[NeighborhoodStats]:
        with self._session():
            area = ((m.NeighborhoodStats.max_lat - m.NeighborhoodStats.min_lat)
                    * (m.NeighborhoodStats.max_lng - m.NeighborhoodStats.min_lng))
            row = (m.NeighborhoodStats.query
                   .filter(m.NeighborhoodStats.min_lat <= point.latitude,
                           m.NeighborhoodStats.max_lat >= point.latitude,
                           m.NeighborhoodStats.min_lng <= point.longitude,
                           m.NeighborhoodStats.max_lng >= point.longitude)
                   .order_by(area)
                   .first())
            if row is None:
                return None
            return NeighborhoodStats(
                crime_rate_per_1000=row.crime_rate_per_1000 or 0.0,
                violent_crime_rate=row.violent_crime_rate or 0.0,
                hate_crime_incidents=row.hate_crime_incidents or 0,
                diversity_index=row.diversity_index if row.diversity_index is not None else 0.5,
                pct_minority=row.pct_minority,
            )

    # ── Dispatch reads ───────────────────────────────────────────────────

    def get_active_routes(self) -> List[ActiveRoute]:
        with self._session():
            rows = (db.session.query(m.ActiveRoute, m.User)
                    .join(m.User, m.ActiveRoute.user_id == m.User.id)
                    .filter(m.ActiveRoute.is_active.is_(True),
                            m.User.push_token.isnot(None))
                    .all())
            routes = []
            for route, user in rows:
                try:
                    coords = [Coordinate.from_value(c) for c in route.coordinates or []]
                except (TypeError, ValueError) as e:
                    logger.warning("[store] route %s has bad coordinates: %s", route.id, e)
                    continue
                routes.append(ActiveRoute(
                    id=route.id,
                    user_id=user.id,
                    coordinates=coords,
                    user_demographics=user.demographics(),
                    push_token=user.push_token,
                    notification_preferences=user.notification_preferences or {},
                    notified_since=as_naive_utc(route.started_at),
                ))
        return routes

    def get_hazard_report(self, report_id) -> Optional[HazardReport]:
        with self._session():
            review = db.session.get(m.Review, report_id)
            if review is None or review.location is None:
                return None
            return _hazard_report(review)

    def get_recent_low_rating_reports(self, since, until) -> List[HazardReport]:
        with self._session():
            rows = (m.Review.query
                    .filter(m.Review.created_at >= since,
                            m.Review.created_at <= until,
                            m.Review.safety_rating < 3.0,
                            m.Review.status == "active")
                    .order_by(m.Review.created_at)
                    .all())
            return [_hazard_report(r) for r in rows if r.location is not None]

    def get_previous_reviewers(self, location_id, exclude_user_id) -> List[PreviousReviewer]:
        with self._session():
            rows = (db.session.query(m.Review, m.User)
                    .join(m.User, m.Review.user_id == m.User.id)
                    .filter(m.Review.location_id == location_id,
                            m.Review.user_id != exclude_user_id,
                            m.Review.status == "active")
                    .order_by(m.Review.created_at.desc())
                    .all())
            reviewers = {}
            # Newest review per user wins
            for review, user in rows:
                if user.id in reviewers:
                    continue
                reviewers[user.id] = PreviousReviewer(
                    user_id=user.id,
                    safety_rating=review.safety_rating,
                    push_token=user.push_token,
                    notification_preferences=user.notification_preferences or {},
                )
        return list(reviewers.values())

    # ── Notification log ─────────────────────────────────────────────────

    def was_recently_notified(self, user_id, route_id, notification_type, since,
                              location_id=None) -> bool:
        with self._session():
            query = m.NotificationLog.query.filter(
                m.NotificationLog.user_id == user_id,
                m.NotificationLog.notification_type == notification_type,
                m.NotificationLog.sent_at >= since,
            )
            if route_id is not None:
                query = query.filter(m.NotificationLog.route_id == route_id)
            if location_id is not None:
                query = query.filter(m.NotificationLog.location_id == location_id)
            return query.first() is not None

    def write_notification_log(self, entry: NotificationLogEntry) -> None:
        try:
            with self._session(writes=True) as session:
                session.add(m.NotificationLog(
                    user_id=entry.user_id,
                    route_id=entry.route_id,
                    location_id=entry.location_id,
                    notification_type=entry.notification_type,
                    sent_at=entry.sent_at,
                    report_ids=list(entry.report_ids),
                    severity=entry.severity,
                    window_bucket=entry.window_bucket,
                    dedup_key=entry.dedup_key,
                    extra=entry.metadata,
                ))
        except IntegrityError as e:
            raise DuplicateNotificationError(entry.dedup_key) from e

    # ── Prediction votes ─────────────────────────────────────────────────

    def get_prediction_vote(self, user_id, location_id) -> Optional[str]:
        with self._session():
            vote = m.PredictionVote.query.filter_by(user_id=user_id,
                                                    location_id=location_id).first()
            return vote.vote_type if vote else None

    def save_prediction_vote(self, user_id, location_id, vote_type,
                             predicted_safety_score=None) -> None:
        try:
            with self._session(writes=True):
                vote = m.PredictionVote.query.filter_by(user_id=user_id,
                                                        location_id=location_id).first()
                if vote_type is None:
                    if vote is not None:
                        db.session.delete(vote)
                    return
                if vote is None:
                    vote = m.PredictionVote(user_id=user_id, location_id=location_id)
                    db.session.add(vote)
                vote.vote_type = vote_type
                if predicted_safety_score is not None:
                    vote.predicted_safety_score = predicted_safety_score
        except IntegrityError as e:
            raise StorageError(str(e)) from e

    def get_vote_tally(self, location_id) -> Tuple[int, int]:
        with self._session():
            rows = (db.session.query(m.PredictionVote.vote_type, func.count(m.PredictionVote.id))
                    .filter(m.PredictionVote.location_id == location_id)
                    .group_by(m.PredictionVote.vote_type)
                    .all())
        counts = dict(rows)
        return counts.get("accurate", 0), counts.get("inaccurate", 0)
