"""
conftest.py – Shared pytest fixtures for SafePath.

  store        in-process SafetyDataStore; no database needed
  push_client  records every batch instead of calling Expo
  flask_app    the real Flask app on a throwaway SQLite file
"""
import os
import tempfile
from dataclasses import replace

# Must happen before config.py is imported anywhere
_TMP_DIR = tempfile.mkdtemp(prefix="safepath-test-")
os.environ.setdefault("SAFEPATH_DATABASE_URL",
                      f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
os.environ.setdefault("SAFEPATH_SEED", "0")

import pytest

from safepath.demographics import UserDemographics
from safepath.errors import DuplicateNotificationError, PushGatewayError, StorageError
from safepath.geo import Coordinate, distance_between, polygon_within_radius
from safepath.records import (ActiveRoute, DangerZone, HazardReport, NearbyLocation,
                              NeighborhoodStats, PreviousReviewer, SafetyScoreRecord)
from safepath.storage import SafetyDataStore


class FakeStore(SafetyDataStore):
    """Dict-and-list backed store. Put a method name in `fail_on` to make it raise."""

    def __init__(self):
        self.locations = []
        self.zones = []
        self.stats = None
        self.routes = []
        self.reports = []
        self.reviewers = {}
        self.logs = []
        self.votes = {}
        self.fail_on = set()

    def _check(self, name):
        if name in self.fail_on:
            raise StorageError(f"{name} unavailable")

    # ── builders ──

    def add_location(self, loc_id, lat, lng, scores=(), place_type="other", name=None):
        loc = NearbyLocation(id=loc_id, name=name or loc_id, coordinate=Coordinate(lat, lng),
                             place_type=place_type, scores=list(scores))
        self.locations.append(loc)
        return loc

    def add_zone(self, zone_id, ring, severity=1.0, description="Test zone"):
        zone = DangerZone(id=zone_id, polygon=tuple(Coordinate(*p) for p in ring),
                          severity_multiplier=severity, description=description)
        self.zones.append(zone)
        return zone

    def set_stats(self, **kwargs):
        self.stats = NeighborhoodStats(**kwargs)

    def add_route(self, route_id, user_id, coords, demographics=None,
                  token="ExponentPushToken[test]", prefs=None, notified_since=None):
        route = ActiveRoute(id=route_id, user_id=user_id,
                            coordinates=[Coordinate(*c) for c in coords],
                            user_demographics=demographics, push_token=token,
                            notification_preferences=prefs or {},
                            notified_since=notified_since)
        self.routes.append(route)
        return route

    def add_report(self, report_id, rating, lat, lng, created_at,
                   reporter=None, location_id=None, reporter_id="reporter"):
        report = HazardReport(id=report_id, location_id=location_id or f"loc-{report_id}",
                              safety_rating=rating, reporter_id=reporter_id,
                              created_at=created_at,
                              location_coordinate=Coordinate(lat, lng),
                              location_name=f"Place {report_id}",
                              reporter_demographics=reporter)
        self.reports.append(report)
        return report

    def add_reviewer(self, location_id, user_id, rating, token="ExponentPushToken[rev]", prefs=None):
        self.reviewers.setdefault(location_id, []).append(
            PreviousReviewer(user_id=user_id, safety_rating=rating, push_token=token,
                             notification_preferences=prefs or {}))

    # ── SafetyDataStore ──

    def get_nearby_locations(self, point, radius_m, limit):
        self._check("get_nearby_locations")
        found = []
        for loc in self.locations:
            dist = distance_between(point, loc.coordinate)
            if dist <= radius_m:
                found.append(replace(loc, distance_meters=dist))
        found.sort(key=lambda n: n.distance_meters)
        return found[:limit]

    def get_danger_zones(self, point, radius_m):
        self._check("get_danger_zones")
        return [z for z in self.zones if polygon_within_radius(point, radius_m, z.polygon)]

    def get_neighborhood_stats(self, point):
        self._check("get_neighborhood_stats")
        return self.stats

    def get_active_routes(self):
        self._check("get_active_routes")
        return list(self.routes)

    def get_hazard_report(self, report_id):
        return next((r for r in self.reports if r.id == report_id), None)

    def get_recent_low_rating_reports(self, since, until):
        self._check("get_recent_low_rating_reports")
        return [r for r in self.reports
                if since <= r.created_at <= until and r.safety_rating < 3.0]

    def get_previous_reviewers(self, location_id, exclude_user_id):
        self._check("get_previous_reviewers")
        return [r for r in self.reviewers.get(location_id, []) if r.user_id != exclude_user_id]

    def was_recently_notified(self, user_id, route_id, notification_type, since,
                              location_id=None):
        self._check("was_recently_notified")
        for e in self.logs:
            if (e.user_id == user_id and e.notification_type == notification_type
                    and e.sent_at >= since
                    and (route_id is None or e.route_id == route_id)
                    and (location_id is None or e.location_id == location_id)):
                return True
        return False

    def write_notification_log(self, entry):
        self._check("write_notification_log")
        if any(e.dedup_key == entry.dedup_key for e in self.logs):
            raise DuplicateNotificationError(entry.dedup_key)
        self.logs.append(entry)

    def get_prediction_vote(self, user_id, location_id):
        return self.votes.get((user_id, location_id), (None, None))[0]

    def save_prediction_vote(self, user_id, location_id, vote_type, predicted_safety_score=None):
        if vote_type is None:
            self.votes.pop((user_id, location_id), None)
        else:
            self.votes[(user_id, location_id)] = (vote_type, predicted_safety_score)

    def get_vote_tally(self, location_id):
        types = [v[0] for (_, loc), v in self.votes.items() if loc == location_id]
        return types.count("accurate"), types.count("inaccurate")


class FakePushClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.batches = []

    @property
    def messages(self):
        return [m for batch in self.batches for m in batch]

    def send(self, messages):
        if self.fail:
            raise PushGatewayError("Expo push request failed: 503 Service Unavailable")
        self.batches.append(list(messages))
        return [{"status": "ok", "id": f"ticket-{i}"} for i in range(len(messages))]


def score(demographic_type, value, safety, comfort=None, overall=None, count=1):
    """Shorthand for a SafetyScoreRecord."""
    comfort = safety if comfort is None else comfort
    overall = safety if overall is None else overall
    return SafetyScoreRecord(demographic_type, value, safety, comfort, overall, count)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
def woman():
    return UserDemographics.from_dict({"gender": "woman", "race_ethnicity": ["white"]})


@pytest.fixture
def flask_app():
    import app as safepath_app
    from safepath.database import db

    with safepath_app.app.app_context():
        db.drop_all()
        db.create_all()
    yield safepath_app.app
    with safepath_app.app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
