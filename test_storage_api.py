"""
test_storage_api.py – SQLAlchemyStore and the Flask API against a real
(throwaway) SQLite database.

Run with:  pytest test_storage_api.py
"""
from datetime import datetime, timedelta

import pytest

import app as safepath_app
from conftest import FakePushClient
from safepath.database import (ActiveRoute, DangerZone, Location, NeighborhoodStats,
                               NotificationLog, Review, SafetyScore, User, db)
from safepath.errors import DuplicateNotificationError
from safepath.geo import Coordinate
from safepath.records import NotificationLogEntry
from safepath.sql_store import SQLAlchemyStore
from safepath.storage import SafetyDataStore

T0 = datetime(2026, 3, 1, 12, 0, 0)
ROUTE = [[0.0, 0.0], [0.0, 0.02]]
WOMAN = {"gender": "woman", "race_ethnicity": ["white"]}


@pytest.fixture
def sql_store(flask_app):
    return SQLAlchemyStore(flask_app)


def _add(flask_app, *rows):
    with flask_app.app_context():
        db.session.add_all(rows)
        db.session.commit()


def _logged(flask_app, user_id):
    with flask_app.app_context():
        return NotificationLog.query.filter_by(user_id=user_id).count()


def _riding_rider_and_report(flask_app, rating=1.5):
    """A woman navigating ROUTE, and a review by another woman ~200 m off it."""
    _add(flask_app,
         User(id="rider", username="rider", gender="woman",
              push_token="ExponentPushToken[rider]"),
         User(id="reporter", username="reporter", gender="woman"),
         Location(id="loc-1", name="Corner Bar", latitude=0.0018, longitude=0.01,
                  place_type="bar"))
    _add(flask_app,
         ActiveRoute(id="route-1", user_id="rider", coordinates=ROUTE,
                     is_active=True, started_at=T0 - timedelta(minutes=10)),
         Review(id="rev-1", location_id="loc-1", user_id="reporter",
                safety_rating=rating, created_at=T0))


# ─────────────────────────────────────────────────────────────────────────────
# 1. SQLALCHEMY STORE
# ─────────────────────────────────────────────────────────────────────────────

def test_nearby_locations_are_filtered_and_sorted(flask_app, sql_store):
    _add(flask_app,
         Location(id="near", name="Near", latitude=0.0, longitude=0.001),
         Location(id="nearer", name="Nearer", latitude=0.0, longitude=0.0005),
         Location(id="far", name="Far", latitude=0.0, longitude=0.02))
    _add(flask_app,
         SafetyScore(location_id="near", demographic_type="overall", demographic_value=None,
                     avg_safety_score=4.0, avg_comfort_score=3.5, avg_overall_score=3.8,
                     review_count=6))

    found = sql_store.get_nearby_locations(Coordinate(0.0, 0.0), 500, 20)

    assert [loc.id for loc in found] == ["nearer", "near"]
    assert found[0].distance_meters == pytest.approx(55.6, abs=0.5)
    assert found[1].scores[0].avg_safety_score == 4.0
    assert found[1].scores[0].review_count == 6
    assert sql_store.get_nearby_locations(Coordinate(0.0, 0.0), 500, 1)[0].id == "nearer"


def test_danger_zones_and_stats_lookup(flask_app, sql_store):
    ring = [[-0.001, -0.001], [-0.001, 0.001], [0.001, 0.001], [0.001, -0.001]]
    far_ring = [[0.1, 0.1], [0.1, 0.11], [0.11, 0.11], [0.11, 0.1]]
    _add(flask_app,
         DangerZone.from_polygon(ring, id="z1", description="Underpass", severity_multiplier=1.5),
         DangerZone.from_polygon(far_ring, id="z2", description="Elsewhere"),
         NeighborhoodStats(name="Wide", min_lat=-1, max_lat=1, min_lng=-1, max_lng=1,
                           crime_rate_per_1000=10),
         NeighborhoodStats(name="Tight", min_lat=-0.01, max_lat=0.01, min_lng=-0.01,
                           max_lng=0.01, crime_rate_per_1000=80, hate_crime_incidents=3))

    zones = sql_store.get_danger_zones(Coordinate(0.0, 0.0), 500)
    assert [z.id for z in zones] == ["z1"]
    assert zones[0].severity_multiplier == 1.5

    stats = sql_store.get_neighborhood_stats(Coordinate(0.0, 0.0))
    assert stats.crime_rate_per_1000 == 80
    assert sql_store.get_neighborhood_stats(Coordinate(5.0, 5.0)) is None


def test_malformed_danger_zone_is_skipped(flask_app, sql_store, client):
    ring = [[-0.001, -0.001], [-0.001, 0.001], [0.001, 0.001], [0.001, -0.001]]
    _add(flask_app,
         DangerZone.from_polygon(ring, id="good", description="Underpass"),
         DangerZone(id="broken", polygon=[[0.0, 0.0], [0.001]],
                    min_lat=0.0, max_lat=0.001, min_lng=0.0, max_lng=0.0))

    assert [z.id for z in sql_store.get_danger_zones(Coordinate(0.0, 0.0), 500)] == ["good"]

    response = client.post("/api/route_safety", json={
        "route_coordinates": [[0.0, 0.0], [0.0, 0.02]], "user_demographics": {},
    })
    assert response.status_code == 200
    assert response.get_json()["total_segments"] == 3


def test_active_routes_and_hazard_report(flask_app, sql_store):
    _riding_rider_and_report(flask_app)
    _add(flask_app,
         User(id="quiet", username="quiet"),
         ActiveRoute(id="route-2", user_id="quiet", coordinates=ROUTE, is_active=True),
         ActiveRoute(id="route-3", user_id="rider", coordinates=ROUTE, is_active=False))

    routes = sql_store.get_active_routes()
    assert [r.id for r in routes] == ["route-1"]
    assert routes[0].user_demographics.gender == "woman"
    assert routes[0].coordinates[1] == Coordinate(0.0, 0.02)

    report = sql_store.get_hazard_report("rev-1")
    assert report.location_name == "Corner Bar"
    assert report.reporter_demographics.gender == "woman"
    assert sql_store.get_hazard_report("missing") is None

    recent = sql_store.get_recent_low_rating_reports(T0 - timedelta(seconds=30), T0)
    assert [r.id for r in recent] == ["rev-1"]


def test_notification_log_is_unique_per_window(sql_store):
    entry = NotificationLogEntry(user_id="rider", route_id="route-1",
                                 notification_type="route_safety_alert", sent_at=T0,
                                 report_ids=["rev-1"], window_bucket=42, severity="CRITICAL")
    sql_store.write_notification_log(entry)

    with pytest.raises(DuplicateNotificationError):
        sql_store.write_notification_log(entry)

    assert sql_store.was_recently_notified("rider", "route-1", "route_safety_alert",
                                           T0 - timedelta(minutes=15))
    assert not sql_store.was_recently_notified("rider", "route-1", "route_safety_alert",
                                               T0 + timedelta(minutes=1))
    assert _logged(sql_store.app, "rider") == 1


def test_prediction_votes(sql_store):
    sql_store.save_prediction_vote("u1", "loc-1", "accurate", 3.5)
    sql_store.save_prediction_vote("u2", "loc-1", "inaccurate")
    assert sql_store.get_prediction_vote("u1", "loc-1") == "accurate"
    assert sql_store.get_vote_tally("loc-1") == (1, 1)

    sql_store.save_prediction_vote("u2", "loc-1", "accurate")
    assert sql_store.get_vote_tally("loc-1") == (2, 0)

    sql_store.save_prediction_vote("u1", "loc-1", None)
    assert sql_store.get_prediction_vote("u1", "loc-1") is None
    assert sql_store.get_vote_tally("loc-1") == (1, 0)


def test_store_contract_must_be_fully_implemented(sql_store):
    class RoutesOnly(SafetyDataStore):
        def get_active_routes(self):
            return []

    with pytest.raises(TypeError):
        RoutesOnly()
    assert isinstance(sql_store, SafetyDataStore)


def test_seed_is_idempotent(flask_app, sql_store):
    import seed_data

    seed_data.seed(flask_app, db)
    seed_data.seed(flask_app, db)

    with flask_app.app_context():
        assert User.query.count() == len(seed_data.USERS)
        assert Location.query.count() == len(seed_data.LOCATIONS)
    waverley = Coordinate(55.9520, -3.1900)
    nearby = sql_store.get_nearby_locations(waverley, 500, 20)
    assert nearby and nearby[0].name == "Waverley Station"
    assert any(s.is_overall for s in nearby[0].scores)
    assert len(sql_store.get_active_routes()) == 1


# ─────────────────────────────────────────────────────────────────────────────
# 2. HTTP API
# ─────────────────────────────────────────────────────────────────────────────

def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["database"] == "ok"


def test_route_safety_endpoint(client):
    response = client.post("/api/route_safety", json={
        "route_coordinates": [{"latitude": 0.0, "longitude": 0.0},
                              {"latitude": 0.0, "longitude": 0.02}],
        "user_demographics": WOMAN,
    })
    body = response.get_json()

    assert response.status_code == 200
    assert body["total_segments"] == 3
    assert body["overall_safety"] == pytest.approx(3.5)
    assert body["segments"][0]["scenario"] == "COLD_START"
    assert "Route appears safe for your profile" in body["suggestions"]


def test_route_safety_accepts_encoded_polyline(client):
    response = client.post("/api/route_safety", json={
        "encoded_polyline": "???_|B",      # (0, 0) → (0, 0.02)
        "user_demographics": {},
    })
    assert response.status_code == 200
    assert response.get_json()["total_segments"] == 3


@pytest.mark.parametrize("payload", [
    {"route_coordinates": [{"latitude": 0.0, "longitude": 0.0}], "user_demographics": WOMAN},
    {"route_coordinates": [[0.0, 0.0], [0.0, 0.02]]},
    {"route_coordinates": [[0.0, 0.0], [0.0, 0.0]], "user_demographics": WOMAN},
    {"route_coordinates": 5, "user_demographics": {}},
    {"route_coordinates": "0,0;0,0.02", "user_demographics": {}},
    {"user_demographics": WOMAN},
])
def test_route_safety_rejects_bad_input(client, payload):
    assert client.post("/api/route_safety", json=payload).status_code == 400


def test_predict_point_and_votes(client):
    prediction = client.post("/api/predict_point", json={
        "latitude": 0.0, "longitude": 0.0, "user_demographics": WOMAN, "place_type": "park",
    })
    assert prediction.status_code == 200
    assert prediction.get_json()["predicted_score"] == pytest.approx(3.5)

    vote = client.post("/api/prediction_vote", json={
        "user_id": "u1", "location_id": "loc-1", "vote_type": "accurate",
        "predicted_safety_score": 3.5,
    })
    assert vote.get_json() == {"action": "added", "votes": {"accurate": 1, "inaccurate": 0}}

    assert client.post("/api/prediction_vote", json={
        "user_id": "u1", "location_id": "loc-1", "vote_type": "meh",
    }).status_code == 400
    assert client.post("/api/predict_point", json={"latitude": "north"}).status_code == 400


def test_hazard_webhook_alerts_rider_once(flask_app, client, monkeypatch):
    fake_push = FakePushClient()
    monkeypatch.setattr(safepath_app, "push_client", fake_push)
    _riding_rider_and_report(flask_app)
    payload = {"type": "INSERT", "table": "reviews", "record": {"id": "rev-1"}}

    first = client.post("/api/hazard_alerts", json=payload)
    assert first.status_code == 200
    assert first.get_json()["notifications_sent"] == 1
    assert first.get_json()["severity"] == "CRITICAL"
    assert fake_push.messages[0]["to"] == "ExponentPushToken[rider]"

    replay = client.post("/api/hazard_alerts", json=payload)
    assert replay.get_json()["notifications_sent"] == 0
    assert _logged(flask_app, "rider") == 1


def test_hazard_webhook_edge_cases(client):
    assert client.post("/api/hazard_alerts", json={"type": "UPDATE", "record": {"id": "x"}}
                       ).get_json()["skipped"] is True
    assert client.post("/api/hazard_alerts", json={"type": "INSERT", "record": {}}
                       ).status_code == 400
    assert client.post("/api/hazard_alerts", json={"type": "INSERT", "record": {"id": "nope"}}
                       ).status_code == 404
