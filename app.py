"""
app.py – SafePath Flask application entry point.

Startup sequence:
  1. Create the database tables
  2. Seed the demo dataset if the database is empty
  3. Start the Flask server

Routes:
  GET  /api/health           → liveness + database check
  POST /api/route_safety     → score a route for a rider's demographic profile
  POST /api/predict_point    → predict safety at a single coordinate
  POST /api/prediction_vote  → vote a prediction accurate / inaccurate
  POST /api/hazard_alerts    → review-insert webhook; alerts riders and past reviewers
"""
import logging

from flask import Flask, request, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from safepath.database import db
from safepath.errors import (InvalidDemographicsError, InvalidRouteError,
                             InvalidVoteError, SafePathError, StorageError)
from safepath.dispatcher import dispatch_hazard_alerts, dispatch_location_safety_change
from safepath.geo import decode_polyline
from safepath.predictor import cast_prediction_vote, predict_point, predict_with_votes
from safepath.push import ExpoPushClient
from safepath.route_scorer import score_route
from safepath.sql_store import SQLAlchemyStore

logging.basicConfig(level=Config.LOG_LEVEL,
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("safepath")

# ── App factory ──────────────────────────────────────────────────────────────
app = Flask(__name__)
app.config.from_object(Config)

# Initialise extensions
db.init_app(app)

# Shared by every request and by the scoring worker threads
store       = SQLAlchemyStore(app)
push_client = ExpoPushClient()


# ── Startup ───────────────────────────────────────────────────────────────────

def startup():
    """Run all initialisation tasks before the first request."""
    with app.app_context():
        # 1. Create tables
        db.create_all()

        # 2. Seed database if empty
        if app.config.get("SEED_ON_STARTUP"):
            from seed_data import seed
            seed(app, db)

    logger.info("[app] SafePath is ready.")


# ── Error handlers ────────────────────────────────────────────────────────────

@app.errorhandler(InvalidRouteError)
@app.errorhandler(InvalidDemographicsError)
@app.errorhandler(InvalidVoteError)
def handle_bad_input(e):
    return jsonify({"error": str(e)}), 400


@app.errorhandler(StorageError)
def handle_storage_error(e):
    logger.error("[app] storage unavailable: %s", e)
    return jsonify({"error": "Safety data is temporarily unavailable"}), 503


@app.errorhandler(SafePathError)
def handle_safepath_error(e):
    logger.exception("[app] unhandled SafePath error")
    return jsonify({"error": str(e)}), 500


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ── API routes ────────────────────────────────────────────────────────────────

@app.route("/api/health")
def api_health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning("[app] health check: database unavailable: %s", e)
        database = "unavailable"
    status = 200 if database == "ok" else 503
    return jsonify({"status": "ok" if status == 200 else "degraded",
                    "database": database}), status


@app.route("/api/route_safety", methods=["POST"])
def api_route_safety():
    """
    Score a route segment by segment.

    Request JSON:
      { "route_coordinates": [{"latitude": float, "longitude": float}, ...],
        "encoded_polyline":  str (alternative to route_coordinates),
        "user_demographics": { "race_ethnicity": [...], "gender": str,
                               "lgbtq_status": bool, "religion": str,
                               "disability_status": [...], "age_range": str } }
    """
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400

    coordinates = data.get("route_coordinates")
    if coordinates is None and data.get("encoded_polyline"):
        try:
            coordinates = decode_polyline(data["encoded_polyline"])
        except (ValueError, TypeError, IndexError) as e:
            return jsonify({"error": f"Invalid encoded_polyline: {e}"}), 400
    if not coordinates:
        return jsonify({"error": "At least 2 route coordinates required"}), 400

    result = score_route(coordinates, data.get("user_demographics"), store)
    return jsonify(result.to_dict())


@app.route("/api/predict_point", methods=["POST"])
def api_predict_point():
    """
    Predict safety at one coordinate.

    Request JSON:
      { "latitude": float, "longitude": float,
        "user_demographics": {...},
        "place_type": str (optional),
        "radius_meters": float (optional, default 1000),
        "location_id": str (optional – applies vote validation) }
    """
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    try:
        lat = float(data["latitude"])
        lng = float(data["longitude"])
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid coordinates: {e}"}), 400
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return jsonify({"error": "Coordinates out of range"}), 400

    try:
        radius = float(data.get("radius_meters", Config.PREDICTION_RADIUS_METERS))
    except (TypeError, ValueError):
        return jsonify({"error": "radius_meters must be a number"}), 400
    if radius <= 0:
        return jsonify({"error": "radius_meters must be positive"}), 400

    place_type = data.get("place_type")
    location_id = data.get("location_id")
    if location_id:
        prediction = predict_with_votes((lat, lng), data.get("user_demographics"), store,
                                        location_id=location_id, place_type=place_type,
                                        radius_m=radius)
    else:
        prediction = predict_point((lat, lng), data.get("user_demographics"), store,
                                   place_type=place_type, radius_m=radius)
    return jsonify(prediction)


@app.route("/api/prediction_vote", methods=["POST"])
def api_prediction_vote():
    """
    Request JSON:
      { "user_id": str, "location_id": str,
        "vote_type": "accurate"|"inaccurate",
        "predicted_safety_score": float (optional) }
    """
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400

    location_id = data.get("location_id")
    action = cast_prediction_vote(store, data.get("user_id"), location_id,
                                  data.get("vote_type"), data.get("predicted_safety_score"))
    accurate, inaccurate = store.get_vote_tally(location_id)
    return jsonify({"action": action,
                    "votes": {"accurate": accurate, "inaccurate": inaccurate}})


@app.route("/api/hazard_alerts", methods=["POST"])
def api_hazard_alerts():
    """
    Database webhook fired on review insert.

    Request JSON:
      { "type": "INSERT", "table": "reviews",
        "record": { "id": str, "location_id": str, "user_id": str,
                    "safety_rating": float, "created_at": str } }

    Responds 503 if the active route list cannot be read, so the webhook is
    retried; log entries already written make the retry idempotent.
    """
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    if data.get("type") != "INSERT":
        return jsonify({"skipped": True, "reason": "not an insert"})

    record = data.get("record") or {}
    report_id = record.get("id")
    if not report_id:
        return jsonify({"error": "record.id is required"}), 400

    report = store.get_hazard_report(str(report_id))
    if report is None:
        return jsonify({"error": f"Review {report_id} not found"}), 404

    result = dispatch_hazard_alerts(report, store, push_client)
    if result.get("severity") is not None:
        result["location_change"] = dispatch_location_safety_change(report, store, push_client)
    return jsonify(result)


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    startup()
    app.run(debug=False, host="127.0.0.1", port=5000)
