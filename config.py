"""
Configuration settings for SafePath.
"""
import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Flask secret key
    SECRET_KEY = os.environ.get("SECRET_KEY", "safepath-dev-secret-2024")

    # SQLite database in the project root unless overridden
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "SAFEPATH_DATABASE_URL",
        f"sqlite:///{os.path.join(BASE_DIR, 'safepath.db')}",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Every storage call is bounded; a slow store counts as a failed call
    STORAGE_TIMEOUT_SECONDS = 3
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": STORAGE_TIMEOUT_SECONDS}}
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"connect_timeout": STORAGE_TIMEOUT_SECONDS}}

    LOG_LEVEL = os.environ.get("SAFEPATH_LOG_LEVEL", "INFO")

    # Seed the demo dataset on startup when the database is empty
    SEED_ON_STARTUP = os.environ.get("SAFEPATH_SEED", "1") == "1"

    # ── Route segmentation ──────────────────────────────────────────────
    SEGMENT_LENGTH_METERS = 1000
    AVERAGE_SPEED_MPS     = 13.4     # ~30 mph, used for duration estimates

    # ── Segment / point scoring ─────────────────────────────────────────
    SEGMENT_SCORING_RADIUS_METERS = 500
    PREDICTION_RADIUS_METERS      = 1000
    NEARBY_LOCATION_LIMIT         = 20
    SCORING_MAX_WORKERS           = 4      # match the storage connection pool

    NEUTRAL_SCORE_BASELINE = 3.5
    MIN_SCORE = 1.0
    MAX_SCORE = 5.0

    # Source weights per scenario (each row sums to 1.0)
    SCENARIO_WEIGHTS = {
        "WITH_REVIEWS": {"reviews": 0.6, "ml_prediction": 0.25, "statistics": 0.15},
        "ML_ONLY":      {"reviews": 0.0, "ml_prediction": 0.7,  "statistics": 0.3},
        "COLD_START":   {"reviews": 0.0, "ml_prediction": 0.0,  "statistics": 1.0},
    }

    # Per-record weights inside the ML / place-type estimate
    PREDICTION_WEIGHTS = {
        "DEMOGRAPHIC_MATCHES": 0.7,
        "PLACE_TYPE_OVERALL":  0.3,
        "NEARBY_OVERALL":      0.2,
    }

    # Step penalties: list of (threshold, penalty), first match wins
    CRIME_RATE_PENALTIES    = [(100, 1.5), (50, 1.0), (25, 0.5)]
    VIOLENT_CRIME_PENALTIES = [(20, 1.0), (10, 0.5), (5, 0.25)]
    HATE_CRIME_PENALTIES    = [(10, 1.0), (5, 0.5), (0, 0.25)]
    DIVERSITY_BONUS_THRESHOLD = 0.7
    DIVERSITY_BONUS           = 0.25

    # Demographic adjustment (applied for racial / ethnic minorities)
    MINORITY_DIVERSITY_ADJUSTMENTS = {"very_low": (0.3, -1.0), "low": (0.5, -0.5), "high": (0.7, 0.5)}
    MINORITY_HATE_CRIME_PENALTIES  = [(10, 1.0), (5, 0.5)]
    LOW_MINORITY_SHARE_PCT     = 10
    LOW_MINORITY_SHARE_PENALTY = 0.25

    DANGER_ZONE_PENALTY = 2.0

    # Confidence model
    CONFIDENCE_BASE         = 0.15
    CONFIDENCE_PER_REVIEW   = 0.05
    CONFIDENCE_PER_PEER     = 0.05
    CONFIDENCE_STATS_BONUS  = 0.15
    CONFIDENCE_CAPS = {"WITH_REVIEWS": 0.95, "ML_ONLY": 0.75, "COLD_START": 0.35}
    LOW_CONFIDENCE_THRESHOLD = 0.5

    # ── Route aggregation ───────────────────────────────────────────────
    SAFE_THRESHOLD            = 4.0
    MIXED_THRESHOLD           = 3.0
    HIGH_RISK_THRESHOLD       = 3.0
    ROUTE_LOW_CONFIDENCE      = 0.6
    UNSAFE_SHARE_HIGH         = 0.30
    UNSAFE_SHARE_LOW          = 0.10
    COMMON_RISK_SHARE         = 0.30
    MOSTLY_SAFE_SHARE         = 0.80
    LARGELY_SAFE_SHARE        = 0.60
    MAX_SUGGESTIONS           = 5

    # ── Prediction vote validation ──────────────────────────────────────
    MIN_VALIDATION_VOTES = 5

    # ── Hazard alerts ───────────────────────────────────────────────────
    HAZARD_RATING_THRESHOLD   = 3.0
    BATCH_WINDOW_SECONDS      = 30
    RATE_LIMIT_WINDOW_MINUTES = 15
    ALERT_RADIUS_METERS       = 500
    ROUTE_ALERT_TYPE          = "route_safety_alert"
    LOCATION_CHANGE_TYPE      = "location_safety_change"
    LOCATION_CHANGE_WINDOW_HOURS = 24

    # Notification type → user preference flag (missing flag = enabled)
    NOTIFICATION_PREFERENCE_KEYS = {
        "route_safety_alert":     "route_safety_changes",
        "location_safety_change": "location_safety_changes",
    }

    # Severity bands: (label, upper bound exclusive, emoji, push priority)
    SEVERITY_LEVELS = [
        ("CRITICAL", 2.0, "🚨", "high"),
        ("WARNING",  2.5, "⚠️", "default"),
        ("NOTICE",   3.0, "ℹ️", "normal"),
    ]

    # ── Push gateway ────────────────────────────────────────────────────
    EXPO_PUSH_URL        = os.environ.get("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
    EXPO_ACCESS_TOKEN    = os.environ.get("EXPO_ACCESS_TOKEN")
    PUSH_BATCH_SIZE      = 100
    PUSH_TIMEOUT_SECONDS = 10
