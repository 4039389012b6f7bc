"""
dispatcher.py – Hazard alerts for riders who are currently navigating.

A new low-rated report is turned into push notifications in two steps:

  plan_hazard_alerts()   reads only; decides who gets what
  commit_alerts()        writes the notification log, then sends one push batch

For every active route the plan step checks, in order: the rider's
preferences, the per user-route rate limit, the distance from the report to
the route polyline, and whether the reporter's demographics are relevant to
the rider. Reports inserted within the last BATCH_WINDOW_SECONDS are folded
into the same notification, so a burst of reports produces one alert.

Log entries are written before sending and keyed by
(user_id, route_id, type, window_bucket); a colliding key means another
delivery already alerted this rider and the notification is dropped. A push
failure does not undo log entries, so riders may miss an alert but never get
it twice.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from config import Config
from safepath.demographics import is_demographically_relevant
from safepath.errors import DuplicateNotificationError, PushGatewayError, StorageError
from safepath.geo import distance_to_polyline, format_distance
from safepath.records import HazardReport, NotificationLogEntry, as_naive_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Severity:
    label: str
    emoji: str
    priority: str
    rank: int          # higher = more severe


def classify_severity(rating: float) -> Optional[Severity]:
    """CRITICAL < 2.0 ≤ WARNING < 2.5 ≤ NOTICE < 3.0; None for non-hazards."""
    levels = Config.SEVERITY_LEVELS
    for i, (label, upper, emoji, priority) in enumerate(levels):
        if rating < upper:
            return Severity(label, emoji, priority, rank=len(levels) - i)
    return None


@dataclass
class PushMessage:
    to: str
    title: str
    body: str
    data: dict = field(default_factory=dict)
    priority: str = "default"
    sound: str = "default"

    def to_dict(self) -> dict:
        return {
            "to":       self.to,
            "sound":    self.sound,
            "title":    self.title,
            "body":     self.body,
            "data":     self.data,
            "priority": self.priority,
        }


@dataclass
class PlannedAlert:
    message: PushMessage
    log_entry: NotificationLogEntry


def window_bucket(ts: datetime, window_minutes: int) -> int:
    """Index of the fixed rate-limit window that `ts` falls into."""
    epoch = (ts - datetime(1970, 1, 1)).total_seconds()
    return int(epoch // (window_minutes * 60))


def alerts_enabled(preferences: Optional[dict], notification_type: str) -> bool:
    key = Config.NOTIFICATION_PREFERENCE_KEYS.get(notification_type)
    prefs = preferences or {}
    return prefs.get(key) is not False


# ──────────────────────────────────────────────────────────────
# ROUTE ALERTS – PLAN
# ──────────────────────────────────────────────────────────────

def _relevant_distance(report: HazardReport, route) -> Optional[float]:
    """Distance from the report to the route if it should reach this rider."""
    if route.notified_since is not None and report.created_at < route.notified_since:
        return None
    distance = distance_to_polyline(report.location_coordinate, route.coordinates)
    if distance > Config.ALERT_RADIUS_METERS:
        return None
    if not is_demographically_relevant(report.reporter_demographics, route.user_demographics):
        return None
    return distance


def build_route_message(route, relevant: List[Tuple[HazardReport, float]],
                        severity: Severity) -> PushMessage:
    """One notification for one rider, single-incident or batched."""
    relevant = sorted(relevant, key=lambda pair: pair[1])
    nearest, nearest_dist = relevant[0]

    reports = [{
        "reportId":       r.id,
        "locationId":     r.location_id,
        "locationName":   r.location_name,
        "safetyRating":   r.safety_rating,
        "distanceMeters": round(d, 1),
        "severity":       classify_severity(r.safety_rating).label,
    } for r, d in relevant]

    data = {
        "type":          Config.ROUTE_ALERT_TYPE,
        "routeId":       route.id,
        "severity":      severity.label,
        "severityEmoji": severity.emoji,
        "count":         len(relevant),
        "reportIds":     [r.id for r, _ in relevant],
        "reports":       reports,
    }

    if len(relevant) == 1:
        title = f"{severity.emoji} {severity.label}: Hazard on your route"
        body = (f"{nearest.location_name} ({format_distance(nearest_dist)} from your route) "
                f"was just rated {nearest.safety_rating:.1f}/5.0")
    else:
        title = f"{severity.emoji} {severity.label}: {len(relevant)} hazards on your route"
        body = (f"{len(relevant)} safety concerns were reported near your route. "
                f"Nearest: {nearest.location_name} ({format_distance(nearest_dist)} away)")

    return PushMessage(to=route.push_token, title=title, body=body,
                       data=data, priority=severity.priority)


def collect_batch(report: HazardReport, store) -> List[HazardReport]:
    """The triggering report plus every low-rated report in the batch window."""
    since = report.created_at - timedelta(seconds=Config.BATCH_WINDOW_SECONDS)
    batch = {report.id: report}
    for candidate in store.get_recent_low_rating_reports(since, report.created_at):
        if candidate.safety_rating < Config.HAZARD_RATING_THRESHOLD:
            batch.setdefault(candidate.id, candidate)
    return list(batch.values())


def plan_route_alert(report: HazardReport, batch: List[HazardReport], route,
                     store, now: datetime) -> Optional[PlannedAlert]:
    """Decide whether one active route gets a notification, and build it."""
    if not route.push_token:
        return None
    if not alerts_enabled(route.notification_preferences, Config.ROUTE_ALERT_TYPE):
        logger.debug("[dispatch] route %s: alerts disabled by rider", route.id)
        return None

    since = now - timedelta(minutes=Config.RATE_LIMIT_WINDOW_MINUTES)
    if store.was_recently_notified(route.user_id, route.id, Config.ROUTE_ALERT_TYPE, since):
        logger.debug("[dispatch] route %s: rate limited", route.id)
        return None

    if _relevant_distance(report, route) is None:
        return None

    relevant = []
    for candidate in batch:
        distance = _relevant_distance(candidate, route)
        if distance is not None:
            relevant.append((candidate, distance))

    severity = max((classify_severity(r.safety_rating) for r, _ in relevant),
                   key=lambda s: s.rank)
    message = build_route_message(route, relevant, severity)

    entry = NotificationLogEntry(
        user_id=route.user_id,
        route_id=route.id,
        notification_type=Config.ROUTE_ALERT_TYPE,
        sent_at=now,
        report_ids=[r.id for r, _ in relevant],
        window_bucket=window_bucket(now, Config.RATE_LIMIT_WINDOW_MINUTES),
        severity=severity.label,
        metadata={"count": len(relevant), "trigger_report_id": report.id},
    )
    return PlannedAlert(message=message, log_entry=entry)


def plan_hazard_alerts(report: HazardReport, store,
                       now: Optional[datetime] = None) -> Tuple[Optional[Severity], List[PlannedAlert]]:
    """
    Work out every notification a hazard report should cause.

    Raises StorageError if the active route list cannot be fetched; the
    trigger should be retried. Any failure on a single route only skips
    that route.
    """
    severity = classify_severity(report.safety_rating)
    if severity is None:
        logger.info("[dispatch] report %s rated %.1f – not a hazard", report.id, report.safety_rating)
        return None, []

    now = as_naive_utc(now) if now is not None else report.created_at
    batch = collect_batch(report, store)
    routes = store.get_active_routes()
    logger.info("[dispatch] %s %s report %s: %d active route(s), %d report(s) in batch",
                severity.emoji, severity.label, report.id, len(routes), len(batch))

    plans = []
    for route in routes:
        try:
            plan = plan_route_alert(report, batch, route, store, now)
        except (StorageError, ValueError, TypeError, AttributeError) as e:
            logger.warning("[dispatch] skipping route %s: %s", getattr(route, "id", "?"), e)
            continue
        if plan is not None:
            plans.append(plan)
    return severity, plans


# ──────────────────────────────────────────────────────────────
# COMMIT
# ──────────────────────────────────────────────────────────────

def commit_alerts(plans: List[PlannedAlert], store, push_client) -> dict:
    """
    Write log entries, then submit the surviving notifications in one batch.

    Returns {'notifications_logged', 'notifications_sent', 'push_error'}.
    """
    messages = []
    for plan in plans:
        try:
            store.write_notification_log(plan.log_entry)
        except DuplicateNotificationError:
            logger.info("[dispatch] %s/%s already alerted in this window – dropping",
                        plan.log_entry.user_id, plan.log_entry.route_id)
            continue
        except StorageError as e:
            logger.warning("[dispatch] could not log alert for %s: %s – not sending",
                           plan.log_entry.user_id, e)
            continue
        messages.append(plan.message)

    outcome = {"notifications_logged": len(messages), "notifications_sent": 0, "push_error": None}
    if not messages:
        return outcome

    try:
        push_client.send([m.to_dict() for m in messages])
        outcome["notifications_sent"] = len(messages)
    except PushGatewayError as e:
        logger.error("[dispatch] push gateway failed for %d notification(s): %s", len(messages), e)
        outcome["push_error"] = str(e)
    return outcome


def dispatch_hazard_alerts(report: HazardReport, store, push_client,
                           now: Optional[datetime] = None) -> dict:
    """Handle one inserted report end to end."""
    severity, plans = plan_hazard_alerts(report, store, now)
    if severity is None:
        return {"notifications_sent": 0, "severity": None}

    outcome = commit_alerts(plans, store, push_client)
    logger.info("[dispatch] report %s: %d notification(s) sent", report.id,
                outcome["notifications_sent"])
    result = {"notifications_sent": outcome["notifications_sent"], "severity": severity.label}
    if outcome["push_error"]:
        result["push_error"] = outcome["push_error"]
        result["notifications_logged"] = outcome["notifications_logged"]
    return result


# ──────────────────────────────────────────────────────────────
# PREVIOUS REVIEWERS – LOCATION SAFETY CHANGES
# ──────────────────────────────────────────────────────────────

def plan_location_change_alerts(report: HazardReport, store,
                                now: Optional[datetime] = None) -> Tuple[Optional[Severity], List[PlannedAlert]]:
    """
    Alerts for users who reviewed the same location earlier.

    One alert per user per location per LOCATION_CHANGE_WINDOW_HOURS. When a
    reviewer's own rating was good (≥3.5) and the new one is ≥2.0 lower, the
    message mentions the drop.
    """
    severity = classify_severity(report.safety_rating)
    if severity is None:
        return None, []

    now = as_naive_utc(now) if now is not None else report.created_at
    window_minutes = Config.LOCATION_CHANGE_WINDOW_HOURS * 60
    since = now - timedelta(minutes=window_minutes)

    plans = []
    for reviewer in store.get_previous_reviewers(report.location_id, report.reporter_id):
        if not reviewer.push_token:
            continue
        if not alerts_enabled(reviewer.notification_preferences, Config.LOCATION_CHANGE_TYPE):
            continue
        try:
            if store.was_recently_notified(reviewer.user_id, None, Config.LOCATION_CHANGE_TYPE,
                                           since, location_id=report.location_id):
                continue
        except StorageError as e:
            logger.warning("[dispatch] skipping reviewer %s: %s", reviewer.user_id, e)
            continue

        context = ""
        if reviewer.safety_rating is not None and reviewer.safety_rating >= 3.5:
            if reviewer.safety_rating - report.safety_rating >= 2.0:
                context = f" (was {reviewer.safety_rating:g}★)"

        message = PushMessage(
            to=reviewer.push_token,
            title=f"{severity.emoji} Safety Update: {report.location_name}",
            body=(f"New {severity.label.lower()} review ({report.safety_rating:g}★{context}) "
                  f"at a location you previously reviewed."),
            data={
                "type":           Config.LOCATION_CHANGE_TYPE,
                "locationId":     report.location_id,
                "reportId":       report.id,
                "locationName":   report.location_name,
                "safetyRating":   report.safety_rating,
                "severity":       severity.label,
                "previousRating": reviewer.safety_rating,
            },
            priority=severity.priority,
        )
        entry = NotificationLogEntry(
            user_id=reviewer.user_id,
            route_id=None,
            notification_type=Config.LOCATION_CHANGE_TYPE,
            sent_at=now,
            report_ids=[report.id],
            window_bucket=window_bucket(now, window_minutes),
            severity=severity.label,
            location_id=report.location_id,
            metadata={"previous_rating": reviewer.safety_rating,
                      "new_rating": report.safety_rating},
        )
        plans.append(PlannedAlert(message=message, log_entry=entry))
    return severity, plans


def dispatch_location_safety_change(report: HazardReport, store, push_client,
                                    now: Optional[datetime] = None) -> dict:
    severity, plans = plan_location_change_alerts(report, store, now)
    if severity is None:
        return {"notifications_sent": 0, "severity": None}
    outcome = commit_alerts(plans, store, push_client)
    result = {"notifications_sent": outcome["notifications_sent"], "severity": severity.label}
    if outcome["push_error"]:
        result["push_error"] = outcome["push_error"]
    return result
