"""
storage.py – The datastore contract used by the scorers and the dispatcher.

Scoring and dispatch code only ever talks to a SafetyDataStore. The
production implementation is SQLAlchemyStore (sql_store.py); tests pass an
in-process fake. Implementations raise StorageError when a query fails and
DuplicateNotificationError when a notification log entry collides with an
existing idempotency key.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from safepath.geo import Coordinate
from safepath.records import (ActiveRoute, DangerZone, HazardReport, NearbyLocation,
                              NeighborhoodStats, NotificationLogEntry, PreviousReviewer)


class SafetyDataStore(ABC):
    """Read/write contract for the relational + geospatial store."""

    # ── Scoring reads ────────────────────────────────────────────────────

    @abstractmethod
    def get_nearby_locations(self, point: Coordinate, radius_m: float,
                             limit: int) -> List[NearbyLocation]:
        """Locations within `radius_m`, nearest first, each with its score records."""
        raise NotImplementedError

    @abstractmethod
    def get_danger_zones(self, point: Coordinate, radius_m: float) -> List[DangerZone]:
        raise NotImplementedError

    @abstractmethod
    def get_neighborhood_stats(self, point: Coordinate) -> Optional[NeighborhoodStats]:
        raise NotImplementedError

    # ── Dispatch reads ───────────────────────────────────────────────────

    @abstractmethod
    def get_active_routes(self) -> List[ActiveRoute]:
        """Active routes whose rider has a push token."""
        raise NotImplementedError

    @abstractmethod
    def get_hazard_report(self, report_id: str) -> Optional[HazardReport]:
        """A stored report with its location and reporter profile resolved."""
        raise NotImplementedError

    @abstractmethod
    def get_recent_low_rating_reports(self, since: datetime,
                                      until: datetime) -> List[HazardReport]:
        raise NotImplementedError

    @abstractmethod
    def get_previous_reviewers(self, location_id: str,
                               exclude_user_id: str) -> List[PreviousReviewer]:
        raise NotImplementedError

    # ── Notification log ─────────────────────────────────────────────────

    @abstractmethod
    def was_recently_notified(self, user_id: str, route_id: Optional[str],
                              notification_type: str, since: datetime,
                              location_id: Optional[str] = None) -> bool:
        raise NotImplementedError

    @abstractmethod
    def write_notification_log(self, entry: NotificationLogEntry) -> None:
        """Append a log entry; raises DuplicateNotificationError on key collision."""
        raise NotImplementedError

    # ── Prediction votes ─────────────────────────────────────────────────

    @abstractmethod
    def get_prediction_vote(self, user_id: str, location_id: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def save_prediction_vote(self, user_id: str, location_id: str, vote_type: Optional[str],
                             predicted_safety_score: Optional[float] = None) -> None:
        """Insert/update the user's vote; `vote_type=None` deletes it."""
        raise NotImplementedError

    @abstractmethod
    def get_vote_tally(self, location_id: str) -> Tuple[int, int]:
        """(accurate, inaccurate) vote counts for a location."""
        raise NotImplementedError
