"""
errors.py – Exception taxonomy for SafePath.

Input errors are raised straight back to the caller. Missing data is never an
error; it lowers confidence instead.
"""


class SafePathError(Exception):
    """Base class for every error raised by the safepath package."""


# ── Input errors ─────────────────────────────────────────────────────────────

class InvalidRouteError(SafePathError, ValueError):
    """Route has fewer than two points or a zero-length leg."""


class EmptyRouteError(SafePathError, ValueError):
    """Aggregation was asked to reduce an empty segment list."""


class InvalidDemographicsError(SafePathError, ValueError):
    """The user demographics object is missing or not a mapping."""


class InvalidVoteError(SafePathError, ValueError):
    """A prediction vote request is malformed."""


# ── Collaborator errors ──────────────────────────────────────────────────────

class StorageError(SafePathError):
    """The datastore could not answer a query."""


class DuplicateNotificationError(StorageError):
    """A notification log entry already exists for the same idempotency key."""


class PushGatewayError(SafePathError):
    """The push gateway rejected or failed the whole batch."""
