"""Exception types shared across the editing engine."""

from __future__ import annotations


class GeoEditError(Exception):
    """Base class for all geoedit errors."""


class ValidationError(GeoEditError):
    """Malformed input rejected before any state changes."""


class FeatureNotFound(ValidationError):
    """A mutation referenced a uid that is not in the live collection."""

    def __init__(self, uid: str) -> None:
        super().__init__(f"No feature with uid '{uid}'")
        self.uid = uid


class MergeDeclined(GeoEditError):
    """A long-distance merge was not confirmed by the caller."""

    def __init__(self, distance_m: float) -> None:
        super().__init__(f"Merge of points {distance_m:.0f} m apart was not confirmed")
        self.distance_m = distance_m


class CorruptionError(GeoEditError):
    """An audit log line could not be parsed.

    Never raised by reads: it is attached to the offending line so the
    rest of the log can still be processed.
    """

    def __init__(self, line_no: int, raw: str, reason: str) -> None:
        super().__init__(f"Unparseable audit line {line_no}: {reason}")
        self.line_no = line_no
        self.raw = raw


class DeliveryFailure(GeoEditError):
    """Audit batch delivery failed.  Logged and counted, never propagated."""


class VersionNotFound(GeoEditError):
    """No saved version exists with the requested id."""


class ChangeNotFound(GeoEditError, LookupError):
    """No change entry with the given id exists in the session."""


class ClusterNotFound(LookupError):
    """No cluster with the specified id exists in the index."""


class GeoEditRootError(GeoEditError):
    """Raised when GEOEDIT_ROOT env var is set but invalid."""
