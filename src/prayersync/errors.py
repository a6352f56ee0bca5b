from __future__ import annotations


class PrayerTimeError(RuntimeError):
    """Base class for failures while producing prayer times."""


class LocationUnavailable(PrayerTimeError):
    """Raised when no coordinates can be obtained from the location provider."""


class InvalidCoordinates(PrayerTimeError, ValueError):
    """Raised when latitude or longitude fall outside their valid ranges."""


class HighLatitudeUnresolvable(PrayerTimeError):
    """Raised when no high latitude rule yields strictly ordered times."""


class CacheIOError(PrayerTimeError):
    """Raised by the persisted cache tier when a read or write fails."""


class UnknownMethodOrMadhab(PrayerTimeError, ValueError):
    """Raised when a stored method or madhab id is not in the catalog."""


class InvalidDate(PrayerTimeError, ValueError):
    """Raised when a lookup date is in the past or the range is malformed."""


class LookaheadLimitExceeded(PrayerTimeError, ValueError):
    """Raised when a date lies beyond the configured lookahead window."""
