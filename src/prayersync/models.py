from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum
import threading
from typing import Any, Dict, List, Optional

from prayersync.catalog import (
    DEFAULT_MADHAB,
    DEFAULT_METHOD,
    CalculationMethod,
    Madhab,
    parse_madhab,
    parse_method,
)
from prayersync.errors import InvalidCoordinates
from prayersync.high_latitude import HighLatitudeRule, parse_rule


HIGH_LATITUDE_WARNING_DEGREES = 55.0


class PrayerKind(str, Enum):
    FAJR = "fajr"
    DHUHR = "dhuhr"
    ASR = "asr"
    MAGHRIB = "maghrib"
    ISHA = "isha"


PRAYER_ORDER = (
    PrayerKind.FAJR,
    PrayerKind.DHUHR,
    PrayerKind.ASR,
    PrayerKind.MAGHRIB,
    PrayerKind.ISHA,
)


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidCoordinates(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidCoordinates(f"Longitude out of range: {self.longitude}")

    @property
    def is_high_latitude(self) -> bool:
        return abs(self.latitude) > HIGH_LATITUDE_WARNING_DEGREES


@dataclass(frozen=True)
class CalendarContext:
    date: date
    is_ramadan: bool = False


@dataclass(frozen=True)
class PrayerTime:
    kind: PrayerKind
    time: datetime


@dataclass(frozen=True)
class PrayerTimeSet:
    """One day of prayer times as UTC instants.

    ``midnight`` and ``last_third`` are only known once the next day's Fajr has
    been computed, so they stay ``None`` for sets built in isolation.
    """

    date: date
    coordinates: Coordinates
    method: CalculationMethod
    madhab: Madhab
    fajr: datetime
    sunrise: datetime
    dhuhr: datetime
    asr: datetime
    sunset: datetime
    maghrib: datetime
    isha: datetime
    midnight: Optional[datetime] = None
    last_third: Optional[datetime] = None

    @property
    def prayers(self) -> List[PrayerTime]:
        return [PrayerTime(kind, self.time_of(kind)) for kind in PRAYER_ORDER]

    def time_of(self, kind: PrayerKind) -> datetime:
        return getattr(self, kind.value)

    def is_strictly_ordered(self) -> bool:
        times = [self.time_of(kind) for kind in PRAYER_ORDER]
        return all(earlier < later for earlier, later in zip(times, times[1:]))

    def with_night_extras(self, next_fajr: datetime) -> "PrayerTimeSet":
        night = next_fajr - self.sunset
        if night <= timedelta(0):
            return self
        return replace(
            self,
            midnight=self.sunset + night / 2,
            last_third=next_fajr - night / 3,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "date": self.date.isoformat(),
            "latitude": self.coordinates.latitude,
            "longitude": self.coordinates.longitude,
            "method_id": self.method.value,
            "madhab_id": self.madhab.value,
        }
        for name in _TIME_FIELDS:
            value = getattr(self, name)
            payload[name] = value.isoformat() if value is not None else None
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PrayerTimeSet":
        times = {}
        for name in _TIME_FIELDS:
            raw = payload.get(name)
            times[name] = datetime.fromisoformat(raw) if raw else None
        return cls(
            date=date.fromisoformat(payload["date"]),
            coordinates=Coordinates(
                float(payload["latitude"]), float(payload["longitude"])
            ),
            method=parse_method(payload["method_id"], strict=True),
            madhab=parse_madhab(payload["madhab_id"], strict=True),
            **times,
        )


_TIME_FIELDS = (
    "fajr",
    "sunrise",
    "dhuhr",
    "asr",
    "sunset",
    "maghrib",
    "isha",
    "midnight",
    "last_third",
)


@dataclass(frozen=True)
class SettingsSnapshot:
    method: CalculationMethod = DEFAULT_METHOD
    madhab: Madhab = DEFAULT_MADHAB
    use_astronomical_maghrib: bool = False
    use_ramadan_isha_offset: bool = True
    high_latitude_rule: HighLatitudeRule = HighLatitudeRule.MIDDLE_OF_THE_NIGHT
    max_lookahead_months: int = 60

    def with_changes(self, **changes: Any) -> "SettingsSnapshot":
        if "method" in changes:
            changes["method"] = parse_method(changes["method"], strict=True)
        if "madhab" in changes:
            changes["madhab"] = parse_madhab(changes["madhab"], strict=True)
        if "high_latitude_rule" in changes:
            changes["high_latitude_rule"] = parse_rule(changes["high_latitude_rule"])
        return replace(self, **changes)

    def fingerprint(self) -> str:
        # Settings that change results without being part of the cache key.
        return "|".join(
            [
                f"astro_maghrib={int(self.use_astronomical_maghrib)}",
                f"ramadan_offset={int(self.use_ramadan_isha_offset)}",
                f"high_lat={self.high_latitude_rule.value}",
            ]
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["method"] = self.method.value
        data["madhab"] = self.madhab.value
        data["high_latitude_rule"] = self.high_latitude_rule.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettingsSnapshot":
        defaults = cls()
        return cls(
            method=parse_method(data.get("method", defaults.method)),
            madhab=parse_madhab(data.get("madhab", defaults.madhab)),
            use_astronomical_maghrib=bool(
                data.get("use_astronomical_maghrib", defaults.use_astronomical_maghrib)
            ),
            use_ramadan_isha_offset=bool(
                data.get("use_ramadan_isha_offset", defaults.use_ramadan_isha_offset)
            ),
            high_latitude_rule=parse_rule(
                data.get("high_latitude_rule", defaults.high_latitude_rule)
            ),
            max_lookahead_months=int(
                data.get("max_lookahead_months", defaults.max_lookahead_months)
            ),
        )


class SettingsState:
    """Shared handle to the current settings snapshot.

    Readers call ``current``; only the synchronization coordinator calls
    ``replace``.
    """

    def __init__(self, snapshot: Optional[SettingsSnapshot] = None) -> None:
        self._snapshot = snapshot or SettingsSnapshot()
        self._lock = threading.Lock()

    @property
    def current(self) -> SettingsSnapshot:
        with self._lock:
            return self._snapshot

    def replace(self, snapshot: SettingsSnapshot) -> SettingsSnapshot:
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
            return previous


class DisclaimerLevel(str, Enum):
    TODAY = "today"
    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"

    @property
    def message(self) -> Optional[str]:
        if self is DisclaimerLevel.MEDIUM_TERM:
            return "Times this far ahead may shift by a few minutes; confirm closer to the date."
        if self is DisclaimerLevel.LONG_TERM:
            return "Long-range times are astronomical estimates only."
        return None


@dataclass(frozen=True)
class HijriDate:
    year: int
    month: int
    day: int

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d} AH"


@dataclass(frozen=True)
class FuturePrayerTimeResult:
    times: PrayerTimeSet
    hijri_date: HijriDate
    is_ramadan: bool
    disclaimer_level: DisclaimerLevel
    is_high_latitude: bool
    precision_minutes: int

    @property
    def is_exact(self) -> bool:
        return self.precision_minutes == 0
