from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, tzinfo
import logging
import threading
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from prayersync.errors import PrayerTimeError
from prayersync.models import PrayerTimeSet
from prayersync.prayer_times import PrayerTimeService


UNAVAILABLE_MESSAGE = "Prayer times unavailable for this location/date"

_DISPLAY_ORDER = (
    ("fajr", "Fajr"),
    ("sunrise", "Sunrise"),
    ("dhuhr", "Dhuhr"),
    ("asr", "Asr"),
    ("maghrib", "Maghrib"),
    ("isha", "Isha"),
)


@dataclass(frozen=True)
class PrayerRow:
    key: str
    label: str
    time: str


class PrayerTimesViewModel:
    """UI-facing adapter over the shared prayer time service."""

    def __init__(self, service: PrayerTimeService, timezone_name: str = "UTC") -> None:
        self.service = service
        self._tz = _load_zone(timezone_name)
        self._times: Optional[PrayerTimeSet] = None
        self._error: Optional[str] = None
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def times(self) -> Optional[PrayerTimeSet]:
        with self._lock:
            return self._times

    @property
    def error_message(self) -> Optional[str]:
        with self._lock:
            return self._error

    def load(self, day: Optional[date] = None) -> Optional[PrayerTimeSet]:
        try:
            times = self.service.get_prayer_times(day)
        except PrayerTimeError as exc:
            self._logger.warning("Prayer times unavailable: %s", exc)
            with self._lock:
                self._times = None
                self._error = UNAVAILABLE_MESSAGE
            return None
        self.on_prayer_times(times)
        return times

    def on_prayer_times(self, times: PrayerTimeSet) -> None:
        with self._lock:
            self._times = times
            self._error = None

    def rows(self) -> List[PrayerRow]:
        times = self.times
        if times is None:
            return []
        return [
            PrayerRow(key=key, label=label, time=self.format_time(getattr(times, key)))
            for key, label in _DISPLAY_ORDER
        ]

    def format_time(self, value: datetime) -> str:
        return value.astimezone(self._tz).strftime("%H:%M")

    def to_dict(self) -> Dict[str, Any]:
        times = self.times
        settings = self.service.settings.current
        payload: Dict[str, Any] = {
            "method": settings.method.value,
            "madhab": settings.madhab.value,
            "compatibility": settings.method.compatibility_status(settings.madhab).value,
        }
        if times is None:
            payload["error"] = self.error_message or UNAVAILABLE_MESSAGE
            return payload
        payload["date"] = times.date.isoformat()
        payload["times"] = {row.key: row.time for row in self.rows()}
        return payload


def _load_zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logging.getLogger("PrayerTimesViewModel").warning(
            "Unknown timezone %s; displaying UTC", name
        )
        return ZoneInfo("UTC")
