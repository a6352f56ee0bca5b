from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
import logging
import math
from typing import Iterable, List, Optional, Protocol, Tuple

from prayersync.models import CalendarContext, HijriDate


ISLAMIC_EPOCH = 1948439.5
GREGORIAN_ORDINAL_TO_JD = 1721424.5
RAMADAN = 9


class CalendarService(Protocol):
    def is_ramadan(self, day: date) -> bool:  # pragma: no cover - interface only
        ...

    def to_hijri(self, day: date) -> HijriDate:  # pragma: no cover - interface only
        ...

    def context_for(self, day: date) -> CalendarContext:  # pragma: no cover - interface only
        ...


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Range end {self.end} is before start {self.start}")

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end


def islamic_to_jd(year: int, month: int, day: int) -> float:
    return (
        day
        + math.ceil(29.5 * (month - 1))
        + (year - 1) * 354
        + math.floor((3 + 11 * year) / 30)
        + ISLAMIC_EPOCH
        - 1
    )


def jd_to_islamic(jd: float) -> Tuple[int, int, int]:
    jd = math.floor(jd) + 0.5
    year = math.floor((30 * (jd - ISLAMIC_EPOCH) + 10646) / 10631)
    month = min(12, math.ceil((jd - (29 + islamic_to_jd(year, 1, 1))) / 29.5) + 1)
    day = int(jd - islamic_to_jd(year, month, 1)) + 1
    return year, month, day


def gregorian_to_jd(day: date) -> float:
    return day.toordinal() + GREGORIAN_ORDINAL_TO_JD


def jd_to_gregorian(jd: float) -> date:
    return date.fromordinal(int(math.floor(jd - GREGORIAN_ORDINAL_TO_JD + 0.5)))


class HijriCalendarService:
    """Arithmetical (tabular) Islamic calendar.

    Moon sighting can move the real month start by a day or two, so a fixed
    ``adjustment_days`` shift and explicit Ramadan ranges override the tables.
    """

    def __init__(
        self,
        *,
        adjustment_days: int = 0,
        ramadan_overrides: Optional[Iterable[DateRange]] = None,
    ) -> None:
        self._adjustment = timedelta(days=adjustment_days)
        self._overrides: List[DateRange] = list(ramadan_overrides or [])
        self._logger = logging.getLogger(self.__class__.__name__)

    def to_hijri(self, day: date) -> HijriDate:
        year, month, hijri_day = jd_to_islamic(gregorian_to_jd(day + self._adjustment))
        return HijriDate(year=year, month=month, day=hijri_day)

    def from_hijri(self, year: int, month: int, day: int) -> date:
        return jd_to_gregorian(islamic_to_jd(year, month, day)) - self._adjustment

    def is_ramadan(self, day: date) -> bool:
        override = self._override_for(day)
        if override is not None:
            return True
        if self._overrides_cover_year(day):
            # An explicit range exists for this season; the tables must not widen it.
            return False
        return self.to_hijri(day).month == RAMADAN

    def ramadan_range(self, hijri_year: int) -> DateRange:
        start = self.from_hijri(hijri_year, RAMADAN, 1)
        end = self.from_hijri(hijri_year, RAMADAN + 1, 1) - timedelta(days=1)
        for override in self._overrides:
            if override.start.year == start.year and abs((override.start - start).days) <= 30:
                return override
        return DateRange(start, end)

    def ramadan_day_number(self, day: date) -> Optional[int]:
        if not self.is_ramadan(day):
            return None
        override = self._override_for(day)
        if override is not None:
            return (day - override.start).days + 1
        return self.to_hijri(day).day

    def context_for(self, day: date) -> CalendarContext:
        return CalendarContext(date=day, is_ramadan=self.is_ramadan(day))

    def _override_for(self, day: date) -> Optional[DateRange]:
        for override in self._overrides:
            if day in override:
                return override
        return None

    def _overrides_cover_year(self, day: date) -> bool:
        tabular_start = self.from_hijri(self.to_hijri(day).year, RAMADAN, 1)
        return any(
            abs((override.start - tabular_start).days) <= 30 for override in self._overrides
        )
