from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
import logging
import math
from typing import Tuple

from prayersync.errors import HighLatitudeUnresolvable
from prayersync.high_latitude import HighLatitudePolicy, SolarHours
from prayersync.models import Coordinates, PrayerTimeSet
from prayersync.parameters import EffectiveParameters, MaghribMode


# Apparent solar radius plus standard refraction, in degrees below the horizon.
RISE_SET_ANGLE = 0.833

_INITIAL_GUESS = {
    "fajr": 5.0,
    "sunrise": 6.0,
    "dhuhr": 12.0,
    "asr": 13.0,
    "sunset": 18.0,
    "maghrib": 18.0,
    "isha": 18.0,
}


def julian(year: int, month: int, day: int) -> float:
    if month <= 2:
        year -= 1
        month += 12
    a = math.floor(year / 100)
    b = 2 - a + math.floor(a / 4)
    return (
        math.floor(365.25 * (year + 4716))
        + math.floor(30.6001 * (month + 1))
        + day
        + b
        - 1524.5
    )


def sun_position(jd: float) -> Tuple[float, float]:
    """Return the sun's declination (degrees) and the equation of time (hours)."""
    d = jd - 2451545.0
    g = _fix(357.529 + 0.98560028 * d, 360.0)
    q = _fix(280.459 + 0.98564736 * d, 360.0)
    longitude = _fix(q + 1.915 * _sin(g) + 0.020 * _sin(2 * g), 360.0)
    obliquity = 23.439 - 0.00000036 * d

    right_ascension = _arctan2(_cos(obliquity) * _sin(longitude), _cos(longitude)) / 15.0
    equation_of_time = q / 15.0 - _fix(right_ascension, 24.0)
    declination = _arcsin(_sin(obliquity) * _sin(longitude))
    return declination, equation_of_time


class _SolarDay:
    # Times are local mean solar hours at the observer's longitude.

    def __init__(self, jdate: float, latitude: float) -> None:
        self._jdate = jdate
        self._latitude = latitude

    def mid_day(self, portion: float) -> float:
        _, eqt = sun_position(self._jdate + portion)
        return _fix(12.0 - eqt, 24.0)

    def sun_angle_time(self, angle: float, portion: float, *, before_noon: bool = False) -> float:
        decl, _ = sun_position(self._jdate + portion)
        noon = self.mid_day(portion)
        ratio = (-_sin(angle) - _sin(decl) * _sin(self._latitude)) / (
            _cos(decl) * _cos(self._latitude)
        )
        if not -1.0 <= ratio <= 1.0:
            return math.nan
        offset = _arccos(ratio) / 15.0
        return noon - offset if before_noon else noon + offset

    def asr_time(self, shadow_multiplier: float, portion: float) -> float:
        decl, _ = sun_position(self._jdate + portion)
        angle = -_arccot(shadow_multiplier + _tan(abs(self._latitude - decl)))
        return self.sun_angle_time(angle, portion)


class AstronomicalEngine:
    """Pure solar-position prayer time calculator.

    Results are UTC instants for the local solar day of ``day`` at the given
    longitude. Nothing is cached or logged per call except high latitude
    fallbacks, so identical inputs always give identical output.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def compute(
        self, coordinates: Coordinates, day: date, params: EffectiveParameters
    ) -> PrayerTimeSet:
        policy = HighLatitudePolicy(params.high_latitude_rule, params.high_latitude_threshold)
        angles = {
            "fajr": params.fajr_angle,
            "isha": params.isha_angle if params.isha_interval_minutes is None else None,
            "maghrib": params.maghrib.angle if params.maghrib.mode is MaghribMode.ANGLE else None,
        }
        delay_hours = 0.0
        if params.maghrib.mode is MaghribMode.DELAY:
            delay_hours = params.maghrib.delay_minutes / 60.0
        hours = policy.resolve(
            coordinates.latitude,
            lambda latitude: self.solar_hours(latitude, coordinates.longitude, day, params),
            angles,
            maghrib_delay=delay_hours,
        )

        base = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        utc_offset = coordinates.longitude / 15.0

        def instant(hour: float) -> datetime:
            return base + timedelta(seconds=round((hour - utc_offset) * 3600))

        sunset = instant(hours["sunset"])
        if params.maghrib.mode is MaghribMode.ANGLE:
            maghrib = instant(hours["maghrib"])
        elif params.maghrib.mode is MaghribMode.DELAY:
            maghrib = sunset + timedelta(minutes=params.maghrib.delay_minutes)
        else:
            maghrib = sunset

        if params.isha_interval_minutes is not None:
            isha = maghrib + timedelta(minutes=params.isha_interval_minutes)
        else:
            isha = instant(hours["isha"])

        result = PrayerTimeSet(
            date=day,
            coordinates=coordinates,
            method=params.method,
            madhab=params.madhab,
            fajr=instant(hours["fajr"]),
            sunrise=instant(hours["sunrise"]),
            dhuhr=instant(hours["dhuhr"]),
            asr=instant(hours["asr"]),
            sunset=sunset,
            maghrib=maghrib,
            isha=isha,
        )
        if not result.is_strictly_ordered():
            raise HighLatitudeUnresolvable(
                f"Prayer times for {day.isoformat()} at {coordinates} are not strictly ordered"
            )
        return result

    def solar_hours(
        self, latitude: float, longitude: float, day: date, params: EffectiveParameters
    ) -> SolarHours:
        jdate = julian(day.year, day.month, day.day) - longitude / (15.0 * 24.0)
        solar = _SolarDay(jdate, latitude)
        portion = {name: hour / 24.0 for name, hour in _INITIAL_GUESS.items()}

        hours: SolarHours = {
            "fajr": solar.sun_angle_time(params.fajr_angle, portion["fajr"], before_noon=True),
            "sunrise": solar.sun_angle_time(RISE_SET_ANGLE, portion["sunrise"], before_noon=True),
            "dhuhr": solar.mid_day(portion["dhuhr"]),
            "asr": solar.asr_time(params.asr_shadow_multiplier, portion["asr"]),
            "sunset": solar.sun_angle_time(RISE_SET_ANGLE, portion["sunset"]),
            "maghrib": math.nan,
            "isha": math.nan,
        }
        if params.maghrib.mode is MaghribMode.ANGLE and params.maghrib.angle is not None:
            hours["maghrib"] = solar.sun_angle_time(params.maghrib.angle, portion["maghrib"])
        if params.isha_angle is not None and params.isha_interval_minutes is None:
            hours["isha"] = solar.sun_angle_time(params.isha_angle, portion["isha"])
        return hours


def _fix(value: float, mode: float) -> float:
    value = value - mode * math.floor(value / mode)
    return value + mode if value < 0 else value


def _sin(degrees: float) -> float:
    return math.sin(math.radians(degrees))


def _cos(degrees: float) -> float:
    return math.cos(math.radians(degrees))


def _tan(degrees: float) -> float:
    return math.tan(math.radians(degrees))


def _arcsin(x: float) -> float:
    return math.degrees(math.asin(x))


def _arccos(x: float) -> float:
    return math.degrees(math.acos(x))


def _arccot(x: float) -> float:
    return math.degrees(math.atan(1.0 / x))


def _arctan2(y: float, x: float) -> float:
    return math.degrees(math.atan2(y, x))
