from __future__ import annotations

from enum import Enum
import logging
import math
from typing import Callable, Dict, Iterable, Mapping, Optional

from prayersync.errors import HighLatitudeUnresolvable


DEFAULT_THRESHOLD_DEGREES = 48.5
LATITUDE_STEP_DEGREES = 0.5
# Smallest gap kept between Maghrib and Isha once both are pushed into a short night.
MIN_EVENT_GAP_HOURS = 1 / 60.0

# Hours keyed by event name; NaN marks an event the sun never reaches.
SolarHours = Dict[str, float]


class HighLatitudeRule(str, Enum):
    MIDDLE_OF_THE_NIGHT = "middle_of_the_night"
    SEVENTH_OF_THE_NIGHT = "seventh_of_the_night"
    TWILIGHT_ANGLE = "twilight_angle"
    NEAREST_LATITUDE = "nearest_latitude"
    NONE = "none"


def parse_rule(value: object) -> HighLatitudeRule:
    if isinstance(value, HighLatitudeRule):
        return value
    text = str(value or "").strip().lower().replace("-", "_")
    for rule in HighLatitudeRule:
        if rule.value == text:
            return rule
    logging.getLogger("HighLatitudePolicy").warning(
        "Unknown high latitude rule %r; using %s",
        value,
        HighLatitudeRule.MIDDLE_OF_THE_NIGHT.value,
    )
    return HighLatitudeRule.MIDDLE_OF_THE_NIGHT


class HighLatitudePolicy:
    """Keeps Fajr, Isha and angle-based Maghrib defined near the poles.

    ``compute_at`` returns solar hours for a latitude (same longitude and day);
    ``angles`` maps each twilight event to the depression angle that produced
    it. Events without an angle (fixed offsets) are left to the caller, but
    ``maghrib_delay`` (hours after sunset) lets Isha stay behind a delayed
    Maghrib.

    An angle-based Maghrib is clamped to angle/60 of the night under every
    rule.
    """

    def __init__(
        self,
        rule: HighLatitudeRule = HighLatitudeRule.MIDDLE_OF_THE_NIGHT,
        threshold: float = DEFAULT_THRESHOLD_DEGREES,
    ) -> None:
        self.rule = rule
        self.threshold = threshold
        self._logger = logging.getLogger(self.__class__.__name__)

    def resolve(
        self,
        latitude: float,
        compute_at: Callable[[float], SolarHours],
        angles: Mapping[str, Optional[float]],
        maghrib_delay: float = 0.0,
    ) -> SolarHours:
        times = compute_at(latitude)
        if not _day_resolves(times):
            if self.rule is HighLatitudeRule.NONE:
                raise HighLatitudeUnresolvable(
                    f"Sun does not rise and set normally at latitude {latitude}"
                )
            times = self._nearest_resolving_day(latitude, compute_at)

        twilight = [name for name, angle in angles.items() if angle is not None]
        missing = [name for name in twilight if math.isnan(times[name])]
        above = abs(latitude) >= self.threshold

        if self.rule is HighLatitudeRule.NONE:
            if missing:
                raise HighLatitudeUnresolvable(
                    f"No twilight for {', '.join(missing)} at latitude {latitude}"
                )
            return times

        if not above and not missing:
            return times

        night = _night_hours(times)
        if self.rule is HighLatitudeRule.NEAREST_LATITUDE:
            times = self._borrow_twilight(latitude, times, compute_at, twilight)
        else:
            for name in twilight:
                times[name] = self._clamp(name, times, angles[name], night)
        return self._keep_isha_after_maghrib(times, angles, maghrib_delay, night)

    def night_portion(self, angle: float) -> float:
        if self.rule is HighLatitudeRule.TWILIGHT_ANGLE:
            return angle / 60.0
        if self.rule is HighLatitudeRule.SEVENTH_OF_THE_NIGHT:
            return 1 / 7.0
        return 1 / 2.0

    def _clamp(self, name: str, times: SolarHours, angle: float, night: float) -> float:
        if name == "maghrib":
            portion = angle / 60.0 * night
        else:
            portion = self.night_portion(angle) * night
        value = times[name]
        if name == "fajr":
            base = times["sunrise"]
            if math.isnan(value) or base - value > portion:
                return base - portion
            return value
        base = times["sunset"]
        if math.isnan(value) or value - base > portion:
            return base + portion
        return value

    def _keep_isha_after_maghrib(
        self,
        times: SolarHours,
        angles: Mapping[str, Optional[float]],
        maghrib_delay: float,
        night: float,
    ) -> SolarHours:
        isha_angle = angles.get("isha")
        if isha_angle is None:
            return times
        if angles.get("maghrib") is not None:
            maghrib = times["maghrib"]
        else:
            maghrib = times["sunset"] + maghrib_delay
        if times["isha"] - maghrib >= MIN_EVENT_GAP_HOURS:
            return times
        # Measure Isha from Maghrib when a delayed Maghrib overtakes the clamp.
        gap = max(self.night_portion(isha_angle) * night, MIN_EVENT_GAP_HOURS)
        self._logger.info("Isha moved behind Maghrib by %.1f minutes", gap * 60.0)
        times["isha"] = maghrib + gap
        return times

    def _nearest_resolving_day(
        self, latitude: float, compute_at: Callable[[float], SolarHours]
    ) -> SolarHours:
        for candidate in self._latitudes_towards_threshold(latitude):
            times = compute_at(candidate)
            if _day_resolves(times):
                self._logger.info(
                    "Polar day at %.2f; using times for latitude %.2f", latitude, candidate
                )
                return times
        raise HighLatitudeUnresolvable(
            f"No latitude between {latitude} and {self.threshold} resolves the day"
        )

    def _borrow_twilight(
        self,
        latitude: float,
        times: SolarHours,
        compute_at: Callable[[float], SolarHours],
        twilight: Iterable[str],
    ) -> SolarHours:
        names = list(twilight)
        start = math.copysign(min(abs(latitude), self.threshold), latitude)
        candidates = [start] + list(self._latitudes_towards_equator(start))
        for candidate in candidates:
            reference = compute_at(candidate)
            if not _day_resolves(reference):
                continue
            if any(math.isnan(reference[name]) for name in names):
                continue
            for name in names:
                if name == "fajr":
                    times[name] = times["sunrise"] - (reference["sunrise"] - reference[name])
                else:
                    times[name] = times["sunset"] + (reference[name] - reference["sunset"])
            return times
        raise HighLatitudeUnresolvable(f"No nearby latitude has twilight for {latitude}")

    def _latitudes_towards_threshold(self, latitude: float) -> Iterable[float]:
        sign = 1.0 if latitude >= 0 else -1.0
        current = abs(latitude) - LATITUDE_STEP_DEGREES
        while current >= self.threshold:
            yield sign * current
            current -= LATITUDE_STEP_DEGREES

    def _latitudes_towards_equator(self, latitude: float) -> Iterable[float]:
        sign = 1.0 if latitude >= 0 else -1.0
        current = abs(latitude) - LATITUDE_STEP_DEGREES
        while current >= 0:
            yield sign * current
            current -= LATITUDE_STEP_DEGREES


def _day_resolves(times: SolarHours) -> bool:
    required = [times[name] for name in ("sunrise", "dhuhr", "asr", "sunset")]
    if any(math.isnan(value) for value in required):
        return False
    sunrise, dhuhr, asr, sunset = required
    # Asr must sit at least a minute after Dhuhr once rounded to seconds.
    return sunrise < dhuhr and asr - dhuhr >= 1 / 60.0 and asr < sunset


def _night_hours(times: SolarHours) -> float:
    return times["sunrise"] + 24.0 - times["sunset"]
