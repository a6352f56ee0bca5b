from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional

from prayersync.catalog import CalculationMethod, Compatibility, Madhab
from prayersync.high_latitude import DEFAULT_THRESHOLD_DEGREES, HighLatitudeRule
from prayersync.models import CalendarContext, SettingsSnapshot


class MaghribMode(str, Enum):
    SUNSET = "sunset"
    DELAY = "delay"
    ANGLE = "angle"


@dataclass(frozen=True)
class MaghribAdjustment:
    mode: MaghribMode = MaghribMode.SUNSET
    delay_minutes: int = 0
    angle: Optional[float] = None


@dataclass(frozen=True)
class EffectiveParameters:
    method: CalculationMethod
    madhab: Madhab
    fajr_angle: float
    isha_angle: Optional[float]
    isha_interval_minutes: Optional[int]
    asr_shadow_multiplier: float
    maghrib: MaghribAdjustment
    high_latitude_rule: HighLatitudeRule = HighLatitudeRule.MIDDLE_OF_THE_NIGHT
    high_latitude_threshold: float = DEFAULT_THRESHOLD_DEGREES


class ParameterResolver:
    """Combines a method and a madhab into the parameters the engine consumes.

    The method owns the Fajr and Isha definitions, the madhab owns Asr and any
    Maghrib delay. Preferred madhabs declared by a method never override the
    user's madhab.
    """

    def __init__(self, high_latitude_threshold: float = DEFAULT_THRESHOLD_DEGREES) -> None:
        self._high_latitude_threshold = high_latitude_threshold
        self._logger = logging.getLogger(self.__class__.__name__)

    def resolve(
        self,
        method: CalculationMethod,
        madhab: Madhab,
        context: CalendarContext,
        *,
        use_astronomical_maghrib: bool = False,
        use_ramadan_isha_offset: bool = True,
        high_latitude_rule: HighLatitudeRule = HighLatitudeRule.MIDDLE_OF_THE_NIGHT,
        high_latitude_threshold: Optional[float] = None,
    ) -> EffectiveParameters:
        status = method.compatibility_status(madhab)
        if status is Compatibility.INCOMPATIBLE:
            self._logger.warning(
                "Method %s is not designed for madhab %s: %s",
                method.value,
                madhab.value,
                status.warning_message,
            )

        definition = method.definition
        isha_interval = definition.isha_interval_minutes
        if (
            isha_interval is not None
            and context.is_ramadan
            and use_ramadan_isha_offset
            and definition.ramadan_isha_interval_minutes is not None
        ):
            isha_interval = definition.ramadan_isha_interval_minutes

        return EffectiveParameters(
            method=method,
            madhab=madhab,
            fajr_angle=definition.fajr_angle,
            isha_angle=definition.isha_angle,
            isha_interval_minutes=isha_interval,
            asr_shadow_multiplier=madhab.asr_shadow_multiplier,
            maghrib=self._maghrib_for(madhab, use_astronomical_maghrib),
            high_latitude_rule=high_latitude_rule,
            high_latitude_threshold=(
                self._high_latitude_threshold
                if high_latitude_threshold is None
                else high_latitude_threshold
            ),
        )

    def resolve_snapshot(
        self, snapshot: SettingsSnapshot, context: CalendarContext
    ) -> EffectiveParameters:
        return self.resolve(
            snapshot.method,
            snapshot.madhab,
            context,
            use_astronomical_maghrib=snapshot.use_astronomical_maghrib,
            use_ramadan_isha_offset=snapshot.use_ramadan_isha_offset,
            high_latitude_rule=snapshot.high_latitude_rule,
        )

    def _maghrib_for(self, madhab: Madhab, use_astronomical_maghrib: bool) -> MaghribAdjustment:
        delay = madhab.maghrib_delay_minutes
        if delay <= 0:
            return MaghribAdjustment()
        if use_astronomical_maghrib and madhab.maghrib_angle is not None:
            return MaghribAdjustment(mode=MaghribMode.ANGLE, angle=madhab.maghrib_angle)
        return MaghribAdjustment(mode=MaghribMode.DELAY, delay_minutes=delay)
