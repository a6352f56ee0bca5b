from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Dict, Optional, Tuple

from prayersync.errors import UnknownMethodOrMadhab


class Madhab(str, Enum):
    SHAFI = "shafi"
    HANAFI = "hanafi"
    MALIKI = "maliki"
    HANBALI = "hanbali"
    JAFARI = "jafari"

    @property
    def definition(self) -> "MadhabDefinition":
        return MADHABS[self]

    @property
    def display_name(self) -> str:
        return self.definition.display_name

    @property
    def asr_shadow_multiplier(self) -> float:
        return self.definition.asr_shadow_multiplier

    @property
    def isha_twilight_angle(self) -> float:
        return self.definition.isha_twilight_angle

    @property
    def maghrib_delay_minutes(self) -> int:
        return self.definition.maghrib_delay_minutes

    @property
    def maghrib_angle(self) -> Optional[float]:
        return self.definition.maghrib_angle


class Compatibility(str, Enum):
    RECOMMENDED = "recommended"
    COMPATIBLE = "compatible"
    NEUTRAL = "neutral"
    INCOMPATIBLE = "incompatible"

    @property
    def warning_message(self) -> Optional[str]:
        if self is Compatibility.COMPATIBLE:
            return "This combination works but may not follow the method's intended madhab"
        if self is Compatibility.INCOMPATIBLE:
            return "This combination may produce inaccurate prayer times"
        return None


class CalculationMethod(str, Enum):
    MUSLIM_WORLD_LEAGUE = "MuslimWorldLeague"
    EGYPTIAN = "Egyptian"
    KARACHI = "Karachi"
    UMM_AL_QURA = "UmmAlQura"
    DUBAI = "Dubai"
    MOONSIGHTING_COMMITTEE = "MoonsightingCommittee"
    NORTH_AMERICA = "NorthAmerica"
    KUWAIT = "Kuwait"
    QATAR = "Qatar"
    SINGAPORE = "Singapore"
    JAFARI_LEVA = "JafariLeva"
    JAFARI_TEHRAN = "JafariTehran"
    FCNA_CANADA = "FCNACanada"

    @property
    def definition(self) -> "MethodDefinition":
        return METHODS[self]

    @property
    def display_name(self) -> str:
        return self.definition.display_name

    @property
    def preferred_madhab(self) -> Optional[Madhab]:
        return self.definition.preferred_madhab

    @property
    def compatible_madhabs(self) -> Tuple[Madhab, ...]:
        return self.definition.compatible_madhabs

    @property
    def uses_fixed_isha_interval(self) -> bool:
        return self.definition.isha_interval_minutes is not None

    def is_compatible(self, madhab: Madhab) -> bool:
        return madhab in self.compatible_madhabs

    def compatibility_status(self, madhab: Madhab) -> Compatibility:
        if not self.is_compatible(madhab):
            return Compatibility.INCOMPATIBLE
        preferred = self.preferred_madhab
        if preferred is None:
            return Compatibility.NEUTRAL
        if preferred is madhab:
            return Compatibility.RECOMMENDED
        return Compatibility.COMPATIBLE


@dataclass(frozen=True)
class MadhabDefinition:
    display_name: str
    asr_shadow_multiplier: float
    isha_twilight_angle: float
    maghrib_delay_minutes: int = 0
    maghrib_angle: Optional[float] = None


@dataclass(frozen=True)
class MethodDefinition:
    """Twilight parameters of a calculation method.

    Exactly one of ``isha_angle`` and ``isha_interval_minutes`` is set. Methods
    with a fixed Isha interval may also declare a longer interval used during
    Ramadan.
    """

    display_name: str
    fajr_angle: float
    isha_angle: Optional[float] = None
    isha_interval_minutes: Optional[int] = None
    ramadan_isha_interval_minutes: Optional[int] = None
    preferred_madhab: Optional[Madhab] = None
    compatible_madhabs: Tuple[Madhab, ...] = tuple(Madhab)

    def __post_init__(self) -> None:
        if (self.isha_angle is None) == (self.isha_interval_minutes is None):
            raise ValueError(
                f"{self.display_name}: define exactly one of isha_angle or isha_interval_minutes"
            )
        if self.ramadan_isha_interval_minutes is not None and self.isha_interval_minutes is None:
            raise ValueError(
                f"{self.display_name}: a Ramadan interval needs a fixed Isha interval"
            )


MADHABS: Dict[Madhab, MadhabDefinition] = {
    Madhab.SHAFI: MadhabDefinition("Shafi'i", 1.0, 17.0),
    Madhab.HANAFI: MadhabDefinition("Hanafi", 2.0, 18.0),
    Madhab.MALIKI: MadhabDefinition("Maliki", 1.0, 17.0),
    Madhab.HANBALI: MadhabDefinition("Hanbali", 1.0, 17.0),
    Madhab.JAFARI: MadhabDefinition(
        "Ja'fari", 1.0, 14.0, maghrib_delay_minutes=15, maghrib_angle=4.0
    ),
}


METHODS: Dict[CalculationMethod, MethodDefinition] = {
    CalculationMethod.MUSLIM_WORLD_LEAGUE: MethodDefinition(
        "Muslim World League", fajr_angle=18.0, isha_angle=17.0
    ),
    CalculationMethod.EGYPTIAN: MethodDefinition(
        "Egyptian General Authority", fajr_angle=19.5, isha_angle=17.5
    ),
    CalculationMethod.KARACHI: MethodDefinition(
        "University of Islamic Sciences, Karachi",
        fajr_angle=18.0,
        isha_angle=18.0,
        preferred_madhab=Madhab.HANAFI,
        compatible_madhabs=(Madhab.HANAFI, Madhab.SHAFI, Madhab.JAFARI),
    ),
    CalculationMethod.UMM_AL_QURA: MethodDefinition(
        "Umm Al-Qura University, Makkah",
        fajr_angle=18.5,
        isha_interval_minutes=90,
        ramadan_isha_interval_minutes=120,
    ),
    CalculationMethod.DUBAI: MethodDefinition("Dubai", fajr_angle=18.2, isha_angle=18.2),
    CalculationMethod.MOONSIGHTING_COMMITTEE: MethodDefinition(
        "Moonsighting Committee Worldwide", fajr_angle=18.0, isha_angle=18.0
    ),
    CalculationMethod.NORTH_AMERICA: MethodDefinition(
        "Islamic Society of North America", fajr_angle=15.0, isha_angle=15.0
    ),
    CalculationMethod.KUWAIT: MethodDefinition("Kuwait", fajr_angle=18.0, isha_angle=17.5),
    CalculationMethod.QATAR: MethodDefinition(
        "Qatar",
        fajr_angle=18.0,
        isha_interval_minutes=90,
        ramadan_isha_interval_minutes=120,
    ),
    CalculationMethod.SINGAPORE: MethodDefinition("Singapore", fajr_angle=20.0, isha_angle=18.0),
    CalculationMethod.JAFARI_LEVA: MethodDefinition(
        "Ja'fari (Leva Institute, Qum)",
        fajr_angle=16.0,
        isha_angle=14.0,
        preferred_madhab=Madhab.JAFARI,
        compatible_madhabs=(Madhab.JAFARI,),
    ),
    CalculationMethod.JAFARI_TEHRAN: MethodDefinition(
        "Ja'fari (Tehran IOG)",
        fajr_angle=17.7,
        isha_angle=14.0,
        preferred_madhab=Madhab.JAFARI,
        compatible_madhabs=(Madhab.JAFARI,),
    ),
    CalculationMethod.FCNA_CANADA: MethodDefinition(
        "FCNA (Canada)", fajr_angle=13.0, isha_angle=13.0
    ),
}


DEFAULT_METHOD = CalculationMethod.MUSLIM_WORLD_LEAGUE
DEFAULT_MADHAB = Madhab.SHAFI

# Used by the future-times lookup when the selected method fails outright.
FALLBACK_METHODS: Tuple[CalculationMethod, ...] = (
    CalculationMethod.MUSLIM_WORLD_LEAGUE,
    CalculationMethod.EGYPTIAN,
    CalculationMethod.KARACHI,
    CalculationMethod.NORTH_AMERICA,
)


def parse_method(value: object, *, strict: bool = False) -> CalculationMethod:
    """Return the method whose id matches ``value``, ignoring case and underscores.

    Unknown ids raise ``UnknownMethodOrMadhab`` when ``strict`` is set; otherwise
    they fall back to ``DEFAULT_METHOD`` with a warning.
    """
    if isinstance(value, CalculationMethod):
        return value
    text = str(value or "").strip().replace("_", "").replace(" ", "").lower()
    for method in CalculationMethod:
        if method.value.lower() == text:
            return method
    if strict:
        raise UnknownMethodOrMadhab(f"Unknown calculation method: {value!r}")
    logging.getLogger("Catalog").warning(
        "Unknown calculation method %r; falling back to %s", value, DEFAULT_METHOD.value
    )
    return DEFAULT_METHOD


def parse_madhab(value: object, *, strict: bool = False) -> Madhab:
    if isinstance(value, Madhab):
        return value
    text = str(value or "").strip().lower()
    for madhab in Madhab:
        if madhab.value == text:
            return madhab
    if strict:
        raise UnknownMethodOrMadhab(f"Unknown madhab: {value!r}")
    logging.getLogger("Catalog").warning(
        "Unknown madhab %r; falling back to %s", value, DEFAULT_MADHAB.value
    )
    return DEFAULT_MADHAB
