from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import os
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

from prayersync.calendar_service import DateRange
from prayersync.catalog import parse_madhab, parse_method
from prayersync.errors import UnknownMethodOrMadhab
from prayersync.high_latitude import HighLatitudeRule


class ConfigError(ValueError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class LocationConfig:
    latitude: float
    longitude: float
    timezone: str
    provider: str = "static"
    ip_lookup_url: str = "https://ipinfo.io/json"


@dataclass(frozen=True)
class CalculationConfig:
    method: str
    madhab: str
    use_astronomical_maghrib: bool = False
    use_ramadan_isha_offset: bool = True
    high_latitude_rule: str = HighLatitudeRule.MIDDLE_OF_THE_NIGHT.value
    high_latitude_threshold: float = 48.5
    max_lookahead_months: int = 60


@dataclass(frozen=True)
class CacheConfig:
    dir: str
    location_precision: int = 2
    memory_max_entries: int = 256


@dataclass(frozen=True)
class SettingsConfig:
    store_path: str
    debounce_seconds: float = 0.3


@dataclass(frozen=True)
class CalendarConfig:
    hijri_adjustment_days: int = 0
    ramadan_overrides: Tuple[DateRange, ...] = ()


@dataclass(frozen=True)
class RefreshConfig:
    prefetch_days: int = 7
    interval_hours: int = 6


@dataclass(frozen=True)
class ControlPanelAuthConfig:
    username: str
    password_hash: str


@dataclass(frozen=True)
class ControlPanelConfig:
    enabled: bool
    host: str
    port: int
    auth: ControlPanelAuthConfig


@dataclass(frozen=True)
class LoggingConfig:
    file_path: str


@dataclass(frozen=True)
class AppConfig:
    location: LocationConfig
    calculation: CalculationConfig
    cache: CacheConfig
    settings: SettingsConfig
    calendar: CalendarConfig
    refresh: RefreshConfig
    control_panel: ControlPanelConfig
    logging: LoggingConfig


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at root of config file: {path}")
    return data


def _as_date(value: Any) -> date:
    # PyYAML already turns unquoted ISO dates into date objects.
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class ConfigLoader:
    def __init__(self, root_dir: Path | None = None) -> None:
        self._root_dir = root_dir

    def load(self) -> AppConfig:
        root_dir = self._resolve_root_dir()
        config_path = root_dir / "config.yml"
        if not config_path.exists():
            raise ConfigError(f"Missing base config file: {config_path}")

        merged: Dict[str, Any] = {}
        merged = _deep_merge(merged, _load_yaml(config_path))

        config_d = root_dir / "config.d"
        if config_d.exists():
            for path in sorted(config_d.glob("*.yml")):
                merged = _deep_merge(merged, _load_yaml(path))

        secrets_path = root_dir / "secrets.yml"
        if secrets_path.exists():
            merged = _deep_merge(merged, _load_yaml(secrets_path))

        config = self._build_config(merged)
        self._validate(config)
        return config

    def _resolve_root_dir(self) -> Path:
        if self._root_dir is not None:
            return Path(self._root_dir)
        env_dir = os.getenv("PRAYERSYNC_CONFIG_DIR")
        if env_dir:
            return Path(env_dir)
        return Path("/etc/prayersync")

    def _build_config(self, data: Dict[str, Any]) -> AppConfig:
        try:
            location_data = data["location"]
            calculation_data = data["calculation"]
            cache_data = data["cache"]
            control_panel_data = data["control_panel"]
        except KeyError as exc:
            raise ConfigError(f"Missing config section: {exc.args[0]}") from exc

        settings_data = data.get("settings", {})
        calendar_data = data.get("calendar", {})
        refresh_data = data.get("refresh", {})
        logging_data = data.get("logging", {})

        try:
            location = LocationConfig(
                latitude=float(location_data["latitude"]),
                longitude=float(location_data["longitude"]),
                timezone=location_data.get("timezone", "UTC"),
                provider=location_data.get("provider", "static"),
                ip_lookup_url=location_data.get("ip_lookup_url", "https://ipinfo.io/json"),
            )
            calculation = CalculationConfig(
                method=str(calculation_data["method"]),
                madhab=str(calculation_data["madhab"]),
                use_astronomical_maghrib=bool(
                    calculation_data.get("use_astronomical_maghrib", False)
                ),
                use_ramadan_isha_offset=bool(
                    calculation_data.get("use_ramadan_isha_offset", True)
                ),
                high_latitude_rule=str(
                    calculation_data.get(
                        "high_latitude_rule", HighLatitudeRule.MIDDLE_OF_THE_NIGHT.value
                    )
                ),
                high_latitude_threshold=float(
                    calculation_data.get("high_latitude_threshold", 48.5)
                ),
                max_lookahead_months=int(calculation_data.get("max_lookahead_months", 60)),
            )
            cache = CacheConfig(
                dir=cache_data["dir"],
                location_precision=int(cache_data.get("location_precision", 2)),
                memory_max_entries=int(cache_data.get("memory_max_entries", 256)),
            )
            settings = SettingsConfig(
                store_path=settings_data.get(
                    "store_path", str(Path(cache_data["dir"]).parent / "settings.yml")
                ),
                debounce_seconds=float(settings_data.get("debounce_seconds", 0.3)),
            )
            calendar = CalendarConfig(
                hijri_adjustment_days=int(calendar_data.get("hijri_adjustment_days", 0)),
                ramadan_overrides=tuple(
                    DateRange(_as_date(item["start"]), _as_date(item["end"]))
                    for item in calendar_data.get("ramadan_overrides", []) or []
                ),
            )
            refresh = RefreshConfig(
                prefetch_days=int(refresh_data.get("prefetch_days", 7)),
                interval_hours=int(refresh_data.get("interval_hours", 6)),
            )
            auth_data = control_panel_data.get("auth", {}) or {}
            control_panel = ControlPanelConfig(
                enabled=bool(control_panel_data["enabled"]),
                host=control_panel_data.get("host", "0.0.0.0"),
                port=int(control_panel_data.get("port", 8080)),
                auth=ControlPanelAuthConfig(
                    username=auth_data.get("username", "") or "",
                    password_hash=auth_data.get("password_hash", "") or "",
                ),
            )
            logging_config = LoggingConfig(
                file_path=logging_data.get("file_path", "logs/prayersync.log"),
            )
        except KeyError as exc:
            raise ConfigError(f"Missing config value: {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid config value: {exc}") from exc

        return AppConfig(
            location=location,
            calculation=calculation,
            cache=cache,
            settings=settings,
            calendar=calendar,
            refresh=refresh,
            control_panel=control_panel,
            logging=logging_config,
        )

    def _validate(self, config: AppConfig) -> None:
        self._validate_location(config.location)
        self._validate_calculation(config.calculation)
        self._validate_cache(config.cache)
        self._validate_settings(config.settings, config.refresh)
        self._validate_control_panel(config.control_panel)

    def _validate_location(self, location: LocationConfig) -> None:
        if not -90.0 <= location.latitude <= 90.0:
            raise ConfigError(f"Latitude out of range: {location.latitude}")
        if not -180.0 <= location.longitude <= 180.0:
            raise ConfigError(f"Longitude out of range: {location.longitude}")
        if location.provider not in ("static", "ip"):
            raise ConfigError(f"Unknown location provider: {location.provider}")

    def _validate_calculation(self, calculation: CalculationConfig) -> None:
        try:
            parse_method(calculation.method, strict=True)
            parse_madhab(calculation.madhab, strict=True)
        except UnknownMethodOrMadhab as exc:
            raise ConfigError(str(exc)) from exc
        rules = {rule.value for rule in HighLatitudeRule}
        if calculation.high_latitude_rule not in rules:
            raise ConfigError(f"Unknown high latitude rule: {calculation.high_latitude_rule}")
        if not 0.0 < calculation.high_latitude_threshold < 90.0:
            raise ConfigError(
                f"High latitude threshold out of range: {calculation.high_latitude_threshold}"
            )
        if calculation.max_lookahead_months <= 0:
            raise ConfigError("max_lookahead_months must be positive")

    def _validate_cache(self, cache: CacheConfig) -> None:
        if not 0 <= cache.location_precision <= 6:
            raise ConfigError(f"location_precision out of range: {cache.location_precision}")
        if cache.memory_max_entries <= 0:
            raise ConfigError("memory_max_entries must be positive")

    def _validate_settings(self, settings: SettingsConfig, refresh: RefreshConfig) -> None:
        if settings.debounce_seconds <= 0:
            raise ConfigError("debounce_seconds must be positive")
        if refresh.prefetch_days <= 0:
            raise ConfigError("prefetch_days must be positive")
        if refresh.interval_hours <= 0:
            raise ConfigError("interval_hours must be positive")

    def _validate_control_panel(self, control_panel: ControlPanelConfig) -> None:
        if not control_panel.enabled:
            return
        if not control_panel.auth.username:
            raise ConfigError("Control panel username is required")
        if not control_panel.auth.password_hash:
            raise ConfigError("Control panel password_hash is required")
