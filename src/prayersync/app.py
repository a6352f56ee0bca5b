from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
import threading
from typing import Iterable, Optional

from prayersync.cache import MemoryTier, MultiTierCache
from prayersync.cache_store import CacheStore
from prayersync.calendar_service import HijriCalendarService
from prayersync.catalog import parse_madhab, parse_method
from prayersync.config import AppConfig, ConfigError, ConfigLoader
from prayersync.coordinator import SynchronizationCoordinator
from prayersync.errors import PrayerTimeError
from prayersync.high_latitude import parse_rule
from prayersync.location import (
    IpLocationProvider,
    LastKnownLocationProvider,
    LocationProvider,
    StaticLocationProvider,
)
from prayersync.logging_utils import LoggerFactory
from prayersync.models import Coordinates, SettingsSnapshot
from prayersync.parameters import ParameterResolver
from prayersync.settings_store import SettingsStore
from prayersync.startup import schedule_from_cache, schedule_refresh, warm_from_cache


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config_dir = Path(args.config) if args.config else None
        config = ConfigLoader(root_dir=config_dir).load()
    except ConfigError as exc:
        LoggerFactory.create(None)
        logger = logging.getLogger("prayersync")
        logger.error("Config error: %s", exc)
        return 2

    log_path = os.getenv("PRAYERSYNC_LOG_PATH") or config.logging.file_path
    # Configure the root logger so every component logger inherits the handlers.
    LoggerFactory.create(None, log_file=log_path)
    logger = logging.getLogger("prayersync")
    logger.info("Config summary: %s", _config_summary(config))

    cache_dir = Path(os.getenv("PRAYERSYNC_CACHE_DIR") or config.cache.dir)
    cache = MultiTierCache(
        memory=MemoryTier(config.cache.memory_max_entries),
        persisted=CacheStore(cache_dir),
    )
    home = Coordinates(config.location.latitude, config.location.longitude)
    coordinator = SynchronizationCoordinator(
        settings_store=SettingsStore(
            Path(config.settings.store_path), defaults=_default_settings(config)
        ),
        cache=cache,
        calendar=HijriCalendarService(
            adjustment_days=config.calendar.hijri_adjustment_days,
            ramadan_overrides=config.calendar.ramadan_overrides,
        ),
        location=_build_location_provider(config, home),
        resolver=ParameterResolver(config.calculation.high_latitude_threshold),
        location_precision=config.cache.location_precision,
        debounce_seconds=config.settings.debounce_seconds,
    )
    view_model = coordinator.create_view_model(config.location.timezone)
    tracker = coordinator.create_tracker()

    if args.dry_run:
        # Dry-run should not block; it computes today once and exits.
        times = view_model.load()
        if times is None:
            logger.error("Dry-run: %s", view_model.error_message)
            coordinator.shutdown()
            return 1
        for row in view_model.rows():
            logger.info("Dry-run: %-8s %s", row.label, row.time)
        coordinator.shutdown()
        return 0

    # Import APScheduler only after config is valid to avoid noisy failures.
    from apscheduler.schedulers.background import BackgroundScheduler

    scheduler = BackgroundScheduler()
    task_manager = coordinator.create_background_task_manager(
        scheduler, _make_prayer_handler(logger)
    )
    refresh_job = coordinator.create_refresh_job(
        scheduler,
        prefetch_days=config.refresh.prefetch_days,
        interval_hours=config.refresh.interval_hours,
        task_manager=task_manager,
    )

    today = coordinator.service.today()
    warm_from_cache(cache, today)
    try:
        schedule_from_cache(cache, task_manager, today, coordinator.service.current_location())
    except PrayerTimeError as exc:
        logger.warning("Scheduling from cache skipped: %s", exc)
    schedule_refresh(refresh_job)
    coordinator.start()

    upcoming = tracker.next_prayer(coordinator.service.clock.now().astimezone())
    if upcoming is not None:
        logger.info("Next prayer: %s at %s", upcoming.kind.value, view_model.format_time(upcoming.time))

    try:
        if config.control_panel.enabled:
            from prayersync.control_panel import ControlPanelServer

            secret_key = os.getenv("PRAYERSYNC_SECRET_KEY", "prayersync-dev")
            server = ControlPanelServer(
                username=config.control_panel.auth.username,
                password_hash=config.control_panel.auth.password_hash,
                coordinator=coordinator,
                view_model=view_model,
                secret_key=secret_key,
                host=config.control_panel.host,
                port=config.control_panel.port,
                scheduler=scheduler,
            )
            scheduler.start()
            logger.info("Starting control panel on %s:%s", server.host, server.port)
            server.app.run(host=server.host, port=server.port)
        else:
            logger.info("Control panel disabled; scheduler starting only.")
            scheduler.start()
            threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=False)
        coordinator.shutdown()

    return 0


def _default_settings(config: AppConfig) -> SettingsSnapshot:
    calculation = config.calculation
    return SettingsSnapshot(
        method=parse_method(calculation.method),
        madhab=parse_madhab(calculation.madhab),
        use_astronomical_maghrib=calculation.use_astronomical_maghrib,
        use_ramadan_isha_offset=calculation.use_ramadan_isha_offset,
        high_latitude_rule=parse_rule(calculation.high_latitude_rule),
        max_lookahead_months=calculation.max_lookahead_months,
    )


def _build_location_provider(config: AppConfig, home: Coordinates) -> LocationProvider:
    if config.location.provider == "ip":
        return LastKnownLocationProvider(
            IpLocationProvider(url=config.location.ip_lookup_url), initial=home
        )
    return StaticLocationProvider(home)


def _config_summary(config: AppConfig) -> dict:
    return {
        "location": {
            "latitude": config.location.latitude,
            "longitude": config.location.longitude,
            "timezone": config.location.timezone,
            "provider": config.location.provider,
        },
        "calculation": {
            "method": config.calculation.method,
            "madhab": config.calculation.madhab,
            "use_astronomical_maghrib": config.calculation.use_astronomical_maghrib,
            "use_ramadan_isha_offset": config.calculation.use_ramadan_isha_offset,
            "high_latitude_rule": config.calculation.high_latitude_rule,
            "high_latitude_threshold": config.calculation.high_latitude_threshold,
        },
        "cache": {
            "dir": config.cache.dir,
            "location_precision": config.cache.location_precision,
            "memory_max_entries": config.cache.memory_max_entries,
        },
        "settings": {
            "store_path": config.settings.store_path,
            "debounce_seconds": config.settings.debounce_seconds,
        },
        "refresh": {
            "prefetch_days": config.refresh.prefetch_days,
            "interval_hours": config.refresh.interval_hours,
        },
        "control_panel": {
            "enabled": config.control_panel.enabled,
            "host": config.control_panel.host,
            "port": config.control_panel.port,
            "auth": {
                "username": config.control_panel.auth.username,
            },
        },
        "logging": {
            "file_path": config.logging.file_path,
        },
    }


def _parse_args(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PrayerSync")
    parser.add_argument("--config", help="Directory containing config.yml")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config and print today's prayer times without scheduling",
    )
    return parser.parse_args(argv)


def _make_prayer_handler(logger: logging.Logger):
    def handler(plan, kind):
        # Notification delivery plugs in here; the core only announces the event.
        logger.info("Prayer time: %s for %s", kind.value, plan.date.isoformat())

    return handler


if __name__ == "__main__":
    raise SystemExit(main())
