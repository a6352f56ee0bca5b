import sys
from datetime import datetime
from pathlib import Path

import pytest


def pytest_sessionstart(session):
    """Ensure src/ is on sys.path for local test runs."""
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now


class ManualTimer:
    """Stands in for threading.Timer; tests decide when it fires."""

    def __init__(self, interval, callback) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        # Real timers can still fire after a late cancel, so run regardless.
        self.callback()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers = []

    def __call__(self, interval, callback) -> ManualTimer:
        timer = ManualTimer(interval, callback)
        self.timers.append(timer)
        return timer


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def make_coordinator(tmp_path, timers):
    from prayersync.cache import MemoryTier, MultiTierCache
    from prayersync.cache_store import CacheStore
    from prayersync.calendar_service import HijriCalendarService
    from prayersync.coordinator import SynchronizationCoordinator
    from prayersync.location import StaticLocationProvider
    from prayersync.models import Coordinates
    from prayersync.settings_bus import SettingsChangeBus
    from prayersync.settings_store import MemorySettingsStore

    created = []

    def factory(
        *,
        coordinates=Coordinates(37.7749, -122.4194),
        now=datetime(2024, 6, 21, 8, 0),
        snapshot=None,
        engine=None,
        location=None,
        persisted=True,
        store=None,
        calendar=None,
    ):
        cache = MultiTierCache(
            memory=MemoryTier(64),
            persisted=CacheStore(tmp_path / "cache") if persisted else None,
        )
        coordinator = SynchronizationCoordinator(
            settings_store=store or MemorySettingsStore(snapshot),
            cache=cache,
            calendar=calendar or HijriCalendarService(),
            location=location or StaticLocationProvider(coordinates),
            bus=SettingsChangeBus(0.3, timer_factory=timers),
            engine=engine,
            clock=FixedClock(now),
        )
        created.append(coordinator)
        return coordinator

    yield factory
    for coordinator in created:
        coordinator.shutdown()
