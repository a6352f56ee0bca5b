from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date
import logging
import threading
from typing import Any, Callable, List, Optional, Protocol

from apscheduler.schedulers.background import BackgroundScheduler

from prayersync.astronomy import AstronomicalEngine
from prayersync.cache import DEFAULT_LOCATION_PRECISION, MultiTierCache
from prayersync.calendar_service import CalendarService
from prayersync.errors import PrayerTimeError
from prayersync.location import LocationProvider
from prayersync.models import Coordinates, PrayerTimeSet, SettingsSnapshot, SettingsState
from prayersync.parameters import ParameterResolver
from prayersync.prayer_times import Clock, PrayerTimeService
from prayersync.scheduler import BackgroundRefreshJob, BackgroundTaskManager, Handler
from prayersync.settings_bus import DEFAULT_DEBOUNCE_SECONDS, SettingsChangeBus
from prayersync.tracker import PrayerTracker
from prayersync.view_model import PrayerTimesViewModel


TimesSubscriber = Callable[[PrayerTimeSet], None]


class SettingsStoreProtocol(Protocol):
    def load(self) -> SettingsSnapshot:  # pragma: no cover - interface only
        ...

    def save(self, snapshot: SettingsSnapshot) -> None:  # pragma: no cover - interface only
        ...


class SynchronizationCoordinator:
    """Owns the settings state and the single prayer time service.

    ``update_settings`` is the only way to change settings. Settled changes
    arrive from the bus, today's times are recomputed on the worker executor
    and republished to every ``on_prayer_times`` subscriber. Consumers built
    through the ``create_*`` factories all share ``self.service``.
    """

    def __init__(
        self,
        *,
        settings_store: SettingsStoreProtocol,
        cache: MultiTierCache,
        calendar: CalendarService,
        location: LocationProvider,
        bus: Optional[SettingsChangeBus] = None,
        engine: Optional[AstronomicalEngine] = None,
        resolver: Optional[ParameterResolver] = None,
        clock: Optional[Clock] = None,
        location_precision: int = DEFAULT_LOCATION_PRECISION,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._store = settings_store
        self._state = SettingsState(settings_store.load())
        self._bus = bus or SettingsChangeBus(debounce_seconds)
        self._service = PrayerTimeService(
            settings=self._state,
            cache=cache,
            calendar=calendar,
            location=location,
            engine=engine,
            resolver=resolver,
            clock=clock,
            location_precision=location_precision,
        )
        # A single worker keeps recomputations in settle order.
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="prayersync")
        self._lock = threading.Lock()
        self._subscribers_lock = threading.Lock()
        self._times_subscribers: List[TimesSubscriber] = []
        self._latest: Optional[PrayerTimeSet] = None
        self._closed = False
        self._logger = logging.getLogger(self.__class__.__name__)
        self._bus.subscribe(self._on_settings_settled)

    @property
    def service(self) -> PrayerTimeService:
        return self._service

    @property
    def settings(self) -> SettingsSnapshot:
        return self._state.current

    @property
    def state(self) -> SettingsState:
        return self._state

    @property
    def bus(self) -> SettingsChangeBus:
        return self._bus

    @property
    def latest(self) -> Optional[PrayerTimeSet]:
        with self._subscribers_lock:
            return self._latest

    def update_settings(self, **changes: Any) -> SettingsSnapshot:
        with self._lock:
            current = self._state.current
            updated = current.with_changes(**changes)
            if updated == current:
                return current
            self._state.replace(updated)
            try:
                self._store.save(updated)
            except OSError as exc:
                # Keep the new settings for this session even if they cannot be saved.
                self._logger.error("Failed to persist settings: %s", exc)
            self._logger.info(
                "Settings updated: %s",
                ", ".join(f"{name}={value}" for name, value in sorted(changes.items())),
            )
            self._bus.notify(updated)
        return updated

    def on_settings_changed(self, callback: Callable[[SettingsSnapshot], None]) -> Callable[[], None]:
        return self._bus.subscribe(callback)

    def on_prayer_times(self, callback: TimesSubscriber) -> Callable[[], None]:
        with self._subscribers_lock:
            self._times_subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._times_subscribers:
                    self._times_subscribers.remove(callback)

        return unsubscribe

    def get_prayer_times(
        self, day: Optional[date] = None, coordinates: Optional[Coordinates] = None
    ) -> PrayerTimeSet:
        return self._service.get_prayer_times(day, coordinates)

    def invalidate(self, day: date, coordinates: Optional[Coordinates] = None) -> None:
        self._service.invalidate(day, coordinates)

    def refresh_today(self) -> "Future[Optional[PrayerTimeSet]]":
        return self._executor.submit(self._recompute_today)

    def start(self) -> "Future[Optional[PrayerTimeSet]]":
        self._logger.info(
            "Starting with method=%s madhab=%s",
            self.settings.method.value,
            self.settings.madhab.value,
        )
        return self.refresh_today()

    def shutdown(self, wait: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus.close()
        self._executor.shutdown(wait=wait)
        self._logger.info("Coordinator shut down")

    def create_view_model(self, timezone_name: str = "UTC") -> PrayerTimesViewModel:
        view_model = PrayerTimesViewModel(self._service, timezone_name=timezone_name)
        self.on_prayer_times(view_model.on_prayer_times)
        return view_model

    def create_tracker(self) -> PrayerTracker:
        tracker = PrayerTracker(self._service)
        self.on_prayer_times(tracker.update)
        return tracker

    def create_background_task_manager(
        self, scheduler: BackgroundScheduler, handler: Handler
    ) -> BackgroundTaskManager:
        manager = BackgroundTaskManager(
            scheduler=scheduler,
            service=self._service,
            handler=handler,
        )
        self.on_prayer_times(manager.schedule_day)
        return manager

    def create_refresh_job(
        self,
        scheduler: BackgroundScheduler,
        *,
        prefetch_days: int = 7,
        interval_hours: int = 6,
        task_manager: Optional[BackgroundTaskManager] = None,
    ) -> BackgroundRefreshJob:
        return BackgroundRefreshJob(
            scheduler=scheduler,
            service=self._service,
            prefetch_days=prefetch_days,
            interval_hours=interval_hours,
            task_manager=task_manager,
        )

    def _on_settings_settled(self, snapshot: SettingsSnapshot) -> None:
        if self._closed:
            return
        self._logger.info("Settings settled; recomputing today's prayer times")
        self.refresh_today()

    def _recompute_today(self) -> Optional[PrayerTimeSet]:
        snapshot = self._state.current
        try:
            times = self._service.get_prayer_times()
        except PrayerTimeError as exc:
            self._logger.error("Recompute failed: %s", exc)
            return None
        if self._state.current != snapshot:
            # A newer change is already queued; it will publish its own set.
            self._logger.info("Settings moved on during recompute; not publishing")
            return times
        self._publish(times)
        return times

    def _publish(self, times: PrayerTimeSet) -> None:
        with self._subscribers_lock:
            self._latest = times
            subscribers = list(self._times_subscribers)
        for callback in subscribers:
            try:
                callback(times)
            except Exception as exc:
                self._logger.exception("Prayer times subscriber %r failed: %s", callback, exc)
