from __future__ import annotations

from concurrent.futures import Future
from datetime import date, datetime, timedelta
import logging
import threading
from typing import Dict, List, Optional, Tuple

from prayersync.astronomy import AstronomicalEngine
from prayersync.cache import DEFAULT_LOCATION_PRECISION, CacheKey, MultiTierCache, new_entry
from prayersync.calendar_service import CalendarService
from prayersync.catalog import FALLBACK_METHODS
from prayersync.errors import InvalidDate, LookaheadLimitExceeded, PrayerTimeError
from prayersync.location import LocationProvider
from prayersync.models import (
    Coordinates,
    DisclaimerLevel,
    FuturePrayerTimeResult,
    PrayerTimeSet,
    SettingsSnapshot,
    SettingsState,
)
from prayersync.parameters import ParameterResolver


MAX_RANGE_DAYS = 90
SHORT_TERM_MONTHS = 12
MEDIUM_TERM_MONTHS = 60
ESTIMATE_PRECISION_MINUTES = 30


class Clock:
    def now(self) -> datetime:  # pragma: no cover - interface only
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now()


class PrayerTimeService:
    """Cache-through access to prayer times under the shared settings.

    Each lookup captures the settings snapshot once and derives its cache key
    from it, so a computation that outlives a settings change still writes
    under the key it started with. Concurrent misses for the same key and
    fingerprint share one computation.
    """

    def __init__(
        self,
        *,
        settings: SettingsState,
        cache: MultiTierCache,
        calendar: CalendarService,
        location: LocationProvider,
        engine: Optional[AstronomicalEngine] = None,
        resolver: Optional[ParameterResolver] = None,
        clock: Optional[Clock] = None,
        location_precision: int = DEFAULT_LOCATION_PRECISION,
    ) -> None:
        self._settings = settings
        self._cache = cache
        self._calendar = calendar
        self._location = location
        self._engine = engine or AstronomicalEngine()
        self._resolver = resolver or ParameterResolver()
        self._clock = clock or SystemClock()
        self._precision = location_precision
        self._inflight: Dict[Tuple[CacheKey, str], "Future[PrayerTimeSet]"] = {}
        self._inflight_lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def settings(self) -> SettingsState:
        return self._settings

    @property
    def cache(self) -> MultiTierCache:
        return self._cache

    @property
    def clock(self) -> Clock:
        return self._clock

    def today(self) -> date:
        return self._clock.now().date()

    def current_location(self) -> Coordinates:
        return self._location.current_coordinates()

    def get_prayer_times(
        self, day: Optional[date] = None, coordinates: Optional[Coordinates] = None
    ) -> PrayerTimeSet:
        return self._get(
            day or self.today(),
            coordinates or self._location.current_coordinates(),
            self._settings.current,
        )

    def cache_key(
        self, day: date, coordinates: Coordinates, snapshot: Optional[SettingsSnapshot] = None
    ) -> CacheKey:
        snapshot = snapshot or self._settings.current
        return CacheKey.build(
            day, coordinates, snapshot.method, snapshot.madhab, self._precision
        )

    def invalidate(self, day: date, coordinates: Optional[Coordinates] = None) -> None:
        coordinates = coordinates or self._location.current_coordinates()
        self._cache.invalidate(self.cache_key(day, coordinates))

    def prune_expired(self, keep_days: int = 1) -> int:
        return self._cache.prune(self.today() - timedelta(days=keep_days))

    def prefetch(self, days: int, coordinates: Optional[Coordinates] = None) -> List[PrayerTimeSet]:
        snapshot = self._settings.current
        coordinates = coordinates or self._location.current_coordinates()
        start = self.today()

        # One extra day so the last requested day can get its night extras.
        computed: List[Optional[PrayerTimeSet]] = []
        for offset in range(days + 1):
            current = start + timedelta(days=offset)
            try:
                computed.append(self._get(current, coordinates, snapshot))
            except PrayerTimeError as exc:
                # Continue so a single unresolvable date does not stop the loop.
                self._logger.warning("Prefetch failed for %s: %s", current, exc)
                computed.append(None)

        results: List[PrayerTimeSet] = []
        for idx in range(days):
            plan = computed[idx]
            if plan is None:
                continue
            next_plan = computed[idx + 1]
            if next_plan is not None and plan.midnight is None:
                plan = plan.with_night_extras(next_plan.fajr)
                key = self.cache_key(plan.date, coordinates, snapshot)
                self._cache.put(key, new_entry(key, plan, snapshot.fingerprint()))
            results.append(plan)
        self._logger.info("Prefetched %s of %s days from %s", len(results), days, start)
        return results

    def get_future_prayer_times(
        self, day: date, coordinates: Optional[Coordinates] = None
    ) -> FuturePrayerTimeResult:
        today = self.today()
        if day < today:
            raise InvalidDate(f"{day.isoformat()} is in the past")
        snapshot = self._settings.current
        months = months_between(today, day)
        if months > snapshot.max_lookahead_months:
            raise LookaheadLimitExceeded(
                f"{day.isoformat()} is {months} months ahead; limit is {snapshot.max_lookahead_months}"
            )

        coordinates = coordinates or self._location.current_coordinates()
        times = self._get_with_fallback_methods(day, coordinates, snapshot)
        level = disclaimer_level(today, day)
        return FuturePrayerTimeResult(
            times=times,
            hijri_date=self._calendar.to_hijri(day),
            is_ramadan=self._calendar.is_ramadan(day),
            disclaimer_level=level,
            is_high_latitude=coordinates.is_high_latitude,
            precision_minutes=(
                0
                if level in (DisclaimerLevel.TODAY, DisclaimerLevel.SHORT_TERM)
                else ESTIMATE_PRECISION_MINUTES
            ),
        )

    def get_future_prayer_times_range(
        self, start: date, end: date, coordinates: Optional[Coordinates] = None
    ) -> List[FuturePrayerTimeResult]:
        if end < start:
            raise InvalidDate(f"Range end {end.isoformat()} is before start {start.isoformat()}")
        span = (end - start).days + 1
        if span > MAX_RANGE_DAYS:
            raise InvalidDate(f"Range of {span} days exceeds {MAX_RANGE_DAYS} days")
        coordinates = coordinates or self._location.current_coordinates()
        return [
            self.get_future_prayer_times(start + timedelta(days=offset), coordinates)
            for offset in range(span)
        ]

    def _get(
        self, day: date, coordinates: Coordinates, snapshot: SettingsSnapshot
    ) -> PrayerTimeSet:
        key = self.cache_key(day, coordinates, snapshot)
        fingerprint = snapshot.fingerprint()
        entry = self._cache.get(key)
        if entry is not None and entry.fingerprint == fingerprint:
            return entry.times

        inflight_key = (key, fingerprint)
        with self._inflight_lock:
            pending = self._inflight.get(inflight_key)
            owner = pending is None
            if owner:
                pending = Future()
                self._inflight[inflight_key] = pending
        if not owner:
            self._logger.debug("Waiting on in-flight computation for %s", key.token)
            return pending.result()

        try:
            times = self._compute_and_store(key, fingerprint, day, coordinates, snapshot)
        except Exception as exc:
            pending.set_exception(exc)
            raise
        else:
            pending.set_result(times)
            return times
        finally:
            with self._inflight_lock:
                self._inflight.pop(inflight_key, None)

    def _compute_and_store(
        self,
        key: CacheKey,
        fingerprint: str,
        day: date,
        coordinates: Coordinates,
        snapshot: SettingsSnapshot,
    ) -> PrayerTimeSet:
        # Another owner may have finished between the first lookup and the claim.
        entry = self._cache.get(key)
        if entry is not None and entry.fingerprint == fingerprint:
            return entry.times

        try:
            times = self._compute(day, coordinates, snapshot)
        except PrayerTimeError as exc:
            if entry is None:
                raise
            self._logger.warning("Serving stale times for %s: %s", key.token, exc)
            return entry.times

        self._cache.put(key, new_entry(key, times, fingerprint))
        return times

    def _compute(
        self, day: date, coordinates: Coordinates, snapshot: SettingsSnapshot
    ) -> PrayerTimeSet:
        params = self._resolver.resolve_snapshot(snapshot, self._calendar.context_for(day))
        return self._engine.compute(coordinates, day, params)

    def _get_with_fallback_methods(
        self, day: date, coordinates: Coordinates, snapshot: SettingsSnapshot
    ) -> PrayerTimeSet:
        try:
            return self._get(day, coordinates, snapshot)
        except PrayerTimeError as original:
            for method in FALLBACK_METHODS:
                if method is snapshot.method:
                    continue
                try:
                    times = self._get(day, coordinates, snapshot.with_changes(method=method))
                except PrayerTimeError:
                    continue
                self._logger.warning(
                    "%s failed for %s (%s); using %s",
                    snapshot.method.value,
                    day,
                    original,
                    method.value,
                )
                return times
            raise


def months_between(start: date, end: date) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def disclaimer_level(today: date, day: date) -> DisclaimerLevel:
    if day == today:
        return DisclaimerLevel.TODAY
    months = months_between(today, day)
    if months <= SHORT_TERM_MONTHS:
        return DisclaimerLevel.SHORT_TERM
    if months <= MEDIUM_TERM_MONTHS:
        return DisclaimerLevel.MEDIUM_TERM
    return DisclaimerLevel.LONG_TERM
