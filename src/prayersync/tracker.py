from __future__ import annotations

from datetime import datetime, timedelta
import logging
import threading
from typing import Optional

from prayersync.errors import PrayerTimeError
from prayersync.models import PrayerTime, PrayerTimeSet
from prayersync.prayer_times import PrayerTimeService


class PrayerTracker:
    """Answers "which prayer is it now" against the latest published set."""

    def __init__(self, service: PrayerTimeService) -> None:
        self.service = service
        self._plan: Optional[PrayerTimeSet] = None
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def plan(self) -> Optional[PrayerTimeSet]:
        with self._lock:
            return self._plan

    def update(self, plan: PrayerTimeSet) -> None:
        with self._lock:
            self._plan = plan

    def current_prayer(self, now: datetime) -> Optional[PrayerTime]:
        plan = self._plan_for()
        if plan is None:
            return None
        current = None
        for prayer in plan.prayers:
            if prayer.time <= now:
                current = prayer
        return current

    def next_prayer(self, now: datetime) -> Optional[PrayerTime]:
        plan = self._plan_for()
        if plan is None:
            return None
        for prayer in plan.prayers:
            if prayer.time > now:
                return prayer
        # After Isha the next prayer is tomorrow's Fajr.
        try:
            tomorrow = self.service.get_prayer_times(plan.date + timedelta(days=1), plan.coordinates)
        except PrayerTimeError as exc:
            self._logger.warning("Cannot look ahead to tomorrow: %s", exc)
            return None
        return tomorrow.prayers[0]

    def time_until_next(self, now: datetime) -> Optional[timedelta]:
        upcoming = self.next_prayer(now)
        if upcoming is None:
            return None
        return upcoming.time - now

    def _plan_for(self) -> Optional[PrayerTimeSet]:
        plan = self.plan
        if plan is not None:
            return plan
        try:
            plan = self.service.get_prayer_times()
        except PrayerTimeError as exc:
            self._logger.warning("No prayer times to track: %s", exc)
            return None
        self.update(plan)
        return plan
