from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from prayersync.errors import PrayerTimeError
from prayersync.models import PrayerKind, PrayerTimeSet
from prayersync.prayer_times import PrayerTimeService


Handler = Callable[[PrayerTimeSet, PrayerKind], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BackgroundTaskManager:
    """One APScheduler job per upcoming prayer, rebuilt whenever a day's set changes."""

    scheduler: BackgroundScheduler
    service: PrayerTimeService
    handler: Handler
    now_provider: Callable[[], datetime] = utc_now
    misfire_grace_seconds: int = 60

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def start(self) -> None:
        # Keep scheduler startup explicit so tests can inject paused schedulers.
        if not self.scheduler.running:
            self.scheduler.start()

    def schedule_today(self) -> Optional[PrayerTimeSet]:
        try:
            plan = self.service.get_prayer_times()
        except PrayerTimeError as exc:
            self._logger.error("Cannot schedule today's prayers: %s", exc)
            return None
        self.schedule_day(plan)
        return plan

    def schedule_day(self, plan: PrayerTimeSet) -> List[str]:
        self._remove_jobs_for_date(plan.date)
        scheduled: List[str] = []
        now = self.now_provider()
        for prayer in plan.prayers:
            if prayer.time <= now:
                # Skip past events so we never fire on stale data.
                continue
            job_id = self._job_id(prayer.kind, plan.date)
            self.scheduler.add_job(
                self.handler,
                trigger=DateTrigger(run_date=prayer.time),
                id=job_id,
                args=[plan, prayer.kind],
                replace_existing=True,
                misfire_grace_time=self.misfire_grace_seconds,
                coalesce=True,
                max_instances=1,
            )
            scheduled.append(job_id)
            self._logger.info("Scheduled %s at %s", job_id, prayer.time.isoformat())
        return scheduled

    def _remove_jobs_for_date(self, day: date) -> None:
        suffix = day.strftime("%Y%m%d")
        for job in self.scheduler.get_jobs():
            if job.id.startswith("prayer_") and job.id.endswith(suffix):
                # Clearing by suffix avoids stale jobs surviving a settings change.
                self._logger.info("Removing job %s", job.id)
                self.scheduler.remove_job(job.id)

    def _job_id(self, kind: PrayerKind, day: date) -> str:
        return f"prayer_{kind.value}_{day.strftime('%Y%m%d')}"


@dataclass
class BackgroundRefreshJob:
    """Periodically prefetches upcoming days so lookups stay offline-capable."""

    scheduler: BackgroundScheduler
    service: PrayerTimeService
    prefetch_days: int = 7
    interval_hours: int = 6
    task_manager: Optional[BackgroundTaskManager] = None
    misfire_grace_seconds: int = 300
    keep_past_days: int = 1

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def schedule(self, *, hour: int = 0, minute: int = 5) -> None:
        self.scheduler.add_job(
            self.run,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id="refresh_interval",
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_seconds,
            coalesce=True,
            max_instances=1,
        )
        # Daily refresh rolls the window forward right after midnight.
        self.scheduler.add_job(
            self.run,
            trigger=CronTrigger(hour=hour, minute=minute),
            id="refresh_daily",
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_seconds,
            coalesce=True,
            max_instances=1,
        )

    def run(self) -> List[PrayerTimeSet]:
        self.service.prune_expired(self.keep_past_days)
        try:
            plans = self.service.prefetch(self.prefetch_days)
        except PrayerTimeError as exc:
            self._logger.error("Background refresh failed: %s", exc)
            return []
        if self.task_manager is not None:
            for plan in plans[:2]:
                self.task_manager.schedule_day(plan)
        self._logger.info("Background refresh cached %s days", len(plans))
        return plans
