from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from prayersync.catalog import CalculationMethod, Madhab
from prayersync.models import Coordinates, PrayerTimeSet
from prayersync.scheduler import BackgroundRefreshJob, BackgroundTaskManager


class FixedNow:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now


class FakeService:
    def __init__(self, plans=None) -> None:
        self.plans = plans or []
        self.prefetch_calls = []
        self.prune_calls = []

    def prune_expired(self, keep_days: int = 1) -> int:
        self.prune_calls.append(keep_days)
        return 0

    def prefetch(self, days: int):
        self.prefetch_calls.append(days)
        return self.plans[:days]


def _plan_for(day: date, fajr_hour: int = 4) -> PrayerTimeSet:
    base = datetime(day.year, day.month, day.day, fajr_hour, 0, tzinfo=timezone.utc)
    return PrayerTimeSet(
        date=day,
        coordinates=Coordinates(21.4225, 39.8262),
        method=CalculationMethod.UMM_AL_QURA,
        madhab=Madhab.SHAFI,
        fajr=base,
        sunrise=base + timedelta(hours=1, minutes=20),
        dhuhr=base + timedelta(hours=8),
        asr=base + timedelta(hours=11, minutes=30),
        sunset=base + timedelta(hours=14, minutes=45),
        maghrib=base + timedelta(hours=14, minutes=45),
        isha=base + timedelta(hours=16, minutes=15),
    )


def _manager(scheduler, now: datetime) -> BackgroundTaskManager:
    return BackgroundTaskManager(
        scheduler=scheduler,
        service=FakeService(),
        handler=lambda *_: None,
        now_provider=FixedNow(now).now,
    )


def test_schedule_day_only_future_jobs() -> None:
    today = date(2024, 6, 21)
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    manager = _manager(scheduler, datetime(2024, 6, 21, 13, 0, tzinfo=timezone.utc))

    scheduled = manager.schedule_day(_plan_for(today))

    assert scheduled == ["prayer_asr_20240621", "prayer_maghrib_20240621", "prayer_isha_20240621"]
    assert sorted(job.id for job in scheduler.get_jobs()) == sorted(scheduled)
    scheduler.shutdown(wait=False)


def test_reschedule_does_not_duplicate_jobs() -> None:
    today = date(2024, 6, 21)
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    manager = _manager(scheduler, datetime(2024, 6, 21, 0, 0, tzinfo=timezone.utc))

    manager.schedule_day(_plan_for(today))
    manager.schedule_day(_plan_for(today, fajr_hour=3))

    jobs = scheduler.get_jobs()
    assert len(jobs) == 5
    fajr = scheduler.get_job("prayer_fajr_20240621")
    assert fajr.trigger.run_date == datetime(2024, 6, 21, 3, 0, tzinfo=timezone.utc)
    scheduler.shutdown(wait=False)


def test_rescheduling_one_day_keeps_the_next() -> None:
    today = date(2024, 6, 21)
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    manager = _manager(scheduler, datetime(2024, 6, 21, 0, 0, tzinfo=timezone.utc))

    manager.schedule_day(_plan_for(today))
    manager.schedule_day(_plan_for(today + timedelta(days=1)))
    manager.schedule_day(_plan_for(today))

    assert len(scheduler.get_jobs()) == 10
    scheduler.shutdown(wait=False)


def test_refresh_job_registers_interval_and_daily_jobs() -> None:
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    job = BackgroundRefreshJob(scheduler=scheduler, service=FakeService(), interval_hours=4)

    job.schedule(hour=0, minute=10)

    ids = sorted(existing.id for existing in scheduler.get_jobs())
    assert ids == ["refresh_daily", "refresh_interval"]
    assert scheduler.get_job("refresh_interval").trigger.interval == timedelta(hours=4)
    scheduler.shutdown(wait=False)


def test_refresh_run_prefetches_and_schedules_two_days() -> None:
    today = date(2024, 6, 21)
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    plans = [_plan_for(today + timedelta(days=n)) for n in range(7)]
    service = FakeService(plans)
    manager = _manager(scheduler, datetime(2024, 6, 21, 0, 0, tzinfo=timezone.utc))
    job = BackgroundRefreshJob(
        scheduler=scheduler, service=service, prefetch_days=7, task_manager=manager
    )

    result = job.run()

    assert result == plans
    assert service.prefetch_calls == [7]
    assert service.prune_calls == [1]
    suffixes = {existing.id.rsplit("_", 1)[1] for existing in scheduler.get_jobs()}
    assert suffixes == {"20240621", "20240622"}
    scheduler.shutdown(wait=False)
