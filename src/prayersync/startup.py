from __future__ import annotations

from datetime import date, timedelta
import logging
from typing import Optional

from prayersync.cache import MultiTierCache
from prayersync.models import Coordinates
from prayersync.scheduler import BackgroundRefreshJob, BackgroundTaskManager


def warm_from_cache(cache: MultiTierCache, today: date) -> int:
    logger = logging.getLogger("Startup")
    # Load persisted days into memory so the first lookups work offline.
    count = cache.warm(since=today)
    logger.info("Warmed %s cached days from %s", count, today.isoformat())
    return count


def schedule_from_cache(
    cache: MultiTierCache,
    task_manager: BackgroundTaskManager,
    today: date,
    coordinates: Coordinates,
) -> int:
    """Schedule today's and tomorrow's prayers from whatever is already cached."""
    logger = logging.getLogger("Startup")
    service = task_manager.service
    snapshot = service.settings.current
    wanted = {
        service.cache_key(day, coordinates, snapshot)
        for day in (today, today + timedelta(days=1))
    }
    scheduled = 0
    for entry in cache.persisted_entries():
        if entry.key not in wanted or entry.fingerprint != snapshot.fingerprint():
            continue
        task_manager.schedule_day(entry.times)
        scheduled += 1
    logger.info("Scheduled %s days from cache", scheduled)
    return scheduled


def schedule_refresh(
    refresh_job: BackgroundRefreshJob, *, run_now: bool = True
) -> Optional[int]:
    logger = logging.getLogger("Startup")
    refresh_job.schedule()
    if not run_now:
        return None
    plans = refresh_job.run()
    logger.info("Initial refresh cached %s days", len(plans))
    return len(plans)
