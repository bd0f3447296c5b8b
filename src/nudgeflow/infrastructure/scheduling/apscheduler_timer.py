"""Timer implemented on APScheduler's background scheduler."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger


class APSchedulerTimer:
    """Recurring jobs on a thread-pool scheduler.

    Every job runs with `max_instances=1` and `coalesce=True`: a run that is still
    going when the next one is due makes APScheduler skip (and log) that firing.
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None, timezone: str = "UTC") -> None:
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def every(self, job_id: str, minutes: int, func: Callable[[], None]) -> None:
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=f"{job_id} every {minutes} min",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        logger.debug(f"Scheduled {job_id} every {minutes} min")

    def daily(self, job_id: str, hour: int, minute: int, tz: str, func: Callable[[], None]) -> None:
        self._scheduler.add_job(
            func,
            trigger=CronTrigger(hour=hour, minute=minute, timezone=tz),
            id=job_id,
            name=f"{job_id} daily at {hour:02d}:{minute:02d} {tz}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug(f"Scheduled {job_id} daily at {hour:02d}:{minute:02d} {tz}")

    def cancel(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        return True

    def next_run(self, job_id: str) -> Optional[datetime]:
        job = self._scheduler.get_job(job_id)
        if job is None:
            return None
        return getattr(job, "next_run_time", None)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Background scheduler started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            # Let in-flight ticks finish
            self._scheduler.shutdown(wait=True)
            logger.info("Background scheduler stopped")
