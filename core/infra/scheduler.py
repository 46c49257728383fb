"""
Scheduler infrastructure: the optional owner of recurring triggers.

Jobs only call pipeline entry points; the scheduler keeps no pipeline state
of its own, so jobs live in the in-memory job store.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from croniter import croniter


logger = logging.getLogger(__name__)


def validate_cron_expression(cron_expression: str) -> bool:
    """Validate a five-field cron expression using croniter."""
    if len(cron_expression.split()) != 5:
        logger.error(f"Invalid cron expression '{cron_expression}': expected 5 fields")
        return False
    try:
        croniter(cron_expression)
    except (ValueError, KeyError) as e:
        logger.error(f"Invalid cron expression '{cron_expression}': {e}")
        return False
    return True


class Scheduler:
    """Async task scheduler wrapper around APScheduler."""

    def __init__(self, timezone: str = "UTC"):
        job_defaults = {
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,  # seconds
        }
        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone=timezone)
        self._timezone = timezone
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info(f"Scheduler started ({self._timezone})")

    async def stop(self) -> None:
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    def add_cron_job(self, func: Callable, cron_expression: str, job_id: Optional[str] = None, **kwargs) -> None:
        """Add a job that runs on a cron schedule (minute hour day month day_of_week)."""
        if not validate_cron_expression(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        trigger = CronTrigger.from_crontab(cron_expression, timezone=self._timezone)
        self._scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)
        logger.info(f"Added cron job: {job_id or func.__name__} ({cron_expression})")

    def list_jobs(self) -> Dict[str, Any]:
        jobs = {}
        for job in self._scheduler.get_jobs():
            next_run: Optional[datetime] = getattr(job, "next_run_time", None)
            jobs[job.id] = {
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            }
        return jobs
