"""APScheduler integration.

Runs the DCA tick and the trailing-stop tick as two interval jobs.
"""

import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dca_service.engine.report import TickReport
from dca_service.errors import ConfigurationError
from dca_service.utils.constants import INTERVAL_HOURS

logger = logging.getLogger(__name__)

DCA_JOB_ID = "dca_tick"
TRAILING_STOP_JOB_ID = "trailing_stop_tick"


def _get_trigger(interval: str) -> IntervalTrigger:
    # Support arbitrary "<N>m" schedule intervals
    if interval.endswith("m") and interval[:-1].isdigit():
        return IntervalTrigger(minutes=int(interval[:-1]))
    hours = INTERVAL_HOURS.get(interval, 0.5)
    if hours < 1:
        return IntervalTrigger(minutes=int(hours * 60))
    return IntervalTrigger(hours=hours)


class TickScheduler:
    """Owns an AsyncIOScheduler and the two tick jobs."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self.scheduler = scheduler or AsyncIOScheduler()

    def add_tick_job(self, job_id: str, tick: Callable[[], Awaitable[TickReport]], interval: str):
        """Add or replace an interval job running `tick`."""
        # replace_existing does not cover jobs still pending before start()
        self.remove_tick_job(job_id)
        self.scheduler.add_job(
            _run_tick,
            trigger=_get_trigger(interval),
            args=[job_id, tick],
            id=job_id,
            name=job_id.replace("_", " "),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        logger.info(f"Scheduled {job_id} every {interval}")

    def remove_tick_job(self, job_id: str):
        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
            logger.info(f"Removed job {job_id}")

    def start(self):
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self):
        """Shut down the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def status(self) -> dict:
        """Return current scheduler state."""
        jobs = self.scheduler.get_jobs()
        return {
            "running": self.scheduler.running,
            "job_count": len(jobs),
            "jobs": [
                {
                    "id": j.id,
                    "name": j.name,
                    "next_run": str(getattr(j, "next_run_time", None)) if getattr(j, "next_run_time", None) else None,
                    "trigger": str(j.trigger),
                }
                for j in jobs
            ],
        }


async def _run_tick(job_id: str, tick: Callable[[], Awaitable[TickReport]]) -> TickReport | None:
    """Job body: a failed tick is logged and the scheduler keeps running."""
    try:
        return await tick()
    except ConfigurationError as e:
        logger.error(f"[{job_id}] Tick aborted: {e}", exc_info=True)
    except Exception as e:
        logger.error(f"[{job_id}] Tick failed: {e}", exc_info=True)
    return None
