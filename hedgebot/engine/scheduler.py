"""APScheduler integration for FastAPI.

Runs the threshold monitor's two sweeps as independent interval jobs.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from hedgebot.config import settings
from hedgebot.engine.threshold_monitor import ThresholdMonitor

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

PRICE_JOB_ID = "price_threshold_sweep"
PERCENT_JOB_ID = "percent_change_sweep"


def _add_sweep_job(func, job_id: str, name: str, interval_seconds: int):
    if scheduler.get_job(job_id):
        scheduler.remove_job(job_id)

    scheduler.add_job(
        func,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=job_id,
        name=name,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=interval_seconds,
    )
    logger.info(f"Scheduled {name} every {interval_seconds}s")


def add_monitor_jobs(monitor: ThresholdMonitor):
    """Add or replace both sweep jobs for a monitor."""
    _add_sweep_job(
        monitor.check_price_thresholds,
        PRICE_JOB_ID,
        "Price threshold sweep",
        settings.price_check_interval_seconds,
    )
    _add_sweep_job(
        monitor.check_percent_changes,
        PERCENT_JOB_ID,
        "Percent change sweep",
        settings.percent_check_interval_seconds,
    )


def start_scheduler(monitor: ThresholdMonitor):
    """Register the sweeps and start the scheduler."""
    add_monitor_jobs(monitor)
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
