"""APScheduler integration.

Runs the signal refresh job on its own interval, independent of the monitor
tick. The monitor only ever reads the generator's pending signal.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

SIGNAL_JOB_ID = "signal_refresh"

scheduler = AsyncIOScheduler()


async def _refresh_signal(generator):
    try:
        await generator.refresh()
    except Exception as e:
        logger.error(f"Signal refresh failed: {e}")


def add_signal_job(generator, interval_seconds: int):
    """Add or replace the signal refresh job."""
    if scheduler.get_job(SIGNAL_JOB_ID):
        scheduler.remove_job(SIGNAL_JOB_ID)

    scheduler.add_job(
        _refresh_signal,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[generator],
        id=SIGNAL_JOB_ID,
        name="Signal refresh",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    logger.info(f"Scheduled signal refresh every {interval_seconds}s")


def remove_signal_job():
    if scheduler.get_job(SIGNAL_JOB_ID):
        scheduler.remove_job(SIGNAL_JOB_ID)
        logger.info("Removed signal refresh job")


def start_scheduler():
    """Start the scheduler (jobs are added when the bot starts)."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


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
