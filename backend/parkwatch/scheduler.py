"""
Scheduler driver.

A tick walks the enabled searches (or one targeted search) and runs the ones
that are due. Ticks are triggered by the APScheduler interval job below, by the
scheduler webhook, or by the `monitor` CLI command.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from parkwatch.config import get_settings
from parkwatch.exceptions import NotFoundError
from parkwatch.schemas import Search
from parkwatch.services.runtime import get_executor
from parkwatch.utils import utcnow

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def should_run(search: Search, now: Optional[datetime] = None) -> bool:
    """A search is due when it never ran or its next_run has passed."""
    next_run = search.schedule.next_run
    if next_run is None:
        return True
    return (now or utcnow()) >= next_run


async def run_scheduler_tick(executor, persistence, search_id: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Run every due search once.

    With search_id only that search is considered (enabled or not).
    Returns counts of executed, skipped and failed searches.

    Raises:
        NotFoundError: search_id was given and does not exist
    """
    now = now or utcnow()
    summary = {"executed": 0, "skipped": 0, "failed": 0}

    if search_id is not None:
        search = await persistence.get_search(search_id)
        if search is None:
            raise NotFoundError("Search", search_id)
        candidates = [search]
    else:
        candidates = await persistence.get_all_searches(enabled=True)

    for search in candidates:
        if not should_run(search, now):
            logger.info(
                f"Skipping search {search.name} ({search.id}), next run at {search.schedule.next_run}"
            )
            summary["skipped"] += 1
            continue

        try:
            await executor.execute_search(search.id)
            summary["executed"] += 1
        except Exception as e:
            logger.error(f"Scheduled execution of search {search.id} failed: {e}")
            summary["failed"] += 1

    logger.info(
        f"Scheduler tick finished: {summary['executed']} executed, "
        f"{summary['skipped']} skipped, {summary['failed']} failed"
    )
    return summary


async def scheduled_tick():
    """APScheduler job: run all due searches through the shared executor."""
    executor = get_executor()
    await run_scheduler_tick(executor, executor.persistence)


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            timezone="UTC",
        )
        _setup_scheduled_jobs()

    return scheduler


def _setup_scheduled_jobs():
    interval = get_settings().scheduler_interval_minutes

    scheduler.add_job(
        scheduled_tick,
        trigger=IntervalTrigger(minutes=interval),
        id='search_tick',
        name=f'Run due searches (every {interval} min)',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled job configured: due searches every {interval} minutes")


def start_scheduler():
    """Start the scheduler (call this from FastAPI startup)."""
    scheduler_instance = get_scheduler()

    if not scheduler_instance.running:
        scheduler_instance.start()
        logger.info("APScheduler started successfully")

        for job in scheduler_instance.get_jobs():
            logger.info(f"Next '{job.name}': {job.next_run_time}")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """Stop the scheduler (call this from FastAPI shutdown)."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler stopped")
    scheduler = None


def get_scheduler_status() -> dict:
    if scheduler is None or not scheduler.running:
        return {
            "running": False,
            "jobs": [],
            "next_run": None
        }

    jobs = []
    next_run = None

    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        })
        if job.next_run_time and (next_run is None or job.next_run_time < next_run):
            next_run = job.next_run_time

    return {
        "running": True,
        "jobs": jobs,
        "next_run": next_run.isoformat() if next_run else None
    }
