"""
APScheduler configuration for scheduled jobs
"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from jobs.calendar_sync import (
    CalendarSyncEngine,
    run_scheduled_calendar_sync,
    run_stale_sync_log_cleanup,
)

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

CALENDAR_SYNC_JOB_ID = "calendar_sync_pass"
STALE_LOG_CLEANUP_JOB_ID = "calendar_sync_stale_logs"


def register_calendar_sync_jobs(target: AsyncIOScheduler, engine: CalendarSyncEngine):
    """Add the calendar sync jobs to a scheduler (does not start it)."""
    interval = engine.config.scheduler_interval_minutes

    # Scheduling pass - every N minutes (default 15)
    # max_instances=1: a slow pass is never overlapped by the next one
    target.add_job(
        run_scheduled_calendar_sync,
        IntervalTrigger(minutes=interval),
        args=[engine],
        id=CALENDAR_SYNC_JOB_ID,
        name=f"Calendar Sync Pass (every {interval} min)",
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    # Stale sync log cleanup - Daily at 3:15 AM
    target.add_job(
        run_stale_sync_log_cleanup,
        CronTrigger(hour=3, minute=15),
        args=[engine],
        id=STALE_LOG_CLEANUP_JOB_ID,
        name="Daily Stale Sync Log Cleanup",
        replace_existing=True
    )

    if not engine.config.enabled:
        logger.info("Calendar sync disabled in settings - pass job will skip until enabled")


def start_scheduler(engine: CalendarSyncEngine):
    """Initialize and start the scheduler"""
    logger.info("Starting scheduler...")
    register_calendar_sync_jobs(scheduler, engine)
    scheduler.start()
    logger.info("Scheduler started successfully")


def shutdown_scheduler():
    """Shutdown the scheduler"""
    logger.info("Shutting down scheduler...")
    if scheduler.running:
        # Running jobs are drained by the sync engine, not here
        scheduler.shutdown(wait=False)
