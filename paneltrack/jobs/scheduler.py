"""
APScheduler Configuration

Background job scheduler for manufacturing order monitoring.

- MO monitor sweeps IN_PROGRESS orders at a short interval
- Alert cleanup enforces the retention period
- Failures are logged and never stop the scheduler
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from paneltrack.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_mo_monitor():
    """Scheduler entry point for the MO monitor sweep."""
    from paneltrack.jobs.mo_jobs import monitor_active_orders

    try:
        result = await monitor_active_orders()
        logger.info(
            f"Job 'mo_monitor' completed: "
            f"{result.get('successful', 0)}/{result.get('order_count', 0)} orders successful"
        )
    except Exception as e:
        logger.error(f"Job 'mo_monitor' failed: {e}")


async def run_alert_cleanup():
    from paneltrack.jobs.mo_jobs import cleanup_resolved_alerts

    try:
        deleted = await cleanup_resolved_alerts()
        logger.info(f"Job 'alert_cleanup' completed: {deleted} alerts deleted")
    except Exception as e:
        logger.error(f"Job 'alert_cleanup' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        scheduler.add_job(
            run_mo_monitor,
            'interval',
            seconds=settings.MO_MONITOR_INTERVAL_SECONDS,
            id='mo_monitor',
            name='MO Progress / Alert / Closure Monitor',
            replace_existing=True,
        )

        scheduler.add_job(
            run_alert_cleanup,
            'interval',
            minutes=settings.ALERT_CLEANUP_INTERVAL_MINUTES,
            id='alert_cleanup',
            name='Closed Alert Cleanup',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
