"""
APScheduler Configuration

Background job scheduler for the fulfillment core. Runs in-process on the
host's asyncio loop; jobs open their own database sessions.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from fulfillment.config import settings

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


async def run_reservation_sweep():
    """
    Wrapper called by APScheduler.

    A failed run is logged and retried at the next interval.
    """
    from fulfillment.jobs.reservation_jobs import release_abandoned_reservations

    try:
        await release_abandoned_reservations()
    except Exception as e:
        logger.error(f"Job 'release_abandoned_reservations' failed: {e}")


def register_jobs():
    """Register all scheduled jobs (idempotent)."""
    # Release abandoned and refunded reservations
    scheduler.add_job(
        run_reservation_sweep,
        'interval',
        minutes=settings.RESERVATION_SWEEP_INTERVAL_MINUTES,
        id='release_abandoned_reservations',
        name='Release Abandoned Reservations',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler. Must be called with a running event loop."""
    if not scheduler.running:
        register_jobs()
        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
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
    status = []
    for job in jobs:
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, 'next_run_time', None)
        status.append({
            'id': job.id,
            'name': job.name,
            'next_run_time': str(next_run) if next_run else None,
            'trigger': str(job.trigger),
        })
    return status
