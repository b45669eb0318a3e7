"""
APScheduler Configuration

Background job scheduler for settlement housekeeping:
- Outbox dispatch (order notifications)
- Pending payment reconciliation
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

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
    'misfire_grace_time': 60,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


def start_scheduler():
    """Start the background job scheduler."""
    if scheduler.running:
        return

    from app.jobs.notification_jobs import dispatch_order_notifications
    from app.jobs.order_jobs import check_pending_payments

    scheduler.add_job(
        dispatch_order_notifications,
        'interval',
        seconds=settings.OUTBOX_DISPATCH_INTERVAL_SECONDS,
        id='dispatch_order_notifications',
        name='Dispatch Order Notifications',
        replace_existing=True,
    )

    scheduler.add_job(
        check_pending_payments,
        'interval',
        minutes=settings.PENDING_PAYMENT_CHECK_INTERVAL_MINUTES,
        id='check_pending_payments',
        name='Check Pending Payments',
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    for job in scheduler.get_jobs():
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
