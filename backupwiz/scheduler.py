"""
Scheduled tasks for the sync engine.

Two cron jobs run inside the FastAPI process (or ``backupwiz scheduler``):
the tenant sync and the health check. Each job allows a single instance, so
a slow sync run is never overlapped by the next tick.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backupwiz.core.config import get_settings
from backupwiz.database import async_session
from backupwiz.services.health_monitor import HealthMonitor
from backupwiz.services.sync_service import SyncService

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def sync_all_tenants_task():
    """Task to sync all active tenants"""
    logger.info("=== SCHEDULED SYNC STARTING ===")
    report = await SyncService(async_session, get_settings()).run_all()
    logger.info(
        f"Scheduled sync completed: {report.success_count} tenants succeeded, {report.failure_count} failed"
    )


async def health_check_task():
    """Task to evaluate sync health and send alerts"""
    report = await HealthMonitor(async_session, settings=get_settings()).check_all()
    logger.info(f"Scheduled health check: {report.level.value}, {report.alerts_sent} alerts sent")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler() -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if settings.SYNC_SCHEDULE_ENABLED:
        scheduler.add_job(
            sync_all_tenants_task,
            CronTrigger.from_crontab(settings.SYNC_SCHEDULE),
            id="sync_all_tenants",
            name="Sync All Tenants",
            replace_existing=True,
            max_instances=1,  # Only one sync at a time
            misfire_grace_time=300,
        )
        logger.info(f"Scheduled sync job added with schedule: {settings.SYNC_SCHEDULE}")

        scheduler.add_job(
            health_check_task,
            CronTrigger.from_crontab(settings.HEALTH_CHECK_SCHEDULE),
            id="sync_health_check",
            name="Sync Health Check",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(f"Health check job added with schedule: {settings.HEALTH_CHECK_SCHEDULE}")
    else:
        logger.info("Scheduled sync is disabled. Set SYNC_SCHEDULE_ENABLED=true to enable")

    return scheduler


async def start_scheduler():
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")

        jobs = scheduler.get_jobs()
        if jobs:
            logger.info(f"Active scheduled jobs: {len(jobs)}")
            for job in jobs:
                logger.info(f"  - {job.name}: {job.trigger}")
        else:
            logger.info("No scheduled jobs configured")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped successfully")
    scheduler = None


async def get_scheduler_status():
    """Get current scheduler status and job information"""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info,
    }
