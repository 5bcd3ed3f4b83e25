"""Appointment maintenance scheduler.

Runs the maintenance sweep (auto-complete past appointments, release unpaid
holds) on a fixed interval. Each run repeats the sweep until a pass affects
no rows, so a backlog larger than one batch is cleared in a single run.

Disabled by default; the cron endpoint is the primary trigger.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from agenda.config import SchedulingConfig, settings
from agenda.database import async_session_maker
from agenda.services.maintenance import MaintenanceResult, run_maintenance_sweep

logger = logging.getLogger(__name__)

# Upper bound on passes per run
MAX_SWEEP_PASSES = 50

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def sweep_until_idle(config: Optional[SchedulingConfig] = None) -> MaintenanceResult:
    """Repeat the maintenance sweep until a pass reports nothing to do."""
    config = config or SchedulingConfig.from_settings(settings)
    totals = MaintenanceResult()

    try:
        async with async_session_maker() as db:
            for _ in range(MAX_SWEEP_PASSES):
                result = await run_maintenance_sweep(db, config=config)
                totals.completed_count += result.completed_count
                totals.canceled_count += result.canceled_count
                if result.total == 0:
                    break
            else:
                logger.warning(f"Maintenance sweep still busy after {MAX_SWEEP_PASSES} passes")
    except Exception as e:
        logger.error(f"Fatal error in maintenance sweep: {e}", exc_info=True)

    logger.info(
        f"Maintenance run complete. Completed: {totals.completed_count}, Canceled: {totals.canceled_count}"
    )
    return totals


def start_maintenance_scheduler():
    """Start the scheduler with the maintenance job."""
    global scheduler

    scheduler = get_scheduler()

    scheduler.add_job(
        sweep_until_idle,
        IntervalTrigger(minutes=settings.MAINTENANCE_INTERVAL_MINUTES),
        id="appointment_maintenance",
        name="Appointment maintenance sweep",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("Appointment maintenance scheduler started")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


def stop_maintenance_scheduler():
    """Stop the maintenance scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Appointment maintenance scheduler stopped")
