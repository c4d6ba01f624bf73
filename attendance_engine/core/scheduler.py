"""Periodic jobs. Currently only the justification auto-approval sweep."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.config import settings
from attendance_engine.core.exceptions import ServiceError
from attendance_engine.db.session import AsyncSessionLocal

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()

AUTO_APPROVAL_JOB_ID = "justification_auto_approval"


async def run_auto_approval_sweep() -> None:
    from attendance_engine.api.v1.justifications import service as justification_service

    async with AsyncSessionLocal() as db:
        try:
            result = await justification_service.sweep_auto_approvals(db)
        except ServiceError as e:
            # No active configuration yet; try again on the next tick.
            logger.warning("Auto-approval sweep skipped: %s", e.message)
            return
    if result.enabled:
        logger.info("Auto-approval sweep finished: %d approved, %d failed", result.approved, result.failed)


def start_scheduler() -> None:
    if not settings.auto_approval_sweep_enabled:
        logger.info("Auto-approval sweep disabled")
        return
    if not scheduler.running:
        scheduler.start()
    scheduler.add_job(
        run_auto_approval_sweep,
        IntervalTrigger(minutes=settings.auto_approval_sweep_interval_minutes),
        id=AUTO_APPROVAL_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Auto-approval sweep scheduled every %d minutes", settings.auto_approval_sweep_interval_minutes)


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
