from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from docere.app_state import AppContext
from docere.config import settings
from docere.metrics import run_timed_job_async


logger = logging.getLogger(__name__)

EXPIRY_SWEEP_JOB_ID = 'attendance_expiry_sweep'

scheduler: AsyncIOScheduler | None = None


async def attendance_expiry_sweep_job(ctx: AppContext) -> None:
    await run_timed_job_async(EXPIRY_SWEEP_JOB_ID, ctx.attendance.sweep_expired)


def build_scheduler(ctx: AppContext) -> AsyncIOScheduler:
    built = AsyncIOScheduler(timezone=settings.app_timezone)
    built.add_job(
        attendance_expiry_sweep_job,
        'interval',
        seconds=settings.attendance_sweep_interval_seconds,
        id=EXPIRY_SWEEP_JOB_ID,
        args=[ctx],
        max_instances=1,
        coalesce=True,
    )
    return built


def start_scheduler(ctx: AppContext) -> AsyncIOScheduler | None:
    """Start the expiry sweep on the running event loop; a fresh scheduler per start."""
    global scheduler
    if not settings.enable_expiry_sweep:
        logger.info('scheduler_disabled job=%s', EXPIRY_SWEEP_JOB_ID)
        return None
    stop_scheduler()
    scheduler = build_scheduler(ctx)
    scheduler.start()
    logger.info(
        'scheduler_started job=%s interval_seconds=%s',
        EXPIRY_SWEEP_JOB_ID,
        settings.attendance_sweep_interval_seconds,
    )
    return scheduler


def stop_scheduler() -> None:
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
    scheduler = None
