"""
APScheduler integration for FastAPI.

Runs the briefing delivery pass in-process, for deployments without an
external cron runner. Disabled unless SCHEDULER_ENABLED is set.

Jobs:
- Briefing delivery: runs a batch pass every few minutes (config.yml
  ``schedule.tick_minutes``); each run is recorded in ``job_runs``
"""

from datetime import datetime

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from dailybrief.config import get_config, get_settings
from dailybrief.core.database import AsyncSessionLocal
from dailybrief.core.datetime_utils import utc_now
from dailybrief.core.logging import get_logger
from dailybrief.models.job_run import JobRun

logger = get_logger(__name__)

BRIEFING_DELIVERY_JOB_ID = "briefing_delivery"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def _record_job_result(
    job_id: str,
    started_at: datetime,
    outcome: str,
    processed: int | None = None,
    sent: int | None = None,
    error: str | None = None,
) -> None:
    """Record job execution result to database."""
    async with AsyncSessionLocal() as db:
        job_run = JobRun(
            job_id=job_id,
            scheduled_at=started_at,
            started_at=started_at,
            finished_at=utc_now(),
            outcome=outcome,
            processed=processed,
            sent=sent,
            error=error,
        )
        db.add(job_run)
        await db.commit()


async def briefing_delivery_job() -> None:
    """Run one scheduled delivery pass, same as the cron endpoint."""
    from dailybrief.services.briefing_dispatch import build_pipeline, run_scheduled_briefings
    from dailybrief.services.schedule_store import SqlScheduleStore

    started_at = utc_now()
    store = SqlScheduleStore(AsyncSessionLocal)
    pipeline = build_pipeline(AsyncSessionLocal)

    try:
        report = await run_scheduled_briefings(store, pipeline)
    except Exception as e:
        logger.bind(error=str(e)).error("briefing_delivery_job_failed")
        await _record_job_result(BRIEFING_DELIVERY_JOB_ID, started_at, "error", error=str(e))
        raise  # Re-raise so APScheduler records the failure

    if report.sent > 0 or report.failed > 0:
        logger.bind(sent=report.sent, failed=report.failed).info("briefing_delivery_job_completed")
    else:
        logger.debug("briefing_delivery_nothing_sent")

    await _record_job_result(
        BRIEFING_DELIVERY_JOB_ID,
        started_at,
        "success",
        processed=report.processed,
        sent=report.sent,
    )


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the in-process scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    tick_minutes = get_config().schedule.tick_minutes

    # Schedules are re-added on every start, so nothing needs persisting
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    await scheduler.add_schedule(
        briefing_delivery_job,
        CronTrigger(minute=f"*/{tick_minutes}"),
        id=BRIEFING_DELIVERY_JOB_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=[BRIEFING_DELIVERY_JOB_ID], tick_minutes=tick_minutes).info(
        "scheduler_started"
    )

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None
