"""Cron trigger for scheduled briefing delivery."""

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from dailybrief.config import get_settings
from dailybrief.core.errors import ScheduleStoreError
from dailybrief.core.logging import get_logger
from dailybrief.core.rate_limit import limiter
from dailybrief.dependencies import BriefingPipelineDep, CronCaller, ScheduleStoreDep
from dailybrief.services.briefing_dispatch import run_scheduled_briefings

logger = get_logger(__name__)

router = APIRouter()


def _cron_rate_limit() -> str:
    return get_settings().cron_rate_limit


@router.api_route(
    "/cron/send-briefings",
    methods=["GET", "POST"],
    dependencies=[CronCaller],
)
@limiter.limit(_cron_rate_limit)
async def send_briefings(
    request: Request,
    store: ScheduleStoreDep,
    pipeline: BriefingPipelineDep,
) -> dict[str, Any]:
    """
    Run one scheduled delivery pass over every enabled user.

    Called every few minutes by the platform cron runner (trusted user agent)
    or manually with `Authorization: Bearer <CRON_SECRET_TOKEN>`.
    Returns the number of schedules processed, briefings sent and one result
    per user.
    """
    logger.info("cron_send_briefings_started")

    try:
        report = await run_scheduled_briefings(store, pipeline)
    except ScheduleStoreError as e:
        logger.bind(error=str(e)).error("cron_send_briefings_store_error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database error",
        ) from e

    return report.model_dump(mode="json", by_alias=True, exclude_none=True)
