from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dailybrief.config import AppConfig, Settings, get_config, get_settings
from dailybrief.core.database import get_db, get_session_factory
from dailybrief.core.logging import get_logger
from dailybrief.core.security import is_trusted_trigger, verify_bearer_token
from dailybrief.services.briefing_dispatch import BriefingPipeline, build_pipeline
from dailybrief.services.schedule_store import SqlScheduleStore

logger = get_logger(__name__)

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]


def get_schedule_store(session_factory: SessionFactory) -> SqlScheduleStore:
    return SqlScheduleStore(session_factory)


def get_briefing_pipeline(session_factory: SessionFactory) -> BriefingPipeline:
    return build_pipeline(session_factory)


async def verify_cron_caller(
    settings: AppSettings,
    user_agent: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Allow the platform cron runner or a caller holding the cron secret, 401 otherwise."""
    if is_trusted_trigger(user_agent, settings):
        return
    if verify_bearer_token(authorization, settings):
        return

    logger.bind(user_agent=user_agent or "").warning("cron_unauthorized")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )


# Type aliases for cron endpoints
ScheduleStoreDep = Annotated[SqlScheduleStore, Depends(get_schedule_store)]
BriefingPipelineDep = Annotated[BriefingPipeline, Depends(get_briefing_pipeline)]
CronCaller = Depends(verify_cron_caller)
