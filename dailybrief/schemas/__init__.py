from dailybrief.schemas.briefing import BriefingEmail, BriefingInputs, CalendarEvent, EmailItem
from dailybrief.schemas.schedule import (
    Decision,
    OutcomeStatus,
    RunReport,
    ScheduleRecord,
    ScheduleSettingsResponse,
    ScheduleSettingsUpdate,
    UserOutcome,
)

__all__ = [
    "BriefingEmail",
    "BriefingInputs",
    "CalendarEvent",
    "EmailItem",
    "Decision",
    "OutcomeStatus",
    "RunReport",
    "ScheduleRecord",
    "ScheduleSettingsResponse",
    "ScheduleSettingsUpdate",
    "UserOutcome",
]
