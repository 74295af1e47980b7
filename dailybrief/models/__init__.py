from dailybrief.models.base import Base
from dailybrief.models.calendar_settings import CalendarSettings
from dailybrief.models.context_snippet import ContextSnippet
from dailybrief.models.inbound_email import InboundEmail
from dailybrief.models.job_run import JobRun
from dailybrief.models.user_settings import UserSettings

__all__ = [
    "Base",
    "UserSettings",
    "CalendarSettings",
    "ContextSnippet",
    "InboundEmail",
    "JobRun",
]
