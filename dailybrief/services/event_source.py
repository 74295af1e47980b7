"""Calendar event sources.

Provider retrieval (OAuth, pagination, token refresh) lives outside this
service; the briefing pipeline only sees the ``EventSource`` protocol.
``SampleEventSource`` produces a fixed demo week for accounts without a
connected calendar provider and for local runs.
"""

import uuid
from datetime import UTC, date, datetime, time, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

from dailybrief.core.logging import get_logger
from dailybrief.schemas.briefing import CalendarEvent

logger = get_logger(__name__)


class EventSource(Protocol):
    async def fetch_events(
        self,
        user_id: uuid.UUID,
        selected_calendars: list[str],
        days_in_advance: int,
        timezone: str,
    ) -> list[CalendarEvent]: ...


SAMPLE_CALENDARS: dict[str, str] = {
    "primary": "Personal",
    "work": "Work",
    "family": "Family",
}

# (day offset, hour, minute, duration minutes, title, description, calendar)
_SAMPLE_TIMED: list[tuple[int, int, int, int, str, str, str]] = [
    (0, 9, 15, 30, "Daily Standup", "daily team sync - demo the new feature", "work"),
    (0, 17, 0, 60, "Alex: check beehive", "inspect frames, look for queen", "family"),
    (0, 19, 30, 90, "Fermentation Club Meeting", "bring pineapple rinds", "primary"),
    (1, 10, 30, 60, "Production Issue Investigation", "memory leak in payment service", "work"),
    (1, 14, 30, 45, "Dental Appointment", "regular cleaning with Dr. Chen", "primary"),
    (1, 18, 0, 120, "Rio's robotics comp", "remember extra batteries", "family"),
    (2, 14, 0, 90, "Code Review Session", "review 3 PRs for the auth refactor", "work"),
    (3, 9, 0, 15, "On-call Rotation Begins", "primary oncall for payment systems", "work"),
    (3, 19, 0, 90, 'Book Club - "Klara and the Sun"', "monthly book club at Sarah's", "primary"),
]

# (day offset, length in days, title, calendar)
_SAMPLE_ALL_DAY: list[tuple[int, int, str, str]] = [
    (4, 1, "Recycling pickup", "family"),
    (5, 3, "Team offsite", "work"),
]


class SampleEventSource:
    """Deterministic demo calendar anchored on the user's local today."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now

    async def fetch_events(
        self,
        user_id: uuid.UUID,
        selected_calendars: list[str],
        days_in_advance: int,
        timezone: str,
    ) -> list[CalendarEvent]:
        tz = ZoneInfo(timezone)
        now = self._now or datetime.now(UTC)
        today = now.astimezone(tz).date()
        selected = set(selected_calendars)

        events: list[CalendarEvent] = []
        for offset, hour, minute, duration, title, description, calendar in _SAMPLE_TIMED:
            if offset >= days_in_advance or calendar not in selected:
                continue
            start = datetime.combine(today + timedelta(days=offset), time(hour, minute), tzinfo=tz)
            events.append(
                CalendarEvent(
                    title=title,
                    start=start.astimezone(UTC),
                    end=(start + timedelta(minutes=duration)).astimezone(UTC),
                    calendar=SAMPLE_CALENDARS[calendar],
                    description=description,
                )
            )

        for offset, length, title, calendar in _SAMPLE_ALL_DAY:
            if offset >= days_in_advance or calendar not in selected:
                continue
            start_date: date = today + timedelta(days=offset)
            events.append(
                CalendarEvent(
                    title=title,
                    start_date=start_date,
                    end_date=start_date + timedelta(days=length),
                    calendar=SAMPLE_CALENDARS[calendar],
                )
            )

        events.sort(key=lambda e: e.start or datetime.combine(e.start_date, time(), tzinfo=tz))  # type: ignore[arg-type]
        logger.bind(user_id=str(user_id), count=len(events)).debug("sample_events_generated")
        return events
