"""Gather what one user's briefing is built from."""

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dailybrief.config import get_config
from dailybrief.core.datetime_utils import ensure_utc
from dailybrief.core.logging import get_logger
from dailybrief.models.calendar_settings import CalendarSettings
from dailybrief.models.context_snippet import ContextSnippet
from dailybrief.models.inbound_email import InboundEmail
from dailybrief.schemas.briefing import BriefingInputs, EmailItem
from dailybrief.schemas.schedule import ScheduleRecord
from dailybrief.services.event_source import EventSource

logger = get_logger(__name__)


def normalize_emails(rows: Iterable[InboundEmail]) -> list[EmailItem]:
    """Normalize stored emails to ``{from, subject, content, date}``.

    Content prefers the reply text with quoted history stripped, then the
    full text body.
    """
    return [
        EmailItem(
            from_=row.from_email or "",
            subject=row.subject or "No subject",
            content=row.stripped_text_reply or row.text_body or "No content",
            date=ensure_utc(row.created_at),
        )
        for row in rows
    ]


async def gather_briefing_inputs(
    session_factory: async_sessionmaker[AsyncSession],
    event_source: EventSource,
    record: ScheduleRecord,
) -> BriefingInputs:
    """Load calendar events, active notes and recent emails for ``record``'s user.

    Events are only requested when the user has selected at least one
    calendar.
    """
    briefing_config = get_config().briefing

    async with session_factory() as session:
        calendar_settings = await session.get(CalendarSettings, record.user_id)

        snippet_rows = await session.execute(
            select(ContextSnippet.content)
            .where(ContextSnippet.user_id == record.user_id, ContextSnippet.active.is_(True))
            .order_by(ContextSnippet.created_at)
        )
        notes = [content for content in snippet_rows.scalars().all() if content]

        email_rows = await session.execute(
            select(InboundEmail)
            .where(InboundEmail.user_id == record.user_id)
            .order_by(InboundEmail.created_at.desc())
            .limit(briefing_config.max_emails)
        )
        emails = normalize_emails(email_rows.scalars().all())

    selected = list(calendar_settings.selected_calendars or []) if calendar_settings else []
    days_in_advance = (
        calendar_settings.days_in_advance
        if calendar_settings and calendar_settings.days_in_advance
        else briefing_config.default_days_in_advance
    )

    events = []
    if selected:
        events = await event_source.fetch_events(
            record.user_id, selected, days_in_advance, record.timezone
        )

    logger.bind(
        user_id=str(record.user_id),
        events=len(events),
        notes=len(notes),
        emails=len(emails),
    ).info("briefing_inputs_gathered")

    return BriefingInputs(
        events=events,
        notes=notes,
        emails=emails,
        timezone=record.timezone,
        lookahead_days=days_in_advance,
    )
