"""Turn gathered inputs into briefing text with the chat model."""

from datetime import UTC, datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

import backoff
from httpx import HTTPStatusError
from openai import APIError, AsyncOpenAI, RateLimitError

from dailybrief.config import get_config, get_settings
from dailybrief.core.errors import BriefingGenerationError
from dailybrief.core.logging import get_logger
from dailybrief.schemas.briefing import BriefingInputs, CalendarEvent, EmailItem

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a friendly assistant writing a short daily briefing.

You receive the current date and time, calendar entries for the coming days,
personal notes and recent forwarded emails.

Rules:
- Never invent or assume details
- Focus on today: what is happening today and what needs preparing today
- Ignore events that have already ended
- Use notes and emails as context only; mention them when directly relevant
- Keep it easy to scan: short sections, bullet points, no filler

Output markdown with the sections "Today", "Prep for tomorrow" and "Coming up"."""


class BriefingAssembler(Protocol):
    async def assemble(self, inputs: BriefingInputs) -> str: ...


def expand_multi_day_events(events: list[CalendarEvent]) -> list[CalendarEvent]:
    """Split all-day events spanning several days into one entry per day.

    Each entry is titled ``"<title> (Day i of n)"``. Timed and single-day
    events pass through unchanged.
    """
    expanded: list[CalendarEvent] = []
    for event in events:
        if not (event.is_all_day and event.start_date and event.end_date):
            expanded.append(event)
            continue

        last_day = event.end_date - timedelta(days=1)
        if last_day <= event.start_date:
            expanded.append(event)
            continue

        total = (last_day - event.start_date).days + 1
        for i in range(total):
            day = event.start_date + timedelta(days=i)
            expanded.append(
                event.model_copy(
                    update={
                        "title": f"{event.title} (Day {i + 1} of {total})",
                        "start_date": day,
                        "end_date": day + timedelta(days=1),
                    }
                )
            )
    return expanded


def format_event_time(event: CalendarEvent, timezone: str) -> str:
    """Weekday, date and time of an event in the user's timezone."""
    if event.start is not None:
        tz = ZoneInfo(timezone)
        start = event.start.astimezone(tz)
        text = f"{start:%A}, {start:%Y-%m-%d %H:%M}"
        if event.end is not None:
            text += f" - {event.end.astimezone(tz):%H:%M}"
        return text
    if event.start_date is not None:
        # All-day dates are already calendar days; no conversion
        return f"{event.start_date:%A}, {event.start_date:%Y-%m-%d} (all day)"
    return "unknown"


def relative_age(when: datetime, now: datetime) -> str:
    """Hours ago under a day, whole days ago beyond."""
    hours = int((now - when).total_seconds() // 3600)
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


def _events_section(events: list[CalendarEvent], timezone: str) -> str:
    if not events:
        return "No upcoming events."
    return "\n".join(
        f"{i}. {event.title or 'Untitled'} ({format_event_time(event, timezone)})"
        for i, event in enumerate(expand_multi_day_events(events), 1)
    )


def _notes_section(notes: list[str]) -> str:
    if not notes:
        return ""
    lines = "\n".join(f"{i}. {note}" for i, note in enumerate(notes, 1))
    return f"\n\nPersonal context and notes:\n{lines}"


def _emails_section(emails: list[EmailItem], now: datetime, max_emails: int, char_limit: int) -> str:
    if not emails:
        return ""

    latest = sorted(emails, key=lambda e: e.date, reverse=True)[:max_emails]
    entries = []
    for i, email in enumerate(latest, 1):
        content = email.content
        if len(content) > char_limit:
            content = content[:char_limit] + "..."
        entries.append(
            f"{i}. From: {email.from_}\n"
            f"Subject: {email.subject}\n"
            f"Date: {email.date:%Y-%m-%d %H:%M} UTC ({relative_age(email.date, now)})\n"
            f"Content: {content}"
        )
    joined = "\n\n".join(entries)
    return f"\n\nRelevant forwarded emails and messages (latest {max_emails}):\n{joined}"


def build_user_prompt(inputs: BriefingInputs, now: datetime) -> str:
    """Render the user message sent alongside the system prompt."""
    config = get_config().briefing
    local_now = now.astimezone(ZoneInfo(inputs.timezone))

    return (
        f"It is {local_now:%A}, {local_now:%Y-%m-%d %H:%M} ({inputs.timezone}).\n"
        f"Calendar entries for the next {inputs.lookahead_days} days:\n"
        f"{_events_section(inputs.events, inputs.timezone)}"
        f"{_notes_section(inputs.notes)}"
        f"{_emails_section(inputs.emails, now, config.max_emails, config.email_char_limit)}"
    )


class OpenAIBriefingAssembler:
    """Briefing assembler backed by the OpenAI chat completions API."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        settings = get_settings()
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.llm_model
        self.temperature = (
            temperature if temperature is not None else get_config().briefing.temperature
        )

    @backoff.on_exception(
        backoff.expo,
        (RateLimitError, HTTPStatusError),
        max_tries=5,
        max_time=120,
    )
    async def _complete(self, user_prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
        )

        usage = response.usage
        if usage:
            logger.bind(
                model=self.model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            ).info("briefing_completion_usage")

        return response.choices[0].message.content or ""

    async def assemble(self, inputs: BriefingInputs, now: datetime | None = None) -> str:
        """Generate the briefing markdown.

        Raises:
            BriefingGenerationError: if the model call fails or returns no text
        """
        now = now or datetime.now(UTC)
        prompt = build_user_prompt(inputs, now)

        try:
            text = await self._complete(prompt)
        except (APIError, HTTPStatusError) as e:
            raise BriefingGenerationError(f"Briefing generation failed: {e}") from e

        if not text.strip():
            logger.bind(model=self.model).error("briefing_empty")
            raise BriefingGenerationError("AI generated empty briefing content")

        logger.bind(length=len(text)).info("briefing_generated")
        return text
