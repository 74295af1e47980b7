"""Inputs and outputs of the briefing pipeline collaborators."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class CalendarEvent(BaseModel):
    """A calendar entry: either timed (start/end instants) or all-day (dates).

    For all-day events ``end_date`` is exclusive, as calendar providers
    report it.
    """

    title: str = "Untitled"
    start: datetime | None = None
    end: datetime | None = None
    start_date: date | None = None
    end_date: date | None = None
    calendar: str | None = None
    description: str | None = None

    @property
    def is_all_day(self) -> bool:
        return self.start is None and self.start_date is not None


class EmailItem(BaseModel):
    """A forwarded email, normalised for the assembler."""

    from_: str = Field(alias="from")
    subject: str
    content: str
    date: datetime

    model_config = ConfigDict(populate_by_name=True)


class BriefingInputs(BaseModel):
    """Everything the briefing assembler needs for one user."""

    events: list[CalendarEvent] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    emails: list[EmailItem] = Field(default_factory=list)
    timezone: str = "UTC"
    lookahead_days: int = 7


class BriefingEmail(BaseModel):
    """A rendered briefing handed to the delivery channel."""

    content: str
    recipient: str
    reply_to_address: str
    is_test: bool = False
    subject: str | None = None
