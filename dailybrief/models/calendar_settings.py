import uuid

from sqlalchemy import JSON, ForeignKey, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dailybrief.models.base import Base, TimestampMixin


class CalendarSettings(Base, TimestampMixin):
    """Which calendars feed the briefing, and how far ahead to look."""

    __tablename__ = "user_calendar_settings"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user_settings.user_id", ondelete="CASCADE"), primary_key=True
    )
    selected_calendars: Mapped[list[str]] = mapped_column(JSON, default=list)
    days_in_advance: Mapped[int] = mapped_column(Integer, default=7)

    def __repr__(self) -> str:
        return f"<CalendarSettings {self.user_id} calendars={len(self.selected_calendars or [])}>"
