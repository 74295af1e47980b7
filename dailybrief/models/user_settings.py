"""Per-user delivery schedule and last-sent marker."""

import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Date, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dailybrief.models.base import Base, TimestampMixin


class UserSettings(Base, TimestampMixin):
    """Delivery preferences for one user.

    ``weekdays`` holds UTC weekdays (0=Sunday) and ``weekdays_local`` the
    same selection as the user picked it. An empty ``weekdays`` disables
    scheduled delivery. ``delivery_time_utc`` is null for rows saved before
    UTC conversion existed; those rows are skipped until re-saved.

    ``last_briefing_sent_date`` is written only after a confirmed send.
    The ``delivery_claim_*`` columns hold a short lease taken before sending
    so overlapping runs cannot both deliver.
    """

    __tablename__ = "user_settings"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_email: Mapped[str] = mapped_column(String(255), default="")
    delivery_time: Mapped[str] = mapped_column(String(5), default="08:00")
    delivery_time_utc: Mapped[str | None] = mapped_column(String(5), nullable=True)
    weekdays: Mapped[list[int]] = mapped_column(JSON, default=list)
    weekdays_local: Mapped[list[int]] = mapped_column(JSON, default=list)
    delivery_email: Mapped[str] = mapped_column(String(1024), default="")
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    last_briefing_sent_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    inbound_email_hash: Mapped[str | None] = mapped_column(
        String(32), unique=True, index=True, nullable=True
    )
    delivery_claim_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    delivery_claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<UserSettings {self.user_id} {self.delivery_time_utc} {self.weekdays}>"
