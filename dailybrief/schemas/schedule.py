"""Schedule records, decisions and run reports."""

import enum
import uuid
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dailybrief.core.datetime_utils import is_valid_hhmm, is_valid_timezone


class Decision(str, enum.Enum):
    """Outcome of evaluating one schedule against the current instant."""

    DUE = "due"
    NOT_SCHEDULED_TODAY = "not_scheduled_today"
    ALREADY_SENT_TODAY = "already_sent_today"
    TIME_NOT_YET = "time_not_yet"
    MISSING_CONFIG = "missing_config"


class ScheduleRecord(BaseModel):
    """Typed view of a user's delivery schedule.

    ``delivery_time_utc`` is optional because rows saved before UTC
    conversion existed have none; everything else the scheduler needs is
    present but may be empty.
    """

    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    enabled_weekdays: frozenset[int] = frozenset()
    delivery_time_local: str = "08:00"
    delivery_time_utc: str | None = None
    timezone: str = "UTC"
    recipient_address: str = ""
    last_briefing_sent_date: date | None = None
    account_email: str = ""
    inbound_email_hash: str | None = None

    @field_validator("enabled_weekdays", mode="before")
    @classmethod
    def _coerce_weekdays(cls, value: object) -> frozenset[int]:
        if value is None:
            return frozenset()
        return frozenset(int(day) for day in value)  # type: ignore[union-attr]

    @property
    def recipients(self) -> list[str]:
        """Recipient addresses split from the comma-joined column."""
        return [addr.strip() for addr in self.recipient_address.split(",") if addr.strip()]


class OutcomeStatus(str, enum.Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class UserOutcome(BaseModel):
    """Result of one user's slot in a batch pass."""

    model_config = ConfigDict(populate_by_name=True)

    status: OutcomeStatus
    user_id: uuid.UUID = Field(serialization_alias="userId")
    reason: str | None = None
    sent_to: str | None = Field(default=None, serialization_alias="sentTo")
    error: str | None = None

    @property
    def label(self) -> str:
        """Compact ``status:detail`` form used in logs and CLI output."""
        detail = self.reason or self.error
        return f"{self.status.value}:{detail}" if detail else self.status.value


class RunReport(BaseModel):
    """Aggregate of one batch pass, returned to whoever triggered it."""

    processed: int = 0
    sent: int = 0
    results: list[UserOutcome] = Field(default_factory=list)

    def add(self, outcome: UserOutcome) -> None:
        self.processed += 1
        if outcome.status == OutcomeStatus.SENT:
            self.sent += 1
        self.results.append(outcome)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == OutcomeStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == OutcomeStatus.SKIPPED)


class ScheduleSettingsUpdate(BaseModel):
    """Delivery settings as submitted by the user.

    ``delivery_time`` and ``weekdays`` are in the user's own timezone; the
    store derives the UTC values the scheduler runs on.
    """

    delivery_time: str
    weekdays: list[int]
    delivery_email: str = ""
    timezone: str = "UTC"

    @field_validator("delivery_time")
    @classmethod
    def _check_delivery_time(cls, value: str) -> str:
        if not is_valid_hhmm(value):
            raise ValueError("Invalid delivery_time format. Use HH:MM format.")
        return value

    @field_validator("weekdays")
    @classmethod
    def _check_weekdays(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("Invalid weekday values. Use 0-6.")
        return sorted(set(value))

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        if not is_valid_timezone(value):
            raise ValueError(f"Invalid timezone: {value}")
        return value


class ScheduleSettingsResponse(BaseModel):
    """Delivery settings as shown back to the user."""

    enabled: bool
    delivery_time: str
    delivery_time_utc: str | None
    weekdays: list[int]
    weekdays_utc: list[int]
    delivery_email: str
    timezone: str
    last_briefing_sent_date: date | None = None
