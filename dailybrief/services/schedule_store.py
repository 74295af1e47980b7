"""Schedule store: durable delivery preferences and the last-sent marker.

The batch scheduler relies on three conditional writes here to keep delivery
at most once per user per UTC day even when runs overlap:

1. ``try_claim`` takes a short lease, only if the user has not been sent to
   today and nobody else holds an unexpired lease.
2. ``mark_sent`` records the send date, only while the caller's lease is
   still the one stored.
3. ``release`` drops the lease after a failure that happened before
   delivery, leaving the last-sent marker untouched so a later pass can
   retry inside the window. When a send may still be in flight the lease is
   kept and only expires after ``claim_lease_minutes``.

Every operation runs in its own short transaction so overlapping runs see
claims as soon as they are taken.
"""

import uuid
from datetime import date, datetime
from typing import Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dailybrief.config import get_config
from dailybrief.core.datetime_utils import (
    get_cutoff,
    local_time_to_utc,
    shift_weekdays,
    to_naive_utc,
    utc_day_shift,
)
from dailybrief.core.errors import InvalidScheduleSettings, ScheduleStoreError
from dailybrief.core.logging import get_logger
from dailybrief.core.security import generate_claim_token, generate_inbound_email_hash
from dailybrief.models.user_settings import UserSettings
from dailybrief.schemas.schedule import (
    ScheduleRecord,
    ScheduleSettingsResponse,
    ScheduleSettingsUpdate,
)

logger = get_logger(__name__)


class ScheduleStore(Protocol):
    """What the batch scheduler needs from schedule storage."""

    async def list_enabled(self) -> list[ScheduleRecord]: ...

    async def try_claim(
        self, user_id: uuid.UUID, today: date, claimed_at: datetime
    ) -> str | None: ...

    async def mark_sent(self, user_id: uuid.UUID, today: date, claim_token: str) -> bool: ...

    async def release(self, user_id: uuid.UUID, claim_token: str) -> None: ...


def to_schedule_record(row: UserSettings) -> ScheduleRecord:
    """Map a ``user_settings`` row onto the typed schedule view."""
    return ScheduleRecord(
        user_id=row.user_id,
        enabled_weekdays=row.weekdays or [],
        delivery_time_local=row.delivery_time,
        delivery_time_utc=row.delivery_time_utc or None,
        timezone=row.timezone or "UTC",
        recipient_address=row.delivery_email or "",
        last_briefing_sent_date=row.last_briefing_sent_date,
        account_email=row.account_email or "",
        inbound_email_hash=row.inbound_email_hash,
    )


class SqlScheduleStore:
    """Schedule store backed by the ``user_settings`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        claim_lease_minutes: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        if claim_lease_minutes is None:
            claim_lease_minutes = get_config().schedule.claim_lease_minutes
        self.claim_lease_minutes = claim_lease_minutes

    async def list_enabled(self) -> list[ScheduleRecord]:
        """All schedules with at least one enabled weekday.

        Raises:
            ScheduleStoreError: if the table cannot be read
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserSettings)
                    .where(UserSettings.weekdays.is_not(None))
                    .order_by(UserSettings.created_at, UserSettings.user_id)
                )
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.bind(error=str(e)).error("schedule_store_list_failed")
            raise ScheduleStoreError(f"Could not read schedules: {e}") from e

        # JSON emptiness is not portable across dialects; filter here
        return [to_schedule_record(row) for row in rows if row.weekdays]

    async def try_claim(
        self, user_id: uuid.UUID, today: date, claimed_at: datetime
    ) -> str | None:
        """Take the delivery lease for ``user_id`` if nobody has sent or claimed today.

        ``claimed_at`` is the wall-clock time of the claim, not the start of
        the batch; the lease is stamped with it and measured against it.

        Returns:
            The claim token, or None if another run holds the lease or the
            user has already been sent to today.
        """
        token = generate_claim_token()
        lease_cutoff = get_cutoff(claimed_at, minutes=self.claim_lease_minutes)

        stmt = (
            update(UserSettings)
            .where(
                UserSettings.user_id == user_id,
                or_(
                    UserSettings.last_briefing_sent_date.is_(None),
                    UserSettings.last_briefing_sent_date != today,
                ),
                or_(
                    UserSettings.delivery_claimed_at.is_(None),
                    UserSettings.delivery_claimed_at < lease_cutoff,
                ),
            )
            .values(delivery_claim_token=token, delivery_claimed_at=to_naive_utc(claimed_at))
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount != 1:
            logger.bind(user_id=str(user_id), today=str(today)).debug("delivery_claim_refused")
            return None
        return token

    async def mark_sent(self, user_id: uuid.UUID, today: date, claim_token: str) -> bool:
        """Record a confirmed send and drop the lease.

        Returns:
            False if the lease was lost (expired and taken by another run),
            in which case nothing is written.
        """
        stmt = (
            update(UserSettings)
            .where(
                UserSettings.user_id == user_id,
                UserSettings.delivery_claim_token == claim_token,
            )
            .values(
                last_briefing_sent_date=today,
                delivery_claim_token=None,
                delivery_claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        marked = result.rowcount == 1
        if not marked:
            logger.bind(user_id=str(user_id), today=str(today)).warning("delivery_claim_lost")
        return marked

    async def release(self, user_id: uuid.UUID, claim_token: str) -> None:
        """Drop the lease without touching the last-sent marker."""
        stmt = (
            update(UserSettings)
            .where(
                UserSettings.user_id == user_id,
                UserSettings.delivery_claim_token == claim_token,
            )
            .values(delivery_claim_token=None, delivery_claimed_at=None)
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def get_record(self, user_id: uuid.UUID) -> ScheduleRecord | None:
        async with self._session_factory() as session:
            row = await session.get(UserSettings, user_id)
            return to_schedule_record(row) if row else None

    async def get_settings(self, user_id: uuid.UUID) -> ScheduleSettingsResponse:
        """Settings for display, with defaults when the user has none yet."""
        async with self._session_factory() as session:
            row = await session.get(UserSettings, user_id)

        if row is None:
            briefing = get_config().briefing
            return ScheduleSettingsResponse(
                enabled=False,
                delivery_time=briefing.default_delivery_time,
                delivery_time_utc=None,
                weekdays=list(briefing.default_weekdays),
                weekdays_utc=[],
                delivery_email="",
                timezone="UTC",
            )

        return ScheduleSettingsResponse(
            enabled=bool(row.weekdays and row.delivery_time_utc and row.delivery_email),
            delivery_time=row.delivery_time,
            delivery_time_utc=row.delivery_time_utc,
            weekdays=list(row.weekdays_local or row.weekdays or []),
            weekdays_utc=list(row.weekdays or []),
            delivery_email=row.delivery_email or "",
            timezone=row.timezone or "UTC",
            last_briefing_sent_date=row.last_briefing_sent_date,
        )

    async def save_settings(
        self,
        user_id: uuid.UUID,
        update_data: ScheduleSettingsUpdate,
        today: date,
        account_email: str | None = None,
    ) -> ScheduleRecord:
        """Create or update a user's schedule.

        The local delivery time and weekdays are converted to UTC using the
        timezone offset in effect on ``today``. An inbound email hash is
        generated the first time settings are saved and kept afterwards.

        Raises:
            InvalidScheduleSettings: if the time cannot be converted
        """
        try:
            utc_time = local_time_to_utc(update_data.delivery_time, update_data.timezone, today)
            shift = utc_day_shift(update_data.delivery_time, update_data.timezone, today)
        except ValueError as e:
            raise InvalidScheduleSettings(str(e)) from e

        async with self._session_factory() as session:
            row = await session.get(UserSettings, user_id)
            if row is None:
                row = UserSettings(user_id=user_id)
                session.add(row)

            row.delivery_time = update_data.delivery_time
            row.delivery_time_utc = utc_time
            row.weekdays_local = list(update_data.weekdays)
            row.weekdays = shift_weekdays(update_data.weekdays, shift)
            row.delivery_email = update_data.delivery_email
            row.timezone = update_data.timezone
            if account_email is not None:
                row.account_email = account_email
            if not row.inbound_email_hash:
                row.inbound_email_hash = generate_inbound_email_hash()

            await session.commit()
            await session.refresh(row)

        logger.bind(
            user_id=str(user_id),
            delivery_time=update_data.delivery_time,
            delivery_time_utc=utc_time,
            timezone=update_data.timezone,
        ).info("schedule_settings_saved")
        return to_schedule_record(row)
