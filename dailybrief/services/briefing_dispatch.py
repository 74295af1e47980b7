"""Scheduled briefing delivery.

Called every few minutes by the cron endpoint (or the in-process scheduler).
Each pass reads every enabled schedule, decides who is due right now and
runs the briefing pipeline for those users one after another. A failure for
one user never stops the pass; a failure to read the schedules does.
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dailybrief.config import get_config, get_settings
from dailybrief.core.datetime_utils import ensure_utc
from dailybrief.core.errors import DeliveryError, InvalidScheduleSettings
from dailybrief.core.logging import get_logger
from dailybrief.core.security import build_reply_to_address
from dailybrief.scheduling.planner import PlannedDelivery, plan_batch
from dailybrief.schemas.briefing import BriefingEmail
from dailybrief.schemas.schedule import OutcomeStatus, RunReport, ScheduleRecord, UserOutcome
from dailybrief.services.briefing_assembler import BriefingAssembler, OpenAIBriefingAssembler
from dailybrief.services.briefing_inputs import gather_briefing_inputs
from dailybrief.services.email_service import (
    DeliveryChannel,
    ResendDeliveryChannel,
    briefing_subject,
)
from dailybrief.services.event_source import EventSource, SampleEventSource
from dailybrief.services.schedule_store import ScheduleStore, SqlScheduleStore

logger = get_logger(__name__)

CLAIMED_ELSEWHERE = "claimed_elsewhere"


@dataclass
class BriefingPipeline:
    """Gather inputs, assemble the briefing and deliver it for one user."""

    session_factory: async_sessionmaker[AsyncSession]
    event_source: EventSource
    assembler: BriefingAssembler
    channel: DeliveryChannel
    inbound_domain: str

    async def run(
        self, record: ScheduleRecord, is_test: bool = False, now: datetime | None = None
    ) -> str:
        """Run the pipeline and return the address(es) the briefing went to.

        ``now`` dates the prompt and the subject; batch passes hand in their
        own instant so both match the UTC day being recorded.
        """
        now = ensure_utc(now or datetime.now(UTC))
        inputs = await gather_briefing_inputs(self.session_factory, self.event_source, record)
        content = await self.assembler.assemble(inputs, now=now)

        local_today: date = now.astimezone(ZoneInfo(record.timezone)).date()
        email = BriefingEmail(
            content=content,
            recipient=record.recipient_address,
            reply_to_address=build_reply_to_address(
                record.account_email, record.inbound_email_hash, self.inbound_domain
            ),
            is_test=is_test,
            subject=briefing_subject(local_today, is_test),
        )
        await self.channel.send(email)
        return record.recipient_address


def build_pipeline(session_factory: async_sessionmaker[AsyncSession]) -> BriefingPipeline:
    """Pipeline wired to the production collaborators."""
    return BriefingPipeline(
        session_factory=session_factory,
        event_source=SampleEventSource(),
        assembler=OpenAIBriefingAssembler(),
        channel=ResendDeliveryChannel(),
        inbound_domain=get_settings().inbound_email_domain,
    )


def _wall_clock() -> datetime:
    return datetime.now(UTC)


def _failed(user_id: uuid.UUID, error: str) -> UserOutcome:
    return UserOutcome(status=OutcomeStatus.FAILED, user_id=user_id, error=error)


async def _release_quietly(store: ScheduleStore, user_id: uuid.UUID, token: str) -> None:
    try:
        await store.release(user_id, token)
    except Exception as e:
        # The lease expires on its own; the user is retried after that
        logger.bind(user_id=str(user_id), error=str(e)).error("delivery_claim_release_failed")


async def deliver_planned(
    store: ScheduleStore,
    pipeline: BriefingPipeline,
    planned: PlannedDelivery,
    now: datetime,
    timeout: float,
    clock: Callable[[], datetime] = _wall_clock,
) -> UserOutcome:
    """Handle one user's slot in a batch pass.

    ``now`` is the batch instant used for the decision and the day being
    recorded. ``clock`` is read again right before the claim, so a lease
    taken late in a long pass is still fresh when it is written.
    """
    record = planned.record
    user_id = record.user_id
    today = now.date()

    if not planned.is_due:
        return UserOutcome(
            status=OutcomeStatus.SKIPPED, user_id=user_id, reason=planned.decision.value
        )

    try:
        token = await store.try_claim(user_id, today, clock())
    except Exception as e:
        logger.bind(user_id=str(user_id), error=str(e)).error("delivery_claim_failed")
        return _failed(user_id, str(e))

    if token is None:
        return UserOutcome(status=OutcomeStatus.SKIPPED, user_id=user_id, reason=CLAIMED_ELSEWHERE)

    try:
        sent_to = await asyncio.wait_for(pipeline.run(record, now=now), timeout=timeout)
    except TimeoutError:
        # The send may still finish in its worker thread; the lease stays
        logger.bind(user_id=str(user_id), timeout_seconds=timeout).error("briefing_timeout")
        return _failed(user_id, "timeout")
    except DeliveryError as e:
        logger.bind(user_id=str(user_id), error=str(e)).exception("briefing_delivery_failed")
        if not e.attempted:
            await _release_quietly(store, user_id, token)
        return _failed(user_id, str(e))
    except Exception as e:
        logger.bind(user_id=str(user_id), error=str(e)).exception("briefing_failed")
        await _release_quietly(store, user_id, token)
        return _failed(user_id, str(e) or type(e).__name__)

    try:
        await store.mark_sent(user_id, today, token)
    except Exception as e:
        # Sent but not recorded; the lease stays until it expires
        logger.bind(user_id=str(user_id), error=str(e)).error("briefing_mark_sent_failed")
        return _failed(user_id, f"Sent but not recorded: {e}")

    logger.bind(
        user_id=str(user_id),
        sent_to=sent_to,
        catch_up=planned.is_catch_up,
        minutes_late=planned.minutes_late,
    ).info("briefing_delivered")
    return UserOutcome(status=OutcomeStatus.SENT, user_id=user_id, sent_to=sent_to)


async def run_scheduled_briefings(
    store: ScheduleStore,
    pipeline: BriefingPipeline,
    now: datetime | None = None,
    per_user_timeout: float | None = None,
    clock: Callable[[], datetime] = _wall_clock,
) -> RunReport:
    """
    Run one batch pass over every enabled schedule.

    Args:
        store: Schedule store to read schedules from and record sends in
        pipeline: Briefing pipeline run for each due user
        now: Instant to evaluate against (current UTC time if omitted)
        per_user_timeout: Seconds allowed per user (config default if omitted)
        clock: Wall clock read before each claim (real UTC time by default)

    Returns:
        RunReport with one outcome per schedule, in store order

    Raises:
        ScheduleStoreError: if the schedules cannot be read
    """
    schedule_config = get_config().schedule
    now = ensure_utc(now or datetime.now(UTC))
    timeout = (
        per_user_timeout
        if per_user_timeout is not None
        else schedule_config.per_user_timeout_seconds
    )

    records = await store.list_enabled()
    report = RunReport()

    if not records:
        logger.debug("no_enabled_schedules")
        return report

    planned = plan_batch(
        records,
        now,
        on_time_minutes=schedule_config.on_time_window_minutes,
        catch_up_minutes=schedule_config.catch_up_window_minutes,
    )

    for item in planned:
        outcome = await deliver_planned(store, pipeline, item, now, timeout, clock)
        logger.bind(user_id=str(item.record.user_id), outcome=outcome.label).debug(
            "briefing_outcome"
        )
        report.add(outcome)

    logger.bind(
        processed=report.processed,
        sent=report.sent,
        failed=report.failed,
        skipped=report.skipped,
    ).info("scheduled_briefings_complete")

    return report


async def send_test_briefing(
    store: SqlScheduleStore,
    pipeline: BriefingPipeline,
    user_id: uuid.UUID,
) -> UserOutcome:
    """Generate and send a briefing now, marked as a test.

    Ignores the schedule window and never touches the last-sent marker, so
    the scheduled briefing still goes out as usual.

    Raises:
        InvalidScheduleSettings: if the user has no settings or no recipient
    """
    record = await store.get_record(user_id)
    if record is None or not record.recipients:
        raise InvalidScheduleSettings("No delivery email configured")

    sent_to = await pipeline.run(record, is_test=True)
    logger.bind(user_id=str(user_id), sent_to=sent_to).info("test_briefing_sent")
    return UserOutcome(status=OutcomeStatus.SENT, user_id=user_id, sent_to=sent_to)
