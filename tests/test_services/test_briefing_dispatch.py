"""Tests for the scheduled briefing batch pass."""

import asyncio
import time
import uuid
from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from dailybrief.core.errors import (
    BriefingGenerationError,
    DeliveryError,
    InvalidScheduleSettings,
    ScheduleStoreError,
)
from dailybrief.schemas.schedule import OutcomeStatus, ScheduleRecord
from dailybrief.services.briefing_dispatch import (
    CLAIMED_ELSEWHERE,
    BriefingPipeline,
    run_scheduled_briefings,
    send_test_briefing,
)
from dailybrief.services.schedule_store import SqlScheduleStore

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 10, 20, 8, 3, tzinfo=UTC)
TODAY = date(2026, 10, 20)


class FakeScheduleStore:
    """In-memory schedule store recording every call."""

    def __init__(self, records: list[ScheduleRecord], claimable: bool = True) -> None:
        self.records = records
        self.claimable = claimable
        self.claims: list[uuid.UUID] = []
        self.marked: list[tuple[uuid.UUID, date]] = []
        self.released: list[uuid.UUID] = []
        self.claimed_at: list[datetime] = []

    async def list_enabled(self) -> list[ScheduleRecord]:
        return list(self.records)

    async def try_claim(self, user_id, today, claimed_at):
        self.claimed_at.append(claimed_at)
        self.claims.append(user_id)
        return f"token-{user_id}" if self.claimable else None

    async def mark_sent(self, user_id, today, claim_token):
        self.marked.append((user_id, today))
        return True

    async def release(self, user_id, claim_token):
        self.released.append(user_id)


def _sent_to(record, is_test=False, now=None):
    return record.recipient_address


def _pipeline(side_effect=None) -> AsyncMock:
    pipeline = AsyncMock()
    pipeline.run.side_effect = side_effect or _sent_to
    return pipeline


class FakeClock:
    """Wall clock that only moves when a test moves it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


class TestRunScheduledBriefings:
    """Tests for run_scheduled_briefings."""

    async def test_no_records(self):
        report = await run_scheduled_briefings(FakeScheduleStore([]), _pipeline(), now=NOW)

        assert report.processed == 0
        assert report.sent == 0
        assert report.results == []

    async def test_due_user_is_sent_and_marked(self, make_record):
        record = make_record()
        store = FakeScheduleStore([record])

        report = await run_scheduled_briefings(store, _pipeline(), now=NOW)

        assert report.processed == 1
        assert report.sent == 1
        [outcome] = report.results
        assert outcome.status == OutcomeStatus.SENT
        assert outcome.sent_to == "me@example.com"
        assert store.marked == [(record.user_id, TODAY)]

    async def test_non_due_users_are_skipped_with_decision(self, make_record):
        records = [
            make_record(last_briefing_sent_date=TODAY),
            make_record(weekdays={0, 6}),
            make_record(delivery_time_utc="12:00"),
            make_record(recipient_address=""),
        ]
        store = FakeScheduleStore(records)
        pipeline = _pipeline()

        report = await run_scheduled_briefings(store, pipeline, now=NOW)

        assert [r.label for r in report.results] == [
            "skipped:already_sent_today",
            "skipped:not_scheduled_today",
            "skipped:time_not_yet",
            "skipped:missing_config",
        ]
        assert store.claims == []
        pipeline.run.assert_not_called()

    async def test_claimed_elsewhere_is_skipped(self, make_record):
        store = FakeScheduleStore([make_record()], claimable=False)
        pipeline = _pipeline()

        report = await run_scheduled_briefings(store, pipeline, now=NOW)

        [outcome] = report.results
        assert outcome.status == OutcomeStatus.SKIPPED
        assert outcome.reason == CLAIMED_ELSEWHERE
        pipeline.run.assert_not_called()
        assert store.marked == []

    async def test_one_failure_does_not_affect_others(self, make_record):
        good_a, failing, good_b = make_record(), make_record(), make_record()

        def run(record, is_test=False, now=None):
            if record.user_id == failing.user_id:
                raise BriefingGenerationError("AI generated empty briefing content")
            return record.recipient_address

        store = FakeScheduleStore([good_a, failing, good_b])
        report = await run_scheduled_briefings(store, _pipeline(run), now=NOW)

        assert report.processed == 3
        assert report.sent == 2
        assert [r.status for r in report.results] == [
            OutcomeStatus.SENT,
            OutcomeStatus.FAILED,
            OutcomeStatus.SENT,
        ]
        assert report.results[1].error == "AI generated empty briefing content"
        assert report.failed == 1

    async def test_failure_before_delivery_releases_claim(self, make_record):
        record = make_record()
        store = FakeScheduleStore([record])

        await run_scheduled_briefings(
            store, _pipeline(BriefingGenerationError("model unavailable")), now=NOW
        )

        assert store.marked == []
        assert store.released == [record.user_id]

    async def test_unsent_delivery_error_releases_claim(self, make_record):
        record = make_record()
        store = FakeScheduleStore([record])
        error = DeliveryError("RESEND_API_KEY not set", attempted=False)

        await run_scheduled_briefings(store, _pipeline(error), now=NOW)

        assert store.released == [record.user_id]

    async def test_attempted_delivery_keeps_claim(self, make_record):
        store = FakeScheduleStore([make_record()])

        report = await run_scheduled_briefings(
            store, _pipeline(DeliveryError("Failed to send email: read timed out")), now=NOW
        )

        assert report.results[0].status == OutcomeStatus.FAILED
        assert store.marked == []
        assert store.released == []

    async def test_pipeline_gets_batch_instant(self, make_record):
        pipeline = _pipeline()

        await run_scheduled_briefings(FakeScheduleStore([make_record()]), pipeline, now=NOW)

        assert pipeline.run.await_args.kwargs == {"now": NOW}

    async def test_claim_uses_wall_clock_not_batch_instant(self, make_record):
        store = FakeScheduleStore([make_record(), make_record()])
        clock = FakeClock(NOW)

        def run(record, is_test=False, now=None):
            clock.advance(minutes=4)
            return record.recipient_address

        await run_scheduled_briefings(store, _pipeline(run), now=NOW, clock=clock)

        assert store.claimed_at == [NOW, NOW + timedelta(minutes=4)]

    async def test_every_user_failing_still_reports(self, make_record):
        records = [make_record(), make_record()]
        store = FakeScheduleStore(records)

        report = await run_scheduled_briefings(
            store, _pipeline(RuntimeError("provider down")), now=NOW
        )

        assert report.processed == 2
        assert report.sent == 0
        assert all(r.status == OutcomeStatus.FAILED for r in report.results)

    async def test_timeout_is_recorded_as_failed(self, make_record):
        slow, fast = make_record(), make_record()

        async def run(record, is_test=False, now=None):
            if record.user_id == slow.user_id:
                await asyncio.sleep(5)
            return record.recipient_address

        pipeline = AsyncMock()
        pipeline.run.side_effect = run
        store = FakeScheduleStore([slow, fast])

        report = await run_scheduled_briefings(store, pipeline, now=NOW, per_user_timeout=0.05)

        assert report.results[0].status == OutcomeStatus.FAILED
        assert report.results[0].error == "timeout"
        assert report.results[1].status == OutcomeStatus.SENT
        assert store.released == []
        assert [user_id for user_id, _ in store.marked] == [fast.user_id]

    async def test_store_failure_propagates(self):
        store = AsyncMock()
        store.list_enabled.side_effect = ScheduleStoreError("connection refused")

        with pytest.raises(ScheduleStoreError):
            await run_scheduled_briefings(store, _pipeline(), now=NOW)

    async def test_claim_failure_is_per_user(self, make_record):
        record = make_record()
        store = FakeScheduleStore([record])
        store.try_claim = AsyncMock(side_effect=OSError("connection reset"))

        report = await run_scheduled_briefings(store, _pipeline(), now=NOW)

        [outcome] = report.results
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error == "connection reset"

    async def test_unrecorded_send_is_failed_and_keeps_claim(self, make_record):
        store = FakeScheduleStore([make_record()])
        store.mark_sent = AsyncMock(side_effect=OSError("connection reset"))

        report = await run_scheduled_briefings(store, _pipeline(), now=NOW)

        [outcome] = report.results
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error == "Sent but not recorded: connection reset"
        assert store.released == []

    async def test_lost_lease_still_reports_sent(self, make_record):
        store = FakeScheduleStore([make_record()])
        store.mark_sent = AsyncMock(return_value=False)

        report = await run_scheduled_briefings(store, _pipeline(), now=NOW)

        assert report.sent == 1
        assert report.results[0].status == OutcomeStatus.SENT

    async def test_report_serialises_with_aliases(self, make_record):
        record = make_record()
        report = await run_scheduled_briefings(
            FakeScheduleStore([record]), _pipeline(), now=NOW
        )

        data = report.model_dump(mode="json", by_alias=True, exclude_none=True)

        assert data == {
            "processed": 1,
            "sent": 1,
            "results": [
                {"status": "sent", "userId": str(record.user_id), "sentTo": "me@example.com"}
            ],
        }


class TestAtMostOncePerDay:
    """Repeated and overlapping passes against the SQL store."""

    async def test_second_pass_skips_already_sent(self, session_maker, user_settings_factory):
        row = await user_settings_factory()
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)
        pipeline = _pipeline()

        first = await run_scheduled_briefings(store, pipeline, now=NOW)
        later = NOW.replace(minute=8)
        second = await run_scheduled_briefings(store, pipeline, now=later)

        assert first.sent == 1
        assert second.sent == 0
        assert second.results[0].reason == "already_sent_today"
        assert pipeline.run.await_count == 1
        assert row.user_id == first.results[0].user_id

    async def test_overlapping_pass_sees_claim(self, session_maker, user_settings_factory):
        """A pass starting while another holds the lease does not send."""
        row = await user_settings_factory()
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)
        pipeline = _pipeline()

        token = await store.try_claim(row.user_id, TODAY, NOW)
        assert token is not None

        report = await run_scheduled_briefings(
            store, pipeline, now=NOW, clock=FakeClock(NOW + timedelta(minutes=1))
        )

        assert report.results[0].reason == CLAIMED_ELSEWHERE
        pipeline.run.assert_not_called()

    async def test_failed_send_retried_on_next_pass(self, session_maker, user_settings_factory):
        await user_settings_factory()
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)

        first = await run_scheduled_briefings(
            store, _pipeline(BriefingGenerationError("model unavailable")), now=NOW
        )
        second = await run_scheduled_briefings(
            store, _pipeline(), now=NOW.replace(minute=8)
        )

        assert first.failed == 1
        assert second.sent == 1

    async def test_long_pass_keeps_claims_taken_late(self, session_maker, user_settings_factory):
        """A pass running longer than the lease still owns the users it claims late."""
        await user_settings_factory()
        await user_settings_factory()
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)
        clock = FakeClock(NOW)
        sends: list[tuple[str, uuid.UUID]] = []
        second_user_started = asyncio.Event()
        resume = asyncio.Event()

        async def run_first_pass(record, is_test=False, now=None):
            if not sends:
                clock.advance(minutes=16)
            else:
                second_user_started.set()
                await resume.wait()
            sends.append(("first", record.user_id))
            return record.recipient_address

        async def run_second_pass(record, is_test=False, now=None):
            sends.append(("second", record.user_id))
            return record.recipient_address

        first_pass = asyncio.create_task(
            run_scheduled_briefings(
                store, _pipeline(run_first_pass), now=NOW, per_user_timeout=5, clock=clock
            )
        )
        await asyncio.wait_for(second_user_started.wait(), timeout=5)
        second = await run_scheduled_briefings(
            store, _pipeline(run_second_pass), now=clock(), per_user_timeout=5, clock=clock
        )
        resume.set()
        first = await first_pass

        assert first.sent == 2
        assert second.sent == 0
        assert sorted(r.label for r in second.results) == [
            "skipped:already_sent_today",
            "skipped:claimed_elsewhere",
        ]
        assert [who for who, _ in sends] == ["first", "first"]

    async def test_timed_out_send_in_flight_is_not_repeated(
        self, session_maker, user_settings_factory
    ):
        await user_settings_factory()
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)
        clock = FakeClock(NOW)
        delivered: list[str] = []

        def blocking_send():
            time.sleep(0.2)
            delivered.append("first")

        async def slow_run(record, is_test=False, now=None):
            await asyncio.to_thread(blocking_send)
            return record.recipient_address

        async def quick_run(record, is_test=False, now=None):
            delivered.append("second")
            return record.recipient_address

        first = await run_scheduled_briefings(
            store, _pipeline(slow_run), now=NOW, per_user_timeout=0.05, clock=clock
        )
        clock.advance(minutes=5)
        second = await run_scheduled_briefings(
            store, _pipeline(quick_run), now=clock(), clock=clock
        )
        await asyncio.sleep(0.3)

        assert first.results[0].error == "timeout"
        assert second.results[0].reason == CLAIMED_ELSEWHERE
        assert delivered == ["first"]

    async def test_kept_claim_expires_and_user_is_retried(
        self, session_maker, user_settings_factory
    ):
        await user_settings_factory()
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)
        clock = FakeClock(NOW)
        uncertain = DeliveryError("Failed to send email: read timed out")

        first = await run_scheduled_briefings(
            store, _pipeline(uncertain), now=NOW, clock=clock
        )
        clock.advance(minutes=5)
        blocked = await run_scheduled_briefings(store, _pipeline(), now=clock(), clock=clock)
        clock.advance(minutes=11)
        retried = await run_scheduled_briefings(store, _pipeline(), now=clock(), clock=clock)

        assert first.failed == 1
        assert blocked.results[0].reason == CLAIMED_ELSEWHERE
        assert retried.sent == 1


class TestSendTestBriefing:
    """Tests for send_test_briefing."""

    async def test_sends_as_test_and_leaves_marker(self, session_maker, user_settings_factory):
        row = await user_settings_factory()
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)
        pipeline = _pipeline()

        outcome = await send_test_briefing(store, pipeline, row.user_id)

        assert outcome.status == OutcomeStatus.SENT
        assert pipeline.run.await_args.kwargs == {"is_test": True}
        [record] = await store.list_enabled()
        assert record.last_briefing_sent_date is None

    async def test_requires_delivery_email(self, session_maker, user_settings_factory):
        row = await user_settings_factory(delivery_email="")
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)

        with pytest.raises(InvalidScheduleSettings):
            await send_test_briefing(store, _pipeline(), row.user_id)

    async def test_unknown_user(self, session_maker):
        store = SqlScheduleStore(session_maker, claim_lease_minutes=15)

        with pytest.raises(InvalidScheduleSettings):
            await send_test_briefing(store, _pipeline(), uuid.uuid4())


class TestBriefingPipeline:
    """Tests for BriefingPipeline.run."""

    async def test_prompt_and_subject_follow_given_instant(self, session_maker, make_record):
        assembler = AsyncMock()
        assembler.assemble.return_value = "## Today\n- Standup"
        channel = AsyncMock()
        pipeline = BriefingPipeline(
            session_factory=session_maker,
            event_source=AsyncMock(),
            assembler=assembler,
            channel=channel,
            inbound_domain="inbox.test",
        )
        late_evening = datetime(2026, 10, 20, 22, 30, tzinfo=UTC)

        sent_to = await pipeline.run(make_record(timezone="Asia/Tokyo"), now=late_evening)

        assert sent_to == "me@example.com"
        assert assembler.assemble.await_args.kwargs == {"now": late_evening}
        email = channel.send.await_args.args[0]
        assert email.subject == "Your Daily Briefing - Wednesday, October 21, 2026"
        assert email.reply_to_address == "owner-abc123defg@inbox.test"
