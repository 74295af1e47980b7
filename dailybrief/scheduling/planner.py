"""Batch planning: the decision half of a batch pass, without side effects."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from dailybrief.scheduling.window import (
    CATCH_UP_WINDOW_MINUTES,
    ON_TIME_WINDOW_MINUTES,
    evaluate,
    minutes_from_target,
)
from dailybrief.schemas.schedule import Decision, ScheduleRecord


@dataclass(frozen=True)
class PlannedDelivery:
    """A schedule paired with the decision taken for it."""

    record: ScheduleRecord
    decision: Decision
    minutes_late: int | None = None

    @property
    def is_due(self) -> bool:
        return self.decision == Decision.DUE

    @property
    def is_catch_up(self) -> bool:
        """Due, but later than the on-time window."""
        return self.is_due and (self.minutes_late or 0) > ON_TIME_WINDOW_MINUTES


def plan_batch(
    records: Iterable[ScheduleRecord],
    now: datetime,
    *,
    on_time_minutes: int = ON_TIME_WINDOW_MINUTES,
    catch_up_minutes: int = CATCH_UP_WINDOW_MINUTES,
) -> list[PlannedDelivery]:
    """Evaluate every record against the same instant, preserving order."""
    planned = []
    for record in records:
        decision = evaluate(
            now,
            record,
            on_time_minutes=on_time_minutes,
            catch_up_minutes=catch_up_minutes,
        )
        late = None
        if decision == Decision.DUE and record.delivery_time_utc:
            late = minutes_from_target(now, record.delivery_time_utc)
        planned.append(PlannedDelivery(record=record, decision=decision, minutes_late=late))
    return planned
