"""Delivery window evaluation.

Decides, for one schedule and one instant, whether the briefing should go out
now. Everything is computed in UTC from the injected ``now``; the user's
timezone plays no part here because ``delivery_time_utc`` and the weekday set
were already converted when the settings were saved.

Time difference is same-day subtraction of minute-of-day values, not a
circular distance. A schedule at 00:05 is therefore 1433 minutes away at
23:58 the previous evening and is not sent early on the wrong UTC day; a
schedule at 23:50 can still be caught up until 23:59 but not after midnight,
where the new day is checked against its own weekday and last-sent marker.
"""

from datetime import datetime

from dailybrief.core.datetime_utils import ensure_utc, minute_of_day, parse_hhmm, utc_weekday
from dailybrief.schemas.schedule import Decision, ScheduleRecord

ON_TIME_WINDOW_MINUTES = 10
CATCH_UP_WINDOW_MINUTES = 180


def minutes_from_target(now: datetime, delivery_time_utc: str) -> int:
    """Signed minutes between ``now`` and today's delivery time (positive = late)."""
    current = minute_of_day(ensure_utc(now).time())
    target = minute_of_day(parse_hhmm(delivery_time_utc))
    return current - target


def evaluate(
    now: datetime,
    record: ScheduleRecord,
    *,
    on_time_minutes: int = ON_TIME_WINDOW_MINUTES,
    catch_up_minutes: int = CATCH_UP_WINDOW_MINUTES,
) -> Decision:
    """Decide whether ``record`` is due at ``now``.

    Checks run in a fixed order: missing configuration, weekday, already
    sent today, then the time window. The already-sent check precedes the
    window so that a user satisfied today is never re-evaluated for timing.

    Due when the trigger is within ``on_time_minutes`` of the delivery time
    on either side, or up to ``catch_up_minutes`` after it. Never earlier
    than ``on_time_minutes`` before.
    """
    now = ensure_utc(now)

    if not record.delivery_time_utc or not record.recipients or not record.enabled_weekdays:
        return Decision.MISSING_CONFIG

    try:
        offset = minutes_from_target(now, record.delivery_time_utc)
    except ValueError:
        # An unparseable stored time is treated like a missing one
        return Decision.MISSING_CONFIG

    if utc_weekday(now) not in record.enabled_weekdays:
        return Decision.NOT_SCHEDULED_TODAY

    if record.last_briefing_sent_date == now.date():
        return Decision.ALREADY_SENT_TODAY

    diff = abs(offset)
    if diff <= on_time_minutes:
        return Decision.DUE
    if offset > 0 and diff <= catch_up_minutes:
        return Decision.DUE
    return Decision.TIME_NOT_YET
