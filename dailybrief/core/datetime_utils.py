"""Centralized datetime utilities for consistent timezone handling.

Database columns hold naive UTC datetimes; scheduling decisions work on
aware UTC instants. Delivery times are stored as "HH:MM" strings, both in
the user's local zone (for display) and in UTC (for scheduling).

Usage:
    from dailybrief.core.datetime_utils import ensure_utc, utc_weekday

    now = ensure_utc(datetime.now(UTC))
    if utc_weekday(now) in record.enabled_weekdays:
        ...

    # Converting saved settings
    utc_hhmm = local_time_to_utc("08:30", "America/New_York", date.today())
"""

import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

HHMM_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime.

    Naive input is taken to already be UTC, matching how the database
    stores timestamps.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def get_cutoff(now: datetime, minutes: int = 0, hours: int = 0) -> datetime:
    """Naive UTC instant ``minutes``/``hours`` before ``now``."""
    return to_naive_utc(now) - timedelta(minutes=minutes, hours=hours)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is valid IANA identifier.

    Args:
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        True if valid IANA timezone
    """
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, KeyError, ValueError):
        return False


def is_valid_hhmm(value: str | None) -> bool:
    """Check a 24-hour "HH:MM" string (a single-digit hour is accepted)."""
    return bool(value) and HHMM_PATTERN.match(value) is not None


def parse_hhmm(value: str) -> time:
    """Parse a delivery time string (HH:MM) into a time object.

    Unlike display helpers this never falls back to a default: a schedule
    with an unparseable time must not be sent at a guessed hour.

    Raises:
        ValueError: if the value is not a valid 24-hour time
    """
    if not is_valid_hhmm(value):
        raise ValueError(f"Invalid time format: {value!r}. Use HH:MM.")
    hour, minute = value.split(":")
    return time(hour=int(hour), minute=int(minute))


def format_hhmm(t: time) -> str:
    return f"{t.hour:02d}:{t.minute:02d}"


def minute_of_day(t: time) -> int:
    """Minutes since midnight, seconds ignored."""
    return t.hour * 60 + t.minute


def utc_weekday(now: datetime) -> int:
    """UTC weekday of ``now`` with 0=Sunday .. 6=Saturday."""
    return (ensure_utc(now).weekday() + 1) % 7


def local_time_to_utc(local_hhmm: str, tz_name: str, on_date: date) -> str:
    """Convert a local wall-clock delivery time to its UTC "HH:MM".

    The offset is taken on ``on_date`` (normally the day the settings are
    saved), so a schedule saved in winter keeps its UTC time across DST.

    Raises:
        ValueError: for an invalid time or timezone
    """
    if not is_valid_timezone(tz_name):
        raise ValueError(f"Invalid timezone: {tz_name!r}")
    local = datetime.combine(on_date, parse_hhmm(local_hhmm), tzinfo=ZoneInfo(tz_name))
    return format_hhmm(local.astimezone(UTC).time())


def utc_day_shift(local_hhmm: str, tz_name: str, on_date: date) -> int:
    """Days the UTC date differs from the local date at that wall-clock time.

    -1, 0 or +1. Used to carry weekday selections from the user's zone to
    UTC along with the delivery time.
    """
    local = datetime.combine(on_date, parse_hhmm(local_hhmm), tzinfo=ZoneInfo(tz_name))
    return (local.astimezone(UTC).date() - on_date).days


def shift_weekdays(weekdays: list[int], shift: int) -> list[int]:
    """Shift 0=Sunday weekday numbers by ``shift`` days, wrapping the week."""
    return sorted({(day + shift) % 7 for day in weekdays})
