# File: utils/dt_utils.py
"""Local calendar utilities for StarHabit.

Every "is it due today / was it missed" decision keys off the local
wall-clock date, never UTC. All local-day arithmetic lives here; engines and
managers build dates only through these helpers.

Functions:
    - set_default_timezone / get_default_timezone: configure the local zone
    - dt_now_local / dt_today_local / dt_today_iso: current local time/date
    - as_local / start_of_local_day: timezone conversion
    - dt_parse / dt_parse_date / dt_local_date_of: tolerant parsing
    - dt_start_of_week / dt_days_between / dt_weeks_between / dt_months_between
    - dt_date_range: inclusive day iteration
    - parse_time_of_day / dt_minutes_of_day: "HH:MM" cutoffs
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime, timedelta, tzinfo
import logging
import re

# Third-party date utilities
from dateutil import tz
from dateutil.relativedelta import MO, relativedelta

# Module-level logger
_LOGGER = logging.getLogger(__name__)

# Default timezone: the device's zone until the host configures one
DEFAULT_TIME_ZONE: tzinfo = tz.tzlocal()

# "HH:MM" (24h) cutoff format used by Task.expiry_time
_TIME_OF_DAY_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


# ==============================================================================
# Timezone Configuration
# ==============================================================================


def set_default_timezone(tz_info: tzinfo | str | None) -> None:
    """Set the default timezone for all dt_utils functions.

    Args:
        tz_info: A tzinfo, an IANA zone name ("Europe/Berlin"), or None to
            restore the device's local zone.
    """
    global DEFAULT_TIME_ZONE  # noqa: PLW0603
    if tz_info is None:
        DEFAULT_TIME_ZONE = tz.tzlocal()
        return
    if isinstance(tz_info, str):
        resolved = tz.gettz(tz_info)
        if resolved is None:
            _LOGGER.warning(
                "Unknown time zone '%s', keeping %s", tz_info, DEFAULT_TIME_ZONE
            )
            return
        tz_info = resolved
    DEFAULT_TIME_ZONE = tz_info


def get_default_timezone() -> tzinfo:
    """Return the currently configured local timezone."""
    return DEFAULT_TIME_ZONE


# ==============================================================================
# Current Date/Time Functions
# ==============================================================================


def dt_now_local(tz_info: tzinfo | None = None) -> datetime:
    """Return the current datetime in the local timezone (timezone-aware)."""
    return datetime.now(tz_info or DEFAULT_TIME_ZONE)


def dt_today_local(tz_info: tzinfo | None = None) -> date:
    """Return today's local date.

    Example:
        datetime.date(2025, 4, 7)
    """
    return dt_now_local(tz_info).date()


def dt_today_iso(tz_info: tzinfo | None = None) -> str:
    """Return today's local date as "YYYY-MM-DD"."""
    return dt_today_local(tz_info).isoformat()


def dt_now_iso(tz_info: tzinfo | None = None) -> str:
    """Return the current local datetime as an ISO 8601 string with offset."""
    return dt_now_local(tz_info).isoformat()


# ==============================================================================
# Timezone Conversion
# ==============================================================================


def as_local(dt_obj: datetime, tz_info: tzinfo | None = None) -> datetime:
    """Convert a datetime to the local timezone.

    Naive datetimes are taken to already be local wall-clock time.
    """
    tz_local = tz_info or DEFAULT_TIME_ZONE
    if dt_obj.tzinfo is None:
        return dt_obj.replace(tzinfo=tz_local)
    return dt_obj.astimezone(tz_local)


def start_of_local_day(
    value: date | datetime, tz_info: tzinfo | None = None
) -> datetime:
    """Return 00:00:00 local time of the day containing `value`.

    Args:
        value: A local date, or a datetime in any timezone.
        tz_info: Optional timezone override.

    Returns:
        Timezone-aware datetime at local midnight.
    """
    tz_local = tz_info or DEFAULT_TIME_ZONE
    if isinstance(value, datetime):
        value = as_local(value, tz_local).date()
    return datetime(value.year, value.month, value.day, tzinfo=tz_local)


# ==============================================================================
# Parsing
# ==============================================================================


def dt_parse_date(date_str: str | None) -> date | None:
    """Safely parse a "YYYY-MM-DD" string (or ISO datetime) into a date.

    Returns:
        datetime.date, or None if the input is empty or unparseable.
    """
    if not date_str or not isinstance(date_str, str):
        return None
    try:
        return date.fromisoformat(date_str[:10])
    except ValueError:
        return None


def dt_parse(dt_input: str | date | datetime | None) -> datetime | None:
    """Normalize a string, date or datetime into an aware local datetime.

    Strings without an offset and plain dates are interpreted as local
    wall-clock time. Returns None when the input cannot be parsed.
    """
    if not dt_input:
        return None

    if isinstance(dt_input, datetime):
        return as_local(dt_input)
    if isinstance(dt_input, date):
        return start_of_local_day(dt_input)
    if not isinstance(dt_input, str):
        return None

    try:
        # Python 3.11+ accepts the trailing "Z" used by JavaScript toISOString()
        return as_local(datetime.fromisoformat(dt_input))
    except ValueError:
        parsed_date = dt_parse_date(dt_input)
        if parsed_date is None:
            _LOGGER.debug("dt_parse: Unparseable datetime '%s'", dt_input)
            return None
        return start_of_local_day(parsed_date)


def dt_local_date_of(dt_input: str | date | datetime | None) -> date | None:
    """Return the local calendar day a timestamp falls on.

    This is the bucketing key for logs: a log belongs to the local day of its
    completed_at timestamp.
    """
    if isinstance(dt_input, date) and not isinstance(dt_input, datetime):
        return dt_input
    parsed = dt_parse(dt_input)
    return parsed.date() if parsed else None


def dt_to_local_date(value: str | date | datetime | None, default: date) -> date:
    """Like dt_local_date_of, but fall back to `default` when unparseable."""
    result = dt_local_date_of(value)
    return result if result is not None else default


# ==============================================================================
# Calendar Arithmetic
# ==============================================================================


def dt_start_of_week(day: date) -> date:
    """Return the Monday starting the week that contains `day`."""
    return day + relativedelta(weekday=MO(-1))


def dt_days_between(later: date, earlier: date) -> int:
    """Return the signed number of calendar days from `earlier` to `later`."""
    return (later - earlier).days


def dt_weeks_between(later: date, earlier: date) -> int:
    """Return the signed number of Monday-start weeks from `earlier` to `later`."""
    return (dt_start_of_week(later) - dt_start_of_week(earlier)).days // 7


def dt_months_between(later: date, earlier: date) -> int:
    """Return the signed calendar-month difference (ignores day of month)."""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def dt_add_days(day: date, days: int) -> date:
    """Return `day` shifted by `days` calendar days."""
    return day + timedelta(days=days)


def dt_date_range(start: date, end: date) -> Iterator[date]:
    """Yield every local date from `start` to `end`, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


# ==============================================================================
# Time of Day
# ==============================================================================


def parse_time_of_day(value: str | None) -> tuple[int, int] | None:
    """Parse an "HH:MM" (24h) string.

    Returns:
        (hour, minute) tuple, or None if the value is empty or malformed.

    Example:
        "20:00" -> (20, 0)
    """
    if not value or not isinstance(value, str):
        return None
    match = _TIME_OF_DAY_RE.match(value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def dt_minutes_of_day(dt_obj: datetime) -> int:
    """Return minutes since local midnight for a datetime."""
    local = as_local(dt_obj)
    return local.hour * 60 + local.minute
