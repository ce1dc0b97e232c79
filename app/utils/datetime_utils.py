"""Datetime utility functions for consistent timezone handling."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def get_current_utc_datetime() -> datetime:
    """
    Get current datetime in UTC timezone.

    Returns:
        datetime: Current UTC datetime with timezone info

    Example:
        >>> now = get_current_utc_datetime()
        >>> now.tzinfo
        datetime.timezone.utc
    """
    return datetime.now(timezone.utc)


def day_window(now: datetime, tz_name: str = "UTC") -> tuple[date, datetime, datetime]:
    """
    Return the calendar day containing ``now`` in ``tz_name``.

    Returns:
        (local_date, start_utc, end_utc) where the UTC bounds form the
        half-open interval [start, end) of that local day.
    """
    tz = ZoneInfo(tz_name)
    local_now = now.astimezone(tz)
    local_start = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    local_end = local_start + timedelta(days=1)
    return (
        local_now.date(),
        local_start.astimezone(timezone.utc),
        local_end.astimezone(timezone.utc),
    )
