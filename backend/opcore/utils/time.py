"""Time Utilities - UTC timestamps and formatting"""
from datetime import datetime, timezone
from typing import Callable, Optional
from dateutil import parser as date_parser

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO 8601 string

    Args:
        dt: Datetime object

    Returns:
        ISO formatted string with Z suffix for UTC
    """
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to datetime

    Args:
        iso_string: ISO formatted datetime string

    Returns:
        Datetime object in UTC
    """
    return ensure_utc(date_parser.isoparse(iso_string))


def is_past(deadline: Optional[datetime], now: datetime) -> bool:
    """True when now is strictly after the deadline"""
    if deadline is None:
        return False
    return ensure_utc(now) > ensure_utc(deadline)


def format_travel_time(seconds: float) -> str:
    """
    Format a travel duration

    Examples:
        >>> format_travel_time(540)
        '9 min'
        >>> format_travel_time(3900)
        '1 hr 5 min'
    """
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{minutes} min"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    if remaining_minutes == 0:
        return f"{hours} hr"
    return f"{hours} hr {remaining_minutes} min"


def format_clock_time(dt: datetime) -> str:
    """Short wall-clock rendering used for arrival times (e.g. '3:45 PM')"""
    return ensure_utc(dt).strftime("%I:%M %p").lstrip("0")
