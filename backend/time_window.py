"""
Second Brain Calendar Planner - Time & Window Utilities
Pure calendar math. Everything is computed in UTC so the host timezone never leaks in.
"""

import re
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, Union


MINUTES_PER_DAY = 24 * 60

YMD_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
TIME_OF_DAY_PATTERN = re.compile(r"([0-9]{2}):([0-9]{2})")
INTEGER_PATTERN = re.compile(r"-?[0-9]+")


class CalendarValidationError(ValueError):
    """Raised for caller input the planner refuses to work with."""


# ============================================
# INSTANTS
# ============================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_midnight_utc(value: datetime) -> bool:
    value = ensure_utc(value)
    return value.hour == 0 and value.minute == 0 and value.second == 0 and value.microsecond == 0


def minute_of_day(value: datetime) -> int:
    """Minutes since UTC midnight, seconds dropped."""
    value = ensure_utc(value)
    return value.hour * 60 + value.minute


# ============================================
# DAYS
# ============================================

def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def start_of_day_utc(value: date) -> datetime:
    return datetime.combine(value, time(0, 0), tzinfo=timezone.utc)


def at_minute(value: date, minutes: int) -> datetime:
    """Instant `minutes` after UTC midnight of the given day (1440 is the next midnight)."""
    return start_of_day_utc(value) + timedelta(minutes=minutes)


def utc_day_of_week(value: Union[date, datetime]) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return (value.weekday() + 1) % 7


def start_of_week_monday_utc(now: datetime) -> date:
    """Monday of the ISO week containing `now` (in UTC)."""
    today = ensure_utc(now).date()
    return add_days(today, -today.weekday())


def day_index(value: Union[date, datetime], window_start: date) -> int:
    """Offset in days of a date (or the UTC date of an instant) from the window start."""
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return (value - window_start).days


# ============================================
# PARSING & FORMATTING
# ============================================

def parse_ymd(value: str) -> date:
    """
    Parse a strict YYYY-MM-DD string.

    Raises:
        CalendarValidationError: when the string is malformed or not a real date
    """
    if not isinstance(value, str) or not YMD_PATTERN.fullmatch(value):
        raise CalendarValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise CalendarValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD")


def to_ymd(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return value.isoformat()


def parse_time_of_day_to_minutes(value: str) -> int:
    """
    Parse HH:MM (24-hour) into minutes since midnight.

    Raises:
        CalendarValidationError: for anything outside 00:00-23:59
    """
    match = TIME_OF_DAY_PATTERN.fullmatch(value) if isinstance(value, str) else None
    if not match:
        raise CalendarValidationError(f"Invalid time '{value}'. Use HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise CalendarValidationError(f"Invalid time '{value}'. Use HH:MM")
    return hour * 60 + minute


def parse_bounded_int(name: str, value: Union[int, str, None], low: int, high: int) -> Optional[int]:
    """
    Parse an optional integer option (int or decimal string) within [low, high].

    Raises:
        CalendarValidationError: for non-integers and out-of-range values
    """
    if value is None:
        return None
    parsed = None
    if isinstance(value, int) and not isinstance(value, bool):
        parsed = value
    elif isinstance(value, str) and INTEGER_PATTERN.fullmatch(value.strip()):
        parsed = int(value.strip())
    if parsed is None or parsed < low or parsed > high:
        raise CalendarValidationError(f"Invalid {name}. Use an integer between {low} and {high}")
    return parsed


def format_minutes(minutes: int) -> str:
    """Format minutes since midnight as HH:MM."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def align_up_to_step(value: int, step: int) -> int:
    """Round a minute-of-day up to the next multiple of `step`."""
    remainder = value % step
    if remainder == 0:
        return value
    return value + step - remainder
