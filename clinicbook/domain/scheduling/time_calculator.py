"""Pure date/time helpers. Times are local clinic wall-clock "HH:MM" strings."""

import re
from datetime import date, datetime, time, timedelta
from typing import Tuple, Union
from zoneinfo import ZoneInfo

from .errors import InvalidTimeFormat
from .schemas import DayOfWeek

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
MINUTES_PER_DAY = 24 * 60

_WEEKDAYS = [
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
    DayOfWeek.SATURDAY,
    DayOfWeek.SUNDAY,
]

TimeLike = Union[str, time]


def day_of_week(day: date) -> DayOfWeek:
    return _WEEKDAYS[day.weekday()]


def to_local_minutes(value: TimeLike) -> int:
    """Minutes since local midnight for "HH:MM" or a ``time``."""
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if not isinstance(value, str):
        raise InvalidTimeFormat(f"Invalid time value: {value!r}")
    match = TIME_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimeFormat(f"Invalid time format (expected HH:MM): {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time(minutes: int) -> str:
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise InvalidTimeFormat(f"Minute offset {minutes} is outside a single day")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_minutes(value: TimeLike, n: int) -> str:
    """Add ``n`` minutes; results that leave the day are rejected."""
    return minutes_to_time(to_local_minutes(value) + n)


def ranges_overlap(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    """Half-open interval intersection: [a0, a1) and [b0, b1)."""
    return a[0] < b[1] and b[0] < a[1]


def parse_date(value: Union[str, date]) -> date:
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise InvalidTimeFormat(f"Invalid date format (expected YYYY-MM-DD): {value!r}") from None


def combine(day: date, value: TimeLike) -> datetime:
    minutes = to_local_minutes(value)
    return datetime.combine(day, time(hour=minutes // 60, minute=minutes % 60))


def format_display_time(value: TimeLike) -> str:
    """12-hour display form, e.g. "13:05" -> "1:05 PM"."""
    minutes = to_local_minutes(value)
    hours, mins = divmod(minutes, 60)
    period = "PM" if hours >= 12 else "AM"
    display_hours = 12 if hours % 12 == 0 else hours % 12
    return f"{display_hours}:{mins:02d} {period}"


def date_range(start: date, days: int):
    for offset in range(days):
        yield start + timedelta(days=offset)


def local_now(timezone: str) -> datetime:
    """Wall-clock time in ``timezone``, naive like every stored date/time."""
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)
