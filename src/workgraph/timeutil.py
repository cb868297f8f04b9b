"""Time reference parsing and formatting for the CLI.

Supports:
- ISO format: "2025-01-15", "2025-01-15T14:30:00"
- Relative: "7 days ago", "2 weeks ago", "1 month ago"
- Named: "now", "today", "yesterday", "last week", "last month"

Workflow durations are plain seconds; format_duration() renders them.
"""

import re
from datetime import datetime, timedelta, timezone

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

from .constants import (
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    SECONDS_PER_MINUTE,
    SECONDS_PER_MONTH,
    SECONDS_PER_WEEK,
    SECONDS_PER_YEAR,
)

_AGO_PATTERN = re.compile(r"(\d+)\s*(second|minute|hour|day|week|month|year)s?\s*ago")

_UNIT_DELTAS = {
    "second": lambda n: timedelta(seconds=n),
    "minute": lambda n: timedelta(minutes=n),
    "hour": lambda n: timedelta(hours=n),
    "day": lambda n: timedelta(days=n),
    "week": lambda n: timedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
    "year": lambda n: relativedelta(years=n),
}

# Largest unit first
_RELATIVE_UNITS = [
    (SECONDS_PER_YEAR, "year"),
    (SECONDS_PER_MONTH, "month"),
    (SECONDS_PER_WEEK, "week"),
    (SECONDS_PER_DAY, "day"),
    (SECONDS_PER_HOUR, "hour"),
    (SECONDS_PER_MINUTE, "minute"),
]


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_time_reference(ref: str, now: datetime | None = None) -> datetime:
    """Parse a human-friendly time reference.

    Args:
        ref: Time reference string
        now: Reference point for relative times (default: current UTC time)

    Returns:
        Parsed datetime (timezone-aware, naive inputs taken as UTC)

    Raises:
        ValueError: If the reference cannot be parsed

    Examples:
        >>> parse_time_reference("2025-01-15")
        datetime(2025, 1, 15, 0, 0, tzinfo=timezone.utc)

        >>> parse_time_reference("3 days ago")  # relative to now
        datetime(...)
    """
    if now is None:
        now = datetime.now(timezone.utc)

    text = ref.strip().lower()

    named = {
        "now": lambda: now,
        "today": lambda: _midnight(now),
        "yesterday": lambda: _midnight(now - timedelta(days=1)),
        "last week": lambda: now - timedelta(weeks=1),
        "last month": lambda: now - relativedelta(months=1),
        "last year": lambda: now - relativedelta(years=1),
    }
    if text in named:
        return named[text]()

    match = _AGO_PATTERN.fullmatch(text)
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        return now - _UNIT_DELTAS[unit](amount)

    try:
        parsed = dateparser.parse(text)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_relative_time(dt: datetime, now: datetime | None = None) -> str:
    """Render a past datetime as "3 days ago" and similar."""
    if now is None:
        now = datetime.now(timezone.utc)

    seconds = int((now - dt).total_seconds())
    if seconds < 0:
        return "in the future"

    for size, name in _RELATIVE_UNITS:
        if seconds >= size:
            count = seconds // size
            return f"{count} {name}{'s' if count != 1 else ''} ago"
    return f"{seconds} seconds ago"


def format_duration(seconds: float) -> str:
    """Compact duration: 45s, 12m 30s, 3h 5m, 2d 4h."""
    if seconds < SECONDS_PER_MINUTE:
        return f"{seconds:g}s"

    total = int(round(seconds))
    if total < SECONDS_PER_HOUR:
        minutes, secs = divmod(total, SECONDS_PER_MINUTE)
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    if total < SECONDS_PER_DAY:
        hours, rest = divmod(total, SECONDS_PER_HOUR)
        minutes = rest // SECONDS_PER_MINUTE
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"

    days, rest = divmod(total, SECONDS_PER_DAY)
    hours = rest // SECONDS_PER_HOUR
    return f"{days}d {hours}h" if hours else f"{days}d"
