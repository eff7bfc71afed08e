"""Time helpers for the CLI: `--since` parsing and elapsed-time display."""

import re
from datetime import datetime, timedelta

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

_AGO = re.compile(r"^(\d+)\s*(hour|day|week|month)s?\s+ago$")

# (seconds, unit) from largest to smallest
_RELATIVE_UNITS = [
    (30 * 86400, "month"),
    (7 * 86400, "week"),
    (86400, "day"),
    (3600, "hour"),
    (60, "minute"),
]


def parse_time_reference(ref: str, now: datetime | None = None) -> datetime:
    """Parse a `--since` value into an aware datetime.

    Accepts "today", "yesterday", "<n> hours/days/weeks/months ago" and
    anything dateutil understands (e.g. "2025-10-01"). Naive dates are
    taken as local time.

    Raises:
        ValueError: If the reference cannot be parsed
    """
    if now is None:
        now = datetime.now().astimezone()
    ref = ref.strip().lower()

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if ref == "today":
        return midnight
    if ref == "yesterday":
        return midnight - timedelta(days=1)

    match = _AGO.match(ref)
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        return now - relativedelta(**{f"{unit}s": amount})

    try:
        parsed = dateparser.parse(ref)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e
    return parsed if parsed.tzinfo else parsed.astimezone()


def format_duration(delta: timedelta) -> str:
    """Format an elapsed time as "3h25m" or "40m"."""
    hours, minutes = divmod(max(int(delta.total_seconds()) // 60, 0), 60)
    return f"{hours}h{minutes}m" if hours else f"{minutes}m"


def format_relative_time(dt: datetime, now: datetime | None = None) -> str:
    """Format a bake start like "2 days ago"."""
    if now is None:
        now = datetime.now().astimezone()
    seconds = int((now - dt).total_seconds())
    if seconds < 0:
        return "in the future"
    for size, unit in _RELATIVE_UNITS:
        if seconds >= size:
            n = seconds // size
            return f"{n} {unit}{'s' if n != 1 else ''} ago"
    return "just now"
