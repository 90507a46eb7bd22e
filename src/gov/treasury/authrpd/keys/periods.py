"""Monthly signing period identifiers.

A period id (the ``kid`` of its signing key) is the UTC calendar month in
``YYYY-MM`` form.
"""

import re
from datetime import datetime, timezone
from typing import Callable, List, Optional

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_period_id(value: str) -> bool:
    return value is not None and PERIOD_PATTERN.match(value) is not None


def period_id(when: Optional[datetime] = None) -> str:
    """Return the period id for ``when`` (defaults to now). Naive values are treated as UTC."""
    if when is None:
        when = utcnow()
    elif when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return f"{when.year:04d}-{when.month:02d}"


def previous_period(value: str) -> str:
    year, month = (int(part) for part in value.split("-"))
    if month == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{month - 1:02d}"


def rolling_window(current: str, previous_count: int) -> List[str]:
    """Return ``current`` followed by the ``previous_count`` preceding periods, newest first."""
    periods = [current]
    for _ in range(previous_count):
        periods.append(previous_period(periods[-1]))
    return periods
