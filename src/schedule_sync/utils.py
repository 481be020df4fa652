"""Clock and ISO week key helpers shared by the parser, persister and fan-out."""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

# Week keys are WWYYYY, e.g. "442025" for ISO week 44 of 2025.
_WEEK_KEY = re.compile(r"^(\d{2})(\d{4})$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def week_key(day: date) -> str:
    """ISO week key (WWYYYY) for a date.

    Uses the ISO year, so 2024-12-30 belongs to week 01 of 2025.
    """
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_week:02d}{iso_year:04d}"


def week_key_for_date_string(date_str: str) -> str:
    """Week key for a YYYY-MM-DD string as found in the schedule markup."""
    return week_key(date.fromisoformat(date_str))


def is_valid_week_key(key: str) -> bool:
    match = _WEEK_KEY.match(key)
    if not match:
        return False
    week, year = int(match.group(1)), int(match.group(2))
    try:
        date.fromisocalendar(year, week, 1)
    except ValueError:
        return False
    return True


def monday_of_week(key: str) -> date:
    """First day (Monday) of the ISO week named by a WWYYYY key.

    Raises:
        ValueError: If the key is malformed or names a week the year doesn't have.
    """
    match = _WEEK_KEY.match(key)
    if not match:
        raise ValueError(f"Malformed week key {key!r}, expected WWYYYY")
    return date.fromisocalendar(int(match.group(2)), int(match.group(1)), 1)


def next_week_key(day: date) -> str:
    return week_key(day + timedelta(days=7))
