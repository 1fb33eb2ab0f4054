from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from attendance_engine.settings import get_settings

MINUTES_PER_DAY = 24 * 60
DEFAULT_TIMEZONE = "Asia/Shanghai"

_HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value: str) -> int:
    """Minutes after midnight for an "HH:MM" string; "24:00" is end of day (1440)."""
    match = _HHMM_PATTERN.match((value or "").strip())
    if match is None:
        raise ValueError(f"Invalid time '{value}', expected HH:MM.")
    hour = int(match.group(1))
    minute = int(match.group(2))
    if minute > 59 or hour > 24 or (hour == 24 and minute != 0):
        raise ValueError(f"Invalid time '{value}', expected HH:MM.")
    return hour * 60 + minute


def format_hhmm(minutes: int) -> str:
    hours, mins = divmod(max(0, int(minutes)), 60)
    return f"{hours:02d}:{mins:02d}"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def to_local_naive(value: Any) -> Any:
    """Normalize punch timestamps to naive wall-clock time in the attendance timezone.

    Epoch numbers are accepted in seconds or milliseconds. Naive datetimes are
    assumed to already be local. Other values are returned unchanged for the
    model validator to reject.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > 10**11 else value
        value = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(attendance_timezone()).replace(tzinfo=None)
    return value


def to_local_date(value: Any) -> Any:
    if isinstance(value, (int, float, datetime)) and not isinstance(value, bool):
        local = to_local_naive(value)
        return local.date()
    if isinstance(value, str) and "T" in value:
        return to_local_naive(value).date()
    return value


def day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


def at_minutes(day: date, minutes: int) -> datetime:
    return day_start(day) + timedelta(minutes=minutes)


def minutes_since(day: date, value: datetime) -> int:
    """Whole minutes from midnight of ``day``; times on the next day yield values >= 1440."""
    return int((value - day_start(day)).total_seconds() // 60)


def overlap_minutes(start_a: int, end_a: int, start_b: int, end_b: int) -> int:
    return max(0, min(end_a, end_b) - max(start_a, start_b))
