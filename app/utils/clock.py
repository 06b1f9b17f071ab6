"""Campus clock: UTC+8 civil time, independent of the host timezone.

Weekdays are numbered Monday=1 … Sunday=7 everywhere in the backend.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Tuple, Union

from app.types.schedule_contract import ClockReading

CAMPUS_TZ = timezone(timedelta(hours=8), "UTC+08:00")

MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

_WEEKDAY_ALIASES: dict[str, int] = {}
for _num, _name in enumerate(WEEKDAY_NAMES, start=1):
    _WEEKDAY_ALIASES[_name.lower()] = _num
    _WEEKDAY_ALIASES[_name[:3].lower()] = _num
for _num, _char in enumerate("一二三四五六日", start=1):
    _WEEKDAY_ALIASES[f"周{_char}"] = _num
    _WEEKDAY_ALIASES[f"星期{_char}"] = _num
_WEEKDAY_ALIASES["周天"] = 7
_WEEKDAY_ALIASES["星期天"] = 7

_HHMM = re.compile(r"^(\d{2}):(\d{2})$")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def campus_now(now: datetime | None = None) -> datetime:
    """Return *now* (default: the host clock) as an aware UTC+8 datetime."""
    ref = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return ref.astimezone(CAMPUS_TZ)


def read_clock(now: datetime | None = None) -> ClockReading:
    local = campus_now(now)
    return ClockReading(
        local=local,
        weekday=local.isoweekday(),
        minute_of_day=local.hour * 60 + local.minute,
    )


def parse_weekday(value: Union[int, str]) -> int:
    """Map a stored weekday (1..7, English or Chinese name) to Monday=1 … Sunday=7."""
    if isinstance(value, bool):
        raise ValueError(f"invalid weekday: {value!r}")
    if isinstance(value, int):
        num = value
    else:
        text = str(value).strip()
        if text.isdigit():
            num = int(text)
        else:
            num = _WEEKDAY_ALIASES.get(text.lower(), 0)
    if not 1 <= num <= 7:
        raise ValueError(f"invalid weekday: {value!r}")
    return num


def parse_hhmm(value: str) -> int:
    """Convert a strict ``HH:MM`` string into minutes after midnight."""
    match = _HHMM.match(str(value or "").strip())
    if not match:
        raise ValueError(f"time must be HH:MM, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"time out of range: {value!r}")
    return hours * 60 + minutes


def campus_week_bounds(now: datetime | None = None) -> Tuple[datetime, datetime]:
    """UTC instants of this campus week's Monday 00:00 and the following Monday 00:00."""
    local = campus_now(now)
    monday = (local - timedelta(days=local.isoweekday() - 1)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    next_monday = monday + timedelta(days=7)
    return monday.astimezone(timezone.utc), next_monday.astimezone(timezone.utc)


__all__ = [
    "CAMPUS_TZ",
    "MINUTES_PER_DAY",
    "MINUTES_PER_WEEK",
    "WEEKDAY_NAMES",
    "campus_now",
    "read_clock",
    "parse_weekday",
    "parse_hhmm",
    "campus_week_bounds",
]
