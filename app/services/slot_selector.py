"""Decide which weekly slots are inside their reminder firing window."""

from __future__ import annotations

from datetime import timedelta, timezone
from typing import Iterable, List, Optional

from app.types.schedule_contract import DueSlot, FiringWindow, RecurringSlot
from app.utils.clock import MINUTES_PER_DAY, MINUTES_PER_WEEK


def reminder_minute_of_week(slot: RecurringSlot, lead_minutes: int) -> int:
    return (slot.minute_of_week - lead_minutes) % MINUTES_PER_WEEK


def _previous_weekday(weekday: int) -> int:
    return 7 if weekday == 1 else weekday - 1


def minutes_since_reminder(slot: RecurringSlot, window: FiringWindow) -> Optional[int]:
    """Minutes elapsed since the slot's reminder time today, or ``None`` if not today.

    The reminder only counts on the slot's own weekday. A slot that starts
    less than L minutes after midnight also fires on the previous weekday,
    from ``start - L + 1440`` until midnight.
    """
    reading = window.reading
    reminder_at = slot.start_minute_of_day - window.lead_minutes
    if reading.weekday == slot.weekday:
        return reading.minute_of_day - reminder_at
    if reminder_at < 0 and reading.weekday == _previous_weekday(slot.weekday):
        return reading.minute_of_day - (reminder_at + MINUTES_PER_DAY)
    return None


def select_due_slots(slots: Iterable[RecurringSlot], window: FiringWindow) -> List[DueSlot]:
    """Return slots whose reminder time lies in ``[now - W, now]`` on their own day."""
    reading = window.reading
    minute_start = reading.local.replace(second=0, microsecond=0)
    due: List[DueSlot] = []
    for slot in slots:
        if not slot.reminder_enabled:
            continue
        diff = minutes_since_reminder(slot, window)
        if diff is None or not 0 <= diff <= window.catchup_minutes:
            continue
        due.append(
            DueSlot(
                slot=slot,
                reminder_minute_of_week=reminder_minute_of_week(slot, window.lead_minutes),
                minutes_late=diff,
                window_start=(minute_start - timedelta(minutes=diff)).astimezone(timezone.utc),
            )
        )
    return due


__all__ = ["reminder_minute_of_week", "minutes_since_reminder", "select_due_slots"]
