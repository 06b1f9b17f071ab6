"""
Quiz-reminder sweep.

One sweep reads the campus clock, loads every reminder-enabled course, picks
the ones inside their firing window and e-mails each owner once per
occurrence. The delivery log is the only record of what was sent: a slot is
skipped when it has a recent ``sent`` row, or when another sweep already
claimed the same occurrence.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from app.services.slot_selector import select_due_slots
from app.types.schedule_contract import DueSlot, FiringWindow, SweepReport
from app.utils import mail
from app.utils.clock import read_clock
from config import settings
import db

_LOGGER = logging.getLogger(__name__)


def build_window(
    now: datetime | None = None,
    *,
    lead_minutes: Optional[int] = None,
    catchup_minutes: Optional[int] = None,
    lookback_minutes: Optional[int] = None,
) -> FiringWindow:
    catchup = settings.REMINDER_CATCHUP_WINDOW_MINUTES if catchup_minutes is None else catchup_minutes
    lookback = settings.REMINDER_LOOKBACK_MINUTES if lookback_minutes is None else lookback_minutes
    return FiringWindow(
        reading=read_clock(now),
        lead_minutes=settings.REMINDER_LEAD_MINUTES if lead_minutes is None else lead_minutes,
        catchup_minutes=catchup,
        lookback_minutes=max(lookback, catchup),
    )


def render_reminder(due: DueSlot, lead_minutes: int) -> tuple[str, str]:
    name = due.slot.display_name
    subject = f"Quiz reminder: {name}"
    body = (
        f"Your course {name} starts in about {lead_minutes} minutes. "
        "Get ready for the quiz."
    )
    return subject, body


async def _deliver(due: DueSlot, window: FiringWindow, report: SweepReport) -> None:
    slot = due.slot
    now = window.reading.utc
    if await db.has_recent_send(slot.id, window.lookback_minutes, now=now):
        report.skipped += 1
        return

    log_id = await db.claim_delivery(slot.owner_id, slot.id, slot.log_label, due.window_start, now=now)
    if log_id is None:
        _LOGGER.info("Course %s already claimed for %s", slot.id, due.window_start.isoformat())
        report.skipped += 1
        return

    subject, body = render_reminder(due, window.lead_minutes)
    try:
        await asyncio.to_thread(mail.send_email, slot.owner_email, subject, body)
    except mail.MailDeliveryError as exc:
        _LOGGER.error("Reminder for course %s to %s failed: %s", slot.id, slot.owner_email, exc)
        await db.mark_delivery_failed(log_id, str(exc))
        report.failed += 1
        return
    except Exception as exc:  # noqa: BLE001
        # Any send error must release the claim or the occurrence stays locked.
        _LOGGER.exception("Unexpected error sending reminder for course %s", slot.id)
        await db.mark_delivery_failed(log_id, f"{type(exc).__name__}: {exc}")
        report.failed += 1
        return

    # The message is out; a store error here leaves the claim pending so it is not resent.
    await db.mark_delivery_sent(log_id, now=now)
    _LOGGER.info("Email sent to [%s] for [%s]", slot.owner_email, slot.display_name)
    report.sent += 1


async def run_sweep(
    now: datetime | None = None,
    *,
    lead_minutes: Optional[int] = None,
    catchup_minutes: Optional[int] = None,
    lookback_minutes: Optional[int] = None,
) -> SweepReport:
    """Run one sweep. Store errors while loading slots propagate to the caller."""
    window = build_window(
        now,
        lead_minutes=lead_minutes,
        catchup_minutes=catchup_minutes,
        lookback_minutes=lookback_minutes,
    )
    slots = await db.fetch_reminder_slots()
    due = select_due_slots(slots, window)
    report = SweepReport(checked=len(slots), due=len(due))

    for item in due:
        await _deliver(item, window, report)

    if due:
        _LOGGER.info(
            "Sweep at %s %02d:%02d: %s",
            window.reading.weekday_name,
            window.reading.minute_of_day // 60,
            window.reading.minute_of_day % 60,
            report.model_dump(),
        )
    return report


__all__ = ["build_window", "render_reminder", "run_sweep"]
