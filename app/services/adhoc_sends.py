"""On-demand e-mails that bypass the slot selector: test e-mail and admin broadcast."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from app.types.schedule_contract import BroadcastRequest, BroadcastResult
from app.utils import mail
from config import settings
import db
from db.db import as_utc, utcnow

_LOGGER = logging.getLogger(__name__)

TEST_EMAIL_LABEL = "Test email"
TEST_EMAIL_SUBJECT = "XJTLU Quiz Helper test email"
TEST_EMAIL_BODY = (
    "This is a test email. If you received it, your reminder e-mail settings work."
)


class CooldownActive(Exception):
    def __init__(self, retry_after_seconds: int, message: str) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


def _wait_message(seconds: int) -> str:
    if seconds >= 60:
        return f"Please wait about {math.ceil(seconds / 60)} minute(s) before sending another test email"
    return f"Please wait {seconds} second(s) before sending another test email"


async def check_test_email_cooldown(user_id: int, now: datetime | None = None) -> None:
    """Raise ``CooldownActive`` if the user's last test e-mail is too recent."""
    last = await db.latest_delivery(user_id, "test")
    if last is None:
        return
    if last.status == "sent":
        cooldown = timedelta(seconds=settings.TEST_EMAIL_COOLDOWN_SECONDS)
    elif last.status == "failed":
        cooldown = timedelta(seconds=settings.TEST_EMAIL_FAILURE_COOLDOWN_SECONDS)
    else:
        # Still in flight; treat like a failure so a crashed attempt does not lock the user out.
        cooldown = timedelta(seconds=settings.TEST_EMAIL_FAILURE_COOLDOWN_SECONDS)
    remaining = last.sent_at + cooldown - as_utc(now or utcnow())
    if remaining.total_seconds() > 0:
        wait = math.ceil(remaining.total_seconds())
        raise CooldownActive(wait, _wait_message(wait))


async def send_test_email(user_id: int, email: str, now: datetime | None = None) -> None:
    """Send one test e-mail to *email* and log it; raises on cooldown or transport failure."""
    await check_test_email_cooldown(user_id, now)
    log_id = await db.record_delivery(
        user_id, None, TEST_EMAIL_LABEL, status="pending", kind="test", now=now
    )
    try:
        await asyncio.to_thread(mail.send_email, email, TEST_EMAIL_SUBJECT, TEST_EMAIL_BODY)
    except mail.MailDeliveryError as exc:
        await db.mark_delivery_failed(log_id, str(exc))
        raise
    await db.mark_delivery_sent(log_id, now=now)


async def broadcast(subject: str, body: str, now: Optional[datetime] = None) -> BroadcastResult:
    """E-mail every registered user and log one record per delivered recipient."""
    request = BroadcastRequest(subject=subject, body=body)
    users = await db.list_users()
    if not users:
        return BroadcastResult()

    result = await asyncio.to_thread(
        mail.send_broadcast, [u["email"] for u in users], request.subject, request.body
    )

    delivered = set(result.sent_emails)
    label = f"[Broadcast] {request.subject[:50]}"
    for user in users:
        if user["email"].lower() in delivered:
            await db.record_delivery(user["id"], None, label, status="sent", kind="broadcast", now=now)
    _LOGGER.info("Broadcast %r: %d sent, %d failed", request.subject, result.sent, result.failed)
    return result


__all__ = ["CooldownActive", "check_test_email_cooldown", "send_test_email", "broadcast"]
