"""Outbound e-mail.

The SMTP connection settings are read once, on first use, so tests can swap
the transport with ``set_transport`` before anything is sent.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Iterable, Optional, Protocol

from app.types.schedule_contract import BroadcastResult
from config import settings

_LOGGER = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


class MailDeliveryError(RuntimeError):
    """Raised when the transport could not hand a message to the server."""


class MailTransport(Protocol):
    def send(self, sender: str, recipient: str, message: MIMEText) -> None: ...


class SmtpTransport:
    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    @property
    def implicit_tls(self) -> bool:
        return self.port == IMPLICIT_TLS_PORT

    def _connect(self) -> smtplib.SMTP:
        if self.implicit_tls:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        return server

    def send(self, sender: str, recipient: str, message: MIMEText) -> None:
        with self._connect() as server:
            if self.user:
                server.login(self.user, self.password or "")
            server.sendmail(sender, [recipient], message.as_string())


class LogOnlyTransport:
    """Used when no SMTP host is configured (local development)."""

    def send(self, sender: str, recipient: str, message: MIMEText) -> None:
        _LOGGER.info("[MAIL] DEV mode: would send to %s: %s", recipient, message["Subject"])


_transport: Optional[MailTransport] = None


def get_transport() -> MailTransport:
    global _transport
    if _transport is None:
        if settings.SMTP_HOST:
            _transport = SmtpTransport(
                settings.SMTP_HOST,
                settings.SMTP_PORT,
                settings.SMTP_USER,
                settings.SMTP_PASS,
                settings.SMTP_TIMEOUT,
            )
        else:
            _LOGGER.warning("SMTP_HOST not set; e-mails will only be logged")
            _transport = LogOnlyTransport()
    return _transport


def set_transport(transport: Optional[MailTransport]) -> None:
    global _transport
    _transport = transport


def reset_transport() -> None:
    set_transport(None)


def build_message(sender: str, to: str, subject: str, body: str) -> MIMEText:
    msg = MIMEText(body, "plain", "utf-8")
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    return msg


def send_email(to: str, subject: str, body: str) -> None:
    """Send exactly one message. Raises ``MailDeliveryError`` on failure."""
    sender = settings.SMTP_FROM
    try:
        get_transport().send(sender, to, build_message(sender, to, subject, body))
    except (smtplib.SMTPException, OSError) as exc:
        raise MailDeliveryError(f"failed to send to {to}: {exc}") from exc


def _normalise(recipients: Iterable[str]) -> list[str]:
    out: list[str] = []
    for r in recipients:
        addr = (r or "").strip().lower()
        if addr and addr not in out:
            out.append(addr)
    return out


def send_broadcast(recipients: Iterable[str], subject: str, body: str) -> BroadcastResult:
    """Send the same message to every recipient; one failure never stops the batch."""
    result = BroadcastResult()
    for addr in _normalise(recipients):
        try:
            send_email(addr, subject, body)
        except MailDeliveryError as exc:
            _LOGGER.warning("Broadcast to %s failed: %s", addr, exc)
            result.failed += 1
            continue
        result.sent += 1
        result.sent_emails.append(addr)
    return result


__all__ = [
    "MailDeliveryError",
    "SmtpTransport",
    "LogOnlyTransport",
    "get_transport",
    "set_transport",
    "reset_transport",
    "send_email",
    "send_broadcast",
]
