import smtplib

import pytest
import pytest_asyncio

import db
from app.utils import mail


class FakeTransport:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, sender, recipient, message):
        if recipient in self.fail_for:
            raise smtplib.SMTPRecipientsRefused({recipient: (550, b"mailbox unavailable")})
        body = message.get_payload(decode=True).decode("utf-8")
        self.sent.append((recipient, message["Subject"], body))


@pytest.fixture
def fake_mail():
    transport = FakeTransport()
    mail.set_transport(transport)
    yield transport
    mail.reset_transport()


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    return url


@pytest_asyncio.fixture
async def database(db_url):
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()
