import pytest

from app.utils import mail
from config import settings


class _FakeServer:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.calls = []
        _FakeServer.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        self.calls.append("ehlo")

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))

    def sendmail(self, sender, recipients, text):
        self.calls.append(("sendmail", sender, tuple(recipients)))


@pytest.fixture
def fake_smtp(monkeypatch):
    _FakeServer.instances = []
    monkeypatch.setattr(mail.smtplib, "SMTP", _FakeServer)
    monkeypatch.setattr(mail.smtplib, "SMTP_SSL", _FakeServer)
    return _FakeServer


def test_broadcast_counts_failures_per_recipient(fake_mail):
    fake_mail.fail_for.add("b@example.com")
    result = mail.send_broadcast(["a@example.com", "B@example.com ", "c@example.com"], "Hi", "Body")
    assert (result.sent, result.failed) == (2, 1)
    assert result.sent_emails == ["a@example.com", "c@example.com"]
    assert [to for to, _, _ in fake_mail.sent] == ["a@example.com", "c@example.com"]


def test_send_email_wraps_transport_errors(monkeypatch):
    class Broken:
        def send(self, sender, recipient, message):
            raise ConnectionRefusedError("no route")

    mail.set_transport(Broken())
    try:
        with pytest.raises(mail.MailDeliveryError):
            mail.send_email("a@example.com", "s", "b")
    finally:
        mail.reset_transport()


def test_port_465_uses_implicit_tls(fake_smtp, monkeypatch):
    ssl_calls = []

    class _Ssl(_FakeServer):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            ssl_calls.append(self)

    monkeypatch.setattr(mail.smtplib, "SMTP_SSL", _Ssl)
    transport = mail.SmtpTransport("smtp.example.com", 465, "bot", "secret")
    transport.send("from@x", "to@x", mail.build_message("from@x", "to@x", "s", "b"))

    server = ssl_calls[0]
    assert "starttls" not in server.calls
    assert ("login", "bot") in server.calls


def test_submission_port_upgrades_and_skips_login_without_user(fake_smtp):
    transport = mail.SmtpTransport("smtp.example.com", 587)
    transport.send("from@x", "to@x", mail.build_message("from@x", "to@x", "s", "b"))

    server = fake_smtp.instances[0]
    assert "starttls" in server.calls
    assert not any(isinstance(c, tuple) and c[0] == "login" for c in server.calls)
    assert ("sendmail", "from@x", ("to@x",)) in server.calls


def test_missing_host_falls_back_to_log_only(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", None)
    mail.reset_transport()
    try:
        assert isinstance(mail.get_transport(), mail.LogOnlyTransport)
        mail.send_email("a@example.com", "s", "b")
    finally:
        mail.reset_transport()


def test_configured_host_builds_smtp_transport(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "SMTP_PORT", 465)
    mail.reset_transport()
    try:
        transport = mail.get_transport()
        assert isinstance(transport, mail.SmtpTransport)
        assert transport.implicit_tls
        assert mail.get_transport() is transport
    finally:
        mail.reset_transport()
