import smtplib
from types import SimpleNamespace

import pytest

import notifications
from notifications import EmailNotifier


class FakeSMTP:
    instances = []
    fail_for = set()

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.messages = []
        FakeSMTP.instances.append(self)

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        if password == "bad":
            raise smtplib.SMTPAuthenticationError(535, b"Authentication failed")

    def send_message(self, msg, to_addrs=None):
        if set(to_addrs) & FakeSMTP.fail_for:
            raise smtplib.SMTPRecipientsRefused({a: (550, b"no such user") for a in to_addrs})
        self.messages.append((msg, to_addrs))

    def quit(self):
        pass


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_for = set()
    monkeypatch.setattr(notifications.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def make_notifier(password="secret"):
    return EmailNotifier(
        smtp_server="smtp.test",
        smtp_port=587,
        smtp_user="mailer@devhub.tech",
        smtp_password=password,
        from_email="Meal Orders <noreply@devhub.tech>",
        app_url="https://meals.test",
    )


def test_not_configured_skips_send(monkeypatch):
    monkeypatch.delenv("SMTP_USER", raising=False)
    monkeypatch.delenv("SMTP_PASSWORD", raising=False)
    notifier = EmailNotifier()

    assert notifier.is_configured() is False
    assert notifier.send_email("ana.pop@devhub.tech", "Hi", "<p>Hi</p>") == {
        "success": False,
        "error": "Email not configured",
    }
    assert FakeSMTP.instances == []


def test_placeholder_credentials_are_not_configured():
    notifier = EmailNotifier(smtp_user="your-email@gmail.com", smtp_password="your-app-password")
    assert notifier.is_configured() is False


def test_send_email_uses_starttls():
    result = make_notifier().send_email("ana.pop@devhub.tech", "Hi", "<p>Hello <b>Ana</b></p>")

    assert result == {"success": True}
    server = FakeSMTP.instances[0]
    assert server.started_tls is True
    msg, to_addrs = server.messages[0]
    assert to_addrs == ["ana.pop@devhub.tech"]
    assert msg["Subject"] == "Hi"
    # Plain-text part is derived from the HTML when not given
    assert msg.get_payload()[0].get_payload() == "Hello Ana"


def test_authentication_failure_is_reported():
    result = make_notifier(password="bad").send_email("ana.pop@devhub.tech", "Hi", "<p>Hi</p>")

    assert result["success"] is False
    assert "authentication" in result["error"]


def test_meal_options_notification_counts_failures(fake_smtp):
    fake_smtp.fail_for = {"ion.rusu@devhub.tech"}
    users = [
        SimpleNamespace(email="ana.pop@devhub.tech"),
        SimpleNamespace(email="ion.rusu@devhub.tech"),
        SimpleNamespace(email=None),
    ]

    result = make_notifier().send_meal_options_notification("2025-10-13", users)

    assert result["sent"] == 1
    assert result["failed"] == 1
    assert result["errors"][0]["email"] == "ion.rusu@devhub.tech"


def test_meal_options_notification_without_recipients():
    result = make_notifier().send_meal_options_notification("2025-10-13", [SimpleNamespace(email=None)])
    assert result["success"] is False
    assert result["sent"] == 0


def test_invitation_email_links_token():
    make_notifier().send_invitation_email("new.person@devhub.tech", "abc123", False, "admin@devhub.tech")

    msg, _ = FakeSMTP.instances[0].messages[0]
    assert "https://meals.test/accept-invitation.html?token=abc123" in msg.get_payload()[0].get_payload()


def test_feedback_escapes_html():
    make_notifier().send_feedback("feedback@devhub.tech", "Meniu", "<script>x</script>", "Ana Pop", "ana.pop@devhub.tech")

    msg, _ = FakeSMTP.instances[0].messages[0]
    assert msg["Subject"] == "[Meal Orders Feedback] Meniu"
    html = msg.get_payload()[1].get_payload()
    assert "&lt;script&gt;" in html
