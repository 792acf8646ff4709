"""Tests for the SMTP mailer."""

# pylint: disable=protected-access

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock

import pytest

from helpdesk_bridge.core.config import SmtpSettings
from helpdesk_bridge.core.errors import SendError
from helpdesk_bridge.core.models import Attachment
from helpdesk_bridge.transport import smtp_client
from helpdesk_bridge.transport.smtp_client import OutgoingEmail, SmtpClient, SmtpError


def _settings() -> SmtpSettings:
    return SmtpSettings(
        host="smtp.test",
        port=587,
        username="bot@example.com",
        password="secret",
        from_name="Support",
        from_email="support@example.com",
    )


def test_build_mime_message_includes_attachments() -> None:
    client = SmtpClient(_settings())
    message = OutgoingEmail(
        to="customer@example.com",
        subject="[TICKET-#42] Your request has been resolved",
        body="Hello Carol",
        attachments=(
            Attachment("log.txt", "text/plain", b"trace"),
            Attachment("report.pdf", "application/pdf", b"%PDF"),
        ),
    )

    mime = client._build_mime_message(message)

    assert mime["From"] == "Support <support@example.com>"
    assert mime["To"] == "customer@example.com"
    assert mime["Subject"] == "[TICKET-#42] Your request has been resolved"
    assert mime["Message-ID"].endswith("@example.com>")
    parts = mime.get_payload()
    assert parts[0].get_payload(decode=True) == b"Hello Carol"
    assert parts[1].get_filename() == "log.txt"
    assert parts[1].get_content_type() == "text/plain"
    assert parts[1].get_payload(decode=True) == b"trace"
    assert parts[2].get_content_type() == "application/pdf"


def test_send_opens_session_and_quits(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = MagicMock()
    connection.send_message.return_value = {}
    factory = MagicMock(return_value=connection)
    monkeypatch.setattr(smtp_client.smtplib, "SMTP", factory)

    SmtpClient(_settings()).send("customer@example.com", "Hello", "Body")

    factory.assert_called_once_with("smtp.test", 587, timeout=20)
    connection.starttls.assert_called_once()
    connection.login.assert_called_once_with("bot@example.com", "secret")
    connection.send_message.assert_called_once()
    connection.quit.assert_called_once()


def test_refused_recipient_raises_send_error(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = MagicMock()
    connection.send_message.side_effect = smtplib.SMTPRecipientsRefused(
        {"customer@example.com": (550, b"no such user")}
    )
    monkeypatch.setattr(smtp_client.smtplib, "SMTP", MagicMock(return_value=connection))

    with pytest.raises(SendError):
        SmtpClient(_settings()).send("customer@example.com", "Hello", "Body")
    connection.quit.assert_called_once()


def test_authentication_failure_raises_smtp_error(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = MagicMock()
    connection.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad creds")
    monkeypatch.setattr(smtp_client.smtplib, "SMTP", MagicMock(return_value=connection))

    with pytest.raises(SmtpError):
        SmtpClient(_settings()).send("customer@example.com", "Hello", "Body")
    connection.send_message.assert_not_called()


def test_missing_host_is_rejected() -> None:
    with pytest.raises(SmtpError):
        SmtpClient(SmtpSettings()).send("customer@example.com", "Hello", "Body")
