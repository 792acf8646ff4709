"""SMTP client for customer notification emails."""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Sequence
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import TYPE_CHECKING

from ..core.errors import SendError
from ..core.interfaces import MailerGateway
from ..core.models import Attachment

if TYPE_CHECKING:
    from ..core.config import SmtpSettings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutgoingEmail:
    """Outgoing email message representation.

    Attributes:
        to: Recipient email address
        subject: Email subject line
        body: Plain text body
        attachments: Files attached after the body
    """

    to: str
    subject: str
    body: str
    attachments: tuple[Attachment, ...] = ()


class SmtpError(SendError):
    """Raised when SMTP connection, authentication, or sending fails."""


class SmtpClient(MailerGateway):
    """SMTP client for sending plain text emails with attachments.

    Each :meth:`send` outside a ``with`` block opens and closes its own
    session. Supports both STARTTLS and implicit SSL connections.
    """

    def __init__(self, settings: SmtpSettings) -> None:
        """Initialize SMTP client with configuration."""
        self._settings = settings
        self._connection: smtplib.SMTP | None = None

    def __enter__(self) -> SmtpClient:
        """Enter context manager, establishing connection."""
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        """Exit context manager, closing connection."""
        self.disconnect()

    def connect(self) -> None:
        """Establish SMTP connection and authenticate.

        Raises:
            SmtpError: If connection or authentication fails
        """
        if not self._settings.host:
            raise SmtpError("SMTP host not configured")

        LOGGER.debug(
            "Opening SMTP connection to %s:%d",
            self._settings.host,
            self._settings.port,
        )

        try:
            if self._settings.use_tls:
                self._connection = smtplib.SMTP(
                    self._settings.host,
                    self._settings.port,
                    timeout=self._settings.timeout_seconds,
                )
                self._connection.starttls()
            else:
                self._connection = smtplib.SMTP_SSL(
                    self._settings.host,
                    self._settings.port,
                    timeout=self._settings.timeout_seconds,
                )

            if self._settings.username and self._settings.password:
                LOGGER.debug("Authenticating as %s", self._settings.username)
                self._connection.login(
                    self._settings.username,
                    self._settings.password,
                )

        except smtplib.SMTPAuthenticationError as exc:
            self._connection = None
            raise SmtpError(f"SMTP authentication failed: {exc}") from exc
        except smtplib.SMTPException as exc:
            self._connection = None
            raise SmtpError(f"SMTP error: {exc}") from exc
        except OSError as exc:
            self._connection = None
            raise SmtpError(f"Network error: {exc}") from exc

    def disconnect(self) -> None:
        """Close SMTP connection gracefully."""
        if self._connection:
            try:
                self._connection.quit()
                LOGGER.debug("SMTP connection closed")
            except (smtplib.SMTPException, OSError) as exc:
                LOGGER.warning("Error closing SMTP connection: %s", exc)
            finally:
                self._connection = None

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        """Send a plain text email, raising :class:`SmtpError` on failure."""
        message = OutgoingEmail(
            to=to, subject=subject, body=body, attachments=tuple(attachments)
        )
        if self._connection is not None:
            self._deliver(message)
            return
        self.connect()
        try:
            self._deliver(message)
        finally:
            self.disconnect()

    def _deliver(self, message: OutgoingEmail) -> None:
        if not self._connection:
            raise SmtpError("Not connected to SMTP server")

        mime_message = self._build_mime_message(message)
        LOGGER.debug("Email headers: %s", dict(mime_message.items()))

        try:
            refused = self._connection.send_message(mime_message)
        except smtplib.SMTPRecipientsRefused as exc:
            raise SmtpError(f"All recipients refused: {exc}") from exc
        except smtplib.SMTPSenderRefused as exc:
            raise SmtpError(f"Sender refused: {exc}") from exc
        except smtplib.SMTPDataError as exc:
            raise SmtpError(f"SMTP data error: {exc}") from exc
        except smtplib.SMTPException as exc:
            raise SmtpError(f"Failed to send email: {exc}") from exc
        except OSError as exc:
            raise SmtpError(f"Network error: {exc}") from exc

        if refused:
            raise SmtpError(f"Some recipients were refused: {refused}")

        LOGGER.info(
            "Email sent to %s: %s (%d attachments)",
            message.to,
            message.subject,
            len(message.attachments),
        )

    def _build_mime_message(self, message: OutgoingEmail) -> MIMEMultipart:
        """Build a ``multipart/mixed`` message from :class:`OutgoingEmail`."""
        mime_msg = MIMEMultipart("mixed")

        from_email = self._settings.from_email or self._settings.username or ""
        mime_msg["From"] = formataddr((self._settings.from_name or "", from_email))
        mime_msg["To"] = message.to
        mime_msg["Subject"] = message.subject
        mime_msg["Message-ID"] = make_msgid(domain=from_email.partition("@")[2] or None)

        mime_msg.attach(MIMEText(message.body, "plain", "utf-8"))

        for attachment in message.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEApplication(attachment.payload, _subtype=subtype or "octet-stream")
            if maintype != "application":
                part.replace_header("Content-Type", attachment.content_type)
            part.add_header(
                "Content-Disposition", "attachment", filename=attachment.filename
            )
            mime_msg.attach(part)

        return mime_msg


__all__ = ["OutgoingEmail", "SmtpClient", "SmtpError"]
