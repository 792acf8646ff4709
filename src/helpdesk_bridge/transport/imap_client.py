"""IMAP transport adapter providing mailbox access."""

from __future__ import annotations

import imaplib
import logging
import time
from collections.abc import Callable
from types import TracebackType
from typing import TypeVar

from ..core.config import ImapSettings
from ..core.errors import AuthenticationError, TransientIOError
from ..core.interfaces import MailboxGateway
from ..core.models import Email, MessageChunk
from ..ingestion.parser import EmailParser

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Connection-level failures that warrant a reconnect.
_RECONNECT_ERRORS: tuple[type[BaseException], ...] = (imaplib.IMAP4.abort, OSError)


class ImapError(TransientIOError):
    """Wrap low level IMAP errors with additional context."""


class ImapClient(MailboxGateway):
    """Fetch unread support mail over IMAP with bounded reconnects."""

    def __init__(
        self,
        settings: ImapSettings,
        parser: EmailParser | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise the client with configuration settings."""
        self._settings = settings
        self._parser = parser or EmailParser()
        self._sleep = sleep
        self._connection: imaplib.IMAP4 | imaplib.IMAP4_SSL | None = None
        self.mailbox = settings.folder

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapClient:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Establish IMAP connection and select the configured mailbox."""
        if self._connection is not None:
            return

        username = self._settings.username
        password = self._settings.password
        if not self._settings.host or username is None or password is None:
            raise AuthenticationError("IMAP credentials are not configured")

        LOGGER.debug(
            "Connecting to IMAP host %s:%s (ssl=%s)",
            self._settings.host,
            self._settings.port,
            self._settings.use_ssl,
        )
        if self._settings.use_ssl:
            connection: imaplib.IMAP4 | imaplib.IMAP4_SSL = imaplib.IMAP4_SSL(
                self._settings.host,
                self._settings.port,
                timeout=self._settings.timeout_seconds,
            )
        else:
            connection = imaplib.IMAP4(
                self._settings.host,
                self._settings.port,
                timeout=self._settings.timeout_seconds,
            )

        try:
            self._open_session(connection, username, password)
        except Exception:
            _discard(connection)
            raise
        self._connection = connection

    def _open_session(
        self, connection: imaplib.IMAP4, username: str, password: str
    ) -> None:
        try:
            LOGGER.debug("Authenticating as %s", username)
            connection.login(username, password)
        except imaplib.IMAP4.abort:
            raise
        except imaplib.IMAP4.error as exc:
            raise AuthenticationError(f"IMAP login failed for {username}") from exc

        status, _ = connection.select(self.mailbox)
        if status != "OK":
            raise ImapError(f"Unable to select mailbox '{self.mailbox}'")

    def fetch_unseen(self) -> list[Email]:
        """Return unread messages addressed to the configured recipient."""
        chunks = self._with_retry("fetch unseen messages", self._fetch_unseen_chunks)
        emails: list[Email] = []
        for chunk in chunks:
            emails.append(self._parser.parse(chunk.uid, chunk.raw, self.mailbox))
        LOGGER.debug("Fetched %d unseen messages from %s", len(emails), self.mailbox)
        return emails

    def mark_seen(self, email: Email) -> None:
        """Flag ``email`` as read, adding the processed keyword when configured."""
        flags = r"\Seen"
        if self._settings.processed_keyword:
            flags = f"{flags} {self._settings.processed_keyword}"
        uid_str = str(email.uid)

        def store() -> None:
            connection = self._require_connection()
            status, _ = connection.uid("STORE", uid_str, "+FLAGS", f"({flags})")
            if status != "OK":
                raise ImapError(f"Failed to mark message UID {uid_str} as seen")

        self._with_retry(f"mark UID {uid_str} seen", store)
        LOGGER.debug("Marked UID %s as seen", uid_str)

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        if self._connection is None:
            return
        try:
            LOGGER.debug("Closing IMAP connection")
            self._connection.close()
        except (imaplib.IMAP4.error, OSError):  # pragma: no cover - depends on server state
            LOGGER.debug("IMAP close raised; continuing with logout")
        finally:
            try:
                self._connection.logout()
            except (imaplib.IMAP4.error, OSError):  # pragma: no cover
                LOGGER.debug("IMAP logout raised; suppressing during shutdown")
            self._connection = None

    # Internal helpers ---------------------------------------------------------
    def _fetch_unseen_chunks(self) -> list[MessageChunk]:
        connection = self._require_connection()
        criteria = ["UNSEEN"]
        if self._settings.search_to:
            criteria.extend(["TO", f'"{self._settings.search_to}"'])
        status, data = connection.uid("SEARCH", None, *criteria)  # type: ignore[arg-type]
        if status != "OK":
            raise ImapError("Failed to search for unseen messages")

        raw_ids = data[0].split() if data and data[0] else []
        chunks: list[MessageChunk] = []
        for uid_bytes in raw_ids:
            uid_str = uid_bytes.decode()
            status_fetch, fetch_data = connection.uid("FETCH", uid_str, "(BODY.PEEK[])")
            if status_fetch != "OK":
                LOGGER.warning("Failed to fetch message UID %s", uid_str)
                continue
            payload = _extract_payload(fetch_data)
            if payload is None:
                LOGGER.warning("No payload returned for UID %s", uid_str)
                continue
            chunks.append(MessageChunk(uid=int(uid_str), raw=payload))
        return chunks

    def _with_retry(self, description: str, operation: Callable[[], T]) -> T:
        attempts = self._settings.retry_attempts + 1
        for attempt in range(1, attempts + 1):
            try:
                self.connect()
                return operation()
            except _RECONNECT_ERRORS as exc:
                self._drop_connection()
                if attempt >= attempts:
                    raise ImapError(
                        f"IMAP connection lost during {description}: {exc}"
                    ) from exc
                LOGGER.warning(
                    "IMAP connection lost during %s (attempt %d/%d): %s",
                    description,
                    attempt,
                    attempts,
                    exc,
                )
                self._sleep(self._settings.retry_delay_seconds)
            except imaplib.IMAP4.error as exc:
                raise ImapError(f"IMAP error during {description}: {exc}") from exc
        raise ImapError(f"IMAP {description} did not run")  # pragma: no cover

    def _drop_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            connection.shutdown()
        except (imaplib.IMAP4.error, OSError):
            LOGGER.debug("Ignoring error while dropping IMAP connection")

    def _require_connection(self) -> imaplib.IMAP4 | imaplib.IMAP4_SSL:
        if self._connection is None:
            raise ImapError("IMAP connection has not been established")
        return self._connection


def _discard(connection: imaplib.IMAP4) -> None:
    """Drop a connection whose session never became usable."""
    try:
        connection.shutdown()
    except OSError:
        LOGGER.debug("IMAP shutdown raised while discarding connection")


def _extract_payload(fetch_data: list[tuple[bytes, bytes] | bytes]) -> bytes | None:
    """Extract the message payload from ``imaplib`` response chunks."""
    for entry in fetch_data:
        if isinstance(entry, tuple) and len(entry) == 2:
            return entry[1]
    return None


__all__ = [
    "ImapClient",
    "ImapError",
]
