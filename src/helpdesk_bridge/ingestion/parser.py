"""Utilities for parsing raw RFC822 messages into structured models."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from email import message_from_bytes, policy
from email.header import decode_header, make_header
from email.message import Message
from email.parser import BytesHeaderParser
from email.utils import getaddresses

from ..core.errors import ParseError
from ..core.models import Attachment, Email, ParsedContent
from .charset import decode_charset, extension_for_content_type
from .html import html_to_text

LOGGER = logging.getLogger(__name__)

_BODY_TYPES = ("text/plain", "text/html")


class MailParser:
    """Decode raw MIME bytes into body text and attachments.

    Parsing never raises: malformed input degrades to the raw message body.
    """

    def parse(self, raw: bytes) -> ParsedContent:
        """Return the best-effort body and attachments of ``raw``."""
        try:
            return self._parse_structure(raw)
        except Exception:  # pylint: disable=broad-except
            LOGGER.debug("MIME parsing failed, using raw body", exc_info=True)
            return ParsedContent(body=_strip_headers(raw))

    def _parse_structure(self, raw: bytes) -> ParsedContent:
        message = message_from_bytes(raw, policy=policy.compat32)

        if message.get_content_maintype() != "multipart":
            return ParsedContent(body=_single_part_text(message))

        parts = message.get_payload()
        if not isinstance(parts, list) or not parts:
            raise ParseError("multipart message without parts")

        body, attachments = _walk_parts(parts)
        if not body and not attachments:
            LOGGER.debug("No body or attachments found, using raw payload")
            body = _strip_headers(raw) or raw.decode("utf-8", errors="replace").strip()
        return ParsedContent(body=body, attachments=attachments)


class EmailParser:
    """Build :class:`Email` instances from IMAP payloads."""

    def __init__(self, mail_parser: MailParser | None = None) -> None:
        """Prepare header and body parsers."""
        self._headers = BytesHeaderParser(policy=policy.default)
        self._mail_parser = mail_parser or MailParser()

    def parse(self, uid: int, payload: bytes, mailbox: str) -> Email:
        """Parse raw RFC822 bytes into an :class:`Email`."""
        subject, sender, sender_name = self._parse_headers(payload)
        content = self._mail_parser.parse(payload)
        return Email(
            id=f"{mailbox}-{uid}",
            uid=uid,
            mailbox=mailbox,
            subject=subject,
            sender=sender,
            sender_name=sender_name or sender,
            body=content.body,
            attachments=content.attachments,
        )

    def _parse_headers(self, payload: bytes) -> tuple[str, str, str]:
        try:
            headers = self._headers.parsebytes(payload)
            subject = str(headers.get("Subject", "") or "")
            from_header = str(headers.get("From", "") or "")
        except Exception:  # pylint: disable=broad-except
            LOGGER.debug("Header parsing failed, retrying leniently", exc_info=True)
            legacy = message_from_bytes(payload, policy=policy.compat32)
            subject = _decode_words(legacy.get("Subject"))
            from_header = _decode_words(legacy.get("From"))
        name, address = _first_address(from_header)
        return subject.strip(), address, name


def _first_address(header_value: str) -> tuple[str, str]:
    for name, address in getaddresses([header_value]):
        if address:
            return name.strip(), address.strip()
    return "", header_value.strip()


def _decode_words(value: str | None) -> str:
    """Decode RFC 2047 encoded words, keeping undecodable input as-is."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (LookupError, UnicodeDecodeError, ValueError):
        return str(value)


def _strip_headers(raw: bytes) -> str:
    """Return everything after the first blank line of ``raw``."""
    text = raw.decode("utf-8", errors="replace").replace("\r\n", "\n")
    _, separator, body = text.partition("\n\n")
    if not separator:
        return ""
    return body.strip()


def _decoded_payload(part: Message) -> bytes:
    payload = part.get_payload(decode=True)
    if isinstance(payload, bytes):
        return payload
    return b""


def _part_text(part: Message) -> str:
    """Decode a text part's transfer encoding and charset."""
    text = decode_charset(_decoded_payload(part), part.get_content_charset())
    return text.strip()


def _single_part_text(message: Message) -> str:
    content_type = message.get_content_type()
    if content_type == "text/plain":
        return _part_text(message)
    if content_type == "text/html":
        return html_to_text(_part_text(message))
    return ""


def _is_attachment(part: Message) -> bool:
    content_type = part.get_content_type()
    disposition = part.get_content_disposition()
    is_text = content_type.startswith("text/")
    if disposition == "attachment":
        return True
    if disposition == "inline" and not is_text:
        return True
    if part.get_param("name") and not is_text:
        return True
    return content_type.startswith(("image/", "application/"))


def _resolve_filename(part: Message) -> str:
    disposition_name = part.get_param("filename", header="content-disposition")
    content_name = part.get_param("name")
    for candidate in (disposition_name, content_name):
        if candidate:
            name = _decode_words(_unquote_param(candidate)).strip()
            if name:
                return name
    extension = extension_for_content_type(part.get_content_type())
    return f"attachment{extension}" if extension else "attachment.bin"


def _unquote_param(value: object) -> str:
    """Flatten RFC 2231 parameter tuples returned by ``get_param``."""
    if isinstance(value, tuple):
        charset, _, text = value
        raw = text.encode("latin-1", errors="replace") if isinstance(text, str) else text
        return decode_charset(raw, charset)
    return str(value)


def _to_attachment(part: Message) -> Attachment:
    if part.is_multipart():
        # message/rfc822 attachments keep the embedded message verbatim.
        inner = part.get_payload()
        payload = b"".join(
            item.as_bytes() for item in inner if isinstance(item, Message)
        )
    else:
        payload = _decoded_payload(part)
    return Attachment(
        filename=_resolve_filename(part),
        content_type=part.get_content_type(),
        payload=payload,
    )


def _walk_parts(parts: Sequence[Message]) -> tuple[str, tuple[Attachment, ...]]:
    """Classify ``parts`` recursively into a body and attachments.

    The first non-empty text part found in document order becomes the body;
    HTML bodies are converted to plain text.
    """
    body = ""
    attachments: list[Attachment] = []

    for part in parts:
        content_type = part.get_content_type()

        if part.is_multipart() and not (
            content_type.startswith("message/")
            and part.get_content_disposition() == "attachment"
        ):
            nested = part.get_payload()
            if not isinstance(nested, list):
                continue
            nested_body, nested_attachments = _walk_parts(nested)
            if not body:
                body = nested_body
            attachments.extend(nested_attachments)
            continue

        if content_type.startswith("multipart/"):
            LOGGER.debug("Skipping unparsable %s part", content_type)
            continue

        if _is_attachment(part):
            attachment = _to_attachment(part)
            LOGGER.debug(
                "Found attachment %s (%s, %d bytes)",
                attachment.filename,
                attachment.content_type,
                attachment.size,
            )
            attachments.append(attachment)
            continue

        if content_type in _BODY_TYPES and not body:
            text = _part_text(part)
            body = html_to_text(text) if content_type == "text/html" else text

    return body, tuple(attachments)


__all__ = ["EmailParser", "MailParser"]
