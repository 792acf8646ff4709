"""Ingestion pipeline components."""

from .charset import decode_charset, extension_for_content_type
from .html import html_to_text
from .parser import EmailParser, MailParser
from .references import QUOTE_HEADER_PATTERNS, extract_ticket_id, strip_quoted_reply

__all__ = [
    "EmailParser",
    "MailParser",
    "QUOTE_HEADER_PATTERNS",
    "decode_charset",
    "extension_for_content_type",
    "extract_ticket_id",
    "html_to_text",
    "strip_quoted_reply",
]
