"""Ticket reference extraction and quoted-reply stripping."""

from __future__ import annotations

import re
from collections.abc import Sequence

TICKET_REFERENCE_PATTERN = re.compile(r"\[\s*([A-Za-z0-9_-]+?)\s*-\s*#\s*(\d+)\s*\]")

# Lines that introduce quoted or forwarded content. Everything from the
# first match onwards is discarded.
QUOTE_HEADER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"original message", re.IGNORECASE),
    re.compile(r"původní zpráva", re.IGNORECASE),
    re.compile(r"forwarded message", re.IGNORECASE),
    re.compile(r"přeposlaná zpráva", re.IGNORECASE),
    re.compile(r"^on\b.*\bwrote:$", re.IGNORECASE),
    re.compile(r"napsal\(a\):$|napsala?:$", re.IGNORECASE),
    re.compile(r"^(from|od|sent|odesláno):", re.IGNORECASE),
)


def extract_ticket_id(subject: str | None, prefix: str) -> int | None:
    """Return the ticket id referenced in ``subject`` for ``prefix``."""
    if not subject:
        return None
    expected = prefix.strip().casefold()
    for match in TICKET_REFERENCE_PATTERN.finditer(subject):
        if match.group(1).casefold() != expected:
            continue
        ticket_id = int(match.group(2))
        if ticket_id > 0:
            return ticket_id
    return None


def _is_quote_header(line: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    return any(pattern.search(line) for pattern in patterns)


def strip_quoted_reply(
    body: str, patterns: Sequence[re.Pattern[str]] = QUOTE_HEADER_PATTERNS
) -> str:
    """Remove quoted lines and previous messages from a reply body.

    Lines starting with ``>`` are dropped and everything after the first
    quote header is discarded. When nothing is left the original text is
    returned (stripped), so the only content of a message is never lost.
    """
    kept: list[str] = []
    for line in body.replace("\r\n", "\n").split("\n"):
        trimmed = line.strip()
        if trimmed.startswith(">"):
            continue
        if _is_quote_header(trimmed, patterns):
            break
        kept.append(line.rstrip())
    stripped = "\n".join(kept).strip()
    if not stripped:
        return body.strip()
    return stripped


__all__ = [
    "QUOTE_HEADER_PATTERNS",
    "TICKET_REFERENCE_PATTERN",
    "extract_ticket_id",
    "strip_quoted_reply",
]
