"""Minimal HTML to plain text conversion for email bodies."""

from __future__ import annotations

import html
import re

_DROPPED_BLOCKS = re.compile(r"<(style|script)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_PARAGRAPH_OPEN = re.compile(r"<p\b[^>]*>", re.IGNORECASE)
_LINE_BREAKS = re.compile(r"</p\s*>|<br\s*/?>|</div\s*>|</li\s*>", re.IGNORECASE)
_LIST_ITEM = re.compile(r"<li\b[^>]*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]*>")
_BLANK_RUNS = re.compile(r"\n{3,}")


def html_to_text(markup: str) -> str:
    """Convert an HTML fragment to readable plain text."""
    text = _DROPPED_BLOCKS.sub("", markup)
    text = _PARAGRAPH_OPEN.sub("", text)
    text = _LINE_BREAKS.sub("\n", text)
    text = _LIST_ITEM.sub("- ", text)
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


__all__ = ["html_to_text"]
