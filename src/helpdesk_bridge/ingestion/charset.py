"""Charset and content-type lookup tables for MIME decoding."""

from __future__ import annotations

import codecs
import logging

LOGGER = logging.getLogger(__name__)

# Central European and Western code pages seen in support mail.
CHARSET_ALIASES: dict[str, str] = {
    "iso-8859-2": "iso8859_2",
    "iso8859-2": "iso8859_2",
    "latin2": "iso8859_2",
    "windows-1250": "cp1250",
    "cp1250": "cp1250",
    "iso-8859-1": "latin_1",
    "iso8859-1": "latin_1",
    "latin1": "latin_1",
    "windows-1252": "cp1252",
    "cp1252": "cp1252",
    "utf-8": "utf_8",
    "utf8": "utf_8",
    "us-ascii": "utf_8",
    "ascii": "utf_8",
}

CONTENT_TYPE_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/zip": ".zip",
    "message/rfc822": ".eml",
    "text/plain": ".txt",
    "text/html": ".html",
}

# Checked in order when the exact content type is unknown.
_PARTIAL_EXTENSIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("jpeg", "jpg"), ".jpg"),
    (("png",), ".png"),
    (("pdf",), ".pdf"),
    (("word",), ".docx"),
    (("excel",), ".xlsx"),
    (("image/",), ".bin"),
    (("text/",), ".txt"),
)


def codec_for_charset(charset: str | None) -> str:
    """Return the Python codec name used to decode ``charset``."""
    if not charset:
        return "utf_8"
    normalized = charset.strip().strip('"').lower()
    alias = CHARSET_ALIASES.get(normalized)
    if alias is not None:
        return alias
    try:
        return codecs.lookup(normalized).name
    except LookupError:
        LOGGER.debug("Unknown charset %s, decoding as UTF-8", normalized)
        return "utf_8"


def decode_charset(data: bytes, charset: str | None) -> str:
    """Decode ``data`` to text, never failing on bad bytes."""
    return data.decode(codec_for_charset(charset), errors="replace")


def extension_for_content_type(content_type: str | None) -> str:
    """Return a file extension for ``content_type`` or an empty string."""
    if not content_type:
        return ""
    normalized = content_type.strip().lower()
    exact = CONTENT_TYPE_EXTENSIONS.get(normalized)
    if exact is not None:
        return exact
    for needles, extension in _PARTIAL_EXTENSIONS:
        if any(needle in normalized for needle in needles):
            return extension
    return ""


__all__ = [
    "CHARSET_ALIASES",
    "CONTENT_TYPE_EXTENSIONS",
    "codec_for_charset",
    "decode_charset",
    "extension_for_content_type",
]
