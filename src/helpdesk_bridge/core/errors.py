"""Error taxonomy shared by the core and the gateway implementations."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for every failure raised by helpdesk-bridge components."""


class TransientIOError(BridgeError):
    """Network or storage hiccup; the next tick retries from scratch."""


class StorageError(TransientIOError):
    """Raised when the ledger cannot be read or written."""


class SendError(TransientIOError):
    """Raised when an outgoing email could not be delivered to the SMTP server."""


class ChatError(TransientIOError):
    """Raised when the chat API rejects or fails a request."""


class AuthenticationError(BridgeError):
    """Credentials were rejected by an external system."""


class ParseError(BridgeError):
    """Malformed email or MIME content. Never escapes the mail parser."""


class ValidationError(BridgeError):
    """Invalid or incomplete configuration."""


class NotFoundError(BridgeError):
    """A referenced task, partner, user or attachment does not exist."""


class RenderError(BridgeError):
    """A template is missing or does not match the supplied variables."""


__all__ = [
    "AuthenticationError",
    "BridgeError",
    "ChatError",
    "NotFoundError",
    "ParseError",
    "RenderError",
    "SendError",
    "StorageError",
    "TransientIOError",
    "ValidationError",
]
