"""Transport adapters for the mailbox, tracker, chat and mailer."""

from .chat_client import NullChatClient, SlackChatClient, build_chat_client
from .imap_client import ImapClient, ImapError
from .smtp_client import OutgoingEmail, SmtpClient, SmtpError
from .tracker_client import TrackerClient, TrackerError

__all__ = [
    "ImapClient",
    "ImapError",
    "NullChatClient",
    "OutgoingEmail",
    "SlackChatClient",
    "SmtpClient",
    "SmtpError",
    "TrackerClient",
    "TrackerError",
    "build_chat_client",
]
