"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


@dataclass(slots=True)
class Attachment:
    """File carried by an email or uploaded to a task."""

    filename: str
    content_type: str
    payload: bytes

    @property
    def size(self) -> int:
        """Return the payload length in bytes."""
        return len(self.payload)


@dataclass(slots=True)
class ParsedContent:
    """Body text and attachments extracted from a raw MIME message."""

    body: str
    attachments: tuple[Attachment, ...] = ()


@dataclass(slots=True)
class MessageChunk:
    """Raw IMAP payload paired with its UID."""

    uid: int
    raw: bytes


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Email:
    """Decoded inbound message."""

    id: str
    uid: int
    mailbox: str
    subject: str
    sender: str
    sender_name: str
    body: str
    attachments: tuple[Attachment, ...] = ()


@dataclass(slots=True, frozen=True)
class Stage:
    """Tracker stage reference."""

    id: int | None
    name: str


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Task:
    """Read-mostly projection of a tracker task."""

    id: int
    name: str
    stage: Stage
    customer_email: str | None = None
    customer_name: str | None = None
    partner_id: int | None = None
    assignee_login: str | None = None
    write_date: datetime | None = None


@dataclass(slots=True)
class TaskComment:
    """Comment posted on a task by an operator."""

    id: int
    task_id: int
    body: str
    author_name: str
    created_at: datetime
    message_type: str = "comment"


@dataclass(slots=True)
class TrackerAttachment:
    """Metadata for a file stored on a task."""

    id: int
    filename: str
    content_type: str
    size: int


@dataclass(slots=True)
class NewTaskRequest:
    """Fields required to open a ticket for an inbound email."""

    name: str
    description: str
    partner_id: int | None
    stage_id: int | None
    customer_email: str
    customer_name: str


@dataclass(slots=True, frozen=True)
class ChatThreadRef:
    """Location of the head message of a task's chat thread."""

    channel: str
    timestamp: str


@dataclass(slots=True)
class SLAState:
    """Response-time tracking for a single task."""

    task_id: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    start_breached: bool = False
    resolution_breached: bool = False


class LedgerFlag(StrEnum):
    """Namespaces of the dedup ledger."""

    PROCESSED_EMAIL = "processed_email"
    SENT_COMMENT = "sent_comment"
    CLOSED_NOTIFIED = "closed_notified"
    REOPENED_NOTIFIED = "reopened_notified"


class SlaBreach(StrEnum):
    """Kinds of SLA breaches, valued by the label posted on the task."""

    START = "SLA_START_BREACH"
    RESOLUTION = "SLA_RESOLUTION_BREACH"


@dataclass(slots=True)
class RenderedMessage:
    """Subject and body produced from an email template."""

    subject: str
    body: str


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class TickReport:
    """Outcome summary for one correlation tick."""

    emails_processed: int = 0
    tasks_created: int = 0
    customer_comments: int = 0
    tasks_reopened: int = 0
    replies_sent: int = 0
    completions_notified: int = 0
    reopenings_notified: int = 0
    sla_breaches: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)


__all__ = [
    "Attachment",
    "ChatThreadRef",
    "Email",
    "LedgerFlag",
    "MessageChunk",
    "NewTaskRequest",
    "ParsedContent",
    "RenderedMessage",
    "SLAState",
    "SlaBreach",
    "Stage",
    "Task",
    "TaskComment",
    "TickReport",
    "TrackerAttachment",
]
