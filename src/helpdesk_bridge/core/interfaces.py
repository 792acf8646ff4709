"""Protocol interfaces for the collaborators of the correlation engine."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from .models import (
    Attachment,
    ChatThreadRef,
    Email,
    LedgerFlag,
    NewTaskRequest,
    RenderedMessage,
    SLAState,
    Task,
    TaskComment,
    TrackerAttachment,
)


class MailboxGateway(Protocol):
    """Source of inbound support email."""

    def fetch_unseen(self) -> list[Email]:
        """Return unread messages matching the configured recipient filter."""
        raise NotImplementedError

    def mark_seen(self, email: Email) -> None:
        """Flag a message as read so it is not fetched again."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any network resources."""
        raise NotImplementedError


class TaskTrackerGateway(Protocol):
    """Helpdesk backend holding the tasks."""

    def find_or_create_partner(self, email: str, name: str) -> int:
        """Return the contact id for ``email``, creating the contact if needed."""
        raise NotImplementedError

    def create_task(self, request: NewTaskRequest) -> int:
        """Create a task and return its id."""
        raise NotImplementedError

    def add_comment(
        self,
        task_id: int,
        body: str,
        *,
        author_partner_id: int | None = None,
        internal: bool = False,
    ) -> int:
        """Post a comment or internal note on a task."""
        raise NotImplementedError

    def set_stage(self, task_id: int, stage_id: int) -> None:
        """Move a task to another stage."""
        raise NotImplementedError

    def assign(self, task_id: int, login: str) -> None:
        """Assign a task to the operator with the given login."""
        raise NotImplementedError

    def get_task(self, task_id: int) -> Task:
        """Return a fresh projection of a task."""
        raise NotImplementedError

    def list_changed_since(self, since: datetime) -> list[Task]:
        """Return project tasks modified after ``since``."""
        raise NotImplementedError

    def list_comments_since(self, since: datetime) -> list[TaskComment]:
        """Return operator-authored task comments created after ``since``."""
        raise NotImplementedError

    def upload_attachment(self, task_id: int, attachment: Attachment) -> int:
        """Store a file on a task and return its id."""
        raise NotImplementedError

    def list_attachments(self, task_id: int) -> list[TrackerAttachment]:
        """Return metadata of every file stored on a task."""
        raise NotImplementedError

    def download_attachment(self, attachment_id: int) -> Attachment:
        """Return the contents of a stored file."""
        raise NotImplementedError

    def count_open_tasks_by_assignee(self, logins: Sequence[str]) -> dict[str, int]:
        """Return open-task counts keyed by operator login."""
        raise NotImplementedError

    def task_url(self, task_id: int) -> str:
        """Return a browser link to a task."""
        raise NotImplementedError


class ChatGateway(Protocol):
    """Team chat channel receiving ticket notifications."""

    def post_new(self, text: str) -> ChatThreadRef | None:
        """Post a top-level message, returning its thread reference if any."""
        raise NotImplementedError

    def post_to_thread(self, ref: ChatThreadRef, text: str) -> None:
        """Reply inside an existing thread."""
        raise NotImplementedError

    def update_message(self, ref: ChatThreadRef, text: str) -> None:
        """Replace the text of a thread's head message."""
        raise NotImplementedError


class MailerGateway(Protocol):
    """Outgoing email transport."""

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        """Deliver a plain-text email or raise ``SendError``."""
        raise NotImplementedError


class TemplateRenderer(Protocol):
    """Produces customer email texts."""

    def render(self, name: str, variables: Mapping[str, Any]) -> RenderedMessage:
        """Render the subject and body templates registered under ``name``."""
        raise NotImplementedError


class DedupLedger(Protocol):
    """Durable record of side effects that already happened."""

    def has(self, flag: LedgerFlag, key: str | int) -> bool:
        """Return whether ``key`` is marked in the ``flag`` namespace."""
        raise NotImplementedError

    def mark(self, flag: LedgerFlag, key: str | int) -> None:
        """Mark ``key``; marking twice is a no-op."""
        raise NotImplementedError

    def clear(self, flag: LedgerFlag, key: str | int) -> None:
        """Remove ``key`` from a clearable namespace."""
        raise NotImplementedError

    def comment_watermark(self) -> datetime | None:
        """Return the last-seen operator comment timestamp."""
        raise NotImplementedError

    def advance_comment_watermark(self, value: datetime) -> None:
        """Move the watermark forward; older values are ignored."""
        raise NotImplementedError

    def thread_ref(self, task_id: int) -> ChatThreadRef | None:
        """Return the chat thread of a task."""
        raise NotImplementedError

    def store_thread_ref(self, task_id: int, ref: ChatThreadRef) -> None:
        """Remember the chat thread of a task; the first write wins."""
        raise NotImplementedError

    def sla_state(self, task_id: int) -> SLAState | None:
        """Return the SLA tracking record of a task."""
        raise NotImplementedError

    def store_sla_state(self, state: SLAState) -> None:
        """Persist an SLA record, never unsetting breaches or timestamps."""
        raise NotImplementedError

    def close(self) -> None:
        """Close the underlying storage."""
        raise NotImplementedError


__all__ = [
    "ChatGateway",
    "DedupLedger",
    "MailboxGateway",
    "MailerGateway",
    "TaskTrackerGateway",
    "TemplateRenderer",
]
