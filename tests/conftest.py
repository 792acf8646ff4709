"""Shared in-memory gateways for correlation tests."""

# pylint: disable=missing-function-docstring,too-many-instance-attributes

from __future__ import annotations

from collections.abc import Iterator, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from helpdesk_bridge.core.config import StorageSettings
from helpdesk_bridge.core.container import GatewayBundle
from helpdesk_bridge.core.errors import ChatError, NotFoundError, SendError, TransientIOError
from helpdesk_bridge.core.models import (
    Attachment,
    ChatThreadRef,
    Email,
    NewTaskRequest,
    Stage,
    Task,
    TaskComment,
    TrackerAttachment,
)
from helpdesk_bridge.rendering import JinjaTemplateRenderer
from helpdesk_bridge.storage import SqliteLedger

NEW_STAGE = Stage(1, "New")
ASSIGNED_STAGE = Stage(2, "Assigned")
PROGRESS_STAGE = Stage(3, "In Progress")
DONE_STAGE = Stage(4, "Done")

STAGES = {stage.id: stage for stage in (NEW_STAGE, ASSIGNED_STAGE, PROGRESS_STAGE, DONE_STAGE)}


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMailbox:
    def __init__(self) -> None:
        self.emails: list[Email] = []
        self.seen: list[str] = []
        self.fail_fetch = False
        self.fail_mark_seen = False
        self.closed = False

    def add(
        self,
        uid: int,
        subject: str,
        body: str = "Hello",
        sender: str = "customer@example.com",
        sender_name: str = "Carol Customer",
        attachments: Sequence[Attachment] = (),
    ) -> Email:
        email = Email(
            id=f"INBOX-{uid}",
            uid=uid,
            mailbox="INBOX",
            subject=subject,
            sender=sender,
            sender_name=sender_name,
            body=body,
            attachments=tuple(attachments),
        )
        self.emails.append(email)
        return email

    def fetch_unseen(self) -> list[Email]:
        if self.fail_fetch:
            raise TransientIOError("mailbox offline")
        return [email for email in self.emails if email.id not in self.seen]

    def mark_seen(self, email: Email) -> None:
        if self.fail_mark_seen:
            raise TransientIOError("cannot store flags")
        self.seen.append(email.id)

    def close(self) -> None:
        self.closed = True


class FakeTracker:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.tasks: dict[int, Task] = {}
        self.partners: dict[str, int] = {}
        self.created: list[NewTaskRequest] = []
        self.comments: list[dict[str, object]] = []
        self.stage_changes: list[tuple[int, int]] = []
        self.assignments: list[tuple[int, str]] = []
        self.uploads: list[tuple[int, str]] = []
        self.operator_comments: list[TaskComment] = []
        self.stored_attachments: dict[int, list[Attachment]] = {}
        self.open_counts: dict[str, int] = {}
        self.comment_queries: list[datetime] = []
        self.fail_create = False
        self.fail_comment = False
        self.fail_changed = False
        self.fail_close = False
        self.closed = False
        self._next_id = 100

    def add_task(
        self,
        task_id: int,
        stage: Stage = NEW_STAGE,
        name: str = "Printer offline",
        customer_email: str | None = "customer@example.com",
        assignee: str | None = None,
    ) -> Task:
        task = Task(
            id=task_id,
            name=name,
            stage=stage,
            customer_email=customer_email,
            customer_name="Carol Customer" if customer_email else None,
            assignee_login=assignee,
            write_date=self.clock(),
        )
        self.tasks[task_id] = task
        return task

    def find_or_create_partner(self, email: str, name: str) -> int:
        return self.partners.setdefault(email.lower(), 500 + len(self.partners))

    def create_task(self, request: NewTaskRequest) -> int:
        if self.fail_create:
            raise TransientIOError("tracker unavailable")
        self._next_id += 1
        self.created.append(request)
        self.tasks[self._next_id] = Task(
            id=self._next_id,
            name=request.name,
            stage=STAGES[request.stage_id or 1],
            customer_email=request.customer_email,
            customer_name=request.customer_name,
            partner_id=request.partner_id,
            write_date=self.clock(),
        )
        return self._next_id

    def add_comment(
        self,
        task_id: int,
        body: str,
        *,
        author_partner_id: int | None = None,
        internal: bool = False,
    ) -> int:
        if task_id not in self.tasks:
            raise NotFoundError(f"task {task_id} does not exist")
        if self.fail_comment and not internal:
            raise TransientIOError("comment rejected")
        self.comments.append(
            {
                "task_id": task_id,
                "body": body,
                "author_partner_id": author_partner_id,
                "internal": internal,
            }
        )
        return 9000 + len(self.comments)

    def set_stage(self, task_id: int, stage_id: int) -> None:
        self.stage_changes.append((task_id, stage_id))
        self.tasks[task_id].stage = STAGES[stage_id]

    def assign(self, task_id: int, login: str) -> None:
        self.assignments.append((task_id, login))
        self.tasks[task_id].assignee_login = login

    def get_task(self, task_id: int) -> Task:
        try:
            return self.tasks[task_id]
        except KeyError:
            raise NotFoundError(f"task {task_id} does not exist") from None

    def list_changed_since(self, since: datetime) -> list[Task]:
        if self.fail_changed:
            raise TransientIOError("search failed")
        return list(self.tasks.values())

    def list_comments_since(self, since: datetime) -> list[TaskComment]:
        self.comment_queries.append(since)
        return [comment for comment in self.operator_comments if comment.created_at > since]

    def upload_attachment(self, task_id: int, attachment: Attachment) -> int:
        self.uploads.append((task_id, attachment.filename))
        return 700 + len(self.uploads)

    def list_attachments(self, task_id: int) -> list[TrackerAttachment]:
        return [
            TrackerAttachment(
                id=task_id * 10 + index,
                filename=item.filename,
                content_type=item.content_type,
                size=item.size,
            )
            for index, item in enumerate(self.stored_attachments.get(task_id, []))
        ]

    def download_attachment(self, attachment_id: int) -> Attachment:
        task_id, index = divmod(attachment_id, 10)
        return self.stored_attachments[task_id][index]

    def count_open_tasks_by_assignee(self, logins: Sequence[str]) -> dict[str, int]:
        return {login: self.open_counts.get(login, 0) for login in logins}

    def task_url(self, task_id: int) -> str:
        return f"https://tracker.test/web#id={task_id}&model=project.task&view_type=form"

    def close(self) -> None:
        self.closed = True
        if self.fail_close:
            raise TransientIOError("connection reset")


class FakeChat:
    def __init__(self) -> None:
        self.heads: list[str] = []
        self.thread_posts: list[tuple[ChatThreadRef, str]] = []
        self.updates: list[tuple[ChatThreadRef, str]] = []
        self.fail = False
        self.closed = False

    def post_new(self, text: str) -> ChatThreadRef | None:
        if self.fail:
            raise ChatError("chat down")
        self.heads.append(text)
        return ChatThreadRef(channel="C1", timestamp=f"{len(self.heads)}.000100")

    def post_to_thread(self, ref: ChatThreadRef, text: str) -> None:
        if self.fail:
            raise ChatError("chat down")
        self.thread_posts.append((ref, text))

    def update_message(self, ref: ChatThreadRef, text: str) -> None:
        if self.fail:
            raise ChatError("chat down")
        self.updates.append((ref, text))

    def close(self) -> None:
        self.closed = True


class FakeMailer:
    def __init__(self) -> None:
        self.sent: list[dict[str, object]] = []
        self.fail = False

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        if self.fail:
            raise SendError("smtp refused")
        self.sent.append(
            {
                "to": to,
                "subject": subject,
                "body": body,
                "attachments": [item.filename for item in attachments],
            }
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(tmp_path: Path) -> Iterator[SqliteLedger]:
    with SqliteLedger(StorageSettings(ledger_path=tmp_path / "ledger.db")) as instance:
        yield instance


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def tracker(clock: FakeClock) -> FakeTracker:
    return FakeTracker(clock)


@pytest.fixture
def chat() -> FakeChat:
    return FakeChat()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def gateways(
    mailbox: FakeMailbox,
    tracker: FakeTracker,
    chat: FakeChat,
    mailer: FakeMailer,
    ledger: SqliteLedger,
) -> GatewayBundle:
    return GatewayBundle(
        mailbox=mailbox,
        tracker=tracker,
        chat=chat,
        mailer=mailer,
        renderer=JinjaTemplateRenderer(),
        ledger=ledger,
    )
