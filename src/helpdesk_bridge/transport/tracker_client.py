"""Task tracker gateway speaking Odoo-style JSON-RPC over httpx."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, TypeVar

import httpx

from ..core.config import TrackerSettings
from ..core.datetime_utils import format_tracker_datetime, parse_tracker_datetime
from ..core.errors import AuthenticationError, NotFoundError, ValidationError
from ..core.interfaces import TaskTrackerGateway
from ..core.models import (
    Attachment,
    NewTaskRequest,
    Stage,
    Task,
    TaskComment,
    TrackerAttachment,
)
from ..ingestion.html import html_to_text
from .tracker_rpc import (
    AttachmentRecord,
    CreateRequest,
    JsonRpcTransport,
    MessagePostRequest,
    MessageRecord,
    MessageSubscribeRequest,
    PartnerRecord,
    ReadRequest,
    RpcCall,
    SearchCountRequest,
    SearchRequest,
    TaskRecord,
    TrackerError,
    TrackerRecord,
    UserRecord,
    WriteRequest,
)

LOGGER = logging.getLogger(__name__)

R = TypeVar("R", bound=TrackerRecord)

QUERY_LIMIT = 200
TASK_MODEL = "project.task"
_TASK_FIELDS = ("id", "name", "stage_id", "partner_id", "user_ids", "write_date")


class TrackerClient(TaskTrackerGateway):
    """Read and mutate helpdesk tasks of one tracker project."""

    def __init__(
        self,
        settings: TrackerSettings,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Connect to the tracker and authenticate the API user."""
        if not settings.url or not settings.db or not settings.username:
            raise ValidationError("tracker url, db and username are required")
        if settings.project_id is None:
            raise ValidationError("tracker project_id is required")
        self._settings = settings
        self._project_id = settings.project_id
        self._password = settings.password or ""
        self._http = http_client or httpx.Client(
            base_url=settings.url.rstrip("/"),
            timeout=settings.timeout_seconds,
            headers={"Content-Type": "application/json"},
        )
        self._rpc = JsonRpcTransport(
            self._http, retry_attempts=settings.retry_attempts, sleep=sleep
        )
        self._uid = self._authenticate()

    def close(self) -> None:
        """Close the HTTP connection pool."""
        self._http.close()

    # Contacts ----------------------------------------------------------------
    def find_or_create_partner(self, email: str, name: str) -> int:
        """Return the contact id for ``email``, creating the contact if needed."""
        ids = self._execute(
            SearchRequest("res.partner", [("email", "=ilike", email)], limit=1)
        )
        if ids:
            return int(ids[0])
        LOGGER.debug("Creating contact for %s", email)
        created = self._execute(
            CreateRequest(
                "res.partner", {"name": name.strip() or email, "email": email}
            )
        )
        return int(created)

    # Tasks -------------------------------------------------------------------
    def create_task(self, request: NewTaskRequest) -> int:
        """Create a task in the configured project and subscribe the customer."""
        values: dict[str, Any] = {
            "name": request.name,
            "project_id": self._project_id,
            "description": request.description,
        }
        if request.partner_id:
            values["partner_id"] = request.partner_id
        if request.stage_id:
            values["stage_id"] = request.stage_id
        if not request.description:
            LOGGER.warning("Creating task '%s' with an empty description", request.name)

        task_id = int(self._execute(CreateRequest(TASK_MODEL, values)))
        LOGGER.debug("Created task %s", task_id)

        if request.partner_id:
            try:
                self._execute(MessageSubscribeRequest(task_id, [request.partner_id]))
            except TrackerError as exc:
                LOGGER.warning(
                    "Could not add contact %s as follower of task %s: %s",
                    request.partner_id,
                    task_id,
                    exc,
                )
        return task_id

    def add_comment(
        self,
        task_id: int,
        body: str,
        *,
        author_partner_id: int | None = None,
        internal: bool = False,
    ) -> int:
        """Post a public comment or an internal note on a task."""
        request = MessagePostRequest(
            task_id=task_id,
            body=body,
            subtype_xmlid="mail.mt_note" if internal else "mail.mt_comment",
            author_id=author_partner_id,
        )
        result = self._execute(request)
        return int(result) if isinstance(result, int) else 0

    def set_stage(self, task_id: int, stage_id: int) -> None:
        """Move a task to ``stage_id``."""
        LOGGER.debug("Moving task %s to stage %s", task_id, stage_id)
        self._execute(WriteRequest(TASK_MODEL, [task_id], {"stage_id": stage_id}))

    def assign(self, task_id: int, login: str) -> None:
        """Replace the assignees of a task with the user ``login``."""
        user_id = self._user_id_for_login(login)
        if user_id is None:
            raise NotFoundError(f"no tracker user with login {login}")
        self._execute(
            WriteRequest(TASK_MODEL, [task_id], {"user_ids": [[6, 0, [user_id]]]})
        )
        LOGGER.debug("Assigned task %s to %s", task_id, login)

    def get_task(self, task_id: int) -> Task:
        """Return a fresh projection of a task."""
        records = self._read(TaskRecord, TASK_MODEL, [task_id], _TASK_FIELDS)
        if not records:
            raise NotFoundError(f"task {task_id} not found")
        return self._build_tasks(records)[0]

    def list_changed_since(self, since: datetime) -> list[Task]:
        """Return every project task modified after ``since``, oldest change first.

        Ids are fetched in pages of ``QUERY_LIMIT`` so a busy window is never
        truncated.
        """
        domain = [
            ("project_id", "=", self._project_id),
            ("write_date", ">", format_tracker_datetime(since)),
        ]
        ids: list[int] = []
        while True:
            page = self._execute(
                SearchRequest(
                    TASK_MODEL,
                    domain,
                    limit=QUERY_LIMIT,
                    order="write_date asc, id asc",
                    offset=len(ids),
                )
            ) or []
            ids.extend(int(task_id) for task_id in page)
            if len(page) < QUERY_LIMIT:
                break
        if not ids:
            return []

        records: list[TaskRecord] = []
        for start in range(0, len(ids), QUERY_LIMIT):
            records.extend(
                self._read(TaskRecord, TASK_MODEL, ids[start : start + QUERY_LIMIT], _TASK_FIELDS)
            )
        order = {task_id: index for index, task_id in enumerate(ids)}
        records.sort(key=lambda record: order.get(record.id, len(order)))
        LOGGER.debug("Fetched %d changed tasks since %s", len(records), since)
        return self._build_tasks(records)

    # Comments ----------------------------------------------------------------
    def list_comments_since(self, since: datetime) -> list[TaskComment]:
        """Return operator-authored chatter messages created after ``since``."""
        task_ids = self._execute(
            SearchRequest(TASK_MODEL, [("project_id", "=", self._project_id)])
        )
        if not task_ids:
            return []
        message_ids = self._execute(
            SearchRequest(
                "mail.message",
                [
                    ("model", "=", TASK_MODEL),
                    ("res_id", "in", list(task_ids)),
                    ("date", ">", format_tracker_datetime(since)),
                ],
                limit=QUERY_LIMIT,
                order="date asc, id asc",
            )
        )
        if not message_ids:
            return []
        messages = self._read(
            MessageRecord,
            "mail.message",
            message_ids,
            ("id", "res_id", "body", "date", "message_type", "author_id"),
        )
        operators = self._operator_partner_ids(
            message.author_id[0] for message in messages if message.author_id
        )

        comments: list[TaskComment] = []
        for message in messages:
            created_at = parse_tracker_datetime(message.date)
            if created_at is None:
                continue
            if not message.author_id or message.author_id[0] not in operators:
                continue
            comments.append(
                TaskComment(
                    id=message.id,
                    task_id=message.res_id,
                    body=html_to_text(message.body or ""),
                    author_name=message.author_id[1],
                    created_at=created_at,
                    message_type=message.message_type or "",
                )
            )
        comments.sort(key=lambda comment: (comment.created_at, comment.id))
        return comments

    # Attachments -------------------------------------------------------------
    def upload_attachment(self, task_id: int, attachment: Attachment) -> int:
        """Store ``attachment`` on a task and return its id."""
        LOGGER.debug(
            "Uploading %s (%d bytes) to task %s",
            attachment.filename,
            attachment.size,
            task_id,
        )
        created = self._execute(
            CreateRequest(
                "ir.attachment",
                {
                    "name": attachment.filename,
                    "datas": base64.b64encode(attachment.payload).decode("ascii"),
                    "res_model": TASK_MODEL,
                    "res_id": task_id,
                    "mimetype": attachment.content_type,
                    "type": "binary",
                },
            )
        )
        return int(created)

    def list_attachments(self, task_id: int) -> list[TrackerAttachment]:
        """Return metadata of every file stored on a task."""
        ids = self._execute(
            SearchRequest(
                "ir.attachment",
                [("res_model", "=", TASK_MODEL), ("res_id", "=", task_id)],
                order="id asc",
            )
        )
        if not ids:
            return []
        records = self._read(
            AttachmentRecord, "ir.attachment", ids, ("id", "name", "mimetype", "file_size")
        )
        return [
            TrackerAttachment(
                id=record.id,
                filename=record.name or f"attachment-{record.id}",
                content_type=record.mimetype or "application/octet-stream",
                size=record.file_size,
            )
            for record in records
        ]

    def download_attachment(self, attachment_id: int) -> Attachment:
        """Return the contents of a stored file."""
        records = self._read(
            AttachmentRecord,
            "ir.attachment",
            [attachment_id],
            ("id", "name", "mimetype", "datas"),
        )
        if not records or records[0].datas is None:
            raise NotFoundError(f"attachment {attachment_id} has no data")
        record = records[0]
        try:
            payload = base64.b64decode(record.datas or "")
        except (binascii.Error, ValueError) as exc:
            raise TrackerError(f"attachment {attachment_id} is not valid base64") from exc
        return Attachment(
            filename=record.name or f"attachment-{attachment_id}",
            content_type=record.mimetype or "application/octet-stream",
            payload=payload,
        )

    # Operators ---------------------------------------------------------------
    def count_open_tasks_by_assignee(self, logins: Sequence[str]) -> dict[str, int]:
        """Return the number of tasks in non-folded stages per operator login."""
        counts: dict[str, int] = {}
        for login in logins:
            user_id = self._user_id_for_login(login)
            if user_id is None:
                LOGGER.warning("Operator %s has no tracker account", login)
                continue
            count = self._execute(
                SearchCountRequest(
                    TASK_MODEL,
                    [
                        ("project_id", "=", self._project_id),
                        ("user_ids", "in", [user_id]),
                        ("stage_id.fold", "=", False),
                    ],
                )
            )
            counts[login] = int(count or 0)
        return counts

    def task_url(self, task_id: int) -> str:
        """Return a browser link to a task."""
        base = (self._settings.base_url or self._settings.url or "").rstrip("/")
        return f"{base}/web#id={task_id}&model={TASK_MODEL}&view_type=form"

    # Internal helpers --------------------------------------------------------
    def _authenticate(self) -> int:
        uid = self._rpc.call(
            "common",
            "authenticate",
            [self._settings.db, self._settings.username, self._password, {}],
        )
        if not uid:
            raise AuthenticationError(
                f"tracker rejected credentials for {self._settings.username}"
            )
        LOGGER.debug("Authenticated with tracker as uid %s", uid)
        return int(uid)

    def _execute(self, request: Any) -> Any:
        call: RpcCall = request.to_call()
        return self._rpc.call(
            "object",
            "execute_kw",
            [
                self._settings.db,
                self._uid,
                self._password,
                call.model,
                call.method,
                call.args,
                call.kwargs,
            ],
        )

    def _read(
        self,
        record_type: type[R],
        model: str,
        ids: Iterable[int],
        fields: Sequence[str],
    ) -> list[R]:
        rows = self._execute(ReadRequest(model, [int(i) for i in ids], fields)) or []
        return [record_type.model_validate(row) for row in rows]

    def _user_id_for_login(self, login: str) -> int | None:
        ids = self._execute(SearchRequest("res.users", [("login", "=", login)], limit=1))
        return int(ids[0]) if ids else None

    def _operator_partner_ids(self, partner_ids: Iterable[int]) -> set[int]:
        candidates = sorted(set(partner_ids))
        if not candidates:
            return set()
        user_ids = self._execute(
            SearchRequest(
                "res.users",
                [("partner_id", "in", candidates), ("active", "=", True)],
            )
        )
        if not user_ids:
            return set()
        users = self._read(UserRecord, "res.users", user_ids, ("id", "partner_id"))
        return {user.partner_id[0] for user in users if user.partner_id}

    def _build_tasks(self, records: Sequence[TaskRecord]) -> list[Task]:
        partner_ids = sorted({r.partner_id[0] for r in records if r.partner_id})
        user_ids = sorted({r.user_ids[0] for r in records if r.user_ids})
        partners = {
            partner.id: partner
            for partner in (
                self._read(PartnerRecord, "res.partner", partner_ids, ("id", "name", "email"))
                if partner_ids
                else []
            )
        }
        users = {
            user.id: user
            for user in (
                self._read(UserRecord, "res.users", user_ids, ("id", "login"))
                if user_ids
                else []
            )
        }

        tasks: list[Task] = []
        for record in records:
            partner = partners.get(record.partner_id[0]) if record.partner_id else None
            user = users.get(record.user_ids[0]) if record.user_ids else None
            stage = (
                Stage(id=record.stage_id[0], name=record.stage_id[1])
                if record.stage_id
                else Stage(id=None, name="")
            )
            tasks.append(
                Task(
                    id=record.id,
                    name=record.name,
                    stage=stage,
                    customer_email=partner.email if partner else None,
                    customer_name=(
                        (partner.name if partner else None)
                        or (record.partner_id[1] if record.partner_id else None)
                    ),
                    partner_id=record.partner_id[0] if record.partner_id else None,
                    assignee_login=user.login if user else None,
                    write_date=parse_tracker_datetime(record.write_date),
                )
            )
        return tasks


__all__ = ["TrackerClient", "TrackerError"]
