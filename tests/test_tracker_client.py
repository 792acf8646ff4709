"""Tests for the JSON-RPC tracker gateway."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from helpdesk_bridge.core.config import TrackerSettings
from helpdesk_bridge.core.errors import AuthenticationError, NotFoundError
from helpdesk_bridge.core.models import NewTaskRequest
from helpdesk_bridge.transport import TrackerClient, TrackerError

Handler = Callable[[list[Any], dict[str, Any]], Any] | Any


class FakeRpcServer:
    """Answer ``execute_kw`` calls from a ``(model, method)`` table."""

    def __init__(self, responses: dict[tuple[str, str], Handler], uid: Any = 2) -> None:
        self.responses = responses
        self.uid = uid
        self.calls: list[tuple[str, str, list[Any], dict[str, Any]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        params = payload["params"]
        if params["service"] == "common":
            result = self.uid
        else:
            _db, _uid, _password, model, method, args, kwargs = params["args"]
            self.calls.append((model, method, args, kwargs))
            handler = self.responses[(model, method)]
            result = handler(args, kwargs) if callable(handler) else handler
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    def find(self, model: str, method: str) -> list[tuple[list[Any], dict[str, Any]]]:
        return [(args, kwargs) for m, name, args, kwargs in self.calls if (m, name) == (model, method)]


def _settings() -> TrackerSettings:
    return TrackerSettings(
        url="https://tracker.test",
        db="helpdesk",
        username="bot",
        password="secret",
        project_id=3,
        base_url="https://desk.example.com/",
    )


def _client(server: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> TrackerClient:
    http = httpx.Client(base_url="https://tracker.test", transport=httpx.MockTransport(server))
    return TrackerClient(_settings(), http_client=http, **kwargs)


def test_rejected_credentials_raise_authentication_error() -> None:
    with pytest.raises(AuthenticationError):
        _client(FakeRpcServer({}, uid=False))


def test_find_or_create_partner_reuses_existing_contact() -> None:
    server = FakeRpcServer({("res.partner", "search"): [7]})

    assert _client(server).find_or_create_partner("Carol@Example.com", "Carol") == 7
    args, kwargs = server.find("res.partner", "search")[0]
    assert args == [[["email", "=ilike", "Carol@Example.com"]]]
    assert kwargs == {"limit": 1}


def test_find_or_create_partner_creates_missing_contact() -> None:
    server = FakeRpcServer(
        {("res.partner", "search"): [], ("res.partner", "create"): 12}
    )

    assert _client(server).find_or_create_partner("new@example.com", " ") == 12
    args, _ = server.find("res.partner", "create")[0]
    assert args == [{"name": "new@example.com", "email": "new@example.com"}]


def test_create_task_subscribes_customer() -> None:
    server = FakeRpcServer(
        {
            ("project.task", "create"): 55,
            ("project.task", "message_subscribe"): True,
        }
    )
    request = NewTaskRequest(
        name="Printer offline",
        description="It does not print.",
        partner_id=7,
        stage_id=1,
        customer_email="carol@example.com",
        customer_name="Carol",
    )

    assert _client(server).create_task(request) == 55
    args, _ = server.find("project.task", "create")[0]
    assert args == [
        {
            "name": "Printer offline",
            "project_id": 3,
            "description": "It does not print.",
            "partner_id": 7,
            "stage_id": 1,
        }
    ]
    assert server.find("project.task", "message_subscribe")[0][0] == [[55], [7]]


def test_internal_note_uses_note_subtype() -> None:
    server = FakeRpcServer({("project.task", "message_post"): 901})

    assert _client(server).add_comment(42, "[SYSTEM] note", internal=True) == 901
    args, kwargs = server.find("project.task", "message_post")[0]
    assert args == [42]
    assert kwargs["subtype_xmlid"] == "mail.mt_note"
    assert "author_id" not in kwargs


def test_customer_comment_carries_author() -> None:
    server = FakeRpcServer({("project.task", "message_post"): 902})

    _client(server).add_comment(42, "Still broken", author_partner_id=7)

    _, kwargs = server.find("project.task", "message_post")[0]
    assert kwargs["subtype_xmlid"] == "mail.mt_comment"
    assert kwargs["author_id"] == 7


def test_get_task_resolves_customer_and_assignee() -> None:
    server = FakeRpcServer(
        {
            ("project.task", "read"): [
                {
                    "id": 42,
                    "name": "Printer offline",
                    "stage_id": [4, "Done"],
                    "partner_id": [7, "Carol"],
                    "user_ids": [9],
                    "write_date": "2024-03-01 09:30:00.123",
                }
            ],
            ("res.partner", "read"): [{"id": 7, "name": "Carol", "email": "carol@example.com"}],
            ("res.users", "read"): [{"id": 9, "login": "alice"}],
        }
    )

    task = _client(server).get_task(42)

    assert task.stage.id == 4
    assert task.stage.name == "Done"
    assert task.customer_email == "carol@example.com"
    assert task.customer_name == "Carol"
    assert task.assignee_login == "alice"
    assert task.write_date == datetime(2024, 3, 1, 9, 30, tzinfo=UTC)


def test_get_task_missing_raises_not_found() -> None:
    server = FakeRpcServer({("project.task", "read"): []})

    with pytest.raises(NotFoundError):
        _client(server).get_task(404)


def test_assign_writes_user_ids() -> None:
    server = FakeRpcServer(
        {("res.users", "search"): [9], ("project.task", "write"): True}
    )

    _client(server).assign(42, "alice")

    args, _ = server.find("project.task", "write")[0]
    assert args == [[42], {"user_ids": [[6, 0, [9]]]}]


def test_list_comments_since_keeps_only_operator_messages() -> None:
    server = FakeRpcServer(
        {
            ("project.task", "search"): [42],
            ("mail.message", "search"): [1, 2],
            ("mail.message", "read"): [
                {
                    "id": 1,
                    "res_id": 42,
                    "body": "<p>[public] Please <b>restart</b></p>",
                    "date": "2024-03-01 10:00:00",
                    "message_type": "comment",
                    "author_id": [70, "Alice"],
                },
                {
                    "id": 2,
                    "res_id": 42,
                    "body": "<p>Customer text</p>",
                    "date": "2024-03-01 10:05:00",
                    "message_type": "comment",
                    "author_id": [7, "Carol"],
                },
            ],
            ("res.users", "search"): [9],
            ("res.users", "read"): [{"id": 9, "partner_id": [70, "Alice"]}],
        }
    )

    comments = _client(server).list_comments_since(datetime(2024, 3, 1, 9, 0, tzinfo=UTC))

    assert len(comments) == 1
    comment = comments[0]
    assert comment.id == 1
    assert comment.task_id == 42
    assert comment.body == "[public] Please restart"
    assert comment.author_name == "Alice"
    assert comment.created_at == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
    domain = server.find("mail.message", "search")[0][0][0]
    assert ["date", ">", "2024-03-01 09:00:00"] in domain


def test_attachments_round_trip_through_base64() -> None:
    encoded = base64.b64encode(b"trace").decode("ascii")
    server = FakeRpcServer(
        {
            ("ir.attachment", "search"): [5],
            ("ir.attachment", "read"): lambda args, kwargs: [
                {"id": 5, "name": "log.txt", "mimetype": "text/plain", "file_size": 5, "datas": encoded}
            ],
        }
    )
    client = _client(server)

    listed = client.list_attachments(42)
    downloaded = client.download_attachment(5)

    assert [(item.id, item.filename, item.size) for item in listed] == [(5, "log.txt", 5)]
    assert downloaded.payload == b"trace"
    assert downloaded.content_type == "text/plain"


def test_count_open_tasks_skips_unknown_operators() -> None:
    server = FakeRpcServer(
        {
            ("res.users", "search"): lambda args, kwargs: [9] if args[0][0][2] == "alice" else [],
            ("project.task", "search_count"): 4,
        }
    )

    counts = _client(server).count_open_tasks_by_assignee(["alice", "ghost"])

    assert counts == {"alice": 4}
    domain = server.find("project.task", "search_count")[0][0][0]
    assert ["stage_id.fold", "=", False] in domain


def test_task_url_uses_public_base_url() -> None:
    client = _client(FakeRpcServer({}))

    assert client.task_url(42) == (
        "https://desk.example.com/web#id=42&model=project.task&view_type=form"
    )


def test_transport_errors_are_retried_with_backoff() -> None:
    sleeps: list[float] = []
    server = FakeRpcServer({("project.task", "write"): True})
    failures = iter([True, True])

    def flaky(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload["params"]["service"] == "object" and next(failures, False):
            raise httpx.ConnectError("connection reset", request=request)
        return server(request)

    _client(flaky, sleep=sleeps.append).set_stage(42, 2)

    assert sleeps == [2, 4]
    assert server.find("project.task", "write")[0][0] == [[42], {"stage_id": 2}]


def test_http_error_status_raises_tracker_error() -> None:
    server = FakeRpcServer({})

    def failing(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload["params"]["service"] == "object":
            return httpx.Response(502, text="bad gateway")
        return server(request)

    with pytest.raises(TrackerError):
        _client(failing).set_stage(42, 2)


def test_rpc_error_is_reported() -> None:
    def erroring(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload["params"]["service"] == "common":
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": 2})
        return httpx.Response(
            200,
            json={
                "jsonrpc": "2.0",
                "id": payload["id"],
                "error": {"message": "Odoo Server Error", "data": {"name": "ValueError"}},
            },
        )

    with pytest.raises(TrackerError, match="ValueError"):
        _client(erroring).set_stage(42, 2)


def test_list_changed_since_pages_through_busy_windows() -> None:
    task_ids = list(range(1, 251))

    def search(args: list[Any], kwargs: dict[str, Any]) -> list[int]:
        offset = kwargs.get("offset", 0)
        return task_ids[offset : offset + kwargs["limit"]]

    def read(args: list[Any], kwargs: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            {
                "id": task_id,
                "name": f"Task {task_id}",
                "stage_id": [1, "New"],
                "partner_id": False,
                "user_ids": [],
                "write_date": f"2024-03-01 {task_id // 60:02d}:{task_id % 60:02d}:00",
            }
            for task_id in reversed(args[0])
        ]

    server = FakeRpcServer({("project.task", "search"): search, ("project.task", "read"): read})

    tasks = _client(server).list_changed_since(datetime(2024, 2, 28, 9, 0, tzinfo=UTC))

    assert [task.id for task in tasks] == task_ids
    searches = server.find("project.task", "search")
    assert [kwargs.get("offset", 0) for _, kwargs in searches] == [0, 200]
    assert searches[0][1]["order"] == "write_date asc, id asc"
    assert ["write_date", ">", "2024-02-28 09:00:00"] in searches[0][0][0]
