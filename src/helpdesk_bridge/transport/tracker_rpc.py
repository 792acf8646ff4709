"""Typed JSON-RPC requests and records for the task tracker."""

from __future__ import annotations

import itertools
import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Annotated, Any

import httpx
from pydantic import BaseModel, BeforeValidator, ConfigDict

from ..core.errors import AuthenticationError, TransientIOError

LOGGER = logging.getLogger(__name__)

Domain = list[tuple[str, str, Any]]


class TrackerError(TransientIOError):
    """Raised when the tracker rejects a call or cannot be reached."""


@dataclass(slots=True, frozen=True)
class RpcCall:
    """A single ``execute_kw`` invocation."""

    model: str
    method: str
    args: list[Any]
    kwargs: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SearchRequest:
    """``search`` returning record ids."""

    model: str
    domain: Domain
    limit: int | None = None
    order: str | None = None
    offset: int = 0

    def to_call(self) -> RpcCall:
        kwargs: dict[str, Any] = {}
        if self.offset:
            kwargs["offset"] = self.offset
        if self.limit is not None:
            kwargs["limit"] = self.limit
        if self.order:
            kwargs["order"] = self.order
        return RpcCall(self.model, "search", [_domain(self.domain)], kwargs)


@dataclass(slots=True, frozen=True)
class SearchCountRequest:
    """``search_count`` returning the number of matching records."""

    model: str
    domain: Domain

    def to_call(self) -> RpcCall:
        return RpcCall(self.model, "search_count", [_domain(self.domain)])


@dataclass(slots=True, frozen=True)
class ReadRequest:
    """``read`` of selected fields for known ids."""

    model: str
    ids: Sequence[int]
    fields: Sequence[str]

    def to_call(self) -> RpcCall:
        return RpcCall(self.model, "read", [list(self.ids), list(self.fields)])


@dataclass(slots=True, frozen=True)
class CreateRequest:
    """``create`` of one record."""

    model: str
    values: dict[str, Any]

    def to_call(self) -> RpcCall:
        return RpcCall(self.model, "create", [self.values])


@dataclass(slots=True, frozen=True)
class WriteRequest:
    """``write`` of field values to existing records."""

    model: str
    ids: Sequence[int]
    values: dict[str, Any]

    def to_call(self) -> RpcCall:
        return RpcCall(self.model, "write", [list(self.ids), self.values])


@dataclass(slots=True, frozen=True)
class MessagePostRequest:
    """``message_post`` on a task's chatter."""

    task_id: int
    body: str
    message_type: str = "comment"
    subtype_xmlid: str | None = "mail.mt_comment"
    author_id: int | None = None

    def to_call(self) -> RpcCall:
        kwargs: dict[str, Any] = {"body": self.body, "message_type": self.message_type}
        if self.subtype_xmlid:
            kwargs["subtype_xmlid"] = self.subtype_xmlid
        if self.author_id is not None:
            kwargs["author_id"] = self.author_id
        return RpcCall("project.task", "message_post", [self.task_id], kwargs)


@dataclass(slots=True, frozen=True)
class MessageSubscribeRequest:
    """``message_subscribe`` adding followers to a task."""

    task_id: int
    partner_ids: Sequence[int]

    def to_call(self) -> RpcCall:
        return RpcCall(
            "project.task", "message_subscribe", [[self.task_id], list(self.partner_ids)]
        )


def _domain(domain: Domain) -> list[list[Any]]:
    return [list(clause) for clause in domain]


def _many2one(value: Any) -> Any:
    """Normalise ``[id, name]`` / ``False`` pairs into a tuple or ``None``."""
    if not value:
        return None
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        return (int(value[0]), str(value[1]))
    if isinstance(value, int):
        return (value, "")
    return None


def _falsy_to_none(value: Any) -> Any:
    return value or None


Many2One = Annotated[tuple[int, str] | None, BeforeValidator(_many2one)]
OptionalText = Annotated[str | None, BeforeValidator(_falsy_to_none)]


class TrackerRecord(BaseModel):
    """Base for records returned by ``read``."""

    model_config = ConfigDict(extra="ignore")

    id: int


class TaskRecord(TrackerRecord):
    """``project.task`` fields used by the bridge."""

    name: str = ""
    stage_id: Many2One = None
    partner_id: Many2One = None
    user_ids: list[int] = []
    write_date: OptionalText = None


class PartnerRecord(TrackerRecord):
    """``res.partner`` contact details."""

    name: OptionalText = None
    email: OptionalText = None


class UserRecord(TrackerRecord):
    """``res.users`` identity."""

    login: OptionalText = None
    partner_id: Many2One = None


class MessageRecord(TrackerRecord):
    """``mail.message`` chatter entry."""

    res_id: int
    body: OptionalText = None
    date: OptionalText = None
    message_type: OptionalText = None
    author_id: Many2One = None


class AttachmentRecord(TrackerRecord):
    """``ir.attachment`` metadata and optional contents."""

    name: OptionalText = None
    mimetype: OptionalText = None
    file_size: int = 0
    datas: OptionalText = None


class JsonRpcTransport:
    """JSON-RPC envelope handling with bounded retries on transport errors."""

    def __init__(
        self,
        http_client: httpx.Client,
        *,
        retry_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Wrap ``http_client`` whose base URL points at the tracker server."""
        self._http = http_client
        self._retry_attempts = max(retry_attempts, 1)
        self._sleep = sleep
        self._ids = itertools.count(1)

    def call(self, service: str, method: str, args: list[Any]) -> Any:
        """Invoke ``service.method`` and return the ``result`` member."""
        envelope = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {"service": service, "method": method, "args": args},
            "id": next(self._ids),
        }
        data: dict[str, Any] | None = None
        last_error: Exception | None = None
        for attempt in range(1, self._retry_attempts + 1):
            try:
                response = self._http.post("/jsonrpc", json=envelope)
                response.raise_for_status()
                data = response.json()
                break
            except httpx.TransportError as exc:
                last_error = exc
                LOGGER.warning(
                    "Tracker call %s failed (attempt %d/%d): %s",
                    method,
                    attempt,
                    self._retry_attempts,
                    exc,
                )
            except httpx.HTTPStatusError as exc:
                raise TrackerError(
                    f"tracker returned HTTP {exc.response.status_code}"
                ) from exc
            except json.JSONDecodeError as exc:
                raise TrackerError("tracker returned invalid JSON") from exc

            if attempt < self._retry_attempts:
                self._sleep(min(2**attempt, 8))

        if data is None:
            raise TrackerError("tracker request failed after retries") from last_error

        error = data.get("error")
        if error:
            message = str(error.get("message") or "tracker error")
            details = error.get("data") or {}
            name = str(details.get("name", "")) if isinstance(details, dict) else ""
            if "AccessDenied" in name or "Access Denied" in message:
                raise AuthenticationError(f"tracker rejected credentials: {message}")
            raise TrackerError(f"{message} {name}".strip())
        return data.get("result")


__all__ = [
    "AttachmentRecord",
    "CreateRequest",
    "Domain",
    "JsonRpcTransport",
    "MessagePostRequest",
    "MessageRecord",
    "MessageSubscribeRequest",
    "PartnerRecord",
    "ReadRequest",
    "RpcCall",
    "SearchCountRequest",
    "SearchRequest",
    "TaskRecord",
    "TrackerError",
    "TrackerRecord",
    "UserRecord",
    "WriteRequest",
]
