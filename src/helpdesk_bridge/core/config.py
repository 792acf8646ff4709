"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import ValidationError


def _split_list(value: Any) -> Any:
    """Accept comma separated strings for list fields loaded from the environment."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class SlaSettings(BaseModel):
    """Response-time commitments measured from task creation."""

    start_time_hours: int = Field(
        default=4, ge=1, description="Hours until work on a task must start"
    )
    resolution_time_hours: int = Field(
        default=24, ge=1, description="Hours until a task must be resolved"
    )


class BridgeSettings(BaseModel):
    """Behaviour of the correlation engine."""

    poll_seconds: int = Field(default=20, ge=1, description="Seconds between ticks")
    ticket_prefix: str = Field(
        default="TICKET", description="Prefix of the [PREFIX-#N] subject token"
    )
    done_stage_ids: list[int] = Field(
        default_factory=list, description="Stage ids that count as done"
    )
    new_stage_names: list[str] = Field(
        default_factory=lambda: ["new", "nový", "draft", "návrh", "backlog"],
        description="Stage names that count as not yet started",
    )
    excluded_emails: list[str] = Field(
        default_factory=list, description="Senders ignored by the mail pass"
    )
    no_reply_emails: list[str] = Field(
        default_factory=list,
        description="Senders that create tickets but never receive emails",
    )
    operators: list[str] = Field(
        default_factory=list, description="Operator logins eligible for assignment"
    )
    changed_window_hours: int = Field(
        default=48, ge=1, description="Trailing window for changed-task passes"
    )
    templates_dir: Path | None = Field(
        default=None, description="Directory overriding the built-in email templates"
    )
    sla: SlaSettings = Field(default_factory=SlaSettings)

    @field_validator(
        "done_stage_ids",
        "new_stage_names",
        "excluded_emails",
        "no_reply_emails",
        "operators",
        mode="before",
    )
    @classmethod
    def _coerce_lists(cls, value: Any) -> Any:
        return _split_list(value)

    @model_validator(mode="after")
    def _window_covers_resolution(self) -> BridgeSettings:
        if self.changed_window_hours < self.sla.resolution_time_hours:
            raise ValueError(
                "changed_window_hours must not be shorter than sla.resolution_time_hours"
            )
        return self


class StageSettings(BaseModel):
    """Stage ids of the tracker project."""

    new: int | None = Field(default=None, description="Stage of fresh tickets")
    assigned: int | None = Field(default=None, description="Stage after assignment")
    done: int | None = Field(
        default=None, description="Resolved tickets, added to app.done_stage_ids"
    )


class TrackerSettings(BaseModel):
    """Connection to the task tracker JSON-RPC endpoint."""

    url: str | None = Field(default=None, description="Tracker server URL")
    db: str | None = Field(default=None, description="Tracker database name")
    username: str | None = Field(default=None, description="API user login")
    password: str | None = Field(default=None, description="API user password")
    project_id: int | None = Field(default=None, description="Helpdesk project id")
    base_url: str | None = Field(
        default=None, description="Public URL used for task links"
    )
    timeout_seconds: int = Field(default=20, ge=1, description="Per-call timeout")
    retry_attempts: int = Field(
        default=3, ge=1, description="Attempts per call on transport errors"
    )
    stages: StageSettings = Field(default_factory=StageSettings)


class ImapSettings(BaseModel):
    """Settings controlling IMAP connectivity."""

    host: str | None = Field(default=None, description="IMAP hostname")
    port: int = Field(default=993, description="IMAP port, typically 993 for SSL")
    username: str | None = Field(default=None, description="Account username")
    password: str | None = Field(default=None, description="Account password")
    folder: str = Field(default="INBOX", description="Mailbox to monitor")
    search_to: str | None = Field(
        default=None, description="Only fetch messages addressed to this recipient"
    )
    processed_keyword: str | None = Field(
        default=None, description="Extra IMAP keyword set on processed messages"
    )
    use_ssl: bool = Field(default=True, description="Whether to enforce SSL")
    timeout_seconds: int = Field(default=20, ge=1, description="Socket timeout")
    retry_attempts: int = Field(default=3, ge=0, description="Reconnect attempts")
    retry_delay_seconds: float = Field(
        default=5.0, ge=0.0, description="Delay between reconnect attempts"
    )


class SmtpSettings(BaseModel):
    """Settings for outgoing mail."""

    host: str | None = Field(default=None, description="SMTP hostname")
    port: int = Field(default=587, description="SMTP port")
    username: str | None = Field(default=None, description="SMTP login")
    password: str | None = Field(default=None, description="SMTP password")
    from_name: str | None = Field(default=None, description="Sender display name")
    from_email: str | None = Field(default=None, description="Sender address")
    use_tls: bool = Field(
        default=True, description="STARTTLS when true, implicit SSL otherwise"
    )
    timeout_seconds: int = Field(default=20, ge=1, description="Socket timeout")


class ChatSettings(BaseModel):
    """Team chat integration. Leaving everything empty disables chat."""

    webhook_url: str | None = Field(default=None, description="Incoming webhook")
    bot_token: str | None = Field(default=None, description="Bot token for threads")
    channel_id: str | None = Field(default=None, description="Channel for the bot")
    timeout_seconds: int = Field(default=30, ge=1, description="HTTP timeout")


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    ledger_path: Path = Field(
        default=Path("./helpdesk_bridge.db"), description="SQLite ledger path"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Emit key=value structured log lines"
    )
    file: Path | None = Field(
        default=None, description="Optional rotating log file"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    app: BridgeSettings = Field(default_factory=BridgeSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    imap: ImapSettings = Field(default_factory=ImapSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def validate_required(self) -> None:
        """Raise :class:`ValidationError` listing every missing required field."""
        required: dict[str, Any] = {
            "tracker.url": self.tracker.url,
            "tracker.db": self.tracker.db,
            "tracker.username": self.tracker.username,
            "tracker.password": self.tracker.password,
            "tracker.project_id": self.tracker.project_id,
            "tracker.stages.new": self.tracker.stages.new,
            "imap.host": self.imap.host,
            "imap.username": self.imap.username,
            "imap.password": self.imap.password,
            "smtp.host": self.smtp.host,
            "smtp.from_email": self.smtp.from_email,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValidationError(
                "missing required settings: " + ", ".join(missing)
            )


ENV_PREFIX = "HELPDESK_BRIDGE_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "BridgeSettings",
    "ChatSettings",
    "ImapSettings",
    "LoggingSettings",
    "SlaSettings",
    "SmtpSettings",
    "StageSettings",
    "StorageSettings",
    "TrackerSettings",
    "load_app_settings",
]
