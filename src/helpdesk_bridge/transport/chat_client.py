"""Slack chat gateway with bot-token threading and webhook fallback."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..core.config import ChatSettings
from ..core.errors import ChatError
from ..core.interfaces import ChatGateway
from ..core.models import ChatThreadRef

LOGGER = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api/"


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


class NullChatClient(ChatGateway):
    """Chat gateway used when no chat integration is configured."""

    def post_new(self, text: str) -> ChatThreadRef | None:
        """Drop the message."""
        LOGGER.debug("Chat disabled, dropping message")
        return None

    def post_to_thread(self, ref: ChatThreadRef, text: str) -> None:
        """Drop the message."""

    def update_message(self, ref: ChatThreadRef, text: str) -> None:
        """Drop the update."""


class SlackChatClient(ChatGateway):
    """Post ticket notifications to a Slack channel.

    With a bot token and channel id messages are threaded and
    :meth:`post_new` returns a :class:`ChatThreadRef`. With only a webhook
    URL new messages are posted without threading and follow-ups are skipped.
    """

    def __init__(
        self,
        settings: ChatSettings,
        *,
        http_client: httpx.Client | None = None,
        api_url: str = SLACK_API_URL,
    ) -> None:
        """Create the client from chat settings."""
        self._settings = settings
        self._api_url = api_url.rstrip("/") + "/"
        self._http = http_client or httpx.Client(timeout=settings.timeout_seconds)

    @property
    def threaded(self) -> bool:
        """Return whether the bot API (and therefore threading) is available."""
        return bool(self._settings.bot_token and self._settings.channel_id)

    def close(self) -> None:
        """Close the HTTP connection pool."""
        self._http.close()

    def post_new(self, text: str) -> ChatThreadRef | None:
        """Post a top-level message, returning its thread when threading works."""
        blocks = [_section(chunk) for chunk in text.split("\n\n") if chunk.strip()]
        if self.threaded:
            result = self._call_api(
                "chat.postMessage",
                {"channel": self._settings.channel_id, "text": text, "blocks": blocks},
            )
            timestamp = str(result.get("ts") or "")
            if not timestamp:
                raise ChatError("chat.postMessage returned no message timestamp")
            channel = str(result.get("channel") or self._settings.channel_id)
            return ChatThreadRef(channel=channel, timestamp=timestamp)

        if self._settings.webhook_url:
            self._post_webhook({"text": text, "blocks": blocks})
        return None

    def post_to_thread(self, ref: ChatThreadRef, text: str) -> None:
        """Reply inside the thread started by ``ref``."""
        if not self.threaded:
            LOGGER.debug("Threaded replies need a bot token, skipping")
            return
        self._call_api(
            "chat.postMessage",
            {"channel": ref.channel, "thread_ts": ref.timestamp, "text": text},
        )

    def update_message(self, ref: ChatThreadRef, text: str) -> None:
        """Replace the text of the head message of ``ref``."""
        if not self.threaded:
            LOGGER.debug("Message updates need a bot token, skipping")
            return
        self._call_api(
            "chat.update", {"channel": ref.channel, "ts": ref.timestamp, "text": text}
        )

    def _call_api(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._http.post(
                self._api_url + method,
                json=payload,
                headers={"Authorization": f"Bearer {self._settings.bot_token}"},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as exc:
            raise ChatError(f"Slack {method} failed: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ChatError(f"Slack {method} returned invalid JSON") from exc

        if not result.get("ok"):
            raise ChatError(f"Slack API error: {result.get('error', 'unknown')}")
        LOGGER.debug("Slack %s succeeded", method)
        return result

    def _post_webhook(self, payload: dict[str, Any]) -> None:
        try:
            response = self._http.post(str(self._settings.webhook_url), json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChatError(f"Slack webhook failed: {exc}") from exc


def build_chat_client(settings: ChatSettings) -> ChatGateway:
    """Return the chat gateway matching the configured integration mode."""
    if settings.bot_token and settings.channel_id:
        return SlackChatClient(settings)
    if settings.webhook_url:
        LOGGER.info("Chat configured with a webhook only; threads are disabled")
        return SlackChatClient(settings)
    LOGGER.info("Chat integration not configured")
    return NullChatClient()


__all__ = ["NullChatClient", "SlackChatClient", "build_chat_client"]
