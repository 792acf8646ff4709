"""Explicit wiring of the collaborators used by a correlation tick."""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass

from .interfaces import (
    ChatGateway,
    DedupLedger,
    MailboxGateway,
    MailerGateway,
    TaskTrackerGateway,
    TemplateRenderer,
)


@dataclass(slots=True, frozen=True)
class GatewayBundle:
    """Gateways constructed once at startup and shared by every tick."""

    mailbox: MailboxGateway
    tracker: TaskTrackerGateway
    chat: ChatGateway
    mailer: MailerGateway
    renderer: TemplateRenderer
    ledger: DedupLedger

    def close(self) -> None:
        """Release every gateway holding a connection, then the ledger."""
        with ExitStack() as stack:
            stack.callback(self.ledger.close)
            for gateway in (self.chat, self.tracker, self.mailbox):
                closer = getattr(gateway, "close", None)
                if callable(closer):
                    stack.callback(closer)


__all__ = ["GatewayBundle"]
