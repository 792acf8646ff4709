"""Tick-based reconciliation of mailbox, tracker and chat state."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any, TypeVar

from ..core.config import BridgeSettings, StageSettings
from ..core.container import GatewayBundle
from ..core.datetime_utils import utcnow
from ..core.errors import BridgeError, StorageError
from ..core.models import (
    Attachment,
    Email,
    LedgerFlag,
    NewTaskRequest,
    Task,
    TaskComment,
    TickReport,
)
from ..ingestion.references import extract_ticket_id, strip_quoted_reply
from ..rendering.templates import AGENT_REPLY, NEW_TICKET, TICKET_CLOSED
from . import notifications
from .assignment import assign_least_loaded
from .sla import SlaEvaluator
from .stages import StagePolicy

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

PUBLIC_PREFIX = "[public]"
DEFAULT_TITLE = "New request"
EMPTY_MESSAGE = "(empty message)"
REOPEN_NOTE = "[SYSTEM] Task reopened automatically after a new customer reply."


def public_comment_body(body: str) -> str | None:
    """Return the text of a ``[public]`` comment, or ``None`` for private ones."""
    trimmed = body.strip()
    if not trimmed.casefold().startswith(PUBLIC_PREFIX):
        return None
    return trimmed[len(PUBLIC_PREFIX) :].strip()


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


class EventCorrelator:
    """Drive one polling tick across the mailbox, tracker, chat and mailer.

    Each tick runs five passes in a fixed order: inbound mail, outbound agent
    comments, completions, reopenings and SLA checks. The dedup ledger is the
    only state carried from one tick to the next.
    """

    def __init__(
        self,
        gateways: GatewayBundle,
        settings: BridgeSettings,
        stages: StageSettings,
        *,
        sla: SlaEvaluator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Wire the correlator to its gateways and configuration."""
        self._gateways = gateways
        self._settings = settings
        self._stages = stages
        self._policy = StagePolicy.from_settings(settings, stages)
        self._clock = clock
        self._sla = sla or SlaEvaluator(
            gateways.ledger,
            gateways.tracker,
            gateways.chat,
            settings.sla,
            self._policy,
            clock=clock,
        )
        self._excluded = _normalize_addresses(settings.excluded_emails)
        self._no_reply = _normalize_addresses(settings.no_reply_emails)
        self._window = timedelta(hours=settings.changed_window_hours)

    @property
    def policy(self) -> StagePolicy:
        """Stage predicates in use."""
        return self._policy

    # Tick --------------------------------------------------------------------
    def tick(self, cancel: threading.Event | None = None) -> TickReport:
        """Run all passes once, stopping early between passes when cancelled."""
        report = TickReport()
        started = self._clock()
        LOGGER.debug("Tick started at %s", started)

        self.process_inbound_mail(report, cancel)
        if self._stop(report, cancel):
            return report

        self.process_agent_comments(report)
        if self._stop(report, cancel):
            return report

        try:
            changed = self._gateways.tracker.list_changed_since(started - self._window)
        except BridgeError as exc:
            self._record(report, "fetch changed tasks", exc)
            return report
        except Exception as exc:  # pylint: disable=broad-except
            self._record(report, "fetch changed tasks", exc, unexpected=True)
            return report
        LOGGER.debug("%d tasks changed in the last %s", len(changed), self._window)

        self.process_completions(changed, report)
        if self._stop(report, cancel):
            return report

        self.process_reopenings(changed, report)
        if self._stop(report, cancel):
            return report

        self.process_sla(changed, report)
        LOGGER.info(
            "Tick finished: %d emails, %d new tasks, %d replies, %d completions, "
            "%d reopenings, %d SLA breaches, %d errors",
            report.emails_processed,
            report.tasks_created,
            report.replies_sent,
            report.completions_notified,
            report.reopenings_notified,
            report.sla_breaches,
            len(report.errors),
        )
        return report

    # Pass 1: inbound mail ----------------------------------------------------
    def process_inbound_mail(
        self, report: TickReport, cancel: threading.Event | None = None
    ) -> None:
        """Turn unread emails into new tasks, customer comments and reopens."""
        try:
            emails = self._gateways.mailbox.fetch_unseen()
        except BridgeError as exc:
            self._record(report, "fetch unseen emails", exc)
            return
        except Exception as exc:  # pylint: disable=broad-except
            self._record(report, "fetch unseen emails", exc, unexpected=True)
            return

        LOGGER.debug("Processing %d unseen emails", len(emails))
        for email in emails:
            if _cancelled(cancel):
                report.cancelled = True
                LOGGER.info("Mail pass cancelled before email %s", email.id)
                return
            try:
                self._handle_email(email, report)
            except BridgeError as exc:
                self._record(report, f"email {email.id}", exc)
            except Exception as exc:  # pylint: disable=broad-except
                self._record(report, f"email {email.id}", exc, unexpected=True)

    def _handle_email(self, email: Email, report: TickReport) -> None:
        ledger = self._gateways.ledger
        LOGGER.debug("Processing email %s from %s: %s", email.id, email.sender, email.subject)

        if email.sender.strip().lower() in self._excluded:
            LOGGER.info("Ignoring email %s from excluded sender %s", email.id, email.sender)
            ledger.mark(LedgerFlag.PROCESSED_EMAIL, email.id)
            self._mark_seen(email, report)
            return

        if ledger.has(LedgerFlag.PROCESSED_EMAIL, email.id):
            LOGGER.debug("Email %s already processed", email.id)
            self._mark_seen(email, report)
            return

        ticket_id = extract_ticket_id(email.subject, self._settings.ticket_prefix)
        if ticket_id is None:
            self._create_ticket(email, report)
        else:
            self._append_customer_reply(ticket_id, email, report)

        ledger.mark(LedgerFlag.PROCESSED_EMAIL, email.id)
        report.emails_processed += 1
        self._mark_seen(email, report)

    def _create_ticket(self, email: Email, report: TickReport) -> None:
        tracker = self._gateways.tracker
        title = email.subject.strip() or DEFAULT_TITLE
        description = strip_quoted_reply(email.body)
        partner_id = self._find_partner(email, report)

        task_id = tracker.create_task(
            NewTaskRequest(
                name=title,
                description=description,
                partner_id=partner_id,
                stage_id=self._stages.new,
                customer_email=email.sender,
                customer_name=email.sender_name,
            )
        )
        report.tasks_created += 1
        LOGGER.info("Created task %s for email %s from %s", task_id, email.id, email.sender)

        self._upload_attachments(task_id, email.attachments, report)
        operator = self._auto_assign(task_id, report)
        self._announce_new_ticket(task_id, title, description, operator, report)
        self._attempt(
            report,
            f"initialise SLA of task {task_id}",
            lambda: self._sla.initialize_task(task_id),
        )
        self._send_confirmation(email, task_id, description, report)

    def _append_customer_reply(
        self, task_id: int, email: Email, report: TickReport
    ) -> None:
        tracker = self._gateways.tracker
        try:
            self._reopen_if_done(task_id, report)
        except StorageError:
            raise
        except BridgeError as exc:
            self._record(report, f"reopen check of task {task_id}", exc)
        except Exception as exc:  # pylint: disable=broad-except
            self._record(report, f"reopen check of task {task_id}", exc, unexpected=True)

        body = strip_quoted_reply(email.body) or EMPTY_MESSAGE
        partner_id = self._find_partner(email, report)
        posted = self._attempt(
            report,
            f"post customer reply on task {task_id}",
            lambda: tracker.add_comment(task_id, body, author_partner_id=partner_id),
        )
        if posted is not None:
            report.customer_comments += 1
            LOGGER.info("Posted reply from %s on task %s", email.sender, task_id)
        self._upload_attachments(task_id, email.attachments, report)

    def _reopen_if_done(self, task_id: int, report: TickReport) -> bool:
        tracker = self._gateways.tracker
        task = tracker.get_task(task_id)
        if not self._policy.is_done(task):
            LOGGER.debug("Task %s is open, no reopen needed", task_id)
            return False
        if self._stages.new is None:
            LOGGER.warning("Cannot reopen task %s: no new stage configured", task_id)
            return False

        tracker.set_stage(task_id, self._stages.new)
        report.tasks_reopened += 1
        LOGGER.info("Reopened task %s after a customer reply", task_id)

        self._attempt(
            report,
            f"reopen note on task {task_id}",
            lambda: tracker.add_comment(task_id, REOPEN_NOTE, internal=True),
        )
        operator = self._auto_assign(task_id, report) or task.assignee_login
        self._announce_reopen(task, operator, report)
        self._gateways.ledger.mark(LedgerFlag.REOPENED_NOTIFIED, task_id)
        return True

    # Pass 2: agent comments --------------------------------------------------
    def process_agent_comments(self, report: TickReport) -> None:
        """Email public operator comments to the task's customer."""
        ledger = self._gateways.ledger
        try:
            watermark = ledger.comment_watermark()
            since = watermark or self._clock() - self._window
            comments = self._gateways.tracker.list_comments_since(since)
        except BridgeError as exc:
            self._record(report, "fetch operator comments", exc)
            return
        except Exception as exc:  # pylint: disable=broad-except
            self._record(report, "fetch operator comments", exc, unexpected=True)
            return

        LOGGER.debug("Checking %d operator comments since %s", len(comments), since)
        latest = watermark
        for comment in comments:
            if latest is None or comment.created_at > latest:
                latest = comment.created_at
            try:
                self._handle_comment(comment, report)
            except BridgeError as exc:
                self._record(report, f"comment {comment.id}", exc)
            except Exception as exc:  # pylint: disable=broad-except
                self._record(report, f"comment {comment.id}", exc, unexpected=True)

        if latest is not None and (watermark is None or latest > watermark):
            self._attempt(
                report,
                "advance comment watermark",
                lambda: ledger.advance_comment_watermark(latest),
            )

    def _handle_comment(self, comment: TaskComment, report: TickReport) -> None:
        ledger = self._gateways.ledger
        if ledger.has(LedgerFlag.SENT_COMMENT, comment.id):
            LOGGER.debug("Comment %s already emailed", comment.id)
            return
        if comment.message_type != "comment":
            return
        body = public_comment_body(comment.body)
        if body is None:
            LOGGER.debug("Comment %s is not public", comment.id)
            return

        task = self._gateways.tracker.get_task(comment.task_id)
        if not task.customer_email:
            LOGGER.warning("Task %s has no customer email, reply not sent", task.id)
            return
        if task.customer_email.strip().lower() in self._no_reply:
            LOGGER.info("Customer of task %s does not receive emails", task.id)
            return

        message = self._gateways.renderer.render(
            AGENT_REPLY,
            {
                "ticket_prefix": self._settings.ticket_prefix,
                "task_id": task.id,
                "subject": task.name,
                "customer_name": _customer_name(task),
                "agent_message": body,
            },
        )
        attachments = self._task_attachments(task.id, report)
        self._gateways.mailer.send(
            task.customer_email, message.subject, message.body, attachments
        )
        ledger.mark(LedgerFlag.SENT_COMMENT, comment.id)
        report.replies_sent += 1
        LOGGER.info("Emailed comment %s of task %s to %s", comment.id, task.id, task.customer_email)

    # Pass 3: completions -----------------------------------------------------
    def process_completions(self, tasks: Sequence[Task], report: TickReport) -> None:
        """Notify chat and customer about tasks that reached a done stage."""
        ledger = self._gateways.ledger
        for task in tasks:
            try:
                if not self._policy.is_done(task):
                    continue
                closed = ledger.has(LedgerFlag.CLOSED_NOTIFIED, task.id)
                reopened = ledger.has(LedgerFlag.REOPENED_NOTIFIED, task.id)
                if closed and not reopened:
                    continue
                self._notify_completion(task, report)
            except BridgeError as exc:
                self._record(report, f"completion of task {task.id}", exc)
            except Exception as exc:  # pylint: disable=broad-except
                self._record(report, f"completion of task {task.id}", exc, unexpected=True)

    def _notify_completion(self, task: Task, report: TickReport) -> None:
        tracker = self._gateways.tracker
        chat = self._gateways.chat
        ledger = self._gateways.ledger
        LOGGER.info("Task %s completed", task.id)

        url = tracker.task_url(task.id)
        ref = ledger.thread_ref(task.id)
        if ref is not None:
            self._attempt(
                report,
                f"chat completion update of task {task.id}",
                lambda: chat.update_message(
                    ref,
                    notifications.completed_head_text(
                        task.id, task.name, url, task.assignee_login
                    ),
                ),
            )
            self._attempt(
                report,
                f"chat completion note of task {task.id}",
                lambda: chat.post_to_thread(
                    ref, notifications.completed_thread_text(task.id, task.name)
                ),
            )

        if self._can_email(task):
            message = self._gateways.renderer.render(
                TICKET_CLOSED,
                {
                    "ticket_prefix": self._settings.ticket_prefix,
                    "task_id": task.id,
                    "task_url": url,
                    "customer_name": _customer_name(task),
                },
            )
            self._gateways.mailer.send(
                str(task.customer_email), message.subject, message.body
            )
        else:
            LOGGER.info("No closure email for task %s", task.id)

        ledger.mark(LedgerFlag.CLOSED_NOTIFIED, task.id)
        ledger.clear(LedgerFlag.REOPENED_NOTIFIED, task.id)
        report.completions_notified += 1

    # Pass 4: reopenings ------------------------------------------------------
    def process_reopenings(self, tasks: Sequence[Task], report: TickReport) -> None:
        """Announce tasks that left a done stage after their closure was notified."""
        ledger = self._gateways.ledger
        for task in tasks:
            try:
                if self._policy.is_done(task):
                    continue
                if ledger.has(LedgerFlag.REOPENED_NOTIFIED, task.id):
                    continue
                if not ledger.has(LedgerFlag.CLOSED_NOTIFIED, task.id):
                    continue
                LOGGER.info("Task %s was reopened in the tracker", task.id)
                self._announce_reopen(task, task.assignee_login, report)
                ledger.mark(LedgerFlag.REOPENED_NOTIFIED, task.id)
                report.reopenings_notified += 1
            except BridgeError as exc:
                self._record(report, f"reopening of task {task.id}", exc)
            except Exception as exc:  # pylint: disable=broad-except
                self._record(report, f"reopening of task {task.id}", exc, unexpected=True)

    # Pass 5: SLA -------------------------------------------------------------
    def process_sla(self, tasks: Sequence[Task], report: TickReport) -> None:
        """Evaluate SLA deadlines of recently changed tasks."""
        report.sla_breaches += self._sla.evaluate_all(tasks)

    # Helpers -----------------------------------------------------------------
    def _find_partner(self, email: Email, report: TickReport) -> int | None:
        return self._attempt(
            report,
            f"find contact {email.sender}",
            lambda: self._gateways.tracker.find_or_create_partner(
                email.sender, email.sender_name
            ),
        )

    def _auto_assign(self, task_id: int, report: TickReport) -> str | None:
        if not self._settings.operators:
            return None
        return self._attempt(
            report,
            f"assign task {task_id}",
            lambda: assign_least_loaded(
                self._gateways.tracker,
                task_id,
                self._settings.operators,
                self._stages.assigned,
            ),
        )

    def _upload_attachments(
        self, task_id: int, attachments: Iterable[Attachment], report: TickReport
    ) -> None:
        tracker = self._gateways.tracker
        for attachment in attachments:
            self._attempt(
                report,
                f"upload {attachment.filename} to task {task_id}",
                lambda item=attachment: tracker.upload_attachment(task_id, item),
            )

    def _task_attachments(self, task_id: int, report: TickReport) -> list[Attachment]:
        tracker = self._gateways.tracker
        stored = self._attempt(
            report,
            f"list attachments of task {task_id}",
            lambda: tracker.list_attachments(task_id),
        )
        files: list[Attachment] = []
        for item in stored or []:
            downloaded = self._attempt(
                report,
                f"download attachment {item.id}",
                lambda attachment_id=item.id: tracker.download_attachment(attachment_id),
            )
            if downloaded is not None:
                files.append(downloaded)
        return files

    def _announce_new_ticket(
        self,
        task_id: int,
        title: str,
        description: str,
        operator: str | None,
        report: TickReport,
    ) -> None:
        chat = self._gateways.chat

        def post() -> None:
            url = self._gateways.tracker.task_url(task_id)
            ref = chat.post_new(
                notifications.new_ticket_text(
                    task_id, title, url, description, operator, self._clock()
                )
            )
            if ref is None:
                return
            self._gateways.ledger.store_thread_ref(task_id, ref)
            if operator:
                chat.post_to_thread(ref, notifications.assigned_text(task_id, operator))

        self._attempt(report, f"chat announcement of task {task_id}", post)

    def _announce_reopen(
        self, task: Task, operator: str | None, report: TickReport
    ) -> None:
        chat = self._gateways.chat
        ref = self._gateways.ledger.thread_ref(task.id)
        if ref is None:
            LOGGER.debug("Task %s has no chat thread", task.id)
            return
        url = self._gateways.tracker.task_url(task.id)
        self._attempt(
            report,
            f"chat reopen update of task {task.id}",
            lambda: chat.update_message(
                ref, notifications.reopened_head_text(task.id, task.name, url, operator)
            ),
        )
        self._attempt(
            report,
            f"chat reopen note of task {task.id}",
            lambda: chat.post_to_thread(
                ref, notifications.reopened_thread_text(task.id, task.name, operator)
            ),
        )

    def _send_confirmation(
        self, email: Email, task_id: int, description: str, report: TickReport
    ) -> None:
        if email.sender.strip().lower() in self._no_reply:
            LOGGER.info("Sender %s does not receive confirmations", email.sender)
            return

        def send() -> None:
            message = self._gateways.renderer.render(
                NEW_TICKET,
                {
                    "ticket_prefix": self._settings.ticket_prefix,
                    "task_id": task_id,
                    "customer_name": email.sender_name or email.sender,
                    "original_body": description,
                    "sla_start_hours": self._settings.sla.start_time_hours,
                    "sla_resolution_hours": self._settings.sla.resolution_time_hours,
                },
            )
            self._gateways.mailer.send(email.sender, message.subject, message.body)

        self._attempt(report, f"confirmation for task {task_id}", send)

    def _mark_seen(self, email: Email, report: TickReport) -> None:
        self._attempt(
            report,
            f"mark email {email.id} seen",
            lambda: self._gateways.mailbox.mark_seen(email),
        )

    def _can_email(self, task: Task) -> bool:
        if not task.customer_email:
            return False
        return task.customer_email.strip().lower() not in self._no_reply

    def _attempt(
        self, report: TickReport, description: str, action: Callable[[], T]
    ) -> T | None:
        """Run a step whose failure must not abort the current item."""
        try:
            return action()
        except BridgeError as exc:
            self._record(report, description, exc)
        except Exception as exc:  # pylint: disable=broad-except
            self._record(report, description, exc, unexpected=True)
        return None

    def _stop(self, report: TickReport, cancel: threading.Event | None) -> bool:
        if report.cancelled or _cancelled(cancel):
            report.cancelled = True
            LOGGER.info("Tick cancelled")
            return True
        return False

    @staticmethod
    def _record(
        report: TickReport, description: str, exc: Exception, *, unexpected: bool = False
    ) -> None:
        report.errors.append(f"{description}: {exc}")
        if unexpected:
            LOGGER.error("%s failed unexpectedly", description, exc_info=exc)
        else:
            LOGGER.error("%s failed: %s", description, exc)


def _normalize_addresses(addresses: Iterable[str]) -> frozenset[str]:
    return frozenset(address.strip().lower() for address in addresses if address.strip())


def _customer_name(task: Task) -> str:
    return task.customer_name or task.customer_email or "customer"


def summarize(report: TickReport) -> dict[str, Any]:
    """Return the counters of ``report`` as a plain dictionary."""
    return {
        "emails_processed": report.emails_processed,
        "tasks_created": report.tasks_created,
        "customer_comments": report.customer_comments,
        "tasks_reopened": report.tasks_reopened,
        "replies_sent": report.replies_sent,
        "completions_notified": report.completions_notified,
        "reopenings_notified": report.reopenings_notified,
        "sla_breaches": report.sla_breaches,
        "errors": len(report.errors),
        "cancelled": report.cancelled,
    }


__all__ = ["EventCorrelator", "public_comment_body", "summarize"]
