"""Start and resolution SLA tracking per task."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from ..core.config import SlaSettings
from ..core.datetime_utils import utcnow
from ..core.errors import BridgeError
from ..core.interfaces import ChatGateway, DedupLedger, TaskTrackerGateway
from ..core.models import SLAState, SlaBreach, Task
from .notifications import sla_breach_text
from .stages import StagePolicy

LOGGER = logging.getLogger(__name__)


class SlaEvaluator:
    """Detect SLA breaches and announce each one exactly once.

    A breach flag is persisted before the tracker note and chat message are
    sent, so a crash or a failed notification never repeats the announcement.
    """

    def __init__(
        self,
        ledger: DedupLedger,
        tracker: TaskTrackerGateway,
        chat: ChatGateway,
        settings: SlaSettings,
        stages: StagePolicy,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Store collaborators and deadlines."""
        self._ledger = ledger
        self._tracker = tracker
        self._chat = chat
        self._start_budget = timedelta(hours=settings.start_time_hours)
        self._resolution_budget = timedelta(hours=settings.resolution_time_hours)
        self._stages = stages
        self._clock = clock

    def initialize_task(self, task_id: int) -> None:
        """Start SLA tracking for a freshly created task."""
        self._ledger.store_sla_state(SLAState(task_id=task_id, created_at=self._clock()))

    def evaluate(self, task: Task) -> list[SlaBreach]:
        """Update the SLA state of ``task`` and return newly detected breaches."""
        now = self._clock()
        state = self._ledger.sla_state(task.id)
        changed = state is None
        if state is None:
            LOGGER.debug("Task %s has no SLA state yet, tracking from now", task.id)
            state = SLAState(task_id=task.id, created_at=now)

        if state.started_at is None and not self._stages.is_new(task):
            state.started_at = now
            changed = True
        if state.completed_at is None and self._stages.is_done(task):
            state.completed_at = now
            changed = True

        breaches: list[SlaBreach] = []
        if (
            not state.start_breached
            and state.started_at is None
            and now >= state.created_at + self._start_budget
        ):
            state.start_breached = True
            breaches.append(SlaBreach.START)
        if (
            not state.resolution_breached
            and state.completed_at is None
            and now >= state.created_at + self._resolution_budget
        ):
            state.resolution_breached = True
            breaches.append(SlaBreach.RESOLUTION)

        if changed or breaches:
            self._ledger.store_sla_state(state)

        for breach in breaches:
            LOGGER.warning("Task %s breached %s", task.id, breach.value)
            self._announce(task, breach)
        return breaches

    def evaluate_all(self, tasks: Iterable[Task]) -> int:
        """Evaluate every task, returning the number of breaches detected."""
        detected = 0
        for task in tasks:
            try:
                detected += len(self.evaluate(task))
            except BridgeError as exc:
                LOGGER.error("SLA evaluation of task %s failed: %s", task.id, exc)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("SLA evaluation of task %s failed unexpectedly", task.id)
        return detected

    def _announce(self, task: Task, breach: SlaBreach) -> None:
        try:
            self._tracker.add_comment(
                task.id, f"[SYSTEM] SLA label: {breach.value}", internal=True
            )
        except BridgeError as exc:
            LOGGER.error("Could not label task %s with %s: %s", task.id, breach.value, exc)

        ref = self._ledger.thread_ref(task.id)
        if ref is None:
            LOGGER.debug("Task %s has no chat thread, skipping SLA message", task.id)
            return
        try:
            self._chat.post_to_thread(ref, sla_breach_text(task.id, task.name, breach))
        except BridgeError as exc:
            LOGGER.error("Could not post SLA breach of task %s: %s", task.id, exc)


__all__ = ["SlaEvaluator"]
