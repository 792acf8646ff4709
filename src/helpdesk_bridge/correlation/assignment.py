"""Least-loaded operator assignment."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from ..core.interfaces import TaskTrackerGateway

LOGGER = logging.getLogger(__name__)


def select_operator(operators: Sequence[str], counts: Mapping[str, int]) -> str | None:
    """Return the operator with the fewest open tasks.

    Ties go to the operator listed first; operators missing from ``counts``
    count as having no open tasks.
    """
    selected: str | None = None
    lowest: int | None = None
    for operator in operators:
        count = counts.get(operator, 0)
        LOGGER.debug("Operator %s has %d open tasks", operator, count)
        if lowest is None or count < lowest:
            selected, lowest = operator, count
    return selected


def assign_least_loaded(
    tracker: TaskTrackerGateway,
    task_id: int,
    operators: Sequence[str],
    assigned_stage_id: int | None = None,
) -> str | None:
    """Assign ``task_id`` to the least loaded operator and return their login."""
    if not operators:
        return None
    counts = tracker.count_open_tasks_by_assignee(operators)
    operator = select_operator(operators, counts)
    if operator is None:
        return None
    tracker.assign(task_id, operator)
    if assigned_stage_id is not None:
        tracker.set_stage(task_id, assigned_stage_id)
    LOGGER.info("Task %s assigned to %s", task_id, operator)
    return operator


__all__ = ["assign_least_loaded", "select_operator"]
