"""Done and not-yet-started predicates over tracker stages."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..core.config import BridgeSettings, StageSettings
from ..core.models import Task

DONE_STAGE_KEYWORDS: tuple[str, ...] = ("done", "resolved", "closed", "hotovo")


@dataclass(slots=True, frozen=True)
class StagePolicy:
    """Classify task stages for the correlator and the SLA evaluator."""

    done_stage_ids: frozenset[int] = frozenset()
    new_stage_id: int | None = None
    new_stage_names: frozenset[str] = frozenset()
    done_keywords: tuple[str, ...] = DONE_STAGE_KEYWORDS

    @classmethod
    def from_settings(cls, app: BridgeSettings, stages: StageSettings) -> StagePolicy:
        """Build the policy from configuration."""
        done_ids = set(app.done_stage_ids)
        if stages.done is not None:
            done_ids.add(stages.done)
        return cls(
            done_stage_ids=frozenset(done_ids),
            new_stage_id=stages.new,
            new_stage_names=_casefold_all(app.new_stage_names),
        )

    def is_done(self, task: Task) -> bool:
        """Return whether ``task`` sits in a done stage.

        Configured stage ids take precedence; without them the stage name is
        matched against well-known keywords.
        """
        if self.done_stage_ids:
            return task.stage.id is not None and task.stage.id in self.done_stage_ids
        name = task.stage.name.casefold()
        return any(keyword in name for keyword in self.done_keywords)

    def is_new(self, task: Task) -> bool:
        """Return whether work on ``task`` has not started yet."""
        if self.new_stage_id is not None and task.stage.id == self.new_stage_id:
            return True
        return task.stage.name.strip().casefold() in self.new_stage_names


def _casefold_all(values: Iterable[str]) -> frozenset[str]:
    return frozenset(value.strip().casefold() for value in values if value.strip())


__all__ = ["DONE_STAGE_KEYWORDS", "StagePolicy"]
