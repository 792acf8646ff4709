"""Correlation of mailbox, tracker and chat events into ticket workflows."""

from .assignment import assign_least_loaded, select_operator
from .correlator import EventCorrelator, public_comment_body, summarize
from .sla import SlaEvaluator
from .stages import StagePolicy

__all__ = [
    "EventCorrelator",
    "SlaEvaluator",
    "StagePolicy",
    "assign_least_loaded",
    "public_comment_body",
    "select_operator",
    "summarize",
]
