"""Texts posted to the team chat channel."""

from __future__ import annotations

from datetime import datetime

from ..core.models import SlaBreach

UNASSIGNED = "nobody"
_PREVIEW_LENGTH = 300


def _preview(body: str) -> str:
    if len(body) <= _PREVIEW_LENGTH:
        return body
    return body[:_PREVIEW_LENGTH] + "..."


def new_ticket_text(
    task_id: int,
    title: str,
    url: str,
    body: str,
    operator: str | None,
    created_at: datetime,
) -> str:
    """Head message announcing a new ticket."""
    return "\n\n".join(
        (
            "<!channel> :rotating_light: *New support ticket*",
            f"*Task:* {title}",
            f"*ID:* {task_id}",
            f"*Content:* {_preview(body)}",
            f"*Assigned to:* {operator or UNASSIGNED}",
            f"*Created:* {created_at:%d.%m.%Y %H:%M}",
            f"<{url}|:point_right: Open in tracker>",
        )
    )


def assigned_text(task_id: int, operator: str) -> str:
    return f":male-technologist: Task #{task_id} was assigned to *{operator}*"


def completed_head_text(task_id: int, title: str, url: str, operator: str | None) -> str:
    return (
        f":heavy_check_mark: *Completed* | Task #{task_id}: *{title}*\n"
        f":link: <{url}|Open in tracker>\n"
        f":male-technologist: Operator: *{operator or UNASSIGNED}*"
    )


def completed_thread_text(task_id: int, title: str) -> str:
    return f":heavy_check_mark: Task #{task_id} *{title}* was completed and closed"


def reopened_head_text(task_id: int, title: str, url: str, operator: str | None) -> str:
    return (
        f":warning: *Reopened* | Task #{task_id}: *{title}*\n"
        f":link: <{url}|Open in tracker>\n"
        f":male-technologist: Operator: *{operator or UNASSIGNED}*"
    )


def reopened_thread_text(task_id: int, title: str, operator: str | None) -> str:
    text = f":arrows_counterclockwise: Task #{task_id} *{title}* was reopened"
    if operator:
        text += f" and assigned to *{operator}*"
    return text


def sla_breach_text(task_id: int, title: str, breach: SlaBreach) -> str:
    """Thread note mentioning the channel about a breached SLA."""
    if breach is SlaBreach.START:
        what = "was not started in time"
    else:
        what = "was not resolved in time"
    return f"<!channel> :warning: *SLA BREACH* - Task #{task_id} *{title}* {what}!"


__all__ = [
    "UNASSIGNED",
    "assigned_text",
    "completed_head_text",
    "completed_thread_text",
    "new_ticket_text",
    "reopened_head_text",
    "reopened_thread_text",
    "sla_breach_text",
]
