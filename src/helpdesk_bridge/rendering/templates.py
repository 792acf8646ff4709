"""Jinja2 renderer for customer notification emails."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import (
    BaseLoader,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)

from ..core.errors import RenderError
from ..core.interfaces import TemplateRenderer
from ..core.models import RenderedMessage

LOGGER = logging.getLogger(__name__)

NEW_TICKET = "new_ticket"
AGENT_REPLY = "agent_reply"
TICKET_CLOSED = "ticket_closed"


class JinjaTemplateRenderer(TemplateRenderer):
    """Render ``<name>_subject.txt`` and ``<name>_body.txt`` template pairs.

    Files in ``templates_dir`` override the built-in templates one by one.
    Undefined variables raise instead of rendering as empty text.
    """

    def __init__(self, templates_dir: Path | str | None = None) -> None:
        """Build the Jinja2 environment."""
        loaders: list[BaseLoader] = []
        if templates_dir is not None:
            LOGGER.debug("Loading custom templates from %s", templates_dir)
            loaders.append(FileSystemLoader(str(templates_dir)))
        loaders.append(PackageLoader("helpdesk_bridge", "templates"))
        self._environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=False,
        )

    def render(self, name: str, variables: Mapping[str, Any]) -> RenderedMessage:
        """Render the subject and body templates registered under ``name``."""
        try:
            subject = self._environment.get_template(f"{name}_subject.txt").render(
                variables
            )
            body = self._environment.get_template(f"{name}_body.txt").render(variables)
        except TemplateError as exc:
            raise RenderError(f"cannot render template {name}: {exc}") from exc
        return RenderedMessage(subject=" ".join(subject.split()), body=body.strip() + "\n")


__all__ = [
    "AGENT_REPLY",
    "JinjaTemplateRenderer",
    "NEW_TICKET",
    "TICKET_CLOSED",
]
