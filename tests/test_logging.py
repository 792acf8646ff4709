"""Tests for logging utilities."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from helpdesk_bridge.core.config import LoggingSettings
from helpdesk_bridge.core.logging import configure_logging


def test_configure_logging_sets_root_level() -> None:
    """configure_logging should set the root logger level according to settings."""

    settings = LoggingSettings(level="DEBUG", structured=False)
    configure_logging(settings)
    assert logging.getLogger().level == logging.DEBUG


def test_configure_logging_quiets_http_libraries() -> None:
    configure_logging(LoggingSettings(level="DEBUG", structured=True))

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


def test_configure_logging_writes_to_rotating_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "bridge.log"
    configure_logging(LoggingSettings(level="INFO", structured=True, file=log_file))

    logging.getLogger("helpdesk_bridge.test").info("tick finished")
    for handler in logging.getLogger().handlers:
        handler.flush()

    handlers = logging.getLogger().handlers
    assert any(isinstance(handler, RotatingFileHandler) for handler in handlers)
    assert "level=INFO logger=helpdesk_bridge.test tick finished" in log_file.read_text(
        encoding="utf-8"
    )

    configure_logging(LoggingSettings(level="INFO"))
