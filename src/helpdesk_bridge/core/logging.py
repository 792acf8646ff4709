"""Logging configuration for the bridge process."""

from __future__ import annotations

import logging.config
from typing import Any

from .config import LoggingSettings

# Third-party loggers that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")

_FORMATTERS: dict[str, dict[str, Any]] = {
    "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    "structured": {
        "format": "{asctime} level={levelname} logger={name} {message}",
        "style": "{",
    },
}

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3


def _handlers(settings: LoggingSettings, level: str) -> dict[str, dict[str, Any]]:
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
        },
    }
    if settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(settings.file),
            "maxBytes": LOG_FILE_MAX_BYTES,
            "backupCount": LOG_FILE_BACKUPS,
            "encoding": "utf-8",
            "formatter": "default",
            "level": level,
        }
    return handlers


def configure_logging(settings: LoggingSettings) -> None:
    """Route bridge logs to the console and, when configured, a rotating file.

    HTTP client libraries are held at WARNING so that polling does not flood
    the log with one line per request.
    """
    level = settings.level.upper()
    handlers = _handlers(settings, level)
    style = "structured" if settings.structured else "plain"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": _FORMATTERS[style]},
            "handlers": handlers,
            "loggers": {
                name: {"level": "WARNING", "propagate": True} for name in _NOISY_LOGGERS
            },
            "root": {"handlers": list(handlers), "level": level},
        }
    )


__all__ = ["configure_logging"]
