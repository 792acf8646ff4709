"""Core utilities for configuration, logging, and dependency wiring."""

from .config import AppSettings, BridgeSettings, SmtpSettings, load_app_settings
from .container import GatewayBundle
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "BridgeSettings",
    "GatewayBundle",
    "SmtpSettings",
    "configure_logging",
    "load_app_settings",
]
