"""Durable local state."""

from .sqlite import SqliteLedger

__all__ = ["SqliteLedger"]
