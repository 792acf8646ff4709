"""Bridge between a support mailbox, a helpdesk task tracker and team chat."""

__version__ = "0.1.0"

__all__ = ["__version__"]
