"""Command-line entry point for helpdesk-bridge."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import pydantic

from helpdesk_bridge.core import AppSettings, configure_logging, load_app_settings
from helpdesk_bridge.core.errors import AuthenticationError, BridgeError, ValidationError
from helpdesk_bridge.correlation import summarize
from helpdesk_bridge.runner import PollingRunner, build_correlator, build_gateways

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Bridge a support mailbox, a task tracker and a team chat"
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "once", "run"],
        help="Operation to execute (default: info).",
    )
    parser.add_argument(
        "--max-ticks",
        dest="max_ticks",
        type=int,
        default=None,
        help="Stop the run command after this many ticks.",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return the exit code."""
    command = args.command
    if command == "info":
        _print_info(settings)
        return 0

    settings.validate_required()
    gateways = build_gateways(settings)
    try:
        correlator = build_correlator(settings, gateways)
        if command == "once":
            report = correlator.tick()
            for key, value in summarize(report).items():
                print(f"{key}: {value}")
            return 1 if report.errors else 0

        runner = PollingRunner(correlator, settings.app.poll_seconds)
        restore = runner.install_signal_handlers()
        try:
            runner.run(max_ticks=args.max_ticks)
        finally:
            restore()
        return 0
    finally:
        gateways.close()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_app_settings(env_file=args.env_file)
    except pydantic.ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    configure_logging(settings.logging)

    try:
        return execute(args, settings)
    except ValidationError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2
    except AuthenticationError as exc:
        LOGGER.error("Authentication failed: %s", exc)
        return 3
    except BridgeError as exc:
        LOGGER.error("Startup failed: %s", exc)
        return 1


def _print_info(settings: AppSettings) -> None:
    print("helpdesk-bridge is ready. Configure the tracker, IMAP and SMTP to start.")
    print(f"Tracker URL: {settings.tracker.url or '-'}")
    print(f"IMAP host: {settings.imap.host or '-'} ({settings.imap.folder})")
    print(f"SMTP host: {settings.smtp.host or '-'}")
    print(f"Ledger path: {settings.storage.ledger_path}")
    print(f"Ticket prefix: {settings.app.ticket_prefix}")
    print(f"Operators: {', '.join(settings.app.operators) or '-'}")
    try:
        settings.validate_required()
    except ValidationError as exc:
        print(f"Not ready: {exc}")


if __name__ == "__main__":
    sys.exit(main())
