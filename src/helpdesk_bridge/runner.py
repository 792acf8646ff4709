"""Gateway construction and the periodic polling loop."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from types import FrameType

from .core.config import AppSettings
from .core.container import GatewayBundle
from .core.errors import BridgeError
from .core.models import TickReport
from .correlation import EventCorrelator
from .rendering import JinjaTemplateRenderer
from .storage import SqliteLedger
from .transport import ImapClient, SmtpClient, TrackerClient, build_chat_client

LOGGER = logging.getLogger(__name__)


def build_gateways(settings: AppSettings) -> GatewayBundle:
    """Construct every gateway once from validated settings."""
    ledger = SqliteLedger(settings.storage)
    try:
        tracker = TrackerClient(settings.tracker)
    except Exception:
        ledger.close()
        raise
    return GatewayBundle(
        mailbox=ImapClient(settings.imap),
        tracker=tracker,
        chat=build_chat_client(settings.chat),
        mailer=SmtpClient(settings.smtp),
        renderer=JinjaTemplateRenderer(settings.app.templates_dir),
        ledger=ledger,
    )


def build_correlator(settings: AppSettings, gateways: GatewayBundle) -> EventCorrelator:
    """Create the correlator for ``gateways`` using the bridge settings."""
    return EventCorrelator(gateways, settings.app, settings.tracker.stages)


class PollingRunner:
    """Run correlation ticks every ``poll_seconds`` until stopped.

    The same :class:`threading.Event` stops the loop and cancels a running
    tick, so a shutdown request takes effect at the next item boundary.
    """

    def __init__(
        self,
        correlator: EventCorrelator,
        poll_seconds: float,
        *,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._correlator = correlator
        self._poll_seconds = poll_seconds
        self._stop = stop_event or threading.Event()
        self.ticks = 0

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request the loop to finish after the current item."""
        self._stop.set()

    def run_once(self) -> TickReport | None:
        """Run one tick, logging and absorbing any failure."""
        self.ticks += 1
        try:
            return self._correlator.tick(self._stop)
        except BridgeError as exc:
            LOGGER.error("Tick %d failed: %s", self.ticks, exc)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Tick %d failed unexpectedly", self.ticks)
        return None

    def run(self, *, max_ticks: int | None = None) -> None:
        """Tick immediately, then every poll interval until stopped."""
        LOGGER.info("Polling every %s seconds", self._poll_seconds)
        while not self._stop.is_set():
            self.run_once()
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            if self._stop.wait(self._poll_seconds):
                break
        LOGGER.info("Polling stopped after %d ticks", self.ticks)

    def install_signal_handlers(self) -> Callable[[], None]:
        """Stop on SIGINT/SIGTERM; returns a callable restoring the old handlers."""

        def handle(signum: int, _frame: FrameType | None) -> None:
            LOGGER.info("Received %s, shutting down", signal.Signals(signum).name)
            self.stop()

        previous = {
            signum: signal.signal(signum, handle)
            for signum in (signal.SIGINT, signal.SIGTERM)
        }

        def restore() -> None:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        return restore


__all__ = ["PollingRunner", "build_correlator", "build_gateways"]
