"""Tests for the polling runner and the command-line entry point."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from helpdesk_bridge import cli
from helpdesk_bridge.core.config import load_app_settings
from helpdesk_bridge.core.errors import TransientIOError
from helpdesk_bridge.core.models import TickReport
from helpdesk_bridge.runner import PollingRunner


class ScriptedCorrelator:
    def __init__(self, stop_after: int | None = None, fail_on: int | None = None) -> None:
        self.calls = 0
        self.stop_after = stop_after
        self.fail_on = fail_on

    def tick(self, cancel: threading.Event | None = None) -> TickReport:
        self.calls += 1
        if self.fail_on == self.calls:
            raise TransientIOError("tracker unreachable")
        if self.stop_after == self.calls and cancel is not None:
            cancel.set()
        return TickReport()


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    load_app_settings.cache_clear()


def test_runner_ticks_until_max_ticks() -> None:
    correlator = ScriptedCorrelator()
    runner = PollingRunner(correlator, 0.01)  # type: ignore[arg-type]

    runner.run(max_ticks=3)

    assert correlator.calls == 3
    assert runner.ticks == 3


def test_runner_stops_when_event_is_set() -> None:
    correlator = ScriptedCorrelator(stop_after=2)
    runner = PollingRunner(correlator, 0.01)  # type: ignore[arg-type]

    runner.run(max_ticks=10)

    assert correlator.calls == 2
    assert runner.stopped


def test_failing_tick_does_not_stop_the_loop() -> None:
    correlator = ScriptedCorrelator(fail_on=1)
    runner = PollingRunner(correlator, 0.01)  # type: ignore[arg-type]

    assert runner.run_once() is None
    assert isinstance(runner.run_once(), TickReport)
    assert correlator.calls == 2


def test_cli_info_reports_missing_settings(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / "bridge.env"
    env_file.write_text("HELPDESK_BRIDGE_IMAP__HOST=imap.example.com\n", encoding="utf-8")
    monkeypatch.setattr(cli, "configure_logging", lambda settings: None)

    exit_code = cli.main(["--env-file", str(env_file), "info"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "IMAP host: imap.example.com (INBOX)" in output
    assert "Not ready: missing required settings" in output


def test_cli_once_fails_fast_on_incomplete_configuration(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / "bridge.env"
    env_file.write_text("", encoding="utf-8")
    monkeypatch.setattr(cli, "configure_logging", lambda settings: None)
    monkeypatch.setattr(
        cli, "build_gateways", lambda settings: pytest.fail("gateways must not be built")
    )

    assert cli.main(["--env-file", str(env_file), "once"]) == 2


def test_cli_rejects_invalid_values(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    env_file = tmp_path / "bridge.env"
    env_file.write_text("HELPDESK_BRIDGE_APP__POLL_SECONDS=soon\n", encoding="utf-8")

    assert cli.main(["--env-file", str(env_file), "info"]) == 2
    assert "Invalid configuration" in capsys.readouterr().err
