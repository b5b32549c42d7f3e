"""Tests for notice delivery."""
from __future__ import annotations

import io
import logging

import pytest
from rich.console import Console

from classctl.notify import ConsoleNotifier, NoticeLevel, RecordingNotifier


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=120, color_system=None), buffer


def test_console_notifier_renders_panel(caplog: pytest.LogCaptureFixture) -> None:
    """Interactive notices are logged and shown."""
    console, buffer = _console()
    notifier = ConsoleNotifier(console)

    with caplog.at_level(logging.INFO, logger="classctl.notify"):
        notifier.notify(NoticeLevel.INFO, "Configurator", "Saved key pair.")

    assert "Saved key pair." in buffer.getvalue()
    assert "Configurator: Saved key pair." in caplog.text


def test_silent_notifier_only_logs(caplog: pytest.LogCaptureFixture) -> None:
    """Silent mode suppresses display but still logs criticals."""
    console, buffer = _console()
    notifier = ConsoleNotifier(console, silent=True)

    with caplog.at_level(logging.INFO, logger="classctl.notify"):
        notifier.notify(NoticeLevel.CRITICAL, "Configurator", "Firewall failed.")

    assert buffer.getvalue() == ""
    assert any(record.levelno == logging.CRITICAL for record in caplog.records)


def test_recording_notifier_collects_and_forwards() -> None:
    """Recorded notices keep order and may be forwarded."""
    downstream = RecordingNotifier()
    notifier = RecordingNotifier(forward=downstream)

    notifier.notify(NoticeLevel.INFO, "t", "one")
    notifier.notify(NoticeLevel.CRITICAL, "t", "two")

    assert [notice.message for notice in notifier.notices] == ["one", "two"]
    assert [notice.message for notice in notifier.critical()] == ["two"]
    assert downstream.notices == notifier.notices
    assert notifier.notices[1].to_dict() == {
        "level": "critical",
        "title": "t",
        "message": "two",
    }
