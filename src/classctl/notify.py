"""Notices raised by provisioning and configuration apply."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from rich.console import Console
from rich.panel import Panel

LOGGER = logging.getLogger(__name__)


class NoticeLevel(str, Enum):
    """Severity of a notice."""

    INFO = "info"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Notice:
    """A single notice as delivered to a sink."""

    level: NoticeLevel
    title: str
    message: str

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {"level": self.level.value, "title": self.title, "message": self.message}


class Notifier(Protocol):
    """Sink for user-facing notices."""

    def notify(self, level: NoticeLevel, title: str, message: str) -> None:
        """Deliver a notice."""


class ConsoleNotifier:
    """Log every notice and show it on the console unless running silently."""

    def __init__(self, console: Console | None = None, *, silent: bool = False) -> None:
        """Bind the notifier to *console* (stderr by default)."""
        self._console = console or Console(stderr=True)
        self.silent = silent

    def notify(self, level: NoticeLevel, title: str, message: str) -> None:
        """Log the notice, then render it as a panel when interactive."""
        if level is NoticeLevel.CRITICAL:
            LOGGER.critical("%s: %s", title, message)
        else:
            LOGGER.info("%s: %s", title, message)
        if self.silent:
            return
        style = "red" if level is NoticeLevel.CRITICAL else "cyan"
        self._console.print(Panel(message, title=title, border_style=style))


@dataclass
class RecordingNotifier:
    """Collect notices in memory, optionally forwarding them to another sink."""

    forward: Notifier | None = None
    notices: list[Notice] = field(default_factory=list)

    def notify(self, level: NoticeLevel, title: str, message: str) -> None:
        """Record the notice."""
        self.notices.append(Notice(level=level, title=title, message=message))
        if self.forward is not None:
            self.forward.notify(level, title, message)

    def critical(self) -> list[Notice]:
        """Return only critical notices."""
        return [notice for notice in self.notices if notice.level is NoticeLevel.CRITICAL]


__all__ = ["ConsoleNotifier", "Notice", "NoticeLevel", "Notifier", "RecordingNotifier"]
