"""Systemd provider for the classroom agent service unit."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine

ARGUMENTS_TEMPLATE = "systemd/arguments.conf.j2"


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


class SystemctlMissing(SystemdError):
    """Raised when the systemctl binary cannot be executed."""


def _has_control_characters(value: str) -> bool:
    return any(ord(char) < 0x20 or ord(char) == 0x7F for char in value)


@dataclass(slots=True)
class SystemdProvider:
    """Toggle autostart and launch arguments of the agent service."""

    templates: TemplateEngine
    unit: str = "classroom-agent.service"
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def dropin_dir(self) -> Path:
        """Return the drop-in directory of the unit."""
        return self.systemd_dir / f"{self.unit}.d"

    def arguments_path(self) -> Path:
        """Return the drop-in file carrying the launch arguments."""
        return self.dropin_dir() / "arguments.conf"

    def enable(self) -> subprocess.CompletedProcess[str]:
        """Start the unit at boot."""
        return self._systemctl("enable", self.unit)

    def disable(self) -> subprocess.CompletedProcess[str]:
        """Do not start the unit at boot."""
        return self._systemctl("disable", self.unit)

    def set_arguments(self, arguments: str) -> bool:
        """Write *arguments* into the unit drop-in; return whether anything changed.

        Empty arguments remove the drop-in. Arguments holding control
        characters are rejected before anything is written, since a line
        break would end the ``Environment=`` assignment.
        """
        path = self.arguments_path()
        arguments = arguments.strip()
        if _has_control_characters(arguments):
            raise SystemdError(
                f"Refusing to write {path}: arguments contain control characters."
            )
        if not arguments:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            self._reload_daemon()
            return True
        try:
            changed = self.templates.render_to_path(
                ARGUMENTS_TEMPLATE,
                path,
                {"arguments": arguments},
                mode=0o644,
            )
        except OSError as exc:
            raise SystemdError(f"Cannot write {path}: {exc}") from exc
        if changed:
            self._reload_daemon()
        return changed

    # ------------------------------------------------------------------
    def _reload_daemon(self) -> None:
        # Hosts without systemd still get the drop-in written.
        try:
            self._systemctl("daemon-reload")
        except SystemctlMissing:
            return

    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(args, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemctlMissing(f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemctlMissing", "SystemdError", "SystemdProvider"]
