"""Firewall exception for the agent port, managed through ``ufw``."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class FirewallError(RuntimeError):
    """Raised when the firewall cannot be reconfigured."""


@dataclass(slots=True)
class FirewallProvider:
    """Open or close the agent port."""

    port: int = 11100
    protocol: str = "tcp"
    ufw_bin: str = "ufw"
    comment: str = "classroom-agent"

    @property
    def rule(self) -> str:
        """Return the ``ufw`` rule specification, e.g. ``11100/tcp``."""
        return f"{self.port}/{self.protocol}"

    def allow(self) -> subprocess.CompletedProcess[str]:
        """Add the exception (idempotent in ufw)."""
        return self._ufw(["allow", self.rule, "comment", self.comment])

    def revoke(self) -> subprocess.CompletedProcess[str]:
        """Remove the exception; a missing rule is not an error."""
        result = self._ufw(["delete", "allow", self.rule], check=False)
        output = f"{result.stdout}\n{result.stderr}".lower()
        if result.returncode != 0 and "could not delete non-existent rule" not in output:
            message = result.stderr.strip() or result.stdout.strip() or "no output"
            raise FirewallError(
                f"{self.ufw_bin} delete allow {self.rule} failed "
                f"(exit {result.returncode}): {message}"
            )
        return result

    def _ufw(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.ufw_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise FirewallError(f"{self.ufw_bin} not found: {exc}") from exc
        if check and result.returncode != 0:
            message = (result.stderr or "").strip() or (result.stdout or "").strip() or "no output"
            raise FirewallError(
                f"{' '.join(command)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["FirewallError", "FirewallProvider"]
