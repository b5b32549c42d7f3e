"""System modifications requested by ``config apply``.

Every method reports success as a boolean. Provider exceptions are logged
and turned into ``False``; deciding what a failure means is left to the
caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from ..config import AppConfig
from ..templates import TemplateEngine
from .firewall import FirewallError, FirewallProvider
from .systemd import SystemdError, SystemdProvider

LOGGER = logging.getLogger(__name__)


class SystemModificationError(RuntimeError):
    """May be raised by modifiers instead of returning ``False``."""


class SystemModifier(Protocol):
    """Host-level settings driven by the product configuration."""

    supports_logon_acl: bool

    def set_service_autostart(self, enabled: bool) -> bool:
        """Start the agent service at boot (or not)."""

    def set_service_arguments(self, arguments: str) -> bool:
        """Set the agent's launch arguments."""

    def enable_firewall_exception(self, enabled: bool) -> bool:
        """Open (or close) the agent port in the host firewall."""

    def apply_encoded_access_control_list(self, encoded_acl: str) -> bool:
        """Apply an encoded logon access-control list."""


@dataclass(slots=True)
class HostSystemModifier:
    """Linux implementation backed by systemd and ufw."""

    systemd: SystemdProvider
    firewall: FirewallProvider
    supports_logon_acl: bool = False

    @classmethod
    def from_config(cls, config: AppConfig) -> HostSystemModifier:
        """Build the modifier from tool configuration."""
        templates = TemplateEngine.with_overrides(config.templates_dir)
        return cls(
            systemd=SystemdProvider(
                templates=templates,
                unit=config.service.unit,
                systemd_dir=config.service.unit_dir,
                systemctl_bin=config.service.systemctl_bin,
            ),
            firewall=FirewallProvider(
                port=config.firewall.port,
                protocol=config.firewall.protocol,
                ufw_bin=config.firewall.ufw_bin,
            ),
        )

    def set_service_autostart(self, enabled: bool) -> bool:
        """Enable or disable the unit."""
        try:
            if enabled:
                self.systemd.enable()
            else:
                self.systemd.disable()
        except SystemdError as exc:
            LOGGER.error("changing autostart of %s failed: %s", self.systemd.unit, exc)
            return False
        return True

    def set_service_arguments(self, arguments: str) -> bool:
        """Render the arguments drop-in."""
        try:
            self.systemd.set_arguments(arguments)
        except SystemdError as exc:
            LOGGER.error("setting arguments of %s failed: %s", self.systemd.unit, exc)
            return False
        return True

    def enable_firewall_exception(self, enabled: bool) -> bool:
        """Add or remove the ufw rule."""
        try:
            if enabled:
                self.firewall.allow()
            else:
                self.firewall.revoke()
        except FirewallError as exc:
            LOGGER.error("changing firewall rule %s failed: %s", self.firewall.rule, exc)
            return False
        return True

    def apply_encoded_access_control_list(self, encoded_acl: str) -> bool:
        """Logon ACLs do not exist on this platform; nothing to do."""
        if encoded_acl:
            LOGGER.debug("ignoring encoded logon ACL on a platform without logon ACLs")
        return True


__all__ = ["HostSystemModifier", "SystemModificationError", "SystemModifier"]
