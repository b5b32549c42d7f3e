"""Host system providers for classctl."""
from __future__ import annotations

from .firewall import FirewallError, FirewallProvider
from .host import HostSystemModifier, SystemModificationError, SystemModifier
from .systemd import SystemctlMissing, SystemdError, SystemdProvider

__all__ = [
    "FirewallError",
    "FirewallProvider",
    "HostSystemModifier",
    "SystemModificationError",
    "SystemModifier",
    "SystemctlMissing",
    "SystemdError",
    "SystemdProvider",
]
