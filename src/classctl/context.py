"""Process-wide state for one classctl run.

The entry point creates a :class:`ConfiguratorContext` once at startup and
closes it on shutdown. Everything that needs the authoritative configuration,
the notifier, or the silent flag receives it from here instead of reaching
for module globals.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .applier import ConfigurationApplier
from .config import AppConfig
from .locking import LockManager
from .logging import StructuredLogger
from .notify import ConsoleNotifier, Notifier
from .provisioning import CredentialProvisioner, KeyFactory
from .providers.host import HostSystemModifier, SystemModifier
from .roles import RoleKeyPathResolver
from .settings import ConfigurationTree
from .store import LocalStore, StoreScope

LOGGER = logging.getLogger(__name__)


@dataclass
class ConfiguratorContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    configuration: ConfigurationTree
    store: LocalStore
    notifier: Notifier
    system: SystemModifier
    resolver: RoleKeyPathResolver
    logger: StructuredLogger
    locks: LockManager
    silent: bool = False
    key_factory: KeyFactory | None = None
    closed: bool = field(default=False, init=False)

    @classmethod
    def create(
        cls,
        config: AppConfig,
        *,
        silent: bool = False,
        notifier: Notifier | None = None,
        system: SystemModifier | None = None,
        key_factory: KeyFactory | None = None,
    ) -> ConfiguratorContext:
        """Build the context and load the system configuration store."""
        store = LocalStore.for_scope(StoreScope.SYSTEM, config)
        configuration = store.load()
        LOGGER.debug(
            "loaded %d top-level configuration keys from %s", len(configuration), store.path
        )
        logger = StructuredLogger(config.logs_dir)
        logger.attach()
        return cls(
            config=config,
            configuration=configuration,
            store=store,
            notifier=notifier or ConsoleNotifier(silent=silent),
            system=system or HostSystemModifier.from_config(config),
            resolver=RoleKeyPathResolver(config.keys_dir),
            logger=logger,
            locks=LockManager(config.runtime_dir, config.lock_timeout),
            silent=silent,
            key_factory=key_factory,
        )

    def provisioner(self) -> CredentialProvisioner:
        """Return a provisioner bound to this context."""
        if self.key_factory is None:
            return CredentialProvisioner(
                self.resolver,
                self.notifier,
                application_name=self.config.application_name,
            )
        return CredentialProvisioner(
            self.resolver,
            self.notifier,
            key_factory=self.key_factory,
            application_name=self.config.application_name,
        )

    def applier(self, notifier: Notifier | None = None) -> ConfigurationApplier:
        """Return an applier working on the authoritative configuration."""
        return ConfigurationApplier(
            self.configuration,
            self.system,
            self.store,
            notifier or self.notifier,
            application_name=self.config.application_name,
        )

    def close(self) -> None:
        """Release the context; further use is a programming error."""
        if self.closed:
            return
        self.closed = True
        LOGGER.debug("configurator context closed")
        self.logger.detach()


__all__ = ["ConfiguratorContext"]
