"""Merge incoming configuration and push it to the host.

:meth:`ConfigurationApplier.apply` never stops early. Every system action is
attempted, every failure is recorded in the returned :class:`ApplyReport` and
sent to the notifier, and the merged tree is written to the system store
whatever happened before. ``report.completed`` only says that apply ran to
the end; look at ``report.failures`` to learn whether it worked.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .notify import NoticeLevel, Notifier
from .providers.host import SystemModificationError, SystemModifier
from .settings import ConfigurationTree, list_configuration
from .store import LocalStore, StoreError

LOGGER = logging.getLogger(__name__)

AUTOSTART_KEY = ("Autostart", "Service")
ARGUMENTS_KEY = ("Arguments", "Service")
FIREWALL_KEY = ("FirewallExceptionEnabled", "Network")
LEGACY_ACL_KEY = ("LogonACL", "Authentication")
ENCODED_ACL_KEY = ("EncodedLogonACL", "Authentication")

TRUE_VALUES = {"1", "true", "yes", "on"}


class FailureKind(str, Enum):
    """Why an outcome failed."""

    ACTION_FAILED = "ActionFailed"
    PERSISTENCE_FAILED = "PersistenceFailed"


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one step of an apply run."""

    action: str
    success: bool
    message: str
    kind: FailureKind | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "action": self.action,
            "success": self.success,
            "message": self.message,
            "kind": self.kind.value if self.kind is not None else None,
        }


@dataclass(frozen=True)
class ApplyReport:
    """Ordered outcomes of one apply run."""

    actions: tuple[ActionOutcome, ...]
    persistence: ActionOutcome
    completed: bool = True

    @property
    def outcomes(self) -> tuple[ActionOutcome, ...]:
        """System actions followed by the persistence step."""
        return (*self.actions, self.persistence)

    @property
    def failures(self) -> tuple[ActionOutcome, ...]:
        """Failed outcomes, in execution order."""
        return tuple(outcome for outcome in self.outcomes if not outcome.success)

    @property
    def action_failures(self) -> tuple[ActionOutcome, ...]:
        """Failed system actions only."""
        return tuple(outcome for outcome in self.actions if not outcome.success)

    @property
    def succeeded(self) -> bool:
        """True when every action and the persistence step worked."""
        return not self.failures

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "completed": self.completed,
            "succeeded": self.succeeded,
            "actions": [outcome.to_dict() for outcome in self.actions],
            "persistence": self.persistence.to_dict(),
        }


def parse_flag(value: str) -> bool:
    """Interpret a stored boolean (``1``, ``true``, ``yes``, ``on``)."""
    return value.strip().lower() in TRUE_VALUES


class ConfigurationApplier:
    """Apply configuration snapshots to the authoritative tree and the host.

    Not safe for concurrent use: callers must hold a global lock around
    :meth:`apply`.
    """

    def __init__(
        self,
        configuration: ConfigurationTree,
        system: SystemModifier,
        store: LocalStore,
        notifier: Notifier,
        *,
        application_name: str,
    ) -> None:
        """Bind the applier to the authoritative *configuration* and collaborators."""
        self.configuration = configuration
        self._system = system
        self._store = store
        self._notifier = notifier
        self._application_name = application_name
        self._title = f"{application_name} Configurator"

    def apply(self, incoming: ConfigurationTree) -> ApplyReport:
        """Merge *incoming*, run the system actions, and flush the result."""
        self.configuration.merge(incoming)
        config = self.configuration
        service = f"{self._application_name} Service"

        actions = [
            self._run(
                "service.autostart",
                lambda: self._system.set_service_autostart(
                    parse_flag(config.value(*AUTOSTART_KEY))
                ),
                f"Could not modify the autostart property for the {service}.",
            ),
            self._run(
                "service.arguments",
                lambda: self._system.set_service_arguments(config.value(*ARGUMENTS_KEY)),
                f"Could not modify the service arguments for the {service}.",
            ),
            self._run(
                "firewall.exception",
                lambda: self._system.enable_firewall_exception(
                    parse_flag(config.value(*FIREWALL_KEY))
                ),
                f"Could not change the firewall configuration for the {service}.",
            ),
        ]
        if self._system.supports_logon_acl:
            config.remove_value(*LEGACY_ACL_KEY)
            actions.append(
                self._run(
                    "authentication.logon-acl",
                    self._apply_logon_acl,
                    f"Could not apply the logon access control list for the {service}.",
                )
            )

        persistence = self._flush()
        return ApplyReport(actions=tuple(actions), persistence=persistence)

    def list(self) -> list[tuple[str, str]]:
        """List the authoritative tree as ``(path, value)`` pairs."""
        return list_configuration(self.configuration)

    # ------------------------------------------------------------------
    def _apply_logon_acl(self) -> bool:
        encoded = self.configuration.value(*ENCODED_ACL_KEY)
        if not encoded:
            return True
        return self._system.apply_encoded_access_control_list(encoded)

    def _run(self, action: str, call: Callable[[], bool], failure: str) -> ActionOutcome:
        try:
            ok = bool(call())
            detail = ""
        except (SystemModificationError, OSError) as exc:
            ok = False
            detail = str(exc)
        if ok:
            LOGGER.info("%s applied", action)
            return ActionOutcome(action=action, success=True, message="ok")
        message = f"{failure} {detail}".strip() if detail else failure
        LOGGER.error("%s failed: %s", action, message)
        self._notifier.notify(NoticeLevel.CRITICAL, self._title, message)
        return ActionOutcome(
            action=action,
            success=False,
            message=message,
            kind=FailureKind.ACTION_FAILED,
        )

    def _flush(self) -> ActionOutcome:
        try:
            self._store.flush(self.configuration)
        except StoreError as exc:
            message = f"Could not write the {self._store.scope.value} configuration: {exc}"
            LOGGER.error("%s", message)
            self._notifier.notify(NoticeLevel.CRITICAL, self._title, message)
            return ActionOutcome(
                action="store.flush",
                success=False,
                message=message,
                kind=FailureKind.PERSISTENCE_FAILED,
            )
        return ActionOutcome(action="store.flush", success=True, message=str(self._store.path))


__all__ = [
    "ActionOutcome",
    "ApplyReport",
    "ConfigurationApplier",
    "FailureKind",
    "parse_flag",
]
