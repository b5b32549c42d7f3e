"""Durable storage for the product configuration.

Each scope maps to one YAML document. Writes are atomic: the tree is dumped
to a temporary file next to the target, then moved into place.

The store does not lock. Only one writer should hold the system scope at a
time; the CLI takes the global lock around ``config apply``.
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import yaml

from .config import AppConfig
from .settings import ConfigurationTree


class StoreError(RuntimeError):
    """Raised when the configuration store cannot be read or written."""


class StoreScope(str, Enum):
    """Visibility of a configuration store."""

    SYSTEM = "system"
    USER = "user"

    @property
    def file_mode(self) -> int:
        """Permissions applied to the stored file."""
        return 0o644 if self is StoreScope.SYSTEM else 0o600


@dataclass(frozen=True)
class LocalStore:
    """YAML-backed configuration store for one scope."""

    scope: StoreScope
    path: Path

    def __post_init__(self) -> None:
        """Normalise the store path after initialisation."""
        object.__setattr__(self, "path", Path(self.path).expanduser())

    @classmethod
    def for_scope(cls, scope: StoreScope, config: AppConfig) -> LocalStore:
        """Return the store for *scope* as configured in *config*."""
        path = config.system_store if scope is StoreScope.SYSTEM else config.user_store
        return cls(scope=scope, path=path)

    def load(self) -> ConfigurationTree:
        """Return the stored tree (empty when the file does not exist)."""
        if not self.path.exists():
            return ConfigurationTree()
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StoreError(f"Cannot read configuration store {self.path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise StoreError(f"Failed to parse configuration store {self.path}: {exc}") from exc
        if data is None:
            return ConfigurationTree()
        if not isinstance(data, dict):
            raise StoreError(
                f"Configuration store {self.path} must contain a mapping at the top level."
            )
        return ConfigurationTree.from_mapping(data)

    def flush(self, tree: ConfigurationTree) -> None:
        """Atomically write *tree* to the store."""
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.")
        except OSError as exc:
            raise StoreError(
                f"Cannot write {self.scope.value} configuration to {self.path}: {exc}"
            ) from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(tree.to_dict(), handle, sort_keys=True, allow_unicode=True)
            os.chmod(tmp_path, self.scope.file_mode)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StoreError(
                f"Cannot write {self.scope.value} configuration to {self.path}: {exc}"
            ) from exc
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["LocalStore", "StoreError", "StoreScope"]
