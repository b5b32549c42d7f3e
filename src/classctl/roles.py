"""User roles and the on-disk layout of their keys."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class Role(str, Enum):
    """Purpose a credential is issued for."""

    TEACHER = "teacher"
    ADMIN = "admin"
    SUPPORTER = "supporter"
    OTHER = "other"

    @property
    def label(self) -> str:
        """Human readable role name."""
        return self.value.capitalize()


@dataclass(frozen=True)
class KeyPairPaths:
    """Private and public key locations for a role."""

    role: Role
    private: Path
    public: Path

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {
            "role": self.role.value,
            "private": str(self.private),
            "public": str(self.public),
        }


@dataclass(frozen=True)
class RoleKeyPathResolver:
    """Map a role (and optional destination directory) to key file paths.

    Layout below the base directory::

        private/<role>/key
        public/<role>/key
    """

    base_dir: Path = Path("/etc/classctl/keys")

    def private_key_path(self, role: Role, dest_dir: Path | None = None) -> Path:
        """Return the private key path for *role*."""
        return self._root(dest_dir) / "private" / role.value / "key"

    def public_key_path(self, role: Role, dest_dir: Path | None = None) -> Path:
        """Return the public key path for *role*."""
        return self._root(dest_dir) / "public" / role.value / "key"

    def paths_for(self, role: Role, dest_dir: Path | None = None) -> KeyPairPaths:
        """Return both key paths for *role*."""
        return KeyPairPaths(
            role=role,
            private=self.private_key_path(role, dest_dir),
            public=self.public_key_path(role, dest_dir),
        )

    def _root(self, dest_dir: Path | None) -> Path:
        root = dest_dir if dest_dir is not None else self.base_dir
        return Path(root).expanduser()


__all__ = ["KeyPairPaths", "Role", "RoleKeyPathResolver"]
