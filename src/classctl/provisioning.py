"""Create and import role keys.

Both operations abort on the first failure and raise a :class:`ProvisionError`
subclass. Every failure is also sent to the notifier as a critical notice.

Neither operation locks. Callers must serialise provisioning per role; the
CLI does so through :class:`classctl.locking.LockManager`.
"""
from __future__ import annotations

import contextlib
import logging
import stat
from collections.abc import Callable
from pathlib import Path
from typing import Literal

from . import APPLICATION_NAME
from .keys import (
    DEFAULT_KEY_BITS,
    PUBLIC_KEY_MODE,
    DSAKeyPair,
    InvalidKeyFormat,
    KeyMaterialError,
    KeyWriteError,
    PublicDSAKey,
    write_key_file,
)
from .notify import NoticeLevel, Notifier
from .roles import KeyPairPaths, Role, RoleKeyPathResolver

LOGGER = logging.getLogger(__name__)

KeyFactory = Callable[[int], DSAKeyPair]
KeyKind = Literal["private", "public"]


class ProvisionError(RuntimeError):
    """Base class for provisioning failures."""


class GenerationFailed(ProvisionError):
    """The DSA primitive did not produce a valid key pair."""


class PersistFailed(ProvisionError):
    """Writing a key file failed."""

    def __init__(self, which: KeyKind, path: Path, reason: str) -> None:
        """Record which key (*private* or *public*) failed to land at *path*."""
        super().__init__(f"Saving the {which} key to {path} failed: {reason}")
        self.which = which
        self.path = path


class InvalidKeyFile(ProvisionError):
    """The file offered for import is not a valid public key."""

    def __init__(self, path: Path, reason: str) -> None:
        """Record the rejected *path*."""
        super().__init__(f"{path} is not a valid public key file: {reason}")
        self.path = path


class ReplaceExistingFailed(ProvisionError):
    """An existing public key file could not be removed."""

    def __init__(self, path: Path, reason: str) -> None:
        """Record the file that could not be replaced."""
        super().__init__(f"Could not remove existing public key file {path}: {reason}")
        self.path = path


class CredentialProvisioner:
    """Place role key pairs and imported public keys on disk."""

    def __init__(
        self,
        resolver: RoleKeyPathResolver,
        notifier: Notifier,
        *,
        key_factory: KeyFactory = DSAKeyPair.generate,
        application_name: str = APPLICATION_NAME,
    ) -> None:
        """Bind the provisioner to a path *resolver* and a *notifier*."""
        self._resolver = resolver
        self._notifier = notifier
        self._key_factory = key_factory
        self._title = f"{application_name} Configurator"

    def create_key_pair(self, role: Role, dest_dir: Path | None = None) -> KeyPairPaths:
        """Generate a key pair for *role* and write both halves.

        Existing key files for the role are overwritten. If the public key
        cannot be written after the private key was saved, the private key
        file is left in place and :class:`PersistFailed` is raised.
        """
        paths = self._resolver.paths_for(role, dest_dir)
        LOGGER.info("creating new key pair in %s and %s", paths.private, paths.public)

        try:
            pair = self._key_factory(DEFAULT_KEY_BITS)
        except KeyMaterialError as exc:
            self._fail(f"Key generation failed: {exc}")
            raise GenerationFailed(str(exc)) from exc
        if not pair.is_valid():
            message = "Key generation produced an inconsistent key pair."
            self._fail(message)
            raise GenerationFailed(message)

        self._write(pair.save_private, paths.private, "private", dir_mode=0o700)
        self._write(pair.save_public, paths.public, "public", dir_mode=0o755)

        self._notifier.notify(
            NoticeLevel.INFO,
            self._title,
            f"Saved {role.label} key pair in\n\n  {paths.private}\n\nand\n\n"
            f"  {paths.public}\n\n"
            "The private key is only readable by its owner for now. Change its "
            "ownership so that it is readable by all members of a dedicated group "
            f"whose users are allowed to act as {role.label}.",
        )
        return paths

    def import_public_key(
        self,
        role: Role,
        source: Path,
        dest_dir: Path | None = None,
    ) -> Path:
        """Validate *source* and copy it to the public key path of *role*.

        The source is read once; the validated bytes are what gets written.
        *source* may therefore be the destination itself.
        """
        source = Path(source)
        try:
            data = source.read_bytes()
        except OSError as exc:
            error = InvalidKeyFile(source, f"cannot read file: {exc.strerror or exc}")
            self._fail(str(error))
            raise error from exc
        try:
            key = PublicDSAKey.from_bytes(data, source=str(source))
        except InvalidKeyFormat as exc:
            self._fail(str(exc))
            raise InvalidKeyFile(source, str(exc)) from exc
        if not key.is_valid():
            error = InvalidKeyFile(source, "key parameters are inconsistent")
            self._fail(str(error))
            raise error

        destination = self._resolver.public_key_path(role, dest_dir)
        if destination.is_symlink():
            self._remove_existing(destination)
        elif destination.exists():
            # Only the removal decides whether the old key could be replaced.
            with contextlib.suppress(OSError):
                destination.chmod(stat.S_IWUSR | stat.S_IRUSR)
            self._remove_existing(destination)

        self._write(
            lambda path: write_key_file(path, data, PUBLIC_KEY_MODE),
            destination,
            "public",
            dir_mode=0o755,
        )

        LOGGER.info(
            "imported %s public key %s (%s)", role.value, destination, key.fingerprint()
        )
        return destination

    # ------------------------------------------------------------------
    def _remove_existing(self, destination: Path) -> None:
        try:
            destination.unlink()
        except OSError as exc:
            error = ReplaceExistingFailed(destination, exc.strerror or str(exc))
            self._fail(str(error))
            raise error from exc

    def _write(
        self,
        save: Callable[[Path], None],
        path: Path,
        which: KeyKind,
        *,
        dir_mode: int,
    ) -> None:
        try:
            path.parent.mkdir(mode=dir_mode, parents=True, exist_ok=True)
            save(path)
        except KeyWriteError as exc:
            error = PersistFailed(which, path, exc.reason)
            self._fail(str(error))
            raise error from exc
        except OSError as exc:
            error = PersistFailed(which, path, exc.strerror or str(exc))
            self._fail(str(error))
            raise error from exc

    def _fail(self, message: str) -> None:
        LOGGER.error("%s", message)
        self._notifier.notify(NoticeLevel.CRITICAL, self._title, message)


__all__ = [
    "CredentialProvisioner",
    "GenerationFailed",
    "InvalidKeyFile",
    "PersistFailed",
    "ProvisionError",
    "ReplaceExistingFailed",
]
