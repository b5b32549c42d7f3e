"""DSA key material used to authenticate role holders.

Keys are handled with :mod:`cryptography`. Private keys are stored as
unencrypted PKCS#8 PEM, public keys as SubjectPublicKeyInfo PEM. Loading
accepts PEM or DER.

Nothing in here knows about roles or where keys belong on disk; see
:mod:`classctl.roles` and :mod:`classctl.provisioning` for that.
"""
from __future__ import annotations

import hashlib
import os
import secrets
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa

DEFAULT_KEY_BITS = 1024
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644


class KeyMaterialError(RuntimeError):
    """Base class for key material failures."""


class KeyGenerationError(KeyMaterialError):
    """Raised when the DSA primitive cannot produce a key pair."""


class InvalidKeyFormat(KeyMaterialError):
    """Raised when key bytes are not a usable DSA key."""


class KeyWriteError(KeyMaterialError):
    """Raised when key bytes cannot be written to disk."""

    def __init__(self, path: Path, reason: str) -> None:
        """Record the destination *path* alongside the failure *reason*."""
        super().__init__(f"Could not write key file {path}: {reason}")
        self.path = path
        self.reason = reason


@dataclass(frozen=True)
class PublicDSAKey:
    """A DSA public verification key."""

    key: dsa.DSAPublicKey

    @classmethod
    def load(cls, path: Path) -> PublicDSAKey:
        """Read a public key from *path*."""
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise InvalidKeyFormat(f"Cannot read public key file {path}: {exc}") from exc
        return cls.from_bytes(data, source=str(path))

    @classmethod
    def from_bytes(cls, data: bytes, *, source: str = "<memory>") -> PublicDSAKey:
        """Parse a PEM or DER encoded public key."""
        try:
            if data.lstrip().startswith(b"-----BEGIN"):
                loaded = serialization.load_pem_public_key(data)
            else:
                loaded = serialization.load_der_public_key(data)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise InvalidKeyFormat(f"{source} is not a valid public key: {exc}") from exc
        if not isinstance(loaded, dsa.DSAPublicKey):
            raise InvalidKeyFormat(
                f"{source} holds a {type(loaded).__name__}, expected a DSA public key."
            )
        return cls(loaded)

    def is_valid(self) -> bool:
        """Return True when the key lies in the subgroup defined by its parameters."""
        numbers = self.key.public_numbers()
        params = numbers.parameter_numbers
        p, q, g, y = params.p, params.q, params.g, numbers.y
        if not (1 < g < p and 1 < y < p):
            return False
        return pow(y, q, p) == 1 and pow(g, q, p) == 1

    def verify(self, signature: bytes, data: bytes) -> bool:
        """Return True when *signature* over *data* was made by the matching key."""
        try:
            self.key.verify(signature, data, hashes.SHA256())
        except InvalidSignature:
            return False
        return True

    def to_pem(self) -> bytes:
        """Return the PEM encoding of the key."""
        return self.key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def fingerprint(self) -> str:
        """Return the SHA-256 fingerprint of the DER encoding as hex pairs."""
        der = self.key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        digest = hashlib.sha256(der).hexdigest()
        return ":".join(digest[index : index + 2] for index in range(0, len(digest), 2))

    def save(self, path: Path) -> None:
        """Write the key to *path* (mode 0644)."""
        write_key_file(path, self.to_pem(), PUBLIC_KEY_MODE)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PublicDSAKey):
            return NotImplemented
        return self.key.public_numbers() == other.key.public_numbers()

    def __hash__(self) -> int:
        return hash(self.key.public_numbers().y)


@dataclass(frozen=True)
class DSAKeyPair:
    """A private DSA signing key and the public key it was issued with."""

    private_key: dsa.DSAPrivateKey
    public: PublicDSAKey

    @classmethod
    def generate(cls, bit_length: int = DEFAULT_KEY_BITS) -> DSAKeyPair:
        """Generate a fresh key pair."""
        try:
            private_key = dsa.generate_private_key(key_size=bit_length)
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise KeyGenerationError(
                f"DSA key generation with {bit_length} bits failed: {exc}"
            ) from exc
        return cls.from_private_key(private_key)

    @classmethod
    def from_private_key(cls, private_key: dsa.DSAPrivateKey) -> DSAKeyPair:
        """Wrap an existing private key, deriving its public half."""
        return cls(private_key=private_key, public=PublicDSAKey(private_key.public_key()))

    @classmethod
    def load(cls, path: Path) -> DSAKeyPair:
        """Read a private key from *path* (PEM or DER, unencrypted)."""
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise InvalidKeyFormat(f"Cannot read private key file {path}: {exc}") from exc
        try:
            if data.lstrip().startswith(b"-----BEGIN"):
                loaded = serialization.load_pem_private_key(data, password=None)
            else:
                loaded = serialization.load_der_private_key(data, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise InvalidKeyFormat(f"{path} is not a valid private key: {exc}") from exc
        if not isinstance(loaded, dsa.DSAPrivateKey):
            raise InvalidKeyFormat(
                f"{path} holds a {type(loaded).__name__}, expected a DSA private key."
            )
        return cls.from_private_key(loaded)

    def public_key(self) -> PublicDSAKey:
        """Return the public half."""
        return self.public

    @property
    def key_size(self) -> int:
        """Size of the prime modulus in bits."""
        return self.private_key.key_size

    def is_valid(self) -> bool:
        """Return True when both halves are well formed and belong together."""
        if not self.public.is_valid():
            return False
        derived = self.private_key.public_key().public_numbers()
        if derived != self.public.key.public_numbers():
            return False
        challenge = secrets.token_bytes(32)
        return self.public.verify(self.sign(challenge), challenge)

    def sign(self, data: bytes) -> bytes:
        """Sign *data* with SHA-256."""
        return self.private_key.sign(data, hashes.SHA256())

    def private_pem(self) -> bytes:
        """Return the unencrypted PKCS#8 PEM encoding of the private key."""
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def save_private(self, path: Path) -> None:
        """Write the private key to *path* (mode 0600)."""
        write_key_file(path, self.private_pem(), PRIVATE_KEY_MODE)

    def save_public(self, path: Path) -> None:
        """Write the public key to *path* (mode 0644)."""
        self.public.save(path)


def write_key_file(path: Path, data: bytes, mode: int) -> None:
    """Write *data* to *path* and force its permission bits to *mode*."""
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    except OSError as exc:
        raise KeyWriteError(Path(path), exc.strerror or str(exc)) from exc
    try:
        with os.fdopen(fd, "wb") as handle:
            # os.open only applies *mode* to new files.
            os.fchmod(handle.fileno(), mode)
            handle.write(data)
    except OSError as exc:
        raise KeyWriteError(Path(path), exc.strerror or str(exc)) from exc


__all__ = [
    "DEFAULT_KEY_BITS",
    "DSAKeyPair",
    "InvalidKeyFormat",
    "KeyGenerationError",
    "KeyMaterialError",
    "KeyWriteError",
    "PublicDSAKey",
    "write_key_file",
]
