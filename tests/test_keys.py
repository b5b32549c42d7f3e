"""Tests for DSA key material handling."""
from __future__ import annotations

import stat
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, rsa

from classctl.keys import (
    DSAKeyPair,
    InvalidKeyFormat,
    KeyWriteError,
    PublicDSAKey,
)


def test_generated_pair_is_valid(pair: DSAKeyPair) -> None:
    """Fresh key pairs pass the consistency check."""
    assert pair.key_size == 1024
    assert pair.is_valid() is True
    assert pair.public.is_valid() is True


def test_sign_and_verify(pair: DSAKeyPair) -> None:
    """Signatures verify with the matching public key only."""
    signature = pair.sign(b"hello")

    assert pair.public.verify(signature, b"hello") is True
    assert pair.public.verify(signature, b"tampered") is False


def test_mismatched_halves_are_invalid(pair: DSAKeyPair, other_pair: DSAKeyPair) -> None:
    """A public key from another pair makes the pair invalid."""
    mixed = DSAKeyPair(private_key=pair.private_key, public=other_pair.public)

    assert mixed.is_valid() is False


def test_save_writes_modes_and_reloads(tmp_path: Path, pair: DSAKeyPair) -> None:
    """Private keys are owner-only, public keys world readable."""
    private_path = tmp_path / "private.pem"
    public_path = tmp_path / "public.pem"

    pair.save_private(private_path)
    pair.save_public(public_path)

    assert stat.S_IMODE(private_path.stat().st_mode) == 0o600
    assert stat.S_IMODE(public_path.stat().st_mode) == 0o644
    assert b"BEGIN PRIVATE KEY" in private_path.read_bytes()
    assert b"BEGIN PUBLIC KEY" in public_path.read_bytes()
    assert DSAKeyPair.load(private_path).public == pair.public
    assert PublicDSAKey.load(public_path) == pair.public


def test_save_resets_mode_of_existing_file(tmp_path: Path, pair: DSAKeyPair) -> None:
    """Overwriting a loosely permissioned file tightens its mode."""
    private_path = tmp_path / "private.pem"
    private_path.write_text("old")
    private_path.chmod(0o666)

    pair.save_private(private_path)

    assert stat.S_IMODE(private_path.stat().st_mode) == 0o600


def test_public_key_loads_from_der(tmp_path: Path, pair: DSAKeyPair) -> None:
    """DER encoded public keys are accepted."""
    der_path = tmp_path / "public.der"
    der_path.write_bytes(
        pair.public.key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )

    assert PublicDSAKey.load(der_path) == pair.public


def test_garbage_is_rejected(tmp_path: Path) -> None:
    """Arbitrary bytes are not a key."""
    path = tmp_path / "garbage"
    path.write_bytes(b"not a key at all")

    with pytest.raises(InvalidKeyFormat):
        PublicDSAKey.load(path)


def test_missing_file_is_rejected(tmp_path: Path) -> None:
    """Unreadable files surface as InvalidKeyFormat."""
    with pytest.raises(InvalidKeyFormat, match="Cannot read"):
        PublicDSAKey.load(tmp_path / "absent")


def test_non_dsa_key_is_rejected(tmp_path: Path) -> None:
    """RSA public keys are not accepted as DSA keys."""
    rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    path = tmp_path / "rsa.pem"
    path.write_bytes(
        rsa_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )

    with pytest.raises(InvalidKeyFormat, match="expected a DSA public key"):
        PublicDSAKey.load(path)


def test_out_of_subgroup_key_is_invalid(pair: DSAKeyPair) -> None:
    """A public value outside the order-q subgroup fails validation."""
    numbers = pair.public.key.public_numbers()
    params = numbers.parameter_numbers
    # p - 1 has order 2, never q.
    bogus = dsa.DSAPublicNumbers(y=params.p - 1, parameter_numbers=params).public_key()

    assert PublicDSAKey(bogus).is_valid() is False


def test_write_failure_raises_key_write_error(tmp_path: Path, pair: DSAKeyPair) -> None:
    """Writing into a missing directory raises KeyWriteError."""
    target = tmp_path / "missing" / "key"

    with pytest.raises(KeyWriteError) as excinfo:
        pair.save_public(target)

    assert excinfo.value.path == target


def test_fingerprint_is_stable(pair: DSAKeyPair) -> None:
    """Fingerprints are colon separated SHA-256 hex pairs."""
    fingerprint = pair.public.fingerprint()

    assert fingerprint == pair.public.fingerprint()
    assert len(fingerprint.split(":")) == 32
