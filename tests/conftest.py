"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import pytest

from classctl.keys import DSAKeyPair


@pytest.fixture(scope="session")
def pair() -> DSAKeyPair:
    """Return a DSA key pair shared by the whole run; generation is slow."""
    return DSAKeyPair.generate(1024)


@pytest.fixture(scope="session")
def other_pair() -> DSAKeyPair:
    """Return a second key pair unrelated to :func:`pair`."""
    return DSAKeyPair.generate(1024)
