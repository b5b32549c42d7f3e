"""Tests for the locking primitives."""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from classctl.locking import LockManager, LockTimeoutError


def test_role_lock_creates_metadata(tmp_path: Path) -> None:
    """Acquiring a lock writes metadata and releases cleanly."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    lock_path = tmp_path / "run" / "roles" / "teacher.lock"
    with manager.role_lock("teacher") as handle:
        assert handle.wait_ms >= 0
        assert lock_path.exists()
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["path"] == str(lock_path)

    # Lockfile persists for diagnostics but no longer holds the lock.
    with manager.role_lock("teacher", timeout=0.2):
        pass


def test_role_lock_timeout(tmp_path: Path) -> None:
    """Second acquisition times out while the first lock is held."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.role_lock("admin"):
        with pytest.raises(LockTimeoutError):
            with manager.role_lock("admin", timeout=0.1):
                pass


def test_different_roles_do_not_contend(tmp_path: Path) -> None:
    """Locks of different roles are independent."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.role_lock("admin"):
        with manager.role_lock("teacher", timeout=0.1):
            pass


def test_mutate_roles_acquires_global_then_roles(tmp_path: Path) -> None:
    """Lock bundles acquire global first followed by per-role locks."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.mutate_roles(["teacher", "admin", "teacher"]) as bundle:
        assert bundle.wait_ms >= 0
        assert [handle.path for handle in bundle.handles] == [
            tmp_path / "run" / "classctl.lock",
            tmp_path / "run" / "roles" / "admin.lock",
            tmp_path / "run" / "roles" / "teacher.lock",
        ]


def test_global_lock_blocks_mutations(tmp_path: Path) -> None:
    """A held global lock makes role mutations wait."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.global_lock():
        with pytest.raises(LockTimeoutError, match="classctl.lock"):
            with manager.mutate_roles(["teacher"], timeout=0.1):
                pass
