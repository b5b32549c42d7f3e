"""Tests for the YAML configuration store."""
from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest
import yaml

from classctl.config import load_config
from classctl.settings import ConfigurationTree
from classctl.store import LocalStore, StoreError, StoreScope


def test_missing_store_loads_empty(tmp_path: Path) -> None:
    """A store that was never written yields an empty tree."""
    store = LocalStore(StoreScope.SYSTEM, tmp_path / "configuration.yml")

    assert store.load() == ConfigurationTree()


def test_flush_then_load(tmp_path: Path) -> None:
    """Flushed trees load back unchanged."""
    store = LocalStore(StoreScope.SYSTEM, tmp_path / "etc" / "configuration.yml")
    tree = ConfigurationTree.from_mapping({"Service": {"Autostart": True, "Arguments": "-v"}})

    store.flush(tree)

    assert store.load() == tree
    assert yaml.safe_load(store.path.read_text(encoding="utf-8")) == {
        "Service": {"Arguments": "-v", "Autostart": "1"}
    }


@pytest.mark.parametrize(
    ("scope", "mode"),
    [(StoreScope.SYSTEM, 0o644), (StoreScope.USER, 0o600)],
)
def test_flush_applies_scope_mode(tmp_path: Path, scope: StoreScope, mode: int) -> None:
    """System stores are world readable, user stores private."""
    store = LocalStore(scope, tmp_path / "configuration.yml")

    store.flush(ConfigurationTree())

    assert stat.S_IMODE(store.path.stat().st_mode) == mode


def test_flush_leaves_no_temporary_files(tmp_path: Path) -> None:
    """Only the target file remains after a flush."""
    store = LocalStore(StoreScope.SYSTEM, tmp_path / "configuration.yml")

    store.flush(ConfigurationTree.from_mapping({"a": "1"}))
    store.flush(ConfigurationTree.from_mapping({"a": "2"}))

    assert sorted(os.listdir(tmp_path)) == ["configuration.yml"]


def test_flush_failure_raises_store_error(tmp_path: Path) -> None:
    """Unwritable locations surface as StoreError."""
    blocker = tmp_path / "blocker"
    blocker.write_text("file")
    store = LocalStore(StoreScope.SYSTEM, blocker / "configuration.yml")

    with pytest.raises(StoreError, match="Cannot write system configuration"):
        store.flush(ConfigurationTree())


def test_non_mapping_store_is_rejected(tmp_path: Path) -> None:
    """Documents that are not mappings cannot be loaded."""
    path = tmp_path / "configuration.yml"
    path.write_text("- a\n- b\n")

    with pytest.raises(StoreError, match="mapping"):
        LocalStore(StoreScope.SYSTEM, path).load()


def test_for_scope_uses_configured_paths(tmp_path: Path) -> None:
    """Store paths come from the tool configuration."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={
            "CLASSCTL_SYSTEM_STORE": str(tmp_path / "system.yml"),
            "CLASSCTL_USER_STORE": str(tmp_path / "user.yml"),
        },
    )

    assert LocalStore.for_scope(StoreScope.SYSTEM, config).path == tmp_path / "system.yml"
    assert LocalStore.for_scope(StoreScope.USER, config).path == tmp_path / "user.yml"
