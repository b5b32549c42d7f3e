"""Tests for the hierarchical configuration tree."""
from __future__ import annotations

import logging

import pytest

from classctl.settings import (
    ConfigurationTree,
    ConfigurationTreeError,
    format_listing,
    list_configuration,
)


def _tree(data: dict[str, object]) -> ConfigurationTree:
    return ConfigurationTree.from_mapping(data)


def test_merge_adds_sibling_keys() -> None:
    """Merging keeps existing siblings and adds new ones."""
    current = _tree({"x": {"z": "2"}})

    current.merge(_tree({"x": {"y": "1"}}))

    assert current.to_dict() == {"x": {"y": "1", "z": "2"}}


def test_merge_overwrites_scalars_and_keeps_unrelated() -> None:
    """Incoming scalars replace stored ones; other keys survive."""
    current = _tree({"Service": {"Autostart": "0", "Arguments": "-v"}, "Other": "keep"})

    current.merge(_tree({"Service": {"Autostart": "1"}}))

    assert current.value("Autostart", "Service") == "1"
    assert current.value("Arguments", "Service") == "-v"
    assert current.value("Other") == "keep"


def test_merge_subtree_replaces_scalar() -> None:
    """A subtree arriving where a scalar was stored replaces it."""
    current = _tree({"a": "plain"})

    current.merge(_tree({"a": {"b": "1"}}))

    assert current.to_dict() == {"a": {"b": "1"}}


def test_merge_is_idempotent() -> None:
    """Merging the same tree twice equals merging it once."""
    incoming = _tree({"a": {"b": "1", "c": {"d": "2"}}, "e": "3"})
    once = _tree({"a": {"x": "9"}}).merge(incoming)
    twice = _tree({"a": {"x": "9"}}).merge(incoming).merge(incoming)

    assert once == twice


def test_merge_does_not_share_subtrees() -> None:
    """Later changes to the incoming tree do not leak into the target."""
    incoming = _tree({"a": {"b": "1"}})
    target = ConfigurationTree()
    target += incoming

    incoming.set_value("b", "changed", "a")

    assert target.value("a/b") == "1"


def test_from_mapping_normalises_scalars() -> None:
    """Booleans and numbers become strings."""
    tree = _tree({"flag": True, "off": False, "port": 11100, "ratio": 0.5})

    assert tree.to_dict() == {"flag": "1", "off": "0", "port": "11100", "ratio": "0.5"}


def test_from_mapping_skips_unrecognized_kinds(caplog: pytest.LogCaptureFixture) -> None:
    """Lists and nulls are dropped with a warning; siblings are kept."""
    with caplog.at_level(logging.WARNING, logger="classctl.settings"):
        tree = _tree({"list": [1, 2], "none": None, "ok": "yes", "bad/key": "x"})

    assert tree.to_dict() == {"ok": "yes"}
    assert "unrecognized value kind" in caplog.text
    assert "bad/key" in caplog.text


def test_value_access_by_path_and_parent() -> None:
    """Values resolve through key/parent or a combined path."""
    tree = _tree({"Network": {"FirewallExceptionEnabled": "1"}})

    assert tree.value("FirewallExceptionEnabled", "Network") == "1"
    assert tree.value("Network/FirewallExceptionEnabled") == "1"
    assert tree.value("Missing", "Network", default="fallback") == "fallback"
    assert tree.value("Network") == ""


def test_set_value_creates_sections_and_rejects_conflicts() -> None:
    """set_value creates parents but never turns a value into a section."""
    tree = ConfigurationTree()
    tree.set_value("Arguments", "-d", "Service")

    assert tree.to_dict() == {"Service": {"Arguments": "-d"}}
    with pytest.raises(ConfigurationTreeError):
        tree.set_value("x", "1", "Service/Arguments")
    with pytest.raises(ConfigurationTreeError):
        tree.set_value("Service", "1")


def test_remove_value_reports_presence() -> None:
    """remove_value returns whether something was removed."""
    tree = _tree({"Authentication": {"LogonACL": "legacy", "EncodedLogonACL": "abc"}})

    assert tree.remove_value("LogonACL", "Authentication") is True
    assert tree.remove_value("LogonACL", "Authentication") is False
    assert tree.to_dict() == {"Authentication": {"EncodedLogonACL": "abc"}}


def test_list_configuration_is_deterministic() -> None:
    """Listing visits keys depth first in lexicographic order."""
    tree = ConfigurationTree()
    tree.set_value("d", "3")
    tree.set_value("c", "2", "a")
    tree.set_value("b", "1", "a")

    first = list_configuration(tree)
    second = list_configuration(tree)

    assert first == [("a/b", "1"), ("a/c", "2"), ("d", "3")]
    assert first == second


def test_format_listing() -> None:
    """Each entry becomes one newline terminated path=value line."""
    assert format_listing([("a/b", "1"), ("d", "")]) == "a/b=1\nd=\n"
    assert format_listing([]) == ""


def test_empty_tree_lists_nothing() -> None:
    """Empty trees are falsy and list no entries."""
    tree = ConfigurationTree()

    assert not tree
    assert list_configuration(tree) == []
