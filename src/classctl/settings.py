"""Hierarchical product configuration.

A :class:`ConfigurationTree` maps string keys to either a nested tree or a
string scalar, nothing else. Foreign data (YAML documents, legacy stores) is
checked once in :meth:`ConfigurationTree.from_mapping`; values of any other
kind are logged and dropped there, so traversal never meets them.

Values are addressed the way the agent reads them, as a key plus a
``/``-separated parent path::

    tree.value("Autostart", "Service")
    tree.value("Service/Autostart")   # equivalent
"""
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Union

LOGGER = logging.getLogger(__name__)

SEPARATOR = "/"

Node = Union["ConfigurationTree", str]


class ConfigurationTreeError(ValueError):
    """Raised when a path conflicts with the shape of the tree."""


class ConfigurationTree:
    """Tree of configuration values merged by deep union."""

    __slots__ = ("_children",)

    def __init__(self) -> None:
        """Create an empty tree."""
        self._children: dict[str, Node] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_mapping(cls, data: Mapping[object, object], *, _path: str = "") -> ConfigurationTree:
        """Build a tree from nested mappings.

        Booleans become ``"1"``/``"0"``, numbers their ``str()``. Other kinds
        (lists, ``None``, arbitrary objects) are skipped with a warning.
        """
        tree = cls()
        for raw_key, raw_value in data.items():
            key = str(raw_key)
            path = _join(_path, key)
            if SEPARATOR in key or not key:
                LOGGER.warning("skipping configuration key %r: keys must be non-empty "
                               "and must not contain %r", path, SEPARATOR)
                continue
            if isinstance(raw_value, Mapping):
                tree._children[key] = cls.from_mapping(raw_value, _path=path)
            elif isinstance(raw_value, bool):
                tree._children[key] = "1" if raw_value else "0"
            elif isinstance(raw_value, (str, int, float)):
                tree._children[key] = str(raw_value)
            else:
                LOGGER.warning(
                    "unrecognized value kind %s at %s in configuration data, skipping",
                    type(raw_value).__name__,
                    path,
                )
        return tree

    def to_dict(self) -> dict[str, object]:
        """Return nested plain dicts suitable for serialisation."""
        result: dict[str, object] = {}
        for key, node in self._children.items():
            result[key] = node.to_dict() if isinstance(node, ConfigurationTree) else node
        return result

    def copy(self) -> ConfigurationTree:
        """Return a deep copy."""
        clone = ConfigurationTree()
        for key, node in self._children.items():
            clone._children[key] = node.copy() if isinstance(node, ConfigurationTree) else node
        return clone

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------
    def merge(self, other: ConfigurationTree) -> ConfigurationTree:
        """Deep-union *other* into this tree and return ``self``.

        Incoming scalars overwrite whatever is stored at the same key. Incoming
        subtrees merge into existing subtrees and replace existing scalars.
        Subtrees taken from *other* are copied, never shared.
        """
        for key, incoming in other._children.items():
            existing = self._children.get(key)
            if isinstance(incoming, ConfigurationTree):
                if isinstance(existing, ConfigurationTree):
                    existing.merge(incoming)
                else:
                    self._children[key] = incoming.copy()
            else:
                self._children[key] = incoming
        return self

    def __iadd__(self, other: ConfigurationTree) -> ConfigurationTree:
        return self.merge(other)

    # ------------------------------------------------------------------
    # Value access
    # ------------------------------------------------------------------
    def value(self, key: str, parent: str = "", default: str = "") -> str:
        """Return the scalar at *parent*/*key*, or *default*."""
        *parents, leaf = _split(parent, key)
        node = self._subtree(parents)
        if node is None:
            return default
        found = node._children.get(leaf)
        return found if isinstance(found, str) else default

    def set_value(self, key: str, value: str, parent: str = "") -> None:
        """Store *value* at *parent*/*key*, creating intermediate subtrees."""
        *parents, leaf = _split(parent, key)
        node = self
        walked: list[str] = []
        for segment in parents:
            walked.append(segment)
            child = node._children.get(segment)
            if child is None:
                child = ConfigurationTree()
                node._children[segment] = child
            elif not isinstance(child, ConfigurationTree):
                raise ConfigurationTreeError(
                    f"{SEPARATOR.join(walked)} holds a value, not a section"
                )
            node = child
        if isinstance(node._children.get(leaf), ConfigurationTree):
            raise ConfigurationTreeError(
                f"{SEPARATOR.join([*parents, leaf])} is a section, not a value"
            )
        node._children[leaf] = str(value)

    def remove_value(self, key: str, parent: str = "") -> bool:
        """Remove the value or section at *parent*/*key*; return whether it existed."""
        *parents, leaf = _split(parent, key)
        node = self._subtree(parents)
        if node is None or leaf not in node._children:
            return False
        del node._children[leaf]
        return True

    def section(self, path: str) -> ConfigurationTree | None:
        """Return the subtree at *path* if present."""
        return self._subtree([segment for segment in path.split(SEPARATOR) if segment])

    def _subtree(self, segments: list[str]) -> ConfigurationTree | None:
        node: ConfigurationTree = self
        for segment in segments:
            child = node._children.get(segment)
            if not isinstance(child, ConfigurationTree):
                return None
            node = child
        return node

    # ------------------------------------------------------------------
    # Container protocol
    # ------------------------------------------------------------------
    def keys(self) -> list[str]:
        """Return child keys in lexicographic order."""
        return sorted(self._children)

    def items(self) -> Iterator[tuple[str, Node]]:
        """Iterate over ``(key, node)`` pairs in lexicographic key order."""
        for key in sorted(self._children):
            yield key, self._children[key]

    def __contains__(self, key: object) -> bool:
        return key in self._children

    def __len__(self) -> int:
        return len(self._children)

    def __bool__(self) -> bool:
        return bool(self._children)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigurationTree):
            return NotImplemented
        return self._children == other._children

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ConfigurationTree({self.to_dict()!r})"


def list_configuration(tree: ConfigurationTree) -> list[tuple[str, str]]:
    """Flatten *tree* into ``(path, value)`` pairs, depth first.

    Children are visited in lexicographic key order, so the result only
    depends on the tree's contents.
    """
    entries: list[tuple[str, str]] = []
    _collect(tree, "", entries)
    return entries


def _collect(tree: ConfigurationTree, parent: str, entries: list[tuple[str, str]]) -> None:
    for key, node in tree.items():
        path = _join(parent, key)
        if isinstance(node, ConfigurationTree):
            _collect(node, path, entries)
        else:
            entries.append((path, node))


def format_listing(entries: list[tuple[str, str]]) -> str:
    """Render entries as ``path=value`` lines, each newline terminated."""
    return "".join(f"{path}={value}\n" for path, value in entries)


def _join(parent: str, key: str) -> str:
    return f"{parent}{SEPARATOR}{key}" if parent else key


def _split(parent: str, key: str) -> list[str]:
    segments = [segment for segment in _join(parent, key).split(SEPARATOR) if segment]
    if not segments:
        raise ConfigurationTreeError("configuration key must not be empty")
    return segments


__all__ = [
    "ConfigurationTree",
    "ConfigurationTreeError",
    "format_listing",
    "list_configuration",
]
