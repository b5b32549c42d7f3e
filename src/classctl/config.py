"""Configuration loader for classctl.

This is the configuration of the *tool* itself (where keys live, which unit
to toggle, where logs go). The product configuration that ``config apply``
merges and persists is a :class:`classctl.settings.ConfigurationTree`.

Sources are merged in order:

1. Built-in defaults.
2. ``/etc/classctl/classctl.yml`` (or an override path).
3. Environment variables prefixed with ``CLASSCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export CLASSCTL_FIREWALL__PORT=11200
    export CLASSCTL_SERVICE__UNIT=classroom-agent.service

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from . import APPLICATION_NAME

ENV_PREFIX = "CLASSCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ServiceConfig:
    """Service unit toggled by ``config apply``."""

    unit: str = "classroom-agent.service"
    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit": self.unit,
            "unit_dir": str(self.unit_dir),
            "systemctl_bin": self.systemctl_bin,
        }


@dataclass(frozen=True)
class FirewallConfig:
    """Firewall exception opened for the service."""

    ufw_bin: str = "ufw"
    port: int = 11100
    protocol: str = "tcp"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"ufw_bin": self.ufw_bin, "port": self.port, "protocol": self.protocol}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for classctl."""

    config_file: Path
    application_name: str
    keys_dir: Path
    system_store: Path
    user_store: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    service: ServiceConfig
    firewall: FirewallConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "application_name": self.application_name,
            "keys_dir": str(self.keys_dir),
            "system_store": str(self.system_store),
            "user_store": str(self.user_store),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "service": self.service.to_dict(),
            "firewall": self.firewall.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/classctl/classctl.yml",
    "application_name": APPLICATION_NAME,
    "keys_dir": "/etc/classctl/keys",
    "system_store": "/etc/classctl/configuration.yml",
    "user_store": "~/.config/classctl/configuration.yml",
    "logs_dir": "/var/log/classctl",
    "runtime_dir": "/run/classctl",
    "templates_dir": "/etc/classctl/templates",
    "lock_timeout": 30.0,
    "service": {
        "unit": "classroom-agent.service",
        "unit_dir": "/etc/systemd/system",
        "systemctl_bin": "systemctl",
    },
    "firewall": {
        "ufw_bin": "ufw",
        "port": 11100,
        "protocol": "tcp",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SERVICE_KEYS = {"unit", "unit_dir", "systemctl_bin"}
ALLOWED_FIREWALL_KEYS = {"ufw_bin", "port", "protocol"}
ALLOWED_FIREWALL_PROTOCOLS = {"tcp", "udp"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    service = raw.get("service")
    if service is not None:
        service_map = _as_dict(service, "service")
        unknown = set(service_map.keys()) - ALLOWED_SERVICE_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown service configuration keys: {joined}.")
        unit = service_map.get("unit")
        if unit is not None and not str(unit).strip():
            raise ConfigError("service.unit must be a non-empty string.")

    firewall = raw.get("firewall")
    if firewall is not None:
        firewall_map = _as_dict(firewall, "firewall")
        unknown = set(firewall_map.keys()) - ALLOWED_FIREWALL_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown firewall configuration keys: {joined}.")
        port = firewall_map.get("port")
        if port is not None:
            port_value = _expect_int(port, "firewall.port", default=11100)
            if not 0 < port_value < 65536:
                raise ConfigError("firewall.port must be between 1 and 65535.")
        protocol = firewall_map.get("protocol")
        if protocol is not None and str(protocol) not in ALLOWED_FIREWALL_PROTOCOLS:
            allowed = ", ".join(sorted(ALLOWED_FIREWALL_PROTOCOLS))
            raise ConfigError(
                f"Unsupported firewall protocol '{protocol}'. Allowed: {allowed}."
            )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    service_mapping = _as_dict(raw.get("service"), "service")
    service = ServiceConfig(
        unit=str(service_mapping.get("unit", "classroom-agent.service")),
        unit_dir=_to_path(service_mapping.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(service_mapping.get("systemctl_bin", "systemctl")),
    )

    firewall_mapping = _as_dict(raw.get("firewall"), "firewall")
    firewall = FirewallConfig(
        ufw_bin=str(firewall_mapping.get("ufw_bin", "ufw")),
        port=_expect_int(firewall_mapping.get("port"), "firewall.port", default=11100),
        protocol=str(firewall_mapping.get("protocol", "tcp")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        application_name=str(raw.get("application_name", APPLICATION_NAME)),
        keys_dir=_to_path(raw.get("keys_dir")),
        system_store=_to_path(raw.get("system_store")),
        user_store=_to_path(raw.get("user_store")),
        logs_dir=_to_path(raw.get("logs_dir")),
        runtime_dir=_to_path(raw.get("runtime_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        lock_timeout=_expect_positive_float(
            raw.get("lock_timeout"), "lock_timeout", default=30.0
        ),
        service=service,
        firewall=firewall,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "FirewallConfig",
    "ServiceConfig",
    "load_config",
]
