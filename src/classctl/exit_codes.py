"""Exit codes shared by every ``classctl`` command."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI."""

    OK = 0
    VALIDATION = 2  # bad input: unknown key file, malformed YAML
    ENVIRONMENT = 3  # filesystem or lock problems on the host
    PROVIDER = 4  # key generation or system store failures
    PARTIAL = 5  # configuration applied, but some system actions failed
