"""Advisory file locks serialising classctl commands.

``keys create``/``keys import`` hold the global lock plus the lock of the
role they touch, ``config apply`` holds the global lock. Lock files live in
the runtime directory and stay behind after release for diagnostics.
"""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

GLOBAL_LOCK_NAME = "classctl"
POLL_INTERVAL = 0.05


class LockTimeoutError(TimeoutError):
    """Raised when a lock cannot be acquired in time."""


@dataclass(slots=True)
class LockHandle:
    """A held lock."""

    path: Path
    wait_ms: int
    _handle: IO[str] = field(repr=False)


@dataclass(slots=True)
class LockBundle:
    """Several locks acquired in order."""

    handles: list[LockHandle]

    @property
    def wait_ms(self) -> int:
        """Total time spent waiting for all locks."""
        return sum(handle.wait_ms for handle in self.handles)


class LockManager:
    """Hand out locks below *runtime_dir*."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        """Store the lock directory and the default acquisition timeout."""
        self.runtime_dir = Path(runtime_dir).expanduser()
        self.default_timeout = default_timeout

    def global_lock_path(self) -> Path:
        """Return the path of the global lock."""
        return self.runtime_dir / f"{GLOBAL_LOCK_NAME}.lock"

    def role_lock_path(self, role: str) -> Path:
        """Return the lock path guarding the key files of *role*."""
        return self.runtime_dir / "roles" / f"{role}.lock"

    @contextmanager
    def global_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the global lock."""
        with self._acquire(self.global_lock_path(), timeout) as handle:
            yield handle

    @contextmanager
    def role_lock(self, role: str, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the lock of *role*."""
        with self._acquire(self.role_lock_path(role), timeout) as handle:
            yield handle

    @contextmanager
    def mutate_roles(
        self,
        roles: Iterable[str],
        *,
        timeout: float | None = None,
    ) -> Iterator[LockBundle]:
        """Hold the global lock, then the locks of *roles* in sorted order."""
        with ExitStack() as stack:
            handles = [stack.enter_context(self.global_lock(timeout=timeout))]
            for role in sorted(set(roles)):
                handles.append(stack.enter_context(self.role_lock(role, timeout=timeout)))
            yield LockBundle(handles)

    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self.default_timeout if timeout is None else timeout
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = path.open("a+", encoding="utf-8")
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}"
                        ) from None
                    time.sleep(POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            handle.seek(0)
            handle.truncate()
            handle.write(
                json.dumps(
                    {
                        "pid": os.getpid(),
                        "path": str(path),
                        "acquired_at": datetime.now(UTC).isoformat(),
                    }
                )
            )
            handle.flush()
            try:
                yield LockHandle(path=path, wait_ms=wait_ms, _handle=handle)
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()


__all__ = ["LockBundle", "LockHandle", "LockManager", "LockTimeoutError"]
