"""Structured operation log for classctl commands.

Every CLI command runs inside :meth:`StructuredLogger.operation`. When the
scope closes, one JSON object is appended to ``operations.jsonl`` in the logs
directory::

    {"op": "keys create", "args": {...}, "target": {...},
     "started_at": "...", "duration_ms": 12, "lock_wait_ms": 0,
     "steps": [...], "result": {"status": "success", ...}}

Records emitted through the standard :mod:`logging` tree below ``classctl``
(notices included, even in silent mode) can be mirrored into
``classctl.log`` next to it with :meth:`StructuredLogger.attach`.

Logging must never break a command: if the directory or the file cannot be
written the logger disables itself and carries on silently.
"""
from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG = "operations.jsonl"
APPLICATION_LOG = "classctl.log"
PACKAGE_LOGGER = "classctl"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects the outcome of one operation."""

    def __init__(
        self,
        name: str,
        args: Mapping[str, object] | None,
        target: Mapping[str, object] | None,
    ) -> None:
        """Start timing operation *name*."""
        self.name = name
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.started_at = datetime.now(UTC)
        self._started = time.monotonic()
        self.steps: list[dict[str, object]] = []
        self.lock_wait_ms = 0
        self.result: dict[str, object] | None = None

    def set_lock_wait_ms(self, wait_ms: int) -> None:
        """Record how long the operation waited for its locks."""
        self.lock_wait_ms = int(wait_ms)

    def add_step(self, name: str, *, status: str, detail: str | None = None) -> None:
        """Append an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, rc=0, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        rc: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            rc=rc,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        warnings: Iterable[str] = (),
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed; *errors* defaults to ``[message]``."""
        self._set_result(
            "error",
            message,
            warnings=warnings,
            errors=[message] if errors is None else errors,
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        rc: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "warnings": list(warnings),
            "errors": list(errors),
            "changed": changed,
            "rc": rc,
            "context": _sanitize(context or {}),
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON record for this operation."""
        return {
            "op": self.name,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "started_at": self.started_at.isoformat(),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "lock_wait_ms": self.lock_wait_ms,
            "pid": os.getpid(),
            "steps": self.steps,
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records to ``<logs_dir>/operations.jsonl``."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*, disabling the logger when it is not writable."""
        self._logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG
        self._enabled = True
        self._handler: logging.Handler | None = None
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("operation log disabled, cannot create %s: %s", self._logs_dir, exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        """Location of the operations log."""
        return self._operations_log_path

    def attach(self, level: int = logging.INFO) -> logging.Handler | None:
        """Mirror the ``classctl`` logger tree into ``classctl.log``."""
        if not self._enabled or self._handler is not None:
            return self._handler
        try:
            handler = logging.FileHandler(self._logs_dir / APPLICATION_LOG, encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("application log unavailable: %s", exc)
            return None
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.addHandler(handler)
        if package_logger.level == logging.NOTSET or package_logger.level > level:
            package_logger.setLevel(level)
        self._handler = handler
        return handler

    def detach(self) -> None:
        """Remove the handler installed by :meth:`attach`."""
        if self._handler is None:
            return
        logging.getLogger(PACKAGE_LOGGER).removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a block as operation *name* and log its outcome."""
        scope = OperationScope(name, args, target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{type(exc).__name__}: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.warning("operation log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
