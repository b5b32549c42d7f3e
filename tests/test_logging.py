"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from classctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_appends_json_record(tmp_path: Path) -> None:
    """Each operation writes one JSON line with its steps and result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "keys create",
        args={"role": "teacher", "dest": tmp_path},
        target={"kind": "role", "name": "teacher"},
    ) as op:
        op.set_lock_wait_ms(7)
        op.add_step("keys.private", status="success", detail="written")
        op.success("Key pair created.", changed=2, context={"paths": [tmp_path]})

    (record,) = _records(logger)
    assert record["op"] == "keys create"
    assert record["args"] == {"role": "teacher", "dest": str(tmp_path)}
    assert record["lock_wait_ms"] == 7
    assert record["steps"] == [{"name": "keys.private", "status": "success", "detail": "written"}]
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "success"
    assert result["changed"] == 2
    assert result["context"] == {"paths": [str(tmp_path)]}


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Blocks that finish without recording a result count as successful."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("config list"):
        pass

    (record,) = _records(logger)
    assert record["result"]["status"] == "success"  # type: ignore[index]


def test_exception_records_error_and_propagates(tmp_path: Path) -> None:
    """Unhandled exceptions are logged as errors and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError):
        with logger.operation("config apply"):
            raise ValueError("boom")

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["errors"] == ["ValueError: boom"]


def test_warning_result_keeps_rc(tmp_path: Path) -> None:
    """Warnings carry their errors and exit code."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("config apply") as op:
        op.warning("Applied with failures.", errors=["firewall"], rc=5)

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "warning"
    assert result["errors"] == ["firewall"]
    assert result["rc"] == 5


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    # Subsequent operations should not raise even though logger is disabled.
    with logger.operation("demo-2") as op:
        op.success("done", changed=0)
