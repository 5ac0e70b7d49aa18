"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from jamctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def test_operation_writes_single_record(tmp_path: Path) -> None:
    """A completed operation appends one JSON line with its result block."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("setup", args={"force": True}, target={"kind": "toolchain"}) as op:
        op.add_step("resolver.resolve", status="success", detail="nightly-2025-12-29")
        op.set_lock_wait_ms(12)
        op.success("Toolchain installed.", changed=2, context={"path": tmp_path})

    (record,) = _records(logger)
    assert record["command"] == "setup"
    assert str(record["id"]).startswith("op-")
    assert record["args"] == {"force": True}
    assert record["lock_wait_ms"] == 12
    assert record["steps"] == [
        {"name": "resolver.resolve", "status": "success", "detail": "nightly-2025-12-29"}
    ]
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "success"
    assert result["changed"] == 2
    assert result["rc"] == 0
    assert result["context"] == {"path": str(tmp_path)}


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Leaving the scope without an explicit result records success."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("status"):
        pass

    (record,) = _records(logger)
    assert record["result"]["status"] == "success"  # type: ignore[index]


def test_exception_is_recorded_and_reraised(tmp_path: Path) -> None:
    """An exception escaping the scope is logged as an error and propagates."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError, match="boom"):
        with logger.operation("up"):
            raise ValueError("boom")

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 1


def test_explicit_error_is_preserved(tmp_path: Path) -> None:
    """An error recorded before an exception is not overwritten."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError):
        with logger.operation("down") as op:
            op.error("Testnet did not exit.", rc=4)
            raise RuntimeError("exit")

    (record,) = _records(logger)
    assert record["result"]["message"] == "Testnet did not exit."  # type: ignore[index]
    assert record["result"]["rc"] == 4  # type: ignore[index]


def test_warning_result(tmp_path: Path) -> None:
    """Warnings keep rc 0 and carry their messages."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("setup") as op:
        op.warning("Installed without checksum.", warnings=["unverified"], changed=1)

    (record,) = _records(logger)
    assert record["result"]["status"] == "warning"  # type: ignore[index]
    assert record["result"]["warnings"] == ["unverified"]  # type: ignore[index]


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
        original_mkdir(self, *args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)

    assert not log_dir.exists()


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.operations_log_path

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo-2") as op:
        op.success("done", changed=0)
