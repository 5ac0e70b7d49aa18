"""Tests for the locking primitives."""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from jamctl.locking import LockManager, LockTimeoutError


def test_lock_creates_metadata(tmp_path: Path) -> None:
    """Acquiring a lock writes metadata and releases cleanly."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    lock_path = tmp_path / "run" / "install.lock"
    with manager.install_lock() as handle:
        assert handle.wait_ms >= 0
        assert handle.path == lock_path
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["path"] == str(lock_path)

    # Lockfile persists for diagnostics but no longer holds the lock.
    with manager.install_lock(timeout=0.2):
        pass


def test_lock_timeout(tmp_path: Path) -> None:
    """Second acquisition times out while the first lock is held."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.supervisor_lock():
        with pytest.raises(LockTimeoutError, match="supervisor.lock"):
            with manager.supervisor_lock(timeout=0.1):
                pass


def test_install_and_supervisor_locks_are_independent(tmp_path: Path) -> None:
    """Holding the install lock does not block the supervisor lock."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.install_lock():
        with manager.supervisor_lock(timeout=0.1) as handle:
            assert handle.path == tmp_path / "run" / "supervisor.lock"


def test_lock_released_after_exception(tmp_path: Path) -> None:
    """An exception inside the block still releases the lock."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with pytest.raises(RuntimeError):
        with manager.lock("custom"):
            raise RuntimeError("fail")

    with manager.lock("custom", timeout=0.1) as handle:
        assert handle.path == manager.path_for("custom")
