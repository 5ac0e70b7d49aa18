"""Supervision of the local testnet node process.

The only record of a running node is the lock artifact
(``<runtime_dir>/testnet.lock``), a small JSON document holding the pid,
the endpoint it serves and the process creation time. Commands never keep an
in-memory reference to the node between invocations; ``down`` may well run in
a different process than the ``up`` that started it.
"""
from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path

import psutil

from ..errors import AlreadyRunning, IOFailure, StopTimeout, ToolchainMissing
from ..locking import LockManager
from ..state import InstallRecord
from .version_installer import BUNDLE_DIR_NAME, binary_path

LOGGER = logging.getLogger(__name__)

LOCK_ARTIFACT_NAME = "testnet.lock"
NODE_LOG_NAME = "testnet.log"
_CREATE_TIME_TOLERANCE = 1.0


@dataclass(frozen=True, slots=True)
class ProcessHandle:
    """Owned reference to a supervised node process."""

    pid: int
    lock_path: Path
    launched_at: str
    endpoint: str
    version: str | None = None
    create_time: float | None = None
    log_file: Path | None = None
    exit_code: int | None = None
    interrupted: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return the lock artifact payload."""
        return {
            "pid": self.pid,
            "endpoint": self.endpoint,
            "launched_at": self.launched_at,
            "version": self.version,
            "create_time": self.create_time,
            "log_file": str(self.log_file) if self.log_file else None,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, object], lock_path: Path) -> ProcessHandle:
        """Rebuild a handle from a lock artifact payload."""
        pid = data.get("pid")
        if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
            raise ValueError(f"Invalid pid in {lock_path}: {pid!r}")
        create_time = data.get("create_time")
        log_file = data.get("log_file")
        version = data.get("version")
        return cls(
            pid=pid,
            lock_path=lock_path,
            launched_at=str(data.get("launched_at") or ""),
            endpoint=str(data.get("endpoint") or ""),
            version=str(version) if version else None,
            create_time=float(create_time) if isinstance(create_time, (int, float)) else None,
            log_file=Path(str(log_file)) if log_file else None,
        )


@dataclass(frozen=True, slots=True)
class StopResult:
    """Outcome of :meth:`ProcessSupervisor.stop`."""

    pid: int | None
    stopped: bool
    forced: bool = False
    stale_lock_removed: bool = False


class ProcessSupervisor:
    """Start, discover and stop the testnet node."""

    def __init__(
        self,
        *,
        runtime_dir: Path,
        logs_dir: Path,
        locks: LockManager,
        binary: str = "polkajam-testnet",
        args: Sequence[str] = (),
        grace_period: float = 10.0,
        bundle_dir: str = BUNDLE_DIR_NAME,
        poll_interval: float = 0.1,
    ) -> None:
        """Configure where the lock artifact and node output live."""
        self.runtime_dir = runtime_dir.expanduser()
        self.logs_dir = logs_dir.expanduser()
        self.locks = locks
        self.binary = binary
        self.args = list(args)
        self.grace_period = grace_period
        self.bundle_dir = bundle_dir
        self.poll_interval = poll_interval

    @property
    def lock_path(self) -> Path:
        """Return the path of the lock artifact."""
        return self.runtime_dir / LOCK_ARTIFACT_NAME

    @property
    def log_path(self) -> Path:
        """Return the file receiving background node output."""
        return self.logs_dir / NODE_LOG_NAME

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self) -> ProcessHandle | None:
        """Return the handle recorded in the lock artifact, alive or not."""
        try:
            text = self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise IOFailure(f"Failed to read {self.lock_path}: {exc}") from exc
        try:
            data = json.loads(text)
            if not isinstance(data, Mapping):
                raise ValueError("lock artifact must contain an object")
            return ProcessHandle.from_mapping(data, self.lock_path)
        except ValueError as exc:
            LOGGER.debug("Ignoring unreadable lock artifact %s: %s", self.lock_path, exc)
            return None

    def is_alive(self, handle: ProcessHandle) -> bool:
        """Return ``True`` when the process recorded in *handle* still runs."""
        try:
            process = psutil.Process(handle.pid)
            if process.status() == psutil.STATUS_ZOMBIE:
                return False
            if handle.create_time is not None:
                if abs(process.create_time() - handle.create_time) > _CREATE_TIME_TOLERANCE:
                    return False
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True
        return True

    def status(self) -> ProcessHandle | None:
        """Return the live supervised process, if any."""
        handle = self.discover()
        if handle is None or not self.is_alive(handle):
            return None
        return handle

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def command_for(self, record: InstallRecord) -> list[str]:
        """Return the argv used to launch the node from *record*."""
        executable = binary_path(record, self.binary, self.bundle_dir)
        if executable is None:
            raise ToolchainMissing(
                self.binary,
                "Run 'jamctl setup --force' to reinstall the toolchain.",
            )
        return [str(executable), *self.args]

    def start(
        self,
        record: InstallRecord,
        *,
        endpoint: str,
        foreground: bool = False,
    ) -> ProcessHandle:
        """Launch the node from *record*.

        In background mode the lock artifact is written and the handle returned
        immediately. In foreground mode the call blocks until the node exits; an
        interrupt stops the node gracefully before returning.
        """
        with self.locks.supervisor_lock():
            existing = self.discover()
            if existing is not None:
                if self.is_alive(existing):
                    raise AlreadyRunning(existing.pid, existing.endpoint)
                LOGGER.debug("Discarding stale lock for pid %s", existing.pid)
                self._remove_lock()
            elif self.lock_path.exists():
                self._remove_lock()

            command = self.command_for(record)
            process = self._spawn(command, detached=not foreground)
            handle = self._record(
                process,
                endpoint=endpoint,
                version=record.version,
                log_file=None if foreground else self.log_path,
            )

        if not foreground:
            return handle
        return self._wait_foreground(process, handle)

    def _spawn(self, command: Sequence[str], *, detached: bool) -> subprocess.Popen[bytes]:
        LOGGER.debug("Spawning %s (detached=%s)", command, detached)
        try:
            if not detached:
                return subprocess.Popen(list(command))  # noqa: S603
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with self.log_path.open("ab") as log_handle:
                return subprocess.Popen(  # noqa: S603
                    list(command),
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                    close_fds=True,
                )
        except OSError as exc:
            raise IOFailure(f"Failed to start testnet: {exc}") from exc

    def _record(
        self,
        process: subprocess.Popen[bytes],
        *,
        endpoint: str,
        version: str,
        log_file: Path | None,
    ) -> ProcessHandle:
        try:
            create_time: float | None = psutil.Process(process.pid).create_time()
        except psutil.Error:
            create_time = None
        handle = ProcessHandle(
            pid=process.pid,
            lock_path=self.lock_path,
            launched_at=datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            endpoint=endpoint,
            version=version,
            create_time=create_time,
            log_file=log_file,
        )
        try:
            self._write_lock(handle)
        except OSError as exc:
            process.kill()
            process.wait()
            raise IOFailure(f"Failed to write {self.lock_path}: {exc}") from exc
        return handle

    def _wait_foreground(
        self,
        process: subprocess.Popen[bytes],
        handle: ProcessHandle,
    ) -> ProcessHandle:
        interrupted = False
        try:
            try:
                exit_code = process.wait()
            except KeyboardInterrupt:
                interrupted = True
                LOGGER.debug("Interrupt received; stopping pid %s", process.pid)
                exit_code = self._terminate_child(process)
        finally:
            with self.locks.supervisor_lock():
                current = self.discover()
                if current is not None and current.pid == handle.pid:
                    self._remove_lock()
        return replace(handle, exit_code=exit_code, interrupted=interrupted)

    def _terminate_child(self, process: subprocess.Popen[bytes]) -> int:
        process.terminate()
        try:
            return process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            process.kill()
            return process.wait()

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def stop(
        self,
        handle: ProcessHandle | None = None,
        *,
        force: bool = False,
        grace_period: float | None = None,
    ) -> StopResult:
        """Stop the supervised node; a no-op when nothing is running.

        Without *force* the node receives SIGTERM and has *grace_period* seconds
        to exit, otherwise :class:`StopTimeout` is raised and the lock artifact
        is kept so the stop can be retried with ``force=True``.
        """
        grace = self.grace_period if grace_period is None else grace_period
        with self.locks.supervisor_lock():
            target = handle if handle is not None else self.discover()
            if target is None:
                removed = self._remove_lock()
                return StopResult(pid=None, stopped=False, stale_lock_removed=removed)
            if not self.is_alive(target):
                removed = self._remove_lock()
                return StopResult(pid=target.pid, stopped=False, stale_lock_removed=removed)

            try:
                process = psutil.Process(target.pid)
                if force:
                    process.kill()
                else:
                    process.terminate()
            except psutil.NoSuchProcess:
                self._remove_lock()
                return StopResult(pid=target.pid, stopped=False, stale_lock_removed=True)
            except psutil.AccessDenied as exc:
                raise IOFailure(f"Permission denied stopping testnet (PID: {target.pid})") from exc

            if not self._wait_gone(process, grace):
                if not force:
                    raise StopTimeout(target.pid, grace)
                raise IOFailure(f"Testnet (PID: {target.pid}) survived SIGKILL.")

            self._remove_lock()
            return StopResult(pid=target.pid, stopped=True, forced=force)

    def _wait_gone(self, process: psutil.Process, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            try:
                process.wait(timeout=self.poll_interval)
                return True
            except psutil.TimeoutExpired:
                try:
                    if process.status() == psutil.STATUS_ZOMBIE:
                        return True
                except psutil.NoSuchProcess:
                    return True
            except psutil.NoSuchProcess:
                return True
            if time.monotonic() >= deadline:
                return False

    # ------------------------------------------------------------------
    # Lock artifact helpers
    # ------------------------------------------------------------------

    def _write_lock(self, handle: ProcessHandle) -> None:
        self.runtime_dir.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(self.runtime_dir), prefix=f".{LOCK_ARTIFACT_NAME}."
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as stream:
                json.dump(handle.to_dict(), stream)
            os.replace(tmp_path, self.lock_path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def _remove_lock(self) -> bool:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise IOFailure(f"Failed to remove {self.lock_path}: {exc}") from exc
        return True


__all__ = ["LOCK_ARTIFACT_NAME", "ProcessHandle", "ProcessSupervisor", "StopResult"]
