"""Tests for the testnet process supervisor.

These tests spawn short-lived ``/bin/sh`` scripts standing in for the node.
"""
from __future__ import annotations

import json
import subprocess
import time
from collections.abc import Callable, Iterator
from pathlib import Path

import psutil
import pytest

from jamctl.config import AppConfig
from jamctl.errors import AlreadyRunning, StopTimeout, TimedOut, ToolchainMissing
from jamctl.locking import LockManager
from jamctl.providers import ProcessSupervisor
from jamctl.state import InstallRecord

ENDPOINT = "ws://localhost:19800"

InstallFactory = Callable[..., InstallRecord]

pytestmark = pytest.mark.mutation_timeout


@pytest.fixture()
def supervisor(app_config: AppConfig) -> Iterator[ProcessSupervisor]:
    supervisor = ProcessSupervisor(
        runtime_dir=app_config.runtime_dir,
        logs_dir=app_config.logs_dir,
        locks=LockManager(app_config.runtime_dir, default_timeout=5.0),
        grace_period=2.0,
        poll_interval=0.05,
    )
    yield supervisor
    handle = supervisor.discover()
    if handle is not None and supervisor.is_alive(handle):
        psutil.Process(handle.pid).kill()


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.02)
    raise AssertionError("condition not met in time")


def _dead_pid() -> int:
    process = subprocess.Popen(["/bin/sh", "-c", "exit 0"])  # noqa: S603
    process.wait()
    return process.pid


def test_start_stop_round_trip(
    app_config: AppConfig,
    supervisor: ProcessSupervisor,
    make_install: InstallFactory,
) -> None:
    """Background start records a lock; stop kills the process and removes it."""
    record = make_install(app_config)

    handle = supervisor.start(record, endpoint=ENDPOINT)

    assert supervisor.lock_path.exists()
    data = json.loads(supervisor.lock_path.read_text(encoding="utf-8"))
    assert data["pid"] == handle.pid
    assert data["endpoint"] == ENDPOINT
    assert data["version"] == record.version
    assert data["log_file"] == str(app_config.logs_dir / "testnet.log")
    assert supervisor.is_alive(handle)
    assert supervisor.status() == handle

    result = supervisor.stop()

    assert result.stopped
    assert result.pid == handle.pid
    assert not result.forced
    assert not supervisor.lock_path.exists()
    assert not psutil.pid_exists(handle.pid) or not supervisor.is_alive(handle)
    assert supervisor.status() is None

    again = supervisor.stop()
    assert not again.stopped
    assert again.pid is None
    assert not again.stale_lock_removed


def test_background_output_goes_to_log_file(
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
) -> None:
    """Detached node output is appended to the testnet log."""
    record = make_install(
        app_config,
        scripts={"polkajam-testnet": "echo node booting\nexec sleep 30"},
    )

    handle = supervisor.start(record, endpoint=ENDPOINT)
    assert handle.log_file is not None
    _wait_for(lambda: "node booting" in handle.log_file.read_text(encoding="utf-8"))
    supervisor.stop()


def test_second_start_raises_already_running_without_spawning(
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A live lock blocks a second start before anything is spawned."""
    record = make_install(app_config)
    first = supervisor.start(record, endpoint=ENDPOINT)

    def fail_spawn(*args: object, **kwargs: object) -> None:
        raise AssertionError("second start must not spawn")

    monkeypatch.setattr(supervisor, "_spawn", fail_spawn)

    with pytest.raises(AlreadyRunning) as excinfo:
        supervisor.start(record, endpoint=ENDPOINT)

    assert excinfo.value.pid == first.pid
    assert ENDPOINT in str(excinfo.value)
    assert supervisor.status() == first


def test_stale_lock_is_replaced_on_start(
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
) -> None:
    """A lock whose pid is dead does not block a new start."""
    record = make_install(app_config)
    supervisor.runtime_dir.mkdir(parents=True, exist_ok=True)
    supervisor.lock_path.write_text(
        json.dumps({"pid": _dead_pid(), "endpoint": ENDPOINT}),
        encoding="utf-8",
    )

    handle = supervisor.start(record, endpoint=ENDPOINT)

    assert supervisor.status() == handle
    supervisor.stop()


def test_stop_with_stale_lock_cleans_up(supervisor: ProcessSupervisor) -> None:
    """Stopping a dead pid is a successful no-op that removes the lock."""
    supervisor.runtime_dir.mkdir(parents=True, exist_ok=True)
    pid = _dead_pid()
    supervisor.lock_path.write_text(json.dumps({"pid": pid}), encoding="utf-8")

    result = supervisor.stop()

    assert not result.stopped
    assert result.pid == pid
    assert result.stale_lock_removed
    assert not supervisor.lock_path.exists()


def test_reused_pid_is_not_mistaken_for_the_node(supervisor: ProcessSupervisor) -> None:
    """A live pid with a different creation time counts as stale."""
    supervisor.runtime_dir.mkdir(parents=True, exist_ok=True)
    own = psutil.Process()
    supervisor.lock_path.write_text(
        json.dumps({"pid": own.pid, "create_time": own.create_time() - 3600}),
        encoding="utf-8",
    )

    assert supervisor.status() is None
    result = supervisor.stop()

    assert not result.stopped
    assert result.stale_lock_removed
    assert psutil.pid_exists(own.pid)


def test_unreadable_lock_is_treated_as_stale(supervisor: ProcessSupervisor) -> None:
    """Garbage in the lock artifact never blocks a stop."""
    supervisor.runtime_dir.mkdir(parents=True, exist_ok=True)
    supervisor.lock_path.write_text("{not json", encoding="utf-8")

    assert supervisor.discover() is None
    result = supervisor.stop()

    assert result.stale_lock_removed
    assert not supervisor.lock_path.exists()


def test_graceful_stop_times_out_then_force_kills(
    tmp_path: Path,
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
) -> None:
    """A node ignoring SIGTERM yields StopTimeout; a forced retry kills it."""
    marker = tmp_path / "trap-installed"
    record = make_install(
        app_config,
        scripts={
            "polkajam-testnet": (
                f"trap '' TERM\ntouch '{marker}'\nwhile :; do sleep 0.1; done"
            ),
        },
    )
    handle = supervisor.start(record, endpoint=ENDPOINT)
    _wait_for(marker.exists)

    with pytest.raises(StopTimeout) as excinfo:
        supervisor.stop(grace_period=0.5)

    assert isinstance(excinfo.value, TimedOut)
    assert excinfo.value.pid == handle.pid
    assert supervisor.lock_path.exists()
    assert supervisor.status() == handle

    result = supervisor.stop(force=True)

    assert result.stopped
    assert result.forced
    assert not supervisor.lock_path.exists()
    assert not supervisor.is_alive(handle)


def test_foreground_returns_exit_code_and_clears_lock(
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
) -> None:
    """Foreground mode blocks until the node exits and reports its status."""
    record = make_install(app_config, scripts={"polkajam-testnet": "exit 3"})

    handle = supervisor.start(record, endpoint=ENDPOINT, foreground=True)

    assert handle.exit_code == 3
    assert not handle.interrupted
    assert handle.log_file is None
    assert not supervisor.lock_path.exists()


def test_foreground_interrupt_stops_child_gracefully(
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Ctrl+C during a foreground run terminates the node and removes the lock."""
    record = make_install(app_config)
    spawned: list[subprocess.Popen[bytes]] = []
    original_spawn = supervisor._spawn

    def spawn(command: list[str], *, detached: bool) -> subprocess.Popen[bytes]:
        process = original_spawn(command, detached=detached)
        real_wait = process.wait
        state = {"interrupted": False}

        def wait(timeout: float | None = None) -> int:
            if not state["interrupted"]:
                state["interrupted"] = True
                assert supervisor.lock_path.exists()
                raise KeyboardInterrupt
            return real_wait(timeout=timeout)

        process.wait = wait  # type: ignore[method-assign]
        spawned.append(process)
        return process

    monkeypatch.setattr(supervisor, "_spawn", spawn)

    handle = supervisor.start(record, endpoint=ENDPOINT, foreground=True)

    assert handle.interrupted
    assert handle.exit_code is not None and handle.exit_code < 0
    assert spawned[0].poll() is not None
    assert not supervisor.lock_path.exists()


def test_missing_binary_raises_toolchain_missing(
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
) -> None:
    """Starting without the node binary fails before any lock is written."""
    record = make_install(app_config, scripts={"jamt": "exit 0"})

    with pytest.raises(ToolchainMissing, match="polkajam-testnet"):
        supervisor.start(record, endpoint=ENDPOINT)

    assert not supervisor.lock_path.exists()


def test_configured_arguments_are_passed(
    app_config: AppConfig,
    make_install: InstallFactory,
    supervisor: ProcessSupervisor,
) -> None:
    """Extra node arguments from settings are appended to the command."""
    record = make_install(app_config)
    supervisor.args = ["--dev"]

    command = supervisor.command_for(record)

    assert command[0].endswith("polkajam-nightly/polkajam-testnet")
    assert command[1:] == ["--dev"]
