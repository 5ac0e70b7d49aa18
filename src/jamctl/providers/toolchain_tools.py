"""Wrappers around the toolchain's client binaries (``jamt`` and ``jamtop``)."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import IOFailure, JamctlError, ToolchainMissing, ToolFailed
from ..exit_codes import ExitCode
from ..state import InstallRecord
from .version_installer import BUNDLE_DIR_NAME, binary_path

LOGGER = logging.getLogger(__name__)

SERVICE_BLOB_SUFFIX = ".jam"
DEFAULT_MIN_GAS = 1_000_000

Runner = Callable[..., subprocess.CompletedProcess[str]]


class InvalidServiceBlob(JamctlError):
    """Raised when the service blob handed to ``deploy`` is unusable."""

    exit_code = ExitCode.VALIDATION


@dataclass(frozen=True, slots=True)
class DeployRequest:
    """Arguments forwarded to ``jamt create-service``."""

    code: Path
    amount: str = "0"
    memo: str = ""
    min_item_gas: int = DEFAULT_MIN_GAS
    min_memo_gas: int = DEFAULT_MIN_GAS
    register: str | None = None

    def validate(self) -> None:
        """Ensure the blob exists and carries the ``.jam`` extension."""
        if not self.code.exists():
            raise InvalidServiceBlob(f"Service blob not found: {self.code}")
        if self.code.suffix != SERVICE_BLOB_SUFFIX:
            raise InvalidServiceBlob(f"Expected a .jam file, got: {self.code}")


class ToolchainTools:
    """Run client binaries shipped with the active install."""

    def __init__(
        self,
        record: InstallRecord,
        *,
        jamt: str = "jamt",
        jamtop: str = "jamtop",
        bundle_dir: str = BUNDLE_DIR_NAME,
        runner: Runner = subprocess.run,
    ) -> None:
        """Bind the tools to *record*; *runner* executes their commands."""
        self.record = record
        self.jamt = jamt
        self.jamtop = jamtop
        self.bundle_dir = bundle_dir
        self._runner = runner

    def resolve(self, name: str) -> Path:
        """Return the path of binary *name* or raise :class:`ToolchainMissing`."""
        path = binary_path(self.record, name, self.bundle_dir)
        if path is None:
            raise ToolchainMissing(name, "Run 'jamctl setup --force' to reinstall the toolchain.")
        return path

    def deploy_command(self, request: DeployRequest, rpc: str) -> list[str]:
        """Build the ``jamt`` argv; ``--rpc`` must precede the subcommand."""
        command = [
            str(self.resolve(self.jamt)),
            "--rpc",
            rpc,
            "create-service",
            str(request.code),
            request.amount,
        ]
        if request.memo:
            command.append(request.memo)
        command.extend(["--min-item-gas", str(request.min_item_gas)])
        command.extend(["--min-memo-gas", str(request.min_memo_gas)])
        if request.register:
            command.extend(["--register", request.register])
        return command

    def deploy(self, request: DeployRequest, rpc: str) -> subprocess.CompletedProcess[str]:
        """Create a service from *request* against the node at *rpc*."""
        request.validate()
        command = self.deploy_command(request, rpc)
        result = self._run(command, capture_output=True)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            stdout = (result.stdout or "").strip()
            raise ToolFailed(self.jamt, result.returncode, stderr or stdout or None)
        return result

    def monitor(self, rpc: str) -> int:
        """Run the interactive monitor with inherited stdio until it exits."""
        command = [str(self.resolve(self.jamtop)), "--rpc", rpc]
        result = self._run(command, capture_output=False)
        if result.returncode != 0:
            raise ToolFailed(self.jamtop, result.returncode)
        return result.returncode

    def _run(
        self,
        command: Sequence[str],
        *,
        capture_output: bool,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", command)
        try:
            if capture_output:
                return self._runner(  # noqa: S603
                    list(command),
                    capture_output=True,
                    text=True,
                    check=False,
                )
            return self._runner(list(command), text=True, check=False)  # noqa: S603
        except OSError as exc:
            raise IOFailure(f"Failed to execute {command[0]}: {exc}") from exc


__all__ = [
    "DeployRequest",
    "InvalidServiceBlob",
    "ToolchainTools",
]
