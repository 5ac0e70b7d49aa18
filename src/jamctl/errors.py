"""Error taxonomy shared by the toolchain providers and the CLI.

Every failure a command can surface derives from :class:`JamctlError` and
carries the :class:`~jamctl.exit_codes.ExitCode` the CLI should exit with.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class JamctlError(RuntimeError):
    """Base class for toolchain lifecycle failures."""

    exit_code: ExitCode = ExitCode.PROVIDER


class NetworkError(JamctlError):
    """Raised when the release index or an artifact download is unreachable."""

    exit_code = ExitCode.PROVIDER


class VersionNotFound(JamctlError):
    """Raised when a version selector does not match any published release."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, selector: str, detail: str | None = None) -> None:
        """Record the selector that failed to resolve."""
        self.selector = selector
        message = f"Release '{selector}' not found"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PlatformUnsupported(JamctlError):
    """Raised when no artifact exists for the running platform."""

    exit_code = ExitCode.ENVIRONMENT


class CorruptArtifact(JamctlError):
    """Raised when a downloaded artifact fails verification or extraction."""

    exit_code = ExitCode.PROVIDER


class AlreadyRunning(JamctlError):
    """Raised when a live supervised process already owns the endpoint."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, pid: int, endpoint: str) -> None:
        """Record the pid and endpoint of the running process."""
        self.pid = pid
        self.endpoint = endpoint
        super().__init__(
            f"Testnet is already running (PID: {pid}, RPC: {endpoint}). "
            "Stop it with 'jamctl down' first."
        )


class TimedOut(JamctlError):
    """Raised when a bounded wait elapses without reaching the desired state."""

    exit_code = ExitCode.PROVIDER


class ReadinessTimeout(TimedOut):
    """Raised when the control endpoint does not become ready in time."""

    def __init__(self, endpoint: str, timeout: float, last_error: str | None = None) -> None:
        """Record the endpoint that never answered."""
        self.endpoint = endpoint
        self.timeout = timeout
        self.last_error = last_error
        message = f"Network not reachable at {endpoint} after {timeout:g}s"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)


class StopTimeout(TimedOut):
    """Raised when a graceful stop does not terminate the process in time."""

    def __init__(self, pid: int, grace_period: float) -> None:
        """Record the pid that ignored the termination request."""
        self.pid = pid
        self.grace_period = grace_period
        super().__init__(
            f"Testnet (PID: {pid}) did not exit within {grace_period:g}s. "
            "Retry with 'jamctl down --force'."
        )


class IOFailure(JamctlError):
    """Raised when disk or permission problems prevent an operation."""

    exit_code = ExitCode.ENVIRONMENT


class ToolFailed(JamctlError):
    """Raised when a toolchain binary exits unsuccessfully."""

    exit_code = ExitCode.PROVIDER

    def __init__(self, tool: str, returncode: int, detail: str | None = None) -> None:
        """Record the tool and its exit status."""
        self.tool = tool
        self.returncode = returncode
        message = f"{tool} exited with status {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ToolchainMissing(JamctlError):
    """Raised when no toolchain is installed or a required binary is absent."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, tool: str, install_hint: str) -> None:
        """Record the missing tool and how to obtain it."""
        self.tool = tool
        self.install_hint = install_hint
        super().__init__(f"Toolchain not found: {tool}. {install_hint}")


__all__ = [
    "AlreadyRunning",
    "CorruptArtifact",
    "IOFailure",
    "JamctlError",
    "NetworkError",
    "PlatformUnsupported",
    "ReadinessTimeout",
    "StopTimeout",
    "TimedOut",
    "ToolFailed",
    "ToolchainMissing",
    "VersionNotFound",
]
