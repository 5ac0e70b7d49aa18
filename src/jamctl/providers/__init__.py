"""Provider interfaces for jamctl."""
from __future__ import annotations

from .readiness import ReadinessProber, ReadinessResult
from .release_resolver import ArtifactDescriptor, ReleaseInfo, ReleaseResolver, ToolchainVersion
from .supervisor import ProcessHandle, ProcessSupervisor, StopResult
from .toolchain_tools import DeployRequest, InvalidServiceBlob, ToolchainTools
from .version_installer import InstallResult, VersionInstaller, VersionInstallError

__all__ = [
    "ArtifactDescriptor",
    "DeployRequest",
    "InstallResult",
    "InvalidServiceBlob",
    "ProcessHandle",
    "ProcessSupervisor",
    "ReadinessProber",
    "ReadinessResult",
    "ReleaseInfo",
    "ReleaseResolver",
    "StopResult",
    "ToolchainTools",
    "ToolchainVersion",
    "VersionInstallError",
    "VersionInstaller",
]
