"""Detection of the host platform triple used to pick release assets."""
from __future__ import annotations

import platform as _platform
from dataclasses import dataclass

from .errors import PlatformUnsupported

_OS_ALIASES = {
    "darwin": "macos",
    "macos": "macos",
    "linux": "linux",
    "windows": "windows",
}
_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
}
SUPPORTED = (
    ("macos", "aarch64"),
    ("macos", "x86_64"),
    ("linux", "x86_64"),
    ("linux", "aarch64"),
    ("windows", "x86_64"),
)


@dataclass(frozen=True, slots=True)
class Platform:
    """An (os, arch) pair for which release assets are published."""

    os: str
    arch: str

    @classmethod
    def detect(cls, system: str | None = None, machine: str | None = None) -> Platform:
        """Return the platform of the running interpreter."""
        raw_os = (system if system is not None else _platform.system()).strip().lower()
        raw_arch = (machine if machine is not None else _platform.machine()).strip().lower()
        os_name = _OS_ALIASES.get(raw_os, raw_os)
        arch = _ARCH_ALIASES.get(raw_arch, raw_arch)
        if (os_name, arch) not in SUPPORTED:
            supported = ", ".join(f"{o}-{a}" for o, a in SUPPORTED)
            raise PlatformUnsupported(
                f"Unsupported platform: {os_name}-{arch}. Supported: {supported}"
            )
        return cls(os=os_name, arch=arch)

    @property
    def asset_suffix(self) -> str:
        """Return the token that identifies this platform in asset names."""
        return f"{self.os}-{self.arch}"

    @property
    def archive_extension(self) -> str:
        """Return the archive format published for this platform."""
        return "zip" if self.os == "windows" else "tar.gz"

    def matches_asset(self, name: str) -> bool:
        """Return ``True`` when the asset *name* was built for this platform."""
        return self.asset_suffix in name and name.endswith(f".{self.archive_extension}")

    def __str__(self) -> str:
        """Render as the asset suffix, e.g. ``linux-x86_64``."""
        return self.asset_suffix


__all__ = ["Platform", "SUPPORTED"]
