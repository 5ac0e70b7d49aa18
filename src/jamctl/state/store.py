"""Persistence of the installed-toolchain record.

The store is a single YAML document (``<home>/toolchain.yml`` by default)
holding every installed version and the identifier of the active one. Writes
go through a temporary file in the same directory followed by ``os.replace``
so a concurrent reader only ever sees the previous or the new document.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage jamctl state. Install with `pip install jamctl`."
    ) from exc

from ..errors import IOFailure

SCHEMA_VERSION = 1


class StateStoreError(IOFailure):
    """Raised when the toolchain record cannot be read or written."""


@dataclass(frozen=True, slots=True)
class InstallRecord:
    """A toolchain version unpacked under the toolchain root."""

    version: str
    path: Path
    installed_at: str
    source: str | None = None
    integrity: dict[str, object] = field(default_factory=dict)

    def is_present(self) -> bool:
        """Return ``True`` when the install directory still exists."""
        return self.path.is_dir()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {
            "version": self.version,
            "path": str(self.path),
            "installed_at": self.installed_at,
        }
        if self.source:
            payload["source"] = self.source
        if self.integrity:
            payload["integrity"] = dict(self.integrity)
        return payload

    @classmethod
    def from_mapping(cls, entry: Mapping[str, object]) -> InstallRecord:
        """Build a record from its serialised form."""
        version = str(entry.get("version") or "").strip()
        if not version:
            raise StateStoreError("Install record missing 'version'.")
        path_raw = entry.get("path")
        if not path_raw:
            raise StateStoreError(f"Install record for '{version}' missing 'path'.")
        integrity = entry.get("integrity") or {}
        if not isinstance(integrity, Mapping):
            raise StateStoreError(f"Install record for '{version}' has invalid 'integrity'.")
        source = entry.get("source")
        return cls(
            version=version,
            path=Path(str(path_raw)),
            installed_at=str(entry.get("installed_at") or ""),
            source=str(source) if source else None,
            integrity=dict(integrity),
        )


@dataclass(frozen=True, slots=True)
class ToolchainConfig:
    """Snapshot of installed versions and the active pointer."""

    toolchain_root: Path | None = None
    active: str | None = None
    installs: tuple[InstallRecord, ...] = ()

    def get(self, version: str) -> InstallRecord | None:
        """Return the record for *version* if one exists."""
        for record in self.installs:
            if record.version == version:
                return record
        return None

    @property
    def active_record(self) -> InstallRecord | None:
        """Return the active install record, if any."""
        if self.active is None:
            return None
        return self.get(self.active)

    def is_installed(self) -> bool:
        """Return ``True`` when an active version exists on disk."""
        record = self.active_record
        return record is not None and record.is_present()

    def with_active(self, record: InstallRecord, *, toolchain_root: Path) -> ToolchainConfig:
        """Return a copy where *record* is stored and marked active."""
        others = tuple(item for item in self.installs if item.version != record.version)
        return replace(
            self,
            toolchain_root=toolchain_root,
            active=record.version,
            installs=(*others, record),
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "schema": SCHEMA_VERSION,
            "toolchain_root": str(self.toolchain_root) if self.toolchain_root else None,
            "active": self.active,
            "installs": [record.to_dict() for record in self.installs],
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ToolchainConfig:
        """Build a snapshot from its serialised form."""
        installs_raw = raw.get("installs") or []
        if not isinstance(installs_raw, list):
            raise StateStoreError("'installs' must be a list.")
        installs = tuple(
            InstallRecord.from_mapping(entry)
            for entry in installs_raw
            if isinstance(entry, Mapping)
        )
        root_raw = raw.get("toolchain_root")
        active_raw = raw.get("active")
        return cls(
            toolchain_root=Path(str(root_raw)) if root_raw else None,
            active=str(active_raw) if active_raw else None,
            installs=installs,
        )


@dataclass(frozen=True)
class ConfigStore:
    """Load and atomically save the :class:`ToolchainConfig` document."""

    path: Path

    def __post_init__(self) -> None:
        """Normalise the path after initialisation."""
        object.__setattr__(self, "path", self.path.expanduser())

    def exists(self) -> bool:
        """Return ``True`` once a first successful ``setup`` has been recorded."""
        return self.path.exists()

    def load(self) -> ToolchainConfig:
        """Return the stored snapshot, or an empty one when nothing is installed."""
        if not self.path.exists():
            return ToolchainConfig()
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateStoreError(f"Failed to read {self.path}: {exc}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateStoreError(f"Failed to parse {self.path}: {exc}") from exc
        if data is None:
            return ToolchainConfig()
        if not isinstance(data, Mapping):
            raise StateStoreError(f"{self.path} must contain a mapping at the top level.")
        return ToolchainConfig.from_mapping(data)

    def save(self, config: ToolchainConfig) -> None:
        """Atomically replace the stored snapshot with *config*."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}."
            )
        except OSError as exc:
            raise StateStoreError(f"Failed to prepare {self.path}: {exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(config.to_dict(), handle, sort_keys=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StateStoreError(f"Failed to write {self.path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["ConfigStore", "InstallRecord", "StateStoreError", "ToolchainConfig"]
