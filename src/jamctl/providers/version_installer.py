"""Installer for toolchain release archives.

Archives are downloaded and unpacked inside a staging directory under the
toolchain root, moved to ``<root>/<version>`` once complete, and only then
committed as the active version in the :class:`~jamctl.state.ConfigStore`.
Anything that fails before the commit leaves the previously active install
untouched.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
import shutil
import stat
import tarfile
import tempfile
import time
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

import httpx

from .. import __version__
from ..errors import CorruptArtifact, IOFailure, JamctlError, NetworkError
from ..state import ConfigStore, InstallRecord, ToolchainConfig
from .release_resolver import ArtifactDescriptor

LOGGER = logging.getLogger(__name__)

BUNDLE_DIR_NAME = "polkajam-nightly"
STAGING_PREFIX = ".staging-"
RETIRED_PREFIX = ".retired-"
_NON_BINARY_SUFFIXES = frozenset({".md", ".txt", ".corevm"})
_CHUNK_SIZE = 1024 * 64
_DEFAULT_DIGEST = "sha256"


class VersionInstallError(JamctlError):
    """Raised when installing a toolchain version fails."""


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Outcome of :meth:`VersionInstaller.install`."""

    record: InstallRecord
    downloaded: bool
    activated: bool
    binaries: tuple[str, ...] = field(default_factory=tuple)

    @property
    def changed(self) -> bool:
        """Return ``True`` when anything on disk was modified."""
        return self.downloaded or self.activated


class VersionInstaller:
    """Download, verify, unpack and commit toolchain archives."""

    def __init__(
        self,
        *,
        toolchain_root: Path,
        store: ConfigStore,
        timeout: float = 30.0,
        retries: int = 2,
        backoff: float = 0.5,
        bundle_dir: str = BUNDLE_DIR_NAME,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise the installer with its target directory and HTTP settings."""
        self.toolchain_root = toolchain_root.expanduser()
        self.store = store
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.bundle_dir = bundle_dir
        self._transport = transport
        self._sleep = sleep

    def install(self, descriptor: ArtifactDescriptor, *, force: bool = False) -> InstallResult:
        """Install the artifact described by *descriptor*."""
        version = descriptor.version.tag.strip()
        if not version:
            raise VersionInstallError("Version identifier must be a non-empty string.")

        config = self.store.load()
        existing = config.get(version)
        if existing is not None and existing.is_present() and not force:
            return self._reuse(config, existing)

        try:
            self.toolchain_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailure(
                f"Cannot create toolchain directory {self.toolchain_root}: {exc}"
            ) from exc
        self.collect_garbage()

        staging_dir = Path(
            tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{version}-", dir=str(self.toolchain_root))
        )
        try:
            archive_path = staging_dir / descriptor.asset_name
            integrity = self._fetch_verified(descriptor, archive_path)

            tree_dir = staging_dir / "tree"
            self._extract(archive_path, tree_dir)
            self._normalize_layout(tree_dir)

            record = InstallRecord(
                version=version,
                path=self.toolchain_root / version,
                installed_at=_iso_now(),
                source=descriptor.download_url,
                integrity=integrity,
            )
            self._commit(config, record, tree_dir)
        finally:
            shutil.rmtree(staging_dir, ignore_errors=True)

        LOGGER.debug("Installed %s at %s", version, record.path)
        return InstallResult(
            record=record,
            downloaded=True,
            activated=True,
            binaries=tuple(installed_binaries(record.path, self.bundle_dir)),
        )

    def collect_garbage(self) -> list[Path]:
        """Remove staging leftovers from interrupted installs.

        A retired directory whose version directory is missing is the result of
        a crash in the middle of a forced swap and is moved back instead.
        """
        removed: list[Path] = []
        if not self.toolchain_root.is_dir():
            return removed
        for entry in sorted(self.toolchain_root.iterdir()):
            if not entry.is_dir():
                continue
            if entry.name.startswith(STAGING_PREFIX):
                shutil.rmtree(entry, ignore_errors=True)
                removed.append(entry)
            elif entry.name.startswith(RETIRED_PREFIX):
                version = entry.name[len(RETIRED_PREFIX) :].rsplit("-", 1)[0]
                original = self.toolchain_root / version
                if version and not original.exists():
                    entry.rename(original)
                    LOGGER.debug("Restored %s from interrupted swap", original)
                else:
                    shutil.rmtree(entry, ignore_errors=True)
                    removed.append(entry)
        return removed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reuse(self, config: ToolchainConfig, existing: InstallRecord) -> InstallResult:
        binaries = tuple(installed_binaries(existing.path, self.bundle_dir))
        if config.active == existing.version:
            return InstallResult(
                record=existing,
                downloaded=False,
                activated=False,
                binaries=binaries,
            )
        root = config.toolchain_root or self.toolchain_root
        self.store.save(config.with_active(existing, toolchain_root=root))
        return InstallResult(record=existing, downloaded=False, activated=True, binaries=binaries)

    def _fetch_verified(
        self,
        descriptor: ArtifactDescriptor,
        destination: Path,
    ) -> dict[str, object]:
        checksum = descriptor.checksum
        algorithm = checksum.algorithm if checksum else _DEFAULT_DIGEST
        digest = self._download(descriptor.download_url, destination, algorithm)

        integrity: dict[str, object] = {
            "algorithm": algorithm,
            "digest": digest,
            "verified": False,
        }
        if checksum is not None:
            if digest.lower() != checksum.digest.lower():
                raise CorruptArtifact(
                    f"Checksum mismatch for {descriptor.asset_name}: expected "
                    f"{checksum.algorithm}:{checksum.digest}, got {algorithm}:{digest}"
                )
            integrity["verified"] = True
        return integrity

    def _download(self, url: str, destination: Path, algorithm: str) -> str:
        """Stream *url* into *destination* and return its hex digest."""
        attempts = self.retries + 1
        last_error = "unknown error"
        headers = {"User-Agent": f"jamctl/{__version__}"}
        with httpx.Client(
            timeout=self.timeout,
            follow_redirects=True,
            headers=headers,
            transport=self._transport,
        ) as client:
            for attempt in range(1, attempts + 1):
                hasher = hashlib.new(algorithm)
                try:
                    with client.stream("GET", url) as response:
                        if response.status_code != 200:
                            raise NetworkError(
                                f"Download failed with status: {response.status_code}"
                            )
                        with destination.open("wb") as handle:
                            for chunk in response.iter_bytes(_CHUNK_SIZE):
                                handle.write(chunk)
                                hasher.update(chunk)
                    return hasher.hexdigest()
                except httpx.TransportError as exc:
                    last_error = f"{exc.__class__.__name__}: {exc}"
                    LOGGER.debug(
                        "Download of %s failed (attempt %d/%d): %s", url, attempt, attempts, exc
                    )
                except OSError as exc:
                    raise IOFailure(f"Cannot write {destination}: {exc}") from exc
                if attempt < attempts:
                    self._sleep(self.backoff * (2 ** (attempt - 1)))
        raise NetworkError(f"Failed to download {url}: {last_error}")

    def _extract(self, archive_path: Path, destination: Path) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        name = archive_path.name
        try:
            if name.endswith((".tar.gz", ".tgz")):
                with tarfile.open(archive_path, "r:gz") as archive:
                    archive.extractall(destination, filter="data")
            elif name.endswith(".zip"):
                _extract_zip(archive_path, destination)
            else:
                raise CorruptArtifact(f"Unknown archive format: {name}")
        except (tarfile.TarError, zipfile.BadZipFile, EOFError) as exc:
            raise CorruptArtifact(f"Failed to extract {name}: {exc}") from exc
        except OSError as exc:
            raise IOFailure(f"Failed to extract {name}: {exc}") from exc

    def _normalize_layout(self, tree_dir: Path) -> None:
        """Ensure the unpacked binaries live under ``<tree>/<bundle_dir>``."""
        target = tree_dir / self.bundle_dir
        if target.is_dir():
            return
        entries = list(tree_dir.iterdir())
        directories = [entry for entry in entries if entry.is_dir()]
        files = [entry for entry in entries if entry.is_file()]
        if len(directories) == 1 and not files:
            directories[0].rename(target)
            return
        prefixed = [entry for entry in directories if entry.name.startswith("polkajam-")]
        if len(prefixed) == 1:
            prefixed[0].rename(target)
            return
        if files and not directories:
            target.mkdir()
            for entry in files:
                entry.rename(target / entry.name)
            return
        raise CorruptArtifact(
            f"Unexpected archive layout: {', '.join(sorted(e.name for e in entries)) or 'empty'}"
        )

    def _commit(self, config: ToolchainConfig, record: InstallRecord, tree_dir: Path) -> None:
        target = record.path
        retired: Path | None = None
        try:
            if target.exists():
                suffix = secrets.token_hex(4)
                retired = self.toolchain_root / f"{RETIRED_PREFIX}{record.version}-{suffix}"
                target.rename(retired)
            tree_dir.rename(target)
        except OSError as exc:
            if retired is not None and not target.exists():
                retired.rename(target)
            raise IOFailure(f"Failed to move install into {target}: {exc}") from exc

        try:
            self.store.save(config.with_active(record, toolchain_root=self.toolchain_root))
        except IOFailure:
            shutil.rmtree(target, ignore_errors=True)
            if retired is not None:
                retired.rename(target)
            raise

        if retired is not None:
            shutil.rmtree(retired, ignore_errors=True)


def installed_binaries(install_path: Path, bundle_dir: str = BUNDLE_DIR_NAME) -> list[str]:
    """Return the executable file names shipped in an install."""
    bundle = install_path / bundle_dir
    if not bundle.is_dir():
        return []
    return sorted(
        entry.name
        for entry in bundle.iterdir()
        if entry.is_file() and entry.suffix not in _NON_BINARY_SUFFIXES
    )


def binary_path(record: InstallRecord, name: str, bundle_dir: str = BUNDLE_DIR_NAME) -> Path | None:
    """Return the path of toolchain binary *name* within *record*, if present."""
    candidate = record.path / bundle_dir / name
    return candidate if candidate.is_file() else None


def _extract_zip(archive_path: Path, destination: Path) -> None:
    root = destination.resolve()
    with zipfile.ZipFile(archive_path) as archive:
        for info in archive.infolist():
            member = PurePosixPath(info.filename)
            if member.is_absolute() or ".." in member.parts:
                continue
            output = (destination / Path(*member.parts)).resolve()
            if root not in output.parents and output != root:
                continue
            if info.is_dir():
                output.mkdir(parents=True, exist_ok=True)
                continue
            output.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as source, output.open("wb") as handle:
                shutil.copyfileobj(source, handle)
            mode = (info.external_attr >> 16) & 0o777
            if mode:
                output.chmod(mode & ~(stat.S_IWGRP | stat.S_IWOTH))


def _iso_now() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


__all__ = [
    "BUNDLE_DIR_NAME",
    "InstallResult",
    "VersionInstallError",
    "VersionInstaller",
    "binary_path",
    "installed_binaries",
]
