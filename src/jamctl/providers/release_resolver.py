"""Resolve toolchain version selectors against the GitHub release index."""
from __future__ import annotations

import hashlib
import logging
import os
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from .. import __version__
from ..config import DEFAULT_INDEX_URL
from ..errors import NetworkError, PlatformUnsupported, VersionNotFound
from ..platform import Platform
from ..state import ConfigStore, InstallRecord

LOGGER = logging.getLogger(__name__)

NIGHTLY_PREFIX = "nightly"
LATEST_ALIASES = frozenset({"latest", "nightly", "latest-nightly"})
_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True, slots=True)
class ToolchainVersion:
    """A release tag resolved for a specific platform."""

    tag: str
    platform: Platform

    def __str__(self) -> str:
        """Render as the release tag."""
        return self.tag


@dataclass(frozen=True, slots=True)
class Checksum:
    """Digest published by the release index for an asset."""

    algorithm: str
    digest: str


@dataclass(frozen=True, slots=True)
class ArtifactDescriptor:
    """Everything needed to download one immutable toolchain archive."""

    version: ToolchainVersion
    download_url: str
    asset_name: str
    checksum: Checksum | None = None
    size: int | None = None


@dataclass(frozen=True, slots=True)
class ReleaseAsset:
    """A downloadable file attached to a release."""

    name: str
    download_url: str
    size: int | None = None
    digest: str | None = None


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    """A published toolchain release."""

    tag: str
    name: str | None
    published_at: str | None
    assets: tuple[ReleaseAsset, ...]

    @property
    def is_nightly(self) -> bool:
        """Return ``True`` for releases on the nightly channel."""
        return self.tag.startswith(NIGHTLY_PREFIX)

    def sort_key(self) -> tuple[str, str]:
        """Key ordering releases chronologically (oldest first)."""
        return (self.published_at or "", self.tag)


class ReleaseResolver:
    """Query the release index and map selectors to artifacts."""

    def __init__(
        self,
        *,
        index_url: str = DEFAULT_INDEX_URL,
        limit: int = 10,
        timeout: float = 30.0,
        retries: int = 2,
        backoff: float = 0.5,
        token: str | None = None,
        store: ConfigStore | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Configure the index location, retry policy and credentials."""
        self.index_url = index_url.rstrip("/")
        self.limit = limit
        self.retries = retries
        self.backoff = backoff
        self.store = store
        self._sleep = sleep
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": f"jamctl/{__version__}",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def token_from_env(cls, env_name: str, env: Mapping[str, str] | None = None) -> str | None:
        """Return the API token stored in *env_name*, if set."""
        source = os.environ if env is None else env
        value = source.get(env_name, "").strip()
        return value or None

    def close(self) -> None:
        """Release pooled HTTP connections."""
        self._client.close()

    def __enter__(self) -> ReleaseResolver:
        """Allow use as a context manager."""
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the HTTP client on exit."""
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def list_versions(self, limit: int | None = None) -> list[ReleaseInfo]:
        """Return known releases, newest first."""
        releases = self._fetch_releases(limit or self.limit)
        return sorted(releases, key=ReleaseInfo.sort_key, reverse=True)

    def resolve(self, selector: str | None, platform: Platform) -> ArtifactDescriptor:
        """Resolve *selector* (tag, ``latest`` or ``None``) for *platform*."""
        normalized = (selector or "").strip()
        if not normalized or normalized.lower() in LATEST_ALIASES:
            release = self._latest_nightly()
        else:
            release = self._fetch_release(normalized)
        return self._select_asset(release, platform)

    def info(self) -> InstallRecord | None:
        """Return the active install without contacting the network."""
        if self.store is None:
            return None
        return self.store.load().active_record

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _latest_nightly(self) -> ReleaseInfo:
        nightlies = [release for release in self._fetch_releases(self.limit) if release.is_nightly]
        if not nightlies:
            raise VersionNotFound("latest", "no nightly releases published")
        latest = max(nightlies, key=ReleaseInfo.sort_key)
        LOGGER.debug("Latest nightly resolved to %s", latest.tag)
        return latest

    def _fetch_releases(self, limit: int) -> list[ReleaseInfo]:
        response = self._request(self.index_url, params={"per_page": limit})
        if response.status_code != 200:
            raise NetworkError(f"Release index returned status {response.status_code}")
        payload = _decode_json(response)
        if not isinstance(payload, list):
            raise NetworkError("Release index returned an unexpected payload.")
        releases = [_parse_release(item) for item in payload if isinstance(item, Mapping)]
        return [release for release in releases if release.tag]

    def _fetch_release(self, tag: str) -> ReleaseInfo:
        response = self._request(f"{self.index_url}/tags/{tag}")
        if response.status_code == 404:
            raise VersionNotFound(tag)
        if response.status_code != 200:
            raise NetworkError(
                f"Failed to fetch release '{tag}' (status: {response.status_code})"
            )
        payload = _decode_json(response)
        if not isinstance(payload, Mapping):
            raise NetworkError(f"Release '{tag}' returned an unexpected payload.")
        return _parse_release(payload)

    def _select_asset(self, release: ReleaseInfo, platform: Platform) -> ArtifactDescriptor:
        candidates = sorted(
            (asset for asset in release.assets if platform.matches_asset(asset.name)),
            key=lambda asset: asset.name,
        )
        if not candidates:
            available = ", ".join(asset.name for asset in release.assets) or "none"
            raise PlatformUnsupported(
                f"No asset found for platform '{platform}' in release '{release.tag}'. "
                f"Available assets: {available}"
            )
        asset = candidates[0]
        return ArtifactDescriptor(
            version=ToolchainVersion(tag=release.tag, platform=platform),
            download_url=asset.download_url,
            asset_name=asset.name,
            checksum=parse_digest(asset.digest),
            size=asset.size,
        )

    def _request(
        self,
        url: str,
        *,
        params: Mapping[str, object] | None = None,
    ) -> httpx.Response:
        """GET *url*, retrying transport failures and transient statuses."""
        attempts = self.retries + 1
        last_error = "unknown error"
        for attempt in range(1, attempts + 1):
            try:
                response = self._client.get(url, params=dict(params or {}))
            except httpx.TransportError as exc:
                last_error = f"{exc.__class__.__name__}: {exc}"
                LOGGER.debug("GET %s failed (attempt %d/%d): %s", url, attempt, attempts, exc)
            else:
                if response.status_code not in _RETRY_STATUSES:
                    return response
                last_error = f"status {response.status_code}"
                LOGGER.debug(
                    "GET %s returned %s (attempt %d/%d)",
                    url,
                    response.status_code,
                    attempt,
                    attempts,
                )
            if attempt < attempts:
                self._sleep(self.backoff * (2 ** (attempt - 1)))
        raise NetworkError(f"Failed to reach release index at {url}: {last_error}")


def parse_digest(value: str | None) -> Checksum | None:
    """Parse ``<algorithm>:<hex>`` digests; unknown algorithms yield ``None``."""
    if not value or ":" not in value:
        return None
    algorithm, digest = value.split(":", 1)
    algorithm = algorithm.strip().lower()
    digest = digest.strip().lower()
    if not algorithm or not digest:
        return None
    # shake_* digests are variable length and need an explicit size.
    if algorithm not in hashlib.algorithms_available or algorithm.startswith("shake_"):
        return None
    try:
        bytes.fromhex(digest)
    except ValueError:
        return None
    return Checksum(algorithm=algorithm, digest=digest)


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise NetworkError(f"Release index returned invalid JSON: {exc}") from exc


def _parse_release(data: Mapping[str, Any]) -> ReleaseInfo:
    assets_raw = data.get("assets") or []
    assets: list[ReleaseAsset] = []
    if isinstance(assets_raw, Sequence):
        for item in assets_raw:
            if not isinstance(item, Mapping):
                continue
            name = item.get("name")
            url = item.get("browser_download_url")
            if not isinstance(name, str) or not isinstance(url, str):
                continue
            size = item.get("size")
            digest = item.get("digest")
            assets.append(
                ReleaseAsset(
                    name=name,
                    download_url=url,
                    size=size if isinstance(size, int) else None,
                    digest=digest if isinstance(digest, str) else None,
                )
            )
    name = data.get("name")
    published_at = data.get("published_at")
    return ReleaseInfo(
        tag=str(data.get("tag_name") or ""),
        name=name if isinstance(name, str) else None,
        published_at=published_at if isinstance(published_at, str) else None,
        assets=tuple(assets),
    )


__all__ = [
    "ArtifactDescriptor",
    "Checksum",
    "LATEST_ALIASES",
    "ReleaseAsset",
    "ReleaseInfo",
    "ReleaseResolver",
    "ToolchainVersion",
    "parse_digest",
]
