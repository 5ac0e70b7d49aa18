"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from jamctl.config import AppConfig, load_config
from jamctl.state import ConfigStore, InstallRecord, ToolchainConfig


def pytest_configure(config: pytest.Config) -> None:
    """Register markers used across the suite."""
    config.addinivalue_line(
        "markers",
        "mutation_timeout: spawns real processes or sleeps; skipped during mutation runs",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture()
def app_config(tmp_path: Path) -> AppConfig:
    """Settings rooted in a throwaway home directory."""
    return load_config(env={"JAMCTL_HOME": str(tmp_path / "home")})


def _write_executable(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def _make_install(
    config: AppConfig,
    version: str = "nightly-2025-12-29",
    *,
    scripts: dict[str, str] | None = None,
    activate: bool = True,
) -> InstallRecord:
    root = config.toolchain_dir / version
    bundle = root / "polkajam-nightly"
    bundle.mkdir(parents=True, exist_ok=True)
    for name, body in (scripts or {"polkajam-testnet": "exec sleep 30"}).items():
        _write_executable(bundle / name, body)
    (bundle / "README.md").write_text("docs\n", encoding="utf-8")
    record = InstallRecord(
        version=version,
        path=root,
        installed_at="2025-12-29T00:00:00Z",
        source=f"https://example.invalid/{version}.tar.gz",
    )
    if activate:
        store = ConfigStore(config.state_file)
        current = store.load() if store.exists() else ToolchainConfig()
        store.save(current.with_active(record, toolchain_root=config.toolchain_dir))
    return record


@pytest.fixture()
def make_install() -> Callable[..., InstallRecord]:
    """Return a factory laying out an installed toolchain of ``/bin/sh`` scripts.

    The factory takes the settings, an optional version, a ``scripts`` mapping
    of binary name to script body, and ``activate`` to record it as active.
    """
    return _make_install
