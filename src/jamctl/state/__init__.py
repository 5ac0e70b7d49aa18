"""State management helpers for jamctl."""
from __future__ import annotations

from .store import ConfigStore, InstallRecord, StateStoreError, ToolchainConfig

__all__ = ["ConfigStore", "InstallRecord", "StateStoreError", "ToolchainConfig"]
