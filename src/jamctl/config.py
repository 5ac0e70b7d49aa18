"""Configuration loader for jamctl.

Settings are merged from multiple sources, later sources winning:

1. Built-in defaults.
2. ``<home>/config.yml`` (or an override path).
3. Environment variables prefixed with ``JAMCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export JAMCTL_HOME=/tmp/jam-home
    export JAMCTL_READINESS__TIMEOUT=60
    export JAMCTL_SUPERVISOR__GRACE_PERIOD=5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``. These are user *settings*; the record of what is installed
lives in :mod:`jamctl.state.store`.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load jamctl configuration. Install with "
        "`pip install jamctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "JAMCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
HOME_ENV_VAR = f"{ENV_PREFIX}HOME"
RESERVED_ENV_KEYS = {
    CONFIG_ENV_VAR,
}

DEFAULT_RPC_ENDPOINT = "ws://localhost:19800"
DEFAULT_INDEX_URL = "https://api.github.com/repos/paritytech/polkajam-releases/releases"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ReleasesConfig:
    """Where and how the release index is queried."""

    index_url: str = DEFAULT_INDEX_URL
    limit: int = 10
    http_timeout: float = 30.0
    retries: int = 2
    backoff: float = 0.5
    token_env: str = "GITHUB_TOKEN"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "index_url": self.index_url,
            "limit": self.limit,
            "http_timeout": self.http_timeout,
            "retries": self.retries,
            "backoff": self.backoff,
            "token_env": self.token_env,
        }


@dataclass(frozen=True)
class ReadinessConfig:
    """Bounds for the readiness poll against the control endpoint."""

    timeout: float = 30.0
    interval: float = 0.5
    precheck_timeout: float = 5.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "timeout": self.timeout,
            "interval": self.interval,
            "precheck_timeout": self.precheck_timeout,
        }


@dataclass(frozen=True)
class SupervisorConfig:
    """Process supervision settings for the local testnet node."""

    grace_period: float = 10.0
    binary: str = "polkajam-testnet"
    args: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "grace_period": self.grace_period,
            "binary": self.binary,
            "args": list(self.args),
        }


@dataclass(frozen=True)
class ToolsConfig:
    """Names of the toolchain binaries driven by ``deploy`` and ``monitor``."""

    jamt: str = "jamt"
    jamtop: str = "jamtop"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"jamt": self.jamt, "jamtop": self.jamtop}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for jamctl."""

    config_file: Path
    home: Path
    toolchain_dir: Path
    state_file: Path
    runtime_dir: Path
    logs_dir: Path
    lock_timeout: float
    rpc_endpoint: str
    releases: ReleasesConfig
    readiness: ReadinessConfig
    supervisor: SupervisorConfig
    tools: ToolsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "home": str(self.home),
            "toolchain_dir": str(self.toolchain_dir),
            "state_file": str(self.state_file),
            "runtime_dir": str(self.runtime_dir),
            "logs_dir": str(self.logs_dir),
            "lock_timeout": self.lock_timeout,
            "rpc_endpoint": self.rpc_endpoint,
            "releases": self.releases.to_dict(),
            "readiness": self.readiness.to_dict(),
            "supervisor": self.supervisor.to_dict(),
            "tools": self.tools.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": None,  # derived from home when absent
    "home": "~/.jamctl",
    "toolchain_dir": None,
    "state_file": None,
    "runtime_dir": None,
    "logs_dir": None,
    "lock_timeout": 30.0,
    "rpc_endpoint": DEFAULT_RPC_ENDPOINT,
    "releases": {
        "index_url": DEFAULT_INDEX_URL,
        "limit": 10,
        "http_timeout": 30.0,
        "retries": 2,
        "backoff": 0.5,
        "token_env": "GITHUB_TOKEN",
    },
    "readiness": {
        "timeout": 30.0,
        "interval": 0.5,
        "precheck_timeout": 5.0,
    },
    "supervisor": {
        "grace_period": 10.0,
        "binary": "polkajam-testnet",
        "args": [],
    },
    "tools": {
        "jamt": "jamt",
        "jamtop": "jamtop",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "releases": {"index_url", "limit", "http_timeout", "retries", "backoff", "token_env"},
    "readiness": {"timeout", "interval", "precheck_timeout"},
    "supervisor": {"grace_period", "binary", "args"},
    "tools": {"jamt", "jamtop"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    home_default = _expect_str(merged["home"], "home")
    config_path = _determine_config_path(home_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    home_default: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    home = env.get(HOME_ENV_VAR) or home_default
    return Path(home).expanduser() / "config.yml"


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    endpoint = raw.get("rpc_endpoint")
    if endpoint is not None:
        _validate_endpoint(str(endpoint), "rpc_endpoint")


def _validate_endpoint(value: str, label: str) -> None:
    scheme, sep, rest = value.partition("://")
    if not sep or not rest:
        raise ConfigError(f"{label} must be a URL such as {DEFAULT_RPC_ENDPOINT!r}. Got {value!r}.")
    if scheme.lower() not in {"ws", "wss", "http", "https"}:
        raise ConfigError(f"{label} must use ws, wss, http or https. Got {scheme!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    home = _to_path(raw.get("home"))
    toolchain_dir = _derived_path(raw.get("toolchain_dir"), home / "toolchain")
    state_file = _derived_path(raw.get("state_file"), home / "toolchain.yml")
    runtime_dir = _derived_path(raw.get("runtime_dir"), home / "run")
    logs_dir = _derived_path(raw.get("logs_dir"), home / "logs")
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    releases_mapping = _as_dict(raw.get("releases"), "releases")
    releases = ReleasesConfig(
        index_url=str(releases_mapping.get("index_url", DEFAULT_INDEX_URL)).rstrip("/"),
        limit=_expect_int(releases_mapping.get("limit"), "releases.limit", default=10),
        http_timeout=_expect_positive_float(
            releases_mapping.get("http_timeout"), "releases.http_timeout", default=30.0
        ),
        retries=_expect_int(releases_mapping.get("retries"), "releases.retries", default=2),
        backoff=_expect_non_negative_float(
            releases_mapping.get("backoff"), "releases.backoff", default=0.5
        ),
        token_env=str(releases_mapping.get("token_env", "GITHUB_TOKEN")),
    )
    if releases.limit < 1:
        raise ConfigError("releases.limit must be at least 1.")
    if releases.retries < 0:
        raise ConfigError("releases.retries must be non-negative.")

    readiness_mapping = _as_dict(raw.get("readiness"), "readiness")
    readiness = ReadinessConfig(
        timeout=_expect_positive_float(
            readiness_mapping.get("timeout"), "readiness.timeout", default=30.0
        ),
        interval=_expect_positive_float(
            readiness_mapping.get("interval"), "readiness.interval", default=0.5
        ),
        precheck_timeout=_expect_positive_float(
            readiness_mapping.get("precheck_timeout"), "readiness.precheck_timeout", default=5.0
        ),
    )

    supervisor_mapping = _as_dict(raw.get("supervisor"), "supervisor")
    args_raw = supervisor_mapping.get("args")
    supervisor = SupervisorConfig(
        grace_period=_expect_positive_float(
            supervisor_mapping.get("grace_period"), "supervisor.grace_period", default=10.0
        ),
        binary=str(supervisor_mapping.get("binary", "polkajam-testnet")),
        args=tuple(str(item) for item in _as_sequence(args_raw or [], "supervisor.args")),
    )

    tools_mapping = _as_dict(raw.get("tools"), "tools")
    tools = ToolsConfig(
        jamt=str(tools_mapping.get("jamt", "jamt")),
        jamtop=str(tools_mapping.get("jamtop", "jamtop")),
    )

    return AppConfig(
        config_file=config_file,
        home=home,
        toolchain_dir=toolchain_dir,
        state_file=state_file,
        runtime_dir=runtime_dir,
        logs_dir=logs_dir,
        lock_timeout=lock_timeout,
        rpc_endpoint=str(raw.get("rpc_endpoint", DEFAULT_RPC_ENDPOINT)),
        releases=releases,
        readiness=readiness,
        supervisor=supervisor,
        tools=tools,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _derived_path(value: object, default: Path) -> Path:
    if value is None or value == "":
        return default
    return _to_path(value)


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must be non-negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DEFAULT_RPC_ENDPOINT",
    "ReadinessConfig",
    "ReleasesConfig",
    "SupervisorConfig",
    "ToolsConfig",
    "load_config",
]
