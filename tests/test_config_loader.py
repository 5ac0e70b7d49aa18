"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from jamctl.config import (
    DEFAULT_INDEX_URL,
    DEFAULT_RPC_ENDPOINT,
    AppConfig,
    ConfigError,
    load_config,
)


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply and derived paths live under the home directory."""
    home = tmp_path / "home"
    config = load_config(env={"JAMCTL_HOME": str(home)})

    assert isinstance(config, AppConfig)
    assert config.home == home
    assert config.config_file == home / "config.yml"
    assert config.toolchain_dir == home / "toolchain"
    assert config.state_file == home / "toolchain.yml"
    assert config.runtime_dir == home / "run"
    assert config.logs_dir == home / "logs"
    assert config.rpc_endpoint == DEFAULT_RPC_ENDPOINT
    assert config.releases.index_url == DEFAULT_INDEX_URL
    assert config.releases.token_env == "GITHUB_TOKEN"
    assert config.supervisor.binary == "polkajam-testnet"
    assert config.supervisor.args == ()
    assert config.tools.jamt == "jamt"


def test_home_defaults_to_user_directory() -> None:
    """Without overrides the home directory is ``~/.jamctl``."""
    config = load_config(env={})

    assert config.home == Path("~/.jamctl").expanduser()


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "jamctl.yml"
    cfg.write_text(
        "home: {home}\n"
        "rpc_endpoint: ws://127.0.0.1:29800\n"
        "readiness:\n"
        "  timeout: 12\n"
        "supervisor:\n"
        "  grace_period: 3\n"
        "  args: [--dev, --verbose]\n".format(home=tmp_path / "jam"),
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.home == tmp_path / "jam"
    assert config.state_file == tmp_path / "jam" / "toolchain.yml"
    assert config.rpc_endpoint == "ws://127.0.0.1:29800"
    assert config.readiness.timeout == 12.0
    assert config.readiness.interval == 0.5
    assert config.supervisor.grace_period == 3.0
    assert config.supervisor.args == ("--dev", "--verbose")


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("lock_timeout: 10\nreleases:\n  limit: 5\n", encoding="utf-8")
    env = {
        "JAMCTL_CONFIG_FILE": str(cfg),
        "JAMCTL_HOME": str(tmp_path / "home"),
        "JAMCTL_LOCK_TIMEOUT": "45",
        "JAMCTL_RELEASES__LIMIT": "20",
        "JAMCTL_READINESS__INTERVAL": "0.25",
        "JAMCTL_LOGS_DIR": str(tmp_path / "elsewhere"),
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.lock_timeout == 45.0
    assert config.releases.limit == 20
    assert config.readiness.interval == 0.25
    assert config.logs_dir == tmp_path / "elsewhere"
    assert config.runtime_dir == tmp_path / "home" / "run"


def test_overrides_win_over_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    env = {"JAMCTL_HOME": str(tmp_path), "JAMCTL_RPC_ENDPOINT": "ws://env:1"}

    config = load_config(env=env, overrides={"rpc_endpoint": "ws://override:2"})

    assert config.rpc_endpoint == "ws://override:2"


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """``to_dict`` renders paths as strings and nests sections."""
    config = load_config(env={"JAMCTL_HOME": str(tmp_path)})

    data = config.to_dict()

    assert data["home"] == str(tmp_path)
    assert data["readiness"] == {"timeout": 30.0, "interval": 0.5, "precheck_timeout": 5.0}
    assert data["supervisor"]["args"] == []  # type: ignore[index]


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A YAML document that is not a mapping raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_section_key_raises(tmp_path: Path) -> None:
    """Extra keys inside a section produce ConfigError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("supervisor:\n  restart: always\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Unknown supervisor configuration keys"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("endpoint", ["localhost:19800", "tcp://localhost:19800"])
def test_invalid_rpc_endpoint_raises(tmp_path: Path, endpoint: str) -> None:
    """Endpoints must be ws, wss, http or https URLs."""
    with pytest.raises(ConfigError, match="rpc_endpoint"):
        load_config(env={"JAMCTL_HOME": str(tmp_path)}, overrides={"rpc_endpoint": endpoint})


def test_non_positive_readiness_timeout_raises(tmp_path: Path) -> None:
    """Bounded waits need a positive timeout."""
    env = {"JAMCTL_HOME": str(tmp_path), "JAMCTL_READINESS__TIMEOUT": "0"}

    with pytest.raises(ConfigError, match="readiness.timeout"):
        load_config(env=env)


def test_releases_limit_must_be_positive(tmp_path: Path) -> None:
    """Listing zero releases is rejected."""
    env = {"JAMCTL_HOME": str(tmp_path), "JAMCTL_RELEASES__LIMIT": "0"}

    with pytest.raises(ConfigError, match="releases.limit"):
        load_config(env=env)
