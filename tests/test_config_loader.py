"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from tsupdater.config import AppConfig, ConfigError, load_config
from tsupdater.mirror import DEFAULT_MIRROR_URL
from tsupdater.target import PlatformTarget


@pytest.fixture
def linux_host(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend to run on a 64-bit Linux host."""
    monkeypatch.setattr("tsupdater.target.platform.system", lambda: "Linux")
    monkeypatch.setattr("tsupdater.target.platform.machine", lambda: "x86_64")


def test_load_config_defaults_when_file_missing(tmp_path: Path, linux_host: None) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.symlink_path == Path("/opt/teamspeak")
    assert config.releases_path == Path("/opt/teamspeak-releases")
    assert config.mirror_url == DEFAULT_MIRROR_URL
    assert config.target_tuple == PlatformTarget("linux", "amd64")
    assert config.target_deduced is True
    assert config.swap_strategy == "auto"
    assert config.http_timeout is None
    assert config.logs_dir == Path("/var/log/tsupdater")


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "symlink_path: /srv/ts3\n"
        "releases_path: /srv/ts3-releases\n"
        "mirror_url: https://mirror.example/ts3\n"
        "target_tuple: linux_alpine\n"
        "swap_strategy: rename\n"
        "http_timeout: 30\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.symlink_path == Path("/srv/ts3")
    assert config.releases_path == Path("/srv/ts3-releases")
    assert config.mirror_url == "https://mirror.example/ts3/"
    assert config.target_tuple == PlatformTarget("alpine", "amd64")
    assert config.target_deduced is False
    assert config.swap_strategy == "rename"
    assert config.http_timeout == 30.0


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("symlink_path: /srv/from-file\nhttp_timeout: 30\ntarget_tuple: win64\n")
    env = {
        "TSUPDATER_SYMLINK_PATH": str(tmp_path / "teamspeak"),
        "TSUPDATER_HTTP_TIMEOUT": "45",
        "TSUPDATER_LOGS_DIR": str(tmp_path / "logs"),
        "TSUPDATER_SWAP_STRATEGY": "ATOMIC",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.symlink_path == tmp_path / "teamspeak"
    assert config.http_timeout == 45.0
    assert config.logs_dir == tmp_path / "logs"
    assert config.swap_strategy == "atomic"
    assert config.target_tuple.token == "win64"


def test_overrides_beat_environment(tmp_path: Path) -> None:
    """Programmatic overrides win; ``None`` overrides are ignored."""
    env = {
        "TSUPDATER_TARGET_TUPLE": "win32",
        "TSUPDATER_RELEASES_PATH": str(tmp_path / "env-releases"),
    }

    config = load_config(
        config_file=tmp_path / "missing.yml",
        env=env,
        overrides={"target_tuple": "freebsd_amd64", "releases_path": None},
    )

    assert config.target_tuple.token == "freebsd_amd64"
    assert config.releases_path == tmp_path / "env-releases"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("target_tuple: mac\n")

    env = {"TSUPDATER_CONFIG_FILE": str(cfg)}
    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.target_tuple.token == "mac"


def test_to_dict_is_json_friendly(tmp_path: Path) -> None:
    """``to_dict`` renders paths and the tuple as strings."""
    config = load_config(config_file=tmp_path / "missing.yml", env={}, overrides={"target_tuple": "win64"})

    data = config.to_dict()

    assert data["target_tuple"] == "win64"
    assert data["symlink_path"] == "/opt/teamspeak"
    assert data["http_timeout"] is None


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A YAML document that is not a mapping raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_nested_env_key_raises(tmp_path: Path) -> None:
    """Double-underscore environment keys are rejected rather than nested."""
    env = {"TSUPDATER_HTTP__TIMEOUT": "30", "TSUPDATER_TARGET_TUPLE": "linux_amd64"}

    with pytest.raises(ConfigError, match="Nested configuration keys.*TSUPDATER_HTTP__TIMEOUT"):
        load_config(config_file=tmp_path / "missing.yml", env=env)


def test_file_values_replace_defaults_wholesale(tmp_path: Path) -> None:
    """Each source replaces whole top-level values; nothing is merged below them."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("http_timeout: 5\ntarget_tuple: linux_x86\n")

    config = load_config(
        config_file=cfg,
        env={"TSUPDATER_HTTP_TIMEOUT": "9"},
        overrides={"http_timeout": None},
    )

    assert config.http_timeout == 9.0
    assert config.target_tuple == PlatformTarget("linux", "x86")


def test_invalid_swap_strategy_raises(tmp_path: Path) -> None:
    """Unsupported swap strategies raise ConfigError."""
    with pytest.raises(ConfigError, match="Unsupported swap strategy"):
        load_config(config_file=tmp_path / "missing.yml", env={"TSUPDATER_SWAP_STRATEGY": "copy"})


@pytest.mark.parametrize("mirror_url", ["ftp://mirror.example/ts3/", "mirror.example", ""])
def test_invalid_mirror_url_raises(tmp_path: Path, mirror_url: str) -> None:
    """Only http(s) mirror URLs are accepted."""
    with pytest.raises(ConfigError, match="mirror_url"):
        load_config(config_file=tmp_path / "missing.yml", env={}, overrides={"mirror_url": mirror_url})


def test_unknown_target_tuple_raises(tmp_path: Path) -> None:
    """An unrecognised tuple is a configuration error."""
    with pytest.raises(ConfigError, match="Target tuple not recognized"):
        load_config(config_file=tmp_path / "missing.yml", env={}, overrides={"target_tuple": "amiga"})


def test_undeducible_host_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Hosts without a published archive must configure the tuple explicitly."""
    monkeypatch.setattr("tsupdater.target.platform.system", lambda: "Linux")
    monkeypatch.setattr("tsupdater.target.platform.machine", lambda: "aarch64")

    with pytest.raises(ConfigError, match="Failed to deduce target tuple"):
        load_config(config_file=tmp_path / "missing.yml", env={})


@pytest.mark.parametrize("timeout", ["0", "-5", "soon", "true"])
def test_invalid_http_timeout_raises(tmp_path: Path, timeout: str) -> None:
    """Timeouts must be positive numbers."""
    env = {"TSUPDATER_HTTP_TIMEOUT": timeout, "TSUPDATER_TARGET_TUPLE": "linux_amd64"}

    with pytest.raises(ConfigError, match="http_timeout"):
        load_config(config_file=tmp_path / "missing.yml", env=env)
