"""Configuration loader for tsupdater.

Configuration values are merged from several sources, later ones winning:

1. Built-in defaults.
2. ``/etc/tsupdater/config.yml`` (or an override path).
3. Environment variables prefixed with ``TSUPDATER_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys map one-to-one onto top-level keys and values are
coerced via PyYAML's ``safe_load`` so numbers and nulls parse naturally::

    export TSUPDATER_SYMLINK_PATH=/srv/teamspeak
    export TSUPDATER_HTTP_TIMEOUT=120

The result is exposed as an immutable :class:`AppConfig`. The platform tuple is
resolved here, once, so the update pipeline never consults the host itself.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load tsupdater configuration. Install with "
        "`pip install tsupdater` or ensure PyYAML>=6.0 is available."
    ) from exc

from .mirror import DEFAULT_MIRROR_URL
from .swap import ALLOWED_SWAP_STRATEGIES
from .target import PlatformTarget, TargetError

ENV_PREFIX = "TSUPDATER_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for tsupdater."""

    config_file: Path
    symlink_path: Path
    releases_path: Path
    mirror_url: str
    target_tuple: PlatformTarget
    target_deduced: bool
    swap_strategy: str
    http_timeout: float | None
    logs_dir: Path

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "symlink_path": str(self.symlink_path),
            "releases_path": str(self.releases_path),
            "mirror_url": self.mirror_url,
            "target_tuple": self.target_tuple.token,
            "target_deduced": self.target_deduced,
            "swap_strategy": self.swap_strategy,
            "http_timeout": self.http_timeout,
            "logs_dir": str(self.logs_dir),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/tsupdater/config.yml",
    "symlink_path": "/opt/teamspeak",
    "releases_path": "/opt/teamspeak-releases",
    "mirror_url": DEFAULT_MIRROR_URL,
    "target_tuple": None,  # deduced from the host when absent
    "swap_strategy": "auto",
    "http_timeout": None,
    "logs_dir": "/var/log/tsupdater",
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = dict(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        merged.update(file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        merged.update(env_values)

    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


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

    strategy = raw.get("swap_strategy")
    if strategy is not None and str(strategy).strip().lower() not in ALLOWED_SWAP_STRATEGIES:
        allowed = ", ".join(sorted(ALLOWED_SWAP_STRATEGIES))
        raise ConfigError(f"Unsupported swap strategy '{strategy}'. Allowed: {allowed}.")

    mirror_url = raw.get("mirror_url")
    if not isinstance(mirror_url, str) or not mirror_url.strip():
        raise ConfigError("mirror_url must be a non-empty string.")
    parsed = urlparse(mirror_url.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigError(f"mirror_url must be an http(s) URL. Got {mirror_url!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    target_value = raw.get("target_tuple")
    target_deduced = target_value in (None, "", "auto")
    try:
        if target_deduced:
            target = PlatformTarget.deduce()
        elif isinstance(target_value, PlatformTarget):
            target = target_value
        else:
            target = PlatformTarget.parse(str(target_value))
    except TargetError as exc:
        raise ConfigError(str(exc)) from exc

    mirror_url = _expect_str(raw.get("mirror_url"), "mirror_url").strip()
    if not mirror_url.endswith("/"):
        mirror_url = f"{mirror_url}/"

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        symlink_path=_to_path(raw.get("symlink_path")),
        releases_path=_to_path(raw.get("releases_path")),
        mirror_url=mirror_url,
        target_tuple=target,
        target_deduced=target_deduced,
        swap_strategy=str(raw.get("swap_strategy", "auto")).strip().lower(),
        http_timeout=_expect_optional_positive_float(raw.get("http_timeout"), "http_timeout"),
        logs_dir=_to_path(raw.get("logs_dir")),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        if not suffix:
            continue
        if "__" in suffix:
            raise ConfigError(
                f"Nested configuration keys are not supported: {key}. "
                f"Use a top-level key such as {ENV_PREFIX}HTTP_TIMEOUT."
            )
        overrides[suffix.lower()] = _coerce_value(value)
    return overrides


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


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_optional_positive_float(value: object | None, label: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
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


__all__ = ["AppConfig", "ConfigError", "DEFAULTS", "load_config"]
