"""Configuration loader for leonctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``~/.config/leonctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``LEONCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export LEONCTL_HEALTH__TIMEOUT=90
    export LEONCTL_LIFECYCLE__ROLLBACK_ON_FAILURE=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "LEONCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class RepositoryConfig:
    """Where the Leon source code lives and how its checkout is recognised."""

    name: str = "leon"
    organization: str = "leon-ai"
    url: str = "https://github.com/leon-ai/leon"
    homepage: str = "https://getleon.ai"
    default_branch: str = "master"
    develop_branch: str = "develop"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "organization": self.organization,
            "url": self.url,
            "homepage": self.homepage,
            "default_branch": self.default_branch,
            "develop_branch": self.develop_branch,
        }


@dataclass(frozen=True)
class NetworkConfig:
    """Timeouts applied to source acquisition."""

    download_timeout: float = 120.0
    clone_timeout: float = 600.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "download_timeout": self.download_timeout,
            "clone_timeout": self.clone_timeout,
        }


@dataclass(frozen=True)
class HealthConfig:
    """Readiness probe settings."""

    host: str = "localhost"
    port: int = 1337
    path: str = "/api/v1/info"
    timeout: float = 60.0
    interval: float = 1.0
    request_timeout: float = 3.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "timeout": self.timeout,
            "interval": self.interval,
            "request_timeout": self.request_timeout,
        }


@dataclass(frozen=True)
class RequirementsConfig:
    """Minimum tool versions for native instances."""

    python: str = "3.0.0"
    pyenv: str = "0.0.0"
    pipenv: str = "2019.0.0"
    python_install_version: str = "3.9.10"
    command_timeout: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "python": self.python,
            "pyenv": self.pyenv,
            "pipenv": self.pipenv,
            "python_install_version": self.python_install_version,
            "command_timeout": self.command_timeout,
        }


@dataclass(frozen=True)
class CommandsConfig:
    """External binaries invoked by leonctl."""

    git_bin: str = "git"
    npm_bin: str = "npm"
    docker_bin: str = "docker"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "git_bin": self.git_bin,
            "npm_bin": self.npm_bin,
            "docker_bin": self.docker_bin,
        }


@dataclass(frozen=True)
class LifecycleConfig:
    """Lifecycle policy switches."""

    rollback_on_failure: bool = False
    start_grace: float = 2.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "rollback_on_failure": self.rollback_on_failure,
            "start_grace": self.start_grace,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for leonctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    staging_dir: Path
    default_birth_path: Path
    repository: RepositoryConfig
    network: NetworkConfig
    health: HealthConfig
    requirements: RequirementsConfig
    commands: CommandsConfig
    lifecycle: LifecycleConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "staging_dir": str(self.staging_dir),
            "default_birth_path": str(self.default_birth_path),
            "repository": self.repository.to_dict(),
            "network": self.network.to_dict(),
            "health": self.health.to_dict(),
            "requirements": self.requirements.to_dict(),
            "commands": self.commands.to_dict(),
            "lifecycle": self.lifecycle.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/leonctl/config.yml",
    "state_dir": "~/.local/share/leonctl",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": None,  # derived from state_dir when absent
    "staging_dir": str(Path(tempfile.gettempdir()) / "leonctl"),
    "default_birth_path": "~/.leon",
    "repository": RepositoryConfig().to_dict(),
    "network": NetworkConfig().to_dict(),
    "health": HealthConfig().to_dict(),
    "requirements": RequirementsConfig().to_dict(),
    "commands": CommandsConfig().to_dict(),
    "lifecycle": LifecycleConfig().to_dict(),
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    "repository": set(RepositoryConfig().to_dict()),
    "network": set(NetworkConfig().to_dict()),
    "health": set(HealthConfig().to_dict()),
    "requirements": set(RequirementsConfig().to_dict()),
    "commands": set(CommandsConfig().to_dict()),
    "lifecycle": set(LifecycleConfig().to_dict()),
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

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

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
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


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

    for section, allowed in SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    registry_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_value) if registry_value else state_dir / "registry"
    logs_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_value) if logs_value else state_dir / "logs"
    staging_dir = _to_path(raw.get("staging_dir"))
    default_birth_path = _to_path(raw.get("default_birth_path")).resolve()

    repository_map = _as_dict(raw.get("repository"), "repository")
    defaults_repository = RepositoryConfig()
    repository = RepositoryConfig(
        name=_expect_nonempty(repository_map, "name", defaults_repository.name, "repository"),
        organization=_expect_nonempty(
            repository_map, "organization", defaults_repository.organization, "repository"
        ),
        url=_expect_nonempty(repository_map, "url", defaults_repository.url, "repository").rstrip(
            "/"
        ),
        homepage=_expect_nonempty(
            repository_map, "homepage", defaults_repository.homepage, "repository"
        ),
        default_branch=_expect_nonempty(
            repository_map, "default_branch", defaults_repository.default_branch, "repository"
        ),
        develop_branch=_expect_nonempty(
            repository_map, "develop_branch", defaults_repository.develop_branch, "repository"
        ),
    )

    network_map = _as_dict(raw.get("network"), "network")
    network = NetworkConfig(
        download_timeout=_expect_positive_float(
            network_map.get("download_timeout"), "network.download_timeout", default=120.0
        ),
        clone_timeout=_expect_positive_float(
            network_map.get("clone_timeout"), "network.clone_timeout", default=600.0
        ),
    )

    health_map = _as_dict(raw.get("health"), "health")
    port = _expect_int(health_map.get("port"), "health.port", default=1337)
    if port < 1 or port > 65535:
        raise ConfigError(f"health.port must be between 1 and 65535. Got {port}.")
    health_path = str(health_map.get("path", "/api/v1/info"))
    if not health_path.startswith("/"):
        health_path = f"/{health_path}"
    health = HealthConfig(
        host=_expect_nonempty(health_map, "host", "localhost", "health"),
        port=port,
        path=health_path,
        timeout=_expect_positive_float(health_map.get("timeout"), "health.timeout", default=60.0),
        interval=_expect_positive_float(
            health_map.get("interval"), "health.interval", default=1.0
        ),
        request_timeout=_expect_positive_float(
            health_map.get("request_timeout"), "health.request_timeout", default=3.0
        ),
    )

    requirements_map = _as_dict(raw.get("requirements"), "requirements")
    defaults_requirements = RequirementsConfig()
    requirements = RequirementsConfig(
        python=_expect_nonempty(
            requirements_map, "python", defaults_requirements.python, "requirements"
        ),
        pyenv=_expect_nonempty(
            requirements_map, "pyenv", defaults_requirements.pyenv, "requirements"
        ),
        pipenv=_expect_nonempty(
            requirements_map, "pipenv", defaults_requirements.pipenv, "requirements"
        ),
        python_install_version=_expect_nonempty(
            requirements_map,
            "python_install_version",
            defaults_requirements.python_install_version,
            "requirements",
        ),
        command_timeout=_expect_positive_float(
            requirements_map.get("command_timeout"),
            "requirements.command_timeout",
            default=10.0,
        ),
    )

    commands_map = _as_dict(raw.get("commands"), "commands")
    commands = CommandsConfig(
        git_bin=_expect_nonempty(commands_map, "git_bin", "git", "commands"),
        npm_bin=_expect_nonempty(commands_map, "npm_bin", "npm", "commands"),
        docker_bin=_expect_nonempty(commands_map, "docker_bin", "docker", "commands"),
    )

    lifecycle_map = _as_dict(raw.get("lifecycle"), "lifecycle")
    lifecycle = LifecycleConfig(
        rollback_on_failure=_expect_bool(
            lifecycle_map.get("rollback_on_failure"),
            "lifecycle.rollback_on_failure",
            default=False,
        ),
        start_grace=_expect_positive_float(
            lifecycle_map.get("start_grace"), "lifecycle.start_grace", default=2.0
        ),
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        staging_dir=staging_dir,
        default_birth_path=default_birth_path,
        repository=repository,
        network=network,
        health=health,
        requirements=requirements,
        commands=commands,
        lifecycle=lifecycle,
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
        else:
            result[key] = value
    return result


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


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_nonempty(
    mapping: Mapping[str, object],
    key: str,
    default: str,
    section: str,
) -> str:
    value = mapping.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigError(f"Expected {section}.{key} to be a string. Got {value!r}.")
    text = str(value).strip()
    if not text:
        raise ConfigError(f"{section}.{key} must be a non-empty string.")
    return text


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
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
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
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


__all__ = [
    "AppConfig",
    "CommandsConfig",
    "ConfigError",
    "HealthConfig",
    "LifecycleConfig",
    "NetworkConfig",
    "RepositoryConfig",
    "RequirementsConfig",
    "load_config",
]
