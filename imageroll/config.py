"""TOML-based backend and operation configuration.

Loads ~/.imageroll/defaults.toml (global) and imageroll.toml (project),
merges them, and resolves the result into a Settings object.

Example imageroll.toml::

    image = "ami-0abc"
    deadline = 900
    wait_attempts = 120

    [backend]
    type = "aws"
    region = "us-east-1"

    [logging]
    level = "DEBUG"
"""

from __future__ import annotations

import dataclasses
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from imageroll.api.predicate import FILTER_KINDS, FilterKind
from imageroll.core.exceptions import ConfigurationError
from imageroll.observability.logging import LogConfig

if TYPE_CHECKING:
    from imageroll.providers.registry import BackendConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".imageroll" / "defaults.toml"
PROJECT_CONFIG_NAME = "imageroll.toml"

_OVERRIDES = ("wait_attempts", "wait_interval")


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration for one imageroll invocation.

    Args:
        backend: Provider configuration (AWS or GCP).
        image: Default image for replacements when none is passed.
        deadline: Overall time budget in seconds per operation.
        filter_kind: Identifier matching strategy.
        logging: Logging configuration used by the CLI.
    """

    backend: BackendConfig
    image: str | None = None
    deadline: float | None = None
    filter_kind: FilterKind = "regex"
    logging: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("logging", {})
    return merged


def _build_backend(raw: RawConfig, env: Mapping[str, str]) -> BackendConfig:
    from imageroll.providers.registry import backend_types

    raw = dict(raw)
    backend_type = raw.pop("type", None)
    if backend_type is None:
        raise ConfigurationError("[backend] table missing 'type' field")

    types = backend_types()
    cls = types.get(backend_type)
    if cls is None:
        raise ConfigurationError(
            f"Unknown backend type '{backend_type}'. Valid: {', '.join(types)}"
        )

    known = {f.name for f in dataclasses.fields(cls)}
    if unknown := sorted(set(raw) - known):
        raise ConfigurationError(
            f"Unknown {backend_type} backend field(s): {', '.join(unknown)}"
        )

    for name, var in cls.ENV.items():
        if not raw.get(name) and env.get(var):
            raw[name] = env[var]

    # TOML arrays arrive as lists; the config dataclasses are hashable.
    values = {k: tuple(v) if isinstance(v, list) else v for k, v in raw.items()}
    for f in dataclasses.fields(cls):
        if f.name in values:
            _check_type(f"[backend] {f.name}", values[f.name], _expected_type(f.default))

    return cls(**values)


def _expected_type(default: Any) -> type | tuple[type, ...]:
    match default:
        case None:
            return str
        case bool():
            return bool
        case float():
            return (int, float)
        case _:
            return type(default)


def _check_type(key: str, value: Any, expected: type | tuple[type, ...]) -> None:
    ok = isinstance(value, expected) and not (
        isinstance(value, bool) and expected is not bool
    )
    if ok and isinstance(value, tuple):
        ok = all(isinstance(item, str) for item in value)
    if not ok:
        names = expected if isinstance(expected, tuple) else (expected,)
        raise ConfigurationError(
            f"{key} must be {' or '.join(t.__name__ for t in names)}, got {value!r}"
        )


def resolve_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Load, merge and validate configuration into Settings.

    Top-level ``wait_attempts`` and ``wait_interval`` override the values
    in the ``[backend]`` table. Credential fields left empty are filled
    from the provider's standard environment variables.

    Raises:
        ConfigurationError: If the backend table is missing or invalid.
    """
    config = load_config(project_dir=project_dir, global_path=global_path)

    raw_backend = config.get("backend")
    if not isinstance(raw_backend, dict):
        raise ConfigurationError(
            f"No [backend] table found in {PROJECT_CONFIG_NAME} or {GLOBAL_CONFIG_PATH}"
        )
    raw_backend = dict(raw_backend)
    for key in _OVERRIDES:
        if key in config:
            raw_backend[key] = config[key]

    backend = _build_backend(raw_backend, os.environ if env is None else env)

    filter_kind = config.get("filter", "regex")
    if filter_kind not in FILTER_KINDS:
        raise ConfigurationError(
            f"Unknown filter kind '{filter_kind}'. Valid: {', '.join(FILTER_KINDS)}"
        )

    image = config.get("image")
    if image is not None:
        _check_type("image", image, str)
    deadline = config.get("deadline")
    if deadline is not None:
        _check_type("deadline", deadline, (int, float))
        if deadline <= 0:
            raise ConfigurationError(f"deadline must be positive, got {deadline!r}")

    try:
        logging = LogConfig(**config["logging"])
    except TypeError as e:
        raise ConfigurationError(f"invalid [logging] table: {e}") from e

    return Settings(
        backend=backend,
        image=image,
        deadline=deadline,
        filter_kind=filter_kind,
        logging=logging,
    )
