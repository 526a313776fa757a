"""
taskstore - runtime config loader.

File: src/taskstore/config/loader.py

Purpose
- Load effective store config from defaults, TOML file, env vars, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (TASKSTORE_) > file > defaults.
- TOML loading via ``tomllib`` from the ``[database]`` table.
- Deterministic environment variable mapping and coercion.
- Path normalization relative to config file location.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Final, Literal

from taskstore.config.schema import MEMORY_PATH, StoreConfig

DEFAULT_CONFIG_FILE: Final[str] = "taskstore.toml"
CONFIG_SECTION: Final[str] = "database"
ENV_PREFIX: Final[str] = "TASKSTORE_"
PATH_FIELDS: Final[tuple[str, ...]] = ("path", "backup_dir")

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

_ValueKind = Literal["str", "int", "float", "bool"]


@dataclass(frozen=True, slots=True)
class _Binding:
    field_name: str
    value_type: _ValueKind


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


_BINDINGS: Final[tuple[_Binding, ...]] = (
    _Binding("path", "str"),
    _Binding("timeout_ms", "int"),
    _Binding("verbose", "bool"),
    _Binding("wal_mode", "bool"),
    _Binding("foreign_keys", "bool"),
    _Binding("backup_enabled", "bool"),
    _Binding("backup_interval_hours", "float"),
    _Binding("backup_dir", "str"),
    _Binding("synchronous", "str"),
    _Binding("cache_size", "int"),
    _Binding("temp_store", "str"),
)


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> StoreConfig:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    explicit_path = config_path is not None
    env_map = dict(os.environ if environ is None else environ)

    file_payload = _load_toml_file(resolved_path, required=explicit_path)
    section = file_payload.get(CONFIG_SECTION, {})
    if not isinstance(section, Mapping):
        raise ConfigLoadError(f"[{CONFIG_SECTION}] must be a table in {resolved_path}")

    merged: dict[str, Any] = StoreConfig().to_dict()
    merged.update(normalize_paths(section, base_dir=resolved_path.parent))
    merged.update(_collect_env_overrides(env_map))
    merged.update(_materialize_cli_overrides(cli_overrides or {}))

    return StoreConfig.from_mapping(merged)


def normalize_paths(payload: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Normalize configured path fields relative to ``base_dir``."""

    materialized = dict(payload)
    for field_name in PATH_FIELDS:
        value = materialized.get(field_name)
        if isinstance(value, str) and value != MEMORY_PATH:
            materialized[field_name] = _normalize_one_path(value, base_dir)
    return materialized


def dump_effective_config(config: StoreConfig) -> str:
    """Return deterministic JSON dump of the effective config."""

    return json.dumps(config.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    return parsed


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for binding in _BINDINGS:
        env_name = _env_name_for_field(binding.field_name)
        raw = environ.get(env_name)
        if raw is None:
            continue
        overrides[binding.field_name] = _coerce_env(raw, binding.value_type, env_name)
    return overrides


def _coerce_env(raw: str, value_type: _ValueKind, env_name: str) -> object:
    value = raw.strip()
    if value_type == "str":
        return value
    if value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be an integer") from exc
    if value_type == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be a number") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    known = {item.name for item in fields(StoreConfig)}
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        name = key.removeprefix(f"{CONFIG_SECTION}.")
        if name not in known:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        payload[name] = value
    return payload


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    expanded = os.path.expandvars(raw)
    candidate = Path(expanded).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    normalized = Path(os.path.normpath(str(candidate)))
    return normalized.as_posix()


def _env_name_for_field(field_name: str) -> str:
    return ENV_PREFIX + field_name.upper()


__all__ = [
    "CONFIG_SECTION",
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
