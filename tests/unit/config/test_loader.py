"""
taskstore - unit tests for config loading and validation.

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Env var coercion and actionable errors.
- Path normalization relative to the config file.
- Structured validation issues for bad values and unknown keys.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from taskstore.config import (
    ConfigLoadError,
    ConfigValidationError,
    StoreConfig,
    default_config,
    dump_effective_config,
    load_config,
)


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    default_path = tmp_path / "empty.toml"
    config_path = tmp_path / "taskstore.toml"
    _write_config(default_path, "")
    _write_config(config_path, "[database]\ntimeout_ms = 2000\n")
    env = {"TASKSTORE_TIMEOUT_MS": "3000"}

    assert load_config(default_path, environ={}).timeout_ms == 10_000
    assert load_config(config_path, environ={}).timeout_ms == 2000
    assert load_config(config_path, environ=env).timeout_ms == 3000
    assert (
        load_config(config_path, environ=env, cli_overrides={"database.timeout_ms": 4000}).timeout_ms
        == 4000
    )
    assert load_config(config_path, environ=env, cli_overrides={"timeout_ms": None}).timeout_ms == (
        3000
    )


def test_env_overrides_are_coerced_by_field_type(tmp_path: Path) -> None:
    config_path = tmp_path / "taskstore.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "TASKSTORE_WAL_MODE": "off",
            "TASKSTORE_BACKUP_ENABLED": "No",
            "TASKSTORE_BACKUP_INTERVAL_HOURS": "0.5",
            "TASKSTORE_SYNCHRONOUS": " full ",
            "TASKSTORE_CACHE_SIZE": "-2000",
            "UNRELATED": "ignored",
        },
    )

    assert loaded.wal_mode is False
    assert loaded.backup_enabled is False
    assert loaded.backup_interval_hours == 0.5
    assert loaded.backup_interval_seconds == 1800.0
    assert loaded.synchronous == "FULL"
    assert loaded.cache_size == -2000


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("TASKSTORE_WAL_MODE", "maybe", "TASKSTORE_WAL_MODE must be a boolean"),
        ("TASKSTORE_TIMEOUT_MS", "soon", "TASKSTORE_TIMEOUT_MS must be an integer"),
        ("TASKSTORE_BACKUP_INTERVAL_HOURS", "daily", "must be a number"),
    ],
)
def test_invalid_env_coercion_raises_actionable_error(
    tmp_path: Path, name: str, value: str, message: str
) -> None:
    config_path = tmp_path / "taskstore.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match=message):
        load_config(config_path, environ={name: value})


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "taskstore.toml"
    _write_config(
        config_path,
        '[database]\npath = "../db/tasks.db"\nbackup_dir = "snapshots"\n',
    )

    loaded = load_config(config_path, environ={})
    base = config_path.resolve().parent

    assert loaded.path == (base.parent / "db" / "tasks.db").as_posix()
    assert loaded.backup_dir == (base / "snapshots").as_posix()


def test_memory_path_is_not_normalized(tmp_path: Path) -> None:
    config_path = tmp_path / "taskstore.toml"
    _write_config(config_path, '[database]\npath = ":memory:"\n')

    loaded = load_config(config_path, environ={})

    assert loaded.path == ":memory:"
    assert loaded.is_memory


def test_load_errors_are_explicit(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = tmp_path / "broken.toml"
    _write_config(broken, "[database\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})

    scalar = tmp_path / "scalar.toml"
    _write_config(scalar, "database = 3\n")
    with pytest.raises(ConfigLoadError, match=r"\[database\] must be a table"):
        load_config(scalar, environ={})

    plain = tmp_path / "plain.toml"
    _write_config(plain, "")
    with pytest.raises(ConfigLoadError, match="invalid CLI override key"):
        load_config(plain, environ={}, cli_overrides={"database.colour": "red"})


def test_unknown_file_keys_are_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "taskstore.toml"
    _write_config(config_path, "[database]\npool_size = 4\nretries = 2\n")

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    assert [issue.path for issue in excinfo.value.issues] == [
        "database.pool_size",
        "database.retries",
    ]


@pytest.mark.unit
def test_validation_reports_every_issue_at_once() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        StoreConfig(
            path=" ",
            timeout_ms=0,
            wal_mode="yes",  # type: ignore[arg-type]
            backup_interval_hours=float("inf"),
            synchronous="sometimes",
        )

    paths = [issue.path for issue in excinfo.value.issues]
    assert paths == [
        "database.path",
        "database.timeout_ms",
        "database.wal_mode",
        "database.backup_interval_hours",
        "database.synchronous",
    ]
    assert "- database.timeout_ms: must be > 0" in str(excinfo.value)


@pytest.mark.unit
def test_defaults_and_effective_dump_are_deterministic() -> None:
    config = default_config()

    assert config.path == "data/tasks.db"
    assert config.wal_mode and config.foreign_keys and config.backup_enabled
    assert config.backup_interval_hours == 24.0
    assert config.temp_store == "MEMORY"

    first = dump_effective_config(config)
    assert first == dump_effective_config(StoreConfig(temp_store="memory"))
    assert json.loads(first)["timeout_ms"] == 10_000
