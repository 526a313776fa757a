"""
taskstore - store configuration schema and validation.

File: src/taskstore/config/schema.py

Purpose
- Define the authoritative connection/backup settings and strict validation rules.

Functional requirements
- Validate every field up front and report all issues at once (field path + message).
- Settings are fixed for the lifetime of a store; there is no runtime reconfiguration.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, fields
from typing import Any, Final

from taskstore.constants import (
    DEFAULT_BACKUP_INTERVAL_HOURS,
    DEFAULT_CACHE_SIZE,
    DEFAULT_DB_PATH,
    DEFAULT_SYNCHRONOUS,
    DEFAULT_TEMP_STORE,
    DEFAULT_TIMEOUT_MS,
)

MEMORY_PATH: Final[str] = ":memory:"
SYNCHRONOUS_MODES: Final[tuple[str, ...]] = ("OFF", "NORMAL", "FULL", "EXTRA")
TEMP_STORE_MODES: Final[tuple[str, ...]] = ("DEFAULT", "FILE", "MEMORY")


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when store config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Connection, engine tuning and backup settings for one store."""

    path: str = DEFAULT_DB_PATH.as_posix()
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    verbose: bool = False
    wal_mode: bool = True
    foreign_keys: bool = True
    backup_enabled: bool = True
    backup_interval_hours: float = DEFAULT_BACKUP_INTERVAL_HOURS
    backup_dir: str | None = None
    synchronous: str = DEFAULT_SYNCHRONOUS
    cache_size: int = DEFAULT_CACHE_SIZE
    temp_store: str = DEFAULT_TEMP_STORE

    def __post_init__(self) -> None:
        issues = _IssueCollector()

        if not isinstance(self.path, str) or not self.path.strip():
            issues.add("database.path", "must be a non-empty string")
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int):
            issues.add("database.timeout_ms", "must be an integer")
        elif self.timeout_ms <= 0:
            issues.add("database.timeout_ms", "must be > 0")

        for name in ("verbose", "wal_mode", "foreign_keys", "backup_enabled"):
            if not isinstance(getattr(self, name), bool):
                issues.add(f"database.{name}", "must be a boolean")

        interval = self.backup_interval_hours
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            issues.add("database.backup_interval_hours", "must be a number")
        elif not math.isfinite(interval) or interval <= 0:
            issues.add("database.backup_interval_hours", "must be a finite number > 0")

        if self.backup_dir is not None and (
            not isinstance(self.backup_dir, str) or not self.backup_dir.strip()
        ):
            issues.add("database.backup_dir", "must be a non-empty string when set")

        if not isinstance(self.synchronous, str) or self.synchronous.upper() not in SYNCHRONOUS_MODES:
            issues.add("database.synchronous", f"must be one of {list(SYNCHRONOUS_MODES)}")
        if isinstance(self.cache_size, bool) or not isinstance(self.cache_size, int):
            issues.add("database.cache_size", "must be an integer")
        if not isinstance(self.temp_store, str) or self.temp_store.upper() not in TEMP_STORE_MODES:
            issues.add("database.temp_store", f"must be one of {list(TEMP_STORE_MODES)}")

        if issues.has_issues:
            raise ConfigValidationError(issues.items())

        object.__setattr__(self, "synchronous", self.synchronous.upper())
        object.__setattr__(self, "temp_store", self.temp_store.upper())
        object.__setattr__(self, "backup_interval_hours", float(interval))

    @property
    def is_memory(self) -> bool:
        return self.path == MEMORY_PATH

    @property
    def backup_interval_seconds(self) -> float:
        return self.backup_interval_hours * 3600.0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> StoreConfig:
        """Build from a ``[database]`` table, rejecting unknown keys."""

        known = {item.name for item in fields(cls)}
        unknown = sorted(key for key in payload if key not in known)
        if unknown:
            raise ConfigValidationError(
                [ConfigValidationIssue(f"database.{key}", "unknown field") for key in unknown]
            )
        return cls(**dict(payload))  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_config() -> StoreConfig:
    return StoreConfig()


__all__ = [
    "MEMORY_PATH",
    "SYNCHRONOUS_MODES",
    "TEMP_STORE_MODES",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "StoreConfig",
    "default_config",
]
