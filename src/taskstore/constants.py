"""Stable constants shared across the task store."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema version for the embedded store (semver, recorded in the ledger).
STORE_SCHEMA_VERSION: Final[str] = "1.0.0"
MIGRATIONS_TABLE: Final[str] = "schema_migrations"

# Default runtime settings (overridable through config).
DEFAULT_DB_PATH: Final[PurePosixPath] = PurePosixPath("data/tasks.db")
DEFAULT_TIMEOUT_MS: Final[int] = 10_000
DEFAULT_BACKUP_INTERVAL_HOURS: Final[float] = 24.0
DEFAULT_SYNCHRONOUS: Final[str] = "NORMAL"
DEFAULT_CACHE_SIZE: Final[int] = 32_768
DEFAULT_TEMP_STORE: Final[str] = "MEMORY"

BACKUP_FILE_PREFIX: Final[str] = "backup_tasks_"
BACKUP_FILE_SUFFIX: Final[str] = ".db"

# Default list every user owns; never deletable.
DEFAULT_LIST_NAME: Final[str] = "Inbox"
DEFAULT_LIST_COLOR: Final[str] = "#3B82F6"
DEFAULT_LIST_EMOJI: Final[str] = "📋"
DEFAULT_LABEL_COLOR: Final[str] = "#6B7280"
DEFAULT_LABEL_ICON: Final[str] = "🏷️"

REQUIRED_TABLES: Final[tuple[str, ...]] = (
    "users",
    "lists",
    "tasks",
    "labels",
    "task_labels",
    "subtasks",
    "reminders",
    "task_history",
    "attachments",
)

__all__ = [
    "BACKUP_FILE_PREFIX",
    "BACKUP_FILE_SUFFIX",
    "DEFAULT_BACKUP_INTERVAL_HOURS",
    "DEFAULT_CACHE_SIZE",
    "DEFAULT_DB_PATH",
    "DEFAULT_LABEL_COLOR",
    "DEFAULT_LABEL_ICON",
    "DEFAULT_LIST_COLOR",
    "DEFAULT_LIST_EMOJI",
    "DEFAULT_LIST_NAME",
    "DEFAULT_SYNCHRONOUS",
    "DEFAULT_TEMP_STORE",
    "DEFAULT_TIMEOUT_MS",
    "MIGRATIONS_TABLE",
    "REQUIRED_TABLES",
    "STORE_SCHEMA_VERSION",
]
