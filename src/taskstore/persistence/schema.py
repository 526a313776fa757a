"""
taskstore - schema registry

File: src/taskstore/persistence/schema.py

Purpose
- Declare every table, index and trigger of the task store as ordered, checksummed
  migration units.

Functional requirements
- Migrations are append-only; a new unit gets the next id and a higher semver.
- Enum CHECK constraints are generated from the domain enums so both sides agree.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Final

from taskstore.constants import (
    DEFAULT_LABEL_COLOR,
    DEFAULT_LABEL_ICON,
    DEFAULT_LIST_COLOR,
    DEFAULT_LIST_EMOJI,
    MIGRATIONS_TABLE,
    STORE_SCHEMA_VERSION,
)
from taskstore.domain.models import HistoryAction, Priority, ReminderMethod, TaskStatus

_NOW_SQL: Final[str] = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"


def _sql_enum(values: type[Enum]) -> str:
    return ", ".join(f"'{item.value}'" for item in values)


PRIORITY_VALUES: Final[tuple[str, ...]] = tuple(item.value for item in Priority)
STATUS_VALUES: Final[tuple[str, ...]] = tuple(item.value for item in TaskStatus)

MIGRATIONS_TABLE_SQL: Final[str] = f"""
CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_TABLE_STATEMENTS: Final[tuple[str, ...]] = (
    f"""
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        avatar TEXT,
        preferences TEXT NOT NULL DEFAULT '{{}}',
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        updated_at TEXT NOT NULL DEFAULT ({_NOW_SQL})
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS lists (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        color TEXT NOT NULL DEFAULT '{DEFAULT_LIST_COLOR}',
        emoji TEXT DEFAULT '{DEFAULT_LIST_EMOJI}',
        is_default INTEGER NOT NULL DEFAULT 0 CHECK (is_default IN (0, 1)),
        is_favorite INTEGER NOT NULL DEFAULT 0 CHECK (is_favorite IN (0, 1)),
        description TEXT,
        position INTEGER NOT NULL DEFAULT 0 CHECK (position >= 0),
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        updated_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE (user_id, name) ON CONFLICT IGNORE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS labels (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        icon TEXT DEFAULT '{DEFAULT_LABEL_ICON}',
        color TEXT NOT NULL DEFAULT '{DEFAULT_LABEL_COLOR}',
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        updated_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE (user_id, name) ON CONFLICT IGNORE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        date TEXT,
        deadline TEXT,
        estimate TEXT,
        actual_time TEXT,
        priority TEXT NOT NULL DEFAULT '{Priority.NONE.value}'
            CHECK (priority IN ({_sql_enum(Priority)})),
        status TEXT NOT NULL DEFAULT '{TaskStatus.TODO.value}'
            CHECK (status IN ({_sql_enum(TaskStatus)})),
        user_id TEXT NOT NULL,
        list_id TEXT NOT NULL,
        parent_task_id TEXT,
        position INTEGER NOT NULL DEFAULT 0 CHECK (position >= 0),
        is_recurring INTEGER NOT NULL DEFAULT 0 CHECK (is_recurring IN (0, 1)),
        recurring_pattern TEXT,
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        updated_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (list_id) REFERENCES lists(id) ON DELETE CASCADE,
        FOREIGN KEY (parent_task_id) REFERENCES tasks(id) ON DELETE CASCADE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS task_labels (
        task_id TEXT NOT NULL,
        label_id TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        PRIMARY KEY (task_id, label_id),
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE,
        FOREIGN KEY (label_id) REFERENCES labels(id) ON DELETE CASCADE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS subtasks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        is_completed INTEGER NOT NULL DEFAULT 0 CHECK (is_completed IN (0, 1)),
        task_id TEXT NOT NULL,
        position INTEGER NOT NULL DEFAULT 0 CHECK (position >= 0),
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        updated_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS reminders (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        remind_at TEXT NOT NULL,
        is_sent INTEGER NOT NULL DEFAULT 0 CHECK (is_sent IN (0, 1)),
        method TEXT NOT NULL DEFAULT '{ReminderMethod.PUSH.value}'
            CHECK (method IN ({_sql_enum(ReminderMethod)})),
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        updated_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
    )
    """,
    # No foreign key on task_id: `deleted` entries outlive their task.
    f"""
    CREATE TABLE IF NOT EXISTS task_history (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        action TEXT NOT NULL CHECK (action IN ({_sql_enum(HistoryAction)})),
        changed_by TEXT NOT NULL,
        changes TEXT NOT NULL DEFAULT '{{}}',
        description TEXT,
        created_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        FOREIGN KEY (changed_by) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS attachments (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        filename TEXT NOT NULL,
        original_name TEXT NOT NULL,
        mime_type TEXT NOT NULL,
        size INTEGER NOT NULL CHECK (size > 0),
        path TEXT NOT NULL,
        uploaded_at TEXT NOT NULL DEFAULT ({_NOW_SQL}),
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
    )
    """,
)

INDEX_DEFINITIONS: Final[tuple[tuple[str, str], ...]] = (
    ("idx_tasks_user_id", "tasks(user_id)"),
    ("idx_tasks_list_id", "tasks(list_id)"),
    ("idx_tasks_parent_id", "tasks(parent_task_id)"),
    ("idx_tasks_status", "tasks(status)"),
    ("idx_tasks_priority", "tasks(priority)"),
    ("idx_tasks_date", "tasks(date)"),
    ("idx_tasks_deadline", "tasks(deadline)"),
    ("idx_tasks_user_status", "tasks(user_id, status)"),
    ("idx_tasks_user_list", "tasks(user_id, list_id)"),
    ("idx_tasks_position", "tasks(list_id, position)"),
    ("idx_subtasks_task_id", "subtasks(task_id)"),
    ("idx_subtasks_position", "subtasks(task_id, position)"),
    ("idx_reminders_task_id", "reminders(task_id)"),
    ("idx_reminders_remind_at", "reminders(remind_at)"),
    ("idx_reminders_is_sent", "reminders(is_sent)"),
    ("idx_task_history_task_id", "task_history(task_id)"),
    ("idx_task_history_created_at", "task_history(created_at)"),
    ("idx_task_history_action", "task_history(action)"),
    ("idx_attachments_task_id", "attachments(task_id)"),
    ("idx_attachments_uploaded_at", "attachments(uploaded_at)"),
    ("idx_labels_user_id", "labels(user_id)"),
    ("idx_lists_user_id", "lists(user_id)"),
    ("idx_lists_is_default", "lists(is_default)"),
)

REQUIRED_INDEXES: Final[tuple[str, ...]] = tuple(name for name, _ in INDEX_DEFINITIONS)

_INDEX_STATEMENTS: Final[tuple[str, ...]] = tuple(
    f"CREATE INDEX IF NOT EXISTS {name} ON {target}" for name, target in INDEX_DEFINITIONS
)

TIMESTAMPED_TABLES: Final[tuple[str, ...]] = (
    "users",
    "lists",
    "labels",
    "tasks",
    "subtasks",
    "reminders",
)

_TRIGGER_STATEMENTS: Final[tuple[str, ...]] = tuple(
    f"""
    CREATE TRIGGER IF NOT EXISTS update_{table}_updated_at
    AFTER UPDATE ON {table}
    FOR EACH ROW WHEN NEW.updated_at = OLD.updated_at
    BEGIN
        UPDATE {table} SET updated_at = {_NOW_SQL} WHERE id = NEW.id;
    END
    """
    for table in TIMESTAMPED_TABLES
)

_MIGRATION_001_STATEMENTS: Final[tuple[str, ...]] = (
    *_TABLE_STATEMENTS,
    *_INDEX_STATEMENTS,
    *_TRIGGER_STATEMENTS,
)


@dataclass(frozen=True, slots=True)
class Migration:
    id: str
    name: str
    version: str
    statements: tuple[str, ...]
    checksum: str


def migration_checksum(migration_id: str, name: str, statements: Sequence[str]) -> str:
    digest = hashlib.sha256()
    digest.update(f"{migration_id}:{name}\n".encode())
    for statement in statements:
        normalized = "\n".join(line.rstrip() for line in statement.strip().splitlines())
        digest.update(normalized.encode("utf-8"))
        digest.update(b"\n--\n")
    return digest.hexdigest()


def _migration(migration_id: str, name: str, version: str, statements: tuple[str, ...]) -> Migration:
    return Migration(
        id=migration_id,
        name=name,
        version=version,
        statements=statements,
        checksum=migration_checksum(migration_id, name, statements),
    )


MIGRATIONS: Final[tuple[Migration, ...]] = (
    _migration(
        "001_initial_schema",
        "Create initial database schema",
        STORE_SCHEMA_VERSION,
        _MIGRATION_001_STATEMENTS,
    ),
)


def parse_version(version: str) -> tuple[int, ...]:
    """Semver-ish key for ordering ledger versions (``"1.10.0" > "1.9.0"``)."""

    parts: list[int] = []
    for part in version.strip().split("."):
        digits = "".join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def latest_version() -> str:
    return max((item.version for item in MIGRATIONS), key=parse_version)


__all__ = [
    "INDEX_DEFINITIONS",
    "MIGRATIONS",
    "MIGRATIONS_TABLE_SQL",
    "PRIORITY_VALUES",
    "REQUIRED_INDEXES",
    "STATUS_VALUES",
    "TIMESTAMPED_TABLES",
    "Migration",
    "latest_version",
    "migration_checksum",
    "parse_version",
]
