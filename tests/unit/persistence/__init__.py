"""Shared deterministic fixtures and builders for persistence tests."""

from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Final

from taskstore.config.schema import StoreConfig
from taskstore.domain.models import Label, Task, TaskList, User
from taskstore.store import TaskStore

if TYPE_CHECKING:
    from pathlib import Path

_BASE_TS: Final[datetime] = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def fixed_now(seed: int) -> datetime:
    return _BASE_TS + timedelta(seconds=seed)


class TickingClock:
    """Deterministic clock advancing one millisecond per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start if start is not None else _BASE_TS
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self._current += timedelta(milliseconds=1)
            return self._current

    def peek(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta) -> None:
        with self._lock:
            self._current += delta


def store_config(tmp_path: Path, **overrides: Any) -> StoreConfig:
    payload: dict[str, Any] = {
        "path": (tmp_path / "data" / "tasks.db").as_posix(),
        "backup_enabled": False,
    }
    payload.update(overrides)
    return StoreConfig(**payload)


def open_store(
    tmp_path: Path, *, clock: TickingClock | None = None, **overrides: Any
) -> TaskStore:
    return TaskStore.open(
        store_config(tmp_path, **overrides),
        clock=clock if clock is not None else TickingClock(),
    )


def make_user(store: TaskStore, seed: int, **fields: Any) -> User:
    payload: dict[str, Any] = {"name": f"User {seed}", "email": f"user{seed}@example.com"}
    payload.update(fields)
    return store.users.create(**payload)


def inbox_of(store: TaskStore, user: User) -> TaskList:
    inbox = store.lists.get_default_list(user.id)
    assert inbox is not None
    return inbox


def make_list(store: TaskStore, user: User, name: str = "Work", **fields: Any) -> TaskList:
    return store.lists.create(user_id=user.id, name=name, **fields)


def make_label(store: TaskStore, user: User, name: str = "urgent", **fields: Any) -> Label:
    return store.labels.create(user_id=user.id, name=name, **fields)


def make_task(
    store: TaskStore,
    user: User,
    name: str = "Buy milk",
    *,
    task_list: TaskList | None = None,
    **fields: Any,
) -> Task:
    target = task_list if task_list is not None else inbox_of(store, user)
    return store.tasks.create(user_id=user.id, list_id=target.id, name=name, **fields)


def count_rows(store: TaskStore, table: str) -> int:
    row = store.get_database().query_one(f"SELECT COUNT(*) AS n FROM {table}")
    assert row is not None
    value = row["n"]
    assert isinstance(value, int)
    return value


def raw_connection(tmp_path: Path) -> sqlite3.Connection:
    """Unmanaged connection used to plant drift the store itself would refuse."""

    conn = sqlite3.connect(tmp_path / "data" / "tasks.db", isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn
