"""
taskstore - repositories

File: src/taskstore/persistence/repositories.py

Purpose
- Typed CRUD for users, lists, labels, tasks, subtasks, reminders, attachments and
  task history on top of ``TaskStoreDB``.

What should be included in this file
- Records are built (and therefore validated) before any row is written.
- Ownership checks for every mutation, done here rather than by the engine.
- Task history appended by the repository on create, update and delete.

Functional requirements
- Duplicate list/label names per user are ignored; the existing row is returned.
- Every user owns exactly one default ``Inbox`` list, which cannot be deleted or renamed.
- Deletes cascade through foreign keys; each removed task leaves a ``deleted`` entry.
"""

from __future__ import annotations

import json
import sqlite3
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import fields, replace
from datetime import datetime
from enum import Enum
from typing import Final, TypeVar, cast

import structlog

from taskstore.constants import DEFAULT_LIST_COLOR, DEFAULT_LIST_EMOJI, DEFAULT_LIST_NAME
from taskstore.constants import DEFAULT_LABEL_COLOR, DEFAULT_LABEL_ICON
from taskstore.domain import ids
from taskstore.domain.models import (
    Attachment,
    HistoryAction,
    JSONValue,
    Label,
    LabelWithCounts,
    ListWithCounts,
    Priority,
    RecurringPattern,
    Reminder,
    ReminderMethod,
    Subtask,
    Task,
    TaskHistoryEntry,
    TaskList,
    TaskStatus,
    TaskWithDetails,
    User,
    UserPreferences,
    as_json_value,
    canonical_json,
    datetime_to_iso8601z,
)
from taskstore.errors import ForbiddenError, NotFoundError, PreconditionFailed, ValidationError
from taskstore.persistence.state_db import Row, SQLParams, SQLValue, TaskStoreDB

TRecord = TypeVar("TRecord")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_PAGE_SIZE: Final[int] = 1_000
_IN_CLAUSE_CHUNK: Final[int] = 500

_USER_UPDATABLE: Final[frozenset[str]] = frozenset({"name", "avatar", "preferences"})
_LIST_UPDATABLE: Final[frozenset[str]] = frozenset(
    {"name", "color", "emoji", "description", "is_favorite", "position"}
)
_LABEL_UPDATABLE: Final[frozenset[str]] = frozenset({"name", "icon", "color"})
_TASK_UPDATABLE: Final[frozenset[str]] = frozenset(
    {
        "name",
        "description",
        "date",
        "deadline",
        "estimate",
        "actual_time",
        "priority",
        "status",
        "list_id",
        "parent_task_id",
        "position",
        "is_recurring",
        "recurring_pattern",
    }
)
_SUBTASK_UPDATABLE: Final[frozenset[str]] = frozenset({"name", "is_completed", "position"})
_REMINDER_UPDATABLE: Final[frozenset[str]] = frozenset({"remind_at", "method", "is_sent"})
_ATTACHMENT_UPDATABLE: Final[frozenset[str]] = frozenset(
    {"filename", "original_name", "mime_type", "path"}
)


class _BaseRepo:
    def __init__(self, db: TaskStoreDB) -> None:
        self._db = db
        self._logger = structlog.get_logger(__name__)

    @staticmethod
    def _validate_limit(limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError("limit must be an integer")
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")

    def _query(self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None) -> list[Row]:
        return self._db.query(sql, params, conn=conn)

    def _query_one(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None
    ) -> Row | None:
        return self._db.query_one(sql, params, conn=conn)

    def _query_in(
        self,
        sql_template: str,
        values: Sequence[str],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Row]:
        """Run ``sql_template`` (one ``{placeholders}`` slot) over ``values`` in chunks."""

        rows: list[Row] = []
        for start in range(0, len(values), _IN_CLAUSE_CHUNK):
            chunk = values[start : start + _IN_CLAUSE_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            rows.extend(
                self._query(sql_template.format(placeholders=placeholders), tuple(chunk), conn=conn)
            )
        return rows

    def _next_position(
        self, table: str, column: str, owner_id: str, *, conn: sqlite3.Connection
    ) -> int:
        row = self._query_one(
            f"SELECT COALESCE(MAX(position) + 1, 0) AS next_position FROM {table} WHERE {column} = ?",
            (owner_id,),
            conn=conn,
        )
        return 0 if row is None else _int(row, "next_position")

    def _name_taken(
        self, table: str, user_id: str, name: str, exclude_id: str, *, conn: sqlite3.Connection
    ) -> bool:
        row = self._query_one(
            f"SELECT 1 FROM {table} WHERE user_id = ? AND name = ? AND id != ?",
            (user_id, name, exclude_id),
            conn=conn,
        )
        return row is not None

    def _require_user(self, user_id: str, *, conn: sqlite3.Connection | None = None) -> None:
        if self._query_one("SELECT 1 FROM users WHERE id = ?", (user_id,), conn=conn) is None:
            raise NotFoundError(f"user not found: {user_id}")

    def _owned_task(
        self, task_id: str, caller_user_id: str, *, conn: sqlite3.Connection | None = None
    ) -> Task:
        row = self._query_one("SELECT * FROM tasks WHERE id = ?", (task_id,), conn=conn)
        if row is None:
            raise NotFoundError(f"task not found: {task_id}")
        task = _task_from_row(row)
        _check_owner(task.user_id, caller_user_id, "task", task_id)
        return task

    def _owned_list(
        self, list_id: str, caller_user_id: str, *, conn: sqlite3.Connection | None = None
    ) -> TaskList:
        row = self._query_one("SELECT * FROM lists WHERE id = ?", (list_id,), conn=conn)
        if row is None:
            raise NotFoundError(f"list not found: {list_id}")
        task_list = _list_from_row(row)
        _check_owner(task_list.user_id, caller_user_id, "list", list_id)
        return task_list

    def _owned_label(
        self, label_id: str, caller_user_id: str, *, conn: sqlite3.Connection | None = None
    ) -> Label:
        row = self._query_one("SELECT * FROM labels WHERE id = ?", (label_id,), conn=conn)
        if row is None:
            raise NotFoundError(f"label not found: {label_id}")
        label = _label_from_row(row)
        _check_owner(label.user_id, caller_user_id, "label", label_id)
        return label

    def _append_history(
        self,
        conn: sqlite3.Connection,
        *,
        task_id: str,
        action: HistoryAction,
        changed_by: str,
        changes: Mapping[str, object],
        description: str | None = None,
    ) -> TaskHistoryEntry:
        entry = TaskHistoryEntry(
            id=ids.generate_history_id(),
            task_id=task_id,
            action=action,
            changed_by=changed_by,
            changes=cast("dict[str, JSONValue]", as_json_value(dict(changes), "changes")),
            description=description,
            created_at=self._db.now_iso(),
        )
        self._db.execute(
            """
            INSERT INTO task_history (id, task_id, action, changed_by, changes, description, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.task_id,
                str(entry.action),
                entry.changed_by,
                canonical_json(entry.changes),
                entry.description,
                datetime_to_iso8601z(entry.created_at),
            ),
            conn=conn,
        )
        return entry

    def _record_deletions(
        self,
        conn: sqlite3.Connection,
        rows: Sequence[Row],
        *,
        changed_by: str,
        reason: str,
    ) -> None:
        for row in rows:
            self._append_history(
                conn,
                task_id=_text(row, "id"),
                action=HistoryAction.DELETED,
                changed_by=changed_by,
                changes={"name": _text(row, "name"), "list_id": _text(row, "list_id")},
                description=reason,
            )


class UserRepo(_BaseRepo):
    """Users and their default Inbox."""

    def create(
        self,
        *,
        name: str,
        email: str,
        avatar: str | None = None,
        preferences: UserPreferences | Mapping[str, object] | None = None,
    ) -> User:
        now = self._db.now_iso()
        user = User(
            id=ids.generate_user_id(),
            name=name,
            email=email,
            avatar=avatar,
            preferences=cast(
                "UserPreferences", preferences if preferences is not None else UserPreferences()
            ),
            created_at=now,  # type: ignore[arg-type]
            updated_at=now,  # type: ignore[arg-type]
        )
        inbox = TaskList(
            id=ids.generate_list_id(),
            name=DEFAULT_LIST_NAME,
            user_id=user.id,
            color=DEFAULT_LIST_COLOR,
            emoji=DEFAULT_LIST_EMOJI,
            is_default=True,
            created_at=now,  # type: ignore[arg-type]
            updated_at=now,  # type: ignore[arg-type]
        )

        with self._db.transaction() as conn:
            if self._find_by_email(user.email, conn=conn) is not None:
                raise ValidationError(
                    f"User.email: already registered: {user.email}", code="DUPLICATE_EMAIL"
                )
            self._db.execute(
                """
                INSERT INTO users (id, name, email, avatar, preferences, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.name,
                    user.email,
                    user.avatar,
                    user.preferences.to_json(),
                    now,
                    now,
                ),
                conn=conn,
            )
            _insert_list(self._db, conn, inbox)
        return user

    def get(self, user_id: str) -> User | None:
        row = self._query_one("SELECT * FROM users WHERE id = ?", (user_id,), conn=None)
        return None if row is None else _user_from_row(row)

    def get_by_email(self, email: str) -> User | None:
        return self._find_by_email(email.strip(), conn=None)

    def update(self, user_id: str, patch: Mapping[str, object], caller_user_id: str) -> User:
        with self._db.transaction() as conn:
            row = self._query_one("SELECT * FROM users WHERE id = ?", (user_id,), conn=conn)
            if row is None:
                raise NotFoundError(f"user not found: {user_id}")
            current = _user_from_row(row)
            _check_owner(current.id, caller_user_id, "user", user_id)
            updated = _patched(current, patch, _USER_UPDATABLE, "User", self._db.now_iso())
            self._db.execute(
                """
                UPDATE users SET name = ?, avatar = ?, preferences = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.name,
                    updated.avatar,
                    updated.preferences.to_json(),
                    datetime_to_iso8601z(updated.updated_at),
                    user_id,
                ),
                conn=conn,
            )
            reloaded = self._query_one("SELECT * FROM users WHERE id = ?", (user_id,), conn=conn)
        return _user_from_row(_present(reloaded, "user", user_id))

    def delete(self, user_id: str, caller_user_id: str) -> None:
        """Remove the user; lists, labels, tasks and history go with it."""

        with self._db.transaction() as conn:
            row = self._query_one("SELECT id FROM users WHERE id = ?", (user_id,), conn=conn)
            if row is None:
                raise NotFoundError(f"user not found: {user_id}")
            _check_owner(user_id, caller_user_id, "user", user_id)
            self._db.execute("DELETE FROM users WHERE id = ?", (user_id,), conn=conn)
        self._logger.info("user_deleted", user_id=user_id)

    def _find_by_email(self, email: str, *, conn: sqlite3.Connection | None) -> User | None:
        row = self._query_one("SELECT * FROM users WHERE email = ?", (email,), conn=conn)
        return None if row is None else _user_from_row(row)


class ListRepo(_BaseRepo):
    """Task lists; names are unique per user with ignore-on-duplicate semantics."""

    def create(
        self,
        *,
        user_id: str,
        name: str,
        color: str = DEFAULT_LIST_COLOR,
        emoji: str | None = DEFAULT_LIST_EMOJI,
        description: str | None = None,
        is_favorite: bool = False,
        position: int | None = None,
    ) -> TaskList:
        now = self._db.now_iso()
        candidate = TaskList(
            id=ids.generate_list_id(),
            name=name,
            user_id=user_id,
            color=color,
            emoji=emoji,
            description=description,
            is_favorite=is_favorite,
            position=position if position is not None else 0,
            created_at=now,  # type: ignore[arg-type]
            updated_at=now,  # type: ignore[arg-type]
        )
        with self._db.transaction() as conn:
            self._require_user(user_id, conn=conn)
            if position is None:
                candidate = replace(
                    candidate,
                    position=self._next_position("lists", "user_id", user_id, conn=conn),
                )
            _insert_list(self._db, conn, candidate)
            row = self._query_one(
                "SELECT * FROM lists WHERE user_id = ? AND name = ?",
                (candidate.user_id, candidate.name),
                conn=conn,
            )
        stored = _list_from_row(_present(row, "list", candidate.id))
        if stored.id != candidate.id:
            self._logger.debug("list_duplicate_ignored", user_id=user_id, list_id=stored.id)
        return stored

    def get(self, list_id: str) -> TaskList | None:
        row = self._query_one("SELECT * FROM lists WHERE id = ?", (list_id,), conn=None)
        return None if row is None else _list_from_row(row)

    def get_default_list(self, user_id: str) -> TaskList | None:
        row = self._query_one(
            "SELECT * FROM lists WHERE user_id = ? AND is_default = 1 ORDER BY created_at LIMIT 1",
            (user_id,),
            conn=None,
        )
        return None if row is None else _list_from_row(row)

    def get_user_lists(self, user_id: str) -> list[TaskList]:
        rows = self._query(
            """
            SELECT * FROM lists WHERE user_id = ?
            ORDER BY is_default DESC, position ASC, name ASC
            """,
            (user_id,),
            conn=None,
        )
        return [_list_from_row(row) for row in rows]

    def get_with_counts(self, list_id: str) -> ListWithCounts | None:
        rows = self._counted_lists("l.id = ?", (list_id,))
        return rows[0] if rows else None

    def get_user_lists_with_counts(self, user_id: str) -> list[ListWithCounts]:
        return self._counted_lists("l.user_id = ?", (user_id,))

    def update(self, list_id: str, patch: Mapping[str, object], caller_user_id: str) -> TaskList:
        with self._db.transaction() as conn:
            current = self._owned_list(list_id, caller_user_id, conn=conn)
            updated = _patched(current, patch, _LIST_UPDATABLE, "TaskList", self._db.now_iso())
            if current.is_default and updated.name != current.name:
                raise PreconditionFailed(
                    f"the default list {current.name!r} cannot be renamed",
                    code="CANNOT_RENAME_INBOX",
                )
            # Only the name yields to an existing sibling; the rest of the patch still applies.
            if updated.name != current.name and self._name_taken(
                "lists", current.user_id, updated.name, list_id, conn=conn
            ):
                self._logger.debug("list_rename_skipped", list_id=list_id, name=updated.name)
                updated = replace(updated, name=current.name)
            self._db.execute(
                """
                UPDATE lists
                SET name = ?, color = ?, emoji = ?, description = ?, is_favorite = ?,
                    position = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.name,
                    updated.color,
                    updated.emoji,
                    updated.description,
                    int(updated.is_favorite),
                    updated.position,
                    datetime_to_iso8601z(updated.updated_at),
                    list_id,
                ),
                conn=conn,
            )
            row = self._query_one("SELECT * FROM lists WHERE id = ?", (list_id,), conn=conn)
        return _list_from_row(_present(row, "list", list_id))

    def delete(self, list_id: str, caller_user_id: str, *, require_empty: bool = False) -> None:
        """Delete a list and every task in it. The Inbox never goes.

        With ``require_empty=True`` a list that still holds tasks is refused with
        ``LIST_HAS_TASKS`` instead.
        """

        with self._db.transaction() as conn:
            current = self._owned_list(list_id, caller_user_id, conn=conn)
            if current.is_default:
                raise PreconditionFailed(
                    f"the default list {current.name!r} cannot be deleted",
                    code="CANNOT_DELETE_INBOX",
                )
            doomed = self._query(
                """
                WITH RECURSIVE tree(id) AS (
                    SELECT id FROM tasks WHERE list_id = ?
                    UNION
                    SELECT child.id FROM tasks child JOIN tree ON child.parent_task_id = tree.id
                )
                SELECT tasks.id, tasks.name, tasks.list_id
                FROM tasks JOIN tree ON tasks.id = tree.id
                """,
                (list_id,),
                conn=conn,
            )
            if doomed and require_empty:
                raise PreconditionFailed(
                    f"list {list_id} still contains {len(doomed)} task(s)",
                    code="LIST_HAS_TASKS",
                )
            self._record_deletions(
                conn, doomed, changed_by=caller_user_id, reason=f"List {current.name} deleted"
            )
            self._db.execute("DELETE FROM lists WHERE id = ?", (list_id,), conn=conn)
        self._logger.info("list_deleted", list_id=list_id, cascaded_tasks=len(doomed))

    def _counted_lists(self, where: str, params: SQLParams) -> list[ListWithCounts]:
        rows = self._query(
            f"""
            SELECT l.*,
                   COUNT(t.id) AS task_count,
                   COALESCE(SUM(CASE WHEN t.status = 'done' THEN 1 ELSE 0 END), 0)
                       AS completed_task_count
            FROM lists l
            LEFT JOIN tasks t ON t.list_id = l.id
            WHERE {where}
            GROUP BY l.id
            ORDER BY l.is_default DESC, l.position ASC, l.name ASC
            """,
            params,
            conn=None,
        )
        return [
            ListWithCounts(
                task_list=_list_from_row(row),
                task_count=_int(row, "task_count"),
                completed_task_count=_int(row, "completed_task_count"),
            )
            for row in rows
        ]


class LabelRepo(_BaseRepo):
    """Labels and task/label links."""

    def create(
        self,
        *,
        user_id: str,
        name: str,
        color: str = DEFAULT_LABEL_COLOR,
        icon: str | None = DEFAULT_LABEL_ICON,
    ) -> Label:
        now = self._db.now_iso()
        candidate = Label(
            id=ids.generate_label_id(),
            name=name,
            user_id=user_id,
            color=color,
            icon=icon,
            created_at=now,  # type: ignore[arg-type]
            updated_at=now,  # type: ignore[arg-type]
        )
        with self._db.transaction() as conn:
            self._require_user(user_id, conn=conn)
            self._db.execute(
                """
                INSERT INTO labels (id, name, icon, color, user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    candidate.id,
                    candidate.name,
                    candidate.icon,
                    candidate.color,
                    candidate.user_id,
                    now,
                    now,
                ),
                conn=conn,
            )
            row = self._query_one(
                "SELECT * FROM labels WHERE user_id = ? AND name = ?",
                (candidate.user_id, candidate.name),
                conn=conn,
            )
        stored = _label_from_row(_present(row, "label", candidate.id))
        if stored.id != candidate.id:
            self._logger.debug("label_duplicate_ignored", user_id=user_id, label_id=stored.id)
        return stored

    def get(self, label_id: str) -> Label | None:
        row = self._query_one("SELECT * FROM labels WHERE id = ?", (label_id,), conn=None)
        return None if row is None else _label_from_row(row)

    def get_user_labels(self, user_id: str) -> list[Label]:
        rows = self._query(
            "SELECT * FROM labels WHERE user_id = ? ORDER BY name ASC", (user_id,), conn=None
        )
        return [_label_from_row(row) for row in rows]

    def get_user_labels_with_counts(self, user_id: str) -> list[LabelWithCounts]:
        rows = self._query(
            """
            SELECT lb.*, COUNT(tl.task_id) AS task_count
            FROM labels lb
            LEFT JOIN task_labels tl ON tl.label_id = lb.id
            WHERE lb.user_id = ?
            GROUP BY lb.id
            ORDER BY lb.name ASC
            """,
            (user_id,),
            conn=None,
        )
        return [
            LabelWithCounts(label=_label_from_row(row), task_count=_int(row, "task_count"))
            for row in rows
        ]

    def update(self, label_id: str, patch: Mapping[str, object], caller_user_id: str) -> Label:
        with self._db.transaction() as conn:
            current = self._owned_label(label_id, caller_user_id, conn=conn)
            updated = _patched(current, patch, _LABEL_UPDATABLE, "Label", self._db.now_iso())
            if updated.name != current.name and self._name_taken(
                "labels", current.user_id, updated.name, label_id, conn=conn
            ):
                self._logger.debug("label_rename_skipped", label_id=label_id, name=updated.name)
                updated = replace(updated, name=current.name)
            self._db.execute(
                "UPDATE labels SET name = ?, icon = ?, color = ?, updated_at = ? WHERE id = ?",
                (
                    updated.name,
                    updated.icon,
                    updated.color,
                    datetime_to_iso8601z(updated.updated_at),
                    label_id,
                ),
                conn=conn,
            )
            row = self._query_one("SELECT * FROM labels WHERE id = ?", (label_id,), conn=conn)
        return _label_from_row(_present(row, "label", label_id))

    def delete(self, label_id: str, caller_user_id: str) -> None:
        with self._db.transaction() as conn:
            self._owned_label(label_id, caller_user_id, conn=conn)
            self._db.execute("DELETE FROM labels WHERE id = ?", (label_id,), conn=conn)

    def add_label_to_task(self, task_id: str, label_id: str, caller_user_id: str) -> None:
        """Link a label to a task; linking twice is a no-op."""

        with self._db.transaction() as conn:
            self._link(conn, task_id, label_id, caller_user_id)

    def remove_label_from_task(self, task_id: str, label_id: str, caller_user_id: str) -> bool:
        with self._db.transaction() as conn:
            self._owned_task(task_id, caller_user_id, conn=conn)
            removed = self._db.execute(
                "DELETE FROM task_labels WHERE task_id = ? AND label_id = ?",
                (task_id, label_id),
                conn=conn,
            )
        return removed > 0

    def get_task_labels(self, task_id: str) -> list[Label]:
        rows = self._query(
            """
            SELECT lb.* FROM labels lb
            JOIN task_labels tl ON tl.label_id = lb.id
            WHERE tl.task_id = ?
            ORDER BY lb.name ASC
            """,
            (task_id,),
            conn=None,
        )
        return [_label_from_row(row) for row in rows]

    def _link(
        self, conn: sqlite3.Connection, task_id: str, label_id: str, caller_user_id: str
    ) -> None:
        self._owned_task(task_id, caller_user_id, conn=conn)
        self._owned_label(label_id, caller_user_id, conn=conn)
        self._db.execute(
            "INSERT OR IGNORE INTO task_labels (task_id, label_id, created_at) VALUES (?, ?, ?)",
            (task_id, label_id, self._db.now_iso()),
            conn=conn,
        )


class TaskHistoryRepo(_BaseRepo):
    """Read side of the append-only task audit log."""

    def get_task_history(self, task_id: str, *, limit: int = 50) -> list[TaskHistoryEntry]:
        self._validate_limit(limit)
        rows = self._query(
            """
            SELECT * FROM task_history WHERE task_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (task_id, limit),
            conn=None,
        )
        return [_history_from_row(row) for row in rows]


class TaskRepo(_BaseRepo):
    """Tasks, their filters and detail views."""

    def __init__(self, db: TaskStoreDB, *, labels: LabelRepo | None = None) -> None:
        super().__init__(db)
        self._labels = labels if labels is not None else LabelRepo(db)

    def create(
        self,
        *,
        user_id: str,
        list_id: str,
        name: str,
        description: str | None = None,
        date: datetime | str | None = None,
        deadline: datetime | str | None = None,
        estimate: str | None = None,
        actual_time: str | None = None,
        priority: Priority | str = Priority.NONE,
        status: TaskStatus | str = TaskStatus.TODO,
        parent_task_id: str | None = None,
        position: int | None = None,
        is_recurring: bool = False,
        recurring_pattern: RecurringPattern | Mapping[str, object] | None = None,
        label_ids: Sequence[str] = (),
    ) -> Task:
        now = self._db.now_iso()
        task = Task(
            id=ids.generate_task_id(),
            name=name,
            user_id=user_id,
            list_id=list_id,
            description=description,
            date=date,  # type: ignore[arg-type]
            deadline=deadline,  # type: ignore[arg-type]
            estimate=estimate,
            actual_time=actual_time,
            priority=priority,
            status=status,
            parent_task_id=parent_task_id,
            position=position if position is not None else 0,
            is_recurring=is_recurring,
            recurring_pattern=recurring_pattern,  # type: ignore[arg-type]
            created_at=now,  # type: ignore[arg-type]
            updated_at=now,  # type: ignore[arg-type]
        )

        with self._db.transaction() as conn:
            self._require_user(task.user_id, conn=conn)
            self._owned_list(task.list_id, task.user_id, conn=conn)
            if task.parent_task_id is not None:
                self._owned_task(task.parent_task_id, task.user_id, conn=conn)
            if position is None:
                task = replace(
                    task, position=self._next_position("tasks", "list_id", task.list_id, conn=conn)
                )
            self._db.execute(
                f"INSERT INTO tasks ({_TASK_COLUMNS_SQL}) VALUES ({_TASK_PLACEHOLDERS_SQL})",
                _task_params(task),
                conn=conn,
            )
            for label_id in label_ids:
                self._labels._link(conn, task.id, label_id, task.user_id)
            self._append_history(
                conn,
                task_id=task.id,
                action=HistoryAction.CREATED,
                changed_by=task.user_id,
                changes={
                    "name": task.name,
                    "list_id": task.list_id,
                    "status": task.status,
                    "priority": task.priority,
                },
                description="Task created",
            )
        return task

    def get(self, task_id: str) -> Task | None:
        row = self._query_one("SELECT * FROM tasks WHERE id = ?", (task_id,), conn=None)
        return None if row is None else _task_from_row(row)

    def get_task_with_details(self, task_id: str) -> TaskWithDetails | None:
        task = self.get(task_id)
        if task is None:
            return None
        return self._with_details([task])[0]

    def get_tasks_by_list(self, list_id: str) -> list[Task]:
        rows = self._query(
            "SELECT * FROM tasks WHERE list_id = ? ORDER BY position ASC, created_at ASC, id ASC",
            (list_id,),
            conn=None,
        )
        return [_task_from_row(row) for row in rows]

    def get_user_tasks(
        self,
        user_id: str,
        *,
        list_id: str | None = None,
        status: TaskStatus | str | Iterable[TaskStatus | str] | None = None,
        priority: Priority | str | Iterable[Priority | str] | None = None,
        label_ids: Iterable[str] | None = None,
        date_from: datetime | str | None = None,
        date_to: datetime | str | None = None,
        search: str | None = None,
    ) -> list[TaskWithDetails]:
        """All of a user's tasks, narrowed by the given filters, in list/position order."""

        clauses = ["t.user_id = ?"]
        params: list[SQLValue] = [user_id]
        # An empty membership filter matches nothing.
        matches_nothing = False
        if list_id is not None:
            clauses.append("t.list_id = ?")
            params.append(list_id)
        for column, enum_type, value in (
            ("status", TaskStatus, status),
            ("priority", Priority, priority),
        ):
            if value is None:
                continue
            allowed = _enum_values(enum_type, value, column)
            matches_nothing = matches_nothing or not allowed
            clauses.append(f"t.{column} IN ({', '.join('?' for _ in allowed)})")
            params.extend(allowed)
        if label_ids is not None:
            wanted = sorted(set(label_ids))
            matches_nothing = matches_nothing or not wanted
            clauses.append(
                "EXISTS (SELECT 1 FROM task_labels tl WHERE tl.task_id = t.id "
                f"AND tl.label_id IN ({', '.join('?' for _ in wanted)}))"
            )
            params.extend(wanted)
        if date_from is not None:
            clauses.append("t.date >= ?")
            params.append(_iso(date_from, "date_from"))
        if date_to is not None:
            clauses.append("t.date <= ?")
            params.append(_iso(date_to, "date_to"))
        if search is not None and search.strip():
            clauses.append("LOWER(t.name) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(search.strip().lower())}%")
        if matches_nothing:
            return []

        rows = self._query(
            f"""
            SELECT t.* FROM tasks t
            WHERE {' AND '.join(clauses)}
            ORDER BY t.list_id ASC, t.position ASC, t.created_at ASC, t.id ASC
            """,
            tuple(params),
            conn=None,
        )
        return self._with_details([_task_from_row(row) for row in rows])

    def update(self, task_id: str, patch: Mapping[str, object], caller_user_id: str) -> Task:
        with self._db.transaction() as conn:
            current = self._owned_task(task_id, caller_user_id, conn=conn)
            updated = _patched(current, patch, _TASK_UPDATABLE, "Task", self._db.now_iso())

            if updated.list_id != current.list_id:
                self._owned_list(updated.list_id, caller_user_id, conn=conn)
            if updated.parent_task_id is not None and updated.parent_task_id != current.parent_task_id:
                self._owned_task(updated.parent_task_id, caller_user_id, conn=conn)
                self._assert_no_cycle(task_id, updated.parent_task_id, conn=conn)

            self._db.execute(
                f"UPDATE tasks SET {_TASK_UPDATE_SQL} WHERE id = ?",
                (*_task_params(updated)[1:], task_id),
                conn=conn,
            )
            self._log_changes(conn, current, updated, sorted(patch), caller_user_id)
            row = self._query_one("SELECT * FROM tasks WHERE id = ?", (task_id,), conn=conn)
        return _task_from_row(_present(row, "task", task_id))

    def delete(self, task_id: str, caller_user_id: str) -> None:
        """Delete a task and its subtree; every removed task gets a ``deleted`` entry."""

        with self._db.transaction() as conn:
            self._owned_task(task_id, caller_user_id, conn=conn)
            doomed = self._query(
                """
                WITH RECURSIVE tree(id) AS (
                    SELECT id FROM tasks WHERE id = ?
                    UNION
                    SELECT child.id FROM tasks child JOIN tree ON child.parent_task_id = tree.id
                )
                SELECT tasks.id, tasks.name, tasks.list_id
                FROM tasks JOIN tree ON tasks.id = tree.id
                """,
                (task_id,),
                conn=conn,
            )
            self._record_deletions(conn, doomed, changed_by=caller_user_id, reason="Task deleted")
            self._db.execute("DELETE FROM tasks WHERE id = ?", (task_id,), conn=conn)

    def _assert_no_cycle(self, task_id: str, parent_id: str, *, conn: sqlite3.Connection) -> None:
        if parent_id == task_id:
            raise ValidationError("Task.parent_task_id: task cannot be its own parent")
        rows = self._query(
            """
            WITH RECURSIVE ancestors(id, parent_id) AS (
                SELECT id, parent_task_id FROM tasks WHERE id = ?
                UNION
                SELECT t.id, t.parent_task_id FROM tasks t JOIN ancestors a ON t.id = a.parent_id
            )
            SELECT id FROM ancestors
            """,
            (parent_id,),
            conn=conn,
        )
        if any(row["id"] == task_id for row in rows):
            raise ValidationError(
                f"Task.parent_task_id: {parent_id} is a descendant of {task_id}"
            )

    def _log_changes(
        self,
        conn: sqlite3.Connection,
        before: Task,
        after: Task,
        field_names: Sequence[str],
        changed_by: str,
    ) -> None:
        for field_name in field_names:
            old_value = getattr(before, field_name)
            new_value = getattr(after, field_name)
            if field_name == "status" or old_value == new_value:
                continue
            self._append_history(
                conn,
                task_id=after.id,
                action=HistoryAction.UPDATED,
                changed_by=changed_by,
                changes={"field": field_name, "old_value": old_value, "new_value": new_value},
                description=f"Updated {field_name}",
            )

        if before.status == after.status:
            return
        status_change = {"old_value": before.status, "new_value": after.status}
        self._append_history(
            conn,
            task_id=after.id,
            action=HistoryAction.STATUS_CHANGED,
            changed_by=changed_by,
            changes=status_change,
            description=f"Status changed from {before.status} to {after.status}",
        )
        if after.status is TaskStatus.DONE:
            self._append_history(
                conn,
                task_id=after.id,
                action=HistoryAction.COMPLETED,
                changed_by=changed_by,
                changes=status_change,
                description="Task completed",
            )
        elif before.status is TaskStatus.DONE:
            self._append_history(
                conn,
                task_id=after.id,
                action=HistoryAction.UNCOMPLETED,
                changed_by=changed_by,
                changes=status_change,
                description="Task reopened",
            )

    def _with_details(self, tasks: Sequence[Task]) -> list[TaskWithDetails]:
        if not tasks:
            return []
        task_ids = [task.id for task in tasks]
        list_ids = sorted({task.list_id for task in tasks})

        lists = {
            row["id"]: _list_from_row(row)
            for row in self._query_in("SELECT * FROM lists WHERE id IN ({placeholders})", list_ids)
        }
        labels: dict[str, list[Label]] = defaultdict(list)
        for row in self._query_in(
            """
            SELECT tl.task_id AS link_task_id, lb.* FROM task_labels tl
            JOIN labels lb ON lb.id = tl.label_id
            WHERE tl.task_id IN ({placeholders})
            ORDER BY lb.name ASC
            """,
            task_ids,
        ):
            labels[_text(row, "link_task_id")].append(_label_from_row(row))
        subtasks: dict[str, list[Subtask]] = defaultdict(list)
        for row in self._query_in(
            """
            SELECT * FROM subtasks WHERE task_id IN ({placeholders})
            ORDER BY position ASC, created_at ASC, id ASC
            """,
            task_ids,
        ):
            subtasks[_text(row, "task_id")].append(_subtask_from_row(row))
        reminders: dict[str, list[Reminder]] = defaultdict(list)
        for row in self._query_in(
            """
            SELECT * FROM reminders WHERE task_id IN ({placeholders})
            ORDER BY remind_at ASC, id ASC
            """,
            task_ids,
        ):
            reminders[_text(row, "task_id")].append(_reminder_from_row(row))
        attachments: dict[str, list[Attachment]] = defaultdict(list)
        for row in self._query_in(
            """
            SELECT * FROM attachments WHERE task_id IN ({placeholders})
            ORDER BY uploaded_at ASC, id ASC
            """,
            task_ids,
        ):
            attachments[_text(row, "task_id")].append(_attachment_from_row(row))

        return [
            TaskWithDetails(
                task=task,
                task_list=lists.get(task.list_id),
                labels=tuple(labels[task.id]),
                subtasks=tuple(subtasks[task.id]),
                reminders=tuple(reminders[task.id]),
                attachments=tuple(attachments[task.id]),
            )
            for task in tasks
        ]


class SubtaskRepo(_BaseRepo):
    """Checklist items; ownership follows the parent task."""

    def create(
        self,
        *,
        task_id: str,
        caller_user_id: str,
        name: str,
        is_completed: bool = False,
        position: int | None = None,
    ) -> Subtask:
        now = self._db.now_iso()
        subtask = Subtask(
            id=ids.generate_subtask_id(),
            name=name,
            task_id=task_id,
            is_completed=is_completed,
            position=position if position is not None else 0,
            created_at=now,  # type: ignore[arg-type]
            updated_at=now,  # type: ignore[arg-type]
        )
        with self._db.transaction() as conn:
            self._owned_task(task_id, caller_user_id, conn=conn)
            if position is None:
                subtask = replace(
                    subtask, position=self._next_position("subtasks", "task_id", task_id, conn=conn)
                )
            self._db.execute(
                """
                INSERT INTO subtasks (id, name, is_completed, task_id, position, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subtask.id,
                    subtask.name,
                    int(subtask.is_completed),
                    subtask.task_id,
                    subtask.position,
                    now,
                    now,
                ),
                conn=conn,
            )
        return subtask

    def get(self, subtask_id: str) -> Subtask | None:
        row = self._query_one("SELECT * FROM subtasks WHERE id = ?", (subtask_id,), conn=None)
        return None if row is None else _subtask_from_row(row)

    def get_subtasks(self, task_id: str) -> list[Subtask]:
        rows = self._query(
            """
            SELECT * FROM subtasks WHERE task_id = ?
            ORDER BY position ASC, created_at ASC, id ASC
            """,
            (task_id,),
            conn=None,
        )
        return [_subtask_from_row(row) for row in rows]

    def update(self, subtask_id: str, patch: Mapping[str, object], caller_user_id: str) -> Subtask:
        with self._db.transaction() as conn:
            current = self._owned_subtask(subtask_id, caller_user_id, conn=conn)
            updated = _patched(current, patch, _SUBTASK_UPDATABLE, "Subtask", self._db.now_iso())
            self._db.execute(
                """
                UPDATE subtasks SET name = ?, is_completed = ?, position = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.name,
                    int(updated.is_completed),
                    updated.position,
                    datetime_to_iso8601z(updated.updated_at),
                    subtask_id,
                ),
                conn=conn,
            )
            row = self._query_one("SELECT * FROM subtasks WHERE id = ?", (subtask_id,), conn=conn)
        return _subtask_from_row(_present(row, "subtask", subtask_id))

    def delete(self, subtask_id: str, caller_user_id: str) -> None:
        with self._db.transaction() as conn:
            self._owned_subtask(subtask_id, caller_user_id, conn=conn)
            self._db.execute("DELETE FROM subtasks WHERE id = ?", (subtask_id,), conn=conn)

    def _owned_subtask(
        self, subtask_id: str, caller_user_id: str, *, conn: sqlite3.Connection
    ) -> Subtask:
        row = self._query_one("SELECT * FROM subtasks WHERE id = ?", (subtask_id,), conn=conn)
        if row is None:
            raise NotFoundError(f"subtask not found: {subtask_id}")
        subtask = _subtask_from_row(row)
        self._owned_task(subtask.task_id, caller_user_id, conn=conn)
        return subtask


class ReminderRepo(_BaseRepo):
    """Reminders; ``remind_at`` must lie in the future when set by a caller."""

    def create(
        self,
        *,
        task_id: str,
        caller_user_id: str,
        remind_at: datetime | str,
        method: ReminderMethod | str = ReminderMethod.PUSH,
    ) -> Reminder:
        now = self._db.now_iso()
        reminder = Reminder(
            id=ids.generate_reminder_id(),
            task_id=task_id,
            remind_at=remind_at,  # type: ignore[arg-type]
            method=method,
            created_at=now,  # type: ignore[arg-type]
            updated_at=now,  # type: ignore[arg-type]
        )
        self._require_future(reminder.remind_at)
        remind_at_iso = datetime_to_iso8601z(reminder.remind_at)

        with self._db.transaction() as conn:
            self._owned_task(task_id, caller_user_id, conn=conn)
            duplicate = self._query_one(
                "SELECT id FROM reminders WHERE task_id = ? AND remind_at = ? AND method = ?",
                (task_id, remind_at_iso, str(reminder.method)),
                conn=conn,
            )
            if duplicate is not None:
                raise ValidationError(
                    "Reminder: a reminder with the same time and method already exists",
                    code="DUPLICATE_REMINDER",
                )
            self._db.execute(
                """
                INSERT INTO reminders (id, task_id, remind_at, is_sent, method, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?, ?)
                """,
                (reminder.id, task_id, remind_at_iso, str(reminder.method), now, now),
                conn=conn,
            )
        return reminder

    def get(self, reminder_id: str) -> Reminder | None:
        row = self._query_one("SELECT * FROM reminders WHERE id = ?", (reminder_id,), conn=None)
        return None if row is None else _reminder_from_row(row)

    def get_reminders(self, task_id: str) -> list[Reminder]:
        rows = self._query(
            "SELECT * FROM reminders WHERE task_id = ? ORDER BY remind_at ASC, id ASC",
            (task_id,),
            conn=None,
        )
        return [_reminder_from_row(row) for row in rows]

    def get_pending_reminders(
        self, *, limit: int = 100, now: datetime | None = None
    ) -> list[Reminder]:
        """Unsent reminders that are due, skipping tasks already done."""

        self._validate_limit(limit)
        cutoff = datetime_to_iso8601z(now if now is not None else self._db.now())
        rows = self._query(
            """
            SELECT r.* FROM reminders r
            JOIN tasks t ON t.id = r.task_id
            WHERE r.is_sent = 0 AND r.remind_at <= ? AND t.status <> ?
            ORDER BY r.remind_at ASC, r.id ASC
            LIMIT ?
            """,
            (cutoff, TaskStatus.DONE.value, limit),
            conn=None,
        )
        return [_reminder_from_row(row) for row in rows]

    def mark_reminder_sent(self, reminder_id: str) -> Reminder:
        with self._db.transaction() as conn:
            changed = self._db.execute(
                "UPDATE reminders SET is_sent = 1, updated_at = ? WHERE id = ?",
                (self._db.now_iso(), reminder_id),
                conn=conn,
            )
            if changed == 0:
                raise NotFoundError(f"reminder not found: {reminder_id}")
            row = self._query_one("SELECT * FROM reminders WHERE id = ?", (reminder_id,), conn=conn)
        return _reminder_from_row(_present(row, "reminder", reminder_id))

    def update(
        self, reminder_id: str, patch: Mapping[str, object], caller_user_id: str
    ) -> Reminder:
        with self._db.transaction() as conn:
            current = self._owned_reminder(reminder_id, caller_user_id, conn=conn)
            updated = _patched(current, patch, _REMINDER_UPDATABLE, "Reminder", self._db.now_iso())
            if updated.remind_at != current.remind_at:
                self._require_future(updated.remind_at)
            self._db.execute(
                """
                UPDATE reminders SET remind_at = ?, method = ?, is_sent = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    datetime_to_iso8601z(updated.remind_at),
                    str(updated.method),
                    int(updated.is_sent),
                    datetime_to_iso8601z(updated.updated_at),
                    reminder_id,
                ),
                conn=conn,
            )
            row = self._query_one("SELECT * FROM reminders WHERE id = ?", (reminder_id,), conn=conn)
        return _reminder_from_row(_present(row, "reminder", reminder_id))

    def delete(self, reminder_id: str, caller_user_id: str) -> None:
        with self._db.transaction() as conn:
            self._owned_reminder(reminder_id, caller_user_id, conn=conn)
            self._db.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,), conn=conn)

    def _require_future(self, remind_at: datetime) -> None:
        if remind_at <= self._db.now():
            raise ValidationError("Reminder.remind_at: must be in the future")

    def _owned_reminder(
        self, reminder_id: str, caller_user_id: str, *, conn: sqlite3.Connection
    ) -> Reminder:
        row = self._query_one("SELECT * FROM reminders WHERE id = ?", (reminder_id,), conn=conn)
        if row is None:
            raise NotFoundError(f"reminder not found: {reminder_id}")
        reminder = _reminder_from_row(row)
        self._owned_task(reminder.task_id, caller_user_id, conn=conn)
        return reminder


class AttachmentRepo(_BaseRepo):
    """File references attached to tasks."""

    def create(
        self,
        *,
        task_id: str,
        caller_user_id: str,
        filename: str,
        original_name: str,
        mime_type: str,
        size: int,
        path: str,
    ) -> Attachment:
        now = self._db.now_iso()
        attachment = Attachment(
            id=ids.generate_attachment_id(),
            task_id=task_id,
            filename=filename,
            original_name=original_name,
            mime_type=mime_type,
            size=size,
            path=path,
            uploaded_at=now,  # type: ignore[arg-type]
        )
        with self._db.transaction() as conn:
            self._owned_task(task_id, caller_user_id, conn=conn)
            self._db.execute(
                """
                INSERT INTO attachments
                    (id, task_id, filename, original_name, mime_type, size, path, uploaded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    attachment.id,
                    attachment.task_id,
                    attachment.filename,
                    attachment.original_name,
                    attachment.mime_type,
                    attachment.size,
                    attachment.path,
                    now,
                ),
                conn=conn,
            )
        return attachment

    def get(self, attachment_id: str) -> Attachment | None:
        row = self._query_one("SELECT * FROM attachments WHERE id = ?", (attachment_id,), conn=None)
        return None if row is None else _attachment_from_row(row)

    def get_attachments(self, task_id: str) -> list[Attachment]:
        rows = self._query(
            "SELECT * FROM attachments WHERE task_id = ? ORDER BY uploaded_at ASC, id ASC",
            (task_id,),
            conn=None,
        )
        return [_attachment_from_row(row) for row in rows]

    def update(
        self, attachment_id: str, patch: Mapping[str, object], caller_user_id: str
    ) -> Attachment:
        with self._db.transaction() as conn:
            current = self._owned_attachment(attachment_id, caller_user_id, conn=conn)
            updated = _patched(current, patch, _ATTACHMENT_UPDATABLE, "Attachment", None)
            self._db.execute(
                """
                UPDATE attachments SET filename = ?, original_name = ?, mime_type = ?, path = ?
                WHERE id = ?
                """,
                (
                    updated.filename,
                    updated.original_name,
                    updated.mime_type,
                    updated.path,
                    attachment_id,
                ),
                conn=conn,
            )
        return updated

    def delete(self, attachment_id: str, caller_user_id: str) -> None:
        with self._db.transaction() as conn:
            self._owned_attachment(attachment_id, caller_user_id, conn=conn)
            self._db.execute("DELETE FROM attachments WHERE id = ?", (attachment_id,), conn=conn)

    def _owned_attachment(
        self, attachment_id: str, caller_user_id: str, *, conn: sqlite3.Connection
    ) -> Attachment:
        row = self._query_one("SELECT * FROM attachments WHERE id = ?", (attachment_id,), conn=conn)
        if row is None:
            raise NotFoundError(f"attachment not found: {attachment_id}")
        attachment = _attachment_from_row(row)
        self._owned_task(attachment.task_id, caller_user_id, conn=conn)
        return attachment


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

_TASK_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "name",
    "description",
    "date",
    "deadline",
    "estimate",
    "actual_time",
    "priority",
    "status",
    "user_id",
    "list_id",
    "parent_task_id",
    "position",
    "is_recurring",
    "recurring_pattern",
    "created_at",
    "updated_at",
)
_TASK_COLUMNS_SQL: Final[str] = ", ".join(_TASK_COLUMNS)
_TASK_PLACEHOLDERS_SQL: Final[str] = ", ".join("?" for _ in _TASK_COLUMNS)
_TASK_UPDATE_SQL: Final[str] = ", ".join(f"{column} = ?" for column in _TASK_COLUMNS[1:])


def _task_params(task: Task) -> tuple[SQLValue, ...]:
    return (
        task.id,
        task.name,
        task.description,
        _iso_or_none(task.date),
        _iso_or_none(task.deadline),
        task.estimate,
        task.actual_time,
        str(task.priority),
        str(task.status),
        task.user_id,
        task.list_id,
        task.parent_task_id,
        task.position,
        int(task.is_recurring),
        task.recurring_pattern.to_json() if task.recurring_pattern is not None else None,
        datetime_to_iso8601z(task.created_at),
        datetime_to_iso8601z(task.updated_at),
    )


def _insert_list(db: TaskStoreDB, conn: sqlite3.Connection, task_list: TaskList) -> None:
    db.execute(
        """
        INSERT INTO lists
            (id, name, color, emoji, is_default, is_favorite, description, position, user_id,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            task_list.id,
            task_list.name,
            task_list.color,
            task_list.emoji,
            int(task_list.is_default),
            int(task_list.is_favorite),
            task_list.description,
            task_list.position,
            task_list.user_id,
            datetime_to_iso8601z(task_list.created_at),
            datetime_to_iso8601z(task_list.updated_at),
        ),
        conn=conn,
    )


def _user_from_row(row: Row) -> User:
    return User(
        id=_text(row, "id"),
        name=_text(row, "name"),
        email=_text(row, "email"),
        avatar=_opt_text(row, "avatar"),
        preferences=_text(row, "preferences"),  # type: ignore[arg-type]
        created_at=_text(row, "created_at"),  # type: ignore[arg-type]
        updated_at=_text(row, "updated_at"),  # type: ignore[arg-type]
    )


def _list_from_row(row: Row) -> TaskList:
    return TaskList(
        id=_text(row, "id"),
        name=_text(row, "name"),
        user_id=_text(row, "user_id"),
        color=_text(row, "color"),
        emoji=_opt_text(row, "emoji"),
        is_default=_flag(row, "is_default"),
        is_favorite=_flag(row, "is_favorite"),
        description=_opt_text(row, "description"),
        position=_int(row, "position"),
        created_at=_text(row, "created_at"),  # type: ignore[arg-type]
        updated_at=_text(row, "updated_at"),  # type: ignore[arg-type]
    )


def _label_from_row(row: Row) -> Label:
    return Label(
        id=_text(row, "id"),
        name=_text(row, "name"),
        user_id=_text(row, "user_id"),
        icon=_opt_text(row, "icon"),
        color=_text(row, "color"),
        created_at=_text(row, "created_at"),  # type: ignore[arg-type]
        updated_at=_text(row, "updated_at"),  # type: ignore[arg-type]
    )


def _task_from_row(row: Row) -> Task:
    return Task(
        id=_text(row, "id"),
        name=_text(row, "name"),
        user_id=_text(row, "user_id"),
        list_id=_text(row, "list_id"),
        description=_opt_text(row, "description"),
        date=_opt_text(row, "date"),  # type: ignore[arg-type]
        deadline=_opt_text(row, "deadline"),  # type: ignore[arg-type]
        estimate=_opt_text(row, "estimate"),
        actual_time=_opt_text(row, "actual_time"),
        priority=_text(row, "priority"),
        status=_text(row, "status"),
        parent_task_id=_opt_text(row, "parent_task_id"),
        position=_int(row, "position"),
        is_recurring=_flag(row, "is_recurring"),
        recurring_pattern=_opt_text(row, "recurring_pattern"),  # type: ignore[arg-type]
        created_at=_text(row, "created_at"),  # type: ignore[arg-type]
        updated_at=_text(row, "updated_at"),  # type: ignore[arg-type]
    )


def _subtask_from_row(row: Row) -> Subtask:
    return Subtask(
        id=_text(row, "id"),
        name=_text(row, "name"),
        task_id=_text(row, "task_id"),
        is_completed=_flag(row, "is_completed"),
        position=_int(row, "position"),
        created_at=_text(row, "created_at"),  # type: ignore[arg-type]
        updated_at=_text(row, "updated_at"),  # type: ignore[arg-type]
    )


def _reminder_from_row(row: Row) -> Reminder:
    return Reminder(
        id=_text(row, "id"),
        task_id=_text(row, "task_id"),
        remind_at=_text(row, "remind_at"),  # type: ignore[arg-type]
        is_sent=_flag(row, "is_sent"),
        method=_text(row, "method"),
        created_at=_text(row, "created_at"),  # type: ignore[arg-type]
        updated_at=_text(row, "updated_at"),  # type: ignore[arg-type]
    )


def _attachment_from_row(row: Row) -> Attachment:
    return Attachment(
        id=_text(row, "id"),
        task_id=_text(row, "task_id"),
        filename=_text(row, "filename"),
        original_name=_text(row, "original_name"),
        mime_type=_text(row, "mime_type"),
        size=_int(row, "size"),
        path=_text(row, "path"),
        uploaded_at=_text(row, "uploaded_at"),  # type: ignore[arg-type]
    )


def _history_from_row(row: Row) -> TaskHistoryEntry:
    return TaskHistoryEntry(
        id=_text(row, "id"),
        task_id=_text(row, "task_id"),
        action=_text(row, "action"),
        changed_by=_text(row, "changed_by"),
        changes=json.loads(_text(row, "changes")),
        description=_opt_text(row, "description"),
        created_at=_text(row, "created_at"),  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_owner(owner_id: str, caller_user_id: str, entity: str, entity_id: str) -> None:
    if owner_id != caller_user_id:
        raise ForbiddenError(f"{entity} {entity_id} is not owned by user {caller_user_id}")


def _present(row: Row | None, entity: str, entity_id: str) -> Row:
    if row is None:
        raise NotFoundError(f"{entity} not found: {entity_id}")
    return row


def _patched(
    record: TRecord,
    patch: Mapping[str, object],
    allowed: frozenset[str],
    entity: str,
    now: str | None,
) -> TRecord:
    """Return ``record`` with ``patch`` applied; the record re-validates itself."""

    if not isinstance(patch, Mapping):
        raise ValidationError(f"{entity}: patch must be an object")
    unknown = sorted(str(key) for key in patch if key not in allowed)
    if unknown:
        raise ValidationError(f"{entity}: fields cannot be updated: {unknown}")
    changes: dict[str, object] = dict(patch)
    if now is not None and "updated_at" in {item.name for item in fields(record)}:  # type: ignore[arg-type]
        changes["updated_at"] = now
    return replace(record, **changes)  # type: ignore[type-var]


def _enum_values(enum_type: type[TEnum], value: object, path: str) -> tuple[str, ...]:
    candidates: Iterable[object]
    if isinstance(value, (str, Enum)):
        candidates = (value,)
    elif isinstance(value, Iterable):
        candidates = value
    else:
        raise ValidationError(f"{path}: expected a value or a collection of values")

    parsed: list[str] = []
    for item in candidates:
        try:
            parsed.append(str(enum_type(item).value))
        except ValueError:
            allowed = ", ".join(str(member.value) for member in enum_type)
            raise ValidationError(
                f"{path}: invalid value {item!r}; expected one of: {allowed}"
            ) from None
    return tuple(dict.fromkeys(parsed))


def _iso(value: datetime | str, path: str) -> str:
    try:
        return datetime_to_iso8601z(value)  # type: ignore[arg-type]
    except ValidationError as exc:
        raise ValidationError(f"{path}: {exc}") from exc


def _iso_or_none(value: datetime | None) -> str | None:
    return None if value is None else datetime_to_iso8601z(value)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _text(row: Row, key: str) -> str:
    value = row[key]
    if not isinstance(value, str):
        raise ValidationError(f"column {key} must be text, got {type(value).__name__}")
    return value


def _opt_text(row: Row, key: str) -> str | None:
    value = row[key]
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"column {key} must be text, got {type(value).__name__}")
    return value


def _int(row: Row, key: str) -> int:
    value = row[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"column {key} must be an integer, got {type(value).__name__}")
    return value


def _flag(row: Row, key: str) -> bool:
    return _int(row, key) != 0


__all__ = [
    "AttachmentRepo",
    "LabelRepo",
    "ListRepo",
    "ReminderRepo",
    "SubtaskRepo",
    "TaskHistoryRepo",
    "TaskRepo",
    "UserRepo",
]
