"""
taskstore - store facade

File: src/taskstore/store.py

Purpose
- Assemble one ``TaskStoreDB`` with its repositories and auditor behind a single
  handle owned by the caller.

Functional requirements
- No process-wide singleton: every caller constructs (and closes) its own store.
- Repository errors propagate unchanged; health/integrity operations report as data.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from taskstore.config.schema import StoreConfig
from taskstore.domain.models import (
    Attachment,
    DatabaseStats,
    HealthReport,
    HealthResult,
    IntegrityReport,
    Label,
    LabelWithCounts,
    ListWithCounts,
    Reminder,
    Subtask,
    Task,
    TaskHistoryEntry,
    TaskList,
    TaskWithDetails,
    User,
)
from taskstore.persistence.auditor import StoreAuditor
from taskstore.persistence.repositories import (
    AttachmentRepo,
    LabelRepo,
    ListRepo,
    ReminderRepo,
    SubtaskRepo,
    TaskHistoryRepo,
    TaskRepo,
    UserRepo,
)
from taskstore.persistence.state_db import TaskStoreDB
from taskstore.persistence.transaction import ManualTransaction

T = TypeVar("T")


class TaskStore:
    """Persistence API of the task manager.

    Repositories are reachable as attributes (``store.tasks``, ``store.lists``, ...);
    the most common operations are also exposed directly on the store.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        db: TaskStoreDB | None = None,
        logger: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db if db is not None else TaskStoreDB(config, logger=logger, clock=clock)
        self.users = UserRepo(self._db)
        self.lists = ListRepo(self._db)
        self.labels = LabelRepo(self._db)
        self.tasks = TaskRepo(self._db, labels=self.labels)
        self.subtasks = SubtaskRepo(self._db)
        self.reminders = ReminderRepo(self._db)
        self.attachments = AttachmentRepo(self._db)
        self.history = TaskHistoryRepo(self._db)
        self.auditor = StoreAuditor(self._db, logger=logger)

    @classmethod
    def open(cls, config: StoreConfig | None = None, **kwargs: Any) -> TaskStore:
        store = cls(config, **kwargs)
        store.initialize()
        return store

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def get_database(self) -> TaskStoreDB:
        return self._db

    def initialize(self) -> None:
        self._db.initialize()

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> TaskStore:
        self.initialize()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.close()

    def run_migrations(self) -> str:
        return self._db.run_migrations()

    def execute_transaction(self, operations: Sequence[Callable[[], T]]) -> list[T]:
        return self._db.execute_transaction(operations)

    def create_transaction(self) -> ManualTransaction:
        return self._db.create_transaction()

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    def health_check(self) -> HealthResult:
        return self.auditor.health_check()

    def perform_health_check(self) -> HealthReport:
        return self.auditor.perform_health_check()

    def get_database_stats(self) -> DatabaseStats:
        return self.auditor.get_database_stats()

    def integrity_test(self) -> IntegrityReport:
        return self.auditor.integrity_test()

    def create_backup(self, destination: str | Path | None = None) -> Path:
        return self._db.create_backup(destination)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def create_user(self, **fields: Any) -> User:
        return self.users.create(**fields)

    def get_user(self, user_id: str) -> User | None:
        return self.users.get(user_id)

    def update_user(self, user_id: str, patch: Mapping[str, object], caller_user_id: str) -> User:
        return self.users.update(user_id, patch, caller_user_id)

    def delete_user(self, user_id: str, caller_user_id: str) -> None:
        self.users.delete(user_id, caller_user_id)

    # ------------------------------------------------------------------
    # lists
    # ------------------------------------------------------------------

    def create_list(self, **fields: Any) -> TaskList:
        return self.lists.create(**fields)

    def get_list(self, list_id: str) -> TaskList | None:
        return self.lists.get(list_id)

    def get_list_with_details(self, list_id: str) -> ListWithCounts | None:
        return self.lists.get_with_counts(list_id)

    def get_user_lists(self, user_id: str) -> list[TaskList]:
        return self.lists.get_user_lists(user_id)

    def get_user_lists_with_counts(self, user_id: str) -> list[ListWithCounts]:
        return self.lists.get_user_lists_with_counts(user_id)

    def update_list(
        self, list_id: str, patch: Mapping[str, object], caller_user_id: str
    ) -> TaskList:
        return self.lists.update(list_id, patch, caller_user_id)

    def delete_list(
        self, list_id: str, caller_user_id: str, *, require_empty: bool = False
    ) -> None:
        self.lists.delete(list_id, caller_user_id, require_empty=require_empty)

    # ------------------------------------------------------------------
    # labels
    # ------------------------------------------------------------------

    def create_label(self, **fields: Any) -> Label:
        return self.labels.create(**fields)

    def get_label(self, label_id: str) -> Label | None:
        return self.labels.get(label_id)

    def get_user_labels(self, user_id: str) -> list[Label]:
        return self.labels.get_user_labels(user_id)

    def get_user_labels_with_counts(self, user_id: str) -> list[LabelWithCounts]:
        return self.labels.get_user_labels_with_counts(user_id)

    def update_label(self, label_id: str, patch: Mapping[str, object], caller_user_id: str) -> Label:
        return self.labels.update(label_id, patch, caller_user_id)

    def delete_label(self, label_id: str, caller_user_id: str) -> None:
        self.labels.delete(label_id, caller_user_id)

    # ------------------------------------------------------------------
    # tasks
    # ------------------------------------------------------------------

    def create_task(self, **fields: Any) -> Task:
        return self.tasks.create(**fields)

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def get_task_with_details(self, task_id: str) -> TaskWithDetails | None:
        return self.tasks.get_task_with_details(task_id)

    def get_user_tasks(self, user_id: str, **filters: Any) -> list[TaskWithDetails]:
        return self.tasks.get_user_tasks(user_id, **filters)

    def update_task(self, task_id: str, patch: Mapping[str, object], caller_user_id: str) -> Task:
        return self.tasks.update(task_id, patch, caller_user_id)

    def delete_task(self, task_id: str, caller_user_id: str) -> None:
        self.tasks.delete(task_id, caller_user_id)

    def get_task_history(self, task_id: str, *, limit: int = 50) -> list[TaskHistoryEntry]:
        return self.history.get_task_history(task_id, limit=limit)

    # ------------------------------------------------------------------
    # task children
    # ------------------------------------------------------------------

    def create_subtask(self, **fields: Any) -> Subtask:
        return self.subtasks.create(**fields)

    def get_subtasks(self, task_id: str) -> list[Subtask]:
        return self.subtasks.get_subtasks(task_id)

    def update_subtask(
        self, subtask_id: str, patch: Mapping[str, object], caller_user_id: str
    ) -> Subtask:
        return self.subtasks.update(subtask_id, patch, caller_user_id)

    def delete_subtask(self, subtask_id: str, caller_user_id: str) -> None:
        self.subtasks.delete(subtask_id, caller_user_id)

    def create_reminder(self, **fields: Any) -> Reminder:
        return self.reminders.create(**fields)

    def get_reminders(self, task_id: str) -> list[Reminder]:
        return self.reminders.get_reminders(task_id)

    def update_reminder(
        self, reminder_id: str, patch: Mapping[str, object], caller_user_id: str
    ) -> Reminder:
        return self.reminders.update(reminder_id, patch, caller_user_id)

    def delete_reminder(self, reminder_id: str, caller_user_id: str) -> None:
        self.reminders.delete(reminder_id, caller_user_id)

    def create_attachment(self, **fields: Any) -> Attachment:
        return self.attachments.create(**fields)

    def get_attachments(self, task_id: str) -> list[Attachment]:
        return self.attachments.get_attachments(task_id)

    def update_attachment(
        self, attachment_id: str, patch: Mapping[str, object], caller_user_id: str
    ) -> Attachment:
        return self.attachments.update(attachment_id, patch, caller_user_id)

    def delete_attachment(self, attachment_id: str, caller_user_id: str) -> None:
        self.attachments.delete(attachment_id, caller_user_id)


__all__ = ["TaskStore"]
