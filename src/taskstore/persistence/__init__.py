"""
taskstore - persistence layer

File: src/taskstore/persistence/__init__.py

Purpose
- Persistence layer: connection manager, migrations, repositories, auditor and backups.

Functional requirements
- Must keep every multi-row write atomic and every foreign key enforced.
"""

from taskstore.persistence.auditor import StoreAuditor
from taskstore.persistence.backup import BackupScheduler
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
from taskstore.persistence.state_db import MigrationRecord, MigrationStatus, TaskStoreDB
from taskstore.persistence.transaction import ManualTransaction

__all__ = [
    "AttachmentRepo",
    "BackupScheduler",
    "LabelRepo",
    "ListRepo",
    "ManualTransaction",
    "MigrationRecord",
    "MigrationStatus",
    "ReminderRepo",
    "StoreAuditor",
    "SubtaskRepo",
    "TaskHistoryRepo",
    "TaskRepo",
    "TaskStoreDB",
    "UserRepo",
]
