"""
taskstore - package root

File: src/taskstore/__init__.py

Purpose
- Embedded SQLite persistence engine for a task manager: users, lists, labels,
  tasks, subtasks, reminders, attachments and an audit history.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from taskstore.config.schema import StoreConfig
from taskstore.store import TaskStore

__version__ = "1.0.0"

__all__ = ["StoreConfig", "TaskStore", "__version__"]
