"""
taskstore - domain layer

File: src/taskstore/domain/__init__.py

Purpose
- Domain records shared by the repositories and the auditor: User, TaskList,
  Label, Task, Subtask, Reminder, Attachment, TaskHistoryEntry.

Non-functional requirements
- Domain layer stays free of IO side effects.
"""
