"""Health, statistics and integrity scans reported as data."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from taskstore.config.schema import StoreConfig
from taskstore.domain.models import CheckStatus, HealthReport, HealthStatus
from taskstore.store import TaskStore

from . import TickingClock, make_label, make_task, make_user, open_store, raw_connection

if TYPE_CHECKING:
    from pathlib import Path

_CHECK_NAMES = [
    "Database Connection",
    "Database Schema",
    "Database Indexes",
    "Foreign Key Constraints",
    "Database Performance",
    "Disk Space",
    "Backup Status",
]


def _statuses(report: HealthReport) -> dict[str, CheckStatus]:
    return {check.name: check.status for check in report.checks}


@pytest.mark.unit
def test_health_check_before_initialize_reports_not_initialized(tmp_path: Path) -> None:
    store = TaskStore(StoreConfig(path=(tmp_path / "tasks.db").as_posix(), backup_enabled=False))

    result = store.health_check()

    assert not result.healthy
    assert result.message == "Database not initialized"
    assert result.stats is None


@pytest.mark.unit
def test_health_check_and_stats_on_live_store(tmp_path: Path) -> None:
    store = open_store(tmp_path)
    user = make_user(store, 1)
    make_label(store, user)
    task = make_task(store, user)
    store.create_subtask(task_id=task.id, caller_user_id=user.id, name="Step")

    result = store.health_check()
    stats = store.get_database_stats()

    assert result.healthy
    assert result.message == "Database is healthy"
    assert result.stats == stats
    assert stats.total_users == 1
    assert stats.total_lists == 1
    assert stats.total_labels == 1
    assert stats.total_tasks == 1
    assert stats.total_subtasks == 1
    assert stats.total_reminders == 0
    assert stats.total_attachments == 0
    assert stats.total_history_entries == 1
    store.close()


@pytest.mark.unit
def test_health_report_without_backups_is_degraded(tmp_path: Path) -> None:
    store = open_store(tmp_path)

    report = store.perform_health_check()

    assert [check.name for check in report.checks] == _CHECK_NAMES
    statuses = _statuses(report)
    assert statuses["Backup Status"] is CheckStatus.WARNING
    assert all(
        status is CheckStatus.PASS for name, status in statuses.items() if name != "Backup Status"
    )
    assert report.status is HealthStatus.WARNING
    assert report.to_dict()["status"] == "warning"
    store.close()


@pytest.mark.unit
def test_health_report_is_healthy_after_a_backup(tmp_path: Path) -> None:
    store = TaskStore.open(
        StoreConfig(path=(tmp_path / "data" / "tasks.db").as_posix(), backup_enabled=False)
    )
    store.create_backup()

    report = store.perform_health_check()

    assert report.status is HealthStatus.HEALTHY
    backup = next(check for check in report.checks if check.name == "Backup Status")
    assert backup.details["backup_count"] == 1
    store.close()


@pytest.mark.unit
def test_missing_index_degrades_and_missing_table_fails(tmp_path: Path) -> None:
    store = open_store(tmp_path)
    db = store.get_database()

    db.execute("DROP INDEX idx_tasks_status")
    statuses = _statuses(store.perform_health_check())
    assert statuses["Database Indexes"] is CheckStatus.WARNING

    db.execute("DROP TABLE attachments")
    report = store.perform_health_check()
    assert _statuses(report)["Database Schema"] is CheckStatus.FAIL
    assert report.status is HealthStatus.CRITICAL
    store.close()


@pytest.mark.unit
def test_in_memory_store_health_report() -> None:
    store = TaskStore.open(StoreConfig(path=":memory:"), clock=TickingClock())

    statuses = _statuses(store.perform_health_check())

    assert statuses["Disk Space"] is CheckStatus.PASS
    assert statuses["Database Performance"] is CheckStatus.PASS
    assert statuses["Backup Status"] is CheckStatus.WARNING
    store.close()


@pytest.mark.unit
def test_integrity_test_reports_planted_drift(tmp_path: Path) -> None:
    store = open_store(tmp_path)
    user = make_user(store, 1)
    task = make_task(store, user)
    assert store.integrity_test().is_valid
    store.close()

    # Foreign keys are off on an unmanaged connection, so orphans can be planted.
    conn = raw_connection(tmp_path)
    conn.execute("PRAGMA ignore_check_constraints = ON")
    conn.execute(
        "INSERT INTO subtasks (id, name, task_id) VALUES ('sub-orphan', 'Lost', 'tsk-missing')"
    )
    conn.execute("UPDATE tasks SET status = 'blocked' WHERE id = ?", (task.id,))
    conn.close()

    store = open_store(tmp_path)
    report = store.integrity_test()

    assert not report.is_valid
    assert "Found 1 orphaned subtasks" in report.issues
    assert "Found 1 tasks with invalid status" in report.issues
    assert any(issue.startswith("Foreign key violation in subtasks") for issue in report.issues)
    # The engine check covers CHECK constraints but not foreign keys.
    assert store.auditor.integrity_check() == ("CHECK constraint failed in tasks",)
    store.close()


@pytest.mark.unit
def test_integrity_test_flags_users_without_inbox(tmp_path: Path) -> None:
    store = open_store(tmp_path)
    user = make_user(store, 1)
    store.get_database().execute("UPDATE lists SET is_default = 0 WHERE user_id = ?", (user.id,))

    report = store.integrity_test()

    assert report.issues == ("Found 1 users without exactly one default list",)
    store.close()
