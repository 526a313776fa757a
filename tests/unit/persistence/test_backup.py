from __future__ import annotations

import threading
from datetime import UTC, datetime
from pathlib import Path

import pytest

from taskstore.persistence.backup import (
    BackupScheduler,
    backup_filename,
    default_backup_path,
    list_backups,
)

from . import open_store


def test_backup_filename_is_filesystem_safe() -> None:
    stamp = datetime(2026, 3, 4, 5, 6, 7, 890_000, tzinfo=UTC)

    assert backup_filename(stamp) == "backup_tasks_2026-03-04T05-06-07-890000Z.db"


def test_default_backup_path_prefers_backup_dir(tmp_path: Path) -> None:
    stamp = datetime(2026, 3, 4, tzinfo=UTC)
    db_path = tmp_path / "data" / "tasks.db"

    assert default_backup_path(db_path, now=stamp).parent == tmp_path / "data"
    assert default_backup_path(db_path, backup_dir=tmp_path / "b", now=stamp).parent == (
        tmp_path / "b"
    )


def test_list_backups_ignores_unrelated_files(tmp_path: Path) -> None:
    older = tmp_path / backup_filename(datetime(2026, 1, 1, tzinfo=UTC))
    newer = tmp_path / backup_filename(datetime(2026, 1, 2, tzinfo=UTC))
    for path in (newer, older, tmp_path / "tasks.db", tmp_path / "notes.txt"):
        path.write_bytes(b"")

    assert list_backups(tmp_path) == [older, newer]
    assert list_backups(tmp_path / "missing") == []


def test_scheduler_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError, match="interval_seconds"):
        BackupScheduler(lambda: Path("unused"), interval_seconds=0)


def test_run_once_records_success_and_failure(tmp_path: Path) -> None:
    store = open_store(tmp_path)
    scheduler = BackupScheduler(store.create_backup, interval_seconds=3600)

    path = scheduler.run_once()

    assert path is not None
    assert path.exists()
    assert scheduler.last_backup_path == path
    assert scheduler.last_backup_at is not None
    assert scheduler.last_error is None

    def _broken() -> Path:
        raise OSError("disk full")

    failing = BackupScheduler(_broken, interval_seconds=3600)
    assert failing.run_once() is None
    assert failing.last_error == "OSError: disk full"
    assert failing.last_backup_path is None
    store.close()


def test_scheduler_keeps_running_after_failures() -> None:
    calls: list[int] = []
    done = threading.Event()

    def _flaky() -> Path:
        calls.append(1)
        if len(calls) >= 2:
            done.set()
            return Path("snapshot.db")
        raise RuntimeError("first attempt fails")

    scheduler = BackupScheduler(_flaky, interval_seconds=0.01)
    scheduler.start()
    scheduler.start()
    try:
        assert done.wait(timeout=5.0)
    finally:
        scheduler.stop()

    assert not scheduler.is_running
    assert len(calls) >= 2
    scheduler.stop()
