"""
taskstore - backup scheduler

File: src/taskstore/persistence/backup.py

Purpose
- Periodically snapshot the store on a daemon timer without blocking foreground work.

Functional requirements
- A failed backup is logged and recorded; it never propagates to callers or stops the
  schedule.
- ``stop`` cancels any pending timer and is safe to call repeatedly.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from taskstore.constants import BACKUP_FILE_PREFIX, BACKUP_FILE_SUFFIX
from taskstore.domain.models import datetime_to_iso8601z

BackupFn = Callable[[], Path]


def backup_filename(now: datetime | None = None) -> str:
    """``backup_tasks_<ISO timestamp>.db`` with ``:`` and ``.`` replaced by ``-``."""

    stamp = datetime_to_iso8601z(now if now is not None else datetime.now(UTC))
    return f"{BACKUP_FILE_PREFIX}{stamp.replace(':', '-').replace('.', '-')}{BACKUP_FILE_SUFFIX}"


def default_backup_path(
    db_path: str | Path,
    *,
    backup_dir: str | Path | None = None,
    now: datetime | None = None,
) -> Path:
    directory = Path(backup_dir) if backup_dir is not None else Path(db_path).parent
    return directory / backup_filename(now)


def list_backups(directory: str | Path) -> list[Path]:
    """Existing snapshots in ``directory``, oldest first."""

    root = Path(directory)
    if not root.is_dir():
        return []
    return sorted(root.glob(f"{BACKUP_FILE_PREFIX}*{BACKUP_FILE_SUFFIX}"))


class BackupScheduler:
    """Run ``backup_fn`` every ``interval_seconds`` on a chain of daemon timers."""

    def __init__(
        self,
        backup_fn: BackupFn,
        *,
        interval_seconds: float,
        logger: Any | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._backup_fn = backup_fn
        self._interval_seconds = float(interval_seconds)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._running = False
        self._last_backup_path: Path | None = None
        self._last_backup_at: datetime | None = None
        self._last_error: str | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_backup_path(self) -> Path | None:
        return self._last_backup_path

    @property
    def last_backup_at(self) -> datetime | None:
        return self._last_backup_at

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule_locked()
        self._logger.info("backup_scheduler_started", interval_seconds=self._interval_seconds)

    def stop(self) -> None:
        with self._lock:
            was_running = self._running
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if was_running:
            self._logger.info("backup_scheduler_stopped")

    def run_once(self) -> Path | None:
        """Take one backup now; returns its path, or ``None`` when it failed."""

        try:
            path = self._backup_fn()
        except Exception as exc:  # noqa: BLE001
            self._last_error = f"{type(exc).__name__}: {exc}"
            self._logger.error("backup_failed", error=self._last_error)
            return None

        self._last_backup_path = path
        self._last_backup_at = datetime.now(UTC)
        self._last_error = None
        self._logger.info("backup_created", path=str(path))
        return path

    def _schedule_locked(self) -> None:
        timer = threading.Timer(self._interval_seconds, self._tick)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _tick(self) -> None:
        if not self._running:
            return
        self.run_once()
        with self._lock:
            if self._running:
                self._schedule_locked()


__all__ = [
    "BackupFn",
    "BackupScheduler",
    "backup_filename",
    "default_backup_path",
    "list_backups",
]
