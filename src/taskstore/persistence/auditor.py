"""
taskstore - integrity and health auditor

File: src/taskstore/persistence/auditor.py

Purpose
- Liveness probe, aggregate statistics, orphan/enum drift scans and a multi-check
  health report for operators.

Functional requirements
- Health and integrity operations report problems as data; they never raise.
- Statistics are gathered in a single query.
"""

from __future__ import annotations

import shutil
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from taskstore.constants import REQUIRED_TABLES
from taskstore.domain.models import (
    CheckStatus,
    DatabaseStats,
    HealthCheckItem,
    HealthReport,
    HealthResult,
    IntegrityReport,
    JSONValue,
)
from taskstore.persistence.backup import list_backups
from taskstore.persistence.schema import PRIORITY_VALUES, REQUIRED_INDEXES, STATUS_VALUES
from taskstore.persistence.state_db import TaskStoreDB

SLOW_QUERY_MS: Final[float] = 1_000.0
LARGE_DATASET_RECORDS: Final[int] = 10_000
LARGE_DATABASE_MB: Final[float] = 100.0
LOW_DISK_FREE_MB: Final[float] = 100.0

_STATS_SQL: Final[str] = """
SELECT
    (SELECT COUNT(*) FROM users) AS total_users,
    (SELECT COUNT(*) FROM lists) AS total_lists,
    (SELECT COUNT(*) FROM tasks) AS total_tasks,
    (SELECT COUNT(*) FROM labels) AS total_labels,
    (SELECT COUNT(*) FROM subtasks) AS total_subtasks,
    (SELECT COUNT(*) FROM reminders) AS total_reminders,
    (SELECT COUNT(*) FROM attachments) AS total_attachments,
    (SELECT COUNT(*) FROM task_history) AS total_history_entries
"""

# (description, count query) pairs scanned by ``integrity_test``.
_ORPHAN_SCANS: Final[tuple[tuple[str, str], ...]] = (
    (
        "orphaned lists",
        "SELECT COUNT(*) AS n FROM lists l LEFT JOIN users u ON l.user_id = u.id WHERE u.id IS NULL",
    ),
    (
        "orphaned labels",
        "SELECT COUNT(*) AS n FROM labels l LEFT JOIN users u ON l.user_id = u.id WHERE u.id IS NULL",
    ),
    (
        "orphaned tasks",
        "SELECT COUNT(*) AS n FROM tasks t LEFT JOIN lists l ON t.list_id = l.id WHERE l.id IS NULL",
    ),
    (
        "tasks with a missing parent task",
        """
        SELECT COUNT(*) AS n FROM tasks t LEFT JOIN tasks p ON t.parent_task_id = p.id
        WHERE t.parent_task_id IS NOT NULL AND p.id IS NULL
        """,
    ),
    (
        "orphaned subtasks",
        "SELECT COUNT(*) AS n FROM subtasks s LEFT JOIN tasks t ON s.task_id = t.id WHERE t.id IS NULL",
    ),
    (
        "orphaned reminders",
        "SELECT COUNT(*) AS n FROM reminders r LEFT JOIN tasks t ON r.task_id = t.id WHERE t.id IS NULL",
    ),
    (
        "orphaned attachments",
        """
        SELECT COUNT(*) AS n FROM attachments a LEFT JOIN tasks t ON a.task_id = t.id
        WHERE t.id IS NULL
        """,
    ),
    (
        "orphaned task/label links",
        """
        SELECT COUNT(*) AS n FROM task_labels tl
        LEFT JOIN tasks t ON tl.task_id = t.id
        LEFT JOIN labels l ON tl.label_id = l.id
        WHERE t.id IS NULL OR l.id IS NULL
        """,
    ),
    (
        "users without exactly one default list",
        """
        SELECT COUNT(*) AS n FROM users u
        WHERE (SELECT COUNT(*) FROM lists l WHERE l.user_id = u.id AND l.is_default = 1) <> 1
        """,
    ),
)


def _in_list(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{value}'" for value in values)


_ENUM_SCANS: Final[tuple[tuple[str, str], ...]] = (
    (
        "tasks with invalid status",
        f"SELECT COUNT(*) AS n FROM tasks WHERE status NOT IN ({_in_list(STATUS_VALUES)})",
    ),
    (
        "tasks with invalid priority",
        f"SELECT COUNT(*) AS n FROM tasks WHERE priority NOT IN ({_in_list(PRIORITY_VALUES)})",
    ),
)


class StoreAuditor:
    """Read-only diagnostics over a ``TaskStoreDB``."""

    def __init__(
        self,
        db: TaskStoreDB,
        *,
        logger: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._clock = clock if clock is not None else db.now

    # ------------------------------------------------------------------
    # liveness and statistics
    # ------------------------------------------------------------------

    def health_check(self) -> HealthResult:
        """Round-trip probe; failures are returned, not raised."""

        if not self._db.is_initialized:
            return HealthResult(healthy=False, message="Database not initialized")
        try:
            self._db.query_one("SELECT 1")
            stats = self.get_database_stats()
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("health_check_failed", error=str(exc))
            return HealthResult(healthy=False, message=f"Database health check failed: {exc}")
        return HealthResult(healthy=True, message="Database is healthy", stats=stats)

    def get_database_stats(self) -> DatabaseStats:
        row = self._db.query_one(_STATS_SQL)
        if row is None:
            return DatabaseStats()
        return DatabaseStats(**{key: int(value or 0) for key, value in row.items()})  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # integrity
    # ------------------------------------------------------------------

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Engine-level page/structure check; empty means OK."""

        return self._db.integrity_check(max_errors=max_errors)

    def integrity_test(self) -> IntegrityReport:
        """Scan for drift the constraints did not prevent."""

        issues: list[str] = []
        try:
            with self._db.lock:
                for description, sql in (*_ORPHAN_SCANS, *_ENUM_SCANS):
                    count = self._count(sql)
                    if count:
                        issues.append(f"Found {count} {description}")
                for row in self._db.query("PRAGMA foreign_key_check"):
                    issues.append(
                        "Foreign key violation in {table} (rowid {rowid}) referencing {parent}".format(
                            table=row.get("table"),
                            rowid=row.get("rowid"),
                            parent=row.get("parent"),
                        )
                    )
        except Exception as exc:  # noqa: BLE001
            issues.append(f"Integrity test failed: {exc}")

        report = IntegrityReport.from_issues(issues)
        if not report.is_valid:
            self._logger.warning("integrity_issues_found", issue_count=len(report.issues))
        return report

    # ------------------------------------------------------------------
    # health report
    # ------------------------------------------------------------------

    def perform_health_check(self) -> HealthReport:
        checks = tuple(
            self._guarded(name, check)
            for name, check in (
                ("Database Connection", self._check_connection),
                ("Database Schema", self._check_schema),
                ("Database Indexes", self._check_indexes),
                ("Foreign Key Constraints", self._check_constraints),
                ("Database Performance", self._check_performance),
                ("Disk Space", self._check_disk_space),
                ("Backup Status", self._check_backup_status),
            )
        )
        report = HealthReport.from_checks(checks, timestamp=self._clock())
        self._logger.info("health_report_generated", status=str(report.status))
        return report

    def _guarded(self, name: str, check: Callable[[str], HealthCheckItem]) -> HealthCheckItem:
        try:
            return check(name)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("health_check_failed", check=name, error=str(exc))
            return HealthCheckItem(
                name=name, status=CheckStatus.FAIL, message=f"{name} check failed: {exc}"
            )

    def _check_connection(self, name: str) -> HealthCheckItem:
        started = time.perf_counter()
        self._db.query_one("SELECT 1")
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
        if elapsed_ms > SLOW_QUERY_MS:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=f"Slow connection ({elapsed_ms}ms)",
                details={"response_time_ms": elapsed_ms},
            )
        return HealthCheckItem(
            name=name,
            status=CheckStatus.PASS,
            message=f"Connection healthy ({elapsed_ms}ms)",
            details={"response_time_ms": elapsed_ms},
        )

    def _check_schema(self, name: str) -> HealthCheckItem:
        tables = self._names("table")
        missing = [table for table in REQUIRED_TABLES if table not in tables]
        if missing:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.FAIL,
                message=f"Missing tables: {', '.join(missing)}",
                details={"missing_tables": list(missing)},
            )

        with self._db.lock:
            status = self._db.migration_status()
        details: dict[str, JSONValue] = {
            "table_count": len(tables),
            "current_version": status.current_version,
            "target_version": status.target_version,
        }
        if status.checksum_mismatches:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.FAIL,
                message="Migration checksum mismatch: " + ", ".join(status.checksum_mismatches),
                details=details,
            )
        if status.pending:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=f"{len(status.pending)} pending migration(s)",
                details=details,
            )
        return HealthCheckItem(
            name=name, status=CheckStatus.PASS, message="All required tables exist", details=details
        )

    def _check_indexes(self, name: str) -> HealthCheckItem:
        indexes = self._names("index")
        missing = [index for index in REQUIRED_INDEXES if index not in indexes]
        details: dict[str, JSONValue] = {
            "index_count": len(indexes),
            "expected": len(REQUIRED_INDEXES),
        }
        if missing:
            details["missing_indexes"] = list(missing)
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=f"Missing {len(missing)} of {len(REQUIRED_INDEXES)} indexes",
                details=details,
            )
        return HealthCheckItem(
            name=name, status=CheckStatus.PASS, message="Indexes present", details=details
        )

    def _check_constraints(self, name: str) -> HealthCheckItem:
        if self._count("PRAGMA foreign_keys") != 1:
            return HealthCheckItem(
                name=name, status=CheckStatus.FAIL, message="Foreign key constraints are disabled"
            )
        violations = len(self._db.query("PRAGMA foreign_key_check"))
        orphaned_tasks = self._count(_ORPHAN_SCANS[2][1])
        if violations or orphaned_tasks:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=(
                    f"Found {violations} foreign key violation(s) "
                    f"and {orphaned_tasks} orphaned task(s)"
                ),
                details={"violations": violations, "orphaned_tasks": orphaned_tasks},
            )
        return HealthCheckItem(
            name=name, status=CheckStatus.PASS, message="Foreign key constraints are healthy"
        )

    def _check_performance(self, name: str) -> HealthCheckItem:
        config = self._db.config
        is_wal = self._db.is_wal_mode()
        stats = self.get_database_stats()
        total_records = stats.total_tasks + stats.total_lists + stats.total_labels

        warnings: list[str] = []
        if not config.is_memory and not is_wal:
            warnings.append("WAL mode not enabled")
        if total_records > LARGE_DATASET_RECORDS:
            warnings.append("Large dataset - consider optimization")
        return HealthCheckItem(
            name=name,
            status=CheckStatus.WARNING if warnings else CheckStatus.PASS,
            message=", ".join(warnings) if warnings else "Performance is good",
            details={"is_wal": is_wal, "total_records": total_records},
        )

    def _check_disk_space(self, name: str) -> HealthCheckItem:
        if self._db.config.is_memory:
            return HealthCheckItem(name=name, status=CheckStatus.PASS, message="In-memory store")

        size_mb = round(self._db.path.stat().st_size / (1024 * 1024), 2)
        free_mb = round(shutil.disk_usage(self._db.path.parent).free / (1024 * 1024), 2)
        details: dict[str, JSONValue] = {"size_mb": size_mb, "free_mb": free_mb}
        if free_mb < LOW_DISK_FREE_MB:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=f"Only {free_mb:.2f}MB free next to the store",
                details=details,
            )
        if size_mb > LARGE_DATABASE_MB:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=f"Database size is {size_mb:.2f}MB - consider archiving old data",
                details=details,
            )
        return HealthCheckItem(
            name=name,
            status=CheckStatus.PASS,
            message=f"Database size is healthy ({size_mb:.2f}MB)",
            details=details,
        )

    def _check_backup_status(self, name: str) -> HealthCheckItem:
        config = self._db.config
        if config.is_memory:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message="In-memory store is not backed up on a schedule",
            )

        scheduler = self._db.backup_scheduler
        if scheduler is not None and scheduler.last_error is not None:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=f"Last scheduled backup failed: {scheduler.last_error}",
            )

        directory = Path(config.backup_dir) if config.backup_dir is not None else self._db.path.parent
        backups = list_backups(directory)
        if not backups:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message="No backup files found",
                details={"backup_count": 0},
            )

        latest = max(backups, key=lambda path: path.stat().st_mtime)
        modified = datetime.fromtimestamp(latest.stat().st_mtime, tz=UTC)
        hours_since = round((self._clock() - modified).total_seconds() / 3600.0, 1)
        details: dict[str, JSONValue] = {
            "backup_count": len(backups),
            "hours_since_backup": hours_since,
            "latest_backup": latest.name,
        }
        if hours_since > config.backup_interval_hours:
            return HealthCheckItem(
                name=name,
                status=CheckStatus.WARNING,
                message=f"Last backup was {hours_since} hours ago",
                details=details,
            )
        return HealthCheckItem(
            name=name, status=CheckStatus.PASS, message="Recent backup found", details=details
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _count(self, sql: str) -> int:
        row = self._db.query_one(sql)
        if row is None:
            return 0
        value = next(iter(row.values()), 0)
        return int(value) if isinstance(value, (int, float)) else 0

    def _names(self, kind: str) -> set[str]:
        rows = self._db.query(
            "SELECT name FROM sqlite_master WHERE type = ? AND name NOT LIKE 'sqlite_%'", (kind,)
        )
        return {str(row["name"]) for row in rows}


__all__ = ["StoreAuditor"]
