"""
taskstore - migrate the task store schema.

Purpose
- Apply the ledger-backed SQLite migrations of the task store.
- Provide migration status output for both apply and dry-run flows.

Exit codes
- 0 when the ledger agrees with the migration catalog (pending units are fine on dry-run).
- 1 on checksum mismatch, ledger rows unknown to this build, or any error.
"""

from __future__ import annotations

import argparse
import sqlite3
import sys
from collections import Counter
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"

if TYPE_CHECKING:
    from taskstore.persistence.state_db import MigrationStatus

APPLIED = "applied"
PENDING = "pending"
CHECKSUM_MISMATCH = "checksum_mismatch"
UNKNOWN = "unknown_to_binary"


def _ensure_src_path() -> None:
    if str(SRC_PATH) not in sys.path:
        sys.path.insert(0, str(SRC_PATH))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Apply or inspect task store migrations deterministically.",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=Path("data") / "tasks.db",
        help="Path to the task store SQLite database.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show migration status without mutating the target database.",
    )
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON output.")
    return parser.parse_args(argv)


def _read_status(db_path: Path) -> MigrationStatus:
    """Compare the ledger of ``db_path`` with the code catalog without writing to it."""

    from taskstore.config.schema import StoreConfig
    from taskstore.persistence.state_db import TaskStoreDB

    db = TaskStoreDB(StoreConfig(path=str(db_path), backup_enabled=False))
    # Plain connection without engine tuning, so reading the ledger never rewrites the file.
    conn = sqlite3.connect(db_path if db_path.exists() else ":memory:")
    conn.row_factory = sqlite3.Row
    try:
        return db.migration_status(conn=conn)
    finally:
        conn.close()


def _status_rows(status: MigrationStatus) -> list[dict[str, object]]:
    from taskstore.persistence.schema import MIGRATIONS

    pending = {migration.id for migration in status.pending}
    mismatched = set(status.checksum_mismatches)
    records = {record.id: record for record in status.applied}

    rows: list[dict[str, object]] = []
    for migration in MIGRATIONS:
        record = records.pop(migration.id, None)
        if migration.id in pending:
            state = PENDING
        elif migration.id in mismatched:
            state = CHECKSUM_MISMATCH
        else:
            state = APPLIED
        rows.append(
            {
                "id": migration.id,
                "version": migration.version,
                "name": migration.name,
                "checksum": migration.checksum,
                "status": state,
                "applied_at": record.applied_at if record is not None else None,
            }
        )
    # Whatever is left in the ledger was written by a newer build.
    rows.extend(
        {
            "id": record.id,
            "version": record.version,
            "name": record.name,
            "checksum": record.checksum,
            "status": UNKNOWN,
            "applied_at": record.applied_at,
        }
        for record in records.values()
    )
    return sorted(rows, key=lambda row: str(row["id"]))


def _build_payload(
    db_path: Path, *, dry_run: bool, existed: bool, status: MigrationStatus
) -> dict[str, object]:
    rows = _status_rows(status)
    counts = Counter(str(row["status"]) for row in rows)
    return {
        "db_path": db_path.as_posix(),
        "dry_run": dry_run,
        "db_existed": existed,
        "schema_version": status.current_version,
        "target_schema_version": status.target_version,
        "up_to_date": counts[PENDING] + counts[CHECKSUM_MISMATCH] + counts[UNKNOWN] == 0,
        "pending_migrations": counts[PENDING],
        "checksum_mismatch_count": counts[CHECKSUM_MISMATCH],
        "unknown_to_binary_count": counts[UNKNOWN],
        "migrations": rows,
    }


def _emit_json(payload: Mapping[str, object]) -> None:
    from taskstore.domain.models import canonical_json

    print(canonical_json(dict(payload)))


def _emit_text(payload: Mapping[str, object]) -> None:
    for key in ("db_path", "dry_run", "schema_version", "target_schema_version", "up_to_date"):
        print(f"{key}: {payload[key]}")
    print("migrations:")
    rows = payload["migrations"]
    for row in rows if isinstance(rows, list) else []:
        print(
            f"  {row['id']} (v{row['version']}): {row['status']} "
            f"({row['name']}, checksum={row['checksum']})"
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    db_path = args.db.expanduser().resolve()
    existed = db_path.exists()

    _ensure_src_path()
    from taskstore.config.schema import StoreConfig
    from taskstore.observability.logging import LoggingConfig, configure_logging
    from taskstore.persistence.state_db import TaskStoreDB

    configure_logging(LoggingConfig(level="WARNING", stream=sys.stderr))

    try:
        status = _read_status(db_path)
        blocked = bool(status.checksum_mismatches) or any(
            row["status"] == UNKNOWN for row in _status_rows(status)
        )
        if not args.dry_run and not blocked:
            with TaskStoreDB(StoreConfig(path=str(db_path), backup_enabled=False)):
                pass
            status = _read_status(db_path)
        payload = _build_payload(db_path, dry_run=args.dry_run, existed=existed, status=status)
    except Exception as exc:  # noqa: BLE001
        if args.json:
            _emit_json({"db_path": db_path.as_posix(), "dry_run": args.dry_run, "error": str(exc)})
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.json:
        _emit_json(payload)
    else:
        _emit_text(payload)
    failed = payload["checksum_mismatch_count"] or payload["unknown_to_binary_count"]
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
