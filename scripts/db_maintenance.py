"""
taskstore - operator maintenance commands for the task store.

Purpose
- Health report, integrity audit, statistics, on-demand backup and optimize for an
  existing store, with text or JSON output.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"

if TYPE_CHECKING:
    from taskstore.store import TaskStore

Command = Callable[["TaskStore", argparse.Namespace], tuple[int, dict[str, object]]]


def _ensure_src_path() -> None:
    if str(SRC_PATH) not in sys.path:
        sys.path.insert(0, str(SRC_PATH))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect and maintain a task store database.")
    parser.add_argument(
        "--db",
        type=Path,
        default=Path("data") / "tasks.db",
        help="Path to the task store SQLite database.",
    )
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON output.")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("health", help="Run every health check and print the report.")
    commands.add_parser("integrity", help="Scan for orphaned rows and engine-level corruption.")
    commands.add_parser("stats", help="Print per-entity row counts.")
    backup = commands.add_parser("backup", help="Write a consistent snapshot of the store.")
    backup.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Destination file (defaults to a timestamped file next to the store).",
    )
    commands.add_parser("optimize", help="Run PRAGMA optimize and VACUUM.")
    return parser.parse_args(argv)


def _cmd_health(store: TaskStore, args: argparse.Namespace) -> tuple[int, dict[str, object]]:
    del args
    report = store.perform_health_check()
    payload: dict[str, object] = dict(report.to_dict())
    return (1 if report.status == "critical" else 0), payload


def _cmd_integrity(store: TaskStore, args: argparse.Namespace) -> tuple[int, dict[str, object]]:
    del args
    report = store.integrity_test()
    engine_errors = store.auditor.integrity_check()
    payload: dict[str, object] = {
        "is_valid": report.is_valid and not engine_errors,
        "issues": list(report.issues),
        "integrity_check": list(engine_errors),
    }
    return (0 if payload["is_valid"] else 1), payload


def _cmd_stats(store: TaskStore, args: argparse.Namespace) -> tuple[int, dict[str, object]]:
    del args
    return 0, dict(store.get_database_stats().to_dict())


def _cmd_backup(store: TaskStore, args: argparse.Namespace) -> tuple[int, dict[str, object]]:
    path = store.create_backup(args.output)
    return 0, {"backup_path": path.as_posix()}


def _cmd_optimize(store: TaskStore, args: argparse.Namespace) -> tuple[int, dict[str, object]]:
    del args
    store.get_database().optimize()
    return 0, {"optimized": True}


_COMMANDS: dict[str, Command] = {
    "health": _cmd_health,
    "integrity": _cmd_integrity,
    "stats": _cmd_stats,
    "backup": _cmd_backup,
    "optimize": _cmd_optimize,
}


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _emit_text(command: str, payload: Mapping[str, object]) -> None:
    if command == "health":
        print(f"status: {payload.get('status')}")
        checks = payload.get("checks")
        for check in checks if isinstance(checks, list) else []:
            if isinstance(check, Mapping):
                print(f"  [{check.get('status')}] {check.get('name')}: {check.get('message')}")
        return
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, list):
            print(f"{key}:")
            for item in value:
                print(f"  - {item}")
        else:
            print(f"{key}: {value}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    resolved_db_path = args.db.expanduser().resolve()

    _ensure_src_path()
    from taskstore.config.schema import StoreConfig
    from taskstore.observability.logging import LoggingConfig, configure_logging
    from taskstore.store import TaskStore

    configure_logging(LoggingConfig(level="WARNING", stream=sys.stderr))

    try:
        if not resolved_db_path.exists():
            raise FileNotFoundError(f"database not found: {resolved_db_path.as_posix()}")
        with TaskStore(StoreConfig(path=str(resolved_db_path), backup_enabled=False)) as store:
            exit_code, payload = _COMMANDS[args.command](store, args)
    except Exception as exc:  # noqa: BLE001
        if args.json:
            _emit_json({"command": args.command, "error": str(exc)})
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 1

    payload = {"command": args.command, "db_path": resolved_db_path.as_posix(), **payload}
    if args.json:
        _emit_json(payload)
    else:
        _emit_text(args.command, payload)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
