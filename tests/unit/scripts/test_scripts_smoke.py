"""
taskstore - script subprocess smoke tests

File: tests/unit/scripts/test_scripts_smoke.py

Purpose
- Keep operator script entrypoints executable and deterministic at a smoke-test level.
- Verify `--help`, `--json` output structure, and `--dry-run` non-destructive behavior.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_PATH = REPO_ROOT / "src"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, *args],
        cwd=REPO_ROOT,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _render_failure(label: str, completed: subprocess.CompletedProcess[str]) -> str:
    return (
        f"{label} failed with exit code {completed.returncode}\n"
        f"stdout:\n{completed.stdout}\n"
        f"stderr:\n{completed.stderr}\n"
    )


@pytest.mark.unit
def test_migrate_db_help_smoke() -> None:
    result = _run_script("scripts/migrate_db.py", "--help")

    assert result.returncode == 0, _render_failure("migrate_db --help", result)
    lowered_output = result.stdout.lower()
    assert "usage" in lowered_output
    assert "--dry-run" in lowered_output
    assert "--db" in lowered_output


@pytest.mark.unit
def test_migrate_db_dry_run_does_not_create_database(tmp_path: Path) -> None:
    db_path = tmp_path / "tasks.db"

    result = _run_script("scripts/migrate_db.py", "--db", str(db_path), "--dry-run", "--json")

    assert result.returncode == 0, _render_failure("migrate_db --dry-run", result)
    payload = json.loads(result.stdout)
    assert payload["dry_run"] is True
    assert payload["db_existed"] is False
    assert payload["schema_version"] is None
    assert payload["up_to_date"] is False
    assert payload["pending_migrations"] == len(payload["migrations"])
    assert {row["status"] for row in payload["migrations"]} == {"pending"}
    assert not db_path.exists()


@pytest.mark.unit
def test_migrate_db_applies_and_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "tasks.db"

    first = _run_script("scripts/migrate_db.py", "--db", str(db_path), "--json")
    second = _run_script("scripts/migrate_db.py", "--db", str(db_path), "--json")

    assert first.returncode == 0, _render_failure("migrate_db apply", first)
    assert second.returncode == 0, _render_failure("migrate_db reapply", second)
    first_payload = json.loads(first.stdout)
    second_payload = json.loads(second.stdout)
    assert first_payload["up_to_date"] is True
    assert first_payload["schema_version"] == first_payload["target_schema_version"]
    assert {row["status"] for row in first_payload["migrations"]} == {"applied"}
    assert second_payload["db_existed"] is True
    assert second_payload["migrations"] == first_payload["migrations"]
    assert set(first_payload) == {
        "checksum_mismatch_count",
        "db_existed",
        "db_path",
        "dry_run",
        "migrations",
        "pending_migrations",
        "schema_version",
        "target_schema_version",
        "unknown_to_binary_count",
        "up_to_date",
    }


@pytest.mark.unit
def test_migrate_db_text_output(tmp_path: Path) -> None:
    result = _run_script("scripts/migrate_db.py", "--db", str(tmp_path / "tasks.db"))

    assert result.returncode == 0, _render_failure("migrate_db text", result)
    assert "up_to_date: True" in result.stdout
    assert "migrations:" in result.stdout


@pytest.mark.unit
def test_db_maintenance_commands_on_fresh_store(tmp_path: Path) -> None:
    db_path = tmp_path / "tasks.db"
    migrated = _run_script("scripts/migrate_db.py", "--db", str(db_path))
    assert migrated.returncode == 0, _render_failure("migrate_db", migrated)

    health = _run_script("scripts/db_maintenance.py", "--db", str(db_path), "--json", "health")
    assert health.returncode == 0, _render_failure("db_maintenance health", health)
    health_payload = json.loads(health.stdout)
    assert health_payload["command"] == "health"
    assert health_payload["status"] == "warning"
    assert len(health_payload["checks"]) == 7

    stats = _run_script("scripts/db_maintenance.py", "--db", str(db_path), "--json", "stats")
    assert stats.returncode == 0, _render_failure("db_maintenance stats", stats)
    assert json.loads(stats.stdout)["total_tasks"] == 0

    integrity = _run_script(
        "scripts/db_maintenance.py", "--db", str(db_path), "--json", "integrity"
    )
    assert integrity.returncode == 0, _render_failure("db_maintenance integrity", integrity)
    assert json.loads(integrity.stdout)["is_valid"] is True

    snapshot = tmp_path / "snap.db"
    backup = _run_script(
        "scripts/db_maintenance.py", "--db", str(db_path), "--json", "backup", "--output",
        str(snapshot),
    )
    assert backup.returncode == 0, _render_failure("db_maintenance backup", backup)
    assert snapshot.exists()

    text = _run_script("scripts/db_maintenance.py", "--db", str(db_path), "health")
    assert text.returncode == 0, _render_failure("db_maintenance health text", text)
    assert text.stdout.startswith("status: ")
    assert "[pass] Database Connection" in text.stdout


@pytest.mark.unit
def test_db_maintenance_missing_database_fails(tmp_path: Path) -> None:
    missing = tmp_path / "absent.db"

    result = _run_script("scripts/db_maintenance.py", "--db", str(missing), "--json", "stats")

    assert result.returncode == 1
    payload = json.loads(result.stdout)
    assert payload["command"] == "stats"
    assert "database not found" in payload["error"]
    assert not missing.exists()
