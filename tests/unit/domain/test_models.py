"""Unit tests for the task store domain models."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone

import pytest

from taskstore.domain import ids, models
from taskstore.errors import ValidationError


def _fixed_bytes(size: int) -> bytes:
    return b"\x01" * size


def _utc_dt() -> datetime:
    return datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def _task(**overrides: object) -> models.Task:
    payload: dict[str, object] = {
        "id": ids.generate_task_id(timestamp_ms=100, randbytes=_fixed_bytes),
        "name": "Plan sprint",
        "user_id": ids.generate_user_id(timestamp_ms=100, randbytes=_fixed_bytes),
        "list_id": ids.generate_list_id(timestamp_ms=100, randbytes=_fixed_bytes),
        "created_at": _utc_dt(),
        "updated_at": _utc_dt(),
    }
    payload.update(overrides)
    return models.Task(**payload)  # type: ignore[arg-type]


def _sample_objects() -> list[models.CanonicalModel]:
    ts = _utc_dt()
    user_id = ids.generate_user_id(timestamp_ms=101, randbytes=_fixed_bytes)
    task = _task(
        description="Pick stories",
        date=ts,
        deadline=ts + timedelta(days=2),
        estimate="02:15",
        actual_time="00:45",
        priority="Medium",
        status="in_progress",
        is_recurring=True,
        recurring_pattern={"type": "monthly", "day_of_month": 15, "note": "payday"},
    )
    return [
        models.User(
            id=user_id,
            name="Ada",
            email="ada@example.com",
            avatar="https://example.com/ada.png",
            preferences={"theme": "dark", "density": "compact"},  # type: ignore[arg-type]
            created_at=ts,
            updated_at=ts,
        ),
        models.TaskList(
            id=ids.generate_list_id(timestamp_ms=102, randbytes=_fixed_bytes),
            name="Work",
            user_id=user_id,
            description="Day job",
            position=3,
            created_at=ts,
            updated_at=ts,
        ),
        models.Label(
            id=ids.generate_label_id(timestamp_ms=103, randbytes=_fixed_bytes),
            name="urgent",
            user_id=user_id,
            icon=None,
            created_at=ts,
            updated_at=ts,
        ),
        task,
        models.Subtask(
            id=ids.generate_subtask_id(timestamp_ms=104, randbytes=_fixed_bytes),
            name="Estimate",
            task_id=task.id,
            is_completed=True,
            created_at=ts,
            updated_at=ts,
        ),
        models.Reminder(
            id=ids.generate_reminder_id(timestamp_ms=105, randbytes=_fixed_bytes),
            task_id=task.id,
            remind_at=ts + timedelta(hours=1),
            method="sms",
            created_at=ts,
            updated_at=ts,
        ),
        models.Attachment(
            id=ids.generate_attachment_id(timestamp_ms=106, randbytes=_fixed_bytes),
            task_id=task.id,
            filename="a.txt",
            original_name="notes.txt",
            mime_type="text/plain",
            size=12,
            path="/uploads/a.txt",
            uploaded_at=ts,
        ),
        models.TaskHistoryEntry(
            id=ids.generate_history_id(timestamp_ms=107, randbytes=_fixed_bytes),
            task_id=task.id,
            action="status_changed",
            changed_by=user_id,
            changes={"old_value": "todo", "new_value": "in_progress"},
            created_at=ts,
        ),
    ]


def test_json_roundtrip_for_every_entity() -> None:
    for obj in _sample_objects():
        model_type = type(obj)
        encoded = obj.to_json()
        decoded = model_type.from_json(encoded)
        assert decoded == obj
        assert decoded.to_json() == encoded


def test_enum_and_nested_values_serialize_to_plain_json() -> None:
    task = _sample_objects()[3]

    payload = json.loads(task.to_json())

    assert payload["priority"] == "Medium"
    assert payload["status"] == "in_progress"
    assert payload["date"] == "2026-02-01T12:00:00.000000Z"
    assert payload["recurring_pattern"] == {
        "type": "monthly",
        "interval": 1,
        "day_of_month": 15,
        "note": "payday",
    }


def test_missing_and_unknown_fields_are_path_aware() -> None:
    with pytest.raises(ValidationError, match=r"Label: missing required fields: \['name'\]"):
        models.Label.from_dict(
            {"id": "lbl-1", "user_id": "usr-1", "created_at": "2026-01-01T00:00:00Z",
             "updated_at": "2026-01-01T00:00:00Z"}
        )
    with pytest.raises(ValidationError, match="unexpected fields"):
        models.Subtask.from_dict(
            {
                "id": "sub-1",
                "name": "x",
                "task_id": "tsk-1",
                "created_at": "2026-01-01T00:00:00Z",
                "updated_at": "2026-01-01T00:00:00Z",
                "done": True,
            }
        )
    with pytest.raises(ValidationError, match="expected JSON string"):
        models.Label.from_json(b"{}")  # type: ignore[arg-type]


def test_datetimes_must_be_timezone_aware_and_normalize_to_utc() -> None:
    with pytest.raises(ValidationError, match="timezone-aware"):
        _task(created_at=datetime(2026, 2, 1, 12, 0, 0))
    with pytest.raises(ValidationError, match="invalid ISO-8601"):
        _task(deadline="next tuesday")

    shifted = _task(date=datetime(2026, 2, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2))))
    assert shifted.date == _utc_dt()
    assert models.datetime_to_iso8601z(shifted.date) == "2026-02-01T12:00:00.000000Z"
    assert _task(date="2026-02-01T12:00:00Z").date == _utc_dt()


def test_task_field_rules() -> None:
    assert _task(name="  padded  ").name == "padded"
    with pytest.raises(ValidationError, match="Task.name: must not be empty"):
        _task(name="   ")
    with pytest.raises(ValidationError, match="Task.estimate: minutes"):
        _task(estimate="10:75")
    with pytest.raises(ValidationError, match="Task.status: invalid value"):
        _task(status="blocked")
    with pytest.raises(ValidationError, match="Task.position: must be >= 0"):
        _task(position=-1)
    with pytest.raises(ValidationError, match="expected boolean"):
        _task(is_recurring=1)
    with pytest.raises(ValidationError, match="own parent"):
        task = _task()
        _task(id=task.id, parent_task_id=task.id)


def test_recurring_pattern_shapes() -> None:
    weekly = models.RecurringPattern(type="weekly", days_of_week=[5, 0])
    assert weekly.days_of_week == (0, 5)
    assert models.RecurringPattern(type="daily", interval=3).to_dict() == {
        "type": "daily",
        "interval": 3,
    }

    with pytest.raises(ValidationError, match="at least one day"):
        models.RecurringPattern(type="weekly")
    with pytest.raises(ValidationError, match="day of month"):
        models.RecurringPattern(type="monthly")
    with pytest.raises(ValidationError, match="month of year"):
        models.RecurringPattern(type="yearly", day_of_month=1)
    with pytest.raises(ValidationError, match="duplicate"):
        models.RecurringPattern(type="weekly", days_of_week=[1, 1])
    with pytest.raises(ValidationError, match=r"days_of_week\[0\]: must be <= 6"):
        models.RecurringPattern(type="weekly", days_of_week=[7])
    with pytest.raises(ValidationError, match="interval: must be >= 1"):
        models.RecurringPattern(type="custom", interval=0)

    restored = models.RecurringPattern.from_dict(
        {"type": "yearly", "month_of_year": 6, "day_of_month": 1, "timezone": "UTC"}
    )
    assert restored.extra == {"timezone": "UTC"}
    assert restored.to_dict()["timezone"] == "UTC"


def test_user_preferences_keep_unknown_keys() -> None:
    prefs = models.UserPreferences.from_dict({"theme": "light", "start_page": "today"})

    assert prefs.theme is models.Theme.LIGHT
    assert prefs.extra == {"start_page": "today"}
    assert prefs.to_dict() == {"theme": "light", "start_page": "today"}
    assert models.UserPreferences().to_dict() == {"theme": "system"}

    with pytest.raises(ValidationError, match="must not shadow"):
        models.UserPreferences(extra={"theme": "dark"})
    with pytest.raises(ValidationError, match="UserPreferences.theme"):
        models.UserPreferences(theme="sepia")


def test_user_email_must_look_like_an_address() -> None:
    with pytest.raises(ValidationError, match="User.email"):
        models.User(
            id="usr-1",
            name="Bad",
            email="no-at-sign",
            created_at=_utc_dt(),
            updated_at=_utc_dt(),
        )


def test_task_with_details_counts_and_shape() -> None:
    objects = _sample_objects()
    task = objects[3]
    done = objects[4]
    assert isinstance(task, models.Task)
    assert isinstance(done, models.Subtask)
    open_item = models.Subtask(
        id="sub-2", name="Review", task_id=task.id, created_at=_utc_dt(), updated_at=_utc_dt()
    )

    details = models.TaskWithDetails(task=task, subtasks=(done, open_item))

    assert details.subtask_count == 2
    assert details.completed_subtask_count == 1
    payload = details.to_dict()
    assert payload["id"] == task.id
    assert payload["list"] is None
    assert payload["subtask_count"] == 2
    assert payload["completed_subtask_count"] == 1


def test_health_report_aggregates_check_statuses() -> None:
    passing = models.HealthCheckItem(name="a", status=models.CheckStatus.PASS, message="ok")
    warning = models.HealthCheckItem(name="b", status=models.CheckStatus.WARNING, message="meh")
    failing = models.HealthCheckItem(name="c", status=models.CheckStatus.FAIL, message="bad")

    def status_of(*checks: models.HealthCheckItem) -> models.HealthStatus:
        return models.HealthReport.from_checks(checks, timestamp=_utc_dt()).status

    assert status_of(passing) is models.HealthStatus.HEALTHY
    assert status_of(passing, warning) is models.HealthStatus.WARNING
    assert status_of(warning, failing) is models.HealthStatus.CRITICAL

    report = models.HealthReport.from_checks((passing,), timestamp=_utc_dt())
    assert report.to_dict() == {
        "status": "healthy",
        "checks": [{"name": "a", "status": "pass", "message": "ok", "details": {}}],
        "timestamp": "2026-02-01T12:00:00.000000Z",
    }


def test_integrity_report_from_issues() -> None:
    assert models.IntegrityReport.from_issues([]) == models.IntegrityReport(is_valid=True)
    flagged = models.IntegrityReport.from_issues(["Found 2 orphaned tasks"])
    assert not flagged.is_valid
    assert flagged.issues == ("Found 2 orphaned tasks",)


def test_canonical_json_is_stable_and_sorted() -> None:
    assert models.canonical_json({"b": 1, "a": [1, {"d": 2, "c": "é"}]}) == (
        '{"a":[1,{"c":"é","d":2}],"b":1}'
    )
