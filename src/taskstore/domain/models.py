"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from taskstore.constants import (
    DEFAULT_LABEL_COLOR,
    DEFAULT_LABEL_ICON,
    DEFAULT_LIST_COLOR,
    DEFAULT_LIST_EMOJI,
)
from taskstore.errors import ValidationError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 8192
_MAX_NAME = 255
_MAX_JSON_DEPTH = 16
_MAX_JSON_COLLECTION = 512

_DURATION_RE = re.compile(r"^\d{1,2}:\d{2}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


class Priority(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    NONE = "None"


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ARCHIVED = "archived"


class ReminderMethod(StrEnum):
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"


class HistoryAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    STATUS_CHANGED = "status_changed"
    COMPLETED = "completed"
    UNCOMPLETED = "uncompleted"


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class Theme(StrEnum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {}
        for model_field in fields(cast("type", type(self))):
            out[model_field.name] = _serialize_value(
                getattr(self, model_field.name),
                f"{type(self).__name__}.{model_field.name}",
            )
        return out

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        required: set[str] = set()
        optional: set[str] = set()
        for model_field in fields(cast("type", cls)):
            if model_field.default is MISSING and model_field.default_factory is MISSING:
                required.add(model_field.name)
            else:
                optional.add(model_field.name)
        parsed = _expect_object(data, cls.__name__, required=required, optional=optional)
        return cls(**parsed)


# ---------------------------------------------------------------------------
# Structured JSON blobs
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class UserPreferences(CanonicalModel):
    """Known preference fields; unknown keys survive untouched in ``extra``."""

    theme: Theme | str = Theme.SYSTEM
    timezone: str | None = None
    date_format: str | None = None
    extra: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.theme = _as_enum(Theme, self.theme, "UserPreferences.theme")
        self.timezone = _as_optional_str(self.timezone, "UserPreferences.timezone", max_len=64)
        self.date_format = _as_optional_str(
            self.date_format, "UserPreferences.date_format", max_len=64
        )
        self.extra = _as_json_object(self.extra, "UserPreferences.extra")
        overlap = sorted(key for key in self.extra if key in _PREFERENCE_KEYS)
        if overlap:
            _fail("UserPreferences.extra", f"must not shadow known fields: {overlap}")

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = dict(self.extra)
        out["theme"] = str(self.theme)
        if self.timezone is not None:
            out["timezone"] = self.timezone
        if self.date_format is not None:
            out["date_format"] = self.date_format
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> UserPreferences:
        parsed = _expect_object(data, "UserPreferences", required=set(), open_ended=True)
        return cls(
            theme=cast("str", parsed.pop("theme", Theme.SYSTEM)),
            timezone=cast("str | None", parsed.pop("timezone", None)),
            date_format=cast("str | None", parsed.pop("date_format", None)),
            extra=_as_json_object(parsed, "UserPreferences.extra"),
        )


_PREFERENCE_KEYS = frozenset({"theme", "timezone", "date_format"})


@dataclass(slots=True)
class RecurringPattern(CanonicalModel):
    """Tagged recurrence rule; required fields depend on ``type``."""

    type: RecurrenceType | str
    interval: int = 1
    days_of_week: tuple[int, ...] = ()
    day_of_month: int | None = None
    month_of_year: int | None = None
    end_date: datetime | None = None
    max_occurrences: int | None = None
    extra: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = _as_enum(RecurrenceType, self.type, "RecurringPattern.type")
        self.interval = _as_int(self.interval, "RecurringPattern.interval", minimum=1)

        days = _as_sequence(self.days_of_week, "RecurringPattern.days_of_week")
        parsed_days = tuple(
            _as_int(day, f"RecurringPattern.days_of_week[{index}]", minimum=0, maximum=6)
            for index, day in enumerate(days)
        )
        if len(set(parsed_days)) != len(parsed_days):
            _fail("RecurringPattern.days_of_week", "contains duplicate values")
        self.days_of_week = tuple(sorted(parsed_days))

        if self.day_of_month is not None:
            self.day_of_month = _as_int(
                self.day_of_month, "RecurringPattern.day_of_month", minimum=1, maximum=31
            )
        if self.month_of_year is not None:
            self.month_of_year = _as_int(
                self.month_of_year, "RecurringPattern.month_of_year", minimum=1, maximum=12
            )
        if self.end_date is not None:
            self.end_date = _as_datetime(self.end_date, "RecurringPattern.end_date")
        if self.max_occurrences is not None:
            self.max_occurrences = _as_int(
                self.max_occurrences, "RecurringPattern.max_occurrences", minimum=1
            )
        self.extra = _as_json_object(self.extra, "RecurringPattern.extra")

        if self.type is RecurrenceType.WEEKLY and not self.days_of_week:
            _fail("RecurringPattern.days_of_week", "weekly patterns require at least one day")
        if self.type is RecurrenceType.MONTHLY and self.day_of_month is None:
            _fail("RecurringPattern.day_of_month", "monthly patterns require a day of month")
        if self.type is RecurrenceType.YEARLY and self.month_of_year is None:
            _fail("RecurringPattern.month_of_year", "yearly patterns require a month of year")

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = dict(self.extra)
        out["type"] = str(self.type)
        out["interval"] = self.interval
        if self.days_of_week:
            out["days_of_week"] = list(self.days_of_week)
        if self.day_of_month is not None:
            out["day_of_month"] = self.day_of_month
        if self.month_of_year is not None:
            out["month_of_year"] = self.month_of_year
        if self.end_date is not None:
            out["end_date"] = datetime_to_iso8601z(self.end_date)
        if self.max_occurrences is not None:
            out["max_occurrences"] = self.max_occurrences
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RecurringPattern:
        parsed = _expect_object(data, "RecurringPattern", required={"type"}, open_ended=True)
        known = {
            key: parsed.pop(key)
            for key in (
                "type",
                "interval",
                "days_of_week",
                "day_of_month",
                "month_of_year",
                "end_date",
                "max_occurrences",
            )
            if key in parsed
        }
        return cls(
            **cast("dict[str, object]", known),  # type: ignore[arg-type]
            extra=_as_json_object(parsed, "RecurringPattern.extra"),
        )


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class User(CanonicalModel):
    id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime
    avatar: str | None = None
    preferences: UserPreferences = field(default_factory=UserPreferences)

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "User.id")
        self.name = _as_str(self.name, "User.name", max_len=_MAX_NAME)
        self.email = _as_str(self.email, "User.email", max_len=_MAX_NAME)
        if not _EMAIL_RE.fullmatch(self.email):
            _fail("User.email", f"not a valid email address: {self.email!r}")
        self.avatar = _as_optional_str(self.avatar, "User.avatar")
        self.preferences = _as_preferences(self.preferences, "User.preferences")
        self.created_at = _as_datetime(self.created_at, "User.created_at")
        self.updated_at = _as_datetime(self.updated_at, "User.updated_at")


@dataclass(slots=True)
class TaskList(CanonicalModel):
    id: str
    name: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    color: str = DEFAULT_LIST_COLOR
    emoji: str | None = DEFAULT_LIST_EMOJI
    is_default: bool = False
    is_favorite: bool = False
    description: str | None = None
    position: int = 0

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "TaskList.id")
        self.name = _as_str(self.name, "TaskList.name", max_len=_MAX_NAME)
        self.user_id = _as_str(self.user_id, "TaskList.user_id")
        self.color = _as_str(self.color, "TaskList.color", max_len=32)
        self.emoji = _as_optional_str(self.emoji, "TaskList.emoji", max_len=16)
        self.is_default = _as_bool(self.is_default, "TaskList.is_default")
        self.is_favorite = _as_bool(self.is_favorite, "TaskList.is_favorite")
        self.description = _as_optional_str(self.description, "TaskList.description")
        self.position = _as_int(self.position, "TaskList.position", minimum=0)
        self.created_at = _as_datetime(self.created_at, "TaskList.created_at")
        self.updated_at = _as_datetime(self.updated_at, "TaskList.updated_at")


@dataclass(slots=True)
class Label(CanonicalModel):
    id: str
    name: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    icon: str | None = DEFAULT_LABEL_ICON
    color: str = DEFAULT_LABEL_COLOR

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Label.id")
        self.name = _as_str(self.name, "Label.name", max_len=_MAX_NAME)
        self.user_id = _as_str(self.user_id, "Label.user_id")
        self.icon = _as_optional_str(self.icon, "Label.icon", max_len=16)
        self.color = _as_str(self.color, "Label.color", max_len=32)
        self.created_at = _as_datetime(self.created_at, "Label.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Label.updated_at")


@dataclass(slots=True)
class Task(CanonicalModel):
    id: str
    name: str
    user_id: str
    list_id: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    date: datetime | None = None
    deadline: datetime | None = None
    estimate: str | None = None
    actual_time: str | None = None
    priority: Priority | str = Priority.NONE
    status: TaskStatus | str = TaskStatus.TODO
    parent_task_id: str | None = None
    position: int = 0
    is_recurring: bool = False
    recurring_pattern: RecurringPattern | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Task.id")
        self.name = _as_str(self.name, "Task.name", max_len=_MAX_NAME)
        self.user_id = _as_str(self.user_id, "Task.user_id")
        self.list_id = _as_str(self.list_id, "Task.list_id")
        self.description = _as_optional_str(self.description, "Task.description")
        if self.date is not None:
            self.date = _as_datetime(self.date, "Task.date")
        if self.deadline is not None:
            self.deadline = _as_datetime(self.deadline, "Task.deadline")
        self.estimate = _as_duration(self.estimate, "Task.estimate")
        self.actual_time = _as_duration(self.actual_time, "Task.actual_time")
        self.priority = _as_enum(Priority, self.priority, "Task.priority")
        self.status = _as_enum(TaskStatus, self.status, "Task.status")
        self.parent_task_id = _as_optional_str(self.parent_task_id, "Task.parent_task_id")
        if self.parent_task_id is not None and self.parent_task_id == self.id:
            _fail("Task.parent_task_id", "task cannot be its own parent")
        self.position = _as_int(self.position, "Task.position", minimum=0)
        self.is_recurring = _as_bool(self.is_recurring, "Task.is_recurring")
        if self.recurring_pattern is not None:
            self.recurring_pattern = _as_recurring_pattern(
                self.recurring_pattern, "Task.recurring_pattern"
            )
        if self.is_recurring and self.recurring_pattern is None:
            _fail("Task.recurring_pattern", "required when is_recurring is true")
        self.created_at = _as_datetime(self.created_at, "Task.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Task.updated_at")


@dataclass(slots=True)
class Subtask(CanonicalModel):
    id: str
    name: str
    task_id: str
    created_at: datetime
    updated_at: datetime
    is_completed: bool = False
    position: int = 0

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Subtask.id")
        self.name = _as_str(self.name, "Subtask.name", max_len=_MAX_NAME)
        self.task_id = _as_str(self.task_id, "Subtask.task_id")
        self.is_completed = _as_bool(self.is_completed, "Subtask.is_completed")
        self.position = _as_int(self.position, "Subtask.position", minimum=0)
        self.created_at = _as_datetime(self.created_at, "Subtask.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Subtask.updated_at")


@dataclass(slots=True)
class Reminder(CanonicalModel):
    id: str
    task_id: str
    remind_at: datetime
    created_at: datetime
    updated_at: datetime
    is_sent: bool = False
    method: ReminderMethod | str = ReminderMethod.PUSH

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Reminder.id")
        self.task_id = _as_str(self.task_id, "Reminder.task_id")
        self.remind_at = _as_datetime(self.remind_at, "Reminder.remind_at")
        self.is_sent = _as_bool(self.is_sent, "Reminder.is_sent")
        self.method = _as_enum(ReminderMethod, self.method, "Reminder.method")
        self.created_at = _as_datetime(self.created_at, "Reminder.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Reminder.updated_at")


@dataclass(slots=True)
class Attachment(CanonicalModel):
    """Immutable file reference; ``uploaded_at`` is its only timestamp."""

    id: str
    task_id: str
    filename: str
    original_name: str
    mime_type: str
    size: int
    path: str
    uploaded_at: datetime

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Attachment.id")
        self.task_id = _as_str(self.task_id, "Attachment.task_id")
        self.filename = _as_str(self.filename, "Attachment.filename", max_len=1024)
        self.original_name = _as_str(self.original_name, "Attachment.original_name", max_len=1024)
        self.mime_type = _as_str(self.mime_type, "Attachment.mime_type", max_len=255)
        self.size = _as_int(self.size, "Attachment.size", minimum=1)
        self.path = _as_str(self.path, "Attachment.path", max_len=4096)
        self.uploaded_at = _as_datetime(self.uploaded_at, "Attachment.uploaded_at")


@dataclass(slots=True)
class TaskHistoryEntry(CanonicalModel):
    id: str
    task_id: str
    action: HistoryAction | str
    changed_by: str
    created_at: datetime
    changes: dict[str, JSONValue] = field(default_factory=dict)
    description: str | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "TaskHistoryEntry.id")
        self.task_id = _as_str(self.task_id, "TaskHistoryEntry.task_id")
        self.action = _as_enum(HistoryAction, self.action, "TaskHistoryEntry.action")
        self.changed_by = _as_str(self.changed_by, "TaskHistoryEntry.changed_by")
        self.changes = _as_json_object(self.changes, "TaskHistoryEntry.changes")
        self.description = _as_optional_str(self.description, "TaskHistoryEntry.description")
        self.created_at = _as_datetime(self.created_at, "TaskHistoryEntry.created_at")


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TaskWithDetails(CanonicalModel):
    task: Task
    task_list: TaskList | None = None
    labels: tuple[Label, ...] = ()
    subtasks: tuple[Subtask, ...] = ()
    reminders: tuple[Reminder, ...] = ()
    attachments: tuple[Attachment, ...] = ()

    @property
    def subtask_count(self) -> int:
        return len(self.subtasks)

    @property
    def completed_subtask_count(self) -> int:
        return sum(1 for subtask in self.subtasks if subtask.is_completed)

    def to_dict(self) -> dict[str, JSONValue]:
        out = self.task.to_dict()
        out["list"] = self.task_list.to_dict() if self.task_list is not None else None
        out["labels"] = [label.to_dict() for label in self.labels]
        out["subtasks"] = [subtask.to_dict() for subtask in self.subtasks]
        out["reminders"] = [reminder.to_dict() for reminder in self.reminders]
        out["attachments"] = [attachment.to_dict() for attachment in self.attachments]
        out["subtask_count"] = self.subtask_count
        out["completed_subtask_count"] = self.completed_subtask_count
        return out


@dataclass(slots=True)
class ListWithCounts(CanonicalModel):
    task_list: TaskList
    task_count: int = 0
    completed_task_count: int = 0

    def to_dict(self) -> dict[str, JSONValue]:
        out = self.task_list.to_dict()
        out["task_count"] = self.task_count
        out["completed_task_count"] = self.completed_task_count
        return out


@dataclass(slots=True)
class LabelWithCounts(CanonicalModel):
    label: Label
    task_count: int = 0

    def to_dict(self) -> dict[str, JSONValue]:
        out = self.label.to_dict()
        out["task_count"] = self.task_count
        return out


# ---------------------------------------------------------------------------
# Maintenance reports
# ---------------------------------------------------------------------------


class CheckStatus(StrEnum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class DatabaseStats(CanonicalModel):
    """Row counts per entity table."""

    total_users: int = 0
    total_lists: int = 0
    total_tasks: int = 0
    total_labels: int = 0
    total_subtasks: int = 0
    total_reminders: int = 0
    total_attachments: int = 0
    total_history_entries: int = 0


@dataclass(frozen=True, slots=True)
class HealthResult(CanonicalModel):
    healthy: bool
    message: str
    stats: DatabaseStats | None = None


@dataclass(frozen=True, slots=True)
class HealthCheckItem(CanonicalModel):
    name: str
    status: CheckStatus
    message: str
    details: dict[str, JSONValue] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class HealthReport(CanonicalModel):
    """Aggregate of named checks; any ``fail`` is critical, any ``warning`` degrades."""

    status: HealthStatus
    checks: tuple[HealthCheckItem, ...]
    timestamp: datetime

    @classmethod
    def from_checks(
        cls, checks: tuple[HealthCheckItem, ...], *, timestamp: datetime
    ) -> HealthReport:
        if any(check.status is CheckStatus.FAIL for check in checks):
            status = HealthStatus.CRITICAL
        elif any(check.status is CheckStatus.WARNING for check in checks):
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY
        return cls(status=status, checks=checks, timestamp=timestamp)


@dataclass(frozen=True, slots=True)
class IntegrityReport(CanonicalModel):
    is_valid: bool
    issues: tuple[str, ...] = ()

    @classmethod
    def from_issues(cls, issues: list[str]) -> IntegrityReport:
        return cls(is_valid=not issues, issues=tuple(issues))


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _fail(path: str, message: str) -> NoReturn:
    raise ValidationError(f"{path}: {message}")


def canonical_json(value: object) -> str:
    """Deterministic JSON for persisted blobs."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
    open_ended: bool = False,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    if not open_ended:
        allowed = required | (optional or set())
        unknown = sorted(key for key in parsed if key not in allowed)
        if unknown:
            _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if len(normalized) < min_len:
        _fail(path, "must not be empty" if min_len == 1 else f"must be >= {min_len} characters")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=max_len)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(
    value: object,
    path: str,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        _fail(path, f"must be <= {maximum}")
    return value


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware")
    return parsed.astimezone(UTC)


def datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_duration(value: object, path: str) -> str | None:
    if value is None:
        return None
    parsed = _as_str(value, path, max_len=5)
    if not _DURATION_RE.fullmatch(parsed):
        _fail(path, f"must be in HH:mm format, got {parsed!r}")
    if int(parsed.split(":", 1)[1]) > 59:
        _fail(path, "minutes must be between 00 and 59")
    return parsed


def _as_preferences(value: object, path: str) -> UserPreferences:
    if isinstance(value, UserPreferences):
        return value
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            _fail(path, f"invalid JSON: {exc}")
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return UserPreferences.from_dict(value)


def _as_recurring_pattern(value: object, path: str) -> RecurringPattern:
    if isinstance(value, RecurringPattern):
        return value
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            _fail(path, f"invalid JSON: {exc}")
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return RecurringPattern.from_dict(value)


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, datetime):
        return datetime_to_iso8601z(value)
    if isinstance(value, Enum):
        return cast("JSONValue", value.value)
    if isinstance(value, (list, tuple)):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"list length exceeds {_MAX_JSON_COLLECTION}")
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, CanonicalModel):
        return value.to_dict()
    if isinstance(value, Mapping):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"object size exceeds {_MAX_JSON_COLLECTION}")
        parsed: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _serialize_value(value: object, path: str) -> JSONValue:
    if isinstance(value, CanonicalModel):
        return value.to_dict()
    return _as_json_value(value, path)


def as_json_value(value: object, path: str) -> JSONValue:
    """Public entry point used to normalize history diffs before persisting."""

    return _as_json_value(value, path)


__all__ = [
    "Attachment",
    "CanonicalModel",
    "CheckStatus",
    "DatabaseStats",
    "HealthCheckItem",
    "HealthReport",
    "HealthResult",
    "HealthStatus",
    "HistoryAction",
    "IntegrityReport",
    "JSONValue",
    "Label",
    "LabelWithCounts",
    "ListWithCounts",
    "Priority",
    "RecurrenceType",
    "RecurringPattern",
    "Reminder",
    "ReminderMethod",
    "Subtask",
    "Task",
    "TaskHistoryEntry",
    "TaskList",
    "TaskStatus",
    "TaskWithDetails",
    "Theme",
    "User",
    "UserPreferences",
    "as_json_value",
    "canonical_json",
    "datetime_to_iso8601z",
]
