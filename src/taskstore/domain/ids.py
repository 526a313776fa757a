"""Prefixed, time-ordered identifiers for task store rows.

Every id is ``<prefix>-<ulid>``: a short entity tag followed by a 26-character
Crockford Base32 ULID (48-bit millisecond timestamp + 80 random bits). Ids of
one entity therefore sort by creation time, which the repositories rely on as
a tie-breaker for stable ordering.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Final, Protocol

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_RANDOM_BITS: Final[int] = ULID_RANDOM_BYTES * 8
_ULID_BITS: Final[int] = 128
_SEPARATOR: Final[str] = "-"

USER_ID_PREFIX: Final[str] = "usr"
LIST_ID_PREFIX: Final[str] = "lst"
LABEL_ID_PREFIX: Final[str] = "lbl"
TASK_ID_PREFIX: Final[str] = "tsk"
SUBTASK_ID_PREFIX: Final[str] = "sub"
REMINDER_ID_PREFIX: Final[str] = "rem"
ATTACHMENT_ID_PREFIX: Final[str] = "att"
HISTORY_ID_PREFIX: Final[str] = "hist"

# Table name -> id prefix.
ENTITY_PREFIXES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "users": USER_ID_PREFIX,
        "lists": LIST_ID_PREFIX,
        "labels": LABEL_ID_PREFIX,
        "tasks": TASK_ID_PREFIX,
        "subtasks": SUBTASK_ID_PREFIX,
        "reminders": REMINDER_ID_PREFIX,
        "attachments": ATTACHMENT_ID_PREFIX,
        "task_history": HISTORY_ID_PREFIX,
    }
)

_DIGITS: Final[Mapping[str, int]] = MappingProxyType(
    {char: value for value, char in enumerate(CROCKFORD_BASE32_ALPHABET)}
)

RandBytes = Callable[[int], bytes]


class IdGenerator(Protocol):
    def __call__(
        self, *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
    ) -> str: ...


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    stamp = _current_ms() if timestamp_ms is None else timestamp_ms
    if isinstance(stamp, bool) or not isinstance(stamp, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(stamp).__name__}")
    if stamp < 0 or stamp > ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {stamp}"
        )
    entropy = _entropy(randbytes or secrets.token_bytes)
    return _encode((stamp << _RANDOM_BITS) | entropy)


def validate_ulid(s: str) -> None:
    """Raise ``ValueError`` naming the first problem found in ``s``."""

    _decode(s)


def parse_ulid_timestamp_ms(s: str) -> int:
    return _decode(s) >> _RANDOM_BITS


def generate_prefixed_id(
    prefix: str, *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    _check_prefix(prefix)
    return prefix + _SEPARATOR + generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    _check_prefix(expected_prefix)
    if not isinstance(id_str, str):
        raise ValueError(f"prefixed id must be a string, got {type(id_str).__name__}")
    prefix, separator, ulid_part = id_str.partition(_SEPARATOR)
    if prefix != expected_prefix or not separator:
        raise ValueError(f"expected prefix '{expected_prefix}{_SEPARATOR}', got {id_str!r}")
    try:
        _decode(ulid_part)
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def id_generator(prefix: str) -> IdGenerator:
    """Return a generator bound to ``prefix`` (used for the per-entity helpers below)."""

    _check_prefix(prefix)

    def generate(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
        return generate_prefixed_id(prefix, timestamp_ms=timestamp_ms, randbytes=randbytes)

    generate.__name__ = f"generate_{prefix}_id"
    return generate


def _current_ms() -> int:
    return time.time_ns() // 1_000_000


def _entropy(provider: RandBytes) -> int:
    raw = provider(ULID_RANDOM_BYTES)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    if len(raw) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return int.from_bytes(bytes(raw), "big")


def _encode(value: int) -> str:
    out: list[str] = []
    for _ in range(ULID_LENGTH):
        value, digit = divmod(value, 32)
        out.append(CROCKFORD_BASE32_ALPHABET[digit])
    return "".join(reversed(out))


def _decode(value: str) -> int:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")
    result = 0
    for position, char in enumerate(value.upper()):
        digit = _DIGITS.get(char)
        if digit is None:
            raise ValueError(f"invalid ULID character {value[position]!r} at index {position}")
        result = result * 32 + digit
    if result.bit_length() > _ULID_BITS:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")
    return result


def _check_prefix(prefix: str) -> None:
    if not isinstance(prefix, str):
        raise ValueError(f"prefix must be a string, got {type(prefix).__name__}")
    if not prefix:
        raise ValueError("prefix must be non-empty")
    if _SEPARATOR in prefix:
        raise ValueError(f"prefix must not contain '{_SEPARATOR}'")


# Bound after the helpers above so module import can call them.
generate_user_id: Final[IdGenerator] = id_generator(USER_ID_PREFIX)
generate_list_id: Final[IdGenerator] = id_generator(LIST_ID_PREFIX)
generate_label_id: Final[IdGenerator] = id_generator(LABEL_ID_PREFIX)
generate_task_id: Final[IdGenerator] = id_generator(TASK_ID_PREFIX)
generate_subtask_id: Final[IdGenerator] = id_generator(SUBTASK_ID_PREFIX)
generate_reminder_id: Final[IdGenerator] = id_generator(REMINDER_ID_PREFIX)
generate_attachment_id: Final[IdGenerator] = id_generator(ATTACHMENT_ID_PREFIX)
generate_history_id: Final[IdGenerator] = id_generator(HISTORY_ID_PREFIX)


__all__ = [
    "ATTACHMENT_ID_PREFIX",
    "CROCKFORD_BASE32_ALPHABET",
    "ENTITY_PREFIXES",
    "HISTORY_ID_PREFIX",
    "LABEL_ID_PREFIX",
    "LIST_ID_PREFIX",
    "REMINDER_ID_PREFIX",
    "SUBTASK_ID_PREFIX",
    "TASK_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "USER_ID_PREFIX",
    "IdGenerator",
    "RandBytes",
    "generate_attachment_id",
    "generate_history_id",
    "generate_label_id",
    "generate_list_id",
    "generate_prefixed_id",
    "generate_reminder_id",
    "generate_subtask_id",
    "generate_task_id",
    "generate_ulid",
    "generate_user_id",
    "id_generator",
    "parse_ulid_timestamp_ms",
    "validate_prefixed_id",
    "validate_ulid",
]
