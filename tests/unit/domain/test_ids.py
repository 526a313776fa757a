"""Unit tests for prefixed entity ID helpers."""

from __future__ import annotations

import pytest

from taskstore.domain import ids


def _zero_bytes(size: int) -> bytes:
    return b"\x00" * size


def _ff_bytes(size: int) -> bytes:
    return b"\xff" * size


_GENERATORS = [
    (ids.generate_user_id, ids.USER_ID_PREFIX),
    (ids.generate_list_id, ids.LIST_ID_PREFIX),
    (ids.generate_label_id, ids.LABEL_ID_PREFIX),
    (ids.generate_task_id, ids.TASK_ID_PREFIX),
    (ids.generate_subtask_id, ids.SUBTASK_ID_PREFIX),
    (ids.generate_reminder_id, ids.REMINDER_ID_PREFIX),
    (ids.generate_attachment_id, ids.ATTACHMENT_ID_PREFIX),
    (ids.generate_history_id, ids.HISTORY_ID_PREFIX),
]


def test_task_ids_do_not_collide() -> None:
    generated = {ids.generate_task_id() for _ in range(5_000)}
    assert len(generated) == 5_000


@pytest.mark.parametrize(("generate", "prefix"), _GENERATORS)
def test_entity_ids_carry_their_prefix(generate: object, prefix: str) -> None:
    value = generate(timestamp_ms=1_767_225_600_000, randbytes=_ff_bytes)  # type: ignore[operator]

    assert value.startswith(f"{prefix}-")
    ids.validate_prefixed_id(value, prefix)
    assert ids.parse_ulid_timestamp_ms(value.split("-", 1)[1]) == 1_767_225_600_000


def test_prefixed_id_rejects_foreign_prefix_and_garbage() -> None:
    task_id = ids.generate_task_id(timestamp_ms=5, randbytes=_zero_bytes)

    with pytest.raises(ValueError, match="expected prefix"):
        ids.validate_prefixed_id(task_id, ids.LIST_ID_PREFIX)
    with pytest.raises(ValueError, match="invalid ULID part"):
        ids.validate_prefixed_id("tsk-not-a-ulid", ids.TASK_ID_PREFIX)
    with pytest.raises(ValueError, match="must not contain"):
        ids.generate_prefixed_id("bad-prefix")
    with pytest.raises(ValueError, match="non-empty"):
        ids.generate_prefixed_id("")


def test_ids_sort_by_creation_time() -> None:
    earlier = ids.generate_history_id(timestamp_ms=1_000, randbytes=_ff_bytes)
    later = ids.generate_history_id(timestamp_ms=1_001, randbytes=_zero_bytes)

    assert earlier < later


def test_ulid_boundaries_and_charset() -> None:
    ids.validate_ulid("7" + "Z" * 25)
    with pytest.raises(ValueError, match="overflow"):
        ids.validate_ulid("8" + "0" * 25)
    with pytest.raises(ValueError, match="ulid length must be"):
        ids.validate_ulid("0" * 25)
    with pytest.raises(ValueError, match="invalid ULID character"):
        ids.validate_ulid("U" + "0" * 25)

    top = ids.generate_ulid(timestamp_ms=ids.ULID_MAX_TIMESTAMP_MS, randbytes=_zero_bytes)
    assert ids.parse_ulid_timestamp_ms(top) == ids.ULID_MAX_TIMESTAMP_MS
    with pytest.raises(ValueError, match="out of range"):
        ids.generate_ulid(timestamp_ms=ids.ULID_MAX_TIMESTAMP_MS + 1)
    with pytest.raises(ValueError, match="exactly 10 bytes"):
        ids.generate_ulid(randbytes=lambda size: b"\x00" * (size - 1))


def test_every_id_table_has_a_distinct_prefix() -> None:
    from taskstore.constants import REQUIRED_TABLES

    assert set(ids.ENTITY_PREFIXES) == set(REQUIRED_TABLES) - {"task_labels"}
    assert len(set(ids.ENTITY_PREFIXES.values())) == len(ids.ENTITY_PREFIXES)

    generate = ids.id_generator("tmp")
    assert generate.__name__ == "generate_tmp_id"
    ids.validate_prefixed_id(generate(), "tmp")


@pytest.mark.unit
def test_module_executes_cleanly_from_source() -> None:
    import importlib.util

    spec = importlib.util.spec_from_file_location("_ids_fresh", ids.__file__)
    assert spec is not None and spec.loader is not None
    fresh = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(fresh)

    for name in ids.__all__:
        assert hasattr(fresh, name), name
    assert fresh.generate_task_id.__name__ == "generate_tsk_id"
    fresh.validate_prefixed_id(fresh.generate_history_id(), fresh.HISTORY_ID_PREFIX)
