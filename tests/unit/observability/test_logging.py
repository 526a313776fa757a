"""
taskstore - unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction and level filtering.

What this test file should cover
- JSON line validity and redaction guarantees.
- Stdlib records rendered through the same pipeline.
- Repeated configuration does not duplicate handlers.
"""

from __future__ import annotations

import io
import json
import logging
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from taskstore.config.schema import StoreConfig
from taskstore.observability.logging import (
    LoggingConfig,
    configure_logging,
    redact_sensitive_fields,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"taskstore.tests.logging.{uuid4().hex}"


def _read_json_lines(stream: io.StringIO) -> list[dict[str, object]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_json_lines_are_valid_and_redacted() -> None:
    stream = io.StringIO()
    name = _logger_name()
    configure_logging(LoggingConfig(logger_name=name, stream=stream))

    structlog.get_logger(name).info(
        "backup_created",
        path="/tmp/backup.db",
        api_key="abc123",
        context={"password": "hunter2", "nested": {"auth_token": "t"}, "rows": 3},
    )

    (record,) = _read_json_lines(stream)
    assert record["event"] == "backup_created"
    assert record["level"] == "info"
    assert record["logger"] == name
    assert record["path"] == "/tmp/backup.db"
    assert record["api_key"] == "***REDACTED***"
    assert record["context"] == {
        "password": "***REDACTED***",
        "nested": {"auth_token": "***REDACTED***"},
        "rows": 3,
    }
    assert str(record["timestamp"]).endswith("Z")


def test_stdlib_records_share_the_pipeline_and_level_filter() -> None:
    stream = io.StringIO()
    name = _logger_name()
    configure_logging(LoggingConfig(level="WARNING", logger_name=name, stream=stream))

    logger = logging.getLogger(name)
    logger.info("dropped")
    logger.warning("kept")
    structlog.get_logger(name).debug("also_dropped")

    records = _read_json_lines(stream)
    assert [record["event"] for record in records] == ["kept"]
    assert records[0]["level"] == "warning"


def test_reconfiguration_replaces_the_package_handler() -> None:
    name = _logger_name()
    first = io.StringIO()
    second = io.StringIO()

    configure_logging(LoggingConfig(logger_name=name, stream=first))
    logger = configure_logging(LoggingConfig(logger_name=name, stream=second))
    structlog.get_logger(name).info("once")

    assert len(logger.handlers) == 1
    assert first.getvalue() == ""
    assert [record["event"] for record in _read_json_lines(second)] == ["once"]


def test_console_output_and_store_derived_level() -> None:
    stream = io.StringIO()
    name = _logger_name()
    config = LoggingConfig.for_store(
        StoreConfig(path=":memory:", verbose=True),
        json_output=False,
        logger_name=name,
        stream=stream,
    )
    assert config.level == "DEBUG"
    assert LoggingConfig.for_store(StoreConfig(path=":memory:")).level == "INFO"

    configure_logging(config)
    structlog.get_logger(name).debug("query_executed", secret="s")

    output = stream.getvalue()
    assert "query_executed" in output
    assert "secret=***REDACTED***" in output


def test_redaction_processor_and_level_validation() -> None:
    event = {"event": "x", "Authorization": "Bearer y", "safe": {"cookie_jar": 1}}

    assert redact_sensitive_fields(None, "info", event) == {
        "event": "x",
        "Authorization": "***REDACTED***",
        "safe": {"cookie_jar": "***REDACTED***"},
    }
    with pytest.raises(ValueError, match="unsupported logging level"):
        configure_logging(LoggingConfig(level="LOUD", logger_name=_logger_name()))
