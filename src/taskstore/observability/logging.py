"""Structured logging setup: structlog processors rendered through stdlib handlers."""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import IO, Any, Final

import structlog

from taskstore.config.schema import StoreConfig

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOGGER_NAME: Final[str] = "taskstore"
_HANDLER_MARKER: Final[str] = "_taskstore_handler"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "authorization",
    "credential",
    "cookie",
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for structured logging."""

    level: int | str = "INFO"
    json_output: bool = True
    logger_name: str = _DEFAULT_LOGGER_NAME
    stream: IO[str] | None = None
    redact: bool = True

    @classmethod
    def for_store(cls, config: StoreConfig, **overrides: Any) -> LoggingConfig:
        """Derive logging settings from a store config (``verbose`` selects DEBUG)."""

        level = "DEBUG" if config.verbose else "INFO"
        return cls(level=overrides.pop("level", level), **overrides)


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Configure structlog and the package's stdlib logger; safe to call repeatedly.

    Returns the stdlib logger that owns the handler so callers can adjust it.
    """

    cfg = config if config is not None else LoggingConfig()
    level = _parse_log_level(cfg.level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if cfg.redact:
        shared_processors.append(redact_sensitive_fields)

    renderer: Any
    if cfg.json_output:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(cfg.stream if cfg.stream is not None else sys.stderr)
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_MARKER, True)

    logger = logging.getLogger(cfg.logger_name)
    for existing in list(logger.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def redact_sensitive_fields(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking values whose key names look like credentials."""

    for key in list(event_dict):
        if _requires_redaction_for_key(key):
            event_dict[key] = _REDACTED_VALUE
        elif isinstance(event_dict[key], dict):
            event_dict[key] = _redact_mapping(event_dict[key])
    return event_dict


def _redact_mapping(value: dict[str, Any]) -> dict[str, Any]:
    output: dict[str, Any] = {}
    for key, item in value.items():
        if isinstance(key, str) and _requires_redaction_for_key(key):
            output[key] = _REDACTED_VALUE
        elif isinstance(item, dict):
            output[key] = _redact_mapping(item)
        else:
            output[key] = item
    return output


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value

    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")

    normalized = value.strip().upper()
    parsed = logging.getLevelName(normalized)
    if isinstance(parsed, int):
        return parsed

    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "LoggingConfig",
    "configure_logging",
    "redact_sensitive_fields",
]
