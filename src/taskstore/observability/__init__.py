"""
taskstore observability package.

File: src/taskstore/observability/__init__.py

Purpose
- Structured logging configuration shared by the store, scheduler and operator scripts.
"""

from taskstore.observability.logging import (
    LoggingConfig,
    configure_logging,
    redact_sensitive_fields,
)

__all__ = [
    "LoggingConfig",
    "configure_logging",
    "redact_sensitive_fields",
]
