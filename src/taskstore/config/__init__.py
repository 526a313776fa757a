"""
taskstore config package public API.

File: src/taskstore/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``taskstore.toml`` + ``TASKSTORE_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from taskstore.config.loader import (
    CONFIG_SECTION,
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
)
from taskstore.config.schema import (
    MEMORY_PATH,
    ConfigValidationError,
    ConfigValidationIssue,
    StoreConfig,
    default_config,
)

__all__ = [
    "CONFIG_SECTION",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "MEMORY_PATH",
    "StoreConfig",
    "default_config",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
