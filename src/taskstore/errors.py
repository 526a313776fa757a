"""
taskstore - error taxonomy

File: src/taskstore/errors.py

Purpose
- Typed failures raised by the connection manager, migration runner, transaction
  engine and repositories.

Functional requirements
- Every error carries a machine-readable ``code`` so callers can map it to a
  transport status without inspecting store internals.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import ClassVar


class DatabaseError(RuntimeError):
    """Base class for task store errors."""

    default_code: ClassVar[str] = "DATABASE_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class StoreConnectionError(DatabaseError):
    """Raised when the physical store cannot be opened or configured."""

    default_code = "CONNECTION_ERROR"


class NotInitializedError(DatabaseError):
    """Raised when the store is used before ``initialize``."""

    default_code = "NOT_INITIALIZED"


class SchemaValidationError(DatabaseError):
    """Raised when the post-migration table audit finds gaps."""

    default_code = "SCHEMA_VALIDATION_ERROR"

    def __init__(self, missing_tables: Sequence[str]) -> None:
        self.missing_tables = tuple(missing_tables)
        super().__init__(f"missing required tables: {', '.join(self.missing_tables)}")


class MigrationError(DatabaseError):
    """Raised when migrations cannot be applied safely."""

    default_code = "MIGRATION_ERROR"


class ValidationError(DatabaseError, ValueError):
    """Raised when a domain rule is violated before anything is persisted."""

    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, errors: Sequence[str] = (), code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.errors = tuple(errors) if errors else (message,)


class NotFoundError(DatabaseError):
    """Raised when a referenced entity does not exist."""

    default_code = "NOT_FOUND"


class ForbiddenError(DatabaseError):
    """Raised when the caller does not own the entity it is mutating."""

    default_code = "FORBIDDEN"


class PreconditionFailed(DatabaseError):
    """Raised when a business rule refuses an otherwise valid operation."""

    default_code = "PRECONDITION_FAILED"


class TransactionError(DatabaseError):
    """Raised when an atomic batch failed and was fully rolled back."""

    default_code = "TRANSACTION_ERROR"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransactionNotStartedError(DatabaseError):
    default_code = "TRANSACTION_NOT_STARTED"


class TransactionRolledBack(DatabaseError):
    default_code = "TRANSACTION_ROLLED_BACK"


class DatabaseBusyError(DatabaseError):
    """Raised when the engine reports the store as locked."""

    default_code = "DATABASE_BUSY"


class DatabaseCorruptionError(DatabaseError):
    """Raised when the engine reports possible corruption."""

    default_code = "DATABASE_CORRUPT"


__all__ = [
    "DatabaseBusyError",
    "DatabaseCorruptionError",
    "DatabaseError",
    "ForbiddenError",
    "MigrationError",
    "NotFoundError",
    "NotInitializedError",
    "PreconditionFailed",
    "SchemaValidationError",
    "StoreConnectionError",
    "TransactionError",
    "TransactionNotStartedError",
    "TransactionRolledBack",
    "ValidationError",
]
