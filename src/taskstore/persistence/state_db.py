"""
taskstore - connection manager

File: src/taskstore/persistence/state_db.py

Purpose
- SQLite connection lifecycle, engine tuning, migration runner and transaction engine.

What should be included in this file
- One physical connection per store, opened once and guarded by a reentrant lock.
- Ledger-backed, checksummed migrations followed by a table/index validation pass.
- Atomic batches with savepoint nesting, and the native backup primitive.

Functional requirements
- ``initialize`` is idempotent; ``close`` allows a clean re-open.
- Migrations are idempotent across restarts and never re-run recorded DDL.
- Engine errors surface as typed ``DatabaseError`` subclasses.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final, NoReturn, TypeVar

import structlog

from taskstore.config.schema import StoreConfig
from taskstore.constants import MIGRATIONS_TABLE, REQUIRED_TABLES
from taskstore.domain.models import datetime_to_iso8601z
from taskstore.errors import (
    DatabaseBusyError,
    DatabaseCorruptionError,
    DatabaseError,
    MigrationError,
    NotInitializedError,
    SchemaValidationError,
    StoreConnectionError,
    TransactionError,
    ValidationError,
)
from taskstore.persistence.backup import BackupScheduler, default_backup_path
from taskstore.persistence.schema import (
    MIGRATIONS,
    MIGRATIONS_TABLE_SQL,
    REQUIRED_INDEXES,
    Migration,
    latest_version,
    parse_version,
)
from taskstore.persistence.transaction import ManualTransaction

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None
Row = dict[str, RowValue]
Clock = Callable[[], datetime]
T = TypeVar("T")

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    id: str
    name: str
    version: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class MigrationStatus:
    """Ledger comparison used by ``needs_migration`` and the migrate script."""

    current_version: str | None
    target_version: str
    applied: tuple[MigrationRecord, ...]
    pending: tuple[Migration, ...]
    checksum_mismatches: tuple[str, ...]

    @property
    def up_to_date(self) -> bool:
        return not self.pending and not self.checksum_mismatches


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TaskStoreDB:
    """Owns the single SQLite connection of a task store."""

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        logger: Any | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config if config is not None else StoreConfig()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._clock = clock if clock is not None else _utc_now
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._scheduler: BackupScheduler | None = None
        self._savepoint_counter = 0

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def path(self) -> Path:
        return Path(self._config.path).expanduser()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    @property
    def backup_scheduler(self) -> BackupScheduler | None:
        return self._scheduler

    def now(self) -> datetime:
        return self._clock()

    def now_iso(self) -> str:
        return datetime_to_iso8601z(self._clock())

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Open, tune and migrate the store. A second call is a no-op."""

        with self._lock:
            if self._conn is not None:
                return

            conn = self._open_connection()
            self._conn = conn
            try:
                self._migrate(conn)
                self._validate_schema(conn)
            except BaseException:
                self._conn = None
                conn.close()
                raise

            if self._config.backup_enabled and not self._config.is_memory:
                self._scheduler = BackupScheduler(
                    self.create_backup,
                    interval_seconds=self._config.backup_interval_seconds,
                    logger=self._logger,
                )
                self._scheduler.start()

        self._logger.info(
            "database_connection_opened",
            path=self._config.path,
            wal_mode=self._config.wal_mode,
            foreign_keys=self._config.foreign_keys,
        )

    def get_connection(self) -> sqlite3.Connection:
        conn = self._conn
        if conn is None:
            raise NotInitializedError("database is not initialized; call initialize() first")
        return conn

    def connect(self) -> sqlite3.Connection:
        """Open an additional connection with the same engine settings."""

        return self._open_connection()

    def close(self) -> None:
        with self._lock:
            if self._scheduler is not None:
                self._scheduler.stop()
                self._scheduler = None
            conn = self._conn
            self._conn = None
            if conn is None:
                return
            conn.close()
        self._logger.info("database_connection_closed", path=self._config.path)

    def __enter__(self) -> TaskStoreDB:
        self.initialize()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.close()

    # ------------------------------------------------------------------
    # migrations
    # ------------------------------------------------------------------

    def migrate(self) -> str:
        """Apply pending migrations and return the ledger version."""

        with self._lock:
            conn = self.get_connection()
            version = self._migrate(conn)
            self._validate_schema(conn)
            return version

    def run_migrations(self) -> str:
        return self.migrate()

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> str | None:
        records = self._load_applied_migrations(conn if conn is not None else self.get_connection())
        if not records:
            return None
        return max((record.version for record in records.values()), key=parse_version)

    def schema_history(self, *, conn: sqlite3.Connection | None = None) -> list[MigrationRecord]:
        records = self._load_applied_migrations(conn if conn is not None else self.get_connection())
        return sorted(records.values(), key=lambda record: (record.applied_at, record.id))

    def migration_status(self, *, conn: sqlite3.Connection | None = None) -> MigrationStatus:
        target_conn = conn if conn is not None else self.get_connection()
        applied = self._load_applied_migrations(target_conn)
        pending: list[Migration] = []
        mismatches: list[str] = []
        for migration in MIGRATIONS:
            record = applied.get(migration.id)
            if record is None:
                pending.append(migration)
            elif record.checksum != migration.checksum:
                mismatches.append(migration.id)
        current = (
            max((record.version for record in applied.values()), key=parse_version)
            if applied
            else None
        )
        return MigrationStatus(
            current_version=current,
            target_version=latest_version(),
            applied=tuple(sorted(applied.values(), key=lambda record: record.id)),
            pending=tuple(pending),
            checksum_mismatches=tuple(mismatches),
        )

    def needs_migration(self) -> bool:
        status = self.migration_status()
        if status.pending:
            return True
        if status.current_version is None:
            return True
        return parse_version(status.current_version) < parse_version(status.target_version)

    def validate_schema(self) -> tuple[str, ...]:
        """Raise on missing tables; return (and log) missing index names."""

        with self._lock:
            return self._validate_schema(self.get_connection())

    # ------------------------------------------------------------------
    # transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, *, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Run statements atomically; nested use becomes a savepoint."""

        with self._lock:
            conn = self.get_connection()
            if conn.in_transaction:
                savepoint = self._next_savepoint_name()
                self._execute(conn, f"SAVEPOINT {savepoint}", (), operation="savepoint")
                try:
                    yield conn
                except BaseException:
                    self._execute(
                        conn,
                        f"ROLLBACK TO SAVEPOINT {savepoint}",
                        (),
                        operation="rollback to savepoint",
                    )
                    self._execute(
                        conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release savepoint"
                    )
                    raise
                else:
                    self._execute(
                        conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release savepoint"
                    )
                return

            begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            self._execute(conn, begin_sql, (), operation="begin transaction")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    self._execute(conn, "ROLLBACK", (), operation="rollback transaction")
                raise
            else:
                self._execute(conn, "COMMIT", (), operation="commit transaction")

    def execute_transaction(self, operations: Sequence[Callable[[], T]]) -> list[T]:
        """Run every operation in one transaction; any failure rolls all of them back."""

        results: list[T] = []
        try:
            with self.transaction():
                for operation in operations:
                    results.append(operation())
        except Exception as exc:
            self._logger.warning(
                "transaction_rolled_back",
                operations=len(operations),
                completed=len(results),
                error_type=type(exc).__name__,
            )
            raise TransactionError(
                f"transaction failed and was rolled back: {exc}", cause=exc
            ) from exc
        return results

    def create_transaction(self) -> ManualTransaction:
        return ManualTransaction(self)

    # ------------------------------------------------------------------
    # statement helpers
    # ------------------------------------------------------------------

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute a parameterized statement and return affected row count."""

        if conn is not None:
            return self._execute(conn, sql, params, operation="execute statement").rowcount

        with self.transaction() as tx:
            return self._execute(tx, sql, params, operation="execute statement").rowcount

    def query(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Row]:
        """Run a query and return rows as dictionaries."""

        if conn is not None:
            cursor = self._execute(conn, sql, params, operation="query")
            return [_row_to_dict(row) for row in cursor.fetchall()]

        with self._lock:
            cursor = self._execute(self.get_connection(), sql, params, operation="query")
            return [_row_to_dict(row) for row in cursor.fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Row | None:
        """Run a query and return the first row, if any."""

        if conn is not None:
            row = self._execute(conn, sql, params, operation="query one").fetchone()
            return None if row is None else _row_to_dict(row)

        with self._lock:
            cursor = self._execute(self.get_connection(), sql, params, operation="query one")
            row = cursor.fetchone()
            return None if row is None else _row_to_dict(row)

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    def create_backup(self, destination: str | Path | None = None) -> Path:
        """Create a consistent snapshot using the SQLite backup API."""

        if destination is None:
            destination_path = default_backup_path(
                self.path, backup_dir=self._config.backup_dir, now=self.now()
            )
        else:
            destination_path = Path(destination).expanduser()

        try:
            destination_path.parent.mkdir(parents=True, exist_ok=True)
            target = sqlite3.connect(destination_path, isolation_level=None)
            try:
                if self._config.is_memory:
                    with self._lock:
                        self.get_connection().backup(target)
                else:
                    self.get_connection()
                    source = self.connect()
                    try:
                        source.backup(target)
                    finally:
                        source.close()
            finally:
                target.close()
        except OSError as exc:
            raise DatabaseError(f"backup to {destination_path} failed: {exc}") from exc
        except sqlite3.Error as exc:
            self._raise_actionable_error(exc, operation=f"backup to {destination_path}")

        self._logger.info("database_backup_written", path=str(destination_path))
        return destination_path

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Return integrity-check errors; empty tuple means OK."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query(f"PRAGMA integrity_check({max_errors})")
        messages = tuple(str(next(iter(row.values()), "")) for row in rows)
        if messages == ("ok",):
            return ()
        return messages

    def is_wal_mode(self) -> bool:
        row = self.query_one("PRAGMA journal_mode")
        if row is None:
            return False
        return str(next(iter(row.values()), "")).lower() == "wal"

    def optimize(self) -> None:
        with self._lock:
            conn = self.get_connection()
            self._execute(conn, "PRAGMA optimize", (), operation="optimize")
            self._execute(conn, "VACUUM", (), operation="vacuum")
        self._logger.info("database_optimized", path=self._config.path)

    def reset(self) -> None:
        """Drop every table and re-apply migrations (test fixtures only)."""

        with self._lock:
            conn = self.get_connection()
            rows = self._execute(
                conn,
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'",
                (),
                operation="list tables",
            ).fetchall()
            self._execute(conn, "PRAGMA foreign_keys=OFF", (), operation="disable foreign keys")
            try:
                with self.transaction() as tx:
                    for row in rows:
                        self._execute(
                            tx, f'DROP TABLE IF EXISTS "{row[0]}"', (), operation="drop table"
                        )
            finally:
                if self._config.foreign_keys:
                    self._execute(
                        conn, "PRAGMA foreign_keys=ON", (), operation="enable foreign keys"
                    )
            self._migrate(conn)
            self._validate_schema(conn)
        self._logger.warning("database_reset", path=self._config.path)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _open_connection(self) -> sqlite3.Connection:
        cfg = self._config
        target: str | Path = cfg.path if cfg.is_memory else self.path
        try:
            if not cfg.is_memory:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                target,
                timeout=cfg.timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
        except (OSError, sqlite3.Error) as exc:
            raise StoreConnectionError(f"unable to open database at {cfg.path}: {exc}") from exc

        conn.row_factory = sqlite3.Row
        try:
            self._configure_connection(conn)
        except (sqlite3.Error, StoreConnectionError) as exc:
            conn.close()
            if isinstance(exc, StoreConnectionError):
                raise
            raise StoreConnectionError(
                f"unable to configure database at {cfg.path}: {exc}"
            ) from exc
        return conn

    def _configure_connection(self, conn: sqlite3.Connection) -> None:
        cfg = self._config
        conn.execute(f"PRAGMA foreign_keys={'ON' if cfg.foreign_keys else 'OFF'}")
        conn.execute(f"PRAGMA busy_timeout={cfg.timeout_ms}")
        if cfg.wal_mode and not cfg.is_memory:
            journal_row = conn.execute("PRAGMA journal_mode=WAL").fetchone()
            if journal_row is None:
                raise StoreConnectionError("failed to configure journal_mode")
            journal_mode = str(journal_row[0]).lower()
            if journal_mode != "wal":
                raise StoreConnectionError(f"journal_mode must be WAL, got {journal_mode!r}")
        conn.execute(f"PRAGMA synchronous={cfg.synchronous}")
        conn.execute(f"PRAGMA cache_size={cfg.cache_size}")
        conn.execute(f"PRAGMA temp_store={cfg.temp_store}")
        if cfg.verbose:
            conn.set_trace_callback(self._trace_sql)

    def _trace_sql(self, statement: str) -> None:
        self._logger.debug("sql_executed", sql=statement)

    def _migrate(self, conn: sqlite3.Connection) -> str:
        target_version = latest_version()
        self._execute(conn, MIGRATIONS_TABLE_SQL, (), operation=f"create {MIGRATIONS_TABLE}")
        applied = self._load_applied_migrations(conn)

        current = max((record.version for record in applied.values()), key=parse_version, default=None)
        if current is not None and parse_version(current) > parse_version(target_version):
            raise MigrationError(
                "database schema is newer than supported by this package "
                f"(db={current}, code={target_version})"
            )

        for migration in MIGRATIONS:
            record = applied.get(migration.id)
            if record is not None:
                if record.checksum != migration.checksum:
                    raise MigrationError(
                        f"migration checksum mismatch for {migration.id}: "
                        f"db={record.checksum} code={migration.checksum}"
                    )
                self._logger.debug("migration_skipped", migration_id=migration.id)
                continue

            applied_at = self.now_iso()
            with self.transaction() as tx:
                for statement in migration.statements:
                    self._execute(tx, statement, (), operation=f"apply migration {migration.id}")
                self._execute(
                    tx,
                    f"""
                    INSERT INTO {MIGRATIONS_TABLE} (id, name, version, checksum, applied_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        migration.id,
                        migration.name,
                        migration.version,
                        migration.checksum,
                        applied_at,
                    ),
                    operation=f"record migration {migration.id}",
                )
            applied[migration.id] = MigrationRecord(
                id=migration.id,
                name=migration.name,
                version=migration.version,
                checksum=migration.checksum,
                applied_at=applied_at,
            )
            self._logger.info(
                "migration_applied", migration_id=migration.id, version=migration.version
            )

        return max((record.version for record in applied.values()), key=parse_version)

    def _validate_schema(self, conn: sqlite3.Connection) -> tuple[str, ...]:
        rows = self._execute(
            conn,
            "SELECT type, name FROM sqlite_master WHERE type IN ('table', 'index')",
            (),
            operation="validate schema",
        ).fetchall()
        tables = {row["name"] for row in rows if row["type"] == "table"}
        indexes = {row["name"] for row in rows if row["type"] == "index"}

        missing_tables = [name for name in REQUIRED_TABLES if name not in tables]
        if missing_tables:
            raise SchemaValidationError(missing_tables)

        missing_indexes = tuple(name for name in REQUIRED_INDEXES if name not in indexes)
        if missing_indexes:
            self._logger.warning("schema_missing_indexes", indexes=list(missing_indexes))
        return missing_indexes

    def _load_applied_migrations(self, conn: sqlite3.Connection) -> dict[str, MigrationRecord]:
        exists = self._execute(
            conn,
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (MIGRATIONS_TABLE,),
            operation=f"probe {MIGRATIONS_TABLE}",
        ).fetchone()
        if exists is None:
            return {}

        cursor = self._execute(
            conn,
            f"SELECT id, name, version, checksum, applied_at FROM {MIGRATIONS_TABLE}",
            (),
            operation=f"load {MIGRATIONS_TABLE}",
        )
        out: dict[str, MigrationRecord] = {}
        for row in cursor.fetchall():
            for column in ("id", "name", "version", "checksum", "applied_at"):
                if not isinstance(row[column], str):
                    raise MigrationError(f"{MIGRATIONS_TABLE}.{column} must be text")
            out[row["id"]] = MigrationRecord(
                id=row["id"],
                name=row["name"],
                version=row["version"],
                checksum=row["checksum"],
                applied_at=row["applied_at"],
            )
        return out

    def _next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"sp_{self._savepoint_counter}"

    def _execute(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        try:
            return conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError as exc:
            raise ValidationError(
                f"{operation} violated a constraint: {exc}", code="CONSTRAINT_VIOLATION"
            ) from exc
        except sqlite3.Error as exc:
            self._raise_actionable_error(exc, operation=operation)

    def _is_busy_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _BUSY_SUBSTRINGS)

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS)

    def _raise_actionable_error(self, exc: sqlite3.Error, *, operation: str) -> NoReturn:
        if self._is_corruption_error(exc):
            raise DatabaseCorruptionError(
                f"{operation} failed for {self._config.path}: {exc}. "
                "Run integrity_check() and restore from a backup if needed."
            ) from exc
        if self._is_busy_error(exc):
            raise DatabaseBusyError(
                f"{operation} hit SQLITE_BUSY for {self._config.path}: {exc}"
            ) from exc
        raise DatabaseError(f"{operation} failed for {self._config.path}: {exc}") from exc


def _row_to_dict(row: sqlite3.Row) -> Row:
    raw = dict(row)
    return {str(key): raw[key] for key in raw}


__all__ = [
    "MigrationRecord",
    "MigrationStatus",
    "Row",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "TaskStoreDB",
]
