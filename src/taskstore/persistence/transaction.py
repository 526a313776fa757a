"""Manual transaction handle for callers that need explicit begin/commit/rollback."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from typing import TYPE_CHECKING

from taskstore.errors import TransactionError, TransactionNotStartedError, TransactionRolledBack

if TYPE_CHECKING:
    from taskstore.persistence.state_db import Row, SQLValue, TaskStoreDB


class ManualTransaction:
    """Explicit transaction on the store connection.

    The store lock is held from ``begin`` until ``commit`` or ``rollback``, so the
    handle must be finished on the thread that began it. ``rollback`` always raises
    ``TransactionRolledBack`` so the abort is visible in the caller's control flow.
    """

    def __init__(self, db: TaskStoreDB) -> None:
        self._db = db
        self._conn: sqlite3.Connection | None = None

    @property
    def is_active(self) -> bool:
        return self._conn is not None

    def begin(self, *, immediate: bool = True) -> ManualTransaction:
        if self._conn is not None:
            raise TransactionError("transaction already started")

        self._db.lock.acquire()
        try:
            conn = self._db.get_connection()
            if conn.in_transaction:
                raise TransactionError("connection already has an open transaction")
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.Error as exc:
            self._db.lock.release()
            raise TransactionError(f"unable to begin transaction: {exc}", cause=exc) from exc
        except BaseException:
            self._db.lock.release()
            raise
        self._conn = conn
        return self

    def execute(self, sql: str, params: Sequence[SQLValue] = ()) -> int:
        """Run one statement inside the open transaction; returns the row count."""

        conn = self._require_active("execute")
        return self._db.execute(sql, params, conn=conn)

    def query(self, sql: str, params: Sequence[SQLValue] = ()) -> list[Row]:
        conn = self._require_active("query")
        return self._db.query(sql, params, conn=conn)

    def commit(self) -> None:
        conn = self._require_active("commit")
        try:
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._abort(conn)
            raise TransactionError(f"commit failed: {exc}", cause=exc) from exc
        self._finish()

    def rollback(self) -> None:
        conn = self._require_active("rollback")
        self._abort(conn)
        raise TransactionRolledBack("transaction rolled back")

    def __enter__(self) -> ManualTransaction:
        if self._conn is None:
            self.begin()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del tb
        if self._conn is None:
            return
        if exc_type is None:
            self.commit()
            return
        self._abort(self._conn)

    def _require_active(self, operation: str) -> sqlite3.Connection:
        if self._conn is None:
            raise TransactionNotStartedError(f"cannot {operation}: transaction not started")
        return self._conn

    def _abort(self, conn: sqlite3.Connection) -> None:
        try:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
        finally:
            self._finish()

    def _finish(self) -> None:
        self._conn = None
        self._db.lock.release()
