from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
import sqlite3
import threading

from mqdb.domain.contracts import ExecuteResult
from mqdb.domain.error_taxonomy import wrap_storage_error

logger = logging.getLogger("mqdb")

MEMORY_DATABASE = ":memory:"


def sqlite_path_from_url(url: str) -> str:
    if not url.startswith("sqlite://"):
        return url
    path = url[len("sqlite://") :]
    if path.startswith("/"):
        path = path[1:]
    return path or MEMORY_DATABASE


class SqliteStatementExecutor:
    """Statement executor over one sqlite3 connection.

    The connection runs in autocommit mode, so every statement is its own
    transaction and SQLite's database write lock makes a claim atomic. Calls
    are pushed to a worker thread and serialized on the connection; separate
    consumers should each own an executor.
    """

    def __init__(self, database: str, *, timeout: float = 5.0) -> None:
        self.database = database
        self.timeout = timeout
        self._lock = threading.Lock()
        self._connection: sqlite3.Connection | None = None

    @classmethod
    def from_url(cls, url: str, *, timeout: float = 5.0) -> SqliteStatementExecutor:
        return cls(sqlite_path_from_url(url), timeout=timeout)

    async def execute(self, sql: str, params: Sequence[object]) -> ExecuteResult:
        return await asyncio.to_thread(self._execute_sync, sql, tuple(params))

    async def reconnect(self) -> None:
        await asyncio.to_thread(self._reconnect_sync)

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)

    def _execute_sync(self, sql: str, params: tuple[object, ...]) -> ExecuteResult:
        with self._lock:
            try:
                connection = self._connect()
                if _is_read(sql):
                    return self._run(connection, sql, params)
                # Take the write lock up front: a deferred upgrade from a stale
                # read snapshot fails with SQLITE_BUSY without waiting.
                connection.execute("BEGIN IMMEDIATE")
                try:
                    result = self._run(connection, sql, params)
                except BaseException:
                    if connection.in_transaction:
                        connection.execute("ROLLBACK")
                    raise
                connection.execute("COMMIT")
                return result
            except sqlite3.Error as exc:
                raise wrap_storage_error(exc, operation="sqlite execute") from exc

    @staticmethod
    def _run(connection: sqlite3.Connection, sql: str, params: tuple[object, ...]) -> ExecuteResult:
        cursor = connection.execute(sql, params)
        try:
            if cursor.description is None:
                return ExecuteResult(affected=max(cursor.rowcount, 0))
            rows = [dict(row) for row in cursor.fetchall()]
            return ExecuteResult(rows=rows, affected=len(rows))
        finally:
            cursor.close()

    def _connect(self) -> sqlite3.Connection:
        if self._connection is None:
            connection = sqlite3.connect(
                self.database,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            connection.row_factory = sqlite3.Row
            if self.database != MEMORY_DATABASE:
                connection.execute("PRAGMA journal_mode=WAL")
            self._connection = connection
        return self._connection

    def _reconnect_sync(self) -> None:
        with self._lock:
            self._close_connection()
            logger.info("sqlite connection reset", extra={"operation": "reconnect"})

    def _close_sync(self) -> None:
        with self._lock:
            self._close_connection()

    def _close_connection(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None


def _is_read(sql: str) -> bool:
    return sql.lstrip().upper().startswith(("SELECT", "WITH", "PRAGMA"))
