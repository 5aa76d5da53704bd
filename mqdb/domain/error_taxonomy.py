from __future__ import annotations

from typing import Literal

from mqdb.domain.errors import StorageError, TransientStorageError

RetryClassification = Literal["transient", "fatal"]

# SQLSTATE class 08 is "connection exception" on every SQL engine.
TRANSIENT_SQLSTATE_CLASSES: frozenset[str] = frozenset({"08"})

TRANSIENT_SQLSTATES: frozenset[str] = frozenset(
    {
        "40001",  # serialization_failure
        "40P01",  # deadlock_detected
        "57P01",  # admin_shutdown
        "57P02",  # crash_shutdown
        "57P03",  # cannot_connect_now
    }
)

# MySQL client/server error numbers: server has gone away, lost connection
# during query, deadlock found when trying to get lock.
TRANSIENT_MYSQL_CODES: frozenset[int] = frozenset({2006, 2013, 1213})

TRANSIENT_SQLITE_ERRORS: frozenset[str] = frozenset({"SQLITE_BUSY", "SQLITE_LOCKED"})
TRANSIENT_MESSAGES: tuple[str, ...] = (
    "database is locked",
    "database table is locked",
    "connection is closed",
    "connection was closed",
    "server has gone away",
)


def classify_sqlstate(sqlstate: str | None) -> RetryClassification:
    if not sqlstate:
        return "fatal"
    if sqlstate in TRANSIENT_SQLSTATES or sqlstate[:2] in TRANSIENT_SQLSTATE_CLASSES:
        return "transient"
    return "fatal"


def classify_error(exc: BaseException) -> RetryClassification:
    if isinstance(exc, TransientStorageError):
        return "transient"
    if isinstance(exc, StorageError):
        return "fatal"
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return "transient"

    sqlstate = getattr(exc, "sqlstate", None)
    if isinstance(sqlstate, str) and sqlstate:
        return classify_sqlstate(sqlstate)

    sqlite_error = getattr(exc, "sqlite_errorname", None)
    if isinstance(sqlite_error, str) and sqlite_error in TRANSIENT_SQLITE_ERRORS:
        return "transient"
    message = str(exc).lower()
    if any(fragment in message for fragment in TRANSIENT_MESSAGES):
        return "transient"

    code = _mysql_error_code(exc)
    if code is not None and code in TRANSIENT_MYSQL_CODES:
        return "transient"

    if isinstance(exc, OSError):
        return "transient"
    return "fatal"


def wrap_storage_error(exc: BaseException, *, operation: str) -> StorageError:
    if isinstance(exc, StorageError):
        return exc
    error_cls = TransientStorageError if classify_error(exc) == "transient" else StorageError
    error = error_cls(f"{operation} failed: {exc.__class__.__name__}: {exc}")
    error.__cause__ = exc
    return error


def _mysql_error_code(exc: BaseException) -> int | None:
    if exc.args and isinstance(exc.args[0], int):
        return exc.args[0]
    return None
