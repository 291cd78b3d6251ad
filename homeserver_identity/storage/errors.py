# homeserver_identity/storage/errors.py
import sqlite3
import asyncio
import logging
from enum import Enum

import redis.exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Backend-independent failure kinds every store operation can report."""
    CONNECTION_FAILED = "connection_failed"
    RECORD_NOT_FOUND = "record_not_found"
    INVALID_SYNTAX = "invalid_syntax"
    UNKNOWN = "unknown"


class StoreError(Exception):
    """
    Base class for every error that crosses the store boundary.

    Backends must translate their native failures into exactly one of the
    subclasses below before raising, so that callers never need to know
    which storage technology is in use.
    """

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, message: str = ""):
        self.message = message or self.code.value
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Whether the caller may retry the operation with backoff."""
        return self.code is ErrorCode.CONNECTION_FAILED


class ConnectionFailedError(StoreError):
    """Backend unreachable, pool exhausted or I/O failure. Transient."""
    code = ErrorCode.CONNECTION_FAILED


class RecordNotFoundError(StoreError):
    """The targeted account, device or credential does not exist."""
    code = ErrorCode.RECORD_NOT_FOUND


class InvalidSyntaxError(StoreError):
    """The backend rejected the operation as malformed or violating a constraint."""
    code = ErrorCode.INVALID_SYNTAX


class UnknownStoreError(StoreError):
    """Catch-all for backend failures outside the other kinds; keeps the diagnostic text."""
    code = ErrorCode.UNKNOWN


# Operational error messages that mean the database itself is unavailable
_SQLITE_CONNECTION_MARKERS = (
    "unable to open database",
    "database is locked",
    "disk i/o error",
    "cannot operate on a closed database",
)


def from_sqlite_error(exc: BaseException) -> StoreError:
    """
    Map an exception raised by the SQLite backend into a StoreError.

    The pool's own timeout/closed errors are imported lazily to avoid a
    circular import with sqlite_base.
    """
    from .sqlite_base import PoolTimedOut, PoolClosed

    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, (PoolTimedOut, PoolClosed, asyncio.TimeoutError, OSError)):
        return ConnectionFailedError(str(exc) or type(exc).__name__)
    if isinstance(exc, (sqlite3.OperationalError, sqlite3.ProgrammingError)):
        text = str(exc).lower()
        if any(marker in text for marker in _SQLITE_CONNECTION_MARKERS):
            return ConnectionFailedError(str(exc))
        return InvalidSyntaxError(str(exc))
    if isinstance(exc, sqlite3.IntegrityError):
        return InvalidSyntaxError(str(exc))
    return UnknownStoreError(f"{type(exc).__name__}: {exc}")


def from_redis_error(exc: BaseException) -> StoreError:
    """Map an exception raised by the Redis backend into a StoreError."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, (
        redis_exceptions.ConnectionError,
        redis_exceptions.TimeoutError,
        asyncio.TimeoutError,
        OSError,
    )):
        return ConnectionFailedError(str(exc) or type(exc).__name__)
    if isinstance(exc, (redis_exceptions.ResponseError, redis_exceptions.DataError)):
        return InvalidSyntaxError(str(exc))
    return UnknownStoreError(f"{type(exc).__name__}: {exc}")
