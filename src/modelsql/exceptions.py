"""
Adapter-specific exception classes and transient error classification.
"""
import re
from typing import Any

import psycopg

TRANSIENT_PATTERNS = [
    # Lock contention
    r'deadlock',
    r'lock wait timeout',
    r'database is locked',
    r'could not obtain lock',
    r'could not serialize access',
    # Connection dropped mid-query
    r'connection lost',
    r'lost connection',
    r'server closed the connection',
    r'connection.*(reset|terminated)',
]

_TRANSIENT_REGEX = re.compile('|'.join(TRANSIENT_PATTERNS), re.IGNORECASE)

# MySQL driver codes, PostgreSQL SQLSTATEs and MySQL errnos
TRANSIENT_CODES = {
    'ER_LOCK_DEADLOCK',
    'ER_LOCK_WAIT_TIMEOUT',
    'PROTOCOL_CONNECTION_LOST',
    '40001',
    '40P01',
    '55P03',
    1205,
    1213,
}


class DatabaseError(Exception):
    """Base class for all adapter errors.
    """


class ValidationError(DatabaseError):
    """Malformed query specification or operation input.
    """


class TypeConversionError(DatabaseError):
    """Error converting types between Python and database.
    """


class ValueConversionError(TypeConversionError, ValueError):
    """A value could not be converted for its declared attribute type.
    """

    def __init__(self, attribute: str | None, value: Any, reason: str = '') -> None:
        self.attribute = attribute
        self.value = value
        message = f'Cannot convert {value!r} for attribute {attribute!r}'
        if reason:
            message = f'{message}: {reason}'
        super().__init__(message)


class BackendError(DatabaseError):
    """Failure reported by the backend, carrying the driver error code.
    """

    def __init__(self, message: str, code: Any = None) -> None:
        super().__init__(message)
        self.code = code


class TransientBackendError(BackendError):
    """Backend failure expected to succeed on retry (deadlock, lock timeout).
    """


class PoolError(DatabaseError):
    """Asynchronous error raised by the pool for one of its connections.
    """

    def __init__(self, message: str, connection: Any = None) -> None:
        super().__init__(message)
        self.connection = connection


TRANSIENT_ERRORS = (
    TransientBackendError,
    psycopg.errors.DeadlockDetected,
    psycopg.errors.SerializationFailure,
    psycopg.errors.LockNotAvailable,
    )


def _error_codes(exc: BaseException) -> set:
    codes = set()
    for attr in ('code', 'errno', 'sqlstate', 'pgcode'):
        value = getattr(exc, attr, None)
        if value is not None:
            codes.add(value)
    if exc.args and isinstance(exc.args[0], int):
        codes.add(exc.args[0])
    return codes


def is_transient_error(exc: BaseException) -> bool:
    """Check if an exception is a transient backend signal worth retrying.

    SQLAlchemy wraps DBAPI errors and its message embeds the SQL text and
    parameters, so only the wrapped ``orig`` exception is classified when
    present. A wrapper flagged ``connection_invalidated`` is a disconnect.

    Returns True for:
    - Deadlocks and serialization failures
    - Lock wait timeouts, busy SQLite databases
    - Connections lost in the middle of a query

    Returns False for everything else (syntax errors, constraint violations,
    permission errors), which must be surfaced without retry.

    :param exc: The exception to check.
    :returns: True if the error is transient.
    """
    if getattr(exc, 'connection_invalidated', False):
        return True
    orig = getattr(exc, 'orig', None)
    if isinstance(orig, BaseException):
        exc = orig

    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    if _error_codes(exc) & TRANSIENT_CODES:
        return True
    return _TRANSIENT_REGEX.search(str(exc)) is not None
