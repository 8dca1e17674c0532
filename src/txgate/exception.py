from enum import Enum


class ErrorKind(Enum):
    RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    STATEMENT_ERROR = "STATEMENT_ERROR"
    NOT_FOUND = "NOT_FOUND"
    COMMIT_FAILED = "COMMIT_FAILED"
    # Produced while parsing a request, never by the transaction manager
    INVALID_REQUEST = "INVALID_REQUEST"


class TxgateError(Exception):
    kind: ErrorKind = ErrorKind.STATEMENT_ERROR


class ConfigError(TxgateError):
    ...


class PoolError(TxgateError):
    """Raised when a connection cannot be obtained from the pool"""

    kind = ErrorKind.CONNECTION_ERROR


class StatementError(TxgateError):
    """Raised when the database rejects a statement"""

    kind = ErrorKind.STATEMENT_ERROR


class RecordNotFound(TxgateError):
    kind = ErrorKind.NOT_FOUND


class InvalidOperation(TxgateError):
    kind = ErrorKind.INVALID_REQUEST
