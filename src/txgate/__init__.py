from importlib.metadata import version

from .base.interface import BaseInterface, PoolStats, StatementResult
from .config import Config
from .exception import ErrorKind, TxgateError
from .gateway import Gateway
from .handlers import RequestHandler, Response
from .operations import (
    Commit,
    DescribeTable,
    ExecuteQuery,
    ExecuteWrite,
    ListTables,
    ListTransactions,
    Operation,
    Rollback,
    ServerStatus,
)
from .sql.postgres.interface import PostgresPool
from .sql.sqlite.interface import SQLitePool
from .transaction import TimeoutMonitor, TransactionManager

__version__ = version("txgate")

__all__ = (
    "BaseInterface",
    "Commit",
    "Config",
    "DescribeTable",
    "ErrorKind",
    "ExecuteQuery",
    "ExecuteWrite",
    "Gateway",
    "ListTables",
    "ListTransactions",
    "Operation",
    "PoolStats",
    "PostgresPool",
    "RequestHandler",
    "Response",
    "Rollback",
    "SQLitePool",
    "ServerStatus",
    "StatementResult",
    "TimeoutMonitor",
    "TransactionManager",
    "TxgateError",
)
