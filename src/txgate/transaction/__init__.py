"""
Explicit transactions that stay open across requests until they are
committed, rolled back, or time out.
"""

from .interfaces import (
    CommitFailed,
    Transaction,
    TransactionError,
    TransactionLimitReached,
    TransactionNotFound,
    TransactionState,
)
from .manager import TransactionManager
from .monitor import TimeoutMonitor
from .registry import TransactionRegistry

__all__ = [
    "CommitFailed",
    "TimeoutMonitor",
    "Transaction",
    "TransactionError",
    "TransactionLimitReached",
    "TransactionManager",
    "TransactionNotFound",
    "TransactionRegistry",
    "TransactionState",
]
