from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from txgate.exception import ErrorKind, TxgateError


class TransactionState(Enum):
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


@dataclass
class Transaction:
    """An open unit of work holding exclusive use of one connection"""

    handle: str
    connection: Any = field(repr=False)
    statement: str
    created_at: float
    expires_at: float
    last_touched_at: float = 0.0
    state: TransactionState = TransactionState.ACTIVE

    def __post_init__(self):
        if not self.last_touched_at:
            self.last_touched_at = self.created_at

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def touch(self, now: float) -> None:
        self.last_touched_at = now


class TransactionError(TxgateError):
    """Base exception for transaction errors"""

    pass


class TransactionLimitReached(TransactionError):
    """Raised when the concurrent transaction limit is reached"""

    kind = ErrorKind.RESOURCE_EXHAUSTED


class TransactionNotFound(TransactionError):
    """Raised for unknown, finished, or timed out handles"""

    kind = ErrorKind.NOT_FOUND


class CommitFailed(TransactionError):
    """Raised when COMMIT failed and the transaction was rolled back"""

    kind = ErrorKind.COMMIT_FAILED
