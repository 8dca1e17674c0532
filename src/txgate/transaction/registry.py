from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from .interfaces import Transaction, TransactionLimitReached


class TransactionRegistry:
    """
    Mapping of handle to open transaction, shared by begin, commit,
    rollback, and the timeout sweep.

    Every mutation happens under one lock so that the first caller to
    `pop` a handle is the only one that ever sees it.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self._transactions: Dict[str, Transaction] = {}
        self._pending = 0
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._transactions)

    def __contains__(self, handle: object) -> bool:
        return handle in self._transactions

    @property
    def pending(self) -> int:
        """Number of begin calls holding a slot but not yet registered"""
        return self._pending

    def is_full(self) -> bool:
        return len(self._transactions) + self._pending >= self.limit

    def check_capacity(self) -> None:
        if self.is_full():
            raise TransactionLimitReached(
                "Maximum concurrent transactions limit reached "
                f"({self.limit}). Try again later."
            )

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Reserve room for one more transaction while it is being begun

        Raises:
            TransactionLimitReached: If registered plus pending
                transactions already reach the limit
        """
        async with self._lock:
            self.check_capacity()
            self._pending += 1
        try:
            yield
        finally:
            self._pending -= 1

    async def add(self, transaction: Transaction) -> None:
        async with self._lock:
            if transaction.handle in self._transactions:
                raise KeyError(f"Handle {transaction.handle} already in use")
            self._transactions[transaction.handle] = transaction

    async def pop(self, handle: str) -> Optional[Transaction]:
        async with self._lock:
            return self._transactions.pop(handle, None)

    async def drain(self) -> List[Transaction]:
        async with self._lock:
            transactions = list(self._transactions.values())
            self._transactions.clear()
            return transactions

    def get(self, handle: str) -> Optional[Transaction]:
        return self._transactions.get(handle)

    def expired(self, now: float) -> List[str]:
        return [
            handle
            for handle, transaction in self._transactions.items()
            if transaction.is_expired(now)
        ]

    def snapshot(self) -> List[Transaction]:
        return list(self._transactions.values())
