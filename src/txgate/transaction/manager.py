from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Tuple
from uuid import uuid4

from txgate.base.interface import BaseInterface, StatementResult
from txgate.exception import PoolError, StatementError
from txgate.statistics import TransactionStatistics

from .interfaces import (
    CommitFailed,
    Transaction,
    TransactionNotFound,
    TransactionState,
)
from .registry import TransactionRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class TransactionManager:
    """Owns every transaction that outlives a single request.

    A transaction is begun on a freshly checked out connection and kept
    open until it is committed, rolled back, swept after its timeout, or
    cleaned up at shutdown. Whichever of those removes the handle from
    the registry first is the one that ends it, so each connection is
    released exactly once.

    Timeouts are in seconds.
    """

    def __init__(
        self,
        pool: BaseInterface,
        registry: Optional[TransactionRegistry] = None,
        max_concurrent: int = 10,
        timeout: float = DEFAULT_TIMEOUT,
        checkout_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pool = pool
        self.registry = registry or TransactionRegistry(max_concurrent)
        self.timeout = timeout
        self.checkout_timeout = checkout_timeout
        self.statistics = TransactionStatistics()
        self._clock = clock
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self.registry)

    @property
    def max_concurrent(self) -> int:
        return self.registry.limit

    @property
    def is_closed(self) -> bool:
        return self._closed

    def now(self) -> float:
        return self._clock()

    def transactions(self) -> List[Transaction]:
        return self.registry.snapshot()

    def _new_handle(self) -> str:
        handle = f"txn_{uuid4().hex}"
        while handle in self.registry:
            handle = f"txn_{uuid4().hex}"
        return handle

    async def begin(
        self, statement: str, timeout: Optional[float] = None
    ) -> Tuple[Transaction, StatementResult]:
        """Open a transaction and run its first statement

        Args:
            statement (str): SQL to run inside the new transaction
            timeout (float, optional): Seconds before the transaction is
                rolled back by the sweep. Defaults to the manager timeout.

        Raises:
            TransactionLimitReached: If the concurrency limit is reached.
                The pool is not touched.
            PoolError: If no connection could be obtained or BEGIN failed
            StatementError: If the statement failed. The transaction is
                rolled back and nothing is registered.

        Returns:
            Tuple[Transaction, StatementResult]: The registered
                transaction and the result of its statement
        """
        if self._closed:
            raise PoolError("Transaction manager is shut down")

        try:
            async with self.registry.slot():
                conn = await self.pool.checkout(timeout=self.checkout_timeout)
                registered = False
                try:
                    try:
                        await self.pool.execute(conn, "BEGIN")
                    except StatementError as e:
                        raise PoolError(
                            f"Could not begin transaction: {e}"
                        ) from e
                    result = await self.pool.execute(conn, statement)
                    if self._closed:
                        # cleanup_all ran while the statement was in flight
                        raise PoolError("Transaction manager is shut down")

                    now = self.now()
                    transaction = Transaction(
                        handle=self._new_handle(),
                        connection=conn,
                        statement=statement,
                        created_at=now,
                        expires_at=now + (timeout or self.timeout),
                    )
                    await self.registry.add(transaction)
                    registered = True
                finally:
                    if not registered:
                        await self._end(conn, "ROLLBACK", "<unregistered>")
        except Exception:
            self.statistics.incr("rejected")
            raise

        self.statistics.incr("begun")
        logger.info(
            "Transaction %s started (%s)",
            transaction.handle,
            result.command or "no command",
        )
        return transaction, result

    async def commit(self, handle: str) -> None:
        """Commit a transaction and release its connection

        Raises:
            TransactionNotFound: If the handle is not registered
            CommitFailed: If COMMIT failed. The transaction has been
                rolled back and its connection released.
        """
        transaction = await self._claim(handle)
        logger.debug("Committing transaction %s", handle)
        try:
            try:
                await self.pool.execute(transaction.connection, "COMMIT")
            except Exception as e:
                logger.error(
                    "Commit failed for %s, attempting rollback: %s",
                    handle,
                    e,
                )
                try:
                    await self.pool.execute(
                        transaction.connection, "ROLLBACK"
                    )
                except Exception as rollback_error:
                    logger.critical(
                        "Rollback after failed commit also failed: %s",
                        rollback_error,
                    )
                transaction.state = TransactionState.ROLLED_BACK
                self.statistics.incr("commit_failed")
                raise CommitFailed(
                    f"Failed to commit transaction {handle}: {e}"
                ) from e
        finally:
            await self._release(transaction)

        transaction.state = TransactionState.COMMITTED
        self.statistics.incr("committed")
        logger.info("Transaction %s committed successfully", handle)

    async def rollback(self, handle: str) -> None:
        """Roll back a transaction and release its connection

        Raises:
            TransactionNotFound: If the handle is not registered
        """
        transaction = await self._claim(handle)
        logger.debug("Rolling back transaction %s", handle)
        await self._end(transaction.connection, "ROLLBACK", handle)
        transaction.state = TransactionState.ROLLED_BACK
        self.statistics.incr("rolled_back")
        logger.info("Transaction %s rolled back successfully", handle)

    async def sweep(self) -> List[str]:
        """Roll back every transaction that is past its expiry

        Returns:
            List[str]: Handles that this pass terminated
        """
        swept = []
        for handle in self.registry.expired(self.now()):
            transaction = await self.registry.pop(handle)
            if transaction is None:
                # Ended by a commit or rollback since the scan
                continue
            await self._end(transaction.connection, "ROLLBACK", handle)
            transaction.state = TransactionState.ROLLED_BACK
            self.statistics.incr("swept")
            swept.append(handle)
            logger.warning(
                "Transaction %s timed out after %.1fs and was rolled back",
                handle,
                self.now() - transaction.created_at,
            )
        return swept

    async def cleanup_all(self) -> int:
        """Roll back every open transaction. Used once at shutdown.

        Returns:
            int: Number of transactions that were rolled back
        """
        self._closed = True
        transactions = await self.registry.drain()
        for transaction in transactions:
            await self._end(
                transaction.connection, "ROLLBACK", transaction.handle
            )
            transaction.state = TransactionState.ROLLED_BACK
        self.statistics.incr("cleaned_up", len(transactions))
        if transactions:
            logger.info(
                "Rolled back %d open transaction(s) during cleanup",
                len(transactions),
            )
        return len(transactions)

    async def _claim(self, handle: str) -> Transaction:
        transaction = await self.registry.pop(handle)
        if transaction is None:
            raise TransactionNotFound(f"Transaction {handle} not found")
        transaction.touch(self.now())
        return transaction

    async def _end(self, conn: Any, command: str, handle: str) -> None:
        try:
            await self.pool.execute(conn, command)
        except Exception as e:
            logger.error("%s failed for %s: %s", command, handle, e)
        finally:
            await self._release_connection(conn, handle)

    async def _release(self, transaction: Transaction) -> None:
        await self._release_connection(
            transaction.connection, transaction.handle
        )

    async def _release_connection(self, conn: Any, handle: str) -> None:
        try:
            await self.pool.release(conn)
        except Exception as e:
            logger.error("Error releasing connection of %s: %s", handle, e)
