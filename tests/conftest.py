import asyncio
from collections import Counter
from typing import Any, Dict, List, Optional

import pytest

from txgate.base.interface import BaseInterface, PoolStats, StatementResult
from txgate.exception import PoolError
from txgate.transaction import TimeoutMonitor, TransactionManager


class FakeConnection:
    def __init__(self, number: int):
        self.number = number
        self.statements: List[str] = []

    def __repr__(self) -> str:
        return f"<FakeConnection {self.number}>"


class FakePool(BaseInterface):
    schemes = ("fake",)

    def __init__(self, max_size: int = 5, **kwargs):
        self.failures: Dict[str, Exception] = {}
        self.results: Dict[str, StatementResult] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.checkout_error: Optional[Exception] = None
        self.connections: List[FakeConnection] = []
        self.released: List[FakeConnection] = []
        self.events: List[str] = []
        self.opened = False
        self.closed = False
        super().__init__(
            dsn="fake://user:secret@db:1234/test", max_size=max_size, **kwargs
        )

    def _setup_pool(self): ...

    async def open(self):
        self.opened = True
        self.events.append("open")

    async def close(self):
        self.closed = True
        self.events.append("close")

    async def checkout(self, timeout: Optional[float] = None) -> Any:
        if self.closed:
            raise PoolError("Pool is closed")
        if self.checkout_error is not None:
            raise self.checkout_error
        conn = FakeConnection(len(self.connections) + 1)
        self.connections.append(conn)
        return conn

    async def release(self, connection: Any) -> None:
        self.released.append(connection)

    async def execute(self, connection, statement, params=None):
        connection.statements.append(statement)
        # Give other tasks a chance to run, as a real round trip would
        await asyncio.sleep(0)
        if statement in self.gates:
            await self.gates[statement].wait()
        if statement in self.failures:
            raise self.failures[statement]
        if statement in self.results:
            return self.results[statement]
        return StatementResult(
            rows=[{"id": 1}],
            row_count=1,
            command=statement.split()[0].upper(),
        )

    def stats(self) -> PoolStats:
        in_use = len(self.connections) - len(self.released)
        return PoolStats(
            size=in_use + 1,
            available=1,
            max_size=self.max_size,
            waiting=0,
        )

    def tables_query(self, schema, include_system):
        return "LIST TABLES", [schema, include_system]

    def columns_query(self, table, schema):
        return "DESCRIBE TABLE", [table, schema]

    def assert_released_once(self):
        counts = Counter(id(conn) for conn in self.released)
        assert all(count == 1 for count in counts.values())
        assert len(counts) == len(self.connections)


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def manager(pool, clock):
    return TransactionManager(
        pool, max_concurrent=3, timeout=10.0, clock=clock
    )


@pytest.fixture
def monitor(manager):
    return TimeoutMonitor(manager, interval=0.01)
