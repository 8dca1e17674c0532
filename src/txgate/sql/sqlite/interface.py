from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional, Sequence, Tuple

from txgate.base.interface import BaseInterface, PoolStats, StatementResult
from txgate.exception import ConfigError, PoolError, StatementError

try:
    import aiosqlite

    AIOSQLITE_ENABLED = True
except ModuleNotFoundError:
    AIOSQLITE_ENABLED = False

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 5


class SQLitePool(BaseInterface):
    """Interface for connecting to a SQLite database

    SQLite has no server side pool, so a bounded number of `aiosqlite`
    connections to the same file are handed out. Each connection is in
    autocommit mode so that BEGIN/COMMIT/ROLLBACK are issued explicitly.
    """

    schemes = ("sqlite",)
    READ_ONLY_ENTER = ("PRAGMA query_only = ON", "BEGIN")
    READ_ONLY_EXIT = ("ROLLBACK", "PRAGMA query_only = OFF")
    VERSION_QUERY = "SELECT sqlite_version() AS version"

    def __init__(self, dsn: str, **kwargs):
        prefix = "sqlite://"
        if not dsn.startswith(prefix):
            raise ConfigError(f"Not a SQLite DSN: {dsn}")
        self._db_path = dsn[len(prefix) :] or ":memory:"
        super().__init__(**kwargs)

    def _populate_dsn(self):
        self._dsn = f"sqlite://{self._db_path}"
        self._full_dsn = self._dsn

    def _setup_pool(self):
        if not AIOSQLITE_ENABLED:
            raise PoolError(
                "SQLite driver not found. Try reinstalling txgate: "
                "pip install txgate[sqlite]"
            )
        self._size = self.max_size or DEFAULT_MAX_SIZE
        self._slots = asyncio.Semaphore(self._size)
        self._idle: List[Tuple[aiosqlite.Connection, float]] = []
        self._in_use = 0
        self._waiting = 0
        self._closed = True

    @property
    def db_path(self) -> str:
        return self._db_path

    async def open(self):
        """Open the pool and its first connection"""
        self._closed = False
        conn = await self._connect()
        self._idle.append((conn, time.monotonic()))

    async def close(self):
        """Close every idle connection and refuse further checkouts"""
        self._closed = True
        idle, self._idle = self._idle, []
        for conn, _ in idle:
            await conn.close()

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        return conn

    async def _discard_stale(self) -> None:
        if not self.idle_timeout:
            return
        cutoff = time.monotonic() - self.idle_timeout
        stale = [conn for conn, since in self._idle if since < cutoff]
        self._idle = [item for item in self._idle if item[1] >= cutoff]
        for conn in stale:
            logger.debug("Closing idle SQLite connection")
            await conn.close()

    async def checkout(self, timeout: Optional[float] = None) -> Any:
        if self._closed:
            raise PoolError("Pool is closed")
        self._waiting += 1
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout)
        except asyncio.TimeoutError as e:
            raise PoolError("Timed out waiting for a connection") from e
        finally:
            self._waiting -= 1

        try:
            if self._closed:
                raise PoolError("Pool is closed")
            await self._discard_stale()
            if self._idle:
                conn, _ = self._idle.pop()
            else:
                conn = await self._connect()
        except Exception as e:
            self._slots.release()
            if isinstance(e, PoolError):
                raise
            raise PoolError(f"Could not obtain a connection: {e}") from e
        self._in_use += 1
        return conn

    async def release(self, connection: Any) -> None:
        self._in_use -= 1
        try:
            if self._closed:
                await connection.close()
            else:
                self._idle.append((connection, time.monotonic()))
        finally:
            self._slots.release()

    async def execute(
        self,
        connection: Any,
        statement: str,
        params: Optional[Sequence[Any]] = None,
    ) -> StatementResult:
        async def run():
            cursor = await connection.execute(statement, params or ())
            try:
                rows = await cursor.fetchall() if cursor.description else []
                return rows, cursor.rowcount
            finally:
                await cursor.close()

        try:
            rows, row_count = await asyncio.wait_for(
                run(), self.statement_timeout
            )
        except asyncio.TimeoutError as e:
            await connection.interrupt()
            raise StatementError(
                f"Statement exceeded {self.statement_timeout}s"
            ) from e
        except aiosqlite.Error as e:
            raise StatementError(str(e)) from e
        words = statement.split(None, 1)
        return StatementResult(
            rows=[dict(row) for row in rows],
            row_count=row_count,
            command=words[0].upper() if words else "",
        )

    def stats(self) -> PoolStats:
        return PoolStats(
            size=self._in_use + len(self._idle),
            available=len(self._idle),
            max_size=self._size,
            waiting=self._waiting,
        )

    def tables_query(
        self, schema: Optional[str], include_system: bool
    ) -> Tuple[str, Sequence[Any]]:
        query = (
            "SELECT 'main' AS table_schema, name AS table_name, "
            "upper(type) AS table_type FROM sqlite_master "
            "WHERE type IN ('table', 'view')"
        )
        if not include_system:
            query += " AND name NOT LIKE 'sqlite_%'"
        return query + " ORDER BY name", ()

    def columns_query(
        self, table: str, schema: Optional[str]
    ) -> Tuple[str, Sequence[Any]]:
        query = (
            "SELECT name AS column_name, type AS data_type, "
            "CASE \"notnull\" WHEN 1 THEN 'NO' ELSE 'YES' END "
            "AS is_nullable, "
            "dflt_value AS column_default "
            "FROM pragma_table_info(?) ORDER BY cid"
        )
        return query, (table,)
