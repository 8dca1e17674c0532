from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from txgate.base.interface import BaseInterface, PoolStats, StatementResult
from txgate.exception import PoolError, StatementError

SYSTEM_SCHEMAS = ("pg_catalog", "information_schema", "pg_toast")


class PostgresPool(BaseInterface):
    """Interface for connecting to a Postgres database"""

    schemes = ("postgres", "postgresql")

    def _setup_pool(self):
        # Transactions are driven explicitly with BEGIN/COMMIT/ROLLBACK
        kwargs = {"autocommit": True, "row_factory": dict_row}
        if self.statement_timeout:
            kwargs["options"] = (
                f"-c statement_timeout={int(self.statement_timeout * 1000)}"
            )
        pool_kwargs = {}
        if self.idle_timeout:
            pool_kwargs["max_idle"] = self.idle_timeout
        self._pool = AsyncConnectionPool(
            self.full_dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            kwargs=kwargs,
            open=False,
            **pool_kwargs,
        )

    async def open(self):
        """Open connections to the pool"""
        await self._pool.open()

    async def close(self):
        """Close connections to the pool"""
        await self._pool.close()

    async def checkout(
        self, timeout: Optional[float] = None
    ) -> AsyncConnection:
        """Take exclusive ownership of a pooled connection

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to connect. Defaults to the pool timeout.

        Raises:
            PoolError: If the pool is closed or no connection could be
                obtained in time

        Returns:
            AsyncConnection: A connection that must be passed back to
                `release` exactly once
        """
        try:
            return await self._pool.getconn(timeout=timeout)
        except psycopg.Error as e:
            raise PoolError(f"Could not obtain a connection: {e}") from e

    async def release(self, connection: AsyncConnection) -> None:
        await self._pool.putconn(connection)

    async def execute(
        self,
        connection: AsyncConnection,
        statement: str,
        params: Optional[Sequence[Any]] = None,
    ) -> StatementResult:
        try:
            cursor = await connection.execute(statement, params)
            rows = await cursor.fetchall() if cursor.description else []
        except psycopg.Error as e:
            raise StatementError(str(e).strip()) from e
        return StatementResult(
            rows=list(rows),
            row_count=cursor.rowcount,
            command=cursor.statusmessage or "",
        )

    def stats(self) -> PoolStats:
        stats = self._pool.get_stats()
        return PoolStats(
            size=stats.get("pool_size", 0),
            available=stats.get("pool_available", 0),
            max_size=self._pool.max_size,
            waiting=stats.get("requests_waiting", 0),
        )

    def tables_query(
        self, schema: Optional[str], include_system: bool
    ) -> Tuple[str, Sequence[Any]]:
        query = (
            "SELECT table_schema, table_name, table_type "
            "FROM information_schema.tables"
        )
        clauses = []
        params: list = []
        if schema:
            clauses.append("table_schema = %s")
            params.append(schema)
        if not include_system:
            clauses.append("table_schema <> ALL(%s)")
            params.append(list(SYSTEM_SCHEMAS))
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        return query + " ORDER BY table_schema, table_name", params

    def columns_query(
        self, table: str, schema: Optional[str]
    ) -> Tuple[str, Sequence[Any]]:
        query = (
            "SELECT column_name, data_type, is_nullable, column_default, "
            "character_maximum_length "
            "FROM information_schema.columns "
            "WHERE table_name = %s AND table_schema = %s "
            "ORDER BY ordinal_position"
        )
        return query, [table, schema or "public"]
