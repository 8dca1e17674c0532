from __future__ import annotations

import csv
import io
import logging
import time
from dataclasses import dataclass, field
from functools import singledispatchmethod
from importlib.metadata import version
from typing import Any, Dict, List, Optional

from txgate.exception import (
    ErrorKind,
    InvalidOperation,
    RecordNotFound,
    TxgateError,
)
from txgate.operations import (
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
from txgate.transaction import TimeoutMonitor, TransactionManager

logger = logging.getLogger(__name__)

SERVER_NAME = "txgate"


@dataclass
class Response:
    status: str
    data: Dict[str, Any] = field(default_factory=dict)
    kind: Optional[ErrorKind] = None
    message: str = ""

    @property
    def is_error(self) -> bool:
        return self.kind is not None

    @classmethod
    def failure(cls, error: TxgateError) -> Response:
        return cls(status="error", kind=error.kind, message=str(error))

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": self.status, **self.data}
        if self.kind is not None:
            body["error"] = self.kind.value
            body["message"] = self.message
        return body


class RequestHandler:
    """Turns operations into responses.

    Read-only work borrows a connection straight from the pool. Writes,
    commits, and rollbacks go through the transaction manager. Errors
    raised by either are returned as failure responses carrying their
    `ErrorKind`.
    """

    def __init__(
        self,
        manager: TransactionManager,
        monitor: Optional[TimeoutMonitor] = None,
    ):
        self.manager = manager
        self.monitor = monitor
        self.version = version("txgate")
        self._started = time.monotonic()

    @property
    def pool(self):
        return self.manager.pool

    async def __call__(self, operation: Operation) -> Response:
        try:
            return await self.dispatch(operation)
        except TxgateError as e:
            logger.info("%s failed: %s: %s", operation.name, e.kind.value, e)
            return Response.failure(e)

    @singledispatchmethod
    async def dispatch(self, operation: Operation) -> Response:
        raise InvalidOperation(f"Unsupported operation {operation!r}")

    @dispatch.register(ExecuteQuery)
    async def _execute_query(self, operation: ExecuteQuery) -> Response:
        rows = await self._read(operation.sql)
        data: Dict[str, Any] = {"row_count": len(rows)}
        if operation.format == "csv":
            data["csv"] = to_csv(rows)
        elif operation.format == "table":
            data["table"] = to_table(rows)
        else:
            data["rows"] = rows
        return Response("success", data)

    @dispatch.register(ExecuteWrite)
    async def _execute_write(self, operation: ExecuteWrite) -> Response:
        self.manager.registry.check_capacity()

        if operation.dry_run:
            return Response(
                "dry_run",
                {
                    "message": "Dry run mode - this SQL would be executed:",
                    "sql": operation.sql,
                },
            )

        timeout = (
            operation.timeout_ms / 1000 if operation.timeout_ms else None
        )
        transaction, result = await self.manager.begin(
            operation.sql, timeout=timeout
        )
        return Response(
            "pending",
            {
                "message": (
                    "Statement executed. Use execute_commit to apply or "
                    "execute_rollback to discard the changes."
                ),
                "transaction_id": transaction.handle,
                "command": result.command,
                "row_count": result.row_count,
                "rows": result.rows,
                "expires_in_ms": self._remaining_ms(transaction.expires_at),
            },
        )

    @dispatch.register(Commit)
    async def _commit(self, operation: Commit) -> Response:
        await self.manager.commit(operation.transaction_id)
        return Response(
            "success",
            {
                "message": "Transaction committed",
                "transaction_id": operation.transaction_id,
            },
        )

    @dispatch.register(Rollback)
    async def _rollback(self, operation: Rollback) -> Response:
        await self.manager.rollback(operation.transaction_id)
        return Response(
            "success",
            {
                "message": "Transaction rolled back",
                "transaction_id": operation.transaction_id,
            },
        )

    @dispatch.register(ListTransactions)
    async def _list_transactions(self, operation: ListTransactions):
        now = self.manager.now()
        return Response(
            "success",
            {
                "active_transactions": self.manager.active_count,
                "max_concurrent": self.manager.max_concurrent,
                "timeout_ms": int(self.manager.timeout * 1000),
                "transactions": [
                    {
                        "transaction_id": transaction.handle,
                        "statement": transaction.statement,
                        "age_ms": int((now - transaction.created_at) * 1000),
                        "expires_in_ms": self._remaining_ms(
                            transaction.expires_at
                        ),
                    }
                    for transaction in self.manager.transactions()
                ],
            },
        )

    @dispatch.register(ServerStatus)
    async def _server_status(self, operation: ServerStatus) -> Response:
        pool = self.pool.stats().to_dict()
        pool.update(
            {
                "idle_timeout_ms": _ms(self.pool.idle_timeout),
                "statement_timeout_ms": _ms(self.pool.statement_timeout),
            }
        )
        monitor = self.monitor
        return Response(
            "success",
            {
                "server": {
                    "name": SERVER_NAME,
                    "version": self.version,
                    "uptime_seconds": round(
                        time.monotonic() - self._started, 3
                    ),
                },
                "pool": pool,
                "transactions": {
                    "active": self.manager.active_count,
                    "max_concurrent": self.manager.max_concurrent,
                    "timeout_ms": int(self.manager.timeout * 1000),
                    "monitor_enabled": bool(monitor and monitor.enabled),
                    "monitor_interval_ms": (
                        _ms(monitor.interval) if monitor else None
                    ),
                    "statistics": self.manager.statistics.to_dict(),
                },
            },
        )

    @dispatch.register(ListTables)
    async def _list_tables(self, operation: ListTables) -> Response:
        query, params = self.pool.tables_query(
            operation.schema, operation.include_system_tables
        )
        rows = await self._read(query, params)
        return Response("success", {"tables": rows})

    @dispatch.register(DescribeTable)
    async def _describe_table(self, operation: DescribeTable) -> Response:
        query, params = self.pool.columns_query(
            operation.table_name, operation.schema
        )
        columns = await self._read(query, params)
        if not columns:
            raise RecordNotFound(f"Table {operation.table_name} not found")
        return Response(
            "success",
            {"table_name": operation.table_name, "columns": columns},
        )

    async def _read(self, query: str, params=None) -> List[Dict[str, Any]]:
        async with self.pool.read_only() as conn:
            result = await self.pool.execute(conn, query, params)
        return result.rows

    def _remaining_ms(self, expires_at: float) -> int:
        return max(int((expires_at - self.manager.now()) * 1000), 0)


def check_dispatch() -> None:
    """Fail loudly if an operation type has no handler"""
    handled = RequestHandler.__dict__["dispatch"].dispatcher.registry
    missing = [
        name
        for name, operation_type in Operation.registered.items()
        if operation_type not in handled
    ]
    if missing:
        raise TxgateError(
            f"No handler for operation(s): {', '.join(missing)}"
        )


def to_csv(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return ""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(rows[0]))
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def to_table(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return "(0 rows)"
    columns = list(rows[0])
    cells = [[str(row.get(column, "")) for column in columns] for row in rows]
    widths = [
        max(len(column), *(len(line[index]) for line in cells))
        for index, column in enumerate(columns)
    ]
    lines = [
        " | ".join(c.ljust(w) for c, w in zip(columns, widths)),
        "-+-".join("-" * w for w in widths),
    ]
    lines.extend(
        " | ".join(c.ljust(w) for c, w in zip(line, widths)) for line in cells
    )
    lines.append(f"({len(rows)} row{'s' if len(rows) != 1 else ''})")
    return "\n".join(lines)


def _ms(seconds: Optional[float]) -> Optional[int]:
    return None if seconds is None else int(seconds * 1000)


check_dispatch()
