"""
The fixed set of requests a client can make. Each operation is a small
frozen dataclass registered under its wire name.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Mapping, Optional, Type

from txgate.exception import InvalidOperation

FORMATS = ("json", "csv", "table")


class Operation:
    name: ClassVar[str] = ""
    registered: ClassVar[Dict[str, Type[Operation]]] = {}

    def __init_subclass__(cls, name: str = "", **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        if not name:
            raise TypeError(f"{cls.__name__} needs an operation name")
        cls.name = name
        Operation.registered[name] = cls

    @classmethod
    def parse(
        cls, name: str, payload: Optional[Mapping[str, Any]] = None
    ) -> Operation:
        """Build an operation from its wire name and arguments

        Raises:
            InvalidOperation: If the name is unknown or the arguments do
                not fit the operation
        """
        try:
            operation_type = cls.registered[name]
        except KeyError as e:
            raise InvalidOperation(f"Unknown operation {name!r}") from e
        payload = payload or {}
        if not isinstance(payload, Mapping):
            raise InvalidOperation("Arguments must be an object")
        allowed = {field.name for field in fields(operation_type)}
        unknown = sorted(set(payload) - allowed)
        if unknown:
            raise InvalidOperation(
                f"Unexpected argument(s) for {name}: {', '.join(unknown)}"
            )
        try:
            return operation_type(**payload)
        except TypeError as e:
            raise InvalidOperation(
                f"Invalid arguments for {name}: {e}"
            ) from e


def _text(value: Any, label: str, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not isinstance(value, str) or not value.strip():
        raise InvalidOperation(f"{label}: must be a non-empty string")


def _flag(value: Any, label: str) -> None:
    if not isinstance(value, bool):
        raise InvalidOperation(f"{label}: must be a boolean")


@dataclass(frozen=True)
class ExecuteQuery(Operation, name="execute_query"):
    """Read-only SQL, run in a transaction that is always rolled back"""

    sql: str
    format: str = "json"

    def __post_init__(self):
        _text(self.sql, "sql")
        if self.format not in FORMATS:
            raise InvalidOperation(
                f"format: must be one of {', '.join(FORMATS)}"
            )


@dataclass(frozen=True)
class ExecuteWrite(Operation, name="execute_dml_ddl_dcl_tcl"):
    """SQL that opens a transaction awaiting an explicit commit"""

    sql: str
    dry_run: bool = False
    timeout_ms: Optional[int] = None

    def __post_init__(self):
        _text(self.sql, "sql")
        _flag(self.dry_run, "dry_run")
        if self.timeout_ms is not None and (
            isinstance(self.timeout_ms, bool)
            or not isinstance(self.timeout_ms, int)
            or self.timeout_ms <= 0
        ):
            raise InvalidOperation("timeout_ms: must be a positive integer")


@dataclass(frozen=True)
class Commit(Operation, name="execute_commit"):
    transaction_id: str

    def __post_init__(self):
        _text(self.transaction_id, "transaction_id")


@dataclass(frozen=True)
class Rollback(Operation, name="execute_rollback"):
    transaction_id: str

    def __post_init__(self):
        _text(self.transaction_id, "transaction_id")


@dataclass(frozen=True)
class ListTransactions(Operation, name="list_transactions"):
    pass


@dataclass(frozen=True)
class ServerStatus(Operation, name="server_status"):
    pass


@dataclass(frozen=True)
class ListTables(Operation, name="list_tables"):
    schema: Optional[str] = None
    include_system_tables: bool = False

    def __post_init__(self):
        _text(self.schema, "schema", optional=True)
        _flag(self.include_system_tables, "include_system_tables")


@dataclass(frozen=True)
class DescribeTable(Operation, name="describe_table"):
    table_name: str
    schema: Optional[str] = None

    def __post_init__(self):
        _text(self.table_name, "table_name")
        _text(self.schema, "schema", optional=True)
