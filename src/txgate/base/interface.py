from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
)
from urllib.parse import urlparse

from txgate.exception import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"postgres": 5432, "postgresql": 5432}


@dataclass
class StatementResult:
    """Outcome of a single statement executed on a connection"""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    command: str = ""


@dataclass
class PoolStats:
    size: int = 0
    available: int = 0
    max_size: Optional[int] = None
    waiting: int = 0

    @property
    def in_use(self) -> int:
        return max(self.size - self.available, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "available": self.available,
            "in_use": self.in_use,
            "max_size": self.max_size,
            "waiting": self.waiting,
        }


class BaseInterface(ABC):
    schemes: Tuple[str, ...] = ("dummy",)
    registered_interfaces: Set[Type[BaseInterface]] = set()

    READ_ONLY_ENTER: Tuple[str, ...] = ("BEGIN TRANSACTION READ ONLY",)
    READ_ONLY_EXIT: Tuple[str, ...] = ("ROLLBACK",)
    VERSION_QUERY = "SELECT version() AS version"

    def __init_subclass__(cls) -> None:
        BaseInterface.registered_interfaces.add(cls)

    @abstractmethod
    def _setup_pool(self): ...

    @abstractmethod
    async def open(self): ...

    @abstractmethod
    async def close(self): ...

    @abstractmethod
    async def checkout(self, timeout: Optional[float] = None) -> Any: ...

    @abstractmethod
    async def release(self, connection: Any) -> None: ...

    @abstractmethod
    async def execute(
        self,
        connection: Any,
        statement: str,
        params: Optional[Sequence[Any]] = None,
    ) -> StatementResult: ...

    @abstractmethod
    def stats(self) -> PoolStats: ...

    @abstractmethod
    def tables_query(
        self, schema: Optional[str], include_system: bool
    ) -> Tuple[str, Sequence[Any]]: ...

    @abstractmethod
    def columns_query(
        self, table: str, schema: Optional[str]
    ) -> Tuple[str, Sequence[Any]]: ...

    def __init__(
        self,
        dsn: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        db: Optional[str] = None,
        query: Optional[str] = None,
        min_size: int = 1,
        max_size: Optional[int] = None,
        idle_timeout: Optional[float] = None,
        statement_timeout: Optional[float] = None,
    ) -> None:
        """Pool initialization.

        Args:
            dsn (str, optional): DB data source name
            host (str, optional): DB address URL or IP
            port (int, optional): DB port
            user (str, optional): DB user
            password (str, optional): DB password
            db (str, optional): DB name
            query (str, optional): DB query parameters. Defaults to None
            min_size (int, optional): Minimum number of connections in pool.
                Defaults to 1
            max_size (int, optional): Maximum number of connections in pool.
                Defaults to None
            idle_timeout (float, optional): Seconds an unused connection is
                kept open. Defaults to None
            statement_timeout (float, optional): Seconds a single statement
                may run before the database aborts it. Defaults to None
        """

        if dsn and host:
            raise ConfigError("Cannot connect to DB using host and dsn")

        if not dsn:
            if port and (
                not isinstance(port, int) or port not in range(0, 65536)
            ):
                raise ConfigError(
                    "port: must be an integer between 0 and 65535"
                )

            if host and (not isinstance(host, str) or not len(host) > 0):
                raise ConfigError(
                    "host: must be a string at least 1 character long"
                )

        if max_size is not None and max_size < min_size:
            raise ConfigError("max_size: must not be smaller than min_size")

        self._dsn = dsn
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._db = db
        self._query = query
        self._min_size = min_size
        self._max_size = max_size
        self._idle_timeout = idle_timeout
        self._statement_timeout = statement_timeout
        self._full_dsn: Optional[str] = None

        self._populate_connection_args()
        self._populate_dsn()
        self._setup_pool()

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.dsn}>"

    @property
    def scheme(self) -> str:
        return self.schemes[0]

    def _populate_connection_args(self):
        if not self._dsn:
            return
        parts = urlparse(self._dsn)
        try:
            port = parts.port
        except ValueError as e:
            raise ConfigError(f"port: invalid in {self._dsn!r}") from e
        self._host = self._host or parts.hostname or "localhost"
        self._port = self._port or port or DEFAULT_PORTS.get(parts.scheme)
        self._user = self._user or parts.username
        self._password = self._password or parts.password
        self._db = self._db or parts.path.strip("/") or None
        self._query = self._query or parts.query or None

    def _location(self, password: Optional[str]) -> str:
        credentials = ""
        if self._user:
            credentials = self._user
            if password:
                credentials += f":{password}"
            credentials += "@"
        address = self._host or "localhost"
        if self._port:
            address += f":{self._port}"
        return f"{self.scheme}://{credentials}{address}/{self._db or ''}"

    def _populate_dsn(self):
        # The public dsn never carries the password
        self._dsn = self._location("..." if self._password else None)
        self._full_dsn = self._location(self._password)
        if self._query:
            self._full_dsn += f"?{self._query}"

    @property
    def dsn(self):
        return self._dsn

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def password(self):
        return self._password

    @property
    def full_dsn(self):
        return self._full_dsn

    @property
    def min_size(self):
        return self._min_size

    @property
    def max_size(self):
        return self._max_size

    @property
    def idle_timeout(self):
        return self._idle_timeout

    @property
    def statement_timeout(self):
        return self._statement_timeout

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[Any]:
        """Borrow a connection for the duration of the block

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to obtain a connection. Defaults to `None`.

        Yields:
            A database connection that is released when the block exits
        """
        conn = await self.checkout(timeout=timeout)
        try:
            yield conn
        finally:
            await self.release(conn)

    @asynccontextmanager
    async def read_only(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[Any]:
        """Borrow a connection inside a read-only transaction that is
        always rolled back when the block exits"""
        async with self.connection(timeout=timeout) as conn:
            try:
                for statement in self.READ_ONLY_ENTER:
                    await self.execute(conn, statement)
                yield conn
            finally:
                for statement in self.READ_ONLY_EXIT:
                    try:
                        await self.execute(conn, statement)
                    except Exception as e:
                        logger.error(
                            "Failed to leave read-only mode on %s: %s",
                            self,
                            e,
                        )


def interface_for(dsn: str) -> Type[BaseInterface]:
    """Select the interface class registered for the scheme of a DSN"""
    scheme = urlparse(dsn).scheme
    for interface_type in BaseInterface.registered_interfaces:
        if scheme in interface_type.schemes:
            return interface_type
    raise ConfigError(f"No database interface available for {scheme!r}")
