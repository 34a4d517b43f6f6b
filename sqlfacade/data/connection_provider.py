"""
Connection provisioning for the data access layer.

Every logical operation gets its own handle from ``ConnectionProvider``.
A handle starts UNOPENED, becomes OPEN when a connection is checked out of
the engine, and ends CLOSED once it has been released back to the engine.
Pooling is whatever the SQLAlchemy engine is configured to do.
"""
import enum
import logging
import threading
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, CursorResult, Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sqlfacade.data.commands import SqlCommand
from sqlfacade.exceptions import ConnectionStateError, NotSupportedError

logger = logging.getLogger(__name__)

# Async DBAPI used when the async URL has to be derived from a sync one
ASYNC_DRIVERS = {
    "sqlite": "aiosqlite",
    "postgresql": "asyncpg",
    "mysql": "aiomysql",
}

# Engine options forwarded to create_engine when configured
ENGINE_OPTIONS = (
    "pool_size",
    "max_overflow",
    "pool_timeout",
    "pool_recycle",
    "pool_pre_ping",
    "connect_args",
    "echo",
    "poolclass",
)


class ConnectionState(enum.Enum):
    """Lifecycle states of a connection handle."""

    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"


def derive_async_url(connection_string: str) -> Optional[str]:
    """
    Derive an asyncio-capable URL from a synchronous connection string.

    Args:
        connection_string: SQLAlchemy URL for the synchronous engine

    Returns:
        The URL with its driver swapped for a known async DBAPI, or None
        when no async driver is known for the backend
    """
    try:
        url = make_url(connection_string)
    except ArgumentError:
        return None

    backend = url.get_backend_name()
    driver = url.get_driver_name()
    if driver in ASYNC_DRIVERS.values():
        return connection_string
    if backend not in ASYNC_DRIVERS:
        return None
    return url.set(drivername=f"{backend}+{ASYNC_DRIVERS[backend]}").render_as_string(
        hide_password=False
    )


class ConnectionHandle:
    """One connection for one logical operation."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._connection: Optional[Connection] = None
        self._transaction = None
        self.state = ConnectionState.UNOPENED

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @property
    def connection(self) -> Connection:
        if self.state is not ConnectionState.OPEN:
            raise ConnectionStateError(f"Connection handle is {self.state.value}, not open")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    def open(self) -> "ConnectionHandle":
        if self.state is not ConnectionState.UNOPENED:
            raise ConnectionStateError(f"Cannot open a handle that is {self.state.value}")
        try:
            self._connection = self._engine.connect()
        except Exception:
            # Nothing was checked out, so there is nothing left to release
            self.state = ConnectionState.CLOSED
            raise
        self.state = ConnectionState.OPEN
        logger.debug("Database connection acquired")
        return self

    def begin(self):
        """Begin the single explicit transaction of this handle."""
        if self._transaction is not None:
            raise ConnectionStateError("A transaction is already in progress on this handle")
        self._transaction = self.connection.begin()
        return self._transaction

    def commit(self) -> None:
        """Commit the explicit transaction, or the autobegun one if none was started."""
        if self._transaction is not None:
            self._transaction.commit()
            self._transaction = None
        else:
            self.connection.commit()

    def rollback(self) -> None:
        if self._transaction is not None:
            self._transaction.rollback()
            self._transaction = None
        else:
            self.connection.rollback()

    def execute(self, command: SqlCommand) -> CursorResult:
        return self.connection.execute(command.to_statement(self.dialect_name), command.params)

    def stream(self, command: SqlCommand) -> CursorResult:
        """Execute with a server side cursor where the dialect has one."""
        conn = self.connection.execution_options(stream_results=True)
        return conn.execute(command.to_statement(self.dialect_name), command.params)

    def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        if self.state is ConnectionState.OPEN:
            try:
                self._connection.close()
            finally:
                self._connection = None
                self._transaction = None
                self.state = ConnectionState.CLOSED
                logger.debug("Database connection released")
        else:
            self.state = ConnectionState.CLOSED

    def __enter__(self) -> "ConnectionHandle":
        if self.state is ConnectionState.UNOPENED:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class AsyncConnectionHandle:
    """Suspending counterpart of ConnectionHandle."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._connection: Optional[AsyncConnection] = None
        self._transaction = None
        self.state = ConnectionState.UNOPENED

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @property
    def connection(self) -> AsyncConnection:
        if self.state is not ConnectionState.OPEN:
            raise ConnectionStateError(f"Connection handle is {self.state.value}, not open")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    async def open(self) -> "AsyncConnectionHandle":
        if self.state is not ConnectionState.UNOPENED:
            raise ConnectionStateError(f"Cannot open a handle that is {self.state.value}")
        try:
            self._connection = await self._engine.connect()
        except Exception:
            self.state = ConnectionState.CLOSED
            raise
        self.state = ConnectionState.OPEN
        logger.debug("Async database connection acquired")
        return self

    async def begin(self):
        if self._transaction is not None:
            raise ConnectionStateError("A transaction is already in progress on this handle")
        self._transaction = await self.connection.begin()
        return self._transaction

    async def commit(self) -> None:
        if self._transaction is not None:
            await self._transaction.commit()
            self._transaction = None
        else:
            await self.connection.commit()

    async def rollback(self) -> None:
        if self._transaction is not None:
            await self._transaction.rollback()
            self._transaction = None
        else:
            await self.connection.rollback()

    async def execute(self, command: SqlCommand):
        return await self.connection.execute(
            command.to_statement(self.dialect_name), command.params
        )

    async def stream(self, command: SqlCommand):
        return await self.connection.stream(
            command.to_statement(self.dialect_name), command.params
        )

    async def close(self) -> None:
        if self.state is ConnectionState.OPEN:
            try:
                await self._connection.close()
            finally:
                self._connection = None
                self._transaction = None
                self.state = ConnectionState.CLOSED
                logger.debug("Async database connection released")
        else:
            self.state = ConnectionState.CLOSED

    async def __aenter__(self) -> "AsyncConnectionHandle":
        if self.state is ConnectionState.UNOPENED:
            await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class ConnectionProvider:
    """
    Stamps out fresh, unopened connection handles from one connection string.

    The connection string is fixed at construction. The provider keeps no
    handle of its own; each call to ``new_handle`` returns a new one that the
    caller owns.
    """

    def __init__(self,
                 connection_string: str,
                 async_connection_string: Optional[str] = None,
                 **engine_options: Any):
        """
        Initialize the provider.

        Args:
            connection_string: SQLAlchemy URL for blocking operations
            async_connection_string: SQLAlchemy URL for suspending operations;
                derived from ``connection_string`` when omitted
            **engine_options: Options forwarded to the engine (pool_size,
                max_overflow, pool_timeout, pool_recycle, pool_pre_ping,
                connect_args, echo, poolclass); None values are dropped
        """
        if not connection_string:
            msg = "Database connection string not provided"
            logger.error(msg)
            raise ValueError(msg)

        unknown = set(engine_options) - set(ENGINE_OPTIONS)
        if unknown:
            raise TypeError(f"Unknown engine options: {', '.join(sorted(unknown))}")

        self._connection_string = connection_string
        self._async_connection_string = (
            async_connection_string or derive_async_url(connection_string)
        )
        self._engine_options: Dict[str, Any] = {
            k: v for k, v in engine_options.items() if v is not None
        }

        self.engine = create_engine(connection_string, **self._engine_options)
        self._async_engine: Optional[AsyncEngine] = None
        self._async_lock = threading.Lock()

        logger.info(f"Initialized ConnectionProvider for {self.engine.url.render_as_string()}")

    @property
    def connection_string(self) -> str:
        return self._connection_string

    @property
    def async_connection_string(self) -> Optional[str]:
        return self._async_connection_string

    @property
    def async_engine(self) -> AsyncEngine:
        """The asyncio engine, created on first use."""
        if self._async_engine is None:
            if not self._async_connection_string:
                raise NotSupportedError(
                    f"No async driver known for '{self.engine.url.get_backend_name()}'; "
                    "pass async_connection_string explicitly"
                )
            with self._async_lock:
                if self._async_engine is None:
                    self._async_engine = create_async_engine(
                        self._async_connection_string, **self._engine_options
                    )
        return self._async_engine

    def new_handle(self) -> ConnectionHandle:
        return ConnectionHandle(self.engine)

    def new_async_handle(self) -> AsyncConnectionHandle:
        return AsyncConnectionHandle(self.async_engine)

    def dispose(self) -> None:
        """Release the pooled connections held by the sync engine."""
        self.engine.dispose()

    async def dispose_async(self) -> None:
        """Release the pooled connections held by both engines."""
        self.engine.dispose()
        if self._async_engine is not None:
            await self._async_engine.dispose()
