"""Database connection management with SQLAlchemy."""

import asyncio
import inspect
import logging
import ssl
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from sql_whisperer_mcp.errors import DatabaseConnectionError, QueryExecutionError
from sql_whisperer_mcp.models.config import DatabaseConfig, EngineKind

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Manages the SQLAlchemy async engine and its connection pool.

    PostgreSQL and MySQL use a queue pool sized from the configuration.
    SQLite uses one persistent connection, serialized with an asyncio lock.
    """

    def __init__(self, config: DatabaseConfig):
        """
        Initialize database connection.

        Args:
            config: Database configuration with connection and pool settings
        """
        self.config = config
        self.engine: Optional[AsyncEngine] = None
        self._dialect = config.dialect
        self._lock: Optional[asyncio.Lock] = None

    def _connect_args(self, url: URL) -> tuple[URL, dict[str, Any]]:
        """Translate TLS and timeout settings into driver connect arguments."""
        connect_args: dict[str, Any] = {}
        connect_timeout = self.config.connection_timeout_ms / 1000

        if self.config.engine == EngineKind.POSTGRESQL:
            connect_args["timeout"] = connect_timeout
            # asyncpg expects 'ssl' in connect_args, not in the URL
            if "sslmode" in url.query:
                sslmode = url.query["sslmode"]
                if sslmode in ["require", "prefer", "allow", "verify-ca", "verify-full"]:
                    connect_args["ssl"] = sslmode
                elif sslmode == "disable":
                    connect_args["ssl"] = False
                url = url.difference_update_query(["sslmode"])
            elif "ssl" in url.query:
                ssl_value = url.query["ssl"]
                if ssl_value in ["require", "true", "1"]:
                    connect_args["ssl"] = "require"
                elif ssl_value in ["false", "0", "disable"]:
                    connect_args["ssl"] = False
                url = url.difference_update_query(["ssl"])
            if self.config.ssl and "ssl" not in connect_args:
                connect_args["ssl"] = "require"

        elif self.config.engine == EngineKind.MYSQL:
            connect_args["connect_timeout"] = max(1, int(connect_timeout))
            if self.config.ssl:
                connect_args["ssl"] = ssl.create_default_context()

        elif self.config.engine == EngineKind.SQLITE:
            # Busy timeout while another process holds the write lock
            connect_args["timeout"] = connect_timeout
            connect_args["check_same_thread"] = False

        return url, connect_args

    async def initialize(self) -> None:
        """
        Create the engine and verify that a connection can be opened.

        Raises:
            ConfigurationError: If connection parameters are incomplete
            DatabaseConnectionError: If the database cannot be reached
        """
        if self.engine is not None:
            return  # Already initialized

        url, connect_args = self._connect_args(self.config.build_url())

        if self.config.engine == EngineKind.SQLITE:
            self._lock = asyncio.Lock()
            self.engine = create_async_engine(
                url,
                poolclass=StaticPool,
                echo=self.config.echo_sql,
                connect_args=connect_args,
            )
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        else:
            self.engine = create_async_engine(
                url,
                pool_size=self.config.pool_min,
                max_overflow=self.config.pool_max - self.config.pool_min,
                pool_timeout=self.config.connection_timeout_ms / 1000,
                pool_recycle=max(1, self.config.idle_timeout_ms // 1000),
                pool_pre_ping=True,  # Verify connections before using
                echo=self.config.echo_sql,
                connect_args=connect_args,
            )

        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            await self.dispose()
            raise DatabaseConnectionError(
                f"Failed to connect to {self._dialect} database: {_root_message(e)}"
            ) from e

        logger.info(
            f"Connected to {self._dialect} database "
            f"{url.render_as_string(hide_password=True)}"
        )

    async def dispose(self) -> None:
        """Dispose of the connection pool and cleanup resources."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
        self._lock = None

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[AsyncConnection, None]:
        """
        Get a connection from the pool as an async context manager.

        Yields:
            AsyncConnection for executing queries

        Raises:
            QueryExecutionError: If not connected or the pool is exhausted
        """
        if self.engine is None:
            raise QueryExecutionError(
                "Not connected. Call connect() first.", code="not_connected"
            )

        if self._lock is not None:
            async with self._lock:
                async with self._checkout(self.engine) as conn:
                    yield conn
        else:
            async with self._checkout(self.engine) as conn:
                yield conn

    @asynccontextmanager
    async def _checkout(self, engine: AsyncEngine) -> AsyncGenerator[AsyncConnection, None]:
        try:
            conn = await engine.connect()
        except PoolTimeoutError as e:
            raise QueryExecutionError(
                f"Timed out after {self.config.connection_timeout_ms} ms waiting "
                f"for a pooled connection",
                code="acquire_timeout",
                engine_message=str(e),
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseConnectionError(
                f"Lost connection to {self._dialect} database: {_root_message(e)}"
            ) from e
        try:
            yield conn
        finally:
            await conn.close()

    async def begin_statement(
        self, conn: AsyncConnection, timeout_ms: int, read_only: bool
    ) -> None:
        """Apply per-statement read-only mode and timeout based on dialect."""
        if read_only:
            await self._set_readonly(conn)
        await self._set_timeout(conn, timeout_ms)

    async def end_statement(self, conn: AsyncConnection, read_only: bool) -> None:
        """Undo session-level settings made by begin_statement."""
        if self._dialect == "sqlite" and read_only:
            await conn.execute(text("PRAGMA query_only = OFF"))

    async def _set_readonly(self, conn: AsyncConnection) -> None:
        """Set the current transaction to read-only mode based on dialect."""
        if self._dialect == "postgresql":
            await conn.execute(text("SET TRANSACTION READ ONLY"))
        elif self._dialect == "mysql":
            # Applies to the next transaction only
            await conn.execute(text("SET TRANSACTION READ ONLY"))
        elif self._dialect == "sqlite":
            await conn.execute(text("PRAGMA query_only = ON"))

    async def _set_timeout(self, conn: AsyncConnection, timeout_ms: int) -> None:
        """Set statement timeout based on database dialect."""
        if self._dialect == "postgresql":
            await conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        elif self._dialect == "mysql":
            # Only enforced for SELECT statements
            await conn.execute(text(f"SET SESSION max_execution_time = {int(timeout_ms)}"))
        # SQLite has no server-side timeout; see interrupt_after()

    @asynccontextmanager
    async def interrupt_after(
        self, conn: AsyncConnection, timeout_ms: int
    ) -> AsyncGenerator[None, None]:
        """Interrupt a running SQLite statement once timeout_ms elapses."""
        if self._dialect != "sqlite":
            yield
            return

        raw = await conn.get_raw_connection()
        driver_connection = raw.driver_connection
        loop = asyncio.get_running_loop()
        pending: list[asyncio.Task] = []

        def fire() -> None:
            outcome = driver_connection.interrupt()
            if inspect.isawaitable(outcome):
                pending.append(asyncio.ensure_future(outcome))

        handle = loop.call_later(timeout_ms / 1000, fire)
        try:
            yield
        finally:
            handle.cancel()
            for task in pending:
                await task

    @property
    def dialect(self) -> str:
        """Get database dialect name."""
        return self._dialect

    @property
    def is_initialized(self) -> bool:
        """Check if engine is initialized."""
        return self.engine is not None

    async def test_connection(self) -> bool:
        """
        Test database connectivity.

        Returns:
            True if connection successful, False otherwise
        """
        if self.engine is None:
            return False
        try:
            async with self.get_connection() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError, QueryExecutionError, DatabaseConnectionError):
            return False

    async def get_version(self) -> str:
        """
        Get database version string.

        Returns:
            Database version string
        """
        version_query = {
            "postgresql": "SELECT version()",
            "mysql": "SELECT VERSION()",
            "sqlite": "SELECT sqlite_version()",
        }

        query = version_query.get(self._dialect, "SELECT version()")

        async with self.get_connection() as conn:
            result = await conn.execute(text(query))
            row = result.fetchone()
            return str(row[0]) if row else "Unknown"

    async def __aenter__(self) -> "DatabaseConnection":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def _root_message(error: BaseException) -> str:
    """Engine's own message for a wrapped DBAPI error."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)
