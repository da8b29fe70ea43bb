"""Base adapter abstract class for database-specific implementations."""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from sqlalchemy import text
from sqlalchemy.engine import Row
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from sql_whisperer_mcp.core.connection import DatabaseConnection
from sql_whisperer_mcp.core.executor import QueryExecutor
from sql_whisperer_mcp.core.plan import PlanAdvisor
from sql_whisperer_mcp.errors import IntrospectionError
from sql_whisperer_mcp.models.capabilities import DatabaseCapabilities
from sql_whisperer_mcp.models.config import DatabaseConfig
from sql_whisperer_mcp.models.plan import ExplainPlan, PlanNode
from sql_whisperer_mcp.models.query import QueryOptions, QueryResult
from sql_whisperer_mcp.models.schema import CanonicalType, SchemaMetadata, SchemaSnapshot
from sql_whisperer_mcp.models.statistics import TableStatistics
from sql_whisperer_mcp.utils.limits import (
    EXACT_COUNT_THRESHOLD_BYTES,
    parse_table_name,
    quote_identifier,
)

logger = logging.getLogger(__name__)


class CatalogRow(BaseModel):
    """Typed view of one row returned by a catalog query."""

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def decode_bytes(cls, data: Any) -> Any:
        # Some drivers return catalog text columns as bytes
        if isinstance(data, dict):
            return {
                key: value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else value
                for key, value in data.items()
            }
        return data

    @classmethod
    def from_rows(cls, rows: Sequence[Row]) -> list:
        return [cls.model_validate(dict(row._mapping)) for row in rows]


class BaseAdapter(ABC):
    """Capability contract every engine adapter implements.

    Connection handling, statement execution and plan advice are composed
    in rather than inherited, so tests can inject their own instances.
    """

    default_schema: Optional[str] = None
    identifier_quote = '"'
    # Wrap optional catalog reads in a savepoint so a failure does not
    # abort the surrounding transaction
    savepoint_optional_reads = False

    def __init__(
        self,
        config: DatabaseConfig,
        connection: Optional[DatabaseConnection] = None,
        executor: Optional[QueryExecutor] = None,
        advisor: Optional[PlanAdvisor] = None,
    ):
        """
        Initialize adapter.

        Args:
            config: Database configuration
            connection: Connection manager (created from config when omitted)
            executor: Statement executor (created when omitted)
            advisor: Plan recommendation engine (engine defaults when omitted)
        """
        self.config = config
        self.connection = connection or DatabaseConnection(config)
        self.advisor = advisor or self.create_advisor()
        self.executor = executor or QueryExecutor(self.connection, self, self.advisor)

    @property
    @abstractmethod
    def capabilities(self) -> DatabaseCapabilities:
        """Get capabilities for this database type."""
        ...

    # ==================== Connection lifecycle ====================

    async def connect(self) -> None:
        """
        Open the connection pool. Calling it again while connected is a no-op.

        Raises:
            DatabaseConnectionError: On authentication, network or file failure
        """
        await self.connection.initialize()

    async def disconnect(self) -> None:
        """Release the pool. Safe to call when not connected."""
        await self.connection.dispose()

    def is_connected(self) -> bool:
        return self.connection.is_initialized

    # ==================== Queries and plans ====================

    async def query(
        self,
        query: str,
        params: Optional[dict[str, Any]] = None,
        options: Optional[QueryOptions] = None,
    ) -> QueryResult:
        """
        Execute one statement.

        Raises:
            QueryExecutionError: Carrying the engine's raw message
        """
        return await self.executor.execute_query(query, params, options)

    async def explain(self, query: str, analyze: bool = False) -> ExplainPlan:
        """Return the normalized plan and recommendations for a statement."""
        return await self.executor.explain_query(query, analyze)

    async def sample(self, table_name: str, limit: int = 10) -> QueryResult:
        schema, table = parse_table_name(table_name, self.default_schema)
        return await self.executor.sample_data(table, schema, limit)

    def get_sample_query(self, table_name: str, schema: Optional[str], limit: int) -> str:
        """Generate a sampling query for a table."""
        table_ref = self._build_table_reference(table_name, schema)
        return f"SELECT * FROM {table_ref} LIMIT {int(limit)}"

    @abstractmethod
    def get_explain_query(self, query: str, analyze: bool) -> str:
        """
        Generate database-specific EXPLAIN query.

        Args:
            query: Query to explain
            analyze: Whether to execute the query for measured figures

        Returns:
            EXPLAIN query string
        """
        ...

    @abstractmethod
    def build_plan(self, rows: list[tuple], analyzed: bool) -> tuple[PlanNode, Any]:
        """
        Build the normalized plan tree from raw EXPLAIN rows.

        Args:
            rows: Rows returned by the EXPLAIN statement
            analyzed: Whether this was an ANALYZE run

        Returns:
            Tuple of (root node, raw plan for callers that want it)
        """
        ...

    def create_advisor(self) -> PlanAdvisor:
        return PlanAdvisor()

    # ==================== Type mapping ====================

    @abstractmethod
    def map_column_type(self, native_type: str) -> CanonicalType:
        """Map an engine-native column type to its canonical category."""
        ...

    def describe_field_type(self, type_code: Any) -> Optional[str]:
        """Name of a result column type from its DBAPI type code."""
        return None

    # ==================== Introspection ====================

    async def introspect(self) -> SchemaSnapshot:
        """
        Capture tables, views, routines, sequences and triggers.

        Raises:
            IntrospectionError: If a core catalog query fails
        """
        started = time.perf_counter()
        introspected_at = datetime.now(timezone.utc)
        try:
            async with self.connection.get_connection() as conn:
                snapshot = await self._introspect(conn)
                await conn.rollback()
        except SQLAlchemyError as e:
            raise IntrospectionError(
                f"Failed to read {self.config.dialect} catalog: {_engine_message(e)}"
            ) from e
        except ValidationError as e:
            raise IntrospectionError(
                f"Inconsistent {self.config.dialect} catalog: {e}"
            ) from e

        snapshot.metadata.introspected_at = introspected_at
        snapshot.metadata.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Introspected {len(snapshot.tables)} tables and {len(snapshot.views)} views "
            f"in {snapshot.metadata.duration_ms:.1f} ms"
        )
        return snapshot

    @abstractmethod
    async def _introspect(self, conn: AsyncConnection) -> SchemaSnapshot:
        """Read the catalog on one connection and build the snapshot."""
        ...

    @abstractmethod
    async def get_table_statistics(self, table_name: str) -> TableStatistics:
        """
        Get engine bookkeeping about a table.

        Args:
            table_name: Table name, optionally schema-qualified

        Raises:
            NotFoundError: If the table does not exist
        """
        ...

    # ==================== Helpers ====================

    async def _fetch(
        self, conn: AsyncConnection, sql: str, params: Optional[dict[str, Any]] = None
    ) -> Sequence[Row]:
        result = await conn.execute(text(sql), params or {})
        return result.fetchall()

    async def _fetch_optional(
        self,
        conn: AsyncConnection,
        sql: str,
        params: Optional[dict[str, Any]] = None,
        what: str = "metadata",
    ) -> Sequence[Row]:
        """Run a catalog read whose failure only degrades the snapshot."""
        try:
            if self.savepoint_optional_reads:
                async with conn.begin_nested():
                    return await self._fetch(conn, sql, params)
            return await self._fetch(conn, sql, params)
        except DBAPIError as e:
            logger.warning(f"Skipping {what}: {_engine_message(e)}")
            return []

    async def _exact_count(
        self, conn: AsyncConnection, table_ref: str, size_bytes: Optional[int]
    ) -> Optional[int]:
        """COUNT(*) for tables known to be small; None otherwise or on failure."""
        if size_bytes is None or size_bytes >= EXACT_COUNT_THRESHOLD_BYTES:
            return None
        rows = await self._fetch_optional(
            conn, f"SELECT COUNT(*) FROM {table_ref}", what=f"row count of {table_ref}"
        )
        return int(rows[0][0]) if rows else None

    def _metadata(self, **values: Any) -> SchemaMetadata:
        """Snapshot metadata; timing fields are filled in by introspect()."""
        return SchemaMetadata(
            engine=self.config.dialect,
            introspected_at=datetime.now(timezone.utc),
            duration_ms=0.0,
            **values,
        )

    def quote(self, name: str) -> str:
        return quote_identifier(name, self.identifier_quote)

    def _build_table_reference(self, table_name: str, schema: Optional[str]) -> str:
        """Build qualified, quoted table reference."""
        if schema:
            return f"{self.quote(schema)}.{self.quote(table_name)}"
        return self.quote(table_name)


def _engine_message(error: BaseException) -> str:
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)
