"""Statement execution with per-call limits and plan retrieval."""

import logging
import time
from typing import TYPE_CHECKING, Any, Optional

import orjson
from sqlalchemy import text
from sqlalchemy.engine import Result
from sqlalchemy.exc import StatementError
from sqlalchemy.ext.asyncio import AsyncConnection

from sql_whisperer_mcp.core.connection import DatabaseConnection
from sql_whisperer_mcp.core.plan import PlanAdvisor, PlanFormatter
from sql_whisperer_mcp.errors import QueryExecutionError
from sql_whisperer_mcp.models.plan import ExplainPlan
from sql_whisperer_mcp.models.query import FieldInfo, QueryOptions, QueryResult
from sql_whisperer_mcp.utils import (
    convert_rows_to_json_safe,
    normalize_max_rows,
    normalize_timeout,
)

if TYPE_CHECKING:
    from sql_whisperer_mcp.adapters.base import BaseAdapter

logger = logging.getLogger(__name__)

# Engine messages that mean the statement was cancelled by a timeout
TIMEOUT_MARKERS = (
    "canceling statement due to statement timeout",
    "maximum statement execution time exceeded",
    "interrupted",
)


class QueryExecutor:
    """Executes single statements with timeouts, row limits and timing."""

    def __init__(
        self,
        connection: DatabaseConnection,
        adapter: "BaseAdapter",
        advisor: Optional[PlanAdvisor] = None,
    ):
        """
        Initialize query executor.

        Args:
            connection: Database connection manager
            adapter: Database-specific adapter
            advisor: Recommendation engine applied to explain output
        """
        self.connection = connection
        self.adapter = adapter
        self.advisor = advisor or PlanAdvisor()
        self.formatter = PlanFormatter()

    async def execute_query(
        self,
        query: str,
        params: Optional[dict[str, Any]] = None,
        options: Optional[QueryOptions] = None,
    ) -> QueryResult:
        """
        Execute one statement.

        Rows beyond ``max_rows`` are dropped after execution; ``row_count``
        still reports how many rows the statement produced.

        Args:
            query: SQL statement to execute
            params: Named bind parameters (``:name`` placeholders)
            options: Read-only mode, timeout, row limit and explain flags

        Returns:
            Query result with rows and metadata

        Raises:
            QueryExecutionError: If the engine rejects or cancels the statement
        """
        options = options or QueryOptions()
        timeout_ms = normalize_timeout(
            options.timeout_ms
            if options.timeout_ms is not None
            else self.connection.config.statement_timeout_ms
        )
        max_rows = normalize_max_rows(options.max_rows)

        explain_plan = None
        if options.explain:
            explain_plan = await self.explain_query(query, options.analyze)

        start_time = time.perf_counter()

        async with self.connection.get_connection() as conn:
            try:
                await self.connection.begin_statement(conn, timeout_ms, options.read_only)
                async with self.connection.interrupt_after(conn, timeout_ms):
                    result = await self._run(conn, query, params)
                    fields, rows, row_count = self._consume(result, max_rows)
                if options.read_only:
                    await conn.rollback()
                else:
                    await conn.commit()
            except StatementError as e:
                raise self._translate_error(e, timeout_ms) from e
            finally:
                await self.connection.end_statement(conn, options.read_only)

        execution_time = (time.perf_counter() - start_time) * 1000

        return QueryResult(
            query=query,
            rows=convert_rows_to_json_safe(rows),
            fields=fields,
            row_count=row_count,
            execution_time_ms=execution_time,
            truncated=row_count > len(rows),
            explain_plan=explain_plan,
        )

    async def _run(
        self, conn: AsyncConnection, sql: str, params: Optional[dict[str, Any]] = None
    ) -> Result:
        """Run caller SQL.

        Without parameters the text reaches the driver unchanged, so colons
        and percent signs inside string literals are not taken as binds.
        """
        if params:
            return await conn.execute(text(sql), params)
        return await conn.exec_driver_sql(sql, execution_options={"no_parameters": True})

    def _consume(
        self, result: Result, max_rows: int
    ) -> tuple[list[FieldInfo], list[dict[str, Any]], int]:
        """Read field metadata and rows from a result."""
        if not result.returns_rows:
            return [], [], max(result.rowcount, 0)

        # Describe before fetching; the cursor is released once exhausted
        columns = list(result.keys())
        cursor = getattr(result, "cursor", None)
        description = getattr(cursor, "description", None) or []
        if len(description) == len(columns):
            type_names = [self.adapter.describe_field_type(d[1]) for d in description]
        else:
            type_names = [None] * len(columns)
        fields = [
            FieldInfo(name=name, data_type=type_name)
            for name, type_name in zip(columns, type_names)
        ]

        rows_data = result.fetchall()
        rows = [dict(zip(columns, row)) for row in rows_data[:max_rows]]
        return fields, rows, len(rows_data)

    def _translate_error(self, error: StatementError, timeout_ms: int) -> QueryExecutionError:
        engine_message = str(error.orig) if error.orig is not None else str(error)
        lowered = engine_message.lower()
        if any(marker in lowered for marker in TIMEOUT_MARKERS):
            return QueryExecutionError(
                f"Statement cancelled after {timeout_ms} ms",
                code="timeout",
                engine_message=engine_message,
            )
        return QueryExecutionError(
            f"Query failed: {engine_message}", code="engine", engine_message=engine_message
        )

    async def sample_data(
        self,
        table_name: str,
        schema: Optional[str] = None,
        limit: int = 10,
    ) -> QueryResult:
        """
        Sample data from a table.

        Args:
            table_name: Table name
            schema: Schema name
            limit: Number of rows to sample

        Returns:
            Sample data query result
        """
        query = self.adapter.get_sample_query(table_name, schema, limit)
        return await self.execute_query(
            query, options=QueryOptions(read_only=True, max_rows=limit)
        )

    async def explain_query(self, query: str, analyze: bool = False) -> ExplainPlan:
        """
        Get the normalized execution plan with recommendations.

        The surrounding transaction is always rolled back, so ANALYZE of a
        data-modifying statement leaves no changes behind.

        Args:
            query: SQL query to explain
            analyze: Whether to actually execute the query

        Returns:
            Execution plan information

        Raises:
            QueryExecutionError: If the engine cannot plan the statement
        """
        explain_sql = self.adapter.get_explain_query(query, analyze)
        timeout_ms = normalize_timeout(self.connection.config.statement_timeout_ms)
        measured: Optional[tuple[float, int]] = None

        async with self.connection.get_connection() as conn:
            try:
                await self.connection.begin_statement(conn, timeout_ms, read_only=False)
                async with self.connection.interrupt_after(conn, timeout_ms):
                    result = await self._run(conn, explain_sql)
                    rows = [tuple(row) for row in result.fetchall()]

                    # Engines without measured plans get whole-statement figures
                    if analyze and not self.adapter.capabilities.explain_analyze:
                        start_time = time.perf_counter()
                        executed = await self._run(conn, query)
                        produced = (
                            len(executed.fetchall())
                            if executed.returns_rows
                            else max(executed.rowcount, 0)
                        )
                        measured = ((time.perf_counter() - start_time) * 1000, produced)
                await conn.rollback()
            except StatementError as e:
                raise self._translate_error(e, timeout_ms) from e
            finally:
                await self.connection.end_statement(conn, read_only=False)

        root, raw = self.adapter.build_plan(rows, analyze)
        if measured is not None:
            root = root.model_copy(
                update={"actual_time_ms": measured[0], "actual_rows": float(measured[1])}
            )

        return ExplainPlan(
            query=query,
            plan=self.formatter.format(root),
            root=root,
            raw=raw,
            analyzed=analyze,
            estimated_cost=root.total_cost,
            estimated_rows=root.estimated_rows,
            actual_time_ms=root.actual_time_ms if analyze else None,
            actual_rows=root.actual_rows if analyze else None,
            recommendations=self.advisor.advise(root),
        )


def load_json_plan(value: Any) -> Any:
    """Decode a JSON plan cell that drivers may return as str, bytes or parsed."""
    if isinstance(value, (bytes, bytearray, str)):
        return orjson.loads(value)
    return value
