"""SQL Whisperer MCP Server

A Model Context Protocol (MCP) server for schema discovery, guarded query
execution and execution plan analysis on PostgreSQL, MySQL and SQLite.
"""

import asyncio
import logging
import os
from typing import Any, Optional

from dotenv import load_dotenv
from mcp.server import Server
from mcp.types import TextContent, Tool
from pydantic import ValidationError

from sql_whisperer_mcp.adapters import BaseAdapter, create_adapter
from sql_whisperer_mcp.core.validator import QueryValidator
from sql_whisperer_mcp.errors import (
    ConfigurationError,
    NotFoundError,
    QueryExecutionError,
    SQLWhispererError,
)
from sql_whisperer_mcp.models.config import DatabaseConfig, EngineKind
from sql_whisperer_mcp.models.query import QueryOptions
from sql_whisperer_mcp.utils.limits import DEFAULT_MAX_ROWS, parse_table_name
from sql_whisperer_mcp.utils.serialization import dumps

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Response size limits (in characters) for MCP tool responses
MAX_RESPONSE_CONNECT = 2000
MAX_RESPONSE_VALIDATE_QUERY = 4000
MAX_RESPONSE_NATURAL_QUERY = 4000
MAX_RESPONSE_TABLE_STATISTICS = 4000
MAX_RESPONSE_SAMPLE_DATA = 5000
MAX_RESPONSE_DESCRIBE_TABLE = 8000
MAX_RESPONSE_EXPLAIN_QUERY = 8000
MAX_RESPONSE_OPTIMIZE_QUERY = 8000
MAX_RESPONSE_EXECUTE_QUERY = 10000
MAX_RESPONSE_GET_SCHEMA = 12000

DEFAULT_SAMPLE_ROWS = 10

OPTIMIZATION_TIPS = [
    "Ensure indexes exist for columns used in WHERE, JOIN and ORDER BY clauses",
    "Select only the columns you need instead of SELECT *",
    "Add a LIMIT clause to restrict the result set",
    "Prefer INNER JOIN over OUTER JOIN when the semantics allow it",
    "Rewrite correlated subqueries as joins where possible",
    "Avoid wrapping indexed columns in functions inside WHERE clauses",
]


def truncate_json_response(data: str, max_length: int) -> str:
    """
    Truncate JSON response to a maximum length.

    Args:
        data: JSON string to truncate
        max_length: Maximum length in characters

    Returns:
        Truncated JSON string with truncation notice if needed
    """
    if len(data) <= max_length:
        return data

    truncation_msg = (
        f"\n\n... [Response truncated: {len(data)} chars -> {max_length} chars "
        "to preserve context window]"
    )
    available_length = max_length - len(truncation_msg)

    if available_length < 100:
        return dumps(
            {
                "error": "Response too large",
                "original_size": len(data),
                "limit": max_length,
                "message": "Response exceeds size limit. Narrow the request and try again.",
            },
            indent=True,
        )

    truncated = data[:available_length]

    # Cut at a line boundary when one is close to the limit
    last_newline = truncated.rfind("\n")
    if last_newline > available_length * 0.8:
        truncated = truncated[:last_newline]

    return truncated + truncation_msg


def _text(payload: Any, max_length: int) -> list[TextContent]:
    return [
        TextContent(
            type="text",
            text=truncate_json_response(dumps(payload, indent=True), max_length),
        )
    ]


class SQLWhispererServer:
    """MCP server exposing one database connection at a time."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """
        Initialize the server.

        Args:
            config: Connection to open at startup; when omitted the server
                waits for a ``connect_database`` call
        """
        self.config = config
        self.adapter: Optional[BaseAdapter] = None
        self.validator = QueryValidator()
        self.server = Server("sql-whisperer-mcp")

    async def initialize(self) -> None:
        """Connect to the configured database, if any."""
        if self.config is None:
            logger.info("No database configured; waiting for connect_database")
            return
        await self._connect(self.config)

    async def _connect(self, config: DatabaseConfig) -> BaseAdapter:
        if self.adapter is not None:
            await self.adapter.disconnect()
            self.adapter = None

        adapter = create_adapter(config)
        await adapter.connect()
        self.adapter = adapter
        self.config = config

        logger.info(
            f"Connected to {config.dialect} "
            f"({len(adapter.capabilities.get_supported_features())} features)"
        )
        return adapter

    def _require_adapter(self) -> BaseAdapter:
        if self.adapter is None or not self.adapter.is_connected():
            raise QueryExecutionError(
                "Not connected to a database. Call connect_database first.",
                code="not_connected",
            )
        return self.adapter

    # ==================== Tool definitions ====================

    def _create_connect_database_tool(self) -> Tool:
        return Tool(
            name="connect_database",
            description=(
                "Connect to a database (PostgreSQL, MySQL, or SQLite). Replaces any "
                "existing connection and returns database metadata."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "engine": {
                        "type": "string",
                        "enum": [kind.value for kind in EngineKind],
                        "description": "Database engine (inferred from connection_string when omitted)",
                    },
                    "connection_string": {
                        "type": "string",
                        "description": "Connection URL (optional if individual params provided)",
                    },
                    "host": {"type": "string", "description": "Server host (PostgreSQL/MySQL)"},
                    "port": {
                        "type": "integer",
                        "description": "Server port (5432 for PostgreSQL, 3306 for MySQL)",
                    },
                    "database": {"type": "string", "description": "Database name"},
                    "user": {"type": "string", "description": "Login user"},
                    "password": {"type": "string", "description": "Login password"},
                    "filename": {"type": "string", "description": "SQLite database file path"},
                    "ssl": {"type": "boolean", "description": "Require TLS (PostgreSQL/MySQL)"},
                },
                "required": [],
            },
        )

    def _create_get_schema_tool(self) -> Tool:
        return Tool(
            name="get_schema",
            description=(
                "Get the complete database schema: tables, columns, indexes, constraints, "
                "views, sequences, routines and triggers."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "summary_only": {
                        "type": "boolean",
                        "description": "Return only table names, sizes and counts",
                        "default": False,
                    },
                },
                "required": [],
            },
        )

    def _create_describe_table_tool(self) -> Tool:
        return Tool(
            name="describe_table",
            description=(
                "Get detailed information about one table: columns, types, constraints, "
                "indexes, triggers and size."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "table_name": {
                        "type": "string",
                        "description": "Table name (can include schema: schema.table)",
                    },
                },
                "required": ["table_name"],
            },
        )

    def _create_execute_query_tool(self) -> Tool:
        return Tool(
            name="execute_query",
            description=(
                "Execute a SQL statement. The statement is validated first: invalid "
                "statements are refused and mutations require confirm=true."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "SQL statement to execute"},
                    "params": {
                        "type": "object",
                        "description": "Named bind parameters for :name placeholders",
                    },
                    "max_rows": {
                        "type": "integer",
                        "description": f"Maximum rows to return (default: {DEFAULT_MAX_ROWS}, max: 10000)",
                    },
                    "timeout_ms": {
                        "type": "integer",
                        "description": "Statement timeout in milliseconds (default: 30000, max: 300000)",
                    },
                    "read_only": {
                        "type": "boolean",
                        "description": "Run inside a read-only transaction",
                        "default": False,
                    },
                    "explain": {
                        "type": "boolean",
                        "description": "Attach the execution plan",
                        "default": False,
                    },
                    "analyze": {
                        "type": "boolean",
                        "description": "Use EXPLAIN ANALYZE for the attached plan",
                        "default": False,
                    },
                    "confirm": {
                        "type": "boolean",
                        "description": "Confirm execution of a statement that modifies data or schema",
                        "default": False,
                    },
                },
                "required": ["query"],
            },
        )

    def _create_explain_query_tool(self) -> Tool:
        return Tool(
            name="explain_query",
            description=(
                "Get the normalized execution plan for a query, with recommendations. "
                "Changes made under analyze are rolled back."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "SQL query to explain"},
                    "analyze": {
                        "type": "boolean",
                        "description": "Execute the query and report measured timing",
                        "default": False,
                    },
                },
                "required": ["query"],
            },
        )

    def _create_optimize_query_tool(self) -> Tool:
        return Tool(
            name="optimize_query",
            description=(
                "Analyze a query and suggest optimizations from its structure and "
                "execution plan."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "SQL query to optimize"},
                },
                "required": ["query"],
            },
        )

    def _create_table_statistics_tool(self) -> Tool:
        return Tool(
            name="table_statistics",
            description=(
                "Get statistics for a table: row count, table and index size, scan "
                "counts and maintenance history where the engine tracks them."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "table_name": {
                        "type": "string",
                        "description": "Table name (can include schema: schema.table)",
                    },
                },
                "required": ["table_name"],
            },
        )

    def _create_validate_query_tool(self) -> Tool:
        return Tool(
            name="validate_query",
            description=(
                "Check a SQL statement for dangerous operations, injection patterns and "
                "performance issues without executing it. No connection required."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "SQL statement to validate"},
                },
                "required": ["query"],
            },
        )

    def _create_sample_data_tool(self) -> Tool:
        return Tool(
            name="sample_data",
            description="Get a sample of rows from a table",
            inputSchema={
                "type": "object",
                "properties": {
                    "table_name": {
                        "type": "string",
                        "description": "Table name (can include schema: schema.table)",
                    },
                    "limit": {
                        "type": "integer",
                        "description": f"Number of rows to sample (default: {DEFAULT_SAMPLE_ROWS})",
                        "default": DEFAULT_SAMPLE_ROWS,
                        "minimum": 1,
                        "maximum": 1000,
                    },
                },
                "required": ["table_name"],
            },
        )

    def _create_natural_query_tool(self) -> Tool:
        return Tool(
            name="natural_query",
            description=(
                "Describe the data you want in plain language. Returns the schema "
                "context needed to write the SQL; nothing is executed."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "prompt": {
                        "type": "string",
                        "description": "Natural language description of the data wanted",
                    },
                    "max_rows": {
                        "type": "integer",
                        "description": f"Row limit to use in the generated query (default: {DEFAULT_MAX_ROWS})",
                    },
                },
                "required": ["prompt"],
            },
        )

    def list_tools(self) -> list[Tool]:
        """Tools offered for the current connection state."""
        tools = [
            self._create_connect_database_tool(),
            self._create_validate_query_tool(),
            self._create_natural_query_tool(),
            self._create_get_schema_tool(),
            self._create_describe_table_tool(),
            self._create_execute_query_tool(),
            self._create_sample_data_tool(),
            self._create_table_statistics_tool(),
            self._create_explain_query_tool(),
            self._create_optimize_query_tool(),
        ]
        return tools

    # ==================== Tool handlers ====================

    async def handle_connect_database(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle connect_database tool call."""
        values = {
            key: value
            for key, value in arguments.items()
            if key
            in (
                "engine",
                "connection_string",
                "host",
                "port",
                "database",
                "user",
                "password",
                "filename",
                "ssl",
            )
            and value is not None
        }
        try:
            config = DatabaseConfig(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid connection parameters: {e}") from e
        adapter = await self._connect(config)
        snapshot = await adapter.introspect()

        result = {
            "connected": True,
            "engine": config.dialect,
            "version": snapshot.metadata.version,
            "database": snapshot.metadata.database,
            "character_set": snapshot.metadata.character_set,
            "collation": snapshot.metadata.collation,
            "table_count": len(snapshot.tables),
            "view_count": len(snapshot.views),
            "introspection_ms": round(snapshot.metadata.duration_ms, 1),
            "capabilities": adapter.capabilities.get_supported_features(),
        }
        return _text(result, MAX_RESPONSE_CONNECT)

    async def handle_get_schema(self, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle get_schema tool call."""
        adapter = self._require_adapter()
        snapshot = await adapter.introspect()

        if arguments.get("summary_only", False):
            return _text(snapshot.summary(), MAX_RESPONSE_GET_SCHEMA)
        return _text(snapshot.model_dump(mode="json"), MAX_RESPONSE_GET_SCHEMA)

    async def handle_describe_table(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle describe_table tool call."""
        adapter = self._require_adapter()
        table_name = arguments["table_name"]
        schema, name = parse_table_name(table_name)

        snapshot = await adapter.introspect()
        table = snapshot.get_table(name, schema)
        if table is None:
            raise NotFoundError(f"Table not found: {table_name}")

        result = table.model_dump(mode="json")
        result["size"] = table.size_human
        if table.row_count and table.size_bytes:
            result["average_row_bytes"] = table.size_bytes // table.row_count
        return _text(result, MAX_RESPONSE_DESCRIBE_TABLE)

    async def handle_execute_query(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle execute_query tool call."""
        adapter = self._require_adapter()
        query = arguments["query"]

        verdict = self.validator.validate(query)
        if not verdict.is_valid:
            messages = "; ".join(finding.message for finding in verdict.errors)
            raise QueryExecutionError(f"Query refused: {messages}", code="rejected")
        if verdict.meta.requires_confirmation and not arguments.get("confirm", False):
            raise QueryExecutionError(
                f"{verdict.meta.query_type.value} statement modifies the database; "
                "call again with confirm=true to execute it",
                code="rejected",
            )

        options = QueryOptions(
            read_only=arguments.get("read_only", False),
            timeout_ms=arguments.get("timeout_ms"),
            max_rows=arguments.get("max_rows"),
            explain=arguments.get("explain", False),
            analyze=arguments.get("analyze", False),
        )
        result = await adapter.query(query, arguments.get("params"), options)

        payload = result.model_dump(mode="json")
        payload["query_type"] = verdict.meta.query_type.value
        payload["warnings"] = [
            finding.model_dump(mode="json") for finding in verdict.warnings
        ]
        return _text(payload, MAX_RESPONSE_EXECUTE_QUERY)

    async def handle_explain_query(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle explain_query tool call."""
        adapter = self._require_adapter()
        plan = await adapter.explain(arguments["query"], arguments.get("analyze", False))
        return _text(plan.model_dump(mode="json"), MAX_RESPONSE_EXPLAIN_QUERY)

    async def handle_optimize_query(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle optimize_query tool call."""
        adapter = self._require_adapter()
        query = arguments["query"]

        verdict = self.validator.validate(query)
        plan = await adapter.explain(query, analyze=False)

        result = {
            "query": query,
            "is_valid": verdict.is_valid,
            "query_type": verdict.meta.query_type.value,
            "complexity": verdict.meta.estimated_complexity.value,
            "estimated_cost": plan.estimated_cost,
            "estimated_rows": plan.estimated_rows,
            "query_issues": [
                finding.model_dump(mode="json") for finding in verdict.findings
            ],
            "plan_recommendations": [
                recommendation.model_dump(mode="json")
                for recommendation in plan.recommendations
            ],
            "plan": plan.plan,
            "general_tips": OPTIMIZATION_TIPS,
        }
        return _text(result, MAX_RESPONSE_OPTIMIZE_QUERY)

    async def handle_table_statistics(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle table_statistics tool call."""
        adapter = self._require_adapter()
        stats = await adapter.get_table_statistics(arguments["table_name"])

        result = stats.model_dump(mode="json")
        result["total_size"] = stats.total_size_human
        if stats.row_count and stats.table_size_bytes:
            result["average_row_bytes"] = stats.table_size_bytes // stats.row_count
        return _text(result, MAX_RESPONSE_TABLE_STATISTICS)

    async def handle_validate_query(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle validate_query tool call."""
        verdict = self.validator.validate(arguments["query"])
        return _text(verdict.model_dump(mode="json"), MAX_RESPONSE_VALIDATE_QUERY)

    async def handle_sample_data(self, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle sample_data tool call."""
        adapter = self._require_adapter()
        limit = arguments.get("limit", DEFAULT_SAMPLE_ROWS)
        result = await adapter.sample(arguments["table_name"], limit)
        return _text(result.model_dump(mode="json"), MAX_RESPONSE_SAMPLE_DATA)

    async def handle_natural_query(
        self, arguments: dict[str, Any]
    ) -> list[TextContent]:
        """Handle natural_query tool call.

        Translation to SQL is left to the caller; this returns the schema
        context to translate against and the steps to follow.
        """
        prompt = arguments["prompt"]
        max_rows = arguments.get("max_rows") or DEFAULT_MAX_ROWS

        result: dict[str, Any] = {
            "prompt": prompt,
            "executed": False,
            "guidance": [
                "Use the schema below (or get_schema / describe_table) to map the request "
                "to tables and columns",
                "Write a single SELECT statement with explicit columns and joins",
                f"Add LIMIT {max_rows} to bound the result",
                "Check it with validate_query, then run it with execute_query",
            ],
        }
        if self.adapter is not None and self.adapter.is_connected():
            snapshot = await self.adapter.introspect()
            result["engine"] = snapshot.metadata.engine
            result["tables"] = [
                {
                    "name": table.qualified_name,
                    "columns": [
                        f"{column.name} {column.native_type}" for column in table.columns
                    ],
                }
                for table in snapshot.tables
            ]
        return _text(result, MAX_RESPONSE_NATURAL_QUERY)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """
        Dispatch a tool call.

        Package errors are returned as an error payload rather than raised.

        Raises:
            ValueError: If the tool name is unknown
        """
        handlers = {
            "connect_database": self.handle_connect_database,
            "get_schema": self.handle_get_schema,
            "describe_table": self.handle_describe_table,
            "execute_query": self.handle_execute_query,
            "explain_query": self.handle_explain_query,
            "optimize_query": self.handle_optimize_query,
            "table_statistics": self.handle_table_statistics,
            "validate_query": self.handle_validate_query,
            "sample_data": self.handle_sample_data,
            "natural_query": self.handle_natural_query,
        }

        handler = handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")

        try:
            return await handler(arguments or {})
        except SQLWhispererError as e:
            logger.warning(f"{name} failed: {e}")
            return [TextContent(type="text", text=dumps(e.to_dict(), indent=True))]

    def register_handlers(self) -> None:
        """Attach tool listing and dispatch to the MCP server."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """List available tools."""
            return self.list_tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            return await self.call_tool(name, arguments)

    async def cleanup(self) -> None:
        """Cleanup resources."""
        if self.adapter is not None:
            await self.adapter.disconnect()
            self.adapter = None


async def main() -> None:
    """Main entry point for the MCP server."""
    config = DatabaseConfig.from_env()
    mcp_server = SQLWhispererServer(config)

    try:
        await mcp_server.initialize()
        mcp_server.register_handlers()

        # Run the server
        from mcp.server.stdio import stdio_server

        async with stdio_server() as (read_stream, write_stream):
            await mcp_server.server.run(
                read_stream,
                write_stream,
                mcp_server.server.create_initialization_options(),
            )

    finally:
        await mcp_server.cleanup()


def cli_entry() -> None:
    """
    Synchronous entry point for console script.

    This function is called by the 'sql-whisperer-mcp' console script.
    """
    # Windows-specific event loop policy
    if os.name == "nt":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())  # type: ignore[attr-defined]

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    cli_entry()
