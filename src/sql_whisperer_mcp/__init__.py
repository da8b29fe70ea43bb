"""
sql_whisperer_mcp - SQL Whisperer MCP server

A Model Context Protocol (MCP) server for schema discovery, guarded query
execution and execution plan analysis on PostgreSQL, MySQL and SQLite.
"""

__version__ = "0.1.0"

from sql_whisperer_mcp.adapters import create_adapter
from sql_whisperer_mcp.core.validator import QueryValidator, validate_query
from sql_whisperer_mcp.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    IntrospectionError,
    NotFoundError,
    QueryExecutionError,
    SQLWhispererError,
)
from sql_whisperer_mcp.models.capabilities import DatabaseCapabilities
from sql_whisperer_mcp.models.config import DatabaseConfig
from sql_whisperer_mcp.models.plan import ExplainPlan, PlanNode
from sql_whisperer_mcp.models.query import QueryOptions, QueryResult
from sql_whisperer_mcp.models.schema import SchemaSnapshot, TableInfo
from sql_whisperer_mcp.models.statistics import TableStatistics
from sql_whisperer_mcp.models.validation import QueryVerdict

__all__ = [
    "create_adapter",
    "QueryValidator",
    "validate_query",
    "ConfigurationError",
    "DatabaseConnectionError",
    "IntrospectionError",
    "NotFoundError",
    "QueryExecutionError",
    "SQLWhispererError",
    "DatabaseCapabilities",
    "DatabaseConfig",
    "ExplainPlan",
    "PlanNode",
    "QueryOptions",
    "QueryResult",
    "SchemaSnapshot",
    "TableInfo",
    "TableStatistics",
    "QueryVerdict",
]
