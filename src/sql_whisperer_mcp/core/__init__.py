"""Core functionality: connections, statement execution, plan analysis and query validation."""

from sql_whisperer_mcp.core.connection import DatabaseConnection
from sql_whisperer_mcp.core.executor import QueryExecutor
from sql_whisperer_mcp.core.plan import PlanAdvisor, PlanFormatter, PlanVisitor
from sql_whisperer_mcp.core.validator import QueryValidator, mask_sql, validate_query

__all__ = [
    "DatabaseConnection",
    "QueryExecutor",
    "PlanAdvisor",
    "PlanFormatter",
    "PlanVisitor",
    "QueryValidator",
    "mask_sql",
    "validate_query",
]
