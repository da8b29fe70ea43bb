"""Pydantic models for configuration, schema, queries, plans and verdicts."""

from sql_whisperer_mcp.models.capabilities import DatabaseCapabilities
from sql_whisperer_mcp.models.config import DatabaseConfig, EngineKind
from sql_whisperer_mcp.models.plan import (
    ExplainPlan,
    JoinStrategy,
    PlanNode,
    PlanNodeKind,
    PlanRecommendation,
)
from sql_whisperer_mcp.models.query import FieldInfo, QueryOptions, QueryResult
from sql_whisperer_mcp.models.schema import (
    CanonicalType,
    CheckConstraintInfo,
    ColumnInfo,
    ForeignKeyInfo,
    FunctionInfo,
    FunctionParameter,
    IndexColumn,
    IndexInfo,
    PrimaryKeyInfo,
    ReferentialAction,
    SchemaMetadata,
    SchemaSnapshot,
    SequenceInfo,
    SortOrder,
    TableInfo,
    TriggerInfo,
    UniqueConstraintInfo,
    ViewInfo,
)
from sql_whisperer_mcp.models.statistics import TableStatistics
from sql_whisperer_mcp.models.validation import (
    Complexity,
    Finding,
    QueryKind,
    QueryMeta,
    QueryVerdict,
    Severity,
)

__all__ = [
    "DatabaseCapabilities",
    "DatabaseConfig",
    "EngineKind",
    "ExplainPlan",
    "JoinStrategy",
    "PlanNode",
    "PlanNodeKind",
    "PlanRecommendation",
    "FieldInfo",
    "QueryOptions",
    "QueryResult",
    "CanonicalType",
    "CheckConstraintInfo",
    "ColumnInfo",
    "ForeignKeyInfo",
    "FunctionInfo",
    "FunctionParameter",
    "IndexColumn",
    "IndexInfo",
    "PrimaryKeyInfo",
    "ReferentialAction",
    "SchemaMetadata",
    "SchemaSnapshot",
    "SequenceInfo",
    "SortOrder",
    "TableInfo",
    "TriggerInfo",
    "UniqueConstraintInfo",
    "ViewInfo",
    "TableStatistics",
    "Complexity",
    "Finding",
    "QueryKind",
    "QueryMeta",
    "QueryVerdict",
    "Severity",
]
