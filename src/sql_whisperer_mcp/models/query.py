"""Query execution models."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from sql_whisperer_mcp.models.plan import ExplainPlan


class QueryOptions(BaseModel):
    """Per-call execution options. Limits are clamped by the executor."""

    read_only: bool = Field(
        default=False,
        description="Run inside a read-only transaction where the engine allows it",
    )
    timeout_ms: Optional[int] = Field(
        None, description="Statement timeout in milliseconds (default 30000, max 300000)"
    )
    max_rows: Optional[int] = Field(
        None, description="Maximum rows returned (default 1000, max 10000)"
    )
    explain: bool = Field(default=False, description="Attach the execution plan")
    analyze: bool = Field(
        default=False, description="Use EXPLAIN ANALYZE when attaching the plan"
    )


class FieldInfo(BaseModel):
    name: str = Field(..., description="Result column name")
    data_type: Optional[str] = Field(None, description="Engine-reported type name")


class QueryResult(BaseModel):
    """Result of a query execution."""

    query: str = Field(..., description="Executed SQL query")
    rows: list[dict[str, Any]] = Field(..., description="Result rows as dictionaries")
    fields: list[FieldInfo] = Field(default_factory=list, description="Result columns")
    row_count: int = Field(
        ..., description="Rows produced or affected before truncation"
    )
    execution_time_ms: float = Field(..., description="Execution time in milliseconds")
    truncated: bool = Field(
        default=False, description="Whether rows were cut to max_rows"
    )
    explain_plan: Optional[ExplainPlan] = Field(
        None, description="Execution plan when requested"
    )

    @property
    def returned_rows(self) -> int:
        return len(self.rows)

    @property
    def columns(self) -> list[str]:
        return [field.name for field in self.fields]

    def get_column_values(self, column: str) -> list[Any]:
        """Extract all values for a specific column."""
        return [row.get(column) for row in self.rows]
