"""Normalized execution plan models."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class PlanNodeKind(str, Enum):
    """Engine-independent category of a plan operation."""

    SCAN = "scan"
    INDEX_SCAN = "index_scan"
    JOIN = "join"
    SORT = "sort"
    AGGREGATE = "aggregate"
    LIMIT = "limit"
    SUBQUERY = "subquery"
    MATERIALIZE = "materialize"
    RESULT = "result"
    OTHER = "other"


class JoinStrategy(str, Enum):
    NESTED_LOOP = "nested_loop"
    HASH = "hash"
    MERGE = "merge"


class PlanNode(BaseModel):
    """One operation in a plan tree.

    Trees are built bottom-up from the engine's output, so a node can only
    contain nodes created before it and no cycles can form.
    """

    kind: PlanNodeKind = Field(..., description="Operation category")
    node_type: str = Field(..., description="Engine's own label for the operation")
    relation: Optional[str] = Field(None, description="Table the node reads")
    alias: Optional[str] = Field(None, description="Alias of the relation")
    index_name: Optional[str] = Field(None, description="Index used by the node")
    join_type: Optional[str] = Field(None, description="Inner, Left, Semi, ...")
    join_strategy: Optional[JoinStrategy] = Field(None, description="Join algorithm")
    estimated_rows: Optional[float] = Field(None, description="Planner row estimate")
    actual_rows: Optional[float] = Field(None, description="Rows produced per loop")
    loops: Optional[int] = Field(None, description="Times the node was executed")
    startup_cost: Optional[float] = Field(None, description="Estimated startup cost")
    total_cost: Optional[float] = Field(None, description="Estimated total cost")
    actual_time_ms: Optional[float] = Field(None, description="Measured time")
    filter: Optional[str] = Field(None, description="Row filter condition")
    index_condition: Optional[str] = Field(None, description="Index lookup condition")
    sort_keys: list[str] = Field(default_factory=list, description="Sort keys")
    uses_temporary: bool = Field(
        default=False, description="Whether the node spills to a temporary structure"
    )
    children: list["PlanNode"] = Field(default_factory=list)

    def walk(self):
        """Yield this node and its descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()


class PlanRecommendation(BaseModel):
    code: str = Field(..., description="Machine-readable recommendation code")
    message: str = Field(..., description="What to change and why")
    node_type: str = Field(..., description="Plan node that triggered it")
    relation: Optional[str] = Field(None, description="Table involved, if any")


class ExplainPlan(BaseModel):
    """Query execution plan from EXPLAIN."""

    query: str = Field(..., description="Analyzed SQL query")
    plan: str = Field(..., description="Execution plan as formatted text")
    root: PlanNode = Field(..., description="Normalized plan tree")
    raw: Optional[Any] = Field(None, description="Engine's own plan output")
    analyzed: bool = Field(default=False, description="Whether the query was executed")
    estimated_cost: Optional[float] = Field(None, description="Estimated total cost")
    estimated_rows: Optional[float] = Field(None, description="Estimated rows returned")
    actual_time_ms: Optional[float] = Field(None, description="Measured execution time")
    actual_rows: Optional[float] = Field(None, description="Rows actually returned")
    recommendations: list[PlanRecommendation] = Field(default_factory=list)


PlanNode.model_rebuild()
