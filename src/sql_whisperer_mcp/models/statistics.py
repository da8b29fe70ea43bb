"""Table statistics model."""

import warnings
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from sql_whisperer_mcp.utils.limits import format_bytes

warnings.filterwarnings(
    "ignore",
    message='Field name "schema" in "TableStatistics" shadows an attribute in parent',
    category=UserWarning,
)


class TableStatistics(BaseModel):
    """Engine bookkeeping about one table.

    Fields an engine does not track are left as None.
    """

    table: str = Field(..., description="Table name")
    schema: Optional[str] = Field(None, description="Schema name")
    row_count: Optional[int] = Field(None, description="Row count (exact when cheap)")
    row_count_exact: bool = Field(
        default=False, description="Whether row_count came from COUNT(*)"
    )
    table_size_bytes: Optional[int] = Field(None, description="Heap/data size")
    index_size_bytes: Optional[int] = Field(None, description="Size of all indexes")
    total_size_bytes: Optional[int] = Field(None, description="Data + indexes + toast")
    index_count: Optional[int] = Field(None, description="Number of indexes")
    dead_tuples: Optional[int] = Field(None, description="Dead row versions")
    seq_scans: Optional[int] = Field(None, description="Sequential scans started")
    index_scans: Optional[int] = Field(None, description="Index scans started")
    rows_inserted: Optional[int] = None
    rows_updated: Optional[int] = None
    rows_deleted: Optional[int] = None
    last_vacuum: Optional[datetime] = None
    last_analyze: Optional[datetime] = None
    auto_vacuum_count: Optional[int] = None
    extra_info: dict[str, Any] = Field(
        default_factory=dict,
        description="Database-specific additional information",
    )

    @property
    def total_size_human(self) -> Optional[str]:
        if self.total_size_bytes is None:
            return None
        return format_bytes(self.total_size_bytes)
