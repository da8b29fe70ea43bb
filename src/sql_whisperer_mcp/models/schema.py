"""Canonical schema model shared by all engine adapters."""

import warnings
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from sql_whisperer_mcp.utils.limits import format_bytes

# Suppress the warning about field 'schema' shadowing BaseModel.schema()
warnings.filterwarnings(
    "ignore",
    message='Field name "schema" in ".*" shadows an attribute in parent',
    category=UserWarning,
)


class CanonicalType(str, Enum):
    """Engine-independent column type category."""

    INTEGER = "integer"
    DECIMAL = "decimal"
    REAL = "real"
    BOOLEAN = "boolean"
    TEXT = "text"
    BLOB = "blob"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    INTERVAL = "interval"
    UUID = "uuid"
    JSON = "json"
    ENUM = "enum"
    ARRAY = "array"
    SPATIAL = "spatial"
    NETWORK = "network"
    UNKNOWN = "unknown"


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class ReferentialAction(str, Enum):
    """Foreign key ON DELETE / ON UPDATE behavior."""

    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ReferentialAction":
        """Parse an action name as reported by a catalog; unknown maps to NO ACTION."""
        if not value:
            return cls.NO_ACTION
        normalized = " ".join(value.upper().replace("_", " ").split())
        for action in cls:
            if action.value == normalized:
                return action
        return cls.NO_ACTION


class ColumnInfo(BaseModel):
    """Information about a table or view column."""

    name: str = Field(..., description="Column name")
    data_type: CanonicalType = Field(..., description="Canonical type category")
    native_type: str = Field(..., description="Type name as reported by the engine")
    nullable: bool = Field(..., description="Whether column allows NULL")
    default: Optional[str] = Field(None, description="Raw default value expression")
    auto_increment: bool = Field(
        default=False, description="Whether values are generated by the engine"
    )
    max_length: Optional[int] = Field(None, description="Maximum length for string types")
    precision: Optional[int] = Field(None, description="Precision for numeric types")
    scale: Optional[int] = Field(None, description="Scale for numeric types")
    enum_values: Optional[list[str]] = Field(
        None, description="Allowed labels for enum columns"
    )
    character_set: Optional[str] = Field(None, description="Column character set")
    collation: Optional[str] = Field(None, description="Column collation")
    comment: Optional[str] = Field(None, description="Column comment")


class IndexColumn(BaseModel):
    name: str = Field(..., description="Column name or expression")
    order: SortOrder = Field(default=SortOrder.ASC, description="Sort direction")


class IndexInfo(BaseModel):
    """Information about a table index."""

    name: str = Field(..., description="Index name")
    columns: list[IndexColumn] = Field(..., description="Indexed columns in key order")
    unique: bool = Field(default=False, description="Whether index enforces uniqueness")
    primary: bool = Field(
        default=False, description="Whether this is the primary key index"
    )
    index_type: Optional[str] = Field(
        None, description="Index method (btree, hash, gin, ...)"
    )
    condition: Optional[str] = Field(None, description="Predicate of a partial index")
    size_bytes: Optional[int] = Field(None, description="Index size in bytes")

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]


class PrimaryKeyInfo(BaseModel):
    name: Optional[str] = Field(None, description="Constraint name")
    columns: list[str] = Field(..., description="Key columns in order")


class ForeignKeyInfo(BaseModel):
    """A foreign key constraint; local and referenced columns pair up by position."""

    name: Optional[str] = Field(None, description="Constraint name")
    columns: list[str] = Field(..., description="Local columns in order")
    referenced_schema: Optional[str] = Field(None, description="Referenced schema")
    referenced_table: str = Field(..., description="Referenced table")
    referenced_columns: list[str] = Field(..., description="Referenced columns in order")
    on_delete: ReferentialAction = Field(default=ReferentialAction.NO_ACTION)
    on_update: ReferentialAction = Field(default=ReferentialAction.NO_ACTION)

    @model_validator(mode="after")
    def check_cardinality(self) -> "ForeignKeyInfo":
        if len(self.columns) != len(self.referenced_columns):
            raise ValueError(
                f"Foreign key {self.name or self.referenced_table!r} has "
                f"{len(self.columns)} local columns but "
                f"{len(self.referenced_columns)} referenced columns"
            )
        return self


class UniqueConstraintInfo(BaseModel):
    name: Optional[str] = Field(None, description="Constraint name")
    columns: list[str] = Field(..., description="Constrained columns in order")


class CheckConstraintInfo(BaseModel):
    name: Optional[str] = Field(None, description="Constraint name")
    definition: str = Field(..., description="Check expression")


class TriggerInfo(BaseModel):
    """A trigger attached to a table."""

    name: str = Field(..., description="Trigger name")
    table: str = Field(..., description="Table the trigger fires on")
    schema: Optional[str] = Field(None, description="Schema of the table")
    timing: str = Field(..., description="BEFORE, AFTER or INSTEAD OF")
    events: list[str] = Field(..., description="INSERT, UPDATE, DELETE or TRUNCATE")
    for_each_row: bool = Field(default=True, description="Row-level vs statement-level")
    definition: Optional[str] = Field(None, description="Trigger body or action")


class TableInfo(BaseModel):
    """Comprehensive information about a table."""

    name: str = Field(..., description="Table name")
    schema: Optional[str] = Field(None, description="Schema name")
    columns: list[ColumnInfo] = Field(
        default_factory=list, description="Columns in ordinal order"
    )
    primary_key: Optional[PrimaryKeyInfo] = Field(None, description="Primary key")
    foreign_keys: list[ForeignKeyInfo] = Field(default_factory=list)
    unique_constraints: list[UniqueConstraintInfo] = Field(default_factory=list)
    check_constraints: list[CheckConstraintInfo] = Field(default_factory=list)
    indexes: list[IndexInfo] = Field(default_factory=list)
    triggers: list[TriggerInfo] = Field(default_factory=list)
    row_count: Optional[int] = Field(None, description="Approximate row count")
    size_bytes: Optional[int] = Field(None, description="Table size in bytes")
    comment: Optional[str] = Field(None, description="Table comment")

    @model_validator(mode="after")
    def check_primary_key_columns(self) -> "TableInfo":
        if self.primary_key is not None:
            names = {column.name for column in self.columns}
            unknown = [c for c in self.primary_key.columns if c not in names]
            if unknown:
                raise ValueError(
                    f"Primary key of {self.name!r} references unknown columns: {unknown}"
                )
        return self

    @property
    def qualified_name(self) -> str:
        if self.schema:
            return f"{self.schema}.{self.name}"
        return self.name

    @property
    def size_human(self) -> Optional[str]:
        """Human-readable size."""
        if self.size_bytes is None:
            return None
        return format_bytes(self.size_bytes)

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        """Get column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None


class ViewInfo(BaseModel):
    name: str = Field(..., description="View name")
    schema: Optional[str] = Field(None, description="Schema name")
    definition: Optional[str] = Field(None, description="View SELECT text")
    columns: list[ColumnInfo] = Field(default_factory=list)


class SequenceInfo(BaseModel):
    name: str = Field(..., description="Sequence name")
    schema: Optional[str] = Field(None, description="Schema name")
    data_type: Optional[str] = Field(None, description="Sequence value type")
    start_value: Optional[int] = None
    increment: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    last_value: Optional[int] = Field(None, description="Last value handed out")


class FunctionParameter(BaseModel):
    name: Optional[str] = Field(None, description="Parameter name")
    data_type: str = Field(..., description="Native parameter type")
    mode: str = Field(default="IN", description="IN, OUT or INOUT")


class FunctionInfo(BaseModel):
    """A stored function or procedure."""

    name: str = Field(..., description="Routine name")
    schema: Optional[str] = Field(None, description="Schema name")
    kind: str = Field(default="FUNCTION", description="FUNCTION or PROCEDURE")
    return_type: Optional[str] = Field(None, description="Native return type")
    language: Optional[str] = Field(None, description="Implementation language")
    parameters: list[FunctionParameter] = Field(default_factory=list)


class SchemaMetadata(BaseModel):
    engine: str = Field(..., description="Engine name")
    version: Optional[str] = Field(None, description="Server version string")
    database: Optional[str] = Field(None, description="Database or file name")
    character_set: Optional[str] = Field(None, description="Default character set")
    collation: Optional[str] = Field(None, description="Default collation")
    introspected_at: datetime = Field(..., description="When the snapshot was taken")
    duration_ms: float = Field(..., description="Time spent capturing the snapshot")


class SchemaSnapshot(BaseModel):
    """Complete, internally consistent picture of a database at one moment."""

    tables: list[TableInfo] = Field(default_factory=list)
    views: list[ViewInfo] = Field(default_factory=list)
    sequences: list[SequenceInfo] = Field(default_factory=list)
    functions: list[FunctionInfo] = Field(default_factory=list)
    triggers: list[TriggerInfo] = Field(default_factory=list)
    metadata: SchemaMetadata

    def get_table(self, name: str, schema: Optional[str] = None) -> Optional[TableInfo]:
        """Find a table by name, optionally restricted to one schema."""
        for table in self.tables:
            if table.name == name and (schema is None or table.schema == schema):
                return table
        return None

    def summary(self) -> dict[str, object]:
        """Compact overview for callers that only need table names and sizes."""
        return {
            "engine": self.metadata.engine,
            "version": self.metadata.version,
            "table_count": len(self.tables),
            "view_count": len(self.views),
            "tables": [
                {
                    "name": table.qualified_name,
                    "columns": len(table.columns),
                    "row_count": table.row_count,
                    "size": table.size_human,
                }
                for table in self.tables
            ],
        }
