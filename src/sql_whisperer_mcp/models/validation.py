"""Query safety verdict models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class QueryKind(str, Enum):
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    DDL = "DDL"
    TRANSACTION = "TRANSACTION"
    OTHER = "OTHER"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Finding(BaseModel):
    """One validation observation."""

    code: str = Field(..., description="Machine-readable finding code")
    message: str = Field(..., description="Description of the issue")
    severity: Severity = Field(..., description="How serious the issue is")
    suggestion: Optional[str] = Field(None, description="How to address it")
    position: Optional[int] = Field(
        None, description="Character offset in the query where it was detected"
    )

    @property
    def is_blocking(self) -> bool:
        return self.severity in (Severity.ERROR, Severity.CRITICAL)


class QueryMeta(BaseModel):
    query_type: QueryKind = Field(..., description="Statement category")
    is_mutation: bool = Field(..., description="Whether the statement changes data or schema")
    tables_accessed: list[str] = Field(
        default_factory=list, description="Referenced tables in first-seen order"
    )
    estimated_complexity: Complexity = Field(..., description="Structural complexity tier")
    requires_confirmation: bool = Field(
        ..., description="Whether the caller must confirm before executing"
    )


class QueryVerdict(BaseModel):
    """Outcome of static analysis of one query."""

    is_valid: bool = Field(..., description="True when no error or critical findings")
    findings: list[Finding] = Field(default_factory=list)
    meta: QueryMeta

    @property
    def errors(self) -> list[Finding]:
        return [finding for finding in self.findings if finding.is_blocking]

    @property
    def warnings(self) -> list[Finding]:
        return [finding for finding in self.findings if not finding.is_blocking]

    @property
    def codes(self) -> list[str]:
        return [finding.code for finding in self.findings]
