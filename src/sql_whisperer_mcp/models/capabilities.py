"""Database capabilities model."""

from pydantic import BaseModel, Field


class DatabaseCapabilities(BaseModel):
    """Flags indicating what features a database supports."""

    foreign_keys: bool = Field(
        default=False,
        description="Database supports foreign key constraints",
    )
    indexes: bool = Field(
        default=True,
        description="Database supports indexes",
    )
    views: bool = Field(
        default=True,
        description="Database supports views",
    )
    schemas: bool = Field(
        default=True,
        description="Database supports schemas/namespaces",
    )
    sequences: bool = Field(
        default=False,
        description="Database supports standalone sequences",
    )
    stored_procedures: bool = Field(
        default=False,
        description="Database supports stored functions/procedures",
    )
    triggers: bool = Field(
        default=False,
        description="Database supports triggers",
    )
    check_constraints: bool = Field(
        default=False,
        description="Database enforces CHECK constraints",
    )
    explain_analyze: bool = Field(
        default=False,
        description="Database reports measured per-node timings",
    )
    statement_timeout: bool = Field(
        default=True,
        description="Database can cancel statements after a timeout",
    )
    read_only_transactions: bool = Field(
        default=False,
        description="Database can enforce a read-only transaction",
    )

    def get_supported_features(self) -> list[str]:
        """Get list of supported feature names."""
        return [
            field_name
            for field_name, value in self.model_dump().items()
            if value is True
        ]

    def get_unsupported_features(self) -> list[str]:
        """Get list of unsupported feature names."""
        return [
            field_name
            for field_name, value in self.model_dump().items()
            if value is False
        ]
