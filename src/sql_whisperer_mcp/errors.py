"""Error kinds raised by adapters and the MCP dispatcher."""

from typing import Optional


class SQLWhispererError(Exception):
    """Base class for all errors raised by this package."""

    def to_dict(self) -> dict[str, object]:
        """Render the error as a JSON-friendly payload."""
        return {"error": type(self).__name__, "message": str(self)}


class DatabaseConnectionError(SQLWhispererError, ConnectionError):
    """Authentication, network, or file failure while opening a pool."""


class IntrospectionError(SQLWhispererError):
    """A core catalog query failed while building a schema snapshot."""


class QueryExecutionError(SQLWhispererError):
    """Statement execution failed.

    Args:
        message: Human-readable summary
        code: Machine-readable reason (``timeout``, ``acquire_timeout``,
            ``rejected``, ``not_connected``, ``engine``)
        engine_message: The database engine's own error text, unmodified
    """

    def __init__(
        self,
        message: str,
        code: str = "engine",
        engine_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.engine_message = engine_message

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["code"] = self.code
        if self.engine_message is not None:
            payload["engine_message"] = self.engine_message
        return payload


class NotFoundError(SQLWhispererError, LookupError):
    """A requested table or other object does not exist."""


class ConfigurationError(SQLWhispererError, ValueError):
    """Connection parameters are missing or inconsistent."""
