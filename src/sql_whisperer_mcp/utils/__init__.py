"""Utility modules for the SQL Whisperer MCP server."""

from sql_whisperer_mcp.utils.limits import (
    DEFAULT_MAX_ROWS,
    DEFAULT_TIMEOUT_MS,
    EXACT_COUNT_THRESHOLD_BYTES,
    MAX_ROWS_LIMIT,
    MAX_TIMEOUT_MS,
    format_bytes,
    group_rows,
    normalize_max_rows,
    normalize_timeout,
    parse_table_name,
    quote_identifier,
)
from sql_whisperer_mcp.utils.serialization import (
    convert_row_to_json_safe,
    convert_rows_to_json_safe,
    convert_value_to_json_safe,
    dumps,
)

__all__ = [
    "DEFAULT_MAX_ROWS",
    "DEFAULT_TIMEOUT_MS",
    "EXACT_COUNT_THRESHOLD_BYTES",
    "MAX_ROWS_LIMIT",
    "MAX_TIMEOUT_MS",
    "format_bytes",
    "group_rows",
    "normalize_max_rows",
    "normalize_timeout",
    "parse_table_name",
    "quote_identifier",
    "convert_value_to_json_safe",
    "convert_row_to_json_safe",
    "convert_rows_to_json_safe",
    "dumps",
]
