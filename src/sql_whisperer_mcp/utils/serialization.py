"""JSON serialization utilities using orjson for speed and correctness.

orjson handles most database types automatically and correctly:
- datetime, date, time → ISO format
- UUID → string
- dataclasses → dict

Decimal, timedelta, bytes, sets, IP addresses, ranges and pydantic models
go through the default handler below.
"""

import base64
import datetime
import decimal
import ipaddress
from typing import Any

import orjson
from pydantic import BaseModel


def _default_handler(obj: Any) -> Any:
    """
    Custom default handler for types orjson doesn't handle natively.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation

    Raises:
        TypeError: If object cannot be serialized
    """
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    # Decimal - keep integers exact, otherwise preserve digits as a string
    if isinstance(obj, decimal.Decimal):
        if obj == obj.to_integral_value() and abs(obj) < 2**53:
            return int(obj)
        return str(obj)

    # timedelta - convert to total seconds
    if isinstance(obj, datetime.timedelta):
        return obj.total_seconds()

    # bytes/bytearray/memoryview - try UTF-8 decode, fall back to base64
    if isinstance(obj, (bytes, bytearray, memoryview)):
        data = bytes(obj)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(data).decode("ascii")

    if isinstance(obj, (set, frozenset)):
        return list(obj)

    # IP address types
    if isinstance(
        obj,
        (
            ipaddress.IPv4Address,
            ipaddress.IPv6Address,
            ipaddress.IPv4Network,
            ipaddress.IPv6Network,
            ipaddress.IPv4Interface,
            ipaddress.IPv6Interface,
        ),
    ):
        return str(obj)

    # PostgreSQL range types (have lower, upper, bounds attributes)
    if (
        hasattr(obj, "lower")
        and hasattr(obj, "upper")
        and hasattr(obj, "bounds")
        and not isinstance(obj, str)
        and not callable(obj.lower)
    ):
        return {
            "lower": obj.lower,
            "upper": obj.upper,
            "bounds": obj.bounds,
        }

    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def convert_value_to_json_safe(value: Any) -> Any:
    """
    Convert a value to JSON-serializable format.

    Uses orjson's serialization and decodes back to Python objects.
    This ensures consistency with what will actually be serialized.

    Args:
        value: Value to convert

    Returns:
        JSON-serializable value
    """
    try:
        json_bytes = orjson.dumps(value, default=_default_handler)
        return orjson.loads(json_bytes)
    except TypeError:
        # If orjson can't handle it, convert to string as fallback
        return str(value)


def convert_row_to_json_safe(row: dict[str, Any]) -> dict[str, Any]:
    """Convert all values in a row dict to JSON-serializable formats."""
    return {key: convert_value_to_json_safe(value) for key, value in row.items()}


def convert_rows_to_json_safe(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert all rows to JSON-serializable format."""
    return [convert_row_to_json_safe(row) for row in rows]


def dumps(obj: Any, indent: bool = False) -> str:
    """
    Serialize object to JSON string using orjson.

    Args:
        obj: Object to serialize
        indent: Pretty-print with two-space indentation

    Returns:
        JSON string
    """
    option = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(obj, default=_default_handler, option=option).decode("utf-8")
