"""Limits, name parsing and row grouping helpers shared by the adapters."""

from collections import OrderedDict
from typing import Callable, Hashable, Iterable, Optional, TypeVar

DEFAULT_TIMEOUT_MS = 30000
MAX_TIMEOUT_MS = 300000
DEFAULT_MAX_ROWS = 1000
MAX_ROWS_LIMIT = 10000

# Exact COUNT(*) is only attempted below this size
EXACT_COUNT_THRESHOLD_BYTES = 10 * 1024 * 1024

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


def normalize_timeout(timeout_ms: Optional[int]) -> int:
    """Clamp a statement timeout to (0, MAX_TIMEOUT_MS], defaulting when unset."""
    if timeout_ms is None or timeout_ms <= 0:
        return DEFAULT_TIMEOUT_MS
    return min(int(timeout_ms), MAX_TIMEOUT_MS)


def normalize_max_rows(max_rows: Optional[int]) -> int:
    """Clamp a row limit to (0, MAX_ROWS_LIMIT], defaulting when unset."""
    if max_rows is None or max_rows <= 0:
        return DEFAULT_MAX_ROWS
    return min(int(max_rows), MAX_ROWS_LIMIT)


def parse_table_name(
    name: str, default_schema: Optional[str] = None
) -> tuple[Optional[str], str]:
    """
    Split a possibly schema-qualified table name.

    Surrounding double quotes or backticks are stripped from each part.

    Args:
        name: ``table`` or ``schema.table``
        default_schema: Schema returned when the name is unqualified

    Returns:
        Tuple of (schema, table)
    """
    parts = [part.strip().strip('"`') for part in name.strip().split(".", 1)]
    if len(parts) == 2 and parts[0]:
        return parts[0], parts[1]
    return default_schema, parts[-1]


def quote_identifier(name: str, quote: str = '"') -> str:
    """Quote an identifier, doubling embedded quote characters."""
    return f"{quote}{name.replace(quote, quote * 2)}{quote}"


def format_bytes(size_bytes: int) -> str:
    """Human-readable size."""
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{size:.2f} TB"


def group_rows(
    rows: Iterable[T],
    key: Callable[[T], K],
    order_by: Optional[Callable[[T], int]] = None,
) -> "OrderedDict[K, list[T]]":
    """
    Group catalog rows by a natural key.

    Groups keep the order in which their key was first seen; rows inside a
    group are sorted by ``order_by`` so the result does not depend on the
    order the catalog returned them in.

    Args:
        rows: Catalog rows
        key: Natural key of the entity a row belongs to
        order_by: Ordinal position within the entity

    Returns:
        Mapping of key to rows
    """
    groups: "OrderedDict[K, list[T]]" = OrderedDict()
    for row in rows:
        groups.setdefault(key(row), []).append(row)
    if order_by is not None:
        for members in groups.values():
            members.sort(key=order_by)
    return groups
