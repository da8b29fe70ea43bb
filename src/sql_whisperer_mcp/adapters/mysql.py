"""MySQL and MariaDB adapter."""

import json
import logging
import re
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncConnection

from sql_whisperer_mcp.adapters.base import BaseAdapter, CatalogRow
from sql_whisperer_mcp.core.connection import DatabaseConnection
from sql_whisperer_mcp.core.executor import QueryExecutor, load_json_plan
from sql_whisperer_mcp.core.plan import PlanAdvisor
from sql_whisperer_mcp.errors import NotFoundError
from sql_whisperer_mcp.models.capabilities import DatabaseCapabilities
from sql_whisperer_mcp.models.config import DatabaseConfig
from sql_whisperer_mcp.models.plan import JoinStrategy, PlanNode, PlanNodeKind
from sql_whisperer_mcp.models.schema import (
    CanonicalType,
    CheckConstraintInfo,
    ColumnInfo,
    ForeignKeyInfo,
    FunctionInfo,
    FunctionParameter,
    IndexColumn,
    IndexInfo,
    PrimaryKeyInfo,
    ReferentialAction,
    SchemaSnapshot,
    SortOrder,
    TableInfo,
    TriggerInfo,
    UniqueConstraintInfo,
    ViewInfo,
)
from sql_whisperer_mcp.models.statistics import TableStatistics
from sql_whisperer_mcp.utils.limits import group_rows, parse_table_name

logger = logging.getLogger(__name__)

MYSQL_TYPE_MAP: dict[str, CanonicalType] = {
    "tinyint": CanonicalType.INTEGER,
    "smallint": CanonicalType.INTEGER,
    "mediumint": CanonicalType.INTEGER,
    "int": CanonicalType.INTEGER,
    "integer": CanonicalType.INTEGER,
    "bigint": CanonicalType.INTEGER,
    "year": CanonicalType.INTEGER,
    "bit": CanonicalType.INTEGER,
    "bool": CanonicalType.BOOLEAN,
    "boolean": CanonicalType.BOOLEAN,
    "decimal": CanonicalType.DECIMAL,
    "numeric": CanonicalType.DECIMAL,
    "float": CanonicalType.REAL,
    "double": CanonicalType.REAL,
    "real": CanonicalType.REAL,
    "char": CanonicalType.TEXT,
    "varchar": CanonicalType.TEXT,
    "tinytext": CanonicalType.TEXT,
    "text": CanonicalType.TEXT,
    "mediumtext": CanonicalType.TEXT,
    "longtext": CanonicalType.TEXT,
    "binary": CanonicalType.BLOB,
    "varbinary": CanonicalType.BLOB,
    "tinyblob": CanonicalType.BLOB,
    "blob": CanonicalType.BLOB,
    "mediumblob": CanonicalType.BLOB,
    "longblob": CanonicalType.BLOB,
    "date": CanonicalType.DATE,
    "datetime": CanonicalType.DATETIME,
    "timestamp": CanonicalType.DATETIME,
    "time": CanonicalType.TIME,
    "json": CanonicalType.JSON,
    "enum": CanonicalType.ENUM,
    "set": CanonicalType.ENUM,
    "uuid": CanonicalType.UUID,
    "inet4": CanonicalType.NETWORK,
    "inet6": CanonicalType.NETWORK,
    "geometry": CanonicalType.SPATIAL,
    "point": CanonicalType.SPATIAL,
    "linestring": CanonicalType.SPATIAL,
    "polygon": CanonicalType.SPATIAL,
    "multipoint": CanonicalType.SPATIAL,
    "multilinestring": CanonicalType.SPATIAL,
    "multipolygon": CanonicalType.SPATIAL,
    "geometrycollection": CanonicalType.SPATIAL,
}

# Protocol field type codes reported in result descriptions
MYSQL_FIELD_TYPES: dict[int, str] = {
    0: "decimal",
    1: "tinyint",
    2: "smallint",
    3: "int",
    4: "float",
    5: "double",
    6: "null",
    7: "timestamp",
    8: "bigint",
    9: "mediumint",
    10: "date",
    11: "time",
    12: "datetime",
    13: "year",
    15: "varchar",
    16: "bit",
    245: "json",
    246: "decimal",
    247: "enum",
    248: "set",
    249: "tinyblob",
    250: "mediumblob",
    251: "longblob",
    252: "blob",
    253: "varchar",
    254: "char",
    255: "geometry",
}

# access_type from EXPLAIN FORMAT=JSON
MYSQL_ACCESS_TYPES: dict[str, tuple[PlanNodeKind, str]] = {
    "ALL": (PlanNodeKind.SCAN, "Full Table Scan"),
    "index": (PlanNodeKind.INDEX_SCAN, "Full Index Scan"),
    "range": (PlanNodeKind.INDEX_SCAN, "Index Range Scan"),
    "ref": (PlanNodeKind.INDEX_SCAN, "Index Lookup"),
    "eq_ref": (PlanNodeKind.INDEX_SCAN, "Unique Index Lookup"),
    "ref_or_null": (PlanNodeKind.INDEX_SCAN, "Index Lookup Or Null"),
    "const": (PlanNodeKind.INDEX_SCAN, "Constant Lookup"),
    "system": (PlanNodeKind.RESULT, "System Table"),
    "fulltext": (PlanNodeKind.INDEX_SCAN, "Fulltext Index"),
    "unique_subquery": (PlanNodeKind.INDEX_SCAN, "Unique Subquery"),
    "index_subquery": (PlanNodeKind.INDEX_SCAN, "Index Subquery"),
    "index_merge": (PlanNodeKind.INDEX_SCAN, "Index Merge"),
}

# Operations in EXPLAIN ANALYZE tree output, tried in order
TREE_OPERATIONS: list[tuple[re.Pattern, PlanNodeKind, Optional[JoinStrategy]]] = [
    (
        re.compile(r"^(?P<op>Table scan) on (?P<rel>\S+)"),
        PlanNodeKind.SCAN,
        None,
    ),
    (
        re.compile(
            r"^(?P<op>(?:Single-row )?(?:[Cc]overing )?[Ii]ndex (?:range scan|scan|lookup))"
            r" on (?P<rel>\S+)(?: using (?P<idx>\S+))?(?: (?:over )?(?P<cond>.+))?"
        ),
        PlanNodeKind.INDEX_SCAN,
        None,
    ),
    (
        re.compile(r"^(?P<op>Nested loop (?P<jt>[\w ]+?) join)"),
        PlanNodeKind.JOIN,
        JoinStrategy.NESTED_LOOP,
    ),
    (
        re.compile(r"^(?P<op>(?P<jt>[\w ]+?) hash join|Hash join)"),
        PlanNodeKind.JOIN,
        JoinStrategy.HASH,
    ),
    (re.compile(r"^(?P<op>Sort(?: row IDs)?)(?:: (?P<keys>.+))?"), PlanNodeKind.SORT, None),
    (
        re.compile(r"^(?P<op>(?:Group )?[Aa]ggregate(?: using temporary table)?)"),
        PlanNodeKind.AGGREGATE,
        None,
    ),
    (re.compile(r"^(?P<op>Limit)"), PlanNodeKind.LIMIT, None),
    (
        re.compile(r"^(?P<op>Materialize|Temporary table(?: with deduplication)?)"),
        PlanNodeKind.MATERIALIZE,
        None,
    ),
    (re.compile(r"^(?P<op>Select #\d+)"), PlanNodeKind.SUBQUERY, None),
    (
        re.compile(r"^(?P<op>Rows fetched before execution|Zero rows)"),
        PlanNodeKind.RESULT,
        None,
    ),
    (re.compile(r"^(?P<op>Filter)(?:: (?P<filter>.+))?"), PlanNodeKind.OTHER, None),
]

TREE_LINE = re.compile(r"^(?P<indent>\s*)-> (?P<body>.*)$")
NUMBER = r"\d+(?:\.\d+)?(?:e[+-]?\d+)?"
TREE_COST = re.compile(
    rf"\(cost=(?P<first>{NUMBER})(?:\.\.(?P<second>{NUMBER}))? rows=(?P<rows>{NUMBER})\)"
)
TREE_ACTUAL = re.compile(
    rf"\(actual time=(?P<first>{NUMBER})\.\.(?P<last>{NUMBER}) "
    rf"rows=(?P<rows>{NUMBER}) loops=(?P<loops>\d+)\)"
)
ENUM_VALUE = re.compile(r"'((?:[^']|'')*)'")


def _float_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_enum_values(column_type: str) -> Optional[list[str]]:
    """Values of an ``enum(...)`` or ``set(...)`` column type."""
    lowered = column_type.lower()
    if not (lowered.startswith("enum(") or lowered.startswith("set(")):
        return None
    body = column_type[column_type.index("(") + 1 : column_type.rindex(")")]
    return [value.replace("''", "'") for value in ENUM_VALUE.findall(body)]


def _analyze_table_command(relation: Optional[str]) -> str:
    return f"ANALYZE TABLE {relation}" if relation else "ANALYZE TABLE <table>"


# ==================== Catalog rows ====================


class _TableRow(CatalogRow):
    table_schema: str
    table_name: str
    row_estimate: Optional[int] = None
    data_length: Optional[int] = None
    index_length: Optional[int] = None
    comment: Optional[str] = None


class _ColumnRow(CatalogRow):
    table_name: str
    column_name: str
    ordinal_position: int
    data_type: str
    column_type: str
    is_nullable: str
    column_default: Optional[str] = None
    character_maximum_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    character_set_name: Optional[str] = None
    collation_name: Optional[str] = None
    column_comment: Optional[str] = None
    extra: Optional[str] = None


class _IndexRow(CatalogRow):
    table_name: str
    index_name: str
    non_unique: bool
    position: int
    column_name: Optional[str] = None
    collation: Optional[str] = None
    index_type: Optional[str] = None


class _ForeignKeyRow(CatalogRow):
    table_name: str
    constraint_name: str
    column_name: str
    position: int
    referenced_schema: Optional[str] = None
    referenced_table: str
    referenced_column: str
    update_rule: Optional[str] = None
    delete_rule: Optional[str] = None


class _CheckRow(CatalogRow):
    table_name: str
    constraint_name: str
    check_clause: str


class _ViewRow(CatalogRow):
    table_schema: str
    table_name: str
    view_definition: Optional[str] = None


class _RoutineRow(CatalogRow):
    routine_schema: str
    routine_name: str
    routine_type: str
    return_type: Optional[str] = None
    language: Optional[str] = None
    parameter_name: Optional[str] = None
    parameter_type: Optional[str] = None
    parameter_mode: Optional[str] = None
    parameter_position: Optional[int] = None


class _TriggerRow(CatalogRow):
    trigger_name: str
    table_name: str
    action_timing: str
    event_manipulation: str
    action_orientation: Optional[str] = None
    action_statement: Optional[str] = None


class _StatsRow(CatalogRow):
    table_schema: str
    table_name: str
    storage_engine: Optional[str] = None
    row_estimate: Optional[int] = None
    data_length: Optional[int] = None
    index_length: Optional[int] = None
    data_free: Optional[int] = None
    auto_increment: Optional[int] = None
    update_time: Optional[datetime] = None
    index_count: Optional[int] = None


# ==================== Catalog queries ====================

TABLES_SQL = """
    SELECT
        TABLE_SCHEMA AS table_schema,
        TABLE_NAME AS table_name,
        TABLE_ROWS AS row_estimate,
        DATA_LENGTH AS data_length,
        INDEX_LENGTH AS index_length,
        TABLE_COMMENT AS comment
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = DATABASE()
      AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""

COLUMNS_SQL = """
    SELECT
        TABLE_NAME AS table_name,
        COLUMN_NAME AS column_name,
        ORDINAL_POSITION AS ordinal_position,
        DATA_TYPE AS data_type,
        COLUMN_TYPE AS column_type,
        IS_NULLABLE AS is_nullable,
        COLUMN_DEFAULT AS column_default,
        CHARACTER_MAXIMUM_LENGTH AS character_maximum_length,
        NUMERIC_PRECISION AS numeric_precision,
        NUMERIC_SCALE AS numeric_scale,
        CHARACTER_SET_NAME AS character_set_name,
        COLLATION_NAME AS collation_name,
        COLUMN_COMMENT AS column_comment,
        EXTRA AS extra
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = DATABASE()
"""

INDEXES_SQL = """
    SELECT
        TABLE_NAME AS table_name,
        INDEX_NAME AS index_name,
        NON_UNIQUE AS non_unique,
        SEQ_IN_INDEX AS position,
        COLUMN_NAME AS column_name,
        COLLATION AS collation,
        INDEX_TYPE AS index_type
    FROM information_schema.STATISTICS
    WHERE TABLE_SCHEMA = DATABASE()
"""

FOREIGN_KEYS_SQL = """
    SELECT
        kcu.TABLE_NAME AS table_name,
        kcu.CONSTRAINT_NAME AS constraint_name,
        kcu.COLUMN_NAME AS column_name,
        kcu.ORDINAL_POSITION AS position,
        kcu.REFERENCED_TABLE_SCHEMA AS referenced_schema,
        kcu.REFERENCED_TABLE_NAME AS referenced_table,
        kcu.REFERENCED_COLUMN_NAME AS referenced_column,
        rc.UPDATE_RULE AS update_rule,
        rc.DELETE_RULE AS delete_rule
    FROM information_schema.KEY_COLUMN_USAGE kcu
    JOIN information_schema.REFERENTIAL_CONSTRAINTS rc
        ON kcu.CONSTRAINT_NAME = rc.CONSTRAINT_NAME
        AND kcu.CONSTRAINT_SCHEMA = rc.CONSTRAINT_SCHEMA
        AND kcu.TABLE_NAME = rc.TABLE_NAME
    WHERE kcu.TABLE_SCHEMA = DATABASE()
      AND kcu.REFERENCED_TABLE_NAME IS NOT NULL
"""

CHECKS_SQL = """
    SELECT
        tc.TABLE_NAME AS table_name,
        cc.CONSTRAINT_NAME AS constraint_name,
        cc.CHECK_CLAUSE AS check_clause
    FROM information_schema.CHECK_CONSTRAINTS cc
    JOIN information_schema.TABLE_CONSTRAINTS tc
        ON tc.CONSTRAINT_SCHEMA = cc.CONSTRAINT_SCHEMA
        AND tc.CONSTRAINT_NAME = cc.CONSTRAINT_NAME
        AND tc.CONSTRAINT_TYPE = 'CHECK'
    WHERE cc.CONSTRAINT_SCHEMA = DATABASE()
"""

VIEWS_SQL = """
    SELECT
        TABLE_SCHEMA AS table_schema,
        TABLE_NAME AS table_name,
        VIEW_DEFINITION AS view_definition
    FROM information_schema.VIEWS
    WHERE TABLE_SCHEMA = DATABASE()
    ORDER BY TABLE_NAME
"""

ROUTINES_SQL = """
    SELECT
        r.ROUTINE_SCHEMA AS routine_schema,
        r.ROUTINE_NAME AS routine_name,
        r.ROUTINE_TYPE AS routine_type,
        r.DTD_IDENTIFIER AS return_type,
        r.ROUTINE_BODY AS language,
        p.PARAMETER_NAME AS parameter_name,
        p.DTD_IDENTIFIER AS parameter_type,
        p.PARAMETER_MODE AS parameter_mode,
        p.ORDINAL_POSITION AS parameter_position
    FROM information_schema.ROUTINES r
    LEFT JOIN information_schema.PARAMETERS p
        ON p.SPECIFIC_SCHEMA = r.ROUTINE_SCHEMA
        AND p.SPECIFIC_NAME = r.SPECIFIC_NAME
        AND p.ROUTINE_TYPE = r.ROUTINE_TYPE
        AND p.ORDINAL_POSITION > 0
    WHERE r.ROUTINE_SCHEMA = DATABASE()
    ORDER BY r.ROUTINE_NAME
"""

TRIGGERS_SQL = """
    SELECT
        TRIGGER_NAME AS trigger_name,
        EVENT_OBJECT_TABLE AS table_name,
        ACTION_TIMING AS action_timing,
        EVENT_MANIPULATION AS event_manipulation,
        ACTION_ORIENTATION AS action_orientation,
        ACTION_STATEMENT AS action_statement
    FROM information_schema.TRIGGERS
    WHERE TRIGGER_SCHEMA = DATABASE()
    ORDER BY EVENT_OBJECT_TABLE, TRIGGER_NAME
"""

METADATA_SQL = """
    SELECT
        VERSION() AS version,
        DATABASE() AS database_name,
        DEFAULT_CHARACTER_SET_NAME AS character_set,
        DEFAULT_COLLATION_NAME AS collation_name
    FROM information_schema.SCHEMATA
    WHERE SCHEMA_NAME = DATABASE()
"""

STATISTICS_SQL = """
    SELECT
        t.TABLE_SCHEMA AS table_schema,
        t.TABLE_NAME AS table_name,
        t.ENGINE AS storage_engine,
        t.TABLE_ROWS AS row_estimate,
        t.DATA_LENGTH AS data_length,
        t.INDEX_LENGTH AS index_length,
        t.DATA_FREE AS data_free,
        t.AUTO_INCREMENT AS auto_increment,
        t.UPDATE_TIME AS update_time,
        (
            SELECT COUNT(DISTINCT s.INDEX_NAME)
            FROM information_schema.STATISTICS s
            WHERE s.TABLE_SCHEMA = t.TABLE_SCHEMA AND s.TABLE_NAME = t.TABLE_NAME
        ) AS index_count
    FROM information_schema.TABLES t
    WHERE t.TABLE_SCHEMA = COALESCE(:schema_name, DATABASE())
      AND t.TABLE_NAME = :table_name
      AND t.TABLE_TYPE = 'BASE TABLE'
"""


class MySQLAdapter(BaseAdapter):
    """MySQL adapter; the connected database plays the role of the schema."""

    identifier_quote = "`"

    def __init__(
        self,
        config: DatabaseConfig,
        connection: Optional[DatabaseConnection] = None,
        executor: Optional[QueryExecutor] = None,
        advisor: Optional[PlanAdvisor] = None,
    ):
        super().__init__(config, connection, executor, advisor)
        self.default_schema = config.build_url().database or None

    @property
    def capabilities(self) -> DatabaseCapabilities:
        """MySQL has no sequences and no schema level below the database."""
        return DatabaseCapabilities(
            foreign_keys=True,
            indexes=True,
            views=True,
            schemas=False,
            sequences=False,
            stored_procedures=True,
            triggers=True,
            check_constraints=True,
            explain_analyze=True,
            statement_timeout=True,
            read_only_transactions=True,
        )

    def create_advisor(self) -> PlanAdvisor:
        return PlanAdvisor(statistics_command=_analyze_table_command)

    # ==================== Types ====================

    def map_column_type(self, native_type: str) -> CanonicalType:
        native = native_type.strip().lower()
        # MySQL spells BOOLEAN as tinyint(1)
        if native.startswith("tinyint(1)"):
            return CanonicalType.BOOLEAN
        base = native.split("(")[0].split()[0] if native else ""
        return MYSQL_TYPE_MAP.get(base, CanonicalType.UNKNOWN)

    def describe_field_type(self, type_code: Any) -> Optional[str]:
        if isinstance(type_code, int):
            return MYSQL_FIELD_TYPES.get(type_code, f"type:{type_code}")
        return None

    # ==================== Introspection ====================

    async def _introspect(self, conn: AsyncConnection) -> SchemaSnapshot:
        table_rows = _TableRow.from_rows(await self._fetch(conn, TABLES_SQL))
        column_rows = _ColumnRow.from_rows(await self._fetch(conn, COLUMNS_SQL))
        index_rows = _IndexRow.from_rows(await self._fetch(conn, INDEXES_SQL))
        foreign_key_rows = _ForeignKeyRow.from_rows(await self._fetch(conn, FOREIGN_KEYS_SQL))
        view_rows = _ViewRow.from_rows(await self._fetch(conn, VIEWS_SQL))

        # CHECK_CONSTRAINTS exists from MySQL 8.0.16 and MariaDB 10.2
        check_rows = _CheckRow.from_rows(
            await self._fetch_optional(conn, CHECKS_SQL, what="check constraints")
        )
        routine_rows = _RoutineRow.from_rows(
            await self._fetch_optional(conn, ROUTINES_SQL, what="routines")
        )
        trigger_rows = _TriggerRow.from_rows(
            await self._fetch_optional(conn, TRIGGERS_SQL, what="triggers")
        )
        metadata_rows = await self._fetch_optional(conn, METADATA_SQL, what="server metadata")

        columns = {
            table_name: [self._build_column(row) for row in members]
            for table_name, members in group_rows(
                column_rows,
                key=lambda r: r.table_name,
                order_by=lambda r: r.ordinal_position,
            ).items()
        }
        indexes = group_rows(
            index_rows,
            key=lambda r: (r.table_name, r.index_name),
            order_by=lambda r: r.position,
        )
        foreign_keys = group_rows(
            foreign_key_rows,
            key=lambda r: (r.table_name, r.constraint_name),
            order_by=lambda r: r.position,
        )
        checks = group_rows(check_rows, key=lambda r: r.table_name)
        triggers = group_rows(
            [self._build_trigger(row) for row in trigger_rows], key=lambda t: t.table
        )

        tables = []
        for row in table_rows:
            table_indexes = [
                self._build_index(index_name, members)
                for (table_name, index_name), members in sorted(indexes.items())
                if table_name == row.table_name
            ]
            primary = next((index for index in table_indexes if index.primary), None)
            row_count = await self._exact_count(
                conn,
                self._build_table_reference(row.table_name, row.table_schema),
                row.data_length,
            )

            tables.append(
                TableInfo(
                    name=row.table_name,
                    schema=row.table_schema,
                    columns=columns.get(row.table_name, []),
                    primary_key=(
                        PrimaryKeyInfo(name=primary.name, columns=primary.column_names)
                        if primary
                        else None
                    ),
                    foreign_keys=[
                        self._build_foreign_key(name, members)
                        for (table_name, name), members in sorted(foreign_keys.items())
                        if table_name == row.table_name
                    ],
                    unique_constraints=[
                        UniqueConstraintInfo(name=index.name, columns=index.column_names)
                        for index in table_indexes
                        if index.unique and not index.primary
                    ],
                    check_constraints=[
                        CheckConstraintInfo(name=c.constraint_name, definition=c.check_clause)
                        for c in sorted(
                            checks.get(row.table_name, []), key=lambda c: c.constraint_name
                        )
                    ],
                    indexes=table_indexes,
                    triggers=triggers.get(row.table_name, []),
                    row_count=row_count if row_count is not None else row.row_estimate,
                    size_bytes=(row.data_length or 0) + (row.index_length or 0),
                    comment=row.comment or None,
                )
            )

        views = [
            ViewInfo(
                name=row.table_name,
                schema=row.table_schema,
                definition=row.view_definition,
                columns=columns.get(row.table_name, []),
            )
            for row in view_rows
        ]

        functions = []
        for (schema_name, name, kind), members in group_rows(
            routine_rows,
            key=lambda r: (r.routine_schema, r.routine_name, r.routine_type),
            order_by=lambda r: r.parameter_position or 0,
        ).items():
            functions.append(
                FunctionInfo(
                    name=name,
                    schema=schema_name,
                    kind=kind,
                    return_type=members[0].return_type,
                    language=members[0].language,
                    parameters=[
                        FunctionParameter(
                            name=r.parameter_name,
                            data_type=r.parameter_type or "unknown",
                            mode=r.parameter_mode or "IN",
                        )
                        for r in members
                        if r.parameter_position is not None
                    ],
                )
            )

        metadata = self._metadata(database=self.default_schema)
        if metadata_rows:
            first = metadata_rows[0]
            metadata = self._metadata(
                version=first.version,
                database=first.database_name,
                character_set=first.character_set,
                collation=first.collation_name,
            )

        return SchemaSnapshot(
            tables=tables,
            views=views,
            functions=functions,
            triggers=[trigger for group in triggers.values() for trigger in group],
            metadata=metadata,
        )

    def _build_column(self, row: _ColumnRow) -> ColumnInfo:
        extra = (row.extra or "").lower()
        return ColumnInfo(
            name=row.column_name,
            data_type=self.map_column_type(row.column_type),
            native_type=row.column_type,
            nullable=row.is_nullable == "YES",
            default=row.column_default,
            auto_increment="auto_increment" in extra,
            max_length=row.character_maximum_length,
            precision=row.numeric_precision,
            scale=row.numeric_scale,
            enum_values=parse_enum_values(row.column_type),
            character_set=row.character_set_name,
            collation=row.collation_name,
            comment=row.column_comment or None,
        )

    def _build_index(self, name: str, members: list[_IndexRow]) -> IndexInfo:
        head = members[0]
        return IndexInfo(
            name=name,
            columns=[
                IndexColumn(
                    # Functional key parts have no column name
                    name=r.column_name or "(expression)",
                    order=SortOrder.DESC if r.collation == "D" else SortOrder.ASC,
                )
                for r in members
            ],
            unique=not head.non_unique,
            primary=name == "PRIMARY",
            index_type=head.index_type,
        )

    def _build_foreign_key(self, name: str, members: list[_ForeignKeyRow]) -> ForeignKeyInfo:
        head = members[0]
        return ForeignKeyInfo(
            name=name,
            columns=[r.column_name for r in members],
            referenced_schema=head.referenced_schema,
            referenced_table=head.referenced_table,
            referenced_columns=[r.referenced_column for r in members],
            on_delete=ReferentialAction.parse(head.delete_rule),
            on_update=ReferentialAction.parse(head.update_rule),
        )

    def _build_trigger(self, row: _TriggerRow) -> TriggerInfo:
        return TriggerInfo(
            name=row.trigger_name,
            table=row.table_name,
            schema=self.default_schema,
            timing=row.action_timing,
            # MySQL triggers fire on exactly one event
            events=[row.event_manipulation],
            for_each_row=(row.action_orientation or "ROW") == "ROW",
            definition=row.action_statement,
        )

    # ==================== Statistics ====================

    async def get_table_statistics(self, table_name: str) -> TableStatistics:
        """Get MySQL table statistics from information_schema.TABLES."""
        schema, table = parse_table_name(table_name, self.default_schema)

        async with self.connection.get_connection() as conn:
            rows = await self._fetch(
                conn, STATISTICS_SQL, {"schema_name": schema, "table_name": table}
            )
            if not rows:
                raise NotFoundError(f"Table {table_name} does not exist")
            stats = _StatsRow.from_rows(rows)[0]

            exact = await self._exact_count(
                conn,
                self._build_table_reference(stats.table_name, stats.table_schema),
                stats.data_length,
            )
            await conn.rollback()

        table_size = stats.data_length
        index_size = stats.index_length
        total_size = (
            (table_size or 0) + (index_size or 0)
            if table_size is not None or index_size is not None
            else None
        )
        extra_info: dict[str, Any] = {
            "storage_engine": stats.storage_engine,
            "data_free": stats.data_free,
            "auto_increment": stats.auto_increment,
            "update_time": stats.update_time,
        }

        return TableStatistics(
            table=stats.table_name,
            schema=stats.table_schema,
            row_count=exact if exact is not None else stats.row_estimate,
            row_count_exact=exact is not None,
            table_size_bytes=table_size,
            index_size_bytes=index_size,
            total_size_bytes=total_size,
            index_count=stats.index_count,
            extra_info={k: v for k, v in extra_info.items() if v is not None},
        )

    # ==================== Plans ====================

    def get_explain_query(self, query: str, analyze: bool) -> str:
        """EXPLAIN ANALYZE (tree text, 8.0.18+) or EXPLAIN FORMAT=JSON."""
        if analyze:
            return f"EXPLAIN ANALYZE {query}"
        return f"EXPLAIN FORMAT=JSON {query}"

    def build_plan(self, rows: list[tuple], analyzed: bool) -> tuple[PlanNode, Any]:
        if not rows:
            return PlanNode(kind=PlanNodeKind.OTHER, node_type="Empty plan"), None

        value = rows[0][0]
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8")

        if isinstance(value, str) and value.lstrip().startswith("->"):
            return self.build_tree_plan(value), value

        try:
            plan = load_json_plan(value)
            query_block = plan["query_block"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Could not parse MySQL EXPLAIN output: {e}")
            return PlanNode(kind=PlanNodeKind.OTHER, node_type="Unparsed plan"), value

        root = self.build_json_plan(query_block)
        return root, plan

    # ---- EXPLAIN FORMAT=JSON ----

    def build_json_plan(self, query_block: dict[str, Any]) -> PlanNode:
        """Translate a ``query_block`` into a plan tree."""
        root = self._translate_block(query_block)
        query_cost = _float_or_none((query_block.get("cost_info") or {}).get("query_cost"))
        if root.total_cost is None and query_cost is not None:
            root = root.model_copy(update={"total_cost": query_cost})
        return root

    def _translate_block(self, block: dict[str, Any]) -> PlanNode:
        ordering = block.get("ordering_operation")
        if ordering:
            child = self._translate_block(ordering)
            if not (ordering.get("using_filesort") or ordering.get("using_temporary_table")):
                # ORDER BY satisfied by an index
                return child
            return PlanNode(
                kind=PlanNodeKind.SORT,
                node_type="Sort",
                estimated_rows=child.estimated_rows,
                total_cost=child.total_cost,
                uses_temporary=bool(ordering.get("using_temporary_table")),
                children=[child],
            )

        grouping = block.get("grouping_operation")
        if grouping:
            child = self._translate_block(grouping)
            return PlanNode(
                kind=PlanNodeKind.AGGREGATE,
                node_type="Group By",
                total_cost=child.total_cost,
                uses_temporary=bool(
                    grouping.get("using_temporary_table") or grouping.get("using_filesort")
                ),
                children=[child],
            )

        duplicates = block.get("duplicates_removal")
        if duplicates:
            child = self._translate_block(duplicates)
            return PlanNode(
                kind=PlanNodeKind.AGGREGATE,
                node_type="Distinct",
                total_cost=child.total_cost,
                uses_temporary=bool(duplicates.get("using_temporary_table")),
                children=[child],
            )

        nested_loop = block.get("nested_loop")
        if isinstance(nested_loop, list) and nested_loop:
            tables = [self._translate_table(item.get("table", {})) for item in nested_loop]
            # Left-deep join tree in join order
            result = tables[0]
            for item, table in zip(nested_loop[1:], tables[1:]):
                info = item.get("table", {})
                result = PlanNode(
                    kind=PlanNodeKind.JOIN,
                    node_type="Nested Loop",
                    join_strategy=JoinStrategy.NESTED_LOOP,
                    estimated_rows=_float_or_none(info.get("rows_produced_per_join")),
                    total_cost=_float_or_none(
                        (info.get("cost_info") or {}).get("prefix_cost")
                    ),
                    children=[result, table],
                )
            return result

        table = block.get("table")
        if table:
            return self._translate_table(table)

        union = block.get("union_result")
        if union:
            return PlanNode(
                kind=PlanNodeKind.OTHER,
                node_type="Union",
                uses_temporary=bool(union.get("using_temporary_table")),
                children=[
                    self._translate_block(spec.get("query_block", {}))
                    for spec in union.get("query_specifications", [])
                ],
            )

        return PlanNode(
            kind=PlanNodeKind.RESULT,
            node_type="Query Block",
            filter=block.get("message"),
            total_cost=_float_or_none((block.get("cost_info") or {}).get("query_cost")),
        )

    def _translate_table(self, table: dict[str, Any]) -> PlanNode:
        access_type = table.get("access_type", "ALL")
        kind, label = MYSQL_ACCESS_TYPES.get(access_type, (PlanNodeKind.SCAN, "Full Table Scan"))
        cost_info = table.get("cost_info") or {}

        children = []
        materialized = table.get("materialized_from_subquery")
        if materialized and materialized.get("query_block"):
            children.append(self._subquery(materialized["query_block"]))
        for attached in table.get("attached_subqueries", []):
            if attached.get("query_block"):
                children.append(self._subquery(attached["query_block"]))

        return PlanNode(
            kind=kind,
            node_type=label,
            relation=table.get("table_name"),
            index_name=table.get("key"),
            estimated_rows=_float_or_none(table.get("rows_examined_per_scan")),
            total_cost=_float_or_none(cost_info.get("prefix_cost")),
            filter=table.get("attached_condition"),
            index_condition=table.get("index_condition"),
            uses_temporary=bool(table.get("using_temporary_table")),
            children=children,
        )

    def _subquery(self, query_block: dict[str, Any]) -> PlanNode:
        return PlanNode(
            kind=PlanNodeKind.SUBQUERY,
            node_type=f"Subquery #{query_block.get('select_id', '?')}",
            total_cost=_float_or_none((query_block.get("cost_info") or {}).get("query_cost")),
            children=[self._translate_block(query_block)],
        )

    # ---- EXPLAIN ANALYZE (tree) ----

    def build_tree_plan(self, plan_text: str) -> PlanNode:
        """Parse the indented iterator tree printed by EXPLAIN ANALYZE."""
        roots: list[dict[str, Any]] = []
        stack: list[tuple[int, dict[str, Any]]] = []

        for line in plan_text.splitlines():
            match = TREE_LINE.match(line)
            if not match:
                continue
            depth = len(match.group("indent"))
            entry = {"fields": self._parse_tree_line(match.group("body")), "children": []}

            while stack and stack[-1][0] >= depth:
                stack.pop()
            (stack[-1][1]["children"] if stack else roots).append(entry)
            stack.append((depth, entry))

        if not roots:
            return PlanNode(kind=PlanNodeKind.OTHER, node_type="Unparsed plan")
        if len(roots) == 1:
            return self._tree_node(roots[0])
        return PlanNode(
            kind=PlanNodeKind.RESULT,
            node_type="Query",
            children=[self._tree_node(entry) for entry in roots],
        )

    def _tree_node(self, entry: dict[str, Any]) -> PlanNode:
        children = [self._tree_node(child) for child in entry["children"]]
        return PlanNode(children=children, **entry["fields"])

    def _parse_tree_line(self, body: str) -> dict[str, Any]:
        fields: dict[str, Any] = {}

        cost = TREE_COST.search(body)
        if cost:
            first = float(cost.group("first"))
            second = cost.group("second")
            if second is not None:
                fields["startup_cost"] = first
                fields["total_cost"] = float(second)
            else:
                fields["total_cost"] = first
            fields["estimated_rows"] = float(cost.group("rows"))

        actual = TREE_ACTUAL.search(body)
        if actual:
            fields["actual_time_ms"] = float(actual.group("last"))
            fields["actual_rows"] = float(actual.group("rows"))
            fields["loops"] = int(actual.group("loops"))

        description = TREE_ACTUAL.sub("", TREE_COST.sub("", body))
        description = description.replace("(never executed)", "").strip()

        for pattern, kind, strategy in TREE_OPERATIONS:
            match = pattern.match(description)
            if not match:
                continue
            groups = match.groupdict()
            fields.update(kind=kind, node_type=groups["op"], join_strategy=strategy)
            if groups.get("rel"):
                fields["relation"] = groups["rel"]
            if groups.get("idx"):
                fields["index_name"] = groups["idx"]
            if groups.get("cond"):
                fields["index_condition"] = groups["cond"].strip()
            if groups.get("filter"):
                fields["filter"] = groups["filter"].strip()
            if groups.get("jt"):
                fields["join_type"] = groups["jt"].strip()
            if groups.get("keys"):
                fields["sort_keys"] = [key.strip() for key in groups["keys"].split(",")]
            if "temporary" in groups["op"].lower():
                fields["uses_temporary"] = True
            return fields

        fields.update(kind=PlanNodeKind.OTHER, node_type=description.split(":")[0] or "Unknown")
        return fields
