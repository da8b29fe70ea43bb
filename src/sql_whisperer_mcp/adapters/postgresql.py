"""PostgreSQL adapter with full feature support."""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncConnection

from sql_whisperer_mcp.adapters.base import BaseAdapter, CatalogRow
from sql_whisperer_mcp.core.executor import load_json_plan
from sql_whisperer_mcp.errors import NotFoundError
from sql_whisperer_mcp.models.capabilities import DatabaseCapabilities
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
    SequenceInfo,
    SortOrder,
    TableInfo,
    TriggerInfo,
    UniqueConstraintInfo,
    ViewInfo,
)
from sql_whisperer_mcp.models.statistics import TableStatistics
from sql_whisperer_mcp.utils.limits import group_rows, parse_table_name

logger = logging.getLogger(__name__)

# Keyed by udt_name and by the SQL-standard spelling from information_schema
PG_TYPE_MAP: dict[str, CanonicalType] = {
    "int2": CanonicalType.INTEGER,
    "int4": CanonicalType.INTEGER,
    "int8": CanonicalType.INTEGER,
    "smallint": CanonicalType.INTEGER,
    "integer": CanonicalType.INTEGER,
    "bigint": CanonicalType.INTEGER,
    "smallserial": CanonicalType.INTEGER,
    "serial": CanonicalType.INTEGER,
    "bigserial": CanonicalType.INTEGER,
    "oid": CanonicalType.INTEGER,
    "numeric": CanonicalType.DECIMAL,
    "decimal": CanonicalType.DECIMAL,
    "money": CanonicalType.DECIMAL,
    "float4": CanonicalType.REAL,
    "float8": CanonicalType.REAL,
    "real": CanonicalType.REAL,
    "double precision": CanonicalType.REAL,
    "bool": CanonicalType.BOOLEAN,
    "boolean": CanonicalType.BOOLEAN,
    "text": CanonicalType.TEXT,
    "varchar": CanonicalType.TEXT,
    "character varying": CanonicalType.TEXT,
    "bpchar": CanonicalType.TEXT,
    "char": CanonicalType.TEXT,
    "character": CanonicalType.TEXT,
    "name": CanonicalType.TEXT,
    "citext": CanonicalType.TEXT,
    "xml": CanonicalType.TEXT,
    "bytea": CanonicalType.BLOB,
    "date": CanonicalType.DATE,
    "timestamp": CanonicalType.DATETIME,
    "timestamptz": CanonicalType.DATETIME,
    "timestamp without time zone": CanonicalType.DATETIME,
    "timestamp with time zone": CanonicalType.DATETIME,
    "time": CanonicalType.TIME,
    "timetz": CanonicalType.TIME,
    "time without time zone": CanonicalType.TIME,
    "time with time zone": CanonicalType.TIME,
    "interval": CanonicalType.INTERVAL,
    "uuid": CanonicalType.UUID,
    "json": CanonicalType.JSON,
    "jsonb": CanonicalType.JSON,
    "inet": CanonicalType.NETWORK,
    "cidr": CanonicalType.NETWORK,
    "macaddr": CanonicalType.NETWORK,
    "macaddr8": CanonicalType.NETWORK,
    "point": CanonicalType.SPATIAL,
    "line": CanonicalType.SPATIAL,
    "lseg": CanonicalType.SPATIAL,
    "box": CanonicalType.SPATIAL,
    "path": CanonicalType.SPATIAL,
    "polygon": CanonicalType.SPATIAL,
    "circle": CanonicalType.SPATIAL,
    "geometry": CanonicalType.SPATIAL,
    "geography": CanonicalType.SPATIAL,
}

# Built-in type OIDs reported in result descriptions
PG_TYPE_OIDS: dict[int, str] = {
    16: "bool",
    17: "bytea",
    18: "char",
    19: "name",
    20: "int8",
    21: "int2",
    23: "int4",
    25: "text",
    26: "oid",
    114: "json",
    142: "xml",
    600: "point",
    650: "cidr",
    700: "float4",
    701: "float8",
    790: "money",
    829: "macaddr",
    869: "inet",
    1000: "_bool",
    1005: "_int2",
    1007: "_int4",
    1009: "_text",
    1016: "_int8",
    1015: "_varchar",
    1042: "bpchar",
    1043: "varchar",
    1082: "date",
    1083: "time",
    1114: "timestamp",
    1184: "timestamptz",
    1186: "interval",
    1266: "timetz",
    1700: "numeric",
    2950: "uuid",
    3802: "jsonb",
}

PG_NODE_KINDS: dict[str, tuple[PlanNodeKind, Optional[JoinStrategy]]] = {
    "Seq Scan": (PlanNodeKind.SCAN, None),
    "Parallel Seq Scan": (PlanNodeKind.SCAN, None),
    "Index Scan": (PlanNodeKind.INDEX_SCAN, None),
    "Index Only Scan": (PlanNodeKind.INDEX_SCAN, None),
    "Bitmap Heap Scan": (PlanNodeKind.INDEX_SCAN, None),
    "Bitmap Index Scan": (PlanNodeKind.INDEX_SCAN, None),
    "Nested Loop": (PlanNodeKind.JOIN, JoinStrategy.NESTED_LOOP),
    "Hash Join": (PlanNodeKind.JOIN, JoinStrategy.HASH),
    "Merge Join": (PlanNodeKind.JOIN, JoinStrategy.MERGE),
    "Sort": (PlanNodeKind.SORT, None),
    "Incremental Sort": (PlanNodeKind.SORT, None),
    "Aggregate": (PlanNodeKind.AGGREGATE, None),
    "GroupAggregate": (PlanNodeKind.AGGREGATE, None),
    "HashAggregate": (PlanNodeKind.AGGREGATE, None),
    "Group": (PlanNodeKind.AGGREGATE, None),
    "WindowAgg": (PlanNodeKind.AGGREGATE, None),
    "Unique": (PlanNodeKind.AGGREGATE, None),
    "Limit": (PlanNodeKind.LIMIT, None),
    "Subquery Scan": (PlanNodeKind.SUBQUERY, None),
    "CTE Scan": (PlanNodeKind.SUBQUERY, None),
    "Function Scan": (PlanNodeKind.SUBQUERY, None),
    "Materialize": (PlanNodeKind.MATERIALIZE, None),
    "Memoize": (PlanNodeKind.MATERIALIZE, None),
    "Hash": (PlanNodeKind.MATERIALIZE, None),
    "Result": (PlanNodeKind.RESULT, None),
}

FK_ACTIONS: dict[str, ReferentialAction] = {
    "a": ReferentialAction.NO_ACTION,
    "r": ReferentialAction.RESTRICT,
    "c": ReferentialAction.CASCADE,
    "n": ReferentialAction.SET_NULL,
    "d": ReferentialAction.SET_DEFAULT,
}

TRIGGER_EVENT_ORDER = {"INSERT": 0, "UPDATE": 1, "DELETE": 2, "TRUNCATE": 3}

SYSTEM_SCHEMA_FILTER = (
    "NOT IN ('pg_catalog', 'information_schema') "
    "AND {col} NOT LIKE 'pg\\_toast%' AND {col} NOT LIKE 'pg\\_temp%'"
)


def _user_schemas(column: str) -> str:
    return f"{column} " + SYSTEM_SCHEMA_FILTER.format(col=column)


# ==================== Catalog rows ====================


class _TableRow(CatalogRow):
    schema_name: str
    table_name: str
    row_estimate: Optional[int] = None
    size_bytes: Optional[int] = None
    comment: Optional[str] = None


class _ColumnRow(CatalogRow):
    table_schema: str
    table_name: str
    column_name: str
    ordinal_position: int
    data_type: str
    udt_schema: Optional[str] = None
    udt_name: str
    is_nullable: str
    column_default: Optional[str] = None
    character_maximum_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    is_identity: Optional[str] = None
    collation_name: Optional[str] = None
    comment: Optional[str] = None


class _EnumRow(CatalogRow):
    type_schema: str
    type_name: str
    label: str
    sort_order: float


class _IndexRow(CatalogRow):
    schema_name: str
    table_name: str
    index_name: str
    is_unique: bool
    is_primary: bool
    index_type: str
    condition: Optional[str] = None
    size_bytes: Optional[int] = None
    position: int
    column_name: Optional[str] = None
    descending: bool = False


class _ConstraintRow(CatalogRow):
    schema_name: str
    table_name: str
    constraint_name: str
    constraint_type: str
    position: Optional[int] = None
    column_name: Optional[str] = None
    referenced_schema: Optional[str] = None
    referenced_table: Optional[str] = None
    referenced_column: Optional[str] = None
    update_action: Optional[str] = None
    delete_action: Optional[str] = None
    definition: Optional[str] = None


class _ViewRow(CatalogRow):
    table_schema: str
    table_name: str
    view_definition: Optional[str] = None


class _SequenceRow(CatalogRow):
    schemaname: str
    sequencename: str
    data_type: Optional[str] = None
    start_value: Optional[int] = None
    increment_by: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    last_value: Optional[int] = None


class _RoutineRow(CatalogRow):
    routine_schema: str
    routine_name: str
    specific_name: str
    routine_type: Optional[str] = None
    return_type: Optional[str] = None
    language: Optional[str] = None
    parameter_name: Optional[str] = None
    parameter_type: Optional[str] = None
    parameter_mode: Optional[str] = None
    parameter_position: Optional[int] = None


class _TriggerRow(CatalogRow):
    trigger_name: str
    event_object_schema: str
    event_object_table: str
    action_timing: str
    event_manipulation: str
    action_orientation: Optional[str] = None
    action_statement: Optional[str] = None


class _StatsRow(CatalogRow):
    row_estimate: Optional[int] = None
    live_tuples: Optional[int] = None
    dead_tuples: Optional[int] = None
    seq_scans: Optional[int] = None
    index_scans: Optional[int] = None
    rows_inserted: Optional[int] = None
    rows_updated: Optional[int] = None
    rows_deleted: Optional[int] = None
    last_vacuum: Optional[datetime] = None
    last_analyze: Optional[datetime] = None
    auto_vacuum_count: Optional[int] = None
    table_size: Optional[int] = None
    index_size: Optional[int] = None
    total_size: Optional[int] = None
    index_count: Optional[int] = None


# ==================== Catalog queries ====================

TABLES_SQL = f"""
    SELECT
        n.nspname AS schema_name,
        c.relname AS table_name,
        CASE WHEN c.reltuples < 0 THEN NULL ELSE c.reltuples::bigint END AS row_estimate,
        pg_total_relation_size(c.oid)::bigint AS size_bytes,
        obj_description(c.oid, 'pg_class') AS comment
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p')
      AND NOT c.relispartition
      AND {_user_schemas("n.nspname")}
    ORDER BY n.nspname, c.relname
"""

COLUMNS_SQL = f"""
    SELECT
        c.table_schema,
        c.table_name,
        c.column_name,
        c.ordinal_position,
        c.data_type,
        c.udt_schema,
        c.udt_name,
        c.is_nullable,
        c.column_default,
        c.character_maximum_length,
        c.numeric_precision,
        c.numeric_scale,
        c.is_identity,
        c.collation_name,
        pg_catalog.col_description(
            format('%I.%I', c.table_schema, c.table_name)::regclass::oid,
            c.ordinal_position::int
        ) AS comment
    FROM information_schema.columns c
    WHERE {_user_schemas("c.table_schema")}
"""

ENUMS_SQL = """
    SELECT
        n.nspname AS type_schema,
        t.typname AS type_name,
        e.enumlabel AS label,
        e.enumsortorder AS sort_order
    FROM pg_type t
    JOIN pg_enum e ON e.enumtypid = t.oid
    JOIN pg_namespace n ON n.oid = t.typnamespace
"""

INDEXES_SQL = f"""
    SELECT
        n.nspname AS schema_name,
        t.relname AS table_name,
        i.relname AS index_name,
        ix.indisunique AS is_unique,
        ix.indisprimary AS is_primary,
        am.amname AS index_type,
        pg_get_expr(ix.indpred, ix.indrelid) AS condition,
        pg_relation_size(i.oid)::bigint AS size_bytes,
        k.ordinality::int AS position,
        CASE
            WHEN k.attnum = 0 THEN pg_get_indexdef(ix.indexrelid, k.ordinality::int, true)
            ELSE a.attname::text
        END AS column_name,
        (ix.indoption[(k.ordinality - 1)::int] & 1) = 1 AS descending
    FROM pg_index ix
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_am am ON am.oid = i.relam
    CROSS JOIN LATERAL unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ordinality)
    LEFT JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
    WHERE k.ordinality <= ix.indnkeyatts
      AND {_user_schemas("n.nspname")}
"""

CONSTRAINTS_SQL = f"""
    SELECT
        n.nspname AS schema_name,
        t.relname AS table_name,
        con.conname AS constraint_name,
        con.contype::text AS constraint_type,
        k.ordinality::int AS position,
        a.attname::text AS column_name,
        fn.nspname AS referenced_schema,
        ft.relname AS referenced_table,
        fa.attname::text AS referenced_column,
        con.confupdtype::text AS update_action,
        con.confdeltype::text AS delete_action,
        CASE WHEN con.contype = 'c' THEN pg_get_constraintdef(con.oid, true) END AS definition
    FROM pg_constraint con
    JOIN pg_class t ON t.oid = con.conrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    LEFT JOIN LATERAL unnest(con.conkey, con.confkey)
        WITH ORDINALITY AS k(attnum, fattnum, ordinality) ON true
    LEFT JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
    LEFT JOIN pg_class ft ON ft.oid = con.confrelid
    LEFT JOIN pg_namespace fn ON fn.oid = ft.relnamespace
    LEFT JOIN pg_attribute fa ON fa.attrelid = con.confrelid AND fa.attnum = k.fattnum
    WHERE con.contype IN ('p', 'u', 'f', 'c')
      AND {_user_schemas("n.nspname")}
"""

VIEWS_SQL = f"""
    SELECT table_schema, table_name, view_definition
    FROM information_schema.views
    WHERE {_user_schemas("table_schema")}
    ORDER BY table_schema, table_name
"""

SEQUENCES_SQL = f"""
    SELECT
        schemaname,
        sequencename,
        data_type::text AS data_type,
        start_value,
        increment_by,
        min_value,
        max_value,
        last_value
    FROM pg_sequences
    WHERE {_user_schemas("schemaname")}
    ORDER BY schemaname, sequencename
"""

ROUTINES_SQL = f"""
    SELECT
        r.routine_schema,
        r.routine_name,
        r.specific_name,
        r.routine_type,
        r.data_type AS return_type,
        r.external_language AS language,
        p.parameter_name,
        p.data_type AS parameter_type,
        p.parameter_mode,
        p.ordinal_position AS parameter_position
    FROM information_schema.routines r
    LEFT JOIN information_schema.parameters p
        ON p.specific_schema = r.specific_schema AND p.specific_name = r.specific_name
    WHERE {_user_schemas("r.routine_schema")}
    ORDER BY r.routine_schema, r.routine_name, r.specific_name
"""

TRIGGERS_SQL = f"""
    SELECT
        trigger_name,
        event_object_schema,
        event_object_table,
        action_timing,
        event_manipulation,
        action_orientation,
        action_statement
    FROM information_schema.triggers
    WHERE {_user_schemas("trigger_schema")}
"""

METADATA_SQL = """
    SELECT
        version() AS version,
        current_database() AS database,
        pg_encoding_to_char(d.encoding) AS character_set,
        d.datcollate AS collation
    FROM pg_database d
    WHERE d.datname = current_database()
"""

STATISTICS_SQL = """
    SELECT
        CASE WHEN c.reltuples < 0 THEN NULL ELSE c.reltuples::bigint END AS row_estimate,
        s.n_live_tup AS live_tuples,
        s.n_dead_tup AS dead_tuples,
        s.seq_scan AS seq_scans,
        s.idx_scan AS index_scans,
        s.n_tup_ins AS rows_inserted,
        s.n_tup_upd AS rows_updated,
        s.n_tup_del AS rows_deleted,
        GREATEST(s.last_vacuum, s.last_autovacuum) AS last_vacuum,
        GREATEST(s.last_analyze, s.last_autoanalyze) AS last_analyze,
        s.autovacuum_count AS auto_vacuum_count,
        pg_relation_size(c.oid)::bigint AS table_size,
        pg_indexes_size(c.oid)::bigint AS index_size,
        pg_total_relation_size(c.oid)::bigint AS total_size,
        (SELECT count(*) FROM pg_index ix WHERE ix.indrelid = c.oid) AS index_count
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    LEFT JOIN pg_stat_user_tables s ON s.relid = c.oid
    WHERE n.nspname = :schema_name
      AND c.relname = :table_name
      AND c.relkind IN ('r', 'p')
"""


class PostgresAdapter(BaseAdapter):
    """PostgreSQL adapter with comprehensive feature support."""

    default_schema = "public"
    savepoint_optional_reads = True

    @property
    def capabilities(self) -> DatabaseCapabilities:
        """PostgreSQL supports all features."""
        return DatabaseCapabilities(
            foreign_keys=True,
            indexes=True,
            views=True,
            schemas=True,
            sequences=True,
            stored_procedures=True,
            triggers=True,
            check_constraints=True,
            explain_analyze=True,
            statement_timeout=True,
            read_only_transactions=True,
        )

    # ==================== Types ====================

    def map_column_type(self, native_type: str) -> CanonicalType:
        native = native_type.strip().lower()
        if native.startswith("_") or native.endswith("[]") or native == "array":
            return CanonicalType.ARRAY
        base = native.split("(")[0].strip()
        return PG_TYPE_MAP.get(base, CanonicalType.UNKNOWN)

    def describe_field_type(self, type_code: Any) -> Optional[str]:
        if isinstance(type_code, int):
            return PG_TYPE_OIDS.get(type_code, f"oid:{type_code}")
        return None

    # ==================== Introspection ====================

    async def _introspect(self, conn: AsyncConnection) -> SchemaSnapshot:
        table_rows = _TableRow.from_rows(await self._fetch(conn, TABLES_SQL))
        column_rows = _ColumnRow.from_rows(await self._fetch(conn, COLUMNS_SQL))
        index_rows = _IndexRow.from_rows(await self._fetch(conn, INDEXES_SQL))
        constraint_rows = _ConstraintRow.from_rows(
            await self._fetch(conn, CONSTRAINTS_SQL)
        )
        view_rows = _ViewRow.from_rows(await self._fetch(conn, VIEWS_SQL))

        enum_rows = _EnumRow.from_rows(
            await self._fetch_optional(conn, ENUMS_SQL, what="enum labels")
        )
        sequence_rows = _SequenceRow.from_rows(
            await self._fetch_optional(conn, SEQUENCES_SQL, what="sequences")
        )
        routine_rows = _RoutineRow.from_rows(
            await self._fetch_optional(conn, ROUTINES_SQL, what="functions")
        )
        trigger_rows = _TriggerRow.from_rows(
            await self._fetch_optional(conn, TRIGGERS_SQL, what="triggers")
        )
        metadata_rows = await self._fetch_optional(conn, METADATA_SQL, what="server metadata")

        enums = {
            key: [row.label for row in members]
            for key, members in group_rows(
                enum_rows,
                key=lambda r: (r.type_schema, r.type_name),
                order_by=lambda r: r.sort_order,
            ).items()
        }
        columns = {
            key: [self._build_column(row, enums) for row in members]
            for key, members in group_rows(
                column_rows,
                key=lambda r: (r.table_schema, r.table_name),
                order_by=lambda r: r.ordinal_position,
            ).items()
        }
        indexes = self._build_indexes(index_rows)
        constraints = group_rows(
            constraint_rows,
            key=lambda r: (r.schema_name, r.table_name),
            order_by=lambda r: r.position or 0,
        )
        triggers = self._build_triggers(trigger_rows)

        tables = []
        for row in table_rows:
            key = (row.schema_name, row.table_name)
            row_count = await self._exact_count(
                conn,
                self._build_table_reference(row.table_name, row.schema_name),
                row.size_bytes,
            )
            tables.append(
                TableInfo(
                    name=row.table_name,
                    schema=row.schema_name,
                    columns=columns.get(key, []),
                    indexes=indexes.get(key, []),
                    triggers=triggers.get(key, []),
                    row_count=row_count if row_count is not None else row.row_estimate,
                    size_bytes=row.size_bytes,
                    comment=row.comment,
                    **self._build_constraints(constraints.get(key, [])),
                )
            )

        views = [
            ViewInfo(
                name=row.table_name,
                schema=row.table_schema,
                definition=row.view_definition,
                columns=columns.get((row.table_schema, row.table_name), []),
            )
            for row in view_rows
        ]

        sequences = [
            SequenceInfo(
                name=row.sequencename,
                schema=row.schemaname,
                data_type=row.data_type,
                start_value=row.start_value,
                increment=row.increment_by,
                min_value=row.min_value,
                max_value=row.max_value,
                last_value=row.last_value,
            )
            for row in sequence_rows
        ]

        functions = []
        for members in group_rows(
            routine_rows,
            key=lambda r: (r.routine_schema, r.specific_name),
            order_by=lambda r: r.parameter_position or 0,
        ).values():
            head = members[0]
            functions.append(
                FunctionInfo(
                    name=head.routine_name,
                    schema=head.routine_schema,
                    kind=head.routine_type or "FUNCTION",
                    return_type=head.return_type,
                    language=head.language,
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

        metadata = self._metadata()
        if metadata_rows:
            first = metadata_rows[0]
            metadata = self._metadata(
                version=first.version,
                database=first.database,
                character_set=first.character_set,
                collation=first.collation,
            )

        return SchemaSnapshot(
            tables=tables,
            views=views,
            sequences=sequences,
            functions=functions,
            triggers=[trigger for group in triggers.values() for trigger in group],
            metadata=metadata,
        )

    def _build_column(
        self, row: _ColumnRow, enums: dict[tuple[str, str], list[str]]
    ) -> ColumnInfo:
        enum_values = enums.get((row.udt_schema or "", row.udt_name))
        if enum_values is not None:
            data_type = CanonicalType.ENUM
            native_type = row.udt_name
        elif row.data_type == "ARRAY":
            data_type = CanonicalType.ARRAY
            native_type = row.udt_name
        elif row.data_type == "USER-DEFINED":
            data_type = self.map_column_type(row.udt_name)
            native_type = row.udt_name
        else:
            data_type = self.map_column_type(row.data_type)
            native_type = row.data_type

        default = row.column_default
        auto_increment = row.is_identity == "YES" or bool(
            default and default.startswith("nextval(")
        )

        return ColumnInfo(
            name=row.column_name,
            data_type=data_type,
            native_type=native_type,
            nullable=row.is_nullable == "YES",
            default=default,
            auto_increment=auto_increment,
            max_length=row.character_maximum_length,
            precision=row.numeric_precision,
            scale=row.numeric_scale,
            enum_values=enum_values,
            collation=row.collation_name,
            comment=row.comment,
        )

    def _build_indexes(
        self, index_rows: list[_IndexRow]
    ) -> dict[tuple[str, str], list[IndexInfo]]:
        result: dict[tuple[str, str], list[IndexInfo]] = {}
        grouped = group_rows(
            index_rows,
            key=lambda r: (r.schema_name, r.table_name, r.index_name),
            order_by=lambda r: r.position,
        )
        for (schema_name, table_name, index_name), members in sorted(grouped.items()):
            head = members[0]
            result.setdefault((schema_name, table_name), []).append(
                IndexInfo(
                    name=index_name,
                    columns=[
                        IndexColumn(
                            name=r.column_name or "?",
                            order=SortOrder.DESC if r.descending else SortOrder.ASC,
                        )
                        for r in members
                    ],
                    unique=head.is_unique,
                    primary=head.is_primary,
                    index_type=head.index_type,
                    condition=head.condition,
                    size_bytes=head.size_bytes,
                )
            )
        return result

    def _build_constraints(self, rows: list[_ConstraintRow]) -> dict[str, Any]:
        """Keys and checks of one table as TableInfo keyword arguments."""
        primary_key: Optional[PrimaryKeyInfo] = None
        unique_constraints: list[UniqueConstraintInfo] = []
        check_constraints: list[CheckConstraintInfo] = []
        foreign_keys: list[ForeignKeyInfo] = []

        by_name = group_rows(rows, key=lambda r: r.constraint_name)
        for name in sorted(by_name):
            members = sorted(by_name[name], key=lambda r: r.position or 0)
            head = members[0]
            column_names = [r.column_name for r in members if r.column_name]

            if head.constraint_type == "p":
                primary_key = PrimaryKeyInfo(name=name, columns=column_names)
            elif head.constraint_type == "u":
                unique_constraints.append(UniqueConstraintInfo(name=name, columns=column_names))
            elif head.constraint_type == "c" and head.definition:
                check_constraints.append(
                    CheckConstraintInfo(name=name, definition=head.definition)
                )
            elif head.constraint_type == "f":
                foreign_keys.append(
                    ForeignKeyInfo(
                        name=name,
                        columns=column_names,
                        referenced_schema=head.referenced_schema,
                        referenced_table=head.referenced_table or "",
                        referenced_columns=[
                            r.referenced_column for r in members if r.referenced_column
                        ],
                        on_delete=FK_ACTIONS.get(
                            head.delete_action or "a", ReferentialAction.NO_ACTION
                        ),
                        on_update=FK_ACTIONS.get(
                            head.update_action or "a", ReferentialAction.NO_ACTION
                        ),
                    )
                )

        return {
            "primary_key": primary_key,
            "unique_constraints": unique_constraints,
            "check_constraints": check_constraints,
            "foreign_keys": foreign_keys,
        }

    def _build_triggers(
        self, trigger_rows: list[_TriggerRow]
    ) -> dict[tuple[str, str], list[TriggerInfo]]:
        result: dict[tuple[str, str], list[TriggerInfo]] = {}
        grouped = group_rows(
            trigger_rows,
            key=lambda r: (r.event_object_schema, r.event_object_table, r.trigger_name),
            order_by=lambda r: TRIGGER_EVENT_ORDER.get(r.event_manipulation, 9),
        )
        for (schema_name, table_name, trigger_name), members in sorted(grouped.items()):
            head = members[0]
            result.setdefault((schema_name, table_name), []).append(
                TriggerInfo(
                    name=trigger_name,
                    table=table_name,
                    schema=schema_name,
                    timing=head.action_timing,
                    events=[r.event_manipulation for r in members],
                    for_each_row=(head.action_orientation or "ROW") == "ROW",
                    definition=head.action_statement,
                )
            )
        return result

    # ==================== Statistics ====================

    async def get_table_statistics(self, table_name: str) -> TableStatistics:
        """Get PostgreSQL table statistics from pg_stat_user_tables."""
        schema, table = parse_table_name(table_name, self.default_schema)

        async with self.connection.get_connection() as conn:
            rows = await self._fetch(
                conn, STATISTICS_SQL, {"schema_name": schema, "table_name": table}
            )
            if not rows:
                raise NotFoundError(f"Table {schema}.{table} does not exist")
            stats = _StatsRow.from_rows(rows)[0]

            exact = await self._exact_count(
                conn, self._build_table_reference(table, schema), stats.table_size
            )
            await conn.rollback()

        row_count = exact if exact is not None else (stats.live_tuples or stats.row_estimate)
        return TableStatistics(
            table=table,
            schema=schema,
            row_count=row_count,
            row_count_exact=exact is not None,
            table_size_bytes=stats.table_size,
            index_size_bytes=stats.index_size,
            total_size_bytes=stats.total_size,
            index_count=stats.index_count,
            dead_tuples=stats.dead_tuples,
            seq_scans=stats.seq_scans,
            index_scans=stats.index_scans,
            rows_inserted=stats.rows_inserted,
            rows_updated=stats.rows_updated,
            rows_deleted=stats.rows_deleted,
            last_vacuum=stats.last_vacuum,
            last_analyze=stats.last_analyze,
            auto_vacuum_count=stats.auto_vacuum_count,
        )

    # ==================== Plans ====================

    def get_explain_query(self, query: str, analyze: bool) -> str:
        """Generate PostgreSQL EXPLAIN query."""
        if analyze:
            return f"EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) {query}"
        return f"EXPLAIN (FORMAT JSON) {query}"

    def build_plan(self, rows: list[tuple], analyzed: bool) -> tuple[PlanNode, Any]:
        """Parse PostgreSQL EXPLAIN JSON output."""
        plan_text = "\n".join(str(row[0]) for row in rows)
        try:
            plan_data = load_json_plan(rows[0][0]) if len(rows) == 1 else json.loads(plan_text)
            plan = plan_data[0]["Plan"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Could not parse EXPLAIN output as JSON: {e}")
            return PlanNode(kind=PlanNodeKind.OTHER, node_type="Unparsed plan"), plan_text

        root = self._build_node(plan)
        execution_time = plan_data[0].get("Execution Time")
        if analyzed and execution_time is not None:
            root = root.model_copy(update={"actual_time_ms": execution_time})
        return root, plan_data

    def _build_node(self, plan: dict[str, Any]) -> PlanNode:
        # Children first so the tree is assembled bottom-up
        children = [self._build_node(child) for child in plan.get("Plans", [])]

        node_type = plan.get("Node Type", "Unknown")
        kind, strategy = PG_NODE_KINDS.get(node_type, (PlanNodeKind.OTHER, None))
        sort_method = str(plan.get("Sort Method", ""))

        return PlanNode(
            kind=kind,
            node_type=node_type,
            relation=plan.get("Relation Name"),
            alias=plan.get("Alias"),
            index_name=plan.get("Index Name"),
            join_type=plan.get("Join Type"),
            join_strategy=strategy,
            estimated_rows=plan.get("Plan Rows"),
            actual_rows=plan.get("Actual Rows"),
            loops=plan.get("Actual Loops"),
            startup_cost=plan.get("Startup Cost"),
            total_cost=plan.get("Total Cost"),
            actual_time_ms=plan.get("Actual Total Time"),
            filter=plan.get("Filter") or plan.get("Join Filter"),
            index_condition=(
                plan.get("Index Cond")
                or plan.get("Recheck Cond")
                or plan.get("Hash Cond")
                or plan.get("Merge Cond")
            ),
            sort_keys=list(plan.get("Sort Key", []) or plan.get("Group Key", [])),
            uses_temporary="external" in sort_method.lower(),
            children=children,
        )
