"""SQLite adapter."""

import logging
import re
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncConnection

from sql_whisperer_mcp.adapters.base import BaseAdapter, CatalogRow
from sql_whisperer_mcp.core.plan import PlanAdvisor
from sql_whisperer_mcp.core.validator import mask_sql
from sql_whisperer_mcp.errors import NotFoundError
from sql_whisperer_mcp.models.capabilities import DatabaseCapabilities
from sql_whisperer_mcp.models.plan import PlanNode, PlanNodeKind
from sql_whisperer_mcp.models.schema import (
    CanonicalType,
    CheckConstraintInfo,
    ColumnInfo,
    ForeignKeyInfo,
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

# Declared-type rules, checked in order. Names SQLite itself would give
# NUMERIC affinity (dates, booleans, JSON) are recognised first.
SQLITE_TYPE_RULES: list[tuple[tuple[str, ...], CanonicalType]] = [
    (("BOOL",), CanonicalType.BOOLEAN),
    (("DATETIME", "TIMESTAMP"), CanonicalType.DATETIME),
    (("DATE",), CanonicalType.DATE),
    (("TIME",), CanonicalType.TIME),
    (("JSON",), CanonicalType.JSON),
    (("UUID", "GUID"), CanonicalType.UUID),
    (("INT",), CanonicalType.INTEGER),
    (("CHAR", "CLOB", "TEXT"), CanonicalType.TEXT),
    (("BLOB",), CanonicalType.BLOB),
    (("REAL", "FLOA", "DOUB"), CanonicalType.REAL),
    (("NUMERIC", "DECIMAL"), CanonicalType.DECIMAL),
]

# EXPLAIN QUERY PLAN detail lines
PLAN_SCAN = re.compile(
    r"^SCAN (?:TABLE )?(?P<rel>[^\s(]+)(?: AS (?P<alias>\S+))?"
    r"(?: USING (?:COVERING )?INDEX (?P<idx>\S+))?",
)
PLAN_SEARCH = re.compile(
    r"^SEARCH (?:TABLE )?(?P<rel>\S+)(?: AS (?P<alias>\S+))? USING "
    r"(?P<how>(?:AUTOMATIC )?(?:PARTIAL )?(?:COVERING )?INDEX|INTEGER PRIMARY KEY|PRIMARY KEY)"
    r"(?: (?P<idx>[^\s(]+))?(?: \((?P<cond>.*)\))?$"
)
PLAN_TEMP_BTREE = re.compile(r"^USE TEMP B-TREE FOR (?P<purpose>.+)$")
PLAN_SUBQUERY = re.compile(
    r"^(?:(?:CORRELATED )?(?:SCALAR|LIST) SUBQUERY|CO-ROUTINE|SCAN SUBQUERY|SCAN \()"
)
PLAN_MATERIALIZE = re.compile(r"^MATERIALIZE")

CHECK_START = re.compile(r"\bCHECK\s*\(", re.IGNORECASE)
CONSTRAINT_NAME = re.compile(
    r"\bCONSTRAINT\s+(\"[^\"]+\"|`[^`]+`|\[[^\]]+\]|\w+)\s*$", re.IGNORECASE
)
TRIGGER_HEADER = re.compile(
    r"CREATE\s+(?:TEMP(?:ORARY)?\s+)?TRIGGER\s+(?:IF\s+NOT\s+EXISTS\s+)?\S+\s+"
    r"(?:(?P<timing>BEFORE|AFTER|INSTEAD\s+OF)\s+)?"
    r"(?P<event>DELETE|INSERT|UPDATE)\b(?:\s+OF\s+.+?)?\s+ON\s+",
    re.IGNORECASE | re.DOTALL,
)
VIEW_BODY = re.compile(r"\bAS\s+", re.IGNORECASE)
INDEX_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)


def _unquote(identifier: str) -> str:
    if identifier[:1] in ('"', "`", "[") and len(identifier) > 1:
        return identifier[1:-1]
    return identifier


def extract_check_constraints(ddl: Optional[str]) -> list[CheckConstraintInfo]:
    """
    Find CHECK constraints in a CREATE TABLE statement.

    Comments and string literals are ignored when searching, so a CHECK
    keyword inside a default value or a comment is not reported.

    Args:
        ddl: Stored CREATE TABLE text

    Returns:
        Constraints in declaration order
    """
    if not ddl:
        return []
    masked = mask_sql(ddl)
    checks = []
    for match in CHECK_START.finditer(masked):
        start = match.end()
        depth = 1
        index = start
        while index < len(masked) and depth:
            if masked[index] == "(":
                depth += 1
            elif masked[index] == ")":
                depth -= 1
            index += 1
        if depth:
            continue
        name_match = CONSTRAINT_NAME.search(masked[: match.start()])
        checks.append(
            CheckConstraintInfo(
                name=_unquote(name_match.group(1)) if name_match else None,
                definition=ddl[start : index - 1].strip(),
            )
        )
    return checks


def extract_index_predicate(ddl: Optional[str]) -> Optional[str]:
    """Predicate of a partial index, from its CREATE INDEX text."""
    if not ddl:
        return None
    match = INDEX_WHERE.search(mask_sql(ddl))
    return ddl[match.end() :].strip().rstrip(";").strip() if match else None


def parse_trigger(ddl: Optional[str]) -> tuple[str, list[str]]:
    """Timing and events of a CREATE TRIGGER statement."""
    match = TRIGGER_HEADER.search(mask_sql(ddl or ""))
    if not match:
        return "BEFORE", []
    timing = " ".join((match.group("timing") or "BEFORE").upper().split())
    return timing, [match.group("event").upper()]


def view_definition(ddl: Optional[str]) -> Optional[str]:
    """SELECT text of a CREATE VIEW statement."""
    if not ddl:
        return None
    match = VIEW_BODY.search(mask_sql(ddl))
    return ddl[match.end() :].strip() if match else ddl


# ==================== Catalog rows ====================


class _ObjectRow(CatalogRow):
    type: str
    name: str
    tbl_name: str
    sql: Optional[str] = None


class _ColumnRow(CatalogRow):
    table_name: str
    cid: int
    name: str
    type: str = ""
    notnull: bool = False
    dflt_value: Optional[str] = None
    pk: int = 0


class _IndexRow(CatalogRow):
    table_name: str
    index_name: str
    is_unique: bool
    origin: str
    partial: bool
    seqno: int
    cid: int
    column_name: Optional[str] = None
    descending: bool = False


class _ForeignKeyRow(CatalogRow):
    table_name: str
    id: int
    seq: int
    referenced_table: str
    column_name: str
    referenced_column: Optional[str] = None
    on_update: Optional[str] = None
    on_delete: Optional[str] = None


class _SizeRow(CatalogRow):
    name: str
    size_bytes: int


class _StatRow(CatalogRow):
    tbl: str
    stat: str

    @property
    def row_estimate(self) -> Optional[int]:
        first = self.stat.split(" ", 1)[0]
        return int(first) if first.isdigit() else None


class _PlanRow(CatalogRow):
    id: int
    parent: int
    notused: int = 0
    detail: str


# ==================== Catalog queries ====================

OBJECTS_SQL = """
    SELECT type, name, tbl_name, sql
    FROM sqlite_master
    WHERE name NOT LIKE 'sqlite_%'
    ORDER BY type, name
"""

COLUMNS_SQL = """
    SELECT m.name AS table_name, p.cid, p.name, p.type, p."notnull", p.dflt_value, p.pk
    FROM sqlite_master m
    JOIN pragma_table_info(m.name) p
    WHERE m.type IN ('table', 'view') AND m.name NOT LIKE 'sqlite_%'
"""

INDEXES_SQL = """
    SELECT
        m.name AS table_name,
        il.name AS index_name,
        il."unique" AS is_unique,
        il.origin,
        il.partial,
        ix.seqno,
        ix.cid,
        ix.name AS column_name,
        ix."desc" AS descending
    FROM sqlite_master m
    JOIN pragma_index_list(m.name) il
    JOIN pragma_index_xinfo(il.name) ix
    WHERE m.type = 'table' AND m.name NOT LIKE 'sqlite_%' AND ix.key = 1
"""

FOREIGN_KEYS_SQL = """
    SELECT
        m.name AS table_name,
        fk.id,
        fk.seq,
        fk."table" AS referenced_table,
        fk."from" AS column_name,
        fk."to" AS referenced_column,
        fk.on_update,
        fk.on_delete
    FROM sqlite_master m
    JOIN pragma_foreign_key_list(m.name) fk
    WHERE m.type = 'table' AND m.name NOT LIKE 'sqlite_%'
"""

# dbstat is only present when SQLite was built with SQLITE_ENABLE_DBSTAT_VTAB
SIZES_SQL = "SELECT name, SUM(pgsize) AS size_bytes FROM dbstat GROUP BY name"

STAT1_SQL = "SELECT tbl, stat FROM sqlite_stat1"

STAT1_EXISTS_SQL = "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_stat1'"

DATABASE_SIZE_SQL = """
    SELECT pc.page_count * ps.page_size AS size_bytes, pc.page_count, ps.page_size
    FROM pragma_page_count() pc, pragma_page_size() ps
"""

METADATA_SQL = "SELECT sqlite_version() AS version, e.encoding FROM pragma_encoding() e"


def _analyze_command(relation: Optional[str]) -> str:
    return f"ANALYZE {relation}" if relation else "ANALYZE"


class SQLiteAdapter(BaseAdapter):
    """SQLite adapter for a database file or a private in-memory database."""

    default_schema = "main"

    @property
    def capabilities(self) -> DatabaseCapabilities:
        """SQLite has no sequences, routines or server-side timeout."""
        return DatabaseCapabilities(
            foreign_keys=True,
            indexes=True,
            views=True,
            schemas=False,
            sequences=False,
            stored_procedures=False,
            triggers=True,
            check_constraints=True,
            explain_analyze=False,
            statement_timeout=False,
            read_only_transactions=True,
        )

    # ==================== Types ====================

    def map_column_type(self, native_type: str) -> CanonicalType:
        declared = native_type.strip().upper()
        # No declared type means BLOB affinity
        if not declared:
            return CanonicalType.BLOB
        for needles, canonical in SQLITE_TYPE_RULES:
            if any(needle in declared for needle in needles):
                return canonical
        return CanonicalType.UNKNOWN

    # ==================== Introspection ====================

    async def _introspect(self, conn: AsyncConnection) -> SchemaSnapshot:
        objects = _ObjectRow.from_rows(await self._fetch(conn, OBJECTS_SQL))
        column_rows = _ColumnRow.from_rows(await self._fetch(conn, COLUMNS_SQL))
        index_rows = _IndexRow.from_rows(await self._fetch(conn, INDEXES_SQL))
        foreign_key_rows = _ForeignKeyRow.from_rows(await self._fetch(conn, FOREIGN_KEYS_SQL))

        size_rows = _SizeRow.from_rows(
            await self._fetch_optional(conn, SIZES_SQL, what="dbstat sizes")
        )
        stat_rows = []
        if await self._has_stat1(conn):
            stat_rows = _StatRow.from_rows(
                await self._fetch_optional(conn, STAT1_SQL, what="sqlite_stat1 estimates")
            )
        database_size = await self._database_size(conn)
        metadata_rows = await self._fetch_optional(conn, METADATA_SQL, what="server metadata")

        ddl = {(row.type, row.name): row.sql for row in objects}
        sizes = {row.name: row.size_bytes for row in size_rows}
        estimates: dict[str, int] = {}
        for row in stat_rows:
            if row.row_estimate is not None:
                estimates[row.tbl] = max(estimates.get(row.tbl, 0), row.row_estimate)

        columns_by_table = group_rows(
            column_rows, key=lambda r: r.table_name, order_by=lambda r: r.cid
        )
        primary_keys = {
            table_name: [r.name for r in sorted(members, key=lambda r: r.pk) if r.pk > 0]
            for table_name, members in columns_by_table.items()
        }
        triggers = group_rows(
            [
                self._build_trigger(row)
                for row in objects
                if row.type == "trigger"
            ],
            key=lambda t: t.table,
        )
        indexes = group_rows(
            index_rows,
            key=lambda r: (r.table_name, r.index_name),
            order_by=lambda r: r.seqno,
        )
        foreign_keys = group_rows(
            foreign_key_rows,
            key=lambda r: (r.table_name, r.id),
            order_by=lambda r: r.seq,
        )

        tables = []
        for obj in objects:
            if obj.type != "table":
                continue
            name = obj.name
            pk_columns = primary_keys.get(name, [])
            index_groups = [
                (index_name, members)
                for (table_name, index_name), members in sorted(indexes.items())
                if table_name == name
            ]
            table_indexes = [
                self._build_index(index_name, members, ddl.get(("index", index_name)))
                for index_name, members in index_groups
            ]
            table_fks = [
                self._build_foreign_key(members, primary_keys)
                for (table_name, _), members in sorted(
                    foreign_keys.items(), key=lambda item: item[0][1]
                )
                if table_name == name
            ]

            size_bytes = sizes.get(name)
            row_count = await self._exact_count(
                conn,
                self._build_table_reference(name, None),
                size_bytes if size_bytes is not None else database_size,
            )
            if row_count is None:
                row_count = estimates.get(name)

            tables.append(
                TableInfo(
                    name=name,
                    schema=self.default_schema,
                    columns=[
                        self._build_column(row, pk_columns)
                        for row in columns_by_table.get(name, [])
                    ],
                    primary_key=PrimaryKeyInfo(columns=pk_columns) if pk_columns else None,
                    foreign_keys=table_fks,
                    unique_constraints=[
                        UniqueConstraintInfo(name=index.name, columns=index.column_names)
                        for index, (_, members) in zip(table_indexes, index_groups)
                        if members[0].origin == "u"
                    ],
                    check_constraints=extract_check_constraints(obj.sql),
                    indexes=table_indexes,
                    triggers=triggers.get(name, []),
                    row_count=row_count,
                    size_bytes=size_bytes,
                )
            )

        views = [
            ViewInfo(
                name=obj.name,
                schema=self.default_schema,
                definition=view_definition(obj.sql),
                columns=[
                    self._build_column(row, [])
                    for row in columns_by_table.get(obj.name, [])
                ],
            )
            for obj in objects
            if obj.type == "view"
        ]

        metadata = self._metadata(database=self.config.build_url().database or ":memory:")
        if metadata_rows:
            metadata = self._metadata(
                version=metadata_rows[0].version,
                database=self.config.build_url().database or ":memory:",
                character_set=metadata_rows[0].encoding,
            )

        return SchemaSnapshot(
            tables=tables,
            views=views,
            triggers=[trigger for group in triggers.values() for trigger in group],
            metadata=metadata,
        )

    async def _has_stat1(self, conn: AsyncConnection) -> bool:
        # sqlite_stat1 only exists once ANALYZE has been run
        rows = await self._fetch(conn, STAT1_EXISTS_SQL)
        return bool(rows)

    async def _database_size(self, conn: AsyncConnection) -> Optional[int]:
        rows = await self._fetch_optional(conn, DATABASE_SIZE_SQL, what="database size")
        return int(rows[0].size_bytes) if rows else None

    def _build_column(self, row: _ColumnRow, pk_columns: list[str]) -> ColumnInfo:
        # A lone INTEGER PRIMARY KEY aliases the rowid
        rowid_alias = pk_columns == [row.name] and row.type.strip().upper() == "INTEGER"
        return ColumnInfo(
            name=row.name,
            data_type=self.map_column_type(row.type),
            native_type=row.type,
            nullable=not row.notnull and not rowid_alias,
            default=row.dflt_value,
            auto_increment=rowid_alias,
        )

    def _build_index(
        self, name: str, members: list[_IndexRow], ddl: Optional[str]
    ) -> IndexInfo:
        head = members[0]
        return IndexInfo(
            name=name,
            columns=[
                IndexColumn(
                    # cid -2 is an expression, -1 the rowid
                    name=r.column_name or ("rowid" if r.cid == -1 else "(expression)"),
                    order=SortOrder.DESC if r.descending else SortOrder.ASC,
                )
                for r in members
            ],
            unique=head.is_unique,
            primary=head.origin == "pk",
            index_type="BTREE",
            condition=extract_index_predicate(ddl) if head.partial else None,
        )

    def _build_foreign_key(
        self, members: list[_ForeignKeyRow], primary_keys: dict[str, list[str]]
    ) -> ForeignKeyInfo:
        head = members[0]
        columns = [r.column_name for r in members]
        referenced = [r.referenced_column for r in members]
        if any(column is None for column in referenced):
            # REFERENCES parent without a column list targets the parent's primary key
            parent_key = primary_keys.get(head.referenced_table)
            if parent_key and len(parent_key) == len(columns):
                referenced = list(parent_key)
            elif len(columns) == 1:
                referenced = ["rowid"]
            else:
                referenced = list(columns)
        return ForeignKeyInfo(
            name=f"fk_{head.table_name}_{head.id}",
            columns=columns,
            referenced_schema=self.default_schema,
            referenced_table=head.referenced_table,
            referenced_columns=referenced,
            on_delete=ReferentialAction.parse(head.on_delete),
            on_update=ReferentialAction.parse(head.on_update),
        )

    def _build_trigger(self, row: _ObjectRow) -> TriggerInfo:
        timing, events = parse_trigger(row.sql)
        return TriggerInfo(
            name=row.name,
            table=row.tbl_name,
            schema=self.default_schema,
            timing=timing,
            events=events,
            for_each_row=True,
            definition=row.sql,
        )

    # ==================== Statistics ====================

    async def get_table_statistics(self, table_name: str) -> TableStatistics:
        """Get SQLite table statistics from dbstat, sqlite_stat1 and COUNT(*)."""
        schema, table = parse_table_name(table_name, self.default_schema)
        master = f"{self.quote(schema)}.sqlite_master" if schema else "sqlite_master"

        async with self.connection.get_connection() as conn:
            rows = await self._fetch(
                conn,
                f"SELECT name FROM {master} WHERE type = 'table' "
                f"AND name = :table_name COLLATE NOCASE",
                {"table_name": table},
            )
            if not rows:
                raise NotFoundError(f"Table {table_name} does not exist")
            table = rows[0].name

            index_rows = await self._fetch(
                conn,
                "SELECT name FROM pragma_index_list(:table_name)",
                {"table_name": table},
            )
            size_rows = await self._fetch_optional(
                conn,
                "SELECT SUM(pgsize) FROM dbstat WHERE name = :table_name",
                {"table_name": table},
                what="dbstat table size",
            )
            index_size_rows = await self._fetch_optional(
                conn,
                "SELECT SUM(d.pgsize) FROM dbstat d "
                "JOIN pragma_index_list(:table_name) il ON il.name = d.name",
                {"table_name": table},
                what="dbstat index size",
            )
            stat_rows = []
            if await self._has_stat1(conn):
                stat_rows = _StatRow.from_rows(
                    await self._fetch(
                        conn,
                        "SELECT tbl, stat FROM sqlite_stat1 WHERE tbl = :table_name",
                        {"table_name": table},
                    )
                )
            database_rows = await self._fetch_optional(
                conn, DATABASE_SIZE_SQL, what="database size"
            )

            table_size = size_rows[0][0] if size_rows else None
            index_size = index_size_rows[0][0] if index_size_rows else None
            database_size = int(database_rows[0].size_bytes) if database_rows else None

            exact = await self._exact_count(
                conn,
                self._build_table_reference(table, schema),
                table_size if table_size is not None else database_size,
            )
            await conn.rollback()

        estimates = [r.row_estimate for r in stat_rows if r.row_estimate is not None]
        extra_info: dict[str, Any] = {}
        if database_rows:
            extra_info["page_size"] = database_rows[0].page_size
            extra_info["page_count"] = database_rows[0].page_count

        return TableStatistics(
            table=table,
            schema=schema,
            row_count=exact if exact is not None else (max(estimates) if estimates else None),
            row_count_exact=exact is not None,
            table_size_bytes=table_size,
            index_size_bytes=index_size if index_rows else 0,
            total_size_bytes=(
                table_size + (index_size or 0) if table_size is not None else None
            ),
            index_count=len(index_rows),
            extra_info=extra_info,
        )

    # ==================== Plans ====================

    def create_advisor(self) -> PlanAdvisor:
        return PlanAdvisor(statistics_command=_analyze_command)

    def get_explain_query(self, query: str, analyze: bool) -> str:
        """SQLite only has EXPLAIN QUERY PLAN; analyze is measured by running the query."""
        return f"EXPLAIN QUERY PLAN {query}"

    def build_plan(self, rows: list[tuple], analyzed: bool) -> tuple[PlanNode, Any]:
        """Assemble the flat ``id/parent/detail`` rows under a synthetic root."""
        plan_rows = [
            _PlanRow(id=row[0], parent=row[1], notused=row[2], detail=str(row[3]))
            for row in rows
        ]
        raw = [row.model_dump() for row in plan_rows]

        children: dict[int, list[_PlanRow]] = {0: []}
        for row in plan_rows:
            # Parents always precede their children; anything else hangs off the root
            parent = row.parent if row.parent in children else 0
            children[parent].append(row)
            children.setdefault(row.id, [])

        def build(row: _PlanRow) -> PlanNode:
            return PlanNode(
                children=[build(child) for child in children.get(row.id, [])],
                **self._parse_detail(row.detail),
            )

        root = PlanNode(
            kind=PlanNodeKind.RESULT,
            node_type="QUERY PLAN",
            children=[build(row) for row in children[0]],
        )
        return root, raw

    def _parse_detail(self, detail: str) -> dict[str, Any]:
        detail = detail.strip()

        match = PLAN_SEARCH.match(detail)
        if match:
            how = match.group("how")
            return {
                "kind": PlanNodeKind.INDEX_SCAN,
                "node_type": "SEARCH",
                "relation": match.group("rel"),
                "alias": match.group("alias"),
                "index_name": match.group("idx") or how,
                "index_condition": match.group("cond"),
            }

        if PLAN_SUBQUERY.match(detail):
            return {"kind": PlanNodeKind.SUBQUERY, "node_type": detail}

        if detail == "SCAN CONSTANT ROW":
            return {"kind": PlanNodeKind.RESULT, "node_type": detail}

        match = PLAN_SCAN.match(detail)
        if match:
            return {
                "kind": PlanNodeKind.INDEX_SCAN if match.group("idx") else PlanNodeKind.SCAN,
                "node_type": "SCAN",
                "relation": match.group("rel"),
                "alias": match.group("alias"),
                "index_name": match.group("idx"),
            }

        match = PLAN_TEMP_BTREE.match(detail)
        if match:
            purpose = match.group("purpose")
            ordering = "ORDER BY" in purpose
            return {
                "kind": PlanNodeKind.SORT if ordering else PlanNodeKind.AGGREGATE,
                "node_type": detail,
                "uses_temporary": True,
            }

        if PLAN_MATERIALIZE.match(detail):
            return {"kind": PlanNodeKind.MATERIALIZE, "node_type": detail}

        return {"kind": PlanNodeKind.OTHER, "node_type": detail}
