"""Static safety analysis of SQL text.

The analyzer is lexical: it matches patterns over the query text rather than
parsing it. Comments and string-literal contents are blanked out first so
structural checks do not fire on quoted text, while injection signatures are
matched against the raw text. It can still miss statements disguised through
dynamic SQL and flag unusual but harmless formatting.
"""

import re
from typing import Optional

from sql_whisperer_mcp.models.validation import (
    Complexity,
    Finding,
    QueryKind,
    QueryMeta,
    QueryVerdict,
    Severity,
)

FLAGS = re.IGNORECASE

KIND_KEYWORDS: dict[str, QueryKind] = {
    "SELECT": QueryKind.SELECT,
    "INSERT": QueryKind.INSERT,
    "REPLACE": QueryKind.INSERT,
    "UPDATE": QueryKind.UPDATE,
    "DELETE": QueryKind.DELETE,
    "CREATE": QueryKind.DDL,
    "ALTER": QueryKind.DDL,
    "DROP": QueryKind.DDL,
    "TRUNCATE": QueryKind.DDL,
    "RENAME": QueryKind.DDL,
    "BEGIN": QueryKind.TRANSACTION,
    "START": QueryKind.TRANSACTION,
    "COMMIT": QueryKind.TRANSACTION,
    "ROLLBACK": QueryKind.TRANSACTION,
    "SAVEPOINT": QueryKind.TRANSACTION,
    "RELEASE": QueryKind.TRANSACTION,
    "END": QueryKind.TRANSACTION,
}

MUTATION_KINDS = {QueryKind.INSERT, QueryKind.UPDATE, QueryKind.DELETE, QueryKind.DDL}

# Statements a CTE list can lead into
CTE_TARGETS = {"SELECT", "INSERT", "UPDATE", "DELETE", "REPLACE"}

DANGEROUS_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bDROP\s+TABLE\b", FLAGS), "DROP TABLE"),
    (re.compile(r"\bDROP\s+(?:DATABASE|SCHEMA)\b", FLAGS), "DROP DATABASE"),
    (re.compile(r"\bTRUNCATE\b", FLAGS), "TRUNCATE"),
    (re.compile(r"\bALTER\s+TABLE\b", FLAGS), "ALTER TABLE"),
    (re.compile(r"\bDROP\s+COLUMN\b", FLAGS), "DROP COLUMN"),
    (re.compile(r"\bEXEC(?:UTE)?\b", FLAGS), "EXECUTE"),
    (
        re.compile(r";\s*(DROP|DELETE|TRUNCATE|ALTER|UPDATE|INSERT)\b", FLAGS),
        "stacked statement",
    ),
]

INJECTION_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"'\s*OR\s+'?(\d+)'?\s*=\s*'?\1\b'?", FLAGS), "OR 1=1 pattern detected"),
    (
        re.compile(r"'\s*OR\s+'([a-z]+)'\s*=\s*'\1'", FLAGS),
        "OR 'x'='x' pattern detected",
    ),
    (re.compile(r"'\s*;.*--", FLAGS), "SQL comment injection pattern detected"),
    (re.compile(r"\bUNION\s+(?:ALL\s+)?SELECT\b", FLAGS), "UNION SELECT pattern detected"),
    (re.compile(r"'\s*\)\s*OR\s*\(", FLAGS), "Parentheses OR pattern detected"),
]

LEADING_WILDCARD = re.compile(r"\bI?LIKE\s+'%", FLAGS)
NOT_IN_SUBQUERY = re.compile(r"\bNOT\s+IN\s*\(\s*SELECT\b", FLAGS)
OR_PREDICATE = re.compile(r"\bOR\b", FLAGS)
FILTER_FUNCTION = re.compile(
    r"\b(?:LOWER|UPPER|SUBSTRING|SUBSTR|CONCAT|TRIM|CAST|COALESCE|DATE|YEAR|MONTH"
    r"|TO_CHAR|DATE_TRUNC|DATE_FORMAT|STRFTIME)\s*\(",
    FLAGS,
)

COMPLEXITY_WEIGHTS: list[tuple[re.Pattern, int]] = [
    (re.compile(r"\bJOIN\b", FLAGS), 2),
    (re.compile(r"\(\s*SELECT\b", FLAGS), 3),
    (re.compile(r"\b(?:UNION|INTERSECT|EXCEPT)\b", FLAGS), 2),
    (re.compile(r"\bGROUP\s+BY\b", FLAGS), 1),
    (re.compile(r"\bHAVING\b", FLAGS), 1),
    (re.compile(r"\bORDER\s+BY\b", FLAGS), 1),
    (re.compile(r"\bDISTINCT\b", FLAGS), 1),
    (re.compile(r"\bOVER\s*\(", FLAGS), 3),
    (
        re.compile(
            r"(?:\bWITH\s+(?:RECURSIVE\s+)?|,\s*)\w+\s*(?:\([^()]*\)\s*)?AS\s*"
            r"(?:(?:NOT\s+)?MATERIALIZED\s*)?\(",
            FLAGS,
        ),
        2,
    ),
]

# Keywords that end a FROM or WHERE clause
CLAUSE_END = re.compile(
    r"\b(?:WHERE|GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET|FETCH|UNION|INTERSECT"
    r"|EXCEPT|WINDOW|RETURNING|FOR\s+UPDATE|ON\s+CONFLICT|ON\s+DUPLICATE)\b",
    FLAGS,
)

IDENTIFIER = r"((?:[\w$]+|\"[^\"]+\"|`[^`]+`)(?:\.(?:[\w$]+|\"[^\"]+\"|`[^`]+`))*)"
FROM_TABLE = re.compile(r"\bFROM\s+" + IDENTIFIER, FLAGS)
JOIN_TABLE = re.compile(r"\bJOIN\s+" + IDENTIFIER, FLAGS)
INSERT_TABLE = re.compile(
    r"\b(?:INSERT|REPLACE)\s+(?:IGNORE\s+)?INTO\s+" + IDENTIFIER, FLAGS
)
UPDATE_TABLE = re.compile(r"UPDATE\s+(?:ONLY\s+)?" + IDENTIFIER, FLAGS)
DELETE_TABLE = re.compile(r"DELETE\s+FROM\s+(?:ONLY\s+)?" + IDENTIFIER, FLAGS)


def mask_sql(sql: str) -> str:
    """
    Blank out comments and string-literal contents, preserving offsets.

    Quote characters of string literals are kept so their position is still
    visible; quoted identifiers are left untouched. Newlines survive so
    line structure is unchanged.
    """
    out = list(sql)
    i = 0
    n = len(sql)

    def blank(start: int, end: int) -> None:
        for k in range(start, end):
            if out[k] != "\n":
                out[k] = " "

    while i < n:
        ch = sql[i]
        if ch == "-" and sql.startswith("--", i):
            end = sql.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
        elif ch == "#" and (i == 0 or sql[i - 1] in " \t\n;"):
            # MySQL line comment
            end = sql.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
        elif ch == "/" and sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            blank(i, end)
            i = end
        elif ch == "'":
            j = i + 1
            while j < n:
                if sql[j] == "\\" and j + 1 < n:
                    j += 2
                    continue
                if sql[j] == "'":
                    if j + 1 < n and sql[j + 1] == "'":
                        j += 2
                        continue
                    break
                j += 1
            blank(i + 1, min(j, n))
            i = j + 1
        elif ch == "$":
            match = re.match(r"\$([A-Za-z_]\w*)?\$", sql[i:])
            if match and (i == 0 or not (sql[i - 1].isalnum() or sql[i - 1] == "_")):
                tag = match.group(0)
                body_start = i + len(tag)
                end = sql.find(tag, body_start)
                end = n if end == -1 else end
                blank(body_start, end)
                i = end + len(tag)
            else:
                i += 1
        elif ch in ('"', "`"):
            end = sql.find(ch, i + 1)
            i = n if end == -1 else end + 1
        else:
            i += 1

    return "".join(out)


def _strip_parens(text: str) -> str:
    """Remove parenthesized groups (subqueries, function calls, column lists)."""
    out = []
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif depth == 0:
            out.append(ch)
    return "".join(out)


def _enclosing_parens(masked: str) -> list[int]:
    """For each offset, the offset of the innermost open parenthesis or -1."""
    enclosing = []
    stack: list[int] = []
    for index, ch in enumerate(masked):
        if ch == ")" and stack:
            stack.pop()
        enclosing.append(stack[-1] if stack else -1)
        if ch == "(":
            stack.append(index)
    return enclosing


def _clause_body(masked: str, start: int) -> str:
    """Text from ``start`` to the end of its clause at the same nesting level."""
    depth = 0
    for index in range(start, len(masked)):
        ch = masked[index]
        if ch == "(":
            depth += 1
        elif ch == ")":
            if depth == 0:
                return masked[start:index]
            depth -= 1
        elif ch == ";" and depth == 0:
            return masked[start:index]
        elif depth == 0 and (index == start or not masked[index - 1].isalnum()):
            if CLAUSE_END.match(masked, index):
                return masked[start:index]
    return masked[start:]


def _unquote(identifier: str) -> str:
    return ".".join(part.strip('"`') for part in identifier.split("."))


class QueryValidator:
    """Lexical safety analyzer producing a QueryVerdict.

    ``validate`` is pure and never raises; every outcome is expressed as
    findings on the verdict.
    """

    def validate(self, query: str) -> QueryVerdict:
        if not query or not query.strip():
            return QueryVerdict(
                is_valid=False,
                findings=[
                    Finding(
                        code="EMPTY_QUERY",
                        message="Query text is empty",
                        severity=Severity.ERROR,
                        suggestion="Provide a single SQL statement.",
                    )
                ],
                meta=QueryMeta(
                    query_type=QueryKind.OTHER,
                    is_mutation=False,
                    tables_accessed=[],
                    estimated_complexity=Complexity.LOW,
                    requires_confirmation=True,
                ),
            )

        masked = mask_sql(query)
        query_type, main_offset = self.detect_query_type(masked)
        is_mutation = query_type in MUTATION_KINDS
        findings: list[Finding] = []

        dangerous = self._detect_dangerous_operations(masked)
        findings.extend(dangerous)

        if is_mutation and query_type in (QueryKind.DELETE, QueryKind.UPDATE):
            if not re.search(r"\bWHERE\b", masked[main_offset:], FLAGS):
                findings.append(self._missing_where(query_type, main_offset))

        findings.extend(self._detect_select_star(masked))

        if query_type == QueryKind.SELECT and not re.search(
            r"\bLIMIT\b|\bFETCH\s+(?:FIRST|NEXT)\b", masked, FLAGS
        ):
            findings.append(
                Finding(
                    code="MISSING_LIMIT",
                    message="SELECT query without LIMIT may return large result sets",
                    severity=Severity.INFO,
                    suggestion="Consider adding LIMIT clause to control result size.",
                )
            )

        findings.extend(self._detect_cartesian_product(masked))
        findings.extend(self._detect_injection_patterns(query))
        findings.extend(self._detect_expensive_operations(query, masked))

        blocking = any(finding.is_blocking for finding in findings)
        meta = QueryMeta(
            query_type=query_type,
            is_mutation=is_mutation,
            tables_accessed=self.extract_table_names(masked, main_offset),
            estimated_complexity=self.estimate_complexity(masked),
            requires_confirmation=is_mutation or blocking,
        )
        return QueryVerdict(is_valid=not blocking, findings=findings, meta=meta)

    def detect_query_type(self, masked: str) -> tuple[QueryKind, int]:
        """
        Classify a statement by its leading keyword.

        ``WITH`` resolves to the statement that follows the CTE list.

        Returns:
            Tuple of (kind, offset of the deciding keyword)
        """
        match = re.match(r"[\s(]*([A-Za-z]+)", masked)
        if not match:
            return QueryKind.OTHER, 0

        keyword = match.group(1).upper()
        offset = match.start(1)

        if keyword == "WITH":
            depth = 0
            for token in re.finditer(r"[()]|[A-Za-z_]+", masked[match.end(1):]):
                text = token.group(0)
                if text == "(":
                    depth += 1
                elif text == ")":
                    depth -= 1
                elif depth == 0 and text.upper() in CTE_TARGETS:
                    return KIND_KEYWORDS[text.upper()], match.end(1) + token.start()
            return QueryKind.OTHER, offset

        return KIND_KEYWORDS.get(keyword, QueryKind.OTHER), offset

    def _detect_dangerous_operations(self, masked: str) -> list[Finding]:
        findings = []
        for pattern, name in DANGEROUS_PATTERNS:
            for match in pattern.finditer(masked):
                label = name
                if name == "stacked statement":
                    label = f"stacked statement ({match.group(1).upper()})"
                findings.append(
                    Finding(
                        code="DANGEROUS_OPERATION",
                        message=f"Dangerous operation detected: {label}",
                        severity=Severity.CRITICAL,
                        suggestion="Review this operation carefully before executing.",
                        position=match.start(),
                    )
                )
                break
        return findings

    def _missing_where(self, query_type: QueryKind, offset: int) -> Finding:
        if query_type == QueryKind.DELETE:
            return Finding(
                code="DELETE_WITHOUT_WHERE",
                message="DELETE statement without WHERE clause will remove all rows",
                severity=Severity.CRITICAL,
                suggestion="Add a WHERE clause to limit the deletion scope.",
                position=offset,
            )
        return Finding(
            code="UPDATE_WITHOUT_WHERE",
            message="UPDATE statement without WHERE clause will modify all rows",
            severity=Severity.WARNING,
            suggestion="Add a WHERE clause to limit the update scope.",
            position=offset,
        )

    def _detect_select_star(self, masked: str) -> list[Finding]:
        match = re.search(r"\bSELECT\s+(?:ALL\s+|DISTINCT\s+)?\*", masked, FLAGS)
        if not match:
            return []
        return [
            Finding(
                code="SELECT_STAR",
                message="Using SELECT * may retrieve unnecessary columns",
                severity=Severity.INFO,
                suggestion="Specify only the columns you need for better performance.",
                position=match.start(),
            )
        ]

    def _detect_cartesian_product(self, masked: str) -> list[Finding]:
        """Flag comma-separated sources with no WHERE clause to join them."""
        findings = []
        for match in re.finditer(r"\bFROM\b", masked, FLAGS):
            body = _clause_body(masked, match.end())
            sources = [s for s in _strip_parens(body).split(",") if s.strip()]
            if len(sources) < 2 or re.search(r"\bJOIN\b", body, FLAGS):
                continue
            after = masked[match.end() + len(body):]
            if re.match(r"\s*WHERE\b", after, FLAGS):
                continue
            findings.append(
                Finding(
                    code="CARTESIAN_PRODUCT",
                    message="Query may produce cartesian product",
                    severity=Severity.WARNING,
                    suggestion="Ensure proper JOIN conditions between tables.",
                    position=match.start(),
                )
            )
        return findings

    def _detect_injection_patterns(self, query: str) -> list[Finding]:
        findings = []
        for pattern, message in INJECTION_PATTERNS:
            match = pattern.search(query)
            if match:
                findings.append(
                    Finding(
                        code="POTENTIAL_INJECTION",
                        message=message,
                        severity=Severity.WARNING,
                        suggestion="Use parameterized queries to prevent SQL injection.",
                        position=match.start(),
                    )
                )
        return findings

    def _detect_expensive_operations(self, query: str, masked: str) -> list[Finding]:
        detected: list[tuple[str, Optional[int]]] = []

        match = LEADING_WILDCARD.search(query)
        if match:
            detected.append(("LIKE with leading wildcard", match.start()))

        match = NOT_IN_SUBQUERY.search(masked)
        if match:
            detected.append(("NOT IN subquery", match.start()))

        or_matches = list(OR_PREDICATE.finditer(masked))
        if len(or_matches) >= 3:
            detected.append(("Multiple OR conditions", or_matches[0].start()))

        for where in re.finditer(r"\bWHERE\b", masked, FLAGS):
            body = _clause_body(masked, where.end())
            if len(FILTER_FUNCTION.findall(body)) >= 2:
                detected.append(("Function on column in filter", where.start()))
                break

        return [
            Finding(
                code="EXPENSIVE_OPERATION",
                message=f"Potentially expensive operation detected: {name}",
                severity=Severity.WARNING,
                suggestion="This operation may impact performance on large tables.",
                position=position,
            )
            for name, position in detected
        ]

    def extract_table_names(self, masked: str, main_offset: int = 0) -> list[str]:
        """
        Extract referenced table names in first-seen order.

        FROM inside a function call (``EXTRACT(YEAR FROM ts)``) is ignored;
        UPDATE and DELETE targets are only read at the statement keyword.
        """
        enclosing = _enclosing_parens(masked)
        found: list[tuple[int, str]] = []

        for match in FROM_TABLE.finditer(masked):
            paren = enclosing[match.start()]
            if paren >= 0 and not re.match(r"\(\s*SELECT\b", masked[paren:], FLAGS):
                continue
            found.append((match.start(1), match.group(1)))
            body = _strip_parens(_clause_body(masked, match.end(1)))
            for extra in body.split(",")[1:]:
                name = re.match(r"\s*" + IDENTIFIER, extra)
                if name:
                    found.append((match.end(1), name.group(1)))

        for pattern in (JOIN_TABLE, INSERT_TABLE):
            for match in pattern.finditer(masked):
                found.append((match.start(1), match.group(1)))

        for pattern in (UPDATE_TABLE, DELETE_TABLE):
            match = pattern.match(masked, main_offset)
            if match:
                found.append((match.start(1), match.group(1)))

        tables: list[str] = []
        for _, name in sorted(found, key=lambda item: item[0]):
            name = _unquote(name)
            if name.upper() in ("SELECT", "LATERAL", "ONLY", "UNNEST"):
                continue
            if name not in tables:
                tables.append(name)
        return tables

    def estimate_complexity(self, masked: str) -> Complexity:
        score = 0
        for pattern, weight in COMPLEXITY_WEIGHTS:
            score += len(pattern.findall(masked)) * weight
        if score <= 2:
            return Complexity.LOW
        if score <= 6:
            return Complexity.MEDIUM
        return Complexity.HIGH


def validate_query(query: str) -> QueryVerdict:
    """Analyze one query with a default validator."""
    return QueryValidator().validate(query)
