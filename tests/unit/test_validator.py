"""Unit Tests for QueryValidator

Tests the lexical safety analyzer without a database:
- Statement classification and confirmation rules
- Dangerous operations and missing WHERE clauses
- Injection signatures and expensive constructs
- Table extraction and complexity tiers
- Masking of comments and string literals
"""

import pytest

from sql_whisperer_mcp.core.validator import QueryValidator, mask_sql, validate_query
from sql_whisperer_mcp.models.validation import Complexity, QueryKind, Severity


@pytest.fixture
def validator() -> QueryValidator:
    return QueryValidator()


class TestQueryClassification:
    """Test statement type detection."""

    @pytest.mark.parametrize(
        "query, kind",
        [
            ("SELECT 1", QueryKind.SELECT),
            ("  select id from users limit 1", QueryKind.SELECT),
            ("(SELECT id FROM users) LIMIT 5", QueryKind.SELECT),
            ("INSERT INTO users (id) VALUES (1)", QueryKind.INSERT),
            ("REPLACE INTO users (id) VALUES (1)", QueryKind.INSERT),
            ("UPDATE users SET name = 'x' WHERE id = 1", QueryKind.UPDATE),
            ("DELETE FROM users WHERE id = 1", QueryKind.DELETE),
            ("CREATE TABLE t (id INT)", QueryKind.DDL),
            ("BEGIN", QueryKind.TRANSACTION),
            ("COMMIT", QueryKind.TRANSACTION),
            ("VACUUM", QueryKind.OTHER),
        ],
    )
    def test_query_type(self, validator: QueryValidator, query: str, kind: QueryKind):
        """Test that the leading keyword decides the statement type."""
        assert validator.validate(query).meta.query_type == kind

    def test_cte_resolves_to_following_statement(self, validator: QueryValidator):
        """Test that WITH ... DELETE is classified as DELETE, not SELECT."""
        verdict = validator.validate(
            "WITH stale AS (SELECT id FROM sessions WHERE expires_at < now()) "
            "DELETE FROM sessions WHERE id IN (SELECT id FROM stale)"
        )

        assert verdict.meta.query_type == QueryKind.DELETE
        assert verdict.meta.is_mutation is True
        assert verdict.meta.requires_confirmation is True

    def test_cte_select(self, validator: QueryValidator):
        """Test that a CTE feeding a SELECT stays a read."""
        verdict = validator.validate(
            "WITH recent AS (SELECT id FROM orders) SELECT id FROM recent LIMIT 10"
        )

        assert verdict.meta.query_type == QueryKind.SELECT
        assert verdict.meta.is_mutation is False

    def test_mutations_require_confirmation(self, validator: QueryValidator):
        """Test that valid mutations still require confirmation."""
        verdict = validator.validate("INSERT INTO users (id) VALUES (1)")

        assert verdict.is_valid is True
        assert verdict.meta.is_mutation is True
        assert verdict.meta.requires_confirmation is True

    def test_plain_select_needs_no_confirmation(self, validator: QueryValidator):
        """Test that a bounded SELECT is valid and needs no confirmation."""
        verdict = validator.validate("SELECT id, email FROM users WHERE id = 1 LIMIT 1")

        assert verdict.is_valid is True
        assert verdict.findings == []
        assert verdict.meta.requires_confirmation is False

    def test_empty_query(self, validator: QueryValidator):
        """Test that blank input is reported, not raised."""
        verdict = validator.validate("   ")

        assert verdict.is_valid is False
        assert verdict.codes == ["EMPTY_QUERY"]


class TestDangerousOperations:
    """Test detection of destructive statements."""

    @pytest.mark.parametrize(
        "query",
        [
            "DROP TABLE users",
            "drop database prod",
            "TRUNCATE orders",
            "ALTER TABLE users ADD COLUMN age INT",
            "EXEC sp_who",
        ],
    )
    def test_dangerous_statement_is_critical(self, validator: QueryValidator, query: str):
        """Test that destructive statements are critical findings."""
        verdict = validator.validate(query)

        assert verdict.is_valid is False
        assert "DANGEROUS_OPERATION" in verdict.codes
        assert all(f.severity == Severity.CRITICAL for f in verdict.errors)
        assert verdict.meta.requires_confirmation is True

    def test_stacked_statement(self, validator: QueryValidator):
        """Test that a second destructive statement after ';' is flagged."""
        verdict = validator.validate("SELECT 1; DELETE FROM users")

        messages = [f.message for f in verdict.findings]
        assert verdict.is_valid is False
        assert any("stacked statement (DELETE)" in m for m in messages)

    def test_delete_without_where(self, validator: QueryValidator):
        """Test that an unbounded DELETE is critical."""
        verdict = validator.validate("DELETE FROM users")

        assert verdict.is_valid is False
        finding = next(f for f in verdict.findings if f.code == "DELETE_WITHOUT_WHERE")
        assert finding.severity == Severity.CRITICAL
        assert finding.position == 0

    def test_update_without_where_is_warning(self, validator: QueryValidator):
        """Test that an unbounded UPDATE is a warning but still needs confirmation."""
        verdict = validator.validate("UPDATE users SET active = 0")

        assert verdict.is_valid is True
        finding = next(f for f in verdict.findings if f.code == "UPDATE_WITHOUT_WHERE")
        assert finding.severity == Severity.WARNING
        assert verdict.meta.requires_confirmation is True

    def test_unbounded_update_has_single_warning(self, validator: QueryValidator):
        """Test that an UPDATE over every row yields exactly one missing-WHERE warning."""
        verdict = validator.validate("UPDATE users SET active=false")

        assert [f.code for f in verdict.warnings] == ["UPDATE_WITHOUT_WHERE"]
        assert verdict.meta.is_mutation is True

    def test_colons_and_comment_markers_in_literals(self, validator: QueryValidator):
        """Test that placeholder and comment lookalikes inside literals raise nothing."""
        verdict = validator.validate(
            """SELECT id FROM users WHERE note = 'at 10:30 -- see :id' """
            """AND meta = '{"a":1}' LIMIT 5"""
        )

        assert verdict.is_valid is True
        assert verdict.findings == []
        assert verdict.meta.tables_accessed == ["users"]

    def test_keywords_inside_strings_are_ignored(self, validator: QueryValidator):
        """Test that DROP TABLE inside a literal or comment is not flagged."""
        verdict = validator.validate(
            "SELECT id FROM audit WHERE action = 'DROP TABLE users' -- TRUNCATE\nLIMIT 5"
        )

        assert "DANGEROUS_OPERATION" not in verdict.codes
        assert verdict.is_valid is True

    def test_where_in_comment_does_not_count(self, validator: QueryValidator):
        """Test that a WHERE inside a comment does not bound a DELETE."""
        verdict = validator.validate("DELETE FROM users /* WHERE id = 1 */")

        assert "DELETE_WITHOUT_WHERE" in verdict.codes


class TestPerformanceFindings:
    """Test advisory findings about query shape."""

    def test_select_star_and_missing_limit(self, validator: QueryValidator):
        """Test informational findings on an unbounded SELECT *."""
        verdict = validator.validate("SELECT * FROM users")

        assert verdict.is_valid is True
        assert "SELECT_STAR" in verdict.codes
        assert "MISSING_LIMIT" in verdict.codes
        assert all(f.severity == Severity.INFO for f in verdict.findings)

    def test_fetch_first_counts_as_limit(self, validator: QueryValidator):
        """Test that FETCH FIRST satisfies the row limit check."""
        verdict = validator.validate("SELECT id FROM users FETCH FIRST 10 ROWS ONLY")

        assert "MISSING_LIMIT" not in verdict.codes

    def test_cartesian_product(self, validator: QueryValidator):
        """Test that comma joins without WHERE are flagged."""
        verdict = validator.validate("SELECT u.id, o.id FROM users u, orders o LIMIT 5")

        assert "CARTESIAN_PRODUCT" in verdict.codes

    def test_comma_join_with_where_is_not_cartesian(self, validator: QueryValidator):
        """Test that a WHERE clause after comma-joined sources suppresses the finding."""
        verdict = validator.validate(
            "SELECT u.id FROM users u, orders o WHERE o.user_id = u.id LIMIT 5"
        )

        assert "CARTESIAN_PRODUCT" not in verdict.codes

    def test_function_arguments_are_not_sources(self, validator: QueryValidator):
        """Test that commas inside function calls do not look like joined tables."""
        verdict = validator.validate("SELECT id FROM generate_series(1, 10) AS g(id) LIMIT 5")

        assert "CARTESIAN_PRODUCT" not in verdict.codes

    def test_leading_wildcard(self, validator: QueryValidator):
        """Test that LIKE '%...' is flagged as expensive."""
        verdict = validator.validate("SELECT id FROM users WHERE email LIKE '%@example.com' LIMIT 5")

        messages = [f.message for f in verdict.findings if f.code == "EXPENSIVE_OPERATION"]
        assert any("leading wildcard" in m for m in messages)

    def test_not_in_subquery(self, validator: QueryValidator):
        """Test that NOT IN (SELECT ...) is flagged as expensive."""
        verdict = validator.validate(
            "SELECT id FROM users WHERE id NOT IN (SELECT user_id FROM orders) LIMIT 5"
        )

        messages = [f.message for f in verdict.findings if f.code == "EXPENSIVE_OPERATION"]
        assert any("NOT IN subquery" in m for m in messages)

    def test_many_or_conditions(self, validator: QueryValidator):
        """Test that three or more OR predicates are flagged."""
        verdict = validator.validate(
            "SELECT id FROM users WHERE a = 1 OR b = 2 OR c = 3 OR d = 4 LIMIT 5"
        )

        messages = [f.message for f in verdict.findings if f.code == "EXPENSIVE_OPERATION"]
        assert any("Multiple OR" in m for m in messages)

    def test_functions_in_filter(self, validator: QueryValidator):
        """Test that functions wrapping filtered columns are flagged."""
        verdict = validator.validate(
            "SELECT id FROM users WHERE LOWER(email) = 'a' AND UPPER(name) = 'B' LIMIT 5"
        )

        messages = [f.message for f in verdict.findings if f.code == "EXPENSIVE_OPERATION"]
        assert any("Function on column" in m for m in messages)


class TestInjectionPatterns:
    """Test detection of common injection signatures."""

    @pytest.mark.parametrize(
        "query, message",
        [
            ("SELECT id FROM users WHERE name = '' OR 1=1 LIMIT 1", "OR 1=1"),
            ("SELECT id FROM users WHERE name = '' OR 'a'='a' LIMIT 1", "OR 'x'='x'"),
            ("SELECT id FROM users WHERE name = 'x'; -- LIMIT 1", "comment injection"),
            ("SELECT id FROM users UNION SELECT password FROM admins LIMIT 1", "UNION SELECT"),
            ("SELECT 1 UNION SELECT username FROM admin -- ", "UNION SELECT"),
        ],
    )
    def test_injection_signature(self, validator: QueryValidator, query: str, message: str):
        """Test that injection signatures are reported as warnings."""
        verdict = validator.validate(query)

        injections = [f for f in verdict.findings if f.code == "POTENTIAL_INJECTION"]
        assert injections
        assert any(message in f.message for f in injections)
        assert all(f.severity == Severity.WARNING for f in injections)

    def test_unequal_literals_are_not_tautologies(self, validator: QueryValidator):
        """Test that OR 1=2 is not mistaken for OR 1=1."""
        verdict = validator.validate("SELECT id FROM users WHERE name = '' OR 1=2 LIMIT 1")

        assert "POTENTIAL_INJECTION" not in verdict.codes


class TestTableExtraction:
    """Test extraction of referenced tables."""

    def test_from_and_join(self, validator: QueryValidator):
        """Test tables from FROM and JOIN clauses in first-seen order."""
        verdict = validator.validate(
            "SELECT u.id FROM users u JOIN orders o ON o.user_id = u.id "
            "LEFT JOIN public.payments p ON p.order_id = o.id LIMIT 5"
        )

        assert verdict.meta.tables_accessed == ["users", "orders", "public.payments"]

    def test_comma_separated_sources(self, validator: QueryValidator):
        """Test every table in a comma-separated FROM list is reported."""
        verdict = validator.validate(
            "SELECT 1 FROM users u, orders o WHERE u.id = o.user_id LIMIT 1"
        )

        assert verdict.meta.tables_accessed == ["users", "orders"]

    def test_quoted_identifiers(self, validator: QueryValidator):
        """Test that identifier quotes are stripped."""
        verdict = validator.validate('SELECT 1 FROM "Sales"."Order Items" LIMIT 1')

        assert verdict.meta.tables_accessed == ["Sales.Order Items"]

    def test_mutation_targets(self, validator: QueryValidator):
        """Test INSERT, UPDATE and DELETE targets."""
        assert validator.validate("INSERT INTO audit (id) VALUES (1)").meta.tables_accessed == [
            "audit"
        ]
        assert validator.validate("UPDATE users SET a = 1 WHERE id = 2").meta.tables_accessed == [
            "users"
        ]
        assert validator.validate("DELETE FROM users WHERE id = 2").meta.tables_accessed == [
            "users"
        ]

    def test_extract_from_is_not_a_table(self, validator: QueryValidator):
        """Test that FROM inside EXTRACT() is ignored."""
        verdict = validator.validate(
            "SELECT EXTRACT(YEAR FROM created_at) FROM orders LIMIT 1"
        )

        assert verdict.meta.tables_accessed == ["orders"]

    def test_subquery_tables(self, validator: QueryValidator):
        """Test that tables read inside a subquery are reported."""
        verdict = validator.validate(
            "SELECT id FROM users WHERE id IN (SELECT user_id FROM orders) LIMIT 5"
        )

        assert verdict.meta.tables_accessed == ["users", "orders"]


class TestComplexity:
    """Test the structural complexity tiers."""

    def test_low(self, validator: QueryValidator):
        assert validator.validate("SELECT id FROM users LIMIT 1").meta.estimated_complexity == (
            Complexity.LOW
        )

    def test_medium(self, validator: QueryValidator):
        verdict = validator.validate(
            "SELECT u.id, COUNT(*) FROM users u JOIN orders o ON o.user_id = u.id "
            "GROUP BY u.id ORDER BY u.id LIMIT 5"
        )

        assert verdict.meta.estimated_complexity == Complexity.MEDIUM

    def test_high(self, validator: QueryValidator):
        verdict = validator.validate(
            "WITH t AS (SELECT user_id FROM orders) "
            "SELECT DISTINCT u.id, ROW_NUMBER() OVER (ORDER BY u.id) FROM users u "
            "JOIN t ON t.user_id = u.id JOIN payments p ON p.user_id = u.id "
            "WHERE u.id IN (SELECT id FROM admins) LIMIT 5"
        )

        assert verdict.meta.estimated_complexity == Complexity.HIGH


class TestMasking:
    """Test comment and literal masking."""

    def test_offsets_are_preserved(self):
        """Test that masking keeps the text length and line structure."""
        sql = "SELECT 'a;b' -- note\nFROM t /* x */"
        masked = mask_sql(sql)

        assert len(masked) == len(sql)
        assert masked.count("\n") == 1
        assert "a;b" not in masked
        assert "note" not in masked
        assert "x" not in masked[masked.index("FROM"):]

    def test_escaped_quotes(self):
        """Test doubled and backslash-escaped quotes stay inside the literal."""
        masked = mask_sql("SELECT 'it''s', 'a\\'b' FROM t")

        assert masked.endswith("FROM t")
        assert "s" not in masked[: masked.index("FROM")].replace("SELECT", "")

    def test_dollar_quoted_body(self):
        """Test that PostgreSQL dollar-quoted bodies are masked."""
        masked = mask_sql("SELECT $$DROP TABLE x$$")

        assert "DROP" not in masked

    def test_quoted_identifiers_are_kept(self):
        """Test that double-quoted and backtick identifiers are not masked."""
        masked = mask_sql('SELECT "col" FROM `tbl`')

        assert masked == 'SELECT "col" FROM `tbl`'

    def test_module_level_helper(self):
        """Test the convenience function matches the class."""
        assert validate_query("SELECT 1").meta.query_type == QueryKind.SELECT
