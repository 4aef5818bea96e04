"""Tests for rendering the Query IR as SQL text."""

import pytest
import sqlglot

from sql_heuristics import (
    Dialect,
    DialectUnsupportedFeatureError,
    emit,
    emit_fragment,
    get_profile,
    parse_query,
)
from sql_heuristics.emitter import unsupported_features
from sql_heuristics.equivalence import structurally_equivalent
from sql_heuristics.ir import (
    Column,
    Comparison,
    InList,
    Literal,
    Query,
    SelectItem,
    Table,
)


def _round_trip(sql: str, dialect: Dialect = Dialect.POSTGRES) -> None:
    query = parse_query(sql, dialect)
    emitted = emit(query, dialect)
    assert structurally_equivalent(parse_query(emitted, dialect), query), emitted


class TestRoundTrip:
    @pytest.mark.parametrize("dialect", [Dialect.POSTGRES, Dialect.DUCKDB])
    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT a, b AS bee FROM t WHERE a = 1 AND (b < 2 OR b > 5)",
            "SELECT DISTINCT t.a FROM t JOIN s ON t.a = s.a LEFT JOIN u ON u.c = s.c",
            "SELECT a, COUNT(*) AS n FROM t GROUP BY a HAVING COUNT(*) > 1 ORDER BY n DESC LIMIT 3",
            "SELECT a FROM t WHERE a > ALL (SELECT b FROM s) AND NOT c IN (1, 2)",
            "SELECT a FROM t WHERE EXISTS (SELECT 1 FROM s WHERE s.b = t.a) AND d IS NOT NULL",
            "WITH c AS (SELECT a FROM t) SELECT c.a FROM c WHERE c.a IN (SELECT b FROM s)",
            "SELECT a, ROW_NUMBER() OVER (PARTITION BY b ORDER BY c DESC) AS rn FROM t",
            "SELECT (a + b) * 2 AS x, CAST(c AS INTEGER) AS y FROM t ORDER BY 1",
            "SELECT a FROM t WHERE name LIKE '%green%' AND a = -3",
        ],
    )
    def test_parse_emit_parse(self, sql, dialect):
        _round_trip(sql, dialect)


class TestDialects:
    def test_mixed_case_identifier_is_quoted_for_postgres(self):
        query = Query(projection=(SelectItem(Column("MixedCase")),), source=Table("t"))
        assert emit(query, Dialect.POSTGRES) == 'SELECT "MixedCase" FROM t'

    def test_identify_quotes_everything(self):
        query = parse_query("SELECT a FROM t")
        assert emit(query, Dialect.POSTGRES, identify=True) == 'SELECT "a" FROM "t"'

    def test_identify_reaches_subquery_predicates(self):
        query = parse_query(
            "SELECT a FROM t WHERE a IN (SELECT b FROM s) AND EXISTS (SELECT 1 FROM u) "
            "AND a > ALL (SELECT c FROM v)"
        )
        emitted = emit(query, Dialect.POSTGRES, identify=True)
        assert '"a" IN (SELECT "b" FROM "s")' in emitted
        assert 'EXISTS(SELECT 1 FROM "u")' in emitted
        assert '"a" > ALL (SELECT "c" FROM "v")' in emitted

    def test_pretty_reaches_subquery_predicates(self):
        query = parse_query("SELECT a FROM t WHERE a IN (SELECT b FROM s WHERE s.c = 1)")
        emitted = emit(query, Dialect.POSTGRES, pretty=True)
        assert "SELECT b FROM s" not in emitted
        assert structurally_equivalent(parse_query(emitted), query)

    def test_cast_type_names_follow_target(self):
        query = parse_query("SELECT CAST(a AS DOUBLE PRECISION) AS d FROM t")
        assert query.projection[0].expr.to.name == "DOUBLE"
        assert "FLOAT" in emit(query, Dialect.COMMERCIAL).upper()
        assert "DOUBLE" in emit(query, Dialect.POSTGRES).upper()

    def test_limit_renders_as_top_for_commercial(self):
        query = parse_query("SELECT a FROM t ORDER BY a LIMIT 5")
        assert "TOP 5" in emit(query, Dialect.COMMERCIAL).upper()

    def test_window_functions_fail_closed_on_mysql57(self):
        query = parse_query("SELECT a, ROW_NUMBER() OVER (ORDER BY a) AS rn FROM t")
        assert unsupported_features(query, Dialect.MYSQL57) == ["window functions"]
        with pytest.raises(DialectUnsupportedFeatureError) as exc_info:
            emit(query, Dialect.MYSQL57)
        assert exc_info.value.feature == "window functions"

    def test_ctes_fail_closed_on_mysql57(self):
        query = parse_query("WITH c AS (SELECT a FROM t) SELECT c.a FROM c")
        with pytest.raises(DialectUnsupportedFeatureError):
            emit(query, Dialect.MYSQL57)

    def test_nested_with_rejected_for_commercial(self):
        query = parse_query(
            "SELECT a FROM t WHERE a IN (WITH c AS (SELECT b FROM s) SELECT c.b FROM c)"
        )
        assert unsupported_features(query, Dialect.COMMERCIAL) == ["WITH clauses inside subqueries"]
        assert unsupported_features(query, Dialect.POSTGRES) == []

    def test_output_parses_in_target_dialect(self):
        query = parse_query("SELECT a FROM t WHERE a IN (1, 2, 3) ORDER BY a DESC NULLS LAST")
        for dialect in Dialect:
            text = emit(query, dialect)
            assert sqlglot.parse_one(text, read=get_profile(dialect).sqlglot_dialect) is not None


class TestFragments:
    def test_predicate_fragment(self):
        predicate = InList(Column("n_name"), (Literal.string("FRANCE"), Literal.string("BRAZIL")))
        assert emit_fragment(predicate) == "n_name IN ('FRANCE', 'BRAZIL')"

    def test_comparison_fragment_keeps_padding(self):
        predicate = Comparison(Column("n_name"), "=", Literal.string("FRANCE".ljust(10)))
        assert emit_fragment(predicate) == "n_name = 'FRANCE    '"

    def test_or_inside_and_is_parenthesized(self):
        query = parse_query("SELECT a FROM t WHERE (a = 1 OR a = 2) AND b = 3")
        assert "(a = 1 OR a = 2) AND b = 3" in emit(query)
