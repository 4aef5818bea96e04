"""Tests for parsing SQL text into the Query IR."""

import pytest

from sql_heuristics import Dialect, MalformedQueryError, UnsupportedConstructError, parse_query
from sql_heuristics.ir import (
    Aggregate,
    Cast,
    Column,
    Comparison,
    DerivedTable,
    Exists,
    InList,
    InSubquery,
    IsNull,
    JoinKind,
    Literal,
    Not,
    OpaquePredicate,
    Or,
    Quantified,
    Quantifier,
    ScalarSubquery,
    Star,
    Table,
    conjuncts,
)


class TestClauses:
    def test_simple_select(self):
        query = parse_query("SELECT a, b AS bee FROM t WHERE a = 1")
        assert [item.output_name for item in query.projection] == ["a", "bee"]
        assert query.source == Table("t")
        assert query.where == Comparison(Column("a"), "=", Literal.number(1))

    def test_implicit_and_explicit_joins(self):
        query = parse_query(
            "SELECT * FROM r, s JOIN u ON s.b = u.c LEFT JOIN v ON v.d = u.c"
        )
        kinds = [edge.kind for edge in query.joins]
        assert kinds == [JoinKind.IMPLICIT, JoinKind.INNER, JoinKind.LEFT]
        assert query.joins[1].on == Comparison(Column("b", "s"), "=", Column("c", "u"))

    def test_table_alias(self):
        query = parse_query("SELECT o.o_orderkey FROM orders AS o")
        assert query.source == Table("orders", "o")
        assert query.source.reference == "o"

    def test_derived_table(self):
        query = parse_query("SELECT x.a FROM (SELECT a FROM t) AS x")
        assert isinstance(query.source, DerivedTable)
        assert query.source.alias == "x"

    def test_cte(self):
        query = parse_query("WITH c AS (SELECT a FROM t) SELECT c.a FROM c")
        assert [cte.name for cte in query.ctes] == ["c"]
        assert query.source == Table("c")

    def test_group_order_limit(self):
        query = parse_query(
            "SELECT a, COUNT(*) AS n FROM t GROUP BY 1 HAVING COUNT(*) > 2 ORDER BY n DESC LIMIT 5 OFFSET 10"
        )
        assert query.group_by == (Column("a"),)
        assert query.having == Comparison(Aggregate("COUNT", Star()), ">", Literal.number(2))
        assert query.order_by[0].descending
        assert query.limit == 5
        assert query.offset == 10

    def test_distinct(self):
        assert parse_query("SELECT DISTINCT a FROM t").distinct
        assert not parse_query("SELECT a FROM t").distinct

    def test_identifiers_fold_to_lower_case_in_postgres(self):
        query = parse_query('SELECT A, "MixedCase" FROM T')
        assert query.projection[0].expr == Column("a")
        assert query.projection[1].expr == Column("MixedCase")
        assert query.source == Table("t")

    def test_default_null_ordering_is_normalized(self):
        query = parse_query("SELECT a FROM t ORDER BY a ASC NULLS LAST, b DESC NULLS LAST")
        assert query.order_by[0].nulls_first is None
        assert query.order_by[1].nulls_first is False


class TestPredicates:
    def test_quantified_all(self):
        query = parse_query("SELECT a FROM t WHERE a > ALL (SELECT b FROM s)")
        assert isinstance(query.where, Quantified)
        assert query.where.quantifier is Quantifier.ALL
        assert query.where.op == ">"

    def test_quantified_any(self):
        query = parse_query("SELECT a FROM t WHERE a < ANY (SELECT b FROM s)")
        assert isinstance(query.where, Quantified)
        assert query.where.quantifier is Quantifier.ANY

    def test_in_list_and_subquery(self):
        query = parse_query("SELECT a FROM t WHERE a IN (1, 2) AND b IN (SELECT c FROM s)")
        in_list, in_subquery = conjuncts(query.where)
        assert in_list == InList(Column("a"), (Literal.number(1), Literal.number(2)))
        assert isinstance(in_subquery, InSubquery)

    def test_exists_and_not(self):
        query = parse_query("SELECT a FROM t WHERE NOT EXISTS (SELECT 1 FROM s WHERE s.b = t.a)")
        assert isinstance(query.where, Not)
        assert isinstance(query.where.this, Exists)

    def test_is_null(self):
        query = parse_query("SELECT a FROM t WHERE a IS NULL OR b IS NOT NULL")
        assert isinstance(query.where, Or)
        assert query.where.items == (IsNull(Column("a")), IsNull(Column("b"), negated=True))

    def test_cast_comparison(self):
        query = parse_query("SELECT a FROM t WHERE CAST(a AS BIGINT) = 5")
        assert isinstance(query.where.left, Cast)
        assert query.where.left.to.name == "BIGINT"
        assert query.where.is_function_wrapped

    def test_scalar_subquery(self):
        query = parse_query("SELECT a FROM t WHERE a = (SELECT MAX(b) FROM s)")
        assert isinstance(query.where.right, ScalarSubquery)

    def test_unknown_predicate_is_carried_opaquely(self):
        query = parse_query("SELECT a FROM t WHERE name LIKE '%green%'")
        assert isinstance(query.where, OpaquePredicate)
        assert "LIKE" in query.where.sql
        assert query.where.columns == (Column("name"),)


class TestErrors:
    def test_syntax_error_is_malformed(self):
        with pytest.raises(MalformedQueryError):
            parse_query("SELECT a FROM t WHERE (a = 1")

    def test_union_is_unsupported(self):
        with pytest.raises(UnsupportedConstructError):
            parse_query("SELECT a FROM t UNION SELECT a FROM s")

    def test_insert_is_unsupported(self):
        with pytest.raises(UnsupportedConstructError):
            parse_query("INSERT INTO t VALUES (1)")

    def test_multiple_statements_unsupported(self):
        with pytest.raises(UnsupportedConstructError):
            parse_query("SELECT 1; SELECT 2")

    def test_unknown_alias(self):
        with pytest.raises(MalformedQueryError, match="unknown relation"):
            parse_query("SELECT x.a FROM t")

    def test_unknown_column_with_catalog(self, tpch_catalog):
        with pytest.raises(MalformedQueryError, match="does not exist"):
            parse_query("SELECT n.n_bogus FROM nation AS n", catalog=tpch_catalog)

    def test_ambiguous_column_with_catalog(self, tpch_catalog):
        with pytest.raises(MalformedQueryError, match="ambiguous"):
            parse_query("SELECT o_custkey FROM orders, orders AS o2", catalog=tpch_catalog)

    def test_duplicate_relation_name(self):
        with pytest.raises(MalformedQueryError, match="more than once"):
            parse_query("SELECT * FROM t, t")

    def test_grouping_mismatch(self):
        with pytest.raises(MalformedQueryError):
            parse_query("SELECT a, COUNT(*) FROM t")

    def test_correlated_reference_resolves_in_outer_scope(self, tpch_catalog):
        query = parse_query(
            "SELECT c_name FROM customer AS c WHERE EXISTS "
            "(SELECT 1 FROM orders AS o WHERE o.o_custkey = c.c_custkey)",
            catalog=tpch_catalog,
        )
        assert isinstance(query.where, Exists)


def test_duckdb_dialect_parses():
    query = parse_query("SELECT a FROM t WHERE a = 1 LIMIT 3", Dialect.DUCKDB)
    assert query.limit == 3
