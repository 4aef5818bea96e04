"""Tests for the fixpoint rewriter and its report."""

import json

import pytest

from sql_heuristics import (
    Dialect,
    MalformedQueryError,
    NoteKind,
    QueryRewriter,
    RewriterConfig,
    emit,
    get_rules,
    parse_query,
    rewrite_sql,
)
from sql_heuristics.equivalence import structurally_equivalent
from sql_heuristics.errors import NonConvergenceWarning

# One query that gives most rules something to do.
COMBINED_SQL = (
    "SELECT DISTINCT c.c_custkey, c.c_name, n.n_name "
    "FROM customer AS c, nation AS n, orders AS o "
    "WHERE c.c_nationkey = n.n_nationkey AND o.o_custkey = c.c_custkey "
    "AND o.o_orderkey = 12 "
    "AND n.n_name IN ('FRANCE', 'GERMANY') "
    "AND CAST(c.c_custkey AS BIGINT) = 2 "
    "AND o.o_totalprice > ANY (SELECT o2.o_totalprice FROM orders AS o2 WHERE o2.o_orderstatus = 'F')"
)

CORRELATED_SQL = (
    "SELECT s.s_name, ps.ps_supplycost FROM partsupp AS ps, supplier AS s "
    "WHERE ps.ps_suppkey = s.s_suppkey AND ps.ps_supplycost = "
    "(SELECT MIN(ps2.ps_supplycost) FROM partsupp AS ps2 WHERE ps2.ps_partkey = ps.ps_partkey)"
)


@pytest.fixture
def rewriter(tpch_catalog):
    return QueryRewriter(catalog=tpch_catalog)


def test_combined_query_fires_several_rules(rewriter, tpch_catalog):
    result = rewriter.rewrite(parse_query(COMBINED_SQL, catalog=tpch_catalog))
    fired = set(result.report.fired_rules)
    assert {"H3", "H4", "H5", "H7", "H8"} <= fired
    assert result.report.converged
    assert not result.query.distinct


def test_rewrite_is_idempotent(rewriter, tpch_catalog):
    for sql in (COMBINED_SQL, CORRELATED_SQL):
        once = rewriter.rewrite(parse_query(sql, catalog=tpch_catalog)).query
        again = rewriter.rewrite(once)
        assert again.report.firings == []
        assert again.query == once


@pytest.mark.parametrize("sql", [COMBINED_SQL, CORRELATED_SQL])
def test_result_does_not_depend_on_rule_order(tpch_catalog, sql):
    query = parse_query(sql, catalog=tpch_catalog)
    forward = QueryRewriter(catalog=tpch_catalog).rewrite(query).query
    backward = QueryRewriter(catalog=tpch_catalog, rules=reversed(get_rules())).rewrite(query).query
    assert structurally_equivalent(forward, backward)


@pytest.mark.parametrize("dialect", [Dialect.POSTGRES, Dialect.COMMERCIAL, Dialect.DUCKDB])
@pytest.mark.parametrize("sql", [COMBINED_SQL, CORRELATED_SQL])
def test_emitted_result_parses_back(tpch_catalog, sql, dialect):
    config = RewriterConfig(source_dialect=dialect)
    result = QueryRewriter(catalog=tpch_catalog, config=config).rewrite(
        parse_query(sql, dialect, tpch_catalog)
    )
    reparsed = parse_query(emit(result.query, dialect), dialect, tpch_catalog)
    assert structurally_equivalent(reparsed, result.query)


def test_unchanged_query_keeps_identity(rewriter, tpch_catalog):
    query = parse_query("SELECT n_name FROM nation WHERE n_nationkey = 3", catalog=tpch_catalog)
    result = rewriter.rewrite(query)
    assert result.query is query
    assert result.report.iterations == 1
    assert not result.report.changed


def test_iteration_cap_warns_and_returns_partial_result(tpch_catalog):
    rewriter = QueryRewriter(catalog=tpch_catalog, config=RewriterConfig(max_iterations=1))
    query = parse_query("SELECT * FROM nation WHERE n_name IN ('FRANCE', 'BRAZIL')", catalog=tpch_catalog)
    with pytest.warns(NonConvergenceWarning):
        result = rewriter.rewrite(query)
    assert not result.report.converged
    assert result.report.iterations == 1
    assert result.report.warnings
    assert "H8" in result.report.fired_rules


def test_rule_subset(tpch_catalog):
    rewriter = QueryRewriter(catalog=tpch_catalog, config=RewriterConfig(rules=["h5"]))
    query = parse_query(
        "SELECT DISTINCT c_custkey FROM customer WHERE c_name IN ('a', 'b')", catalog=tpch_catalog
    )
    result = rewriter.rewrite(query)
    assert result.report.fired_rules == ["H5"]


class TestInternallyOptimizedRules:
    SQL = "SELECT p_partkey FROM part WHERE p_size > ALL (SELECT p2.p_size FROM part AS p2)"

    def test_skipped_for_commercial_target(self, tpch_catalog):
        config = RewriterConfig(target_dialect="commercial", skip_internally_optimized=True)
        result = QueryRewriter(catalog=tpch_catalog, config=config).rewrite(
            parse_query(self.SQL, catalog=tpch_catalog)
        )
        assert result.report.firings == []
        skipped = {note.rule_id for note in result.report.notes_of(NoteKind.SKIPPED)}
        assert skipped == {"H2", "H3"}

    def test_applied_when_not_requested(self, tpch_catalog):
        config = RewriterConfig(target_dialect="commercial")
        result = QueryRewriter(catalog=tpch_catalog, config=config).rewrite(
            parse_query(self.SQL, catalog=tpch_catalog)
        )
        assert result.report.fired_rules == ["H2"]


class TestRewriteSql:
    def test_returns_rewritten_text(self, tpch_catalog):
        outcome = rewrite_sql(
            "SELECT DISTINCT c_custkey, c_name FROM customer", catalog=tpch_catalog
        )
        assert outcome.sql == "SELECT c_custkey, c_name FROM customer"
        assert outcome.changed

    def test_union_passes_through(self):
        sql = "SELECT a FROM t UNION SELECT a FROM s"
        outcome = rewrite_sql(sql)
        assert outcome.sql == sql
        assert outcome.query is None
        assert outcome.report.notes_of(NoteKind.UNSUPPORTED)

    def test_malformed_input_raises(self):
        with pytest.raises(MalformedQueryError):
            rewrite_sql("SELECT a FROM t WHERE (a = 1")

    def test_target_dialect_rendering(self):
        config = RewriterConfig(target_dialect="commercial")
        outcome = rewrite_sql("SELECT a FROM t ORDER BY a LIMIT 2", config=config)
        assert "TOP 2" in outcome.sql.upper()

    def test_transform_query(self, rewriter):
        sql = rewriter.transform_query("SELECT * FROM nation WHERE n_nationkey IN (1, 2)")
        assert sql == "SELECT * FROM nation WHERE n_nationkey = 1 OR n_nationkey = 2"


class TestReport:
    def test_to_dict_is_json_serializable(self, rewriter, tpch_catalog):
        result = rewriter.rewrite(parse_query(COMBINED_SQL, catalog=tpch_catalog))
        data = json.loads(json.dumps(result.report.to_dict()))
        assert data["converged"] is True
        assert {firing["rule"] for firing in data["firings"]} >= {"H3", "H8"}
        h8 = next(firing for firing in data["firings"] if firing["rule"] == "H8")
        assert "IN" in h8["before"] and "OR" in h8["after"]

    def test_summary_lists_firings_and_caveats(self, rewriter, tpch_catalog):
        result = rewriter.rewrite(parse_query(COMBINED_SQL, catalog=tpch_catalog))
        summary = result.report.summary()
        assert "[H8]" in summary
        assert "caveat:" in summary

    def test_declined_notes_are_not_duplicated(self, rewriter, tpch_catalog):
        result = rewriter.rewrite(parse_query("SELECT DISTINCT c_name FROM customer", catalog=tpch_catalog))
        reasons = [note.reason for note in result.report.notes_of(NoteKind.DECLINED)]
        assert len(reasons) == len(set(reasons)) == 1
