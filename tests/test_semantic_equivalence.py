"""Run original and rewritten queries on DuckDB and compare their results."""

import pytest

from sql_heuristics import RewriterConfig, rewrite_sql
from sql_heuristics.equivalence import compare_results

DUCKDB = RewriterConfig(target_dialect="duckdb")

CASES = [
    pytest.param(
        "H1",
        "SELECT c_custkey, c_name, n_name, r_name FROM customer, nation, region "
        "WHERE c_nationkey = n_nationkey AND n_regionkey = r_regionkey "
        "GROUP BY c_custkey, c_name, n_name, r_name",
        id="redundant-group-by",
    ),
    pytest.param(
        "H2",
        "SELECT o_orderkey FROM orders WHERE o_totalprice > ALL "
        "(SELECT o2.o_totalprice FROM orders AS o2 WHERE o2.o_custkey = 1)",
        id="all-to-max",
    ),
    pytest.param(
        "H3",
        "SELECT o_orderkey FROM orders WHERE o_totalprice < ANY "
        "(SELECT o2.o_totalprice FROM orders AS o2 WHERE o2.o_custkey = 4)",
        id="any-to-max",
    ),
    pytest.param(
        "H3",
        "SELECT o_orderkey FROM orders WHERE o_totalprice < ANY "
        "(SELECT o2.o_totalprice FROM orders AS o2 WHERE o2.o_custkey = 999)",
        id="any-empty-subquery",
    ),
    pytest.param(
        "H4",
        "SELECT o_orderkey FROM orders WHERE CAST(o_custkey AS BIGINT) = 4",
        id="cast-integer-widening",
    ),
    pytest.param(
        "H4",
        "SELECT o_orderkey FROM orders WHERE CAST(o_orderdate AS TIMESTAMP) >= '1995-03-15 00:00:00'",
        id="cast-date-timestamp",
    ),
    pytest.param(
        "H5",
        "SELECT DISTINCT o.o_orderkey, c.c_name FROM orders AS o, customer AS c "
        "WHERE o.o_custkey = c.c_custkey",
        id="redundant-distinct",
    ),
    pytest.param(
        "H6",
        "SELECT s.s_name, ps.ps_partkey, ps.ps_supplycost FROM partsupp AS ps, supplier AS s "
        "WHERE ps.ps_suppkey = s.s_suppkey AND ps.ps_supplycost = "
        "(SELECT MIN(ps2.ps_supplycost) FROM partsupp AS ps2 WHERE ps2.ps_partkey = ps.ps_partkey)",
        id="correlated-min",
    ),
    pytest.param(
        "H6",
        "SELECT p.p_partkey, ps.ps_suppkey FROM part AS p, partsupp AS ps "
        "WHERE p.p_partkey = ps.ps_partkey AND ps.ps_availqty = "
        "(SELECT MAX(ps2.ps_availqty) FROM partsupp AS ps2 "
        "WHERE ps2.ps_partkey = p.p_partkey AND ps2.ps_suppkey <> 1)",
        id="correlated-max-with-filter",
    ),
    pytest.param(
        "H7",
        "SELECT c.c_name, o.o_orderkey FROM customer AS c, orders AS o "
        "WHERE c.c_custkey = o.o_custkey AND c.c_custkey = 4",
        id="transitive-filter",
    ),
    pytest.param(
        "H8",
        "SELECT n_nationkey FROM nation WHERE n_name IN ('GERMANY', 'FRANCE', 'BRAZIL')",
        id="in-list-to-or",
    ),
]


@pytest.mark.parametrize("rule_id,sql", CASES)
def test_rewrite_preserves_results(tpch_conn, tpch_catalog, rule_id, sql):
    outcome = rewrite_sql(sql, catalog=tpch_catalog, config=DUCKDB)
    assert rule_id in outcome.report.fired_rules
    same, message = compare_results(tpch_conn, sql, outcome.sql)
    assert same, f"{message}\n{outcome.sql}"


def test_combined_rewrite_preserves_results(tpch_conn, tpch_catalog):
    sql = (
        "SELECT DISTINCT c.c_custkey, c.c_name, n.n_name "
        "FROM customer AS c, nation AS n, orders AS o "
        "WHERE c.c_nationkey = n.n_nationkey AND o.o_custkey = c.c_custkey "
        "AND n.n_name IN ('FRANCE', 'GERMANY') "
        "AND CAST(o.o_orderkey AS BIGINT) = 14"
    )
    outcome = rewrite_sql(sql, catalog=tpch_catalog, config=DUCKDB)
    assert {"H4", "H5", "H8"} <= set(outcome.report.fired_rules)
    same, message = compare_results(tpch_conn, sql, outcome.sql)
    assert same, message


def test_all_over_empty_subquery_differs(tpch_conn, tpch_catalog):
    """ALL over no rows is TRUE; the MAX comparison is NULL. The caveat covers this."""
    sql = (
        "SELECT o_orderkey FROM orders WHERE o_totalprice > ALL "
        "(SELECT o2.o_totalprice FROM orders AS o2 WHERE o2.o_custkey = 999)"
    )
    outcome = rewrite_sql(sql, catalog=tpch_catalog, config=DUCKDB)
    assert outcome.report.fired_rules == ["H2"]
    assert outcome.report.firings[0].caveat

    original = tpch_conn.execute(sql).fetchall()
    rewritten = tpch_conn.execute(outcome.sql).fetchall()
    assert len(original) == 6
    assert rewritten == []


def test_padded_literals_keep_char_semantics_on_blank_padding_target(tpch_catalog):
    outcome = rewrite_sql(
        "SELECT n_nationkey FROM nation WHERE n_name IN ('FRANCE', 'BRAZIL')", catalog=tpch_catalog
    )
    assert f"'{'FRANCE'.ljust(25)}'" in outcome.sql


def test_all_over_outer_joined_subquery_is_left_alone(tpch_conn, tpch_catalog):
    """Customer 5 has no orders, so the LEFT JOIN feeds a NULL into ALL."""
    sql = (
        "SELECT o_orderkey FROM orders WHERE o_totalprice > ALL "
        "(SELECT o2.o_totalprice FROM customer AS c LEFT JOIN orders AS o2 ON o2.o_custkey = c.c_custkey "
        "WHERE c.c_custkey IN (1, 5))"
    )
    outcome = rewrite_sql(sql, catalog=tpch_catalog, config=DUCKDB)
    assert "H2" not in outcome.report.fired_rules
    same, message = compare_results(tpch_conn, sql, outcome.sql)
    assert same, f"{message}\n{outcome.sql}"
