"""Tests for the Query IR."""

import pytest

from sql_heuristics.errors import MalformedQueryError
from sql_heuristics.ir import (
    Aggregate,
    And,
    Column,
    Comparison,
    DataType,
    InList,
    Literal,
    Or,
    Query,
    SelectItem,
    Star,
    Table,
    conjuncts,
    contains_aggregate,
    find_all,
    free_columns,
    make_and,
    make_or,
    map_children,
    walk,
)


def _eq(column: str, value: int) -> Comparison:
    return Comparison(Column(column), "=", Literal.number(value))


class TestConstruction:
    def test_query_requires_projection(self):
        with pytest.raises(MalformedQueryError):
            Query(projection=(), source=Table("t"))

    def test_negative_limit_rejected(self):
        with pytest.raises(MalformedQueryError):
            Query(projection=(SelectItem(Star()),), source=Table("t"), limit=-1)

    def test_unknown_comparison_operator_rejected(self):
        with pytest.raises(MalformedQueryError):
            Comparison(Column("a"), "==", Literal.number(1))

    def test_aggregate_with_ungrouped_column_rejected(self):
        with pytest.raises(MalformedQueryError, match="without GROUP BY"):
            Query(
                projection=(SelectItem(Column("a")), SelectItem(Aggregate("COUNT", Star()))),
                source=Table("t"),
            )

    def test_ungrouped_column_with_group_by_rejected(self):
        with pytest.raises(MalformedQueryError, match="must appear in GROUP BY"):
            Query(
                projection=(SelectItem(Column("b")),),
                source=Table("t"),
                group_by=(Column("a"),),
            )

    def test_grouped_column_with_aggregate_accepted(self):
        query = Query(
            projection=(SelectItem(Column("a", "t")), SelectItem(Aggregate("SUM", Column("b")))),
            source=Table("t"),
            group_by=(Column("a"),),
        )
        assert query.is_aggregate

    def test_windowed_aggregate_does_not_group(self):
        from sql_heuristics.ir import WindowSpec

        ranked = Aggregate("ROW_NUMBER", window=WindowSpec((Column("a"),)))
        query = Query(projection=(SelectItem(Column("b")), SelectItem(ranked, "rn")), source=Table("t"))
        assert not query.is_aggregate
        assert not contains_aggregate(ranked)


class TestPredicateHelpers:
    def test_make_and_flattens(self):
        a, b, c = _eq("a", 1), _eq("b", 2), _eq("c", 3)
        combined = make_and([make_and([a, b]), c])
        assert isinstance(combined, And)
        assert combined.items == (a, b, c)

    def test_make_and_single_and_empty(self):
        a = _eq("a", 1)
        assert make_and([a]) is a
        assert make_and([]) is None
        assert make_and([None, a]) is a

    def test_make_or_flattens(self):
        a, b, c = _eq("a", 1), _eq("a", 2), _eq("a", 3)
        combined = make_or([a, make_or([b, c])])
        assert isinstance(combined, Or)
        assert len(combined.items) == 3

    def test_connectors_need_two_items(self):
        with pytest.raises(ValueError):
            And((_eq("a", 1),))

    def test_conjuncts(self):
        a, b = _eq("a", 1), _eq("b", 2)
        assert conjuncts(None) == ()
        assert conjuncts(a) == (a,)
        assert conjuncts(And((a, b))) == (a, b)

    def test_function_wrapped_comparison(self):
        from sql_heuristics.ir import Cast

        wrapped = Comparison(Cast(Column("a"), DataType("BIGINT")), "=", Literal.number(3))
        assert wrapped.is_function_wrapped
        assert wrapped.flipped().is_function_wrapped
        assert not _eq("a", 3).is_function_wrapped


class TestTraversal:
    def test_map_children_shares_unchanged_nodes(self):
        left = _eq("a", 1)
        right = _eq("b", 2)
        predicate = And((left, right))

        def bump(node):
            if node is right:
                return _eq("b", 3)
            return node

        rebuilt = map_children(predicate, bump)
        assert rebuilt is not predicate
        assert rebuilt.items[0] is left
        assert rebuilt.items[1] == _eq("b", 3)

    def test_map_children_identity_returns_same_node(self):
        predicate = InList(Column("a"), (Literal.number(1), Literal.number(2)))
        assert map_children(predicate, lambda n: n) is predicate

    def test_walk_can_skip_nested_queries(self):
        from sql_heuristics.ir import ScalarSubquery

        inner = Query(projection=(SelectItem(Column("x")),), source=Table("s"))
        outer = Query(
            projection=(SelectItem(ScalarSubquery(inner), "sub"),),
            source=Table("t"),
        )
        assert inner in list(walk(outer))
        assert inner not in list(walk(outer, into_queries=False))
        tables = [t.name for t in find_all(outer, Table)]
        assert sorted(tables) == ["s", "t"]

    def test_free_columns_skip_aggregates(self):
        expr = Aggregate("MAX", Column("a"))
        assert free_columns(expr) == []
        assert free_columns(Column("b")) == [Column("b")]


def test_data_type_rendering():
    assert str(DataType("CHAR", ("25",))) == "CHAR(25)"
    assert DataType("CHAR", ("25",)).width == 25
    assert DataType("TEXT").width is None
