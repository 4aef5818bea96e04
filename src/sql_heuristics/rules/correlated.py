"""H6: replace a correlated MIN/MAX subquery with a ranking CTE.

Rewrites::

    SELECT ... FROM o WHERE o.v = (SELECT MIN(t.c) FROM t WHERE t.k = o.k AND <local>)

into::

    WITH ranked_t AS (
        SELECT t.k AS grp_key, t.c AS extreme_value,
               ROW_NUMBER() OVER (PARTITION BY t.k ORDER BY t.c) AS rn
        FROM t WHERE <local> AND t.c IS NOT NULL
    )
    SELECT ... FROM o, ranked_t
    WHERE ranked_t.grp_key = o.k AND o.v = ranked_t.extreme_value AND ranked_t.rn = 1

ROW_NUMBER keeps exactly one row per partition, so the join never multiplies
outer rows, and an outer row with no matching partition is dropped just as the
NULL subquery result dropped it before.
"""

import logging
from dataclasses import replace
from typing import Optional

from ..errors import DialectUnsupportedFeatureError, RuleApplicabilityAmbiguous
from ..ir import (
    CTE,
    Aggregate,
    Column,
    Comparison,
    Expression,
    IsNull,
    JoinEdge,
    JoinKind,
    Literal,
    Node,
    Opaque,
    OpaquePredicate,
    OrderItem,
    Predicate,
    Query,
    ScalarSubquery,
    SelectItem,
    Star,
    Table,
    WindowSpec,
    conjuncts,
    find_all,
    make_and,
    walk,
)
from ..scope import Scope
from .base import Rule, RuleContext

logger = logging.getLogger(__name__)

GROUP_KEY = "grp_key"
EXTREME_VALUE = "extreme_value"
RANK = "rn"


class CorrelatedSubqueryRule(Rule):
    rule_id = "H6"
    description = "Replace a correlated MIN/MAX subquery with a ROW_NUMBER ranking CTE"
    node_type = Query

    def matches(self, node: Query, ctx: RuleContext) -> bool:
        return any(_split(predicate) is not None for predicate in conjuncts(node.where))

    def rewrite(self, node: Query, ctx: RuleContext) -> Query:
        self._check_target(ctx)
        if node.source is None:
            raise RuleApplicabilityAmbiguous("outer query has no FROM clause")
        if any(isinstance(item.expr, Star) and item.expr.table is None for item in node.projection):
            raise RuleApplicabilityAmbiguous("SELECT * would pick up the ranking CTE's columns")
        for column in find_all(node, Column):
            if column.table is None and column.name.lower() in (GROUP_KEY, EXTREME_VALUE, RANK):
                raise RuleApplicabilityAmbiguous(f"unqualified column '{column.name}' would become ambiguous")

        items = list(conjuncts(node.where))
        failure: Optional[RuleApplicabilityAmbiguous] = None
        for index, predicate in enumerate(items):
            split = _split(predicate)
            if split is None:
                continue
            expr, subquery = split
            try:
                outer_column, cte = self._ranking_cte(subquery, node, ctx)
            except RuleApplicabilityAmbiguous as e:
                failure = e
                continue

            ranked = [
                Comparison(Column(GROUP_KEY, cte.name), "=", outer_column),
                Comparison(expr, "=", Column(EXTREME_VALUE, cte.name)),
                Comparison(Column(RANK, cte.name), "=", Literal.number(1)),
            ]
            logger.debug(f"H6: correlated subquery on {outer_column} replaced by CTE '{cte.name}'")
            return replace(
                node,
                ctes=node.ctes + (cte,),
                joins=node.joins + (JoinEdge(Table(cte.name), JoinKind.IMPLICIT),),
                where=make_and(items[:index] + ranked + items[index + 1:]),
            )
        raise failure or RuleApplicabilityAmbiguous("no correlated subquery could be rewritten")

    @staticmethod
    def _check_target(ctx: RuleContext) -> None:
        target = ctx.target
        if not target.supports_window_functions:
            raise DialectUnsupportedFeatureError(target.name, "window functions")
        if not target.supports_ctes:
            raise DialectUnsupportedFeatureError(target.name, "common table expressions")
        if not ctx.at_root and not target.supports_nested_ctes:
            raise DialectUnsupportedFeatureError(target.name, "WITH clauses inside subqueries")

    def _ranking_cte(self, subquery: Query, outer: Query, ctx: RuleContext) -> tuple[Column, CTE]:
        aggregate = subquery.projection[0].expr
        table = subquery.source
        if not isinstance(aggregate.arg, Column):
            raise RuleApplicabilityAmbiguous("subquery aggregates an expression, not a column")
        if subquery.joins or not isinstance(table, Table):
            raise RuleApplicabilityAmbiguous("subquery must read a single table")
        if (
            subquery.ctes
            or subquery.group_by
            or subquery.having is not None
            or subquery.limit is not None
            or subquery.offset is not None
        ):
            raise RuleApplicabilityAmbiguous("subquery has clauses other than WHERE")

        scope = Scope.for_query(subquery, ctx.scope)
        if self._depth(aggregate.arg, scope, ctx) != 0:
            raise RuleApplicabilityAmbiguous("aggregated column is not local to the subquery")

        correlation: Optional[tuple[Column, Column]] = None
        local: list[Predicate] = []
        for predicate in conjuncts(subquery.where):
            if any(isinstance(n, Query) for n in walk(predicate)) or any(
                isinstance(n, (Opaque, OpaquePredicate)) and n.has_subquery for n in walk(predicate)
            ):
                raise RuleApplicabilityAmbiguous("subquery filter contains a nested query")
            depths = {self._depth(column, scope, ctx) for column in find_all(predicate, Column)}
            if depths <= {0}:
                local.append(predicate)
                continue
            pair = self._correlation(predicate, scope, ctx)
            if pair is None or correlation is not None:
                raise RuleApplicabilityAmbiguous("correlation is not a single column equality")
            correlation = pair
        if correlation is None:
            raise RuleApplicabilityAmbiguous("subquery is not correlated with the outer query")

        inner_key, outer_column = correlation
        value = aggregate.arg
        body = Query(
            projection=(
                SelectItem(inner_key, GROUP_KEY),
                SelectItem(value, EXTREME_VALUE),
                SelectItem(
                    Aggregate(
                        "ROW_NUMBER",
                        window=WindowSpec(
                            (inner_key,),
                            (OrderItem(value, descending=aggregate.name == "MAX"),),
                        ),
                    ),
                    RANK,
                ),
            ),
            source=table,
            where=make_and(local + [IsNull(value, negated=True)]),
        )
        return outer_column, CTE(self._cte_name(table, outer, ctx), body)

    def _correlation(self, predicate: Predicate, scope: Scope, ctx: RuleContext) -> Optional[tuple[Column, Column]]:
        if not isinstance(predicate, Comparison) or predicate.op != "=":
            return None
        for inner, outer in ((predicate.left, predicate.right), (predicate.right, predicate.left)):
            if (
                isinstance(inner, Column)
                and isinstance(outer, Column)
                and self._depth(inner, scope, ctx) == 0
                and self._depth(outer, scope, ctx) == 1
            ):
                return inner, outer
        return None

    @staticmethod
    def _depth(column: Column, scope: Scope, ctx: RuleContext) -> int:
        resolution = scope.resolve(column, ctx.catalog)
        if resolution is None or resolution.alias is None:
            raise RuleApplicabilityAmbiguous(f"cannot tell which relation '{column}' belongs to")
        if not resolution.certain and column.table is None:
            raise RuleApplicabilityAmbiguous(f"cannot tell whether '{column}' is correlated")
        if resolution.depth > 1:
            raise RuleApplicabilityAmbiguous(f"'{column}' refers past the enclosing query")
        return resolution.depth

    @staticmethod
    def _cte_name(table: Table, outer: Query, ctx: RuleContext) -> str:
        taken = {t.name.lower() for t in find_all(outer, Table)}
        taken.update(r.reference.lower() for r in outer.relations)
        scope: Optional[Scope] = ctx.scope
        while scope is not None:
            taken.update(scope.ctes)
            scope = scope.parent
        if ctx.catalog is not None:
            taken.update(t.name.lower() for t in ctx.catalog)
        base = f"ranked_{table.name.lower()}"
        name, suffix = base, 2
        while name in taken:
            name = f"{base}_{suffix}"
            suffix += 1
        return name


def _split(predicate: Node) -> Optional[tuple[Expression, Query]]:
    """Return (outer expression, subquery) for ``expr = (SELECT MIN|MAX(..) ...)``."""
    if not isinstance(predicate, Comparison) or predicate.op != "=":
        return None
    for expr, other in ((predicate.left, predicate.right), (predicate.right, predicate.left)):
        if isinstance(other, ScalarSubquery) and not isinstance(expr, ScalarSubquery):
            projection = other.query.projection
            if len(projection) != 1:
                continue
            aggregate = projection[0].expr
            if (
                isinstance(aggregate, Aggregate)
                and aggregate.name in ("MIN", "MAX")
                and aggregate.window is None
            ):
                return expr, other.query
    return None
