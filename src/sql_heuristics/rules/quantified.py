"""H2/H3: replace ``x <op> ALL|ANY (subquery)`` with a comparison against MAX/MIN.

Both rules only fire where the predicate filters rows (WHERE, HAVING, JOIN ON)
and is not below a NOT. There a NULL and a FALSE outcome both drop the row,
which is what makes the aggregate form equivalent on non-empty inputs.
"""

import logging
from dataclasses import replace
from typing import Optional

from ..errors import RuleApplicabilityAmbiguous
from ..ir import (
    Aggregate,
    Column,
    Comparison,
    DerivedTable,
    Opaque,
    Quantified,
    Quantifier,
    Query,
    ScalarSubquery,
    SelectItem,
    Star,
    Table,
    find_all,
)
from ..scope import Scope
from .base import Rule, RuleContext

logger = logging.getLogger(__name__)

_DERIVED_ALIAS = "quantified_source"
_DERIVED_COLUMN = "quantified_value"


class _QuantifiedRule(Rule):
    node_type = Quantified
    quantifiers: tuple[Quantifier, ...] = ()
    # Comparison operator -> aggregate that stands in for the quantified set.
    aggregates: dict[str, str] = {}

    def matches(self, node: Quantified, ctx: RuleContext) -> bool:
        return node.quantifier in self.quantifiers and node.op in self.aggregates

    def rewrite(self, node: Quantified, ctx: RuleContext) -> Comparison:
        if not ctx.filtering or ctx.negated:
            raise RuleApplicabilityAmbiguous("predicate is not in a non-negated filtering position")
        inner = node.query
        if len(inner.projection) != 1 or isinstance(inner.projection[0].expr, Star):
            raise RuleApplicabilityAmbiguous("subquery must return exactly one column")
        if inner.limit is not None or inner.offset is not None:
            raise RuleApplicabilityAmbiguous("LIMIT/OFFSET in the subquery changes the quantified set")
        self.check_inner(inner, ctx)

        aggregate = self.aggregates[node.op]
        return Comparison(node.left, node.op, ScalarSubquery(self._aggregated(inner, aggregate)))

    def check_inner(self, inner: Query, ctx: RuleContext) -> None:
        """Extra preconditions on the subquery."""

    @staticmethod
    def _aggregated(inner: Query, aggregate: str) -> Query:
        item = inner.projection[0]
        nested = any(True for _ in find_all(item.expr, Aggregate, Opaque, into_queries=False))
        if not (inner.is_aggregate or inner.distinct or nested):
            return replace(
                inner,
                projection=(SelectItem(Aggregate(aggregate, item.expr)),),
                distinct=False,
                order_by=(),
            )
        # Aggregate over the subquery's rows rather than inside it.
        name = item.output_name or _DERIVED_COLUMN
        body_item = item if item.output_name else SelectItem(item.expr, name)
        body = replace(inner, projection=(body_item,), order_by=())
        return Query(
            projection=(SelectItem(Aggregate(aggregate, Column(name, _DERIVED_ALIAS))),),
            source=DerivedTable(body, _DERIVED_ALIAS),
        )


class AllToAggregateRule(_QuantifiedRule):
    rule_id = "H2"
    description = "Replace a comparison with ALL (subquery) by one against the subquery's MAX/MIN"
    quantifiers = (Quantifier.ALL,)
    aggregates = {">": "MAX", ">=": "MAX", "<": "MIN", "<=": "MIN"}

    def check_inner(self, inner: Query, ctx: RuleContext) -> None:
        # MAX/MIN skip NULLs while ALL turns unknown on them.
        column = inner.projection[0].expr
        if not isinstance(column, Column) or not self._not_null(column, inner, ctx):
            raise RuleApplicabilityAmbiguous("subquery column may be NULL")
        if any(not edge.is_inner for edge in inner.joins):
            raise RuleApplicabilityAmbiguous("outer join in the subquery can produce NULLs")

    @staticmethod
    def _not_null(column: Column, inner: Query, ctx: RuleContext) -> bool:
        if ctx.catalog is None:
            return False
        scope = Scope.for_query(inner, ctx.scope)
        resolution = scope.resolve(column, ctx.catalog)
        if resolution is None or not resolution.certain or resolution.is_outer:
            return False
        relation = resolution.relation
        if not isinstance(relation, Table) or scope.cte_for(relation) is not None:
            return False
        table = ctx.catalog.table(relation.name)
        return table is not None and not table.is_nullable(column.name)

    def caveat(self, before, after, ctx: RuleContext) -> Optional[str]:
        return (
            "if the subquery returns no rows, ALL is TRUE but the aggregate comparison is NULL, "
            "so rows kept by the original are dropped"
        )


class AnyToAggregateRule(_QuantifiedRule):
    rule_id = "H3"
    description = "Replace a comparison with ANY/SOME (subquery) by one against the subquery's MIN/MAX"
    quantifiers = (Quantifier.ANY, Quantifier.SOME)
    aggregates = {">": "MIN", ">=": "MIN", "<": "MAX", "<=": "MAX"}

    def caveat(self, before, after, ctx: RuleContext) -> Optional[str]:
        return (
            "if the subquery returns no rows, ANY is FALSE but the aggregate comparison is NULL; "
            "both drop the row in this filtering position"
        )
