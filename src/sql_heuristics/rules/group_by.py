"""H1: drop a GROUP BY whose keys already identify every row."""

from dataclasses import replace

from ..ir import Column, Query, contains_aggregate
from ..facts import FactBase
from .base import Rule, RuleContext


class RedundantGroupByRule(Rule):
    rule_id = "H1"
    description = "Eliminate a GROUP BY whose keys form a superkey of the join result"
    node_type = Query

    def matches(self, node: Query, ctx: RuleContext) -> bool:
        if not node.group_by or node.having is not None:
            return False
        if any(contains_aggregate(item.expr) for item in node.projection):
            return False
        return not any(contains_aggregate(order.expr) for order in node.order_by)

    def rewrite(self, node: Query, ctx: RuleContext) -> Query:
        facts = FactBase(node, ctx.scope, ctx.catalog)
        keys = [facts.require_key_of(expr) for expr in node.group_by if isinstance(expr, Column)]
        facts.require_superkey(keys, "GROUP BY")
        return replace(node, group_by=())
