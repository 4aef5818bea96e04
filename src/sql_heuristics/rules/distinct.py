"""H5: drop a DISTINCT whose projection already contains a key."""

from dataclasses import replace

from ..errors import RuleApplicabilityAmbiguous
from ..facts import FactBase
from ..ir import Column, Query, Star
from .base import Rule, RuleContext


class RedundantDistinctRule(Rule):
    rule_id = "H5"
    description = "Eliminate a DISTINCT whose projected columns form a superkey"
    node_type = Query

    def matches(self, node: Query, ctx: RuleContext) -> bool:
        return node.distinct

    def rewrite(self, node: Query, ctx: RuleContext) -> Query:
        if node.is_aggregate:
            raise RuleApplicabilityAmbiguous("DISTINCT over grouped output")
        facts = FactBase(node, ctx.scope, ctx.catalog)
        seeds = []
        for item in node.projection:
            if isinstance(item.expr, Star):
                seeds.extend(facts.expand_star(item.expr))
            elif isinstance(item.expr, Column):
                key = facts.key_of(item.expr)
                if key is not None:
                    seeds.append(key)
        facts.require_superkey(seeds, "DISTINCT")
        return replace(node, distinct=False)
