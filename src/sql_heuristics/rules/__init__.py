"""Heuristic rewrite rules H1..H8 and their default priority order."""

from typing import Iterable, Optional

from .base import Rule, RuleContext
from .casts import CastInversionRule
from .correlated import CorrelatedSubqueryRule
from .distinct import RedundantDistinctRule
from .group_by import RedundantGroupByRule
from .in_list import InListToOrRule
from .quantified import AllToAggregateRule, AnyToAggregateRule
from .transitive import TransitiveFilterRule

# Predicate-simplifying rules first, structural ones last.
PRIORITY = ("H4", "H2", "H3", "H8", "H7", "H1", "H5", "H6")

RULE_CLASSES = {
    cls.rule_id: cls
    for cls in (
        RedundantGroupByRule,
        AllToAggregateRule,
        AnyToAggregateRule,
        CastInversionRule,
        RedundantDistinctRule,
        CorrelatedSubqueryRule,
        TransitiveFilterRule,
        InListToOrRule,
    )
}


def default_rules() -> list[Rule]:
    return [RULE_CLASSES[rule_id]() for rule_id in PRIORITY]


def get_rules(rule_ids: Optional[Iterable[str]] = None) -> list[Rule]:
    """Instantiate rules by id, in the order given.

    Raises:
        ValueError: If an id is unknown.
    """
    if rule_ids is None:
        return default_rules()
    rules = []
    for rule_id in rule_ids:
        key = rule_id.strip().upper()
        if key not in RULE_CLASSES:
            raise ValueError(f"Unknown rule '{rule_id}'. Known rules: {', '.join(PRIORITY)}")
        rules.append(RULE_CLASSES[key]())
    return rules


__all__ = [
    "AllToAggregateRule",
    "AnyToAggregateRule",
    "CastInversionRule",
    "CorrelatedSubqueryRule",
    "InListToOrRule",
    "PRIORITY",
    "RULE_CLASSES",
    "RedundantDistinctRule",
    "RedundantGroupByRule",
    "Rule",
    "RuleContext",
    "TransitiveFilterRule",
    "default_rules",
    "get_rules",
]
