"""Rule interface shared by the H1..H8 heuristics."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional

from ..catalog import Catalog
from ..dialects import DialectProfile
from ..ir import Node, Query
from ..scope import Scope


@dataclass(frozen=True)
class RuleContext:
    """Where in the tree a rule is being evaluated.

    Attributes:
        catalog: Schemas, or None when none were supplied.
        target: Dialect the result will be rendered in.
        scope: Scope of the innermost query containing the node.
        at_root: True when that query is the statement itself.
        filtering: True inside WHERE, HAVING or JOIN ON, where NULL and FALSE both drop a row.
        negated: True below an odd number of NOTs.
    """

    catalog: Optional[Catalog]
    target: DialectProfile
    scope: Scope
    at_root: bool = True
    filtering: bool = False
    negated: bool = False

    def evolve(self, **changes) -> "RuleContext":
        return replace(self, **changes)


class Rule(ABC):
    """One heuristic transformation.

    ``matches`` is a cheap shape test. ``rewrite`` proves the rule's safety
    preconditions and returns the replacement node; it raises
    :class:`~sql_heuristics.errors.RuleApplicabilityAmbiguous` when they cannot
    be proven and :class:`~sql_heuristics.errors.DialectUnsupportedFeatureError`
    when the target dialect could not render the result.
    """

    rule_id: str = ""
    description: str = ""
    node_type: type = Query

    def applies_to(self, node: Node) -> bool:
        return isinstance(node, self.node_type)

    @abstractmethod
    def matches(self, node: Node, ctx: RuleContext) -> bool:
        """Return True if ``node`` has the shape this rule rewrites."""

    @abstractmethod
    def rewrite(self, node: Node, ctx: RuleContext) -> Node:
        """Return the equivalent replacement for ``node``."""

    def caveat(self, before: Node, after: Node, ctx: RuleContext) -> Optional[str]:
        """A correctness note to attach to a firing, if the rewrite has one."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rule_id})"
