"""H8: rewrite ``expr IN (v1, ..., vn)`` as ``expr = v1 OR ... OR expr = vn``."""

import logging
from typing import Optional

from ..errors import RuleApplicabilityAmbiguous
from ..ir import (
    Column,
    Comparison,
    Expression,
    InList,
    Literal,
    LiteralKind,
    Opaque,
    Predicate,
    Table,
    find_all,
    is_constant,
    make_or,
)
from .base import Rule, RuleContext

logger = logging.getLogger(__name__)


class InListToOrRule(Rule):
    rule_id = "H8"
    description = "Rewrite IN (literal list) as a chain of OR equalities"
    node_type = InList

    def matches(self, node: InList, ctx: RuleContext) -> bool:
        return bool(node.values)

    def rewrite(self, node: InList, ctx: RuleContext) -> Predicate:
        if not all(is_constant(value) for value in node.values):
            raise RuleApplicabilityAmbiguous("IN list contains non-literal values")
        if any(True for _ in find_all(node.this, Opaque)):
            raise RuleApplicabilityAmbiguous("left operand may not be safe to evaluate more than once")

        width = self._char_width(node.this, ctx)
        values = [self._padded(value, width) for value in node.values]
        return make_or(Comparison(node.this, "=", value) for value in values)

    @staticmethod
    def _char_width(expr: Expression, ctx: RuleContext) -> Optional[int]:
        """Declared width of a CHAR(n) column operand, when the target blank-pads CHAR values."""
        if not isinstance(expr, Column) or ctx.catalog is None or not ctx.target.fixed_width_chars:
            return None
        resolution = ctx.scope.resolve(expr, ctx.catalog)
        if resolution is None or not isinstance(resolution.relation, Table):
            return None
        if ctx.scope.cte_for(resolution.relation) is not None:
            return None
        table = ctx.catalog.table(resolution.relation.name)
        column = table.column(expr.name) if table is not None else None
        if column is None or column.data_type.name != "CHAR":
            return None
        return column.data_type.width

    @staticmethod
    def _padded(value: Expression, width: Optional[int]) -> Expression:
        """Pad a string literal to a fixed CHAR width; other values pass through unchanged."""
        if width is None or not isinstance(value, Literal) or value.kind is not LiteralKind.STRING:
            return value
        if len(value.value) >= width:
            return value
        logger.debug(f"H8: padding '{value.value}' to CHAR({width})")
        return Literal.string(value.value.ljust(width))
