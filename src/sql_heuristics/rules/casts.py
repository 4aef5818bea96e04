"""H4: move a cast off a column and onto the constant it is compared with."""

import logging
import re
from typing import Optional

from ..dialects import DialectProfile
from ..errors import RuleApplicabilityAmbiguous
from ..ir import (
    Cast,
    Column,
    Comparison,
    DataType,
    Function,
    Literal,
    LiteralKind,
    Table,
    constant_literal,
    is_constant,
)
from .base import Rule, RuleContext

logger = logging.getLogger(__name__)

_INTEGER_RANGES = {
    "SMALLINT": (-(2**15), 2**15 - 1),
    "INTEGER": (-(2**31), 2**31 - 1),
    "BIGINT": (-(2**63), 2**63 - 1),
}

# Targets that hold every value of the source type exactly and keep its order.
_INTEGER_WIDENINGS = {
    "SMALLINT": {"INTEGER", "BIGINT", "DECIMAL", "NUMERIC", "DOUBLE"},
    "INTEGER": {"BIGINT", "DECIMAL", "NUMERIC", "DOUBLE"},
    "BIGINT": {"DECIMAL", "NUMERIC"},
}

# Decimal digits needed for every value of an integer type.
_INTEGER_DIGITS = {"SMALLINT": 5, "INTEGER": 10, "BIGINT": 19}

_STRING_TARGETS = {"VARCHAR", "TEXT"}

_INTEGRAL = re.compile(r"^-?\d+$")
_MIDNIGHT = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:[ T]00:00(?::00(?:\.0+)?)?)?$")


class CastInversionRule(Rule):
    rule_id = "H4"
    description = "Move a cast off an indexed column onto the compared constant"
    node_type = Comparison

    def matches(self, node: Comparison, ctx: RuleContext) -> bool:
        return node.is_function_wrapped

    def rewrite(self, node: Comparison, ctx: RuleContext) -> Comparison:
        comparison = node if isinstance(node.left, (Cast, Function)) and is_constant(node.right) else node.flipped()
        wrapped = comparison.left
        if not isinstance(wrapped, Cast):
            raise RuleApplicabilityAmbiguous(f"{wrapped.name} is not invertible")
        if not isinstance(wrapped.this, Column):
            raise RuleApplicabilityAmbiguous("cast operand is not a bare column")
        if ctx.catalog is None:
            raise RuleApplicabilityAmbiguous("no catalog to read the column's declared type from")

        column = wrapped.this
        declared = self._declared_type(column, ctx)
        literal = constant_literal(comparison.right)
        value = self._inverse_value(declared, wrapped.to, literal, ctx.target)
        logger.debug(f"H4: {column} {comparison.op} CAST({value.value} AS {declared})")
        return Comparison(column, comparison.op, Cast(value, declared))

    @staticmethod
    def _declared_type(column: Column, ctx: RuleContext) -> DataType:
        resolution = ctx.scope.resolve(column, ctx.catalog)
        if resolution is None or resolution.relation is None or not resolution.certain:
            raise RuleApplicabilityAmbiguous(f"column '{column}' does not resolve with certainty")
        relation = resolution.relation
        if not isinstance(relation, Table) or ctx.scope.cte_for(relation) is not None:
            raise RuleApplicabilityAmbiguous(f"column '{column}' does not come from a base table")
        table = ctx.catalog.table(relation.name)
        schema = table.column(column.name) if table is not None else None
        if schema is None:
            raise RuleApplicabilityAmbiguous(f"no declared type for '{column}'")
        return schema.data_type

    @staticmethod
    def _inverse_value(
        declared: DataType, target: DataType, literal: Optional[Literal], profile: DialectProfile
    ) -> Literal:
        """Return the literal to cast to ``declared``, if the cast is invertible for it."""
        if literal is None or literal.is_null:
            raise RuleApplicabilityAmbiguous("comparison constant is NULL")

        if declared.name in _INTEGER_WIDENINGS:
            if target.name not in _INTEGER_WIDENINGS[declared.name]:
                raise RuleApplicabilityAmbiguous(f"CAST from {declared} to {target} is not a widening")
            digits = _INTEGER_DIGITS[declared.name]
            if target.name in ("DECIMAL", "NUMERIC") and not _holds_digits(target, digits, profile):
                raise RuleApplicabilityAmbiguous(f"{target} may not hold every {declared} value")
            if not _INTEGRAL.match(literal.value.strip()):
                raise RuleApplicabilityAmbiguous(f"'{literal.value}' is not an integral {declared} value")
            low, high = _INTEGER_RANGES[declared.name]
            if not low <= int(literal.value) <= high:
                raise RuleApplicabilityAmbiguous(f"'{literal.value}' is outside the range of {declared}")
            return Literal.number(literal.value.strip())

        if declared.name == "VARCHAR":
            if target.name not in _STRING_TARGETS:
                raise RuleApplicabilityAmbiguous(f"CAST from {declared} to {target} is not invertible")
            if target.name == "VARCHAR" and target.width is not None and (
                declared.width is None or target.width < declared.width
            ):
                raise RuleApplicabilityAmbiguous(f"CAST to {target} truncates {declared}")
            if literal.kind is not LiteralKind.STRING:
                raise RuleApplicabilityAmbiguous("string column compared with a non-string constant")
            if declared.width is not None and len(literal.value) > declared.width:
                raise RuleApplicabilityAmbiguous(f"'{literal.value}' is longer than {declared}")
            return literal

        if declared.name == "DATE" and target.name == "TIMESTAMP":
            match = _MIDNIGHT.match(literal.value.strip())
            if match is None:
                raise RuleApplicabilityAmbiguous(f"'{literal.value}' is not a midnight timestamp")
            return Literal.string(match.group(1))

        raise RuleApplicabilityAmbiguous(f"CAST from {declared} to {target} is not known to be invertible")


def _holds_digits(decimal: DataType, digits: int, profile: DialectProfile) -> bool:
    """Whether ``decimal`` has room for ``digits`` digits left of the point."""
    if decimal.params:
        try:
            precision = int(decimal.params[0])
            scale = int(decimal.params[1]) if len(decimal.params) > 1 else 0
        except ValueError:
            return False
    elif profile.default_decimal is None:
        return True
    else:
        precision, scale = profile.default_decimal
    return precision - scale >= digits
