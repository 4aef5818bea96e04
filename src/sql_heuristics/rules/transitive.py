"""H7: propagate a constant filter across a join equality."""

import logging
from dataclasses import replace
from typing import Optional

from ..errors import RuleApplicabilityAmbiguous
from ..ir import (
    Column,
    Comparison,
    Expression,
    DataType,
    JoinKind,
    LiteralKind,
    Predicate,
    Query,
    Table,
    conjuncts,
    constant_literal,
    is_constant,
    make_and,
)
from .base import Rule, RuleContext

logger = logging.getLogger(__name__)

ColumnKey = tuple[str, str]


class TransitiveFilterRule(Rule):
    rule_id = "H7"
    description = "Propagate a constant filter across a join key equality"
    node_type = Query

    def matches(self, node: Query, ctx: RuleContext) -> bool:
        return node.where is not None and len(node.relations) > 1

    def rewrite(self, node: Query, ctx: RuleContext) -> Query:
        if any(edge.kind in (JoinKind.RIGHT, JoinKind.FULL) for edge in node.joins):
            raise RuleApplicabilityAmbiguous("RIGHT/FULL JOIN can null-extend earlier relations")

        predicates = list(conjuncts(node.where))
        for edge in node.joins:
            if edge.is_inner:
                predicates.extend(conjuncts(edge.on))

        columns: dict[ColumnKey, Column] = {}
        parent: dict[ColumnKey, ColumnKey] = {}
        constants: dict[ColumnKey, Expression] = {}

        def find(key: ColumnKey) -> ColumnKey:
            while parent.setdefault(key, key) != key:
                key = parent[key]
            return key

        for predicate in predicates:
            if not isinstance(predicate, Comparison) or predicate.op != "=":
                continue
            left, right = predicate.left, predicate.right
            if isinstance(left, Column) and isinstance(right, Column):
                a, b = self._key(left, ctx), self._key(right, ctx)
                if a is not None and b is not None:
                    columns.setdefault(a, left)
                    columns.setdefault(b, right)
                    parent[find(a)] = find(b)
                continue
            for column, other in ((left, right), (right, left)):
                if isinstance(column, Column) and self._usable_constant(other):
                    key = self._key(column, ctx)
                    if key is not None:
                        columns.setdefault(key, column)
                        constants.setdefault(key, other)

        added: list[Predicate] = []
        for key in columns:
            if key in constants:
                continue
            root = find(key)
            sources = [
                k
                for k in constants
                if find(k) == root and self._carries(constants[k], columns[k], columns[key], ctx)
            ]
            if not sources:
                continue
            source = sources[0]
            added.append(Comparison(columns[key], "=", constants[source]))
            logger.debug(f"H7: {columns[source]} = constant implies {columns[key]} = constant")

        if not added:
            return node
        return replace(node, where=make_and([node.where, *added]))

    @staticmethod
    def _usable_constant(expr: Expression) -> bool:
        literal = constant_literal(expr)
        return is_constant(expr) and literal is not None and not literal.is_null

    @staticmethod
    def _carries(constant: Expression, source: Column, target: Column, ctx: RuleContext) -> bool:
        """Whether ``target = constant`` follows from ``source = constant`` and ``source = target``."""
        literal = constant_literal(constant)
        if literal.kind is not LiteralKind.STRING or literal.value == literal.value.rstrip(" "):
            return True
        # Trailing blanks are significant for VARCHAR but not for CHAR.
        declared = _declared_type(source, ctx)
        return declared is not None and declared == _declared_type(target, ctx)

    @staticmethod
    def _key(column: Column, ctx: RuleContext) -> Optional[ColumnKey]:
        resolution = ctx.scope.resolve(column, ctx.catalog)
        if resolution is None or resolution.alias is None or resolution.is_outer:
            return None
        return resolution.alias.lower(), column.name.lower()


def _declared_type(column: Column, ctx: RuleContext) -> Optional[DataType]:
    if ctx.catalog is None:
        return None
    resolution = ctx.scope.resolve(column, ctx.catalog)
    if resolution is None or not resolution.certain or not isinstance(resolution.relation, Table):
        return None
    if ctx.scope.cte_for(resolution.relation) is not None:
        return None
    table = ctx.catalog.table(resolution.relation.name)
    schema = table.column(column.name) if table is not None else None
    return schema.data_type if schema is not None else None
