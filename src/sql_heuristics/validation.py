"""Scope checks: every column reference must resolve to a relation in scope."""

import logging
from typing import Iterable, Optional

from .catalog import Catalog
from .errors import MalformedQueryError
from .ir import (
    Column,
    DerivedTable,
    Exists,
    InSubquery,
    Node,
    Quantified,
    Query,
    ScalarSubquery,
    walk,
)
from .scope import Scope

logger = logging.getLogger(__name__)


def validate_query(query: Query, catalog: Optional[Catalog] = None, parent: Optional[Scope] = None) -> None:
    """Check that every column in ``query`` (and its nested queries) resolves.

    Args:
        query: The query to check.
        catalog: Optional schemas; with it, columns of cataloged tables are checked by name.
        parent: Enclosing scope for correlated subqueries.

    Raises:
        MalformedQueryError: On unknown aliases, unknown or ambiguous columns.
    """
    scope = Scope.for_query(query, parent)

    for cte in query.ctes:
        validate_query(cte.query, catalog, Scope({}, scope.ctes, parent))

    for relation in query.relations:
        if isinstance(relation, DerivedTable):
            validate_query(relation.query, catalog, scope.for_derived())

    for edge in query.joins:
        if edge.on is not None:
            _check(edge.on, scope, catalog)
    for item in query.projection:
        _check(item.expr, scope, catalog)
    if query.where is not None:
        _check(query.where, scope, catalog)
    for expr in query.group_by:
        _check(expr, scope, catalog)
    if query.having is not None:
        _check(query.having, scope, catalog)

    output_names = {item.output_name.lower() for item in query.projection if item.output_name}
    for order in query.order_by:
        _check(order.expr, scope, catalog, output_names)


def _check(node: Node, scope: Scope, catalog: Optional[Catalog], aliases: Iterable[str] = ()) -> None:
    for current in walk(node, into_queries=False):
        if isinstance(current, Column):
            _check_column(current, scope, catalog, aliases)
        elif isinstance(current, (ScalarSubquery, Quantified, InSubquery, Exists)):
            validate_query(current.query, catalog, scope)


def _check_column(column: Column, scope: Scope, catalog: Optional[Catalog], aliases: Iterable[str]) -> None:
    if column.table is None and column.name.lower() in aliases:
        return
    if scope.resolve(column, catalog) is not None:
        return
    if column.table is not None:
        if _alias_visible(column.table, scope):
            raise MalformedQueryError(f"Column '{column}' does not exist in '{column.table}'")
        raise MalformedQueryError(f"Column '{column}' references unknown relation '{column.table}'")
    raise MalformedQueryError(f"Column '{column.name}' does not resolve to any relation in scope")


def _alias_visible(alias: str, scope: Optional[Scope]) -> bool:
    while scope is not None:
        if alias.lower() in scope.relations:
            return True
        scope = scope.parent
    return False
