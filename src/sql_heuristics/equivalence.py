"""Equivalence checks used to validate rewrites.

Structural equivalence compares canonical forms of two IR trees: relation
aliases are replaced by positional names, identifiers are lower-cased,
conjuncts, disjuncts, IN-list values and GROUP BY keys are sorted, and
comparisons are oriented. Join direction, operators and literal values are
kept exactly.

Result-set equivalence runs both forms on a DuckDB connection and compares
the rows as multisets.
"""

import logging
from collections import Counter
from dataclasses import fields
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import duckdb
from sqlglot import exp
from sqlglot.errors import ParseError

from .ir import (
    FLIPPED_OPERATORS,
    And,
    Column,
    Comparison,
    DerivedTable,
    InList,
    Node,
    Opaque,
    OpaquePredicate,
    Or,
    Query,
    SelectItem,
    Table,
)

logger = logging.getLogger(__name__)

Canonical = tuple


def canonical_form(node: Node) -> Canonical:
    """Hashable canonical form of ``node``; equal forms mean structurally equivalent trees."""
    return _Canonicalizer().node(node, root=True)


def structurally_equivalent(a: Node, b: Node) -> bool:
    return canonical_form(a) == canonical_form(b)


def _sort_key(canonical: Any) -> str:
    return repr(canonical)


class _Canonicalizer:
    def __init__(self) -> None:
        # Innermost last: reference name -> positional name, one dict per query block.
        self.scopes: list[dict[str, str]] = []

    def node(self, node: Node, root: bool = False) -> Canonical:
        if isinstance(node, Query):
            return self.query(node, root)
        if isinstance(node, Column):
            return ("Column", node.name.lower(), self.qualifier(node.table))
        if isinstance(node, Table):
            return ("Table", node.name.lower(), (node.schema or "").lower())
        if isinstance(node, DerivedTable):
            return ("DerivedTable", self.query(node.query))
        if isinstance(node, (And, Or)):
            items = sorted((self.node(item) for item in node.items), key=_sort_key)
            return (type(node).__name__, tuple(items))
        if isinstance(node, InList):
            values = sorted((self.node(v) for v in node.values), key=_sort_key)
            return ("InList", self.node(node.this), tuple(dict.fromkeys(values)))
        if isinstance(node, Comparison):
            left, right = self.node(node.left), self.node(node.right)
            op = node.op
            if _sort_key(left) > _sort_key(right):
                left, right, op = right, left, FLIPPED_OPERATORS[op]
            return ("Comparison", left, op, right)
        if isinstance(node, SelectItem):
            return ("SelectItem", self.node(node.expr), (node.alias or "").lower())
        if isinstance(node, (Opaque, OpaquePredicate)):
            return (type(node).__name__, _normalized_sql(node.sql, node.dialect))
        return self.generic(node)

    def generic(self, node: Node) -> Canonical:
        parts: list[Any] = [type(node).__name__]
        for f in fields(node):
            parts.append(self.value(getattr(node, f.name)))
        return tuple(parts)

    def value(self, value: Any) -> Any:
        if isinstance(value, Node):
            return self.node(value)
        if isinstance(value, tuple):
            return tuple(self.value(item) for item in value)
        if isinstance(value, Enum):
            return value.value
        return value

    def qualifier(self, table: Optional[str]) -> str:
        if table is None:
            return ""
        lowered = table.lower()
        for scope in reversed(self.scopes):
            if lowered in scope:
                return scope[lowered]
        return lowered

    def query(self, query: Query, root: bool = False) -> Canonical:
        # CTE bodies and derived tables do not see this block's FROM items.
        ctes = tuple(
            (cte.name.lower(), self.query(cte.query), cte.materialized) for cte in query.ctes
        )
        relations = tuple(self.node(relation) for relation in query.relations)

        depth = len(self.scopes)
        self.scopes.append(
            {r.reference.lower(): f"rel{depth}_{i}" for i, r in enumerate(query.relations)}
        )
        try:
            joins = tuple(
                (edge.kind.value, self.node(edge.on) if edge.on is not None else None)
                for edge in query.joins
            )
            projection = tuple(
                self.node(item.expr) if root else self.node(item) for item in query.projection
            )
            return (
                "Query",
                ctes,
                relations,
                joins,
                projection,
                self.node(query.where) if query.where is not None else None,
                tuple(sorted((self.node(e) for e in query.group_by), key=_sort_key)),
                self.node(query.having) if query.having is not None else None,
                query.distinct,
                tuple(self.node(o) for o in query.order_by),
                query.limit,
                query.offset,
            )
        finally:
            self.scopes.pop()


def _normalized_sql(sql: str, dialect: str) -> str:
    try:
        return exp.maybe_parse(sql, dialect=dialect).sql(dialect=dialect).lower()
    except ParseError:
        return sql.lower()


# --------------------------------------------------------------------------
# Result sets
# --------------------------------------------------------------------------


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return round(float(value), 9)
    if isinstance(value, float):
        return round(value, 9)
    return value


def compare_results(
    conn: duckdb.DuckDBPyConnection, query_a: str, query_b: str
) -> tuple[bool, str]:
    """Run both queries and compare their rows as multisets.

    Returns:
        (True, message) if the results match, else (False, description of the first difference).
    """
    res_a = conn.execute(query_a).fetchall()
    res_b = conn.execute(query_b).fetchall()
    if len(res_a) != len(res_b):
        return False, f"Row count mismatch: A={len(res_a)} B={len(res_b)}"
    rows_a = Counter(tuple(_normalize_value(v) for v in row) for row in res_a)
    rows_b = Counter(tuple(_normalize_value(v) for v in row) for row in res_b)
    if rows_a != rows_b:
        missing = rows_a - rows_b
        extra = rows_b - rows_a
        return False, f"Row mismatch: only in A={list(missing)[:3]} only in B={list(extra)[:3]}"
    return True, "Results match"


def result_sets_equal(conn: duckdb.DuckDBPyConnection, query_a: str, query_b: str) -> bool:
    same, message = compare_results(conn, query_a, query_b)
    if not same:
        logger.debug(message)
    return same
