"""Immutable intermediate representation of a single SELECT statement.

Every node is a frozen dataclass. Rewrites never mutate a node: they build a
replacement subtree and share every unchanged child by reference, so the
pre-rewrite tree stays valid for diffing and reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Callable, Iterator, Optional, Union

from .errors import MalformedQueryError


class Node:
    """Marker base class for IR nodes."""

    __slots__ = ()


class Expression(Node):
    """Base class for scalar expressions."""

    __slots__ = ()


class Predicate(Node):
    """Base class for boolean predicates."""

    __slots__ = ()


class LiteralKind(Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    NULL = "NULL"


class Quantifier(Enum):
    ALL = "ALL"
    ANY = "ANY"
    SOME = "SOME"


class JoinKind(Enum):
    """Join direction. IMPLICIT is a comma-separated FROM item."""

    IMPLICIT = "IMPLICIT"
    INNER = "INNER"
    CROSS = "CROSS"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


COMPARISON_OPERATORS = ("=", "<>", "<", "<=", ">", ">=")

# Operator to use when the two operands of a comparison swap sides.
FLIPPED_OPERATORS = {"=": "=", "<>": "<>", "<": ">", "<=": ">=", ">": "<", ">=": "<="}


@dataclass(frozen=True)
class DataType:
    """A logical column or cast type, e.g. ``DataType("CHAR", ("25",))``."""

    name: str
    params: tuple[str, ...] = ()

    @property
    def width(self) -> Optional[int]:
        if self.params and self.params[0].isdigit():
            return int(self.params[0])
        return None

    def __str__(self) -> str:
        if self.params:
            return f"{self.name}({', '.join(self.params)})"
        return self.name


# --------------------------------------------------------------------------
# Expressions
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class Column(Expression):
    name: str
    table: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.table}.{self.name}" if self.table else self.name


@dataclass(frozen=True)
class Star(Expression):
    table: Optional[str] = None


@dataclass(frozen=True)
class Literal(Expression):
    """A constant. ``value`` keeps the exact source characters of the literal."""

    value: str
    kind: LiteralKind = LiteralKind.STRING

    @classmethod
    def string(cls, value: str) -> "Literal":
        return cls(value, LiteralKind.STRING)

    @classmethod
    def number(cls, value: Union[int, float, str]) -> "Literal":
        return cls(str(value), LiteralKind.NUMBER)

    @classmethod
    def null(cls) -> "Literal":
        return cls("NULL", LiteralKind.NULL)

    @property
    def is_null(self) -> bool:
        return self.kind is LiteralKind.NULL


@dataclass(frozen=True)
class Cast(Expression):
    this: Expression
    to: DataType


@dataclass(frozen=True)
class Function(Expression):
    """A recognised scalar function applied positionally to its arguments."""

    name: str
    args: tuple[Expression, ...] = ()


@dataclass(frozen=True)
class Arithmetic(Expression):
    op: str
    left: Expression
    right: Expression


@dataclass(frozen=True)
class OrderItem(Node):
    """One ORDER BY key. ``nulls_first`` is None when it matches the dialect default."""

    expr: Expression
    descending: bool = False
    nulls_first: Optional[bool] = None


@dataclass(frozen=True)
class WindowSpec(Node):
    partition_by: tuple[Expression, ...] = ()
    order_by: tuple[OrderItem, ...] = ()


@dataclass(frozen=True)
class Aggregate(Expression):
    """An aggregate or ranking function, optionally evaluated over a window.

    ``arg`` is None for argument-less functions such as ROW_NUMBER, and a
    :class:`Star` for ``COUNT(*)``.
    """

    name: str
    arg: Optional[Expression] = None
    distinct: bool = False
    window: Optional[WindowSpec] = None

    @property
    def is_grouping(self) -> bool:
        """True when this aggregate collapses rows (i.e. it is not windowed)."""
        return self.window is None


@dataclass(frozen=True)
class ScalarSubquery(Expression):
    query: "Query"


@dataclass(frozen=True)
class Opaque(Expression):
    """An expression with no IR representation, carried as source-dialect text.

    ``columns`` lists the references it makes outside aggregates and nested
    queries so scope checks still see them; rules never look inside.
    """

    sql: str
    dialect: str
    columns: tuple[Column, ...] = ()
    has_aggregate: bool = False
    has_subquery: bool = False


# --------------------------------------------------------------------------
# Predicates
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class Comparison(Predicate):
    left: Expression
    op: str
    right: Expression

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPERATORS:
            raise MalformedQueryError(f"Unknown comparison operator '{self.op}'")

    def flipped(self) -> "Comparison":
        return Comparison(self.right, FLIPPED_OPERATORS[self.op], self.left)

    @property
    def is_function_wrapped(self) -> bool:
        """True for ``f(column) <op> constant`` in either orientation."""
        for wrapped, other in ((self.left, self.right), (self.right, self.left)):
            if isinstance(wrapped, (Cast, Function)) and is_constant(other):
                return any(isinstance(n, Column) for n in walk(wrapped))
        return False


@dataclass(frozen=True)
class And(Predicate):
    items: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        if len(self.items) < 2:
            raise ValueError("And needs at least two items; use make_and()")


@dataclass(frozen=True)
class Or(Predicate):
    items: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        if len(self.items) < 2:
            raise ValueError("Or needs at least two items; use make_or()")


@dataclass(frozen=True)
class Not(Predicate):
    this: Predicate


@dataclass(frozen=True)
class Quantified(Predicate):
    """``left <op> ALL|ANY|SOME (query)``."""

    left: Expression
    op: str
    quantifier: Quantifier
    query: "Query"

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPERATORS:
            raise MalformedQueryError(f"Unknown comparison operator '{self.op}'")


@dataclass(frozen=True)
class InList(Predicate):
    """Membership in a finite list of values."""

    this: Expression
    values: tuple[Expression, ...]


@dataclass(frozen=True)
class InSubquery(Predicate):
    this: Expression
    query: "Query"


@dataclass(frozen=True)
class Exists(Predicate):
    query: "Query"


@dataclass(frozen=True)
class IsNull(Predicate):
    this: Expression
    negated: bool = False


@dataclass(frozen=True)
class OpaquePredicate(Predicate):
    sql: str
    dialect: str
    columns: tuple[Column, ...] = ()
    has_aggregate: bool = False
    has_subquery: bool = False


# --------------------------------------------------------------------------
# Relations and queries
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class Table(Node):
    name: str
    alias: Optional[str] = None
    schema: Optional[str] = None

    @property
    def reference(self) -> str:
        """The name columns use to qualify this relation."""
        return self.alias or self.name


@dataclass(frozen=True)
class DerivedTable(Node):
    query: "Query"
    alias: str

    @property
    def reference(self) -> str:
        return self.alias


Relation = Union[Table, DerivedTable]


@dataclass(frozen=True)
class JoinEdge(Node):
    """Binds ``relation`` to everything to its left in the FROM list."""

    relation: Relation
    kind: JoinKind = JoinKind.INNER
    on: Optional[Predicate] = None

    @property
    def is_inner(self) -> bool:
        return self.kind in (JoinKind.IMPLICIT, JoinKind.INNER, JoinKind.CROSS)


@dataclass(frozen=True)
class SelectItem(Node):
    expr: Expression
    alias: Optional[str] = None

    @property
    def output_name(self) -> Optional[str]:
        if self.alias:
            return self.alias
        if isinstance(self.expr, Column):
            return self.expr.name
        return None


@dataclass(frozen=True)
class CTE(Node):
    name: str
    query: "Query"
    materialized: Optional[bool] = None


@dataclass(frozen=True)
class Query(Node):
    """Root IR node: one SELECT statement."""

    projection: tuple[SelectItem, ...]
    source: Optional[Relation] = None
    joins: tuple[JoinEdge, ...] = ()
    where: Optional[Predicate] = None
    group_by: tuple[Expression, ...] = ()
    having: Optional[Predicate] = None
    distinct: bool = False
    order_by: tuple[OrderItem, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    ctes: tuple[CTE, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.projection:
            raise MalformedQueryError("A query must project at least one expression")
        if self.joins and self.source is None:
            raise MalformedQueryError("JOIN without a FROM relation")
        for bound in (self.limit, self.offset):
            if bound is not None and bound < 0:
                raise MalformedQueryError("LIMIT/OFFSET must be non-negative")
        _check_grouping(self)

    @property
    def relations(self) -> tuple[Relation, ...]:
        if self.source is None:
            return ()
        return (self.source,) + tuple(edge.relation for edge in self.joins)

    @property
    def is_aggregate(self) -> bool:
        return bool(self.group_by) or any(
            contains_aggregate(item.expr) for item in self.projection
        ) or (self.having is not None and contains_aggregate(self.having))


# --------------------------------------------------------------------------
# Traversal
# --------------------------------------------------------------------------


def iter_children(node: Node) -> Iterator[Node]:
    for f in fields(node):
        value = getattr(node, f.name)
        if isinstance(value, Node):
            yield value
        elif isinstance(value, tuple):
            for item in value:
                if isinstance(item, Node):
                    yield item


def map_children(node: Node, fn: Callable[[Node], Node]) -> Node:
    """Apply ``fn`` to each direct child and rebuild ``node`` if any changed.

    Unchanged children are shared; if nothing changed ``node`` itself is returned.
    """
    changes = {}
    for f in fields(node):
        value = getattr(node, f.name)
        if isinstance(value, Node):
            new_value = fn(value)
            if new_value is not value:
                changes[f.name] = new_value
        elif isinstance(value, tuple) and any(isinstance(item, Node) for item in value):
            new_items = tuple(fn(item) if isinstance(item, Node) else item for item in value)
            if any(new is not old for new, old in zip(new_items, value)):
                changes[f.name] = new_items
    if not changes:
        return node
    return replace(node, **changes)


def walk(node: Node, into_queries: bool = True) -> Iterator[Node]:
    """Yield ``node`` and its descendants in pre-order.

    With ``into_queries=False`` nested queries (subqueries, derived tables,
    CTE bodies) are not entered.
    """
    yield node
    for child in iter_children(node):
        if not into_queries and isinstance(child, Query):
            continue
        yield from walk(child, into_queries)


def find_all(node: Node, *types: type, into_queries: bool = True) -> Iterator[Node]:
    for candidate in walk(node, into_queries):
        if isinstance(candidate, types):
            yield candidate


# --------------------------------------------------------------------------
# Predicate helpers
# --------------------------------------------------------------------------


def conjuncts(predicate: Optional[Predicate]) -> tuple[Predicate, ...]:
    if predicate is None:
        return ()
    if isinstance(predicate, And):
        return predicate.items
    return (predicate,)


def make_and(items) -> Optional[Predicate]:
    """Build a flattened conjunction; returns None for no items."""
    flat: list[Predicate] = []
    for item in items:
        if item is None:
            continue
        if isinstance(item, And):
            flat.extend(item.items)
        else:
            flat.append(item)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def make_or(items) -> Optional[Predicate]:
    flat: list[Predicate] = []
    for item in items:
        if isinstance(item, Or):
            flat.extend(item.items)
        else:
            flat.append(item)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def is_constant(expr: Expression) -> bool:
    """Literal, or a cast of a literal."""
    if isinstance(expr, Literal):
        return True
    return isinstance(expr, Cast) and isinstance(expr.this, Literal)


def constant_literal(expr: Expression) -> Optional[Literal]:
    if isinstance(expr, Literal):
        return expr
    if isinstance(expr, Cast) and isinstance(expr.this, Literal):
        return expr.this
    return None


# --------------------------------------------------------------------------
# Grouping invariant
# --------------------------------------------------------------------------


def contains_aggregate(node: Node) -> bool:
    """True if a grouping aggregate appears in ``node`` outside nested queries."""
    for n in walk(node, into_queries=False):
        if isinstance(n, Aggregate) and n.is_grouping:
            return True
        if isinstance(n, (Opaque, OpaquePredicate)) and n.has_aggregate:
            return True
    return False


def is_opaque(node: Node) -> bool:
    return isinstance(node, (Opaque, OpaquePredicate))


def free_columns(node: Node) -> list[Column]:
    """Columns of ``node`` that are not inside a grouping aggregate or subquery."""
    found: list[Column] = []

    def visit(current: Node) -> None:
        if isinstance(current, Aggregate) and current.is_grouping:
            return
        if isinstance(current, (Query, Opaque, OpaquePredicate)):
            return
        if isinstance(current, Column):
            found.append(current)
            return
        for child in iter_children(current):
            visit(child)

    visit(node)
    return found


def same_column(a: Column, b: Column) -> bool:
    """Name match, treating an unqualified side as matching any qualifier."""
    if a.name.lower() != b.name.lower():
        return False
    if a.table is None or b.table is None:
        return True
    return a.table.lower() == b.table.lower()


def _is_grouped(expr: Expression, group_by: tuple[Expression, ...]) -> bool:
    if expr in group_by:
        return True
    if isinstance(expr, Column):
        return any(isinstance(g, Column) and same_column(expr, g) for g in group_by)
    return False


def _check_grouping(query: Query) -> None:
    aggregated = any(contains_aggregate(item.expr) for item in query.projection)
    if query.having is not None and contains_aggregate(query.having):
        aggregated = True
    if not aggregated and not query.group_by:
        return

    for item in query.projection:
        if isinstance(item.expr, (Star, Opaque)):
            continue
        if _is_grouped(item.expr, query.group_by):
            continue
        for column in free_columns(item.expr):
            if not _is_grouped(column, query.group_by):
                if query.group_by:
                    raise MalformedQueryError(
                        f"Column '{column}' must appear in GROUP BY or be used in an aggregate"
                    )
                raise MalformedQueryError(
                    f"Column '{column}' is projected alongside an aggregate without GROUP BY"
                )
