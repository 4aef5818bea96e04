"""Render Query IR as concrete SQL text for a target dialect."""

import logging
import re
from typing import Union

from sqlglot import exp
from sqlglot.dialects.dialect import Dialect as SqlglotDialect

from .dialects import Dialect, DialectProfile, get_profile
from .errors import DialectUnsupportedFeatureError
from .ir import (
    And,
    Aggregate,
    Arithmetic,
    Cast,
    Column,
    Comparison,
    DerivedTable,
    Exists,
    Expression,
    Function,
    InList,
    InSubquery,
    IsNull,
    JoinEdge,
    JoinKind,
    Literal,
    LiteralKind,
    Node,
    Not,
    Opaque,
    OpaquePredicate,
    Or,
    OrderItem,
    Predicate,
    Quantified,
    Quantifier,
    Query,
    Relation,
    ScalarSubquery,
    SelectItem,
    Star,
    Table,
    walk,
)
from .sqlglot_utils import (
    AGGREGATE_FUNCTIONS,
    ARITHMETIC_CLASSES,
    COMPARISON_CLASSES,
    SCALAR_FUNCTIONS,
)

logger = logging.getLogger(__name__)

_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def emit(
    query: Query,
    dialect: Union[Dialect, DialectProfile, str] = Dialect.POSTGRES,
    pretty: bool = False,
    identify: bool = False,
) -> str:
    """Render ``query`` as SQL text.

    Args:
        query: The query to render.
        dialect: Target dialect.
        pretty: Format the output over multiple lines.
        identify: Quote every identifier.

    Raises:
        DialectUnsupportedFeatureError: If the target cannot express a construct in ``query``.
    """
    profile = get_profile(dialect)
    check_emittable(query, profile)
    return to_sqlglot(query, profile).sql(
        dialect=profile.sqlglot_dialect, pretty=pretty, identify=identify
    )


def emit_fragment(node: Node, dialect: Union[Dialect, DialectProfile, str] = Dialect.POSTGRES) -> str:
    """Render any IR node (query, predicate or expression) for reports and messages."""
    profile = get_profile(dialect)
    return Emitter(profile).node(node).sql(dialect=profile.sqlglot_dialect)


def to_sqlglot(query: Query, dialect: Union[Dialect, DialectProfile, str] = Dialect.POSTGRES) -> exp.Select:
    return Emitter(get_profile(dialect)).query(query)


def unsupported_features(query: Query, dialect: Union[Dialect, DialectProfile, str]) -> list[str]:
    """Constructs in ``query`` the target dialect cannot express."""
    profile = get_profile(dialect)
    features = []
    for node in walk(query):
        if isinstance(node, Query) and node.ctes:
            if not profile.supports_ctes:
                features.append("common table expressions")
            elif node is not query and not profile.supports_nested_ctes:
                features.append("WITH clauses inside subqueries")
        elif isinstance(node, Aggregate) and node.window is not None:
            if not profile.supports_window_functions:
                features.append("window functions")
    return list(dict.fromkeys(features))


def check_emittable(query: Query, dialect: Union[Dialect, DialectProfile, str]) -> None:
    """Raise DialectUnsupportedFeatureError if ``query`` cannot be rendered in ``dialect``."""
    profile = get_profile(dialect)
    features = unsupported_features(query, profile)
    if features:
        raise DialectUnsupportedFeatureError(profile.name, features[0])


class Emitter:
    """Builds sqlglot expressions for one target dialect."""

    def __init__(self, profile: DialectProfile) -> None:
        self.profile = profile
        sqlglot_dialect = SqlglotDialect.get_or_raise(profile.sqlglot_dialect)
        self._typed_division = getattr(sqlglot_dialect, "TYPED_DIVISION", False)
        self._safe_division = getattr(sqlglot_dialect, "SAFE_DIVISION", False)

    def node(self, node: Node) -> exp.Expression:
        if isinstance(node, Query):
            return self.query(node)
        if isinstance(node, Predicate):
            return self.predicate(node)
        if isinstance(node, Expression):
            return self.expression(node)
        if isinstance(node, (Table, DerivedTable)):
            return self.relation(node)
        if isinstance(node, SelectItem):
            return self.select_item(node)
        if isinstance(node, OrderItem):
            return self.ordered(node)
        raise TypeError(f"Cannot render {type(node).__name__}")

    def identifier(self, name: str) -> exp.Identifier:
        quoted = self.profile.fold(name) != name or not _SAFE_IDENTIFIER.match(name)
        return exp.to_identifier(name, quoted=quoted)

    def query(self, query: Query) -> exp.Select:
        select = exp.Select().select(*(self.select_item(i) for i in query.projection), copy=False)

        for cte in query.ctes:
            options = {}
            if cte.materialized is not None:
                if self.profile.supports_materialized_ctes:
                    options["materialized"] = cte.materialized
                else:
                    logger.debug(f"Dropping MATERIALIZED hint on '{cte.name}' for {self.profile.name}")
            select = select.with_(
                exp.TableAlias(this=self.identifier(cte.name)),
                as_=self.query(cte.query),
                copy=False,
                **options,
            )

        if query.source is not None:
            select = select.from_(self.relation(query.source), copy=False)
        for edge in query.joins:
            select.append("joins", self.join(edge))
        if query.where is not None:
            select.set("where", exp.Where(this=self.predicate(query.where)))
        if query.group_by:
            select.set("group", exp.Group(expressions=[self.expression(e) for e in query.group_by]))
        if query.having is not None:
            select.set("having", exp.Having(this=self.predicate(query.having)))
        if query.distinct:
            select.set("distinct", exp.Distinct())
        if query.order_by:
            select.set("order", exp.Order(expressions=[self.ordered(o) for o in query.order_by]))
        if query.limit is not None:
            select.set("limit", exp.Limit(expression=exp.Literal.number(query.limit)))
        if query.offset is not None:
            select.set("offset", exp.Offset(expression=exp.Literal.number(query.offset)))
        return select

    def relation(self, relation: Relation) -> exp.Expression:
        if isinstance(relation, DerivedTable):
            return exp.Subquery(
                this=self.query(relation.query),
                alias=exp.TableAlias(this=self.identifier(relation.alias)),
            )
        table = exp.Table(this=self.identifier(relation.name))
        if relation.schema:
            table.set("db", self.identifier(relation.schema))
        if relation.alias:
            table.set("alias", exp.TableAlias(this=self.identifier(relation.alias)))
        return table

    def join(self, edge: JoinEdge) -> exp.Join:
        join = exp.Join(this=self.relation(edge.relation))
        if edge.kind in (JoinKind.LEFT, JoinKind.RIGHT, JoinKind.FULL):
            join.set("side", edge.kind.value)
        elif edge.kind is JoinKind.CROSS:
            join.set("kind", "CROSS")
        elif edge.kind is JoinKind.INNER and edge.on is None:
            join.set("kind", "INNER")
        if edge.on is not None:
            join.set("on", self.predicate(edge.on))
        return join

    def select_item(self, item: SelectItem) -> exp.Expression:
        expr = self.expression(item.expr)
        if item.alias:
            return exp.Alias(this=expr, alias=self.identifier(item.alias))
        return expr

    def ordered(self, item: OrderItem) -> exp.Ordered:
        nulls_first = item.nulls_first
        if nulls_first is None:
            nulls_first = self.profile.default_nulls_first(item.descending)
        ordered = exp.Ordered(this=self.expression(item.expr), nulls_first=nulls_first)
        if item.descending:
            ordered.set("desc", True)
        return ordered

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def expression(self, expr: Expression) -> exp.Expression:
        if isinstance(expr, Column):
            column = exp.Column(this=self.identifier(expr.name))
            if expr.table:
                column.set("table", self.identifier(expr.table))
            return column
        if isinstance(expr, Star):
            if expr.table:
                return exp.Column(this=exp.Star(), table=self.identifier(expr.table))
            return exp.Star()
        if isinstance(expr, Literal):
            return self.literal(expr)
        if isinstance(expr, Cast):
            to = exp.DataType.build(self.profile.type_text(expr.to), dialect=self.profile.sqlglot_dialect)
            return exp.Cast(this=self._operand(self.expression(expr.this)), to=to)
        if isinstance(expr, Function):
            return self.function(expr)
        if isinstance(expr, Arithmetic):
            return self.arithmetic(expr)
        if isinstance(expr, Aggregate):
            return self.aggregate(expr)
        if isinstance(expr, ScalarSubquery):
            return exp.Subquery(this=self.query(expr.query))
        if isinstance(expr, Opaque):
            return exp.maybe_parse(expr.sql, dialect=expr.dialect)
        raise TypeError(f"Cannot render expression {type(expr).__name__}")

    def literal(self, literal: Literal) -> exp.Expression:
        if literal.kind is LiteralKind.NULL:
            return exp.Null()
        if literal.kind is LiteralKind.BOOLEAN:
            return exp.Boolean(this=literal.value.upper() == "TRUE")
        if literal.kind is LiteralKind.NUMBER:
            if literal.value.startswith("-"):
                return exp.Neg(this=exp.Literal.number(literal.value[1:]))
            return exp.Literal.number(literal.value)
        return exp.Literal.string(literal.value)

    def function(self, function: Function) -> exp.Expression:
        cls, keys = SCALAR_FUNCTIONS[function.name]
        args = [self.expression(a) for a in function.args]
        kwargs = {}
        for position, key in enumerate(keys):
            if key == "expressions":
                kwargs[key] = args[position:]
                break
            if position < len(args):
                kwargs[key] = args[position]
        return cls(**kwargs)

    def arithmetic(self, arithmetic: Arithmetic) -> exp.Expression:
        cls = ARITHMETIC_CLASSES[arithmetic.op]
        left = self._operand(self.expression(arithmetic.left), arithmetic=True)
        right = self._operand(self.expression(arithmetic.right), arithmetic=True)
        if cls is exp.Div:
            return exp.Div(this=left, expression=right, typed=self._typed_division, safe=self._safe_division)
        return cls(this=left, expression=right)

    def aggregate(self, aggregate: Aggregate) -> exp.Expression:
        if aggregate.name in AGGREGATE_FUNCTIONS:
            arg = exp.Star() if isinstance(aggregate.arg, Star) else self.expression(aggregate.arg)
            if aggregate.distinct:
                arg = exp.Distinct(expressions=[arg])
            func = AGGREGATE_FUNCTIONS[aggregate.name](this=arg)
        elif aggregate.name == "ROW_NUMBER":
            func = exp.RowNumber()
        else:
            func = exp.Anonymous(this=aggregate.name, expressions=[])
        if aggregate.window is None:
            return func
        window = exp.Window(this=func, over="OVER")
        if aggregate.window.partition_by:
            window.set("partition_by", [self.expression(e) for e in aggregate.window.partition_by])
        if aggregate.window.order_by:
            window.set("order", exp.Order(expressions=[self.ordered(o) for o in aggregate.window.order_by]))
        return window

    @staticmethod
    def _operand(node: exp.Expression, arithmetic: bool = False) -> exp.Expression:
        """Parenthesize binary operands so precedence survives rendering."""
        if isinstance(node, exp.Paren) or not isinstance(node, (exp.Binary, exp.Predicate)):
            return node
        if not arithmetic and isinstance(node, tuple(ARITHMETIC_CLASSES.values())):
            return node
        return exp.Paren(this=node)

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def predicate(self, predicate: Predicate) -> exp.Expression:
        if isinstance(predicate, Comparison):
            cls = COMPARISON_CLASSES[predicate.op]
            return cls(
                this=self._operand(self.expression(predicate.left)),
                expression=self._operand(self.expression(predicate.right)),
            )
        if isinstance(predicate, And):
            return self._connect(exp.And, predicate.items)
        if isinstance(predicate, Or):
            return self._connect(exp.Or, predicate.items)
        if isinstance(predicate, Not):
            inner = self.predicate(predicate.this)
            if isinstance(inner, exp.Connector):
                inner = exp.Paren(this=inner)
            return exp.Not(this=inner)
        if isinstance(predicate, InList):
            return exp.In(
                this=self._operand(self.expression(predicate.this)),
                expressions=[self.expression(v) for v in predicate.values],
            )
        if isinstance(predicate, IsNull):
            node = exp.Is(this=self._operand(self.expression(predicate.this)), expression=exp.Null())
            return exp.Not(this=node) if predicate.negated else node
        if isinstance(predicate, (Quantified, InSubquery, Exists)):
            return self._subquery_predicate(predicate)
        if isinstance(predicate, OpaquePredicate):
            return exp.maybe_parse(predicate.sql, dialect=predicate.dialect)
        raise TypeError(f"Cannot render predicate {type(predicate).__name__}")

    def _connect(self, cls: type, items: tuple[Predicate, ...]) -> exp.Expression:
        nodes = []
        for item in items:
            node = self.predicate(item)
            if isinstance(node, exp.Connector):
                node = exp.Paren(this=node)
            nodes.append(node)
        result = nodes[0]
        for node in nodes[1:]:
            result = cls(this=result, expression=node)
        return result

    def _subquery_predicate(self, predicate: Predicate) -> exp.Expression:
        inner = self.query(predicate.query)
        if isinstance(predicate, Exists):
            return exp.Exists(this=inner)
        if isinstance(predicate, InSubquery):
            return exp.In(
                this=self._operand(self.expression(predicate.this)),
                query=exp.Subquery(this=inner),
            )
        quantified = exp.All if predicate.quantifier is Quantifier.ALL else exp.Any
        return COMPARISON_CLASSES[predicate.op](
            this=self._operand(self.expression(predicate.left)),
            expression=quantified(this=inner),
        )
