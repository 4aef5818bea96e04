"""Parse concrete query text into the Query IR.

sqlglot does the tokenizing and dialect handling; this module maps the
subset of its AST the rewrite rules understand onto IR nodes and carries
everything else through as opaque source text.
"""

import logging
from dataclasses import replace
from typing import Optional, Union

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from .catalog import Catalog
from .dialects import Dialect, DialectProfile, get_profile
from .errors import MalformedQueryError, UnsupportedConstructError
from .ir import (
    CTE,
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
    Not,
    Opaque,
    OpaquePredicate,
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
    WindowSpec,
    make_and,
    make_or,
)
from .sqlglot_utils import (
    AGGREGATE_FUNCTIONS,
    ARITHMETIC_CLASSES,
    COMPARISON_CLASSES,
    RANKING_FUNCTIONS,
    SCALAR_FUNCTIONS,
    function_name,
    get_alias_name,
    get_arg,
    get_column_name,
    get_table_name_from_column,
    identifier_name,
    to_data_type,
)
from .validation import validate_query

logger = logging.getLogger(__name__)

_COMPARISONS = {cls: op for op, cls in COMPARISON_CLASSES.items()}
_ARITHMETIC = {cls: op for op, cls in ARITHMETIC_CLASSES.items()}
_AGGREGATES = {cls: name for name, cls in AGGREGATE_FUNCTIONS.items()}
_SCALARS = {cls: (name, keys) for name, (cls, keys) in SCALAR_FUNCTIONS.items()}

# SELECT arguments that have no IR form.
_UNSUPPORTED_CLAUSES = {
    "laterals": "LATERAL",
    "qualify": "QUALIFY",
    "windows": "a named WINDOW clause",
    "into": "SELECT INTO",
    "connect": "CONNECT BY",
    "locks": "a row locking clause",
    "sample": "TABLESAMPLE",
}


def parse_query(
    sql: str,
    dialect: Union[Dialect, DialectProfile, str] = Dialect.POSTGRES,
    catalog: Optional[Catalog] = None,
) -> Query:
    """Parse one SELECT statement into a validated Query.

    Args:
        sql: Query text in ``dialect``.
        dialect: Source dialect.
        catalog: Optional schemas used to check column references by name.

    Returns:
        The Query IR.

    Raises:
        MalformedQueryError: If the text does not parse or a column does not resolve.
        UnsupportedConstructError: If the statement has no IR form (e.g. INSERT, UNION).
    """
    profile = get_profile(dialect)
    try:
        statements = [s for s in sqlglot.parse(sql, read=profile.sqlglot_dialect) if s is not None]
    except (ParseError, TokenError) as e:
        raise MalformedQueryError(f"Could not parse query: {e}") from e
    if not statements:
        raise MalformedQueryError("No statement found in input")
    if len(statements) > 1:
        raise UnsupportedConstructError("Only a single statement can be rewritten")

    query = QueryParser(profile).query(statements[0])
    validate_query(query, catalog)
    return query


class QueryParser:
    """Converts sqlglot expressions of one dialect into IR nodes."""

    def __init__(self, profile: DialectProfile) -> None:
        self.profile = profile

    @property
    def dialect(self) -> str:
        return self.profile.sqlglot_dialect

    def query(self, node: exp.Expression) -> Query:
        if isinstance(node, exp.Subquery):
            if any(node.args.get(key) for key in ("limit", "offset", "order")):
                raise UnsupportedConstructError("Modifiers on a parenthesized query are not supported")
            return self.query(node.this)
        if isinstance(node, (exp.Union, exp.Intersect, exp.Except)):
            raise UnsupportedConstructError("Set operations are not supported")
        if not isinstance(node, exp.Select):
            raise UnsupportedConstructError(
                f"Only SELECT statements can be rewritten, got {node.key.upper()}"
            )
        for key, label in _UNSUPPORTED_CLAUSES.items():
            if node.args.get(key):
                raise UnsupportedConstructError(f"{label} is not supported")
        distinct = node.args.get("distinct")
        if distinct is not None and distinct.args.get("on"):
            raise UnsupportedConstructError("DISTINCT ON is not supported")

        ctes = self._ctes(node)
        source, joins = self._from(node)
        projection = tuple(self._select_item(e) for e in node.expressions)
        where = node.args.get("where")
        having = node.args.get("having")
        limit, offset = self._limit_offset(node)

        return Query(
            projection=projection,
            source=source,
            joins=joins,
            where=self.predicate(where.this) if where is not None else None,
            group_by=self._group_by(node.args.get("group"), projection),
            having=self.predicate(having.this) if having is not None else None,
            distinct=distinct is not None,
            order_by=self._order_by(node.args.get("order"), projection),
            limit=limit,
            offset=offset,
            ctes=ctes,
        )

    # ------------------------------------------------------------------
    # Clauses
    # ------------------------------------------------------------------

    def _ctes(self, node: exp.Select) -> tuple[CTE, ...]:
        with_ = get_arg(node, "with")
        if with_ is None:
            return ()
        if with_.args.get("recursive"):
            raise UnsupportedConstructError("WITH RECURSIVE is not supported")
        ctes = []
        for cte in with_.expressions:
            alias = cte.args.get("alias")
            if isinstance(alias, exp.TableAlias) and alias.columns:
                raise UnsupportedConstructError("CTE column lists are not supported")
            materialized = cte.args.get("materialized")
            ctes.append(
                CTE(
                    get_alias_name(cte, self.profile),
                    self.query(cte.this),
                    None if materialized is None else bool(materialized),
                )
            )
        return tuple(ctes)

    def _from(self, node: exp.Select) -> tuple[Optional[Relation], tuple[JoinEdge, ...]]:
        from_ = get_arg(node, "from")
        if from_ is None:
            if node.args.get("joins"):
                raise MalformedQueryError("JOIN without a FROM relation")
            return None, ()
        source = self._relation(from_.this)
        joins = [JoinEdge(self._relation(e), JoinKind.IMPLICIT) for e in from_.expressions]
        for join in node.args.get("joins") or []:
            joins.append(self._join(join))
        return source, tuple(joins)

    def _join(self, join: exp.Join) -> JoinEdge:
        if join.args.get("using"):
            raise UnsupportedConstructError("JOIN ... USING is not supported")
        if join.args.get("method"):
            raise UnsupportedConstructError(f"{join.text('method').upper()} JOIN is not supported")

        side = join.text("side").upper()
        kind = join.text("kind").upper()
        on = join.args.get("on")
        if kind not in ("", "INNER", "OUTER", "CROSS"):
            raise UnsupportedConstructError(f"{kind} JOIN is not supported")

        if side in ("LEFT", "RIGHT", "FULL"):
            join_kind = JoinKind[side]
        elif kind == "CROSS":
            join_kind = JoinKind.CROSS
        elif kind == "INNER" or on is not None:
            join_kind = JoinKind.INNER
        else:
            join_kind = JoinKind.IMPLICIT

        relation = self._relation(join.this)
        return JoinEdge(relation, join_kind, self.predicate(on) if on is not None else None)

    def _relation(self, node: exp.Expression) -> Relation:
        if isinstance(node, exp.Table):
            if not isinstance(node.this, exp.Identifier):
                raise UnsupportedConstructError("Table functions are not supported")
            if node.args.get("pivots") or node.args.get("joins"):
                raise UnsupportedConstructError("PIVOT and nested joins are not supported")
            alias = node.args.get("alias")
            if isinstance(alias, exp.TableAlias) and alias.columns:
                raise UnsupportedConstructError("Table column aliases are not supported")
            return Table(
                identifier_name(node.this, self.profile),
                get_alias_name(node, self.profile),
                identifier_name(node.args.get("db"), self.profile),
            )
        if isinstance(node, exp.Subquery):
            alias = get_alias_name(node, self.profile)
            if alias is None:
                raise UnsupportedConstructError("Derived tables must have an alias")
            alias_node = node.args.get("alias")
            if isinstance(alias_node, exp.TableAlias) and alias_node.columns:
                raise UnsupportedConstructError("Derived table column aliases are not supported")
            return DerivedTable(self.query(node.this), alias)
        raise UnsupportedConstructError(f"{node.key.upper()} in FROM is not supported")

    def _select_item(self, node: exp.Expression) -> SelectItem:
        if isinstance(node, exp.Alias):
            return SelectItem(
                self.expression(node.this),
                identifier_name(node.args.get("alias"), self.profile),
            )
        return SelectItem(self.expression(node))

    def _positional(self, node: exp.Expression, projection: tuple[SelectItem, ...], clause: str) -> Expression:
        """Resolve ``GROUP BY 2`` / ``ORDER BY 1`` to the projected expression."""
        if isinstance(node, exp.Literal) and node.is_int:
            position = int(node.this)
            if not 1 <= position <= len(projection):
                raise MalformedQueryError(f"{clause} position {position} is not in the select list")
            expr = projection[position - 1].expr
            if isinstance(expr, Star):
                raise UnsupportedConstructError(f"{clause} position referring to '*' is not supported")
            return expr
        return self.expression(node)

    def _group_by(self, group: Optional[exp.Group], projection: tuple[SelectItem, ...]) -> tuple[Expression, ...]:
        if group is None:
            return ()
        for key in ("rollup", "cube", "grouping_sets", "all"):
            if group.args.get(key):
                raise UnsupportedConstructError("GROUP BY ROLLUP/CUBE/GROUPING SETS/ALL is not supported")
        return tuple(self._positional(e, projection, "GROUP BY") for e in group.expressions)

    def _order_by(self, order: Optional[exp.Order], projection: tuple[SelectItem, ...]) -> tuple[OrderItem, ...]:
        if order is None:
            return ()
        items = []
        for ordered in order.expressions:
            this = ordered.this if isinstance(ordered, exp.Ordered) else ordered
            expr = self._positional(this, projection, "ORDER BY")
            items.append(self._order_item(ordered, expr))
        return tuple(items)

    def _order_item(self, ordered: exp.Expression, expr: Expression) -> OrderItem:
        if not isinstance(ordered, exp.Ordered):
            return OrderItem(expr)
        descending = bool(ordered.args.get("desc"))
        nulls_first = ordered.args.get("nulls_first")
        if nulls_first is None or bool(nulls_first) == self.profile.default_nulls_first(descending):
            return OrderItem(expr, descending)
        return OrderItem(expr, descending, bool(nulls_first))

    def _limit_offset(self, node: exp.Select) -> tuple[Optional[int], Optional[int]]:
        limit = None
        offset = None
        limit_node = node.args.get("limit")
        if limit_node is not None:
            if limit_node.args.get("percent") or limit_node.args.get("with_ties"):
                raise UnsupportedConstructError("LIMIT ... PERCENT / WITH TIES is not supported")
            count = (
                limit_node.args.get("expression")
                or limit_node.args.get("count")
                or limit_node.this
            )
            limit = self._int(count, "LIMIT")
            if limit_node.args.get("offset") is not None:
                offset = self._int(limit_node.args["offset"], "OFFSET")
        offset_node = node.args.get("offset")
        if offset_node is not None:
            offset = self._int(offset_node.args.get("expression") or offset_node.this, "OFFSET")
        return limit, offset

    @staticmethod
    def _int(node: Optional[exp.Expression], clause: str) -> int:
        if isinstance(node, exp.Literal) and node.is_int:
            return int(node.this)
        raise UnsupportedConstructError(f"{clause} must be an integer literal")

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def expression(self, node: exp.Expression) -> Expression:
        if isinstance(node, exp.Paren):
            return self.expression(node.this)
        if isinstance(node, exp.Star):
            return Star()
        if isinstance(node, exp.Column):
            if isinstance(node.this, exp.Star):
                return Star(get_table_name_from_column(node, self.profile))
            return self._column(node)
        if isinstance(node, exp.Literal):
            return Literal.string(node.this) if node.is_string else Literal.number(node.this)
        if isinstance(node, exp.Null):
            return Literal.null()
        if isinstance(node, exp.Boolean):
            return Literal("TRUE" if node.this else "FALSE", LiteralKind.BOOLEAN)
        if isinstance(node, exp.Neg) and isinstance(node.this, exp.Literal) and not node.this.is_string:
            return Literal.number(f"-{node.this.this}")
        # TryCast and friends subclass Cast but do not fail on bad input.
        if type(node) is exp.Cast and not node.args.get("format"):
            return Cast(self.expression(node.this), to_data_type(node.to, self.profile))
        if type(node) in _ARITHMETIC:
            return Arithmetic(_ARITHMETIC[type(node)], self.expression(node.this), self.expression(node.expression))
        if type(node) in _SCALARS:
            function = self._function(node)
            if function is not None:
                return function
        if type(node) in _AGGREGATES:
            aggregate = self._aggregate(node)
            if aggregate is not None:
                return aggregate
        if isinstance(node, exp.Window):
            windowed = self._window(node)
            if windowed is not None:
                return windowed
        if isinstance(node, exp.Subquery):
            try:
                return ScalarSubquery(self.query(node))
            except UnsupportedConstructError as e:
                logger.debug(f"Carrying scalar subquery opaquely: {e}")
        return self.opaque(node)

    def _column(self, node: exp.Column) -> Column:
        return Column(
            get_column_name(node, self.profile),
            get_table_name_from_column(node, self.profile),
        )

    def _function(self, node: exp.Func) -> Optional[Function]:
        name, keys = _SCALARS[type(node)]
        if any(value for key, value in node.args.items() if key not in keys):
            return None
        args = []
        for key in keys:
            value = node.args.get(key)
            if isinstance(value, list):
                args.extend(self.expression(v) for v in value)
            elif value is not None:
                args.append(self.expression(value))
        return Function(name, tuple(args))

    def _aggregate(self, node: exp.AggFunc) -> Optional[Aggregate]:
        if node.expressions:
            return None
        arg = node.this
        distinct = False
        if isinstance(arg, exp.Distinct):
            if len(arg.expressions) != 1:
                return None
            distinct = True
            arg = arg.expressions[0]
        if arg is None:
            return None
        name = _AGGREGATES[type(node)]
        if isinstance(arg, exp.Star):
            return Aggregate(name, Star(), distinct)
        return Aggregate(name, self.expression(arg), distinct)

    def _window(self, node: exp.Window) -> Optional[Aggregate]:
        if node.args.get("spec") or node.args.get("alias") or node.args.get("first") is not None:
            return None
        func = node.this
        if type(func) in _AGGREGATES:
            inner = self._aggregate(func)
        elif (
            function_name(func) in RANKING_FUNCTIONS
            and not func.expressions
            and (isinstance(func, exp.Anonymous) or func.this is None)
        ):
            inner = Aggregate(function_name(func))
        else:
            inner = None
        if inner is None:
            return None

        partition_by = tuple(self.expression(e) for e in node.args.get("partition_by") or [])
        order = node.args.get("order")
        order_by = ()
        if order is not None:
            order_by = tuple(
                self._order_item(o, self.expression(o.this if isinstance(o, exp.Ordered) else o))
                for o in order.expressions
            )
        return replace(inner, window=WindowSpec(partition_by, order_by))

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def predicate(self, node: exp.Expression) -> Predicate:
        if isinstance(node, exp.Paren):
            return self.predicate(node.this)
        if isinstance(node, exp.And):
            return make_and([self.predicate(node.left), self.predicate(node.right)])
        if isinstance(node, exp.Or):
            return make_or([self.predicate(node.left), self.predicate(node.right)])
        if isinstance(node, exp.Not):
            inner = node.this
            while isinstance(inner, exp.Paren):
                inner = inner.this
            if isinstance(inner, exp.Is) and isinstance(inner.expression, exp.Null):
                return IsNull(self.expression(inner.this), negated=True)
            return Not(self.predicate(inner))

        op = _COMPARISONS.get(type(node))
        if op is not None:
            right = node.expression
            if isinstance(right, (exp.All, exp.Any)):
                quantified = self._quantified(node, op, right)
                return quantified if quantified is not None else self.opaque_predicate(node)
            return Comparison(self.expression(node.this), op, self.expression(right))

        if isinstance(node, exp.In):
            return self._in(node)
        if isinstance(node, exp.Exists):
            try:
                return Exists(self.query(node.this))
            except UnsupportedConstructError as e:
                logger.debug(f"Carrying EXISTS opaquely: {e}")
                return self.opaque_predicate(node)
        if isinstance(node, exp.Is) and isinstance(node.expression, exp.Null):
            return IsNull(self.expression(node.this))
        return self.opaque_predicate(node)

    def _quantified(self, node: exp.Expression, op: str, right: exp.Expression) -> Optional[Quantified]:
        inner = right.this
        if not isinstance(inner, (exp.Select, exp.Subquery)):
            return None
        try:
            query = self.query(inner)
        except UnsupportedConstructError as e:
            logger.debug(f"Carrying quantified comparison opaquely: {e}")
            return None
        quantifier = Quantifier.ALL if isinstance(right, exp.All) else Quantifier.ANY
        return Quantified(self.expression(node.this), op, quantifier, query)

    def _in(self, node: exp.In) -> Predicate:
        if node.args.get("unnest") or node.args.get("field"):
            return self.opaque_predicate(node)
        query = node.args.get("query")
        values = node.expressions
        if query is None and len(values) == 1 and isinstance(values[0], (exp.Select, exp.Subquery)):
            query = values[0]
        this = self.expression(node.this)
        if query is not None:
            try:
                return InSubquery(this, self.query(query))
            except UnsupportedConstructError as e:
                logger.debug(f"Carrying IN subquery opaquely: {e}")
                return self.opaque_predicate(node)
        return InList(this, tuple(self.expression(v) for v in values))

    # ------------------------------------------------------------------
    # Opaque passthrough
    # ------------------------------------------------------------------

    def opaque(self, node: exp.Expression) -> Opaque:
        return Opaque(node.sql(dialect=self.dialect), self.dialect, *self._opaque_parts(node))

    def opaque_predicate(self, node: exp.Expression) -> OpaquePredicate:
        return OpaquePredicate(node.sql(dialect=self.dialect), self.dialect, *self._opaque_parts(node))

    def _opaque_parts(self, node: exp.Expression) -> tuple[tuple[Column, ...], bool, bool]:
        """Column references, grouping-aggregate presence and subquery presence of ``node``."""
        columns = tuple(
            self._column(column)
            for column in node.find_all(exp.Column)
            if not isinstance(column.this, exp.Star)
            and not _within(column, node, (exp.AggFunc, exp.Select))
        )
        has_aggregate = any(
            not _within(agg, node, (exp.Window, exp.Select))
            for agg in node.find_all(exp.AggFunc)
        )
        has_subquery = any(True for _ in node.find_all(exp.Select))
        return columns, has_aggregate, has_subquery


def _within(node: exp.Expression, top: exp.Expression, types: tuple) -> bool:
    """True if an ancestor of ``node``, up to and including ``top``, is one of ``types``."""
    if node is top:
        return False
    current = node.parent
    while current is not None:
        if isinstance(current, types):
            return True
        if current is top:
            return False
        current = current.parent
    return False
