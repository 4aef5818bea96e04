"""Fixpoint rewriter: applies the heuristic rules to a Query IR until nothing changes."""

import logging
import warnings
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from .catalog import Catalog
from .config import RewriterConfig
from .dialects import DialectProfile, get_profile
from .emitter import emit
from .errors import (
    DialectUnsupportedFeatureError,
    NonConvergenceWarning,
    RuleApplicabilityAmbiguous,
    UnsupportedConstructError,
)
from .ir import (
    And,
    DerivedTable,
    JoinEdge,
    Node,
    Not,
    Or,
    Query,
    Relation,
    map_children,
)
from .parser import parse_query
from .report import NoteKind, RewriteReport, RuleFiring
from .rules import Rule, RuleContext, get_rules
from .scope import Scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewriteResult:
    query: Query
    report: RewriteReport


@dataclass(frozen=True)
class SqlRewriteOutcome:
    """Result of a text-to-text rewrite.

    ``query`` is None when the input had no IR form and was passed through.
    """

    sql: str
    query: Optional[Query]
    report: RewriteReport

    @property
    def changed(self) -> bool:
        return self.report.changed


class QueryRewriter:
    """Applies heuristic rules H1..H8 to queries.

    Example:
        >>> rewriter = QueryRewriter(catalog=Catalog.from_ddl(ddl))
        >>> rewriter.transform_query("SELECT * FROM nation WHERE n_name IN ('FRANCE')")
    """

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        rules: Optional[Iterable[Rule]] = None,
        config: Optional[RewriterConfig] = None,
    ) -> None:
        """Initialize the rewriter.

        Args:
            catalog: Optional schemas. Without one, H1, H4 and H5 never fire.
            rules: Rule instances in priority order. Defaults to the rules named in ``config``.
            config: Dialects, iteration cap and output options. Defaults to RewriterConfig().
        """
        self.config = config or RewriterConfig()
        self.catalog = catalog
        self.rules = list(rules) if rules is not None else get_rules(self.config.rules)
        self.source: DialectProfile = get_profile(self.config.source_dialect)
        self.target: DialectProfile = get_profile(self.config.target_dialect)

    def rewrite(self, query: Query) -> RewriteResult:
        """Rewrite ``query`` to a fixpoint.

        Emits a NonConvergenceWarning (and records it in the report) if the
        iteration cap is reached while rules are still firing; the partially
        rewritten query is still returned.
        """
        report = RewriteReport()
        rules = self._active_rules(report)
        current = query
        for iteration in range(1, self.config.max_iterations + 1):
            rewrite_pass = _RewritePass(rules, self.catalog, self.target, report, iteration)
            current = rewrite_pass.query(current, None, at_root=True)
            report.iterations = iteration
            logger.debug(f"Pass {iteration}: {rewrite_pass.fired} firing(s)")
            if rewrite_pass.fired == 0:
                break
        else:
            report.converged = False
            message = f"No fixpoint after {self.config.max_iterations} iteration(s); result is partially rewritten"
            report.add_note(None, message, NoteKind.NON_CONVERGENCE)
            warnings.warn(message, NonConvergenceWarning, stacklevel=2)
        return RewriteResult(current, report)

    def rewrite_sql(self, sql: str) -> SqlRewriteOutcome:
        """Parse, rewrite and render ``sql``.

        Statements with no IR form are returned unchanged with an ``unsupported`` note.

        Raises:
            MalformedQueryError: If the input does not parse or does not resolve.
            DialectUnsupportedFeatureError: If the result cannot be rendered in the target dialect.
        """
        try:
            query = parse_query(sql, self.source, self.catalog)
        except UnsupportedConstructError as e:
            logger.debug(f"Passing query through unchanged: {e}")
            report = RewriteReport()
            report.add_note(None, str(e), NoteKind.UNSUPPORTED)
            return SqlRewriteOutcome(sql, None, report)

        result = self.rewrite(query)
        text = emit(result.query, self.target, pretty=self.config.pretty, identify=self.config.identify)
        return SqlRewriteOutcome(text, result.query, result.report)

    def transform_query(self, query: str) -> str:
        """Transform a SQL query string and return the rewritten SQL string."""
        return self.rewrite_sql(query).sql

    def _active_rules(self, report: RewriteReport) -> list[Rule]:
        if not self.config.skip_internally_optimized:
            return list(self.rules)
        active = []
        for rule in self.rules:
            if rule.rule_id in self.target.internal_rewrites:
                report.add_note(
                    rule.rule_id,
                    f"{self.target.name} already applies this rewrite internally",
                    NoteKind.SKIPPED,
                )
            else:
                active.append(rule)
        return active


class _RewritePass:
    """One bottom-up pass over a query tree."""

    def __init__(
        self,
        rules: list[Rule],
        catalog: Optional[Catalog],
        target: DialectProfile,
        report: RewriteReport,
        iteration: int,
    ) -> None:
        self.rules = rules
        self.catalog = catalog
        self.target = target
        self.report = report
        self.iteration = iteration
        self.fired = 0

    def query(self, query: Query, parent: Optional[Scope], at_root: bool = False) -> Query:
        scope = Scope.for_query(query, parent)
        ctx = RuleContext(self.catalog, self.target, scope, at_root=at_root)
        filtering = ctx.evolve(filtering=True)
        cte_scope = Scope({}, scope.ctes, parent)

        changes = {}
        ctes = tuple(
            cte if (body := self.query(cte.query, cte_scope)) is cte.query else replace(cte, query=body)
            for cte in query.ctes
        )
        if any(new is not old for new, old in zip(ctes, query.ctes)):
            changes["ctes"] = ctes
        if query.source is not None:
            source = self._relation(query.source, scope)
            if source is not query.source:
                changes["source"] = source
        joins = tuple(self._join(edge, scope, filtering) for edge in query.joins)
        if any(new is not old for new, old in zip(joins, query.joins)):
            changes["joins"] = joins

        projection = tuple(map_children(item, lambda n: self.visit(n, ctx)) for item in query.projection)
        if any(new is not old for new, old in zip(projection, query.projection)):
            changes["projection"] = projection
        if query.where is not None:
            where = self.visit(query.where, filtering)
            if where is not query.where:
                changes["where"] = where
        group_by = tuple(self.visit(expr, ctx) for expr in query.group_by)
        if any(new is not old for new, old in zip(group_by, query.group_by)):
            changes["group_by"] = group_by
        if query.having is not None:
            having = self.visit(query.having, filtering)
            if having is not query.having:
                changes["having"] = having
        order_by = tuple(map_children(item, lambda n: self.visit(n, ctx)) for item in query.order_by)
        if any(new is not old for new, old in zip(order_by, query.order_by)):
            changes["order_by"] = order_by

        if changes:
            query = replace(query, **changes)
        return self.apply_rules(query, ctx, parent)

    def _relation(self, relation: Relation, scope: Scope) -> Relation:
        if isinstance(relation, DerivedTable):
            body = self.query(relation.query, scope.for_derived())
            if body is not relation.query:
                return replace(relation, query=body)
        return relation

    def _join(self, edge: JoinEdge, scope: Scope, ctx: RuleContext) -> JoinEdge:
        relation = self._relation(edge.relation, scope)
        on = self.visit(edge.on, ctx) if edge.on is not None else None
        if relation is edge.relation and on is edge.on:
            return edge
        return replace(edge, relation=relation, on=on)

    def visit(self, node: Node, ctx: RuleContext) -> Node:
        """Rewrite an expression or predicate subtree bottom-up."""
        if isinstance(node, Not):
            child_ctx = ctx.evolve(negated=not ctx.negated)
        elif isinstance(node, (And, Or)):
            child_ctx = ctx
        else:
            child_ctx = ctx.evolve(filtering=False)

        def visit_child(child: Node) -> Node:
            if isinstance(child, Query):
                return self.query(child, ctx.scope)
            return self.visit(child, child_ctx)

        return self.apply_rules(map_children(node, visit_child), ctx)

    def apply_rules(self, node: Node, ctx: RuleContext, parent: Optional[Scope] = None) -> Node:
        for rule in self.rules:
            if not rule.applies_to(node):
                continue
            rule_ctx = ctx
            if isinstance(node, Query):
                rule_ctx = ctx.evolve(scope=Scope.for_query(node, parent))
            if not rule.matches(node, rule_ctx):
                continue
            try:
                new = rule.rewrite(node, rule_ctx)
            except RuleApplicabilityAmbiguous as e:
                logger.debug(f"{rule.rule_id} declined: {e.reason}")
                self.report.add_note(rule.rule_id, e.reason, NoteKind.DECLINED)
                continue
            except DialectUnsupportedFeatureError as e:
                logger.debug(f"{rule.rule_id} skipped: {e}")
                self.report.add_note(rule.rule_id, str(e), NoteKind.UNSUPPORTED)
                continue
            if new is node or new == node:
                continue

            caveat = rule.caveat(node, new, rule_ctx)
            self.report.firings.append(
                RuleFiring(rule.rule_id, rule.description, node, new, self.iteration, caveat)
            )
            if caveat:
                self.report.add_note(rule.rule_id, caveat, NoteKind.CAVEAT)
            logger.debug(f"{rule.rule_id} fired in pass {self.iteration}")
            self.fired += 1
            node = new
        return node


def rewrite_sql(
    sql: str,
    catalog: Optional[Catalog] = None,
    config: Optional[RewriterConfig] = None,
) -> SqlRewriteOutcome:
    """Rewrite ``sql`` with the default rules; see :meth:`QueryRewriter.rewrite_sql`."""
    return QueryRewriter(catalog=catalog, config=config).rewrite_sql(sql)
