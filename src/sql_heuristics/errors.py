"""Exceptions and warnings raised by the rewriting engine."""

from typing import Optional


class QueryRewriteError(ValueError):
    """Base class for all engine errors."""


class MalformedQueryError(QueryRewriteError):
    """The input violates a Query IR invariant.

    Raised for unparseable text, columns that do not resolve to a relation in
    scope, ambiguous unqualified columns, and aggregate/grouping mismatches.
    Aborts the whole request.
    """


class UnsupportedConstructError(QueryRewriteError):
    """A statement has no IR representation (e.g. INSERT, UNION, DISTINCT ON)."""


class DialectUnsupportedFeatureError(QueryRewriteError):
    """The target dialect cannot express a construct present in the IR."""

    def __init__(self, dialect: str, feature: str) -> None:
        self.dialect = dialect
        self.feature = feature
        super().__init__(f"Dialect '{dialect}' does not support {feature}")


class RuleApplicabilityAmbiguous(Exception):
    """A rule's safety precondition cannot be proven.

    Never escapes the rewriter: it is caught and recorded as a ``declined``
    note on the rewrite report.
    """

    def __init__(self, reason: str, rule_id: Optional[str] = None) -> None:
        self.reason = reason
        self.rule_id = rule_id
        super().__init__(reason)


class NonConvergenceWarning(UserWarning):
    """The rewriter hit its iteration cap before reaching a fixpoint."""
