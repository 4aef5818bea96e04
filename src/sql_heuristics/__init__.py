"""Rule-based SQL rewriting with heuristics H1-H8."""

from .catalog import Catalog, ColumnSchema, TableSchema
from .config import RewriterConfig
from .dialects import Dialect, DialectProfile, get_profile
from .emitter import emit, emit_fragment
from .errors import (
    DialectUnsupportedFeatureError,
    MalformedQueryError,
    NonConvergenceWarning,
    QueryRewriteError,
    RuleApplicabilityAmbiguous,
    UnsupportedConstructError,
)
from .parser import parse_query
from .report import NoteKind, RewriteReport, RuleFiring, RuleNote
from .rewriter import QueryRewriter, RewriteResult, SqlRewriteOutcome, rewrite_sql
from .rules import PRIORITY, Rule, RuleContext, default_rules, get_rules

__all__ = [
    "Catalog",
    "ColumnSchema",
    "Dialect",
    "DialectProfile",
    "DialectUnsupportedFeatureError",
    "MalformedQueryError",
    "NonConvergenceWarning",
    "NoteKind",
    "PRIORITY",
    "QueryRewriteError",
    "QueryRewriter",
    "RewriteReport",
    "RewriteResult",
    "RewriterConfig",
    "Rule",
    "RuleApplicabilityAmbiguous",
    "RuleContext",
    "RuleFiring",
    "RuleNote",
    "SqlRewriteOutcome",
    "TableSchema",
    "UnsupportedConstructError",
    "default_rules",
    "emit",
    "emit_fragment",
    "get_profile",
    "get_rules",
    "parse_query",
    "rewrite_sql",
]
