"""Utility functions for working with sqlglot expressions."""

from typing import Any, Optional

from sqlglot import exp

from .dialects import DialectProfile
from .ir import DataType

# Scalar functions with an IR form: name -> (sqlglot class, argument keys in order).
SCALAR_FUNCTIONS = {
    "UPPER": (exp.Upper, ("this",)),
    "LOWER": (exp.Lower, ("this",)),
    "ABS": (exp.Abs, ("this",)),
    "LENGTH": (exp.Length, ("this",)),
    "ROUND": (exp.Round, ("this", "decimals")),
    "COALESCE": (exp.Coalesce, ("this", "expressions")),
    "SUBSTRING": (exp.Substring, ("this", "start", "length")),
}

AGGREGATE_FUNCTIONS = {
    "MAX": exp.Max,
    "MIN": exp.Min,
    "SUM": exp.Sum,
    "AVG": exp.Avg,
    "COUNT": exp.Count,
}

RANKING_FUNCTIONS = ("ROW_NUMBER", "RANK", "DENSE_RANK")

COMPARISON_CLASSES = {
    "=": exp.EQ,
    "<>": exp.NEQ,
    "<": exp.LT,
    "<=": exp.LTE,
    ">": exp.GT,
    ">=": exp.GTE,
}

ARITHMETIC_CLASSES = {
    "+": exp.Add,
    "-": exp.Sub,
    "*": exp.Mul,
    "/": exp.Div,
    "%": exp.Mod,
}


def function_name(node: exp.Expression) -> str:
    """Upper-case SQL name of a function node, e.g. ``ROW_NUMBER``."""
    if isinstance(node, exp.Anonymous):
        return str(node.this).upper()
    return node.sql_name().upper()


def get_arg(node: exp.Expression, key: str) -> Any:
    """Read an argument whose key may carry a trailing underscore.

    Recent sqlglot releases spell some keyword-named arguments with a trailing
    underscore (``from_``, ``with_``); older ones do not.
    """
    value = node.args.get(key)
    if value is None:
        value = node.args.get(f"{key}_")
    return value


def identifier_name(node: Optional[exp.Expression], profile: DialectProfile) -> Optional[str]:
    """Return the folded name of an identifier-like node.

    Args:
        node: An Identifier (or anything exposing ``name``), or None.
        profile: Dialect whose folding convention applies to unquoted names.

    Returns:
        The name, or None if the node is missing or empty.
    """
    if node is None:
        return None
    if isinstance(node, str):
        return profile.fold(node) if node else None
    name = node.name
    if not name:
        return None
    quoted = bool(node.args.get("quoted")) if isinstance(node, exp.Identifier) else False
    return profile.fold(name, quoted)


def get_column_name(column: exp.Column, profile: DialectProfile) -> str:
    """Extract the folded column name from a column expression."""
    return identifier_name(column.this, profile) or column.name


def get_table_name_from_column(column: exp.Column, profile: DialectProfile) -> Optional[str]:
    """Extract the folded table qualifier from a column expression.

    Returns:
        The qualifier, or None if the column is not qualified.
    """
    table = column.args.get("table")
    if table is None or not column.table:
        return None
    return identifier_name(table, profile)


def get_alias_name(node: exp.Expression, profile: DialectProfile) -> Optional[str]:
    """Return the folded alias of a Table/Subquery/CTE, if it has one."""
    alias = node.args.get("alias")
    if alias is None:
        return None
    if isinstance(alias, exp.TableAlias):
        return identifier_name(alias.this, profile)
    return identifier_name(alias, profile)


def to_data_type(node: exp.DataType, profile: DialectProfile) -> DataType:
    """Convert a sqlglot DataType to a logical IR DataType."""
    type_name = node.this.name if hasattr(node.this, "name") else str(node.this)
    params = []
    for param in node.expressions:
        inner = param.this if isinstance(param, exp.DataTypeParam) else param
        params.append(inner.name if hasattr(inner, "name") and inner.name else inner.sql())
    return DataType(profile.logical_type_name(type_name), tuple(p.upper() for p in params))


def parse_data_type(text: str, profile: DialectProfile) -> DataType:
    """Parse a type spelled in ``profile``'s dialect, e.g. ``"CHAR(25)"``."""
    return to_data_type(exp.DataType.build(text, dialect=profile.sqlglot_dialect), profile)
