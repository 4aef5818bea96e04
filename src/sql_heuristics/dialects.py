"""Dialect profiles: the few concrete-syntax differences the engine cares about."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Union

from sqlglot.dialects.dialect import Dialect as SqlglotDialect

from .ir import DataType


class Dialect(Enum):
    """Source/target dialects understood by the parser and emitter."""

    POSTGRES = "postgres"
    COMMERCIAL = "commercial"
    DUCKDB = "duckdb"
    MYSQL57 = "mysql57"


# sqlglot type names that map onto a different logical type name.
_BASE_LOGICAL_TYPES = {
    "INT": "INTEGER",
    "NCHAR": "CHAR",
    "NVARCHAR": "VARCHAR",
    "FLOAT": "REAL",
    "DATETIME": "TIMESTAMP",
    "DATETIME2": "TIMESTAMP",
    "BIT": "BOOLEAN",
}


@dataclass(frozen=True)
class DialectProfile:
    """Everything the parser, emitter and rules need to know about a dialect.

    Attributes:
        dialect: The dialect this profile describes.
        sqlglot_dialect: Name of the sqlglot dialect used to read and write text.
        identifier_case: "lower" if unquoted identifiers fold to lower case, else None.
        supports_ctes: Whether WITH clauses can be emitted.
        supports_window_functions: Whether OVER (...) can be emitted.
        supports_nested_ctes: Whether WITH may appear inside a subquery.
        supports_materialized_ctes: Whether the MATERIALIZED hint can be emitted.
        type_names: Logical type name -> dialect spelling, where they differ.
        logical_types: Extra sqlglot type name -> logical type name overrides.
        internal_rewrites: Heuristics the engine is known to apply on its own.
        fixed_width_chars: Whether CHAR(n) values are stored blank-padded to n characters.
        default_decimal: (precision, scale) of DECIMAL written without parameters, None if unbounded.
    """

    dialect: Dialect
    sqlglot_dialect: str
    identifier_case: Optional[str] = None
    supports_ctes: bool = True
    supports_window_functions: bool = True
    supports_nested_ctes: bool = True
    supports_materialized_ctes: bool = False
    type_names: Mapping[str, str] = field(default_factory=dict)
    logical_types: Mapping[str, str] = field(default_factory=dict)
    internal_rewrites: frozenset = frozenset()
    fixed_width_chars: bool = True
    default_decimal: Optional[tuple[int, int]] = None

    @property
    def name(self) -> str:
        return self.dialect.value

    def fold(self, name: str, quoted: bool = False) -> str:
        """Apply the dialect's case folding to an identifier."""
        if quoted or self.identifier_case is None:
            return name
        if self.identifier_case == "lower":
            return name.lower()
        return name.upper()

    def type_text(self, data_type: DataType) -> str:
        """Spell a logical type for this dialect."""
        base = self.type_names.get(data_type.name, data_type.name)
        if data_type.params:
            return f"{base}({', '.join(data_type.params)})"
        return base

    def logical_type_name(self, sqlglot_type_name: str) -> str:
        name = sqlglot_type_name.upper()
        if name in self.logical_types:
            return self.logical_types[name]
        return _BASE_LOGICAL_TYPES.get(name, name)

    def default_nulls_first(self, descending: bool) -> bool:
        """Where NULLs sort when ORDER BY does not say."""
        null_ordering = SqlglotDialect.get_or_raise(self.sqlglot_dialect).NULL_ORDERING
        if null_ordering == "nulls_are_last":
            return False
        if null_ordering == "nulls_are_small":
            return not descending
        return descending


PROFILES = {
    Dialect.POSTGRES: DialectProfile(
        dialect=Dialect.POSTGRES,
        sqlglot_dialect="postgres",
        identifier_case="lower",
        supports_materialized_ctes=True,
        type_names={"DOUBLE": "DOUBLE PRECISION"},
    ),
    Dialect.COMMERCIAL: DialectProfile(
        dialect=Dialect.COMMERCIAL,
        sqlglot_dialect="tsql",
        supports_nested_ctes=False,
        type_names={"DOUBLE": "FLOAT", "BOOLEAN": "BIT", "TIMESTAMP": "DATETIME2"},
        logical_types={"FLOAT": "DOUBLE"},
        internal_rewrites=frozenset({"H2", "H3"}),
        default_decimal=(18, 0),
    ),
    Dialect.DUCKDB: DialectProfile(
        dialect=Dialect.DUCKDB,
        sqlglot_dialect="duckdb",
        fixed_width_chars=False,
        supports_materialized_ctes=True,
        default_decimal=(18, 3),
    ),
    Dialect.MYSQL57: DialectProfile(
        dialect=Dialect.MYSQL57,
        sqlglot_dialect="mysql",
        supports_ctes=False,
        supports_window_functions=False,
        supports_nested_ctes=False,
        default_decimal=(10, 0),
    ),
}

_ALIASES = {
    "postgresql": Dialect.POSTGRES,
    "tsql": Dialect.COMMERCIAL,
    "sqlserver": Dialect.COMMERCIAL,
    "mysql": Dialect.MYSQL57,
}


def get_profile(dialect: Union[Dialect, DialectProfile, str]) -> DialectProfile:
    """Look up a profile by enum member, value, or common alias.

    Raises:
        ValueError: If the dialect is unknown.
    """
    if isinstance(dialect, DialectProfile):
        return dialect
    if isinstance(dialect, Dialect):
        return PROFILES[dialect]
    key = str(dialect).strip().lower()
    if key in _ALIASES:
        return PROFILES[_ALIASES[key]]
    try:
        return PROFILES[Dialect(key)]
    except ValueError:
        supported = ", ".join(d.value for d in Dialect)
        raise ValueError(f"Unknown dialect '{dialect}'. Supported: {supported}") from None
