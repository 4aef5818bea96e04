"""Relation schema catalog consumed by the rules that need schema facts.

H1, H4 and H5 can only prove their preconditions from declared column types,
nullability and keys; without a catalog they never fire.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

import duckdb
import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, SqlglotError

from .dialects import Dialect, DialectProfile, get_profile
from .ir import DataType
from .sqlglot_utils import identifier_name, parse_data_type, to_data_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnSchema:
    name: str
    data_type: DataType
    nullable: bool = True


@dataclass(frozen=True)
class TableSchema:
    """Declared shape of one base table.

    Attributes:
        name: Table name.
        columns: Columns in declaration order.
        primary_key: Column names of the primary key, empty if none.
        unique_keys: Column name tuples declared UNIQUE.
    """

    name: str
    columns: tuple[ColumnSchema, ...]
    primary_key: tuple[str, ...] = ()
    unique_keys: tuple[tuple[str, ...], ...] = ()

    def column(self, name: str) -> Optional[ColumnSchema]:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    @property
    def column_names(self) -> list[str]:
        return [column.name.lower() for column in self.columns]

    def is_nullable(self, name: str) -> bool:
        if name.lower() in {k.lower() for k in self.primary_key}:
            return False
        column = self.column(name)
        return column is None or column.nullable

    @property
    def keys(self) -> list[frozenset[str]]:
        """Column sets that identify a row.

        The primary key always counts. A UNIQUE key only counts when all of its
        columns are NOT NULL, since UNIQUE admits repeated NULLs.
        """
        keys = []
        if self.primary_key:
            keys.append(frozenset(k.lower() for k in self.primary_key))
        for unique in self.unique_keys:
            if all(not self.is_nullable(col) for col in unique):
                keys.append(frozenset(col.lower() for col in unique))
        return keys


class Catalog:
    """A case-insensitive collection of table schemas."""

    def __init__(self, tables: Iterable[TableSchema] = ()) -> None:
        self._tables: dict[str, TableSchema] = {}
        for table in tables:
            self.add(table)

    def add(self, table: TableSchema) -> None:
        self._tables[table.name.lower()] = table

    def table(self, name: str) -> Optional[TableSchema]:
        """Find a table by name; a schema prefix (``sales.orders``) is ignored."""
        lowered = name.lower()
        if lowered in self._tables:
            return self._tables[lowered]
        return self._tables.get(lowered.rsplit(".", 1)[-1])

    def __contains__(self, name: str) -> bool:
        return self.table(name) is not None

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self._tables.values())

    def __len__(self) -> int:
        return len(self._tables)

    def __repr__(self) -> str:
        return f"Catalog({sorted(self._tables)})"

    @classmethod
    def from_dict(
        cls,
        mapping: Mapping[str, Any],
        dialect: Union[Dialect, str] = Dialect.POSTGRES,
    ) -> "Catalog":
        """Build a catalog from a plain mapping.

        Accepted shape (an optional top-level ``"tables"`` key may wrap it)::

            {
                "customer": {
                    "columns": {"c_custkey": "INTEGER", "c_name": "VARCHAR(25)"},
                    "primary_key": ["c_custkey"],
                    "unique": [["c_name"]],
                    "not_null": ["c_name"]
                }
            }

        ``columns`` may also be a list of ``{"name", "type", "nullable"}`` objects.
        Type strings are read in ``dialect``.

        Raises:
            ValueError: If a table entry is malformed or missing its columns.
        """
        profile = get_profile(dialect)
        tables = mapping.get("tables", mapping)
        catalog = cls()
        for table_name, entry in tables.items():
            if not isinstance(entry, Mapping):
                raise ValueError(f"Table '{table_name}' must map to an object")
            raw_columns = entry.get("columns")
            if not raw_columns:
                raise ValueError(f"Table '{table_name}' has no columns")
            primary_key = tuple(entry.get("primary_key") or ())
            not_null = {name.lower() for name in entry.get("not_null") or ()}
            not_null.update(name.lower() for name in primary_key)

            if isinstance(raw_columns, Mapping):
                raw_columns = [{"name": n, "type": t} for n, t in raw_columns.items()]

            columns = []
            for raw in raw_columns:
                if not isinstance(raw, Mapping) or not raw.get("name"):
                    raise ValueError(f"Column entry {raw!r} of table '{table_name}' has no name")
                name = raw["name"]
                nullable = raw.get("nullable", True) and name.lower() not in not_null
                columns.append(
                    ColumnSchema(name, _parse_type(raw.get("type", "UNKNOWN"), profile), nullable)
                )
            unique_keys = tuple(tuple(key) for key in entry.get("unique") or ())
            catalog.add(TableSchema(table_name, tuple(columns), primary_key, unique_keys))
        return catalog

    @classmethod
    def from_json(
        cls,
        source: Union[str, Path],
        dialect: Union[Dialect, str] = Dialect.POSTGRES,
    ) -> "Catalog":
        """Load a catalog from a JSON file path or a JSON document string."""
        text = str(source)
        if not text.lstrip().startswith("{"):
            text = Path(source).read_text()
        return cls.from_dict(json.loads(text), dialect=dialect)

    @classmethod
    def from_ddl(cls, sql: str, dialect: Union[Dialect, str] = Dialect.POSTGRES) -> "Catalog":
        """Build a catalog from CREATE TABLE statements.

        Column-level and table-level PRIMARY KEY, UNIQUE and NOT NULL
        constraints are recognised; other statements are ignored.

        Raises:
            ValueError: If the DDL does not parse.
        """
        profile = get_profile(dialect)
        catalog = cls()
        try:
            statements = sqlglot.parse(sql, read=profile.sqlglot_dialect)
        except SqlglotError as e:
            raise ValueError(f"Could not parse catalog DDL: {e}") from e
        for statement in statements:
            if not isinstance(statement, exp.Create):
                continue
            if str(statement.args.get("kind") or "").upper() != "TABLE":
                continue
            schema = statement.this
            if not isinstance(schema, exp.Schema):
                logger.debug("Skipping CREATE TABLE without a column list")
                continue
            catalog.add(_table_from_schema(schema, profile))
        return catalog

    @classmethod
    def from_duckdb(cls, conn: duckdb.DuckDBPyConnection, schema: str = "main") -> "Catalog":
        """Read table schemas and key constraints from a DuckDB connection."""
        profile = get_profile(Dialect.DUCKDB)
        rows = conn.execute(
            """
            SELECT table_name, column_name, data_type, is_nullable
            FROM information_schema.columns
            WHERE table_schema = ?
            ORDER BY table_name, ordinal_position
            """,
            [schema],
        ).fetchall()
        constraints = conn.execute(
            """
            SELECT table_name, constraint_type, constraint_column_names
            FROM duckdb_constraints()
            WHERE schema_name = ? AND constraint_type IN ('PRIMARY KEY', 'UNIQUE')
            """,
            [schema],
        ).fetchall()

        columns: dict[str, list[ColumnSchema]] = {}
        for table_name, column_name, data_type, is_nullable in rows:
            columns.setdefault(table_name, []).append(
                ColumnSchema(
                    column_name,
                    _parse_type(data_type, profile),
                    nullable=str(is_nullable).upper() != "NO",
                )
            )

        primary_keys: dict[str, tuple[str, ...]] = {}
        unique_keys: dict[str, list[tuple[str, ...]]] = {}
        for table_name, constraint_type, column_names in constraints:
            if constraint_type == "PRIMARY KEY":
                primary_keys[table_name] = tuple(column_names)
            else:
                unique_keys.setdefault(table_name, []).append(tuple(column_names))

        return cls(
            TableSchema(
                name,
                tuple(cols),
                primary_keys.get(name, ()),
                tuple(unique_keys.get(name, ())),
            )
            for name, cols in columns.items()
        )


def _parse_type(text: str, profile: DialectProfile) -> DataType:
    try:
        return parse_data_type(text, profile)
    except (ParseError, ValueError):
        logger.debug(f"Keeping unparseable type '{text}' verbatim")
        return DataType(str(text).upper())


def _identifier_names(node: exp.Expression, profile: DialectProfile) -> tuple[str, ...]:
    return tuple(identifier_name(ident, profile) for ident in node.find_all(exp.Identifier))


def _table_from_schema(schema: exp.Schema, profile: DialectProfile) -> TableSchema:
    table_name = identifier_name(schema.this.this, profile)
    columns: list[tuple[str, DataType]] = []
    not_null: set[str] = set()
    primary_key: tuple[str, ...] = ()
    unique_keys: list[tuple[str, ...]] = []

    def table_constraint(node: exp.Expression) -> None:
        nonlocal primary_key
        if isinstance(node, exp.PrimaryKey):
            primary_key = _identifier_names(node, profile)
        elif isinstance(node, exp.UniqueColumnConstraint):
            unique_keys.append(_identifier_names(node, profile))

    for item in schema.expressions:
        if isinstance(item, exp.ColumnDef):
            name = identifier_name(item.this, profile)
            kind = item.args.get("kind")
            columns.append((name, to_data_type(kind, profile) if kind else DataType("UNKNOWN")))
            for constraint in item.args.get("constraints") or []:
                constraint_kind = constraint.args.get("kind")
                if isinstance(constraint_kind, exp.NotNullColumnConstraint):
                    if not constraint_kind.args.get("allow_null"):
                        not_null.add(name.lower())
                elif isinstance(constraint_kind, exp.PrimaryKeyColumnConstraint):
                    primary_key = (name,)
                elif isinstance(constraint_kind, exp.UniqueColumnConstraint):
                    unique_keys.append((name,))
        elif isinstance(item, exp.Constraint):
            for sub in item.expressions:
                table_constraint(sub)
        else:
            table_constraint(item)

    not_null.update(k.lower() for k in primary_key)
    return TableSchema(
        table_name,
        tuple(ColumnSchema(n, t, nullable=n.lower() not in not_null) for n, t in columns),
        primary_key,
        tuple(unique_keys),
    )
