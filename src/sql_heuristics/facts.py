"""Fact base for uniqueness proofs.

Facts are gathered from one query block: declared keys of its base tables,
column equalities and column-to-constant bindings implied by its WHERE and
inner-join conditions. A column set is a superkey of the join result when the
columns it functionally determines cover a key of every relation.

Anything the base cannot establish raises RuleApplicabilityAmbiguous; nothing
is ever assumed.
"""

import logging
from typing import Iterable, Optional

from .catalog import Catalog, TableSchema
from .errors import RuleApplicabilityAmbiguous
from .ir import (
    Column,
    Comparison,
    DerivedTable,
    InList,
    Query,
    Star,
    conjuncts,
    is_constant,
)
from .scope import Scope

logger = logging.getLogger(__name__)

ColumnKey = tuple[str, str]


class FactBase:
    """Keys, equalities and constants for a single query block."""

    def __init__(self, query: Query, scope: Scope, catalog: Optional[Catalog]) -> None:
        if catalog is None:
            raise RuleApplicabilityAmbiguous("no catalog to prove uniqueness from")
        self.query = query
        self.scope = scope
        self.catalog = catalog
        self.tables: dict[str, TableSchema] = {}
        self._parent: dict[ColumnKey, ColumnKey] = {}
        self.constants: set[ColumnKey] = set()

        for edge in query.joins:
            if not edge.is_inner:
                raise RuleApplicabilityAmbiguous(f"{edge.kind.value} JOIN can add unmatched rows")
        for relation in query.relations:
            if isinstance(relation, DerivedTable):
                raise RuleApplicabilityAmbiguous(f"derived table '{relation.alias}' has no declared keys")
            if scope.cte_for(relation) is not None:
                raise RuleApplicabilityAmbiguous(f"CTE '{relation.name}' has no declared keys")
            table = catalog.table(relation.name)
            if table is None:
                raise RuleApplicabilityAmbiguous(f"table '{relation.name}' is not in the catalog")
            self.tables[relation.reference.lower()] = table

        predicates = list(conjuncts(query.where))
        for edge in query.joins:
            predicates.extend(conjuncts(edge.on))
        for predicate in predicates:
            self._learn(predicate)

    def _learn(self, predicate) -> None:
        if isinstance(predicate, Comparison) and predicate.op == "=":
            left, right = predicate.left, predicate.right
            if isinstance(left, Column) and isinstance(right, Column):
                a, b = self.key_of(left), self.key_of(right)
                if a is not None and b is not None:
                    self._union(a, b)
                return
            for column, other in ((left, right), (right, left)):
                if isinstance(column, Column) and is_constant(other):
                    key = self.key_of(column)
                    if key is not None:
                        self.constants.add(key)
        elif isinstance(predicate, InList) and len(predicate.values) == 1:
            if isinstance(predicate.this, Column) and is_constant(predicate.values[0]):
                key = self.key_of(predicate.this)
                if key is not None:
                    self.constants.add(key)

    def key_of(self, column: Column) -> Optional[ColumnKey]:
        """Return the (relation, column) key of a reference local to this block, if certain."""
        resolution = self.scope.resolve(column, self.catalog)
        if resolution is None or not resolution.certain or resolution.is_outer:
            return None
        return resolution.alias.lower(), column.name.lower()

    def require_key_of(self, column: Column) -> ColumnKey:
        key = self.key_of(column)
        if key is None:
            raise RuleApplicabilityAmbiguous(f"column '{column}' does not resolve with certainty")
        return key

    def _find(self, key: ColumnKey) -> ColumnKey:
        parent = self._parent.setdefault(key, key)
        if parent != key:
            parent = self._find(parent)
            self._parent[key] = parent
        return parent

    def _union(self, a: ColumnKey, b: ColumnKey) -> None:
        root_a, root_b = self._find(a), self._find(b)
        if root_a != root_b:
            self._parent[root_a] = root_b

    def equivalent(self, a: ColumnKey, b: ColumnKey) -> bool:
        return a == b or self._find(a) == self._find(b)

    def columns_of(self, alias: str) -> list[ColumnKey]:
        return [(alias, name) for name in self.tables[alias].column_names]

    def expand_star(self, star: Star) -> list[ColumnKey]:
        if star.table is None:
            return [key for alias in self.tables for key in self.columns_of(alias)]
        alias = star.table.lower()
        if alias not in self.tables:
            raise RuleApplicabilityAmbiguous(f"'{star.table}.*' does not name a relation")
        return self.columns_of(alias)

    def closure(self, columns: Iterable[ColumnKey]) -> set[ColumnKey]:
        """Every column functionally determined by ``columns`` on the join result."""
        known = set(columns) | self.constants
        while True:
            before = len(known)
            roots = {self._find(k) for k in known if k in self._parent}
            known |= {k for k in list(self._parent) if self._find(k) in roots}
            for alias, table in self.tables.items():
                if any(all((alias, col) in known for col in key) for key in table.keys):
                    known.update(self.columns_of(alias))
            if len(known) == before:
                return known

    def require_superkey(self, columns: Iterable[ColumnKey], what: str) -> None:
        """Raise unless ``columns`` determine a key of every relation in the block."""
        if not self.tables:
            raise RuleApplicabilityAmbiguous(f"{what}: query has no base relations")
        closure = self.closure(columns)
        for alias, table in self.tables.items():
            if not table.keys:
                raise RuleApplicabilityAmbiguous(f"{what}: table '{table.name}' declares no usable key")
            if not any(all((alias, col) in closure for col in key) for key in table.keys):
                raise RuleApplicabilityAmbiguous(
                    f"{what}: no key of '{alias}' is determined by the selected columns"
                )
        logger.debug(f"{what}: superkey proven over {sorted(self.tables)}")
