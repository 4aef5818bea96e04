"""Lexical scopes: which relations and CTEs a column reference can see."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .catalog import Catalog
from .errors import MalformedQueryError
from .ir import CTE, Column, DerivedTable, Query, Relation, Star, Table


@dataclass(frozen=True)
class Resolution:
    """Where a column reference points.

    Attributes:
        alias: Reference name of the relation, or None if it could not be pinned down.
        relation: The relation itself, when known.
        depth: 0 for the current query, 1 for its parent, and so on.
        certain: False when the answer relies on a relation whose columns are unknown.
    """

    alias: Optional[str]
    relation: Optional[Relation]
    depth: int
    certain: bool

    @property
    def is_outer(self) -> bool:
        return self.depth > 0


@dataclass
class Scope:
    relations: dict[str, Relation] = field(default_factory=dict)
    ctes: dict[str, CTE] = field(default_factory=dict)
    parent: Optional["Scope"] = None

    @classmethod
    def for_query(cls, query: Query, parent: Optional["Scope"] = None) -> "Scope":
        """Build the scope of ``query``'s own clauses.

        Raises:
            MalformedQueryError: If two FROM items share a reference name.
        """
        relations: dict[str, Relation] = {}
        for relation in query.relations:
            key = relation.reference.lower()
            if key in relations:
                raise MalformedQueryError(f"Relation name '{relation.reference}' is used more than once")
            relations[key] = relation
        ctes = {cte.name.lower(): cte for cte in query.ctes}
        return cls(relations, ctes, parent)

    def for_derived(self) -> "Scope":
        """Scope for a derived table body: sees CTEs but not sibling FROM items."""
        return Scope({}, self.ctes, self.parent)

    def lookup_cte(self, name: str) -> Optional[CTE]:
        scope: Optional[Scope] = self
        while scope is not None:
            cte = scope.ctes.get(name.lower())
            if cte is not None:
                return cte
            scope = scope.parent
        return None

    def cte_for(self, relation: Relation) -> Optional[CTE]:
        """The CTE a FROM item refers to, if it names one."""
        if isinstance(relation, Table) and relation.schema is None:
            return self.lookup_cte(relation.name)
        return None

    def relation_columns(self, relation: Relation, catalog: Optional[Catalog]) -> Optional[list[str]]:
        """Lower-cased output column names of ``relation``, or None if unknown."""
        if isinstance(relation, DerivedTable):
            return query_output_names(relation.query)
        cte = self.cte_for(relation)
        if cte is not None:
            return query_output_names(cte.query)
        if catalog is None:
            return None
        table = catalog.table(relation.name)
        return table.column_names if table is not None else None

    def resolve(self, column: Column, catalog: Optional[Catalog] = None) -> Optional[Resolution]:
        """Find the relation a column reference belongs to.

        Returns:
            A Resolution, or None if the reference certainly does not resolve.

        Raises:
            MalformedQueryError: If an unqualified name matches more than one relation.
        """
        if column.table is not None:
            return self._resolve_qualified(column, catalog)

        depth = 0
        scope: Optional[Scope] = self
        name = column.name.lower()
        while scope is not None:
            matches = []
            unknown = []
            for alias, relation in scope.relations.items():
                columns = scope.relation_columns(relation, catalog)
                if columns is None:
                    unknown.append((alias, relation))
                elif name in columns:
                    matches.append((alias, relation))
            if len(matches) > 1:
                names = ", ".join(alias for alias, _ in matches)
                raise MalformedQueryError(f"Column reference '{column.name}' is ambiguous ({names})")
            if matches:
                alias, relation = matches[0]
                return Resolution(relation.reference, relation, depth, certain=not unknown)
            if len(unknown) == 1 and len(scope.relations) == 1:
                alias, relation = unknown[0]
                return Resolution(relation.reference, relation, depth, certain=False)
            if unknown:
                return Resolution(None, None, depth, certain=False)
            scope = scope.parent
            depth += 1
        return None

    def _resolve_qualified(self, column: Column, catalog: Optional[Catalog]) -> Optional[Resolution]:
        depth = 0
        scope: Optional[Scope] = self
        while scope is not None:
            relation = scope.relations.get(column.table.lower())
            if relation is not None:
                columns = scope.relation_columns(relation, catalog)
                if columns is not None and column.name.lower() not in columns:
                    return None
                return Resolution(relation.reference, relation, depth, certain=columns is not None)
            scope = scope.parent
            depth += 1
        return None


def query_output_names(query: Query) -> Optional[list[str]]:
    """Lower-cased output names of a query, or None if any output is unnamed or a star."""
    names = []
    for item in query.projection:
        if isinstance(item.expr, Star):
            return None
        name = item.output_name
        if name is None:
            return None
        names.append(name.lower())
    return names
