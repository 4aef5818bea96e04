"""Rewrite report: what fired, what was considered and declined, and why."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .dialects import Dialect, DialectProfile
from .emitter import emit_fragment
from .ir import Node


class NoteKind(Enum):
    DECLINED = "declined"
    SKIPPED = "skipped"
    CAVEAT = "caveat"
    UNSUPPORTED = "unsupported"
    NON_CONVERGENCE = "non_convergence"


@dataclass(frozen=True)
class RuleFiring:
    """One applied rewrite. ``before`` and ``after`` are the replaced and replacing subtrees."""

    rule_id: str
    description: str
    before: Node
    after: Node
    iteration: int
    caveat: Optional[str] = None

    def to_dict(self, dialect: Union[Dialect, DialectProfile, str]) -> dict[str, Any]:
        return {
            "rule": self.rule_id,
            "description": self.description,
            "iteration": self.iteration,
            "before": emit_fragment(self.before, dialect),
            "after": emit_fragment(self.after, dialect),
            "caveat": self.caveat,
        }


@dataclass(frozen=True)
class RuleNote:
    rule_id: Optional[str]
    reason: str
    kind: NoteKind = NoteKind.DECLINED

    def to_dict(self) -> dict[str, Any]:
        return {"rule": self.rule_id, "kind": self.kind.value, "reason": self.reason}


@dataclass
class RewriteReport:
    """Everything the rewriter did to one query.

    Attributes:
        firings: Applied rewrites, in the order they happened.
        notes: Declined, skipped and unsupported rules plus caveats, without duplicates.
        iterations: Number of full passes run.
        converged: False if the iteration cap was hit before a fixpoint.
    """

    firings: list[RuleFiring] = field(default_factory=list)
    notes: list[RuleNote] = field(default_factory=list)
    iterations: int = 0
    converged: bool = True

    def add_note(self, rule_id: Optional[str], reason: str, kind: NoteKind = NoteKind.DECLINED) -> None:
        note = RuleNote(rule_id, reason, kind)
        if note not in self.notes:
            self.notes.append(note)

    def notes_of(self, kind: NoteKind) -> list[RuleNote]:
        return [note for note in self.notes if note.kind is kind]

    @property
    def fired_rules(self) -> list[str]:
        """Ids of the rules that fired, in first-firing order."""
        return list(dict.fromkeys(firing.rule_id for firing in self.firings))

    @property
    def changed(self) -> bool:
        return bool(self.firings)

    @property
    def warnings(self) -> list[str]:
        return [note.reason for note in self.notes_of(NoteKind.NON_CONVERGENCE)]

    def to_dict(self, dialect: Union[Dialect, DialectProfile, str] = Dialect.POSTGRES) -> dict[str, Any]:
        return {
            "converged": self.converged,
            "iterations": self.iterations,
            "firings": [firing.to_dict(dialect) for firing in self.firings],
            "notes": [note.to_dict() for note in self.notes],
        }

    def summary(self, dialect: Union[Dialect, DialectProfile, str] = Dialect.POSTGRES) -> str:
        lines = [
            f"{len(self.firings)} rewrite(s) in {self.iterations} pass(es)"
            + ("" if self.converged else " (iteration cap reached)")
        ]
        for firing in self.firings:
            lines.append(f"[{firing.rule_id}] {firing.description}")
            lines.append(f"    before: {emit_fragment(firing.before, dialect)}")
            lines.append(f"    after:  {emit_fragment(firing.after, dialect)}")
            if firing.caveat:
                lines.append(f"    caveat: {firing.caveat}")
        for note in self.notes:
            if note.kind is NoteKind.CAVEAT:
                continue
            prefix = f"[{note.rule_id}] " if note.rule_id else ""
            lines.append(f"{prefix}{note.kind.value}: {note.reason}")
        return "\n".join(lines)
