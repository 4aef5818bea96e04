"""Configuration for the rewriter."""

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional, Union

from .dialects import Dialect, get_profile
from .rules import PRIORITY, RULE_CLASSES


@dataclass
class RewriterConfig:
    """Configuration for a rewrite run.

    Attributes:
        source_dialect: Dialect the input text is written in (default: postgres)
        target_dialect: Dialect to render the output in (default: same as source)
        max_iterations: Cap on full rewrite passes (default: 10)
        rules: Rule ids to apply, in priority order (default: H4, H2, H3, H8, H7, H1, H5, H6)
        skip_internally_optimized: Skip rules the target engine already applies itself (default: False)
        pretty: Format output over multiple lines (default: False)
        identify: Quote every identifier in the output (default: False)
    """

    source_dialect: Union[Dialect, str] = Dialect.POSTGRES
    target_dialect: Optional[Union[Dialect, str]] = None
    max_iterations: int = 10
    rules: list[str] = field(default_factory=lambda: list(PRIORITY))
    skip_internally_optimized: bool = False
    pretty: bool = False
    identify: bool = False

    def __post_init__(self):
        """Validate configuration values."""
        self.source_dialect = get_profile(self.source_dialect).dialect
        if self.target_dialect is None:
            self.target_dialect = self.source_dialect
        else:
            self.target_dialect = get_profile(self.target_dialect).dialect
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.rules = [rule_id.strip().upper() for rule_id in self.rules]
        unknown = [rule_id for rule_id in self.rules if rule_id not in RULE_CLASSES]
        if unknown:
            raise ValueError(f"Unknown rule id(s): {', '.join(unknown)}")
        if len(set(self.rules)) != len(self.rules):
            raise ValueError("rules must not repeat a rule id")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RewriterConfig":
        """Build a config from a plain mapping, e.g. a parsed JSON file.

        Raises:
            ValueError: If the mapping has keys that are not config fields.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config key(s): {', '.join(sorted(unknown))}")
        values = dict(data)
        if isinstance(values.get("rules"), str):
            values["rules"] = [r for r in values["rules"].split(",") if r.strip()]
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_dialect": self.source_dialect.value,
            "target_dialect": self.target_dialect.value,
            "max_iterations": self.max_iterations,
            "rules": list(self.rules),
            "skip_internally_optimized": self.skip_internally_optimized,
            "pretty": self.pretty,
            "identify": self.identify,
        }
