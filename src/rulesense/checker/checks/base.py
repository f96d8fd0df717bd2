"""
Base class for checks.

All checks must inherit from Check and implement the check() method.
Every check receives a CheckContext with the rule being linted and the
provenance tree of its query, which the linter builds once per rule and
shares read-only between all checks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Sequence

from pydantic import BaseModel, ConfigDict

from rulesense.checker.models import Problem, Severity
from rulesense.parser.models import LineRange, Rule

if TYPE_CHECKING:
    from rulesense.checker.metadata import MetadataSource
    from rulesense.config import Config
    from rulesense.promql.ast import Expr, PositionRange
    from rulesense.provenance.models import ProvenanceNode


class CheckConfig(BaseModel):
    """
    Base configuration for all checks.

    Checks can define their own config schema by subclassing this.

    Example:
        class MyCheckConfig(CheckConfig):
            threshold: int = 10
    """

    model_config = ConfigDict(frozen=True, extra="forbid")


class CheckContext:
    """
    Everything a check may look at while checking one rule.

    Provides access to:
    - The rule and the file it was read from
    - The rule's provenance tree (None when the query has a syntax error)
    - Every other rule of the same file with its own provenance tree
    - A metric metadata source (if available)
    """

    def __init__(
        self,
        rule: Rule,
        provenance: "ProvenanceNode | None" = None,
        path: str | None = None,
        siblings: Sequence[tuple[Rule, "ProvenanceNode | None"]] = (),
        metadata: "MetadataSource | None" = None,
    ) -> None:
        self.rule = rule
        self.provenance = provenance
        self.path = path
        self.siblings = tuple(siblings)
        self.metadata = metadata

    @property
    def query(self) -> str:
        return self.rule.expr.text

    @property
    def ast(self) -> "Expr | None":
        return self.rule.expr.ast

    def other_rules(self) -> list[tuple[Rule, "ProvenanceNode | None"]]:
        """Sibling rules excluding the one being checked."""
        return [(rule, tree) for rule, tree in self.siblings if rule is not self.rule]


class Check(ABC):
    """
    Abstract base class for checks.

    Each check detects a specific class of problems in rules.
    Checks should be:
    - Deterministic: Same input always produces same output
    - Read-only: The provenance tree is shared with other checks
    - Focused: One check, one concern

    Attributes:
        check_id: Unique identifier, ``area/name`` (e.g., "promql/aggregate")
        version: Semver string, bump when detection logic changes
        severity: Default severity for problems from this check
        description: One-line description for documentation
        config_schema: Pydantic model for check options (default: CheckConfig)
        online: True when the check needs a metadata source
        uses_provenance: False for checks that don't look at the query,
            they still run when the query has a syntax error
    """

    # Subclasses must define these
    check_id: str
    version: str = "1.0.0"
    severity: Severity
    description: str = ""

    # Configuration schema (subclasses can override)
    config_schema: type[CheckConfig] = CheckConfig

    online: bool = False
    uses_provenance: bool = True

    def __init__(self, config: CheckConfig | dict[str, Any] | None = None) -> None:
        """
        Initialize the check with configuration.

        Args:
            config: Configuration as CheckConfig instance, dict, or None for defaults.
                    If dict, it's validated against config_schema.
        """
        if config is None:
            self.config = self.config_schema()
        elif isinstance(config, dict):
            self.config = self.config_schema(**config)
        else:
            self.config = config

    @classmethod
    def from_config(cls, config: "Config") -> "Check":
        """Create the check with its options from the global configuration."""
        return cls(config.check_settings(cls.check_id).options)

    @abstractmethod
    def check(self, ctx: CheckContext) -> list[Problem]:
        """
        Check one rule and return problems.

        Returns:
            List of problems, or empty list if no issues detected.
        """

    def problem(
        self,
        ctx: CheckContext,
        summary: str,
        text: str,
        *,
        severity: Severity | None = None,
        details: str = "",
        lines: LineRange | None = None,
        fragment: "PositionRange | None" = None,
    ) -> Problem:
        """Build a problem for the rule in ``ctx``, anchored at its query by default."""
        return Problem(
            check_id=self.check_id,
            severity=severity or self.severity,
            summary=summary,
            text=text,
            details=details,
            lines=lines or ctx.rule.expr.lines,
            fragment=fragment,
            fragment_text=fragment.fragment(ctx.query) if fragment is not None else "",
            path=ctx.path,
            rule_name=ctx.rule.name,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(check_id={self.check_id!r}, version={self.version!r})"
