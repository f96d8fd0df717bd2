"""
Data models for the checker module.

These models represent the output of checks - the problems detected in
rules. They're designed to be:
- Immutable (frozen=True): Problems don't change after creation
- Serializable: Easy JSON output for --format json
- Sortable: Deterministic output order across runs
- Observable: Explicit status for PASS/SKIP/FAIL distinction
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rulesense.parser.models import LineRange
from rulesense.promql.ast import PositionRange


class CheckRunStatus(str, Enum):
    """
    Status of a check execution - distinguishes PASS vs SKIP vs FAIL.

    Users must be able to tell why a check didn't report problems
    (no issues vs preconditions not met vs crash).
    """

    PASS = "pass"      # Check executed normally
    SKIP = "skip"      # Preconditions not met (e.g., no metadata source)
    FAIL = "fail"      # Check crashed with an error


class Severity(str, Enum):
    """
    Severity levels for problems.

    FATAL: The rule can't be loaded or evaluated at all
    BUG: The rule will not work as intended
    WARNING: The rule works but is likely to misbehave
    INFORMATION: Improvement opportunity
    """

    FATAL = "fatal"
    BUG = "bug"
    WARNING = "warning"
    INFORMATION = "information"

    @property
    def rank(self) -> int:
        """Lower is more severe."""
        return _SEVERITY_ORDER[self]

    def __lt__(self, other: object) -> bool:
        """Enable sorting by severity (FATAL first)."""
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def at_least(self, other: "Severity") -> bool:
        """True if this severity is as severe as ``other`` or more."""
        return self.rank <= other.rank


_SEVERITY_ORDER = {
    Severity.FATAL: 0,
    Severity.BUG: 1,
    Severity.WARNING: 2,
    Severity.INFORMATION: 3,
}


class Problem(BaseModel):
    """
    A single problem detected in a rule.

    Attributes:
        check_id: Identifier of the check that reported the problem
            (e.g., "promql/aggregate").
        severity: How serious the problem is.
        summary: Short, stable description used for grouping.
        text: Human-readable explanation of this occurrence.
        details: Longer background, may contain markdown links.
        lines: Lines of the rule file the problem applies to.
        fragment: Range of the query to underline, if any.
        fragment_text: Text covered by ``fragment``.
        path: Rule file path, when read from disk.
        rule_name: Name of the alerting or recording rule.

    Example:
        Problem(
            check_id="promql/impossible",
            severity=Severity.WARNING,
            summary="dead code in query",
            text="The `foo{a=\\"1\\", a=\\"2\\"}` selector can never match ...",
            lines=LineRange(first=3, last=3),
        )
    """

    model_config = ConfigDict(frozen=True)

    check_id: str = Field(..., description="Check that reported the problem")
    severity: Severity = Field(..., description="Severity level of the problem")
    summary: str = Field(..., min_length=1, description="Short summary")
    text: str = Field(..., min_length=1, description="Explanation of the problem")
    details: str = Field(default="", description="Background information")
    lines: LineRange = Field(..., description="Lines the problem applies to")
    fragment: PositionRange | None = Field(default=None, description="Query range to underline")
    fragment_text: str = Field(default="", description="Text of the underlined range")
    path: str | None = Field(default=None, description="Rule file path")
    rule_name: str | None = Field(default=None, description="Rule name")

    def sort_key(self) -> tuple[Any, ...]:
        return (
            self.path or "",
            self.lines.first,
            self.severity.rank,
            self.check_id,
            self.fragment.start if self.fragment else -1,
            self.text,
        )

    def __lt__(self, other: "Problem") -> bool:
        """
        Enable deterministic sorting of problems.

        Sort order: path, first line, severity (FATAL first), then check id.
        """
        return self.sort_key() < other.sort_key()


class CheckRun(BaseModel):
    """Record of a single check execution against one rule."""

    model_config = ConfigDict(frozen=True)

    check_id: str = Field(..., description="Check identifier")
    version: str = Field(..., description="Check version")
    status: CheckRunStatus = Field(..., description="Execution status")
    rule_name: str | None = Field(default=None, description="Rule the check ran against")
    runtime_ms: float = Field(default=0.0, description="Execution time in milliseconds")
    problems_count: int = Field(default=0, description="Number of problems reported")
    error_summary: str | None = Field(default=None, description="Error message if FAIL")
    skip_reason: str | None = Field(default=None, description="Reason if SKIP")


class LintResult(BaseModel):
    """
    Complete result of linting one or more rule files.

    Contains:
    - problems: All detected problems, sorted by location and severity
    - runs: Status of every check execution (PASS/SKIP/FAIL)
    - errors: Files that couldn't be read, as serialized errors
    """

    model_config = ConfigDict(frozen=True)

    problems: tuple[Problem, ...] = Field(default_factory=tuple)
    runs: tuple[CheckRun, ...] = Field(default_factory=tuple)
    errors: tuple[dict[str, Any], ...] = Field(default_factory=tuple)
    files_count: int = Field(default=0, description="Number of files read")
    rules_count: int = Field(default=0, description="Number of rules linted")
    duration_ms: float | None = Field(default=None, description="Total lint duration")
    config_hash: str | None = Field(default=None, description="Hash of the configuration used")

    def problems_by_severity(self, severity: Severity) -> list[Problem]:
        """Get all problems of a specific severity."""
        return [p for p in self.problems if p.severity == severity]

    def runs_by_status(self, status: CheckRunStatus) -> list[CheckRun]:
        """Get all check runs with a specific status."""
        return [r for r in self.runs if r.status == status]

    def has_problems(self, min_severity: Severity = Severity.INFORMATION) -> bool:
        """Check if any problem is at least as severe as ``min_severity``."""
        return any(p.severity.at_least(min_severity) for p in self.problems)

    @property
    def has_errors(self) -> bool:
        """Check if any file couldn't be read."""
        return len(self.errors) > 0

    def summary(self) -> dict[str, int]:
        """Get a summary count by severity and check status."""
        return {
            "total": len(self.problems),
            "fatal": len(self.problems_by_severity(Severity.FATAL)),
            "bug": len(self.problems_by_severity(Severity.BUG)),
            "warning": len(self.problems_by_severity(Severity.WARNING)),
            "information": len(self.problems_by_severity(Severity.INFORMATION)),
            "files": self.files_count,
            "rules": self.rules_count,
            "errors": len(self.errors),
            "checks_passed": len(self.runs_by_status(CheckRunStatus.PASS)),
            "checks_skipped": len(self.runs_by_status(CheckRunStatus.SKIP)),
            "checks_failed": len(self.runs_by_status(CheckRunStatus.FAIL)),
        }
