"""
JSON Schema definitions for stable lint output.

Provides versioned schema for:
- CI/CD integration
- Editor and bot integrations
- Documentation generation

The schema is stable across minor versions.
Breaking changes only in major versions.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LinesSchema(BaseModel):
    """Schema for a line range in a rule file."""

    model_config = ConfigDict(frozen=True)

    first: int = Field(..., description="First line, 1-based")
    last: int = Field(..., description="Last line, inclusive")


class FragmentSchema(BaseModel):
    """Schema for the query fragment a problem points at."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(..., description="Start offset in the query, 0-based")
    end: int = Field(..., description="End offset in the query, exclusive")
    text: str = Field("", description="Query text covered by the fragment")


class ProblemSchema(BaseModel):
    """Schema for a single problem."""

    model_config = ConfigDict(frozen=True)

    check_id: str = Field(..., description="Check that reported the problem")
    severity: str = Field(..., description="Severity level (fatal/bug/warning/information)")
    summary: str = Field(..., description="Short summary")
    text: str = Field(..., description="Explanation of the problem")
    details: str = Field("", description="Background information, may contain markdown")
    path: str | None = Field(None, description="Rule file path")
    rule_name: str | None = Field(None, description="Alerting or recording rule name")
    lines: LinesSchema = Field(..., description="Lines the problem applies to")
    fragment: FragmentSchema | None = Field(None, description="Query fragment, if any")


class CheckRunSchema(BaseModel):
    """Schema for a check execution record."""

    model_config = ConfigDict(frozen=True)

    check_id: str = Field(..., description="Check identifier")
    version: str = Field(..., description="Check version")
    status: str = Field(..., description="Execution status (pass/skip/fail)")
    rule_name: str | None = Field(None, description="Rule the check ran against")
    runtime_ms: float = Field(0.0, description="Execution time in milliseconds")
    problems_count: int = Field(0, description="Number of problems reported")
    error_summary: str | None = Field(None, description="Error message if failed")
    skip_reason: str | None = Field(None, description="Reason if skipped")


class SummarySchema(BaseModel):
    """Schema for result summary."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(0, description="Total problems count")
    fatal: int = Field(0, description="Fatal problems count")
    bug: int = Field(0, description="Bug problems count")
    warning: int = Field(0, description="Warning problems count")
    information: int = Field(0, description="Information problems count")
    files: int = Field(0, description="Rule files read")
    rules: int = Field(0, description="Rules linted")
    errors: int = Field(0, description="Files that couldn't be read")
    checks_passed: int = Field(0, description="Check runs that passed")
    checks_skipped: int = Field(0, description="Check runs that were skipped")
    checks_failed: int = Field(0, description="Check runs that failed")


class LintResultSchema(BaseModel):
    """
    Top-level schema for lint results.

    This schema is stable across minor versions.
    Breaking changes require major version bump.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field("1.0", description="Schema version")
    rulesense_version: str = Field(..., description="RuleSense version")
    config_hash: str | None = Field(None, description="Hash of configuration")
    duration_ms: float | None = Field(None, description="Lint duration")
    summary: SummarySchema = Field(..., description="Result summary")
    problems: list[ProblemSchema] = Field(default_factory=list, description="All problems")
    check_runs: list[CheckRunSchema] = Field(default_factory=list, description="Check execution records")
    errors: list[dict[str, Any]] = Field(default_factory=list, description="Files that couldn't be read")


def get_json_schema() -> dict[str, Any]:
    """Get the JSON Schema of the lint output."""
    return LintResultSchema.model_json_schema()


# Schema version - increment on breaking changes
SCHEMA_VERSION = "1.0"
