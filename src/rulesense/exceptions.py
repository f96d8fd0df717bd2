"""
Package-level exception hierarchy for RuleSense.

All exceptions inherit from RuleSenseError, enabling:
- Catching all RuleSense errors with a single except clause
- Context fields for debugging (check_id, rule name, config_key, positions)
- Structured serialization via to_dict() for JSON error output

Hierarchy:
    RuleSenseError
    ├── AnalyzerError          – Errors while linting
    │   ├── CheckError         – A specific check failed during execution
    │   └── ConfigurationError – Invalid linter configuration
    └── ParseError             – Input could not be parsed
        ├── RuleFileError      – Rule file is not valid YAML or has a bad layout
        └── PromQLSyntaxError  – Query text is not valid PromQL
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rulesense.promql.ast import PositionRange


class RuleSenseError(Exception):
    """
    Base exception for all RuleSense errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Lint Errors ──────────────────────────────────────────────────────────


class AnalyzerError(RuleSenseError):
    """Errors while running checks."""
    pass


class CheckError(AnalyzerError):
    """
    Error during check execution.

    Captures which check failed and which rule it was looking at.

    Attributes:
        check_id: The ID of the check that failed.
        check_version: Version of the check.
        rule_name: Name of the alert or recording rule being checked (if known).
        original_error: The underlying exception.
    """

    def __init__(
        self,
        check_id: str,
        check_version: str,
        original_error: Exception,
        rule_name: str | None = None,
    ) -> None:
        self.check_id = check_id
        self.check_version = check_version
        self.rule_name = rule_name
        self.original_error = original_error

        context = f"Check '{check_id}' v{check_version}"
        if rule_name:
            context += f" on rule '{rule_name}'"

        message = (
            f"{context} failed: "
            f"{original_error.__class__.__name__}: {original_error}"
        )
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "check_id": self.check_id,
            "check_version": self.check_version,
            "rule_name": self.rule_name,
            "original_error_type": self.original_error.__class__.__name__,
            "original_error_message": str(self.original_error),
        }


class ConfigurationError(AnalyzerError):
    """
    Error in linter configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


# ── Parse Errors ─────────────────────────────────────────────────────────


class ParseError(RuleSenseError):
    """
    Failed to parse input.

    Attributes:
        detail: Technical details for debugging (optional).
        source: Where the error occurred (e.g., "yaml", "file_read", "structure").
    """

    def __init__(
        self,
        message: str,
        *,
        detail: str | None = None,
        source: str = "unknown",
    ) -> None:
        self.detail = detail
        self.source = source
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}\n\nDetails: {self.detail}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["detail"] = self.detail
        result["source"] = self.source
        return result


class RuleFileError(ParseError):
    """
    Rule file cannot be read or does not have the expected layout.

    Attributes:
        path: Path of the rule file, if it was read from disk.
        line: 1-based line of the offending YAML node (if known).
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        line: int | None = None,
        detail: str | None = None,
        source: str = "structure",
    ) -> None:
        self.path = path
        self.line = line
        super().__init__(message, detail=detail, source=source)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["path"] = self.path
        result["line"] = self.line
        return result


class PromQLSyntaxError(ParseError):
    """
    Query text is not valid PromQL.

    Attributes:
        pos: Character range of the offending token in the query.
    """

    def __init__(self, message: str, pos: "PositionRange") -> None:
        self.pos = pos
        super().__init__(message, source="promql")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["start"] = self.pos.start
        result["end"] = self.pos.end
        return result
