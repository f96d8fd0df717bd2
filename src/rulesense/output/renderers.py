"""
Output renderers for different formats.

Separates presentation logic from linting logic.
Uses schema.py Pydantic models as the single source of truth
for JSON serialization, no manual dict construction.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape

from rulesense import __version__
from rulesense.checker.models import CheckRunStatus, Severity
from rulesense.output.schema import (
    CheckRunSchema,
    FragmentSchema,
    LinesSchema,
    LintResultSchema,
    ProblemSchema,
    SummarySchema,
)

if TYPE_CHECKING:
    from rulesense.checker.models import CheckRun, LintResult, Problem


class OutputFormat(str, Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"


SEVERITY_STYLES = {
    Severity.FATAL: "bold red",
    Severity.BUG: "red",
    Severity.WARNING: "yellow",
    Severity.INFORMATION: "blue",
}


def render(
    result: "LintResult",
    format: OutputFormat = OutputFormat.TEXT,
    console: Console | None = None,
) -> str:
    """
    Render a lint result in the specified format.

    Args:
        result: Lint result to render
        format: Output format (text, json)
        console: If given, the output is also printed to it, in colour
            when the console supports it

    Returns:
        Formatted string
    """
    if format == OutputFormat.TEXT:
        output = render_text(result)
        if console is not None:
            print_text(result, console)
        return output
    elif format == OutputFormat.JSON:
        output = render_json(result)
        if console is not None:
            console.print_json(output)
        return output
    else:
        raise ValueError(f"Unknown output format: {format}")


# =============================================================================
# Schema-based serialization (single source of truth)
# =============================================================================


def _result_to_schema(result: "LintResult") -> LintResultSchema:
    """Convert LintResult to the Pydantic schema model."""
    summary = result.summary()

    return LintResultSchema(
        version="1.0",
        rulesense_version=__version__,
        config_hash=result.config_hash,
        duration_ms=result.duration_ms,
        summary=SummarySchema(**summary),
        problems=[_problem_to_schema(p) for p in result.problems],
        check_runs=[_check_run_to_schema(r) for r in result.runs],
        errors=[dict(e) for e in result.errors],
    )


def _problem_to_schema(problem: "Problem") -> ProblemSchema:
    """Convert Problem to the Pydantic schema model."""
    return ProblemSchema(
        check_id=problem.check_id,
        severity=problem.severity.value,
        summary=problem.summary,
        text=problem.text,
        details=problem.details,
        path=problem.path,
        rule_name=problem.rule_name,
        lines=LinesSchema(first=problem.lines.first, last=problem.lines.last),
        fragment=(
            FragmentSchema(
                start=problem.fragment.start,
                end=problem.fragment.end,
                text=problem.fragment_text,
            )
            if problem.fragment is not None
            else None
        ),
    )


def _check_run_to_schema(run: "CheckRun") -> CheckRunSchema:
    """Convert CheckRun to the Pydantic schema model."""
    return CheckRunSchema(
        check_id=run.check_id,
        version=run.version,
        status=run.status.value,
        rule_name=run.rule_name,
        runtime_ms=run.runtime_ms,
        problems_count=run.problems_count,
        error_summary=run.error_summary,
        skip_reason=run.skip_reason,
    )


def _result_to_dict(result: "LintResult") -> dict[str, Any]:
    """Convert LintResult to dictionary via the schema model."""
    return _result_to_schema(result).model_dump(mode="json")


# =============================================================================
# Text renderer (terminal)
# =============================================================================


def _location(problem: "Problem") -> str:
    lines = str(problem.lines)
    return f"{problem.path}:{lines}" if problem.path else lines


def _fragment_lines(problem: "Problem") -> list[str]:
    """The underlined query fragment, one caret per character."""
    text = problem.fragment_text
    if not text:
        return []
    first = text.splitlines()[0] if "\n" in text else text
    return [first, "^" * len(first)]


def _summary_line(result: "LintResult") -> str:
    summary = result.summary()
    counts = ", ".join(
        f"{summary[severity.value]} {severity.value}"
        for severity in Severity
        if summary[severity.value]
    )
    line = (
        f"{summary['total']} problem(s) in {summary['rules']} rule(s) "
        f"across {summary['files']} file(s)"
    )
    return f"{line} ({counts})" if counts else line


def render_text(result: "LintResult") -> str:
    """
    Render a lint result as plain text.

    One block per problem: location, severity, summary and check id,
    then the explanation and the query fragment it points at.
    """
    lines: list[str] = []

    for problem in result.problems:
        lines.append(
            f"{_location(problem)} {problem.severity.value.capitalize()}: "
            f"{problem.summary} ({problem.check_id})"
        )
        if problem.rule_name:
            lines.append(f"  Rule: {problem.rule_name}")
        for text_line in problem.text.splitlines():
            lines.append(f"  {text_line}")
        for fragment_line in _fragment_lines(problem):
            lines.append(f"    {fragment_line}")
        lines.append("")

    for error in result.errors:
        where = error.get("path") or "<input>"
        if error.get("line"):
            where = f"{where}:{error['line']}"
        lines.append(f"{where} Error: {error.get('message', '')}")
        if error.get("detail"):
            lines.append(f"  {error['detail']}")
        lines.append("")

    failed = result.runs_by_status(CheckRunStatus.FAIL)
    for run in failed:
        lines.append(f"Check {run.check_id} failed on {run.rule_name}: {run.error_summary}")
    if failed:
        lines.append("")

    if not result.problems and not result.errors:
        lines.append("No problems found")
    lines.append(_summary_line(result))
    return "\n".join(lines)


def print_text(result: "LintResult", console: Console) -> None:
    """Print a lint result to a rich console with severity colours."""
    for problem in result.problems:
        style = SEVERITY_STYLES[problem.severity]
        console.print(
            f"[bold]{escape(_location(problem))}[/bold] "
            f"[{style}]{problem.severity.value.capitalize()}[/{style}]: "
            f"{escape(problem.summary)} [dim]({escape(problem.check_id)})[/dim]"
        )
        if problem.rule_name:
            console.print(f"  [dim]Rule:[/dim] {escape(problem.rule_name)}")
        for text_line in problem.text.splitlines():
            console.print(f"  {escape(text_line)}")
        fragment = _fragment_lines(problem)
        if fragment:
            console.print(f"    [cyan]{escape(fragment[0])}[/cyan]")
            console.print(f"    [{style}]{fragment[1]}[/{style}]")
        console.print()

    for error in result.errors:
        where = error.get("path") or "<input>"
        if error.get("line"):
            where = f"{where}:{error['line']}"
        console.print(f"[bold]{escape(str(where))}[/bold] [red]Error:[/red] {escape(str(error.get('message', '')))}")
        if error.get("detail"):
            console.print(f"  [dim]{escape(str(error['detail']))}[/dim]")
        console.print()

    for run in result.runs_by_status(CheckRunStatus.FAIL):
        console.print(
            f"[red]Check {escape(run.check_id)} failed on {escape(str(run.rule_name))}:[/red] "
            f"{escape(str(run.error_summary))}"
        )

    if not result.problems and not result.errors:
        console.print("[green]No problems found[/green]")
    console.print(f"[dim]{escape(_summary_line(result))}[/dim]")


# =============================================================================
# JSON renderer (uses schema models)
# =============================================================================


def render_json(result: "LintResult", indent: int = 2) -> str:
    """
    Render a lint result as stable JSON schema.

    Uses Pydantic schema models for guaranteed consistency.
    Suitable for CI/CD integration and log aggregation.
    """
    return json.dumps(_result_to_dict(result), indent=indent, default=str)
