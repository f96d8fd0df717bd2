"""
Output module - Separates rendering from linting.

Provides multiple output formats:
- render_text: Plain text report
- print_text: Coloured terminal output through rich
- render_json: Stable JSON schema for CI integrations

Usage:
    from rulesense.output import render, OutputFormat

    result = linter.lint_file("rules.yaml")

    # CLI output
    print(render(result, OutputFormat.TEXT))

    # Machine readable
    payload = render(result, OutputFormat.JSON)
"""

from rulesense.output.renderers import (
    OutputFormat,
    print_text,
    render,
    render_json,
    render_text,
)
from rulesense.output.schema import (
    CheckRunSchema,
    LintResultSchema,
    ProblemSchema,
    SummarySchema,
    get_json_schema,
)

__all__ = [
    "OutputFormat",
    "render",
    "render_text",
    "print_text",
    "render_json",
    "CheckRunSchema",
    "LintResultSchema",
    "ProblemSchema",
    "SummarySchema",
    "get_json_schema",
]
