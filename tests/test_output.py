"""Tests for text and JSON rendering of lint results."""

from __future__ import annotations

import json
from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from rulesense.checker import Linter
from rulesense.checker.models import CheckRun, CheckRunStatus, LintResult
from rulesense.config import Config
from rulesense.output import (
    LintResultSchema,
    OutputFormat,
    get_json_schema,
    print_text,
    render,
    render_json,
    render_text,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def bad_result() -> LintResult:
    return Linter(config=Config()).lint_file(FIXTURES_DIR / "bad_rules.yaml")


@pytest.fixture
def good_result() -> LintResult:
    return Linter(config=Config()).lint_file(FIXTURES_DIR / "good_rules.yaml")


# =============================================================================
# Text
# =============================================================================


class TestTextRenderer:
    """Plain text report."""

    def test_problem_block(self, bad_result: LintResult) -> None:
        lines = render_text(bad_result).splitlines()
        path = str(FIXTURES_DIR / "bad_rules.yaml")
        assert lines[0] == f"{path}:7 Warning: dead code in query (promql/impossible)"
        assert lines[1] == "  Rule: ImpossibleSelector"
        assert lines[2].startswith("  The `")
        assert lines[3] == '    up{job="api", job="web"}'
        assert lines[4] == "    " + "^" * len('up{job="api", job="web"}')
        assert lines[5] == ""

    def test_multi_line_location(self, bad_result: LintResult) -> None:
        text = render_text(bad_result)
        assert ":10-12 Bug: template uses non-existent label (alerts/template)" in text

    def test_summary_line(self, bad_result: LintResult) -> None:
        last = render_text(bad_result).splitlines()[-1]
        assert last == "3 problem(s) in 3 rule(s) across 1 file(s) (1 bug, 1 warning, 1 information)"

    def test_no_problems(self, good_result: LintResult) -> None:
        assert render_text(good_result).splitlines() == [
            "No problems found",
            "0 problem(s) in 2 rule(s) across 1 file(s)",
        ]

    def test_errors_and_failed_checks(self) -> None:
        result = LintResult(
            errors=({"path": "rules.yaml", "line": 3, "message": "Unknown rule field 'x'", "detail": None},),
            runs=(CheckRun(
                check_id="promql/fragile",
                version="1.0.0",
                status=CheckRunStatus.FAIL,
                rule_name="A",
                error_summary="boom",
            ),),
            files_count=1,
        )
        lines = render_text(result).splitlines()
        assert lines[0] == "rules.yaml:3 Error: Unknown rule field 'x'"
        assert "Check promql/fragile failed on A: boom" in lines
        assert "No problems found" not in lines

    def test_print_text(self, bad_result: LintResult) -> None:
        buffer = StringIO()
        print_text(bad_result, Console(file=buffer, width=400, color_system=None))
        output = buffer.getvalue()
        assert "Warning: dead code in query (promql/impossible)" in output
        assert "Rule: MissingLabel" in output
        assert output.rstrip().endswith("(1 bug, 1 warning, 1 information)")

    def test_render_dispatch(self, good_result: LintResult) -> None:
        assert render(good_result, OutputFormat.TEXT) == render_text(good_result)
        with pytest.raises(ValueError):
            render(good_result, "xml")  # type: ignore[arg-type]


# =============================================================================
# JSON
# =============================================================================


class TestJsonRenderer:
    """Stable JSON output."""

    def test_document(self, bad_result: LintResult) -> None:
        data = json.loads(render_json(bad_result))
        assert data["version"] == "1.0"
        assert data["config_hash"] == Config().config_hash()
        assert data["summary"]["total"] == 3
        assert data["summary"]["rules"] == 3
        assert len(data["check_runs"]) == len(bad_result.runs)

    def test_problem(self, bad_result: LintResult) -> None:
        problem = json.loads(render_json(bad_result))["problems"][0]
        assert problem["check_id"] == "promql/impossible"
        assert problem["severity"] == "warning"
        assert problem["rule_name"] == "ImpossibleSelector"
        assert problem["lines"] == {"first": 7, "last": 7}
        assert problem["fragment"]["text"] == 'up{job="api", job="web"}'
        assert problem["fragment"]["end"] - problem["fragment"]["start"] == len(problem["fragment"]["text"])

    def test_validates_against_schema(self, bad_result: LintResult) -> None:
        parsed = LintResultSchema.model_validate(json.loads(render_json(bad_result)))
        assert parsed.summary.bug == 1

    def test_json_schema(self) -> None:
        schema = get_json_schema()
        assert "problems" in schema["properties"]
        assert "summary" in schema["properties"]

    def test_skip_reasons_are_exported(self, bad_result: LintResult) -> None:
        runs = json.loads(render_json(bad_result))["check_runs"]
        skipped = [r for r in runs if r["status"] == "skip"]
        assert {r["skip_reason"] for r in skipped} == {"No metadata source configured"}
