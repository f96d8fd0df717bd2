"""
Tests for the linter orchestrator and the check registry.

Covers:
- Linting the fixture files end to end
- PASS/SKIP/FAIL tracking for every check run
- Configuration: disabled checks, severity overrides, include/exclude
- Unreadable files and fail-fast behaviour
- Parallel and sequential runs giving the same result
"""

from __future__ import annotations

from pathlib import Path

import pytest

from rulesense.checker import (
    CachedMetadataSource,
    Check,
    CheckContext,
    CheckRegistry,
    CheckRunStatus,
    Linter,
    Problem,
    Severity,
    StaticMetadataSource,
    get_registry,
)
from rulesense.config import Config
from rulesense.exceptions import CheckError, RuleFileError

FIXTURES_DIR = Path(__file__).parent / "fixtures"

ALL_CHECK_IDS = {
    "alerts/comparison",
    "alerts/external_labels",
    "alerts/template",
    "promql/aggregate",
    "promql/counter",
    "promql/fragile",
    "promql/impossible",
    "promql/performance",
    "promql/selector",
}


class ExplodingCheck(Check):
    """Always raises, to exercise FAIL handling."""

    check_id = "test/explode"
    version = "0.1.0"
    severity = Severity.BUG

    def check(self, ctx: CheckContext) -> list[Problem]:
        raise RuntimeError("boom")


def lint_fixture(name: str, **kwargs) -> object:
    kwargs.setdefault("config", Config())
    return Linter(**kwargs).lint_file(FIXTURES_DIR / name)


# =============================================================================
# End to end
# =============================================================================


class TestFixtures:
    """Linting the rule files in tests/fixtures."""

    def test_bad_rules(self) -> None:
        result = lint_fixture("bad_rules.yaml")
        assert result.files_count == 1
        assert result.rules_count == 3
        assert [(p.check_id, p.severity, p.summary) for p in result.problems] == [
            ("promql/impossible", Severity.WARNING, "dead code in query"),
            ("alerts/template", Severity.BUG, "template uses non-existent label"),
            ("promql/performance", Severity.INFORMATION, "query should use recording rule"),
        ]

    def test_bad_rules_locations(self) -> None:
        impossible, template, performance = lint_fixture("bad_rules.yaml").problems
        assert impossible.lines.first == 7
        assert impossible.fragment_text == 'up{job="api", job="web"}'
        assert (template.lines.first, template.lines.last) == (10, 12)
        assert template.rule_name == "MissingLabel"
        assert performance.text == "Use `job:http_requests:rate5m` here instead to speed up the query"
        assert performance.fragment_text == "sum(rate(http_requests_total[5m])) by (job)"
        assert performance.path == str(FIXTURES_DIR / "bad_rules.yaml")

    def test_good_rules(self) -> None:
        result = lint_fixture("good_rules.yaml")
        assert result.problems == ()
        assert not result.has_problems()
        assert result.runs_by_status(CheckRunStatus.FAIL) == []

    def test_multiple_files(self) -> None:
        linter = Linter(config=Config())
        result = linter.lint_files([FIXTURES_DIR / "bad_rules.yaml", FIXTURES_DIR / "good_rules.yaml"])
        assert result.files_count == 2
        assert result.rules_count == 5
        assert len(result.problems) == 3

    def test_summary(self) -> None:
        summary = lint_fixture("bad_rules.yaml").summary()
        assert summary["total"] == 3
        assert summary["bug"] == 1
        assert summary["warning"] == 1
        assert summary["information"] == 1
        assert summary["checks_failed"] == 0


# =============================================================================
# Check run status
# =============================================================================


class TestCheckRuns:
    """Every check produces a PASS, SKIP or FAIL record per rule."""

    def test_online_check_skipped_without_metadata(self) -> None:
        result = lint_fixture("bad_rules.yaml")
        counter_runs = [r for r in result.runs if r.check_id == "promql/counter"]
        assert len(counter_runs) == 3
        assert all(r.status == CheckRunStatus.SKIP for r in counter_runs)
        assert counter_runs[0].skip_reason == "No metadata source configured"

    def test_metadata_from_config(self) -> None:
        config = Config(metric_types={"http_requests_total": "counter"})
        linter = Linter(config=config)
        assert isinstance(linter.metadata, CachedMetadataSource)
        result = linter.lint_file(FIXTURES_DIR / "bad_rules.yaml")
        counter_runs = [r for r in result.runs if r.check_id == "promql/counter"]
        assert all(r.status == CheckRunStatus.PASS for r in counter_runs)

    def test_metadata_argument_is_cached(self) -> None:
        linter = Linter(config=Config(), metadata=StaticMetadataSource({"foo": "gauge"}))
        assert isinstance(linter.metadata, CachedMetadataSource)
        assert linter.metadata.metric_type("foo") == "gauge"

    def test_syntax_error(self) -> None:
        linter = Linter(config=Config())
        result = linter.lint_text("- alert: Broken\n  expr: sum(foo\n")
        assert len(result.problems) == 1
        problem = result.problems[0]
        assert problem.check_id == "promql/syntax"
        assert problem.severity == Severity.FATAL
        assert problem.text.startswith("Prometheus failed to parse the query with this error:")

        skipped = result.runs_by_status(CheckRunStatus.SKIP)
        assert {r.skip_reason for r in skipped} == {"Query has a syntax error"}
        passed = result.runs_by_status(CheckRunStatus.PASS)
        assert [r.check_id for r in passed] == ["alerts/external_labels"]

    def test_failing_check(self) -> None:
        linter = Linter(checks=[ExplodingCheck()], config=Config())
        result = linter.lint_text("- record: a\n  expr: up\n")
        assert result.problems == ()
        assert len(result.runs) == 1
        run = result.runs[0]
        assert run.status == CheckRunStatus.FAIL
        assert run.error_summary == "boom"
        assert run.rule_name == "a"

    def test_failing_check_with_fail_fast(self) -> None:
        linter = Linter(checks=[ExplodingCheck()], config=Config(), fail_fast=True)
        with pytest.raises(CheckError) as exc_info:
            linter.lint_text("- record: a\n  expr: up\n")
        assert exc_info.value.check_id == "test/explode"
        assert exc_info.value.rule_name == "a"
        assert isinstance(exc_info.value.original_error, RuntimeError)


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    """Config switches applied by the linter."""

    def test_severity_override(self) -> None:
        config = Config(checks={"promql/impossible": {"severity": "bug"}})
        result = lint_fixture("bad_rules.yaml", config=config)
        impossible = [p for p in result.problems if p.check_id == "promql/impossible"]
        assert impossible[0].severity == Severity.BUG

    def test_disabled_check(self) -> None:
        config = Config(checks={"promql/impossible": {"enabled": False}})
        result = lint_fixture("bad_rules.yaml", config=config)
        assert all(p.check_id != "promql/impossible" for p in result.problems)
        assert all(r.check_id != "promql/impossible" for r in result.runs)

    def test_include(self) -> None:
        linter = Linter(include={"promql/impossible"}, config=Config())
        assert [c.check_id for c in linter.checks] == ["promql/impossible"]

    def test_exclude(self) -> None:
        linter = Linter(exclude={"promql/impossible"}, config=Config())
        assert {c.check_id for c in linter.checks} == ALL_CHECK_IDS - {"promql/impossible"}

    def test_check_options_from_config(self) -> None:
        config = Config(aggregate=[{"label": "job"}])
        linter = Linter(include={"promql/aggregate"}, config=config)
        result = linter.lint_text("- record: a\n  expr: sum(foo)\n")
        assert [p.summary for p in result.problems] == ["required label is being removed via aggregation"]

    def test_config_hash(self) -> None:
        result = lint_fixture("good_rules.yaml")
        assert result.config_hash == Config().config_hash()

    def test_config_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULESENSE_CHECK_PROMQL_IMPOSSIBLE_ENABLED", "false")
        linter = Linter()
        assert "promql/impossible" not in {c.check_id for c in linter.checks}


# =============================================================================
# Files and execution
# =============================================================================


class TestExecution:
    """Unreadable files, text input and threading."""

    def test_missing_file_is_recorded(self, tmp_path: Path) -> None:
        linter = Linter(config=Config())
        result = linter.lint_files([tmp_path / "missing.yaml", FIXTURES_DIR / "good_rules.yaml"])
        assert result.has_errors
        assert len(result.errors) == 1
        assert result.errors[0]["error_type"] == "RuleFileError"
        assert result.files_count == 2
        assert result.rules_count == 2

    def test_missing_file_with_fail_fast(self, tmp_path: Path) -> None:
        linter = Linter(config=Config(), fail_fast=True)
        with pytest.raises(RuleFileError):
            linter.lint_file(tmp_path / "missing.yaml")

    def test_invalid_yaml_is_recorded(self) -> None:
        result = lint_fixture("broken.yaml")
        assert result.errors[0]["message"] == "Invalid YAML"
        assert result.rules_count == 0

    def test_lint_text_path(self) -> None:
        linter = Linter(config=Config())
        result = linter.lint_text('- alert: A\n  expr: foo{a="1", a="2"} > 0\n', path="inline.yaml")
        assert result.problems[0].path == "inline.yaml"

    def test_parallel_matches_sequential(self) -> None:
        parallel = lint_fixture("bad_rules.yaml", parallel=True, max_workers=4)
        sequential = lint_fixture("bad_rules.yaml", parallel=False)
        assert parallel.problems == sequential.problems
        assert [(r.check_id, r.rule_name, r.status) for r in parallel.runs] == [
            (r.check_id, r.rule_name, r.status) for r in sequential.runs
        ]


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    """Check registration."""

    def test_builtin_checks_are_registered(self) -> None:
        registry = get_registry()
        assert set(registry.all_ids()) == ALL_CHECK_IDS
        assert "promql/impossible" in registry

    def test_duplicate_registration(self) -> None:
        registry = CheckRegistry()
        registry.register(ExplodingCheck)
        with pytest.raises(ValueError, match="already registered"):
            registry.register(ExplodingCheck)

    def test_filter_and_unregister(self) -> None:
        registry = CheckRegistry()
        registry.register(ExplodingCheck)
        assert registry.filter(include={"test/explode"}) == [ExplodingCheck]
        assert registry.filter(exclude={"test/explode"}) == []
        assert registry.get("test/explode") is ExplodingCheck
        assert registry.unregister("test/explode")
        assert not registry.unregister("test/explode")
        assert len(registry) == 0
