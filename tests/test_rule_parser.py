"""
Tests for reading Prometheus rule files.

Covers both file layouts, line tracking for rules, expressions, labels
and annotations, and every structural error a rule file can have.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from rulesense.exceptions import PromQLSyntaxError, RuleFileError
from rulesense.parser import (
    LineRange,
    ParserConfig,
    RuleKind,
    parse_rules,
    parse_rules_file,
)
from rulesense.promql import AggregateExpr

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# =============================================================================
# Layouts
# =============================================================================


class TestLayouts:
    """Rule files with groups and bare lists of rules."""

    def test_groups_layout(self) -> None:
        rule_file = parse_rules_file(FIXTURES_DIR / "bad_rules.yaml")
        assert rule_file.path == str(FIXTURES_DIR / "bad_rules.yaml")
        assert [g.name for g in rule_file.groups] == ["example"]
        assert [r.name for r in rule_file.rules] == [
            "job:http_requests:rate5m",
            "ImpossibleSelector",
            "MissingLabel",
        ]
        assert len(rule_file.recording_rules) == 1
        assert len(rule_file.alerting_rules) == 2

    def test_bare_list_layout(self) -> None:
        rule_file = parse_rules("- alert: Up\n  expr: up == 0\n")
        assert len(rule_file.groups) == 1
        assert rule_file.groups[0].name is None
        assert rule_file.rules[0].kind == RuleKind.ALERTING

    def test_empty_text(self) -> None:
        assert parse_rules("").rules == []

    def test_group_with_null_rules(self) -> None:
        rule_file = parse_rules("groups:\n  - name: empty\n    rules:\n")
        assert rule_file.groups[0].name == "empty"
        assert rule_file.rules == []

    def test_text_has_no_path(self) -> None:
        assert parse_rules("- record: a\n  expr: up\n").path is None


# =============================================================================
# Rules
# =============================================================================


class TestRules:
    """Fields of individual rules and the lines they occupy."""

    def test_recording_rule(self) -> None:
        rule = parse_rules_file(FIXTURES_DIR / "bad_rules.yaml").rules[0]
        assert rule.is_recording
        assert rule.group == "example"
        assert rule.expr.lines == LineRange(first=5, last=5)
        assert isinstance(rule.expr.ast, AggregateExpr)
        assert rule.expr.is_valid

    def test_alerting_rule_lines(self) -> None:
        rule = parse_rules_file(FIXTURES_DIR / "bad_rules.yaml").rules[1]
        assert rule.is_alerting
        assert rule.name_lines == LineRange(first=6, last=6)
        assert rule.lines == LineRange(first=6, last=8)
        assert rule.for_ == "5m"

    def test_annotation_lines(self) -> None:
        rule = parse_rules_file(FIXTURES_DIR / "bad_rules.yaml").rules[2]
        summary = rule.annotations["summary"]
        assert summary.value == "{{ $labels.instance }} is serving too many requests"
        assert summary.lines == LineRange(first=12, last=12)

    def test_block_scalars(self) -> None:
        rule_file = parse_rules_file(FIXTURES_DIR / "multiline_rules.yaml")
        group = rule_file.groups[0]
        assert group.interval == "1m"
        rule = rule_file.rules[0]
        assert rule.expr.lines == LineRange(first=6, last=8)
        assert str(rule.expr.lines) == "6-8"
        assert rule.labels["severity"].value == "critical"
        summary = rule.annotations["summary"]
        assert summary.value == "{{ $labels.job }} has too many errors"
        assert summary.lines == LineRange(first=13, last=15)
        assert rule.lines == LineRange(first=5, last=15)

    def test_syntax_error_is_kept(self) -> None:
        rule = parse_rules("- alert: Broken\n  expr: sum(foo\n").rules[0]
        assert rule.expr.ast is None
        assert not rule.expr.is_valid
        assert isinstance(rule.expr.syntax_error, PromQLSyntaxError)
        assert rule.expr.text == "sum(foo"

    def test_has_label(self) -> None:
        rule = parse_rules(
            "- alert: Up\n  expr: up == 0\n  labels:\n    severity: page\n"
        ).rules[0]
        assert rule.has_label("severity")
        assert not rule.has_label("team")
        assert rule.labels["severity"].lines == LineRange(first=4, last=4)

    def test_keep_firing_for(self) -> None:
        rule = parse_rules("- alert: Up\n  expr: up == 0\n  keep_firing_for: 5m\n").rules[0]
        assert rule.keep_firing_for == "5m"


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    """Structural problems are raised as RuleFileError."""

    @pytest.mark.parametrize("text, message, line", [
        ("foo: bar\n", "Missing 'groups' field - this doesn't look like a rule file", 1),
        ("- alert: A\n  expr: up\n  severity: x\n", "Unknown rule field 'severity'", 3),
        ("- alert: A\n  record: b\n  expr: up\n", "Rule can't have both 'alert' and 'record' fields", 1),
        ("- expr: up\n", "Rule must have either an 'alert' or a 'record' field", 1),
        ("- alert: A\n", "Rule is missing the 'expr' field", 1),
        ("- record: a\n  expr: up\n  for: 5m\n", "Recording rules can't have the 'for' field", 3),
        ("groups:\n  - rules: []\n", "Group is missing the 'name' field", 2),
        ("groups:\n  - name: a\n    partial: 5\n", "Unknown group field 'partial'", 3),
        ("groups: foo\n", "'groups' must be a list", 1),
    ])
    def test_structure(self, text: str, message: str, line: int) -> None:
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules(text)
        assert exc_info.value.message == message
        assert exc_info.value.line == line

    def test_recording_rule_with_annotations(self) -> None:
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules("- record: a\n  expr: up\n  annotations:\n    x: y\n")
        assert exc_info.value.message == "Recording rules can't have the 'annotations' field"

    def test_invalid_yaml(self) -> None:
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules_file(FIXTURES_DIR / "broken.yaml")
        assert exc_info.value.message == "Invalid YAML"
        assert exc_info.value.source == "yaml"
        assert exc_info.value.detail

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules(tmp_path / "missing.yaml")
        assert exc_info.value.message.startswith("File not found")
        assert exc_info.value.source == "file_read"

    def test_unsupported_source(self) -> None:
        with pytest.raises(RuleFileError):
            parse_rules(123)  # type: ignore[arg-type]

    def test_error_serialisation(self) -> None:
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules("- alert: A\n")
        payload = exc_info.value.to_dict()
        assert payload["error_type"] == "RuleFileError"
        assert payload["line"] == 1
        assert payload["source"] == "structure"


# =============================================================================
# Limits
# =============================================================================


class TestLimits:
    """Resource limits from ParserConfig."""

    def test_too_many_rules(self) -> None:
        text = "- record: a\n  expr: up\n- record: b\n  expr: up\n"
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules(text, ParserConfig(max_rules=1))
        assert exc_info.value.message.startswith("Too many rules")
        assert exc_info.value.source == "resource_limit"

    def test_expression_too_long(self) -> None:
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules("- record: a\n  expr: sum(rate(foo[5m]))\n", ParserConfig(max_query_length=5))
        assert exc_info.value.message.startswith("Expression too long")

    def test_file_too_large(self, write_rules) -> None:
        path = write_rules("- record: a\n  expr: up\n" * 2000)
        with pytest.raises(RuleFileError) as exc_info:
            parse_rules(path, ParserConfig(max_file_size_mb=0.001))
        assert exc_info.value.source == "resource_limit"
