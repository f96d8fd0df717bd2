"""Tests for the alert template scanner."""

from __future__ import annotations

import pytest

from rulesense.checker.templates import (
    TemplateSyntaxError,
    has_humanize,
    iter_actions,
    label_references,
    uses_value,
    validate,
    value_references,
    variables,
)


# =============================================================================
# Validation
# =============================================================================


class TestValidate:
    """Structural checks on template text."""

    @pytest.mark.parametrize("text", [
        "plain text",
        "{{ $labels.job }} is at {{ $value | humanize }}",
        '{{ printf "%.2f" $value }}',
        "{{ if gt $value 10.0 }}high{{ else }}low{{ end }}",
        "{{/* a comment */}}",
        "{{ .Labels.job }}",
        "{{- $labels.instance -}}",
        '{{ with query "up" }}{{ . | first | value }}{{ end }}',
    ])
    def test_valid(self, text: str) -> None:
        validate(text)

    @pytest.mark.parametrize("text, message", [
        ("{{ $labels.job ", "unclosed action"),
        ("{{ if $value }}x", "unexpected EOF"),
        ("x{{ end }}", "unexpected {{end}}"),
        ("{{ else }}", "unexpected {{else}}"),
        ("{{ foo $value }}", 'function "foo" not defined'),
        ("{{ }}", "missing value for command"),
        ("{{ (humanize $value }}", "unclosed left paren"),
        ("{{ humanize $value) }}", "unexpected right paren"),
        ("{{/* never closed }}", "unclosed comment"),
    ])
    def test_invalid(self, text: str, message: str) -> None:
        with pytest.raises(TemplateSyntaxError) as exc_info:
            validate(text)
        assert str(exc_info.value) == message

    def test_names_inside_strings_are_ignored(self) -> None:
        validate('{{ "foo bar" }}')

    @pytest.mark.parametrize("text", [
        '{{ "}}" }}',
        '{{ printf "}} %s" $labels.job }}',
        "{{ `}}` }} and {{ $value }}",
    ])
    def test_closing_braces_inside_strings(self, text: str) -> None:
        validate(text)


# =============================================================================
# References
# =============================================================================


class TestReferences:
    """Variables and fields used by template actions."""

    def test_actions(self) -> None:
        actions = iter_actions("a {{ $value }} b {{ $labels.job }}")
        assert [a.body for a in actions] == [" $value ", " $labels.job "]

    def test_variable_parts_and_column(self) -> None:
        found = variables("{{ $labels.job }}")
        assert len(found) == 1
        assert found[0].parts == ("$labels", "job")
        assert found[0].root == "$labels"
        assert found[0].column == 4

    def test_label_references(self) -> None:
        refs = label_references("{{ $labels.job }} on {{ $labels.instance }}", ".Labels")
        assert [r.parts[1] for r in refs] == ["job", "instance"]

    def test_field_syntax(self) -> None:
        refs = label_references("{{ .Labels.job }}", ".Labels")
        assert refs[0].parts == (".Labels", "job")

    def test_alias(self) -> None:
        refs = label_references("{{ $l := $labels }}{{ $l.instance }}", ".Labels")
        assert [r.parts for r in refs] == [("$l", "instance")]

    def test_bare_labels_is_not_a_reference(self) -> None:
        assert label_references("{{ range $labels }}{{ end }}", ".Labels") == []

    def test_external_labels_are_separate(self) -> None:
        text = "{{ $externalLabels.cluster }}"
        assert label_references(text, ".Labels") == []
        assert len(label_references(text, ".ExternalLabels")) == 1

    def test_action_with_closing_braces_in_string(self) -> None:
        actions = iter_actions('a {{ "}}" }} b {{ $labels.job }}')
        assert [a.body for a in actions] == [' "}}" ', " $labels.job "]
        refs = label_references('{{ printf "}} %s" $labels.job }}', ".Labels")
        assert [r.parts for r in refs] == [("$labels", "job")]

    def test_strings_are_skipped(self) -> None:
        assert variables('{{ "$labels.job" }}') == []

    def test_broken_template_has_no_variables(self) -> None:
        assert variables("{{ $labels.job ") == []


# =============================================================================
# $value
# =============================================================================


class TestValue:
    """Detection of $value and its formatting."""

    def test_uses_value(self) -> None:
        assert uses_value("{{ $value }}")
        assert uses_value("{{ .Value }}")
        assert not uses_value("{{ $labels.job }}")

    def test_value_references(self) -> None:
        refs = value_references("{{ $value }} and {{ $labels.job }}")
        assert [r.parts for r in refs] == [("$value",)]

    @pytest.mark.parametrize("text, expected", [
        ("{{ $value }}", False),
        ("{{ $value | humanize }}", True),
        ('{{ $value | printf "%.2f" }}', True),
        ("{{ humanizePercentage $value }}", True),
        ("{{ $v := $value }}{{ $v | humanize }}", True),
        ("{{ $labels.job | humanize }}", False),
    ])
    def test_has_humanize(self, text: str, expected: bool) -> None:
        assert has_humanize(text) is expected
