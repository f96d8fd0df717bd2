"""
Tests for the PromQL lexer and parser.

Covers the AST shapes the provenance builder depends on: selectors with
their implicit metric name matcher, aggregation clauses in both
positions, vector matching defaults and the static type checks that
reject invalid queries.
"""

from __future__ import annotations

import pytest

from rulesense.exceptions import PromQLSyntaxError
from rulesense.promql import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Cardinality,
    MatchOp,
    MatrixSelector,
    NumberLiteral,
    ParenExpr,
    PositionRange,
    StringLiteral,
    SubqueryExpr,
    UnaryExpr,
    ValueType,
    VectorSelector,
    parse_expr,
)
from rulesense.promql.lexer import TokenType, tokenize


# =============================================================================
# Lexer
# =============================================================================


class TestLexer:
    """Tokens the parser relies on."""

    def test_duration_is_not_a_number(self) -> None:
        types = [t.type for t in tokenize("foo[5m]")]
        assert TokenType.DURATION in types
        assert TokenType.NUMBER not in types

    def test_comment_is_skipped(self) -> None:
        texts = [t.text for t in tokenize("foo # all of it\n")]
        assert "foo" in texts
        assert not any("all" in text for text in texts)

    def test_inf_and_nan_are_numbers(self) -> None:
        assert parse_expr("Inf").value_type == ValueType.SCALAR
        assert isinstance(parse_expr("NaN"), NumberLiteral)

    def test_unterminated_string(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr('foo{job="api}')
        assert exc_info.value.message == "unterminated quoted string"


# =============================================================================
# Selectors
# =============================================================================


class TestSelectors:
    """Instant and range vector selectors."""

    def test_metric_name_adds_implicit_matcher(self) -> None:
        expr = parse_expr('foo{job="api"}')
        assert isinstance(expr, VectorSelector)
        assert expr.name == "foo"
        names = [(m.name, m.op, m.value) for m in expr.matchers]
        assert ("__name__", MatchOp.EQUAL, "foo") in names
        assert ("job", MatchOp.EQUAL, "api") in names
        assert expr.pos == PositionRange(0, 14)

    def test_regex_matchers(self) -> None:
        expr = parse_expr('foo{env=~"prod|dev", job!~"test.*"}')
        ops = {m.name: m.op for m in expr.matchers}
        assert ops["env"] == MatchOp.REGEX
        assert ops["job"] == MatchOp.NOT_REGEX

    def test_empty_selector_is_rejected(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr('{job=""}')
        assert exc_info.value.message == "vector selector must contain at least one non-empty matcher"

    def test_range_selector(self) -> None:
        expr = parse_expr("foo[5m]")
        assert isinstance(expr, MatrixSelector)
        assert expr.range == "5m"
        assert expr.value_type == ValueType.MATRIX
        assert str(expr) == "foo[5m]"

    def test_offset_modifier(self) -> None:
        expr = parse_expr("foo offset 5m")
        assert isinstance(expr, VectorSelector)
        assert expr.offset == "5m"
        assert str(expr) == "foo offset 5m"

    def test_subquery(self) -> None:
        expr = parse_expr("max_over_time(rate(foo[5m])[30m:1m])")
        assert isinstance(expr, Call)
        subquery = expr.args[0]
        assert isinstance(subquery, SubqueryExpr)
        assert subquery.range == "30m"
        assert subquery.step == "1m"


# =============================================================================
# Functions and aggregations
# =============================================================================


class TestCalls:
    """Function calls and aggregation expressions."""

    def test_function_call(self) -> None:
        expr = parse_expr("rate(http_requests_total[5m])")
        assert isinstance(expr, Call)
        assert expr.func == "rate"
        assert isinstance(expr.args[0], MatrixSelector)
        assert expr.args[0].selector.name == "http_requests_total"

    def test_unknown_function(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr("frobnicate(foo)")
        assert exc_info.value.message == "unknown function with name 'frobnicate'"

    def test_argument_type_is_checked(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr("rate(foo)")
        assert "expected type range vector" in exc_info.value.message

    def test_string_argument(self) -> None:
        expr = parse_expr('label_replace(foo, "dst", "$1", "src", "(.*)")')
        assert isinstance(expr.args[1], StringLiteral)
        assert expr.args[1].value == "dst"

    def test_aggregation_clause_after_arguments(self) -> None:
        expr = parse_expr("sum(rate(foo[5m])) by (job)")
        assert isinstance(expr, AggregateExpr)
        assert expr.op == "sum"
        assert expr.grouping == ("job",)
        assert expr.without is False
        assert expr.has_clause is True
        assert expr.param is None

    def test_aggregation_clause_before_arguments(self) -> None:
        expr = parse_expr("sum without (instance) (foo)")
        assert expr.without is True
        assert expr.grouping == ("instance",)

    def test_aggregation_without_clause(self) -> None:
        expr = parse_expr("sum(foo)")
        assert expr.has_clause is False
        assert expr.grouping == ()

    def test_aggregation_position_covers_clause(self) -> None:
        expr = parse_expr("sum(foo) by(job)")
        assert expr.pos == PositionRange(0, 16)

    def test_aggregation_parameter(self) -> None:
        expr = parse_expr("topk(5, foo)")
        assert isinstance(expr.param, NumberLiteral)
        assert expr.children() == (expr.param, expr.expr)

    def test_count_values_takes_string(self) -> None:
        expr = parse_expr('count_values("version", build_info)')
        assert isinstance(expr.param, StringLiteral)

    def test_normalised_text(self) -> None:
        assert str(parse_expr("sum(foo)by(job)")) == "sum by (job) (foo)"


# =============================================================================
# Binary expressions
# =============================================================================


class TestBinary:
    """Operator precedence and vector matching."""

    def test_precedence(self) -> None:
        expr = parse_expr("a + b * c")
        assert isinstance(expr, BinaryExpr)
        assert expr.op == "+"
        assert isinstance(expr.rhs, BinaryExpr)
        assert expr.rhs.op == "*"

    def test_power_is_right_associative(self) -> None:
        expr = parse_expr("2 ^ 3 ^ 2")
        assert isinstance(expr.lhs, NumberLiteral)
        assert isinstance(expr.rhs, BinaryExpr)

    def test_set_operators_are_many_to_many(self) -> None:
        expr = parse_expr("foo and bar")
        assert expr.matching.card == Cardinality.MANY_TO_MANY

    def test_set_operator_keywords_are_case_insensitive(self) -> None:
        expr = parse_expr("foo AND bar")
        assert expr.op == "and"
        assert expr.is_set_operator

    def test_vector_operators_default_to_one_to_one(self) -> None:
        expr = parse_expr("foo + bar")
        assert expr.matching.card == Cardinality.ONE_TO_ONE
        assert expr.matching.on is False

    def test_scalar_operand_has_no_matching(self) -> None:
        assert parse_expr("foo + 1").matching is None

    def test_group_left(self) -> None:
        expr = parse_expr("foo * on(instance) group_left(version) bar")
        assert expr.matching.card == Cardinality.MANY_TO_ONE
        assert expr.matching.on is True
        assert expr.matching.labels == ("instance",)
        assert expr.matching.include == ("version",)
        assert str(expr) == "foo * on(instance) group_left(version) bar"

    def test_ignoring(self) -> None:
        expr = parse_expr("foo / ignoring(job) bar")
        assert expr.matching.on is False
        assert expr.matching.labels == ("job",)

    def test_bool_modifier(self) -> None:
        expr = parse_expr("foo > bool 5")
        assert expr.return_bool is True
        assert expr.is_comparison

    def test_scalar_comparison_requires_bool(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr("1 > 2")
        assert exc_info.value.message == "comparisons between scalars must use BOOL modifier"
        assert parse_expr("1 > bool 2").value_type == ValueType.SCALAR

    def test_set_operator_needs_vectors(self) -> None:
        with pytest.raises(PromQLSyntaxError):
            parse_expr("foo and 1")

    def test_range_vector_in_binary_expression(self) -> None:
        with pytest.raises(PromQLSyntaxError):
            parse_expr("foo[5m] + 1")

    def test_unary_minus_folds_numbers(self) -> None:
        expr = parse_expr("-1")
        assert isinstance(expr, NumberLiteral)
        assert expr.value == -1.0

    def test_unary_minus_on_expression(self) -> None:
        expr = parse_expr("-(1)")
        assert isinstance(expr, UnaryExpr)
        assert isinstance(expr.expr, ParenExpr)


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    """Syntax errors carry a message and the offending position."""

    def test_empty_query(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr("")
        assert exc_info.value.message == "no expression found in input"

    def test_unclosed_call(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr("sum(foo")
        assert exc_info.value.pos.start >= 4

    def test_trailing_garbage(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr("foo bar")
        assert exc_info.value.message.startswith("unexpected")

    def test_error_serialises_position(self) -> None:
        with pytest.raises(PromQLSyntaxError) as exc_info:
            parse_expr("frobnicate(foo)")
        payload = exc_info.value.to_dict()
        assert payload["source"] == "promql"
        assert payload["start"] == 0
        assert payload["end"] == len("frobnicate")
