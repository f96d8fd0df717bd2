"""Tests for locating tokens inside a query."""

from __future__ import annotations

from rulesense.promql import PositionRange
from rulesense.provenance.positions import (
    find_argument_position,
    find_func_name_position,
    find_func_position,
    find_operator_position,
)


class TestFuncPositions:
    def test_func_name(self) -> None:
        query = "sum(foo)"
        assert find_func_name_position(query, PositionRange(0, 8), "sum") == PositionRange(0, 3)

    def test_func_name_is_case_insensitive(self) -> None:
        query = "SUM(foo)"
        assert find_func_name_position(query, PositionRange(0, 8), "sum") == PositionRange(0, 3)

    def test_func_name_not_found_falls_back(self) -> None:
        within = PositionRange(0, 8)
        assert find_func_name_position("sum(foo)", within, "max") == within

    def test_func_with_arguments(self) -> None:
        query = "sum(foo) by(job)"
        pos = find_func_position(query, PositionRange(0, 16), "by")
        assert pos == PositionRange(9, 16)
        assert pos.fragment(query) == "by(job)"

    def test_func_skips_matches_inside_outside_ranges(self) -> None:
        query = "sum(sum(foo) by(a)) by(b)"
        inner = PositionRange(4, 18)
        pos = find_func_position(query, PositionRange(0, 25), "by", outside=[inner])
        assert pos.fragment(query) == "by(b)"

    def test_metric_names_are_not_function_names(self) -> None:
        query = "http_by(foo)"
        within = PositionRange(0, len(query))
        assert find_func_position(query, within, "by") == within


class TestArgumentPosition:
    def test_argument(self) -> None:
        query = "sum(foo) by(job, instance)"
        pos = find_argument_position(query, PositionRange(9, 26), "instance")
        assert pos == PositionRange(17, 25)
        assert pos.fragment(query) == "instance"

    def test_whole_words_only(self) -> None:
        query = "sum(foo) by(job_name, job)"
        pos = find_argument_position(query, PositionRange(9, 26), "job")
        assert pos.fragment(query) == "job"
        assert pos.start == 22

    def test_no_parentheses_falls_back(self) -> None:
        within = PositionRange(0, 3)
        assert find_argument_position("foo", within, "job") == within

    def test_missing_argument_falls_back(self) -> None:
        within = PositionRange(9, 16)
        assert find_argument_position("sum(foo) by(job)", within, "env") == within


class TestOperatorPosition:
    def test_operator_between_operands(self) -> None:
        query = "foo + bar"
        pos = find_operator_position(query, PositionRange(0, 3), PositionRange(6, 9), "+")
        assert pos == PositionRange(4, 5)

    def test_keyword_operator(self) -> None:
        query = "foo unless bar"
        pos = find_operator_position(query, PositionRange(0, 3), PositionRange(11, 14), "unless")
        assert pos.fragment(query) == "unless"

    def test_missing_operator_falls_back_to_gap(self) -> None:
        query = "foo + bar"
        pos = find_operator_position(query, PositionRange(0, 3), PositionRange(6, 9), "-")
        assert pos == PositionRange(3, 6)


class TestPositionRange:
    def test_fragment_out_of_range(self) -> None:
        assert PositionRange(10, 20).fragment("foo") == ""

    def test_contains(self) -> None:
        assert PositionRange(0, 10).contains(PositionRange(2, 5))
        assert not PositionRange(2, 5).contains(PositionRange(0, 10))
