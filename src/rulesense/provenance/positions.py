"""
Locate exact tokens inside a query for diagnostics.

The AST only records the span of whole expressions. Messages are more
useful when they underline ``by(job)`` or the ``job`` inside it, so these
helpers search the query text within a known span and fall back to that
span whenever the token cannot be found.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Sequence

from rulesense.promql.ast import PositionRange


@lru_cache(maxsize=256)
def _name_pattern(fn: str) -> re.Pattern[str]:
    return re.compile(r"(?<![A-Za-z0-9_:])(" + re.escape(fn) + r")[ \n\t]*\(", re.IGNORECASE)


@lru_cache(maxsize=256)
def _call_pattern(fn: str) -> re.Pattern[str]:
    return re.compile(
        r"(?<![A-Za-z0-9_:])(" + re.escape(fn) + r")[ \n\t]*\([^()]*\)",
        re.IGNORECASE | re.DOTALL,
    )


@lru_cache(maxsize=256)
def _word_pattern(name: str) -> re.Pattern[str]:
    return re.compile(r"(?<![A-Za-z0-9_:])" + re.escape(name) + r"(?![A-Za-z0-9_:])")


def _is_outside(pos: PositionRange, outside: Sequence[PositionRange]) -> bool:
    return not any(out.contains(pos) for out in outside)


def find_func_name_position(query: str, within: PositionRange, fn: str) -> PositionRange:
    """
    Find the function or keyword name ``fn`` followed by ``(``.

    Example:
        >>> find_func_name_position("sum(foo)", PositionRange(0, 8), "sum")
        PositionRange(start=0, end=3)
    """
    fragment = within.fragment(query)
    match = _name_pattern(fn).search(fragment)
    if match is None:
        return within
    return PositionRange(within.start + match.start(1), within.start + match.end(1))


def find_func_position(
    query: str,
    within: PositionRange,
    fn: str,
    outside: Sequence[PositionRange] = (),
) -> PositionRange:
    """
    Find ``fn(...)`` including its argument list.

    Matches fully contained in any of the ``outside`` ranges are skipped,
    which stops ``sum(sum(foo) by(a)) by(b)`` from pointing at the inner
    ``by(a)`` when the outer clause is wanted.
    """
    fragment = within.fragment(query)
    for match in _call_pattern(fn).finditer(fragment):
        pos = PositionRange(within.start + match.start(), within.start + match.end())
        if _is_outside(pos, outside):
            return pos
    return within


def find_argument_position(query: str, within: PositionRange, name: str) -> PositionRange:
    """Find ``name`` inside the first parenthesised list of ``within``."""
    fragment = within.fragment(query)
    open_idx = fragment.find("(")
    close_idx = fragment.rfind(")")
    if open_idx < 0 or close_idx <= open_idx:
        return within
    match = _word_pattern(name).search(fragment, open_idx + 1, close_idx)
    if match is None:
        return within
    return PositionRange(within.start + match.start(), within.start + match.end())


def find_operator_position(
    query: str, lhs: PositionRange, rhs: PositionRange, op: str
) -> PositionRange:
    """Find the binary operator token between two operands."""
    within = PositionRange(lhs.end, rhs.start)
    idx = within.fragment(query).find(op)
    if idx < 0:
        return within
    return PositionRange(within.start + idx, within.start + idx + len(op))
