"""
Recognise query fragments that can never return anything.

The rules here are deliberately few. Each one proves deadness from
static facts only: literal values, selector matchers, and the shape of
set operations. Anything not covered stays alive.
"""

from __future__ import annotations

import math
import operator

from rulesense.promql.ast import (
    BinaryExpr,
    MatchOp,
    PositionRange,
    VectorSelector,
    format_number,
    unwrap_parens,
)
from rulesense.provenance.models import DeadInfo, ProvenanceNode

_COMPARISONS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<=": operator.le,
    "<": operator.lt,
    ">=": operator.ge,
    ">": operator.gt,
}


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1, b)
    return a / b


def _modulo(a: float, b: float) -> float:
    if b == 0 or math.isinf(a):
        return math.nan
    return math.fmod(a, b)


def _power(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


_ARITHMETIC = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": _divide,
    "%": _modulo,
    "^": _power,
    "atan2": math.atan2,
}


def value_text(node: ProvenanceNode, query: str) -> str:
    """Describe where a known value comes from."""
    if node.value_text:
        return node.value_text
    if node.value_position is not None:
        text = node.value_position.fragment(query)
        if text:
            return text
    return format_number(node.value) if node.value is not None else ""


def describe_dead_code(
    query: str, ls: ProvenanceNode, rs: ProvenanceNode, expr: BinaryExpr
) -> DeadInfo:
    """Explain why a comparison between two known values is never true."""
    prefix = f"`{value_text(ls, query)} {expr.op} {value_text(rs, query)}` always evaluates to"
    if expr.return_bool:
        suffix = "and uses the `bool` modifier which means it will always return 0"
    else:
        suffix = "which is not possible, so it will never return anything."
    return DeadInfo(
        reason=(
            f"{prefix} `{format_number(ls.value)} {expr.op} {format_number(rs.value)}` {suffix}"
        ),
        fragment=ls.position,
    )


def static_return(
    query: str, ls: ProvenanceNode, rs: ProvenanceNode, expr: BinaryExpr
) -> tuple[float | None, str | None, DeadInfo | None]:
    """
    Fold a binary operation between two sides that always return a known value.

    Returns the resulting value, the text describing how it was computed,
    and dead info when the operation is a comparison that can never hold.
    """
    lv, rv = ls.value, rs.value
    if lv is None or rv is None:
        return None, None, None

    compare = _COMPARISONS.get(expr.op)
    if compare is not None:
        holds = compare(lv, rv)
        dead = None if holds else describe_dead_code(query, ls, rs, expr)
        if expr.return_bool:
            text = f"{value_text(ls, query)} {expr.op} bool {value_text(rs, query)}"
            return (1.0 if holds else 0.0), text, dead
        return lv, ls.value_text, dead

    compute = _ARITHMETIC.get(expr.op)
    if compute is None:
        return None, None, None
    text = f"{value_text(ls, query)} {expr.op} {value_text(rs, query)}"
    return compute(lv, rv), text, None


def selector_conflict(selector: VectorSelector) -> DeadInfo | None:
    """
    Detect a selector that requires two different values for one label.

    Every equality matcher pins a label value; any other matcher on the
    same label must accept that value or the selector matches nothing.
    """
    for pinned in selector.matchers:
        if pinned.op != MatchOp.EQUAL:
            continue
        for other in selector.matchers_for(pinned.name):
            if other is pinned or other.matches(pinned.value):
                continue
            return DeadInfo(
                reason=(
                    f"The `{selector.selector_text()}` selector can never match because it "
                    f"requires two different values for the `{pinned.name}` label."
                ),
                fragment=selector.pos,
            )
    return None


def unless_always_returns(expr: BinaryExpr, rhs: ProvenanceNode) -> DeadInfo | None:
    """
    ``X unless on() Y`` removes every result of ``X`` when ``Y`` always
    returns something and is not filtered by a condition.
    """
    matching = expr.matching
    if matching is None or not matching.on or matching.labels:
        return None
    for branch in rhs.branches():
        if branch.always_returns and not branch.is_conditional and branch.dead is None:
            return DeadInfo(
                reason=(
                    "This query will never return anything because the `unless` query "
                    "always returns something."
                ),
                fragment=branch.position,
            )
    return None


def unless_identity(expr: BinaryExpr) -> DeadInfo | None:
    """``X unless X`` removes every result of ``X``."""
    matching = expr.matching
    if expr.op != "unless" or matching is None or matching.on:
        return None
    lhs, rhs = unwrap_parens(expr.lhs), unwrap_parens(expr.rhs)
    if str(lhs) != str(rhs):
        return None
    return DeadInfo(
        reason=(
            "This query will never return anything because the `unless` query "
            "removes every series returned by the left hand side."
        ),
        fragment=expr.rhs.pos,
    )


def or_never_used(lhs: ProvenanceNode, rhs_position: PositionRange) -> DeadInfo | None:
    """
    The right hand side of ``or`` is never used when every branch of the
    left hand side always returns something.
    """
    for branch in lhs.branches():
        if not branch.always_returns or branch.is_conditional or branch.dead is not None:
            return None
    return DeadInfo(
        reason="The left hand side always returns something and so the right hand side is never used.",
        fragment=rhs_position,
    )
