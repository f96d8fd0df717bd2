"""
Vector matching between the two sides of a binary operation.

Decides whether the series of one side can ever find a partner on the
other side, and which labels end up on the result of a join.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable

from rulesense.promql.ast import METRIC_NAME, Cardinality, PositionRange, VectorMatching
from rulesense.provenance.models import DeadInfo, JoinMismatch, LabelKind, ProvenanceNode


def _exclusion(node: ProvenanceNode, name: str) -> tuple[str, PositionRange | None]:
    exclusion = node.exclusion(name)
    if exclusion is None:
        return "", None
    return exclusion.reason, exclusion.fragment


def can_join(
    ls: ProvenanceNode, rs: ProvenanceNode, matching: VectorMatching
) -> tuple[bool, str, PositionRange | None]:
    """
    Check whether series from ``rs`` can ever be matched with series from ``ls``.

    Both arguments are single branches. Returns ``(ok, reason, fragment)``
    where ``fragment`` points at the reason ``rs`` lacks a required label.
    """
    side = "left" if matching.card == Cardinality.ONE_TO_MANY else "right"

    if matching.on and not matching.labels:
        return True, "", None

    if matching.on:
        for name in matching.labels:
            if ls.can_have(name) and not rs.can_have(name):
                reason, fragment = _exclusion(rs, name)
                return (
                    False,
                    f"The {side} hand side will never be matched because it doesn't have "
                    f"the `{name}` label from `on(...)`. {reason}",
                    fragment,
                )
        return True, "", None

    for name in sorted(ls.labels):
        # Matching never compares metric names.
        if name == METRIC_NAME or name in matching.labels:
            continue
        if ls.labels[name].kind != LabelKind.GUARANTEED:
            continue
        if not rs.can_have(name):
            reason, fragment = _exclusion(rs, name)
            return (
                False,
                f"The {side} hand side will never be matched because it doesn't have "
                f"the `{name}` label while the left hand side will. {reason}",
                fragment,
            )
    return True, "", None


def map_branches(
    node: ProvenanceNode, fn: Callable[[ProvenanceNode], ProvenanceNode]
) -> ProvenanceNode:
    """Apply ``fn`` to the primary branch and to every alternative."""
    primary = fn(node)
    return replace(primary, alternatives=tuple(fn(alt) for alt in node.alternatives))


def mark_unjoinable(
    ls: ProvenanceNode, other: ProvenanceNode, matching: VectorMatching
) -> ProvenanceNode:
    """
    Return ``other`` with every branch that can never be matched with
    ``ls`` marked as dead.
    """

    def check(branch: ProvenanceNode) -> ProvenanceNode:
        if branch.dead is not None:
            return branch
        ok, reason, fragment = can_join(ls, branch, matching)
        if ok:
            return branch
        return replace(branch, dead=DeadInfo(reason, fragment or branch.position))

    return map_branches(other, check)


def first_dead(node: ProvenanceNode) -> DeadInfo | None:
    """Dead info of the first dead branch, when every branch is dead."""
    if not node.is_dead:
        return None
    return node.dead


def join_mismatches(
    ls: ProvenanceNode, rs: ProvenanceNode, matching: VectorMatching
) -> tuple[JoinMismatch, ...]:
    """
    Labels that one side of an ``ignoring()`` join guarantees while the
    other side excludes them.

    These are reported as diagnostics and never change the result labels.
    """
    if matching.on:
        return ()
    found: list[JoinMismatch] = []
    for this, that, side in ((ls, rs, "right"), (rs, ls, "left")):
        for name in sorted(this.labels):
            if name == METRIC_NAME or name in matching.labels:
                continue
            if not this.guarantees(name):
                continue
            exclusion = that.exclusion(name)
            if exclusion is not None:
                found.append(JoinMismatch(name, side, exclusion.reason, exclusion.fragment))
    return tuple(found)
