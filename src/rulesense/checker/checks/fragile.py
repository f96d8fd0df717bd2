"""
promql/fragile: queries whose results may change shape between evaluations.
"""

from __future__ import annotations

from rulesense.checker.checks.base import Check, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.promql.ast import BinaryExpr
from rulesense.provenance import iter_nodes
from rulesense.provenance.builder import PASS_THROUGH_AGGREGATIONS
from rulesense.provenance.models import LabelKind, NodeKind, ProvenanceNode

SAMPLING_DETAILS = (
    "Alerts are identified by labels, two alerts with identical sets of labels are identical.\n"
    "If two alerts have the same name but the rest of labels isn't 100% identical then "
    "they are two different alerts.\n"
    "If the same alert query returns results that over time have different labels on them "
    "then previous alert instances will resolve and new alerts will be fired.\n"
    "This can happen when using one of the aggregation operation like topk or bottomk as "
    "they can return a different time series each time they are evaluated."
)


def _has_fixed_labels(branch: ProvenanceNode) -> bool:
    """True when the branch can't carry any label at all."""
    return branch.fixed and not any(
        fact.kind != LabelKind.EXCLUDED for fact in branch.labels.values()
    )


@register_check
class FragileCheck(Check):
    check_id = "promql/fragile"
    version = "1.0.0"
    severity = Severity.WARNING
    description = "Alerts built on sampling aggregations and joins of unknown series"

    def check(self, ctx: CheckContext) -> list[Problem]:
        tree = ctx.provenance
        if tree is None:
            return []

        problems: list[Problem] = []
        if ctx.rule.is_alerting:
            for branch in tree.branches():
                if branch.kind != NodeKind.AGGREGATION or branch.dead is not None:
                    continue
                if branch.operation not in PASS_THROUGH_AGGREGATIONS:
                    continue
                if _has_fixed_labels(branch):
                    continue
                problems.append(self.problem(
                    ctx,
                    "fragile query",
                    f"Using `{branch.operation}` to select time series might return different "
                    "set of time series on every query, which would cause flapping alerts.",
                    details=SAMPLING_DETAILS,
                    fragment=branch.operations[-1].position,
                ))

        for node, _ in iter_nodes(tree):
            expr = node.expr
            if not isinstance(expr, BinaryExpr) or expr.is_set_operator:
                continue
            matching = expr.matching
            if matching is None or matching.on or matching.labels:
                continue
            if len(node.children) != 2:
                continue
            lhs, rhs = node.children
            if lhs.unknown and rhs.unknown:
                problems.append(self.problem(
                    ctx,
                    "fragile join",
                    f"Both sides of `{expr.op}` have unknown labels, use `on(...)` or "
                    "`ignoring(...)` to make sure series are matched the way you expect.",
                    severity=Severity.INFORMATION,
                    fragment=node.position,
                ))
        return problems
