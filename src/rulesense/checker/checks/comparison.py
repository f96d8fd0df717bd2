"""
alerts/comparison: alerting rules that will always fire.

Prometheus fires an alert for every series an alerting query returns, so
the query needs a condition that filters results. Every ``or`` branch of
the query is looked at separately, a branch is fine when:
- it is dead, or filtered by ``unless``
- it is joined with, or ``and``-ed with, a conditional query
- it comes from ``absent()`` or ``absent_over_time()``
- it has a comparison without the ``bool`` modifier
"""

from __future__ import annotations

from rulesense.checker.checks.base import Check, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.provenance.models import Combinator, ProvenanceNode

COMPARISON_DETAILS = (
    "Prometheus alerting rules will trigger an alert for each query that returns *any* result.\n"
    "Unless you do want an alert to always fire you should write your query in a way that "
    "returns results only when some condition is met.\n"
    "In most cases this can be achieved by having some condition in the query expression.\n"
    "For example `up == 0` or `rate(error_total[2m]) > 0`.\n"
    "Be careful as some PromQL operations will cause the query to always return the results, "
    "for example using the [bool modifier]"
    "(https://prometheus.io/docs/prometheus/latest/querying/operators/#comparison-binary-operators)."
)


def _is_filtered(branch: ProvenanceNode) -> bool:
    for item in branch.filters:
        if item.combinator == Combinator.UNLESS:
            return True
        if any(
            other.dead is None and other.is_conditional for other in item.node.branches()
        ):
            return True
    return False


@register_check
class ComparisonCheck(Check):
    check_id = "alerts/comparison"
    version = "1.0.0"
    severity = Severity.WARNING
    description = "Alerting rules without a condition that will always fire"

    def check(self, ctx: CheckContext) -> list[Problem]:
        tree = ctx.provenance
        if tree is None or not ctx.rule.is_alerting:
            return []

        branches = tree.branches()
        problems: list[Problem] = []
        for branch in branches:
            if branch.dead is not None or branch.is_absent or _is_filtered(branch):
                continue

            if branch.always_returns and not branch.is_conditional:
                severity = Severity.BUG
                if len(branches) == 1:
                    text = "This query will always return a result and so this alert will always fire."
                else:
                    text = (
                        "If other parts of this query don't return anything then this part "
                        "will always return a result and so this alert will fire."
                    )
            elif branch.is_return_bool:
                severity = Severity.BUG
                text = (
                    "Results of this query are using the `bool` modifier, which means it will "
                    "always return a result and the alert will always fire."
                )
            elif not branch.is_conditional:
                severity = Severity.WARNING
                text = (
                    "This query doesn't have any condition and so this alert will always fire "
                    "if it matches anything."
                )
            else:
                continue

            problems.append(self.problem(
                ctx,
                "always firing alert",
                text,
                severity=severity,
                details=COMPARISON_DETAILS,
                fragment=branch.position,
            ))
        return problems
