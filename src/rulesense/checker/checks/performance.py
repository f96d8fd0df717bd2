"""
promql/performance: suggest reusing recording rules.

When a sub-expression of a query computes exactly what a recording rule
from the same file already stores, the query can read the recorded
series instead.
"""

from __future__ import annotations

from rulesense.checker.checks.base import Check, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.provenance import walk_alternatives
from rulesense.provenance.models import NodeKind, Operation, ProvenanceNode

DETAILS = (
    "There is a recording rule that already stores the result of this query, "
    "use it here to speed up this query."
)


@register_check
class PerformanceCheck(Check):
    check_id = "promql/performance"
    version = "1.0.0"
    severity = Severity.INFORMATION
    description = "Sub-queries already stored by a recording rule"

    def check(self, ctx: CheckContext) -> list[Problem]:
        tree = ctx.provenance
        if tree is None:
            return []

        branches: list[ProvenanceNode] = []
        walk_alternatives(tree, lambda branch, _combinator: branches.append(branch))

        problems: list[Problem] = []
        seen: set[tuple[str, int, int]] = set()
        for other, other_tree in ctx.other_rules():
            if not other.is_recording or other_tree is None:
                continue
            recorded = self._recorded_operation(other_tree)
            if recorded is None:
                continue
            for branch in branches:
                for op in branch.operations:
                    if not op.same_as(recorded):
                        continue
                    key = (other.name, op.position.start, op.position.end)
                    if key in seen:
                        continue
                    seen.add(key)
                    problems.append(self.problem(
                        ctx,
                        "query should use recording rule",
                        f"Use `{other.name}` here instead to speed up the query",
                        details=DETAILS,
                        fragment=op.position,
                    ))
        return problems

    @staticmethod
    def _recorded_operation(tree: ProvenanceNode) -> Operation | None:
        """The operation a recording rule stores, if it is worth reusing."""
        if tree.alternatives:
            return None
        if tree.kind not in (NodeKind.FUNCTION, NodeKind.AGGREGATION):
            return None
        if tree.operation == "vector" or not tree.operations:
            return None
        return tree.operations[-1]
