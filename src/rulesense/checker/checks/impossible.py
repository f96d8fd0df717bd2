"""
promql/impossible: parts of a query that can never have any effect.

Reports:
- Dead branches: sub-expressions that can never return anything, such as
  a selector with conflicting matchers or a join whose sides can't match.
- Labels used in ``by()``, ``on()``, ``group_left()`` and friends that
  can't be present on the series they are applied to.
- Labels guaranteed on one side of an ``ignoring()`` join but excluded
  on the other side.
"""

from __future__ import annotations

from rulesense.checker.checks.base import Check, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.provenance import dead_branches, iter_nodes, walk_alternatives
from rulesense.provenance.models import LabelIssue, ProvenanceNode


def _label_issues(tree: ProvenanceNode) -> list[LabelIssue]:
    """Every distinct label issue in the tree, in the order found."""
    issues: list[LabelIssue] = []
    seen: set[tuple[str, str, int, int]] = set()

    def collect(branch: ProvenanceNode, _combinator) -> None:
        for issue in branch.label_issues:
            key = (issue.kind.value, issue.name, issue.usage.start, issue.usage.end)
            if key not in seen:
                seen.add(key)
                issues.append(issue)

    for node, _ in iter_nodes(tree):
        walk_alternatives(node, collect)
    return issues


@register_check
class ImpossibleCheck(Check):
    check_id = "promql/impossible"
    version = "1.0.0"
    severity = Severity.WARNING
    description = "Query fragments that can never return anything"

    def check(self, ctx: CheckContext) -> list[Problem]:
        tree = ctx.provenance
        if tree is None:
            return []

        problems: list[Problem] = []
        blamed: set[tuple[int, int]] = set()
        for branch in dead_branches(tree):
            blamed.add((branch.dead.fragment.start, branch.dead.fragment.end))
            problems.append(self.problem(
                ctx,
                "dead code in query",
                branch.dead.reason,
                fragment=branch.dead.fragment,
            ))

        for issue in _label_issues(tree):
            details = issue.label_reason
            if issue.label_fragment is not None:
                source = issue.label_fragment.fragment(ctx.query)
                if source:
                    details = f"{details}\nLabel comes from: `{source}`".strip()
            problems.append(self.problem(
                ctx,
                issue.kind.value,
                issue.reason,
                details=details,
                fragment=issue.usage,
            ))

        seen: set[tuple[str, str, int]] = set()
        for node, _ in iter_nodes(tree):
            for mismatch in node.join_mismatches:
                key = (mismatch.name, mismatch.side, node.position.start)
                if key in seen or (mismatch.fragment.start, mismatch.fragment.end) in blamed:
                    continue
                seen.add(key)
                problems.append(self.problem(
                    ctx,
                    "impossible join",
                    f"The {mismatch.side} hand side of this join can't have the "
                    f"`{mismatch.name}` label, so series with it on the other side "
                    "will never be matched.",
                    details=mismatch.reason,
                    fragment=node.position,
                ))
        return problems
