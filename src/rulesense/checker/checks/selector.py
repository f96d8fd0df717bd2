"""
promql/selector: require label matchers on selectors of given metrics.

Example configuration:

    selectors:
      - key: "http_.*"
        required: ["job"]
        comment: "Every team scrapes its own http metrics."
      - key: ".*"
        call: "rate|irate"
        required: ["cluster"]
"""

from __future__ import annotations

import re

from pydantic import Field

from rulesense.checker.checks.aggregation import anchored
from rulesense.checker.checks.base import Check, CheckConfig, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.config import SelectorRule
from rulesense.promql.ast import METRIC_NAME, VectorSelector
from rulesense.promql.functions import FUNCTIONS
from rulesense.provenance import iter_nodes, walk_alternatives
from rulesense.provenance.models import Operation, ProvenanceNode


class SelectorCheckConfig(CheckConfig):
    rules: list[SelectorRule] = Field(default_factory=list)


def _find_selector(
    branch: ProvenanceNode, call_re: re.Pattern[str] | None
) -> tuple[VectorSelector | None, Operation | None]:
    """
    The selector at the leaf of ``branch``, and with ``call_re`` the
    outermost function call matching it.
    """
    selector = branch.selector
    if selector is None:
        return None, None
    if call_re is None:
        return selector, None
    for op in reversed(branch.operations[1:]):
        if op.label in FUNCTIONS and call_re.match(op.label):
            return selector, op
    return None, None


def _matches_key(selector: VectorSelector, key_re: re.Pattern[str]) -> bool:
    if selector.name and not key_re.match(selector.name):
        return False
    for matcher in selector.matchers:
        if matcher.name == METRIC_NAME and not key_re.match(matcher.value):
            return False
    return True


@register_check
class SelectorCheck(Check):
    check_id = "promql/selector"
    version = "1.0.0"
    severity = Severity.WARNING
    description = "Selectors must filter on required labels"
    config_schema = SelectorCheckConfig

    @classmethod
    def from_config(cls, config) -> "SelectorCheck":
        options = dict(config.check_settings(cls.check_id).options)
        options.setdefault("rules", list(config.selectors))
        return cls(options)

    def check(self, ctx: CheckContext) -> list[Problem]:
        tree = ctx.provenance
        if tree is None or not self.config.rules:
            return []

        # Outer nodes first, their operation chains are the longest.
        branches: list[ProvenanceNode] = []
        for node, _ in iter_nodes(tree):
            walk_alternatives(node, lambda branch, _combinator: branches.append(branch))

        problems: list[Problem] = []
        for rule in self.config.rules:
            key_re = re.compile(anchored(rule.key))
            call_re = re.compile(anchored(rule.call)) if rule.call else None
            seen: set[tuple[int, int]] = set()
            for branch in branches:
                selector, call = _find_selector(branch, call_re)
                if selector is None or not _matches_key(selector, key_re):
                    continue
                key = (selector.pos.start, selector.pos.end)
                if key in seen:
                    continue
                seen.add(key)
                present = {matcher.name for matcher in selector.matchers}
                for name in rule.required:
                    if name in present:
                        continue
                    if call is not None:
                        prefix = f"Vector selectors inside the `{call.label}()` function"
                    else:
                        prefix = "This vector selector"
                    problems.append(self.problem(
                        ctx,
                        "required matcher missing",
                        f"{prefix} must specify `{name}` label. "
                        f'Please add a `{{{name}="..."}}` matcher.',
                        severity=Severity(rule.severity),
                        details=rule.comment,
                        fragment=selector.pos,
                    ))
        return problems
