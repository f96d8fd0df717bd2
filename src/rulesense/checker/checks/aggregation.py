"""
promql/aggregate: make sure aggregations keep (or strip) a given label.

Configured with a list of ``{name, label, keep}`` entries. For every rule
whose name matches ``name`` the query is walked from the top:

- ``keep: true`` reports each aggregation that removes ``label`` from
  results that could otherwise carry it. The answer comes from the
  provenance tree, so ``sum(sum(foo) by(instance)) by(job)`` is reported
  at the inner aggregation that actually drops ``job``.
- ``keep: false`` reports the outermost aggregation when it still
  passes ``label`` through.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pydantic import Field

from rulesense.checker.checks.base import Check, CheckConfig, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.config import AggregateRule
from rulesense.promql.ast import AggregateExpr, BinaryExpr, Cardinality
from rulesense.provenance import can_have_label
from rulesense.provenance.builder import PASS_THROUGH_AGGREGATIONS

if TYPE_CHECKING:
    from rulesense.config import Config
    from rulesense.provenance.models import ProvenanceNode


class AggregationCheckConfig(CheckConfig):
    rules: list[AggregateRule] = Field(default_factory=list)


def anchored(pattern: str) -> str:
    return f"^(?:{pattern})$"


@register_check
class AggregationCheck(Check):
    check_id = "promql/aggregate"
    version = "1.1.0"
    severity = Severity.WARNING
    description = "Aggregations must keep or strip configured labels"
    config_schema = AggregationCheckConfig

    @classmethod
    def from_config(cls, config: "Config") -> "AggregationCheck":
        options = dict(config.check_settings(cls.check_id).options)
        options.setdefault("rules", list(config.aggregate))
        return cls(options)

    def check(self, ctx: CheckContext) -> list[Problem]:
        if ctx.provenance is None:
            return []

        problems: list[Problem] = []
        for rule in self.config.rules:
            pattern = anchored(rule.name)
            if not re.match(pattern, ctx.rule.name):
                continue
            if ctx.rule.has_label(rule.label):
                continue
            for node, text, summary in self._walk(ctx.provenance, rule, pattern):
                problems.append(self.problem(
                    ctx,
                    summary,
                    text,
                    severity=Severity(rule.severity),
                    fragment=node.position,
                ))
        return problems

    def _walk(
        self, node: "ProvenanceNode", rule: AggregateRule, pattern: str
    ) -> list[tuple["ProvenanceNode", str, str]]:
        found: list[tuple["ProvenanceNode", str, str]] = []
        expr = node.expr
        label = rule.label

        if isinstance(expr, AggregateExpr) and expr.op not in PASS_THROUGH_AGGREGATIONS:
            grouped = label in expr.grouping
            if rule.keep:
                child = node.children[-1]
                if not can_have_label(node, label) and can_have_label(child, label):
                    if expr.without:
                        advice = f"remove {label} from without()"
                    else:
                        advice = f"use by({label}, ...)"
                    found.append((
                        node,
                        f"`{label}` label is required and should be preserved when "
                        f"aggregating `{pattern}` rules, {advice}.",
                        "required label is being removed via aggregation",
                    ))
            elif expr.without:
                if grouped:
                    return found
                found.append((
                    node,
                    f"`{label}` label should be removed when aggregating `{pattern}` rules, "
                    f"use without({label}, ...).",
                    "label must be removed in aggregations",
                ))
            else:
                if not grouped:
                    # The outermost aggregation already strips the label.
                    return found
                found.append((
                    node,
                    f"`{label}` label should be removed when aggregating `{pattern}` rules, "
                    f"remove {label} from by().",
                    "label must be removed in aggregations",
                ))

        if isinstance(expr, BinaryExpr) and expr.matching is not None and len(node.children) == 2:
            card = expr.matching.card
            if expr.op == "or":
                # Either side can produce the results.
                return (
                    found
                    + self._walk(node.children[0], rule, pattern)
                    + self._walk(node.children[1], rule, pattern)
                )
            if card in (Cardinality.MANY_TO_ONE, Cardinality.MANY_TO_MANY):
                return found + self._walk(node.children[0], rule, pattern)
            if card == Cardinality.ONE_TO_MANY:
                return found + self._walk(node.children[1], rule, pattern)

        for child in node.children:
            found.extend(self._walk(child, rule, pattern))
        return found
