"""
alerts/template: validate label and annotation templates of alerting rules.

Reports:
- Templates that fail to parse
- ``$value`` used in labels, which creates a new alert on every change
- ``$labels.x`` references to labels the query results can't have, using
  the provenance tree to explain why the label is gone
- ``$value`` of rate-like queries printed without a humanize function
- ``$value`` of queries that can only be produced by ``absent()``
"""

from __future__ import annotations

from rulesense.checker import templates
from rulesense.checker.checks.base import Check, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.parser.models import KeyValue, LineRange
from rulesense.promql.functions import FUNCTIONS
from rulesense.provenance import exclude_reason
from rulesense.provenance.models import NodeKind, Operation, ProvenanceNode

SYNTAX_DETAILS = (
    "Supported template syntax is documented "
    "[here](https://prometheus.io/docs/prometheus/latest/configuration/alerting_rules/#templating)."
)
REFERENCE_DETAILS = (
    "[Click here](https://prometheus.io/docs/prometheus/latest/configuration/template_reference/) "
    "for a full list of all available template functions."
)

RATE_FUNCTIONS = frozenset({"rate", "irate", "deriv"})
COUNTING_AGGREGATIONS = frozenset({"count", "count_values", "group"})


def _rate_call(branch: ProvenanceNode) -> Operation | None:
    """The outermost function call of ``branch`` if it is rate-like."""
    if branch.kind == NodeKind.AGGREGATION and branch.operation in COUNTING_AGGREGATIONS:
        return None
    for op in reversed(branch.operations):
        if op.label in FUNCTIONS:
            return op if op.label in RATE_FUNCTIONS else None
    return None


@register_check
class TemplateCheck(Check):
    check_id = "alerts/template"
    version = "1.0.0"
    severity = Severity.BUG
    description = "Alert templates must parse and only use labels the query returns"

    def check(self, ctx: CheckContext) -> list[Problem]:
        rule = ctx.rule
        tree = ctx.provenance
        if not rule.is_alerting or tree is None:
            return []

        problems: list[Problem] = []
        for label in rule.labels.values():
            if not self._check_syntax(ctx, label, problems):
                continue
            for variable in templates.value_references(label.value):
                problems.append(self.problem(
                    ctx,
                    "value used in labels",
                    f"Using `{variable.root}` in labels will generate a new alert on every "
                    "value change, move it to annotations.",
                    lines=label.lines,
                ))
                break
            problems.extend(self._check_query_labels(ctx, tree, label))

        for annotation in rule.annotations.values():
            if not self._check_syntax(ctx, annotation, problems):
                continue
            problems.extend(self._check_query_labels(ctx, tree, annotation))
            problems.extend(self._check_humanize(ctx, tree, annotation))
            problems.extend(self._check_absent_value(ctx, tree, annotation))
        return problems

    def _lines(self, ctx: CheckContext, item: KeyValue) -> LineRange:
        expr = ctx.rule.expr.lines
        return LineRange(first=min(expr.first, item.lines.first), last=max(expr.last, item.lines.last))

    def _check_syntax(self, ctx: CheckContext, item: KeyValue, problems: list[Problem]) -> bool:
        try:
            templates.validate(item.value)
        except templates.TemplateSyntaxError as e:
            problems.append(self.problem(
                ctx,
                "template syntax error",
                f"Template failed to parse with this error: `{e}`.",
                severity=Severity.FATAL,
                details=SYNTAX_DETAILS,
                lines=item.lines,
            ))
            return False
        return True

    def _check_query_labels(
        self, ctx: CheckContext, tree: ProvenanceNode, item: KeyValue
    ) -> list[Problem]:
        problems: list[Problem] = []
        live = [branch for branch in tree.branches() if branch.dead is None]
        done: set[str] = set()
        for variable in templates.label_references(item.value, ".Labels"):
            name = variable.parts[1]
            if name in done:
                continue
            done.add(name)

            missing = [branch for branch in live if not branch.can_have(name)]
            if not missing:
                continue

            blamed = missing[0]
            exclusion = blamed.exclusion(name) or exclude_reason(tree, name)
            if blamed.is_absent:
                text = (
                    f"Template is using `{name}` label but "
                    f"`{blamed.operation}(...)` is not passing it."
                )
            else:
                text = (
                    f"Template is using `{name}` label but the query results "
                    "won't have this label."
                )
            if len(missing) < len(live):
                severity = Severity.INFORMATION
                text += " Only some of the query results will have it."
            else:
                severity = Severity.BUG

            problems.append(self.problem(
                ctx,
                "template uses non-existent label",
                text,
                severity=severity,
                details=exclusion.reason if exclusion is not None else "",
                lines=self._lines(ctx, item),
                fragment=exclusion.fragment if exclusion is not None else None,
            ))
        return problems

    def _check_humanize(
        self, ctx: CheckContext, tree: ProvenanceNode, item: KeyValue
    ) -> list[Problem]:
        if not templates.uses_value(item.value) or templates.has_humanize(item.value):
            return []
        problems: list[Problem] = []
        for branch in tree.branches():
            call = _rate_call(branch)
            if call is None:
                continue
            problems.append(self.problem(
                ctx,
                "use humanize filters for the results",
                f"`{call.label}()` will produce results that are hard to read for humans. "
                "Use one of humanize template functions to make the result more readable.",
                severity=Severity.INFORMATION,
                details=REFERENCE_DETAILS,
                lines=self._lines(ctx, item),
                fragment=call.position,
            ))
        return problems

    def _check_absent_value(
        self, ctx: CheckContext, tree: ProvenanceNode, item: KeyValue
    ) -> list[Problem]:
        live = [branch for branch in tree.branches() if branch.dead is None]
        if not live or not all(branch.is_absent for branch in live):
            return []
        references = templates.value_references(item.value)
        if not references:
            return []
        return [self.problem(
            ctx,
            "value of absent() is always one",
            f"Template is using `{references[0].root}` but the query only returns results "
            f"from `{live[0].operation}()`, so the value will always be `1`.",
            severity=Severity.INFORMATION,
            lines=self._lines(ctx, item),
            fragment=live[0].operations[-1].position if live[0].operations else None,
        )]
