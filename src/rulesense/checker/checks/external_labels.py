"""
alerts/external_labels: templates using external labels that don't exist.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field

from rulesense.checker import templates
from rulesense.checker.checks.base import Check, CheckConfig, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check

if TYPE_CHECKING:
    from rulesense.config import Config
    from rulesense.parser.models import KeyValue


class ExternalLabelsCheckConfig(CheckConfig):
    external_labels: dict[str, str] = Field(default_factory=dict)


def missing_external_labels(text: str, external_labels: dict[str, str]) -> list[str]:
    """Names of external labels referenced by ``text`` but not configured, in order."""
    missing: list[str] = []
    done: set[str] = set()
    for variable in templates.label_references(text, ".ExternalLabels"):
        name = variable.parts[1]
        if name in done:
            continue
        done.add(name)
        if name not in external_labels:
            missing.append(name)
    return missing


@register_check
class ExternalLabelsCheck(Check):
    check_id = "alerts/external_labels"
    version = "1.0.0"
    severity = Severity.BUG
    description = "Templates must only use configured external labels"
    config_schema = ExternalLabelsCheckConfig
    uses_provenance = False

    @classmethod
    def from_config(cls, config: "Config") -> "ExternalLabelsCheck":
        options = dict(config.check_settings(cls.check_id).options)
        options.setdefault("external_labels", dict(config.external_labels))
        return cls(options)

    def check(self, ctx: CheckContext) -> list[Problem]:
        rule = ctx.rule
        if not rule.is_alerting:
            return []

        problems: list[Problem] = []
        items: list["KeyValue"] = [*rule.labels.values(), *rule.annotations.values()]
        for item in items:
            for name in missing_external_labels(item.value, self.config.external_labels):
                problems.append(self.problem(
                    ctx,
                    "invalid label",
                    f"Template is using `{name}` external label but it's not configured "
                    "in global:external_labels.",
                    lines=item.lines,
                ))
        return problems
