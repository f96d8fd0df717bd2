"""
Pydantic models for Prometheus rule files.

The structure is:
- RuleFile: Everything read from one file, with its groups
- RuleGroup: A named group of rules with an optional evaluation interval
- Rule: One alerting or recording rule
- RuleExpr: The PromQL expression of a rule, parsed while reading

Every rule, expression, label and annotation remembers the 1-based
line range it was read from so problems can point at the right place.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LineRange(BaseModel):
    """Inclusive 1-based range of lines."""

    model_config = ConfigDict(frozen=True)

    first: int = Field(ge=1)
    last: int = Field(ge=1)

    def contains(self, line: int) -> bool:
        return self.first <= line <= self.last

    def __str__(self) -> str:
        if self.first == self.last:
            return str(self.first)
        return f"{self.first}-{self.last}"


class RuleKind(str, Enum):
    ALERTING = "alerting"
    RECORDING = "recording"


class KeyValue(BaseModel):
    """A label or annotation with the lines it occupies, from key to the end of its value."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: str
    lines: LineRange


class RuleExpr(BaseModel):
    """
    PromQL expression of a rule.

    ``ast`` is the parsed expression, or None when the text is not valid
    PromQL, in which case ``syntax_error`` holds the parser error.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    text: str
    lines: LineRange
    ast: Any = Field(default=None, exclude=True, repr=False)
    syntax_error: Any = Field(default=None, exclude=True)

    @property
    def is_valid(self) -> bool:
        return self.ast is not None


class Rule(BaseModel):
    """
    One alerting or recording rule.

    ``name`` is the ``alert`` or ``record`` value, depending on ``kind``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: RuleKind
    name: str
    name_lines: LineRange
    expr: RuleExpr
    lines: LineRange
    for_: str | None = Field(default=None, alias="for")
    keep_firing_for: str | None = None
    labels: dict[str, KeyValue] = Field(default_factory=dict)
    annotations: dict[str, KeyValue] = Field(default_factory=dict)
    group: str | None = None

    @property
    def is_alerting(self) -> bool:
        return self.kind == RuleKind.ALERTING

    @property
    def is_recording(self) -> bool:
        return self.kind == RuleKind.RECORDING

    def has_label(self, name: str) -> bool:
        return name in self.labels


class RuleGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    interval: str | None = None
    rules: tuple[Rule, ...] = ()


class RuleFile(BaseModel):
    """All rules read from one file (or text)."""

    model_config = ConfigDict(frozen=True)

    path: str | None = None
    groups: tuple[RuleGroup, ...] = ()

    @property
    def rules(self) -> list[Rule]:
        return [rule for group in self.groups for rule in group.rules]

    @property
    def recording_rules(self) -> list[Rule]:
        return [rule for rule in self.rules if rule.is_recording]

    @property
    def alerting_rules(self) -> list[Rule]:
        return [rule for rule in self.rules if rule.is_alerting]
