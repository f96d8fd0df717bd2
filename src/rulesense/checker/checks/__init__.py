"""Checks module - individual rule checks. Importing it registers every check."""

from rulesense.checker.checks.aggregation import AggregationCheck
from rulesense.checker.checks.base import Check, CheckConfig, CheckContext
from rulesense.checker.checks.comparison import ComparisonCheck
from rulesense.checker.checks.counter import CounterCheck
from rulesense.checker.checks.external_labels import ExternalLabelsCheck
from rulesense.checker.checks.fragile import FragileCheck
from rulesense.checker.checks.impossible import ImpossibleCheck
from rulesense.checker.checks.performance import PerformanceCheck
from rulesense.checker.checks.selector import SelectorCheck
from rulesense.checker.checks.template import TemplateCheck

__all__ = [
    "Check",
    "CheckConfig",
    "CheckContext",
    # Individual checks
    "AggregationCheck",
    "ComparisonCheck",
    "CounterCheck",
    "ExternalLabelsCheck",
    "FragileCheck",
    "ImpossibleCheck",
    "PerformanceCheck",
    "SelectorCheck",
    "TemplateCheck",
]
