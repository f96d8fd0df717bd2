"""Prometheus rule file reading module."""

from rulesense.exceptions import RuleFileError
from rulesense.parser.config import DEFAULT_CONFIG, STRICT_CONFIG, ParserConfig
from rulesense.parser.models import (
    KeyValue,
    LineRange,
    Rule,
    RuleExpr,
    RuleFile,
    RuleGroup,
    RuleKind,
)
from rulesense.parser.parser import parse_rules, parse_rules_file

__all__ = [
    "KeyValue",
    "LineRange",
    "Rule",
    "RuleExpr",
    "RuleFile",
    "RuleGroup",
    "RuleKind",
    "parse_rules",
    "parse_rules_file",
    "RuleFileError",
    "ParserConfig",
    "DEFAULT_CONFIG",
    "STRICT_CONFIG",
]
