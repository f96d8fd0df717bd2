"""
Reader for Prometheus rule files.

This module handles:
- Loading YAML from files or strings
- Validating the Prometheus layout (``groups:`` or a bare list of rules)
- Tracking the line range of every rule, expression, label and annotation
- Parsing each rule expression as PromQL
- Enforcing resource limits

Error handling philosophy: Fail fast with clear messages when the file
itself is broken. Invalid PromQL inside an otherwise valid rule is not
a file error; it is stored on the rule and reported by the linter.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from rulesense.exceptions import PromQLSyntaxError, RuleFileError
from rulesense.parser.config import DEFAULT_CONFIG, ParserConfig
from rulesense.parser.models import (
    KeyValue,
    LineRange,
    Rule,
    RuleExpr,
    RuleFile,
    RuleGroup,
    RuleKind,
)
from rulesense.promql import parse_expr

logger = logging.getLogger(__name__)

GROUP_KEYS = frozenset({"name", "interval", "rules", "limit", "query_offset", "labels"})
RULE_KEYS = frozenset({
    "alert", "record", "expr", "for", "keep_firing_for", "labels", "annotations",
})


def parse_rules(source: str | Path, config: ParserConfig | None = None) -> RuleFile:
    """
    Read Prometheus rules.

    Args:
        source: A ``Path`` to a rule file, or YAML text
        config: Reader limits. If None, uses DEFAULT_CONFIG.

    Returns:
        RuleFile with every group and rule, in file order

    Raises:
        RuleFileError: If the input is not valid YAML, doesn't have the
            expected layout, or exceeds limits

    Example:
        >>> rules = parse_rules(Path("rules.yaml"))
        >>> rules = parse_rules("- record: foo\\n  expr: sum(bar)\\n")
    """
    config = config or DEFAULT_CONFIG

    path: str | None = None
    if isinstance(source, Path):
        path = str(source)
        text = _read_file(source, config)
    elif isinstance(source, str):
        text = source
    else:
        raise RuleFileError(
            f"Unsupported source type: {type(source).__name__}",
            detail="Expected a Path or YAML text",
            source="type_check",
        )

    root = _compose(text, path)
    groups = _read_groups(root, path, config)

    rule_count = sum(len(group.rules) for group in groups)
    if rule_count > config.max_rules:
        raise RuleFileError(
            f"Too many rules: {rule_count:,} (max {config.max_rules:,})",
            path=path,
            detail="Split the file or increase max_rules in config",
            source="resource_limit",
        )

    logger.debug("Read %d rule(s) in %d group(s) from %s", rule_count, len(groups), path or "<text>")
    return RuleFile(path=path, groups=tuple(groups))


def parse_rules_file(path: str | Path, config: ParserConfig | None = None) -> RuleFile:
    """Convenience wrapper around parse_rules() for file names given as strings."""
    return parse_rules(Path(path), config)


def _read_file(path: Path, config: ParserConfig) -> str:
    if not path.exists():
        raise RuleFileError(f"File not found: {path}", path=str(path), source="file_read")
    if not path.is_file():
        raise RuleFileError(f"Path is not a file: {path}", path=str(path), source="file_read")

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > config.max_file_size_mb:
        raise RuleFileError(
            f"File too large: {size_mb:.1f}MB (max {config.max_file_size_mb}MB)",
            path=str(path),
            detail="Increase max_file_size_mb in config",
            source="resource_limit",
        )

    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RuleFileError(
            f"Cannot read file: {path}",
            path=str(path),
            detail=str(e),
            source="file_read",
        ) from e


def _compose(text: str, path: str | None) -> Node | None:
    """Parse YAML into a node graph, which keeps line marks."""
    try:
        return yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.MarkedYAMLError as e:
        line = e.problem_mark.line + 1 if e.problem_mark is not None else None
        raise RuleFileError(
            "Invalid YAML",
            path=path,
            line=line,
            detail=f"Line {line}: {e.problem}" if line else str(e),
            source="yaml",
        ) from e
    except yaml.YAMLError as e:
        raise RuleFileError("Invalid YAML", path=path, detail=str(e), source="yaml") from e


def _lines(node: Node) -> LineRange:
    """Line range covered by a YAML node."""
    first = node.start_mark.line + 1
    if isinstance(node, MappingNode) and node.value:
        last = max(_lines(value).last for _, value in node.value)
    elif isinstance(node, SequenceNode) and node.value:
        last = max(_lines(item).last for item in node.value)
    else:
        end = node.end_mark
        # Block scalars end at column 0 of the line after their content.
        last = end.line if end.column == 0 else end.line + 1
    return LineRange(first=first, last=max(first, last))


def _error(message: str, node: Node, path: str | None) -> RuleFileError:
    return RuleFileError(message, path=path, line=node.start_mark.line + 1)


def _items(node: MappingNode) -> list[tuple[str, Node, Node]]:
    return [(str(key.value), key, value) for key, value in node.value]


def _scalar(node: Node, what: str, path: str | None) -> str:
    if not isinstance(node, ScalarNode):
        raise _error(f"{what} must be a string", node, path)
    return str(node.value)


def _read_groups(root: Node | None, path: str | None, config: ParserConfig) -> list[RuleGroup]:
    if root is None:
        return []

    if isinstance(root, SequenceNode):
        rules = [_read_rule(item, None, path, config) for item in root.value]
        return [RuleGroup(rules=tuple(rules))]

    if not isinstance(root, MappingNode):
        raise _error("Expected a mapping with 'groups' or a list of rules", root, path)

    fields = {name: value for name, _, value in _items(root)}
    if "groups" not in fields:
        raise _error("Missing 'groups' field - this doesn't look like a rule file", root, path)

    groups_node = fields["groups"]
    if not isinstance(groups_node, SequenceNode):
        raise _error("'groups' must be a list", groups_node, path)

    return [_read_group(item, path, config) for item in groups_node.value]


def _read_group(node: Node, path: str | None, config: ParserConfig) -> RuleGroup:
    if not isinstance(node, MappingNode):
        raise _error("Each group must be a mapping", node, path)

    name: str | None = None
    interval: str | None = None
    rules: list[Rule] = []
    for key, key_node, value in _items(node):
        if key not in GROUP_KEYS:
            raise _error(f"Unknown group field '{key}'", key_node, path)
        if key == "name":
            name = _scalar(value, "Group name", path)
        elif key == "interval":
            interval = _scalar(value, "Group interval", path)
        elif key == "rules":
            if isinstance(value, ScalarNode) and value.tag.endswith(":null"):
                continue
            if not isinstance(value, SequenceNode):
                raise _error("'rules' must be a list", value, path)
            rules = [_read_rule(item, name, path, config) for item in value.value]

    if name is None:
        raise _error("Group is missing the 'name' field", node, path)
    return RuleGroup(name=name, interval=interval, rules=tuple(rules))


def _read_mapping(node: Node, what: str, path: str | None) -> dict[str, KeyValue]:
    if isinstance(node, ScalarNode) and node.tag.endswith(":null"):
        return {}
    if not isinstance(node, MappingNode):
        raise _error(f"'{what}' must be a mapping", node, path)
    return {
        key: KeyValue(
            key=key,
            value=_scalar(value, f"Value of {what}.{key}", path),
            lines=LineRange(first=key_node.start_mark.line + 1, last=_lines(value).last),
        )
        for key, key_node, value in _items(node)
    }


def _read_rule(
    node: Node,
    group: str | None,
    path: str | None,
    config: ParserConfig,
) -> Rule:
    if not isinstance(node, MappingNode):
        raise _error("Each rule must be a mapping", node, path)

    fields: dict[str, Node] = {}
    for key, key_node, value in _items(node):
        if key not in RULE_KEYS:
            raise _error(f"Unknown rule field '{key}'", key_node, path)
        fields[key] = value

    if "alert" in fields and "record" in fields:
        raise _error("Rule can't have both 'alert' and 'record' fields", node, path)
    if "alert" not in fields and "record" not in fields:
        raise _error("Rule must have either an 'alert' or a 'record' field", node, path)
    if "expr" not in fields:
        raise _error("Rule is missing the 'expr' field", node, path)

    kind = RuleKind.ALERTING if "alert" in fields else RuleKind.RECORDING
    name_node = fields["alert" if kind == RuleKind.ALERTING else "record"]
    name = _scalar(name_node, "Rule name", path)

    if kind == RuleKind.RECORDING:
        for key in ("for", "keep_firing_for", "annotations"):
            if key in fields:
                raise _error(f"Recording rules can't have the '{key}' field", fields[key], path)

    expr = _read_expr(fields["expr"], path, config)

    return Rule(
        kind=kind,
        name=name,
        name_lines=_lines(name_node),
        expr=expr,
        lines=_lines(node),
        for_=_scalar(fields["for"], "'for'", path) if "for" in fields else None,
        keep_firing_for=(
            _scalar(fields["keep_firing_for"], "'keep_firing_for'", path)
            if "keep_firing_for" in fields else None
        ),
        labels=_read_mapping(fields["labels"], "labels", path) if "labels" in fields else {},
        annotations=(
            _read_mapping(fields["annotations"], "annotations", path)
            if "annotations" in fields else {}
        ),
        group=group,
    )


def _read_expr(node: Node, path: str | None, config: ParserConfig) -> RuleExpr:
    text = _scalar(node, "'expr'", path)
    lines = _lines(node)

    if len(text) > config.max_query_length:
        raise RuleFileError(
            f"Expression too long: {len(text):,} characters (max {config.max_query_length:,})",
            path=path,
            line=lines.first,
            source="resource_limit",
        )

    try:
        ast = parse_expr(text)
    except PromQLSyntaxError as e:
        logger.debug("Syntax error in expression at line %d: %s", lines.first, e.message)
        return RuleExpr(text=text, lines=lines, syntax_error=e)
    return RuleExpr(text=text, lines=lines, ast=ast)
