"""
Just enough of Go's text/template syntax to lint alert templates.

Prometheus renders labels and annotations of alerting rules as Go
templates with ``$labels``, ``$externalLabels``, ``$externalURL`` and
``$value`` predefined. This module finds template actions, validates
their structure, and extracts the variable references they make,
following simple ``{{ $x := $labels }}`` aliases.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

PREDEFINED = {
    "$labels": ".Labels",
    "$externalLabels": ".ExternalLabels",
    "$externalURL": ".ExternalURL",
    "$value": ".Value",
}

TEMPLATE_FUNCTIONS = frozenset({
    # Prometheus
    "query", "first", "label", "value", "strvalue", "args", "reReplaceAll", "safeHtml",
    "match", "title", "toUpper", "toLower", "graphLink", "tableLink", "sortByLabel",
    "stripPort", "stripDomain", "humanize", "humanize1024", "humanizeDuration",
    "humanizePercentage", "humanizeTimestamp", "toTime", "toDuration", "now",
    "pathPrefix", "externalURL", "parseDuration",
    # Go builtins
    "and", "or", "not", "len", "index", "slice", "print", "printf", "println",
    "html", "js", "urlquery", "call", "eq", "ne", "lt", "le", "gt", "ge",
})

HUMANIZE_FUNCTIONS = frozenset({
    "humanize", "humanize1024", "humanizePercentage", "humanizeDuration", "printf",
})

_OPENING = frozenset({"if", "range", "with", "define", "block"})
_KEYWORDS = _OPENING | {"else", "end", "template", "break", "continue", "nil", "true", "false"}

_STRING = re.compile(r'"(?:[^"\\\n]|\\.)*"|`[^`]*`|\'(?:[^\'\\\n]|\\.)*\'')
_ACTION_END = re.compile(_STRING.pattern + r"|\}\}")
_REFERENCE = re.compile(
    r"(\$[A-Za-z_]\w*|(?<![\w)\]$])\.[A-Za-z_]\w*)((?:\.[A-Za-z_]\w*)*)"
)
_IDENTIFIER = re.compile(r"(?<![\w.$])[A-Za-z_]\w*")
_ALIAS = re.compile(r"^(\$[A-Za-z_]\w*)\s*:?=\s*(\$[A-Za-z_]\w*|\.[A-Za-z_]\w*)$")


class TemplateSyntaxError(ValueError):
    """The template can't be parsed."""


@dataclass(frozen=True)
class Action:
    """Body of one ``{{ ... }}`` action with its offset in the template text."""

    body: str
    offset: int


@dataclass(frozen=True)
class Variable:
    """
    A reference like ``$labels.job`` split into parts: ``("$labels", "job")``.

    ``column`` is the 1-based column of the reference in the template text.
    """

    parts: tuple[str, ...]
    column: int

    @property
    def root(self) -> str:
        return self.parts[0]


def _blank_strings(body: str) -> str:
    """Replace string literals with spaces, keeping offsets intact."""
    return _STRING.sub(lambda m: " " * len(m.group(0)), body)


def iter_actions(text: str) -> list[Action]:
    """
    Split template text into actions.

    Raises:
        TemplateSyntaxError: If an action is never closed.
    """
    actions: list[Action] = []
    pos = 0
    while True:
        start = text.find("{{", pos)
        if start < 0:
            return actions
        end = -1
        for match in _ACTION_END.finditer(text, start + 2):
            if match.group(0) == "}}":
                end = match.start()
                break
        if end < 0:
            raise TemplateSyntaxError("unclosed action")
        offset = start + 2
        body = text[offset:end]
        if body.startswith("- ") or body.startswith("-\n") or body == "-":
            body, offset = body[1:], offset + 1
        if body.endswith(" -") or body.endswith("\n-"):
            body = body[:-1]
        actions.append(Action(body=body, offset=offset))
        pos = end + 2


def validate(text: str) -> None:
    """
    Check the structure of a template.

    Raises:
        TemplateSyntaxError: Describing the first problem found.
    """
    blocks: list[str] = []
    for action in iter_actions(text):
        body = action.body.strip()
        if body.startswith("/*"):
            if not body.endswith("*/"):
                raise TemplateSyntaxError("unclosed comment")
            continue
        if not body:
            raise TemplateSyntaxError("missing value for command")
        if body.count('"') % 2 and not _STRING.search(body):
            raise TemplateSyntaxError("unterminated quoted string")

        stripped = _STRING.sub(lambda m: "0" * len(m.group(0)), body)
        keyword = stripped.split(None, 1)[0]
        if keyword in _OPENING:
            blocks.append(keyword)
        elif keyword == "end":
            if not blocks:
                raise TemplateSyntaxError("unexpected {{end}}")
            blocks.pop()
        elif keyword == "else" and not blocks:
            raise TemplateSyntaxError("unexpected {{else}}")

        if stripped.count("(") != stripped.count(")"):
            raise TemplateSyntaxError("unclosed left paren" if stripped.count("(") > stripped.count(")") else "unexpected right paren")

        for command in stripped.split("|"):
            words = command.replace("(", " ").split()
            if not words:
                raise TemplateSyntaxError("missing command")
            for word in words:
                if not _IDENTIFIER.fullmatch(word):
                    continue
                if word in _KEYWORDS or word in TEMPLATE_FUNCTIONS:
                    continue
                raise TemplateSyntaxError(f'function "{word}" not defined')
    if blocks:
        raise TemplateSyntaxError("unexpected EOF")


def aliases(text: str) -> dict[str, set[str]]:
    """Map each variable or field to the variables declared as its alias."""
    found: dict[str, set[str]] = {}
    for variable, source in PREDEFINED.items():
        found.setdefault(source, set()).add(variable)
    try:
        actions = iter_actions(text)
    except TemplateSyntaxError:
        return found
    for action in actions:
        match = _ALIAS.match(_blank_strings(action.body).strip())
        if match is not None:
            found.setdefault(match.group(2), set()).add(match.group(1))
    return found


def names_for(alias_map: dict[str, set[str]], root: str) -> set[str]:
    """``root`` and everything aliased to it, transitively."""
    names = {root}
    pending = [root]
    while pending:
        for alias in alias_map.get(pending.pop(), ()):
            if alias not in names:
                names.add(alias)
                pending.append(alias)
    return names


def variables(text: str) -> list[Variable]:
    """Every variable and field reference made by the template's actions."""
    try:
        actions = iter_actions(text)
    except TemplateSyntaxError:
        return []
    found: list[Variable] = []
    for action in actions:
        body = _blank_strings(action.body)
        for match in _REFERENCE.finditer(body):
            parts = (match.group(1),) + tuple(p for p in match.group(2).split(".") if p)
            found.append(Variable(parts=parts, column=action.offset + match.start() + 1))
    return found


def label_references(text: str, source: str) -> list[Variable]:
    """
    References to a key of ``source`` (like ``.Labels``) through any alias.

    ``{{ $labels.job }}`` and ``{{ .Labels.job }}`` both reference ``job``
    of ``.Labels``; the returned variables have at least two parts.
    """
    roots = names_for(aliases(text), source)
    return [v for v in variables(text) if len(v.parts) > 1 and v.root in roots]


def uses_value(text: str) -> bool:
    roots = names_for(aliases(text), ".Value")
    return any(v.root in roots for v in variables(text))


def value_references(text: str) -> list[Variable]:
    roots = names_for(aliases(text), ".Value")
    return [v for v in variables(text) if v.root in roots]


def has_humanize(text: str) -> bool:
    """True when an action using ``$value`` also pipes it through a formatting function."""
    roots = names_for(aliases(text), ".Value")
    try:
        actions = iter_actions(text)
    except TemplateSyntaxError:
        return False
    for action in actions:
        body = _blank_strings(action.body)
        refs = [m.group(1) for m in _REFERENCE.finditer(body)]
        if not any(ref in roots for ref in refs):
            continue
        if any(word in HUMANIZE_FUNCTIONS for word in _IDENTIFIER.findall(body)):
            return True
    return False
