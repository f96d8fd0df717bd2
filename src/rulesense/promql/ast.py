"""
Typed AST for PromQL expressions.

Every node is an immutable dataclass carrying the character range it was
parsed from (``pos``), so diagnostics can underline the exact fragment of
the original query. ``str(node)`` renders a normalised form of the node
which is also used for structural comparison of two sub-expressions.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator


@dataclass(frozen=True)
class PositionRange:
    """Zero-based, end-exclusive character offsets into the query text."""

    start: int
    end: int

    def contains(self, other: "PositionRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def fragment(self, query: str) -> str:
        """Best-effort substring of ``query`` covered by this range."""
        if self.start < 0 or self.end > len(query) or self.start > self.end:
            return ""
        return query[self.start:self.end]

    def __str__(self) -> str:
        return f"{self.start}:{self.end}"


class ValueType(str, Enum):
    """Type of value an expression evaluates to."""

    NONE = "none"
    SCALAR = "scalar"
    VECTOR = "vector"
    MATRIX = "matrix"
    STRING = "string"

    @property
    def description(self) -> str:
        if self == ValueType.VECTOR:
            return "instant vector"
        if self == ValueType.MATRIX:
            return "range vector"
        return self.value


class MatchOp(str, Enum):
    """Label matcher operators."""

    EQUAL = "="
    NOT_EQUAL = "!="
    REGEX = "=~"
    NOT_REGEX = "!~"


class Cardinality(str, Enum):
    """Cardinality of a vector/vector binary operation."""

    ONE_TO_ONE = "one-to-one"
    MANY_TO_ONE = "many-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"


METRIC_NAME = "__name__"

SET_OPERATORS = frozenset({"and", "or", "unless"})
COMPARISON_OPERATORS = frozenset({"==", "!=", ">", "<", ">=", "<="})
ARITHMETIC_OPERATORS = frozenset({"+", "-", "*", "/", "%", "^", "atan2"})


def format_number(value: float) -> str:
    """Render a float the way PromQL prints number literals."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def quote_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


@dataclass(frozen=True)
class LabelMatcher:
    """A single ``name op "value"`` matcher inside a selector."""

    name: str
    op: MatchOp
    value: str
    pos: PositionRange | None = field(default=None, compare=False)

    def matches(self, value: str) -> bool:
        """Check whether a label value would be selected by this matcher."""
        if self.op == MatchOp.EQUAL:
            return value == self.value
        if self.op == MatchOp.NOT_EQUAL:
            return value != self.value
        try:
            hit = re.fullmatch(self.value, value) is not None
        except re.error:
            # Unknown regex dialect: assume it can match anything.
            return True
        return hit if self.op == MatchOp.REGEX else not hit

    def __str__(self) -> str:
        return f"{self.name}{self.op.value}{quote_string(self.value)}"


@dataclass(frozen=True)
class VectorMatching:
    """Vector matching modifiers of a binary expression."""

    card: Cardinality
    on: bool = False
    labels: tuple[str, ...] = ()
    include: tuple[str, ...] = ()

    def __str__(self) -> str:
        parts: list[str] = []
        if self.on or self.labels:
            keyword = "on" if self.on else "ignoring"
            parts.append(f"{keyword}({', '.join(self.labels)})")
        if self.card == Cardinality.MANY_TO_ONE:
            parts.append(f"group_left({', '.join(self.include)})")
        elif self.card == Cardinality.ONE_TO_MANY:
            parts.append(f"group_right({', '.join(self.include)})")
        return " ".join(parts)


@dataclass(frozen=True)
class Expr:
    """Base class of all expression nodes."""

    pos: PositionRange

    @property
    def value_type(self) -> ValueType:
        raise NotImplementedError

    def children(self) -> tuple["Expr", ...]:
        return ()

    def walk(self) -> Iterator["Expr"]:
        """Yield this node and all nested nodes, depth-first."""
        yield self
        for child in self.children():
            yield from child.walk()


@dataclass(frozen=True)
class NumberLiteral(Expr):
    value: float

    @property
    def value_type(self) -> ValueType:
        return ValueType.SCALAR

    def __str__(self) -> str:
        return format_number(self.value)


@dataclass(frozen=True)
class StringLiteral(Expr):
    value: str

    @property
    def value_type(self) -> ValueType:
        return ValueType.STRING

    def __str__(self) -> str:
        return quote_string(self.value)


def _modifiers(offset: str | None, at: str | None) -> str:
    out = ""
    if at:
        out += f" @ {at}"
    if offset:
        out += f" offset {offset}"
    return out


@dataclass(frozen=True)
class VectorSelector(Expr):
    """
    Instant vector selector.

    A literal metric name is also present in ``matchers`` as an implicit
    ``__name__="..."`` equality matcher.
    """

    name: str | None
    matchers: tuple[LabelMatcher, ...] = ()
    offset: str | None = None
    at: str | None = None

    @property
    def value_type(self) -> ValueType:
        return ValueType.VECTOR

    def matchers_for(self, label: str) -> list[LabelMatcher]:
        return [m for m in self.matchers if m.name == label]

    def selector_text(self) -> str:
        """Selector without offset and @ modifiers."""
        shown = [
            m for m in self.matchers
            if not (self.name and m.name == METRIC_NAME and m.op == MatchOp.EQUAL and m.value == self.name)
        ]
        body = "{" + ", ".join(str(m) for m in shown) + "}" if shown else ""
        if not self.name and not body:
            body = "{}"
        return f"{self.name or ''}{body}"

    def __str__(self) -> str:
        return self.selector_text() + _modifiers(self.offset, self.at)


@dataclass(frozen=True)
class MatrixSelector(Expr):
    selector: VectorSelector
    range: str

    @property
    def value_type(self) -> ValueType:
        return ValueType.MATRIX

    def children(self) -> tuple[Expr, ...]:
        return (self.selector,)

    def __str__(self) -> str:
        return (
            f"{self.selector.selector_text()}[{self.range}]"
            + _modifiers(self.selector.offset, self.selector.at)
        )


@dataclass(frozen=True)
class SubqueryExpr(Expr):
    expr: Expr
    range: str
    step: str | None = None
    offset: str | None = None
    at: str | None = None

    @property
    def value_type(self) -> ValueType:
        return ValueType.MATRIX

    def children(self) -> tuple[Expr, ...]:
        return (self.expr,)

    def __str__(self) -> str:
        return f"{self.expr}[{self.range}:{self.step or ''}]" + _modifiers(self.offset, self.at)


@dataclass(frozen=True)
class ParenExpr(Expr):
    expr: Expr

    @property
    def value_type(self) -> ValueType:
        return self.expr.value_type

    def children(self) -> tuple[Expr, ...]:
        return (self.expr,)

    def __str__(self) -> str:
        return f"({self.expr})"


@dataclass(frozen=True)
class UnaryExpr(Expr):
    op: str
    expr: Expr

    @property
    def value_type(self) -> ValueType:
        return self.expr.value_type

    def children(self) -> tuple[Expr, ...]:
        return (self.expr,)

    def __str__(self) -> str:
        return f"{self.op}{self.expr}"


@dataclass(frozen=True)
class Call(Expr):
    func: str
    args: tuple[Expr, ...] = ()

    @property
    def value_type(self) -> ValueType:
        from rulesense.promql.functions import FUNCTIONS

        function = FUNCTIONS.get(self.func)
        return function.return_type if function else ValueType.VECTOR

    def children(self) -> tuple[Expr, ...]:
        return self.args

    def __str__(self) -> str:
        return f"{self.func}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class AggregateExpr(Expr):
    """
    Aggregation such as ``sum by (job) (rate(foo[5m]))``.

    ``has_clause`` is False when neither ``by`` nor ``without`` was written.
    """

    op: str
    expr: Expr
    param: Expr | None = None
    grouping: tuple[str, ...] = ()
    without: bool = False
    has_clause: bool = False

    @property
    def value_type(self) -> ValueType:
        return ValueType.VECTOR

    def children(self) -> tuple[Expr, ...]:
        if self.param is not None:
            return (self.param, self.expr)
        return (self.expr,)

    def __str__(self) -> str:
        clause = ""
        if self.without:
            clause = f" without ({', '.join(self.grouping)})"
        elif self.grouping:
            clause = f" by ({', '.join(self.grouping)})"
        args = f"{self.param}, {self.expr}" if self.param is not None else str(self.expr)
        return f"{self.op}{clause} ({args})"


@dataclass(frozen=True)
class BinaryExpr(Expr):
    """
    Binary operation.

    ``matching`` is set whenever both operands are instant vectors and is
    None when at least one operand is a scalar.
    """

    op: str
    lhs: Expr
    rhs: Expr
    return_bool: bool = False
    matching: VectorMatching | None = None

    @property
    def value_type(self) -> ValueType:
        if self.lhs.value_type == ValueType.SCALAR and self.rhs.value_type == ValueType.SCALAR:
            return ValueType.SCALAR
        return ValueType.VECTOR

    @property
    def is_comparison(self) -> bool:
        return self.op in COMPARISON_OPERATORS

    @property
    def is_set_operator(self) -> bool:
        return self.op in SET_OPERATORS

    def children(self) -> tuple[Expr, ...]:
        return (self.lhs, self.rhs)

    def __str__(self) -> str:
        op = self.op + (" bool" if self.return_bool else "")
        if self.matching is not None:
            modifiers = str(self.matching)
            if modifiers:
                op += " " + modifiers
        return f"{self.lhs} {op} {self.rhs}"


def unwrap_parens(expr: Expr) -> Expr:
    """Strip any number of enclosing parentheses."""
    while isinstance(expr, ParenExpr):
        expr = expr.expr
    return expr
