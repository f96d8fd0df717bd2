"""
Provenance tree construction.

Walks a parsed query bottom-up and computes, for every sub-expression,
which labels its results are guaranteed to have, which labels they can
never have, and whether the sub-expression can return anything at all.

Every transformation (aggregation, function call, binary operation) is
applied to each branch of its input separately, so a query like
``sum(foo or vector(0)) by (job)`` ends up with one branch per possible
producer of the result, each with its own label facts.

Example:
    from rulesense.promql import parse_expr
    from rulesense.provenance import build

    query = 'sum(rate(http_requests_total{job="api"}[5m])) by (instance)'
    tree = build(parse_expr(query), query)
    tree.can_have("job")  # False, removed by by(instance)
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from types import MappingProxyType
from typing import Callable, Iterable, Sequence

from rulesense.promql.ast import (
    COMPARISON_OPERATORS,
    METRIC_NAME,
    AggregateExpr,
    BinaryExpr,
    Call,
    Cardinality,
    Expr,
    MatchOp,
    MatrixSelector,
    NumberLiteral,
    ParenExpr,
    PositionRange,
    StringLiteral,
    SubqueryExpr,
    UnaryExpr,
    ValueType,
    VectorMatching,
    VectorSelector,
)
from rulesense.promql.functions import FUNCTIONS
from rulesense.provenance import deadcode, joins
from rulesense.provenance.models import (
    Combinator,
    Exclusion,
    Filter,
    LabelFact,
    LabelIssue,
    LabelIssueKind,
    LabelKind,
    NodeKind,
    Operation,
    ProvenanceNode,
)
from rulesense.provenance.positions import (
    find_argument_position,
    find_func_name_position,
    find_func_position,
)

logger = logging.getLogger(__name__)

SELECTOR_REASON = "Query will only return series where these labels are present."
METRIC_NAME_AGGREGATION_REASON = "Aggregation removes metric name."
METRIC_NAME_BINARY_REASON = "Binary operation between two vectors removes metric names."

ABSENT_REASON = (
    "The [{name}()](https://prometheus.io/docs/prometheus/latest/querying/functions/#{name}) "
    "function is used to check if provided query doesn't match any time series.\n"
    "You will only get any results back if the metric selector you pass doesn't match anything.\n"
    "Since there are no matching time series there are also no labels. "
    "If some time series is missing you cannot read its labels.\n"
    "This means that the only labels you can get back from absent call are the ones you pass to it.\n"
    "If you're hoping to get instance specific labels this way and alert when some target "
    "is down then that won't work, use the `up` metric instead."
)

# Aggregations selecting a subset of input series without touching labels.
PASS_THROUGH_AGGREGATIONS = frozenset({"topk", "bottomk", "limitk", "limit_ratio"})

ABSENT_FUNCTIONS = frozenset({"absent", "absent_over_time"})
LABEL_WRITING_FUNCTIONS = frozenset({"label_replace", "label_join"})
DATE_FUNCTIONS = frozenset({
    "days_in_month", "day_of_month", "day_of_week", "day_of_year",
    "hour", "minute", "month", "year",
})

# Value of an aggregation over a single series with a known value.
_AGGREGATION_VALUES: dict[str, Callable[[float], float | None]] = {
    "sum": lambda v: v,
    "min": lambda v: v,
    "max": lambda v: v,
    "avg": lambda v: v,
    "quantile": lambda v: v,
    "topk": lambda v: v,
    "bottomk": lambda v: v,
    "limitk": lambda v: v,
    "limit_ratio": lambda v: v,
    "count": lambda v: 1.0,
    "group": lambda v: 1.0,
    "stddev": lambda v: 0.0,
    "stdvar": lambda v: 0.0,
}


class _Surface:
    """Mutable working copy of the label facts of one branch."""

    def __init__(self, node: ProvenanceNode | None = None) -> None:
        self.labels: dict[str, LabelFact] = dict(node.labels) if node else {}
        self.fixed = node.fixed if node else False
        self.fixed_reason: Exclusion | None = node.fixed_reason if node else None
        self.unknown = node.unknown if node else False
        self.issues: list[LabelIssue] = list(node.label_issues) if node else []

    def can_have(self, name: str) -> bool:
        fact = self.labels.get(name)
        if fact is not None:
            return fact.kind != LabelKind.EXCLUDED
        return not self.fixed

    def exclude_reason(self, name: str) -> Exclusion:
        fact = self.labels.get(name)
        if fact is not None and fact.kind == LabelKind.EXCLUDED:
            return Exclusion(fact.reason, fact.fragment)
        if self.fixed_reason is not None:
            return self.fixed_reason
        return Exclusion("", PositionRange(0, 0))

    def guarantee(self, reason: str, fragment: PositionRange, names: Iterable[str]) -> None:
        for name in names:
            self.labels[name] = LabelFact(LabelKind.GUARANTEED, reason, fragment)

    def exclude(self, reason: str, fragment: PositionRange, name: str) -> None:
        self.labels[name] = LabelFact(LabelKind.EXCLUDED, reason, fragment)

    def include(self, query: str, reason: str, fragment: PositionRange, name: str) -> None:
        """Mark a label as possible unless it's already known to be present or absent."""
        fact = self.labels.get(name)
        if fact is not None and fact.kind != LabelKind.POSSIBLE:
            return
        if not self.can_have(name):
            return
        self.labels[name] = LabelFact(
            LabelKind.POSSIBLE, reason, find_argument_position(query, fragment, name)
        )

    def exclude_all(
        self,
        query: str,
        reason: str,
        fragment: PositionRange,
        all_fragment: PositionRange,
        keep: Sequence[str] = (),
    ) -> None:
        """Close the label surface so that only ``keep`` labels can remain."""
        for name, fact in list(self.labels.items()):
            if name in keep:
                continue
            if fact.kind != LabelKind.EXCLUDED:
                self.labels[name] = LabelFact(LabelKind.EXCLUDED, reason, fragment)

        for name in keep:
            fact = self.labels.get(name)
            if fact is not None and fact.kind == LabelKind.GUARANTEED:
                continue
            if self.can_have(name):
                self.labels[name] = LabelFact(
                    LabelKind.POSSIBLE, reason, find_argument_position(query, fragment, name)
                )
            else:
                excluded = self.exclude_reason(name)
                self.labels[name] = LabelFact(LabelKind.EXCLUDED, excluded.reason, excluded.fragment)

        self.fixed = True
        self.fixed_reason = Exclusion(reason, all_fragment)
        self.unknown = self.unknown and bool(keep)

    def check_included(self, query: str, pos: PositionRange, names: Iterable[str]) -> None:
        """Record every label the query asks for but which can't be present."""
        for name in names:
            if self.can_have(name):
                continue
            excluded = self.exclude_reason(name)
            self.issues.append(LabelIssue(
                kind=LabelIssueKind.IMPOSSIBLE,
                name=name,
                reason=f"You can't use `{name}` because this label is not possible here.",
                usage=find_argument_position(query, pos, name),
                label_reason=excluded.reason,
                label_fragment=excluded.fragment,
            ))

    def freeze(self, node: ProvenanceNode, **changes) -> ProvenanceNode:
        return replace(
            node,
            labels=MappingProxyType(dict(self.labels)),
            fixed=self.fixed,
            fixed_reason=self.fixed_reason,
            unknown=self.unknown,
            label_issues=tuple(self.issues),
            **changes,
        )


def _derive(branch: ProvenanceNode, expr: Expr, kind: NodeKind, **changes) -> ProvenanceNode:
    """Start a new node from one branch of a child node."""
    dead = branch.dead.propagate() if branch.dead is not None else None
    fields = dict(
        kind=kind,
        position=expr.pos,
        expr=expr,
        children=(),
        alternatives=(),
        combinator=Combinator.NONE,
        dead=dead,
    )
    fields.update(changes)
    return replace(branch, **fields)


def _check_conditions(node: ProvenanceNode, op: str, return_bool: bool) -> tuple[bool, bool]:
    is_return_bool = return_bool and not node.is_conditional
    is_conditional = node.is_conditional or op in COMPARISON_OPERATORS
    return is_conditional, is_return_bool


def _selector_labels(selector: VectorSelector | None, with_name: bool) -> list[str]:
    """Labels pinned to a non-empty value by an equality matcher."""
    if selector is None:
        return []
    names: list[str] = []
    for matcher in selector.matchers:
        if matcher.op != MatchOp.EQUAL or matcher.value == "":
            continue
        if matcher.name == METRIC_NAME and not with_name:
            continue
        if matcher.name not in names:
            names.append(matcher.name)
    return names


class ProvenanceBuilder:
    """
    Builds the provenance tree for one query.

    ``query`` is the source text the expression was parsed from; it is
    only used to locate exact fragments for diagnostics.
    """

    def __init__(self, query: str = "") -> None:
        self.query = query

    def visit(self, expr: Expr) -> ProvenanceNode:
        if isinstance(expr, ParenExpr):
            return self.visit(expr.expr)
        if isinstance(expr, UnaryExpr):
            return self._unary(expr)
        if isinstance(expr, NumberLiteral):
            return self._number(expr)
        if isinstance(expr, StringLiteral):
            return self._string(expr)
        if isinstance(expr, VectorSelector):
            return self._selector(expr, expr.pos, ValueType.VECTOR)
        if isinstance(expr, MatrixSelector):
            node = self._selector(expr.selector, expr.pos, ValueType.MATRIX)
            return replace(node, expr=expr)
        if isinstance(expr, SubqueryExpr):
            return self._subquery(expr)
        if isinstance(expr, Call):
            return self._call(expr)
        if isinstance(expr, AggregateExpr):
            return self._aggregation(expr)
        if isinstance(expr, BinaryExpr):
            return self._binary(expr)
        return self._unknown(expr)

    # ── leaves ───────────────────────────────────────────────────────────

    def _number(self, expr: NumberLiteral) -> ProvenanceNode:
        surface = _Surface()
        surface.exclude_all(
            self.query, "This query returns a number value with no labels.", expr.pos, expr.pos
        )
        base = ProvenanceNode(
            kind=NodeKind.LITERAL,
            position=expr.pos,
            expr=expr,
            returns=ValueType.SCALAR,
            value=expr.value,
            value_position=expr.pos,
            always_returns=True,
            is_scalar_marker=True,
        )
        return surface.freeze(base)

    def _string(self, expr: StringLiteral) -> ProvenanceNode:
        surface = _Surface()
        surface.exclude_all(
            self.query, "This query returns a string value with no labels.", expr.pos, expr.pos
        )
        base = ProvenanceNode(
            kind=NodeKind.LITERAL,
            position=expr.pos,
            expr=expr,
            returns=ValueType.STRING,
            always_returns=True,
        )
        return surface.freeze(base)

    def _selector(
        self, selector: VectorSelector, position: PositionRange, returns: ValueType
    ) -> ProvenanceNode:
        surface = _Surface()
        surface.guarantee(SELECTOR_REASON, selector.pos, _selector_labels(selector, with_name=True))
        for matcher in selector.matchers:
            if matcher.name == METRIC_NAME:
                continue
            if matcher.op == MatchOp.EQUAL and matcher.value == "":
                surface.exclude(
                    f'Query uses `{{{matcher.name}=""}}` selector which will filter out any time '
                    f"series with the `{matcher.name}` label set.",
                    selector.pos,
                    matcher.name,
                )
        for matcher in selector.matchers:
            if matcher.op == MatchOp.REGEX and matcher.name != METRIC_NAME:
                surface.include(self.query, SELECTOR_REASON, selector.pos, matcher.name)

        base = ProvenanceNode(
            kind=NodeKind.SELECTOR,
            position=position,
            expr=selector,
            returns=returns,
            selector=selector,
            dead=deadcode.selector_conflict(selector),
            operations=(
                Operation(
                    label=selector.name or selector.selector_text(),
                    text=str(selector),
                    position=position,
                ),
            ),
        )
        return surface.freeze(base)

    def _unary(self, expr: UnaryExpr) -> ProvenanceNode:
        node = self.visit(expr.expr)
        if expr.op != "-" or node.value is None:
            return node
        return replace(
            node,
            value=-node.value,
            value_text=f"-{deadcode.value_text(node, self.query)}",
        )

    def _unknown(self, expr: Expr) -> ProvenanceNode:
        logger.debug("Unsupported expression type %s, label surface unknown", type(expr).__name__)
        children = tuple(self.visit(child) for child in expr.children())
        if len(children) == 1:
            return replace(
                children[0], kind=NodeKind.UNKNOWN, position=expr.pos, expr=expr, children=children
            )
        return ProvenanceNode(
            kind=NodeKind.UNKNOWN,
            position=expr.pos,
            expr=expr,
            unknown=True,
            children=children,
            returns=expr.value_type,
        )

    def _subquery(self, expr: SubqueryExpr) -> ProvenanceNode:
        child = self.visit(expr.expr)
        node = joins.map_branches(
            child,
            lambda branch: _derive(branch, expr, NodeKind.SUBQUERY, returns=ValueType.MATRIX),
        )
        return replace(node, children=(child,))

    # ── function calls ───────────────────────────────────────────────────

    def _call(self, expr: Call) -> ProvenanceNode:
        function = FUNCTIONS.get(expr.func)
        children = tuple(self.visit(arg) for arg in expr.args)
        if function is None:
            return self._unknown_call(expr, children)

        sources: list[int] = []
        args: list[str] = []
        for i, arg in enumerate(expr.args):
            if function.arg_type(i) in (ValueType.VECTOR, ValueType.MATRIX):
                sources.append(i)
            else:
                args.append(str(arg))
        operation = Operation(label=expr.func, text=str(expr), position=expr.pos, args=tuple(args))

        if expr.func == "vector":
            node = self._vector(expr, children[0], operation)
        elif expr.func in ("time", "pi"):
            node = self._scalar_function(expr, operation, math.pi if expr.func == "pi" else None)
        elif expr.func == "scalar":
            node = self._scalar_function(
                expr,
                operation,
                None,
                previous=children[0].operations,
                fragment=find_func_position(self.query, expr.pos, expr.func),
            )
        elif expr.func in DATE_FUNCTIONS and not expr.args:
            node = self._labelless_vector(expr, operation)
        elif len(sources) != 1:
            logger.debug(
                "Function %s called with %d vector arguments, label surface unknown",
                expr.func, len(sources),
            )
            node = ProvenanceNode(
                kind=NodeKind.FUNCTION,
                position=expr.pos,
                expr=expr,
                unknown=True,
                operations=(operation,),
                returns=function.return_type,
            )
        else:
            source = children[sources[0]]
            node = joins.map_branches(
                source, lambda branch: self._apply_function(expr, branch, operation)
            )
        return replace(node, children=children)

    def _unknown_call(self, expr: Call, children: tuple[ProvenanceNode, ...]) -> ProvenanceNode:
        """
        A function missing from the function table.

        With exactly one vector or range vector argument the labels of that
        argument are passed through. Otherwise nothing is known.
        """
        sources: list[ProvenanceNode] = []
        args: list[str] = []
        for arg, child in zip(expr.args, children):
            if child.returns in (ValueType.VECTOR, ValueType.MATRIX):
                sources.append(child)
            else:
                args.append(str(arg))
        operation = Operation(label=expr.func, text=str(expr), position=expr.pos, args=tuple(args))
        if len(sources) != 1:
            logger.debug(
                "Unknown function %s called with %d vector arguments, label surface unknown",
                expr.func, len(sources),
            )
            return ProvenanceNode(
                kind=NodeKind.FUNCTION,
                position=expr.pos,
                expr=expr,
                unknown=True,
                children=children,
                operations=(operation,),
            )

        logger.debug("Unknown function %s, passing labels of its argument through", expr.func)
        node = joins.map_branches(
            sources[0],
            lambda branch: _derive(
                branch,
                expr,
                NodeKind.FUNCTION,
                returns=ValueType.VECTOR,
                operations=branch.operations + (operation,),
                value=None,
                value_text=None,
                value_position=None,
                is_scalar_marker=False,
            ),
        )
        return replace(node, children=children)

    def _apply_function(
        self, expr: Call, branch: ProvenanceNode, operation: Operation
    ) -> ProvenanceNode:
        function = FUNCTIONS[expr.func]
        surface = _Surface(branch)
        changes: dict = dict(
            returns=function.return_type,
            operations=branch.operations + (operation,),
            value=None,
            value_text=None,
            value_position=None,
            is_scalar_marker=False,
        )

        if expr.func in ABSENT_FUNCTIONS:
            names = _selector_labels(branch.selector, with_name=False)
            name_pos = find_func_name_position(self.query, expr.pos, expr.func)
            surface.exclude_all(
                self.query,
                ABSENT_REASON.format(name=expr.func),
                name_pos,
                name_pos,
                keep=names,
            )
            surface.guarantee(
                f"All labels passed to {expr.func}() call will be present on the results "
                "if the query doesn't match anything.",
                expr.pos,
                names,
            )
            # absent() of something that never returns anything always returns.
            changes.update(
                is_absent=True,
                is_fallback=False,
                always_returns=branch.dead is not None,
                is_conditional=False,
                filters=(),
            )
            node = _derive(branch, expr, NodeKind.FUNCTION, **changes)
            return surface.freeze(replace(node, dead=None))

        if expr.func in LABEL_WRITING_FUNCTIONS:
            destination = expr.args[1]
            replacement = expr.args[2] if expr.func == "label_replace" else None
            if (
                isinstance(destination, StringLiteral)
                and destination.value
                and not (isinstance(replacement, StringLiteral) and replacement.value == "")
            ):
                surface.guarantee(
                    f"This label will be added to the result by {expr.func}() call.",
                    expr.pos,
                    [destination.value],
                )

        return surface.freeze(_derive(branch, expr, NodeKind.FUNCTION, **changes))

    def _vector(self, expr: Call, arg: ProvenanceNode, operation: Operation) -> ProvenanceNode:
        name_pos = find_func_name_position(self.query, expr.pos, expr.func)
        surface = _Surface()
        surface.exclude_all(
            self.query, "Calling `vector()` will return a vector value with no labels.", name_pos, name_pos
        )
        base = ProvenanceNode(
            kind=NodeKind.FUNCTION,
            position=expr.pos,
            expr=expr,
            returns=ValueType.VECTOR,
            value=arg.value,
            value_position=expr.pos,
            always_returns=True,
            is_fallback=True,
            operations=(operation,),
        )
        return surface.freeze(base)

    def _scalar_function(
        self,
        expr: Call,
        operation: Operation,
        value: float | None,
        previous: tuple[Operation, ...] = (),
        fragment: PositionRange | None = None,
    ) -> ProvenanceNode:
        fragment = fragment or expr.pos
        surface = _Surface()
        surface.exclude_all(
            self.query,
            f"Calling `{expr.func}()` will return a scalar value with no labels.",
            fragment,
            fragment,
        )
        base = ProvenanceNode(
            kind=NodeKind.FUNCTION,
            position=expr.pos,
            expr=expr,
            returns=ValueType.SCALAR,
            value=value,
            value_position=expr.pos,
            always_returns=True,
            is_scalar_marker=True,
            operations=previous + (operation,),
        )
        return surface.freeze(base)

    def _labelless_vector(self, expr: Call, operation: Operation) -> ProvenanceNode:
        surface = _Surface()
        surface.exclude_all(
            self.query,
            f"Calling `{expr.func}()` with no arguments will return an empty time series with no labels.",
            expr.pos,
            expr.pos,
        )
        base = ProvenanceNode(
            kind=NodeKind.FUNCTION,
            position=expr.pos,
            expr=expr,
            returns=ValueType.VECTOR,
            always_returns=True,
            operations=(operation,),
        )
        return surface.freeze(base)

    # ── aggregations ─────────────────────────────────────────────────────

    def _aggregation(self, expr: AggregateExpr) -> ProvenanceNode:
        child = self.visit(expr.expr)
        param = self.visit(expr.param) if expr.param is not None else None
        operation = Operation(
            label=expr.op,
            text=str(expr),
            position=expr.pos,
            args=(str(expr.param),) if expr.param is not None else (),
        )
        node = joins.map_branches(
            child, lambda branch: self._apply_aggregation(expr, branch, operation)
        )
        return replace(node, children=(param, child) if param is not None else (child,))

    def _apply_aggregation(
        self, expr: AggregateExpr, branch: ProvenanceNode, operation: Operation
    ) -> ProvenanceNode:
        compute = _AGGREGATION_VALUES.get(expr.op)
        value = compute(branch.value) if compute and branch.value is not None else None
        changes: dict = dict(
            returns=ValueType.VECTOR,
            operations=branch.operations + (operation,),
            value=value,
            is_scalar_marker=False,
        )
        if value != branch.value:
            changes.update(value_text=None, value_position=expr.pos)

        if expr.op in PASS_THROUGH_AGGREGATIONS:
            return _derive(branch, expr, NodeKind.AGGREGATION, **changes)

        query = self.query
        outside = [e.pos for e in expr.children()]
        surface = _Surface(branch)
        if expr.without:
            clause = find_func_position(query, expr.pos, "without", outside)
            reason = (
                f"Query is using aggregation with `without({', '.join(expr.grouping)})`, "
                "all labels included inside `without(...)` will be removed from the results."
            )
            for name in expr.grouping:
                surface.exclude(reason, find_argument_position(query, clause, name), name)
        elif not expr.grouping:
            name_pos = find_func_name_position(query, expr.pos, expr.op)
            surface.exclude_all(
                query, "Query is using aggregation that removes all labels.", name_pos, name_pos
            )
        else:
            clause = find_func_position(query, expr.pos, "by", outside)
            surface.check_included(query, clause, expr.grouping)
            surface.exclude_all(
                query,
                f"Query is using aggregation with `by({', '.join(expr.grouping)})`, "
                "only labels included inside `by(...)` will be present on the results.",
                clause,
                find_func_name_position(query, clause, "by"),
                keep=expr.grouping,
            )

        if expr.op == "count_values" and isinstance(expr.param, StringLiteral):
            surface.guarantee(
                "This label will be added to the results by the count_values() call.",
                expr.pos,
                [expr.param.value],
            )
        if expr.without or METRIC_NAME not in expr.grouping:
            surface.exclude(METRIC_NAME_AGGREGATION_REASON, expr.pos, METRIC_NAME)

        return surface.freeze(_derive(branch, expr, NodeKind.AGGREGATION, **changes))

    # ── binary operations ────────────────────────────────────────────────

    def _binary(self, expr: BinaryExpr) -> ProvenanceNode:
        lhs = self.visit(expr.lhs)
        rhs = self.visit(expr.rhs)
        matching = expr.matching

        if matching is None:
            node = self._scalar_binary(expr, lhs, rhs)
            combinator = Combinator.NONE
        elif expr.is_set_operator:
            node = self._set_operation(expr, matching, lhs, rhs)
            combinator = {
                "and": Combinator.AND,
                "unless": Combinator.UNLESS,
                "or": Combinator.OR,
            }[expr.op]
        elif matching.card == Cardinality.ONE_TO_MANY:
            node = self._vector_join(expr, matching, many=rhs, one=lhs)
            combinator = Combinator.JOIN
        else:
            node = self._vector_join(expr, matching, many=lhs, one=rhs)
            combinator = Combinator.JOIN
        return replace(node, children=(lhs, replace(rhs, combinator=combinator)))

    def _scalar_binary(
        self, expr: BinaryExpr, lhs: ProvenanceNode, rhs: ProvenanceNode
    ) -> ProvenanceNode:
        """At least one side is a scalar, labels come from the vector side."""
        if lhs.returns in (ValueType.VECTOR, ValueType.MATRIX):
            side, other, side_is_lhs = lhs, rhs, True
        elif rhs.returns in (ValueType.VECTOR, ValueType.MATRIX):
            side, other, side_is_lhs = rhs, lhs, False
        else:
            side, other, side_is_lhs = lhs, rhs, True

        def apply(branch: ProvenanceNode) -> ProvenanceNode:
            ls, rs = (branch, other) if side_is_lhs else (other, branch)
            is_conditional, is_return_bool = _check_conditions(branch, expr.op, expr.return_bool)
            changes: dict = dict(
                is_conditional=is_conditional,
                is_return_bool=is_return_bool,
                is_scalar_marker=branch.is_scalar_marker and other.is_scalar_marker,
            )
            if branch.returns != ValueType.SCALAR or other.returns != ValueType.SCALAR:
                changes["returns"] = ValueType.VECTOR
            node = _derive(branch, expr, NodeKind.BINARY_JOIN, **changes)
            if other.dead is not None and node.dead is None:
                node = replace(node, dead=other.dead.propagate())
            if ls.always_returns and rs.always_returns and ls.value is not None and rs.value is not None:
                value, text, dead = deadcode.static_return(self.query, ls, rs, expr)
                node = replace(node, value=value, value_text=text)
                if dead is not None and node.dead is None:
                    node = replace(node, dead=dead)
            elif not other.always_returns:
                node = replace(node, always_returns=False, value=None, value_text=None)
            else:
                node = replace(node, value=None, value_text=None)
            return node

        return joins.map_branches(side, apply)

    def _set_operation(
        self,
        expr: BinaryExpr,
        matching: VectorMatching,
        lhs: ProvenanceNode,
        rhs: ProvenanceNode,
    ) -> ProvenanceNode:
        query = self.query
        outside = [expr.lhs.pos, expr.rhs.pos]
        rhs_conditional = any(branch.is_conditional for branch in rhs.branches())
        identity = deadcode.unless_identity(expr)

        def apply(branch: ProvenanceNode) -> ProvenanceNode:
            surface = _Surface(branch)
            if matching.on:
                clause = find_func_position(query, expr.pos, "on", outside)
                surface.check_included(query, clause, matching.labels)
                for name in matching.labels:
                    surface.include(
                        query,
                        f"Query is using {matching.card.value} vector matching with "
                        f"`on({', '.join(matching.labels)})`, labels included inside `on(...)` "
                        "will be present on the results if matched time series have them.",
                        clause,
                        name,
                    )
            node = surface.freeze(_derive(branch, expr, NodeKind.SET_OP))
            if expr.op == "or":
                return node

            other = joins.mark_unjoinable(node, rhs, matching)
            if expr.op == "unless":
                dead = deadcode.unless_always_returns(expr, other) or identity
                combinator = Combinator.UNLESS
            else:
                rhs_dead = joins.first_dead(other)
                dead = rhs_dead.propagate() if rhs_dead is not None else None
                combinator = Combinator.AND
                if rhs_conditional:
                    node = replace(node, is_conditional=True)
            if dead is not None and node.dead is None:
                node = replace(node, dead=dead)
            return replace(
                node,
                filters=node.filters + (Filter(other, combinator, expr.op, matching),),
            )

        node = joins.map_branches(lhs, apply)
        if expr.op != "or":
            return node

        never_used = deadcode.or_never_used(lhs, rhs.position)
        extra = []
        for branch in rhs.branches():
            branch = replace(branch, children=(), alternatives=())
            if never_used is not None and branch.dead is None:
                branch = replace(branch, dead=never_used)
            extra.append(branch)
        return replace(node, alternatives=node.alternatives + tuple(extra))

    def _vector_join(
        self,
        expr: BinaryExpr,
        matching: VectorMatching,
        many: ProvenanceNode,
        one: ProvenanceNode,
    ) -> ProvenanceNode:
        """
        Arithmetic or comparison between two vectors.

        For one-to-one matching ``many`` is the left hand side. The result
        carries the labels of ``many`` and ``one`` is recorded as a join.
        """
        query = self.query
        pos = expr.pos
        outside = [expr.lhs.pos, expr.rhs.pos]
        card = matching.card
        group = {
            Cardinality.MANY_TO_ONE: "group_left",
            Cardinality.ONE_TO_MANY: "group_right",
        }.get(card)

        def apply(branch: ProvenanceNode) -> ProvenanceNode:
            surface = _Surface(branch)
            if group is not None:
                self._join_labels(surface, expr, group, matching.include, one, outside)

            if matching.on and card == Cardinality.ONE_TO_ONE:
                clause = find_func_position(query, pos, "on", outside)
                surface.check_included(query, clause, matching.labels)
                surface.exclude_all(
                    query,
                    f"Query is using {card.value} vector matching with "
                    f"`on({', '.join(matching.labels)})`, only labels included inside `on(...)` "
                    "will be present on the results.",
                    clause,
                    clause,
                    keep=matching.labels,
                )
            elif matching.on:
                clause = find_func_position(query, pos, "on", outside)
                surface.check_included(query, clause, matching.labels)
                for name in matching.labels:
                    surface.include(
                        query,
                        f"Query is using {card.value} vector matching with "
                        f"`on({', '.join(matching.labels)})`, labels included inside `on(...)` "
                        "will be present on the results.",
                        clause,
                        name,
                    )
            elif card == Cardinality.ONE_TO_ONE and matching.labels:
                clause = find_func_position(query, pos, "ignoring", outside)
                reason = (
                    f"Query is using {card.value} vector matching with "
                    f"`ignoring({', '.join(matching.labels)})`, all labels included inside "
                    "`ignoring(...)` will be removed on the results."
                )
                for name in matching.labels:
                    surface.exclude(reason, find_argument_position(query, clause, name), name)

            if not expr.is_comparison or expr.return_bool:
                surface.exclude(METRIC_NAME_BINARY_REASON, pos, METRIC_NAME)

            is_conditional, is_return_bool = _check_conditions(branch, expr.op, expr.return_bool)
            node = surface.freeze(
                _derive(branch, expr, NodeKind.BINARY_JOIN),
                is_conditional=is_conditional,
                is_return_bool=is_return_bool,
                returns=ValueType.VECTOR,
            )

            other = joins.mark_unjoinable(node, one, matching)
            one_dead = joins.first_dead(other)
            if one_dead is not None and node.dead is None:
                node = replace(node, dead=one_dead.propagate())

            primary = other
            if (
                node.always_returns and primary.always_returns
                and node.value is not None and primary.value is not None
            ):
                ls, rs = (node, primary) if card != Cardinality.ONE_TO_MANY else (primary, node)
                value, text, dead = deadcode.static_return(query, ls, rs, expr)
                node = replace(node, value=value, value_text=text)
                if dead is not None and node.dead is None:
                    node = replace(node, dead=dead)
            else:
                node = replace(
                    node,
                    value=None,
                    value_text=None,
                    always_returns=node.always_returns and primary.always_returns,
                )

            if card == Cardinality.ONE_TO_ONE:
                node = replace(
                    node,
                    join_mismatches=node.join_mismatches
                    + joins.join_mismatches(node, primary, matching),
                )
            return replace(
                node,
                filters=node.filters + (Filter(other, Combinator.JOIN, expr.op, matching),),
            )

        return joins.map_branches(many, apply)

    def _join_labels(
        self,
        surface: _Surface,
        expr: BinaryExpr,
        group: str,
        names: Sequence[str],
        one: ProvenanceNode,
        outside: Sequence[PositionRange],
    ) -> None:
        """
        Add the ``group_left(...)``/``group_right(...)`` labels copied from
        the "one" side.

        A label is guaranteed only when every branch of the "one" side
        guarantees it. It stays excluded when the "one" side can never
        have it and is possible otherwise.
        """
        query = self.query
        clause = find_func_position(query, expr.pos, group, outside)
        reason = (
            f"Query is using `{group}({', '.join(names)})`, all labels included inside "
            f"`{group}(...)` will be joined to the results on the other side of the query."
        )
        branches = one.branches()
        for name in names:
            usage = find_argument_position(query, clause, name)
            fact = surface.labels.get(name)
            if fact is not None and fact.kind == LabelKind.GUARANTEED:
                surface.issues.append(LabelIssue(
                    kind=LabelIssueKind.DUPLICATED_JOIN,
                    name=name,
                    reason=(
                        f"Query is trying to join the `{name}` label that is already present "
                        "on the other side of the query."
                    ),
                    usage=usage,
                    label_reason=fact.reason,
                    label_fragment=fact.fragment,
                ))
                continue
            if all(branch.guarantees(name) for branch in branches):
                surface.labels[name] = LabelFact(LabelKind.GUARANTEED, reason, usage)
            elif not any(branch.can_have(name) for branch in branches):
                excluded = next(
                    (branch.exclusion(name) for branch in branches if branch.exclusion(name)),
                    Exclusion("", usage),
                )
                surface.labels[name] = LabelFact(LabelKind.EXCLUDED, excluded.reason, excluded.fragment)
                surface.issues.append(LabelIssue(
                    kind=LabelIssueKind.IMPOSSIBLE,
                    name=name,
                    reason=f"You can't use `{name}` because this label is not possible here.",
                    usage=usage,
                    label_reason=excluded.reason,
                    label_fragment=excluded.fragment,
                ))
            else:
                surface.labels[name] = LabelFact(LabelKind.POSSIBLE, reason, usage)


def build(expr: Expr, query: str | None = None) -> ProvenanceNode:
    """
    Build the provenance tree of a parsed query.

    Args:
        expr: Root of the parsed query
        query: Source text ``expr`` was parsed from, used to locate
            diagnostic fragments. Defaults to the normalised form of ``expr``,
            whose offsets only match when the query was already normalised.

    Raises:
        TypeError: If ``expr`` is not a parsed expression.
    """
    if not isinstance(expr, Expr):
        raise TypeError(f"build() expects a parsed expression, got {type(expr).__name__}")
    if query is None:
        query = str(expr)
    return ProvenanceBuilder(query).visit(expr)
