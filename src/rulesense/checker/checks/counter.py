"""
promql/counter: counters read without a counter-safe function.

The raw value of a counter depends on when the process exporting it was
started, so using it directly is almost always a mistake. Needs metric
metadata to know which metrics are counters.
"""

from __future__ import annotations

from typing import Iterator

from rulesense.checker.checks.base import Check, CheckContext
from rulesense.checker.models import Problem, Severity
from rulesense.checker.registry import register_check
from rulesense.promql.ast import AggregateExpr, BinaryExpr, Call, Expr, VectorSelector

COUNTER_DETAILS = (
    "[Counters](https://prometheus.io/docs/concepts/metric_types/#counter) track the number "
    "of events over time and so the value of a counter can only grow and never decrease.\n"
    "This means that the absolute value of a counter doesn't matter, it will be a random "
    "number that depends on the number of events that happened since your application was "
    "started.\n"
    "To use the value of a counter in PromQL you most likely want to calculate the rate of "
    "events using the [rate()](https://prometheus.io/docs/prometheus/latest/querying/functions/#rate) "
    "function, or any other function that is safe to use with counters.\n"
    "Once you calculate the rate you can use that result in other functions or aggregations "
    "that are not counter safe, like "
    "[sum()](https://prometheus.io/docs/prometheus/latest/querying/operators/#aggregation-operators)."
)

SAFE_FUNCTIONS = frozenset({
    "absent", "absent_over_time", "present_over_time",
    "changes", "resets",
    "count_over_time",
    "increase",
    "irate", "rate",
    "timestamp",
})
SAFE_AGGREGATIONS = frozenset({"count", "group"})

Path = tuple[tuple[Expr, Expr], ...]


def _selectors(expr: Expr, path: Path = ()) -> Iterator[tuple[VectorSelector, Path]]:
    """Yield every selector with its ``(ancestor, child on the way down)`` path."""
    if isinstance(expr, VectorSelector):
        yield expr, path
        return
    for child in expr.children():
        yield from _selectors(child, path + ((expr, child),))


def _is_safe(path: Path) -> bool:
    for ancestor, child in path:
        if isinstance(ancestor, Call) and ancestor.func in SAFE_FUNCTIONS:
            return True
        if isinstance(ancestor, AggregateExpr) and ancestor.op in SAFE_AGGREGATIONS:
            return True
        if isinstance(ancestor, BinaryExpr) and ancestor.op == "unless" and child is ancestor.rhs:
            return True
    return False


@register_check
class CounterCheck(Check):
    check_id = "promql/counter"
    version = "1.0.0"
    severity = Severity.WARNING
    description = "Counters must be wrapped in a counter-safe function"
    online = True

    def check(self, ctx: CheckContext) -> list[Problem]:
        if ctx.ast is None or ctx.metadata is None:
            return []

        problems: list[Problem] = []
        done: set[str] = set()
        for selector, path in _selectors(ctx.ast):
            if not path:
                # Plain `foo`, only copies or tests the series.
                continue
            if _is_safe(path):
                continue
            name = selector.name
            if not name or name in done:
                continue
            if ctx.metadata.metric_type(name) != "counter":
                continue
            done.add(name)
            problems.append(self.problem(
                ctx,
                "direct counter read",
                f"`{name}` is a counter according to metrics metadata, "
                "it can be dangerous to use its value directly.",
                details=COUNTER_DETAILS,
                fragment=selector.pos,
            ))
        return problems
