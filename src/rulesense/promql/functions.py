"""PromQL function and aggregation tables."""

from __future__ import annotations

from dataclasses import dataclass

from rulesense.promql.ast import ValueType

S = ValueType.SCALAR
V = ValueType.VECTOR
M = ValueType.MATRIX
STR = ValueType.STRING


@dataclass(frozen=True)
class Function:
    """
    Signature of a PromQL function.

    ``variadic`` follows Prometheus: 0 means a fixed number of arguments,
    a positive number means the last argument may be omitted or repeated
    up to that many times, -1 means the last argument repeats without limit.
    """

    name: str
    arg_types: tuple[ValueType, ...]
    return_type: ValueType
    variadic: int = 0

    @property
    def min_args(self) -> int:
        if self.variadic == 0:
            return len(self.arg_types)
        return len(self.arg_types) - 1

    @property
    def max_args(self) -> int | None:
        if self.variadic == 0:
            return len(self.arg_types)
        if self.variadic < 0:
            return None
        return len(self.arg_types) - 1 + self.variadic

    def arg_type(self, index: int) -> ValueType:
        if index < len(self.arg_types):
            return self.arg_types[index]
        return self.arg_types[-1]


def _fn(name: str, args: tuple[ValueType, ...], ret: ValueType = V, variadic: int = 0) -> Function:
    return Function(name=name, arg_types=args, return_type=ret, variadic=variadic)


_VECTOR_MATH = (
    "abs", "acos", "acosh", "asin", "asinh", "atan", "atanh", "ceil", "cos", "cosh",
    "deg", "exp", "floor", "ln", "log10", "log2", "rad", "sgn", "sin", "sinh", "sqrt",
    "tan", "tanh", "sort", "sort_desc", "timestamp", "absent",
    "histogram_avg", "histogram_count", "histogram_sum", "histogram_stddev", "histogram_stdvar",
)

_RANGE_FUNCTIONS = (
    "absent_over_time", "avg_over_time", "changes", "count_over_time", "delta", "deriv",
    "idelta", "increase", "irate", "last_over_time", "mad_over_time", "max_over_time",
    "min_over_time", "present_over_time", "rate", "resets", "stddev_over_time",
    "stdvar_over_time", "sum_over_time",
)

_DATE_FUNCTIONS = (
    "day_of_month", "day_of_week", "day_of_year", "days_in_month", "hour", "minute",
    "month", "year",
)

FUNCTIONS: dict[str, Function] = {}

for _name in _VECTOR_MATH:
    FUNCTIONS[_name] = _fn(_name, (V,))
for _name in _RANGE_FUNCTIONS:
    FUNCTIONS[_name] = _fn(_name, (M,))
for _name in _DATE_FUNCTIONS:
    FUNCTIONS[_name] = _fn(_name, (V,), variadic=1)

FUNCTIONS.update({
    "clamp": _fn("clamp", (V, S, S)),
    "clamp_max": _fn("clamp_max", (V, S)),
    "clamp_min": _fn("clamp_min", (V, S)),
    "histogram_fraction": _fn("histogram_fraction", (S, S, V)),
    "histogram_quantile": _fn("histogram_quantile", (S, V)),
    "holt_winters": _fn("holt_winters", (M, S, S)),
    "double_exponential_smoothing": _fn("double_exponential_smoothing", (M, S, S)),
    "label_join": _fn("label_join", (V, STR, STR, STR), variadic=-1),
    "label_replace": _fn("label_replace", (V, STR, STR, STR, STR)),
    "pi": _fn("pi", (), S),
    "predict_linear": _fn("predict_linear", (M, S)),
    "quantile_over_time": _fn("quantile_over_time", (S, M)),
    "round": _fn("round", (V, S), variadic=1),
    "scalar": _fn("scalar", (V,), S),
    "sort_by_label": _fn("sort_by_label", (V, STR), variadic=-1),
    "sort_by_label_desc": _fn("sort_by_label_desc", (V, STR), variadic=-1),
    "time": _fn("time", (), S),
    "vector": _fn("vector", (S,)),
})

# Aggregation operators and the type of their parameter (None = no parameter).
AGGREGATIONS: dict[str, ValueType | None] = {
    "sum": None,
    "avg": None,
    "count": None,
    "min": None,
    "max": None,
    "group": None,
    "stddev": None,
    "stdvar": None,
    "topk": S,
    "bottomk": S,
    "quantile": S,
    "limitk": S,
    "limit_ratio": S,
    "count_values": STR,
}
