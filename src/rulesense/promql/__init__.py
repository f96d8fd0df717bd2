"""PromQL parsing module."""

from rulesense.exceptions import PromQLSyntaxError
from rulesense.promql.ast import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Cardinality,
    Expr,
    LabelMatcher,
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
from rulesense.promql.functions import AGGREGATIONS, FUNCTIONS
from rulesense.promql.parser import parse_expr

__all__ = [
    "AGGREGATIONS",
    "FUNCTIONS",
    "AggregateExpr",
    "BinaryExpr",
    "Call",
    "Cardinality",
    "Expr",
    "LabelMatcher",
    "MatchOp",
    "MatrixSelector",
    "NumberLiteral",
    "ParenExpr",
    "PositionRange",
    "PromQLSyntaxError",
    "StringLiteral",
    "SubqueryExpr",
    "UnaryExpr",
    "ValueType",
    "VectorMatching",
    "VectorSelector",
    "parse_expr",
]
