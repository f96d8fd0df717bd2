"""
Recursive-descent parser for PromQL.

This module handles:
- Operator precedence and associativity of binary expressions
- Aggregations with the grouping clause before or after the arguments
- Selectors, range selectors, subqueries and their modifiers
- The same static type checks Prometheus applies after parsing

Error handling philosophy: fail on the first problem with the position of
the offending token. Callers that lint many rules catch PromQLSyntaxError
and report it as a problem instead of aborting.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from rulesense.exceptions import PromQLSyntaxError
from rulesense.promql.ast import (
    COMPARISON_OPERATORS,
    METRIC_NAME,
    SET_OPERATORS,
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
from rulesense.promql.lexer import Token, TokenType, tokenize

logger = logging.getLogger(__name__)

# Binding power of binary operators, higher binds tighter.
PRECEDENCE: dict[str, int] = {
    "or": 1,
    "and": 2,
    "unless": 2,
    "==": 3,
    "!=": 3,
    ">": 3,
    "<": 3,
    ">=": 3,
    "<=": 3,
    "+": 4,
    "-": 4,
    "*": 5,
    "/": 5,
    "%": 5,
    "atan2": 5,
    "^": 6,
}
RIGHT_ASSOCIATIVE = frozenset({"^"})
MAX_DEPTH = 200


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0
        self.depth = 0

    # ── token helpers ────────────────────────────────────────────────────

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def peek(self, offset: int = 1) -> Token:
        index = min(self.index + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type != TokenType.EOF:
            self.index += 1
        return token

    def expect(self, type_: TokenType, context: str) -> Token:
        token = self.current
        if token.type != type_:
            raise self.error(
                f'unexpected {token.describe()} in {context}, expected "{type_.value}"',
                token,
            )
        return self.advance()

    def error(self, message: str, token: Token | None = None) -> PromQLSyntaxError:
        pos = token.pos if token is not None else self.current.pos
        return PromQLSyntaxError(message, pos)

    def binary_operator(self) -> str | None:
        token = self.current
        if token.type == TokenType.OPERATOR and token.text in PRECEDENCE:
            return token.text
        if token.type == TokenType.IDENTIFIER and token.text.lower() in ("and", "or", "unless", "atan2"):
            return token.text.lower()
        return None

    # ── grammar ──────────────────────────────────────────────────────────

    def parse(self) -> Expr:
        if self.current.type == TokenType.EOF:
            raise self.error("no expression found in input")
        expr = self.parse_binary(1)
        if self.current.type != TokenType.EOF:
            raise self.error(f"unexpected {self.current.describe()}")
        return expr

    def parse_binary(self, min_precedence: int) -> Expr:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise self.error("expression is nested too deeply")
        try:
            lhs = self.parse_unary()
            while True:
                op = self.binary_operator()
                if op is None or PRECEDENCE[op] < min_precedence:
                    return lhs
                op_token = self.advance()
                return_bool, matching_clause = self.parse_binary_modifiers(op, op_token)
                next_min = PRECEDENCE[op] if op in RIGHT_ASSOCIATIVE else PRECEDENCE[op] + 1
                rhs = self.parse_binary(next_min)
                lhs = self.build_binary(op, op_token, lhs, rhs, return_bool, matching_clause)
        finally:
            self.depth -= 1

    def parse_binary_modifiers(
        self, op: str, op_token: Token
    ) -> tuple[bool, tuple[bool, tuple[str, ...], Cardinality | None, tuple[str, ...]] | None]:
        return_bool = False
        if self.current.is_keyword("bool"):
            bool_token = self.advance()
            if op not in COMPARISON_OPERATORS:
                raise self.error("bool modifier can only be used on comparison operators", bool_token)
            return_bool = True

        if not self.current.is_keyword("on", "ignoring"):
            if self.current.is_keyword("group_left", "group_right"):
                raise self.error(
                    f"unexpected {self.current.describe()}, grouping requires on() or ignoring()"
                )
            return return_bool, None

        on = self.advance().text.lower() == "on"
        labels = self.parse_label_list("vector matching")
        card: Cardinality | None = None
        include: tuple[str, ...] = ()
        if self.current.is_keyword("group_left", "group_right"):
            group_token = self.advance()
            if op in SET_OPERATORS:
                raise self.error(f'no grouping allowed for "{op}" operation', group_token)
            card = (
                Cardinality.MANY_TO_ONE
                if group_token.text.lower() == "group_left"
                else Cardinality.ONE_TO_MANY
            )
            if self.current.type == TokenType.LEFT_PAREN:
                include = self.parse_label_list("grouping")
            overlap = set(include) & set(labels)
            if on and overlap:
                raise self.error(
                    f'label "{sorted(overlap)[0]}" must not occur in ON and GROUP clause at once',
                    group_token,
                )
        return return_bool, (on, labels, card, include)

    def build_binary(
        self,
        op: str,
        op_token: Token,
        lhs: Expr,
        rhs: Expr,
        return_bool: bool,
        matching_clause: tuple[bool, tuple[str, ...], Cardinality | None, tuple[str, ...]] | None,
    ) -> BinaryExpr:
        lt, rt = lhs.value_type, rhs.value_type
        for side in (lt, rt):
            if side not in (ValueType.SCALAR, ValueType.VECTOR):
                raise self.error(
                    "binary expression must contain only scalar and instant vector types",
                    op_token,
                )
        both_vectors = lt == ValueType.VECTOR and rt == ValueType.VECTOR
        if op in SET_OPERATORS and not both_vectors:
            raise self.error(f'set operator "{op}" not allowed in binary scalar expression', op_token)
        if op in COMPARISON_OPERATORS and not return_bool and lt == rt == ValueType.SCALAR:
            raise self.error("comparisons between scalars must use BOOL modifier", op_token)
        if matching_clause is not None and not both_vectors:
            raise self.error("vector matching only allowed between instant vectors", op_token)

        matching: VectorMatching | None = None
        if both_vectors:
            default_card = Cardinality.MANY_TO_MANY if op in SET_OPERATORS else Cardinality.ONE_TO_ONE
            if matching_clause is None:
                matching = VectorMatching(card=default_card)
            else:
                on, labels, card, include = matching_clause
                matching = VectorMatching(
                    card=card or default_card,
                    on=on,
                    labels=labels,
                    include=include,
                )
        return BinaryExpr(
            pos=PositionRange(lhs.pos.start, rhs.pos.end),
            op=op,
            lhs=lhs,
            rhs=rhs,
            return_bool=return_bool,
            matching=matching,
        )

    def parse_unary(self) -> Expr:
        token = self.current
        if token.type == TokenType.OPERATOR and token.text in ("+", "-"):
            self.advance()
            operand = self.parse_binary(PRECEDENCE["^"])
            if operand.value_type not in (ValueType.SCALAR, ValueType.VECTOR):
                raise self.error(
                    "unary expression only allowed on expressions of type scalar or instant vector",
                    token,
                )
            pos = PositionRange(token.pos.start, operand.pos.end)
            if isinstance(operand, NumberLiteral):
                value = -operand.value if token.text == "-" else operand.value
                return NumberLiteral(pos=pos, value=value)
            return UnaryExpr(pos=pos, op=token.text, expr=operand)
        return self.parse_postfix(self.parse_primary())

    def parse_primary(self) -> Expr:
        token = self.current
        if token.type == TokenType.NUMBER:
            self.advance()
            return NumberLiteral(pos=token.pos, value=float(token.value))  # type: ignore[arg-type]
        if token.type == TokenType.STRING:
            self.advance()
            return StringLiteral(pos=token.pos, value=str(token.value))
        if token.type == TokenType.LEFT_PAREN:
            self.advance()
            inner = self.parse_binary(1)
            close = self.expect(TokenType.RIGHT_PAREN, "paren expression")
            return ParenExpr(pos=PositionRange(token.pos.start, close.pos.end), expr=inner)
        if token.type == TokenType.LEFT_BRACE:
            return self.parse_selector(None)
        if token.type == TokenType.IDENTIFIER:
            word = token.text
            following = self.peek()
            if word.lower() in AGGREGATIONS and (
                following.type == TokenType.LEFT_PAREN or following.is_keyword("by", "without")
            ):
                return self.parse_aggregation()
            if following.type == TokenType.LEFT_PAREN:
                return self.parse_call()
            return self.parse_selector(self.advance())
        if token.type == TokenType.DURATION:
            raise self.error(f"unexpected duration {token.describe()}", token)
        raise self.error(f"unexpected {token.describe()}", token)

    def parse_postfix(self, expr: Expr) -> Expr:
        while True:
            token = self.current
            if token.type == TokenType.LEFT_BRACKET:
                expr = self.parse_range(expr)
            elif token.is_keyword("offset"):
                expr = self.parse_offset(expr)
            elif token.type == TokenType.AT:
                expr = self.parse_at(expr)
            else:
                return expr

    def parse_range(self, expr: Expr) -> Expr:
        open_token = self.advance()
        range_token = self.expect(TokenType.DURATION, "range")
        if self.current.type == TokenType.COLON:
            self.advance()
            step: str | None = None
            if self.current.type == TokenType.DURATION:
                step = self.advance().text
            close = self.expect(TokenType.RIGHT_BRACKET, "subquery")
            if expr.value_type != ValueType.VECTOR:
                raise self.error(
                    f"subquery is only allowed on instant vector, got {expr.value_type.description}",
                    open_token,
                )
            return SubqueryExpr(
                pos=PositionRange(expr.pos.start, close.pos.end),
                expr=expr,
                range=range_token.text,
                step=step,
            )
        close = self.expect(TokenType.RIGHT_BRACKET, "range")
        if not isinstance(expr, VectorSelector):
            raise self.error("ranges only allowed for vector selectors", open_token)
        if expr.offset or expr.at:
            raise self.error("no offset or @ modifiers allowed before range", open_token)
        return MatrixSelector(
            pos=PositionRange(expr.pos.start, close.pos.end),
            selector=expr,
            range=range_token.text,
        )

    def parse_offset(self, expr: Expr) -> Expr:
        keyword = self.advance()
        sign = ""
        if self.current.type == TokenType.OPERATOR and self.current.text in ("+", "-"):
            sign = "-" if self.advance().text == "-" else ""
        duration = self.expect(TokenType.DURATION, "offset")
        offset = sign + duration.text
        end = duration.pos.end
        return self.apply_modifier(expr, keyword, end, offset=offset)

    def parse_at(self, expr: Expr) -> Expr:
        at_token = self.advance()
        token = self.current
        if token.type == TokenType.NUMBER:
            self.advance()
            value, end = token.text, token.pos.end
        elif token.type == TokenType.OPERATOR and token.text in ("+", "-") and self.peek().type == TokenType.NUMBER:
            self.advance()
            number = self.advance()
            value, end = token.text + number.text, number.pos.end
        elif token.is_keyword("start", "end") and self.peek().type == TokenType.LEFT_PAREN:
            self.advance()
            self.advance()
            close = self.expect(TokenType.RIGHT_PAREN, "@ modifier")
            value, end = f"{token.text}()", close.pos.end
        else:
            raise self.error(f"unexpected {token.describe()} in @ modifier", token)
        return self.apply_modifier(expr, at_token, end, at=value)

    def apply_modifier(
        self,
        expr: Expr,
        token: Token,
        end: int,
        offset: str | None = None,
        at: str | None = None,
    ) -> Expr:
        pos = PositionRange(expr.pos.start, end)
        if isinstance(expr, MatrixSelector):
            selector = expr.selector
            if (offset and selector.offset) or (at and selector.at):
                raise self.error("modifier may not be set multiple times", token)
            selector = replace(
                selector,
                offset=offset or selector.offset,
                at=at or selector.at,
            )
            return replace(expr, pos=pos, selector=selector)
        if isinstance(expr, (VectorSelector, SubqueryExpr)):
            if (offset and expr.offset) or (at and expr.at):
                raise self.error("modifier may not be set multiple times", token)
            return replace(expr, pos=pos, offset=offset or expr.offset, at=at or expr.at)
        raise self.error(
            "offset and @ modifiers must be preceded by an instant vector selector, "
            "range vector selector or subquery",
            token,
        )

    def parse_label_list(self, context: str) -> tuple[str, ...]:
        self.expect(TokenType.LEFT_PAREN, context)
        labels: list[str] = []
        while self.current.type != TokenType.RIGHT_PAREN:
            token = self.current
            if token.type != TokenType.IDENTIFIER or ":" in token.text:
                raise self.error(f"unexpected {token.describe()} in {context}, expected label", token)
            labels.append(self.advance().text)
            if self.current.type == TokenType.COMMA:
                self.advance()
            elif self.current.type != TokenType.RIGHT_PAREN:
                raise self.error(
                    f'unexpected {self.current.describe()} in {context}, expected "," or ")"'
                )
        self.advance()
        return tuple(labels)

    def parse_selector(self, name_token: Token | None) -> VectorSelector:
        start = name_token.pos.start if name_token else self.current.pos.start
        end = name_token.pos.end if name_token else start
        matchers: list[LabelMatcher] = []
        name = name_token.text if name_token else None
        if name is not None:
            matchers.append(LabelMatcher(METRIC_NAME, MatchOp.EQUAL, name, name_token.pos))  # type: ignore[union-attr]

        if self.current.type == TokenType.LEFT_BRACE:
            self.advance()
            while self.current.type != TokenType.RIGHT_BRACE:
                matchers.append(self.parse_matcher())
                if self.current.type == TokenType.COMMA:
                    self.advance()
                elif self.current.type != TokenType.RIGHT_BRACE:
                    raise self.error(
                        f'unexpected {self.current.describe()} in label matching, expected "," or "}}"'
                    )
            end = self.advance().pos.end

        pos = PositionRange(start, end)
        names = [m for m in matchers if m.name == METRIC_NAME]
        if name is not None and len(names) > 1:
            raise PromQLSyntaxError(f"metric name must not be set twice: {name!r} or {names[1].value!r}", pos)
        if not any(not m.matches("") for m in matchers):
            raise PromQLSyntaxError(
                "vector selector must contain at least one non-empty matcher", pos
            )
        return VectorSelector(pos=pos, name=name, matchers=tuple(matchers))

    def parse_matcher(self) -> LabelMatcher:
        label = self.current
        if label.type == TokenType.STRING:
            # Quoted metric name: {"foo"} or {"foo", job="x"}
            self.advance()
            return LabelMatcher(METRIC_NAME, MatchOp.EQUAL, str(label.value), label.pos)
        if label.type != TokenType.IDENTIFIER:
            raise self.error(f"unexpected {label.describe()} in label matching, expected label", label)
        self.advance()
        op_token = self.current
        if op_token.type != TokenType.MATCHER:
            raise self.error(
                f"unexpected {op_token.describe()} in label matching, expected label matching operator",
                op_token,
            )
        self.advance()
        value = self.current
        if value.type != TokenType.STRING:
            raise self.error(f"unexpected {value.describe()} in label matching, expected string", value)
        self.advance()
        return LabelMatcher(
            label.text,
            MatchOp(op_token.text),
            str(value.value),
            PositionRange(label.pos.start, value.pos.end),
        )

    def parse_call(self) -> Call:
        name_token = self.advance()
        name = name_token.text
        function = FUNCTIONS.get(name)
        if function is None:
            raise self.error(f"unknown function with name {name!r}", name_token)
        self.expect(TokenType.LEFT_PAREN, "function call")
        args: list[Expr] = []
        while self.current.type != TokenType.RIGHT_PAREN:
            args.append(self.parse_binary(1))
            if self.current.type == TokenType.COMMA:
                self.advance()
            elif self.current.type != TokenType.RIGHT_PAREN:
                raise self.error(
                    f'unexpected {self.current.describe()} in function call, expected "," or ")"'
                )
        close = self.advance()
        pos = PositionRange(name_token.pos.start, close.pos.end)

        if len(args) < function.min_args:
            qualifier = "" if function.variadic == 0 else "at least "
            raise PromQLSyntaxError(
                f"expected {qualifier}{function.min_args} argument(s) in call to {name!r}, got {len(args)}",
                pos,
            )
        if function.max_args is not None and len(args) > function.max_args:
            qualifier = "" if function.variadic == 0 else "at most "
            raise PromQLSyntaxError(
                f"expected {qualifier}{function.max_args} argument(s) in call to {name!r}, got {len(args)}",
                pos,
            )
        for index, arg in enumerate(args):
            expected = function.arg_type(index)
            if arg.value_type != expected:
                raise PromQLSyntaxError(
                    f"expected type {expected.description} in call to function {name!r}, "
                    f"got {arg.value_type.description}",
                    arg.pos,
                )
        return Call(pos=pos, func=name, args=tuple(args))

    def parse_aggregation(self) -> AggregateExpr:
        op_token = self.advance()
        op = op_token.text.lower()
        grouping: tuple[str, ...] = ()
        without = False
        has_clause = False

        if self.current.is_keyword("by", "without"):
            without = self.advance().text.lower() == "without"
            grouping = self.parse_label_list("grouping")
            has_clause = True

        self.expect(TokenType.LEFT_PAREN, "aggregation")
        args: list[Expr] = []
        while self.current.type != TokenType.RIGHT_PAREN:
            args.append(self.parse_binary(1))
            if self.current.type == TokenType.COMMA:
                self.advance()
            elif self.current.type != TokenType.RIGHT_PAREN:
                raise self.error(
                    f'unexpected {self.current.describe()} in aggregation, expected "," or ")"'
                )
        close = self.advance()
        end = close.pos.end

        if not has_clause and self.current.is_keyword("by", "without"):
            without = self.advance().text.lower() == "without"
            grouping = self.parse_label_list("grouping")
            has_clause = True
            end = self.tokens[self.index - 1].pos.end

        pos = PositionRange(op_token.pos.start, end)
        param_type = AGGREGATIONS[op]
        expected_args = 2 if param_type is not None else 1
        if len(args) != expected_args:
            raise PromQLSyntaxError(
                f"wrong number of arguments for aggregate expression provided, "
                f"expected {expected_args}, got {len(args)}",
                pos,
            )
        param = args[0] if param_type is not None else None
        expr = args[-1]
        if expr.value_type != ValueType.VECTOR:
            raise PromQLSyntaxError(
                f"expected type instant vector in aggregation expression, got {expr.value_type.description}",
                expr.pos,
            )
        if param is not None and param.value_type != param_type:
            raise PromQLSyntaxError(
                f"expected type {param_type.description} in aggregation parameter, "  # type: ignore[union-attr]
                f"got {param.value_type.description}",
                param.pos,
            )
        return AggregateExpr(
            pos=pos,
            op=op,
            expr=expr,
            param=param,
            grouping=grouping,
            without=without,
            has_clause=has_clause,
        )


def parse_expr(text: str) -> Expr:
    """
    Parse PromQL query text into an AST.

    Args:
        text: The query, e.g. ``sum(rate(http_requests_total[5m])) by (job)``

    Returns:
        Root expression node

    Raises:
        PromQLSyntaxError: If the query is not valid PromQL

    Example:
        >>> expr = parse_expr("sum(foo) without(job)")
        >>> expr.grouping
        ('job',)
    """
    expr = _Parser(text).parse()
    logger.debug("Parsed query %r as %s", text, type(expr).__name__)
    return expr
