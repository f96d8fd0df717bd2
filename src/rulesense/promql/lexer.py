"""
Tokenizer for PromQL query text.

Produces a flat list of tokens with character positions. Keywords
(``by``, ``and``, ``offset``...) are returned as identifiers and resolved
by the parser, since most of them are also valid label or metric names.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from rulesense.exceptions import PromQLSyntaxError
from rulesense.promql.ast import PositionRange


class TokenType(str, Enum):
    IDENTIFIER = "identifier"
    NUMBER = "number"
    DURATION = "duration"
    STRING = "string"
    LEFT_PAREN = "("
    RIGHT_PAREN = ")"
    LEFT_BRACE = "{"
    RIGHT_BRACE = "}"
    LEFT_BRACKET = "["
    RIGHT_BRACKET = "]"
    COMMA = ","
    COLON = ":"
    OPERATOR = "operator"
    MATCHER = "matcher"
    AT = "@"
    EOF = "end of input"


@dataclass(frozen=True)
class Token:
    type: TokenType
    text: str
    pos: PositionRange
    value: str | float | None = None

    def is_keyword(self, *words: str) -> bool:
        return self.type == TokenType.IDENTIFIER and self.text.lower() in words

    def describe(self) -> str:
        if self.type == TokenType.EOF:
            return "end of input"
        return f'"{self.text}"'


_IDENTIFIER = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_DURATION = re.compile(r"(?:[0-9]+(?:ms|[smhdwy]))+")
_WORD_CHAR = re.compile(r"[a-zA-Z0-9_.]")
_NUMBER = re.compile(
    r"0[xX][0-9a-fA-F]+"
    r"|(?:[0-9]+(?:_[0-9]+)*(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?"
)
_ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t", "v": "\v",
    "\\": "\\", "'": "'", '"': '"',
}

# Longest operators first so "==" wins over "=".
_OPERATORS = ("==", "!=", ">=", "<=", "+", "-", "*", "/", "%", "^", ">", "<")
_MATCHERS = ("=~", "!~", "!=", "=")


class Lexer:
    """
    Single pass scanner over a query string.

    Example:
        tokens = Lexer('sum(rate(foo[5m])) by (job)').tokenize()
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self._brace_depth = 0
        self._bracket_depth = 0

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while True:
            token = self._next()
            tokens.append(token)
            if token.type == TokenType.EOF:
                return tokens

    def _error(self, message: str, start: int, end: int | None = None) -> PromQLSyntaxError:
        return PromQLSyntaxError(message, PositionRange(start, end if end is not None else start + 1))

    def _skip_space(self) -> None:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch in " \t\r\n":
                self.pos += 1
            elif ch == "#":
                while self.pos < len(text) and text[self.pos] != "\n":
                    self.pos += 1
            else:
                return

    def _token(self, type_: TokenType, start: int, value: str | float | None = None) -> Token:
        return Token(type_, self.text[start:self.pos], PositionRange(start, self.pos), value)

    def _next(self) -> Token:
        self._skip_space()
        text = self.text
        start = self.pos
        if start >= len(text):
            return Token(TokenType.EOF, "", PositionRange(start, start))

        ch = text[start]
        single = {
            "(": TokenType.LEFT_PAREN,
            ")": TokenType.RIGHT_PAREN,
            "[": TokenType.LEFT_BRACKET,
            "]": TokenType.RIGHT_BRACKET,
            ",": TokenType.COMMA,
            "@": TokenType.AT,
        }
        if ch in single:
            self.pos += 1
            if ch == "[":
                self._bracket_depth += 1
            elif ch == "]":
                self._bracket_depth = max(0, self._bracket_depth - 1)
            return self._token(single[ch], start)
        if ch == "{":
            self._brace_depth += 1
            self.pos += 1
            return self._token(TokenType.LEFT_BRACE, start)
        if ch == "}":
            self._brace_depth = max(0, self._brace_depth - 1)
            self.pos += 1
            return self._token(TokenType.RIGHT_BRACE, start)
        if ch == ":" and self._bracket_depth > 0:
            self.pos += 1
            return self._token(TokenType.COLON, start)

        if ch in "\"'`":
            return self._string(ch)

        if self._brace_depth > 0:
            for op in _MATCHERS:
                if text.startswith(op, start):
                    self.pos += len(op)
                    return self._token(TokenType.MATCHER, start)
        for op in _OPERATORS:
            if text.startswith(op, start):
                self.pos += len(op)
                return self._token(TokenType.OPERATOR, start)
        if ch == "=":
            raise self._error('unexpected "=", did you mean "=="?', start)

        duration = _DURATION.match(text, start)
        if duration and not _WORD_CHAR.match(text, duration.end()):
            self.pos = duration.end()
            return self._token(TokenType.DURATION, start, duration.group(0))

        number = _NUMBER.match(text, start)
        if number and number.group(0):
            self.pos = number.end()
            raw = number.group(0).replace("_", "")
            value = float(int(raw, 16)) if raw.lower().startswith("0x") else float(raw)
            return self._token(TokenType.NUMBER, start, value)

        ident = _IDENTIFIER.match(text, start)
        if ident:
            self.pos = ident.end()
            word = ident.group(0)
            if word.lower() in ("inf", "nan"):
                return self._token(TokenType.NUMBER, start, float(word.lower()))
            return self._token(TokenType.IDENTIFIER, start, word)

        raise self._error(f"unexpected character: {ch!r}", start)

    def _string(self, quote: str) -> Token:
        text = self.text
        start = self.pos
        self.pos += 1
        chars: list[str] = []
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == quote:
                self.pos += 1
                return self._token(TokenType.STRING, start, "".join(chars))
            if ch == "\\" and quote != "`":
                if self.pos + 1 >= len(text):
                    break
                escaped = text[self.pos + 1]
                if escaped not in _ESCAPES:
                    raise self._error(f"unknown escape sequence {escaped!r}", self.pos, self.pos + 2)
                chars.append(_ESCAPES[escaped])
                self.pos += 2
                continue
            if ch == "\n" and quote != "`":
                break
            chars.append(ch)
            self.pos += 1
        raise self._error("unterminated quoted string", start, self.pos)


def tokenize(text: str) -> list[Token]:
    return Lexer(text).tokenize()
