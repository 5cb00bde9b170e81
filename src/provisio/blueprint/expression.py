"""
Expression evaluator for blueprint dependency and value expressions.

Parses an infix expression such as ``UseSSL && Port >= 443`` into a small
AST and evaluates it against a mapping of resolved variables. Identifiers
must all be present in the scope before evaluation starts; an unknown name
is an error, never an implicit false.
"""

from __future__ import annotations

import math
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from .errors import ResolutionError


class ExpressionError(ResolutionError):
    """Error while tokenizing, parsing or evaluating an expression."""

    def __init__(self, message: str, pos: int | None = None):
        self.pos = pos
        super().__init__(message)


# =============================================================================
# Tokenizer
# =============================================================================


class TokenKind(str, Enum):
    NUMBER = "number"
    STRING = "string"
    IDENT = "ident"
    TRUE = "true"
    FALSE = "false"

    AND = "&&"
    OR = "||"
    NOT = "!"
    EQ = "=="
    NE = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="
    MATCH = "=~"
    PLUS = "+"
    MINUS = "-"
    STAR = "*"
    SLASH = "/"
    PERCENT = "%"

    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    QUESTION = "?"
    COLON = ":"

    EOF = "eof"


class Token:
    """A single token from the expression tokenizer."""

    __slots__ = ("kind", "value", "pos")

    def __init__(self, kind: TokenKind, value: str, pos: int) -> None:
        self.kind = kind
        self.value = value
        self.pos = pos

    def __repr__(self) -> str:
        return f"Token({self.kind.name}, {self.value!r}, pos={self.pos})"


_NUMBER_RE = re.compile(r"\d+(\.\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMERIC_TEXT_RE = re.compile(r"-?\d+(\.\d+)?")

_TWO_CHAR = {
    "&&": TokenKind.AND,
    "||": TokenKind.OR,
    "==": TokenKind.EQ,
    "!=": TokenKind.NE,
    "<=": TokenKind.LE,
    ">=": TokenKind.GE,
    "=~": TokenKind.MATCH,
}

_ONE_CHAR = {
    "!": TokenKind.NOT,
    "<": TokenKind.LT,
    ">": TokenKind.GT,
    "+": TokenKind.PLUS,
    "-": TokenKind.MINUS,
    "*": TokenKind.STAR,
    "/": TokenKind.SLASH,
    "%": TokenKind.PERCENT,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    ",": TokenKind.COMMA,
    "?": TokenKind.QUESTION,
    ":": TokenKind.COLON,
}


def tokenize(source: str) -> list[Token]:
    """Tokenize an expression string into a list of tokens ending with EOF."""
    tokens: list[Token] = []
    i = 0
    n = len(source)

    while i < n:
        c = source[i]

        if c in " \t\n\r":
            i += 1
            continue

        if c in ('"', "'"):
            i, tok = _read_string(source, i)
            tokens.append(tok)
            continue

        if c.isdigit():
            end = _NUMBER_RE.match(source, i).end()
            tokens.append(Token(TokenKind.NUMBER, source[i:end], i))
            i = end
            continue

        if c.isalpha() or c == "_":
            end = _IDENT_RE.match(source, i).end()
            word = source[i:end]
            if word == "true":
                kind = TokenKind.TRUE
            elif word == "false":
                kind = TokenKind.FALSE
            else:
                kind = TokenKind.IDENT
            tokens.append(Token(kind, word, i))
            i = end
            continue

        two = source[i : i + 2]
        if two in _TWO_CHAR:
            tokens.append(Token(_TWO_CHAR[two], two, i))
            i += 2
            continue

        if c in _ONE_CHAR:
            tokens.append(Token(_ONE_CHAR[c], c, i))
            i += 1
            continue

        raise ExpressionError(f"unexpected character {c!r} at position {i}", i)

    tokens.append(Token(TokenKind.EOF, "", n))
    return tokens


def _read_string(source: str, start: int) -> tuple[int, Token]:
    quote = source[start]
    i = start + 1
    chars: list[str] = []
    while i < len(source):
        c = source[i]
        if c == "\\" and i + 1 < len(source):
            chars.append(source[i + 1])
            i += 2
            continue
        if c == quote:
            return i + 1, Token(TokenKind.STRING, "".join(chars), start)
        chars.append(c)
        i += 1
    raise ExpressionError(f"unterminated string starting at position {start}", start)


# =============================================================================
# AST
# =============================================================================


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Name:
    name: str
    pos: int


@dataclass(frozen=True)
class Unary:
    op: TokenKind
    operand: Any


@dataclass(frozen=True)
class Binary:
    op: TokenKind
    left: Any
    right: Any


@dataclass(frozen=True)
class Ternary:
    condition: Any
    then: Any
    otherwise: Any


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple
    pos: int


Node = Literal | Name | Unary | Binary | Ternary | Call


# =============================================================================
# Parser
# =============================================================================

_COMPARISON_OPS = {
    TokenKind.EQ, TokenKind.NE, TokenKind.LT, TokenKind.GT,
    TokenKind.LE, TokenKind.GE, TokenKind.MATCH,
}


class _Parser:
    """Recursive descent parser, lowest precedence first."""

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    @property
    def current(self) -> Token:
        return self._tokens[self._pos]

    def advance(self) -> Token:
        tok = self._tokens[self._pos]
        if tok.kind != TokenKind.EOF:
            self._pos += 1
        return tok

    def match(self, *kinds: TokenKind) -> Token | None:
        if self.current.kind in kinds:
            return self.advance()
        return None

    def expect(self, kind: TokenKind) -> Token:
        tok = self.current
        if tok.kind != kind:
            found = tok.value or tok.kind.value
            raise ExpressionError(
                f"expected '{kind.value}' at position {tok.pos}, found '{found}'", tok.pos
            )
        return self.advance()

    def parse(self) -> Node:
        node = self._ternary()
        if self.current.kind != TokenKind.EOF:
            tok = self.current
            raise ExpressionError(f"unexpected '{tok.value}' at position {tok.pos}", tok.pos)
        return node

    def _ternary(self) -> Node:
        condition = self._or()
        if self.match(TokenKind.QUESTION):
            then = self._ternary()
            self.expect(TokenKind.COLON)
            otherwise = self._ternary()
            return Ternary(condition, then, otherwise)
        return condition

    def _or(self) -> Node:
        left = self._and()
        while self.match(TokenKind.OR):
            left = Binary(TokenKind.OR, left, self._and())
        return left

    def _and(self) -> Node:
        left = self._not()
        while self.match(TokenKind.AND):
            left = Binary(TokenKind.AND, left, self._not())
        return left

    def _not(self) -> Node:
        if self.match(TokenKind.NOT):
            return Unary(TokenKind.NOT, self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._additive()
        tok = self.match(*_COMPARISON_OPS)
        if tok:
            left = Binary(tok.kind, left, self._additive())
        return left

    def _additive(self) -> Node:
        left = self._multiplicative()
        while tok := self.match(TokenKind.PLUS, TokenKind.MINUS):
            left = Binary(tok.kind, left, self._multiplicative())
        return left

    def _multiplicative(self) -> Node:
        left = self._unary()
        while tok := self.match(TokenKind.STAR, TokenKind.SLASH, TokenKind.PERCENT):
            left = Binary(tok.kind, left, self._unary())
        return left

    def _unary(self) -> Node:
        if self.match(TokenKind.MINUS):
            return Unary(TokenKind.MINUS, self._unary())
        if self.match(TokenKind.NOT):
            return Unary(TokenKind.NOT, self._unary())
        return self._primary()

    def _primary(self) -> Node:
        tok = self.current

        if tok.kind == TokenKind.NUMBER:
            self.advance()
            return Literal(float(tok.value) if "." in tok.value else int(tok.value))
        if tok.kind == TokenKind.STRING:
            self.advance()
            return Literal(tok.value)
        if tok.kind == TokenKind.TRUE:
            self.advance()
            return Literal(True)
        if tok.kind == TokenKind.FALSE:
            self.advance()
            return Literal(False)
        if tok.kind == TokenKind.IDENT:
            self.advance()
            if self.match(TokenKind.LPAREN):
                return Call(tok.value, self._arguments(), tok.pos)
            return Name(tok.value, tok.pos)
        if self.match(TokenKind.LPAREN):
            node = self._ternary()
            self.expect(TokenKind.RPAREN)
            return node

        found = tok.value or "end of expression"
        raise ExpressionError(f"unexpected '{found}' at position {tok.pos}", tok.pos)

    def _arguments(self) -> tuple:
        args: list[Node] = []
        if self.match(TokenKind.RPAREN):
            return ()
        args.append(self._ternary())
        while self.match(TokenKind.COMMA):
            args.append(self._ternary())
        self.expect(TokenKind.RPAREN)
        return tuple(args)


def parse(source: str) -> Node:
    """Parse an expression string into an AST."""
    if not source.strip():
        raise ExpressionError("empty expression", 0)
    return _Parser(tokenize(source)).parse()


def names_in(node: Node) -> list[Name]:
    """Collect every identifier reference in an AST."""
    if isinstance(node, Name):
        return [node]
    if isinstance(node, Unary):
        return names_in(node.operand)
    if isinstance(node, Binary):
        return names_in(node.left) + names_in(node.right)
    if isinstance(node, Ternary):
        return names_in(node.condition) + names_in(node.then) + names_in(node.otherwise)
    if isinstance(node, Call):
        return [n for arg in node.args for n in names_in(arg)]
    return []


# =============================================================================
# Coercion
# =============================================================================


def coerce_bool(value: Any) -> bool | None:
    """Return a bool for bools and "true"/"false" strings, otherwise None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not _NUMERIC_TEXT_RE.fullmatch(text):
            return None
        return float(text) if "." in text else int(text)
    return None


def _require_bool(value: Any, op: str) -> bool:
    result = coerce_bool(value)
    if result is None:
        raise ExpressionError(f"operator {op} needs boolean operands, got {value!r}")
    return result


def _equals(left: Any, right: Any) -> bool:
    ln, rn = _as_number(left), _as_number(right)
    if ln is not None and rn is not None:
        return ln == rn
    lb, rb = coerce_bool(left), coerce_bool(right)
    if lb is not None and rb is not None:
        return lb == rb
    return _to_string(left) == _to_string(right)


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _order(op: TokenKind, left: Any, right: Any) -> bool:
    ln, rn = _as_number(left), _as_number(right)
    if ln is not None and rn is not None:
        a, b = ln, rn
    elif isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        raise ExpressionError(f"cannot compare {left!r} {op.value} {right!r}")
    if op == TokenKind.LT:
        return a < b
    if op == TokenKind.GT:
        return a > b
    if op == TokenKind.LE:
        return a <= b
    return a >= b


def _arithmetic(op: TokenKind, left: Any, right: Any) -> Any:
    ln, rn = _as_number(left), _as_number(right)
    if op == TokenKind.PLUS and (ln is None or rn is None):
        if isinstance(left, str) or isinstance(right, str):
            return _to_string(left) + _to_string(right)
    if ln is None or rn is None:
        raise ExpressionError(f"operator {op.value} needs numeric operands, got {left!r} and {right!r}")
    if op == TokenKind.PLUS:
        return ln + rn
    if op == TokenKind.MINUS:
        return ln - rn
    if op == TokenKind.STAR:
        return ln * rn
    if rn == 0:
        raise ExpressionError(f"division by zero in {left!r} {op.value} {right!r}")
    if op == TokenKind.SLASH:
        try:
            return ln / rn
        except OverflowError as e:
            raise ExpressionError(f"cannot divide {left!r} by {right!r}: {e}") from e
    return ln % rn


# =============================================================================
# Functions
# =============================================================================


def _numbers(name: str, args: tuple) -> list[int | float]:
    result = []
    for arg in args:
        num = _as_number(arg)
        if num is None:
            raise ExpressionError(f"{name}() needs numeric arguments, got {arg!r}")
        result.append(num)
    if not result:
        raise ExpressionError(f"{name}() needs at least one argument")
    return result


def _single(name: str, args: tuple) -> Any:
    if len(args) != 1:
        raise ExpressionError(f"{name}() takes exactly 1 argument, got {len(args)}")
    return args[0]


def _is_valid_url(*args: Any) -> bool:
    parsed = urlparse(_to_string(_single("isValidUrl", args)))
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _regex(*args: Any) -> bool:
    if len(args) != 2:
        raise ExpressionError(f"regex() takes exactly 2 arguments, got {len(args)}")
    pattern, value = _to_string(args[0]), _to_string(args[1])
    try:
        return re.search(pattern, value) is not None
    except re.error as e:
        raise ExpressionError(f"invalid regular expression {pattern!r}: {e}") from e


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "strlen": lambda *a: len(_to_string(_single("strlen", a))),
    "max": lambda *a: max(_numbers("max", a)),
    "min": lambda *a: min(_numbers("min", a)),
    "ceil": lambda *a: math.ceil(_numbers("ceil", (_single("ceil", a),))[0]),
    "floor": lambda *a: math.floor(_numbers("floor", (_single("floor", a),))[0]),
    "round": lambda *a: round(_numbers("round", (_single("round", a),))[0]),
    "string": lambda *a: _to_string(_single("string", a)),
    "regex": _regex,
    "isFile": lambda *a: os.path.isfile(_to_string(_single("isFile", a))),
    "isDir": lambda *a: os.path.isdir(_to_string(_single("isDir", a))),
    "isValidUrl": _is_valid_url,
}


# =============================================================================
# Evaluator
# =============================================================================


def _eval(node: Node, scope: Mapping[str, Any]) -> Any:
    if isinstance(node, Literal):
        return node.value

    if isinstance(node, Name):
        return scope[node.name]

    if isinstance(node, Unary):
        operand = _eval(node.operand, scope)
        if node.op == TokenKind.NOT:
            return not _require_bool(operand, "!")
        num = _as_number(operand)
        if num is None:
            raise ExpressionError(f"unary - needs a numeric operand, got {operand!r}")
        return -num

    if isinstance(node, Ternary):
        if _require_bool(_eval(node.condition, scope), "?:"):
            return _eval(node.then, scope)
        return _eval(node.otherwise, scope)

    if isinstance(node, Call):
        fn = FUNCTIONS.get(node.name)
        if fn is None:
            raise ExpressionError(f"unknown function '{node.name}'", node.pos)
        args = tuple(_eval(arg, scope) for arg in node.args)
        try:
            return fn(*args)
        except (ValueError, OverflowError) as e:
            raise ExpressionError(f"{node.name}() failed: {e}", node.pos) from e

    if isinstance(node, Binary):
        op = node.op
        if op == TokenKind.AND:
            if not _require_bool(_eval(node.left, scope), "&&"):
                return False
            return _require_bool(_eval(node.right, scope), "&&")
        if op == TokenKind.OR:
            if _require_bool(_eval(node.left, scope), "||"):
                return True
            return _require_bool(_eval(node.right, scope), "||")

        left = _eval(node.left, scope)
        right = _eval(node.right, scope)
        if op == TokenKind.EQ:
            return _equals(left, right)
        if op == TokenKind.NE:
            return not _equals(left, right)
        if op == TokenKind.MATCH:
            return _regex(right, left)
        if op in (TokenKind.LT, TokenKind.GT, TokenKind.LE, TokenKind.GE):
            return _order(op, left, right)
        return _arithmetic(op, left, right)

    raise ExpressionError(f"cannot evaluate node {node!r}")


def evaluate(source: str, scope: Mapping[str, Any]) -> Any:
    """Evaluate an expression against a scope of resolved variables."""
    tree = parse(source)
    for ref in names_in(tree):
        if ref.name not in scope:
            raise ExpressionError(
                f"unknown variable '{ref.name}' in expression [{source}]", ref.pos
            )
    try:
        return _eval(tree, scope)
    except ExpressionError as e:
        raise ExpressionError(f"{e.message} in expression [{source}]", e.pos) from e


def evaluate_bool(source: str, scope: Mapping[str, Any]) -> bool:
    """Evaluate an expression that must produce a boolean."""
    result = evaluate(source, scope)
    flag = coerce_bool(result)
    if flag is None:
        raise ExpressionError(f"expression [{source}] did not evaluate to a boolean: {result!r}")
    return flag
