"""Restricted expression evaluator for calculations and string conditions.

Expressions are tokenized and parsed by a small recursive-descent parser
instead of being handed to a general-purpose interpreter. The grammar
covers numeric, string, boolean and null literals with arithmetic,
comparison and logical operators; there are no names, calls or attribute
lookups, so an expression can only ever compute a value. Nesting through
parentheses and prefix operators is capped at MAX_NESTING_DEPTH levels.

Grammar (lowest to highest precedence)::

    expr     := or
    or       := and (("||" | "or") and)*
    and      := not (("&&" | "and") not)*
    not      := ("!" | "not") not | compare
    compare  := additive (COMPARE_OP additive)?
    additive := term (("+" | "-") term)*
    term     := unary (("*" | "/" | "%") unary)*
    unary    := ("-" | "+") unary | primary
    primary  := NUMBER | STRING | true | false | null | "(" expr ")"
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Union

from core.exceptions import EvaluationError

Number = Union[int, float]

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[-+*/%<>!()])
  | (?P<word>[A-Za-z_]\w*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
    "undefined": None,
}
_WORD_OPERATORS = {"and": "&&", "or": "||", "not": "!"}
_COMPARE_OPS = {"==", "===", "!=", "!==", "<", "<=", ">", ">="}
MAX_NESTING_DEPTH = 50
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}


@dataclass(frozen=True)
class Token:
    kind: str  # "literal", "op" or "end"
    value: Any
    position: int


def _unescape(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def tokenize(expression: str) -> list[Token]:
    """Split an expression into literal and operator tokens."""
    tokens: list[Token] = []
    position = 0
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if not match:
            raise EvaluationError(
                f"Unexpected character {expression[position]!r} at position {position}"
            )
        kind = match.lastgroup
        text = match.group(0)
        if kind == "number":
            value = float(text) if any(c in text for c in ".eE") else int(text)
            tokens.append(Token("literal", value, position))
        elif kind == "string":
            tokens.append(Token("literal", _unescape(text), position))
        elif kind == "op":
            tokens.append(Token("op", text, position))
        elif kind == "word":
            lowered = text.lower()
            if lowered in _WORD_OPERATORS:
                tokens.append(Token("op", _WORD_OPERATORS[lowered], position))
            elif lowered in _KEYWORDS:
                tokens.append(Token("literal", _KEYWORDS[lowered], position))
            else:
                raise EvaluationError(f"Unknown identifier '{text}' at position {position}")
        position = match.end()
    tokens.append(Token("end", None, len(expression)))
    return tokens


def _truthy(value: Any) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _to_number(value: Any) -> Number:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            try:
                return float(text)
            except ValueError:
                return math.nan
    return math.nan


def _format(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _normalize(value: Any) -> Any:
    """Collapse integral floats so 10 / 2 yields 5 rather than 5.0."""
    if isinstance(value, float) and value.is_integer() and not isinstance(value, bool):
        return int(value)
    return value


class _Parser:
    def __init__(self, tokens: list[Token]):
        self._tokens = tokens
        self._index = 0
        self._depth = 0

    def _nested(self, parse: Callable[[], Any]) -> Any:
        self._depth += 1
        if self._depth > MAX_NESTING_DEPTH:
            raise EvaluationError(f"Expression is nested deeper than {MAX_NESTING_DEPTH} levels")
        try:
            return parse()
        finally:
            self._depth -= 1

    def _peek(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept(self, *ops: str) -> Union[str, None]:
        token = self._peek()
        if token.kind == "op" and token.value in ops:
            self._index += 1
            return token.value
        return None

    def parse(self) -> Any:
        value = self._or()
        token = self._peek()
        if token.kind != "end":
            raise EvaluationError(f"Unexpected token {token.value!r} at position {token.position}")
        return value

    def _or(self) -> Any:
        value = self._and()
        while self._accept("||"):
            right = self._and()
            value = value if _truthy(value) else right
        return value

    def _and(self) -> Any:
        value = self._not()
        while self._accept("&&"):
            right = self._not()
            value = right if _truthy(value) else value
        return value

    def _not(self) -> Any:
        if self._accept("!"):
            return not _truthy(self._nested(self._not))
        return self._compare()

    def _compare(self) -> Any:
        left = self._additive()
        token = self._peek()
        if token.kind == "op" and token.value in _COMPARE_OPS:
            self._advance()
            right = self._additive()
            return _compare(token.value, left, right)
        return left

    def _additive(self) -> Any:
        value = self._term()
        while True:
            op = self._accept("+", "-")
            if op is None:
                return value
            right = self._term()
            if op == "+" and (isinstance(value, str) or isinstance(right, str)):
                value = _format(value) + _format(right)
            elif op == "+":
                value = _to_number(value) + _to_number(right)
            else:
                value = _to_number(value) - _to_number(right)

    def _term(self) -> Any:
        value = self._unary()
        while True:
            op = self._accept("*", "/", "%")
            if op is None:
                return value
            right = _to_number(self._unary())
            left = _to_number(value)
            if op == "*":
                value = left * right
            elif right == 0:
                raise EvaluationError("Division by zero")
            elif op == "/":
                value = left / right
            else:
                value = math.fmod(left, right)

    def _unary(self) -> Any:
        op = self._accept("-", "+")
        if op == "-":
            return -_to_number(self._nested(self._unary))
        if op == "+":
            return _to_number(self._nested(self._unary))
        return self._primary()

    def _primary(self) -> Any:
        token = self._advance()
        if token.kind == "literal":
            return token.value
        if token.kind == "op" and token.value == "(":
            value = self._nested(self._or)
            if not self._accept(")"):
                raise EvaluationError(f"Missing closing parenthesis at position {self._peek().position}")
            return value
        if token.kind == "end":
            raise EvaluationError("Unexpected end of expression")
        raise EvaluationError(f"Unexpected token {token.value!r} at position {token.position}")


def _compare(op: str, left: Any, right: Any) -> bool:
    if op in ("===", "!=="):
        same = type(left) is type(right) and left == right
        if isinstance(left, (int, float)) and isinstance(right, (int, float)):
            same = not isinstance(left, bool) and not isinstance(right, bool) and left == right
        return same if op == "===" else not same

    if op in ("==", "!="):
        if isinstance(left, str) and isinstance(right, str):
            same = left == right
        elif left is None or right is None:
            same = left is None and right is None
        else:
            same = _to_number(left) == _to_number(right)
        return same if op == "==" else not same

    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        a, b = _to_number(left), _to_number(right)
        if isinstance(a, float) and math.isnan(a) or isinstance(b, float) and math.isnan(b):
            return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


class ExpressionEvaluator:
    """Evaluates restricted arithmetic/comparison expressions.

    Example:
        ExpressionEvaluator.evaluate("(2 + 3) * 4")      -> 20
        ExpressionEvaluator.evaluate("'a' + 1")          -> "a1"
        ExpressionEvaluator.evaluate("10 > 3 && 'x' == 'x'") -> True
    """

    @staticmethod
    def evaluate(expression: str) -> Any:
        """Evaluate ``expression``; raises EvaluationError on any failure."""
        if not isinstance(expression, str):
            raise EvaluationError(f"Expression must be a string, got {type(expression).__name__}")
        if not expression.strip():
            raise EvaluationError("Expression is empty")
        try:
            value = _Parser(tokenize(expression)).parse()
        except EvaluationError:
            raise
        except (ArithmeticError, TypeError, ValueError) as e:
            raise EvaluationError(str(e)) from e
        except RecursionError as e:
            raise EvaluationError("Expression is too deeply nested") from e
        return _normalize(value)

    @staticmethod
    def evaluate_bool(expression: str) -> bool:
        """Evaluate ``expression`` and coerce the result to a boolean."""
        return _truthy(ExpressionEvaluator.evaluate(expression))
