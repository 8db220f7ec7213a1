"""
Minimal boolean expression evaluator for review pass conditions

Grammar:

    or_expr    := and_expr (("||" | "or") and_expr)*
    and_expr   := not_expr (("&&" | "and") not_expr)*
    not_expr   := ("!" | "not") not_expr | comparison
    comparison := primary (op primary)?
    primary    := literal | identifier | "(" or_expr ")"

Identifiers resolve only against the context mapping passed in.
"""
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Mapping, Tuple

logger = logging.getLogger(__name__)


class ExpressionError(ValueError):
    """Raised for malformed expressions or unbound identifiers"""


_TOKEN_RE = re.compile(r"""
    \s*(?:
        (?P<number>-?\d+(?:\.\d+)?)
      | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!()])
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    )""", re.VERBOSE)

_KEYWORDS = {
    "true": True, "True": True,
    "false": False, "False": False,
    "null": None, "None": None, "undefined": None,
}

_COMPARISONS = {"==", "!=", "===", "!==", "<", "<=", ">", ">="}
MAX_NESTING = 64


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    position = 0
    text = expression.rstrip()
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if not match or match.end() == position:
            raise ExpressionError(f"Unexpected character at {position}: {text[position:]!r}")
        position = match.end()
        if match.group("number") is not None:
            raw = match.group("number")
            tokens.append(Token("literal", float(raw) if "." in raw else int(raw)))
        elif match.group("string") is not None:
            raw = match.group("string")[1:-1]
            tokens.append(Token("literal", re.sub(r"\\(.)", r"\1", raw)))
        elif match.group("op") is not None:
            tokens.append(Token("op", match.group("op")))
        else:
            name = match.group("name")
            if name in _KEYWORDS:
                tokens.append(Token("literal", _KEYWORDS[name]))
            elif name in ("and", "or", "not"):
                tokens.append(Token("op", {"and": "&&", "or": "||", "not": "!"}[name]))
            else:
                tokens.append(Token("name", name))
    return tokens


# AST nodes are plain tuples: ("lit", v), ("var", name), ("not", x),
# ("and", (a, b, ...)), ("or", (a, b, ...)), ("cmp", op, a, b)
Node = Tuple[Any, ...]


class _Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.index = 0
        self.depth = 0

    def peek(self):
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self) -> Token:
        token = self.peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self.index += 1
        return token

    def nest(self):
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise ExpressionError(f"Expression nested deeper than {MAX_NESTING} levels")

    def accept(self, *ops: str) -> bool:
        token = self.peek()
        if token is not None and token.kind == "op" and token.value in ops:
            self.index += 1
            return True
        return False

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError("Empty expression")
        node = self.or_expr()
        if self.peek() is not None:
            raise ExpressionError(f"Unexpected token {self.peek().value!r}")
        return node

    def or_expr(self) -> Node:
        operands = [self.and_expr()]
        while self.accept("||"):
            operands.append(self.and_expr())
        return operands[0] if len(operands) == 1 else ("or", tuple(operands))

    def and_expr(self) -> Node:
        operands = [self.not_expr()]
        while self.accept("&&"):
            operands.append(self.not_expr())
        return operands[0] if len(operands) == 1 else ("and", tuple(operands))

    def not_expr(self) -> Node:
        if self.accept("!"):
            self.nest()
            node = ("not", self.not_expr())
            self.depth -= 1
            return node
        return self.comparison()

    def comparison(self) -> Node:
        left = self.primary()
        token = self.peek()
        if token is not None and token.kind == "op" and token.value in _COMPARISONS:
            self.index += 1
            return ("cmp", token.value, left, self.primary())
        return left

    def primary(self) -> Node:
        token = self.take()
        if token.kind == "literal":
            return ("lit", token.value)
        if token.kind == "name":
            return ("var", token.value)
        if token.value == "(":
            self.nest()
            node = self.or_expr()
            if not self.accept(")"):
                raise ExpressionError("Missing closing parenthesis")
            self.depth -= 1
            return node
        raise ExpressionError(f"Unexpected token {token.value!r}")


@lru_cache(maxsize=128)
def parse(expression: str) -> Node:
    return _Parser(tokenize(expression)).parse()


def _equals(left: Any, right: Any) -> bool:
    # True == 1 holds in Python but not for JSON values
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if op in ("==", "==="):
        return _equals(left, right)
    if op in ("!=", "!=="):
        return not _equals(left, right)
    if left is None or right is None:
        raise ExpressionError(f"Cannot order null with {op}")
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _eval(node: Node, context: Mapping[str, Any]) -> Any:
    kind = node[0]
    if kind == "lit":
        return node[1]
    if kind == "var":
        if node[1] not in context:
            raise ExpressionError(f"Unbound identifier: {node[1]}")
        return context[node[1]]
    if kind == "not":
        return not _eval(node[1], context)
    if kind == "and":
        value = True
        for operand in node[1]:
            value = _eval(operand, context)
            if not value:
                break
        return value
    if kind == "or":
        value = False
        for operand in node[1]:
            value = _eval(operand, context)
            if value:
                break
        return value
    return _compare(node[1], _eval(node[2], context), _eval(node[3], context))


def evaluate(expression: str, context: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` against ``context``.

    Any failure (syntax error, nesting deeper than MAX_NESTING, unbound
    name, incomparable operands) counts as False so a bad condition never
    passes.
    """
    if not isinstance(expression, str):
        return False
    try:
        return bool(_eval(parse(expression), context))
    except (ExpressionError, TypeError) as e:
        logger.debug(f"Condition {expression!r} evaluated as false: {e}")
        return False
