"""Bounded arithmetic formulas written by contractors.

Grammar::

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | NAME | NAME "(" expr ("," expr)* ")" | "(" expr ")"

Only ``min``, ``max`` and ``round`` may be called. Formulas are parsed into
a small tagged tree and evaluated over ``Decimal`` values; nothing is
handed to ``eval``. Length and nesting depth are capped, so evaluation
work is linear in the formula length.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, Overflow, localcontext
from functools import lru_cache
from typing import FrozenSet, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from .errors import DivisionByZeroError, FormulaError, FormulaSyntaxError, UnknownVariableError

DEFAULT_MAX_LENGTH = 500
DEFAULT_MAX_DEPTH = 32
# Upper bounds for the configurable limits.
MAX_LENGTH_LIMIT = 5000
MAX_DEPTH_LIMIT = 64

# Contract with formula authors. Bump the version whenever a name is added.
VARIABLE_CATALOG_VERSION = "1"
BASE_VARIABLES: Tuple[str, ...] = (
    "sqft",
    "baseRate",
    "materialCost",
    "laborCost",
    "laborHours",
    "hourlyRate",
    "tier",
    "multiplier",
)

# Arity bounds per function: (min, max); None means unbounded.
FUNCTIONS = {
    "min": (1, None),
    "max": (1, None),
    "round": (1, 2),
}

_MAX_ROUND_DIGITS = 6

_TOKEN_PATTERN = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<name>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/(),]))"
)


class Token(NamedTuple):
    kind: str
    text: str
    position: int


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Number:
    value: Decimal


@dataclass(frozen=True)
class Variable:
    name: str
    position: int


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"
    position: int


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...]
    position: int


Node = Union[Number, Variable, Unary, Binary, Call]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    position = 0
    length = len(text)
    while position < length:
        if text[position:].strip() == "":
            break
        match = _TOKEN_PATTERN.match(text, position)
        if match is None:
            offset = position + (len(text[position:]) - len(text[position:].lstrip()))
            raise FormulaSyntaxError(
                f"Unexpected character '{text[offset]}' at position {offset}",
                formula=text,
                position=offset,
            )
        kind = match.lastgroup or "op"
        tokens.append(Token(kind, match.group(kind), match.start(kind)))
        position = match.end()
    tokens.append(Token("end", "", length))
    return tokens


class _Parser:
    def __init__(self, text: str, max_depth: int) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0
        self.depth = 0
        self.max_depth = max_depth

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _error(self, message: str, token: Token) -> FormulaSyntaxError:
        return FormulaSyntaxError(message, formula=self.text, position=token.position)

    def _describe(self, token: Token) -> str:
        return "end of formula" if token.kind == "end" else f"'{token.text}' at position {token.position}"

    def _enter(self, token: Token) -> None:
        self.depth += 1
        if self.depth > self.max_depth:
            raise self._error(f"Formula nesting deeper than {self.max_depth} levels", token)

    def _leave(self) -> None:
        self.depth -= 1

    def _expect(self, text: str) -> Token:
        token = self.current
        if token.kind != "op" or token.text != text:
            raise self._error(f"Expected '{text}' but found {self._describe(token)}", token)
        return self._advance()

    def parse(self) -> Node:
        if self.current.kind == "end":
            raise self._error("Formula is empty", self.current)
        node = self.expression()
        if self.current.kind != "end":
            raise self._error(f"Unexpected {self._describe(self.current)}", self.current)
        return node

    def expression(self) -> Node:
        node = self.term()
        while self.current.kind == "op" and self.current.text in "+-":
            token = self._advance()
            node = Binary(token.text, node, self.term(), token.position)
        return node

    def term(self) -> Node:
        node = self.unary()
        while self.current.kind == "op" and self.current.text in "*/":
            token = self._advance()
            node = Binary(token.text, node, self.unary(), token.position)
        return node

    def unary(self) -> Node:
        token = self.current
        if token.kind == "op" and token.text in "+-":
            self._advance()
            self._enter(token)
            operand = self.unary()
            self._leave()
            return Unary(token.text, operand)
        return self.primary()

    def primary(self) -> Node:
        token = self.current
        if token.kind == "number":
            self._advance()
            return Number(Decimal(token.text))
        if token.kind == "name":
            self._advance()
            if self.current.kind == "op" and self.current.text == "(":
                return self.call(token)
            if token.text in FUNCTIONS:
                raise self._error(f"Function '{token.text}' must be called with arguments", token)
            return Variable(token.text, token.position)
        if token.kind == "op" and token.text == "(":
            self._advance()
            self._enter(token)
            node = self.expression()
            self._expect(")")
            self._leave()
            return node
        raise self._error(f"Unexpected {self._describe(token)}", token)

    def call(self, name: Token) -> Node:
        if name.text not in FUNCTIONS:
            raise self._error(f"Unknown function '{name.text}'", name)
        self._expect("(")
        self._enter(name)
        args = [self.expression()]
        while self.current.kind == "op" and self.current.text == ",":
            self._advance()
            args.append(self.expression())
        self._expect(")")
        self._leave()
        low, high = FUNCTIONS[name.text]
        if len(args) < low or (high is not None and len(args) > high):
            raise self._error(f"Function '{name.text}' takes {_arity_text(low, high)}, got {len(args)}", name)
        return Call(name.text, tuple(args), name.position)


def _arity_text(low: int, high: Optional[int]) -> str:
    if high is None:
        return f"at least {low} argument{'s' if low != 1 else ''}"
    if low == high:
        return f"{low} argument{'s' if low != 1 else ''}"
    return f"{low} to {high} arguments"


def _collect_variables(node: Node) -> Iterable[Variable]:
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Variable):
            yield current
        elif isinstance(current, Unary):
            stack.append(current.operand)
        elif isinstance(current, Binary):
            stack.extend((current.right, current.left))
        elif isinstance(current, Call):
            stack.extend(reversed(current.args))


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Formula:
    """A parsed formula; immutable and safe to share between threads."""

    text: str
    root: Node
    variables: FrozenSet[str]

    def require_variables(self, allowed: Iterable[str], *, scheme_id: Optional[int] = None) -> None:
        """Fail with :class:`UnknownVariableError` if the formula names anything outside ``allowed``."""

        allowed_set = set(allowed)
        unknown = sorted(
            (variable for variable in _collect_variables(self.root) if variable.name not in allowed_set),
            key=lambda variable: variable.position,
        )
        if unknown:
            raise UnknownVariableError(unknown[0].name, formula=self.text, scheme_id=scheme_id)

    def evaluate(self, bindings: Mapping[str, Decimal], *, scheme_id: Optional[int] = None) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = 28
            try:
                return _evaluate(self.root, bindings, self.text, scheme_id)
            except (Overflow, InvalidOperation):
                raise FormulaError("Result out of range", formula=self.text, scheme_id=scheme_id) from None


def _evaluate(node: Node, bindings: Mapping[str, Decimal], text: str, scheme_id: Optional[int]) -> Decimal:
    if isinstance(node, Number):
        return node.value
    if isinstance(node, Variable):
        try:
            return bindings[node.name]
        except KeyError:
            raise UnknownVariableError(node.name, formula=text, scheme_id=scheme_id) from None
    if isinstance(node, Unary):
        value = _evaluate(node.operand, bindings, text, scheme_id)
        return -value if node.op == "-" else value
    if isinstance(node, Binary):
        # Operator chains are left-deep; walk the spine instead of recursing.
        chain: List[Binary] = []
        current: Node = node
        while isinstance(current, Binary):
            chain.append(current)
            current = current.left
        value = _evaluate(current, bindings, text, scheme_id)
        for link in reversed(chain):
            right = _evaluate(link.right, bindings, text, scheme_id)
            value = _apply(link, value, right, text, scheme_id)
        return value
    if isinstance(node, Call):
        args = [_evaluate(arg, bindings, text, scheme_id) for arg in node.args]
        if node.name == "min":
            return min(args)
        if node.name == "max":
            return max(args)
        digits = args[1] if len(args) > 1 else Decimal(0)
        if digits != digits.to_integral_value() or not 0 <= digits <= _MAX_ROUND_DIGITS:
            raise FormulaError(
                f"round() digits must be a whole number between 0 and {_MAX_ROUND_DIGITS}",
                formula=text,
                scheme_id=scheme_id,
                position=node.position,
            )
        return args[0].quantize(Decimal(1).scaleb(-int(digits)), rounding=ROUND_HALF_UP)
    raise FormulaError(f"Unsupported node {type(node).__name__}", formula=text, scheme_id=scheme_id)


def _apply(node: Binary, left: Decimal, right: Decimal, text: str, scheme_id: Optional[int]) -> Decimal:
    if node.op == "+":
        return left + right
    if node.op == "-":
        return left - right
    if node.op == "*":
        return left * right
    if right.is_zero():
        raise DivisionByZeroError(
            f"Division by zero at position {node.position}",
            formula=text,
            scheme_id=scheme_id,
            position=node.position,
        )
    return left / right


@lru_cache(maxsize=256)
def parse_formula(
    text: str,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Formula:
    """Parse and validate ``text``; raises :class:`FormulaSyntaxError` when malformed."""

    if text is None:
        raise FormulaSyntaxError("Formula is empty", formula="")
    max_length = min(max_length, MAX_LENGTH_LIMIT)
    max_depth = min(max_depth, MAX_DEPTH_LIMIT)
    if len(text) > max_length:
        raise FormulaSyntaxError(
            f"Formula is longer than {max_length} characters",
            formula=text[:max_length] + "...",
            position=max_length,
        )
    root = _Parser(text, max_depth).parse()
    names = frozenset(variable.name for variable in _collect_variables(root))
    return Formula(text=text, root=root, variables=names)


def evaluate_formula(
    text: str,
    bindings: Mapping[str, Decimal],
    *,
    allowed: Optional[Iterable[str]] = None,
    max_length: int = DEFAULT_MAX_LENGTH,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Decimal:
    """Parse, check names against ``allowed`` (default: the bound names) and evaluate."""

    formula = parse_formula(text, max_length=max_length, max_depth=max_depth)
    formula.require_variables(bindings.keys() if allowed is None else allowed)
    return formula.evaluate(bindings)


__all__ = [
    "BASE_VARIABLES",
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_LENGTH",
    "FUNCTIONS",
    "MAX_DEPTH_LIMIT",
    "MAX_LENGTH_LIMIT",
    "VARIABLE_CATALOG_VERSION",
    "Formula",
    "evaluate_formula",
    "parse_formula",
    "tokenize",
]
