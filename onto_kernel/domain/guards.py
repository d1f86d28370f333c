"""
Restricted guard expressions (``onto_kernel.domain.guards``).

Guard expressions in templates use a fixed operator set.  This module
tokenizes and parses them into a small tagged AST and evaluates that AST
with a pure tree walk.  Nothing is ever handed to ``eval``/``exec`` and
there is no way to call a function or reach a Python attribute.

Allowed:
  - Field access: dotted paths over mappings (``props.word_count``,
    ``facets.stage``, ``actor.user_id``, ``state_key``)
  - Literals: strings ('..' or ".."), numbers, true, false, null
  - Comparisons: ==, !=, >, >=, <, <=
  - Logical: &&, ||, !
  - Grouping: ( ... )

Semantics:
  - A missing path segment resolves to null.
  - Numbers compare numerically (booleans are not numbers).
  - Ordering comparisons are defined for number/number and string/string
    only; anything else (including null) is false.
  - &&, || short-circuit on truthiness; the guard passes when the root
    value is truthy.

Failure is closed: an unparsable guard never passes (GUARD_PARSE_ERROR),
and neither does one whose evaluation blows up (GUARD_EVAL_ERROR).
"""

from __future__ import annotations

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from onto_kernel.domain.transition import EntitySnapshot, TransitionContext
from onto_kernel.exceptions import GuardParseError
from onto_kernel.logging_config import get_logger

logger = get_logger("domain.guards")

REASON_PARSE_ERROR = "GUARD_PARSE_ERROR"
REASON_FALSE = "GUARD_FALSE"
REASON_EVAL_ERROR = "GUARD_EVAL_ERROR"

MAX_EXPRESSION_LENGTH = 2000
MAX_NESTING_DEPTH = 32

COMPARISON_OPERATORS: frozenset[str] = frozenset({"==", "!=", ">", ">=", "<", "<="})

# Roots a path may start with.  Anything else is still evaluated (it reads a
# snapshot field) but config validation warns about it.
KNOWN_PATH_ROOTS: frozenset[str] = frozenset({
    "id", "entity_type", "type_key", "state_key", "project_id", "version",
    "props", "facets", "actor", "name", "title",
})


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Path:
    parts: tuple[str, ...]

    @property
    def dotted(self) -> str:
        return ".".join(self.parts)


@dataclass(frozen=True)
class Compare:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class And:
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Or:
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Not:
    operand: "Node"


Node = Union[Literal, Path, Compare, And, Or, Not]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Token:
    kind: str  # "op", "str", "num", "name", "lparen", "rparen", "end"
    value: Any
    pos: int


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<op>&&|\|\||==|!=|>=|<=|>|<|!)
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<str>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<num>-?\d+(?:\.\d+)?)
    |(?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"', "'": "'"}


def _unquote(raw: str, expression: str, pos: int) -> str:
    body = raw[1:-1]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\":
            nxt = body[i + 1]
            if nxt not in _ESCAPES:
                raise GuardParseError(expression, f"unknown escape '\\{nxt}'", pos + i + 1)
            out.append(_ESCAPES[nxt])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise GuardParseError(
                expression, f"unexpected character {expression[pos]!r}", pos
            )
        kind = match.lastgroup
        raw = match.group()
        if kind == "num" and raw.startswith("-") and tokens and tokens[-1].kind in (
            "num", "str", "name", "rparen",
        ):
            raise GuardParseError(expression, "arithmetic is not supported", pos)
        if kind == "str":
            tokens.append(_Token("str", _unquote(raw, expression, pos), pos))
        elif kind == "num":
            tokens.append(_Token("num", Decimal(raw), pos))
        elif kind != "ws":
            tokens.append(_Token(kind, raw, pos))
        pos = match.end()
    tokens.append(_Token("end", None, pos))
    return tokens


# ---------------------------------------------------------------------------
# Parser (recursive descent)
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self, expression: str) -> None:
        self._expression = expression
        self._tokens = tokenize(expression)
        self._index = 0
        self._depth = 0

    def parse(self) -> Node:
        node = self._parse_or()
        token = self._peek()
        if token.kind != "end":
            self._fail(f"unexpected {token.value!r}", token)
        return node

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _fail(self, message: str, token: _Token) -> None:
        raise GuardParseError(self._expression, message, token.pos)

    def _is_op(self, *ops: str) -> bool:
        token = self._peek()
        return token.kind == "op" and token.value in ops

    def _parse_or(self) -> Node:
        node = self._parse_and()
        while self._is_op("||"):
            self._advance()
            node = Or(node, self._parse_and())
        return node

    def _parse_and(self) -> Node:
        node = self._parse_unary()
        while self._is_op("&&"):
            self._advance()
            node = And(node, self._parse_unary())
        return node

    def _parse_unary(self) -> Node:
        if self._is_op("!"):
            token = self._advance()
            self._enter(token)
            operand = self._parse_unary()
            self._depth -= 1
            return Not(operand)
        return self._parse_comparison()

    def _parse_comparison(self) -> Node:
        left = self._parse_atom()
        token = self._peek()
        if token.kind == "op" and token.value in COMPARISON_OPERATORS:
            self._advance()
            right = self._parse_atom()
            if self._peek().kind == "op" and self._peek().value in COMPARISON_OPERATORS:
                self._fail("chained comparisons need parentheses", self._peek())
            return Compare(token.value, left, right)
        return left

    def _parse_atom(self) -> Node:
        token = self._advance()
        if token.kind == "lparen":
            self._enter(token)
            node = self._parse_or()
            closing = self._advance()
            if closing.kind != "rparen":
                self._fail("expected ')'", closing)
            self._depth -= 1
            return node
        if token.kind in ("str", "num"):
            return Literal(token.value)
        if token.kind == "name":
            if token.value == "true":
                return Literal(True)
            if token.value == "false":
                return Literal(False)
            if token.value == "null":
                return Literal(None)
            return Path(tuple(token.value.split(".")))
        if token.kind == "end":
            self._fail("unexpected end of expression", token)
        self._fail(f"unexpected {token.value!r}", token)
        raise AssertionError("unreachable")

    def _enter(self, token: _Token) -> None:
        self._depth += 1
        if self._depth > MAX_NESTING_DEPTH:
            self._fail(f"nesting deeper than {MAX_NESTING_DEPTH}", token)


def parse_guard(expression: str) -> Node:
    """Parse a guard expression into an AST.

    Raises:
        GuardParseError: if the expression is empty, too long, or malformed.
    """
    if not expression or not expression.strip():
        raise GuardParseError(expression or "", "empty expression", 0)
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise GuardParseError(
            expression[:40] + "...",
            f"longer than {MAX_EXPRESSION_LENGTH} characters",
            MAX_EXPRESSION_LENGTH,
        )
    return _Parser(expression).parse()


def referenced_paths(node: Node) -> list[Path]:
    """All field paths an AST reads, in source order."""
    if isinstance(node, Path):
        return [node]
    if isinstance(node, (Compare, And, Or)):
        return referenced_paths(node.left) + referenced_paths(node.right)
    if isinstance(node, Not):
        return referenced_paths(node.operand)
    return []


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def build_guard_scope(
    snapshot: EntitySnapshot,
    context: TransitionContext | None = None,
) -> dict[str, Any]:
    """The mapping guard paths are resolved against."""
    scope = snapshot.as_guard_scope()
    scope["actor"] = {
        "actor_id": context.actor_id if context else None,
        "user_id": context.user_id if context else None,
    }
    return scope


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _as_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _resolve(scope: Mapping[str, Any], path: Path) -> Any:
    current: Any = scope
    for part in path.parts:
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return _as_decimal(left) == _as_decimal(right)
    if _is_number(left) or _is_number(right):
        return False
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return _equals(left, right)
    if op == "!=":
        return not _equals(left, right)
    if _is_number(left) and _is_number(right):
        left, right = _as_decimal(left), _as_decimal(right)
    elif not (isinstance(left, str) and isinstance(right, str)):
        return False
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    if op == "<":
        return left < right
    return left <= right


def evaluate_node(node: Node, scope: Mapping[str, Any]) -> Any:
    """Evaluate an AST node against a scope.  Pure; never mutates ``scope``."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Path):
        return _resolve(scope, node)
    if isinstance(node, Compare):
        return _compare(node.op, evaluate_node(node.left, scope), evaluate_node(node.right, scope))
    if isinstance(node, And):
        return bool(evaluate_node(node.left, scope)) and bool(evaluate_node(node.right, scope))
    if isinstance(node, Or):
        return bool(evaluate_node(node.left, scope)) or bool(evaluate_node(node.right, scope))
    if isinstance(node, Not):
        return not evaluate_node(node.operand, scope)
    raise TypeError(f"Unknown guard node {type(node).__name__}")


@dataclass(frozen=True)
class GuardOutcome:
    """Result of evaluating one guard."""

    passed: bool
    reason: str | None = None
    detail: str | None = None

    @classmethod
    def allow(cls) -> GuardOutcome:
        return cls(passed=True)

    @classmethod
    def deny(cls, reason: str, detail: str | None = None) -> GuardOutcome:
        return cls(passed=False, reason=reason, detail=detail)


class GuardEvaluator:
    """Parses (once per distinct expression) and evaluates guard expressions.

    Thread-safe: the parse cache is the only state and is lock-protected;
    ASTs are immutable.
    """

    def __init__(self) -> None:
        self._cache: dict[str, Node | GuardParseError] = {}
        self._lock = threading.Lock()

    def compile(self, expression: str) -> Node:
        """Parse with caching.  Parse failures are cached too."""
        with self._lock:
            cached = self._cache.get(expression)
        if cached is None:
            try:
                cached = parse_guard(expression)
            except GuardParseError as exc:
                cached = exc
            with self._lock:
                self._cache[expression] = cached
        if isinstance(cached, GuardParseError):
            raise cached
        return cached

    def evaluate(
        self,
        expression: str | None,
        snapshot: EntitySnapshot,
        context: TransitionContext | None = None,
    ) -> GuardOutcome:
        """Evaluate a guard.  Empty or absent guards always pass."""
        if expression is None or not expression.strip():
            return GuardOutcome.allow()

        try:
            node = self.compile(expression)
        except GuardParseError as exc:
            logger.warning(
                "guard_parse_error",
                extra={"expression": expression, "error": exc.message, "position": exc.position},
            )
            return GuardOutcome.deny(REASON_PARSE_ERROR, exc.message)

        try:
            passed = bool(evaluate_node(node, build_guard_scope(snapshot, context)))
        except (ArithmeticError, InvalidOperation, TypeError) as exc:
            logger.warning(
                "guard_evaluation_error",
                extra={"expression": expression, "error": str(exc)},
            )
            return GuardOutcome.deny(REASON_EVAL_ERROR, str(exc))

        if not passed:
            return GuardOutcome.deny(REASON_FALSE)
        return GuardOutcome.allow()

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
