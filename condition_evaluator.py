# condition_evaluator.py
"""
Parser and evaluator for rule conditions.

A condition is a small boolean expression over facts, for example::

    chain = 'zksync' AND estimatedValue > 500
    project = 'layerzero' OR (difficulty = 'hard' AND NOT chain = 'polygon')
    hour = 0 AND day % 7 = 0

Two evaluation modes exist:

- ``all``: regular AND / OR / NOT semantics.
- ``any``: legacy semantics where the condition holds as soon as any single
  comparison clause holds, whatever the connectives say.

Identifiers are looked up case- and underscore-insensitively, so
``estimatedValue`` and ``estimated_value`` name the same fact. A comparison
against a fact that is not present is False.
"""

import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Mapping, Optional, Tuple, Union

from config.logging_config import get_logger
from data_models import TriggerKind
from utils import ConditionError, parse_numeric

MODES = ("all", "any")

# Where each trigger's facts live when a full execution context is passed in.
TRIGGER_SECTIONS = {
    TriggerKind.NEW_OPPORTUNITY: "airdropOpportunity",
    TriggerKind.PRICE_THRESHOLD: "marketData",
    TriggerKind.VOLUME_SPIKE: "marketData",
    TriggerKind.TIME_BASED: "timeData",
}

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+)
  | (?P<string>'[^']*'|"[^"]*")
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<op>>=|<=|!=|<>|==|=|>|<)
  | (?P<mod>%)
  | (?P<and>&&)
  | (?P<or>\|\|)
  | (?P<not>!)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<ident>[A-Za-z_][A-Za-z0-9_.]*)
""", re.VERBOSE)

_KEYWORDS = {"and": "and", "or": "or", "not": "not", "true": "bool", "false": "bool"}

_MISSING = object()


# --- AST ---
@dataclass(frozen=True)
class Literal:
    value: Any

@dataclass(frozen=True)
class FactRef:
    name: str

@dataclass(frozen=True)
class Modulo:
    left: Any
    right: Any

@dataclass(frozen=True)
class Comparison:
    left: Any
    op: str
    right: Any

@dataclass(frozen=True)
class Truthy:
    operand: Any

@dataclass(frozen=True)
class Not:
    operand: Any

@dataclass(frozen=True)
class And:
    items: Tuple[Any, ...]

@dataclass(frozen=True)
class Or:
    items: Tuple[Any, ...]

Node = Union[Comparison, Truthy, Not, And, Or, Literal]


def _tokenize(text: str):
    tokens = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            raise ConditionError(f"Unexpected character {text[pos]!r} at position {pos} in condition: {text!r}")
        kind = m.lastgroup
        value = m.group(kind)
        pos = m.end()
        if kind == "ws":
            continue
        if kind == "ident" and value.lower() in _KEYWORDS:
            kind = _KEYWORDS[value.lower()]
        tokens.append((kind, value))
    return tokens


class _Parser:
    """Recursive descent parser; one instance per condition string."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos][0] if self.pos < len(self.tokens) else None

    def _next(self):
        if self.pos >= len(self.tokens):
            raise ConditionError(f"Unexpected end of condition: {self.text!r}")
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Node:
        node = self._or()
        if self.pos != len(self.tokens):
            raise ConditionError(f"Unexpected token {self.tokens[self.pos][1]!r} in condition: {self.text!r}")
        return node

    def _or(self):
        items = [self._and()]
        while self._peek() == "or":
            self._next()
            items.append(self._and())
        return items[0] if len(items) == 1 else Or(tuple(items))

    def _and(self):
        items = [self._not()]
        while self._peek() == "and":
            self._next()
            items.append(self._not())
        return items[0] if len(items) == 1 else And(tuple(items))

    def _not(self):
        if self._peek() == "not":
            self._next()
            return Not(self._not())
        return self._primary()

    def _primary(self):
        if self._peek() == "lparen":
            self._next()
            node = self._or()
            kind, value = self._next()
            if kind != "rparen":
                raise ConditionError(f"Expected ')' but found {value!r} in condition: {self.text!r}")
            return node
        left = self._operand()
        if self._peek() == "op":
            _, op = self._next()
            right = self._operand()
            return Comparison(left, "=" if op == "==" else ("!=" if op == "<>" else op), right)
        return Truthy(left)

    def _operand(self):
        left = self._term()
        if self._peek() == "mod":
            self._next()
            return Modulo(left, self._term())
        return left

    def _term(self):
        kind, value = self._next()
        if kind == "string":
            return Literal(value[1:-1])
        if kind == "number":
            return Literal(float(value) if "." in value else int(value))
        if kind == "bool":
            return Literal(value.lower() == "true")
        if kind == "ident":
            return FactRef(value)
        raise ConditionError(f"Unexpected token {value!r} in condition: {self.text!r}")


@lru_cache(maxsize=512)
def parse_condition(text: str) -> Optional[Node]:
    """Parses a condition string. Blank conditions parse to None (always true)."""
    if text is None or not str(text).strip():
        return None
    return _Parser(str(text)).parse()


def validate_condition(text: str) -> None:
    """Raises ConditionError when the condition cannot be parsed."""
    parse_condition(text)


# --- Evaluation ---
def _normalize(name: str) -> str:
    return name.lower().replace("_", "")

def _lookup(facts: Mapping[str, Any], name: str):
    current: Any = facts
    for part in name.split("."):
        if not isinstance(current, Mapping):
            return _MISSING
        wanted = _normalize(part)
        for key, value in current.items():
            if _normalize(str(key)) == wanted:
                current = value
                break
        else:
            return _MISSING
    return _MISSING if current is None else current

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

def _resolve(node, facts):
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, FactRef):
        return _lookup(facts, node.name)
    if isinstance(node, Modulo):
        left, right = _resolve(node.left, facts), _resolve(node.right, facts)
        if left is _MISSING or right is _MISSING:
            return _MISSING
        left, right = parse_numeric(left), parse_numeric(right)
        if left is None or right is None or not (math.isfinite(left) and math.isfinite(right)):
            return _MISSING
        if int(right) == 0:
            raise ConditionError("Modulo by zero in condition")
        return int(left) % int(right)
    raise ConditionError(f"Cannot resolve operand {node!r}")

def _compare(left, op: str, right) -> bool:
    if left is _MISSING or right is _MISSING:
        return False

    if isinstance(left, bool) or isinstance(right, bool):
        if op not in ("=", "!="):
            return False
        equal = _as_bool(left) == _as_bool(right)
        return equal if op == "=" else not equal

    if _is_number(left) or _is_number(right) or op not in ("=", "!="):
        a, b = parse_numeric(left), parse_numeric(right)
        if a is not None and b is not None:
            return _apply(a, op, b)
        if _is_number(left) or _is_number(right):
            return False

    a, b = str(left).strip().lower(), str(right).strip().lower()
    return _apply(a, op, b)

def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)

def _apply(a, op: str, b) -> bool:
    if op == "=":
        return a == b
    if op == "!=":
        return a != b
    if op == ">":
        return a > b
    if op == ">=":
        return a >= b
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    raise ConditionError(f"Unsupported operator {op!r}")

def _eval(node, facts) -> bool:
    if isinstance(node, Comparison):
        return _compare(_resolve(node.left, facts), node.op, _resolve(node.right, facts))
    if isinstance(node, Truthy):
        value = _resolve(node.operand, facts)
        return value is not _MISSING and _as_bool(value)
    if isinstance(node, Not):
        return not _eval(node.operand, facts)
    if isinstance(node, And):
        return all(_eval(item, facts) for item in node.items)
    if isinstance(node, Or):
        return any(_eval(item, facts) for item in node.items)
    raise ConditionError(f"Cannot evaluate node {node!r}")

def _clauses(node):
    """Comparison-level clauses of an expression, flattening AND / OR groups."""
    if isinstance(node, (And, Or)):
        for item in node.items:
            yield from _clauses(item)
    else:
        yield node


class ConditionEvaluator:
    """Evaluates rule conditions against the fact context of a trigger."""

    def __init__(self, mode: str = "all"):
        if mode not in MODES:
            raise ValueError(f"Unknown condition mode {mode!r}; expected one of {MODES}")
        self.mode = mode
        self.log = get_logger(__name__)

    def facts_for(self, trigger: TriggerKind, facts: Mapping[str, Any]) -> Mapping[str, Any]:
        section = TRIGGER_SECTIONS.get(TriggerKind.parse(trigger))
        if section and isinstance(facts.get(section), Mapping):
            return facts[section]
        return facts

    def evaluate(self, condition: str, trigger: TriggerKind, facts: Mapping[str, Any]) -> bool:
        tree = parse_condition(condition)
        if tree is None:
            return True
        context = self.facts_for(trigger, facts or {})
        if self.mode == "any":
            result = any(_eval(clause, context) for clause in _clauses(tree))
        else:
            result = _eval(tree, context)
        self.log.debug("Condition %r (%s mode) -> %s", condition, self.mode, result)
        return result


def evaluate(condition: str, trigger: TriggerKind, facts: Mapping[str, Any], mode: str = "all") -> bool:
    """Module-level shortcut for a one-off evaluation."""
    return ConditionEvaluator(mode).evaluate(condition, trigger, facts)
