"""
Log condition evaluation.

A condition gates a database write.  Grammar, no parentheses::

    expr  := group ( OR group )*
    group := atom ( AND atom )*
    atom  := identifier comparator literal

``identifier`` is ``Value`` (the value about to be logged) or
``Reg_<FieldName>`` (the latest value of another register).  Comparators
are ``== != >= <= > <``.  Literals may be quoted with ``'`` or ``"``.

Both sides are compared as numbers when both parse as numbers (``==`` and
``!=`` within 0.0001), otherwise as case-insensitive strings.

Evaluation never raises: a blank condition is True, anything malformed is
False and logged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .errors import ConditionEvaluationFailure


log = logging.getLogger(__name__)

EPSILON = 0.0001
VALUE_IDENT = "value"
SIBLING_PREFIX = "reg_"

_ATOM_RE = re.compile(r"^\s*(\w+)\s*(==|!=|>=|<=|>|<)\s*([^=!<>\s].*?)\s*$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


@dataclass(frozen=True)
class Atom:
    identifier: str
    op: str
    literal: str


def split_keyword(expression: str, keyword: str) -> List[str]:
    """Split on a whole-word keyword (case-insensitive), ignoring quoted text."""
    parts: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    kw = keyword.lower()
    n, k = len(expression), len(keyword)
    i = 0
    while i < n:
        c = expression[i]
        if quote:
            if c == quote:
                quote = None
        elif c in ("'", '"'):
            quote = c
        elif (
            expression[i:i + k].lower() == kw
            and (i == 0 or expression[i - 1].isspace())
            and (i + k == n or expression[i + k].isspace())
        ):
            parts.append("".join(current))
            current = []
            i += k
            continue
        current.append(c)
        i += 1
    parts.append("".join(current))
    return parts


def _unquote(literal: str) -> str:
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in ("'", '"'):
        return literal[1:-1]
    return literal


def parse_condition(expression: str) -> List[List[Atom]]:
    """Parse into OR-groups of AND-atoms.

    Raises:
        ConditionEvaluationFailure: empty operand or an atom that is not
            ``identifier comparator literal``.
    """
    groups: List[List[Atom]] = []
    for or_part in split_keyword(expression, "OR"):
        atoms: List[Atom] = []
        for and_part in split_keyword(or_part, "AND"):
            if not and_part.strip():
                raise ConditionEvaluationFailure("empty operand next to AND/OR", expression)
            m = _ATOM_RE.match(and_part)
            if not m:
                raise ConditionEvaluationFailure(f"invalid condition syntax: {and_part.strip()!r}", expression)
            ident, op, literal = m.groups()
            atoms.append(Atom(ident, op, _unquote(literal.strip())))
        groups.append(atoms)
    return groups


def validate_condition(expression: str) -> List[str]:
    """Return syntax problems, empty when the condition is usable."""
    if not expression or not expression.strip():
        return []
    try:
        groups = parse_condition(expression)
    except ConditionEvaluationFailure as e:
        return [e.message]
    problems = []
    for atom in (a for g in groups for a in g):
        low = atom.identifier.lower()
        if low != VALUE_IDENT and not (low.startswith(SIBLING_PREFIX) and len(low) > len(SIBLING_PREFIX)):
            problems.append(f"unknown variable {atom.identifier!r}")
    return problems


def _to_number(text: str) -> Optional[float]:
    s = text.strip()
    if not _NUMBER_RE.match(s):
        return None
    return float(s)


def compare(left: str, op: str, right: str) -> bool:
    a, b = _to_number(left), _to_number(right)
    if a is not None and b is not None:
        if op == "==":
            return abs(a - b) < EPSILON
        if op == "!=":
            return abs(a - b) >= EPSILON
        if op == ">":
            return a > b
        if op == "<":
            return a < b
        if op == ">=":
            return a >= b
        if op == "<=":
            return a <= b
        return False
    l, r = left.casefold(), right.casefold()
    if op == "==":
        return l == r
    if op == "!=":
        return l != r
    if op == ">":
        return l > r
    if op == "<":
        return l < r
    if op == ">=":
        return l >= r
    if op == "<=":
        return l <= r
    return False


def _resolve(atom: Atom, current_value: str, siblings: Mapping[str, str], expression: str) -> Optional[str]:
    ident = atom.identifier
    low = ident.lower()
    if low == VALUE_IDENT:
        return current_value
    if low.startswith(SIBLING_PREFIX):
        name = ident[len(SIBLING_PREFIX):]
        if name in siblings:
            return siblings[name]
        log.warning("Register '%s' not found in condition: '%s'", name, expression)
        return None
    log.warning("Unknown variable '%s' in condition: '%s'", ident, expression)
    return None


def evaluate(expression: str, current_value: str, sibling_values: Optional[Mapping[str, str]] = None) -> bool:
    if not expression or not expression.strip():
        return True
    siblings = sibling_values or {}
    try:
        groups = parse_condition(expression)
    except ConditionEvaluationFailure as e:
        log.warning("Condition evaluation error: %s. Condition: '%s'", e.message, expression)
        return False

    for atoms in groups:
        ok = True
        for atom in atoms:
            left = _resolve(atom, current_value if current_value is not None else "", siblings, expression)
            if left is None or not compare(left, atom.op, atom.literal):
                ok = False
                break
        if ok:
            return True
    return False
