# flowprobe/matcher.py
"""
Expected-vs-actual comparator used by every check.

Three forms of `expected` are understood:

* a list of assertion dicts such as ``[{"gte": 200}, {"lt": 300}]``; every
  entry must hold (logical AND)
* a string wrapped in slashes, ``"/^ab+c$/"``, treated as an inline regex
* anything else, compared by structural deep equality
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional

from flowprobe.results import CheckResult

_INLINE_REGEX = re.compile(r"^/(.*)/$", re.S)


# ==================== Equality ====================

def deep_equal(actual: Any, expected: Any) -> bool:
    """Structural equality that keeps booleans apart from numbers."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected

    if isinstance(expected, dict):
        if not isinstance(actual, dict) or actual.keys() != expected.keys():
            return False
        return all(deep_equal(actual[k], expected[k]) for k in expected)

    if isinstance(expected, (list, tuple)):
        if not isinstance(actual, (list, tuple)) or len(actual) != len(expected):
            return False
        return all(deep_equal(a, e) for a, e in zip(actual, expected))

    if isinstance(expected, (set, frozenset)):
        return isinstance(actual, (set, frozenset)) and actual == expected

    return actual == expected


def _display(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


# ==================== Operators ====================

def _ordered(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def compare(actual: Any, expected: Any) -> bool:
        if actual is None or isinstance(actual, bool):
            return False
        try:
            return bool(op(actual, expected))
        except TypeError:
            return False
    return compare


def _contains(actual: Any, expected: Any) -> bool:
    if actual is None or isinstance(actual, (int, float)):
        raise TypeError(f"{type(actual).__name__} does not support containment")
    return expected in actual


def _in(actual: Any, expected: Any) -> bool:
    try:
        return _contains(actual, expected)
    except TypeError:
        return False


def _nin(actual: Any, expected: Any) -> bool:
    try:
        return not _contains(actual, expected)
    except TypeError:
        return False


def _match(actual: Any, expected: Any) -> bool:
    return re.search(str(expected), _display(actual)) is not None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _predicate(test: Callable[[Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        return test(actual) if expected else not test(actual)
    return check


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": deep_equal,
    "ne": lambda actual, expected: not deep_equal(actual, expected),
    "gt": _ordered(lambda a, e: a > e),
    "gte": _ordered(lambda a, e: a >= e),
    "lt": _ordered(lambda a, e: a < e),
    "lte": _ordered(lambda a, e: a <= e),
    "in": _in,
    "nin": _nin,
    "match": _match,
    "isNumber": _predicate(_is_number),
    "isString": _predicate(lambda v: isinstance(v, str)),
    "isBoolean": _predicate(lambda v: isinstance(v, bool)),
    "isNull": _predicate(lambda v: v is None),
    "isDefined": _predicate(lambda v: v is not None),
    "isObject": _predicate(lambda v: isinstance(v, dict)),
    "isArray": _predicate(lambda v: isinstance(v, (list, tuple))),
}


def _evaluate_assertion(actual: Any, assertion: Any) -> Optional[bool]:
    """Resolve one assertion dict; None when it names no known operator."""
    if not isinstance(assertion, dict):
        return None
    for name, op in OPERATORS.items():
        if name in assertion:
            return op(actual, assertion[name])
    return None


# ==================== Public API ====================

def is_assertion_list(expected: Any) -> bool:
    """
    A list of dicts is an assertion list when at least one entry names an
    operator. Lists of plain objects (``[{"id": 1}]``) are literal values.
    """
    if not isinstance(expected, list) or not expected:
        return False
    if not all(isinstance(a, dict) for a in expected):
        return False
    return any(name in a for a in expected for name in OPERATORS)


def check(actual: Any, expected: Any) -> bool:
    if is_assertion_list(expected):
        outcomes: List[Optional[bool]] = [_evaluate_assertion(actual, a) for a in expected]
        return all(o is True for o in outcomes)

    if isinstance(expected, str):
        m = _INLINE_REGEX.match(expected)
        if m:
            return re.search(m.group(1), _display(actual)) is not None

    return deep_equal(actual, expected)


def check_result(actual: Any, expected: Any) -> CheckResult:
    """Compare `actual` to `expected` and wrap the outcome."""
    return CheckResult(expected=expected, actual=actual, passed=check(actual, expected))
