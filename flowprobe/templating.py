# flowprobe/templating.py
"""
Template rendering for workflow documents.

Values are rendered with Jinja2 using ``${{ ... }}`` as the expression
delimiters, so ordinary ``{{ }}`` inside request bodies is left alone.
A string that is a single expression keeps the native type of the result
(``"${{ captures.id }}"`` renders to ``42``, not ``"42"``); mixed strings
render to text. Undefined names resolve to None instead of raising.

Filters:
    fake          ``${{ "internet.email" | fake }}`` -> Faker value
    naughtystring ``${{ 3 | naughtystring }}``        -> adversarial string
"""

from __future__ import annotations

import logging
import random
import re
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional

from faker import Faker
from jinja2 import ChainableUndefined, Environment

logger = logging.getLogger(__name__)

VARIABLE_START = "${{"
VARIABLE_END = "}}"

_SINGLE_EXPRESSION = re.compile(r"^\$\{\{((?:(?!\}\}).)*)\}\}$", re.S)
_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


# ==================== Filters ====================

NAUGHTY_STRINGS = [
    "",
    "undefined",
    "undef",
    "null",
    "NULL",
    "(null)",
    "nil",
    "NIL",
    "true",
    "false",
    "None",
    "\\",
    "\\\\",
    "0",
    "1.00",
    "-1",
    "-0",
    "0.0/0",
    "1/0",
    "1E+02",
    "-9223372036854775808",
    "99999999999999999999999999999999999999999",
    "NaN",
    "Infinity",
    "0xffffffff",
    ",./;'[]\\-=",
    "<>?:\"{}|_+",
    "!@#$%^&*()`~",
    "    ",
    "\u200b",
    "\ufeff",
    "Ω≈ç√∫˜µ≤≥÷",
    "田中さんにあげて下さい",
    "🐵 🙈 🙉 🙊",
    "\u202etest",
    "<script>alert(123)</script>",
    "\"><script>alert(document.title)</script>",
    "<img src=x onerror=alert(1) />",
    "javascript:alert(1)",
    "' OR '1'='1",
    "1'; DROP TABLE users--",
    "%s%s%s%s%s",
    "%d",
    "{0}",
    "${7*7}",
    "{{7*7}}",
    "../../../../../../etc/passwd",
    "$HOME",
    "`touch /tmp/pwned`",
    "\r\nSet-Cookie: injected=1",
]


@lru_cache(maxsize=1)
def _faker() -> Faker:
    return Faker()


def fake(value: Any) -> Any:
    """Generate fake data by Faker provider name (``email``, ``person.firstName``)."""
    name = str(value).split(".")[-1]
    method = _CAMEL.sub("_", name).lower()
    generator = getattr(_faker(), method, None)
    if not callable(generator):
        raise ValueError(f"Unknown fake data type: {value!r}")
    return generator()


def naughtystring(value: Any) -> str:
    """Pick an adversarial string by index, or at random for non-integer input."""
    try:
        return NAUGHTY_STRINGS[int(value) % len(NAUGHTY_STRINGS)]
    except (TypeError, ValueError):
        return random.choice(NAUGHTY_STRINGS)


FILTERS: Dict[str, Callable[..., Any]] = {
    "fake": fake,
    "naughtystring": naughtystring,
}


# ==================== Renderer ====================

def _build_environment() -> Environment:
    env = Environment(
        variable_start_string=VARIABLE_START,
        variable_end_string=VARIABLE_END,
        block_start_string="${%",
        block_end_string="%}",
        comment_start_string="${#",
        comment_end_string="#}",
        undefined=ChainableUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    env.filters.update(FILTERS)
    return env


_env = _build_environment()


@lru_cache(maxsize=512)
def _compile_expression(source: str):
    return _env.compile_expression(source, undefined_to_none=True)


@lru_cache(maxsize=512)
def _compile_template(source: str):
    return _env.from_string(source)


def render_string(value: str, context: Mapping[str, Any]) -> Any:
    if VARIABLE_START not in value:
        return value

    m = _SINGLE_EXPRESSION.match(value.strip())
    if m:
        return _compile_expression(m.group(1).strip())(**context)

    return _compile_template(value).render(**context)


def render(value: Any, context: Mapping[str, Any]) -> Any:
    """Render every string inside a nested structure of dicts and lists."""
    if isinstance(value, str):
        return render_string(value, context)
    if isinstance(value, dict):
        return {k: render(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [render(v, context) for v in value]
    return value


def build_context(
    captures: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, Any]] = None,
    secrets: Optional[Mapping[str, Any]] = None,
    testdata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "captures": dict(captures or {}),
        "env": dict(env or {}),
        "secrets": dict(secrets or {}),
        "testdata": dict(testdata or {}),
    }


# ==================== Conditions ====================

def check_condition(expression: str, context: Mapping[str, Any]) -> bool:
    """Evaluate a step guard such as ``captures.id == 1`` (``${{ }}`` optional)."""
    source = expression.strip()
    m = _SINGLE_EXPRESSION.match(source)
    if m:
        source = m.group(1).strip()
    return bool(_compile_expression(source)(**context))
