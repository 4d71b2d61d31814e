"""Placeholder substitution and step-condition evaluation for playbooks."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import JsonValue

_EXACT = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_.-]*)\}$")
_EMBEDDED = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.-]*)\}")
_COMPARISON = re.compile(r"^\s*(.+?)\s*(==|!=)\s*(.+?)\s*$")

_FALSY = {"", "false", "0", "no", "off", "none", "null"}


def substitute(value: JsonValue, variables: Mapping[str, Any]) -> JsonValue:
    """Resolve ``${name}`` placeholders in a single parameter value.

    A value that is exactly ``${name}`` takes the variable's value with its
    type intact. Placeholders embedded in longer strings are interpolated as
    text. Unknown names are left untouched.
    """
    if not isinstance(value, str):
        return value
    match = _EXACT.match(value)
    if match:
        name = match.group(1)
        return variables[name] if name in variables else value
    return _EMBEDDED.sub(
        lambda m: str(variables[m.group(1)]) if m.group(1) in variables else m.group(0),
        value,
    )


def merge_parameters(declared: Mapping[str, JsonValue], params: Mapping[str, Any]) -> dict[str, JsonValue]:
    """Merge invocation params into a step's declared parameters.

    Placeholders are resolved first, then any param key the step did not
    declare is injected as-is.
    """
    merged = {key: substitute(value, params) for key, value in declared.items()}
    for key, value in params.items():
        merged.setdefault(key, value)
    return merged


def _operand(token: str, variables: Mapping[str, Any]) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "'\"":
        return token[1:-1]
    resolved = substitute(token, variables)
    if isinstance(resolved, bool):
        return str(resolved).lower()
    return "" if resolved is None else str(resolved)


def evaluate_condition(expression: str | None, variables: Mapping[str, Any]) -> bool:
    """Evaluate a step condition.

    Supported forms: ``${var}`` (truthiness), ``${var} == value`` and
    ``${var} != value``. An empty expression is true. An unresolved
    placeholder counts as unset.
    """
    if expression is None or not expression.strip():
        return True

    comparison = _COMPARISON.match(expression)
    if comparison:
        left, op, right = comparison.groups()
        equal = _operand(left, variables) == _operand(right, variables)
        return equal if op == "==" else not equal

    match = _EXACT.match(expression.strip())
    if match:
        name = match.group(1)
        if name not in variables:
            return False
        value = variables[name]
        if isinstance(value, str):
            return value.strip().lower() not in _FALSY
        return bool(value)

    return expression.strip().lower() not in _FALSY
