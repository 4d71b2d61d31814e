"""Tool capability contract: every operational tool the agent can call."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import JsonValue

from agent.models import ToolContext, ToolResult

# JSON-schema primitive types mapped onto the JSON values tool arguments can hold
_TYPE_CHECKS: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
    "null": (type(None),),
}


def _matches_type(value: JsonValue, expected: str) -> bool:
    types = _TYPE_CHECKS.get(expected)
    if types is None:
        return True
    # bool is an int subclass; keep booleans out of numeric slots
    if isinstance(value, bool) and expected in ("integer", "number"):
        return False
    return isinstance(value, types)


def validate_arguments(schema: dict[str, Any], arguments: dict[str, JsonValue]) -> list[str]:
    """Check *arguments* against a tool's parameter schema.

    Only the subset of JSON schema the tools declare is enforced: required
    keys, primitive ``type`` (or list of types) and ``enum``. Unknown keys are
    allowed since playbooks inject context parameters.

    Returns:
        Human-readable problems; empty when the arguments are valid.
    """
    problems: list[str] = []
    properties: dict[str, Any] = schema.get("properties", {})

    for key in schema.get("required", []):
        if key not in arguments or arguments[key] is None:
            problems.append(f"missing required parameter '{key}'")

    for key, value in arguments.items():
        prop = properties.get(key)
        if not prop or value is None:
            continue
        expected = prop.get("type")
        if expected is not None:
            expected_types = expected if isinstance(expected, list) else [expected]
            if not any(_matches_type(value, t) for t in expected_types):
                problems.append(f"parameter '{key}' must be of type {'/'.join(expected_types)}")
                continue
        allowed = prop.get("enum")
        if allowed is not None and value not in allowed:
            problems.append(f"parameter '{key}' must be one of {allowed}")

    return problems


class AgentTool(ABC):
    """A named, described unit of work callable by the agent or a playbook.

    Subclasses set the class attributes and implement ``execute``. The core
    never inspects what a tool does, only these declarations.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    category: ClassVar[str] = "general"
    parameter_schema: ClassVar[dict[str, Any]] = {"type": "object", "properties": {}}
    requires_approval: ClassVar[bool] = False
    is_mutating: ClassVar[bool] = False

    @abstractmethod
    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        """Run the tool. Should return a failed ToolResult rather than raise."""

    def validate(self, params: dict[str, JsonValue]) -> list[str]:
        return validate_arguments(self.parameter_schema, params)

    def to_schema(self) -> dict[str, Any]:
        """Tool definition in the reasoner's tool-use format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameter_schema,
        }
