"""Fake tools and scripted reasoner replies shared by the test modules."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import JsonValue

from agent.models import Message, ToolCall, ToolContext, ToolResult
from tools.base import AgentTool

# ---------------------------------------------------------------------------
# Fake tools
# ---------------------------------------------------------------------------


class EchoTool(AgentTool):
    """Read-only tool that records every call and echoes its input."""

    name = "echo"
    description = "Echo the given text"
    category = "diagnostics"
    parameter_schema: ClassVar[dict[str, Any]] = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self) -> None:
        self.calls: list[dict[str, JsonValue]] = []

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        self.calls.append(dict(params))
        return ToolResult.text(f"echo: {params['text']}")


class RestartTool(AgentTool):
    """Approval-gated tool standing in for a mutating action."""

    name = "restart"
    description = "Restart a service"
    category = "remediation"
    requires_approval = True
    is_mutating = True
    parameter_schema: ClassVar[dict[str, Any]] = {
        "type": "object",
        "properties": {"service": {"type": "string"}},
        "required": ["service"],
    }

    def __init__(self) -> None:
        self.calls: list[dict[str, JsonValue]] = []

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        self.calls.append(dict(params))
        return ToolResult.text(f"restarted {params['service']}")


class FlakyTool(AgentTool):
    """Fails the first ``failures`` calls, then succeeds."""

    name = "flaky"
    description = "Sometimes fails"

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.attempts = 0

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        self.attempts += 1
        if self.attempts <= self.failures:
            return ToolResult.failure(f"attempt {self.attempts} failed")
        return ToolResult.text(f"ok after {self.attempts}")


class BrokenTool(AgentTool):
    """Raises instead of returning a result."""

    name = "broken"
    description = "Always raises"

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        raise RuntimeError("boom")


# ---------------------------------------------------------------------------
# Scripted reasoner replies
# ---------------------------------------------------------------------------


def tool_call_reply(name: str, arguments: dict[str, JsonValue] | None = None,
                    call_id: str = "call_1", text: str | None = None) -> Message:
    return Message.assistant(text, [ToolCall(id=call_id, name=name, arguments=arguments or {})])


def final_reply(text: str = "All done.") -> Message:
    return Message.assistant(text)


