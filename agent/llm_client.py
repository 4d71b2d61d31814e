"""Reasoner abstraction with Anthropic and mock implementations."""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import anthropic
import structlog

from agent.config import LlmConfig
from agent.models import Message, Role, ToolCall

logger = structlog.get_logger()

CONTINUE_FROM_SUMMARY = "Continue from the conversation summary above."


@runtime_checkable
class Reasoner(Protocol):
    """Proposes the next assistant message given the history and tool specs.

    Implementations must not raise on provider failure; they return
    ``Message.reasoner_error(...)`` instead.
    """

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> Message: ...


def to_anthropic_messages(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Split history into the system prompt and Messages API turns.

    Consecutive tool results are folded into one user turn, since the API
    expects every tool_result for an assistant turn in the next user turn.
    """
    system_parts: list[str] = []
    turns: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == Role.SYSTEM:
            if msg.content:
                system_parts.append(msg.content)
            continue

        if msg.role == Role.TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content or "",
            }
            if turns and turns[-1]["role"] == "user" and isinstance(turns[-1]["content"], list):
                turns[-1]["content"].append(block)
            else:
                turns.append({"role": "user", "content": [block]})
            continue

        if msg.role == Role.ASSISTANT:
            content: list[dict[str, Any]] = []
            if msg.content:
                content.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
            turns.append({"role": "assistant", "content": content or [{"type": "text", "text": ""}]})
            continue

        text = msg.content or ""
        if turns and turns[-1]["role"] == "user":
            previous = turns[-1]["content"]
            if isinstance(previous, list):
                previous.append({"type": "text", "text": text})
            else:
                turns[-1]["content"] = f"{previous}\n\n{text}"
        else:
            turns.append({"role": "user", "content": text})

    # A compacted tail may open on an assistant turn; the API wants a user turn first
    if turns and turns[0]["role"] == "assistant":
        turns.insert(0, {"role": "user", "content": CONTINUE_FROM_SUMMARY})

    return "\n\n".join(system_parts), turns


class AnthropicReasoner:
    """Reasoner backed by the Anthropic Claude API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        timeout_seconds: float = 120,
    ) -> None:
        self._api_key = api_key or os.environ["ANTHROPIC_API_KEY"]
        self._model = model or os.environ.get("LLM_MODEL", "claude-sonnet-4-20250514")
        self._max_tokens = max_tokens
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key, timeout=timeout_seconds)

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> Message:
        system, turns = to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": turns,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools

        try:
            api_response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("anthropic_api_error", model=self._model, error=str(e))
            return Message.reasoner_error(str(e))

        content_text = ""
        tool_calls: list[ToolCall] = []
        for block in api_response.content:
            if block.type == "text":
                content_text += block.text
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input)))

        logger.info(
            "anthropic_api_call",
            model=self._model,
            input_tokens=api_response.usage.input_tokens,
            output_tokens=api_response.usage.output_tokens,
            tool_calls=len(tool_calls),
        )

        return Message.assistant(content_text or None, tool_calls)


class MockReasoner:
    """Mock reasoner that replays pre-scripted messages for testing.

    Once the script runs out, *default* is used: a fixed message, a callable
    building one from the history, or a plain end-of-turn reply.
    """

    def __init__(
        self,
        responses: list[Message] | None = None,
        default: Message | Callable[[list[Message]], Message] | None = None,
    ) -> None:
        self._responses: list[Message] = responses or []
        self._call_index: int = 0
        self._default = default
        self.call_history: list[dict[str, Any]] = []

    def add_response(self, response: Message) -> None:
        self._responses.append(response)

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> Message:
        self.call_history.append({"messages": list(messages), "tools": tools})

        if self._call_index < len(self._responses):
            response = self._responses[self._call_index]
            self._call_index += 1
            return response

        if callable(self._default):
            return self._default(messages)
        if self._default is not None:
            return self._default
        return Message.assistant("Mock response (no scripted response available)")


def create_reasoner(provider: str | None = None, config: LlmConfig | None = None) -> Reasoner:
    """Factory function to create the appropriate reasoner based on config."""
    config = config or LlmConfig()
    provider = (provider or os.environ.get("LLM_PROVIDER") or config.provider).lower()

    if provider == "anthropic":
        return AnthropicReasoner(
            model=config.model,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
    elif provider == "mock":
        return MockReasoner()
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
