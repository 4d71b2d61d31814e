"""Pydantic models for the Sentinel operations agent."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue


def utcnow() -> datetime:
    return datetime.now(UTC)


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class LoopState(str, Enum):
    """Lifecycle of a single agent loop invocation."""

    RUNNING = "running"
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    TRUNCATED = "truncated"
    ERRORED = "errored"


class ToolCall(BaseModel):
    """A tool invocation requested by the reasoner."""

    id: str
    name: str
    arguments: dict[str, JsonValue] = Field(default_factory=dict)


class Message(BaseModel):
    """A single message in an agent conversation."""

    role: Role
    content: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str | None, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def reasoner_error(cls, error: str) -> Message:
        """Assistant reply standing in for a failed reasoner call."""
        return cls(role=Role.ASSISTANT, content=f"Error: {error}", error=error)

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> Message:
        return cls(role=Role.TOOL, tool_call_id=tool_call_id, content=content)


class ContentBlock(BaseModel):
    """One block of tool output."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text", "json", "table", "metric"] = "text"
    text: str | None = None
    data: JsonValue = None

    def render(self) -> str | None:
        """Render the block as plain text for the conversation history."""
        if self.type == "text":
            return self.text
        if self.type == "table" and isinstance(self.data, dict):
            columns = [str(c) for c in self.data.get("columns") or []]
            rows = self.data.get("rows") or []
            lines = [" | ".join(columns)] if columns else []
            for row in rows if isinstance(rows, list) else []:
                cells = row if isinstance(row, list) else [row]
                lines.append(" | ".join(str(c) for c in cells))
            return "\n".join(lines)
        if self.type == "metric" and isinstance(self.data, dict):
            unit = self.data.get("unit") or ""
            return f"{self.data.get('name')}: {self.data.get('value')}{unit}".rstrip()
        if self.data is not None:
            return json.dumps(self.data, default=str)
        return self.text


class ToolResult(BaseModel):
    """Result of a tool execution. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    content: list[ContentBlock] = Field(default_factory=list)
    error: str | None = None
    metadata: dict[str, JsonValue] = Field(default_factory=dict)

    @classmethod
    def text(cls, text: str, **metadata: Any) -> ToolResult:
        return cls(content=[ContentBlock(type="text", text=text)], metadata=metadata)

    @classmethod
    def structured(cls, data: JsonValue, **metadata: Any) -> ToolResult:
        return cls(content=[ContentBlock(type="json", data=data)], metadata=metadata)

    @classmethod
    def table(cls, columns: list[str], rows: list[list[JsonValue]]) -> ToolResult:
        return cls(content=[ContentBlock(type="table", data={"columns": columns, "rows": rows})])

    @classmethod
    def metric(cls, name: str, value: float, unit: str = "") -> ToolResult:
        return cls(content=[ContentBlock(type="metric", data={"name": name, "value": value, "unit": unit})])

    @classmethod
    def failure(cls, message: str) -> ToolResult:
        return cls(
            success=False,
            error=message,
            content=[ContentBlock(type="text", text=f"Error: {message}")],
        )

    def text_content(self) -> str:
        parts = [block.render() for block in self.content]
        return "\n".join(p for p in parts if p).strip()


class ToolContext(BaseModel):
    """Per-session (or per-execution) authorization and environment state."""

    session_id: str
    agent_id: str | None = None
    tool_profile: str | None = None
    allowed_tools: set[str] = Field(default_factory=set)
    approved_tools: set[str] = Field(default_factory=set)
    dry_run: bool = False
    approval_granted: bool = False
    environment: dict[str, str] = Field(default_factory=dict)

    def is_tool_allowed(self, tool_name: str) -> bool:
        return "*" in self.allowed_tools or tool_name in self.allowed_tools

    def is_tool_approved(self, tool_name: str) -> bool:
        return self.approval_granted or tool_name in self.approved_tools

    def approve(self, tool_name: str) -> None:
        self.approved_tools.add(tool_name)


class Session(BaseModel):
    """A conversation between an operator and the agent loop."""

    session_id: str
    started_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)
    messages: list[Message] = Field(default_factory=list)
    state: LoopState = LoopState.RUNNING

    def touch(self) -> None:
        self.last_active_at = utcnow()


class PromptContext(BaseModel):
    """Caller-supplied context used when building the system prompt."""

    current_incident_id: str | None = None
    service: str | None = None
    additional_context: str | None = None


class AgentResponse(BaseModel):
    """Outcome of one agent loop invocation."""

    session_id: str
    response: str = ""
    tools_used: list[str] = Field(default_factory=list)
    iterations: int = 0
    state: LoopState = LoopState.COMPLETED
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class ApprovalRequest(BaseModel):
    """Human authorization decision gating a sensitive tool call."""

    id: str
    tool_name: str
    parameters: str = "{}"
    session_id: str | None = None
    incident_id: str | None = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_at: datetime = Field(default_factory=utcnow)
    responded_at: datetime | None = None
    responded_by: str | None = None
    reason: str | None = None


class Incident(BaseModel):
    """Minimal incident record used by playbook triggers and learning."""

    incident_id: str
    service: str
    severity: str
    title: str = ""
    status: Literal["open", "mitigated", "resolved"] = "open"
    created_at: datetime = Field(default_factory=utcnow)


class ResolutionRecord(BaseModel):
    """A recorded resolution attempt, consumed by pattern mining."""

    incident_id: str | None = None
    service: str
    title: str | None = None
    tool_sequence: list[str] = Field(default_factory=list)
    success: bool
    resolution_time_ms: int
    created_at: datetime = Field(default_factory=utcnow)


class AuditEntry(BaseModel):
    """One record in the audit trail."""

    actor: str
    action: str
    target: str
    details: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = None
    success: bool = True
    timestamp: datetime = Field(default_factory=utcnow)


class Event(BaseModel):
    """Structured event broadcast to subscribers."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
