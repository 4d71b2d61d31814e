"""Pydantic models for remediation playbooks and their executions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator
from pydantic.alias_generators import to_camel

from agent.models import utcnow

# Definitions may be written in camelCase (onFailure, maxRetries) or snake_case
_DEFINITION_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
)

TRIGGER_SERVICE_UNHEALTHY = "service_unhealthy"
TRIGGER_INCIDENT_SEVERITY = "incident_severity"


class TriggerCondition(BaseModel):
    """Rule matching an observed service/severity event to a playbook."""

    model_config = _DEFINITION_CONFIG

    type: str
    service: str | None = None
    severities: list[str] = Field(default_factory=list)
    alert_rule_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_severity(cls, data: Any) -> Any:
        # Older definitions carry a single "severity" string
        if isinstance(data, dict) and data.get("severity"):
            data = dict(data)
            severity = data.pop("severity")
            severities = list(data.get("severities") or [])
            if severity not in severities:
                severities.append(severity)
            data["severities"] = severities
        return data


class Step(BaseModel):
    """One step of a playbook, mapped onto a single tool call."""

    model_config = _DEFINITION_CONFIG

    order: int
    name: str
    description: str | None = None
    tool: str
    parameters: dict[str, JsonValue] = Field(default_factory=dict)
    on_failure: Literal["continue", "abort", "retry"] = "abort"
    max_retries: int = Field(default=0, ge=0)
    retry_delay_seconds: float = Field(default=0, ge=0)
    timeout_seconds: float = Field(default=0, ge=0)
    condition: str | None = None


class Playbook(BaseModel):
    """Declarative remediation runbook. Immutable once loaded for a run."""

    model_config = _DEFINITION_CONFIG

    id: str
    name: str
    description: str | None = None
    version: str = "1.0"
    author: str | None = None
    triggers: list[TriggerCondition] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)
    variables: dict[str, JsonValue] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    approval_required: bool = False
    max_execution_time_seconds: int = Field(default=0, ge=0)
    enabled: bool = True

    @model_validator(mode="after")
    def _order_steps(self) -> Playbook:
        ordered = sorted(self.steps, key=lambda s: s.order)
        if ordered != self.steps:
            object.__setattr__(self, "steps", ordered)
        return self


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)


class PlaybookExecution(BaseModel):
    """Record of one playbook run, updated after every step."""

    id: str
    playbook_id: str
    playbook_name: str | None = None
    incident_id: str | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    triggered_by: str = "sre-agent"
    dry_run: bool = False
    current_step: int = 0
    total_steps: int = 0
    output: str = ""
    error_message: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    execution_time_ms: int | None = None
