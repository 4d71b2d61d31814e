"""Configuration for the agent core: pydantic models loaded from YAML + env.

Load order (later wins):
    1. built-in defaults (the models below)
    2. YAML file given explicitly or via SENTINEL_CONFIG
    3. environment overrides (LLM_PROVIDER, LLM_MODEL, SENTINEL_TOOL_PROFILE,
       SENTINEL_PLAYBOOK_AUTO_EXECUTE)
"""

from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from copy import deepcopy
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agent.errors import ConfigError

logger = structlog.get_logger()

MAX_ITERATIONS = 25
MAX_CONVERSATION_TOKENS = 128_000


def _default_profiles() -> dict[str, ToolProfile]:
    return {
        "minimal": ToolProfile(allowed_tools=["health_check"]),
        "sre": ToolProfile(allowed_tools=[
            "health_check", "log_search", "metrics_query",
            "service_restart", "kubectl_exec", "playbook_run",
        ]),
        "full": ToolProfile(allowed_tools=["*"]),
    }


class ToolProfile(BaseModel):
    """Named bundle of allowed tool names (``*`` allows everything)."""

    model_config = ConfigDict(extra="allow")

    allowed_tools: list[str] = Field(default_factory=list)


class ToolPolicyConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    default_profile: str = "sre"
    profiles: dict[str, ToolProfile] = Field(default_factory=_default_profiles)
    # Tools that always require human approval, on top of each tool's own flag
    approval_required: list[str] = Field(default_factory=list)
    global_deny: list[str] = Field(default_factory=list)
    sandbox_restricted: list[str] = Field(default_factory=list)
    agent_policies: dict[str, list[str]] = Field(default_factory=dict)


class AgentLoopConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    max_iterations: int = Field(default=MAX_ITERATIONS, ge=1)
    max_conversation_tokens: int = Field(default=MAX_CONVERSATION_TOKENS, ge=1)
    compaction_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    keep_recent_messages: int = Field(default=6, ge=1, le=10)
    session_idle_timeout_seconds: int = Field(default=3600, ge=0)


class PlaybookConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    auto_execute: bool = False
    max_execution_time_seconds: int = Field(default=300, ge=0)
    max_concurrent_executions: int = Field(default=4, ge=1)


class LlmConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = Field(default=4096, ge=1)
    timeout_seconds: int = Field(default=120, ge=1)

    @field_validator("provider")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


class AgentSettings(BaseModel):
    """Root configuration object consumed by the agent core."""

    model_config = ConfigDict(extra="allow")

    tool_policy: ToolPolicyConfig = Field(default_factory=ToolPolicyConfig)
    agent: AgentLoopConfig = Field(default_factory=AgentLoopConfig)
    playbooks: PlaybookConfig = Field(default_factory=PlaybookConfig)
    llm: LlmConfig = Field(default_factory=LlmConfig)


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Recursively merge *overlay* into *base*; lists are replaced, not appended."""
    for key, value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, Mapping):
            _deep_merge(base[key], value)
            continue
        base[key] = deepcopy(value)
    return base


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if provider := os.environ.get("LLM_PROVIDER"):
        overrides.setdefault("llm", {})["provider"] = provider
    if model := os.environ.get("LLM_MODEL"):
        overrides.setdefault("llm", {})["model"] = model
    if profile := os.environ.get("SENTINEL_TOOL_PROFILE"):
        overrides.setdefault("tool_policy", {})["default_profile"] = profile
    auto = os.environ.get("SENTINEL_PLAYBOOK_AUTO_EXECUTE")
    if auto is not None:
        overrides.setdefault("playbooks", {})["auto_execute"] = auto.strip().lower() in {"1", "true", "yes", "on"}
    return overrides


def load_settings(path: str | Path | None = None, *, use_env: bool = True) -> AgentSettings:
    """Build AgentSettings from defaults, an optional YAML file and the environment."""
    merged: dict[str, Any] = AgentSettings().model_dump()

    path = path or os.environ.get("SENTINEL_CONFIG")
    if path:
        config_path = Path(path)
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read config {config_path}: {e}") from e
        if not isinstance(loaded, Mapping):
            raise ConfigError(f"Config root must be a mapping: {config_path}")
        # Profiles are replaced wholesale so a file can drop a built-in profile
        tool_policy = loaded.get("tool_policy")
        profiles = tool_policy.get("profiles") if isinstance(tool_policy, Mapping) else None
        _deep_merge(merged, loaded)
        if profiles is not None:
            merged["tool_policy"]["profiles"] = deepcopy(profiles)
        logger.info("config_loaded", path=str(config_path))

    if use_env:
        _deep_merge(merged, _env_overrides())

    try:
        return AgentSettings.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
