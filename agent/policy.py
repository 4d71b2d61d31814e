"""Nine-layer tool policy engine.

Tool access is decided by an ordered chain of independent layers. The first
layer that denies short-circuits evaluation; no later layer can re-grant a
tool an earlier one refused.

    1. profile: base access level (minimal, sre, full)
    2. provider_profile: per-LLM-provider override of the profile
    3. global: project-wide deny list
    4. provider_global: per-provider override of the global rules
    5. agent: per-agent allow-list
    6. agent_provider: per-provider override of agent rules
    7. group: channel/sender rules
    8. sandbox: container isolation restrictions
    9. context: the context's own allowed set (narrows, never widens)

Layers 2, 4, 6 and 7 pass everything by default and can be swapped in at
construction time.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import structlog

from agent.config import ToolPolicyConfig
from agent.errors import ToolDeniedError
from agent.models import ToolContext
from monitoring.metrics import record_policy_denial

logger = structlog.get_logger()

EXTENSION_SLOTS = ("provider_profile", "provider_global", "agent_provider", "group")


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    layer: str | None = None
    reason: str | None = None

    @classmethod
    def allow(cls) -> PolicyDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, layer: str, reason: str) -> PolicyDecision:
        return cls(allowed=False, layer=layer, reason=reason)


@runtime_checkable
class PolicyLayer(Protocol):
    name: str

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision: ...


class PassThroughLayer:
    """Extension slot that allows everything."""

    def __init__(self, name: str) -> None:
        self.name = name

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision:
        return PolicyDecision.allow()


class ProfileLayer:
    name = "profile"

    def __init__(self, engine: ToolPolicyEngine) -> None:
        self._engine = engine

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision:
        profile = context.tool_profile or self._engine.default_profile
        allowed = self._engine.get_allowed_tools_for_profile(profile)
        if "*" in allowed or tool_name in allowed:
            return PolicyDecision.allow()
        return PolicyDecision.deny(self.name, f"not in profile '{profile}'")


class GlobalDenyLayer:
    name = "global"

    def __init__(self, deny: set[str]) -> None:
        self._deny = deny

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision:
        if tool_name in self._deny:
            return PolicyDecision.deny(self.name, "globally denied")
        return PolicyDecision.allow()


class AgentLayer:
    name = "agent"

    def __init__(self, agent_policies: Mapping[str, set[str]]) -> None:
        self._policies = agent_policies

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision:
        if context.agent_id is None or context.agent_id not in self._policies:
            return PolicyDecision.allow()
        allowed = self._policies[context.agent_id]
        if "*" in allowed or tool_name in allowed:
            return PolicyDecision.allow()
        return PolicyDecision.deny(self.name, f"not allowed for agent '{context.agent_id}'")


class SandboxLayer:
    name = "sandbox"

    def __init__(self, restricted: set[str]) -> None:
        self._restricted = restricted

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision:
        if tool_name in self._restricted:
            return PolicyDecision.deny(self.name, "restricted in sandbox")
        return PolicyDecision.allow()


class ContextLayer:
    """Empty or wildcard context sets impose no extra restriction."""

    name = "context"

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision:
        if not context.allowed_tools or context.is_tool_allowed(tool_name):
            return PolicyDecision.allow()
        return PolicyDecision.deny(self.name, "not in context allow-list")


class ToolPolicyEngine:
    """Pure decision function over the ordered layer chain."""

    def __init__(
        self,
        config: ToolPolicyConfig | None = None,
        extensions: Mapping[str, PolicyLayer] | None = None,
    ) -> None:
        self._config = config or ToolPolicyConfig()
        extensions = dict(extensions or {})
        unknown = set(extensions) - set(EXTENSION_SLOTS)
        if unknown:
            raise ValueError(f"Unknown policy extension slots: {sorted(unknown)}")

        def slot(name: str) -> PolicyLayer:
            return extensions.get(name) or PassThroughLayer(name)

        self._profile = ProfileLayer(self)
        self._global = GlobalDenyLayer(set(self._config.global_deny))
        self._agent = AgentLayer({k: set(v) for k, v in self._config.agent_policies.items()})
        self._sandbox = SandboxLayer(set(self._config.sandbox_restricted))
        self._context = ContextLayer()

        self._layers: list[PolicyLayer] = [
            self._profile,
            slot("provider_profile"),
            self._global,
            slot("provider_global"),
            self._agent,
            slot("agent_provider"),
            slot("group"),
            self._sandbox,
            self._context,
        ]

    @property
    def default_profile(self) -> str:
        return self._config.default_profile

    @property
    def layers(self) -> list[PolicyLayer]:
        return list(self._layers)

    @property
    def approval_required(self) -> set[str]:
        return set(self._config.approval_required)

    def evaluate(self, tool_name: str, context: ToolContext) -> PolicyDecision:
        for layer in self._layers:
            decision = layer.evaluate(tool_name, context)
            if not decision.allowed:
                layer_name = decision.layer or layer.name
                logger.debug(
                    "tool_denied",
                    tool=tool_name,
                    layer=layer_name,
                    reason=decision.reason,
                    profile=context.tool_profile,
                    agent_id=context.agent_id,
                )
                record_policy_denial(layer_name)
                return PolicyDecision.deny(layer_name, decision.reason or "denied")
        return PolicyDecision.allow()

    def is_allowed(self, tool_name: str, context: ToolContext) -> bool:
        return self.evaluate(tool_name, context).allowed

    def enforce(self, tool_name: str, context: ToolContext) -> None:
        """Raise ToolDeniedError when any layer denies the tool."""
        decision = self.evaluate(tool_name, context)
        if not decision.allowed:
            raise ToolDeniedError(tool_name, decision.layer or "unknown")

    def get_allowed_tools_for_profile(self, profile_name: str | None) -> set[str]:
        """Resolve a profile, falling back to ``minimal`` and then to nothing."""
        profiles = self._config.profiles
        if profile_name and profile_name in profiles:
            return set(profiles[profile_name].allowed_tools)
        if "minimal" in profiles:
            return set(profiles["minimal"].allowed_tools)
        return set()

    def audit_tool_access(self, tool_name: str, context: ToolContext) -> dict[str, bool]:
        """Per-layer pass/fail for diagnostics. Extension slots are not reported."""
        return {
            "layer1_profile": self._profile.evaluate(tool_name, context).allowed,
            "layer3_global": self._global.evaluate(tool_name, context).allowed,
            "layer5_agent": self._agent.evaluate(tool_name, context).allowed,
            "layer8_sandbox": self._sandbox.evaluate(tool_name, context).allowed,
            "layer9_context": self._context.evaluate(tool_name, context).allowed,
        }
