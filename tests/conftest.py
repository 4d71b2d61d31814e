"""Shared test fixtures for Sentinel tests."""

from __future__ import annotations

import pytest
from fakes import BrokenTool, EchoTool, FlakyTool, RestartTool

from agent.approvals import ApprovalWorkflow
from agent.collaborators import InMemoryLearningRecorder, QueuedInvestigationLauncher
from agent.config import AgentSettings
from agent.policy import ToolPolicyEngine
from monitoring.audit import AuditTrail
from playbook.engine import PlaybookEngine
from protocols.events import EventBus
from storage.repositories import ApprovalRepository, PlaybookRepository
from tools.registry import ToolRegistry
from tools.service_restart import SimulatedRestartBackend

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> AgentSettings:
    """Full-access profile so fake tool names pass the profile layer."""
    return AgentSettings.model_validate({
        "tool_policy": {"default_profile": "full"},
    })


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def restart_tool() -> RestartTool:
    return RestartTool()


@pytest.fixture
def registry(echo_tool: EchoTool, restart_tool: RestartTool) -> ToolRegistry:
    return ToolRegistry([echo_tool, restart_tool, BrokenTool()])


@pytest.fixture
def policy(settings: AgentSettings) -> ToolPolicyEngine:
    return ToolPolicyEngine(settings.tool_policy)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def audit() -> AuditTrail:
    return AuditTrail()


@pytest.fixture
def approvals(events: EventBus, audit: AuditTrail) -> ApprovalWorkflow:
    return ApprovalWorkflow(ApprovalRepository(), events, audit)


@pytest.fixture
def learning() -> InMemoryLearningRecorder:
    return InMemoryLearningRecorder()


@pytest.fixture
def investigations() -> QueuedInvestigationLauncher:
    return QueuedInvestigationLauncher()


@pytest.fixture
def restart_backend() -> SimulatedRestartBackend:
    return SimulatedRestartBackend()


@pytest.fixture
def playbook_engine(
    registry: ToolRegistry,
    settings: AgentSettings,
    approvals: ApprovalWorkflow,
    events: EventBus,
    audit: AuditTrail,
    learning: InMemoryLearningRecorder,
    investigations: QueuedInvestigationLauncher,
) -> PlaybookEngine:
    """Engine with an empty definition set; tests register their own playbooks."""
    registry.register(FlakyTool())
    return PlaybookEngine(
        registry,
        settings=settings,
        definitions=PlaybookRepository(),
        approvals=approvals,
        events=events,
        audit=audit,
        learning=learning,
        investigations=investigations,
    )
