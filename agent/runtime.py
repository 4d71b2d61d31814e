"""Wiring for the agent core: builds the shared registry, policy, workflow, loop and engine."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from agent.approvals import ApprovalWorkflow
from agent.collaborators import InMemoryLearningRecorder, LogNarrator, QueuedInvestigationLauncher
from agent.config import AgentSettings, load_settings
from agent.core import AgentLoop
from agent.llm_client import Reasoner, create_reasoner
from agent.policy import PolicyLayer, ToolPolicyEngine
from monitoring.audit import AuditTrail
from playbook.engine import PlaybookEngine
from protocols.events import EventBus
from storage.repositories import (
    ApprovalRepository,
    ExecutionRepository,
    IncidentRepository,
    PlaybookRepository,
)
from tools.health_check import HealthCheckTool
from tools.kubectl import CommandRunner, KubectlTool
from tools.log_search import LogSearchTool
from tools.metrics import MetricsQueryTool
from tools.playbook_run import PlaybookRunTool
from tools.registry import ToolRegistry
from tools.service_restart import RestartBackend, ServiceRestartTool

logger = structlog.get_logger()


@dataclass
class Runtime:
    """Everything one process shares between chat sessions and playbook runs."""

    settings: AgentSettings
    registry: ToolRegistry
    policy: ToolPolicyEngine
    approvals: ApprovalWorkflow
    agent: AgentLoop
    playbooks: PlaybookEngine
    events: EventBus
    audit: AuditTrail
    learning: InMemoryLearningRecorder
    investigations: QueuedInvestigationLauncher
    incidents: IncidentRepository = field(default_factory=IncidentRepository)


def build_runtime(
    settings: AgentSettings | None = None,
    reasoner: Reasoner | None = None,
    restart_backend: RestartBackend | None = None,
    kubectl_runner: CommandRunner | None = None,
    policy_extensions: dict[str, PolicyLayer] | None = None,
) -> Runtime:
    """Assemble the core with in-memory collaborators and the standard tool set."""
    settings = settings or load_settings()
    reasoner = reasoner or create_reasoner(config=settings.llm)

    events = EventBus()
    audit = AuditTrail()
    learning = InMemoryLearningRecorder()
    investigations = QueuedInvestigationLauncher()

    registry = ToolRegistry()
    policy = ToolPolicyEngine(settings.tool_policy, extensions=policy_extensions)
    approvals = ApprovalWorkflow(ApprovalRepository(), events, audit)

    engine = PlaybookEngine(
        registry,
        settings=settings,
        definitions=PlaybookRepository(),
        executions=ExecutionRepository(),
        approvals=approvals,
        events=events,
        audit=audit,
        learning=learning,
        investigations=investigations,
        narrator=LogNarrator(),
    )

    for tool in (
        HealthCheckTool(),
        LogSearchTool(),
        MetricsQueryTool(),
        ServiceRestartTool(restart_backend),
        KubectlTool(kubectl_runner),
        PlaybookRunTool(engine),
    ):
        registry.register(tool)
    engine.load_playbooks()

    agent = AgentLoop(
        reasoner,
        registry,
        policy,
        approvals,
        settings=settings,
        events=events,
        audit=audit,
        learning=learning,
    )

    logger.info(
        "runtime_ready",
        tools=registry.tool_count,
        playbooks=len(engine.all_playbooks()),
        profile=settings.tool_policy.default_profile,
    )
    return Runtime(
        settings=settings,
        registry=registry,
        policy=policy,
        approvals=approvals,
        agent=agent,
        playbooks=engine,
        events=events,
        audit=audit,
        learning=learning,
        investigations=investigations,
    )
