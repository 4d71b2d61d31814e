"""Playbook engine: runs declarative remediation runbooks step by step.

Each step maps to one tool call. Step failures follow the step's policy:
``continue`` moves on, ``retry`` re-attempts up to ``max_retries`` times and
``abort`` (the default) fails the whole run. Runs can be aborted, are bounded
by a wall-clock deadline checked before every step, and are limited in number
by a semaphore.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Mapping
from typing import Any

import structlog

from agent.approvals import ApprovalWorkflow
from agent.collaborators import (
    InvestigationLauncher,
    LearningRecorder,
    Narrator,
    fire_and_forget,
)
from agent.config import AgentSettings
from agent.errors import (
    ApprovalRequiredError,
    PlaybookNotFoundError,
    StepFailureError,
    ToolExecutionError,
    ToolNotFoundError,
)
from agent.models import ToolContext, ToolResult, utcnow
from agent.state import InMemoryStore, KeyValueStore
from monitoring.audit import AuditTrail
from monitoring.logging import log_context
from monitoring.metrics import (
    record_playbook_execution,
    sentinel_playbook_step_failures_total,
    sentinel_running_executions,
)
from playbook.conditions import evaluate_condition, merge_parameters
from playbook.models import (
    TRIGGER_INCIDENT_SEVERITY,
    TRIGGER_SERVICE_UNHEALTHY,
    ExecutionStatus,
    Playbook,
    PlaybookExecution,
    Step,
    TriggerCondition,
)
from playbook.samples import sample_playbooks
from protocols.events import EventBus
from storage.repositories import ExecutionRepository, PlaybookRepository
from tools.registry import ToolRegistry

logger = structlog.get_logger()

DEFAULT_SERVICE_URL = "http://localhost:9090"


def matches_trigger(trigger: TriggerCondition, service_name: str, severity: str) -> bool:
    """Whether one trigger condition fires for the service/severity pair."""
    if trigger.type == TRIGGER_SERVICE_UNHEALTHY:
        # Severity is irrelevant: the service being down is reason enough
        return (
            trigger.service is None
            or trigger.service == "*"
            or trigger.service.lower() == service_name.lower()
        )
    if trigger.type == TRIGGER_INCIDENT_SEVERITY:
        severities = trigger.severities
        return bool(severities) and (
            "*" in severities or any(s.lower() == severity.lower() for s in severities)
        )
    return False


class _Cancelled(Exception):
    pass


class _DeadlineExceeded(Exception):
    def __init__(self, limit_seconds: int) -> None:
        super().__init__(f"Execution time limit of {limit_seconds}s exceeded")


class _ExecutionRun:
    """Mutable state of one run: output buffer, tools used, deadline, cancel flag."""

    def __init__(self, execution: PlaybookExecution, deadline_seconds: int, cancel: asyncio.Event) -> None:
        self.execution = execution
        self.output: list[str] = []
        self.tools_executed: list[str] = []
        self.cancel = cancel
        self._started: float | None = None
        self._deadline_seconds = deadline_seconds

    def start(self) -> None:
        """Start the deadline clock once the run holds an execution slot."""
        self._started = time.monotonic()

    def write(self, text: str) -> None:
        self.output.append(text)

    @property
    def text(self) -> str:
        return "".join(self.output)

    def check(self) -> None:
        if self.cancel.is_set():
            raise _Cancelled()
        if self._started is None or self._deadline_seconds <= 0:
            return
        if time.monotonic() - self._started > self._deadline_seconds:
            raise _DeadlineExceeded(self._deadline_seconds)


class PlaybookEngine:
    """Loads playbook definitions and executes them through the tool registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        settings: AgentSettings | None = None,
        definitions: PlaybookRepository | None = None,
        executions: ExecutionRepository | None = None,
        approvals: ApprovalWorkflow | None = None,
        running: KeyValueStore[PlaybookExecution] | None = None,
        events: EventBus | None = None,
        audit: AuditTrail | None = None,
        learning: LearningRecorder | None = None,
        investigations: InvestigationLauncher | None = None,
        narrator: Narrator | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or AgentSettings()
        self._definitions = definitions or PlaybookRepository()
        self._executions = executions or ExecutionRepository()
        self._approvals = approvals
        self._running: KeyValueStore[PlaybookExecution] = running if running is not None else InMemoryStore()
        self._events = events or EventBus()
        self._audit = audit or AuditTrail()
        self._learning = learning
        self._investigations = investigations
        self._narrator = narrator
        self._playbooks: dict[str, Playbook] = {}
        self._cancellations: InMemoryStore[asyncio.Event] = InMemoryStore()
        self._semaphore = asyncio.Semaphore(self._settings.playbooks.max_concurrent_executions)
        self._tasks: set[asyncio.Task[ToolResult]] = set()

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def load_playbooks(self) -> int:
        """(Re)load enabled definitions, seeding samples into an empty repository."""
        if self._definitions.count() == 0:
            for playbook in sample_playbooks():
                self._definitions.save(playbook)
            logger.info("sample_playbooks_seeded", count=len(sample_playbooks()))

        self._playbooks = {p.id: p for p in self._definitions.find_enabled()}
        logger.info("playbooks_loaded", count=len(self._playbooks))
        return len(self._playbooks)

    def register_playbook(self, playbook: Playbook) -> None:
        self._definitions.save(playbook)
        if playbook.enabled:
            self._playbooks[playbook.id] = playbook
        else:
            self._playbooks.pop(playbook.id, None)
        logger.info("playbook_registered", playbook_id=playbook.id, steps=len(playbook.steps))

    def get_playbook(self, playbook_id: str) -> Playbook | None:
        return self._playbooks.get(playbook_id)

    def all_playbooks(self) -> list[Playbook]:
        return list(self._playbooks.values())

    def list_playbooks(self) -> ToolResult:
        if not self._playbooks:
            return ToolResult.text("No playbooks available.")
        lines = ["Available Playbooks:"]
        for pb in self._playbooks.values():
            lines.append(f"- {pb.id}: {pb.name} ({len(pb.steps)} steps, approval: {pb.approval_required})")
            if pb.description:
                lines.append(f"  {pb.description}")
        return ToolResult.text("\n".join(lines))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        playbook_id: str,
        incident_id: str | None = None,
        params: Mapping[str, Any] | None = None,
        dry_run: bool = False,
        approved: bool = False,
    ) -> ToolResult:
        """Run a playbook to completion and return its textual output.

        *approved* grants blanket approval to a playbook that requires it;
        otherwise approval-gated steps file an approval request and fail.
        """
        playbook = self._playbooks.get(playbook_id)
        if playbook is None:
            return ToolResult.failure(str(PlaybookNotFoundError(playbook_id)))

        params = {**playbook.variables, **(params or {})}
        execution = PlaybookExecution(
            id=self._executions.new_id(),
            playbook_id=playbook_id,
            playbook_name=playbook.name,
            incident_id=incident_id,
            status=ExecutionStatus.PENDING if dry_run else ExecutionStatus.RUNNING,
            dry_run=dry_run,
            total_steps=len(playbook.steps),
        )
        self._executions.save(execution)
        self._running.put(execution.id, execution)
        cancel = self._cancellations.put_if_absent(execution.id, asyncio.Event)
        sentinel_running_executions.set(len(self._running))

        logger.info(
            "playbook_started",
            playbook_id=playbook_id,
            execution_id=execution.id,
            steps=len(playbook.steps),
            dry_run=dry_run,
        )
        self._audit.log("playbook-engine", "PLAYBOOK_RUN", playbook_id, {
            "name": playbook.name,
            "steps": len(playbook.steps),
            "dry_run": dry_run,
            "incident_id": incident_id or "",
            "execution_id": execution.id,
        })

        deadline = playbook.max_execution_time_seconds or self._settings.playbooks.max_execution_time_seconds
        run = _ExecutionRun(execution, deadline, cancel)
        run.write("=== DRY RUN ===\n" if dry_run else "=== EXECUTING ===\n")
        run.write(f"Playbook: {playbook.name}\nSteps: {len(playbook.steps)}\n\n")

        context = ToolContext(
            session_id=execution.id,
            tool_profile=self._settings.tool_policy.default_profile,
            allowed_tools={"*"},
            dry_run=dry_run,
            approval_granted=not playbook.approval_required or approved,
        )

        async with self._semaphore:
            run.start()
            with log_context(execution_id=execution.id, playbook_id=playbook_id):
                status = await self._run_steps(playbook, run, context, params)

        return self._finalize(playbook, run, status, params)

    def execute_async(
        self,
        playbook_id: str,
        incident_id: str | None = None,
        params: Mapping[str, Any] | None = None,
        dry_run: bool = False,
        approved: bool = False,
    ) -> asyncio.Task[ToolResult]:
        """Schedule ``execute`` on the running loop (fire-and-forget)."""
        task = asyncio.get_running_loop().create_task(
            self.execute(playbook_id, incident_id, params, dry_run, approved),
            name=f"playbook-{playbook_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_steps(
        self,
        playbook: Playbook,
        run: _ExecutionRun,
        context: ToolContext,
        params: dict[str, Any],
    ) -> ExecutionStatus:
        execution = run.execution
        try:
            for step in playbook.steps:
                run.check()
                execution.current_step = step.order
                self._executions.save(execution)

                run.write(f"Step {step.order}: {step.name}\n")

                if not evaluate_condition(step.condition, params):
                    run.write(f"  [Skipped: condition '{step.condition}' is false]\n\n")
                    continue

                if context.dry_run:
                    merged = merge_parameters(step.parameters, params)
                    run.write(
                        f"  Tool: {step.tool}\n  Parameters: {json.dumps(merged, default=str)}\n"
                        "  [Would execute]\n\n"
                    )
                    continue

                self._events.broadcast("playbook.step_started", {
                    "execution_id": execution.id,
                    "step": step.order,
                    "step_name": step.name,
                    "total_steps": len(playbook.steps),
                })

                result = await self._execute_step(playbook, step, context, params)
                run.tools_executed.append(step.tool)
                run.write(f"  Result: {result.text_content()}\n\n")
                self._audit.log("playbook-engine", "PLAYBOOK_STEP", playbook.id, {
                    "step": step.order,
                    "step_name": step.name,
                    "tool": step.tool,
                    "success": result.success,
                    "execution_id": execution.id,
                })

                if not result.success:
                    await self._handle_failure(playbook, step, result, run, context, params)
        except _Cancelled:
            run.write("[Execution cancelled]\n")
            return ExecutionStatus.CANCELLED
        except _DeadlineExceeded as e:
            run.write("[Execution time limit exceeded, stopping]\n")
            execution.error_message = str(e)
            return ExecutionStatus.FAILED
        except StepFailureError as e:
            execution.error_message = str(e)
            return ExecutionStatus.FAILED

        return ExecutionStatus.SUCCESS

    async def _handle_failure(
        self,
        playbook: Playbook,
        step: Step,
        result: ToolResult,
        run: _ExecutionRun,
        context: ToolContext,
        params: dict[str, Any],
    ) -> None:
        """Apply the step's failure policy. Raises StepFailureError to stop the run."""
        sentinel_playbook_step_failures_total.labels(playbook_id=playbook.id, tool_name=step.tool).inc()

        if step.on_failure == "continue":
            run.write("  [Step failed, continuing...]\n\n")
            logger.warning("playbook_step_failed", step=step.name, policy="continue", error=result.error)
            return

        if step.on_failure == "retry":
            for attempt in range(1, step.max_retries + 1):
                run.write(f"  [Retry {attempt}/{step.max_retries}]\n")
                await asyncio.sleep(step.retry_delay_seconds)
                run.check()
                result = await self._execute_step(playbook, step, context, params)
                if result.success:
                    run.write(f"  Result: {result.text_content()}\n\n")
                    return
                sentinel_playbook_step_failures_total.labels(playbook_id=playbook.id, tool_name=step.tool).inc()
            run.write("  [All retries failed, aborting]\n\n")
            logger.warning("playbook_step_failed", step=step.name, policy="retry", error=result.error)
            raise StepFailureError(step.name, "retry", result.error)

        run.write("  [Step failed, aborting playbook]\n\n")
        logger.warning("playbook_step_failed", step=step.name, policy="abort", error=result.error)
        raise StepFailureError(step.name, "abort", result.error)

    async def _execute_step(
        self,
        playbook: Playbook,
        step: Step,
        context: ToolContext,
        params: dict[str, Any],
    ) -> ToolResult:
        """Invoke the step's tool. Never raises; failures become failed results."""
        tool = self._registry.get_tool(step.tool)
        if tool is None:
            return ToolResult.failure(str(ToolNotFoundError(step.tool)))

        needs_approval = tool.requires_approval or step.tool in self._settings.tool_policy.approval_required
        if needs_approval and not context.is_tool_approved(step.tool):
            error = ApprovalRequiredError(step.tool)
            if self._approvals is not None:
                try:
                    request = self._approvals.request_approval(
                        step.tool, dict(step.parameters), context.session_id,
                    )
                    error = ApprovalRequiredError(step.tool, request.id)
                except Exception as e:
                    logger.warning("approval_request_failed", tool=step.tool, error=str(e))
            return ToolResult.failure(str(error))

        merged = merge_parameters(step.parameters, params)
        problems = tool.validate(merged)
        if problems:
            return ToolResult.failure(f"Invalid parameters for '{step.tool}': " + "; ".join(problems))

        try:
            if step.timeout_seconds > 0:
                return await asyncio.wait_for(tool.execute(merged, context), timeout=step.timeout_seconds)
            return await tool.execute(merged, context)
        except TimeoutError:
            return ToolResult.failure(f"Step timed out after {step.timeout_seconds}s")
        except Exception as e:
            return ToolResult.failure(str(ToolExecutionError(step.tool, str(e))))

    def _finalize(
        self,
        playbook: Playbook,
        run: _ExecutionRun,
        status: ExecutionStatus,
        params: dict[str, Any],
    ) -> ToolResult:
        execution = run.execution
        output = run.text

        # An abort already persisted the cancelled record; keep its status
        stored = self._executions.find_by_id(execution.id)
        if stored is not None and stored.status == ExecutionStatus.CANCELLED:
            status = ExecutionStatus.CANCELLED

        execution.status = status
        execution.completed_at = execution.completed_at or utcnow()
        execution.output = output
        execution.execution_time_ms = int((execution.completed_at - execution.started_at).total_seconds() * 1000)
        self._executions.save(execution)
        self._running.remove(execution.id)
        self._cancellations.remove(execution.id)
        sentinel_running_executions.set(len(self._running))
        record_playbook_execution(playbook.id, status.value)

        success = status == ExecutionStatus.SUCCESS
        duration_ms = execution.execution_time_ms
        logger.info(
            "playbook_completed",
            playbook_id=playbook.id,
            execution_id=execution.id,
            status=status.value,
            duration_ms=duration_ms,
        )

        self._events.broadcast("playbook.completed", {
            "execution_id": execution.id,
            "playbook": playbook.name,
            "status": status.value,
            "duration_ms": duration_ms,
        })
        if self._narrator is not None:
            fire_and_forget("narration", self._narrator.narrate_playbook_completed,
                            playbook.name, success, duration_ms, output)

        service_name = str(params.get("service_name") or playbook.id)
        if not success and status != ExecutionStatus.CANCELLED and not execution.dry_run:
            if self._investigations is not None:
                fire_and_forget("investigation", self._investigations.investigate_playbook_failure,
                                playbook.name, service_name, output)

        self._audit.log("playbook-engine", "PLAYBOOK_COMPLETED", playbook.id, {
            "name": playbook.name,
            "status": status.value,
            "duration_ms": duration_ms,
            "execution_id": execution.id,
        }, success=success)

        if not execution.dry_run and run.tools_executed and self._learning is not None:
            fire_and_forget(
                "learning",
                self._learning.record_resolution,
                execution.incident_id,
                service_name,
                f"Playbook: {playbook.name}",
                [f"playbook:{playbook.id}", *run.tools_executed],
                success,
                duration_ms,
            )

        metadata = {"execution_id": execution.id, "status": status.value}
        if success:
            return ToolResult.text(output, **metadata)
        return ToolResult(
            success=False,
            error=execution.error_message or f"Playbook {status.value}",
            content=ToolResult.text(output).content,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Status / control
    # ------------------------------------------------------------------

    def get_execution(self, execution_id: str) -> PlaybookExecution | None:
        return self._executions.find_by_id(execution_id)

    def running_executions(self) -> list[PlaybookExecution]:
        return [e for _, e in self._running.items()]

    def get_execution_status(self, execution_id: str) -> ToolResult:
        execution = self._executions.find_by_id(execution_id)
        if execution is None:
            return ToolResult.failure(f"Execution not found: {execution_id}")
        return ToolResult.text(
            "Playbook Execution Status:\n"
            f"ID: {execution.id}\n"
            f"Playbook: {execution.playbook_name}\n"
            f"Status: {execution.status.value}\n"
            f"Step: {execution.current_step}/{execution.total_steps}\n"
            f"Started: {execution.started_at.isoformat()}\n"
            f"Completed: {execution.completed_at.isoformat() if execution.completed_at else '-'}",
            status=execution.status.value,
        )

    def abort_execution(self, execution_id: str) -> ToolResult:
        """Mark a running execution cancelled; its step loop stops at the next check."""
        execution = self._running.remove(execution_id)
        if execution is None:
            return ToolResult.failure(f"No running execution found: {execution_id}")

        execution.status = ExecutionStatus.CANCELLED
        execution.completed_at = utcnow()
        self._executions.save(execution)
        cancel = self._cancellations.get(execution_id)
        if cancel is not None:
            cancel.set()
        sentinel_running_executions.set(len(self._running))
        logger.info("playbook_aborted", execution_id=execution_id)
        return ToolResult.text(f"Playbook execution {execution_id} aborted.")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def find_matching(self, service_name: str, severity: str) -> list[Playbook]:
        """Playbooks with at least one trigger matching the service/severity."""
        return [
            pb for pb in self._playbooks.values()
            if any(matches_trigger(t, service_name, severity) for t in pb.triggers)
        ]

    def auto_trigger(
        self,
        service_name: str,
        severity: str,
        incident_id: str | None = None,
        service_type: str = "docker",
    ) -> list[asyncio.Task[ToolResult]]:
        """Start every matching playbook that does not need approval.

        Returns the scheduled tasks; nothing runs while auto-execute is off.
        """
        if not self._settings.playbooks.auto_execute:
            logger.debug("auto_trigger_disabled", service=service_name)
            return []

        matching = self.find_matching(service_name, severity)
        if not matching:
            logger.info("auto_trigger_no_match", service=service_name, severity=severity)
            return []

        tasks: list[asyncio.Task[ToolResult]] = []
        for pb in matching:
            if pb.approval_required:
                logger.info("auto_trigger_skipped", playbook_id=pb.id, reason="approval_required")
                self._events.broadcast("playbook.auto_trigger_skipped", {
                    "playbook_id": pb.id,
                    "playbook_name": pb.name,
                    "reason": "approval_required",
                    "service": service_name,
                    "incident_id": incident_id or "",
                })
                continue

            logger.info("auto_triggering", playbook_id=pb.id, service=service_name, incident_id=incident_id)
            self._events.broadcast("playbook.auto_triggered", {
                "playbook_id": pb.id,
                "playbook_name": pb.name,
                "service": service_name,
                "incident_id": incident_id or "",
            })
            if self._narrator is not None:
                fire_and_forget("narration", self._narrator.narrate_playbook_triggered,
                                pb.name, service_name, incident_id)

            tasks.append(self.execute_async(pb.id, incident_id, {
                "service_name": service_name,
                "service_type": service_type,
                "service_url": DEFAULT_SERVICE_URL,
            }))
        return tasks
