"""Agent loop: drives the reason / call-tools / observe cycle for each chat session."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta

import structlog

from agent.approvals import ApprovalWorkflow
from agent.collaborators import LearningRecorder, fire_and_forget
from agent.config import AgentLoopConfig, AgentSettings
from agent.errors import (
    ReasonerError,
    SessionNotFoundError,
    ToolDeniedError,
    ToolExecutionError,
    ToolNotFoundError,
)
from agent.llm_client import Reasoner
from agent.models import (
    AgentResponse,
    LoopState,
    Message,
    PromptContext,
    Role,
    Session,
    ToolCall,
    ToolContext,
    ToolResult,
    utcnow,
)
from agent.policy import ToolPolicyEngine
from agent.prompts import SUMMARY_PROMPT, build_system_prompt
from agent.state import InMemoryStore, KeyValueStore
from monitoring.audit import AuditTrail
from monitoring.logging import log_context
from monitoring.metrics import (
    record_agent_run,
    record_tool_call,
    sentinel_active_sessions,
    sentinel_agent_compactions_total,
)
from protocols.events import EventBus
from tools.base import AgentTool
from tools.registry import ToolRegistry

logger = structlog.get_logger()

WAITING_NOTICE = "\n[Waiting for human approval to continue...]"
TRUNCATION_NOTICE = "\n[Agent reached maximum iterations. Some analysis may be incomplete.]"
SESSION_EXPIRED = "Session expired. Please re-ask your question. The tool is now pre-approved."
ABORTED = "aborted"
AUTONOMOUS_PREFIX = "auto-"


def approval_pending_message(tool_name: str) -> str:
    return (
        f"Tool '{tool_name}' requires human approval. An approval request has been created "
        "and is visible on the Pending Approvals page. The agent will automatically "
        "resume once approved."
    )


def approval_granted_message(tool_name: str) -> str:
    return (
        f"The tool '{tool_name}' has been approved by a human operator. "
        "Please proceed with executing it to complete the task."
    )


def estimate_tokens(messages: list[Message]) -> int:
    """Rough token count: four characters per token."""
    return sum(len(m.content) // 4 for m in messages if m.content)


def _truncate(text: str | None, max_length: int) -> str:
    if not text:
        return ""
    return text[:max_length] + "..." if len(text) > max_length else text


class _Aborted(Exception):
    pass


class _RunState:
    """Accumulators for one loop invocation."""

    def __init__(self) -> None:
        self.text: list[str] = []
        self.tools_used: list[str] = []
        self.iterations = 0
        self.suspended = False

    @property
    def response(self) -> str:
        return "".join(self.text)


class AgentLoop:
    """Runs the reasoning loop for chat sessions.

    Each invocation asks the reasoner for the next message, executes requested
    tool calls through the policy chain and registry, and stops on completion,
    approval suspension, abort or the iteration bound. Invocations for one
    session never overlap.
    """

    def __init__(
        self,
        reasoner: Reasoner,
        registry: ToolRegistry,
        policy: ToolPolicyEngine,
        approvals: ApprovalWorkflow,
        settings: AgentSettings | None = None,
        sessions: KeyValueStore[Session] | None = None,
        contexts: KeyValueStore[ToolContext] | None = None,
        events: EventBus | None = None,
        audit: AuditTrail | None = None,
        learning: LearningRecorder | None = None,
    ) -> None:
        self._reasoner = reasoner
        self._registry = registry
        self._policy = policy
        self._approvals = approvals
        self._settings = settings or AgentSettings()
        self._sessions: KeyValueStore[Session] = sessions if sessions is not None else InMemoryStore()
        self._contexts: KeyValueStore[ToolContext] = contexts if contexts is not None else InMemoryStore()
        self._events = events or EventBus()
        self._audit = audit or AuditTrail()
        self._learning = learning
        self._locks: InMemoryStore[asyncio.Lock] = InMemoryStore()
        self._cancellations: InMemoryStore[asyncio.Event] = InMemoryStore()

        approvals.set_resume_handler(self)

    @property
    def config(self) -> AgentLoopConfig:
        return self._settings.agent

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def run(
        self,
        session_id: str,
        user_message: str | None,
        prompt_context: PromptContext | None = None,
    ) -> AgentResponse:
        """Run one loop invocation. Never raises for reasoner or tool failures.

        A None *user_message* continues the existing conversation.
        """
        lock = self._locks.put_if_absent(session_id, asyncio.Lock)
        try:
            async with lock:
                with log_context(session_id=session_id):
                    return await self._invoke(session_id, user_message, prompt_context or PromptContext())
        finally:
            self._discard_lock(session_id)

    def submit(
        self,
        session_id: str,
        user_message: str | None,
        prompt_context: PromptContext | None = None,
    ) -> asyncio.Task[AgentResponse]:
        """Schedule ``run`` on the running event loop and return its task."""
        return asyncio.get_running_loop().create_task(
            self.run(session_id, user_message, prompt_context),
            name=f"agent-{session_id}",
        )

    async def resume_after_approval(self, session_id: str, tool_name: str) -> AgentResponse:
        """Mark *tool_name* approved for the session and continue the conversation."""
        logger.info("session_resuming", session_id=session_id, tool=tool_name)

        lock = self._locks.put_if_absent(session_id, asyncio.Lock)
        try:
            async with lock:
                context = self._contexts.get(session_id)
                if context is not None:
                    context.approve(tool_name)

                session = self._sessions.get(session_id)
                if session is None:
                    logger.warning("session_resume_failed", session_id=session_id, reason="not found")
                    return AgentResponse(
                        session_id=session_id,
                        response=SESSION_EXPIRED,
                        state=LoopState.ERRORED,
                        error=str(SessionNotFoundError(session_id)),
                    )

                session.messages.append(Message.user(approval_granted_message(tool_name)))
                with log_context(session_id=session_id):
                    return await self._invoke(session_id, None, PromptContext())
        finally:
            self._discard_lock(session_id)

    def abort(self, session_id: str) -> None:
        """Drop the session and stop any in-flight invocation at its next check."""
        self._sessions.remove(session_id)
        self._contexts.remove(session_id)
        cancel = self._cancellations.remove(session_id)
        if cancel is not None:
            cancel.set()
        self._discard_lock(session_id)
        sentinel_active_sessions.set(len(self._sessions))
        logger.info("session_aborted", session_id=session_id)

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_context(self, session_id: str) -> ToolContext | None:
        return self._contexts.get(session_id)

    def active_sessions(self) -> dict[str, Session]:
        return dict(self._sessions.items())

    def expire_idle_sessions(self, max_idle_seconds: float | None = None) -> list[str]:
        """Abort sessions idle for longer than the limit. Returns the expired ids."""
        limit = max_idle_seconds if max_idle_seconds is not None else self.config.session_idle_timeout_seconds
        cutoff = utcnow() - timedelta(seconds=limit)
        expired = [sid for sid, s in self._sessions.items() if s.last_active_at < cutoff]
        for session_id in expired:
            self.abort(session_id)
        if expired:
            logger.info("sessions_expired", count=len(expired))
        return expired

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _invoke(self, session_id: str, user_message: str | None, prompt_context: PromptContext) -> AgentResponse:
        start = time.perf_counter()
        state = _RunState()
        logger.info("agent_session_started", session_id=session_id, message=_truncate(user_message, 100))

        try:
            profile = self._policy.default_profile
            allowed = self._policy.get_allowed_tools_for_profile(profile)
            available = self._registry.get_tools_for_profile(allowed)

            session = self._sessions.put_if_absent(session_id, lambda: Session(session_id=session_id))
            if not session.messages:
                session.messages.append(Message.system(build_system_prompt(available, prompt_context)))
            if user_message is not None:
                session.messages.append(Message.user(user_message))
            session.state = LoopState.RUNNING
            session.touch()
            sentinel_active_sessions.set(len(self._sessions))

            context = self._contexts.put_if_absent(
                session_id,
                lambda: ToolContext(session_id=session_id, tool_profile=profile),
            )
            # Profile may have changed between calls; approvals are kept
            context.tool_profile = profile
            context.allowed_tools = set(allowed)

            cancel = self._cancellations.put_if_absent(session_id, asyncio.Event)
            final = await self._loop(session, context, available, cancel, state)
            session.state = final
        except _Aborted:
            return self._finish(session_id, state, LoopState.ERRORED, error=ABORTED)
        except ReasonerError as e:
            logger.error("reasoner_failed", session_id=session_id, error=str(e))
            self._mark(session_id, LoopState.ERRORED)
            return self._finish(session_id, state, LoopState.ERRORED, error=str(e))
        except Exception as e:
            logger.error("agent_loop_failed", session_id=session_id, error=str(e), exc_info=True)
            self._mark(session_id, LoopState.ERRORED)
            if not state.text:
                state.text.append(f"Agent error: {e}")
            return self._finish(session_id, state, LoopState.ERRORED, error=str(e))

        response = self._finish(session_id, state, final)
        if final == LoopState.COMPLETED and state.tools_used and self._learning is not None:
            fire_and_forget(
                "learning",
                self._learning.record_resolution,
                prompt_context.current_incident_id,
                prompt_context.service or "unknown",
                user_message,
                list(state.tools_used),
                True,
                int((time.perf_counter() - start) * 1000),
            )
        return response

    async def _loop(
        self,
        session: Session,
        context: ToolContext,
        available: list[AgentTool],
        cancel: asyncio.Event,
        state: _RunState,
    ) -> LoopState:
        tool_specs = self._registry.get_schemas(available)

        while state.iterations < self.config.max_iterations:
            if cancel.is_set():
                raise _Aborted()
            state.iterations += 1
            logger.debug("agent_loop_iteration", session_id=session.session_id, iteration=state.iterations)

            reply = await self._reasoner.chat(list(session.messages), tool_specs)
            if reply.error is not None:
                if reply.content:
                    state.text.append(reply.content)
                raise ReasonerError(reply.error)
            session.messages.append(reply)
            session.touch()

            if not reply.tool_calls:
                if reply.content:
                    state.text.append(reply.content)
                return LoopState.COMPLETED

            if reply.content:
                state.text.append(reply.content + "\n")

            for call in reply.tool_calls:
                if cancel.is_set():
                    raise _Aborted()
                session.messages.append(Message.tool_result(call.id, await self._handle_call(call, session, context, state)))

            if state.suspended:
                state.text.append(WAITING_NOTICE)
                return LoopState.SUSPENDED

            budget = self.config.max_conversation_tokens * self.config.compaction_threshold
            if estimate_tokens(session.messages) > budget:
                await self.compact(session)

        state.text.append(TRUNCATION_NOTICE)
        return LoopState.TRUNCATED

    async def _handle_call(self, call: ToolCall, session: Session, context: ToolContext, state: _RunState) -> str:
        """Deny, escalate or execute one tool call and return the tool-result text."""
        session_id = session.session_id
        logger.info("tool_requested", session_id=session_id, tool=call.name, call_id=call.id)

        decision = self._policy.evaluate(call.name, context)
        if not decision.allowed:
            return str(ToolDeniedError(call.name, decision.layer or "unknown"))

        tool = self._registry.get_tool(call.name)
        if tool is None:
            return str(ToolNotFoundError(call.name))

        needs_approval = tool.requires_approval or call.name in self._policy.approval_required
        if needs_approval and not context.is_tool_approved(call.name):
            try:
                self._approvals.request_approval(call.name, call.arguments, session_id)
            except Exception as e:
                logger.warning("approval_request_failed", tool=call.name, error=str(e))
            state.suspended = True
            return approval_pending_message(call.name)

        problems = tool.validate(call.arguments)
        if problems:
            return f"Invalid arguments for tool '{call.name}': " + "; ".join(problems)

        autonomous = session_id.startswith(AUTONOMOUS_PREFIX)
        if autonomous:
            self._events.broadcast("autonomous.tool_call", {
                "session_id": session_id,
                "tool": call.name,
                "step": "executing",
            })

        start = time.perf_counter()
        try:
            result = await tool.execute(call.arguments, context)
        except Exception as e:
            error = ToolExecutionError(call.name, str(e))
            record_tool_call(call.name, time.perf_counter() - start, success=False)
            logger.error("tool_execution_failed", session_id=session_id, tool=call.name, error=str(e))
            self._audit.log("agent", "TOOL_EXECUTED", call.name, {"error": str(e)}, session_id=session_id, success=False)
            if autonomous:
                self._broadcast_result(session_id, call.name, f"Error: {_truncate(str(e), 100)}", False)
            return str(error)

        record_tool_call(call.name, time.perf_counter() - start, success=result.success)
        state.tools_used.append(call.name)
        text = _result_text(result)
        logger.debug("tool_result", session_id=session_id, tool=call.name, result=_truncate(text, 200))
        self._audit.log(
            "agent", "TOOL_EXECUTED", call.name,
            {"arguments": call.arguments, "success": result.success},
            session_id=session_id,
            success=result.success,
        )
        if autonomous:
            self._broadcast_result(session_id, call.name, _truncate(text, 150), result.success)
        return text

    def _broadcast_result(self, session_id: str, tool_name: str, summary: str, success: bool) -> None:
        self._events.broadcast("autonomous.tool_result", {
            "session_id": session_id,
            "tool": tool_name,
            "summary": summary,
            "success": success,
        })

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    async def compact(self, session: Session) -> None:
        """Replace history with [system, summary, recent...] to fit the token budget.

        The recent tail never starts with an orphaned tool result: it is
        extended backwards to the assistant turn that issued the calls, and
        to the user message that prompted that turn when it sits right
        before it. Nothing is compacted when only an earlier summary would be dropped.
        """
        messages = session.messages
        if len(messages) <= 4:
            return

        keep = min(self.config.keep_recent_messages, len(messages) - 1)
        dropped = list(messages[1:len(messages) - keep])
        recent = list(messages[len(messages) - keep:])
        while dropped and recent[0].role == Role.TOOL:
            recent.insert(0, dropped.pop())
        if dropped and recent[0].tool_calls and dropped[-1].role == Role.USER:
            recent.insert(0, dropped.pop())
        if all(m.role == Role.SYSTEM for m in dropped):
            logger.debug("conversation_compaction_skipped", session_id=session.session_id, messages=len(messages))
            return

        logger.info("conversation_compacting", session_id=session.session_id, messages=len(messages))
        summary = await self._summarize(session.session_id, dropped)
        session.messages = [
            messages[0],
            Message.system("Previous conversation summary:\n" + summary),
            *recent,
        ]
        sentinel_agent_compactions_total.inc()
        logger.info("conversation_compacted", session_id=session.session_id, messages=len(session.messages))

    async def _summarize(self, session_id: str, dropped: list[Message]) -> str:
        lines: list[str] = []
        for msg in dropped:
            if msg.content:
                lines.append(f"[{msg.role.value}] {_truncate(msg.content, 500)}")
            for call in msg.tool_calls:
                lines.append(f"[tool_call] {call.name}")

        try:
            reply = await self._reasoner.chat(
                [Message.system(SUMMARY_PROMPT), Message.user("\n".join(lines))],
                [],
            )
            if reply.error is None and reply.content:
                return reply.content
            logger.warning("summarization_failed", session_id=session_id, error=reply.error or "empty summary")
        except Exception as e:
            logger.warning("summarization_failed", session_id=session_id, error=str(e))

        return "\n".join(
            f"- [{m.role.value}] {_truncate(m.content, 150)}" for m in dropped if m.content
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _discard_lock(self, session_id: str) -> None:
        """Forget the per-session lock once the session is gone and nobody holds it."""
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked() and self._sessions.get(session_id) is None:
            self._locks.remove(session_id)

    def _mark(self, session_id: str, state: LoopState) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.state = state

    def _finish(self, session_id: str, run: _RunState, final: LoopState, error: str | None = None) -> AgentResponse:
        record_agent_run(final.value, run.iterations)
        logger.info(
            "agent_session_finished",
            session_id=session_id,
            state=final.value,
            iterations=run.iterations,
            tools_used=len(run.tools_used),
        )
        return AgentResponse(
            session_id=session_id,
            response=run.response,
            tools_used=list(run.tools_used),
            iterations=run.iterations,
            state=final,
            error=error,
        )


def _result_text(result: ToolResult) -> str:
    text = result.text_content()
    if not text and result.error:
        return f"Error: {result.error}"
    return text

