"""Tests for the agent loop: tool calls, policy, approval suspend/resume, bounds and compaction."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import pytest
from fakes import EchoTool, RestartTool, final_reply, tool_call_reply
from pydantic import JsonValue

from agent.approvals import ApprovalWorkflow
from agent.collaborators import InMemoryLearningRecorder
from agent.config import AgentSettings
from agent.core import (
    ABORTED,
    SESSION_EXPIRED,
    TRUNCATION_NOTICE,
    WAITING_NOTICE,
    AgentLoop,
    approval_granted_message,
    approval_pending_message,
)
from agent.llm_client import MockReasoner
from agent.models import (
    ApprovalStatus,
    LoopState,
    Message,
    PromptContext,
    Role,
    Session,
    ToolCall,
    ToolContext,
    ToolResult,
)
from agent.policy import ToolPolicyEngine
from agent.prompts import SUMMARY_PROMPT
from monitoring.audit import AuditTrail
from protocols.events import EventBus
from tools.base import AgentTool
from tools.registry import ToolRegistry


def _make_loop(
    reasoner: MockReasoner,
    registry: ToolRegistry,
    settings: AgentSettings,
    approvals: ApprovalWorkflow,
    events: EventBus,
    audit: AuditTrail,
    learning: InMemoryLearningRecorder | None = None,
) -> AgentLoop:
    return AgentLoop(
        reasoner,
        registry,
        ToolPolicyEngine(settings.tool_policy),
        approvals,
        settings=settings,
        events=events,
        audit=audit,
        learning=learning,
    )


@pytest.fixture
def make_loop(registry, settings, approvals, events, audit, learning):
    def _factory(reasoner: MockReasoner, **overrides: Any) -> AgentLoop:
        return _make_loop(
            reasoner,
            overrides.get("registry", registry),
            overrides.get("settings", settings),
            approvals,
            events,
            audit,
            learning,
        )

    return _factory


# ---------------------------------------------------------------------------
# Basic loop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_completes_without_tools(make_loop):
    reasoner = MockReasoner([final_reply("Everything looks healthy.")])
    loop = make_loop(reasoner)

    response = await loop.run("s1", "Is payment-api ok?")

    assert response.state == LoopState.COMPLETED
    assert response.response == "Everything looks healthy."
    assert response.iterations == 1
    assert response.tools_used == []

    session = loop.get_session("s1")
    assert session is not None
    assert session.messages[0].role == Role.SYSTEM
    assert session.messages[1].content == "Is payment-api ok?"


@pytest.mark.asyncio
async def test_tool_call_result_appended_to_history(make_loop, echo_tool: EchoTool):
    reasoner = MockReasoner([
        tool_call_reply("echo", {"text": "hi"}, call_id="c1", text="Checking."),
        final_reply("Done."),
    ])
    loop = make_loop(reasoner)

    response = await loop.run("s1", "say hi")

    assert response.state == LoopState.COMPLETED
    assert response.tools_used == ["echo"]
    assert response.iterations == 2
    assert "Checking." in response.response
    assert response.response.endswith("Done.")
    assert echo_tool.calls == [{"text": "hi"}]

    tool_messages = [m for m in loop.get_session("s1").messages if m.role == Role.TOOL]
    assert len(tool_messages) == 1
    assert tool_messages[0].tool_call_id == "c1"
    assert tool_messages[0].content == "echo: hi"


@pytest.mark.asyncio
async def test_system_prompt_lists_available_tools(make_loop):
    reasoner = MockReasoner([final_reply()])
    loop = make_loop(reasoner)

    await loop.run("s1", "hello", PromptContext(service="payment-api"))

    prompt = loop.get_session("s1").messages[0].content
    assert "echo" in prompt
    assert "restart" in prompt
    assert "payment-api" in prompt
    tool_names = {tool["name"] for tool in reasoner.call_history[0]["tools"]}
    assert {"echo", "restart", "broken"} <= tool_names


@pytest.mark.asyncio
async def test_continuing_session_keeps_history(make_loop):
    reasoner = MockReasoner([final_reply("first"), final_reply("second")])
    loop = make_loop(reasoner)

    await loop.run("s1", "one")
    await loop.run("s1", "two")

    messages = loop.get_session("s1").messages
    assert [m.content for m in messages if m.role == Role.USER] == ["one", "two"]
    assert sum(1 for m in messages if m.role == Role.SYSTEM) == 1


# ---------------------------------------------------------------------------
# Tool failures become tool results
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_tool_reported_and_loop_continues(make_loop):
    reasoner = MockReasoner([tool_call_reply("nope"), final_reply("Recovered.")])
    loop = make_loop(reasoner)

    response = await loop.run("s1", "go")

    assert response.state == LoopState.COMPLETED
    assert response.tools_used == []
    tool_msg = next(m for m in loop.get_session("s1").messages if m.role == Role.TOOL)
    assert tool_msg.content == "Tool 'nope' not found."


@pytest.mark.asyncio
async def test_policy_denied_tool_never_executes(make_loop, echo_tool: EchoTool):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "full", "global_deny": ["echo"]},
    })
    reasoner = MockReasoner([tool_call_reply("echo", {"text": "x"}), final_reply()])
    loop = make_loop(reasoner, settings=settings)

    response = await loop.run("s1", "go")

    assert response.state == LoopState.COMPLETED
    assert echo_tool.calls == []
    tool_msg = next(m for m in loop.get_session("s1").messages if m.role == Role.TOOL)
    assert "not allowed by the current policy (global)" in tool_msg.content



@pytest.mark.asyncio
async def test_denied_call_does_not_stop_rest_of_batch(make_loop, echo_tool: EchoTool, restart_tool: RestartTool):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "minimal", "profiles": {"minimal": {"allowed_tools": ["echo"]}}},
    })
    batch = Message.assistant("Restarting, then confirming.", [
        ToolCall(id="t1", name="restart", arguments={"service": "api"}),
        ToolCall(id="t2", name="echo", arguments={"text": "still here"}),
    ])
    reasoner = MockReasoner([batch, final_reply()])
    loop = make_loop(reasoner, settings=settings)

    response = await loop.run("s1", "restart api")

    assert response.state == LoopState.COMPLETED
    assert response.tools_used == ["echo"]
    assert restart_tool.calls == []
    results = [m for m in loop.get_session("s1").messages if m.role == Role.TOOL]
    assert [m.tool_call_id for m in results] == ["t1", "t2"]
    assert "not allowed by the current policy (profile)" in results[0].content
    assert results[1].content == "echo: still here"


@pytest.mark.asyncio
async def test_profile_limits_tools_offered_to_reasoner(make_loop):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "custom", "profiles": {"custom": {"allowed_tools": ["echo"]}}},
    })
    reasoner = MockReasoner([final_reply()])
    loop = make_loop(reasoner, settings=settings)

    await loop.run("s1", "go")

    assert [tool["name"] for tool in reasoner.call_history[0]["tools"]] == ["echo"]


@pytest.mark.asyncio
async def test_invalid_arguments_reported(make_loop, echo_tool: EchoTool):
    reasoner = MockReasoner([tool_call_reply("echo", {}), final_reply()])
    loop = make_loop(reasoner)

    await loop.run("s1", "go")

    assert echo_tool.calls == []
    tool_msg = next(m for m in loop.get_session("s1").messages if m.role == Role.TOOL)
    assert tool_msg.content == "Invalid arguments for tool 'echo': missing required parameter 'text'"


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_result(make_loop, audit: AuditTrail):
    reasoner = MockReasoner([tool_call_reply("broken"), final_reply()])
    loop = make_loop(reasoner)

    response = await loop.run("s1", "go")

    assert response.state == LoopState.COMPLETED
    tool_msg = next(m for m in loop.get_session("s1").messages if m.role == Role.TOOL)
    assert tool_msg.content == "Error executing tool 'broken': boom"
    failed = audit.filter(action="TOOL_EXECUTED", target="broken")
    assert len(failed) == 1
    assert failed[0].success is False


# ---------------------------------------------------------------------------
# Approval suspend / resume
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_approval_required_tool_suspends_session(make_loop, restart_tool: RestartTool, approvals):
    reasoner = MockReasoner([tool_call_reply("restart", {"service": "payment-api"})])
    loop = make_loop(reasoner)

    response = await loop.run("s1", "restart payment-api")

    assert response.state == LoopState.SUSPENDED
    assert response.response.endswith(WAITING_NOTICE)
    assert restart_tool.calls == []

    pending = approvals.get_pending()
    assert len(pending) == 1
    assert pending[0].tool_name == "restart"
    assert pending[0].session_id == "s1"
    assert pending[0].parameters == '{"service": "payment-api"}'

    tool_msg = next(m for m in loop.get_session("s1").messages if m.role == Role.TOOL)
    assert tool_msg.content == approval_pending_message("restart")


@pytest.mark.asyncio
async def test_configured_approval_list_gates_tool(make_loop, echo_tool: EchoTool, approvals):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "full", "approval_required": ["echo"]},
    })
    reasoner = MockReasoner([tool_call_reply("echo", {"text": "x"})])
    loop = make_loop(reasoner, settings=settings)

    response = await loop.run("s1", "go")

    assert response.state == LoopState.SUSPENDED
    assert echo_tool.calls == []
    assert approvals.get_pending()[0].tool_name == "echo"


@pytest.mark.asyncio
async def test_duplicate_calls_in_one_turn_share_one_request(make_loop, approvals):
    reasoner = MockReasoner([
        Message.assistant(None, [
            ToolCall(id="a", name="restart", arguments={"service": "x"}),
            ToolCall(id="b", name="restart", arguments={"service": "x"}),
        ]),
    ])
    loop = make_loop(reasoner)

    response = await loop.run("s1", "go")

    assert response.state == LoopState.SUSPENDED
    assert len(approvals.get_pending()) == 1
    tool_msgs = [m for m in loop.get_session("s1").messages if m.role == Role.TOOL]
    assert [m.tool_call_id for m in tool_msgs] == ["a", "b"]


@pytest.mark.asyncio
async def test_approval_resumes_session_and_runs_tool(
    make_loop, restart_tool: RestartTool, approvals: ApprovalWorkflow, events: EventBus,
):
    reasoner = MockReasoner([
        tool_call_reply("restart", {"service": "payment-api"}, call_id="c1"),
        tool_call_reply("restart", {"service": "payment-api"}, call_id="c2"),
        final_reply("Restarted."),
    ])
    loop = make_loop(reasoner)

    first = await loop.run("s1", "restart payment-api")
    assert first.state == LoopState.SUSPENDED

    request = approvals.get_pending()[0]
    approvals.respond(request.id, approved=True, responded_by="oncall")
    results = await asyncio.gather(*approvals.resume_tasks)
    await asyncio.sleep(0)

    assert len(results) == 1
    resumed = results[0]
    assert resumed.state == LoopState.COMPLETED
    assert resumed.tools_used == ["restart"]
    assert resumed.response.endswith("Restarted.")
    assert restart_tool.calls == [{"service": "payment-api"}]
    assert "restart" in loop.get_context("s1").approved_tools

    user_msgs = [m.content for m in loop.get_session("s1").messages if m.role == Role.USER]
    assert user_msgs[-1] == approval_granted_message("restart")

    broadcast = events.get_events("agent.response")
    assert len(broadcast) == 1
    assert broadcast[0].payload["session_id"] == "s1"


@pytest.mark.asyncio
async def test_denied_approval_does_not_resume(make_loop, restart_tool: RestartTool, approvals):
    reasoner = MockReasoner([tool_call_reply("restart", {"service": "x"})])
    loop = make_loop(reasoner)
    await loop.run("s1", "go")

    request = approvals.get_pending()[0]
    result = approvals.respond(request.id, approved=False, reason="not now")

    assert result.status == ApprovalStatus.DENIED
    assert approvals.resume_tasks == set()
    assert restart_tool.calls == []


@pytest.mark.asyncio
async def test_resume_of_expired_session_returns_notice(make_loop):
    loop = make_loop(MockReasoner())

    response = await loop.resume_after_approval("gone", "restart")

    assert response.state == LoopState.ERRORED
    assert response.response == SESSION_EXPIRED
    assert response.error == "Session gone not found"
    assert "gone" not in loop._locks


# ---------------------------------------------------------------------------
# Bounds, errors and abort
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_max_iterations_truncates(make_loop, echo_tool: EchoTool):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "full"},
        "agent": {"max_iterations": 3},
    })
    reasoner = MockReasoner(default=lambda history: tool_call_reply("echo", {"text": "again"}))
    loop = make_loop(reasoner, settings=settings)

    response = await loop.run("s1", "loop forever")

    assert response.state == LoopState.TRUNCATED
    assert response.iterations == 3
    assert response.response.endswith(TRUNCATION_NOTICE)
    assert len(echo_tool.calls) == 3
    assert len(reasoner.call_history) == 3


@pytest.mark.asyncio
async def test_default_iteration_bound_is_25(make_loop, echo_tool: EchoTool):
    reasoner = MockReasoner(default=lambda history: tool_call_reply("echo", {"text": "again"}))
    loop = make_loop(reasoner)

    response = await loop.run("s1", "never settle")

    assert response.state == LoopState.TRUNCATED
    assert response.iterations == 25
    assert len(echo_tool.calls) == 25


@pytest.mark.asyncio
async def test_reasoner_error_ends_run(make_loop):
    reasoner = MockReasoner([Message.reasoner_error("rate limited")])
    loop = make_loop(reasoner)

    response = await loop.run("s1", "go")

    assert response.state == LoopState.ERRORED
    assert response.error == "rate limited"
    assert response.response == "Error: rate limited"
    assert loop.get_session("s1").state == LoopState.ERRORED


@pytest.mark.asyncio
async def test_abort_stops_before_next_tool_call(registry, settings, approvals, events, audit, echo_tool):
    holder: dict[str, AgentLoop] = {}

    class AbortingTool(AgentTool):
        name = "abort_me"
        description = "Aborts its own session"

        async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
            holder["loop"].abort(context.session_id)
            return ToolResult.text("aborting")

    registry.register(AbortingTool())
    reasoner = MockReasoner([
        Message.assistant(None, [
            ToolCall(id="a", name="abort_me"),
            ToolCall(id="b", name="echo", arguments={"text": "never"}),
        ]),
    ])
    loop = _make_loop(reasoner, registry, settings, approvals, events, audit)
    holder["loop"] = loop

    response = await loop.run("s1", "go")

    assert response.state == LoopState.ERRORED
    assert response.error == ABORTED
    assert echo_tool.calls == []
    assert loop.get_session("s1") is None
    # The lock was held during abort; it is released once the run unwinds
    assert "s1" not in loop._locks


@pytest.mark.asyncio
async def test_runs_on_same_session_never_overlap(make_loop):
    class SlowReasoner(MockReasoner):
        def __init__(self) -> None:
            super().__init__()
            self.active = 0
            self.max_active = 0

        async def chat(self, messages: list[Message], tools: list[dict[str, Any]] | None = None) -> Message:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            await asyncio.sleep(0.01)
            self.active -= 1
            return final_reply()

    reasoner = SlowReasoner()
    loop = make_loop(reasoner)

    await asyncio.gather(loop.submit("s1", "a"), loop.submit("s1", "b"))
    assert reasoner.max_active == 1

    await asyncio.gather(loop.submit("s2", "a"), loop.submit("s3", "b"))
    assert reasoner.max_active == 2


@pytest.mark.asyncio
async def test_expire_idle_sessions(make_loop):
    loop = make_loop(MockReasoner([final_reply()]))
    await loop.run("s1", "hello")

    assert loop.expire_idle_sessions(max_idle_seconds=3600) == []

    loop.get_session("s1").last_active_at -= timedelta(hours=2)
    assert loop.expire_idle_sessions(max_idle_seconds=3600) == ["s1"]
    assert loop.active_sessions() == {}


@pytest.mark.asyncio
async def test_abort_forgets_session_lock(make_loop):
    loop = make_loop(MockReasoner([final_reply()]))
    await loop.run("s1", "hello")
    assert "s1" in loop._locks

    loop.abort("s1")

    assert "s1" not in loop._locks


# ---------------------------------------------------------------------------
# Side channels
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_completed_run_with_tools_records_learning(make_loop, learning: InMemoryLearningRecorder):
    reasoner = MockReasoner([tool_call_reply("echo", {"text": "x"}), final_reply()])
    loop = make_loop(reasoner)

    await loop.run("s1", "check it", PromptContext(service="payment-api", current_incident_id="INC-1"))

    assert len(learning.records) == 1
    record = learning.records[0]
    assert record.service == "payment-api"
    assert record.incident_id == "INC-1"
    assert record.tool_sequence == ["echo"]
    assert record.success is True


@pytest.mark.asyncio
async def test_run_without_tools_records_nothing(make_loop, learning: InMemoryLearningRecorder):
    loop = make_loop(MockReasoner([final_reply()]))
    await loop.run("s1", "hello")
    assert learning.records == []


@pytest.mark.asyncio
async def test_autonomous_session_broadcasts_tool_events(make_loop, events: EventBus):
    reasoner = MockReasoner([tool_call_reply("echo", {"text": "x"}), final_reply()])
    loop = make_loop(reasoner)

    await loop.run("auto-42", "investigate")

    calls = events.get_events("autonomous.tool_call")
    results = events.get_events("autonomous.tool_result")
    assert len(calls) == 1
    assert calls[0].payload["tool"] == "echo"
    assert results[0].payload["success"] is True


@pytest.mark.asyncio
async def test_interactive_session_broadcasts_no_tool_events(make_loop, events: EventBus):
    reasoner = MockReasoner([tool_call_reply("echo", {"text": "x"}), final_reply()])
    loop = make_loop(reasoner)

    await loop.run("s1", "investigate")

    assert events.get_events("autonomous.tool_call") == []


# ---------------------------------------------------------------------------
# Compaction
# ---------------------------------------------------------------------------


def _conversation() -> list[Message]:
    return [
        Message.system("system prompt"),
        Message.user("hello"),
        Message.assistant("Hi, what is wrong?"),
        Message.user("why is payment-api slow?"),
        tool_call_reply("echo", {"text": "1"}, call_id="t1"),
        Message.tool_result("t1", "echo: 1"),
        Message.assistant("Looks like pool exhaustion."),
        Message.user("restart it"),
        tool_call_reply("echo", {"text": "2"}, call_id="t2"),
        Message.tool_result("t2", "echo: 2"),
        Message.assistant("Done."),
    ]


def _batch(count: int) -> Message:
    return Message.assistant("Checking every replica.", [
        ToolCall(id=f"c{i}", name="echo", arguments={"text": str(i)}) for i in range(count)
    ])


@pytest.mark.asyncio
async def test_compact_keeps_system_summary_and_recent(make_loop):
    reasoner = MockReasoner([final_reply("User said hello.")])
    loop = make_loop(reasoner)
    session = Session(session_id="s1", messages=_conversation())

    await loop.compact(session)

    messages = session.messages
    assert messages[0].content == "system prompt"
    assert messages[1].role == Role.SYSTEM
    assert messages[1].content == "Previous conversation summary:\nUser said hello."
    # The tail reaches back to the turn that issued t1 and the question behind it
    assert [m.content for m in messages[2:]] == [
        "why is payment-api slow?", None, "echo: 1",
        "Looks like pool exhaustion.", "restart it", None, "echo: 2", "Done.",
    ]
    assert reasoner.call_history[0]["messages"][0].content == SUMMARY_PROMPT


@pytest.mark.asyncio
async def test_compact_falls_back_when_summarizer_fails(make_loop):
    reasoner = MockReasoner([Message.reasoner_error("overloaded")])
    loop = make_loop(reasoner)
    session = Session(session_id="s1", messages=_conversation())

    await loop.compact(session)

    summary = session.messages[1].content
    assert summary.startswith("Previous conversation summary:\n")
    assert "[user] hello" in summary
    assert "[assistant] Hi, what is wrong?" in summary


@pytest.mark.asyncio
async def test_compact_skips_short_conversations(make_loop):
    reasoner = MockReasoner()
    loop = make_loop(reasoner)
    session = Session(session_id="s1", messages=_conversation()[:4])

    await loop.compact(session)

    assert len(session.messages) == 4
    assert reasoner.call_history == []


@pytest.mark.asyncio
async def test_compact_keeps_tool_batch_with_its_assistant_turn(make_loop):
    reasoner = MockReasoner([final_reply("Greeted.")])
    loop = make_loop(reasoner)
    batch = _batch(7)
    history = [
        Message.system("system prompt"),
        Message.user("hello"),
        Message.assistant("Hi."),
        Message.user("check all replicas"),
        batch,
        *[Message.tool_result(f"c{i}", f"echo: {i}") for i in range(7)],
    ]
    session = Session(session_id="s1", messages=history)

    await loop.compact(session)

    tail = session.messages[2:]
    assert tail[0].content == "check all replicas"
    assert tail[1] is batch
    assert [m.tool_call_id for m in tail[2:]] == [f"c{i}" for i in range(7)]


@pytest.mark.asyncio
async def test_compact_leaves_single_tool_batch_intact(make_loop):
    reasoner = MockReasoner()
    loop = make_loop(reasoner)
    history = [
        Message.system("system prompt"),
        Message.user("check all replicas"),
        _batch(7),
        *[Message.tool_result(f"c{i}", f"echo: {i}") for i in range(7)],
    ]
    session = Session(session_id="s1", messages=list(history))

    await loop.compact(session)

    assert session.messages == history
    assert reasoner.call_history == []


@pytest.mark.asyncio
async def test_large_tool_batch_survives_budget_compaction(make_loop, echo_tool: EchoTool):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "full"},
        "agent": {"max_conversation_tokens": 50},
    })
    reasoner = MockReasoner([_batch(7), final_reply("All replicas healthy.")])
    loop = make_loop(reasoner, settings=settings)

    response = await loop.run("s1", "check all replicas")

    assert response.state == LoopState.COMPLETED
    assert len(echo_tool.calls) == 7
    roles = [m.role for m in reasoner.call_history[-1]["messages"]]
    assert Role.USER in roles
    assert roles.count(Role.TOOL) == 7


@pytest.mark.asyncio
async def test_loop_compacts_when_over_token_budget(make_loop):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "full"},
        "agent": {"max_conversation_tokens": 50},
    })

    def _default(history: list[Message]) -> Message:
        if history[0].content == SUMMARY_PROMPT:
            return final_reply("summary of earlier turns")
        return final_reply("Finished.")

    reasoner = MockReasoner(
        [tool_call_reply("echo", {"text": str(i)}, call_id=f"t{i}") for i in range(4)],
        default=_default,
    )
    loop = make_loop(reasoner, settings=settings)

    response = await loop.run("s1", "go")

    assert response.state == LoopState.COMPLETED
    messages = loop.get_session("s1").messages
    assert messages[1].content == "Previous conversation summary:\nsummary of earlier turns"
    # Every kept tool result still follows the assistant turn that issued it
    issued = {c.id for m in messages if m.role == Role.ASSISTANT for c in m.tool_calls}
    assert all(m.tool_call_id in issued for m in messages if m.role == Role.TOOL)


@pytest.mark.asyncio
async def test_compact_bounds_history_to_recent_window(make_loop):
    settings = AgentSettings.model_validate({
        "tool_policy": {"default_profile": "full"},
        "agent": {"keep_recent_messages": 10},
    })
    loop = make_loop(MockReasoner([final_reply("summary")]), settings=settings)
    system = Message.system("system prompt")
    history = [system] + [
        Message.user(f"question {i}") if i % 2 == 0 else Message.assistant(f"answer {i}")
        for i in range(49)
    ]
    session = Session(session_id="s1", messages=history)
    assert len(session.messages) == 50

    await loop.compact(session)

    assert len(session.messages) == 12
    assert session.messages[0] is system
    assert session.messages[-1].content == "question 48"
