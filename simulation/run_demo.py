"""Demo script: chat session with approval suspend/resume, then an auto-triggered playbook."""

from __future__ import annotations

import asyncio
import os

from agent.config import load_settings
from agent.llm_client import MockReasoner, Reasoner, create_reasoner
from agent.models import Incident, Message, PromptContext, ToolCall
from agent.runtime import build_runtime
from monitoring.logging import configure_logging

SESSION_ID = "demo-session-1"

# ---------------------------------------------------------------------------
# Pre-scripted demo responses (used when no API key is available)
# ---------------------------------------------------------------------------


def _build_demo_responses() -> list[Message]:
    """Scripted reasoner turns for the demo.

    1. Investigate: logs + metrics for payment-api
    2. Propose a restart (requires approval, suspends the session)
    3. After approval: restart again, then verify health
    4. Final summary
    """
    return [
        Message.assistant(
            "Let me look at payment-api logs and latency.",
            [
                ToolCall(id="toolu_01logs", name="log_search",
                         arguments={"service": "payment-api", "level": "ERROR"}),
                ToolCall(id="toolu_02metrics", name="metrics_query",
                         arguments={"service": "payment-api", "metric_name": "latency_p99"}),
            ],
        ),
        Message.assistant(
            "The connection pool is exhausted. Restarting payment-api should release it.",
            [
                ToolCall(id="toolu_03restart", name="service_restart",
                         arguments={"service_type": "kubernetes", "service_name": "payment-api"}),
            ],
        ),
        Message.assistant(
            None,
            [
                ToolCall(id="toolu_04restart", name="service_restart",
                         arguments={"service_type": "kubernetes", "service_name": "payment-api"}),
            ],
        ),
        Message.assistant(
            "payment-api was restarted. DB connection timeouts should stop once the pool "
            "drains; watch error_rate over the next 10 minutes."
        ),
    ]


# ---------------------------------------------------------------------------
# Demo runner
# ---------------------------------------------------------------------------


def print_section(title: str) -> None:
    width = 70
    print("\n" + "=" * width)
    print(f"  {title}")
    print("=" * width)


def _create_demo_reasoner() -> Reasoner:
    """Use live Claude if ANTHROPIC_API_KEY is set, otherwise the scripted turns."""
    provider = os.environ.get("LLM_PROVIDER", "anthropic")
    api_key = os.environ.get("ANTHROPIC_API_KEY")

    if provider != "mock" and api_key:
        print("  Mode: Live Claude API")
        return create_reasoner()

    print("  Mode: Pre-scripted demo (set ANTHROPIC_API_KEY for live Claude)")
    return MockReasoner(responses=_build_demo_responses())


async def run_demo() -> None:
    """Run the full Sentinel demo."""
    configure_logging(log_level=os.environ.get("LOG_LEVEL", "WARNING"))
    print_section("SENTINEL: Operations Agent Demo")

    settings = load_settings()
    settings.playbooks.auto_execute = True
    runtime = build_runtime(settings, reasoner=_create_demo_reasoner())

    # 1. Chat session: investigation, then a restart that needs approval
    print_section("CHAT SESSION")
    question = "payment-api latency is spiking, please investigate and fix it"
    print(f"  Operator: {question}")
    response = await runtime.agent.run(
        SESSION_ID, question, PromptContext(service="payment-api"),
    )
    print(f"  State:      {response.state.value}")
    print(f"  Tools used: {', '.join(response.tools_used) or '-'}")
    print(f"  Agent:      {response.response.strip()}")

    # 2. Human approves; the workflow resumes the session in the background
    print_section("PENDING APPROVALS")
    for request in runtime.approvals.get_pending():
        print(f"  {request.id}  {request.tool_name}  {request.parameters}")
        runtime.approvals.respond(request.id, approved=True, responded_by="oncall@example.com")

    results = await asyncio.gather(*runtime.approvals.resume_tasks)
    print_section("RESUMED SESSION")
    for resumed in results:
        print(f"  State:      {resumed.state.value}")
        print(f"  Tools used: {', '.join(resumed.tools_used) or '-'}")
        print(f"  Agent:      {resumed.response.strip()}")

    # 3. Monitoring reports a HIGH incident: matching playbooks run automatically
    print_section("AUTO-TRIGGERED PLAYBOOKS")
    incident = Incident(incident_id="INC-DEMO-1", service="payment-api", severity="HIGH",
                        title="payment-api latency p99 > 4s")
    runtime.incidents.save(incident)
    tasks = runtime.playbooks.auto_trigger(incident.service, incident.severity, incident.incident_id)
    for result in await asyncio.gather(*tasks):
        print(result.text_content())

    for event in runtime.events.get_events("playbook.auto_trigger_skipped"):
        print(f"  Skipped {event.payload['playbook_id']}: {event.payload['reason']}")

    print_section("AUDIT TRAIL")
    for entry in reversed(runtime.audit.get_recent(20)):
        print(f"  {entry.timestamp.isoformat(timespec='seconds')}  {entry.action:<20} {entry.target}")


def main() -> None:
    asyncio.run(run_demo())


if __name__ == "__main__":
    main()
