"""System prompt assembly for the Sentinel operations agent."""

from __future__ import annotations

from collections.abc import Sequence

from agent.models import PromptContext, utcnow
from tools.base import AgentTool

IDENTITY_PROMPT = """\
You are Sentinel, an autonomous SRE agent. You watch production services, \
diagnose issues with the tools available to you, and remediate them when it is \
safe to do so. Escalate to a human when automated remediation is not enough.
"""

SAFETY_PROMPT = """\
# Safety & Operational Guardrails
- ALWAYS prefer read-only operations when investigating
- Mutating tools (restarts, kubectl changes, playbooks) may need human approval; \
when a tool result says approval is pending, stop and wait
- NEVER expose secrets or credentials in responses
- Do not retry a failed operation more than 3 times
- Verify health after every remediation
"""

SUMMARY_PROMPT = """\
Summarize the following operations conversation in a few sentences. Keep \
service names, findings, actions taken and their outcomes. Do not invent details.
"""


def _tools_section(tools: Sequence[AgentTool]) -> str:
    if not tools:
        return "# Available Tools\nNo tools currently available.\n"
    lines = ["# Available Tools"]
    for tool in tools:
        marker = " [requires approval]" if tool.requires_approval else ""
        lines.append(f"- **{tool.name}** ({tool.category}){marker}: {tool.description}")
    return "\n".join(lines) + "\n"


def _context_section(context: PromptContext | None) -> str:
    if context is None:
        return ""
    lines = []
    if context.current_incident_id:
        lines.append(f"- Current incident: {context.current_incident_id}")
    if context.service:
        lines.append(f"- Service: {context.service}")
    if context.additional_context:
        lines.append(context.additional_context)
    if not lines:
        return ""
    return "# Current Context\n" + "\n".join(lines) + "\n"


def build_system_prompt(tools: Sequence[AgentTool], context: PromptContext | None = None) -> str:
    """Assemble the system prompt from identity, tools, guardrails and context."""
    sections = [
        IDENTITY_PROMPT,
        _tools_section(tools),
        SAFETY_PROMPT,
        _context_section(context),
        f"# Time\nCurrent time (UTC): {utcnow().isoformat(timespec='seconds')}\n",
    ]
    return "\n".join(s for s in sections if s)
