"""Playbook run tool: lets the agent run, list, inspect and abort playbooks."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import JsonValue

from agent.models import ToolContext, ToolResult
from tools.base import AgentTool

if TYPE_CHECKING:
    from playbook.engine import PlaybookEngine


class PlaybookRunTool(AgentTool):
    name = "playbook_run"
    description = (
        "Execute a remediation playbook (runbook) to fix a known issue, or list playbooks, "
        "check an execution's status, or abort a running execution."
    )
    category = "remediation"
    requires_approval = True
    is_mutating = True
    parameter_schema = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["run", "list", "status", "abort"]},
            "playbook_id": {"type": "string", "description": "Playbook id (run) or execution id (status, abort)"},
            "incident_id": {"type": "string", "description": "Associated incident id"},
            "parameters": {"type": "object", "description": "Variables passed to the playbook"},
            "dry_run": {"type": "boolean", "description": "Show what would run without running it"},
        },
        "required": ["action"],
    }

    def __init__(self, engine: PlaybookEngine) -> None:
        self._engine = engine

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        action = str(params["action"]).lower()

        if action == "list":
            return self._engine.list_playbooks()

        target = params.get("playbook_id")
        if not isinstance(target, str) or not target:
            return ToolResult.failure(f"playbook_id is required for action '{action}'")

        if action == "run":
            playbook_params = params.get("parameters")
            incident_id = params.get("incident_id")
            # Reaching this tool already took a human approval in the session
            return await self._engine.execute(
                target,
                incident_id if isinstance(incident_id, str) else None,
                playbook_params if isinstance(playbook_params, dict) else {},
                dry_run=bool(params.get("dry_run")) or context.dry_run,
                approved=True,
            )
        if action == "status":
            return self._engine.get_execution_status(target)
        if action == "abort":
            return self._engine.abort_execution(target)
        return ToolResult.failure(f"Unknown action: {action}")
