"""Exception taxonomy for the agent core.

Tool-level failures (not found, denied, execution errors) are caught where the
tool is invoked and turned into tool results; only orchestration failures and
API misuse reach callers as exceptions.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all agent core errors."""


class ConfigError(AgentError):
    """Configuration could not be loaded or validated."""


class ToolNotFoundError(AgentError):
    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool '{tool_name}' not found.")
        self.tool_name = tool_name


class ToolDeniedError(AgentError):
    """A policy layer refused the tool."""

    def __init__(self, tool_name: str, layer: str) -> None:
        super().__init__(f"Tool '{tool_name}' is not allowed by the current policy ({layer}).")
        self.tool_name = tool_name
        self.layer = layer


class ApprovalRequiredError(AgentError):
    """The tool needs a human decision before it may run."""

    def __init__(self, tool_name: str, approval_id: str | None = None) -> None:
        super().__init__(f"Tool '{tool_name}' requires human approval.")
        self.tool_name = tool_name
        self.approval_id = approval_id


class ToolExecutionError(AgentError):
    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(f"Error executing tool '{tool_name}': {reason}")
        self.tool_name = tool_name
        self.reason = reason


class ReasonerError(AgentError):
    """The language model could not produce a usable reply."""


class SessionNotFoundError(AgentError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class PlaybookNotFoundError(AgentError):
    def __init__(self, playbook_id: str) -> None:
        super().__init__(f"Playbook not found: {playbook_id}")
        self.playbook_id = playbook_id


class StepFailureError(AgentError):
    """A playbook step failed and its failure policy stopped the run."""

    def __init__(self, step_name: str, policy: str, reason: str | None = None) -> None:
        super().__init__(f"Step '{step_name}' failed ({policy}): {reason or 'unknown error'}")
        self.step_name = step_name
        self.policy = policy
        self.reason = reason


class ApprovalNotFoundError(AgentError, KeyError):
    def __init__(self, approval_id: str) -> None:
        super().__init__(f"Approval not found: {approval_id}")
        self.approval_id = approval_id

    def __str__(self) -> str:
        return f"Approval not found: {self.approval_id}"


class ApprovalAlreadyRespondedError(AgentError):
    def __init__(self, approval_id: str, status: str) -> None:
        super().__init__(f"Approval {approval_id} already responded to: {status}")
        self.approval_id = approval_id
        self.status = status
