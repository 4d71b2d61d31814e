"""Prometheus metrics for Sentinel agent and playbook observability."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# --- Agent loop metrics ---

sentinel_agent_runs_total = Counter(
    "sentinel_agent_runs_total",
    "Total agent loop invocations by final state",
    ["state"],
)

sentinel_agent_iterations = Histogram(
    "sentinel_agent_iterations",
    "Reasoner iterations per agent loop invocation",
    buckets=[1, 2, 3, 5, 10, 15, 20, 25],
)

sentinel_agent_compactions_total = Counter(
    "sentinel_agent_compactions_total",
    "Total conversation compactions",
)

sentinel_active_sessions = Gauge(
    "sentinel_active_sessions",
    "Number of chat sessions currently held in memory",
)

# --- Tool metrics ---

sentinel_tool_calls_total = Counter(
    "sentinel_tool_calls_total",
    "Total number of tool calls",
    ["tool_name", "success"],
)

sentinel_tool_call_duration_seconds = Histogram(
    "sentinel_tool_call_duration_seconds",
    "Tool call latency in seconds",
    ["tool_name"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

sentinel_policy_denials_total = Counter(
    "sentinel_policy_denials_total",
    "Tool calls denied by the policy chain",
    ["layer"],
)

# --- Approval metrics ---

sentinel_approvals_requested_total = Counter(
    "sentinel_approvals_requested_total",
    "Total human approval requests created",
    ["tool_name"],
)

sentinel_approvals_responded_total = Counter(
    "sentinel_approvals_responded_total",
    "Total human approval decisions",
    ["decision"],
)

# --- Playbook metrics ---

sentinel_playbook_executions_total = Counter(
    "sentinel_playbook_executions_total",
    "Total playbook executions by final status",
    ["playbook_id", "status"],
)

sentinel_playbook_step_failures_total = Counter(
    "sentinel_playbook_step_failures_total",
    "Total failed playbook step attempts",
    ["playbook_id", "tool_name"],
)

sentinel_running_executions = Gauge(
    "sentinel_running_executions",
    "Number of playbook executions currently running",
)


# --- Helper functions ---


def record_tool_call(tool_name: str, duration_seconds: float, success: bool = True) -> None:
    """Record a single tool call: increment counter and observe latency histogram."""
    sentinel_tool_calls_total.labels(tool_name=tool_name, success=str(success).lower()).inc()
    sentinel_tool_call_duration_seconds.labels(tool_name=tool_name).observe(duration_seconds)


def record_agent_run(state: str, iterations: int) -> None:
    sentinel_agent_runs_total.labels(state=state).inc()
    sentinel_agent_iterations.observe(iterations)


def record_policy_denial(layer: str) -> None:
    sentinel_policy_denials_total.labels(layer=layer).inc()


def record_playbook_execution(playbook_id: str, status: str) -> None:
    sentinel_playbook_executions_total.labels(playbook_id=playbook_id, status=status).inc()
