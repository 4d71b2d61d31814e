"""Kubectl tool: inspect and manage Kubernetes resources."""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Awaitable, Callable

import structlog
from pydantic import JsonValue

from agent.models import ToolContext, ToolResult
from tools.base import AgentTool
from tools.service_restart import sanitize

logger = structlog.get_logger()

READ_ONLY_VERBS = frozenset({"get", "describe", "logs", "top", "explain", "version", "api-resources"})
ALLOWED_VERBS = READ_ONLY_VERBS | {"rollout", "scale", "cordon", "uncordon", "annotate", "label"}
DENIED_VERBS = frozenset({"delete", "exec", "cp", "proxy", "port-forward", "replace", "drain"})

CommandRunner = Callable[[list[str]], Awaitable[tuple[int, str]]]


async def run_command(argv: list[str], timeout_seconds: float = 60.0) -> tuple[int, str]:
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        return -1, f"timed out after {timeout_seconds}s"
    return proc.returncode or 0, stdout.decode(errors="replace").strip()


def build_argv(command: str, namespace: str, k8s_context: str | None, output: str | None) -> list[str]:
    """Tokenize a kubectl subcommand and add namespace/context/output flags."""
    args = [sanitize(a) for a in shlex.split(command)]
    args = [a for a in args if a]
    if args and args[0] == "kubectl":
        args = args[1:]
    argv = ["kubectl", *args, "-n", sanitize(namespace)]
    if k8s_context:
        argv.append(f"--context={sanitize(k8s_context)}")
    if args and args[0] in ("get", "describe") and "-o" not in args and output:
        argv.extend(["-o", sanitize(output)])
    return argv


class KubectlTool(AgentTool):
    name = "kubectl_exec"
    description = (
        "Execute kubectl commands to inspect and manage Kubernetes resources "
        "(get, describe, logs, top, rollout, scale). Destructive verbs are refused."
    )
    category = "infrastructure"
    requires_approval = True
    is_mutating = True
    parameter_schema = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "kubectl subcommand, e.g. 'get pods'"},
            "namespace": {"type": "string", "default": "default"},
            "context": {"type": "string", "description": "Kubernetes context to use"},
            "output": {"type": "string", "description": "Output format: json, yaml, wide, name"},
        },
        "required": ["command"],
    }

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or run_command

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        try:
            argv = build_argv(
                str(params["command"]),
                str(params.get("namespace") or "default"),
                params.get("context"),  # type: ignore[arg-type]
                params.get("output") or "wide",  # type: ignore[arg-type]
            )
        except ValueError as e:
            return ToolResult.failure(f"could not parse command: {e}")

        verb = argv[1] if len(argv) > 1 else ""
        if verb in DENIED_VERBS:
            return ToolResult.failure(f"kubectl {verb} is not permitted")
        if verb not in ALLOWED_VERBS:
            return ToolResult.failure(f"kubectl {verb or '(empty)'} is not in the command allowlist")

        full_command = " ".join(argv)
        if context.dry_run and verb not in READ_ONLY_VERBS:
            return ToolResult.text(f"[dry run] would execute: {full_command}", dry_run=True)

        logger.info("kubectl_exec", verb=verb, session_id=context.session_id)
        exit_code, output = await self._runner(argv)
        text = f"kubectl Result (exit code: {exit_code}):\nCommand: {full_command}\n---\n{output}"
        if exit_code != 0:
            return ToolResult(success=False, error=f"kubectl exited with {exit_code}",
                              content=ToolResult.text(text).content)
        return ToolResult.text(text, exit_code=exit_code)
