"""Service restart tool: recycles a systemd unit, Kubernetes deployment or container."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Protocol

import structlog
from pydantic import JsonValue

from agent.models import ToolContext, ToolResult
from tools.base import AgentTool

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[;&|`$\s]")


def sanitize(value: str) -> str:
    """Strip shell metacharacters and whitespace from a name argument."""
    return _UNSAFE_CHARS.sub("", value)


def restart_command(service_type: str, service_name: str, namespace: str = "default") -> list[str]:
    service_type = service_type.lower()
    if service_type == "systemd":
        return ["systemctl", "restart", service_name]
    if service_type == "kubernetes":
        return ["kubectl", "rollout", "restart", f"deployment/{service_name}", "-n", namespace]
    if service_type == "docker":
        return ["docker", "restart", service_name]
    raise ValueError(f"Unknown service type: {service_type}")


class RestartBackend(Protocol):
    async def restart(self, command: list[str]) -> tuple[int, str]: ...


@dataclass
class SimulatedRestartBackend:
    """Records restart commands instead of running them."""

    restarts: list[list[str]] = field(default_factory=list)
    exit_code: int = 0

    async def restart(self, command: list[str]) -> tuple[int, str]:
        self.restarts.append(command)
        return self.exit_code, f"simulated: {' '.join(command)}"


class SubprocessRestartBackend:
    """Runs the restart command on the local host."""

    def __init__(self, timeout_seconds: float = 60.0) -> None:
        self._timeout = timeout_seconds

    async def restart(self, command: list[str]) -> tuple[int, str]:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return -1, f"timed out after {self._timeout}s"
        return proc.returncode or 0, stdout.decode(errors="replace").strip()


class ServiceRestartTool(AgentTool):
    name = "service_restart"
    description = (
        "Restart a service using systemctl, kubectl rollout restart, or docker restart. "
        "Use as a remediation step when a service is unhealthy. Always verify health after restart."
    )
    category = "remediation"
    requires_approval = True
    is_mutating = True
    parameter_schema = {
        "type": "object",
        "properties": {
            "service_type": {"type": "string", "enum": ["systemd", "kubernetes", "docker"]},
            "service_name": {"type": "string", "description": "Unit, deployment or container name"},
            "namespace": {"type": "string", "description": "Kubernetes namespace", "default": "default"},
        },
        "required": ["service_type", "service_name"],
    }

    def __init__(self, backend: RestartBackend | None = None) -> None:
        self._backend: RestartBackend = backend or SimulatedRestartBackend()

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        service_name = sanitize(str(params["service_name"]))
        namespace = sanitize(str(params.get("namespace") or "default"))
        try:
            command = restart_command(str(params["service_type"]), service_name, namespace)
        except ValueError as e:
            return ToolResult.failure(str(e))

        if context.dry_run:
            return ToolResult.text(f"[dry run] would execute: {' '.join(command)}", dry_run=True)

        logger.info("service_restart", service=service_name, command=command[0], session_id=context.session_id)
        exit_code, output = await self._backend.restart(command)
        status = "SUCCESS" if exit_code == 0 else "FAILED"
        text = (
            f"Service Restart {status}:\nService: {service_name} ({params['service_type']})\n"
            f"Command: {' '.join(command)}\nExit Code: {exit_code}\n---\n{output}"
        )
        if exit_code != 0:
            return ToolResult(success=False, error=f"restart exited with {exit_code}",
                              content=ToolResult.text(text).content)
        return ToolResult.text(text, exit_code=exit_code)
