"""Health probe tool: HTTP via httpx, raw TCP via asyncio streams."""

from __future__ import annotations

import asyncio
import time
from urllib.parse import urlparse

import httpx
import structlog
from pydantic import JsonValue

from agent.models import ToolContext, ToolResult
from tools.base import AgentTool

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 5.0


class HealthCheckTool(AgentTool):
    """Probe a service endpoint and report status and latency.

    ``http(s)://`` targets are fetched with a GET; a 2xx/3xx status is healthy.
    ``tcp://host:port`` targets are healthy when a connection can be opened.
    """

    name = "health_check"
    description = "Check whether a service endpoint is healthy (HTTP GET or tcp://host:port connect)."
    category = "diagnostics"
    parameter_schema = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "http(s):// or tcp://host:port target"},
            "service_url": {"type": "string", "description": "Alias of url, injected by playbooks"},
            "timeout_seconds": {"type": "number", "description": "Probe timeout"},
        },
    }

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        target = params.get("url") or params.get("service_url")
        if not isinstance(target, str) or not target:
            return ToolResult.failure("a url (or service_url) is required")

        timeout = params.get("timeout_seconds")
        timeout_s = float(timeout) if isinstance(timeout, (int, float)) else DEFAULT_TIMEOUT_SECONDS

        if target.startswith("tcp://"):
            return await self._probe_tcp(target, timeout_s)
        return await self._probe_http(target, timeout_s)

    async def _probe_http(self, url: str, timeout_s: float) -> ToolResult:
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.info("health_probe_failed", url=url, error=str(e))
            return ToolResult.failure(f"{url} unreachable: {e}")

        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        healthy = response.status_code < 400
        summary = {
            "url": url,
            "status_code": response.status_code,
            "healthy": healthy,
            "latency_ms": latency_ms,
        }
        if not healthy:
            return ToolResult(
                success=False,
                error=f"{url} returned HTTP {response.status_code}",
                content=ToolResult.structured(summary).content,
            )
        return ToolResult.structured(summary)

    async def _probe_tcp(self, target: str, timeout_s: float) -> ToolResult:
        parsed = urlparse(target)
        if not parsed.hostname or not parsed.port:
            return ToolResult.failure(f"invalid tcp target: {target}")

        start = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(parsed.hostname, parsed.port),
                timeout=timeout_s,
            )
        except (OSError, TimeoutError) as e:
            return ToolResult.failure(f"{target} unreachable: {e or 'timed out'}")

        writer.close()
        await writer.wait_closed()
        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        return ToolResult.structured({"url": target, "healthy": True, "latency_ms": latency_ms})
