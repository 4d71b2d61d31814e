"""Simulated metrics query tool: returns time-series data from simulated data."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import JsonValue

from agent.models import ToolContext, ToolResult
from tools.base import AgentTool

_DATA_PATH = Path(__file__).resolve().parent.parent / "simulation" / "data" / "metrics.json"


def _load_metrics(path: Path) -> list[dict[str, Any]]:
    with open(path) as f:
        result: list[dict[str, Any]] = json.load(f)
        return result


def query_metrics(
    metrics: list[dict[str, Any]],
    service: str,
    metric_name: str | None = None,
    time_start: str | None = None,
    time_end: str | None = None,
) -> list[dict[str, Any]]:
    """Filter metric data points for a service, sorted by timestamp."""
    results = [m for m in metrics if m["service"] == service]

    if metric_name:
        results = [m for m in results if m["metric_name"] == metric_name]

    if time_start:
        start_dt = datetime.fromisoformat(time_start.replace("Z", "+00:00"))
        results = [
            m for m in results
            if datetime.fromisoformat(m["timestamp"].replace("Z", "+00:00")) >= start_dt
        ]

    if time_end:
        end_dt = datetime.fromisoformat(time_end.replace("Z", "+00:00"))
        results = [
            m for m in results
            if datetime.fromisoformat(m["timestamp"].replace("Z", "+00:00")) <= end_dt
        ]

    results.sort(key=lambda x: x["timestamp"])

    return results


class MetricsQueryTool(AgentTool):
    name = "metrics_query"
    description = "Query time-series metrics (latency_p99, error_rate, cpu_usage, memory_usage) for a service."
    category = "observability"
    parameter_schema = {
        "type": "object",
        "properties": {
            "service": {"type": "string", "description": "Service name"},
            "metric_name": {"type": "string", "description": "Metric to return; all metrics when omitted"},
            "time_start": {"type": "string", "description": "ISO timestamp lower bound"},
            "time_end": {"type": "string", "description": "ISO timestamp upper bound"},
        },
        "required": ["service"],
    }

    def __init__(self, data_path: Path | None = None) -> None:
        self._data_path = data_path or _DATA_PATH

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        try:
            metrics = _load_metrics(self._data_path)
        except (OSError, ValueError) as e:
            return ToolResult.failure(f"metrics source unavailable: {e}")

        points = query_metrics(
            metrics,
            service=str(params["service"]),
            metric_name=params.get("metric_name"),  # type: ignore[arg-type]
            time_start=params.get("time_start"),  # type: ignore[arg-type]
            time_end=params.get("time_end"),  # type: ignore[arg-type]
        )
        if not points:
            return ToolResult.text(f"No metrics found for {params['service']}.", points=0)

        if len(points) == 1:
            p = points[0]
            return ToolResult.metric(p["metric_name"], p["value"], p.get("unit", ""))

        return ToolResult.table(
            ["timestamp", "metric", "value", "unit"],
            [[p["timestamp"], p["metric_name"], p["value"], p.get("unit", "")] for p in points],
        )
