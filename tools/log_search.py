"""Simulated log search tool: filters and returns log entries from simulated data."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import JsonValue

from agent.models import ToolContext, ToolResult
from tools.base import AgentTool

_DATA_PATH = Path(__file__).resolve().parent.parent / "simulation" / "data" / "logs.json"


def _load_logs(path: Path) -> list[dict[str, Any]]:
    with open(path) as f:
        result: list[dict[str, Any]] = json.load(f)
        return result


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def search_logs(
    logs: list[dict[str, Any]],
    service: str,
    level: str | None = None,
    time_start: str | None = None,
    time_end: str | None = None,
    query: str | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Filter log entries.

    Args:
        logs: Entries to search.
        service: Service name to filter by (required).
        level: Log level filter (INFO, WARN, ERROR).
        time_start: ISO timestamp lower bound (inclusive).
        time_end: ISO timestamp upper bound (inclusive).
        query: Substring to match against the log message.
        limit: Keep only the most recent N matches.

    Returns:
        Matching log entries sorted by timestamp.
    """
    results = [log for log in logs if log["service"] == service]

    if level:
        results = [log for log in results if log["level"] == level.upper()]

    if time_start:
        start_dt = _parse_ts(time_start)
        results = [log for log in results if _parse_ts(log["timestamp"]) >= start_dt]

    if time_end:
        end_dt = _parse_ts(time_end)
        results = [log for log in results if _parse_ts(log["timestamp"]) <= end_dt]

    if query:
        query_lower = query.lower()
        results = [log for log in results if query_lower in log["message"].lower()]

    results.sort(key=lambda x: x["timestamp"])

    if limit is not None and limit > 0:
        results = results[-limit:]

    return results


class LogSearchTool(AgentTool):
    name = "log_search"
    description = "Search recent service logs by level, time window and message substring."
    category = "observability"
    parameter_schema = {
        "type": "object",
        "properties": {
            "service": {"type": "string", "description": "Service name"},
            "level": {"type": "string", "enum": ["INFO", "WARN", "ERROR", "info", "warn", "error"]},
            "time_start": {"type": "string", "description": "ISO timestamp lower bound"},
            "time_end": {"type": "string", "description": "ISO timestamp upper bound"},
            "query": {"type": "string", "description": "Substring to match in the message"},
            "limit": {"type": "integer", "description": "Max entries to return (most recent)"},
        },
        "required": ["service"],
    }

    def __init__(self, data_path: Path | None = None) -> None:
        self._data_path = data_path or _DATA_PATH

    async def execute(self, params: dict[str, JsonValue], context: ToolContext) -> ToolResult:
        try:
            logs = _load_logs(self._data_path)
        except (OSError, ValueError) as e:
            return ToolResult.failure(f"log source unavailable: {e}")

        matches = search_logs(
            logs,
            service=str(params["service"]),
            level=params.get("level"),  # type: ignore[arg-type]
            time_start=params.get("time_start"),  # type: ignore[arg-type]
            time_end=params.get("time_end"),  # type: ignore[arg-type]
            query=params.get("query"),  # type: ignore[arg-type]
            limit=params.get("limit"),  # type: ignore[arg-type]
        )
        if not matches:
            return ToolResult.text(f"No log entries found for {params['service']}.", matches=0)

        return ToolResult.table(
            ["timestamp", "level", "message"],
            [[m["timestamp"], m["level"], m["message"]] for m in matches],
        )
