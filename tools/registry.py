"""Tool registry: maps tool names to tool capabilities."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

import structlog

from agent.errors import ToolNotFoundError
from tools.base import AgentTool

logger = structlog.get_logger()


class ToolRegistry:
    """Lookup table of registered tools, filterable by an allowed-name set."""

    def __init__(self, tools: Iterable[AgentTool] | None = None) -> None:
        self._lock = threading.Lock()
        self._tools: dict[str, AgentTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: AgentTool) -> None:
        with self._lock:
            self._tools[tool.name] = tool
        logger.info("tool_registered", tool=tool.name, category=tool.category)

    def unregister(self, tool_name: str) -> None:
        with self._lock:
            self._tools.pop(tool_name, None)
        logger.info("tool_unregistered", tool=tool_name)

    def get_tool(self, name: str) -> AgentTool | None:
        with self._lock:
            return self._tools.get(name)

    def require_tool(self, name: str) -> AgentTool:
        tool = self.get_tool(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_all_tools(self) -> list[AgentTool]:
        with self._lock:
            return list(self._tools.values())

    def get_tools_for_profile(self, allowed_tool_names: set[str]) -> list[AgentTool]:
        """Tools whose names are in the allowed set (``*`` means all)."""
        if "*" in allowed_tool_names:
            return self.get_all_tools()
        return [t for t in self.get_all_tools() if t.name in allowed_tool_names]

    def get_tools_by_category(self, category: str) -> list[AgentTool]:
        return [t for t in self.get_all_tools() if t.category.lower() == category.lower()]

    def get_schemas(self, tools: Iterable[AgentTool] | None = None) -> list[dict[str, Any]]:
        """Tool specs for LLM tool-use, for *tools* or every registered tool."""
        selected = list(tools) if tools is not None else self.get_all_tools()
        return [t.to_schema() for t in selected]

    def list_tools(self) -> dict[str, str]:
        """Tool name → "category - description", sorted by category then name."""
        return {
            t.name: f"{t.category} - {t.description}"
            for t in sorted(self.get_all_tools(), key=lambda t: (t.category, t.name))
        }

    def list_tools_detailed(self, approval_required: set[str] | None = None) -> list[dict[str, Any]]:
        approval_required = approval_required or set()
        return [
            {
                "name": t.name,
                "category": t.category,
                "description": t.description,
                "requires_approval": t.requires_approval or t.name in approval_required,
                "is_mutating": t.is_mutating,
            }
            for t in sorted(self.get_all_tools(), key=lambda t: (t.category, t.name))
        ]

    @property
    def tool_count(self) -> int:
        with self._lock:
            return len(self._tools)
