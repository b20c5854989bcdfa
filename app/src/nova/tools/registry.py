"""
Tool Registry: register tools, export schemas, execute tool calls.

This is the Tool Runtime boundary the turn core talks to:
``execute_tool_use(call)`` runs one provider-requested call and may
raise; the tool loop converts failures into error-marked results.
"""

from __future__ import annotations

import logging

from nova.tools.base import NovaTool
from nova.turn.contracts import ToolCall, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Central registry for all available tools."""

    def __init__(self):
        self._tools: dict[str, NovaTool] = {}

    def register(self, tool: NovaTool) -> None:
        """Register a tool. Overwrites if the name already exists."""
        if not tool.name:
            raise ValueError(f"Tool must have a name: {tool}")
        self._tools[tool.name] = tool
        logger.info(f"Registered tool: {tool.name}")

    def get(self, name: str) -> NovaTool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[NovaTool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def get_status_text(self, name: str) -> str:
        tool = self._tools.get(name)
        return tool.status_text if tool else "Working..."

    def to_openai_tools(self) -> list[dict]:
        return [tool.to_openai_schema() for tool in self._tools.values()]

    async def execute_tool_use(self, call: ToolCall) -> ToolResult:
        """Run one tool call. Tool exceptions propagate to the caller."""
        tool = self._tools.get(call.name)
        if not tool:
            return ToolResult.failed(f"Unknown tool: {call.name}", call_id=call.id)

        logger.info(f"Executing tool: {call.name}({', '.join(call.input.keys())})")
        cleaned = tool.validate_args(call.input)
        result = await tool.execute(**cleaned)
        return ToolResult(content=result.content, errored=result.errored, call_id=call.id)
