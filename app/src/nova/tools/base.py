"""
NovaTool: the base class for tools the provider can call.

name + description + parameters + execute. Each tool also has a
status_text that the streamer can show (or speak) while it runs.

Tools are provider-agnostic. The registry exports OpenAI function
schemas; the message-block adapter converts them on the way out.
Errors raised by execute() propagate: the tool loop contains them per
call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from nova.turn.contracts import ToolResult


@dataclass
class ToolParam:
    """A single parameter for a tool."""

    name: str
    type: str  # "string", "integer", "boolean", "array", "object"
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


class NovaTool(ABC):
    """Subclass, set the class attributes, implement execute()."""

    name: str = ""
    description: str = ""
    status_text: str = "Working..."
    parameters: list[ToolParam] = []

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult:
        ...

    def to_openai_schema(self) -> dict:
        properties = {}
        required = []
        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.type, "description": param.description}
            if param.enum:
                prop["enum"] = param.enum
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    def validate_args(self, args: dict) -> dict:
        """Fill defaults, drop unknown keys. Raises ValueError on missing args."""
        cleaned = {}
        for param in self.parameters:
            if param.name in args:
                cleaned[param.name] = args[param.name]
            elif param.required:
                raise ValueError(f"Missing required parameter: {param.name}")
            elif param.default is not None:
                cleaned[param.name] = param.default
        return cleaned

    def __repr__(self) -> str:
        return f"<Tool:{self.name}>"
