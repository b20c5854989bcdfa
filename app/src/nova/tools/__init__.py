"""Nova Tools: what the model can call during a turn."""

from nova.tools.base import NovaTool, ToolParam
from nova.tools.registry import ToolRegistry

__all__ = ["NovaTool", "ToolParam", "ToolRegistry"]
