"""Tools the copilot can call against the support desk."""

from copilot.tools.base import ToolDefinition
from copilot.tools.registry import ToolsRegistry, get_tools_registry

__all__ = ["ToolDefinition", "ToolsRegistry", "get_tools_registry"]
