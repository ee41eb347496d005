"""Tool definitions, the shared registry and built-in local tools."""

from modelcli.tools.base import FunctionTool, Tool, ToolContext
from modelcli.tools.builtin import register_builtin_tools
from modelcli.tools.registry import ToolRegistry

__all__ = [
    "FunctionTool",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "register_builtin_tools",
]
