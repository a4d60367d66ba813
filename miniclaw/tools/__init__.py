"""Tool system: registry, built-in tools and risk classification."""

from miniclaw.tools.builtin import create_default_router, register_builtin_tools
from miniclaw.tools.risk import RiskLevel, classify, describe_tool_call
from miniclaw.tools.router import InvalidArgumentsError, Tool, ToolError, ToolRouter, UnknownToolError

__all__ = [
    "InvalidArgumentsError",
    "RiskLevel",
    "Tool",
    "ToolError",
    "ToolRouter",
    "UnknownToolError",
    "classify",
    "create_default_router",
    "describe_tool_call",
    "register_builtin_tools",
]
