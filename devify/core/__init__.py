"""
Core modules for Devify: parsing, sandboxing and executing tool calls.
"""

from devify.core.tool_parser import ToolCall, ParsedResponse, parse_tool_calls, format_tool_results
from devify.core.tool_executors import ToolExecutor, ToolResult
from devify.core.config import Config

__all__ = [
    "ToolCall",
    "ParsedResponse",
    "parse_tool_calls",
    "format_tool_results",
    "ToolExecutor",
    "ToolResult",
    "Config",
]
