"""Tool registry and execution.

Each tool is a schema-validated capability the model may invoke mid-response.
"""

from tools.registry import RegisteredTool, ToolRegistry
from tools.executor import ToolExecutor, parse_arguments

__all__ = [
    "RegisteredTool",
    "ToolRegistry",
    "ToolExecutor",
    "parse_arguments",
]
