"""Shared utilities and base classes for the chat service."""

from shared.models import (
    ToolDefinition,
    ToolCall,
    ToolResult,
    ToolContext,
    UserContext,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "ToolDefinition",
    "ToolCall",
    "ToolResult",
    "ToolContext",
    "UserContext",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
