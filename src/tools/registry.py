"""Tool Registry.

Maps tool names to their definition and executor. The registry is built
once at startup and only read afterwards.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger
from shared.models import ToolContext, ToolDefinition
from shared.schema import apply_defaults, validate_schema

logger = get_logger(__name__)


# Executors receive validated, default-filled parameters
ToolExecutorFn = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class RegisteredTool:
    """A tool definition paired with the coroutine that runs it."""
    definition: ToolDefinition
    executor: ToolExecutorFn

    @property
    def name(self) -> str:
        return self.definition.name


class ToolRegistry:
    """
    Central registry for all tools.

    Responsibilities:
    - Register tools from domains
    - Lookup tools by name
    - Validate tool input against schemas
    - Format tool definitions for the model
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}
        self._domains: set[str] = set()

    def register(self, definition: ToolDefinition, executor: ToolExecutorFn) -> None:
        """
        Register a tool in the registry.

        Raises:
            ValueError: If tool name is already registered
        """
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered")

        self._tools[definition.name] = RegisteredTool(definition, executor)
        self._domains.add(definition.domain)

        logger.debug(
            "Tool registered",
            tool=definition.name,
            domain=definition.domain,
            execution_type=definition.execution_type.value
        )

    def get(self, tool_name: str) -> Optional[RegisteredTool]:
        return self._tools.get(tool_name)

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self, domain: Optional[str] = None) -> list[ToolDefinition]:
        """List all registered tool definitions, optionally filtered by domain."""
        tools = [t.definition for t in self._tools.values()]
        if domain:
            tools = [t for t in tools if t.domain == domain]
        return tools

    def list_domains(self) -> list[str]:
        return sorted(self._domains)

    def validate_input(
        self,
        tool_name: str,
        parameters: dict[str, Any]
    ) -> tuple[bool, list[str]]:
        """
        Validate input parameters against the tool's input schema.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        tool = self.get(tool_name)
        if not tool:
            return False, [f"Tool '{tool_name}' not found"]

        return validate_schema(parameters, tool.definition.input_schema)

    def prepare_input(self, tool_name: str, parameters: dict[str, Any]) -> dict[str, Any]:
        """Fill schema defaults into already validated parameters."""
        tool = self.get(tool_name)
        if not tool:
            return parameters
        return apply_defaults(parameters, tool.definition.input_schema)

    def get_tools_for_llm(self, domains: Optional[list[str]] = None) -> list[dict[str, Any]]:
        """Tool definitions in OpenAI function-calling format."""
        tools = self.list_tools()
        if domains:
            tools = [t for t in tools if t.domain in domains]

        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema or {
                        "type": "object",
                        "properties": {},
                        "required": []
                    }
                }
            }
            for tool in tools
        ]
