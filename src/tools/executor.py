"""Tool Executor.

Runs a single tool call: lookup, validation, authentication, execution
and timing. Every failure is contained in the returned ToolResult so one
bad call never aborts the rest of the response.
"""

import json
import time
from typing import Any

from shared.errors import (
    NotFoundError,
    PersistenceError,
    UnauthenticatedError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models import ToolCall, ToolResult, ToolResultStatus
from tools.registry import ToolRegistry

logger = get_logger(__name__)


def parse_arguments(arguments: str | dict[str, Any] | None) -> dict[str, Any]:
    """
    Decode raw tool-call arguments from the model.

    Raises:
        ValidationError: If the arguments are not a JSON object
    """
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments

    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid tool call arguments: {e.msg}") from e

    if not isinstance(parsed, dict):
        raise ValidationError("Tool call arguments must be a JSON object")
    return parsed


class ToolExecutor:
    """
    Executes tool calls against a registry.

    Order of checks: unknown tool, schema validation, authentication,
    then the executor itself. Nothing is persisted before all checks pass.
    """

    _STATUS_BY_ERROR = (
        (ValidationError, ToolResultStatus.VALIDATION_ERROR),
        (UnauthenticatedError, ToolResultStatus.UNAUTHENTICATED),
        (NotFoundError, ToolResultStatus.NOT_FOUND),
        (PersistenceError, ToolResultStatus.PERSISTENCE_ERROR),
    )

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(self, call: ToolCall) -> ToolResult:
        """
        Execute a tool call.

        Returns:
            Exactly one terminal result, successful or not
        """
        start_time = time.perf_counter()
        tool_name = call.tool_name
        log = logger.bind(
            tool=tool_name,
            tool_call_id=call.tool_call_id,
            user=call.context.user_id,
            conversation_id=call.context.conversation_id,
        )

        tool = self.registry.get(tool_name)
        if not tool:
            log.warning("Unknown tool requested")
            return ToolResult(
                tool_call_id=call.tool_call_id,
                tool_name=tool_name,
                status=ToolResultStatus.NOT_FOUND,
                error=f"Tool '{tool_name}' not found",
                error_code="TOOL_NOT_FOUND"
            )

        try:
            is_valid, errors = self.registry.validate_input(tool_name, call.parameters)
            if not is_valid:
                raise ValidationError(f"Validation failed: {'; '.join(errors)}", errors=errors)

            if tool.definition.persists and call.context.user is None:
                raise UnauthenticatedError("Authentication required to save visualizations")

            parameters = self.registry.prepare_input(tool_name, call.parameters)
            data = await tool.executor(parameters, call.context)
            result = ToolResult(
                tool_call_id=call.tool_call_id,
                tool_name=tool_name,
                status=ToolResultStatus.SUCCESS,
                data=data
            )

        except Exception as e:
            result = self._error_result(call, e)
            if result.status == ToolResultStatus.ERROR:
                log.error("Tool execution failed", error=str(e), exc_info=True)
            else:
                log.warning("Tool call rejected", status=result.status.value, error=str(e))

        result.execution_time_ms = (time.perf_counter() - start_time) * 1000
        log.info(
            "Tool executed",
            status=result.status.value,
            execution_time_ms=round(result.execution_time_ms, 2)
        )
        return result

    def _error_result(self, call: ToolCall, error: Exception) -> ToolResult:
        status = ToolResultStatus.ERROR
        for error_type, mapped in self._STATUS_BY_ERROR:
            if isinstance(error, error_type):
                status = mapped
                break

        return ToolResult(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            status=status,
            error=getattr(error, "message", None) or str(error),
            error_code=getattr(error, "code", "EXECUTION_ERROR")
        )
