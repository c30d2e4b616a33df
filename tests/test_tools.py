"""Tests for the tool registry and executor."""

import pytest

from shared.errors import ValidationError
from shared.models import (
    ExecutionType,
    ToolCall,
    ToolContext,
    ToolDefinition,
    ToolResultStatus,
    UserContext,
)


def _definition(name="echo", domain="test", persisting=False, schema=None):
    return ToolDefinition(
        name=name,
        domain=domain,
        description=f"{name} tool",
        input_schema=schema or {
            "type": "object",
            "properties": {
                "text": {"type": "string"},
                "repeat": {"type": "integer", "minimum": 1, "default": 1}
            },
            "required": ["text"]
        },
        execution_type=ExecutionType.PERSISTING if persisting else ExecutionType.STATELESS,
    )


async def _echo(params, context):
    return {"text": params["text"] * params["repeat"]}


def _call(name, parameters, user=None):
    return ToolCall(
        tool_call_id="call_1",
        tool_name=name,
        parameters=parameters,
        context=ToolContext(request_id="req-1", user=user, conversation_id="conv-1"),
    )


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_register_tool(self):
        from tools.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(_definition(), _echo)

        assert "echo" in registry
        assert len(registry) == 1
        assert registry.get("echo").definition.domain == "test"

    def test_register_duplicate_tool_raises(self):
        from tools.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(_definition(), _echo)

        with pytest.raises(ValueError, match="already registered"):
            registry.register(_definition(), _echo)

    def test_list_tools_by_domain(self):
        from tools.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(_definition("a", domain="plot"), _echo)
        registry.register(_definition("b", domain="plot"), _echo)
        registry.register(_definition("c", domain="molecule"), _echo)

        assert len(registry.list_tools(domain="plot")) == 2
        assert registry.list_domains() == ["molecule", "plot"]

    def test_validate_input(self):
        from tools.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(_definition(), _echo)

        assert registry.validate_input("echo", {"text": "hi"}) == (True, [])

        is_valid, errors = registry.validate_input("echo", {"repeat": 0})
        assert not is_valid
        assert len(errors) == 2

        is_valid, errors = registry.validate_input("missing", {})
        assert not is_valid
        assert "not found" in errors[0]

    def test_prepare_input_fills_defaults(self):
        from tools.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(_definition(), _echo)

        assert registry.prepare_input("echo", {"text": "hi"}) == {"text": "hi", "repeat": 1}

    def test_get_tools_for_llm(self):
        from tools.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(_definition(), _echo)

        tools = registry.get_tools_for_llm()
        assert tools[0]["type"] == "function"
        assert tools[0]["function"]["name"] == "echo"
        assert tools[0]["function"]["parameters"]["required"] == ["text"]

    def test_domain_tool_names_are_function_safe(self, registry):
        """Provider function-calling APIs accept only [a-zA-Z0-9_-] names."""
        import re

        names = [tool.name for tool in registry.list_tools()]
        assert set(names) == {
            "createPlotlyChart",
            "displayPlotlyChart",
            "plotFunction2D",
            "plotFunction3D",
            "showMoleculeStructure",
            "displayMolecule3D",
            "displayPhysicsSimulation",
            "evaluateExpression",
        }
        assert all(re.fullmatch(r"[a-zA-Z0-9_-]+", name) for name in names)


class TestParseArguments:
    """Tests for decoding model tool-call arguments."""

    def test_json_string(self):
        from tools.executor import parse_arguments

        assert parse_arguments('{"a": 1}') == {"a": 1}
        assert parse_arguments("") == {}
        assert parse_arguments({"a": 1}) == {"a": 1}

    def test_invalid_json_raises(self):
        from tools.executor import parse_arguments

        with pytest.raises(ValidationError):
            parse_arguments("{not json")

        with pytest.raises(ValidationError, match="JSON object"):
            parse_arguments("[1, 2]")


class TestToolExecutor:
    """Tests for ToolExecutor."""

    def _executor(self, persisting=False, executor_fn=_echo):
        from tools.executor import ToolExecutor
        from tools.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(_definition(persisting=persisting), executor_fn)
        return ToolExecutor(registry)

    @pytest.mark.asyncio
    async def test_execute_success(self):
        executor = self._executor()

        result = await executor.execute(_call("echo", {"text": "ab", "repeat": 2}))

        assert result.ok
        assert result.data == {"text": "abab"}
        assert result.tool_call_id == "call_1"
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_execute_unknown_tool(self):
        executor = self._executor()

        result = await executor.execute(_call("nonexistent", {}))

        assert result.status == ToolResultStatus.NOT_FOUND
        assert result.error_code == "TOOL_NOT_FOUND"
        assert result.to_payload() == {"error": "Tool 'nonexistent' not found", "code": "TOOL_NOT_FOUND"}

    @pytest.mark.asyncio
    async def test_validation_error_skips_executor(self):
        calls = []

        async def tracking(params, context):
            calls.append(params)
            return {}

        executor = self._executor(executor_fn=tracking)

        result = await executor.execute(_call("echo", {"repeat": "many"}))

        assert result.status == ToolResultStatus.VALIDATION_ERROR
        assert result.error_code == "VALIDATION_ERROR"
        assert calls == []

    @pytest.mark.asyncio
    async def test_persisting_tool_requires_user(self):
        calls = []

        async def tracking(params, context):
            calls.append(params)
            return {}

        executor = self._executor(persisting=True, executor_fn=tracking)

        anonymous = await executor.execute(_call("echo", {"text": "x"}))
        assert anonymous.status == ToolResultStatus.UNAUTHENTICATED
        assert calls == []

        user = UserContext(user_id="user1", username="alice")
        authenticated = await executor.execute(_call("echo", {"text": "x"}, user=user))
        assert authenticated.ok
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_executor_exception_is_contained(self):
        async def broken(params, context):
            raise RuntimeError("boom")

        executor = self._executor(executor_fn=broken)

        result = await executor.execute(_call("echo", {"text": "x"}))

        assert result.status == ToolResultStatus.ERROR
        assert result.error == "boom"
        assert result.error_code == "EXECUTION_ERROR"
        assert not result.ok
