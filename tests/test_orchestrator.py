"""Tests for the streaming orchestrator."""

import asyncio
import json

import pytest

from shared.config import LLMSettings
from shared.errors import InvalidRequestError, ProviderError, ProviderTimeoutError
from shared.models import ChatMessage, StepFinish, TextDelta, UserContext


def _orchestrator(registry, conversations, provider, **llm_overrides):
    from orchestrator.model_gateway import ModelGateway
    from orchestrator.streaming import StreamingOrchestrator
    from tools.executor import ToolExecutor

    llm_overrides.setdefault("backend", "mock")
    llm_overrides.setdefault("max_duration_seconds", 5)
    llm_settings = LLMSettings(**llm_overrides)
    gateway = ModelGateway(llm_settings, provider_factory=lambda vendor, model, settings: provider)
    return StreamingOrchestrator(
        gateway=gateway,
        registry=registry,
        executor=ToolExecutor(registry),
        conversations=conversations,
        llm_settings=llm_settings,
    )


def _request(content="Plot sin(x)", user=None, **kwargs):
    from orchestrator.streaming import ChatRequest

    return ChatRequest(messages=[ChatMessage(role="user", content=content)], user=user, **kwargs)


async def _collect(stream):
    return [part async for part in stream.parts()]


def _types(parts):
    return [part.type for part in parts]


SIN_CALL = {
    "id": "call_sin",
    "name": "plotFunction2D",
    "arguments": {"functionString": "sin(x)", "variable": {"name": "x", "range": [-3, 3]}},
}


class TestStreamingOrchestrator:
    """Tests for StreamingOrchestrator."""

    @pytest.mark.asyncio
    async def test_text_only_turn(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(text="Hello there friend")
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request("Hi", user=user, model_id="gpt-4o"))
        parts = await _collect(stream)

        assert _types(parts) == ["text", "text", "text", "finish-step", "finish"]
        assert "".join(p.text for p in parts if p.type == "text") == "Hello there friend"
        assert stream.headers == {"X-Conversation-Id": stream.conversation_id}

        conversation = await conversations.get(stream.conversation_id)
        assert conversation.user_id == user.user_id
        assert conversation.title == "Hi"
        assert conversation.model == "gpt-4o"

        messages = await conversations.get_messages(stream.conversation_id)
        assert [(m.role, m.content) for m in messages] == [("user", "Hi"), ("assistant", "Hello there friend")]

    @pytest.mark.asyncio
    async def test_system_prompt_and_tools_sent_to_model(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        orchestrator = _orchestrator(registry, conversations, provider)

        await _collect(await orchestrator.start(_request(user=user)))

        call = provider.call_history[0]
        assert call["system"].startswith("You are a helpful STEM assistant.")
        assert {t["function"]["name"] for t in call["tools"]} >= {"plotFunction2D", "evaluateExpression"}

    @pytest.mark.asyncio
    async def test_tool_call_lifecycle(self, registry, conversations, visualizations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(text="Here is the plot", tool_calls=[SIN_CALL])
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request(user=user))
        parts = await _collect(stream)

        call_index = next(i for i, p in enumerate(parts) if p.type == "tool-call")
        result_parts = [p for p in parts if p.type == "tool-result"]
        assert len(result_parts) == 1
        assert parts.index(result_parts[0]) > call_index
        assert parts[call_index].args["functionString"] == "sin(x)"

        result = result_parts[0].result
        assert result_parts[0].is_error is False
        assert result["type"] == "plot"

        stored = await visualizations.get(result["visualizationId"])
        assert stored.conversation_id == stream.conversation_id

        messages = await conversations.get_messages(stream.conversation_id)
        assistant = messages[-1]
        assert assistant.content == "Here is the plot"
        assert assistant.meta["toolInvocations"][0]["status"] == "success"

        invocations = await conversations.get_tool_invocations(assistant.id)
        assert len(invocations) == 1
        assert invocations[0].tool_name == "plotFunction2D"
        assert invocations[0].result["visualizationId"] == result["visualizationId"]

    @pytest.mark.asyncio
    async def test_tool_only_turn_uses_placeholder(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(tool_calls=[SIN_CALL])
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request(user=user))
        await _collect(stream)

        messages = await conversations.get_messages(stream.conversation_id)
        assert messages[-1].content == "Generated UI component"

    @pytest.mark.asyncio
    async def test_tool_error_does_not_stop_text(self, registry, conversations, visualizations, user):
        from orchestrator.llm import MockLLMProvider
        from shared.models import ToolCallRequest

        provider = MockLLMProvider()
        provider.add_events([
            TextDelta(text="Loading "),
            ToolCallRequest(id="bad", name="showMoleculeStructure", arguments='{"pdbId": "1cb"}'),
            TextDelta(text="the molecule."),
            StepFinish(finish_reason="tool_calls"),
        ])
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request("Show 1cb", user=user))
        parts = await _collect(stream)

        assert "".join(p.text for p in parts if p.type == "text") == "Loading the molecule."
        result = next(p for p in parts if p.type == "tool-result")
        assert result.is_error
        assert result.result["code"] == "VALIDATION_ERROR"

        rejected = [c for c in captured.calls if c.kwargs.get("event") == "Tool call rejected"]
        assert len(rejected) == 1
        assert rejected[0].method_name == "warning"
        assert rejected[0].kwargs["tool"] == "evaluateExpression"
        assert rejected[0].kwargs["conversation_id"] == result_conversation_id(parts)
        assert parts[-1].type == "finish"
        assert await visualizations.list_for_conversation(stream.conversation_id) == []

    @pytest.mark.asyncio
    async def test_each_tool_call_gets_one_result(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(tool_calls=[
            SIN_CALL,
            {"id": "call_mol", "name": "showMoleculeStructure", "arguments": {"pdbId": "1cbs"}},
            {"id": "call_calc", "name": "evaluateExpression", "arguments": {"expression": "2^8"}},
            {"id": "call_missing", "name": "noSuchTool", "arguments": {}},
        ])
        orchestrator = _orchestrator(registry, conversations, provider)

        parts = await _collect(await orchestrator.start(_request(user=user)))

        calls = [p.tool_call_id for p in parts if p.type == "tool-call"]
        results = {p.tool_call_id: p for p in parts if p.type == "tool-result"}
        assert sorted(calls) == sorted(results)
        assert len(calls) == 4
        assert results["call_calc"].result["result"] == 256.0
        assert results["call_missing"].result["code"] == "TOOL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_arguments_json(self, registry, conversations, user, monkeypatch):
        import structlog
        from structlog.testing import CapturingLogger

        from orchestrator import streaming
        from orchestrator.llm import MockLLMProvider

        captured = CapturingLogger()
        monkeypatch.setattr(streaming, "logger", structlog.wrap_logger(captured, processors=[]))

        provider = MockLLMProvider()
        provider.add_response(tool_calls=[{"id": "c1", "name": "evaluateExpression", "arguments": "{oops"}])
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request(user=user))
        parts = await _collect(stream)

        result = next(p for p in parts if p.type == "tool-result")
        assert result.is_error
        assert result.result["code"] == "VALIDATION_ERROR"

        rejected = [c for c in captured.calls if c.kwargs.get("event") == "Tool call rejected"]
        assert len(rejected) == 1
        assert rejected[0].method_name == "warning"
        assert rejected[0].kwargs["tool"] == "evaluateExpression"
        assert rejected[0].kwargs["conversation_id"] == stream.conversation_id
        assert rejected[0].kwargs["user"] == user.user_id

    @pytest.mark.asyncio
    async def test_anonymous_request_persists_nothing(self, registry, conversations):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(text="ok", tool_calls=[SIN_CALL])
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request())
        parts = await _collect(stream)

        assert stream.conversation_id is None
        assert stream.headers == {}
        result = next(p for p in parts if p.type == "tool-result")
        assert result.result["code"] == "UNAUTHENTICATED"

    @pytest.mark.asyncio
    async def test_existing_conversation_reused(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        existing = await conversations.create(user.user_id, title="Earlier")
        orchestrator = _orchestrator(registry, conversations, MockLLMProvider())

        stream = await orchestrator.start(_request(user=user, conversation_id=existing.id))
        await _collect(stream)

        assert stream.conversation_id == existing.id
        assert len(await conversations.list_conversations(user.user_id)) == 1
        assert len(await conversations.get_messages(existing.id)) == 2

    @pytest.mark.asyncio
    async def test_foreign_conversation_not_reused(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        foreign = await conversations.create("someone-else")
        orchestrator = _orchestrator(registry, conversations, MockLLMProvider())

        stream = await orchestrator.start(_request(user=user, conversation_id=foreign.id))
        await _collect(stream)

        assert stream.conversation_id != foreign.id
        assert await conversations.get_messages(foreign.id) == []

    @pytest.mark.asyncio
    async def test_empty_messages_rejected(self, registry, conversations):
        from orchestrator.llm import MockLLMProvider
        from orchestrator.streaming import ChatRequest

        orchestrator = _orchestrator(registry, conversations, MockLLMProvider())

        with pytest.raises(InvalidRequestError):
            await orchestrator.start(ChatRequest(messages=[]))

    @pytest.mark.asyncio
    async def test_provider_failure_before_first_part(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_error(ProviderError("upstream down"))
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request(user=user))
        with pytest.raises(ProviderError):
            await _collect(stream)

    @pytest.mark.asyncio
    async def test_unexpected_provider_exception_becomes_provider_error(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_error(RuntimeError("socket closed"))
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request(user=user))
        with pytest.raises(ProviderError, match="socket closed"):
            await _collect(stream)

    @pytest.mark.asyncio
    async def test_provider_failure_mid_stream(self, registry, conversations, user):
        from orchestrator.llm import LLMProvider

        class FailsAfterText(LLMProvider):
            model = "broken"

            async def stream(self, messages, system=None, tools=None):
                yield TextDelta(text="Partial")
                raise ProviderError("connection reset")

        orchestrator = _orchestrator(registry, conversations, FailsAfterText())

        stream = await orchestrator.start(_request(user=user))
        parts = await _collect(stream)

        assert _types(parts) == ["text", "finish-step", "error", "finish"]
        assert parts[2].error == "connection reset"
        assert parts[-1].finish_reason == "error"

        messages = await conversations.get_messages(stream.conversation_id)
        assert messages[-1].content == "Partial"

    @pytest.mark.asyncio
    async def test_model_call_timeout(self, registry, conversations, user):
        from orchestrator.llm import LLMProvider

        class Stalls(LLMProvider):
            model = "slow"

            async def stream(self, messages, system=None, tools=None):
                await asyncio.sleep(10)
                yield TextDelta(text="too late")

        orchestrator = _orchestrator(registry, conversations, Stalls(), max_duration_seconds=0.05)

        stream = await orchestrator.start(_request(user=user))
        with pytest.raises(ProviderTimeoutError):
            await _collect(stream)

    @pytest.mark.asyncio
    async def test_multi_step_feeds_tool_results_back(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(tool_calls=[
            {"id": "calc", "name": "evaluateExpression", "arguments": {"expression": "6*7"}}
        ])
        provider.add_response(text="The answer is 42")
        orchestrator = _orchestrator(registry, conversations, provider, max_steps=3)

        stream = await orchestrator.start(_request("What is 6*7?", user=user))
        parts = await _collect(stream)

        assert _types(parts).count("finish-step") == 2
        assert len(provider.call_history) == 2

        second_history = provider.call_history[1]["messages"]
        assert second_history[-2].role == "assistant"
        assert second_history[-2].tool_calls[0]["function"]["name"] == "evaluateExpression"
        assert second_history[-1].role == "tool"
        assert json.loads(second_history[-1].content)["result"] == 42.0

        messages = await conversations.get_messages(stream.conversation_id)
        assert messages[-1].content == "The answer is 42"

    @pytest.mark.asyncio
    async def test_single_step_by_default(self, registry, conversations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(tool_calls=[
            {"id": "calc", "name": "evaluateExpression", "arguments": {"expression": "1+1"}}
        ])
        orchestrator = _orchestrator(registry, conversations, provider)

        await _collect(await orchestrator.start(_request(user=user)))

        assert len(provider.call_history) == 1

    @pytest.mark.asyncio
    async def test_tools_finish_after_client_disconnect(self, registry, conversations, visualizations, user):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(tool_calls=[SIN_CALL])
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request(user=user))
        parts = stream.parts()
        async for part in parts:
            if part.type == "tool-call":
                break
        await parts.aclose()

        await orchestrator.drain()

        rows = await visualizations.list_for_conversation(stream.conversation_id)
        assert len(rows) == 1
        # finalize is skipped for an abandoned stream
        assert await conversations.get_messages(stream.conversation_id) == []

    @pytest.mark.asyncio
    async def test_request_level_visualization_id(self, registry, conversations, visualizations, user):
        from orchestrator.llm import MockLLMProvider

        conversation = await conversations.create(user.user_id)
        existing = await visualizations.create(
            user_id=user.user_id,
            conversation_id=conversation.id,
            type="molecule",
            title="Structure 1CBS",
            data={"pdbId": "1cbs"},
        )

        provider = MockLLMProvider()
        provider.add_response(tool_calls=[{"id": "m", "name": "showMoleculeStructure", "arguments": {"pdbId": "4hhb"}}])
        orchestrator = _orchestrator(registry, conversations, provider)

        stream = await orchestrator.start(_request(
            user=user,
            conversation_id=conversation.id,
            visualization_id=existing.id,
        ))
        parts = await _collect(stream)

        result = next(p for p in parts if p.type == "tool-result")
        assert result.result["visualizationId"] == existing.id
        assert len(await visualizations.list_for_conversation(conversation.id)) == 1
