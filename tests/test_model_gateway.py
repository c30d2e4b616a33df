"""Tests for model resolution and LLM providers."""

import pytest

from shared.config import LLMSettings
from shared.models import ChatMessage, StepFinish, TextDelta, ToolCallRequest


class TestModelResolution:
    """Tests for id normalization and vendor routing."""

    @pytest.mark.parametrize("requested, resolved", [
        ("gpt-4.1.mini", "gpt-4.1-mini"),
        ("o4-mini", "gpt-4o-mini"),
        ("claude-3-haiku-20240307", "claude-3-haiku-20240307"),
        (None, "gpt-4o"),
    ])
    def test_normalize_model_id(self, requested, resolved):
        from orchestrator.model_gateway import normalize_model_id

        assert normalize_model_id(requested) == resolved

    @pytest.mark.parametrize("model_id, vendor", [
        ("gpt-4o", "openai"),
        ("o3", "openai"),
        ("claude-3-haiku-20240307", "anthropic"),
        ("gemini-1.5-flash-latest", "google"),
        ("grok-3", "xai"),
        ("meta/DeepSeek-R1", "together"),
        ("llama-3-70b", None),
    ])
    def test_vendor_for(self, model_id, vendor):
        from orchestrator.model_gateway import vendor_for

        assert vendor_for(model_id) == vendor

    def test_system_prompt_addenda(self):
        from orchestrator.model_gateway import BASE_SYSTEM_PROMPT, build_system_prompt

        assert build_system_prompt("gpt-4o", "gpt-4o").endswith("You are powered by GPT-4o.")
        assert "o4-mini with advanced reasoning" in build_system_prompt("o4-mini", "gpt-4o-mini")
        assert build_system_prompt("grok-3", "grok-3") == BASE_SYSTEM_PROMPT


class TestModelGateway:
    """Tests for ModelGateway."""

    def _gateway(self):
        from orchestrator.llm import MockLLMProvider
        from orchestrator.model_gateway import ModelGateway

        built = []

        def factory(vendor, model, settings):
            built.append((vendor, model))
            return MockLLMProvider(model)

        return ModelGateway(LLMSettings(backend="mock"), provider_factory=factory), built

    def test_resolve_known_model(self):
        gateway, built = self._gateway()

        config = gateway.resolve("gemini-1.5-flash-latest")

        assert config.vendor == "google"
        assert config.model_id == "gemini-1.5-flash-latest"
        assert "Gemini 1.5 Flash" in config.system_prompt
        assert built == [("google", "gemini-1.5-flash-latest")]

    def test_unknown_model_falls_back(self):
        gateway, _ = self._gateway()

        config = gateway.resolve("llama-3-70b")

        assert config.requested_id == "llama-3-70b"
        assert config.model_id == "gpt-4o"
        assert config.vendor == "openai"

    def test_missing_model_uses_default(self):
        gateway, _ = self._gateway()

        assert gateway.resolve(None).model_id == "gpt-4o"

    def test_clients_cached_per_resolved_id(self):
        gateway, built = self._gateway()

        first = gateway.resolve("o4-mini")
        second = gateway.resolve("o4-mini")
        gateway.resolve("gpt-4o-mini")

        assert first.client is second.client
        assert built == [("openai", "gpt-4o-mini")]

    def test_gateways_do_not_share_clients(self):
        first, _ = self._gateway()
        second, _ = self._gateway()

        assert first.resolve("gpt-4o").client is not second.resolve("gpt-4o").client


class TestLLMProvider:
    """Tests for LLM providers."""

    @pytest.mark.asyncio
    async def test_mock_provider_default(self):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        events = [e async for e in provider.stream([ChatMessage(role="user", content="Hello")])]

        assert isinstance(events[0], TextDelta)
        assert isinstance(events[-1], StepFinish)
        assert events[-1].finish_reason == "stop"
        assert len(provider.call_history) == 1

    @pytest.mark.asyncio
    async def test_mock_provider_scripted_tool_call(self):
        from orchestrator.llm import MockLLMProvider

        provider = MockLLMProvider()
        provider.add_response(
            text="Plotting now",
            tool_calls=[{"id": "call_1", "name": "plotFunction2D", "arguments": {"functionString": "x"}}],
        )

        events = [e async for e in provider.stream([], system="sys", tools=[{"type": "function"}])]

        assert "".join(e.text for e in events if isinstance(e, TextDelta)) == "Plotting now"
        calls = [e for e in events if isinstance(e, ToolCallRequest)]
        assert calls[0].name == "plotFunction2D"
        assert calls[0].arguments == '{"functionString": "x"}'
        assert events[-1].finish_reason == "tool_calls"
        assert provider.call_history[0]["system"] == "sys"

    @pytest.mark.asyncio
    async def test_mock_provider_error(self):
        from orchestrator.llm import MockLLMProvider
        from shared.errors import ProviderError

        provider = MockLLMProvider()
        provider.add_error(ProviderError("down"))

        with pytest.raises(ProviderError):
            async for _ in provider.stream([]):
                pass

    def test_create_llm_provider_factory(self):
        from orchestrator.llm import (
            MockLLMProvider,
            OpenAICompatibleProvider,
            OpenAIProvider,
            create_llm_provider,
        )

        assert isinstance(create_llm_provider("openai", "gpt-4o", LLMSettings(backend="mock")), MockLLMProvider)

        settings = LLMSettings(backend="openai")
        assert isinstance(create_llm_provider("openai", "gpt-4o", settings), OpenAIProvider)

        anthropic = create_llm_provider("anthropic", "claude-3-haiku-20240307", settings)
        assert isinstance(anthropic, OpenAICompatibleProvider)
        assert anthropic.provider.api_base == "https://api.anthropic.com/v1/"

    def test_invalid_backend_raises(self):
        from orchestrator.llm import create_llm_provider

        with pytest.raises(ValueError, match="Unsupported"):
            create_llm_provider("openai", "gpt-4o", LLMSettings(backend="invalid"))

    def test_convert_messages(self):
        from llama_index.core.llms import MessageRole

        from orchestrator.llm import OpenAIProvider
        from shared.config import ProviderSettings

        provider = OpenAIProvider("gpt-4o", LLMSettings(), ProviderSettings(api_key="test"))
        converted = provider._convert_messages(
            [
                ChatMessage(role="user", content=[{"type": "text", "text": "Hi"}]),
                ChatMessage(role="tool", content="{}", tool_call_id="call_1"),
            ],
            system="Be helpful",
        )

        assert converted[0].role == MessageRole.SYSTEM
        assert converted[1].content == "Hi"
        assert converted[2].role == MessageRole.TOOL
        assert converted[2].additional_kwargs == {"tool_call_id": "call_1"}
