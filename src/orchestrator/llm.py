"""LLM Integration Layer using LlamaIndex.

Providers turn a message history plus tool definitions into a stream of
events: text deltas in emission order, then the complete tool calls of
the step, then a step-finish marker. Supported backends:
- OpenAI
- Azure OpenAI
- Any OpenAI-compatible vendor endpoint (Anthropic, Gemini, xAI, Together)

The LLM has no direct database or tool access.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from shared.config import LLMSettings, ProviderSettings
from shared.errors import ProviderError
from shared.logging import get_logger
from shared.models import ChatMessage, LLMEvent, StepFinish, TextDelta, ToolCallRequest

logger = get_logger(__name__)


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    LLM Integration Rules:
    - LLM receives only the registered tools and the conversation
    - LLM outputs text and/or structured tool calls
    - LLM never executes tools or decides authorization
    """

    model: str

    @abstractmethod
    def stream(
        self,
        messages: list[ChatMessage],
        system: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[LLMEvent]:
        """
        Stream one model call.

        Args:
            messages: Conversation history
            system: System prompt
            tools: Available tools in OpenAI function format

        Raises:
            ProviderError: If the provider call fails
        """


class LlamaIndexProvider(LLMProvider):
    """Streams through a LlamaIndex chat LLM built on first use."""

    def __init__(self, model: str, settings: LLMSettings, provider: ProviderSettings) -> None:
        self.model = model
        self.settings = settings
        self.provider = provider
        self._llm = None

    @abstractmethod
    def _build_llm(self):
        """Construct the LlamaIndex LLM."""

    def _get_llm(self):
        """Lazy initialization of LlamaIndex LLM."""
        if self._llm is None:
            self._llm = self._build_llm()
        return self._llm

    def _convert_messages(
        self,
        messages: list[ChatMessage],
        system: Optional[str] = None,
    ) -> list:
        """Convert internal messages to LlamaIndex format."""
        from llama_index.core.llms import ChatMessage as LlamaChatMessage, MessageRole

        role_map = {
            "user": MessageRole.USER,
            "assistant": MessageRole.ASSISTANT,
            "system": MessageRole.SYSTEM,
            "tool": MessageRole.TOOL,
        }

        result = []
        if system:
            result.append(LlamaChatMessage(role=MessageRole.SYSTEM, content=system))

        for msg in messages:
            additional_kwargs: dict[str, Any] = {}
            if msg.tool_calls:
                additional_kwargs["tool_calls"] = msg.tool_calls
            if msg.tool_call_id:
                additional_kwargs["tool_call_id"] = msg.tool_call_id

            result.append(LlamaChatMessage(
                role=role_map.get(msg.role, MessageRole.USER),
                content=msg.text,
                additional_kwargs=additional_kwargs,
            ))

        return result

    async def stream(
        self,
        messages: list[ChatMessage],
        system: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[LLMEvent]:
        llm = self._get_llm()
        chat_messages = self._convert_messages(messages, system)
        kwargs = {"tools": tools} if tools else {}

        last_chunk = None
        try:
            response = await llm.astream_chat(chat_messages, **kwargs)
            async for chunk in response:
                last_chunk = chunk
                if chunk.delta:
                    yield TextDelta(text=chunk.delta)
        except Exception as e:
            logger.error("LLM streaming failed", model=self.model, error=str(e))
            raise ProviderError(f"Model call failed: {e}", model=self.model) from e

        tool_calls = []
        if last_chunk is not None and last_chunk.message is not None:
            tool_calls = last_chunk.message.additional_kwargs.get("tool_calls") or []

        for tc in tool_calls:
            yield ToolCallRequest(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )

        yield StepFinish(finish_reason="tool_calls" if tool_calls else "stop")


class OpenAIProvider(LlamaIndexProvider):
    """OpenAI LLM provider using LlamaIndex."""

    def _build_llm(self):
        from llama_index.llms.openai import OpenAI

        return OpenAI(
            model=self.model,
            api_key=self.provider.api_key,
            api_base=self.provider.api_base,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )


class AzureOpenAIProvider(LlamaIndexProvider):
    """Azure OpenAI LLM provider using LlamaIndex."""

    def _build_llm(self):
        from llama_index.llms.azure_openai import AzureOpenAI

        return AzureOpenAI(
            model=self.model,
            deployment_name=self.provider.deployment_name or self.model,
            api_key=self.provider.api_key,
            azure_endpoint=self.provider.api_base,
            api_version=self.provider.api_version,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )


class OpenAICompatibleProvider(LlamaIndexProvider):
    """Vendors exposing an OpenAI-compatible chat completions endpoint."""

    def _build_llm(self):
        from llama_index.llms.openai_like import OpenAILike

        return OpenAILike(
            model=self.model,
            api_key=self.provider.api_key,
            api_base=self.provider.api_base,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            is_chat_model=True,
            is_function_calling_model=True,
        )


class MockLLMProvider(LLMProvider):
    """
    Mock LLM provider for testing without API calls.

    Each call consumes the next scripted step; when none is queued a fixed
    text reply is streamed.
    """

    def __init__(self, model: str = "mock") -> None:
        self.model = model
        self.call_history: list[dict[str, Any]] = []
        self._steps: list[list[LLMEvent] | Exception] = []

    def add_response(
        self,
        text: str = "",
        tool_calls: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        """Queue one step: ``text`` streamed word by word, then ``tool_calls``."""
        events: list[LLMEvent] = []
        words = text.split(" ") if text else []
        for index, word in enumerate(words):
            events.append(TextDelta(text=word if index == 0 else f" {word}"))

        for index, call in enumerate(tool_calls or []):
            arguments = call.get("arguments", {})
            events.append(ToolCallRequest(
                id=call.get("id", f"call_{len(self._steps)}_{index}"),
                name=call["name"],
                arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
            ))

        events.append(StepFinish(finish_reason="tool_calls" if tool_calls else "stop"))
        self._steps.append(events)

    def add_events(self, events: list[LLMEvent]) -> None:
        self._steps.append(events)

    def add_error(self, error: Exception) -> None:
        """Make the next call raise ``error`` before producing anything."""
        self._steps.append(error)

    async def stream(
        self,
        messages: list[ChatMessage],
        system: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[LLMEvent]:
        self.call_history.append({
            "messages": messages,
            "system": system,
            "tools": tools,
        })

        step = self._steps.pop(0) if self._steps else None
        if isinstance(step, Exception):
            raise step
        if step is None:
            step = [
                TextDelta(text="This is a mock response."),
                StepFinish(finish_reason="stop", usage={"prompt_tokens": 10, "completion_tokens": 5}),
            ]

        for event in step:
            yield event


def create_llm_provider(vendor: str, model: str, settings: LLMSettings) -> LLMProvider:
    """
    Factory function to create the provider for a resolved model.

    Args:
        vendor: Vendor the model belongs to (openai, anthropic, google, xai, together)
        model: Provider-accepted model id
        settings: LLM configuration settings

    Raises:
        ValueError: If backend or vendor is not supported
    """
    if settings.backend == "mock":
        return MockLLMProvider(model)

    if settings.backend == "azure_openai":
        provider = settings.providers.get("azure", ProviderSettings())
        return AzureOpenAIProvider(model, settings, provider)

    if settings.backend != "openai":
        raise ValueError(
            f"Unsupported LLM backend: {settings.backend}. "
            "Supported: ['openai', 'azure_openai', 'mock']"
        )

    provider = settings.providers.get(vendor)
    if provider is None:
        raise ValueError(
            f"No provider settings for vendor '{vendor}'. "
            f"Configured: {sorted(settings.providers)}"
        )

    logger.info("Creating LLM provider", vendor=vendor, model=model)
    if vendor == "openai":
        return OpenAIProvider(model, settings, provider)
    return OpenAICompatibleProvider(model, settings, provider)
