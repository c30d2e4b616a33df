"""Streaming Orchestrator.

Drives one chat request through

    Init -> Resolve -> Streaming -> Finalize -> Terminal

Text deltas from the model are forwarded as they arrive. Every tool call
gets a pending ``tool-call`` part at once, then runs as its own task; its
``tool-result`` part is forwarded whenever it completes, interleaved with
the remaining model output. Tool tasks are held outside the response
generator so they finish even if the client goes away.
"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel, Field

from shared.config import LLMSettings
from shared.errors import ChatServiceError, InvalidRequestError, ProviderError, ProviderTimeoutError
from shared.logging import bind_request_context, get_logger
from shared.models import (
    ChatMessage,
    StepFinish,
    StreamPart,
    TextDelta,
    ToolCall,
    ToolCallRequest,
    ToolContext,
    ToolResult,
    ToolResultStatus,
    UserContext,
)
from storage.conversations import ConversationStore, generate_title
from tools.executor import ToolExecutor, parse_arguments
from tools.registry import ToolRegistry
from orchestrator.model_gateway import ModelConfig, ModelGateway

logger = get_logger(__name__)

ASSISTANT_PLACEHOLDER = "Generated UI component"


class ChatRequest(BaseModel):
    """A validated chat request as handed over by the HTTP layer."""
    messages: list[ChatMessage] = Field(default_factory=list)
    model_id: Optional[str] = None
    conversation_id: Optional[str] = None
    visualization_id: Optional[str] = None
    user: Optional[UserContext] = None
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def user_id(self) -> Optional[str]:
        return self.user.user_id if self.user else None


@dataclass
class Invocation:
    """One tool call made during the turn."""
    request: ToolCallRequest
    parameters: dict[str, Any]
    result: Optional[ToolResult] = None


@dataclass
class TurnState:
    """Everything the turn produced, consumed by finalize."""
    text: list[str] = field(default_factory=list)
    invocations: list[Invocation] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"
    emitted: bool = False


def _add_usage(total: dict[str, int], usage: dict[str, int]) -> None:
    for key, value in usage.items():
        total[key] = total.get(key, 0) + value


class ChatStream:
    """
    A resolved request, ready to stream.

    ``parts()`` may be iterated once. A provider failure before the first
    part is raised from the iterator; later failures become an ``error``
    part.
    """

    def __init__(
        self,
        orchestrator: "StreamingOrchestrator",
        request: ChatRequest,
        model: ModelConfig,
        conversation_id: Optional[str],
    ) -> None:
        self.orchestrator = orchestrator
        self.request = request
        self.model = model
        self.conversation_id = conversation_id
        self.state = TurnState()
        self._results: asyncio.Queue[ToolResult] = asyncio.Queue()
        self._pending: dict[str, Invocation] = {}
        self._outstanding = 0
        self._log = logger.bind(
            request_id=request.request_id,
            conversation_id=conversation_id,
            user=request.user_id,
            model=model.model_id,
        )

    @property
    def headers(self) -> dict[str, str]:
        if self.conversation_id:
            return {"X-Conversation-Id": self.conversation_id}
        return {}

    async def parts(self) -> AsyncIterator[StreamPart]:
        settings = self.orchestrator.llm_settings
        history = list(self.request.messages)
        deadline = time.monotonic() + settings.max_duration_seconds
        provider_error: Optional[ProviderError] = None

        for step in range(settings.max_steps):
            step_calls: list[Invocation] = []
            step_text: list[str] = []

            try:
                async for event in self._model_events(history, deadline):
                    if isinstance(event, TextDelta):
                        if event.text:
                            step_text.append(event.text)
                            yield self._emit(StreamPart(type="text", text=event.text))
                    elif isinstance(event, ToolCallRequest):
                        invocation = self._start_tool(event)
                        step_calls.append(invocation)
                        yield self._emit(StreamPart(
                            type="tool-call",
                            tool_call_id=event.id,
                            tool_name=event.name,
                            args=invocation.parameters,
                        ))
                    elif isinstance(event, StepFinish):
                        self.state.finish_reason = event.finish_reason
                        _add_usage(self.state.usage, event.usage)

                    while not self._results.empty():
                        yield self._emit(self._result_part(self._results.get_nowait()))

            except ProviderError as e:
                if not self.state.emitted:
                    raise
                self._log.error("Model stream failed mid-response", error=e.message, step=step)
                provider_error = e

            while self._outstanding:
                yield self._emit(self._result_part(await self._results.get()))

            self.state.text.extend(step_text)
            yield self._emit(StreamPart(
                type="finish-step",
                finish_reason=self.state.finish_reason,
                usage=self.state.usage,
            ))

            if provider_error is not None or not step_calls:
                break
            history.extend(self._feedback_messages(step_text, step_calls))

        if provider_error is not None:
            yield self._emit(StreamPart(type="error", error=provider_error.message))

        await self.orchestrator.finalize(self)

        yield self._emit(StreamPart(
            type="finish",
            finish_reason="error" if provider_error else self.state.finish_reason,
            usage=self.state.usage,
        ))

    def _emit(self, part: StreamPart) -> StreamPart:
        self.state.emitted = True
        return part

    async def _model_events(self, history: list[ChatMessage], deadline: float):
        """Model events for one call, bounded by the request deadline."""
        stream = self.model.client.stream(
            history,
            system=self.model.system_prompt,
            tools=self.orchestrator.tools_for_llm(),
        )
        iterator = stream.__aiter__()
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ProviderTimeoutError("Model call exceeded the time limit", model=self.model.model_id)
                try:
                    event = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    raise ProviderTimeoutError(
                        "Model call exceeded the time limit", model=self.model.model_id
                    ) from e
                except ProviderError:
                    raise
                except ChatServiceError as e:
                    raise ProviderError(e.message, model=self.model.model_id) from e
                except Exception as e:
                    raise ProviderError(f"Model call failed: {e}", model=self.model.model_id) from e
                yield event
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _start_tool(self, event: ToolCallRequest) -> Invocation:
        try:
            parameters = parse_arguments(event.arguments)
        except ChatServiceError as e:
            self._log.warning(
                "Tool call rejected",
                tool=event.name,
                tool_call_id=event.id,
                error=e.message,
            )
            invocation = Invocation(request=event, parameters={})
            self.state.invocations.append(invocation)
            self._pending[event.id] = invocation
            self._outstanding += 1
            self._results.put_nowait(ToolResult(
                tool_call_id=event.id,
                tool_name=event.name,
                status=ToolResultStatus.VALIDATION_ERROR,
                error=e.message,
                error_code=e.code,
            ))
            return invocation

        invocation = Invocation(request=event, parameters=parameters)
        self.state.invocations.append(invocation)
        self._pending[event.id] = invocation
        self._outstanding += 1

        call = ToolCall(
            tool_call_id=event.id,
            tool_name=event.name,
            parameters=parameters,
            context=ToolContext(
                request_id=self.request.request_id,
                user=self.request.user,
                conversation_id=self.conversation_id,
                messages=self.request.messages,
                visualization_id=self.request.visualization_id,
            ),
        )
        self.orchestrator.spawn(self._run_tool(call))
        return invocation

    async def _run_tool(self, call: ToolCall) -> None:
        result = await self.orchestrator.executor.execute(call)
        await self._results.put(result)

    def _result_part(self, result: ToolResult) -> StreamPart:
        self._outstanding -= 1
        invocation = self._pending.pop(result.tool_call_id, None)
        if invocation is not None:
            invocation.result = result
        return StreamPart(
            type="tool-result",
            tool_call_id=result.tool_call_id,
            tool_name=result.tool_name,
            result=result.to_payload(),
            is_error=not result.ok,
        )

    def _feedback_messages(self, text: list[str], calls: list[Invocation]) -> list[ChatMessage]:
        """Assistant tool-call message plus one tool message per result."""
        messages = [ChatMessage(
            role="assistant",
            content="".join(text),
            tool_calls=[
                {
                    "id": inv.request.id,
                    "type": "function",
                    "function": {"name": inv.request.name, "arguments": json.dumps(inv.parameters)},
                }
                for inv in calls
            ],
        )]
        for inv in calls:
            payload = inv.result.to_payload() if inv.result else None
            messages.append(ChatMessage(
                role="tool",
                content=json.dumps(payload, default=str),
                tool_call_id=inv.request.id,
                name=inv.request.name,
            ))
        return messages


class StreamingOrchestrator:
    """
    Orchestrates a chat request across model, tools and storage.

    The orchestrator itself holds no per-request state; that lives on the
    ChatStream returned by ``start``.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        executor: ToolExecutor,
        conversations: ConversationStore,
        llm_settings: LLMSettings,
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.executor = executor
        self.conversations = conversations
        self.llm_settings = llm_settings
        self._background: set[asyncio.Task] = set()

    def tools_for_llm(self) -> list[dict[str, Any]]:
        return self.registry.get_tools_for_llm()

    def spawn(self, coro) -> asyncio.Task:
        """Run ``coro`` as a task that outlives the response generator."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for all background tool tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def start(self, request: ChatRequest) -> ChatStream:
        """
        Init and Resolve.

        Raises:
            InvalidRequestError: If the request has no messages
            PersistenceError: If a new conversation cannot be created
        """
        if not request.messages:
            raise InvalidRequestError(
                "Invalid request - `messages` array must be provided and contain at least one message."
            )

        bind_request_context(request.request_id, request.conversation_id, request.user_id)
        model = self.gateway.resolve(request.model_id)
        conversation_id = await self._resolve_conversation(request, model)

        logger.info(
            "Chat request resolved",
            request_id=request.request_id,
            model=model.model_id,
            conversation_id=conversation_id,
            user=request.user_id,
            message_count=len(request.messages),
        )
        return ChatStream(self, request, model, conversation_id)

    async def _resolve_conversation(self, request: ChatRequest, model: ModelConfig) -> Optional[str]:
        if request.conversation_id:
            conversation = await self.conversations.get(request.conversation_id)
            if conversation is not None:
                if conversation.user_id is None or conversation.user_id == request.user_id:
                    return conversation.id
                logger.warning(
                    "Conversation owned by another user, not reusing",
                    conversation_id=request.conversation_id,
                    user=request.user_id,
                )

        if request.user is None:
            return None

        conversation = await self.conversations.create(
            user_id=request.user_id,
            title=generate_title(request.messages),
            model=model.requested_id,
        )
        return conversation.id

    async def finalize(self, stream: ChatStream) -> None:
        """
        Persist the turn: last user message, assistant message, tool invocations.

        Failures are logged; the already-sent stream is not affected.
        """
        conversation_id = stream.conversation_id
        log = stream._log
        if conversation_id is None:
            log.debug("No conversation, skipping persistence")
            return

        state = stream.state
        user_message = next((m for m in reversed(stream.request.messages) if m.role == "user"), None)

        try:
            if user_message is not None:
                content = user_message.content
                await self.conversations.add_message(
                    conversation_id,
                    role=user_message.role,
                    content=content if isinstance(content, str) else json.dumps(content),
                    parts=content if isinstance(content, list) else None,
                )

            text = "".join(state.text)
            message = await self.conversations.add_message(
                conversation_id,
                role="assistant",
                content=text or (ASSISTANT_PLACEHOLDER if state.invocations else ""),
                parts=self._assistant_parts(text, state.invocations),
                meta={
                    "model": stream.model.model_id,
                    "finishReason": state.finish_reason,
                    "usage": state.usage,
                    "toolInvocations": [
                        {
                            "toolCallId": inv.request.id,
                            "toolName": inv.request.name,
                            "status": inv.result.status.value if inv.result else None,
                        }
                        for inv in state.invocations
                    ],
                },
            )

            for inv in state.invocations:
                await self.conversations.add_tool_invocation(
                    message.id,
                    tool_name=inv.request.name,
                    parameters=inv.parameters,
                    result=inv.result.to_payload() if inv.result else None,
                    execution_time_ms=inv.result.execution_time_ms if inv.result else 0,
                )

            log.info("Turn persisted", message_id=message.id, tool_calls=len(state.invocations))

        except ChatServiceError as e:
            log.error("Failed to persist turn", error=e.message, code=e.code)

    @staticmethod
    def _assistant_parts(text: str, invocations: list[Invocation]) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        if text:
            parts.append({"type": "text", "text": text})
        for inv in invocations:
            parts.append({
                "type": "tool-invocation",
                "toolInvocation": {
                    "state": "result",
                    "toolCallId": inv.request.id,
                    "toolName": inv.request.name,
                    "args": inv.parameters,
                    "result": inv.result.to_payload() if inv.result else None,
                },
            })
        return parts
