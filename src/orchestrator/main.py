"""Orchestrator - FastAPI Application.

Endpoints:
- Streaming chat API for the frontend
- Visualization lookup
- Conversation history
- Health and tool listing
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

import pydantic
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials

from shared.config import Settings, get_settings
from shared.errors import (
    ChatServiceError,
    InvalidRequestError,
    NotFoundError,
    ProviderError,
    ProviderTimeoutError,
    UnauthenticatedError,
    ValidationError,
)
from shared.logging import clear_context, get_logger, setup_logging
from shared.models import ChatMessage, UserContext
from storage import ConversationStore, Database, VisualizationStore
from storage.tables import Conversation, Message, ToolInvocation
from tools import ToolExecutor, ToolRegistry
from domains import load_all_domains
from orchestrator.auth import Authenticator, security
from orchestrator.model_gateway import ModelGateway, ProviderFactory
from orchestrator.stream_protocol import MEDIA_TYPE, STREAM_HEADERS, encode_part
from orchestrator.streaming import ChatRequest, StreamingOrchestrator

logger = get_logger(__name__)

_STATUS_BY_ERROR = (
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ProviderTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
)


@dataclass
class Services:
    """Process-wide components, built once per application."""
    settings: Settings
    db: Database
    conversations: ConversationStore
    visualizations: VisualizationStore
    registry: ToolRegistry
    executor: ToolExecutor
    gateway: ModelGateway
    orchestrator: StreamingOrchestrator
    auth: Authenticator


def build_services(settings: Settings, provider_factory: Optional[ProviderFactory] = None) -> Services:
    db = Database(settings.database.url, echo=settings.database.echo)
    conversations = ConversationStore(db)
    visualizations = VisualizationStore(db)

    registry = ToolRegistry()
    load_all_domains(registry, visualizations)
    executor = ToolExecutor(registry)

    gateway = ModelGateway(settings.llm, provider_factory=provider_factory)
    orchestrator = StreamingOrchestrator(
        gateway=gateway,
        registry=registry,
        executor=executor,
        conversations=conversations,
        llm_settings=settings.llm,
    )

    return Services(
        settings=settings,
        db=db,
        conversations=conversations,
        visualizations=visualizations,
        registry=registry,
        executor=executor,
        gateway=gateway,
        orchestrator=orchestrator,
        auth=Authenticator(settings.auth),
    )


def status_for(error: ChatServiceError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(error: ChatServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(error),
        content={"error": error.message, "code": error.code},
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[UserContext]:
    """Authenticated user, or None for anonymous callers."""
    return get_services(request).auth.optional_user(credentials)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UserContext:
    """Dependency to get current authenticated user."""
    return get_services(request).auth.required_user(credentials)


def parse_chat_request(body: Any, user: Optional[UserContext]) -> ChatRequest:
    """
    Build a ChatRequest from the JSON body.

    Accepts ``messages`` or a single ``message``; the model may be named
    ``modelId``, ``model`` or ``selectedChatModel`` and the conversation
    ``conversationId`` or ``id``.

    Raises:
        InvalidRequestError: If there are no usable messages
    """
    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid request - body must be a JSON object.")

    raw_messages = body.get("messages")
    if raw_messages is None and body.get("message"):
        raw_messages = [body["message"]]

    if not isinstance(raw_messages, list) or not raw_messages:
        raise InvalidRequestError(
            "Invalid request - `messages` array must be provided and contain at least one message."
        )

    try:
        messages = [ChatMessage.model_validate(m) for m in raw_messages]
    except pydantic.ValidationError as e:
        raise InvalidRequestError(f"Invalid request - malformed message: {e.errors()[0]['msg']}") from e

    return ChatRequest(
        messages=messages,
        model_id=body.get("modelId") or body.get("model") or body.get("selectedChatModel"),
        conversation_id=body.get("conversationId") or body.get("id"),
        visualization_id=body.get("visualizationId"),
        user=user,
    )


def _message_dump(message: Message, invocations: list[ToolInvocation]) -> dict[str, Any]:
    data = message.model_dump(mode="json", exclude={"meta"})
    data["metadata"] = message.meta
    data["toolInvocations"] = [inv.model_dump(mode="json") for inv in invocations]
    return data


def _conversation_dump(conversation: Conversation) -> dict[str, Any]:
    return conversation.model_dump(mode="json")


def create_app(
    settings: Optional[Settings] = None,
    provider_factory: Optional[ProviderFactory] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use instead of the cached global ones
        provider_factory: Override for building model clients
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        setup_logging(settings.log_level, json_output=settings.environment == "production")
        logger.info("Starting chat service", environment=settings.environment)

        services = build_services(settings, provider_factory)
        services.db.create_all()
        app.state.services = services

        logger.info(
            "Chat service started",
            tools=len(services.registry),
            domains=services.registry.list_domains(),
            llm_backend=settings.llm.backend,
        )

        yield

        logger.info("Shutting down chat service")
        await services.orchestrator.drain()
        services.db.dispose()

    app = FastAPI(
        title="Visualization Chat Service",
        description="Streaming chat with visualization tools",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Conversation-Id"],
    )

    @app.exception_handler(ChatServiceError)
    async def chat_service_error_handler(request: Request, exc: ChatServiceError):
        logger.warning("Request failed", path=request.url.path, code=exc.code, error=exc.message)
        return error_response(exc)

    @app.get("/health", tags=["System"])
    async def health_check(services: Services = Depends(get_services)):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "tool_count": len(services.registry),
            "domains": services.registry.list_domains(),
            "llm_backend": services.settings.llm.backend,
        }

    @app.post("/api/chat", tags=["Chat"])
    async def chat(
        request: Request,
        services: Services = Depends(get_services),
        user: Optional[UserContext] = Depends(get_optional_user),
    ):
        """
        Stream an assistant turn.

        Provider failures before anything was streamed produce a 502/504;
        later failures arrive as an error part inside the stream.
        """
        try:
            body = await request.json()
        except ValueError:
            return error_response(InvalidRequestError("Invalid request - body is not valid JSON."))

        try:
            chat_request = parse_chat_request(body, user)
            stream = await services.orchestrator.start(chat_request)
        except ChatServiceError as e:
            clear_context()
            return error_response(e)

        parts = stream.parts()
        try:
            first = await parts.__anext__()
        except StopAsyncIteration:
            first = None
        except ProviderError as e:
            logger.error(
                "Model call failed before streaming",
                request_id=chat_request.request_id,
                conversation_id=stream.conversation_id,
                error=e.message,
            )
            clear_context()
            return error_response(e)

        async def body_lines():
            try:
                if first is not None:
                    yield encode_part(first)
                async for part in parts:
                    yield encode_part(part)
            finally:
                clear_context()

        return StreamingResponse(
            body_lines(),
            media_type=MEDIA_TYPE,
            headers={**STREAM_HEADERS, **stream.headers},
        )

    @app.get("/visualizations/{visualization_id}", tags=["Visualizations"])
    async def get_visualization(
        visualization_id: str,
        services: Services = Depends(get_services),
    ):
        """Full visualization record."""
        try:
            visualization = await services.visualizations.get(visualization_id)
        except ChatServiceError as e:
            logger.error("Failed to load visualization", visualization_id=visualization_id, error=e.message)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Failed to load visualization"},
            )

        if visualization is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": "Visualization not found"},
            )
        return visualization.model_dump(mode="json")

    @app.get("/conversations", tags=["Conversations"])
    async def list_conversations(
        include_archived: bool = False,
        services: Services = Depends(get_services),
        user: UserContext = Depends(get_current_user),
    ):
        """List user's conversations."""
        conversations = await services.conversations.list_conversations(
            user.user_id, include_archived=include_archived
        )
        return {"conversations": [_conversation_dump(c) for c in conversations]}

    @app.get("/conversations/{conversation_id}", tags=["Conversations"])
    async def get_conversation(
        conversation_id: str,
        services: Services = Depends(get_services),
        user: UserContext = Depends(get_current_user),
    ):
        """Get conversation history with tool invocations and visualizations."""
        conversation = await services.conversations.get(conversation_id, user_id=user.user_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", conversation_id=conversation_id)

        messages = await services.conversations.get_messages(conversation_id)
        dumped = []
        for message in messages:
            invocations = await services.conversations.get_tool_invocations(message.id)
            dumped.append(_message_dump(message, invocations))

        visualizations = await services.visualizations.list_for_conversation(conversation_id)
        return {
            "conversation": _conversation_dump(conversation),
            "messages": dumped,
            "visualizations": [v.model_dump(mode="json") for v in visualizations],
        }

    @app.delete("/conversations/{conversation_id}", tags=["Conversations"])
    async def archive_conversation(
        conversation_id: str,
        services: Services = Depends(get_services),
        user: UserContext = Depends(get_current_user),
    ):
        """Archive a conversation."""
        archived = await services.conversations.archive(conversation_id, user.user_id)
        if not archived:
            raise NotFoundError("Conversation not found", conversation_id=conversation_id)
        return {"status": "archived"}

    @app.get("/tools", tags=["Tools"])
    async def list_tools(
        domain: Optional[str] = None,
        services: Services = Depends(get_services),
    ):
        """List registered tools."""
        tools = services.registry.list_tools(domain=domain)
        return {
            "tools": [tool.model_dump(mode="json") for tool in tools],
            "count": len(tools),
        }

    return app


def main():
    """Run the chat service."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "orchestrator.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
