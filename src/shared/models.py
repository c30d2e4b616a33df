"""Core data models for the chat service.

Runtime structures shared by the orchestrator, the tool layer and the HTTP
endpoint. Persisted records live in ``storage.tables``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class ExecutionType(str, Enum):
    """Whether a tool writes a visualization record or only computes."""
    STATELESS = "stateless"
    PERSISTING = "persisting"


class VisualizationType(str, Enum):
    """Type tag stored on a visualization record."""
    PLOT = "plot"
    MOLECULE = "molecule"
    SIMULATION = "simulation"


class ToolDefinition(BaseModel):
    """
    Declarative definition of a tool the model may call.

    Tool names are plain identifiers (no dots) because provider
    function-calling APIs reject other characters.
    """
    name: str = Field(..., description="Tool name exposed to the model")
    domain: str = Field(..., description="Domain the tool belongs to")
    description: str = Field(..., description="Clear description for LLM usage")

    input_schema: dict[str, Any] = Field(
        default_factory=dict,
        description="JSON Schema for input validation"
    )
    execution_type: ExecutionType = Field(default=ExecutionType.STATELESS)

    examples: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def persists(self) -> bool:
        return self.execution_type == ExecutionType.PERSISTING


class UserContext(BaseModel):
    """Authenticated user identity propagated through the system."""
    user_id: str
    username: str
    email: Optional[str] = None
    roles: list[str] = Field(default_factory=list)


class ChatMessage(BaseModel):
    """A single message as received from the client or sent to the model."""
    role: str = Field(..., description="Message role: user, assistant, system, tool")
    content: Union[str, list[dict[str, Any]], None] = ""
    name: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None
    tool_call_id: Optional[str] = None

    @property
    def text(self) -> str:
        """Plain-text view of the content, joining text parts."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            str(part.get("text", ""))
            for part in self.content
            if part.get("type", "text") == "text"
        )


class ToolContext(BaseModel):
    """
    Ambient context handed to every tool executor.

    ``user`` is None for anonymous callers. ``visualization_id`` is the
    request-level edit-in-place target, used when the tool call itself
    does not name one.
    """
    request_id: str = Field(..., description="Unique request identifier")
    user: Optional[UserContext] = None
    conversation_id: Optional[str] = None
    messages: list[ChatMessage] = Field(default_factory=list)
    visualization_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def user_id(self) -> Optional[str]:
        return self.user.user_id if self.user else None


class ToolCall(BaseModel):
    """A request to execute a specific tool."""
    tool_call_id: str
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    context: ToolContext


class ToolResultStatus(str, Enum):
    """Status of tool execution."""
    SUCCESS = "success"
    ERROR = "error"
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_ERROR = "persistence_error"


class ToolResult(BaseModel):
    """
    Terminal result of a tool execution.

    Exactly one is produced per tool call, successful or not.
    """
    tool_call_id: Optional[str] = None
    tool_name: str
    status: ToolResultStatus
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    execution_time_ms: float = 0

    @property
    def ok(self) -> bool:
        return self.status == ToolResultStatus.SUCCESS

    def to_payload(self) -> Any:
        """Value placed in the tool's result slot of the response stream."""
        if self.ok:
            return self.data
        return {
            "error": self.error or "Unknown error",
            "code": self.error_code or self.status.value.upper(),
        }


# LLM stream events


class TextDelta(BaseModel):
    """A chunk of assistant text."""
    kind: Literal["text"] = "text"
    text: str


class ToolCallRequest(BaseModel):
    """A complete tool call emitted by the model."""
    kind: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: Union[str, dict[str, Any]] = "{}"


class StepFinish(BaseModel):
    """End of one model call."""
    kind: Literal["finish"] = "finish"
    finish_reason: str = "stop"
    usage: dict[str, int] = Field(default_factory=dict)


LLMEvent = Union[TextDelta, ToolCallRequest, StepFinish]


class StreamPart(BaseModel):
    """
    One discrete unit of the response stream.

    ``tool-call`` is the pending notification for a tool; ``tool-result``
    is its single terminal result.
    """
    type: Literal["text", "tool-call", "tool-result", "error", "finish-step", "finish"]
    text: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    args: Optional[dict[str, Any]] = None
    result: Optional[Any] = None
    is_error: bool = False
    error: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: dict[str, int] = Field(default_factory=dict)
