"""Error taxonomy for the chat service.

Errors local to one tool call are converted into that tool's result slot;
request validation and provider errors are fatal to the request.
"""

from typing import Any, Optional


class ChatServiceError(Exception):
    """Base exception for all service errors."""

    code = "ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class InvalidRequestError(ChatServiceError):
    """Malformed or empty request input."""

    code = "INVALID_REQUEST"


class UnauthenticatedError(ChatServiceError):
    """A persisting tool was invoked without an authenticated user."""

    code = "UNAUTHENTICATED"


class ValidationError(ChatServiceError):
    """Tool arguments failed schema validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[list[str]] = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.errors = errors or []


class PersistenceError(ChatServiceError):
    """A database write or read failed."""

    code = "PERSISTENCE_ERROR"


class NotFoundError(ChatServiceError):
    """A referenced record does not exist or is not visible to the caller."""

    code = "NOT_FOUND"


class ProviderError(ChatServiceError):
    """The language-model call failed."""

    code = "PROVIDER_ERROR"


class ProviderTimeoutError(ProviderError):
    """The language-model call exceeded its maximum duration."""

    code = "PROVIDER_TIMEOUT"
