"""Conversation Store.

Create/read/append operations on conversations, messages and tool
invocations. Messages are append-only; concurrent appends never conflict,
they only interleave by creation time.
"""

from typing import Any, Optional

from sqlmodel import Session, col, select

from shared.logging import get_logger
from shared.models import ChatMessage
from storage.database import Database
from storage.tables import Conversation, Message, ToolInvocation, utcnow

logger = get_logger(__name__)

DEFAULT_TITLE = "New Conversation"
MAX_TITLE_LENGTH = 50


def generate_title(messages: list[ChatMessage]) -> str:
    """Provisional title from the first user message's text."""
    first_user = next((m for m in messages if m.role == "user"), None)
    if first_user is None:
        return DEFAULT_TITLE

    text = first_user.text.strip()
    if not text:
        return DEFAULT_TITLE
    if len(text) > MAX_TITLE_LENGTH:
        return text[:MAX_TITLE_LENGTH].strip() + "..."
    return text


class ConversationStore:
    """
    Persists conversation state.

    Responsibilities:
    - Create and retrieve conversations
    - Append messages and their tool invocations
    - List and archive a user's conversations
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        user_id: Optional[str],
        title: str = DEFAULT_TITLE,
        model: Optional[str] = None,
    ) -> Conversation:
        """
        Create a new conversation.

        Args:
            user_id: Owner, or None for an anonymous conversation
            title: Conversation title
            model: Selected model identifier
        """
        def work(session: Session) -> Conversation:
            conversation = Conversation(user_id=user_id, title=title, model=model)
            session.add(conversation)
            session.commit()
            session.refresh(conversation)
            return conversation

        conversation = await self.db.run(work)
        logger.info("Conversation created", conversation_id=conversation.id, user=user_id)
        return conversation

    async def get(
        self,
        conversation_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[Conversation]:
        """
        Get a conversation by ID.

        When ``user_id`` is given, conversations owned by someone else are
        not returned.
        """
        def work(session: Session) -> Optional[Conversation]:
            statement = select(Conversation).where(Conversation.id == conversation_id)
            if user_id is not None:
                statement = statement.where(Conversation.user_id == user_id)
            return session.exec(statement).first()

        return await self.db.run(work)

    async def list_conversations(
        self,
        user_id: str,
        include_archived: bool = False,
    ) -> list[Conversation]:
        """List a user's conversations, most recently updated first."""
        def work(session: Session) -> list[Conversation]:
            statement = select(Conversation).where(Conversation.user_id == user_id)
            if not include_archived:
                statement = statement.where(Conversation.is_archived == False)  # noqa: E712
            statement = statement.order_by(col(Conversation.updated_at).desc())
            return list(session.exec(statement).all())

        return await self.db.run(work)

    async def archive(self, conversation_id: str, user_id: str) -> bool:
        """
        Archive a conversation owned by ``user_id``.

        Returns:
            True if archived, False if not found
        """
        def work(session: Session) -> bool:
            conversation = session.get(Conversation, conversation_id)
            if conversation is None or conversation.user_id != user_id:
                return False
            conversation.is_archived = True
            conversation.updated_at = utcnow()
            session.add(conversation)
            session.commit()
            return True

        archived = await self.db.run(work)
        if archived:
            logger.info("Conversation archived", conversation_id=conversation_id)
        return archived

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        parts: Optional[list[Any]] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> Message:
        """
        Append a message and touch the conversation's ``updated_at``.

        Args:
            conversation_id: Conversation identifier
            role: Message role (user, assistant, system)
            content: Text content
            parts: Structured content parts, if the message had any
            meta: Free-form metadata
        """
        def work(session: Session) -> Message:
            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                parts=parts,
                meta=meta,
            )
            session.add(message)

            conversation = session.get(Conversation, conversation_id)
            if conversation is not None:
                conversation.updated_at = utcnow()
                session.add(conversation)

            session.commit()
            session.refresh(message)
            return message

        return await self.db.run(work)

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """Messages of a conversation in creation order."""
        def work(session: Session) -> list[Message]:
            statement = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(col(Message.created_at))
            )
            return list(session.exec(statement).all())

        return await self.db.run(work)

    async def add_tool_invocation(
        self,
        message_id: str,
        tool_name: str,
        parameters: Optional[dict[str, Any]],
        result: Any,
        execution_time_ms: float,
    ) -> ToolInvocation:
        """Record a tool call against the assistant message that made it."""
        def work(session: Session) -> ToolInvocation:
            invocation = ToolInvocation(
                message_id=message_id,
                tool_name=tool_name,
                parameters=parameters,
                result=result,
                execution_time_ms=execution_time_ms,
            )
            session.add(invocation)
            session.commit()
            session.refresh(invocation)
            return invocation

        return await self.db.run(work)

    async def get_tool_invocations(self, message_id: str) -> list[ToolInvocation]:
        def work(session: Session) -> list[ToolInvocation]:
            statement = (
                select(ToolInvocation)
                .where(ToolInvocation.message_id == message_id)
                .order_by(col(ToolInvocation.created_at))
            )
            return list(session.exec(statement).all())

        return await self.db.run(work)
