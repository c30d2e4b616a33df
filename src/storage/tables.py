"""Persisted records.

Messages and tool invocations are written once and never updated.
Visualizations are updated only in place, by id.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(SQLModel, table=True):
    """Persisted grouping of messages between a user and the assistant."""
    __tablename__ = "conversations"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    title: str = Field(default="New Conversation")
    model: Optional[str] = Field(default=None, max_length=50)
    is_archived: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Message(SQLModel, table=True):
    """A single user, assistant or system message."""
    __tablename__ = "messages"

    id: str = Field(default_factory=_new_id, primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id", index=True)
    role: str = Field(max_length=20)
    content: str = Field(sa_column=Column(Text, nullable=False))
    parts: Optional[list[Any]] = Field(default=None, sa_column=Column(JSON))
    # "metadata" is reserved on declarative classes
    meta: Optional[dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True)


class ToolInvocation(SQLModel, table=True):
    """Record of one tool call attached to the assistant message that made it."""
    __tablename__ = "tool_invocations"

    id: str = Field(default_factory=_new_id, primary_key=True)
    message_id: str = Field(foreign_key="messages.id", index=True)
    tool_name: str = Field(max_length=100)
    parameters: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    result: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    execution_time_ms: float = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


class Visualization(SQLModel, table=True):
    """A chart, molecule view or simulation produced by a tool."""
    __tablename__ = "visualizations"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    conversation_id: str = Field(foreign_key="conversations.id", index=True)
    type: str = Field(max_length=20)
    title: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
