"""Persistence for conversations, messages, tool invocations and visualizations."""

from storage.database import Database
from storage.conversations import ConversationStore, generate_title
from storage.visualizations import VisualizationStore
from storage.tables import Conversation, Message, ToolInvocation, Visualization

__all__ = [
    "Database",
    "ConversationStore",
    "VisualizationStore",
    "generate_title",
    "Conversation",
    "Message",
    "ToolInvocation",
    "Visualization",
]
