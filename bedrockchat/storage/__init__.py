"""
Conversation state: in-memory store plus optional SQLite persistence.
"""
from bedrockchat.storage.conversation_store import ConversationStore, StoreEvent
from bedrockchat.storage.models import (
    Author,
    ConversationState,
    ConversationTurn,
    ImageBlock,
    Message,
    TextBlock,
)
from bedrockchat.storage.sqlite_store import SQLiteStore

__all__ = [
    "ConversationStore",
    "StoreEvent",
    "Author",
    "ConversationState",
    "ConversationTurn",
    "ImageBlock",
    "Message",
    "TextBlock",
    "SQLiteStore",
]
