"""
Error taxonomy for the chat core.

Only TransportError and DecodeError ever reach the user, and then only as a
System message in the conversation log. Everything else is logged.
"""

from __future__ import annotations


class BedrockChatError(Exception):
    """Base class for every error raised by the chat core."""


class ConversationNotFound(BedrockChatError):
    """Conversation state never materialized in the store."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class TransportError(BedrockChatError):
    """The transport collaborator failed to deliver a response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(BedrockChatError):
    """A payload did not match the shape expected for its model subtype."""


class PartialStreamError(DecodeError):
    """A single streamed chunk could not be parsed. Recovered, never surfaced."""


class TitleUpdateError(BedrockChatError):
    """Title summarization failed. Logged only."""


class SendCancelled(BedrockChatError):
    """The send was superseded or cancelled before it could write."""
