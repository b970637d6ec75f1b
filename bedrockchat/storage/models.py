"""
Data models for conversation state.
These define the shape of data flowing between the orchestrator and the store.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


class Author(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Message:
    """A single visible message in a conversation log."""
    id: str = field(default_factory=lambda: uuid4().hex)
    text: str = ""
    author: Author = Author.USER
    is_error: bool = False
    sent_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    attached_images: list[str] = field(default_factory=list)  # base64 payloads
    model: str = ""  # model that produced an assistant message

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "author": self.author.value,
            "is_error": self.is_error,
            "sent_at": self.sent_at,
            "attached_images": list(self.attached_images),
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            id=data.get("id") or uuid4().hex,
            text=data.get("text", ""),
            author=Author(data.get("author", "user")),
            is_error=bool(data.get("is_error", False)),
            sent_at=data.get("sent_at") or datetime.now(timezone.utc).isoformat(),
            attached_images=list(data.get("attached_images") or []),
            model=data.get("model", ""),
        )


@dataclass(frozen=True)
class TextBlock:
    value: str

    def to_wire(self) -> dict:
        return {"type": "text", "text": self.value}


@dataclass(frozen=True)
class ImageBlock:
    media_type: str
    base64_data: str

    def to_wire(self) -> dict:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": self.media_type,
                "data": self.base64_data,
            },
        }


ContentBlock = TextBlock | ImageBlock


def content_block_from_wire(data: dict) -> ContentBlock:
    """Inverse of ``to_wire`` for persisted turns."""
    if data.get("type") == "image":
        source = data.get("source", {})
        return ImageBlock(
            media_type=source.get("media_type", "image/jpeg"),
            base64_data=source.get("data", ""),
        )
    return TextBlock(value=data.get("text", ""))


@dataclass
class ConversationTurn:
    """One role-tagged entry of structured (conversational-family) history."""
    role: str  # "user" | "assistant"
    content: list[ContentBlock] = field(default_factory=list)

    def to_wire(self) -> dict:
        return {"role": self.role, "content": [b.to_wire() for b in self.content]}

    @classmethod
    def from_wire(cls, data: dict) -> "ConversationTurn":
        return cls(
            role=data.get("role", "user"),
            content=[content_block_from_wire(b) for b in data.get("content", [])],
        )


@dataclass
class ConversationState:
    """
    Everything the store holds for one conversation.

    Which history is authoritative depends on the model the conversation is
    bound to: ``turns`` for conversational models, ``flat_history`` for the rest.
    """
    id: str
    model_id: str = ""
    title: str = ""
    messages: list[Message] = field(default_factory=list)
    flat_history: str = ""
    turns: list[ConversationTurn] = field(default_factory=list)
    is_loading: bool = False
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
