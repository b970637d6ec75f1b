"""
Base transport abstraction.
The orchestrator only ever talks to this interface, so any way of reaching
Bedrock (SDK, gateway, fake) can sit behind it.
"""

from __future__ import annotations

import abc
import logging
from typing import AsyncIterator

from bedrockchat.registry import Subtype, classify
from bedrockchat.storage.models import ConversationTurn

logger = logging.getLogger(__name__)


class BaseTransport(abc.ABC):
    """
    Abstract base for Bedrock transports.
    Payloads are opaque bytes; decoding is the caller's job.
    Every method raises TransportError on failure; image generation raises
    DecodeError when the response carries no decodable image.
    """

    name: str = "transport"

    @abc.abstractmethod
    async def invoke_conversational(self, model_id: str, turns: list[ConversationTurn]) -> bytes:
        """Send structured turns, return the complete response payload."""
        ...

    @abc.abstractmethod
    def invoke_conversational_stream(
        self, model_id: str, turns: list[ConversationTurn],
    ) -> AsyncIterator[bytes]:
        """Send structured turns, yield chunk payloads as they arrive."""
        ...

    @abc.abstractmethod
    async def invoke_completion(self, model_id: str, prompt: str) -> bytes:
        """Send a flat prompt, return the complete response payload."""
        ...

    @abc.abstractmethod
    def invoke_completion_stream(self, model_id: str, prompt: str) -> AsyncIterator[bytes]:
        """Send a flat prompt, yield chunk payloads as they arrive."""
        ...

    @abc.abstractmethod
    async def invoke_image_generation(self, model_id: str, prompt: str) -> bytes:
        """Generate an image from a prompt, return raw image bytes."""
        ...

    def classify_model_type(self, model_id: str) -> Subtype:
        return classify(model_id).subtype

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
