"""
Conversation titler — short title summaries from the first words a user sends.

Runs as a fire-and-forget task next to every send: one cheap call to a fast
conversational model with the raw input, and on success the conversation
title is overwritten. Fails silently. If the call or the decode fails the
title is left alone and nothing propagates to the send that spawned it.
"""
from __future__ import annotations

import logging

from bedrockchat.backends.base import BaseTransport
from bedrockchat.decoders import DecodedText, decode_complete
from bedrockchat.errors import TitleUpdateError
from bedrockchat.registry import Subtype
from bedrockchat.settings import SettingsStore
from bedrockchat.storage.conversation_store import ConversationStore
from bedrockchat.storage.models import ConversationTurn, TextBlock

logger = logging.getLogger(__name__)

DEFAULT_TITLE_MODEL = "anthropic.claude-3-haiku-20240307-v1:0"
FALLBACK_TITLE = "Friendly Chat"

TITLE_PROMPT = (
    "Summarize user input <input>{input}</input> as short as possible. "
    "Just in few words without punctuation. It should not be more than 5 words. "
    "It will be book title. Do as best as you can. If you don't know how to do "
    "summarize, please give me just '" + FALLBACK_TITLE + "', but please do summary "
    "this without punctuation:"
)


class ConversationTitler:
    """Summarizes user input into a conversation title."""

    def __init__(
        self,
        transport: BaseTransport,
        store: ConversationStore,
        settings: SettingsStore | None = None,
        model_id: str = DEFAULT_TITLE_MODEL,
    ):
        self.transport = transport
        self.store = store
        self.settings = settings
        self.model_id = model_id

    async def summarize(self, text: str) -> str:
        """Return a title for ``text``. Raises TitleUpdateError on any failure."""
        turn = ConversationTurn(role="user", content=[TextBlock(TITLE_PROMPT.format(input=text))])
        try:
            payload = await self.transport.invoke_conversational(self.model_id, [turn])
        except Exception as e:
            raise TitleUpdateError(f"title call failed: {e}") from e

        result = decode_complete(payload, Subtype.CLAUDE3)
        if not isinstance(result, DecodedText) or not result.value:
            raise TitleUpdateError(f"title response unusable: {result}")
        return result.value

    async def update_title(self, conversation_id: str, text: str) -> str | None:
        """Summarize and store. Returns the new title, or None if anything failed."""
        try:
            title = await self.summarize(text)
            self.store.set_title(conversation_id, title)
            if self.settings is not None:
                self.settings.set_title(conversation_id, title)
        except Exception as e:
            logger.warning("titler: could not update title for '%s': %s", conversation_id, e)
            return None

        logger.info("titler: conversation '%s' titled %r", conversation_id, title)
        return title
