"""
Turn orchestrator — drives one send from user input to persisted history.

Per conversation:

    IDLE -> SENDING -> STREAMING | AWAITING_RESPONSE -> IDLE

with cancel_sending() (or a newer send) able to end any active phase.

At most one send is in flight per conversation. A new send supersedes the
old one: the old task's CancelToken is tripped and the task is cancelled,
and every store mutation in the send path checks its token first, so a
superseded task can never write into the log after it lost ownership.
Whatever it wrote before that stays (no rollback, no "cancelled" marker).

All mutations happen on the event loop that owns the orchestrator; that
loop is the single context UI listeners observe changes from.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator

from bedrockchat.backends.base import BaseTransport
from bedrockchat.decoders import (
    UNDECODABLE_TEXT,
    DecodedText,
    DecodeResult,
    TextDelta,
    decode_complete,
    supports_streaming,
)
from bedrockchat.errors import ConversationNotFound, DecodeError, SendCancelled
from bedrockchat.images import (
    EncodedImage,
    LocalImageWriter,
    PendingAttachments,
    markdown_image,
    timestamp_file_name,
)
from bedrockchat.reassembler import StreamReassembler
from bedrockchat.registry import ModelFamily, Subtype, classify, default_streaming_preference
from bedrockchat.settings import InMemorySettingsStore, SettingsStore
from bedrockchat.storage.conversation_store import ConversationStore
from bedrockchat.storage.models import (
    Author,
    ConversationTurn,
    ImageBlock,
    Message,
    TextBlock,
)
from bedrockchat.titler import ConversationTitler
from bedrockchat.wiretap import WireLog

logger = logging.getLogger(__name__)

HISTORY_CHAR_LIMIT = 50000
DEFAULT_IMAGE_DIR = "~/Amazon Bedrock Client"
GENERATED_IMAGE_ENTRY = "\nAssistant: [Generated Image]\n"

PROMPT_TEMPLATE = (
    "The following is a friendly conversation between a human and an AI.\n"
    "Current conversation:\n{history}\n\nHuman: {input}\nAI:"
)


class SendPhase(str, enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    AWAITING_RESPONSE = "awaiting_response"


class CancelToken:
    """Advisory cancellation flag, checked before every state-mutating step."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True

    def check(self):
        if self._cancelled:
            raise SendCancelled()


@dataclass
class _ActiveSend:
    task: asyncio.Task
    token: CancelToken


# ---------------------------------------------------------------------------
# Flat-prompt helpers
# ---------------------------------------------------------------------------

def trim_history(history: str, limit: int = HISTORY_CHAR_LIMIT) -> str:
    """Keep only the trailing ``limit`` characters."""
    if len(history) > limit:
        return history[-limit:]
    return history


def format_user_entry(subtype: Subtype, text: str) -> str:
    if subtype is Subtype.LLAMA3:
        return f"user\n\n{text}"
    return f"\nHuman: {text}"


def format_assistant_entry(subtype: Subtype, text: str) -> str:
    if subtype is Subtype.LLAMA3:
        return f"assistant\n\n{text}\n\n"
    return f"\nAssistant: {text}\n"


def build_prompt(history: str, text: str) -> str:
    return PROMPT_TEMPLATE.format(history=history, input=text)


class TurnOrchestrator:
    """Sends user input to the conversation's model and records the result."""

    def __init__(
        self,
        store: ConversationStore,
        transport: BaseTransport,
        settings: SettingsStore | None = None,
        image_writer: LocalImageWriter | None = None,
        titler: ConversationTitler | None = None,
        wire: WireLog | None = None,
        history_char_limit: int = HISTORY_CHAR_LIMIT,
    ):
        self.store = store
        self.transport = transport
        self.settings = settings or InMemorySettingsStore()
        self.image_writer = image_writer or LocalImageWriter(DEFAULT_IMAGE_DIR)
        self.titler = titler
        self.wire = wire
        self.history_char_limit = history_char_limit

        self._active: dict[str, _ActiveSend] = {}
        self._phases: dict[str, SendPhase] = {}
        self._attachments: dict[str, PendingAttachments] = {}
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def attachments(self, conversation_id: str) -> PendingAttachments:
        """Pending image buffer for the next send of a conversation."""
        return self._attachments.setdefault(conversation_id, PendingAttachments())

    def streaming_enabled(self, conversation_id: str) -> bool:
        override = self.settings.get_streaming(conversation_id)
        if override is not None:
            return override
        state = self.store.get_state(conversation_id)
        return default_streaming_preference(state.model_id if state else "")

    def set_streaming_enabled(self, conversation_id: str, enabled: bool):
        self.settings.set_streaming(conversation_id, enabled)

    def is_sending(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    def phase(self, conversation_id: str) -> SendPhase:
        return self._phases.get(conversation_id, SendPhase.IDLE)

    def send_message(
        self,
        conversation_id: str,
        text: str,
        attachments: list[EncodedImage] | None = None,
    ) -> asyncio.Task | None:
        """
        Start a send and return its task, or None when ``text`` is empty.
        Any send already in flight for the conversation is cancelled first.
        Must be called from the event loop that runs the orchestrator.
        """
        if not text:
            logger.debug("Ignoring empty input for '%s'", conversation_id)
            return None

        self._supersede(conversation_id)

        if attachments is None:
            images = self.attachments(conversation_id).drain()
        else:
            images = list(attachments)
            self.attachments(conversation_id).clear()

        token = CancelToken()
        task = asyncio.create_task(
            self._run_send(conversation_id, text, images, token),
            name=f"send-{conversation_id}",
        )
        self._active[conversation_id] = _ActiveSend(task=task, token=token)
        self._phases[conversation_id] = SendPhase.SENDING
        return task

    def cancel_sending(self, conversation_id: str):
        """Stop the in-flight send, keeping whatever it already wrote."""
        if self._supersede(conversation_id):
            logger.info("Send for '%s' cancelled by user", conversation_id)
        self._phases.pop(conversation_id, None)
        if self.store.get_state(conversation_id) is not None:
            self.store.set_loading(conversation_id, False)

    async def wait_idle(self, conversation_id: str):
        """Wait for the current send of a conversation, if any, to finish."""
        active = self._active.get(conversation_id)
        if active is not None:
            await asyncio.gather(active.task, return_exceptions=True)

    async def aclose(self):
        """Cancel every in-flight send and let title tasks finish."""
        for conversation_id in list(self._active):
            self.cancel_sending(conversation_id)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def _supersede(self, conversation_id: str) -> bool:
        active = self._active.pop(conversation_id, None)
        if active is None:
            return False
        active.token.cancel()
        active.task.cancel()
        logger.debug("Superseded in-flight send for '%s'", conversation_id)
        return True

    def _owns(self, conversation_id: str, token: CancelToken) -> bool:
        active = self._active.get(conversation_id)
        return active is not None and active.token is token

    def _set_phase(self, conversation_id: str, token: CancelToken, phase: SendPhase):
        if self._owns(conversation_id, token):
            self._phases[conversation_id] = phase

    def _release(self, conversation_id: str, token: CancelToken):
        """Return to IDLE, but only if this send still owns the conversation."""
        if not self._owns(conversation_id, token):
            return
        del self._active[conversation_id]
        self._phases.pop(conversation_id, None)
        if self.store.get_state(conversation_id) is not None:
            self.store.set_loading(conversation_id, False)

    # ------------------------------------------------------------------
    # Send pipeline
    # ------------------------------------------------------------------

    async def _run_send(
        self,
        conversation_id: str,
        text: str,
        images: list[EncodedImage],
        token: CancelToken,
    ):
        try:
            try:
                state = await self.store.wait_for_state(conversation_id)
            except ConversationNotFound:
                logger.error("Send aborted, conversation '%s' never loaded", conversation_id)
                return

            token.check()
            self.store.set_loading(conversation_id, True)
            self._spawn_title_update(conversation_id, text)

            user_message = Message(
                text=text,
                author=Author.USER,
                attached_images=[img.base64_data for img in images],
            )
            self.store.append_message(conversation_id, user_message)
            self._tap("inbound", user_message, conversation_id, state.model_id)

            model_id = state.model_id
            family = classify(model_id)
            logger.info(
                "Sending to '%s' (%s/%s) for conversation '%s'",
                model_id, family.kind.value, family.subtype.value, conversation_id,
            )

            try:
                if family.is_conversational:
                    await self._send_conversational(conversation_id, model_id, text, images, token)
                elif family.is_image:
                    await self._send_image(conversation_id, model_id, family, text, token)
                else:
                    await self._send_completion(conversation_id, model_id, family, text, token)
            except SendCancelled:
                raise
            except DecodeError as e:
                token.check()
                self._append_error(conversation_id, f"{UNDECODABLE_TEXT} {e}")
            except Exception as e:
                token.check()
                self._append_error(conversation_id, f"Error invoking the model: {e}")
        except SendCancelled:
            logger.info("Send for '%s' stopped after cancellation", conversation_id)
        finally:
            self._release(conversation_id, token)

    async def _send_conversational(
        self,
        conversation_id: str,
        model_id: str,
        text: str,
        images: list[EncodedImage],
        token: CancelToken,
    ):
        blocks = [TextBlock(text)] + [ImageBlock(img.media_type, img.base64_data) for img in images]
        token.check()
        self.store.append_turn(conversation_id, ConversationTurn(role="user", content=blocks))
        turns = self.store.get_turns(conversation_id)

        if self.streaming_enabled(conversation_id):
            self._set_phase(conversation_id, token, SendPhase.STREAMING)
            reply = await self._consume_stream(
                conversation_id, model_id, Subtype.CLAUDE3,
                self.transport.invoke_conversational_stream(model_id, turns), token,
            )
        else:
            self._set_phase(conversation_id, token, SendPhase.AWAITING_RESPONSE)
            payload = await self.transport.invoke_conversational(model_id, turns)
            token.check()
            reply = self._append_decoded(
                conversation_id, model_id, decode_complete(payload, Subtype.CLAUDE3),
            )

        token.check()
        self.store.append_turn(
            conversation_id, ConversationTurn(role="assistant", content=[TextBlock(reply)]),
        )

    async def _send_completion(
        self,
        conversation_id: str,
        model_id: str,
        family: ModelFamily,
        text: str,
        token: CancelToken,
    ):
        subtype = family.subtype
        history = self.store.get_flat_history(conversation_id)
        prompt = build_prompt(trim_history(history, self.history_char_limit), text)

        token.check()
        self.store.set_flat_history(conversation_id, history + format_user_entry(subtype, text))

        if self.streaming_enabled(conversation_id) and supports_streaming(subtype):
            self._set_phase(conversation_id, token, SendPhase.STREAMING)
            reply = await self._consume_stream(
                conversation_id, model_id, subtype,
                self.transport.invoke_completion_stream(model_id, prompt), token,
            )
        else:
            self._set_phase(conversation_id, token, SendPhase.AWAITING_RESPONSE)
            payload = await self.transport.invoke_completion(model_id, prompt)
            token.check()
            reply = self._append_decoded(conversation_id, model_id, decode_complete(payload, subtype))

        token.check()
        history = self.store.get_flat_history(conversation_id)
        self.store.set_flat_history(conversation_id, history + format_assistant_entry(subtype, reply))

    async def _send_image(
        self,
        conversation_id: str,
        model_id: str,
        family: ModelFamily,
        text: str,
        token: CancelToken,
    ):
        token.check()
        history = self.store.get_flat_history(conversation_id)
        self.store.set_flat_history(conversation_id, history + format_user_entry(family.subtype, text))

        self._set_phase(conversation_id, token, SendPhase.AWAITING_RESPONSE)
        data = await self.transport.invoke_image_generation(model_id, text)
        token.check()

        locator = self.image_writer.write(data, timestamp_file_name())
        message = Message(text=markdown_image(locator), author=Author.ASSISTANT, model=model_id)
        self.store.append_message(conversation_id, message)
        self._tap("outbound", message, conversation_id, model_id)

        history = self.store.get_flat_history(conversation_id)
        self.store.set_flat_history(conversation_id, history + GENERATED_IMAGE_ENTRY)

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    async def _consume_stream(
        self,
        conversation_id: str,
        model_id: str,
        subtype: Subtype,
        chunks: AsyncIterator[bytes],
        token: CancelToken,
    ) -> str:
        """
        Apply streamed text to the log. The first non-empty delta creates the
        assistant message; every later one grows that same message.
        """
        reassembler = StreamReassembler(subtype)
        message: Message | None = None

        async with aclosing(reassembler.events(chunks)) as events:
            async for event in events:
                token.check()
                if not isinstance(event, TextDelta):
                    continue
                if message is None:
                    message = Message(text=event.text, author=Author.ASSISTANT, model=model_id)
                    self.store.append_message(conversation_id, message)
                else:
                    self.store.append_text(conversation_id, message.id, event.text)

        token.check()
        reply = reassembler.final_text
        if message is None:
            # Nothing streamed; still close the turn with one (empty) reply
            message = Message(text=reply, author=Author.ASSISTANT, model=model_id)
            self.store.append_message(conversation_id, message)

        if reassembler.chunks_skipped:
            logger.warning(
                "Stream for '%s' skipped %d of %d chunks",
                conversation_id, reassembler.chunks_skipped, reassembler.chunks_seen,
            )
        self._tap("outbound", message, conversation_id, model_id, text=reply)
        return reply

    def _append_decoded(self, conversation_id: str, model_id: str, result: DecodeResult) -> str:
        """Append a decoded single-shot reply. Raises DecodeError if it is not text."""
        if not isinstance(result, DecodedText):
            raise DecodeError(getattr(result, "reason", "unexpected response type"))
        message = Message(
            text=result.value,
            author=Author.ASSISTANT,
            is_error=result.is_error,
            model=model_id,
        )
        self.store.append_message(conversation_id, message)
        self._tap("outbound", message, conversation_id, model_id)
        return result.value

    def _append_error(self, conversation_id: str, text: str):
        logger.error("Conversation '%s': %s", conversation_id, text)
        message = Message(text=text, author=Author.SYSTEM, is_error=True)
        self.store.append_message(conversation_id, message)
        self._tap("outbound", message, conversation_id, "")

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    def _spawn_title_update(self, conversation_id: str, text: str):
        if self.titler is None:
            return
        task = asyncio.create_task(
            self.titler.update_title(conversation_id, text),
            name=f"title-{conversation_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _tap(
        self,
        direction: str,
        message: Message,
        conversation_id: str,
        model_id: str,
        text: str | None = None,
    ):
        if self.wire is None:
            return
        self.wire.log(
            direction=direction,
            role=message.author.value,
            content=message.text if text is None else text,
            model=model_id,
            conversation_id=conversation_id,
            is_error=message.is_error,
        )
