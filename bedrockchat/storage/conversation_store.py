"""
In-memory conversation store.

Owns every ConversationState. All mutations are synchronous: when a mutating
call returns, every registered listener has already seen the change.

Writes to one conversation are serialized by that conversation's lock.
Distinct conversations never contend with each other; the registry lock is
only held while a state is created or removed.

State is populated lazily by an external loader (see SQLiteStore.load_conversation),
so callers that race the loader use wait_for_state(), a bounded poll.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from bedrockchat.errors import ConversationNotFound
from bedrockchat.storage.models import ConversationState, ConversationTurn, Message

logger = logging.getLogger(__name__)

DEFAULT_WAIT_ATTEMPTS = 10
DEFAULT_WAIT_INTERVAL = 0.1

# Event kinds delivered to listeners
STATE_ADDED = "state_added"
STATE_REMOVED = "state_removed"
MESSAGE_APPENDED = "message_appended"
MESSAGE_UPDATED = "message_updated"
FLAT_HISTORY_SET = "flat_history_set"
TURN_APPENDED = "turn_appended"
LOADING_CHANGED = "loading_changed"
TITLE_CHANGED = "title_changed"


@dataclass
class StoreEvent:
    kind: str
    conversation_id: str
    payload: Any = None


Listener = Callable[[StoreEvent], None]


@dataclass
class _Slot:
    state: ConversationState
    lock: threading.RLock = field(default_factory=threading.RLock)


class ConversationStore:
    """Thread-safe, per-conversation-locked store of ConversationState."""

    def __init__(
        self,
        wait_attempts: int = DEFAULT_WAIT_ATTEMPTS,
        wait_interval: float = DEFAULT_WAIT_INTERVAL,
    ):
        self.wait_attempts = wait_attempts
        self.wait_interval = wait_interval
        self._slots: dict[str, _Slot] = {}
        self._registry_lock = threading.Lock()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: str, conversation_id: str, payload: Any = None) -> None:
        event = StoreEvent(kind=kind, conversation_id=conversation_id, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # A broken listener never blocks the store
                logger.warning(
                    "Store listener %r failed on %s for '%s': %s",
                    listener, kind, conversation_id, e,
                )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, conversation_id: str, model_id: str = "", title: str = "") -> ConversationState:
        """Create state for a conversation, or return the existing one."""
        with self._registry_lock:
            slot = self._slots.get(conversation_id)
            if slot is not None:
                return slot.state
            state = ConversationState(id=conversation_id, model_id=model_id, title=title)
            self._slots[conversation_id] = _Slot(state=state)
        logger.debug("Created conversation '%s' (model=%s)", conversation_id, model_id)
        self._notify(STATE_ADDED, conversation_id, state)
        return state

    def put(self, state: ConversationState) -> None:
        """Install a fully built state (used by loaders). Replaces any existing one."""
        with self._registry_lock:
            self._slots[state.id] = _Slot(state=state)
        self._notify(STATE_ADDED, state.id, state)

    def remove(self, conversation_id: str) -> bool:
        with self._registry_lock:
            slot = self._slots.pop(conversation_id, None)
        if slot is None:
            return False
        self._notify(STATE_REMOVED, conversation_id)
        return True

    def ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._slots)

    def get_state(self, conversation_id: str) -> ConversationState | None:
        slot = self._slots.get(conversation_id)
        return slot.state if slot else None

    async def wait_for_state(
        self,
        conversation_id: str,
        attempts: int | None = None,
        interval: float | None = None,
    ) -> ConversationState:
        """
        Poll for a conversation that an external loader may still be populating.
        Raises ConversationNotFound once the attempt budget is spent.
        """
        attempts = self.wait_attempts if attempts is None else attempts
        interval = self.wait_interval if interval is None else interval

        for attempt in range(attempts):
            state = self.get_state(conversation_id)
            if state is not None:
                return state
            if attempt < attempts - 1:
                await asyncio.sleep(interval)

        logger.error(
            "Conversation '%s' not found after %d attempts", conversation_id, attempts,
        )
        raise ConversationNotFound(conversation_id)

    def _slot(self, conversation_id: str) -> _Slot:
        slot = self._slots.get(conversation_id)
        if slot is None:
            raise ConversationNotFound(conversation_id)
        return slot

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(self, conversation_id: str, message: Message) -> None:
        slot = self._slot(conversation_id)
        with slot.lock:
            slot.state.messages.append(message)
        self._notify(MESSAGE_APPENDED, conversation_id, message)

    def append_text(self, conversation_id: str, message_id: str, text: str) -> Message:
        """Grow an existing message in place (streaming)."""
        slot = self._slot(conversation_id)
        with slot.lock:
            for message in reversed(slot.state.messages):
                if message.id == message_id:
                    message.text += text
                    break
            else:
                raise KeyError(f"Message {message_id} not in conversation {conversation_id}")
        self._notify(MESSAGE_UPDATED, conversation_id, message)
        return message

    def get_messages(self, conversation_id: str) -> list[Message]:
        slot = self._slot(conversation_id)
        with slot.lock:
            return list(slot.state.messages)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def set_flat_history(self, conversation_id: str, history: str) -> None:
        slot = self._slot(conversation_id)
        with slot.lock:
            slot.state.flat_history = history
        self._notify(FLAT_HISTORY_SET, conversation_id, history)

    def get_flat_history(self, conversation_id: str) -> str:
        slot = self._slot(conversation_id)
        with slot.lock:
            return slot.state.flat_history

    def append_turn(self, conversation_id: str, turn: ConversationTurn) -> None:
        slot = self._slot(conversation_id)
        with slot.lock:
            slot.state.turns.append(turn)
        self._notify(TURN_APPENDED, conversation_id, turn)

    def get_turns(self, conversation_id: str) -> list[ConversationTurn]:
        slot = self._slot(conversation_id)
        with slot.lock:
            return list(slot.state.turns)

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    def set_loading(self, conversation_id: str, loading: bool) -> None:
        slot = self._slot(conversation_id)
        with slot.lock:
            slot.state.is_loading = loading
        self._notify(LOADING_CHANGED, conversation_id, loading)

    def set_title(self, conversation_id: str, title: str) -> None:
        slot = self._slot(conversation_id)
        with slot.lock:
            slot.state.title = title
        self._notify(TITLE_CHANGED, conversation_id, title)
