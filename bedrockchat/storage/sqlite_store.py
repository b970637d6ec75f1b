"""
SQLite persistence for conversation state.
Single portable file: conversations, their visible messages, and the
structured turn history for conversational models.

Acts as the store's loader (load_conversation) and, once attached, as a
write-through listener. Write failures are logged, never raised back into
the orchestrator. Streamed text updates to a message are held and written
once, on the next other change to the same conversation (or flush()).
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from bedrockchat.storage import conversation_store as cs
from bedrockchat.storage.conversation_store import ConversationStore, StoreEvent
from bedrockchat.storage.models import ConversationState, ConversationTurn, Message

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    model_id TEXT DEFAULT '',
    title TEXT DEFAULT '',
    flat_history TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    author TEXT NOT NULL,
    text TEXT NOT NULL,
    model TEXT DEFAULT '',
    is_error BOOLEAN DEFAULT 0,
    sent_at TEXT NOT NULL,
    images TEXT DEFAULT '[]',
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE TABLE IF NOT EXISTS turns (
    conversation_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    PRIMARY KEY (conversation_id, position),
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id);
"""


class SQLiteStore:
    """Thread-safe SQLite persistence for ConversationState."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pending: dict[str, Message] = {}
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def ensure_conversation(self, state: ConversationState):
        """Create conversation record if it doesn't exist."""
        with self._connect() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO conversations (id, model_id, title, flat_history, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (state.id, state.model_id, state.title, state.flat_history, state.created_at),
            )

    def store_message(self, conversation_id: str, msg: Message):
        """Insert a message, or update its text if it already exists."""
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO messages
                   (id, conversation_id, author, text, model, is_error, sent_at, images)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET text = excluded.text""",
                (msg.id, conversation_id, msg.author.value, msg.text, msg.model,
                 int(msg.is_error), msg.sent_at, json.dumps(msg.attached_images)),
            )
        logger.debug("Stored message %s (author=%s, conv=%s)", msg.id, msg.author.value, conversation_id)

    def store_turn(self, conversation_id: str, turn: ConversationTurn):
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(position), -1) + 1 AS next FROM turns WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            conn.execute(
                "INSERT INTO turns (conversation_id, position, role, content) VALUES (?, ?, ?, ?)",
                (conversation_id, row["next"], turn.role,
                 json.dumps([b.to_wire() for b in turn.content])),
            )

    def update_conversation(self, conversation_id: str, **fields):
        """Update title / flat_history / model_id columns."""
        allowed = {k: v for k, v in fields.items() if k in ("title", "flat_history", "model_id")}
        if not allowed:
            return
        assignments = ", ".join(f"{k} = ?" for k in allowed)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE conversations SET {assignments} WHERE id = ?",
                (*allowed.values(), conversation_id),
            )

    def save_conversation(self, state: ConversationState):
        """Write a whole state, replacing whatever was stored for it."""
        self.delete_conversation(state.id)
        self.ensure_conversation(state)
        for msg in state.messages:
            self.store_message(state.id, msg)
        for turn in state.turns:
            self.store_turn(state.id, turn)

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM turns WHERE conversation_id = ?", (conversation_id,))
            cur = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_conversation(self, conversation_id: str) -> ConversationState | None:
        """Rebuild a ConversationState from disk, or None if unknown."""
        with self._connect() as conn:
            conv = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,),
            ).fetchone()
            if conv is None:
                return None
            msg_rows = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY rowid",
                (conversation_id,),
            ).fetchall()
            turn_rows = conn.execute(
                "SELECT * FROM turns WHERE conversation_id = ? ORDER BY position",
                (conversation_id,),
            ).fetchall()

        messages = [
            Message.from_dict({
                "id": r["id"],
                "text": r["text"],
                "author": r["author"],
                "is_error": bool(r["is_error"]),
                "sent_at": r["sent_at"],
                "attached_images": json.loads(r["images"] or "[]"),
                "model": r["model"],
            })
            for r in msg_rows
        ]
        turns = [
            ConversationTurn.from_wire({"role": r["role"], "content": json.loads(r["content"])})
            for r in turn_rows
        ]
        return ConversationState(
            id=conv["id"],
            model_id=conv["model_id"],
            title=conv["title"],
            flat_history=conv["flat_history"],
            messages=messages,
            turns=turns,
            created_at=conv["created_at"],
        )

    def list_conversations(self, limit: int = 50) -> list[dict]:
        """Most recent conversations with message counts."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT c.id, c.model_id, c.title, c.created_at,
                          (SELECT COUNT(*) FROM messages m
                           WHERE m.conversation_id = c.id) as message_count
                   FROM conversations c
                   ORDER BY c.created_at DESC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]

    def load_conversation(self, store: ConversationStore, conversation_id: str) -> bool:
        """Materialize a stored conversation into the in-memory store."""
        state = self.get_conversation(conversation_id)
        if state is None:
            return False
        store.put(state)
        logger.info(
            "Loaded conversation '%s' (%d messages, %d turns)",
            conversation_id, len(state.messages), len(state.turns),
        )
        return True

    # ------------------------------------------------------------------
    # Write-through
    # ------------------------------------------------------------------

    def attach(self, store: ConversationStore):
        """Persist every store mutation from now on."""
        store.add_listener(self.on_store_event)

    def on_store_event(self, event: StoreEvent):
        try:
            self._apply(event)
        except sqlite3.Error as e:
            logger.warning(
                "SQLite write-through failed for %s on '%s': %s",
                event.kind, event.conversation_id, e,
            )

    def flush(self, conversation_id: str | None = None):
        """Write streamed message text held back since its last update."""
        ids = [conversation_id] if conversation_id is not None else list(self._pending)
        for cid in ids:
            pending = self._pending.pop(cid, None)
            if pending is not None:
                self.store_message(cid, pending)

    def _apply(self, event: StoreEvent):
        cid = event.conversation_id
        if event.kind == cs.MESSAGE_UPDATED:
            # Streaming grows one message per chunk; write it once the stream moves on
            held = self._pending.get(cid)
            if held is not None and held.id != event.payload.id:
                self.flush(cid)
            self._pending[cid] = event.payload
            return

        if event.kind == cs.STATE_REMOVED:
            self._pending.pop(cid, None)
            self.delete_conversation(cid)
            return

        self.flush(cid)
        if event.kind == cs.STATE_ADDED:
            self.ensure_conversation(event.payload)
        elif event.kind == cs.MESSAGE_APPENDED:
            self.store_message(cid, event.payload)
        elif event.kind == cs.TURN_APPENDED:
            self.store_turn(cid, event.payload)
        elif event.kind == cs.FLAT_HISTORY_SET:
            self.update_conversation(cid, flat_history=event.payload)
        elif event.kind == cs.TITLE_CHANGED:
            self.update_conversation(cid, title=event.payload)
