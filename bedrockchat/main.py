"""
Wiring for the chat core: builds every collaborator from config and hands
back one ChatCore the UI layer can drive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from bedrockchat.backends import GatewayTransport, RetryableTransportWrapper
from bedrockchat.backends.base import BaseTransport
from bedrockchat.config import get_config
from bedrockchat.images import LocalImageWriter
from bedrockchat.orchestrator import TurnOrchestrator
from bedrockchat.settings import SettingsStore, YamlSettingsStore
from bedrockchat.storage.conversation_store import ConversationStore
from bedrockchat.storage.models import ConversationState
from bedrockchat.storage.sqlite_store import SQLiteStore
from bedrockchat.titler import ConversationTitler
from bedrockchat.wiretap import WireLog

logger = logging.getLogger(__name__)


def setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@dataclass
class ChatCore:
    store: ConversationStore
    transport: BaseTransport
    settings: SettingsStore
    orchestrator: TurnOrchestrator
    sqlite: SQLiteStore | None = None
    wire: WireLog | None = None

    def open_conversation(self, conversation_id: str, model_id: str = "") -> ConversationState:
        """Load a conversation from disk, or start a new one bound to ``model_id``."""
        state = self.store.get_state(conversation_id)
        if state is not None:
            return state
        if self.sqlite is not None and self.sqlite.load_conversation(self.store, conversation_id):
            return self.store.get_state(conversation_id)
        title = self.settings.get_title(conversation_id) or ""
        return self.store.create(conversation_id, model_id=model_id, title=title)

    async def aclose(self):
        await self.orchestrator.aclose()
        if self.sqlite is not None:
            self.sqlite.flush()
        if self.wire is not None:
            self.wire.close()


def build_transport(cfg: dict) -> BaseTransport:
    t_cfg = cfg["transport"]
    gateway = GatewayTransport(
        url=t_cfg["url"],
        timeout=t_cfg.get("timeout", 120),
        max_tokens=cfg["chat"].get("max_tokens", 4096),
    )
    return RetryableTransportWrapper(
        gateway,
        max_retries=t_cfg.get("max_retries", 2),
        backoff_base=t_cfg.get("backoff_base", 1.5),
        backoff_max=t_cfg.get("backoff_max", 10.0),
    )


def build_core(cfg: dict | None = None, transport: BaseTransport | None = None) -> ChatCore:
    """Build a ChatCore from config. ``transport`` overrides the configured gateway."""
    cfg = cfg or get_config()
    chat_cfg = cfg["chat"]

    store = ConversationStore(
        wait_attempts=chat_cfg.get("state_wait_attempts", 10),
        wait_interval=chat_cfg.get("state_wait_interval", 0.1),
    )

    sqlite = None
    storage_cfg = cfg.get("storage", {})
    if storage_cfg.get("persist_conversations", True):
        sqlite = SQLiteStore(storage_cfg.get("sqlite_path", "./data/conversations.db"))
        sqlite.attach(store)

    settings = YamlSettingsStore(cfg["settings"]["path"])
    transport = transport or build_transport(cfg)

    wire = None
    wire_cfg = cfg.get("wiretap", {})
    if wire_cfg.get("enabled", False):
        wire = WireLog(wire_cfg.get("path", "./data/wire.jsonl"))

    titler = ConversationTitler(
        transport, store, settings=settings, model_id=chat_cfg["title_model"],
    )
    image_cfg = cfg["images"]
    orchestrator = TurnOrchestrator(
        store,
        transport,
        settings=settings,
        image_writer=LocalImageWriter(image_cfg["directory"], image_cfg["served_url"]),
        titler=titler,
        wire=wire,
        history_char_limit=chat_cfg.get("history_char_limit", 50000),
    )
    logger.info(
        "Chat core ready (transport=%r, persistence=%s, wiretap=%s)",
        transport, "sqlite" if sqlite else "memory", "on" if wire else "off",
    )
    return ChatCore(
        store=store,
        transport=transport,
        settings=settings,
        orchestrator=orchestrator,
        sqlite=sqlite,
        wire=wire,
    )
